"""
Shared fixtures for adversarial tests.

Every adversarial scenario runs against both repository backends: the
in-memory one always, PostgreSQL when DATABASE_URL is reachable. The
``repository`` fixture overrides the top-level one, so the wired services
from tests/conftest.py pick up the selected backend.
"""

from collections.abc import Generator

import pytest
from psycopg_pool import ConnectionPool, PoolTimeout

from src.adapters.repository import (
    InMemoryIdentityRepository,
    PostgresIdentityRepository,
    run_migrations,
)
from src.config.settings import get_settings
from src.domain.ports import IdentityRepository
from tests.factories import FrozenClock


@pytest.fixture(scope="session")
def pg_pool() -> Generator[ConnectionPool | None, None, None]:
    """Connection pool for adversarial tests, or None without a database."""
    settings = get_settings()
    pool = ConnectionPool(conninfo=settings.database_url, min_size=1, max_size=10, open=False)
    try:
        pool.open(wait=True, timeout=3)
    except PoolTimeout:
        pool.close()
        yield None
        return
    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture(params=["memory", "postgres"])
def repository(
    request: pytest.FixtureRequest, clock: FrozenClock, pg_pool: ConnectionPool | None
) -> IdentityRepository:
    if request.param == "memory":
        return InMemoryIdentityRepository(clock=clock)

    if pg_pool is None:
        pytest.skip("PostgreSQL is not reachable")
    with pg_pool.connection() as conn:
        conn.execute("DELETE FROM identities")
        conn.commit()
    return PostgresIdentityRepository(pg_pool)
