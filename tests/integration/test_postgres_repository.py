"""
Integration tests for PostgresIdentityRepository.

Tests repository operations against a real PostgreSQL database.
Requires PostgreSQL at DATABASE_URL; the module is skipped when it is
unreachable.
"""

import uuid
from collections.abc import Generator
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest
from psycopg_pool import ConnectionPool, PoolTimeout

from src.adapters.repository.postgres import PostgresIdentityRepository, run_migrations
from src.config.settings import get_settings
from src.domain.exceptions import DuplicateIdentity
from src.domain.models import ActorKind, ConstitutionProfile, IdentityRecord, RegistrationStage

pytestmark = pytest.mark.integration

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="module")
def pool() -> Generator[ConnectionPool, None, None]:
    """Create connection pool for integration tests."""
    settings = get_settings()
    pool = ConnectionPool(conninfo=settings.database_url, min_size=1, max_size=10, open=False)
    try:
        pool.open(wait=True, timeout=3)
    except PoolTimeout:
        pool.close()
        pytest.skip("PostgreSQL is not reachable")
    run_migrations(pool)
    yield pool
    pool.close()


@pytest.fixture
def repository(pool: ConnectionPool) -> PostgresIdentityRepository:
    return PostgresIdentityRepository(pool)


@pytest.fixture(autouse=True)
def clean_database(pool: ConnectionPool) -> Generator[None, None, None]:
    """Clean identities table before each test."""
    with pool.connection() as conn:
        conn.execute("DELETE FROM identities")
        conn.commit()
    yield


def draft(email: str = "asha@example.com", phone: str = "+919876543210", **fields) -> IdentityRecord:
    return IdentityRecord(
        id=str(uuid.uuid4()),
        kind=ActorKind.INDIVIDUAL,
        email=email,
        phone=phone,
        first_name=fields.pop("first_name", "Asha"),
        last_name="Verma",
        profile={"gender": "Female"},
        active=False,
        staged_payloads={"personal-info": {"email": email}},
        **fields,
    )


def awaiting_code(repository: PostgresIdentityRepository) -> IdentityRecord:
    record = repository.start_registration(draft())
    for expected, stage in [
        (RegistrationStage.PERSONAL_INFO, RegistrationStage.MEDICAL_HISTORY),
        (RegistrationStage.MEDICAL_HISTORY, RegistrationStage.ASSESSMENT),
        (RegistrationStage.ASSESSMENT, RegistrationStage.CONTACT_VERIFICATION),
    ]:
        record = repository.advance_stage(record.id, (expected,), stage, {})
    return repository.issue_code(record.id, "123456", NOW + timedelta(minutes=10), NOW)


def completed(repository: PostgresIdentityRepository) -> IdentityRecord:
    record = awaiting_code(repository)
    return repository.complete_verification(record.id, "123456", NOW)


class TestStartRegistration:
    """Tests for start_registration method."""

    def test_inserts_new_record(self, repository: PostgresIdentityRepository) -> None:
        record = repository.start_registration(draft())

        assert record is not None
        assert record.registration_stage is RegistrationStage.PERSONAL_INFO
        assert repository.find_by_email("asha@example.com") == record

    def test_reenters_unfinished_record_keeping_id(
        self, repository: PostgresIdentityRepository
    ) -> None:
        first = repository.start_registration(draft())
        repository.advance_stage(
            first.id, (RegistrationStage.PERSONAL_INFO,), RegistrationStage.MEDICAL_HISTORY, {}
        )

        second = repository.start_registration(draft(first_name="Ashwini"))

        assert second.id == first.id
        assert second.first_name == "Ashwini"
        assert second.registration_stage is RegistrationStage.PERSONAL_INFO

    def test_reenters_by_phone_and_takes_new_email(
        self, repository: PostgresIdentityRepository
    ) -> None:
        first = repository.start_registration(draft())

        second = repository.start_registration(draft(email="asha.v@example.com"))

        assert second.id == first.id
        assert second.email == "asha.v@example.com"

    def test_completed_record_blocks_registration(
        self, repository: PostgresIdentityRepository
    ) -> None:
        completed(repository)

        assert repository.start_registration(draft()) is None

    def test_two_different_matches_block_registration(
        self, repository: PostgresIdentityRepository
    ) -> None:
        repository.start_registration(draft())
        repository.start_registration(draft(email="other@example.com", phone="+919000000001"))

        assert repository.start_registration(draft(phone="+919000000001")) is None

    def test_concurrent_starts_create_one_record(
        self, repository: PostgresIdentityRepository, pool: ConnectionPool
    ) -> None:
        with ThreadPoolExecutor(max_workers=5) as executor:
            results = list(executor.map(lambda _: repository.start_registration(draft()), range(5)))

        assert all(result is not None for result in results)
        with pool.connection() as conn:
            assert conn.execute("SELECT COUNT(*) FROM identities").fetchone()[0] == 1


class TestCreate:
    """Tests for create method."""

    def test_create_then_duplicate_email_returns_false(
        self, repository: PostgresIdentityRepository
    ) -> None:
        organization = IdentityRecord(
            id=str(uuid.uuid4()),
            kind=ActorKind.ORGANIZATION,
            email="admin@hospital.example",
            phone="+919111111111",
            password_hash="$2b$04$hash",
            registration_stage=RegistrationStage.COMPLETED,
        )

        assert repository.create(organization) is True
        duplicate = IdentityRecord(
            id=str(uuid.uuid4()),
            kind=ActorKind.ORGANIZATION,
            email="admin@hospital.example",
            phone="+919222222222",
        )
        assert repository.create(duplicate) is False
        assert repository.find_by_email("admin@hospital.example", ActorKind.ORGANIZATION) is not None
        assert repository.find_by_email("admin@hospital.example", ActorKind.INDIVIDUAL) is None


class TestAdvanceStage:
    """Tests for advance_stage method."""

    def test_advances_from_expected_stage_and_snapshots(
        self, repository: PostgresIdentityRepository
    ) -> None:
        record = repository.start_registration(draft())
        profile = ConstitutionProfile(
            vata=80, pitta=20, kapha=0, primary="Vata", secondary="None", assessed_at=NOW
        )

        updated = repository.advance_stage(
            record.id,
            (RegistrationStage.PERSONAL_INFO,),
            RegistrationStage.MEDICAL_HISTORY,
            {"medical_history": {"allergies": ["dust"]}, "constitution_profile": profile},
            snapshot=("medical-history", {"allergies": "dust"}),
        )

        assert updated.medical_history == {"allergies": ["dust"]}
        assert updated.constitution_profile == profile
        assert updated.staged_payloads["medical-history"] == {"allergies": "dust"}
        assert "personal-info" in updated.staged_payloads

    def test_unexpected_stage_returns_none(
        self, repository: PostgresIdentityRepository
    ) -> None:
        record = repository.start_registration(draft())

        result = repository.advance_stage(
            record.id, (RegistrationStage.ASSESSMENT,), RegistrationStage.CONTACT_VERIFICATION, {}
        )

        assert result is None
        assert repository.get(record.id).registration_stage is RegistrationStage.PERSONAL_INFO

    def test_unknown_column_rejected(self, repository: PostgresIdentityRepository) -> None:
        record = repository.start_registration(draft())

        with pytest.raises(ValueError):
            repository.advance_stage(
                record.id,
                (RegistrationStage.PERSONAL_INFO,),
                RegistrationStage.MEDICAL_HISTORY,
                {"active": True},
            )


class TestVerificationCodes:
    """Tests for issue_code, resend_code, record_code_mismatch and complete_verification."""

    def test_resend_respects_interval(self, repository: PostgresIdentityRepository) -> None:
        record = awaiting_code(repository)
        later = NOW + timedelta(seconds=30)

        result = repository.resend_code(
            record.id, "654321", later + timedelta(minutes=10), later,
            sent_before=later - timedelta(seconds=60), max_sends=5,
        )

        assert result is None

    def test_resend_increments_attempts(self, repository: PostgresIdentityRepository) -> None:
        record = awaiting_code(repository)
        later = NOW + timedelta(seconds=61)

        result = repository.resend_code(
            record.id, "654321", later + timedelta(minutes=10), later,
            sent_before=later - timedelta(seconds=60), max_sends=5,
        )

        assert result.pending_code == "654321"
        assert result.code_attempts == 1
        assert result.last_code_sent_at == later

    def test_resend_stops_at_ceiling(self, repository: PostgresIdentityRepository) -> None:
        record = awaiting_code(repository)
        for _ in range(5):
            repository.record_code_mismatch(record.id)
        later = NOW + timedelta(minutes=5)

        result = repository.resend_code(
            record.id, "654321", later + timedelta(minutes=10), later,
            sent_before=later - timedelta(seconds=60), max_sends=5,
        )

        assert result is None
        assert repository.get(record.id).code_attempts == 5

    def test_concurrent_resends_let_one_through(
        self, repository: PostgresIdentityRepository
    ) -> None:
        record = awaiting_code(repository)
        later = NOW + timedelta(minutes=2)

        def resend(code: str) -> IdentityRecord | None:
            return repository.resend_code(
                record.id, code, later + timedelta(minutes=10), later,
                sent_before=later - timedelta(seconds=60), max_sends=5,
            )

        with ThreadPoolExecutor(max_workers=5) as executor:
            results = list(executor.map(resend, ["111111", "222222", "333333", "444444", "555555"]))

        assert sum(result is not None for result in results) == 1
        assert repository.get(record.id).code_attempts == 1

    def test_complete_verification_clears_artifacts(
        self, repository: PostgresIdentityRepository
    ) -> None:
        record = completed(repository)

        assert record.registration_stage is RegistrationStage.COMPLETED
        assert record.active is True
        assert record.contact_verified is True
        assert record.pending_code is None
        assert record.code_expires_at is None
        assert record.code_attempts == 0
        assert record.staged_payloads == {}

    def test_complete_verification_rejects_wrong_or_expired_code(
        self, repository: PostgresIdentityRepository
    ) -> None:
        record = awaiting_code(repository)

        assert repository.complete_verification(record.id, "000000", NOW) is None
        assert (
            repository.complete_verification(record.id, "123456", NOW + timedelta(minutes=11))
            is None
        )
        assert repository.get(record.id).registration_stage is (
            RegistrationStage.CONTACT_VERIFICATION
        )

    def test_mismatch_outside_verification_returns_none(
        self, repository: PostgresIdentityRepository
    ) -> None:
        record = completed(repository)

        assert repository.record_code_mismatch(record.id) is None


class TestLoginCounters:
    """Tests for register_login_failure and register_login_success."""

    def _fail(self, repository: PostgresIdentityRepository, identity_id: str, now: datetime):
        return repository.register_login_failure(
            identity_id, now, threshold=5, lock_until=now + timedelta(minutes=30)
        )

    def test_fifth_failure_locks(self, repository: PostgresIdentityRepository) -> None:
        record = completed(repository)

        for _ in range(4):
            result = self._fail(repository, record.id, NOW)
            assert result.locked_until is None
        result = self._fail(repository, record.id, NOW)

        assert result.failed_attempts == 5
        assert result.locked_until == NOW + timedelta(minutes=30)

    def test_failure_after_expired_lock_restarts_count(
        self, repository: PostgresIdentityRepository
    ) -> None:
        record = completed(repository)
        for _ in range(5):
            self._fail(repository, record.id, NOW)

        result = self._fail(repository, record.id, NOW + timedelta(minutes=31))

        assert result.failed_attempts == 1
        assert result.locked_until is None

    def test_parallel_failures_are_all_counted(
        self, repository: PostgresIdentityRepository
    ) -> None:
        record = completed(repository)

        with ThreadPoolExecutor(max_workers=8) as executor:
            list(executor.map(lambda _: self._fail(repository, record.id, NOW), range(8)))

        stored = repository.get(record.id)
        assert stored.failed_attempts == 8
        assert stored.locked_until == NOW + timedelta(minutes=30)

    def test_success_resets_counters(self, repository: PostgresIdentityRepository) -> None:
        record = completed(repository)
        self._fail(repository, record.id, NOW)

        result = repository.register_login_success(record.id, NOW)

        assert result.failed_attempts == 0
        assert result.locked_until is None
        assert result.last_login_at == NOW


class TestPasswordLifecycle:
    """Tests for reset tokens, password and profile updates."""

    def test_reset_token_works_once(self, repository: PostgresIdentityRepository) -> None:
        record = completed(repository)
        repository.set_reset_token(record.id, "a" * 64, NOW + timedelta(minutes=15))

        first = repository.consume_reset_token("a" * 64, "$2b$04$newhash", NOW)
        second = repository.consume_reset_token("a" * 64, "$2b$04$otherhash", NOW)

        assert first.password_hash == "$2b$04$newhash"
        assert first.reset_token_hash is None
        assert second is None

    def test_expired_reset_token_rejected(self, repository: PostgresIdentityRepository) -> None:
        record = completed(repository)
        repository.set_reset_token(record.id, "b" * 64, NOW + timedelta(minutes=15))

        assert (
            repository.consume_reset_token("b" * 64, "$2b$04$hash", NOW + timedelta(minutes=16))
            is None
        )

    def test_update_password(self, repository: PostgresIdentityRepository) -> None:
        record = completed(repository)

        assert repository.update_password(record.id, "$2b$04$changed").password_hash == (
            "$2b$04$changed"
        )

    def test_update_profile_to_taken_phone_raises_duplicate(
        self, repository: PostgresIdentityRepository
    ) -> None:
        record = completed(repository)
        repository.start_registration(draft(email="other@example.com", phone="+919000000001"))

        with pytest.raises(DuplicateIdentity):
            repository.update_profile(record.id, {"phone": "+919000000001"})

    def test_update_profile_merges_allowed_columns(
        self, repository: PostgresIdentityRepository
    ) -> None:
        record = completed(repository)

        updated = repository.update_profile(
            record.id, {"first_name": "Ashu", "profile": {"gender": "Female", "city": "Pune"}}
        )

        assert updated.first_name == "Ashu"
        assert updated.profile["city"] == "Pune"
        with pytest.raises(ValueError):
            repository.update_profile(record.id, {"password_hash": "x"})
