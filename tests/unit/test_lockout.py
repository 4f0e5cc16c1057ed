"""
Unit tests for LockoutGuard.

Tests verify:
- Five consecutive failures lock for thirty minutes
- Remaining minutes round up
- Counter restart after an expired lock, reset on success
"""

from src.adapters.repository import InMemoryIdentityRepository
from src.domain.lockout import LockoutGuard
from src.domain.models import IdentityRecord
from tests.factories import FrozenClock


def fail(guard: LockoutGuard, repository: InMemoryIdentityRepository, identity_id: str, times: int) -> IdentityRecord:
    record = repository.get(identity_id)
    for _ in range(times):
        record = guard.record_failure(record)
    return record


class TestLockout:
    """Tests for failure counting and lock windows."""

    def test_four_failures_do_not_lock(
        self,
        registered_patient: IdentityRecord,
        lockout: LockoutGuard,
        repository: InMemoryIdentityRepository,
    ) -> None:
        record = fail(lockout, repository, registered_patient.id, 4)
        assert record.failed_attempts == 4
        assert record.locked_until is None
        assert lockout.check_locked(record) is False

    def test_fifth_failure_locks_for_thirty_minutes(
        self,
        registered_patient: IdentityRecord,
        lockout: LockoutGuard,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        """The fifth consecutive failure sets locked_until to now + 30 minutes."""
        record = fail(lockout, repository, registered_patient.id, 5)
        assert record.failed_attempts == 5
        assert (record.locked_until - clock()).total_seconds() == 1800
        assert lockout.check_locked(record) is True
        assert lockout.remaining_lock_minutes(record) == 30

    def test_remaining_minutes_round_up(
        self,
        registered_patient: IdentityRecord,
        lockout: LockoutGuard,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        """Thirty seconds left still reports one minute."""
        record = fail(lockout, repository, registered_patient.id, 5)
        clock.advance(minutes=29, seconds=30)
        assert lockout.remaining_lock_minutes(record) == 1

    def test_lock_expires(
        self,
        registered_patient: IdentityRecord,
        lockout: LockoutGuard,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        record = fail(lockout, repository, registered_patient.id, 5)
        clock.advance(minutes=30)
        assert lockout.check_locked(record) is False
        assert lockout.remaining_lock_minutes(record) == 0

    def test_failures_during_lock_do_not_extend_it(
        self,
        registered_patient: IdentityRecord,
        lockout: LockoutGuard,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        record = fail(lockout, repository, registered_patient.id, 5)
        locked_until = record.locked_until
        clock.advance(minutes=5)
        record = fail(lockout, repository, registered_patient.id, 2)
        assert record.locked_until == locked_until

    def test_failure_after_expired_lock_restarts_count(
        self,
        registered_patient: IdentityRecord,
        lockout: LockoutGuard,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        """The first failure after a lock lapses counts as attempt one."""
        fail(lockout, repository, registered_patient.id, 5)
        clock.advance(minutes=31)
        record = fail(lockout, repository, registered_patient.id, 1)
        assert record.failed_attempts == 1
        assert record.locked_until is None

    def test_success_clears_counter(
        self,
        registered_patient: IdentityRecord,
        lockout: LockoutGuard,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        fail(lockout, repository, registered_patient.id, 3)
        record = lockout.record_success(repository.get(registered_patient.id))
        assert record.failed_attempts == 0
        assert record.locked_until is None
        assert record.last_login_at == clock()
