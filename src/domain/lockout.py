"""
Lockout guard - failed-login counters and temporary lock windows.

A record is locked iff ``locked_until`` is set and in the future. The fifth
consecutive failure locks the account for thirty minutes; the first failure
after a lock expires starts counting again from one.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from .models import IdentityRecord, utcnow
from .ports import IdentityRepository

logger = logging.getLogger(__name__)


@dataclass
class LockoutGuard:
    """Tracks failed authentication per identity."""

    repository: IdentityRepository
    max_attempts: int = 5
    lock_duration: timedelta = timedelta(minutes=30)
    clock: Callable[[], datetime] = field(default=utcnow)

    def check_locked(self, record: IdentityRecord) -> bool:
        return record.locked_until is not None and record.locked_until > self.clock()

    def remaining_lock_minutes(self, record: IdentityRecord) -> int:
        """Whole minutes (rounded up) until the lock lifts; 0 when unlocked."""
        if not self.check_locked(record):
            return 0
        remaining = record.locked_until - self.clock()
        return math.ceil(remaining.total_seconds() / 60)

    def record_failure(self, record: IdentityRecord) -> IdentityRecord:
        now = self.clock()
        updated = self.repository.register_login_failure(
            record.id, now, self.max_attempts, now + self.lock_duration
        )
        if updated is None:
            return record
        if updated.locked_until is not None and updated.locked_until > now and not self.check_locked(record):
            logger.warning(
                "Identity %s locked until %s after %d failed logins",
                record.id,
                updated.locked_until.isoformat(),
                updated.failed_attempts,
            )
        return updated

    def record_success(self, record: IdentityRecord) -> IdentityRecord:
        updated = self.repository.register_login_success(record.id, self.clock())
        return updated if updated is not None else record
