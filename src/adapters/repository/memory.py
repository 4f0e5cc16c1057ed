"""
In-memory repository adapter - Implements IdentityRepository protocol.

Each conditional update runs under a single lock, giving the same
check-and-write atomicity the PostgreSQL adapter gets from
``UPDATE ... WHERE ... RETURNING``. Records are deep-copied on the way in and
out so callers never share mutable state with the store.

Used for local development (REPOSITORY_BACKEND=memory) and tests.
"""

import copy
import secrets
import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from src.domain.exceptions import DuplicateIdentity
from src.domain.models import (
    ActorKind,
    IdentityRecord,
    RegistrationStage,
    utcnow,
)

# Columns update_profile may touch
_PROFILE_COLUMNS = {"first_name", "last_name", "phone", "contact_verified", "profile", "medical_history"}


class InMemoryIdentityRepository:
    """
    Implements IdentityRepository protocol with a dict and a lock.

    Uses structural subtyping - no explicit inheritance from Protocol.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._records: dict[str, IdentityRecord] = {}
        self._lock = threading.Lock()
        self._clock = clock

    # Reads

    def get(self, identity_id: str) -> IdentityRecord | None:
        with self._lock:
            return self._copy(self._records.get(identity_id))

    def find_by_email(self, email: str, kind: ActorKind | None = None) -> IdentityRecord | None:
        with self._lock:
            for record in self._records.values():
                if record.email == email and (kind is None or record.kind is kind):
                    return self._copy(record)
            return None

    def find_by_contact(self, email: str | None, phone: str | None) -> IdentityRecord | None:
        with self._lock:
            matches = self._matching(email, phone)
            return self._copy(matches[0]) if matches else None

    # Registration

    def start_registration(self, draft: IdentityRecord) -> IdentityRecord | None:
        with self._lock:
            matches = self._matching(draft.email, draft.phone)
            if not matches:
                self._records[draft.id] = copy.deepcopy(draft)
                return self._copy(draft)

            if len(matches) > 1 or matches[0].registration_stage is RegistrationStage.COMPLETED:
                return None

            record = matches[0]
            record.email = draft.email
            record.phone = draft.phone
            record.first_name = draft.first_name
            record.last_name = draft.last_name
            record.profile = copy.deepcopy(draft.profile)
            record.registration_stage = RegistrationStage.PERSONAL_INFO
            record.staged_payloads.update(copy.deepcopy(draft.staged_payloads))
            self._clear_code(record)
            self._touch(record)
            return self._copy(record)

    def create(self, record: IdentityRecord) -> bool:
        with self._lock:
            if self._matching(record.email, record.phone):
                return False
            self._records[record.id] = copy.deepcopy(record)
            return True

    def advance_stage(
        self,
        identity_id: str,
        expected: tuple[RegistrationStage, ...],
        new_stage: RegistrationStage,
        changes: dict[str, Any],
        snapshot: tuple[str, dict[str, Any]] | None = None,
    ) -> IdentityRecord | None:
        with self._lock:
            record = self._records.get(identity_id)
            if record is None or record.registration_stage not in expected:
                return None

            for name, value in changes.items():
                setattr(record, name, copy.deepcopy(value))
            if snapshot is not None:
                key, payload = snapshot
                record.staged_payloads[key] = copy.deepcopy(payload)
            record.registration_stage = new_stage
            self._touch(record)
            return self._copy(record)

    # One-time codes

    def issue_code(
        self, identity_id: str, code: str, expires_at: datetime, now: datetime
    ) -> IdentityRecord | None:
        with self._lock:
            record = self._awaiting_code(identity_id)
            if record is None:
                return None
            record.pending_code = code
            record.code_expires_at = expires_at
            record.code_attempts = 0
            record.last_code_sent_at = now
            self._touch(record)
            return self._copy(record)

    def resend_code(
        self,
        identity_id: str,
        code: str,
        expires_at: datetime,
        now: datetime,
        sent_before: datetime,
        max_sends: int,
    ) -> IdentityRecord | None:
        with self._lock:
            record = self._awaiting_code(identity_id)
            if record is None:
                return None
            if record.last_code_sent_at is not None and record.last_code_sent_at > sent_before:
                return None
            if record.code_attempts >= max_sends:
                return None
            record.pending_code = code
            record.code_expires_at = expires_at
            record.code_attempts += 1
            record.last_code_sent_at = now
            self._touch(record)
            return self._copy(record)

    def record_code_mismatch(self, identity_id: str) -> IdentityRecord | None:
        with self._lock:
            record = self._awaiting_code(identity_id)
            if record is None:
                return None
            record.code_attempts += 1
            self._touch(record)
            return self._copy(record)

    def complete_verification(
        self, identity_id: str, code: str, now: datetime
    ) -> IdentityRecord | None:
        with self._lock:
            record = self._awaiting_code(identity_id)
            if record is None or record.pending_code is None or record.code_expires_at is None:
                return None
            if not secrets.compare_digest(record.pending_code.encode(), code.encode()):
                return None
            if now > record.code_expires_at:
                return None

            self._clear_code(record)
            record.staged_payloads = {}
            record.contact_verified = True
            record.active = True
            record.registration_stage = RegistrationStage.COMPLETED
            self._touch(record)
            return self._copy(record)

    # Lockout

    def register_login_failure(
        self, identity_id: str, now: datetime, threshold: int, lock_until: datetime
    ) -> IdentityRecord | None:
        with self._lock:
            record = self._records.get(identity_id)
            if record is None:
                return None

            if record.locked_until is not None and record.locked_until <= now:
                record.locked_until = None
                record.failed_attempts = 1
            else:
                record.failed_attempts += 1
                if record.failed_attempts >= threshold and record.locked_until is None:
                    record.locked_until = lock_until
            self._touch(record)
            return self._copy(record)

    def register_login_success(self, identity_id: str, now: datetime) -> IdentityRecord | None:
        with self._lock:
            record = self._records.get(identity_id)
            if record is None:
                return None
            record.failed_attempts = 0
            record.locked_until = None
            record.last_login_at = now
            self._touch(record)
            return self._copy(record)

    # Password lifecycle

    def set_reset_token(
        self, identity_id: str, token_hash: str | None, expires_at: datetime | None
    ) -> None:
        with self._lock:
            record = self._records.get(identity_id)
            if record is None:
                return
            record.reset_token_hash = token_hash
            record.reset_expires_at = expires_at
            self._touch(record)

    def consume_reset_token(
        self, token_hash: str, password_hash: str, now: datetime
    ) -> IdentityRecord | None:
        with self._lock:
            for record in self._records.values():
                if record.reset_token_hash is None or record.reset_expires_at is None:
                    continue
                if not secrets.compare_digest(record.reset_token_hash, token_hash):
                    continue
                if record.reset_expires_at <= now:
                    return None
                record.password_hash = password_hash
                record.reset_token_hash = None
                record.reset_expires_at = None
                self._touch(record)
                return self._copy(record)
            return None

    def update_password(self, identity_id: str, password_hash: str) -> IdentityRecord | None:
        with self._lock:
            record = self._records.get(identity_id)
            if record is None:
                return None
            record.password_hash = password_hash
            self._touch(record)
            return self._copy(record)

    def update_profile(self, identity_id: str, changes: dict[str, Any]) -> IdentityRecord | None:
        unknown = set(changes) - _PROFILE_COLUMNS
        if unknown:
            raise ValueError(f"Unsupported profile columns: {sorted(unknown)}")

        with self._lock:
            record = self._records.get(identity_id)
            if record is None:
                return None

            phone = changes.get("phone")
            if phone is not None and any(
                other.phone == phone for other in self._records.values() if other.id != identity_id
            ):
                raise DuplicateIdentity("Phone number already registered")

            for name, value in changes.items():
                setattr(record, name, copy.deepcopy(value))
            self._touch(record)
            return self._copy(record)

    # Helpers

    def _matching(self, email: str | None, phone: str | None) -> list[IdentityRecord]:
        # Email match first, then phone match
        by_email = [r for r in self._records.values() if email and r.email == email]
        seen = {r.id for r in by_email}
        by_phone = [
            r for r in self._records.values() if phone and r.phone == phone and r.id not in seen
        ]
        return by_email + by_phone

    def _awaiting_code(self, identity_id: str) -> IdentityRecord | None:
        record = self._records.get(identity_id)
        if record is None or record.registration_stage is not RegistrationStage.CONTACT_VERIFICATION:
            return None
        return record

    def _touch(self, record: IdentityRecord) -> None:
        record.updated_at = self._clock()

    @staticmethod
    def _clear_code(record: IdentityRecord) -> None:
        record.pending_code = None
        record.code_expires_at = None
        record.code_attempts = 0
        record.last_code_sent_at = None

    @staticmethod
    def _copy(record: IdentityRecord | None) -> IdentityRecord | None:
        return copy.deepcopy(record) if record is not None else None
