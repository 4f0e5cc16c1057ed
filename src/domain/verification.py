"""
One-time code engine - issue, verify and resend contact verification codes.

Codes are 6-digit numbers in [100000, 999999] valid for ten minutes. Code
validity is decoupled from delivery: a code whose transmission failed stays
valid and the caller surfaces a soft warning; the resend path recovers.

Attempt accounting
==================
A single counter (``code_attempts``) tracks both mismatched submissions and
resends:
- verify never locks; callers display ``max(0, 3 - attempts)`` remaining
- resend refuses once the counter reaches 5 (DailyLimitReached)
- resend also refuses within 60 seconds of the last send (TooFrequent)
"""

from __future__ import annotations

import logging
import math
import secrets
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from .exceptions import (
    CodeExpired,
    CodeMismatch,
    DailyLimitReached,
    DeliveryFailure,
    RecordNotFound,
    StageMismatch,
    TooFrequent,
)
from .models import IdentityRecord, IssuedCode, RegistrationStage, utcnow
from .ports import IdentityRepository, VerificationCodeSender

logger = logging.getLogger(__name__)

CODE_MIN = 100000
CODE_MAX = 999999


def generate_code() -> str:
    """Generate a cryptographically random 6-digit code (no leading zero)."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


@dataclass
class VerificationCodeEngine:
    """
    Generates, stores and validates short-lived numeric codes.

    All state changes go through atomic repository updates; throttles and
    expiry are evaluated from stored timestamps against ``clock``.
    """

    repository: IdentityRepository
    sender: VerificationCodeSender
    code_ttl: timedelta = timedelta(minutes=10)
    resend_interval: timedelta = timedelta(seconds=60)
    max_sends: int = 5
    attempts_display_limit: int = 3
    clock: Callable[[], datetime] = field(default=utcnow)

    def issue(self, record: IdentityRecord) -> IssuedCode:
        """
        Issue a fresh code for a record in contact-verification.

        Delivery failure does not roll back issuance.

        Raises:
            StageMismatch: If the record is not awaiting verification
        """
        now = self.clock()
        code = generate_code()
        expires_at = now + self.code_ttl

        stored = self.repository.issue_code(record.id, code, expires_at, now)
        if stored is None:
            raise StageMismatch(
                self._current_stage(record.id), RegistrationStage.CONTACT_VERIFICATION.value
            )

        delivered = self._deliver(stored, code)
        return IssuedCode(code=code, expires_at=expires_at, delivered=delivered, attempts=0)

    def verify(self, record: IdentityRecord, supplied_code: str) -> IdentityRecord:
        """
        Check a supplied code and complete verification on success.

        Raises:
            StageMismatch: If the record is not awaiting verification
            CodeExpired: If the code expiry has passed
            CodeMismatch: If the code differs (attempts incremented)
        """
        self._require_verification_stage(record)
        now = self.clock()

        if record.code_expires_at is None or now > record.code_expires_at:
            raise CodeExpired()

        stored_code = record.pending_code or ""
        if not secrets.compare_digest(stored_code.encode(), supplied_code.encode()):
            updated = self.repository.record_code_mismatch(record.id)
            attempts = updated.code_attempts if updated is not None else record.code_attempts + 1
            raise CodeMismatch(max(0, self.attempts_display_limit - attempts))

        verified = self.repository.complete_verification(record.id, supplied_code, now)
        if verified is None:
            # Code replaced, expired or already consumed between read and write
            current = self.repository.get(record.id)
            if current is None:
                raise RecordNotFound()
            self._require_verification_stage(current)
            raise CodeExpired()

        logger.info("Contact verified for identity %s", record.id)
        return verified

    def resend(self, record: IdentityRecord) -> IssuedCode:
        """
        Regenerate and send a code, subject to spacing and volume throttles.

        Raises:
            StageMismatch: If the record is not awaiting verification
            TooFrequent: If the last code was sent less than a minute ago
            DailyLimitReached: If the send ceiling has been reached
        """
        self._require_verification_stage(record)
        now = self.clock()
        self._check_throttles(record, now)

        code = generate_code()
        expires_at = now + self.code_ttl
        stored = self.repository.resend_code(
            record.id,
            code,
            expires_at,
            now,
            sent_before=now - self.resend_interval,
            max_sends=self.max_sends,
        )
        if stored is None:
            # A concurrent request won the race; report what now blocks us
            current = self.repository.get(record.id)
            if current is None:
                raise RecordNotFound()
            self._require_verification_stage(current)
            self._check_throttles(current, now)
            raise TooFrequent(math.ceil(self.resend_interval.total_seconds()))

        delivered = self._deliver(stored, code)
        return IssuedCode(
            code=code, expires_at=expires_at, delivered=delivered, attempts=stored.code_attempts
        )

    def sends_remaining(self, record: IdentityRecord) -> int:
        return max(0, self.max_sends - record.code_attempts)

    def _check_throttles(self, record: IdentityRecord, now: datetime) -> None:
        if record.last_code_sent_at is not None:
            elapsed = now - record.last_code_sent_at
            if elapsed < self.resend_interval:
                wait = math.ceil((self.resend_interval - elapsed).total_seconds())
                raise TooFrequent(max(1, wait))

        if record.code_attempts >= self.max_sends:
            raise DailyLimitReached()

    def _require_verification_stage(self, record: IdentityRecord) -> None:
        if record.registration_stage is not RegistrationStage.CONTACT_VERIFICATION:
            raise StageMismatch(
                record.registration_stage.value, RegistrationStage.CONTACT_VERIFICATION.value
            )

    def _current_stage(self, identity_id: str) -> str:
        current = self.repository.get(identity_id)
        if current is None:
            raise RecordNotFound()
        return current.registration_stage.value

    def _deliver(self, record: IdentityRecord, code: str) -> bool:
        context: dict[str, Any] = {"first_name": record.first_name}
        try:
            outcome = self.sender.send_verification_code(record.phone, code, context)
        except DeliveryFailure as exc:
            logger.warning("Verification code delivery failed for %s: %s", record.id, exc)
            return False
        if not outcome.delivered:
            logger.warning(
                "Verification code not delivered for %s: %s", record.id, outcome.error
            )
        return outcome.delivered
