"""
Unit tests for VerificationCodeEngine.

Tests verify:
- Code issuance, storage and delivery decoupling
- Expiry boundaries (ten-minute validity)
- Mismatch accounting and the displayed attempts remaining
- Resend spacing and send ceiling throttles
"""

import pytest

from src.adapters.repository import InMemoryIdentityRepository
from src.domain.exceptions import (
    CodeExpired,
    CodeMismatch,
    DailyLimitReached,
    StageMismatch,
    TooFrequent,
)
from src.domain.models import IdentityRecord, RegistrationStage
from src.domain.verification import CODE_MAX, CODE_MIN, VerificationCodeEngine, generate_code
from tests.factories import FrozenClock, RecordingCodeSender


def wrong_code(code: str) -> str:
    return "100000" if code != "100000" else "100001"


class TestGenerateCode:
    """Tests for generate_code()."""

    def test_codes_are_six_digits_without_leading_zero(self) -> None:
        """Every code is within [100000, 999999]."""
        for _ in range(200):
            code = generate_code()
            assert len(code) == 6
            assert CODE_MIN <= int(code) <= CODE_MAX


class TestIssue:
    """Tests for issuing a code after credential setup."""

    def test_issue_stores_code_and_sends_it(
        self,
        awaiting_code: IdentityRecord,
        repository: InMemoryIdentityRepository,
        code_sender: RecordingCodeSender,
        clock: FrozenClock,
    ) -> None:
        """Credential setup stores the code with a ten-minute expiry and sends it."""
        stored = repository.get(awaiting_code.id)
        destination, code, context = code_sender.sent[-1]

        assert stored.pending_code == code
        assert stored.code_attempts == 0
        assert stored.last_code_sent_at == clock()
        assert (stored.code_expires_at - clock()).total_seconds() == 600
        assert destination == "+919876543210"
        assert context["first_name"] == "Asha"

    def test_issue_survives_delivery_failure(
        self,
        awaiting_code: IdentityRecord,
        code_engine: VerificationCodeEngine,
        code_sender: RecordingCodeSender,
        repository: InMemoryIdentityRepository,
    ) -> None:
        """A failed send leaves the freshly issued code valid."""
        code_sender.fail = True
        issued = code_engine.issue(repository.get(awaiting_code.id))

        assert issued.delivered is False
        assert repository.get(awaiting_code.id).pending_code == issued.code

    def test_issue_requires_verification_stage(
        self,
        registered_patient: IdentityRecord,
        code_engine: VerificationCodeEngine,
    ) -> None:
        """Completed records cannot receive a new code."""
        with pytest.raises(StageMismatch):
            code_engine.issue(registered_patient)


class TestVerify:
    """Tests for code verification."""

    def test_correct_code_just_before_expiry_completes(
        self,
        awaiting_code: IdentityRecord,
        code_engine: VerificationCodeEngine,
        code_sender: RecordingCodeSender,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        """Verification at 9:59 succeeds and clears the code artifacts."""
        clock.advance(minutes=9, seconds=59)
        verified = code_engine.verify(repository.get(awaiting_code.id), code_sender.last_code)

        assert verified.registration_stage is RegistrationStage.COMPLETED
        assert verified.contact_verified is True
        assert verified.active is True
        assert verified.pending_code is None
        assert verified.code_expires_at is None
        assert verified.staged_payloads == {}

    def test_correct_code_after_expiry_is_rejected(
        self,
        awaiting_code: IdentityRecord,
        code_engine: VerificationCodeEngine,
        code_sender: RecordingCodeSender,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        """Verification at 10:01 raises CodeExpired and changes nothing."""
        clock.advance(minutes=10, seconds=1)
        with pytest.raises(CodeExpired):
            code_engine.verify(repository.get(awaiting_code.id), code_sender.last_code)

        stored = repository.get(awaiting_code.id)
        assert stored.registration_stage is RegistrationStage.CONTACT_VERIFICATION
        assert stored.contact_verified is False

    def test_mismatch_reports_remaining_attempts(
        self,
        awaiting_code: IdentityRecord,
        code_engine: VerificationCodeEngine,
        code_sender: RecordingCodeSender,
        repository: InMemoryIdentityRepository,
    ) -> None:
        """Remaining attempts count down from 2 and floor at 0."""
        bad = wrong_code(code_sender.last_code)
        remaining = []
        for _ in range(4):
            with pytest.raises(CodeMismatch) as exc_info:
                code_engine.verify(repository.get(awaiting_code.id), bad)
            remaining.append(exc_info.value.attempts_remaining)

        assert remaining == [2, 1, 0, 0]
        assert repository.get(awaiting_code.id).code_attempts == 4

    def test_mismatches_never_lock_verification(
        self,
        awaiting_code: IdentityRecord,
        code_engine: VerificationCodeEngine,
        code_sender: RecordingCodeSender,
        repository: InMemoryIdentityRepository,
    ) -> None:
        """The correct code still verifies after repeated mismatches."""
        code = code_sender.last_code
        for _ in range(6):
            with pytest.raises(CodeMismatch):
                code_engine.verify(repository.get(awaiting_code.id), wrong_code(code))

        verified = code_engine.verify(repository.get(awaiting_code.id), code)
        assert verified.registration_stage is RegistrationStage.COMPLETED

    def test_verify_outside_verification_stage(
        self,
        registered_patient: IdentityRecord,
        code_engine: VerificationCodeEngine,
    ) -> None:
        """A completed record answers StageMismatch."""
        with pytest.raises(StageMismatch) as exc_info:
            code_engine.verify(registered_patient, "123456")
        assert exc_info.value.current_stage == "completed"


class TestResend:
    """Tests for resend throttles."""

    def test_resend_within_interval_is_too_frequent(
        self,
        awaiting_code: IdentityRecord,
        code_engine: VerificationCodeEngine,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        """Thirty seconds after a send, the caller must wait thirty more."""
        clock.advance(seconds=30)
        with pytest.raises(TooFrequent) as exc_info:
            code_engine.resend(repository.get(awaiting_code.id))
        assert exc_info.value.retry_after_seconds == 30
        assert exc_info.value.context == {"wait_time": 30}

    def test_resend_after_interval_replaces_code(
        self,
        awaiting_code: IdentityRecord,
        code_engine: VerificationCodeEngine,
        code_sender: RecordingCodeSender,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        """A resend after a minute issues a new code and counts one send."""
        clock.advance(seconds=61)
        issued = code_engine.resend(repository.get(awaiting_code.id))

        stored = repository.get(awaiting_code.id)
        assert stored.pending_code == issued.code == code_sender.last_code
        assert stored.code_attempts == 1
        assert stored.code_expires_at == clock() + code_engine.code_ttl
        assert code_engine.sends_remaining(stored) == 4

    def test_send_ceiling(
        self,
        awaiting_code: IdentityRecord,
        code_engine: VerificationCodeEngine,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        """Five resends are allowed; the sixth reports the daily limit."""
        for _ in range(5):
            clock.advance(seconds=61)
            code_engine.resend(repository.get(awaiting_code.id))

        clock.advance(seconds=61)
        with pytest.raises(DailyLimitReached):
            code_engine.resend(repository.get(awaiting_code.id))

    def test_mismatches_consume_send_budget(
        self,
        awaiting_code: IdentityRecord,
        code_engine: VerificationCodeEngine,
        code_sender: RecordingCodeSender,
        repository: InMemoryIdentityRepository,
        clock: FrozenClock,
    ) -> None:
        """Mismatched submissions and resends share one counter."""
        bad = wrong_code(code_sender.last_code)
        for _ in range(5):
            with pytest.raises(CodeMismatch):
                code_engine.verify(repository.get(awaiting_code.id), bad)

        clock.advance(seconds=61)
        with pytest.raises(DailyLimitReached):
            code_engine.resend(repository.get(awaiting_code.id))

    def test_resend_outside_verification_stage(
        self,
        registered_patient: IdentityRecord,
        code_engine: VerificationCodeEngine,
    ) -> None:
        with pytest.raises(StageMismatch):
            code_engine.resend(registered_patient)
