"""
Registration domain service - progressive registration state machine.

Individuals register through ordered stages. The stage stored on the record
names the last stage reached; a submission for stage S is accepted when the
stored stage is S's predecessor (advance) or S itself (re-submission, which
overwrites that stage's data).

Stage Pipeline (forward-only)
=============================

    personal-info      creates the record, or re-enters a non-completed one
    medical-history    stores the canonical medical payload
    assessment         scores the questionnaire into a constitution profile
    credential-setup   commits the password hash, moves to contact-verification
                       and issues a one-time code
    contact-verification -> completed   via verify_code()

Invalid Transitions (never allowed):
    skipping ahead        e.g. assessment while at personal-info
    going back            e.g. medical-history while at assessment
    completed -> any      personal-info for a completed identity is a duplicate

Every write is an atomic conditional update keyed by identity id and the
expected stage, so concurrent submissions cannot interleave stages.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .constitution import score
from .exceptions import DuplicateIdentity, RecordNotFound, StageMismatch, ValidationFailed
from .models import (
    STAGE_PROGRESS,
    ActorKind,
    AuthenticatedSession,
    ConstitutionProfile,
    IdentityRecord,
    IssuedCode,
    RegistrationStage,
    StageResult,
    clean_value,
    normalize_email,
    normalize_phone,
    utcnow,
)
from .notifications import notify
from .passwords import hash_password
from .ports import IdentityRepository, NotificationSender
from .tokens import SessionTokenManager
from .verification import VerificationCodeEngine

logger = logging.getLogger(__name__)

# Personal-info keys stored in dedicated columns rather than the profile blob
_CORE_FIELDS = {"first_name", "last_name", "email", "phone"}


@dataclass(frozen=True)
class IdentityKey:
    """Identity-matching fields: a record matches on email or phone."""

    email: str | None = None
    phone: str | None = None

    def normalized(self) -> IdentityKey:
        return IdentityKey(
            email=normalize_email(self.email) if self.email else None,
            phone=normalize_phone(self.phone) if self.phone else None,
        )


@dataclass(frozen=True)
class ResendResult:
    record: IdentityRecord
    issued: IssuedCode
    sends_remaining: int


@dataclass
class RegistrationService:
    """
    Domain service for progressive registration and contact verification.

    Holds only injected collaborators: the store, the code engine, the
    session manager and the notification capability.
    """

    repository: IdentityRepository
    code_engine: VerificationCodeEngine
    sessions: SessionTokenManager
    notifier: NotificationSender
    bcrypt_cost: int = 12
    clock: Callable[[], datetime] = field(default=utcnow)

    def submit_stage(
        self,
        stage: RegistrationStage | str,
        identity_key: IdentityKey,
        payload: Mapping[str, Any],
        raw_payload: Mapping[str, Any] | None = None,
    ) -> StageResult:
        """
        Validate the stage transition, merge the payload and persist it.

        Args:
            stage: Stage being submitted
            identity_key: Email and/or phone locating the record
            payload: Canonical, JSON-compatible stage payload
            raw_payload: Submission as received, kept for audit (defaults
                to ``payload``)

        Raises:
            DuplicateIdentity: personal-info for a completed identity
            RecordNotFound: Later stage without a matching record
            StageMismatch: Stage is out of order
            ValidationFailed: Stage cannot be submitted or payload unusable
        """
        stage = RegistrationStage(stage)
        snapshot = dict(raw_payload if raw_payload is not None else payload)

        if stage is RegistrationStage.PERSONAL_INFO:
            return self._start(payload, snapshot)

        handler = self._stage_handlers().get(stage)
        if handler is None:
            raise ValidationFailed(f"Stage {stage.value} cannot be submitted directly")

        record = self._locate(identity_key)
        accepted = self._accepted_stages(stage)
        if record.registration_stage not in accepted:
            raise StageMismatch(record.registration_stage.value, stage.value)

        return handler(record, stage, accepted, payload, snapshot)

    def submit_personal_info(self, payload: Mapping[str, Any]) -> StageResult:
        key = IdentityKey(email=payload.get("email"), phone=payload.get("phone"))
        return self.submit_stage(RegistrationStage.PERSONAL_INFO, key, payload)

    def submit_medical_history(self, email: str, payload: Mapping[str, Any]) -> StageResult:
        return self.submit_stage(RegistrationStage.MEDICAL_HISTORY, IdentityKey(email=email), payload)

    def submit_assessment(self, email: str, questionnaire: list[dict[str, Any]]) -> StageResult:
        return self.submit_stage(
            RegistrationStage.ASSESSMENT, IdentityKey(email=email), {"questionnaire": questionnaire}
        )

    def submit_credentials(self, email: str, password: str) -> StageResult:
        return self.submit_stage(
            RegistrationStage.CREDENTIAL_SETUP,
            IdentityKey(email=email),
            {"password": password},
            raw_payload={},
        )

    def verify_code(self, email: str, code: str) -> AuthenticatedSession:
        """
        Complete contact verification and open a session.

        Welcome notifications are best effort.

        Raises:
            RecordNotFound: Unknown email
            StageMismatch: Record is not awaiting verification
            CodeExpired: Code expiry has passed
            CodeMismatch: Wrong code
        """
        record = self._locate(IdentityKey(email=email))
        verified = self.code_engine.verify(record, code)
        session = self.sessions.issue(verified.id, verified.role)

        context = {"first_name": verified.first_name}
        notify(self.notifier, verified.email, "welcome-email", context)
        notify(self.notifier, verified.phone, "welcome-sms", context)
        return AuthenticatedSession(record=verified, session=session)

    def resend_code(self, email: str) -> ResendResult:
        """
        Send a replacement verification code.

        Raises:
            RecordNotFound: Unknown email
            StageMismatch: Record is not awaiting verification
            TooFrequent: Less than a minute since the last send
            DailyLimitReached: Send ceiling reached
        """
        record = self._locate(IdentityKey(email=email))
        issued = self.code_engine.resend(record)
        refreshed = self.repository.get(record.id) or record
        return ResendResult(
            record=refreshed,
            issued=issued,
            sends_remaining=self.code_engine.sends_remaining(refreshed),
        )

    # Stage handlers

    def _stage_handlers(self) -> dict[RegistrationStage, Callable[..., StageResult]]:
        return {
            RegistrationStage.MEDICAL_HISTORY: self._submit_medical_history,
            RegistrationStage.ASSESSMENT: self._submit_assessment,
            RegistrationStage.CREDENTIAL_SETUP: self._submit_credentials,
        }

    def _start(self, payload: Mapping[str, Any], snapshot: dict[str, Any]) -> StageResult:
        email = payload.get("email")
        phone = payload.get("phone")
        if not email or not phone:
            raise ValidationFailed("Email and phone number are required", ["email", "phone"])

        profile = clean_value({k: v for k, v in payload.items() if k not in _CORE_FIELDS}) or {}
        draft = IdentityRecord(
            id=str(uuid.uuid4()),
            kind=ActorKind.INDIVIDUAL,
            email=normalize_email(email),
            phone=normalize_phone(phone),
            first_name=(payload.get("first_name") or "").strip(),
            last_name=(payload.get("last_name") or "").strip(),
            profile=profile,
            registration_stage=RegistrationStage.PERSONAL_INFO,
            staged_payloads={RegistrationStage.PERSONAL_INFO.value: snapshot},
        )

        stored = self.repository.start_registration(draft)
        if stored is None:
            raise DuplicateIdentity()

        if stored.id != draft.id:
            logger.info("Re-entered incomplete registration %s", stored.id)
        return self._result(stored, RegistrationStage.PERSONAL_INFO)

    def _submit_medical_history(
        self,
        record: IdentityRecord,
        stage: RegistrationStage,
        accepted: tuple[RegistrationStage, ...],
        payload: Mapping[str, Any],
        snapshot: dict[str, Any],
    ) -> StageResult:
        history = {k: v for k, v in payload.items() if k not in ("email", "phone")}
        stored = self._advance(
            record, accepted, stage, {"medical_history": clean_value(history) or {}}, stage, snapshot
        )
        return self._result(stored, stage)

    def _submit_assessment(
        self,
        record: IdentityRecord,
        stage: RegistrationStage,
        accepted: tuple[RegistrationStage, ...],
        payload: Mapping[str, Any],
        snapshot: dict[str, Any],
    ) -> StageResult:
        questionnaire = list(payload.get("questionnaire") or [])
        if not questionnaire:
            raise ValidationFailed("Questionnaire responses are required", ["questionnaire"])

        scores = score(questionnaire)
        profile = ConstitutionProfile(
            vata=scores.vata,
            pitta=scores.pitta,
            kapha=scores.kapha,
            primary=scores.primary,
            secondary=scores.secondary,
            assessed_at=self.clock(),
            questionnaire=questionnaire,
        )
        stored = self._advance(
            record, accepted, stage, {"constitution_profile": profile}, stage, snapshot
        )
        return self._result(stored, stage)

    def _submit_credentials(
        self,
        record: IdentityRecord,
        stage: RegistrationStage,
        accepted: tuple[RegistrationStage, ...],
        payload: Mapping[str, Any],
        snapshot: dict[str, Any],
    ) -> StageResult:
        password = payload.get("password")
        if not password:
            raise ValidationFailed("Password is required", ["password"])

        changes = {"password_hash": hash_password(password, rounds=self.bcrypt_cost)}
        stored = self._advance(
            record,
            accepted,
            RegistrationStage.CONTACT_VERIFICATION,
            changes,
            stage,
            snapshot,
        )

        issued = self.code_engine.issue(stored)
        refreshed = self.repository.get(stored.id) or stored
        return self._result(refreshed, stage, delivery_failed=not issued.delivered)

    # Helpers

    def _advance(
        self,
        record: IdentityRecord,
        accepted: tuple[RegistrationStage, ...],
        new_stage: RegistrationStage,
        changes: dict[str, Any],
        submitted: RegistrationStage,
        snapshot: dict[str, Any],
    ) -> IdentityRecord:
        stored = self.repository.advance_stage(
            record.id, accepted, new_stage, changes, snapshot=(submitted.value, snapshot)
        )
        if stored is None:
            current = self.repository.get(record.id)
            if current is None:
                raise RecordNotFound()
            raise StageMismatch(current.registration_stage.value, submitted.value)
        return stored

    @staticmethod
    def _accepted_stages(stage: RegistrationStage) -> tuple[RegistrationStage, ...]:
        if stage is RegistrationStage.CREDENTIAL_SETUP:
            # Never stored; re-submission would bypass the resend throttles
            return (RegistrationStage.ASSESSMENT,)
        return (stage.predecessor(), stage)

    def _locate(self, identity_key: IdentityKey) -> IdentityRecord:
        key = identity_key.normalized()
        if not key.email and not key.phone:
            raise ValidationFailed("Email or phone number is required", ["email"])

        record = self.repository.find_by_contact(key.email, key.phone)
        if record is None or record.kind is not ActorKind.INDIVIDUAL:
            raise RecordNotFound()
        return record

    @staticmethod
    def _result(
        record: IdentityRecord, stage: RegistrationStage, delivery_failed: bool = False
    ) -> StageResult:
        return StageResult(
            record=record,
            current_stage=stage,
            next_stage=stage.successor(),
            progress=STAGE_PROGRESS[stage],
            delivery_failed=delivery_failed,
        )
