"""
Authentication domain service - login, session refresh, password lifecycle
and self-service profile management.

Login decision order
====================
1. Unknown identity          -> InvalidCredentials (after a dummy bcrypt check)
2. Lock window active        -> AccountLocked with remaining minutes
3. Account deactivated       -> AccountInactive
4. Registration unfinished   -> RegistrationIncomplete, only when the password
                                matches; otherwise the generic failure
5. Wrong password            -> failure counted, InvalidCredentials
6. Contact unverified        -> VerificationRequired (individuals)
7. Success                   -> counters cleared, session pair issued
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from .exceptions import (
    AccountInactive,
    AccountLocked,
    DuplicateIdentity,
    InvalidCredentials,
    InvalidResetToken,
    RecordNotFound,
    RegistrationIncomplete,
    ValidationFailed,
    VerificationRequired,
)
from .lockout import LockoutGuard
from .models import (
    ActorKind,
    AuthenticatedSession,
    IdentityRecord,
    RegistrationStage,
    SessionPair,
    clean_value,
    normalize_email,
    normalize_phone,
    utcnow,
)
from .notifications import notify
from .passwords import hash_password, verify_password
from .ports import IdentityRepository, NotificationSender
from .tokens import SessionTokenManager

logger = logging.getLogger(__name__)

# Self-service editable fields per actor kind
INDIVIDUAL_PROFILE_FIELDS = frozenset(
    {
        "date_of_birth",
        "gender",
        "blood_group",
        "marital_status",
        "occupation",
        "address",
        "emergency_contact",
    }
)
INDIVIDUAL_MEDICAL_FIELDS = frozenset(
    {
        "current_health_concerns",
        "chronic_conditions",
        "current_medications",
        "allergies",
        "previous_surgeries",
        "recent_hospitalizations",
        "family_medical_history",
        "lifestyle",
        "ayurvedic_experience",
    }
)
ORGANIZATION_PROFILE_FIELDS = frozenset(
    {
        "organization_name",
        "legal_name",
        "website",
        "address",
        "registration_number",
        "gstin",
        "contact_person",
    }
)
# Fields stored in dedicated columns
_NAME_FIELDS = {
    ActorKind.INDIVIDUAL: ("first_name", "last_name"),
    ActorKind.ORGANIZATION: ("admin_first_name", "admin_last_name"),
}


def hash_reset_token(token: str) -> str:
    """Digest under which a reset token is stored."""
    return hashlib.sha256(token.encode()).hexdigest()


@dataclass
class AuthenticationService:
    """Credential checks and account self-service for both actor kinds."""

    repository: IdentityRepository
    sessions: SessionTokenManager
    lockout: LockoutGuard
    notifier: NotificationSender
    frontend_url: str = "http://localhost:5173"
    bcrypt_cost: int = 12
    reset_ttl: timedelta = timedelta(minutes=15)
    clock: Callable[[], datetime] = field(default=utcnow)

    def login(
        self, email: str, password: str, kind: ActorKind = ActorKind.INDIVIDUAL
    ) -> AuthenticatedSession:
        """
        Authenticate by email and password.

        Raises:
            InvalidCredentials: Unknown email or wrong password
            AccountLocked: Lock window active
            RegistrationIncomplete: Correct password, unfinished registration
            AccountInactive: Account deactivated
            VerificationRequired: Individual without a verified contact
        """
        record = self.repository.find_by_email(normalize_email(email), kind)
        if record is None:
            verify_password(password, None)
            raise InvalidCredentials()

        if self.lockout.check_locked(record):
            raise AccountLocked(self.lockout.remaining_lock_minutes(record))

        if not record.active:
            raise AccountInactive()

        password_ok = verify_password(password, record.password_hash)

        if record.registration_stage is not RegistrationStage.COMPLETED:
            if password_ok:
                raise RegistrationIncomplete(record.registration_stage.value)
            raise InvalidCredentials()

        if not password_ok:
            self.lockout.record_failure(record)
            raise InvalidCredentials()

        if kind is ActorKind.INDIVIDUAL and not record.contact_verified:
            raise VerificationRequired()

        record = self.lockout.record_success(record)
        logger.info("Login succeeded for %s %s", record.role, record.id)
        return AuthenticatedSession(record=record, session=self.sessions.issue(record.id, record.role))

    def refresh(self, refresh_token: str | None) -> SessionPair:
        return self.sessions.rotate(refresh_token)

    def request_password_reset(self, email: str) -> None:
        """
        Issue a single-use reset token and deliver a reset link.

        Silent for unknown or unfinished identities. If delivery fails the
        token is cleared again so no unreachable token stays valid.
        """
        record = self.repository.find_by_email(normalize_email(email))
        if record is None or record.registration_stage is not RegistrationStage.COMPLETED:
            logger.info("Password reset requested for unknown or incomplete identity")
            return

        token = secrets.token_hex(32)
        expires_at = self.clock() + self.reset_ttl
        self.repository.set_reset_token(record.id, hash_reset_token(token), expires_at)

        context = {
            "first_name": record.display_name,
            "token": token,
            "reset_url": f"{self.frontend_url.rstrip('/')}/reset-password?token={token}",
            "expires_minutes": int(self.reset_ttl.total_seconds() // 60),
        }
        if not notify(self.notifier, record.email, "password-reset", context):
            self.repository.set_reset_token(record.id, None, None)

    def reset_password(self, token: str, new_password: str) -> IdentityRecord:
        """
        Consume a reset token and set a new password.

        Raises:
            InvalidResetToken: Unknown, used or expired token
        """
        if not token:
            raise InvalidResetToken()

        password_hash = hash_password(new_password, rounds=self.bcrypt_cost)
        record = self.repository.consume_reset_token(
            hash_reset_token(token), password_hash, self.clock()
        )
        if record is None:
            raise InvalidResetToken()

        logger.info("Password reset for identity %s", record.id)
        return record

    def change_password(self, identity_id: str, current_password: str, new_password: str) -> None:
        """
        Raises:
            RecordNotFound: Identity no longer exists
            InvalidCredentials: Current password is wrong
        """
        record = self.get_profile(identity_id)
        if not verify_password(current_password, record.password_hash):
            raise InvalidCredentials("Current password is incorrect")

        updated = self.repository.update_password(
            record.id, hash_password(new_password, rounds=self.bcrypt_cost)
        )
        if updated is None:
            raise RecordNotFound()

    def get_profile(self, identity_id: str) -> IdentityRecord:
        record = self.repository.get(identity_id)
        if record is None:
            raise RecordNotFound("User not found")
        return record

    def update_profile(self, identity_id: str, changes: Mapping[str, Any]) -> IdentityRecord:
        """
        Apply allow-listed profile changes; unknown fields are ignored.

        Changing the phone number clears ``contact_verified``.

        Raises:
            RecordNotFound: Identity no longer exists
            DuplicateIdentity: New phone belongs to another identity
        """
        record = self.get_profile(identity_id)
        columns = self._profile_columns(record, changes)
        if not columns:
            return record

        updated = self.repository.update_profile(record.id, columns)
        if updated is None:
            raise RecordNotFound("User not found")
        return updated

    def register_organization(self, payload: Mapping[str, Any]) -> IdentityRecord:
        """
        Create a completed organization identity in one step.

        Raises:
            ValidationFailed: Missing email, phone or password
            DuplicateIdentity: Email or phone already registered
        """
        email = payload.get("email")
        phone = payload.get("phone")
        password = payload.get("password")
        if not email or not phone or not password:
            raise ValidationFailed(
                "Email, phone number and password are required", ["email", "phone", "password"]
            )

        excluded = {"email", "phone", "password", "confirm_password", "admin_first_name", "admin_last_name"}
        profile = clean_value({k: v for k, v in payload.items() if k not in excluded}) or {}
        record = IdentityRecord(
            id=str(uuid.uuid4()),
            kind=ActorKind.ORGANIZATION,
            email=normalize_email(email),
            phone=normalize_phone(phone),
            first_name=(payload.get("admin_first_name") or "").strip(),
            last_name=(payload.get("admin_last_name") or "").strip(),
            profile=profile,
            password_hash=hash_password(password, rounds=self.bcrypt_cost),
            active=True,
            registration_stage=RegistrationStage.COMPLETED,
        )

        if not self.repository.create(record):
            raise DuplicateIdentity("Hospital with this email or phone number already exists")

        logger.info("Organization registered: %s", record.id)
        return record

    @staticmethod
    def _profile_columns(record: IdentityRecord, changes: Mapping[str, Any]) -> dict[str, Any]:
        columns: dict[str, Any] = {}

        first_key, last_key = _NAME_FIELDS[record.kind]
        if changes.get(first_key):
            columns["first_name"] = str(changes[first_key]).strip()
        if changes.get(last_key):
            columns["last_name"] = str(changes[last_key]).strip()

        if changes.get("phone"):
            phone = normalize_phone(changes["phone"])
            if phone != record.phone:
                columns["phone"] = phone
                columns["contact_verified"] = False

        if record.kind is ActorKind.INDIVIDUAL:
            profile_fields = INDIVIDUAL_PROFILE_FIELDS
            medical = {k: v for k, v in changes.items() if k in INDIVIDUAL_MEDICAL_FIELDS}
            if medical:
                merged = {**record.medical_history, **medical}
                columns["medical_history"] = clean_value(merged) or {}
        else:
            profile_fields = ORGANIZATION_PROFILE_FIELDS

        profile = {k: v for k, v in changes.items() if k in profile_fields}
        if profile:
            columns["profile"] = clean_value({**record.profile, **profile}) or {}

        return columns
