"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the domain requires
from infrastructure. Adapters implement these protocols.

Every mutating repository method is a single atomic conditional update
keyed by identity id. A ``None`` return means the condition did not hold
(the record moved on, or does not exist); callers re-read to explain why.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from .models import ActorKind, IdentityRecord, RegistrationStage


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result reported by an outbound message sender."""

    delivered: bool
    reference: str | None = None
    error: str | None = None

    @classmethod
    def sent(cls, reference: str | None = None) -> DeliveryOutcome:
        return cls(delivered=True, reference=reference)

    @classmethod
    def failed(cls, error: str) -> DeliveryOutcome:
        return cls(delivered=False, error=error)


class IdentityRepository(Protocol):
    """Port interface for identity persistence."""

    def get(self, identity_id: str) -> IdentityRecord | None:
        """Fetch a record by id."""
        ...

    def find_by_email(
        self, email: str, kind: ActorKind | None = None
    ) -> IdentityRecord | None:
        """Fetch a record by normalized email, optionally restricted to a kind."""
        ...

    def find_by_contact(self, email: str | None, phone: str | None) -> IdentityRecord | None:
        """Fetch the record holding either the email or the phone."""
        ...

    def start_registration(self, draft: IdentityRecord) -> IdentityRecord | None:
        """
        Create or re-enter an individual registration.

        Atomically inserts ``draft`` or, when a non-completed record holds the
        same email or phone, overwrites that record's personal data and resets
        it to personal-info (keeping its id).

        Returns:
            The stored record, or None when a completed record holds the
            email or phone
        """
        ...

    def create(self, record: IdentityRecord) -> bool:
        """
        Insert a record.

        Returns:
            True on success, False when email or phone is already taken
        """
        ...

    def advance_stage(
        self,
        identity_id: str,
        expected: tuple[RegistrationStage, ...],
        new_stage: RegistrationStage,
        changes: dict[str, Any],
        snapshot: tuple[str, dict[str, Any]] | None = None,
    ) -> IdentityRecord | None:
        """
        Apply ``changes`` and stamp ``new_stage`` if the stage is in ``expected``.

        ``snapshot`` is merged into ``staged_payloads`` under its key.
        """
        ...

    def issue_code(
        self, identity_id: str, code: str, expires_at: datetime, now: datetime
    ) -> IdentityRecord | None:
        """Store a fresh code (attempts reset) while in contact-verification."""
        ...

    def resend_code(
        self,
        identity_id: str,
        code: str,
        expires_at: datetime,
        now: datetime,
        sent_before: datetime,
        max_sends: int,
    ) -> IdentityRecord | None:
        """
        Replace the code and increment attempts if both throttles pass.

        Conditions: stage is contact-verification, last send is at or before
        ``sent_before`` and attempts are below ``max_sends``.
        """
        ...

    def record_code_mismatch(self, identity_id: str) -> IdentityRecord | None:
        """Increment code attempts while in contact-verification."""
        ...

    def complete_verification(
        self, identity_id: str, code: str, now: datetime
    ) -> IdentityRecord | None:
        """
        Mark the record verified if the code matches and has not expired.

        Clears verification artifacts and staged payloads, sets
        contact_verified and active, stamps completed.
        """
        ...

    def register_login_failure(
        self, identity_id: str, now: datetime, threshold: int, lock_until: datetime
    ) -> IdentityRecord | None:
        """
        Count a failed login.

        An expired lock is cleared and the counter restarts at 1. Otherwise
        the counter increments and, on reaching ``threshold`` while unlocked,
        ``locked_until`` is set.
        """
        ...

    def register_login_success(self, identity_id: str, now: datetime) -> IdentityRecord | None:
        """Clear counter and lock, stamp last login."""
        ...

    def set_reset_token(
        self, identity_id: str, token_hash: str | None, expires_at: datetime | None
    ) -> None:
        """Store (or clear, with None) the password reset token digest."""
        ...

    def consume_reset_token(
        self, token_hash: str, password_hash: str, now: datetime
    ) -> IdentityRecord | None:
        """Swap the password and clear the token if it is known and unexpired."""
        ...

    def update_password(self, identity_id: str, password_hash: str) -> IdentityRecord | None:
        """Replace the password hash."""
        ...

    def update_profile(self, identity_id: str, changes: dict[str, Any]) -> IdentityRecord | None:
        """
        Apply allow-listed profile changes.

        Raises:
            DuplicateIdentity: If the new phone belongs to another record
        """
        ...


class VerificationCodeSender(Protocol):
    """Port interface for one-time code delivery."""

    def send_verification_code(
        self, destination: str, code: str, context: dict[str, Any]
    ) -> DeliveryOutcome:
        """
        Send a verification code.

        Args:
            destination: Phone number (normalized)
            code: 6-digit verification code
            context: Template context (e.g. first_name)

        Raises:
            DeliveryFailure: If the message could not be handed over
        """
        ...


class NotificationSender(Protocol):
    """Port interface for templated notifications (email or SMS)."""

    def send_notification(
        self, destination: str, template: str, context: dict[str, Any]
    ) -> DeliveryOutcome:
        """
        Send a templated notification.

        Args:
            destination: Email address or phone number
            template: Template name (see adapters.delivery.templates)
            context: Template context

        Raises:
            DeliveryFailure: If the message could not be handed over
        """
        ...
