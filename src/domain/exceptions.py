"""
Domain exceptions - Semantic error types for the identity lifecycle.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.
HTTP status mapping lives in the API layer.
"""

from __future__ import annotations

from typing import Any


class IdentityError(Exception):
    """Base class for identity domain errors."""

    default_message = "Identity operation failed"

    def __init__(self, message: str | None = None, **context: Any) -> None:
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class ValidationFailed(IdentityError):
    """Malformed or missing input detected by the domain."""

    default_message = "Validation error"

    def __init__(self, message: str | None = None, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class RecordNotFound(IdentityError):
    """No identity record matches the supplied key."""

    default_message = "Registration not found"


# State conflicts


class StateConflict(IdentityError):
    """Request conflicts with the record's current state."""


class StageMismatch(StateConflict):
    """Requested registration stage does not follow the record's stage."""

    default_message = "Invalid registration step"

    def __init__(self, current_stage: str, requested_stage: str) -> None:
        super().__init__(current_stage=current_stage, requested_stage=requested_stage)
        self.current_stage = current_stage
        self.requested_stage = requested_stage


class DuplicateIdentity(StateConflict):
    """Email or phone already belongs to a completed identity."""

    default_message = "User already registered with this email or phone number"


class AccountLocked(StateConflict):
    """Too many failed logins; lock window still active."""

    def __init__(self, remaining_minutes: int) -> None:
        super().__init__(
            f"Account is locked. Try again in {remaining_minutes} minutes.",
            remaining_minutes=remaining_minutes,
        )
        self.remaining_minutes = remaining_minutes


class RegistrationIncomplete(StateConflict):
    """Credentials are valid but the registration pipeline is unfinished."""

    default_message = "Registration is incomplete"

    def __init__(self, current_stage: str) -> None:
        super().__init__(current_stage=current_stage, requires_completion=True)
        self.current_stage = current_stage


# One-time code verification


class VerificationError(IdentityError):
    """One-time code could not be accepted."""


class CodeExpired(VerificationError):
    """Code expiry has passed."""

    default_message = "Verification code has expired. Please request a new one."

    def __init__(self) -> None:
        super().__init__(expired=True)


class CodeMismatch(VerificationError):
    """Supplied code differs from the stored code."""

    default_message = "Invalid verification code"

    def __init__(self, attempts_remaining: int) -> None:
        super().__init__(attempts_remaining=attempts_remaining)
        self.attempts_remaining = attempts_remaining


# Throttles


class ThrottleExceeded(IdentityError):
    """A rate or volume limit was hit."""


class TooFrequent(ThrottleExceeded):
    """Code resend requested before the minimum spacing elapsed."""

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(
            f"Please wait {retry_after_seconds} seconds before requesting another code",
            wait_time=retry_after_seconds,
        )
        self.retry_after_seconds = retry_after_seconds


class DailyLimitReached(ThrottleExceeded):
    """Resend ceiling reached for the current code lifecycle."""

    default_message = "Daily SMS limit reached. Please try again tomorrow."


# Authentication


class AuthFailure(IdentityError):
    """Authentication could not be established."""


class InvalidCredentials(AuthFailure):
    """Unknown identity or wrong password (deliberately generic)."""

    default_message = "Invalid email or password"


class InvalidSession(AuthFailure):
    """Session token is missing, malformed, expired or revoked."""

    default_message = "Invalid refresh token"


class InvalidResetToken(AuthFailure):
    """Password reset token unknown, used or expired."""

    default_message = "Invalid or expired reset token"


class AccountInactive(AuthFailure):
    """Account has been deactivated."""

    default_message = "Account is deactivated. Please contact support."


class VerificationRequired(AuthFailure):
    """Contact channel must be verified before logging in."""

    default_message = "Phone number verification required"

    def __init__(self) -> None:
        super().__init__(requires_phone_verification=True)


class Forbidden(AuthFailure):
    """Authenticated identity lacks the required role."""

    default_message = "Insufficient permissions"


class DeliveryFailure(IdentityError):
    """Outbound message could not be delivered."""

    default_message = "Message delivery failed"
