"""
Domain layer - Pure business logic with zero framework imports.

This package contains the identity lifecycle core: progressive registration,
constitution scoring, one-time code verification, login lockout, session
tokens and password reset. It defines its own port interfaces for
infrastructure abstraction, ensuring true hexagonal architecture decoupling.
"""

from .authentication import AuthenticationService
from .exceptions import (
    AccountInactive,
    AccountLocked,
    AuthFailure,
    CodeExpired,
    CodeMismatch,
    DailyLimitReached,
    DeliveryFailure,
    DuplicateIdentity,
    Forbidden,
    IdentityError,
    InvalidCredentials,
    InvalidResetToken,
    InvalidSession,
    RecordNotFound,
    RegistrationIncomplete,
    StageMismatch,
    StateConflict,
    ThrottleExceeded,
    TooFrequent,
    ValidationFailed,
    VerificationError,
    VerificationRequired,
)
from .lockout import LockoutGuard
from .models import ActorKind, IdentityRecord, RegistrationStage
from .ports import DeliveryOutcome, IdentityRepository, NotificationSender, VerificationCodeSender
from .registration import IdentityKey, RegistrationService
from .tokens import SessionTokenManager
from .verification import VerificationCodeEngine

__all__ = [
    "AccountInactive",
    "AccountLocked",
    "ActorKind",
    "AuthFailure",
    "AuthenticationService",
    "CodeExpired",
    "CodeMismatch",
    "DailyLimitReached",
    "DeliveryFailure",
    "DeliveryOutcome",
    "DuplicateIdentity",
    "Forbidden",
    "IdentityError",
    "IdentityKey",
    "IdentityRecord",
    "IdentityRepository",
    "InvalidCredentials",
    "InvalidResetToken",
    "InvalidSession",
    "LockoutGuard",
    "NotificationSender",
    "RecordNotFound",
    "RegistrationIncomplete",
    "RegistrationService",
    "RegistrationStage",
    "SessionTokenManager",
    "StageMismatch",
    "StateConflict",
    "ThrottleExceeded",
    "TooFrequent",
    "ValidationFailed",
    "VerificationCodeEngine",
    "VerificationCodeSender",
    "VerificationError",
    "VerificationRequired",
]
