"""
Domain models - identity records, registration stages and value objects.

The registration pipeline is an ordered sequence of stages. The stage stored
on a record names the last stage the record reached:

    personal-info -> medical-history -> assessment -> credential-setup
        -> contact-verification -> completed

``credential-setup`` is an input stage only: completing it moves the record
straight into ``contact-verification``.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ActorKind(str, Enum):
    """Kinds of actors that own identity records."""

    INDIVIDUAL = "individual"
    ORGANIZATION = "organization"

    @property
    def role(self) -> str:
        return "patient" if self is ActorKind.INDIVIDUAL else "hospital"


class RegistrationStage(str, Enum):
    """Ordered registration stages (forward-only)."""

    PERSONAL_INFO = "personal-info"
    MEDICAL_HISTORY = "medical-history"
    ASSESSMENT = "assessment"
    CREDENTIAL_SETUP = "credential-setup"
    CONTACT_VERIFICATION = "contact-verification"
    COMPLETED = "completed"

    @property
    def position(self) -> int:
        return _STAGE_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is RegistrationStage.COMPLETED

    def successor(self) -> RegistrationStage | None:
        position = self.position + 1
        return _STAGE_ORDER[position] if position < len(_STAGE_ORDER) else None

    def predecessor(self) -> RegistrationStage | None:
        return _STAGE_ORDER[self.position - 1] if self.position > 0 else None


_STAGE_ORDER = list(RegistrationStage)

# Submittable stages and the progress reported once each is accepted
STAGE_PROGRESS = {
    RegistrationStage.PERSONAL_INFO: 25,
    RegistrationStage.MEDICAL_HISTORY: 50,
    RegistrationStage.ASSESSMENT: 75,
    RegistrationStage.CREDENTIAL_SETUP: 90,
    RegistrationStage.COMPLETED: 100,
}


@dataclass
class ConstitutionProfile:
    """Stored output of the assessment stage."""

    vata: int
    pitta: int
    kapha: int
    primary: str
    secondary: str
    assessed_at: datetime
    questionnaire: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "vata": self.vata,
            "pitta": self.pitta,
            "kapha": self.kapha,
            "primary": self.primary,
            "secondary": self.secondary,
            "assessed_at": self.assessed_at.isoformat(),
            "questionnaire": self.questionnaire,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConstitutionProfile:
        assessed_at = data["assessed_at"]
        if isinstance(assessed_at, str):
            assessed_at = datetime.fromisoformat(assessed_at)
        return cls(
            vata=data["vata"],
            pitta=data["pitta"],
            kapha=data["kapha"],
            primary=data["primary"],
            secondary=data["secondary"],
            assessed_at=assessed_at,
            questionnaire=list(data.get("questionnaire") or []),
        )


@dataclass
class IdentityRecord:
    """
    One identity (individual or organization).

    Verification artifacts (pending_code ... last_code_sent_at) only exist
    while the record is in contact-verification. Lockout counters persist
    after completion.
    """

    id: str
    kind: ActorKind
    email: str
    phone: str
    first_name: str = ""
    last_name: str = ""
    profile: dict[str, Any] = field(default_factory=dict)
    medical_history: dict[str, Any] = field(default_factory=dict)
    constitution_profile: ConstitutionProfile | None = None
    password_hash: str | None = None
    active: bool = True
    contact_verified: bool = False
    registration_stage: RegistrationStage = RegistrationStage.PERSONAL_INFO
    staged_payloads: dict[str, Any] = field(default_factory=dict)
    failed_attempts: int = 0
    locked_until: datetime | None = None
    pending_code: str | None = None
    code_expires_at: datetime | None = None
    code_attempts: int = 0
    last_code_sent_at: datetime | None = None
    reset_token_hash: str | None = None
    reset_expires_at: datetime | None = None
    last_login_at: datetime | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def role(self) -> str:
        return self.kind.role

    @property
    def display_name(self) -> str:
        return self.first_name or self.profile.get("organization_name", "")

    @property
    def masked_phone(self) -> str:
        return mask_phone(self.phone)


@dataclass(frozen=True)
class StageResult:
    """Outcome of an accepted stage submission."""

    record: IdentityRecord
    current_stage: RegistrationStage
    next_stage: RegistrationStage | None
    progress: int
    delivery_failed: bool = False


@dataclass(frozen=True)
class IssuedCode:
    """A freshly issued one-time code and its delivery outcome."""

    code: str
    expires_at: datetime
    delivered: bool
    attempts: int = 0


@dataclass(frozen=True)
class SessionPair:
    """Short-lived access token plus long-lived refresh token."""

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


@dataclass(frozen=True)
class AuthenticatedSession:
    """Result of a successful login or verification."""

    record: IdentityRecord
    session: SessionPair


def normalize_email(email: str) -> str:
    """
    Normalize email address for consistent storage and lookup.

    Applies: strip whitespace + lowercase
    """
    return email.strip().lower()


def normalize_phone(phone: str) -> str:
    """
    Normalize a phone number to ``+<country><number>``.

    Non-digits are removed and ten-digit national numbers get the 91
    country code.
    """
    digits = re.sub(r"\D", "", phone)
    if len(digits) == 10 and not digits.startswith("91"):
        digits = "91" + digits
    return "+" + digits


def mask_phone(phone: str) -> str:
    """Hide the middle digits of a normalized phone number."""
    return re.sub(r"(\+\d{2})(\d{4})(\d{5})", r"\1****\3", phone)


def clean_value(value: Any) -> Any:
    """
    Recursively drop None, empty strings and empty containers.

    Returns None when nothing meaningful remains.
    """
    if value is None:
        return None
    if isinstance(value, list):
        cleaned_list = [clean_value(item) for item in value]
        cleaned_list = [item for item in cleaned_list if item is not None]
        return cleaned_list or None
    if isinstance(value, dict):
        cleaned_dict = {}
        for key, item in value.items():
            cleaned = clean_value(item)
            if cleaned is not None:
                cleaned_dict[key] = cleaned
        return cleaned_dict or None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value
