"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
Requests accept both snake_case and the camelCase keys older clients send.
"""

import re
from datetime import date, datetime
from typing import Annotated, Any, Generic, Literal, TypeVar

from pydantic import (
    AfterValidator,
    AliasChoices,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from src.domain.models import AuthenticatedSession, IdentityRecord

T = TypeVar("T")

_PASSWORD_RULE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])")
_NAME_RULE = re.compile(r"^[a-zA-Z\s]+$")
BCRYPT_MAX_BYTES = 72


def _within_bcrypt_limit(value: str) -> str:
    if len(value.encode()) > BCRYPT_MAX_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes")
    return value


def _strong_password(value: str) -> str:
    if not _PASSWORD_RULE.match(value):
        raise ValueError(
            "Password must contain at least one uppercase letter, one lowercase letter, "
            "one number, and one special character"
        )
    return value


# Any password we will hash or compare with bcrypt
Password = Annotated[str, Field(min_length=1, max_length=64), AfterValidator(_within_bcrypt_limit)]
# Passwords being set
NewPassword = Annotated[
    str,
    Field(min_length=8, max_length=64, description="Min 8 characters, mixed case, digit, symbol"),
    AfterValidator(_within_bcrypt_limit),
    AfterValidator(_strong_password),
]

MAX_PHONE_DIGITS = 15


def _phone_digits(value: str) -> str:
    digits = sum(character.isdigit() for character in value)
    if not 10 <= digits <= MAX_PHONE_DIGITS:
        raise ValueError(f"Phone number must have 10 to {MAX_PHONE_DIGITS} digits")
    return value


def _lowercase(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


Phone = Annotated[
    str,
    Field(pattern=r"^\+?[\d\s\-()]{10,20}$", description="Mobile number"),
    AfterValidator(_phone_digits),
]
DoshaCategory = Annotated[Literal["vata", "pitta", "kapha"], BeforeValidator(_lowercase)]


class ApiModel(BaseModel):
    """Base request model accepting snake_case or camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Registration


class Address(ApiModel):
    street: str | None = None
    city: str | None = None
    state: str | None = None
    pin_code: str | None = Field(default=None, pattern=r"^\d{6}$")
    country: str | None = None


class EmergencyContact(ApiModel):
    name: str | None = None
    relationship: str | None = None
    phone: str | None = Field(
        default=None, validation_alias=AliasChoices("phone", "phoneNumber", "phone_number")
    )


class PersonalInfoRequest(ApiModel):
    """Request model for the personal-info stage."""

    first_name: str = Field(..., min_length=2, max_length=50)
    last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    phone: Phone = Field(validation_alias=AliasChoices("phone", "phoneNumber", "phone_number"))
    date_of_birth: date
    gender: Literal["Male", "Female", "Other", "Prefer not to say"]
    blood_group: str | None = None
    marital_status: str | None = None
    occupation: str | None = None
    address: Address | None = None
    emergency_contact: EmergencyContact | None = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _letters_only(cls, value: str) -> str:
        if not _NAME_RULE.match(value):
            raise ValueError("Name can only contain letters and spaces")
        return value

    @field_validator("date_of_birth")
    @classmethod
    def _adult(cls, value: date) -> date:
        age_years = (date.today() - value).days / 365.25
        if age_years < 18 or age_years > 100:
            raise ValueError("Age must be between 18 and 100 years")
        return value


class MedicalHistoryRequest(ApiModel):
    """
    Request model for the medical-history stage.

    Section fields are free-form here; api.normalization canonicalizes them.
    """

    model_config = ConfigDict(extra="allow")

    email: EmailStr


class QuestionnaireAnswer(ApiModel):
    model_config = ConfigDict(extra="allow")

    question: str | None = None
    answer: Any = None
    category: DoshaCategory = Field(
        validation_alias=AliasChoices("category", "doshaType", "dosha_type")
    )
    weight: float | None = Field(
        default=None, ge=0, allow_inf_nan=False, validation_alias=AliasChoices("weight", "points")
    )


class AssessmentRequest(ApiModel):
    """Request model for the assessment stage."""

    email: EmailStr
    questionnaire: list[QuestionnaireAnswer] = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("questionnaire", "responses"),
    )


class CompleteRegistrationRequest(ApiModel):
    """Request model for credential setup."""

    email: EmailStr
    password: NewPassword
    confirm_password: str

    @model_validator(mode="after")
    def _passwords_match(self) -> "CompleteRegistrationRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class VerifyCodeRequest(ApiModel):
    email: EmailStr
    code: str = Field(..., pattern=r"^\d{6}$", description="6-digit verification code")


class ResendCodeRequest(ApiModel):
    email: EmailStr


# Authentication


class LoginRequest(ApiModel):
    email: EmailStr
    password: Password


class RefreshRequest(ApiModel):
    refresh_token: str | None = None


class ForgotPasswordRequest(ApiModel):
    email: EmailStr


class ResetPasswordRequest(ApiModel):
    token: str = Field(..., min_length=1)
    new_password: NewPassword
    confirm_password: str

    @model_validator(mode="after")
    def _passwords_match(self) -> "ResetPasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class ChangePasswordRequest(ApiModel):
    current_password: Password
    new_password: NewPassword
    confirm_password: str

    @model_validator(mode="after")
    def _passwords_match(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


# Profile


class ProfileUpdateRequest(ApiModel):
    """
    Partial profile update. Unknown fields are ignored by the domain allow list.
    """

    model_config = ConfigDict(extra="allow")

    first_name: str | None = Field(default=None, min_length=2, max_length=50)
    last_name: str | None = Field(default=None, min_length=2, max_length=50)
    phone: Phone | None = Field(
        default=None, validation_alias=AliasChoices("phone", "phoneNumber", "phone_number")
    )
    date_of_birth: date | None = None
    address: Address | None = None
    emergency_contact: EmergencyContact | None = None

    def submitted(self) -> dict[str, Any]:
        """Fields the client actually sent, extras included."""
        data = self.model_dump(mode="json", exclude_unset=True)
        data.update(self.model_extra or {})
        return data


# Organizations


class OrganizationRegisterRequest(ApiModel):
    """Request model for one-step organization registration."""

    organization_name: str = Field(
        ...,
        min_length=2,
        max_length=100,
        validation_alias=AliasChoices("organizationName", "organization_name", "hospitalName"),
    )
    legal_name: str | None = None
    admin_first_name: str = Field(..., min_length=2, max_length=50)
    admin_last_name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    phone: Phone = Field(validation_alias=AliasChoices("phone", "phoneNumber", "phone_number"))
    password: NewPassword
    confirm_password: str
    registration_number: str | None = Field(default=None, min_length=3, max_length=50)
    gstin: str | None = Field(
        default=None, pattern=r"^\d{2}[A-Z]{5}\d{4}[A-Z][1-9A-Z]Z[0-9A-Z]$"
    )
    website: str | None = Field(default=None, pattern=r"^https?://")
    address: Address | None = None

    @model_validator(mode="after")
    def _passwords_match(self) -> "OrganizationRegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


# Responses


class ApiResponse(BaseModel, Generic[T]):
    """Standard response envelope."""

    success: bool
    message: str
    data: T | None = None
    errors: list[Any] | None = None


class ConstitutionView(BaseModel):
    vata: int
    pitta: int
    kapha: int
    primary: str
    secondary: str
    assessed_at: datetime


class IdentityView(BaseModel):
    """Outward projection of an identity; secrets and counters never appear."""

    id: str
    kind: str
    role: str
    email: str
    phone: str
    first_name: str
    last_name: str
    profile: dict[str, Any]
    medical_history: dict[str, Any]
    constitution_profile: ConstitutionView | None = None
    active: bool
    contact_verified: bool
    registration_stage: str
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_record(cls, record: IdentityRecord) -> "IdentityView":
        return cls(
            id=record.id,
            kind=record.kind.value,
            role=record.role,
            email=record.email,
            phone=record.phone,
            first_name=record.first_name,
            last_name=record.last_name,
            profile=record.profile,
            medical_history=record.medical_history,
            constitution_profile=constitution_view(record),
            active=record.active,
            contact_verified=record.contact_verified,
            registration_stage=record.registration_stage.value,
            last_login_at=record.last_login_at,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )


class StageData(BaseModel):
    identity_id: str
    current_stage: str
    next_stage: str | None = None
    progress: int
    masked_phone: str | None = None
    delivery_failed: bool | None = None
    constitution: ConstitutionView | None = None


class SessionData(BaseModel):
    user: IdentityView
    access_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


class TokenData(BaseModel):
    access_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime


class ResendData(BaseModel):
    masked_phone: str
    attempts_remaining: int
    expires_at: datetime
    delivery_failed: bool | None = None


def session_data(session: AuthenticatedSession) -> SessionData:
    return SessionData(
        user=IdentityView.from_record(session.record),
        access_token=session.session.access_token,
        access_expires_at=session.session.access_expires_at,
        refresh_expires_at=session.session.refresh_expires_at,
    )


def constitution_view(record: IdentityRecord) -> ConstitutionView | None:
    profile = record.constitution_profile
    if profile is None:
        return None
    return ConstitutionView(
        vata=profile.vata,
        pitta=profile.pitta,
        kapha=profile.kapha,
        primary=profile.primary,
        secondary=profile.secondary,
        assessed_at=profile.assessed_at,
    )
