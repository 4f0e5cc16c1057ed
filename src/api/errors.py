"""
Domain error to HTTP mapping.

Every IdentityError is rendered as the standard envelope
``{success: false, message, data?, errors?}``. The most specific class in
``STATUS_CODES`` wins, so subclasses must be listed before their parents.
"""

from typing import Any

from fastapi import status
from fastapi.responses import JSONResponse

from src.domain.exceptions import (
    AccountInactive,
    AccountLocked,
    AuthFailure,
    DuplicateIdentity,
    Forbidden,
    IdentityError,
    InvalidResetToken,
    RecordNotFound,
    RegistrationIncomplete,
    ThrottleExceeded,
    TooFrequent,
    ValidationFailed,
    VerificationRequired,
)

STATUS_CODES: tuple[tuple[type[IdentityError], int], ...] = (
    (ValidationFailed, status.HTTP_400_BAD_REQUEST),
    (RecordNotFound, status.HTTP_404_NOT_FOUND),
    (DuplicateIdentity, status.HTTP_409_CONFLICT),
    (AccountLocked, status.HTTP_423_LOCKED),
    (RegistrationIncomplete, status.HTTP_403_FORBIDDEN),
    (ThrottleExceeded, status.HTTP_429_TOO_MANY_REQUESTS),
    (InvalidResetToken, status.HTTP_400_BAD_REQUEST),
    (AccountInactive, status.HTTP_403_FORBIDDEN),
    (VerificationRequired, status.HTTP_403_FORBIDDEN),
    (Forbidden, status.HTTP_403_FORBIDDEN),
    (AuthFailure, status.HTTP_401_UNAUTHORIZED),
)


def status_for(exc: IdentityError) -> int:
    """HTTP status for a domain error; unlisted errors are client errors (400)."""
    for error_type, code in STATUS_CODES:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_400_BAD_REQUEST


def envelope(
    success: bool,
    message: str,
    data: dict[str, Any] | None = None,
    errors: list[Any] | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"success": success, "message": message}
    if data is not None:
        body["data"] = data
    if errors is not None:
        body["errors"] = errors
    return body


def error_response(exc: IdentityError) -> JSONResponse:
    errors = exc.errors if isinstance(exc, ValidationFailed) and exc.errors else None
    headers = None
    if isinstance(exc, TooFrequent):
        headers = {"Retry-After": str(exc.retry_after_seconds)}

    return JSONResponse(
        status_code=status_for(exc),
        content=envelope(False, exc.message, data=exc.context or None, errors=errors),
        headers=headers,
    )
