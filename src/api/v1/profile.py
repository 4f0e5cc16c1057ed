"""
API v1 profile routes (patients only).
"""

from typing import Any

from fastapi import APIRouter, Depends

from src.api.dependencies import (
    get_authentication_service,
    require_role,
    require_verified_patient,
)
from src.api.models import ApiResponse, IdentityView, ProfileUpdateRequest
from src.api.normalization import normalize_medical_history, snake_keys
from src.domain.authentication import INDIVIDUAL_MEDICAL_FIELDS, AuthenticationService
from src.domain.tokens import TokenClaims

router = APIRouter(prefix="/profile", tags=["profile"])

_ROLE_ERRORS = {
    401: {"description": "Not authenticated"},
    403: {"description": "Not a patient account"},
}


def profile_changes(request_data: ProfileUpdateRequest) -> dict[str, Any]:
    """Flatten a profile update; medical sections go through boundary normalization."""
    changes = snake_keys(request_data.submitted())
    medical = {key: changes.pop(key) for key in list(changes) if key in INDIVIDUAL_MEDICAL_FIELDS}
    if medical:
        changes.update(normalize_medical_history(medical))
    return changes


@router.get(
    "",
    response_model=ApiResponse[IdentityView],
    response_model_exclude_none=True,
    responses=_ROLE_ERRORS,
    summary="Get the signed-in patient's profile",
)
def get_profile(
    claims: TokenClaims = Depends(require_role("patient")),
    service: AuthenticationService = Depends(get_authentication_service),
) -> ApiResponse[IdentityView]:
    record = service.get_profile(claims.identity_id)
    return ApiResponse(
        success=True, message="Profile retrieved", data=IdentityView.from_record(record)
    )


@router.patch(
    "",
    response_model=ApiResponse[IdentityView],
    response_model_exclude_none=True,
    responses={
        **_ROLE_ERRORS,
        403: {"description": "Not a patient account or phone number not verified"},
        409: {"description": "Phone number already registered"},
    },
    summary="Update the signed-in patient's profile",
    description="Only allow-listed fields are applied. Changing the phone number "
    "clears its verified status.",
)
def update_profile(
    request_data: ProfileUpdateRequest,
    claims: TokenClaims = Depends(require_verified_patient),
    service: AuthenticationService = Depends(get_authentication_service),
) -> ApiResponse[IdentityView]:
    record = service.update_profile(claims.identity_id, profile_changes(request_data))
    return ApiResponse(
        success=True, message="Profile updated successfully", data=IdentityView.from_record(record)
    )
