"""
API v1 organization routes.

Organizations (hospitals) register in a single step and never pass through
phone verification.
"""

from fastapi import APIRouter, Depends, Response, status

from src.api.cookies import CookiePolicy
from src.api.dependencies import get_authentication_service, get_cookie_policy, require_role
from src.api.models import (
    ApiResponse,
    IdentityView,
    LoginRequest,
    OrganizationRegisterRequest,
    ProfileUpdateRequest,
    SessionData,
    session_data,
)
from src.api.normalization import snake_keys
from src.domain.authentication import AuthenticationService
from src.domain.models import ActorKind
from src.domain.tokens import TokenClaims

router = APIRouter(prefix="/organizations", tags=["organizations"])

_ROLE_ERRORS = {
    401: {"description": "Not authenticated"},
    403: {"description": "Not an organization account"},
}


@router.post(
    "/register",
    response_model=ApiResponse[IdentityView],
    response_model_exclude_none=True,
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Validation error"},
        409: {"description": "Email or phone already registered"},
    },
    summary="Register an organization",
)
def register_organization(
    request_data: OrganizationRegisterRequest,
    service: AuthenticationService = Depends(get_authentication_service),
) -> ApiResponse[IdentityView]:
    payload = request_data.model_dump(mode="json", exclude_none=True, exclude={"confirm_password"})
    record = service.register_organization(payload)
    return ApiResponse(
        success=True,
        message="Hospital registered successfully",
        data=IdentityView.from_record(record),
    )


@router.post(
    "/login",
    response_model=ApiResponse[SessionData],
    response_model_exclude_none=True,
    responses={
        401: {"description": "Invalid email or password"},
        403: {"description": "Account deactivated"},
        423: {"description": "Account temporarily locked"},
    },
    summary="Organization login",
)
def login_organization(
    request_data: LoginRequest,
    response: Response,
    service: AuthenticationService = Depends(get_authentication_service),
    cookies: CookiePolicy = Depends(get_cookie_policy),
) -> ApiResponse[SessionData]:
    session = service.login(request_data.email, request_data.password, ActorKind.ORGANIZATION)
    cookies.set_session(response, session.session)
    return ApiResponse(success=True, message="Login successful", data=session_data(session))


@router.get(
    "/me",
    response_model=ApiResponse[IdentityView],
    response_model_exclude_none=True,
    responses=_ROLE_ERRORS,
    summary="Get the signed-in organization",
)
def get_organization(
    claims: TokenClaims = Depends(require_role("hospital")),
    service: AuthenticationService = Depends(get_authentication_service),
) -> ApiResponse[IdentityView]:
    record = service.get_profile(claims.identity_id)
    return ApiResponse(
        success=True, message="Profile retrieved", data=IdentityView.from_record(record)
    )


@router.patch(
    "/me",
    response_model=ApiResponse[IdentityView],
    response_model_exclude_none=True,
    responses={**_ROLE_ERRORS, 409: {"description": "Phone number already registered"}},
    summary="Update the signed-in organization",
)
def update_organization(
    request_data: ProfileUpdateRequest,
    claims: TokenClaims = Depends(require_role("hospital")),
    service: AuthenticationService = Depends(get_authentication_service),
) -> ApiResponse[IdentityView]:
    changes = snake_keys(request_data.submitted())
    if "hospital_name" in changes:
        changes.setdefault("organization_name", changes.pop("hospital_name"))
    record = service.update_profile(claims.identity_id, changes)
    return ApiResponse(
        success=True, message="Profile updated successfully", data=IdentityView.from_record(record)
    )
