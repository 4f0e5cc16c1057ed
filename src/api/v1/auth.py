"""
API v1 authentication routes.

Patient login, session refresh, logout and the password lifecycle. Session
tokens travel as httpOnly cookies; the access token is also returned in the
body for bearer clients.
"""

from fastapi import APIRouter, Body, Depends, Request, Response

from src.api.cookies import REFRESH_COOKIE, CookiePolicy
from src.api.dependencies import (
    get_authentication_service,
    get_cookie_policy,
    require_verified_patient,
)
from src.api.models import (
    ApiResponse,
    ChangePasswordRequest,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshRequest,
    ResetPasswordRequest,
    SessionData,
    TokenData,
    session_data,
)
from src.domain.authentication import AuthenticationService
from src.domain.models import ActorKind
from src.domain.tokens import TokenClaims

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post(
    "/login",
    response_model=ApiResponse[SessionData],
    response_model_exclude_none=True,
    responses={
        401: {"description": "Invalid email or password"},
        403: {"description": "Registration incomplete, unverified or deactivated"},
        423: {"description": "Account temporarily locked"},
    },
    summary="Patient login",
)
def login(
    request_data: LoginRequest,
    response: Response,
    service: AuthenticationService = Depends(get_authentication_service),
    cookies: CookiePolicy = Depends(get_cookie_policy),
) -> ApiResponse[SessionData]:
    session = service.login(request_data.email, request_data.password, ActorKind.INDIVIDUAL)
    cookies.set_session(response, session.session)
    return ApiResponse(success=True, message="Login successful", data=session_data(session))


@router.post(
    "/refresh",
    response_model=ApiResponse[TokenData],
    response_model_exclude_none=True,
    responses={401: {"description": "Missing, invalid or expired refresh token"}},
    summary="Rotate the session token pair",
    description="Reads the refresh token from the body or the refreshToken cookie.",
)
def refresh(
    request: Request,
    response: Response,
    request_data: RefreshRequest | None = Body(default=None),
    service: AuthenticationService = Depends(get_authentication_service),
    cookies: CookiePolicy = Depends(get_cookie_policy),
) -> ApiResponse[TokenData]:
    token = request_data.refresh_token if request_data is not None else None
    session = service.refresh(token or request.cookies.get(REFRESH_COOKIE))
    cookies.set_session(response, session)
    return ApiResponse(
        success=True,
        message="Token refreshed successfully",
        data=TokenData(
            access_token=session.access_token,
            access_expires_at=session.access_expires_at,
            refresh_expires_at=session.refresh_expires_at,
        ),
    )


@router.post(
    "/logout",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    summary="Clear session cookies",
    description="Idempotent; succeeds without an active session.",
)
def logout(
    response: Response, cookies: CookiePolicy = Depends(get_cookie_policy)
) -> ApiResponse[None]:
    cookies.clear_session(response)
    return ApiResponse(success=True, message="Logged out successfully")


@router.post(
    "/forgot-password",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    summary="Request a password reset link",
    description="Always answers with the same message whether or not the account exists.",
)
def forgot_password(
    request_data: ForgotPasswordRequest,
    service: AuthenticationService = Depends(get_authentication_service),
) -> ApiResponse[None]:
    service.request_password_reset(request_data.email)
    return ApiResponse(
        success=True,
        message="If an account with that email exists, a password reset link has been sent",
    )


@router.post(
    "/reset-password",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    responses={400: {"description": "Invalid or expired reset token"}},
    summary="Set a new password with a reset token",
)
def reset_password(
    request_data: ResetPasswordRequest,
    service: AuthenticationService = Depends(get_authentication_service),
) -> ApiResponse[None]:
    service.reset_password(request_data.token, request_data.new_password)
    return ApiResponse(success=True, message="Password reset successful")


@router.post(
    "/change-password",
    response_model=ApiResponse[None],
    response_model_exclude_none=True,
    responses={
        401: {"description": "Not authenticated or current password incorrect"},
        403: {"description": "Not a patient account or phone number not verified"},
    },
    summary="Change password for the signed-in patient",
)
def change_password(
    request_data: ChangePasswordRequest,
    claims: TokenClaims = Depends(require_verified_patient),
    service: AuthenticationService = Depends(get_authentication_service),
) -> ApiResponse[None]:
    service.change_password(
        claims.identity_id, request_data.current_password, request_data.new_password
    )
    return ApiResponse(success=True, message="Password changed successfully")
