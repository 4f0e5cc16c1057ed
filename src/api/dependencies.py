"""
FastAPI dependencies - Dependency injection factories.

This module provides Depends() factories for injecting
domain services and infrastructure adapters into routes.
Long-lived collaborators (repository, senders, settings, clock) are created
during app lifespan startup and stored in app.state.
"""

from collections.abc import Callable
from datetime import datetime, timedelta

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from src.api.cookies import ACCESS_COOKIE, CookiePolicy
from src.config.settings import Settings
from src.domain.authentication import AuthenticationService
from src.domain.exceptions import Forbidden, VerificationRequired
from src.domain.lockout import LockoutGuard
from src.domain.ports import IdentityRepository, NotificationSender, VerificationCodeSender
from src.domain.registration import RegistrationService
from src.domain.tokens import SessionTokenManager, TokenClaims
from src.domain.verification import VerificationCodeEngine


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_clock(request: Request) -> Callable[[], datetime]:
    return request.app.state.clock


def get_repository(request: Request) -> IdentityRepository:
    """
    Get identity repository from app state.

    The repository is created during app lifespan startup (Postgres pool or
    in-memory store, depending on REPOSITORY_BACKEND).
    """
    return request.app.state.repository


def get_code_sender(request: Request) -> VerificationCodeSender:
    return request.app.state.code_sender


def get_notifier(request: Request) -> NotificationSender:
    return request.app.state.notifier


def get_cookie_policy(settings: Settings = Depends(get_settings)) -> CookiePolicy:
    return CookiePolicy.from_settings(settings)


def get_session_manager(
    repository: IdentityRepository = Depends(get_repository),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> SessionTokenManager:
    return SessionTokenManager(
        repository=repository,
        secret=settings.jwt_secret,
        access_ttl=timedelta(seconds=settings.access_token_ttl_seconds),
        refresh_ttl=timedelta(seconds=settings.refresh_token_ttl_seconds),
        clock=clock,
    )


def get_code_engine(
    repository: IdentityRepository = Depends(get_repository),
    sender: VerificationCodeSender = Depends(get_code_sender),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> VerificationCodeEngine:
    return VerificationCodeEngine(
        repository=repository,
        sender=sender,
        code_ttl=timedelta(seconds=settings.code_ttl_seconds),
        resend_interval=timedelta(seconds=settings.resend_interval_seconds),
        max_sends=settings.max_code_sends,
        attempts_display_limit=settings.code_attempts_display_limit,
        clock=clock,
    )


def get_registration_service(
    repository: IdentityRepository = Depends(get_repository),
    code_engine: VerificationCodeEngine = Depends(get_code_engine),
    sessions: SessionTokenManager = Depends(get_session_manager),
    notifier: NotificationSender = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> RegistrationService:
    """
    Create registration service with injected dependencies.

    Wires together the repository, code engine, session manager and
    notification sender for the domain service.
    """
    return RegistrationService(
        repository=repository,
        code_engine=code_engine,
        sessions=sessions,
        notifier=notifier,
        bcrypt_cost=settings.bcrypt_cost,
        clock=clock,
    )


def get_authentication_service(
    repository: IdentityRepository = Depends(get_repository),
    sessions: SessionTokenManager = Depends(get_session_manager),
    notifier: NotificationSender = Depends(get_notifier),
    settings: Settings = Depends(get_settings),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> AuthenticationService:
    lockout = LockoutGuard(
        repository=repository,
        max_attempts=settings.max_login_attempts,
        lock_duration=timedelta(seconds=settings.lock_duration_seconds),
        clock=clock,
    )
    return AuthenticationService(
        repository=repository,
        sessions=sessions,
        lockout=lockout,
        notifier=notifier,
        frontend_url=settings.frontend_url,
        bcrypt_cost=settings.bcrypt_cost,
        reset_ttl=timedelta(seconds=settings.reset_token_ttl_seconds),
        clock=clock,
    )


# Bearer security scheme for OpenAPI documentation; cookie is the fallback
http_bearer = HTTPBearer(auto_error=False)


def get_current_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(http_bearer),
    sessions: SessionTokenManager = Depends(get_session_manager),
) -> TokenClaims:
    """
    Authenticate the caller from the Authorization header or access cookie.

    Raises:
        InvalidSession: Missing, invalid or expired access token (401)
    """
    token = credentials.credentials if credentials is not None else request.cookies.get(ACCESS_COOKIE)
    return sessions.authenticate(token)


def require_role(*roles: str) -> Callable[..., TokenClaims]:
    """Dependency factory restricting a route to the given roles."""

    def dependency(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
        if claims.role not in roles:
            raise Forbidden()
        return claims

    return dependency


def require_verified_patient(
    claims: TokenClaims = Depends(require_role("patient")),
    service: AuthenticationService = Depends(get_authentication_service),
) -> TokenClaims:
    """
    Restrict a route to patients whose phone number is verified.

    Raises:
        Forbidden: Caller is not a patient (403)
        VerificationRequired: Phone number not verified (403)
    """
    if not service.get_profile(claims.identity_id).contact_verified:
        raise VerificationRequired()
    return claims
