"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- A controllable clock
- In-memory repository and recording delivery doubles
- Wired domain services (low bcrypt cost for speed)
- An application running on the in-memory backend
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from src.adapters.repository import InMemoryIdentityRepository
from src.api.main import create_app
from src.config.settings import Settings
from src.domain.authentication import AuthenticationService
from src.domain.lockout import LockoutGuard
from src.domain.models import IdentityRecord
from src.domain.registration import RegistrationService
from src.domain.tokens import SessionTokenManager
from src.domain.verification import VerificationCodeEngine
from tests.factories import (
    BCRYPT_TEST_COST,
    QUESTIONNAIRE,
    STRONG_PASSWORD,
    TEST_SECRET,
    FrozenClock,
    RecordingCodeSender,
    RecordingNotifier,
    personal_info,
)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def repository(clock: FrozenClock) -> InMemoryIdentityRepository:
    return InMemoryIdentityRepository(clock=clock)


@pytest.fixture
def code_sender() -> RecordingCodeSender:
    return RecordingCodeSender()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def sessions(repository: InMemoryIdentityRepository, clock: FrozenClock) -> SessionTokenManager:
    return SessionTokenManager(repository=repository, secret=TEST_SECRET, clock=clock)


@pytest.fixture
def code_engine(
    repository: InMemoryIdentityRepository, code_sender: RecordingCodeSender, clock: FrozenClock
) -> VerificationCodeEngine:
    return VerificationCodeEngine(repository=repository, sender=code_sender, clock=clock)


@pytest.fixture
def lockout(repository: InMemoryIdentityRepository, clock: FrozenClock) -> LockoutGuard:
    return LockoutGuard(repository=repository, clock=clock)


@pytest.fixture
def registration(
    repository: InMemoryIdentityRepository,
    code_engine: VerificationCodeEngine,
    sessions: SessionTokenManager,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> RegistrationService:
    return RegistrationService(
        repository=repository,
        code_engine=code_engine,
        sessions=sessions,
        notifier=notifier,
        bcrypt_cost=BCRYPT_TEST_COST,
        clock=clock,
    )


@pytest.fixture
def authentication(
    repository: InMemoryIdentityRepository,
    sessions: SessionTokenManager,
    lockout: LockoutGuard,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> AuthenticationService:
    return AuthenticationService(
        repository=repository,
        sessions=sessions,
        lockout=lockout,
        notifier=notifier,
        frontend_url="https://app.example.com",
        bcrypt_cost=BCRYPT_TEST_COST,
        clock=clock,
    )


@pytest.fixture
def awaiting_code(registration: RegistrationService) -> IdentityRecord:
    """A patient who has set credentials and is waiting for the SMS code."""
    registration.submit_personal_info(personal_info())
    registration.submit_medical_history("asha@example.com", {"ayurvedic_experience": True})
    registration.submit_assessment("asha@example.com", QUESTIONNAIRE)
    return registration.submit_credentials("asha@example.com", STRONG_PASSWORD).record


@pytest.fixture
def registered_patient(
    awaiting_code: IdentityRecord,
    registration: RegistrationService,
    code_sender: RecordingCodeSender,
) -> IdentityRecord:
    """A patient who has finished every registration stage."""
    return registration.verify_code(awaiting_code.email, code_sender.last_code).record


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        repository_backend="memory",
        jwt_secret=TEST_SECRET,
        bcrypt_cost=BCRYPT_TEST_COST,
        delivery_timeout_seconds=2.0,
    )


@pytest.fixture
def app_client(
    test_settings: Settings,
    clock: FrozenClock,
    code_sender: RecordingCodeSender,
    notifier: RecordingNotifier,
) -> Generator[TestClient, None, None]:
    """
    Application on the in-memory backend with recording senders.

    Lifespan startup builds the repository; the recording doubles replace
    the console senders afterwards.
    """
    app = create_app(test_settings)
    with TestClient(app) as client:
        app.state.clock = clock
        app.state.code_sender = code_sender
        app.state.notifier = notifier
        yield client
