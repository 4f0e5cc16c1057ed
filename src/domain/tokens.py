"""
Session tokens - paired access/refresh JWTs signed with one shared secret.

Access tokens live 15 minutes, refresh tokens 7 days. Rotation accepts a
refresh token, re-checks the identity and issues a fresh pair; there is no
rotation-chain tracking or reuse detection.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from .exceptions import InvalidSession
from .models import SessionPair, utcnow
from .ports import IdentityRepository

ALGORITHM = "HS256"
ACCESS = "access"
REFRESH = "refresh"


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a session token."""

    identity_id: str
    role: str
    token_type: str
    expires_at: datetime


@dataclass
class SessionTokenManager:
    """Issues, verifies and rotates session token pairs."""

    repository: IdentityRepository
    secret: str
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)
    clock: Callable[[], datetime] = field(default=utcnow)

    def issue(self, identity_id: str, role: str) -> SessionPair:
        now = self.clock()
        access_expires_at = now + self.access_ttl
        refresh_expires_at = now + self.refresh_ttl
        return SessionPair(
            access_token=self._encode(identity_id, role, ACCESS, now, access_expires_at),
            refresh_token=self._encode(identity_id, role, REFRESH, now, refresh_expires_at),
            access_expires_at=access_expires_at,
            refresh_expires_at=refresh_expires_at,
        )

    def rotate(self, refresh_token: str | None) -> SessionPair:
        """
        Exchange a refresh token for a new pair.

        Raises:
            InvalidSession: If the token is missing, invalid, expired, not a
                refresh token, or its identity is missing or inactive
        """
        if not refresh_token:
            raise InvalidSession("Refresh token required")

        claims = self.verify(refresh_token, expected_type=REFRESH)
        record = self.repository.get(claims.identity_id)
        if record is None or not record.active:
            raise InvalidSession()
        return self.issue(record.id, record.role)

    def authenticate(self, access_token: str | None) -> TokenClaims:
        """
        Verify an access token.

        Raises:
            InvalidSession: If the token is missing or invalid
        """
        if not access_token:
            raise InvalidSession("Access token required")
        return self.verify(access_token, expected_type=ACCESS)

    def verify(self, token: str, expected_type: str) -> TokenClaims:
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[ALGORITHM],
                options={
                    "require": ["sub", "exp", "type"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.InvalidTokenError as exc:
            raise InvalidSession("Invalid token") from exc

        expires_at = datetime.fromtimestamp(payload["exp"], tz=timezone.utc)
        if self.clock() >= expires_at:
            raise InvalidSession("Token expired")
        if payload["type"] != expected_type:
            raise InvalidSession("Invalid token")

        return TokenClaims(
            identity_id=payload["sub"],
            role=payload.get("role", ""),
            token_type=payload["type"],
            expires_at=expires_at,
        )

    def _encode(
        self,
        identity_id: str,
        role: str,
        token_type: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> str:
        payload: dict[str, Any] = {
            "sub": identity_id,
            "role": role,
            "type": token_type,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
            "jti": uuid.uuid4().hex,
        }
        return jwt.encode(payload, self.secret, algorithm=ALGORITHM)
