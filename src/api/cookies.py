"""
Session cookie transport policy.

Both tokens travel as httpOnly cookies on path ``/``. SameSite defaults to
``none`` in production (cross-site frontend) and ``lax`` elsewhere; ``secure``
is forced whenever SameSite is ``none`` because browsers reject the
combination otherwise.
"""

from dataclasses import dataclass
from typing import Literal

from fastapi import Response

from src.config.settings import Settings
from src.domain.models import SessionPair

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


@dataclass(frozen=True)
class CookiePolicy:
    samesite: Literal["lax", "strict", "none"]
    secure: bool
    domain: str | None
    access_max_age: int
    refresh_max_age: int

    @classmethod
    def from_settings(cls, settings: Settings) -> "CookiePolicy":
        samesite = settings.cookie_samesite or ("none" if settings.is_production else "lax")
        return cls(
            samesite=samesite,
            secure=settings.is_production or samesite == "none",
            domain=settings.cookie_domain,
            access_max_age=settings.access_token_ttl_seconds,
            refresh_max_age=settings.refresh_token_ttl_seconds,
        )

    def set_session(self, response: Response, session: SessionPair) -> None:
        self._set(response, ACCESS_COOKIE, session.access_token, self.access_max_age)
        self._set(response, REFRESH_COOKIE, session.refresh_token, self.refresh_max_age)

    def clear_session(self, response: Response) -> None:
        """Expire both cookies; safe to call without an active session."""
        for key in (ACCESS_COOKIE, REFRESH_COOKIE):
            response.delete_cookie(
                key,
                path="/",
                domain=self.domain,
                secure=self.secure,
                httponly=True,
                samesite=self.samesite,
            )

    def _set(self, response: Response, key: str, value: str, max_age: int) -> None:
        response.set_cookie(
            key,
            value,
            max_age=max_age,
            path="/",
            domain=self.domain,
            secure=self.secure,
            httponly=True,
            samesite=self.samesite,
        )
