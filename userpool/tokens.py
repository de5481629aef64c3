"""Issued tokens and the session built from them."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import jwt

logger = logging.getLogger(__name__)

_DECODE_OPTIONS = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
    "verify_iss": False,
}


class _JwtToken:
    """A JWT whose claims are read, not verified; verification is the server's job."""

    def __init__(self, jwt_token: Optional[str] = None):
        self.jwt_token = jwt_token or ""
        self._payload: Optional[dict[str, Any]] = None

    @property
    def payload(self) -> dict[str, Any]:
        if self._payload is None:
            try:
                self._payload = jwt.decode(self.jwt_token, options=_DECODE_OPTIONS)
            except jwt.PyJWTError as exc:
                logger.debug("Could not decode %s: %s", type(self).__name__, exc)
                self._payload = {}
        return self._payload

    @property
    def expiration(self) -> int:
        """``exp`` claim in epoch seconds; 0 for an undecodable token."""
        return int(self.payload.get("exp", 0))

    @property
    def issued_at(self) -> int:
        return int(self.payload.get("iat", 0))

    def __repr__(self) -> str:
        return f"{type(self).__name__}(exp={self.expiration})"


class IdToken(_JwtToken):
    pass


class AccessToken(_JwtToken):
    @property
    def username(self) -> Optional[str]:
        return self.payload.get("username")


class RefreshToken:
    """Opaque to the client."""

    def __init__(self, token: Optional[str] = None):
        self.token = token or ""

    def __bool__(self) -> bool:
        return bool(self.token)

    def __repr__(self) -> str:
        return "RefreshToken(...)"


@dataclass
class UserSession:
    id_token: IdToken
    access_token: AccessToken
    refresh_token: Optional[RefreshToken] = None

    def __post_init__(self) -> None:
        if not self.id_token.jwt_token or not self.access_token.jwt_token:
            raise ValueError("Id token and access token must be present.")

    @classmethod
    def from_authentication_result(
        cls,
        result: dict[str, Any],
        fallback_refresh_token: Optional[RefreshToken] = None,
    ) -> "UserSession":
        """Build a session from an ``AuthenticationResult``.

        Refreshes do not always re-issue a refresh token, so the one used for
        the refresh is carried forward when the result omits it.
        """
        refresh = result.get("RefreshToken")
        return cls(
            id_token=IdToken(result.get("IdToken")),
            access_token=AccessToken(result.get("AccessToken")),
            refresh_token=RefreshToken(refresh) if refresh else fallback_refresh_token,
        )

    def is_valid(self, now: Optional[float] = None) -> bool:
        current = time.time() if now is None else now
        return current < self.access_token.expiration and current < self.id_token.expiration
