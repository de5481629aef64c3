"""Error types raised (or returned inside ``AuthFailure``) by the user pool client."""

from __future__ import annotations

from typing import Any, Optional

# Status codes the service uses for throttling and transient outages.
_RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


class UserPoolError(RuntimeError):
    pass


class ConfigurationError(UserPoolError):
    """Missing or malformed pool/user configuration, raised before any network call."""


class RemoteError(UserPoolError):
    """An error reported by the identity service or by the transport reaching it.

    ``code`` is the service's error type (``NotAuthorizedException``,
    ``UserNotFoundException``, ...) or ``TimeoutError`` / ``NetworkError`` for
    transport failures. ``retryable`` marks failures the caller may re-invoke.
    """

    def __init__(
        self,
        code: str,
        message: str = "",
        *,
        status_code: Optional[int] = None,
        retryable: bool = False,
    ):
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message
        self.status_code = status_code
        self.retryable = retryable

    @classmethod
    def from_response(cls, status_code: int, payload: Any) -> "RemoteError":
        body = payload if isinstance(payload, dict) else {}
        raw_type = str(body.get("__type") or f"HTTP{status_code}")
        code = raw_type.split("#")[-1]
        message = str(body.get("message") or body.get("Message") or "")
        return cls(
            code,
            message,
            status_code=status_code,
            retryable=status_code in _RETRYABLE_STATUS_CODES,
        )


class ProtocolInvariantViolation(UserPoolError):
    """Server-supplied SRP values failed a safety check (zero B, u or S, or missing fields)."""


class StorageError(UserPoolError):
    pass


class UnsupportedChallengeError(UserPoolError):
    def __init__(self, challenge_name: str, reason: str = "not supported by this client"):
        super().__init__(f"Challenge {challenge_name} {reason}")
        self.challenge_name = challenge_name


class NotAuthenticatedError(UserPoolError):
    pass
