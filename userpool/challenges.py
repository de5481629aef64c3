"""Outcomes of one authentication step.

Every challenge-sequencing call on :class:`userpool.user.User` returns one of
the variants of :data:`AuthResult`; callers branch with ``isinstance``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from .errors import UserPoolError
from .tokens import UserSession


class AuthFlow(str, Enum):
    USER_SRP_AUTH = "USER_SRP_AUTH"
    CUSTOM_AUTH = "CUSTOM_AUTH"
    REFRESH_TOKEN_AUTH = "REFRESH_TOKEN_AUTH"


class ChallengeName(str, Enum):
    PASSWORD_VERIFIER = "PASSWORD_VERIFIER"
    SMS_MFA = "SMS_MFA"
    SOFTWARE_TOKEN_MFA = "SOFTWARE_TOKEN_MFA"
    CUSTOM_CHALLENGE = "CUSTOM_CHALLENGE"
    NEW_PASSWORD_REQUIRED = "NEW_PASSWORD_REQUIRED"
    DEVICE_SRP_AUTH = "DEVICE_SRP_AUTH"
    DEVICE_PASSWORD_VERIFIER = "DEVICE_PASSWORD_VERIFIER"


@dataclass(frozen=True)
class SignedIn:
    session: UserSession
    user_confirmation_necessary: bool = False


@dataclass(frozen=True)
class MfaRequired:
    """A one-time code is needed; answer with ``User.send_mfa_code``."""

    challenge_name: ChallengeName
    parameters: dict[str, Any] = field(default_factory=dict)

    @property
    def destination(self) -> str:
        return str(self.parameters.get("CODE_DELIVERY_DESTINATION", ""))


@dataclass(frozen=True)
class CustomChallengeRequired:
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class NewPasswordRequired:
    """The user must pick a new password (and fill ``required_attributes``)."""

    user_attributes: dict[str, Any] = field(default_factory=dict)
    required_attributes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class AuthFailure:
    error: UserPoolError

    def raise_error(self) -> None:
        raise self.error


AuthResult = Union[SignedIn, MfaRequired, CustomChallengeRequired, NewPasswordRequired, AuthFailure]
