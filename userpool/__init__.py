"""
userpool: SRP-6a sign-in client for hosted user pools.

Proves a user's (or a remembered device's) password to the identity service
without sending it, and walks the MFA / custom / device challenges that a
sign-in may require.
"""

from __future__ import annotations

__version__ = "0.4.0"

from .challenges import (
    AuthFailure,
    AuthFlow,
    AuthResult,
    ChallengeName,
    CustomChallengeRequired,
    MfaRequired,
    NewPasswordRequired,
    SignedIn,
)
from .config import PoolSettings, load_config, load_settings, save_config
from .device import DeviceIdentity, PendingDeviceRegistration, generate_device_secret
from .errors import (
    ConfigurationError,
    NotAuthenticatedError,
    ProtocolInvariantViolation,
    RemoteError,
    StorageError,
    UnsupportedChallengeError,
    UserPoolError,
)
from .pool import SignUpResult, UserPool
from .storage import KeyringStorage, MemoryStorage
from .tokens import AccessToken, IdToken, RefreshToken, UserSession
from .user import User

__all__ = [
    "AccessToken",
    "AuthFailure",
    "AuthFlow",
    "AuthResult",
    "ChallengeName",
    "ConfigurationError",
    "CustomChallengeRequired",
    "DeviceIdentity",
    "IdToken",
    "KeyringStorage",
    "MemoryStorage",
    "MfaRequired",
    "NewPasswordRequired",
    "NotAuthenticatedError",
    "PendingDeviceRegistration",
    "PoolSettings",
    "ProtocolInvariantViolation",
    "RefreshToken",
    "RemoteError",
    "SignedIn",
    "SignUpResult",
    "StorageError",
    "UnsupportedChallengeError",
    "User",
    "UserPool",
    "UserPoolError",
    "UserSession",
    "generate_device_secret",
    "load_config",
    "load_settings",
    "save_config",
]
