"""
Persistence for cached tokens and remembered-device secrets.

Keys follow the ``CognitoIdentityServiceProvider.<client_id>.<username>.<name>``
layout so a cache written by another client of the same service is readable.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol

from .errors import StorageError

logger = logging.getLogger(__name__)

try:
    import keyring
    import keyring.errors
except ImportError:  # pragma: no cover - optional dependency
    keyring = None

KEY_PREFIX = "CognitoIdentityServiceProvider"


class Storage(Protocol):
    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...

    def remove_item(self, key: str) -> None: ...


class MemoryStorage:
    """Process-local storage; the default when nothing else is configured."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def clear(self) -> None:
        self._data.clear()


class KeyringStorage:
    """
    Storage in the OS keyring, one keyring entry per key.
    """

    def __init__(self, service: str = "userpool"):
        if keyring is None:
            raise RuntimeError("Install optional dependency `keyring` to use KeyringStorage")
        self.service = service

    def get_item(self, key: str) -> Optional[str]:
        try:
            return keyring.get_password(self.service, key)
        except keyring.errors.KeyringError as exc:
            raise StorageError(f"Failed to read {key} from keyring: {exc}") from exc

    def set_item(self, key: str, value: str) -> None:
        try:
            keyring.set_password(self.service, key, value)
        except keyring.errors.KeyringError as exc:
            raise StorageError(f"Failed to write {key} to keyring: {exc}") from exc

    def remove_item(self, key: str) -> None:
        try:
            keyring.delete_password(self.service, key)
        except keyring.errors.PasswordDeleteError:
            logger.debug("Keyring entry %s already absent", key)
        except keyring.errors.KeyringError as exc:
            raise StorageError(f"Failed to delete {key} from keyring: {exc}") from exc


class StorageKeys:
    """Key names for one app client."""

    TOKEN_NAMES = ("idToken", "accessToken", "refreshToken")
    DEVICE_NAMES = ("deviceKey", "randomPasswordKey", "deviceGroupKey")

    def __init__(self, client_id: str, prefix: str = KEY_PREFIX):
        self.base = f"{prefix}.{client_id}"

    def user_key(self, username: str, name: str) -> str:
        return f"{self.base}.{username}.{name}"

    def last_user(self) -> str:
        return f"{self.base}.LastAuthUser"
