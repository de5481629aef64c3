"""
User pool reference: ids, transport, storage and pool-level operations.
"""

from __future__ import annotations

import asyncio
import logging
import platform
import re
from dataclasses import dataclass
from typing import Any, Optional

from . import __version__
from .api_client import IdentityClient, IdentityProviderClient, default_endpoint
from .config import PoolSettings
from .errors import ConfigurationError
from .storage import MemoryStorage, Storage, StorageKeys
from .user import User

logger = logging.getLogger(__name__)

_POOL_ID_RE = re.compile(r"^[a-zA-Z0-9-]+_[0-9a-zA-Z]+$")


def _default_device_name() -> str:
    return f"userpool-python/{__version__} ({platform.system() or 'unknown'})"


@dataclass
class SignUpResult:
    user: User
    user_confirmed: bool
    user_sub: Optional[str]
    code_delivery_details: Optional[dict[str, Any]] = None


class UserPool:
    def __init__(
        self,
        user_pool_id: str,
        client_id: str,
        *,
        paranoia: int = 0,
        endpoint: Optional[str] = None,
        storage: Optional[Storage] = None,
        client: Optional[IdentityClient] = None,
        timeout: float = 20.0,
        device_name: Optional[str] = None,
    ):
        if not user_pool_id or not client_id:
            raise ConfigurationError("Both user_pool_id and client_id are required.")
        if not _POOL_ID_RE.match(user_pool_id):
            raise ConfigurationError(f"Invalid user pool id {user_pool_id!r}, expected <region>_<name>.")
        if paranoia < 0:
            raise ConfigurationError("paranoia must be >= 0")

        self.user_pool_id = user_pool_id
        self.client_id = client_id
        self.region, self.pool_name = user_pool_id.split("_", 1)
        self.paranoia = paranoia
        self.storage: Storage = storage if storage is not None else MemoryStorage()
        self.client: IdentityClient = client or IdentityProviderClient(
            endpoint or default_endpoint(self.region), timeout=timeout
        )
        self.device_name = device_name or _default_device_name()
        self.keys = StorageKeys(client_id)
        self._locks: dict[str, asyncio.Lock] = {}

    @classmethod
    def from_settings(cls, settings: PoolSettings, **kwargs: Any) -> "UserPool":
        return cls(
            settings.user_pool_id,
            settings.client_id,
            paranoia=settings.paranoia,
            endpoint=settings.endpoint,
            timeout=settings.timeout,
            **kwargs,
        )

    def lock_for(self, username: str) -> asyncio.Lock:
        """Mutex serializing authentication attempts for one identity."""
        lock = self._locks.get(username)
        if lock is None:
            lock = self._locks[username] = asyncio.Lock()
        return lock

    def get_user(self, username: str) -> User:
        return User(username, self)

    def get_current_user(self) -> Optional[User]:
        """The user who last signed in through this client, if any."""
        last_user = self.storage.get_item(self.keys.last_user())
        if not last_user:
            return None
        return User(last_user, self)

    async def sign_up(
        self,
        username: str,
        password: str,
        user_attributes: Optional[list[dict[str, str]]] = None,
        validation_data: Optional[list[dict[str, str]]] = None,
    ) -> SignUpResult:
        """Register a new user; raises :class:`~userpool.errors.RemoteError` on rejection."""
        logger.debug("SignUp for %s", username)
        data = await self.client.request(
            "SignUp",
            {
                "ClientId": self.client_id,
                "Username": username,
                "Password": password,
                "UserAttributes": user_attributes or [],
                "ValidationData": validation_data or [],
            },
        )
        return SignUpResult(
            user=User(username, self),
            user_confirmed=bool(data.get("UserConfirmed")),
            user_sub=data.get("UserSub"),
            code_delivery_details=data.get("CodeDeliveryDetails"),
        )
