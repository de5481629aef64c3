"""
Device identities: the secondary SRP secret that lets a remembered device
sign in without the user's password.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Optional

from .bigsecret import to_canonical_hex
from .srp import RFC5054_3072, GroupParameters, compute_x, random_bytes

DEVICE_PASSWORD_BYTES = 40
DEVICE_SALT_BYTES = 16


def _hex_to_b64(hex_str: str) -> str:
    return base64.b64encode(bytes.fromhex(hex_str)).decode("ascii")


@dataclass(frozen=True)
class DeviceSecret:
    """Random device password plus the salt/verifier the server stores for it.

    ``salt_hex`` and ``verifier_hex`` are canonical hex strings.
    """

    password: str
    salt_hex: str
    verifier_hex: str

    def verifier_config(self) -> dict[str, str]:
        """``DeviceSecretVerifierConfig`` payload for ConfirmDevice."""
        return {
            "Salt": _hex_to_b64(self.salt_hex),
            "PasswordVerifier": _hex_to_b64(self.verifier_hex),
        }


def generate_device_secret(
    device_group_key: str,
    device_key: str,
    paranoia: int = 0,
    *,
    group: GroupParameters = RFC5054_3072,
) -> DeviceSecret:
    """Mint a device password and its verifier ``v = g^x mod N``.

    ``x`` is computed like the user's, with the device group key as the
    namespace and the device key as the identity.
    """
    password = base64.b64encode(random_bytes(DEVICE_PASSWORD_BYTES, paranoia)).decode("ascii")
    salt = int.from_bytes(random_bytes(DEVICE_SALT_BYTES, paranoia), "big")
    x = compute_x(device_group_key, device_key, password, salt)
    verifier = pow(group.generator, x, group.modulus)
    return DeviceSecret(
        password=password,
        salt_hex=to_canonical_hex(salt),
        verifier_hex=to_canonical_hex(verifier),
    )


@dataclass(frozen=True)
class DeviceIdentity:
    """A remembered device as held by a signed-in user.

    The verifier fields are only known right after registration; a device
    loaded from storage carries just the key, group key and password.
    """

    device_key: str
    device_group_key: str
    device_password: str
    device_verifier_salt: Optional[str] = None
    device_verifier: Optional[str] = None


@dataclass(frozen=True)
class PendingDeviceRegistration:
    """A freshly generated device secret awaiting ConfirmDevice.

    Nothing about the device is applied to a user until the server has
    accepted the verifier; :meth:`identity` is what gets committed then.
    """

    device_key: str
    device_group_key: str
    secret: DeviceSecret

    @classmethod
    def generate(
        cls, device_key: str, device_group_key: str, paranoia: int = 0
    ) -> "PendingDeviceRegistration":
        secret = generate_device_secret(device_group_key, device_key, paranoia)
        return cls(device_key=device_key, device_group_key=device_group_key, secret=secret)

    def confirm_device_request(self, access_token: str, device_name: str) -> dict:
        return {
            "DeviceKey": self.device_key,
            "AccessToken": access_token,
            "DeviceSecretVerifierConfig": self.secret.verifier_config(),
            "DeviceName": device_name,
        }

    def identity(self) -> DeviceIdentity:
        return DeviceIdentity(
            device_key=self.device_key,
            device_group_key=self.device_group_key,
            device_password=self.secret.password,
            device_verifier_salt=self.secret.salt_hex,
            device_verifier=self.secret.verifier_hex,
        )
