"""
SRP-6a client engine for the user pool's password and device proofs.

The client never sends a password. It sends a public ephemeral value ``A``,
receives the server's ``B`` and salt, derives a 128-bit key that only a party
knowing the password (or the verifier) can compute, and signs a server
challenge with it.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .bigsecret import to_canonical_bytes
from .errors import ProtocolInvariantViolation

logger = logging.getLogger(__name__)

# RFC 5054 3072-bit group (same prime as RFC 3526 group 15).
_N_HEX = (
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3D"
    "C2007CB8A163BF0598DA48361C55D39A69163FA8FD24CF5F"
    "83655D23DCA3AD961C62F356208552BB9ED529077096966D"
    "670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9"
    "DE2BCBF6955817183995497CEA956AE515D2261898FA0510"
    "15728E5A8AAAC42DAD33170D04507A33A85521ABDF1CBA64"
    "ECFB850458DBEF0A8AEA71575D060C7DB3970F85A6E1E4C7"
    "ABF5AE8CDB0933D71E8C94E04A25619DCEE3D2261AD2EE6B"
    "F12FFA06D98A0864D87602733EC86A64521F2B18177B200C"
    "BBE117577A615D6C770988C0BAD946E208E24FA074E5AB31"
    "43DB5BFCE0FD108E4B82D120A93AD2CAFFFFFFFFFFFFFFFF"
)

# HKDF context label; the service derives its key with the same label.
DERIVED_KEY_INFO = b"Caldera Derived Key"
DERIVED_KEY_LENGTH = 16

SMALL_SECRET_BYTES = 128

_WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = ("Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec")


def _sha256(*parts: bytes) -> bytes:
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part)
    return digest.digest()


def _hash_to_int(*parts: bytes) -> int:
    return int.from_bytes(_sha256(*parts), "big")


# ---------------------------------------------------------------------------
# Group parameters
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GroupParameters:
    """Modulus ``N``, generator ``g`` and the derived multiplier ``k = H(N | g)``."""

    modulus: int
    generator: int
    multiplier: int = field(init=False, repr=False)

    def __post_init__(self) -> None:
        k = _hash_to_int(to_canonical_bytes(self.modulus), to_canonical_bytes(self.generator))
        object.__setattr__(self, "multiplier", k)


RFC5054_3072 = GroupParameters(modulus=int(_N_HEX, 16), generator=2)


def random_bytes(length: int, paranoia: int = 0) -> bytes:
    """Draw ``length`` bytes from the OS CSPRNG.

    Each paranoia level XOR-folds one more independent draw into the result.
    """
    if paranoia < 0:
        raise ValueError("paranoia must be >= 0")
    out = secrets.token_bytes(length)
    for _ in range(paranoia):
        extra = secrets.token_bytes(length)
        out = bytes(a ^ b for a, b in zip(out, extra))
    return out


def compute_x(group_name: str, identity: str, secret: str, salt: int) -> int:
    """Private key ``x = H(salt | H(group_name | identity | ":" | secret))``."""
    identity_hash = _sha256(f"{group_name}{identity}:{secret}".encode("utf-8"))
    return _hash_to_int(to_canonical_bytes(salt), identity_hash)


def _reject(message: str) -> ProtocolInvariantViolation:
    logger.warning("SRP safety check failed, possible tampered server response: %s", message)
    return ProtocolInvariantViolation(message)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


class SrpEngine:
    """One SRP-6a exchange: a fresh ephemeral key pair and the key it derives.

    Create one per authentication attempt; the small secret lives only as
    long as the engine.
    """

    def __init__(
        self,
        group_name: str,
        paranoia: int = 0,
        *,
        group: GroupParameters = RFC5054_3072,
        small_secret: Optional[int] = None,
    ):
        self.group_name = group_name
        self.paranoia = paranoia
        self.group = group
        if small_secret is None:
            small_secret = int.from_bytes(random_bytes(SMALL_SECRET_BYTES, paranoia), "big")
        self._small_secret = small_secret % group.modulus
        self._large_public = pow(group.generator, self._small_secret, group.modulus)
        if self._large_public % group.modulus == 0:
            raise _reject("A mod N cannot be 0")

    def public_value(self) -> int:
        return self._large_public

    def public_value_hex(self) -> str:
        """``A`` as sent on the wire (lowercase hex, no padding)."""
        return format(self._large_public, "x")

    def scrambling_parameter(self, server_public: int) -> int:
        return _hash_to_int(
            to_canonical_bytes(self._large_public), to_canonical_bytes(server_public)
        )

    def derive_session_key(
        self, identity: str, secret: str, server_public: int, salt: int
    ) -> bytes:
        """Return the 16-byte key used to sign the server's secret block."""
        n = self.group.modulus
        if server_public % n == 0:
            raise _reject("B mod N cannot be 0")

        u = self.scrambling_parameter(server_public)
        if u == 0:
            raise _reject("U cannot be 0")

        x = compute_x(self.group_name, identity, secret, salt)
        g_x = pow(self.group.generator, x, n)
        base = (server_public - self.group.multiplier * g_x) % n
        shared = pow(base, self._small_secret + u * x, n)
        if shared == 0:
            raise _reject("S cannot be 0")

        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=DERIVED_KEY_LENGTH,
            salt=to_canonical_bytes(u),
            info=DERIVED_KEY_INFO,
        )
        return hkdf.derive(to_canonical_bytes(shared))


# ---------------------------------------------------------------------------
# Proof helpers
# ---------------------------------------------------------------------------


def compute_claim_signature(
    key: bytes, group_name: str, identity: str, secret_block: str, timestamp: str
) -> str:
    """Base64 HMAC-SHA256 over ``group_name | identity | secret_block | timestamp``.

    ``secret_block`` is the base64 string the server sent and is signed in
    its decoded form.
    """
    try:
        block = base64.b64decode(secret_block, validate=True)
    except binascii.Error as exc:
        raise ProtocolInvariantViolation(f"SECRET_BLOCK is not valid base64: {exc}") from exc
    mac = hmac.HMAC(key, hashes.SHA256())
    mac.update(group_name.encode("utf-8"))
    mac.update(identity.encode("utf-8"))
    mac.update(block)
    mac.update(timestamp.encode("utf-8"))
    return base64.b64encode(mac.finalize()).decode("ascii")


def format_timestamp(moment: Optional[datetime] = None) -> str:
    """Format like ``Wed Sep 21 07:36:54 UTC 2016`` (day not zero-padded).

    Names are fixed English abbreviations; ``strftime`` would follow the locale.
    """
    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return (
        f"{_WEEKDAYS[moment.weekday()]} {_MONTHS[moment.month - 1]} {moment.day} "
        f"{moment:%H:%M:%S} UTC {moment.year}"
    )
