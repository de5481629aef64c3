"""Canonical hex encoding of the non-negative integers used by SRP.

Client and server hash the *bytes* of these integers, so both sides must
agree on one encoding: an even number of hex digits, and an extra ``00``
byte in front whenever the leading nibble is 8 or above (a two's-complement
parser would otherwise read it as negative).
"""

from __future__ import annotations

_HIGH_NIBBLES = frozenset("89abcdef")


def to_canonical_hex(value: int) -> str:
    """Encode ``value`` as lowercase, even-length, sign-safe hex."""
    if value < 0:
        raise ValueError("canonical hex is only defined for non-negative integers")
    hex_str = format(value, "x")
    if len(hex_str) % 2 == 1:
        hex_str = "0" + hex_str
    elif hex_str[0] in _HIGH_NIBBLES:
        hex_str = "00" + hex_str
    return hex_str


def from_canonical_hex(hex_str: str) -> int:
    """Decode a hex string (canonical or not) into a non-negative integer."""
    if not hex_str:
        raise ValueError("empty hex string")
    value = int(hex_str, 16)
    if value < 0:
        raise ValueError(f"negative value in hex string {hex_str!r}")
    return value


def to_canonical_bytes(value: int) -> bytes:
    return bytes.fromhex(to_canonical_hex(value))
