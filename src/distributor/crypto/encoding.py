"""Value normalisation for the distributor's on-wire types.

Identities and asset ids are EIP-55 checksummed addresses. Roots, IPFS
pointers and salts are 32-byte values. Both are accepted in either raw or
0x-hex form at the edges and normalised here, so every comparison inside
the engine works on one canonical representation.
"""

from __future__ import annotations

from typing import Union

from eth_typing import ChecksumAddress
from eth_utils import is_address, to_bytes, to_checksum_address, to_hex


ZERO_HASH: bytes = b"\x00" * 32
ZERO_ADDRESS: ChecksumAddress = to_checksum_address("0x" + "00" * 20)

HashLike = Union[bytes, str]


def normalize_address(value: str) -> ChecksumAddress:
    """Return the checksummed form of an address, or raise ValueError."""
    if not isinstance(value, str) or not is_address(value):
        raise ValueError(f"Not a valid address: {value!r}")
    return to_checksum_address(value)


def to_hash32(value: HashLike) -> bytes:
    """Coerce a 32-byte hash given as bytes or 0x-hex into bytes."""
    if isinstance(value, str):
        try:
            raw = to_bytes(hexstr=value)
        except ValueError as e:
            raise ValueError(f"Not a hex string: {value!r}") from e
    elif isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
    else:
        raise ValueError(f"Unsupported hash type: {type(value).__name__}")
    if len(raw) != 32:
        raise ValueError(f"Hash must be 32 bytes, got {len(raw)}")
    return raw


def hash_hex(value: bytes) -> str:
    """Render a 32-byte hash as 0x-prefixed lowercase hex."""
    return to_hex(value)


def require_amount(value: int, name: str = "amount") -> int:
    """Validate a non-negative integer amount (bool is rejected)."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    return value
