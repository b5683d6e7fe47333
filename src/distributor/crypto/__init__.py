"""Cryptographic primitives — leaf hashing, Merkle trees, proof verification."""

from distributor.crypto.encoding import ZERO_HASH, normalize_address, to_hash32
from distributor.crypto.merkle import (
    MerkleTree,
    build_distribution,
    leaf_hash,
    verify_proof,
)

__all__ = [
    "ZERO_HASH",
    "MerkleTree",
    "build_distribution",
    "leaf_hash",
    "normalize_address",
    "to_hash32",
    "verify_proof",
]
