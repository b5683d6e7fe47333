"""Merkle tree implementation for cumulative entitlement commitments.

Uses keccak-256 as the hash function and sorted-pair hashing, so a proof is
just the list of sibling hashes: no left/right positions are needed.
Leaves are sorted before tree construction to ensure determinism
(canonical ordering).

A leaf commits to one (account, asset, cumulative amount) triple:

    leaf = keccak256(keccak256(abi.encode(address, address, uint256)))

The double hash keeps a 64-byte inner node from ever being mistaken for a
leaf preimage.

The distributor itself only calls verify_proof. MerkleTree and
build_distribution are the off-line tooling used to produce roots and
proofs from an entitlement table.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Sequence

from eth_abi import encode
from eth_utils import keccak

from distributor.crypto.encoding import (
    HashLike,
    hash_hex,
    normalize_address,
    require_amount,
    to_hash32,
)


LEAF_ABI_TYPES = ("address", "address", "uint256")


@dataclass(frozen=True)
class MerkleProof:
    """An inclusion proof for a single leaf."""
    leaf_hash: bytes
    path: list[bytes]  # Sibling hashes, bottom-up
    root: bytes


def leaf_hash(account: str, asset: str, amount: int) -> bytes:
    """Hash an entitlement triple into its leaf value."""
    require_amount(amount, "cumulative amount")
    encoded = encode(
        list(LEAF_ABI_TYPES),
        [normalize_address(account), normalize_address(asset), amount],
    )
    return keccak(keccak(encoded))


def hash_pair(a: bytes, b: bytes) -> bytes:
    """Hash two nodes together, smaller first."""
    if a < b:
        return keccak(a + b)
    return keccak(b + a)


def process_proof(proof: Sequence[HashLike], leaf: bytes) -> bytes:
    """Fold a proof onto a leaf and return the implied root."""
    computed = leaf
    for sibling in proof:
        computed = hash_pair(computed, to_hash32(sibling))
    return computed


def verify_proof(proof: Sequence[HashLike], root: bytes, leaf: bytes) -> bool:
    """Check that `leaf` is included in the tree committed to by `root`.

    Malformed siblings (wrong length, bad hex) make the proof invalid
    rather than raising.
    """
    try:
        return process_proof(proof, leaf) == root
    except ValueError:
        return False


class MerkleTree:
    """A deterministic sorted-pair Merkle tree using keccak-256.

    Usage:
        tree = MerkleTree()
        tree.add_leaf(leaf_hash(alice, token, 1000))
        tree.add_leaf(leaf_hash(bob, token, 250))
        root = tree.compute_root()
        proof = tree.inclusion_proof(leaf_hash(alice, token, 1000))
    """

    def __init__(self) -> None:
        self._leaves: list[bytes] = []
        self._tree: list[list[bytes]] = []
        self._computed = False

    def add_leaf(self, leaf: bytes) -> None:
        """Add a leaf hash. Must be called before compute_root."""
        if self._computed:
            raise RuntimeError("Tree already computed. Create a new tree.")
        self._leaves.append(to_hash32(leaf))

    @property
    def leaf_count(self) -> int:
        return len(self._leaves)

    def compute_root(self) -> bytes:
        """Compute the Merkle root.

        Leaves are sorted and de-duplicated for determinism. An odd node
        at the end of a level is promoted unchanged to the next level.
        """
        if not self._leaves:
            raise ValueError("Cannot compute the root of an empty tree")

        current_level = sorted(set(self._leaves))
        self._tree = [current_level]

        while len(current_level) > 1:
            next_level: list[bytes] = []
            for i in range(0, len(current_level), 2):
                if i + 1 < len(current_level):
                    next_level.append(hash_pair(current_level[i], current_level[i + 1]))
                else:
                    next_level.append(current_level[i])
            self._tree.append(next_level)
            current_level = next_level

        self._computed = True
        return current_level[0]

    def inclusion_proof(self, leaf: bytes) -> MerkleProof | None:
        """Generate an inclusion proof for a leaf.

        Returns None if the leaf is not in the tree.
        Must call compute_root first.
        """
        if not self._computed:
            raise RuntimeError("Must call compute_root before generating proofs")

        sorted_leaves = self._tree[0]
        if leaf not in sorted_leaves:
            return None

        idx = sorted_leaves.index(leaf)
        path: list[bytes] = []
        for level in self._tree[:-1]:
            sibling_idx = idx ^ 1
            if sibling_idx < len(level):
                path.append(level[sibling_idx])
            idx //= 2

        return MerkleProof(leaf_hash=leaf, path=path, root=self._tree[-1][0])


@dataclass(frozen=True)
class Entitlement:
    """One row of an entitlement table, with its proof once built."""
    account: str
    asset: str
    amount: int
    proof: tuple[bytes, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "account": self.account,
            "asset": self.asset,
            "amount": str(self.amount),
            "proof": [hash_hex(p) for p in self.proof],
        }


@dataclass(frozen=True)
class Distribution:
    """A root plus every entitlement with its proof."""
    root: bytes
    entitlements: tuple[Entitlement, ...]

    def find(self, account: str, asset: str) -> Entitlement | None:
        account = normalize_address(account)
        asset = normalize_address(asset)
        for e in self.entitlements:
            if e.account == account and e.asset == asset:
                return e
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": hash_hex(self.root),
            "entitlements": [e.to_dict() for e in self.entitlements],
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> Distribution:
        return Distribution(
            root=to_hash32(data["root"]),
            entitlements=tuple(
                Entitlement(
                    account=normalize_address(row["account"]),
                    asset=normalize_address(row["asset"]),
                    amount=int(row["amount"]),
                    proof=tuple(to_hash32(p) for p in row["proof"]),
                )
                for row in data["entitlements"]
            ),
        )


def build_distribution(rows: Iterable[tuple[str, str, int]]) -> Distribution:
    """Build a tree over (account, asset, cumulative amount) rows.

    Raises ValueError on duplicate (account, asset) keys: a tree may hold
    only one cumulative figure per pair.
    """
    seen: set[tuple[str, str]] = set()
    normalized: list[tuple[str, str, int]] = []
    for account, asset, amount in rows:
        key = (normalize_address(account), normalize_address(asset))
        if key in seen:
            raise ValueError(f"Duplicate entitlement for {key[0]} / {key[1]}")
        seen.add(key)
        normalized.append((key[0], key[1], require_amount(amount)))

    tree = MerkleTree()
    leaves = [leaf_hash(a, t, n) for a, t, n in normalized]
    for leaf in leaves:
        tree.add_leaf(leaf)
    root = tree.compute_root()

    entitlements: list[Entitlement] = []
    for (account, asset, amount), leaf in zip(normalized, leaves):
        proof = tree.inclusion_proof(leaf)
        assert proof is not None
        entitlements.append(
            Entitlement(account=account, asset=asset, amount=amount, proof=tuple(proof.path))
        )
    return Distribution(root=root, entitlements=tuple(entitlements))
