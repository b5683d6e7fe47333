"""Distribution models — pending roots, claim receipts, governance state.

Hashes are 32-byte values, amounts are integers in the asset's smallest
unit, and times are integer seconds since the epoch.

Invariants enforced by these models:
- A pending root is either fully present or absent (no half-set slot)
- The flat pending view reports submitted_at == 0 when absent
- A claim receipt records the delta actually paid, never the cumulative total
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Optional

from distributor.crypto.encoding import ZERO_HASH, hash_hex, to_hash32


class GovernanceState(str, enum.Enum):
    """Root governance state.

    State machine:
        NO_PENDING_ROOT → PENDING_ROOT_AWAITING_TIMELOCK   (propose, timelock > 0)
        PENDING_ROOT_AWAITING_TIMELOCK → NO_PENDING_ROOT   (accept, force, revoke)
        PENDING_ROOT_AWAITING_TIMELOCK → PENDING_ROOT_AWAITING_TIMELOCK
                                                           (propose overwrites)
    """
    NO_PENDING_ROOT = "no_pending_root"
    PENDING_ROOT_AWAITING_TIMELOCK = "pending_root_awaiting_timelock"


@dataclass(frozen=True)
class PendingRoot:
    """A proposed (root, ipfs_hash) pair waiting out the timelock."""
    root: bytes
    ipfs_hash: bytes
    submitted_at: int

    def matures_at(self, timelock: int) -> int:
        """First timestamp at which the pending root may be accepted.

        Uses whatever timelock is passed in: the caller supplies the
        live value, not one captured at proposal time.
        """
        return self.submitted_at + timelock

    def is_mature(self, now: int, timelock: int) -> bool:
        return now >= self.matures_at(timelock)

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": hash_hex(self.root),
            "ipfs_hash": hash_hex(self.ipfs_hash),
            "submitted_at": self.submitted_at,
        }

    @staticmethod
    def from_dict(data: Optional[dict[str, Any]]) -> Optional[PendingRoot]:
        if not data or int(data.get("submitted_at", 0)) == 0:
            return None
        return PendingRoot(
            root=to_hash32(data["root"]),
            ipfs_hash=to_hash32(data["ipfs_hash"]),
            submitted_at=int(data["submitted_at"]),
        )


def pending_root_view(pending: Optional[PendingRoot]) -> tuple[bytes, bytes, int]:
    """Flat (root, ipfs_hash, submitted_at) view with the zero sentinel."""
    if pending is None:
        return ZERO_HASH, ZERO_HASH, 0
    return pending.root, pending.ipfs_hash, pending.submitted_at


@dataclass(frozen=True)
class ClaimReceipt:
    """Outcome of a successful claim."""
    account: str
    asset: str
    amount_paid: int
    cumulative: int
    event_id: Optional[str] = None
    confirmed: bool = True
    tx_hash: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "account": self.account,
            "asset": self.asset,
            "amount_paid": str(self.amount_paid),
            "cumulative": str(self.cumulative),
            "event_id": self.event_id,
            "confirmed": self.confirmed,
            "tx_hash": self.tx_hash,
        }
