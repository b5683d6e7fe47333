"""Data models for the reward distributor."""

from distributor.models.distribution import (
    ClaimReceipt,
    GovernanceState,
    PendingRoot,
    pending_root_view,
)

__all__ = [
    "ClaimReceipt",
    "GovernanceState",
    "PendingRoot",
    "pending_root_view",
]
