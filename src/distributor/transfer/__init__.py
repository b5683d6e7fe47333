"""Payout backends — the asset transfer rail and its implementations."""

from distributor.transfer.rail import AssetTransfer, BankVault, TokenBank

__all__ = ["AssetTransfer", "BankVault", "TokenBank"]
