"""Asset transfer rail — the contract every payout backend must satisfy.

The claim ledger never moves value itself. It hands (asset, recipient,
amount) to an AssetTransfer bound to the distributor's holdings and treats
the call as all-or-nothing: it returns normally once the recipient is
credited, or raises TransferFailed and the claim is unwound.

Adding a backend = implement this Protocol. Zero changes to the engine.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Protocol, Tuple, runtime_checkable

from distributor.crypto.encoding import normalize_address, require_amount
from distributor.errors import TransferFailed

logger = logging.getLogger("distributor.transfer.rail")


@runtime_checkable
class AssetTransfer(Protocol):
    """Moves `amount` of `asset` from the distributor's holdings to `recipient`."""

    def transfer(self, asset: str, recipient: str, amount: int) -> None:
        ...


class TokenBank:
    """In-memory balance sheet keyed by (asset, holder).

    Stands in for the token contracts when the distributor runs off-chain:
    the CLI persists it next to the distributor state, and tests use it to
    observe payouts.

    Usage:
        bank = TokenBank()
        bank.mint(token, distributor_address, 10_000)
        vault = bank.vault(distributor_address)
        vault.transfer(token, alice, 1_000)
        bank.balance_of(token, alice)   # 1000
    """

    def __init__(self) -> None:
        self._balances: Dict[Tuple[str, str], int] = {}

    def balance_of(self, asset: str, holder: str) -> int:
        return self._balances.get((normalize_address(asset), normalize_address(holder)), 0)

    def mint(self, asset: str, holder: str, amount: int) -> int:
        """Credit `holder` with freshly issued units. Returns the new balance."""
        require_amount(amount)
        key = (normalize_address(asset), normalize_address(holder))
        self._balances[key] = self._balances.get(key, 0) + amount
        return self._balances[key]

    def move(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        """Move units between holders, or raise TransferFailed."""
        require_amount(amount)
        asset = normalize_address(asset)
        src = (asset, normalize_address(sender))
        dst = (asset, normalize_address(recipient))
        available = self._balances.get(src, 0)
        if available < amount:
            raise TransferFailed(
                f"Insufficient {asset} balance for {src[1]}: "
                f"has {available}, needs {amount}"
            )
        self._balances[src] = available - amount
        self._balances[dst] = self._balances.get(dst, 0) + amount

    def vault(self, holder: str) -> BankVault:
        """The AssetTransfer that pays out of `holder`'s balances."""
        return BankVault(self, normalize_address(holder))

    def to_dict(self) -> list[dict[str, Any]]:
        return [
            {"asset": asset, "holder": holder, "balance": str(balance)}
            for (asset, holder), balance in sorted(self._balances.items())
            if balance
        ]

    @staticmethod
    def from_dict(rows: list[dict[str, Any]]) -> TokenBank:
        bank = TokenBank()
        for row in rows:
            bank.mint(row["asset"], row["holder"], int(row["balance"]))
        return bank


class BankVault:
    """AssetTransfer backed by a TokenBank, paying from one holder."""

    def __init__(self, bank: TokenBank, holder: str) -> None:
        self._bank = bank
        self._holder = holder

    @property
    def holder(self) -> str:
        return self._holder

    def transfer(self, asset: str, recipient: str, amount: int) -> None:
        self._bank.move(asset, self._holder, recipient, amount)
        logger.debug(f"Moved {amount} of {asset} from {self._holder} to {recipient}")
