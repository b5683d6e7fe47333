"""Claim ledger — cumulative amount paid per (account, asset).

The ledger stores the latest proven cumulative entitlement, never a sum of
payments. A claim against a newer root with a larger entitlement therefore
pays only the newly accrued difference.
"""

from __future__ import annotations

from typing import Any, Iterator

from distributor.crypto.encoding import normalize_address
from distributor.errors import AlreadyClaimed


class ClaimLedger:
    """Running totals keyed by (account, asset).

    Usage:
        ledger = ClaimLedger()
        owed = ledger.owed(account, asset, 1000)
        previous = ledger.record(account, asset, 1000)
    """

    def __init__(self) -> None:
        self._claimed: dict[tuple[str, str], int] = {}

    def claimed(self, account: str, asset: str) -> int:
        return self._claimed.get((account, asset), 0)

    def owed(self, account: str, asset: str, cumulative: int) -> int:
        """Delta still owed for a cumulative entitlement.

        Raises AlreadyClaimed when nothing positive remains.
        """
        already = self.claimed(account, asset)
        owed = cumulative - already
        if owed <= 0:
            raise AlreadyClaimed(
                f"{account} already claimed {already} of {asset}; "
                f"cumulative {cumulative} leaves nothing owed"
            )
        return owed

    def record(self, account: str, asset: str, cumulative: int) -> int:
        """Store a new cumulative total, returning the previous one.

        The total never decreases.
        """
        previous = self.claimed(account, asset)
        if cumulative < previous:
            raise ValueError(
                f"Cumulative total cannot decrease: {cumulative} < {previous}"
            )
        self._claimed[(account, asset)] = cumulative
        return previous

    def restore(self, account: str, asset: str, previous: int, recorded: int) -> None:
        """Undo a record() whose follow-up transfer failed.

        Only rolls back if the total is still the one that record() wrote.
        """
        if self.claimed(account, asset) != recorded:
            return
        if previous == 0:
            self._claimed.pop((account, asset), None)
        else:
            self._claimed[(account, asset)] = previous

    def items(self) -> Iterator[tuple[tuple[str, str], int]]:
        return iter(sorted(self._claimed.items()))

    def __len__(self) -> int:
        return len(self._claimed)

    def to_dict(self) -> list[dict[str, Any]]:
        return [
            {"account": account, "asset": asset, "cumulative": str(total)}
            for (account, asset), total in self.items()
        ]

    @staticmethod
    def from_dict(rows: list[dict[str, Any]]) -> ClaimLedger:
        ledger = ClaimLedger()
        for row in rows:
            key = (normalize_address(row["account"]), normalize_address(row["asset"]))
            ledger._claimed[key] = int(row["cumulative"])
        return ledger
