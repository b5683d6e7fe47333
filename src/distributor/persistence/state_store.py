"""State store — JSON snapshot of a distributor and its ledger balances.

The event log is the audit trail; the state store is the fast restart
path. Writes go to a temporary file that is then renamed over the
snapshot, so a crash mid-write leaves the previous snapshot intact.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional


class StateStore:
    """Single-file JSON snapshot with atomic replace.

    Layout:
        {
          "distributor": {...Distributor.to_state()...},
          "balances": [...TokenBank.to_dict()...]
        }
    """

    def __init__(self, storage_path: Path) -> None:
        self._storage_path = storage_path
        self._data: dict[str, Any] = {}
        if storage_path.exists():
            self._data = json.loads(storage_path.read_text(encoding="utf-8"))

    @property
    def storage_path(self) -> Path:
        return self._storage_path

    def has_distributor(self) -> bool:
        return "distributor" in self._data

    def load_distributor(self) -> Optional[dict[str, Any]]:
        return self._data.get("distributor")

    def load_balances(self) -> list[dict[str, Any]]:
        return list(self._data.get("balances", []))

    def save(self, distributor: dict[str, Any], balances: list[dict[str, Any]]) -> None:
        """Replace the snapshot. Raises OSError if the write fails."""
        data = {"distributor": distributor, "balances": balances}
        tmp = self._storage_path.with_suffix(self._storage_path.suffix + ".tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.write("\n")
        os.replace(tmp, self._storage_path)
        self._data = data
