"""Distributor configuration — defaults from JSON, secrets from the environment.

Non-secret parameters live in config/distributor_params.json. Credentials
for the on-chain payout backend are never written there: they come from
DISTRIBUTOR_RPC_URL and DISTRIBUTOR_PRIVATE_KEY, optionally loaded from a
.env file at the project root.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from eth_utils import is_address


PARAMS_FILE = "distributor_params.json"
TRANSFER_BACKENDS = frozenset({"ledger", "erc20"})

DEFAULT_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


@dataclass(frozen=True)
class ChainSettings:
    """Transaction parameters for the ERC-20 backend."""
    chain_id: int
    gas: int
    gas_price_gwei: str


@dataclass(frozen=True)
class DistributorConfig:
    """Loaded distributor parameters.

    Loaded from config/distributor_params.json plus environment secrets.
    """
    default_timelock_seconds: int
    factory_address: str
    transfer_backend: str
    chain: ChainSettings
    state_file: str = "state.json"
    event_log_file: str = "events.jsonl"
    rpc_url: Optional[str] = None
    private_key: Optional[str] = field(default=None, repr=False)

    @classmethod
    def from_config_dir(
        cls,
        config_dir: Path = DEFAULT_CONFIG_DIR,
        env_file: Optional[Path] = None,
    ) -> DistributorConfig:
        """Load parameters from `config_dir` and secrets from the environment."""
        params = json.loads((config_dir / PARAMS_FILE).read_text(encoding="utf-8"))
        if env_file is not None:
            load_dotenv(env_file)
        else:
            load_dotenv()

        dist = params["distributor"]
        transfer = params["transfer"]
        storage = params.get("storage", {})
        return cls(
            default_timelock_seconds=int(dist["default_timelock_seconds"]),
            factory_address=dist["factory_address"],
            transfer_backend=transfer.get("backend", "ledger"),
            chain=ChainSettings(
                chain_id=int(transfer["chain_id"]),
                gas=int(transfer["gas"]),
                gas_price_gwei=str(transfer["gas_price_gwei"]),
            ),
            state_file=storage.get("state_file", "state.json"),
            event_log_file=storage.get("event_log_file", "events.jsonl"),
            rpc_url=os.getenv("DISTRIBUTOR_RPC_URL"),
            private_key=os.getenv("DISTRIBUTOR_PRIVATE_KEY"),
        )

    def validate(self) -> list[str]:
        """Return a list of problems; empty when the configuration is usable."""
        errors: list[str] = []
        if self.default_timelock_seconds < 0:
            errors.append(
                f"default_timelock_seconds must be >= 0, got {self.default_timelock_seconds}"
            )
        if not is_address(self.factory_address):
            errors.append(f"factory_address is not a valid address: {self.factory_address}")
        if self.transfer_backend not in TRANSFER_BACKENDS:
            errors.append(
                f"transfer backend must be one of {sorted(TRANSFER_BACKENDS)}, "
                f"got {self.transfer_backend!r}"
            )
        if self.chain.chain_id <= 0:
            errors.append(f"chain_id must be positive, got {self.chain.chain_id}")
        if self.chain.gas <= 0:
            errors.append(f"gas must be positive, got {self.chain.gas}")
        if self.transfer_backend == "erc20":
            if not self.rpc_url:
                errors.append("erc20 backend requires DISTRIBUTOR_RPC_URL")
            if not self.private_key:
                errors.append("erc20 backend requires DISTRIBUTOR_PRIVATE_KEY")
        return errors
