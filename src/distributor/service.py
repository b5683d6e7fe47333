"""Distributor service — facade over one distributor, its ledger and storage.

This is the primary interface for programmatic and CLI access. It wires
together:
- The distributor engine (root governance + claims)
- The payout backend (in-memory TokenBank or an ERC-20 rail)
- Persistence (event log, state snapshot)

All operations produce typed results. Domain rejections and malformed
input become failed results carrying the error message; nothing is
dropped silently. State is snapshotted after every successful mutation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from distributor.crypto.encoding import HashLike, hash_hex, normalize_address
from distributor.crypto.merkle import Distribution
from distributor.engine.distributor import Distributor
from distributor.engine.factory import DistributorFactory
from distributor.errors import DistributorError
from distributor.persistence.state_store import StateStore
from distributor.transfer.rail import TokenBank

logger = logging.getLogger("distributor.service")


@dataclass(frozen=True)
class ServiceResult:
    """Result of a service operation."""
    success: bool
    errors: list[str] = field(default_factory=list)
    data: dict[str, Any] = field(default_factory=dict)


class DistributorService:
    """Facade over a single distributor instance.

    Usage:
        service = DistributorService.deploy(factory, caller, owner, 86_400,
                                            root, ipfs_hash, salt, bank=bank)
        result = service.propose_root(owner, new_root, new_ipfs)
        result = service.accept_root(anyone)
        result = service.claim(account, token, 1_000, proof)

    Persistence (optional):
        service = DistributorService(dist, bank=bank, state_store=store)
        # A snapshot is written after each successful mutation.
    """

    def __init__(
        self,
        distributor: Distributor,
        bank: Optional[TokenBank] = None,
        state_store: Optional[StateStore] = None,
    ) -> None:
        self._distributor = distributor
        self._bank = bank
        self._state_store = state_store

        # Set when a snapshot write fails after the audit event was written.
        # In-memory state matches the event log; the snapshot is stale.
        self._persistence_degraded = False

    @classmethod
    def deploy(
        cls,
        factory: DistributorFactory,
        caller: str,
        owner: str,
        timelock: int,
        root: HashLike,
        ipfs_hash: HashLike,
        salt: HashLike,
        bank: Optional[TokenBank] = None,
        state_store: Optional[StateStore] = None,
    ) -> DistributorService:
        """Create a distributor through the factory and wrap it."""
        distributor = factory.create_distributor(caller, owner, timelock, root, ipfs_hash, salt)
        service = cls(distributor, bank=bank, state_store=state_store)
        service._persist_state()
        return service

    @property
    def distributor(self) -> Distributor:
        return self._distributor

    @property
    def persistence_degraded(self) -> bool:
        return self._persistence_degraded

    # ------------------------------------------------------------------
    # Root governance
    # ------------------------------------------------------------------

    def propose_root(self, caller: str, root: HashLike, ipfs_hash: HashLike) -> ServiceResult:
        return self._run(
            "propose_root",
            lambda: self._distributor.propose_root(caller, root, ipfs_hash),
        )

    def accept_root(self, caller: str) -> ServiceResult:
        return self._run(
            "accept_root",
            lambda: self._distributor.accept_root_update(caller),
        )

    def force_root(self, caller: str, root: HashLike, ipfs_hash: HashLike) -> ServiceResult:
        return self._run(
            "force_root",
            lambda: self._distributor.force_update_root(caller, root, ipfs_hash),
        )

    def revoke_root(self, caller: str) -> ServiceResult:
        return self._run(
            "revoke_root",
            lambda: self._distributor.revoke_pending_root(caller),
        )

    def set_timelock(self, caller: str, timelock: int) -> ServiceResult:
        return self._run(
            "set_timelock",
            lambda: self._distributor.update_timelock(caller, timelock),
        )

    def set_updater(self, caller: str, updater: str, active: bool) -> ServiceResult:
        return self._run(
            "set_updater",
            lambda: self._distributor.update_root_updater(caller, updater, active),
        )

    def set_owner(self, caller: str, new_owner: str) -> ServiceResult:
        return self._run(
            "set_owner",
            lambda: self._distributor.set_owner(caller, new_owner),
        )

    # ------------------------------------------------------------------
    # Claims and balances
    # ------------------------------------------------------------------

    def claim(
        self,
        account: str,
        asset: str,
        cumulative: int,
        proof: Sequence[HashLike],
        caller: Optional[str] = None,
    ) -> ServiceResult:
        def _claim() -> dict[str, Any]:
            receipt = self._distributor.claim(account, asset, cumulative, proof, caller=caller)
            return receipt.to_dict()

        result = self._run("claim", _claim)
        if not result.success:
            return result

        warnings = [result.data["warning"]] if "warning" in result.data else []
        if result.data["event_id"] is None:
            warnings.append("Claim paid but its audit event could not be written")
        if not result.data["confirmed"]:
            warnings.append(
                f"Payout {result.data['tx_hash']} broadcast but not confirmed; "
                f"claim kept, check the transaction before paying again"
            )
        if not warnings:
            return result
        return ServiceResult(success=True, data={**result.data, "warning": "; ".join(warnings)})

    def claim_from_distribution(
        self,
        distribution: Distribution,
        account: str,
        asset: str,
        caller: Optional[str] = None,
    ) -> ServiceResult:
        """Claim using the entitlement and proof from a built distribution."""
        try:
            entitlement = distribution.find(account, asset)
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])
        if entitlement is None:
            return ServiceResult(
                success=False,
                errors=[f"No entitlement for {account} / {asset} in distribution"],
            )
        return self.claim(
            entitlement.account,
            entitlement.asset,
            entitlement.amount,
            list(entitlement.proof),
            caller=caller,
        )

    def fund(self, asset: str, amount: int) -> ServiceResult:
        """Credit the distributor's ledger holdings (ledger backend only)."""
        if self._bank is None:
            return ServiceResult(success=False, errors=["No ledger bank configured"])
        return self._run(
            "fund",
            lambda: {
                "asset": normalize_address(asset),
                "balance": str(self._bank.mint(asset, self._distributor.address, amount)),
            },
        )

    def balance(self, asset: str, holder: Optional[str] = None) -> ServiceResult:
        if self._bank is None:
            return ServiceResult(success=False, errors=["No ledger bank configured"])
        try:
            holder = holder or self._distributor.address
            return ServiceResult(
                success=True,
                data={
                    "asset": normalize_address(asset),
                    "holder": normalize_address(holder),
                    "balance": str(self._bank.balance_of(asset, holder)),
                },
            )
        except ValueError as e:
            return ServiceResult(success=False, errors=[str(e)])

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> dict[str, Any]:
        d = self._distributor
        pending = d.pending_root
        return {
            "address": d.address,
            "owner": d.owner,
            "timelock": d.timelock,
            "root": hash_hex(d.root),
            "ipfs_hash": hash_hex(d.ipfs_hash),
            "state": d.state.value,
            "pending_root": pending.to_dict() if pending else None,
            "pending_matures_at": pending.matures_at(d.timelock) if pending else None,
            "updaters": sorted(d.updaters),
            "claimed_records": len(d.ledger),
            "event_count": d.event_log.count,
            "audit_degraded": d.audit_degraded,
            "persistence_degraded": self._persistence_degraded,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _run(self, operation: str, action: Callable[[], Any]) -> ServiceResult:
        try:
            outcome = action()
        except (DistributorError, ValueError) as e:
            logger.debug(f"{operation} rejected: {type(e).__name__}: {e}")
            return ServiceResult(success=False, errors=[f"{type(e).__name__}: {e}"])

        data: dict[str, Any] = outcome if isinstance(outcome, dict) else {"event_id": outcome}
        warning = self._safe_persist_post_audit()
        if warning:
            data = {**data, "warning": warning}
        return ServiceResult(success=True, data=data)

    def _persist_state(self) -> None:
        """Write the snapshot (if a store is wired). Can raise OSError."""
        if self._state_store is None:
            return
        balances = self._bank.to_dict() if self._bank is not None else []
        self._state_store.save(self._distributor.to_state(), balances)

    def _safe_persist_post_audit(self) -> Optional[str]:
        """Persist after the audit event is durable.

        MUST NOT roll back in-memory state: the event log already records
        the change. On failure the service is flagged as degraded and a
        warning is returned instead of an error.
        """
        try:
            self._persist_state()
            return None
        except OSError as e:
            self._persistence_degraded = True
            logger.warning(f"State snapshot failed: {e}")
            return f"Persistence degraded: {e}; change is in the event log but the snapshot is stale"
