"""Distributor — timelocked root governance plus cumulative claim accounting.

One distributor instance holds a committed Merkle root over
(account, asset, cumulative amount) leaves and pays out the difference
between an account's proven cumulative entitlement and what it has
already received.

Root governance:
- propose_root (owner or updater): commits at once when timelock == 0,
  otherwise stages a pending root.
- accept_root_update (anyone): commits a pending root once
  now >= submitted_at + timelock. The timelock read here is the live
  value, not the value at proposal time.
- force_update_root (owner): commits immediately and drops any pending root.
- revoke_pending_root (owner): drops the pending root.
- update_timelock (owner): may not shorten the timelock while a pending
  root is still maturing; lengthening is always allowed.

Claims:
- claim (anyone, on behalf of an account): verify the proof against the
  live root, store the new cumulative total, THEN transfer the delta.
  A re-entrant claim issued from inside the transfer for the same
  (account, asset) is rejected, whatever amount it presents. A payout
  that was broadcast but not confirmed keeps the claim recorded.

Every mutator checks permissions and preconditions first, writes its
audit event second, and mutates state last, so a rejected call (or a
failed audit write) changes nothing.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Sequence

from distributor.crypto.encoding import (
    ZERO_HASH,
    HashLike,
    hash_hex,
    normalize_address,
    require_amount,
    to_hash32,
)
from distributor.crypto.merkle import leaf_hash, verify_proof
from distributor.engine.access import require_owner, require_owner_or_updater
from distributor.engine.claims import ClaimLedger
from distributor.engine.clock import Clock, SystemClock
from distributor.errors import (
    AlreadyClaimed,
    InvalidOrExpiredProof,
    NoPendingRoot,
    RootNotSet,
    TimelockNotExpired,
    TransferUnconfirmed,
)
from distributor.models.distribution import (
    ClaimReceipt,
    GovernanceState,
    PendingRoot,
    pending_root_view,
)
from distributor.persistence.event_log import EventKind, EventLog, EventRecord
from distributor.transfer.rail import AssetTransfer

logger = logging.getLogger("distributor.engine.distributor")


class Distributor:
    """A single reward distributor instance.

    Usage:
        dist = Distributor(address, owner=alice, timelock=86_400,
                           transfer=bank.vault(address), clock=clock)
        dist.propose_root(alice, root, ipfs_hash)
        clock.advance(86_400)
        dist.accept_root_update(anyone)
        receipt = dist.claim(bob, token, 1_000, proof)
    """

    def __init__(
        self,
        address: str,
        owner: str,
        timelock: int,
        root: HashLike = ZERO_HASH,
        ipfs_hash: HashLike = ZERO_HASH,
        *,
        transfer: AssetTransfer,
        clock: Optional[Clock] = None,
        event_log: Optional[EventLog] = None,
        updaters: Iterable[str] = (),
        pending_root: Optional[PendingRoot] = None,
        ledger: Optional[ClaimLedger] = None,
    ) -> None:
        self._address = normalize_address(address)
        self._owner = normalize_address(owner)
        self._timelock = require_amount(timelock, "timelock")
        self._root = to_hash32(root)
        self._ipfs_hash = to_hash32(ipfs_hash)
        self._pending: Optional[PendingRoot] = pending_root
        self._updaters: set[str] = {normalize_address(u) for u in updaters}
        self._ledger = ledger if ledger is not None else ClaimLedger()
        self._transfer = transfer
        self._clock = clock if clock is not None else SystemClock()
        self._event_log = event_log if event_log is not None else EventLog()

        # Set when a claim paid out but its audit event could not be written.
        self._audit_degraded = False
        # (account, asset) pairs whose payout is currently running.
        self._in_flight: set[tuple[str, str]] = set()

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    @property
    def address(self) -> str:
        return self._address

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def timelock(self) -> int:
        return self._timelock

    @property
    def root(self) -> bytes:
        return self._root

    @property
    def ipfs_hash(self) -> bytes:
        return self._ipfs_hash

    @property
    def pending_root(self) -> Optional[PendingRoot]:
        return self._pending

    def pending_root_view(self) -> tuple[bytes, bytes, int]:
        """(root, ipfs_hash, submitted_at), all zero when nothing is pending."""
        return pending_root_view(self._pending)

    @property
    def state(self) -> GovernanceState:
        if self._pending is None:
            return GovernanceState.NO_PENDING_ROOT
        return GovernanceState.PENDING_ROOT_AWAITING_TIMELOCK

    @property
    def updaters(self) -> frozenset[str]:
        return frozenset(self._updaters)

    def is_updater(self, identity: str) -> bool:
        return normalize_address(identity) in self._updaters

    def claimed(self, account: str, asset: str) -> int:
        """Cumulative amount already paid to `account` in `asset`."""
        return self._ledger.claimed(normalize_address(account), normalize_address(asset))

    @property
    def ledger(self) -> ClaimLedger:
        return self._ledger

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    @property
    def audit_degraded(self) -> bool:
        return self._audit_degraded

    # ------------------------------------------------------------------
    # Root governance
    # ------------------------------------------------------------------

    def propose_root(self, caller: str, new_root: HashLike, new_ipfs_hash: HashLike) -> str:
        """Submit a new root. Returns the emitted event ID.

        With no timelock the root is committed immediately (and any
        pending root is dropped); otherwise it replaces the pending slot.
        """
        caller = normalize_address(caller)
        require_owner_or_updater(self._owner, self._updaters, caller)
        root = to_hash32(new_root)
        ipfs_hash = to_hash32(new_ipfs_hash)
        now = self._clock.now()

        if self._timelock == 0:
            event_id = self._emit_root_set(caller, root, ipfs_hash, "propose", now)
            self._commit(root, ipfs_hash)
            return event_id

        if now == 0:
            # submitted_at == 0 is the "nothing pending" sentinel.
            raise ValueError("Cannot stage a pending root at timestamp 0")

        event_id = self._emit(
            EventKind.PENDING_ROOT_SET,
            caller,
            {
                "root": hash_hex(root),
                "ipfs_hash": hash_hex(ipfs_hash),
                "submitted_at": now,
                "replaced_pending": self._pending is not None,
            },
            now,
        )
        self._pending = PendingRoot(root=root, ipfs_hash=ipfs_hash, submitted_at=now)
        logger.info(
            f"{self._address}: root {hash_hex(root)} pending until "
            f"{self._pending.matures_at(self._timelock)}"
        )
        return event_id

    def accept_root_update(self, caller: str) -> str:
        """Commit the pending root once its timelock has elapsed.

        Permissionless: anyone may finalize a matured root.
        """
        caller = normalize_address(caller)
        pending = self._require_pending()
        now = self._clock.now()
        if not pending.is_mature(now, self._timelock):
            raise TimelockNotExpired(
                f"Pending root matures at {pending.matures_at(self._timelock)}, now is {now}"
            )

        event_id = self._emit_root_set(caller, pending.root, pending.ipfs_hash, "accept", now)
        self._commit(pending.root, pending.ipfs_hash)
        return event_id

    def force_update_root(self, caller: str, new_root: HashLike, new_ipfs_hash: HashLike) -> str:
        """Owner override: commit a root now, discarding any pending root."""
        caller = normalize_address(caller)
        require_owner(self._owner, caller)
        root = to_hash32(new_root)
        ipfs_hash = to_hash32(new_ipfs_hash)
        now = self._clock.now()

        event_id = self._emit_root_set(caller, root, ipfs_hash, "force", now)
        self._commit(root, ipfs_hash)
        return event_id

    def revoke_pending_root(self, caller: str) -> str:
        """Owner drops the pending root. The live root is untouched."""
        caller = normalize_address(caller)
        require_owner(self._owner, caller)
        pending = self._require_pending()
        now = self._clock.now()

        event_id = self._emit(
            EventKind.PENDING_ROOT_REVOKED,
            caller,
            {
                "root": hash_hex(pending.root),
                "ipfs_hash": hash_hex(pending.ipfs_hash),
                "submitted_at": pending.submitted_at,
            },
            now,
        )
        self._pending = None
        logger.info(f"{self._address}: pending root {hash_hex(pending.root)} revoked")
        return event_id

    def update_timelock(self, caller: str, new_timelock: int) -> str:
        """Owner changes the timelock.

        While a pending root is still maturing under the current timelock,
        the new value may not be shorter than the current one.
        """
        caller = normalize_address(caller)
        require_owner(self._owner, caller)
        require_amount(new_timelock, "timelock")
        now = self._clock.now()

        if (
            self._pending is not None
            and not self._pending.is_mature(now, self._timelock)
            and new_timelock < self._timelock
        ):
            raise TimelockNotExpired(
                f"Cannot shorten timelock from {self._timelock} to {new_timelock} "
                f"before the pending root matures at "
                f"{self._pending.matures_at(self._timelock)}"
            )

        event_id = self._emit(
            EventKind.TIMELOCK_SET,
            caller,
            {"timelock": new_timelock, "previous_timelock": self._timelock},
            now,
        )
        self._timelock = new_timelock
        logger.info(f"{self._address}: timelock set to {new_timelock}s")
        return event_id

    def update_root_updater(self, caller: str, updater: str, active: bool) -> str:
        """Owner grants or revokes root-proposal rights. Idempotent."""
        caller = normalize_address(caller)
        require_owner(self._owner, caller)
        updater = normalize_address(updater)
        now = self._clock.now()

        event_id = self._emit(
            EventKind.ROOT_UPDATER_SET,
            caller,
            {"updater": updater, "active": bool(active)},
            now,
        )
        if active:
            self._updaters.add(updater)
        else:
            self._updaters.discard(updater)
        return event_id

    def set_owner(self, caller: str, new_owner: str) -> str:
        """Owner hands the distributor to a new owner."""
        caller = normalize_address(caller)
        require_owner(self._owner, caller)
        new_owner = normalize_address(new_owner)
        now = self._clock.now()

        event_id = self._emit(
            EventKind.OWNER_SET,
            caller,
            {"previous_owner": self._owner, "new_owner": new_owner},
            now,
        )
        logger.info(f"{self._address}: owner {self._owner} -> {new_owner}")
        self._owner = new_owner
        return event_id

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    def claim(
        self,
        account: str,
        asset: str,
        cumulative: int,
        proof: Sequence[HashLike],
        caller: Optional[str] = None,
    ) -> ClaimReceipt:
        """Pay `account` whatever its proven cumulative entitlement still owes.

        Anyone may submit a claim; funds always go to `account`.
        """
        account = normalize_address(account)
        asset = normalize_address(asset)
        require_amount(cumulative, "cumulative amount")
        actor = normalize_address(caller) if caller is not None else account

        if self._root == ZERO_HASH:
            raise RootNotSet("No root has been committed")

        leaf = leaf_hash(account, asset, cumulative)
        if not verify_proof(proof, self._root, leaf):
            raise InvalidOrExpiredProof(
                f"Proof for {account} / {asset} / {cumulative} does not match "
                f"root {hash_hex(self._root)}"
            )

        key = (account, asset)
        if key in self._in_flight:
            raise AlreadyClaimed(
                f"A claim for {account} / {asset} is already being paid out"
            )
        owed = self._ledger.owed(account, asset, cumulative)

        # State first, transfer second: a re-entrant claim must see the new total.
        previous = self._ledger.record(account, asset, cumulative)
        unconfirmed: Optional[TransferUnconfirmed] = None
        self._in_flight.add(key)
        try:
            self._transfer.transfer(asset, account, owed)
        except TransferUnconfirmed as e:
            # Broadcast but unconfirmed: the payout may still land, so it counts.
            unconfirmed = e
            logger.error(
                f"{self._address}: payout of {owed} {asset} to {account} "
                f"unconfirmed (tx {e.tx_hash}); claim kept"
            )
        except Exception as e:
            self._ledger.restore(account, asset, previous, recorded=cumulative)
            logger.warning(f"{self._address}: transfer of {owed} {asset} to {account} failed: {e}")
            raise
        finally:
            self._in_flight.discard(key)

        payload: dict[str, Any] = {"account": account, "asset": asset, "amount": str(owed)}
        if unconfirmed is not None:
            payload["confirmed"] = False
            payload["tx_hash"] = unconfirmed.tx_hash

        event_id: Optional[str] = None
        try:
            event_id = self._emit(EventKind.CLAIMED, actor, payload, self._clock.now())
        except (ValueError, OSError) as e:
            # Value has already moved; the claim stands and the gap is flagged.
            self._audit_degraded = True
            logger.error(f"{self._address}: claim by {account} paid but not logged: {e}")

        logger.info(f"{self._address}: {account} claimed {owed} of {asset} (cumulative {cumulative})")
        return ClaimReceipt(
            account=account,
            asset=asset,
            amount_paid=owed,
            cumulative=cumulative,
            event_id=event_id,
            confirmed=unconfirmed is None,
            tx_hash=unconfirmed.tx_hash if unconfirmed is not None else None,
        )

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def to_state(self) -> dict[str, Any]:
        """Serializable snapshot of everything but the collaborators."""
        return {
            "address": self._address,
            "owner": self._owner,
            "timelock": self._timelock,
            "root": hash_hex(self._root),
            "ipfs_hash": hash_hex(self._ipfs_hash),
            "pending_root": self._pending.to_dict() if self._pending else None,
            "updaters": sorted(self._updaters),
            "claimed": self._ledger.to_dict(),
        }

    @classmethod
    def from_state(
        cls,
        state: dict[str, Any],
        *,
        transfer: AssetTransfer,
        clock: Optional[Clock] = None,
        event_log: Optional[EventLog] = None,
    ) -> Distributor:
        return cls(
            state["address"],
            owner=state["owner"],
            timelock=int(state["timelock"]),
            root=state["root"],
            ipfs_hash=state["ipfs_hash"],
            transfer=transfer,
            clock=clock,
            event_log=event_log,
            updaters=state.get("updaters", []),
            pending_root=PendingRoot.from_dict(state.get("pending_root")),
            ledger=ClaimLedger.from_dict(state.get("claimed", [])),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_pending(self) -> PendingRoot:
        if self._pending is None:
            raise NoPendingRoot("No pending root")
        return self._pending

    def _commit(self, root: bytes, ipfs_hash: bytes) -> None:
        """Replace the live (root, ipfs_hash) pair and clear the pending slot."""
        self._root = root
        self._ipfs_hash = ipfs_hash
        self._pending = None
        logger.info(f"{self._address}: root set to {hash_hex(root)}")

    def _emit_root_set(
        self,
        caller: str,
        root: bytes,
        ipfs_hash: bytes,
        source: str,
        now: int,
    ) -> str:
        return self._emit(
            EventKind.ROOT_SET,
            caller,
            {
                "root": hash_hex(root),
                "ipfs_hash": hash_hex(ipfs_hash),
                "source": source,
                "cleared_pending": self._pending is not None,
            },
            now,
        )

    def _emit(self, kind: EventKind, actor: str, payload: dict[str, Any], now: int) -> str:
        payload = {"distributor": self._address, **payload}
        event = EventRecord.create(
            event_id=self._event_log.next_event_id(),
            event_kind=kind,
            actor_id=actor,
            payload=payload,
            timestamp_utc=datetime.fromtimestamp(now, tz=timezone.utc),
        )
        self._event_log.append(event)
        return event.event_id
