"""Distributor factory — deterministic addresses for new distributor instances.

An instance address is derived CREATE2-style from the factory address, a
caller-chosen salt and the constructor parameters:

    keccak256(0xff ++ factory ++ salt ++ keccak256(abi.encode(owner, timelock, root, ipfs_hash)))[12:]

The same parameters and salt always yield the same address, so an address
can be published (and funded) before the instance exists. Deploying twice
at one address is rejected.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from eth_abi import encode
from eth_typing import ChecksumAddress
from eth_utils import keccak, to_bytes, to_checksum_address

from distributor.crypto.encoding import (
    HashLike,
    hash_hex,
    normalize_address,
    require_amount,
    to_hash32,
)
from distributor.engine.clock import Clock, SystemClock
from distributor.engine.distributor import Distributor
from distributor.persistence.event_log import EventKind, EventLog, EventRecord
from distributor.transfer.rail import AssetTransfer

logger = logging.getLogger("distributor.engine.factory")


INIT_ABI_TYPES = ("address", "uint256", "bytes32", "bytes32")


class DistributorFactory:
    """Creates distributors at deterministic addresses.

    Usage:
        bank = TokenBank()
        factory = DistributorFactory(factory_address, transfer_for=bank.vault)
        dist = factory.create_distributor(caller, owner, 86_400, root, ipfs, salt)
        assert factory.is_distributor(dist.address)
    """

    def __init__(
        self,
        address: str,
        transfer_for: Callable[[str], AssetTransfer],
        clock: Optional[Clock] = None,
        event_log: Optional[EventLog] = None,
    ) -> None:
        self._address = normalize_address(address)
        self._transfer_for = transfer_for
        self._clock = clock if clock is not None else SystemClock()
        self._event_log = event_log if event_log is not None else EventLog()
        self._instances: dict[str, Distributor] = {}

    @property
    def address(self) -> str:
        return self._address

    @property
    def event_log(self) -> EventLog:
        return self._event_log

    def predict_address(
        self,
        owner: str,
        timelock: int,
        root: HashLike,
        ipfs_hash: HashLike,
        salt: HashLike,
    ) -> ChecksumAddress:
        """Address a distributor with these parameters would be created at."""
        init_hash = keccak(encode(
            list(INIT_ABI_TYPES),
            [
                normalize_address(owner),
                require_amount(timelock, "timelock"),
                to_hash32(root),
                to_hash32(ipfs_hash),
            ],
        ))
        digest = keccak(
            b"\xff" + to_bytes(hexstr=self._address) + to_hash32(salt) + init_hash
        )
        return to_checksum_address(digest[12:])

    def create_distributor(
        self,
        caller: str,
        owner: str,
        timelock: int,
        root: HashLike,
        ipfs_hash: HashLike,
        salt: HashLike,
    ) -> Distributor:
        """Instantiate a distributor and record the creation event."""
        caller = normalize_address(caller)
        address = self.predict_address(owner, timelock, root, ipfs_hash, salt)
        if address in self._instances:
            raise ValueError(f"Distributor already deployed at {address}")

        distributor = Distributor(
            address,
            owner=owner,
            timelock=timelock,
            root=root,
            ipfs_hash=ipfs_hash,
            transfer=self._transfer_for(address),
            clock=self._clock,
            event_log=self._event_log,
        )

        now = self._clock.now()
        event = EventRecord.create(
            event_id=self._event_log.next_event_id(),
            event_kind=EventKind.DISTRIBUTOR_CREATED,
            actor_id=caller,
            payload={
                "distributor": address,
                "factory": self._address,
                "caller": caller,
                "owner": distributor.owner,
                "timelock": distributor.timelock,
                "root": hash_hex(distributor.root),
                "ipfs_hash": hash_hex(distributor.ipfs_hash),
                "salt": hash_hex(to_hash32(salt)),
            },
            timestamp_utc=datetime.fromtimestamp(now, tz=timezone.utc),
        )
        self._event_log.append(event)
        self._instances[address] = distributor
        logger.info(f"Created distributor {address} for owner {distributor.owner}")
        return distributor

    def is_distributor(self, address: str) -> bool:
        try:
            return normalize_address(address) in self._instances
        except ValueError:
            return False

    def get(self, address: str) -> Distributor:
        distributor = self._instances.get(normalize_address(address))
        if distributor is None:
            raise ValueError(f"Unknown distributor: {address}")
        return distributor
