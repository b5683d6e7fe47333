"""Tests for DistributorService — proves the facade orchestrates correctly."""

from pathlib import Path

import pytest
from eth_utils import to_checksum_address

from distributor.crypto.encoding import ZERO_HASH
from distributor.crypto.merkle import build_distribution
from distributor.engine.clock import ManualClock
from distributor.engine.distributor import Distributor
from distributor.engine.factory import DistributorFactory
from distributor.errors import TransferUnconfirmed
from distributor.persistence.event_log import EventLog
from distributor.persistence.state_store import StateStore
from distributor.service import DistributorService
from distributor.transfer.rail import TokenBank


T0 = 1_700_000_000
IPFS = b"\x0e" * 32


def _addr(n: int) -> str:
    return to_checksum_address(f"0x{n:040x}")


FACTORY = _addr(0xFAC7)
OWNER = _addr(0x0123)
UPDATER = _addr(0x0456)
ALICE = _addr(0xA11CE)
BOB = _addr(0xB0B)
TOKEN = _addr(0x7001)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock(T0)


@pytest.fixture
def bank() -> TokenBank:
    return TokenBank()


@pytest.fixture
def store(tmp_path: Path) -> StateStore:
    return StateStore(tmp_path / "state.json")


@pytest.fixture
def service(bank: TokenBank, clock: ManualClock, store: StateStore) -> DistributorService:
    factory = DistributorFactory(FACTORY, transfer_for=bank.vault, clock=clock)
    return DistributorService.deploy(
        factory, OWNER, OWNER, 3600, ZERO_HASH, ZERO_HASH, ZERO_HASH,
        bank=bank, state_store=store,
    )


@pytest.fixture
def tree():
    return build_distribution([(ALICE, TOKEN, 1000), (BOB, TOKEN, 300)])


class TestDeploy:
    def test_deploy_persists_snapshot(self, service: DistributorService, store: StateStore) -> None:
        assert store.has_distributor()
        assert store.load_distributor()["address"] == service.distributor.address

    def test_status(self, service: DistributorService) -> None:
        status = service.status()
        assert status["owner"] == OWNER
        assert status["timelock"] == 3600
        assert status["state"] == "no_pending_root"
        assert status["pending_root"] is None
        assert status["event_count"] == 1
        assert not status["persistence_degraded"]


class TestGovernance:
    def test_propose_and_accept(self, service: DistributorService, clock: ManualClock, tree) -> None:
        result = service.propose_root(OWNER, tree.root, IPFS)
        assert result.success
        assert result.data["event_id"] == "EVT-00000002"
        assert service.status()["pending_matures_at"] == T0 + 3600

        early = service.accept_root(BOB)
        assert not early.success
        assert early.errors[0].startswith("TimelockNotExpired")

        clock.advance(3600)
        assert service.accept_root(BOB).success
        assert service.distributor.root == tree.root

    def test_unauthorized_is_failed_result(self, service: DistributorService, tree) -> None:
        result = service.force_root(ALICE, tree.root, IPFS)
        assert not result.success
        assert result.errors[0].startswith("CallerNotOwner")

    def test_malformed_input_is_failed_result(self, service: DistributorService) -> None:
        result = service.propose_root(OWNER, "0x1234", IPFS)
        assert not result.success
        result = service.set_owner(OWNER, "nope")
        assert not result.success

    def test_updater_and_owner_management(self, service: DistributorService, tree) -> None:
        assert service.set_updater(OWNER, UPDATER, True).success
        assert service.propose_root(UPDATER, tree.root, IPFS).success
        assert not service.revoke_root(UPDATER).success
        assert service.revoke_root(OWNER).success
        assert service.set_timelock(OWNER, 0).success
        assert service.set_owner(OWNER, ALICE).success
        assert service.force_root(ALICE, tree.root, IPFS).success

    def test_snapshot_follows_mutations(
        self, service: DistributorService, store: StateStore, bank: TokenBank, clock: ManualClock, tree,
    ) -> None:
        service.propose_root(OWNER, tree.root, IPFS)
        reloaded = StateStore(store.storage_path)
        restored = Distributor.from_state(
            reloaded.load_distributor(), transfer=bank.vault(service.distributor.address), clock=clock,
        )
        assert restored.pending_root == service.distributor.pending_root


class TestClaims:
    def test_claim_from_distribution(self, service: DistributorService, tree) -> None:
        service.force_root(OWNER, tree.root, IPFS)
        assert service.fund(TOKEN, 5000).success
        result = service.claim_from_distribution(tree, ALICE, TOKEN)
        assert result.success
        assert result.data["amount_paid"] == "1000"
        assert service.balance(TOKEN, ALICE).data["balance"] == "1000"
        assert service.balance(TOKEN).data["balance"] == "4000"

    def test_claim_twice_fails(self, service: DistributorService, tree) -> None:
        service.force_root(OWNER, tree.root, IPFS)
        service.fund(TOKEN, 5000)
        service.claim_from_distribution(tree, ALICE, TOKEN)
        result = service.claim_from_distribution(tree, ALICE, TOKEN)
        assert not result.success
        assert result.errors[0].startswith("AlreadyClaimed")

    def test_unfunded_claim_fails_cleanly(self, service: DistributorService, tree) -> None:
        service.force_root(OWNER, tree.root, IPFS)
        result = service.claim_from_distribution(tree, ALICE, TOKEN)
        assert not result.success
        assert result.errors[0].startswith("TransferFailed")
        assert service.distributor.claimed(ALICE, TOKEN) == 0

    def test_missing_entitlement(self, service: DistributorService, tree) -> None:
        result = service.claim_from_distribution(tree, OWNER, TOKEN)
        assert not result.success

    def test_claim_balances_persisted(
        self, service: DistributorService, store: StateStore, tree,
    ) -> None:
        service.force_root(OWNER, tree.root, IPFS)
        service.fund(TOKEN, 5000)
        service.claim_from_distribution(tree, BOB, TOKEN)
        balances = TokenBank.from_dict(StateStore(store.storage_path).load_balances())
        assert balances.balance_of(TOKEN, BOB) == 300

    def test_no_bank(self, bank: TokenBank, clock: ManualClock) -> None:
        dist = Distributor(_addr(0xD157), owner=OWNER, timelock=0, transfer=bank.vault(OWNER), clock=clock)
        service = DistributorService(dist)
        assert not service.fund(TOKEN, 1).success
        assert not service.balance(TOKEN).success


class _LogFailingOnce:
    """Event log whose append fails exactly once, at the given position."""

    def __init__(self, inner: EventLog, fail_at: int) -> None:
        self._inner = inner
        self._fail_at = fail_at

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def append(self, event) -> None:
        if self._inner.count == self._fail_at and self._fail_at >= 0:
            self._fail_at = -1
            raise OSError("disk full")
        self._inner.append(event)


class _UnconfirmedRail:
    def transfer(self, asset: str, recipient: str, amount: int) -> None:
        raise TransferUnconfirmed("receipt timed out", tx_hash="0xfeed")


class TestAuditWarnings:
    def test_warning_only_on_the_unlogged_claim(self, bank: TokenBank, clock: ManualClock, tree) -> None:
        address = _addr(0xD157)
        dist = Distributor(
            address, owner=OWNER, timelock=0, transfer=bank.vault(address), clock=clock,
            event_log=_LogFailingOnce(EventLog(), fail_at=1),
        )
        service = DistributorService(dist, bank=bank)
        assert service.force_root(OWNER, tree.root, IPFS).success
        assert service.fund(TOKEN, 5000).success

        first = service.claim_from_distribution(tree, ALICE, TOKEN)
        assert first.success
        assert first.data["event_id"] is None
        assert "audit event could not be written" in first.data["warning"]

        second = service.claim_from_distribution(tree, BOB, TOKEN)
        assert second.success
        assert second.data["event_id"] is not None
        assert "warning" not in second.data
        assert service.distributor.audit_degraded

    def test_unconfirmed_payout_warns_and_keeps_claim(self, clock: ManualClock, tree) -> None:
        address = _addr(0xD157)
        dist = Distributor(address, owner=OWNER, timelock=0, transfer=_UnconfirmedRail(), clock=clock)
        service = DistributorService(dist)
        service.force_root(OWNER, tree.root, IPFS)

        result = service.claim_from_distribution(tree, ALICE, TOKEN)
        assert result.success
        assert result.data["confirmed"] is False
        assert "0xfeed" in result.data["warning"]
        assert not service.claim_from_distribution(tree, ALICE, TOKEN).success


class TestPersistenceFailure:
    def test_snapshot_failure_degrades_without_rollback(
        self, service: DistributorService, store: StateStore, monkeypatch, tree,
    ) -> None:
        def _fail(*args, **kwargs):
            raise OSError("read-only filesystem")

        monkeypatch.setattr(store, "save", _fail)
        result = service.force_root(OWNER, tree.root, IPFS)
        assert result.success
        assert "Persistence degraded" in result.data["warning"]
        assert service.persistence_degraded
        assert service.distributor.root == tree.root
