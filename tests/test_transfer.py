"""Tests for payout backends — ledger bank and ERC-20 rail."""

from unittest.mock import MagicMock

import pytest
from eth_account import Account
from eth_utils import to_checksum_address

from distributor.crypto.merkle import build_distribution
from distributor.engine.clock import ManualClock
from distributor.engine.distributor import Distributor
from distributor.errors import AlreadyClaimed, TransferFailed, TransferUnconfirmed
from distributor.transfer.erc20 import Erc20Transfer
from distributor.transfer.rail import AssetTransfer, TokenBank


KEY = "0x" + "11" * 32


def _addr(n: int) -> str:
    return to_checksum_address(f"0x{n:040x}")


HOLDER = _addr(0xD157)
ALICE = _addr(0xA11CE)
TOKEN = _addr(0x7001)


class TestTokenBank:
    def test_mint_and_move(self) -> None:
        bank = TokenBank()
        assert bank.mint(TOKEN, HOLDER, 100) == 100
        bank.move(TOKEN, HOLDER, ALICE, 40)
        assert bank.balance_of(TOKEN, HOLDER) == 60
        assert bank.balance_of(TOKEN, ALICE) == 40

    def test_insufficient_balance(self) -> None:
        bank = TokenBank()
        bank.mint(TOKEN, HOLDER, 10)
        with pytest.raises(TransferFailed):
            bank.move(TOKEN, HOLDER, ALICE, 11)
        assert bank.balance_of(TOKEN, HOLDER) == 10
        assert bank.balance_of(TOKEN, ALICE) == 0

    def test_negative_amount_rejected(self) -> None:
        with pytest.raises(ValueError):
            TokenBank().mint(TOKEN, HOLDER, -1)

    def test_vault_is_asset_transfer(self) -> None:
        bank = TokenBank()
        vault = bank.vault(HOLDER.lower())
        assert isinstance(vault, AssetTransfer)
        assert vault.holder == HOLDER

    def test_serialization_skips_empty_balances(self) -> None:
        bank = TokenBank()
        bank.mint(TOKEN, HOLDER, 5)
        bank.move(TOKEN, HOLDER, ALICE, 5)
        rows = bank.to_dict()
        assert rows == [{"asset": TOKEN, "holder": ALICE, "balance": "5"}]
        assert TokenBank.from_dict(rows).balance_of(TOKEN, ALICE) == 5


def _mock_w3(status: int = 1) -> MagicMock:
    w3 = MagicMock()
    w3.eth.get_transaction_count.return_value = 7
    w3.to_wei.return_value = 2_000_000_000
    w3.eth.contract.return_value.functions.transfer.return_value.build_transaction.return_value = {
        "to": TOKEN,
        "data": "0xa9059cbb",
        "value": 0,
        "gas": 100_000,
        "gasPrice": 2_000_000_000,
        "nonce": 7,
        "chainId": 11155111,
    }
    w3.eth.send_raw_transaction.return_value = b"\x99" * 32
    w3.eth.wait_for_transaction_receipt.return_value = {"status": status, "blockNumber": 42}
    return w3


class TestErc20Transfer:
    def test_holder_is_key_address(self) -> None:
        rail = Erc20Transfer(_mock_w3(), KEY, chain_id=11155111)
        assert rail.holder == Account.from_key(KEY).address
        assert isinstance(rail, AssetTransfer)

    def test_successful_transfer(self) -> None:
        w3 = _mock_w3()
        rail = Erc20Transfer(w3, KEY, chain_id=11155111)
        rail.transfer(TOKEN, ALICE, 1000)

        functions = w3.eth.contract.return_value.functions
        functions.transfer.assert_called_once_with(ALICE, 1000)
        tx_params = functions.transfer.return_value.build_transaction.call_args[0][0]
        assert tx_params["nonce"] == 7
        assert tx_params["chainId"] == 11155111
        assert tx_params["from"] == rail.holder
        w3.eth.send_raw_transaction.assert_called_once()

    def test_reverted_transfer_raises(self) -> None:
        rail = Erc20Transfer(_mock_w3(status=0), KEY, chain_id=11155111)
        with pytest.raises(TransferFailed, match="reverted"):
            rail.transfer(TOKEN, ALICE, 1000)

    def test_submission_error_raises(self) -> None:
        w3 = _mock_w3()
        w3.eth.send_raw_transaction.side_effect = ConnectionError("node down")
        rail = Erc20Transfer(w3, KEY, chain_id=11155111)
        with pytest.raises(TransferFailed, match="node down"):
            rail.transfer(TOKEN, ALICE, 1000)

    def test_balance_of_defaults_to_holder(self) -> None:
        w3 = _mock_w3()
        w3.eth.contract.return_value.functions.balanceOf.return_value.call.return_value = 55
        rail = Erc20Transfer(w3, KEY, chain_id=11155111)
        assert rail.balance_of(TOKEN) == 55
        w3.eth.contract.return_value.functions.balanceOf.assert_called_once_with(rail.holder)

    def test_receipt_timeout_after_broadcast_is_unconfirmed(self) -> None:
        w3 = _mock_w3()
        w3.eth.wait_for_transaction_receipt.side_effect = TimeoutError("no receipt")
        rail = Erc20Transfer(w3, KEY, chain_id=11155111)
        with pytest.raises(TransferUnconfirmed) as excinfo:
            rail.transfer(TOKEN, ALICE, 1000)
        assert not isinstance(excinfo.value, TransferFailed)
        assert excinfo.value.tx_hash == (b"\x99" * 32).hex()


class TestErc20ClaimSettlement:
    def _distributor(self, w3: MagicMock):
        rail = Erc20Transfer(w3, KEY, chain_id=11155111)
        dist = Distributor(
            HOLDER, owner=HOLDER, timelock=0, transfer=rail, clock=ManualClock(1_700_000_000),
        )
        tree = build_distribution([(ALICE, TOKEN, 1000), (HOLDER, TOKEN, 1)])
        dist.force_update_root(HOLDER, tree.root, b"\x01" * 32)
        return dist, tree.find(ALICE, TOKEN).proof

    def test_unconfirmed_payout_keeps_claim(self) -> None:
        w3 = _mock_w3()
        w3.eth.wait_for_transaction_receipt.side_effect = TimeoutError("no receipt")
        dist, proof = self._distributor(w3)

        receipt = dist.claim(ALICE, TOKEN, 1000, proof)
        assert not receipt.confirmed
        assert receipt.tx_hash == (b"\x99" * 32).hex()
        assert dist.claimed(ALICE, TOKEN) == 1000
        assert dist.event_log.last_event.payload["confirmed"] is False

        with pytest.raises(AlreadyClaimed):
            dist.claim(ALICE, TOKEN, 1000, proof)
        assert w3.eth.send_raw_transaction.call_count == 1

    def test_unsent_payout_unwinds_claim(self) -> None:
        w3 = _mock_w3()
        w3.eth.send_raw_transaction.side_effect = ConnectionError("node down")
        dist, proof = self._distributor(w3)

        with pytest.raises(TransferFailed):
            dist.claim(ALICE, TOKEN, 1000, proof)
        assert dist.claimed(ALICE, TOKEN) == 0

    def test_reverted_payout_unwinds_claim(self) -> None:
        dist, proof = self._distributor(_mock_w3(status=0))
        with pytest.raises(TransferFailed):
            dist.claim(ALICE, TOKEN, 1000, proof)
        assert dist.claimed(ALICE, TOKEN) == 0
