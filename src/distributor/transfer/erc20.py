"""ERC-20 payout backend — settles claims as on-chain token transfers.

Each payout is a signed `transfer(recipient, amount)` call from the
distributor's hot key to the reward token contract. The call waits for
one confirmation. A transaction that was never broadcast, or that
reverted, raises TransferFailed and the claim is unwound. A broadcast
transaction whose receipt never arrives raises TransferUnconfirmed: it
may still be mined, so the claim stays recorded.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from eth_account import Account

from distributor.crypto.encoding import normalize_address, require_amount
from distributor.errors import TransferFailed, TransferUnconfirmed

logger = logging.getLogger("distributor.transfer.erc20")


ERC20_TRANSFER_ABI: list[dict[str, Any]] = [
    {
        "name": "transfer",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "owner", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
]


class Erc20Transfer:
    """AssetTransfer that sends ERC-20 tokens from a signing key.

    Usage:
        rail = Erc20Transfer.from_rpc_url(rpc_url, private_key, chain_id=1)
        rail.transfer(token_address, recipient, 1_000)
    """

    def __init__(
        self,
        w3: Any,
        private_key: str,
        chain_id: int,
        gas: int = 100_000,
        gas_price_gwei: str = "2",
        receipt_timeout: int = 300,
    ) -> None:
        self._w3 = w3
        self._account = Account.from_key(private_key)
        self._chain_id = chain_id
        self._gas = gas
        self._gas_price_gwei = gas_price_gwei
        self._receipt_timeout = receipt_timeout

    @classmethod
    def from_rpc_url(
        cls,
        rpc_url: str,
        private_key: str,
        chain_id: int,
        gas: int = 100_000,
        gas_price_gwei: str = "2",
    ) -> Erc20Transfer:
        from web3 import Web3, HTTPProvider

        return cls(
            Web3(HTTPProvider(rpc_url)),
            private_key,
            chain_id=chain_id,
            gas=gas,
            gas_price_gwei=gas_price_gwei,
        )

    @property
    def holder(self) -> str:
        """Address the tokens are paid from."""
        return self._account.address

    def balance_of(self, asset: str, holder: Optional[str] = None) -> int:
        token = self._w3.eth.contract(address=normalize_address(asset), abi=ERC20_TRANSFER_ABI)
        return token.functions.balanceOf(normalize_address(holder or self.holder)).call()

    def transfer(self, asset: str, recipient: str, amount: int) -> None:
        require_amount(amount)
        token = self._w3.eth.contract(address=normalize_address(asset), abi=ERC20_TRANSFER_ABI)
        nonce = self._w3.eth.get_transaction_count(self.holder)
        tx = token.functions.transfer(normalize_address(recipient), amount).build_transaction({
            "from": self.holder,
            "gas": self._gas,
            "gasPrice": self._w3.to_wei(self._gas_price_gwei, "gwei"),
            "nonce": nonce,
            "chainId": self._chain_id,
        })

        signed = self._account.sign_transaction(tx)
        try:
            tx_hash = self._w3.eth.send_raw_transaction(signed.raw_transaction)
        except Exception as e:
            logger.warning(f"ERC-20 transfer of {amount} {asset} to {recipient} failed: {e}")
            raise TransferFailed(f"Transfer submission failed: {e}") from e

        # Broadcast from here on: the transaction can still be mined.
        try:
            receipt = self._w3.eth.wait_for_transaction_receipt(
                tx_hash, timeout=self._receipt_timeout,
            )
        except Exception as e:
            logger.error(
                f"ERC-20 transfer of {amount} {asset} to {recipient} broadcast "
                f"as {tx_hash.hex()} but not confirmed: {e}"
            )
            raise TransferUnconfirmed(
                f"Transfer {tx_hash.hex()} broadcast but not confirmed: {e}",
                tx_hash=tx_hash.hex(),
            ) from e

        if receipt["status"] != 1:
            raise TransferFailed(
                f"Transfer reverted in block {receipt['blockNumber']}: {tx_hash.hex()}"
            )
        logger.info(
            f"Paid {amount} of {asset} to {recipient} in block "
            f"{receipt['blockNumber']} (tx {tx_hash.hex()})"
        )
