# app/chain/evm.py
"""
ERC-20 payments on an EVM chain (Base, Ethereum, ...) via raw JSON-RPC.

Reads go straight to the node with `requests`; agent transfers are signed
locally with `eth-account` and submitted with eth_sendRawTransaction.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

from eth_account import Account
from eth_utils import to_checksum_address

from app.chain.base import (
    ChainRPCError,
    ConfirmedTransaction,
    JsonRpcChainClient,
    TransferEvent,
    addresses_equal,
)

logger = logging.getLogger(__name__)

# keccak256("Transfer(address,address,uint256)")
TRANSFER_TOPIC = "0xddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"
# Function selectors
BALANCE_OF_SELECTOR = "70a08231"
TRANSFER_SELECTOR = "a9059cbb"

DEFAULT_TRANSFER_GAS = 100_000


def _pad_address(address: str) -> str:
    return address.lower().replace("0x", "").rjust(64, "0")


def _pad_uint(value: int) -> str:
    return format(value, "x").rjust(64, "0")


def _topic_to_address(topic: str) -> str:
    return to_checksum_address("0x" + topic[-40:])


def _hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    if not value or value == "0x":
        return 0
    return int(value, 16)


def encode_transfer_call(to: str, amount: int) -> str:
    """ABI-encode `transfer(address,uint256)` call data."""
    return "0x" + TRANSFER_SELECTOR + _pad_address(to) + _pad_uint(amount)


def decode_transfer_log(log: Dict[str, Any]) -> Optional[TransferEvent]:
    """
    Decode an ERC-20 Transfer log entry.

    Returns:
        TransferEvent, or None if the entry is not a well-formed Transfer log
    """
    topics = log.get("topics") or []
    if len(topics) != 3 or str(topics[0]).lower() != TRANSFER_TOPIC:
        return None
    try:
        return TransferEvent(
            source=_topic_to_address(topics[1]),
            destination=_topic_to_address(topics[2]),
            amount=_hex_to_int(log.get("data")),
            token=log.get("address"),
        )
    except (ValueError, TypeError) as e:
        logger.debug(f"Skipping malformed Transfer log: {e}")
        return None


class EvmChainClient(JsonRpcChainClient):
    """Chain client for ERC-20 tokens on EVM-compatible chains."""

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        network: str = "base-sepolia",
        explorer_template: str = "https://sepolia.basescan.org/tx/{signature}",
        **kwargs,
    ):
        super().__init__(rpc_url, **kwargs)
        self.chain_id = chain_id
        self.network = network
        self.explorer_template = explorer_template

    def _fetch_transaction(self, signature: str) -> Optional[ConfirmedTransaction]:
        receipt = self._rpc("eth_getTransactionReceipt", [signature])
        if not receipt:
            return None

        status = _hex_to_int(receipt.get("status"))
        return ConfirmedTransaction(
            signature=signature,
            success=status == 1,
            fee_payer=receipt.get("from"),
            error=None if status == 1 else "execution reverted",
            raw=receipt,
        )

    def get_transfer_events(
        self, transaction: ConfirmedTransaction, token_address: str
    ) -> List[TransferEvent]:
        events = []
        for log in transaction.raw.get("logs", []):
            if token_address and not addresses_equal(log.get("address"), token_address):
                continue
            event = decode_transfer_log(log)
            if event is not None:
                events.append(event)
        return events

    def get_token_balance(self, owner: str, token_address: str) -> int:
        result = self._rpc(
            "eth_call",
            [{"to": token_address, "data": "0x" + BALANCE_OF_SELECTOR + _pad_address(owner)}, "latest"],
        )
        return _hex_to_int(result)

    def send_signed_transfer(
        self, signer_key: bytes, token_address: str, to: str, amount: int
    ) -> str:
        account = Account.from_key(signer_key)
        nonce = _hex_to_int(self._rpc("eth_getTransactionCount", [account.address, "pending"]))
        gas_price = _hex_to_int(self._rpc("eth_gasPrice", []))
        data = encode_transfer_call(to, amount)

        try:
            gas = _hex_to_int(self._rpc(
                "eth_estimateGas",
                [{"from": account.address, "to": token_address, "data": data}],
            ))
        except ChainRPCError as e:
            logger.warning(f"Gas estimation failed, using default: {e}")
            gas = DEFAULT_TRANSFER_GAS

        tx = {
            "to": to_checksum_address(token_address),
            "value": 0,
            "data": data,
            "gas": gas,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": self.chain_id,
        }
        signed = Account.sign_transaction(tx, signer_key)
        tx_hash = self._rpc("eth_sendRawTransaction", ["0x" + bytes(signed.raw_transaction).hex()])
        logger.info(f"Submitted ERC-20 transfer {tx_hash} from {account.address} to {to}")
        return tx_hash

    def generate_keypair(self) -> Tuple[str, bytes]:
        account = Account.create()
        return account.address, bytes(account.key)

    def address_for_key(self, private_key: bytes) -> str:
        return Account.from_key(private_key).address

    def explorer_url(self, signature: str) -> str:
        return self.explorer_template.format(signature=signature)
