# app/chain/solana.py
"""
SPL token payments on Solana via JSON-RPC.

Transfers are read from `jsonParsed` transactions. SPL instructions name
token accounts, not wallets, so destinations are resolved to their owner
through the transaction's token balance metadata before they leave this
module. Agent transfers are built and signed with `solders`.
"""
import base64
import logging
from typing import Any, Dict, List, Optional, Tuple

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from app.chain.base import (
    ConfirmedTransaction,
    JsonRpcChainClient,
    TransferEvent,
    addresses_equal,
)

logger = logging.getLogger(__name__)

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbd2Ab1GJ4PVnY7PaXzhgXbpZQ6dnVQ58Qa")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

SPL_TOKEN_PROGRAMS = ("spl-token", "spl-token-2022")
SPL_TRANSFER_TYPES = ("transfer", "transferChecked")
SPL_TRANSFER_INSTRUCTION = 3
ATA_CREATE_IDEMPOTENT_INSTRUCTION = 1


def derive_associated_token_address(owner: Pubkey, mint: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(TOKEN_PROGRAM_ID), bytes(mint)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def build_transfer_instruction(source: Pubkey, destination: Pubkey, owner: Pubkey, amount: int) -> Instruction:
    data = bytes([SPL_TRANSFER_INSTRUCTION]) + amount.to_bytes(8, "little")
    return Instruction(
        program_id=TOKEN_PROGRAM_ID,
        data=data,
        accounts=[
            AccountMeta(pubkey=source, is_signer=False, is_writable=True),
            AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=True, is_writable=False),
        ],
    )


def build_create_ata_instruction(payer: Pubkey, ata: Pubkey, owner: Pubkey, mint: Pubkey) -> Instruction:
    return Instruction(
        program_id=ASSOCIATED_TOKEN_PROGRAM_ID,
        data=bytes([ATA_CREATE_IDEMPOTENT_INSTRUCTION]),
        accounts=[
            AccountMeta(pubkey=payer, is_signer=True, is_writable=True),
            AccountMeta(pubkey=ata, is_signer=False, is_writable=True),
            AccountMeta(pubkey=owner, is_signer=False, is_writable=False),
            AccountMeta(pubkey=mint, is_signer=False, is_writable=False),
            AccountMeta(pubkey=SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
            AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        ],
    )


def _account_key_to_str(key: Any) -> str:
    if isinstance(key, dict):
        return key.get("pubkey", "")
    return str(key) if key else ""


def _token_accounts(raw: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Map token account address -> {owner, mint, pre, post} from balance metadata."""
    message = raw.get("transaction", {}).get("message", {})
    keys = [_account_key_to_str(k) for k in message.get("accountKeys", [])]
    meta = raw.get("meta") or {}

    accounts: Dict[str, Dict[str, Any]] = {}
    for field_name in ("preTokenBalances", "postTokenBalances"):
        for balance in meta.get(field_name) or []:
            index = balance.get("accountIndex")
            if index is None or index >= len(keys):
                continue
            entry = accounts.setdefault(keys[index], {"pre": 0, "post": 0})
            entry["owner"] = balance.get("owner") or entry.get("owner")
            entry["mint"] = balance.get("mint") or entry.get("mint")
            amount = int((balance.get("uiTokenAmount") or {}).get("amount") or 0)
            entry["pre" if field_name == "preTokenBalances" else "post"] = amount
    return accounts


def _parsed_instructions(raw: Dict[str, Any]) -> List[Dict[str, Any]]:
    message = raw.get("transaction", {}).get("message", {})
    instructions = list(message.get("instructions", []))
    for inner in (raw.get("meta") or {}).get("innerInstructions") or []:
        instructions.extend(inner.get("instructions", []))
    return instructions


class SolanaChainClient(JsonRpcChainClient):
    """Chain client for SPL tokens on Solana."""

    def __init__(
        self,
        rpc_url: str,
        network: str = "solana:devnet",
        explorer_template: str = "https://explorer.solana.com/tx/{signature}?cluster=devnet",
        **kwargs,
    ):
        super().__init__(rpc_url, **kwargs)
        self.network = network
        self.explorer_template = explorer_template

    def _fetch_transaction(self, signature: str) -> Optional[ConfirmedTransaction]:
        result = self._rpc(
            "getTransaction",
            [signature, {
                "encoding": "jsonParsed",
                "commitment": "confirmed",
                "maxSupportedTransactionVersion": 0,
            }],
        )
        if not result or not result.get("meta"):
            return None

        keys = result.get("transaction", {}).get("message", {}).get("accountKeys", [])
        err = result["meta"].get("err")
        return ConfirmedTransaction(
            signature=signature,
            success=err is None,
            fee_payer=_account_key_to_str(keys[0]) if keys else None,
            error=err,
            raw=result,
        )

    def get_transfer_events(
        self, transaction: ConfirmedTransaction, token_address: str
    ) -> List[TransferEvent]:
        accounts = _token_accounts(transaction.raw)
        events = []

        for ix in _parsed_instructions(transaction.raw):
            parsed = ix.get("parsed")
            if ix.get("program") not in SPL_TOKEN_PROGRAMS or not isinstance(parsed, dict):
                continue
            if parsed.get("type") not in SPL_TRANSFER_TYPES:
                continue

            info = parsed.get("info") or {}
            source_account = info.get("source", "")
            destination_account = info.get("destination", "")
            amount = info.get("amount") or (info.get("tokenAmount") or {}).get("amount")
            dest_meta = accounts.get(destination_account, {})
            mint = info.get("mint") or dest_meta.get("mint")

            if token_address and mint and not addresses_equal(mint, token_address):
                continue
            try:
                events.append(TransferEvent(
                    source=info.get("authority") or accounts.get(source_account, {}).get("owner") or source_account,
                    destination=dest_meta.get("owner") or destination_account,
                    amount=int(amount),
                    token=mint,
                ))
            except (TypeError, ValueError) as e:
                logger.debug(f"Skipping malformed SPL transfer in {transaction.signature}: {e}")

        if events:
            return events

        # Fall back to balance deltas when no parsed transfer instruction exists
        for account in accounts.values():
            if token_address and not addresses_equal(account.get("mint"), token_address):
                continue
            delta = account["post"] - account["pre"]
            if delta > 0 and account.get("owner"):
                events.append(TransferEvent(
                    source=transaction.fee_payer or "",
                    destination=account["owner"],
                    amount=delta,
                    token=account.get("mint"),
                ))
        return events

    def get_token_balance(self, owner: str, token_address: str) -> int:
        result = self._rpc(
            "getTokenAccountsByOwner",
            [owner, {"mint": token_address}, {"encoding": "jsonParsed"}],
        )
        total = 0
        for account in (result or {}).get("value", []):
            info = account.get("account", {}).get("data", {}).get("parsed", {}).get("info", {})
            total += int((info.get("tokenAmount") or {}).get("amount") or 0)
        return total

    def send_signed_transfer(
        self, signer_key: bytes, token_address: str, to: str, amount: int
    ) -> str:
        keypair = Keypair.from_bytes(signer_key)
        payer = keypair.pubkey()
        mint = Pubkey.from_string(token_address)
        recipient = Pubkey.from_string(to)

        source_ata = derive_associated_token_address(payer, mint)
        destination_ata = derive_associated_token_address(recipient, mint)

        instructions = []
        existing = self._rpc("getAccountInfo", [str(destination_ata), {"encoding": "base64"}])
        if not (existing or {}).get("value"):
            instructions.append(build_create_ata_instruction(payer, destination_ata, recipient, mint))
        instructions.append(build_transfer_instruction(source_ata, destination_ata, payer, amount))

        latest = self._rpc("getLatestBlockhash", [{"commitment": "confirmed"}])
        blockhash = Hash.from_string(latest["value"]["blockhash"])
        message = Message.new_with_blockhash(instructions, payer, blockhash)
        tx = Transaction([keypair], message, blockhash)

        signature = self._rpc(
            "sendTransaction",
            [base64.b64encode(bytes(tx)).decode("ascii"), {
                "encoding": "base64",
                "skipPreflight": True,
                "maxRetries": 5,
            }],
        )
        logger.info(f"Submitted SPL transfer {signature} from {payer} to {to}")
        return signature

    def generate_keypair(self) -> Tuple[str, bytes]:
        keypair = Keypair()
        return str(keypair.pubkey()), bytes(keypair)

    def address_for_key(self, private_key: bytes) -> str:
        return str(Keypair.from_bytes(private_key).pubkey())

    def explorer_url(self, signature: str) -> str:
        return self.explorer_template.format(signature=signature)
