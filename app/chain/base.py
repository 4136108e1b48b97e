# app/chain/base.py
"""
Ledger-independent capabilities the payment core relies on.

Implementations translate raw RPC payloads into the typed records below at
this boundary; the receipt verifier and agent wallet only ever see
`ConfirmedTransaction` and `TransferEvent`.
"""
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests
from requests.exceptions import RequestException

logger = logging.getLogger(__name__)

# Seconds slept after attempt N (1-based) while waiting for a transaction.
CONFIRMATION_BACKOFF_STEP = 1.0


class ChainRPCError(Exception):
    """An RPC call failed or returned an unusable payload."""


@dataclass(frozen=True)
class TransferEvent:
    """A single token movement extracted from a confirmed transaction."""
    source: str
    destination: str
    amount: int
    token: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.amount, int) or self.amount < 0:
            raise ValueError(f"Invalid transfer amount: {self.amount!r}")
        if not self.destination:
            raise ValueError("Transfer destination is required")


@dataclass
class ConfirmedTransaction:
    signature: str
    success: bool
    fee_payer: Optional[str] = None
    error: Optional[Any] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


def addresses_equal(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive address comparison."""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()


class ChainClient(ABC):
    """Capability interface over one ledger."""

    network: str = ""

    def __init__(
        self,
        confirm_retries: int = 5,
        confirm_timeout: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.confirm_retries = confirm_retries
        self.confirm_timeout = confirm_timeout
        self._sleep = sleep

    @abstractmethod
    def _fetch_transaction(self, signature: str) -> Optional[ConfirmedTransaction]:
        """Single lookup; None when the ledger does not (yet) expose it."""

    @abstractmethod
    def get_transfer_events(
        self, transaction: ConfirmedTransaction, token_address: str
    ) -> List[TransferEvent]: ...

    @abstractmethod
    def get_token_balance(self, owner: str, token_address: str) -> int: ...

    @abstractmethod
    def send_signed_transfer(
        self, signer_key: bytes, token_address: str, to: str, amount: int
    ) -> str:
        """Sign and submit a token transfer; return its signature/hash."""

    @abstractmethod
    def generate_keypair(self) -> Tuple[str, bytes]:
        """Return (address, private key bytes) for a fresh account."""

    @abstractmethod
    def address_for_key(self, private_key: bytes) -> str: ...

    @abstractmethod
    def explorer_url(self, signature: str) -> str: ...

    def get_confirmed_transaction(self, signature: str) -> Optional[ConfirmedTransaction]:
        """
        Look up a transaction, polling while read replicas catch up.

        Attempts up to `confirm_retries` lookups, sleeping 1s, 2s, 3s... between
        them; there is no sleep after the final miss, so the default five
        attempts wait 1s, 2s, 3s and 4s. RPC failures count as misses. Stops
        early once `confirm_timeout` seconds have elapsed.

        Returns:
            The transaction, or None if it never became visible.
        """
        started = time.monotonic()
        last_error: Optional[Exception] = None

        for attempt in range(1, self.confirm_retries + 1):
            try:
                tx = self._fetch_transaction(signature)
                if tx is not None:
                    if attempt > 1:
                        logger.info(f"Transaction {signature} visible after {attempt} attempts")
                    return tx
            except ChainRPCError as e:
                last_error = e
                logger.warning(f"Lookup of {signature} failed (attempt {attempt}): {e}")

            if attempt == self.confirm_retries:
                break

            delay = CONFIRMATION_BACKOFF_STEP * attempt
            if self.confirm_timeout is not None:
                remaining = self.confirm_timeout - (time.monotonic() - started)
                if remaining <= 0:
                    logger.warning(f"Confirmation deadline reached for {signature}")
                    break
                delay = min(delay, remaining)
            self._sleep(delay)

        if last_error is not None:
            logger.error(f"Transaction {signature} not found after retries, last error: {last_error}")
        else:
            logger.error(f"Transaction {signature} not found after retries")
        return None


class JsonRpcChainClient(ChainClient):
    """ChainClient speaking JSON-RPC 2.0 over HTTP with `requests`."""

    def __init__(self, rpc_url: str, timeout: float = 10.0, **kwargs):
        super().__init__(**kwargs)
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._request_id = 0

    def _rpc(self, method: str, params: List[Any]) -> Any:
        """
        Perform a JSON-RPC call.

        Returns:
            The `result` field (may be None)

        Raises:
            ChainRPCError: On transport errors, HTTP errors or RPC error objects
        """
        self._request_id += 1
        try:
            response = requests.post(
                self.rpc_url,
                json={
                    "jsonrpc": "2.0",
                    "method": method,
                    "params": params,
                    "id": self._request_id,
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
            result = response.json()
        except RequestException as e:
            raise ChainRPCError(f"{method} request failed: {e}") from e
        except ValueError as e:
            raise ChainRPCError(f"{method} returned invalid JSON: {e}") from e

        if "error" in result:
            raise ChainRPCError(f"RPC error from {method}: {result['error']}")

        if "result" not in result:
            raise ChainRPCError(f"Invalid RPC response from {method}: missing 'result' field")

        return result["result"]
