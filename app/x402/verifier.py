# app/x402/verifier.py
"""
Receipt verification: turns an on-chain transfer into an access grant.

The verifier checks a submitted transaction signature against the asset's
pricing, records the payment exactly once (keyed by signature) and issues a
short-lived access token. Re-submitting an already recorded signature is an
idempotent replay and yields a fresh token for the same asset.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from app.chain.base import ChainClient, ChainRPCError, TransferEvent, addresses_equal
from app.core.errors import (
    AssetNotFoundError,
    BadAmountError,
    BadRequestError,
    ChallengeExpiredError,
    InvalidTransactionError,
    NoTransferFoundError,
    PaymentError,
    SelfPaymentError,
    ServerError,
)
from app.storage.records import Asset, PaymentRecord
from app.storage.repository import Repository
from app.x402 import audit
from app.x402.challenge import is_challenge_expired
from app.x402.tokens import AccessTokenCodec

logger = logging.getLogger(__name__)

# Accepted deviation from the asset price, as a divisor of the price (0.01%).
AMOUNT_TOLERANCE_DIVISOR = 10000

SELF_PAYMENT_POLICIES = ("reject", "flag", "allow")


@dataclass
class VerificationResult:
    access_token: str
    asset_id: str
    payer: str
    replayed: bool = False
    amount: int = 0
    flags: List[str] = field(default_factory=list)


def amount_within_tolerance(observed: int, required: int) -> bool:
    """True if `observed` is within 0.01% of `required`."""
    return abs(observed - required) <= required // AMOUNT_TOLERANCE_DIVISOR


def select_transfer(
    events: List[TransferEvent], recipient: str, token_address: Optional[str] = None
) -> Optional[TransferEvent]:
    """Pick the transfer paying `recipient` (in `token_address` when known)."""
    for event in events:
        if not addresses_equal(event.destination, recipient):
            continue
        if token_address and event.token and not addresses_equal(event.token, token_address):
            continue
        return event
    return None


class ReceiptVerifier:
    """Verifies payment receipts and issues asset access tokens."""

    def __init__(
        self,
        repository: Repository,
        chain: ChainClient,
        codec: AccessTokenCodec,
        on_payment: Optional[Callable[[str, str, int], None]] = None,
        self_payment_policy: str = "reject",
        token_ttl: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        if self_payment_policy not in SELF_PAYMENT_POLICIES:
            raise ValueError(f"Unknown self-payment policy: {self_payment_policy}")
        self.repository = repository
        self.chain = chain
        self.codec = codec
        self.on_payment = on_payment
        self.self_payment_policy = self_payment_policy
        self.token_ttl = token_ttl
        self._clock = clock

    def verify(
        self,
        signature: str,
        payment_request_token: str,
        asset_id: str,
        challenge_expires_at: Optional[int] = None,
    ) -> VerificationResult:
        """
        Verify a payment receipt and grant access to the paid asset.

        Args:
            signature: Transaction signature/hash of the payment
            payment_request_token: Correlation token from the 402 challenge
            asset_id: Asset being unlocked
            challenge_expires_at: `expiresAt` of the challenge, if the client echoed it

        Returns:
            VerificationResult with a fresh access token

        Raises:
            PaymentError: A typed failure (bad_request, asset_not_found,
                challenge_expired, invalid_tx, no_transfer_found, bad_amount,
                self_payment, server_error)
        """
        request_id = audit.log_receipt_received(signature, asset_id, payment_request_token)
        try:
            result = self._verify(signature, payment_request_token, asset_id, challenge_expires_at)
        except PaymentError as e:
            logger.warning(f"Receipt {signature} for {asset_id} rejected: {e.code}")
            audit.log_payment_failed(signature, asset_id, e.code, e.context, request_id=request_id)
            raise
        except Exception as e:
            logger.exception(f"Unexpected error verifying receipt {signature}: {e}")
            audit.log_error("verification_error", str(e), {"signature": signature, "asset_id": asset_id},
                            request_id=request_id)
            raise ServerError() from e

        if result.replayed:
            audit.log_payment_replayed(signature, result.asset_id, request_id=request_id)
        else:
            audit.log_payment_verified(signature, result.asset_id, result.payer, result.amount,
                                       flags=result.flags, request_id=request_id)
        return result

    def _verify(
        self,
        signature: str,
        payment_request_token: str,
        asset_id: str,
        challenge_expires_at: Optional[int],
    ) -> VerificationResult:
        if not signature or not payment_request_token or not asset_id:
            raise BadRequestError("signature, paymentRequestToken and imageId are required")

        now = self._clock()
        if is_challenge_expired(challenge_expires_at, now=now):
            raise ChallengeExpiredError(expiresAt=challenge_expires_at)

        existing = self.repository.get_payment_by_signature(signature)
        if existing is not None:
            return self._replay(existing, asset_id)

        asset = self.repository.get_asset(asset_id)
        if asset is None:
            raise AssetNotFoundError(assetId=asset_id)

        explorer_url = self.chain.explorer_url(signature)
        tx = self.chain.get_confirmed_transaction(signature)
        if tx is None:
            raise InvalidTransactionError("Transaction not found", explorerUrl=explorer_url)
        if not tx.success:
            raise InvalidTransactionError("Transaction failed", explorerUrl=explorer_url)

        try:
            events = self.chain.get_transfer_events(tx, asset.token_address)
        except ChainRPCError as e:
            raise InvalidTransactionError(str(e), explorerUrl=explorer_url) from e

        transfer = select_transfer(events, asset.recipient, asset.token_address)
        if transfer is None:
            raise NoTransferFoundError(recipient=asset.recipient, explorerUrl=explorer_url)

        if not amount_within_tolerance(transfer.amount, asset.price):
            raise BadAmountError(
                received=str(transfer.amount),
                required=str(asset.price),
                destination=transfer.destination,
            )

        payer = tx.fee_payer or transfer.source
        flags = self._check_self_payment(payer, asset)

        record = PaymentRecord(
            asset_id=asset.id,
            signature=signature,
            payer=payer,
            amount=transfer.amount,
            timestamp=int(now),
            payment_request_token=payment_request_token,
            recipient=asset.recipient,
        )
        if not self.repository.append_payment_unique(record):
            # Lost a race with a concurrent submission of the same signature
            stored = self.repository.get_payment_by_signature(signature)
            if stored is None:
                raise ServerError("Payment record vanished after duplicate insert")
            return self._replay(stored, asset_id)

        logger.info(f"Verified payment {signature}: {transfer.amount} from {payer} for {asset.id}")
        result = VerificationResult(
            access_token=self.codec.issue(asset.id, ttl=self.token_ttl, now=now),
            asset_id=asset.id,
            payer=payer,
            amount=transfer.amount,
            flags=flags,
        )
        self._notify(payer, asset.recipient, transfer.amount)
        return result

    def _replay(self, record: PaymentRecord, asset_id: str) -> VerificationResult:
        if record.asset_id != asset_id:
            raise BadRequestError(
                "Signature already redeemed for a different asset",
                assetId=record.asset_id,
            )
        logger.info(f"Replayed payment {record.signature} for {record.asset_id}")
        return VerificationResult(
            access_token=self.codec.issue(record.asset_id, ttl=self.token_ttl, now=self._clock()),
            asset_id=record.asset_id,
            payer=record.payer,
            replayed=True,
            amount=record.amount,
        )

    def _check_self_payment(self, payer: str, asset: Asset) -> List[str]:
        if not addresses_equal(payer, asset.recipient):
            return []
        if self.self_payment_policy == "reject":
            raise SelfPaymentError(payer=payer)
        if self.self_payment_policy == "flag":
            logger.warning(f"Self-payment by {payer} for {asset.id} accepted and flagged")
            return ["self_payment"]
        return []

    def _notify(self, payer: str, recipient: str, amount: int) -> None:
        if self.on_payment is None:
            return
        try:
            self.on_payment(payer, recipient, amount)
        except Exception as e:
            logger.error(f"Post-payment hook failed for {payer}: {e}")
