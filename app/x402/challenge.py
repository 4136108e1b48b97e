# app/x402/challenge.py
"""
Payment challenges returned with HTTP 402.

A challenge is an ephemeral view of an asset's pricing plus a fresh
correlation token and expiry; it is never persisted.
"""
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional

from app.storage.records import Asset

logger = logging.getLogger(__name__)

CHALLENGE_VERSION = "1.0"
DEFAULT_CHALLENGE_TTL_SECONDS = 300


@dataclass(frozen=True)
class PaymentChallenge:
    asset_id: str
    amount: int
    decimals: int
    currency: str
    token_address: str
    recipient: str
    network: str
    expires_at: int
    payment_request_token: str
    version: str = CHALLENGE_VERSION

    def to_dict(self) -> Dict[str, Any]:
        """Wire form of the challenge (without the correlation token)."""
        return {
            "version": self.version,
            "network": self.network,
            "currency": self.currency,
            "decimals": self.decimals,
            "amount": str(self.amount),
            "mint": self.token_address,
            "recipient": self.recipient,
            "expiresAt": self.expires_at,
            "assetId": self.asset_id,
        }


def requires_payment(asset: Asset) -> bool:
    """Free assets (price 0) are served without a challenge."""
    return not asset.is_free


def is_challenge_expired(expires_at: Optional[int], now: Optional[float] = None) -> bool:
    if not expires_at:
        return False
    now = time.time() if now is None else now
    return expires_at < int(now)


def create_payment_challenge(
    asset_id: str,
    amount: int,
    decimals: int,
    currency: str,
    token_address: str,
    recipient: str,
    network: str,
    payment_request_token: Optional[str] = None,
    expires_in: int = DEFAULT_CHALLENGE_TTL_SECONDS,
    now: Optional[float] = None,
) -> PaymentChallenge:
    """
    Build a payment challenge for an asset.

    Args:
        asset_id: Asset being unlocked
        amount: Price in the token's smallest unit (must be positive)
        decimals: Token decimals
        currency: Currency symbol, e.g. "USDC"
        token_address: Token mint / contract address
        recipient: Payee address
        network: Network identifier, e.g. "base-sepolia" or "solana:devnet"
        payment_request_token: Correlation id; a uuid4 is minted when omitted
        expires_in: Seconds until the challenge expires
        now: Reference time (defaults to the current time)

    Raises:
        ValueError: If amount is not positive
    """
    if amount <= 0:
        raise ValueError("Free assets do not need a payment challenge")

    now = time.time() if now is None else now
    return PaymentChallenge(
        asset_id=asset_id,
        amount=int(amount),
        decimals=decimals,
        currency=currency,
        token_address=token_address,
        recipient=recipient,
        network=network,
        expires_at=int(now) + expires_in,
        payment_request_token=payment_request_token or str(uuid.uuid4()),
    )


def challenge_for_asset(
    asset: Asset,
    network: str,
    expires_in: int = DEFAULT_CHALLENGE_TTL_SECONDS,
    now: Optional[float] = None,
) -> PaymentChallenge:
    """Build a challenge straight from an asset's pricing fields."""
    return create_payment_challenge(
        asset_id=asset.id,
        amount=asset.price,
        decimals=asset.decimals,
        currency=asset.currency,
        token_address=asset.token_address,
        recipient=asset.recipient,
        network=network,
        expires_in=expires_in,
        now=now,
    )


def format_402_response(
    challenge: PaymentChallenge,
    description: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Wrap a challenge in the 402 response envelope."""
    return {
        "error": "Payment Required",
        "code": "402",
        "challenge": challenge.to_dict(),
        "paymentRequestToken": challenge.payment_request_token,
        "description": description,
        "metadata": metadata or {},
    }
