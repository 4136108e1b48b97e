# app/api/endpoints/receipt.py
from fastapi import APIRouter, Depends
from typing import Any
import logging

from app.api.deps import get_receipt_verifier
from app.api.models.receipt import ReceiptRequest, ReceiptResponse
from app.x402.verifier import ReceiptVerifier

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/receipt", response_model=ReceiptResponse)
def submit_receipt(
    body: ReceiptRequest,
    verifier: ReceiptVerifier = Depends(get_receipt_verifier),
) -> Any:
    """
    Exchange an on-chain payment for an access token.

    Submitting an already redeemed signature for the same asset returns a
    fresh token without recording a second payment.

    Raises:
        PaymentError: bad_request, asset_not_found, challenge_expired,
            invalid_tx, no_transfer_found, bad_amount or self_payment (400/404)
    """
    expires_at = body.challenge.expiresAt if body.challenge else None
    result = verifier.verify(
        body.signature,
        body.paymentRequestToken,
        body.imageId,
        challenge_expires_at=expires_at,
    )
    return ReceiptResponse(accessToken=result.access_token)
