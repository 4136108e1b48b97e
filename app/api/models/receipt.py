# app/api/models/receipt.py
from pydantic import BaseModel, Field
from typing import Optional


class ChallengeEcho(BaseModel):
    """The part of the 402 challenge a client echoes back with its receipt."""
    expiresAt: Optional[int] = Field(None, description="Challenge expiry (unix seconds).")


class ReceiptRequest(BaseModel):
    signature: str = Field(..., description="Transaction signature/hash of the payment.")
    paymentRequestToken: str = Field(..., description="Correlation token from the 402 response.")
    imageId: str = Field(..., description="Asset the payment unlocks.")
    challenge: Optional[ChallengeEcho] = None


class ReceiptResponse(BaseModel):
    accessToken: str
