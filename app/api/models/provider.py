# app/api/models/provider.py
from pydantic import BaseModel, Field
from typing import List


class AssetEarnings(BaseModel):
    assetId: str
    title: str
    earnings: int
    earningsFormatted: str
    paymentCount: int


class ProviderEarningsResponse(BaseModel):
    """
    Earnings of a payee across the assets it is the recipient of.
    Amounts are in the token's smallest unit; `*Formatted` fields are decimal strings.
    """
    recipient: str
    totalEarnings: int
    totalEarningsFormatted: str
    totalPayments: int
    earningsByAsset: List[AssetEarnings] = Field(default_factory=list, description="Highest earning first.")
