# app/api/models/assets.py
from pydantic import BaseModel, Field
from typing import List, Optional


class AssetSummary(BaseModel):
    """
    Public listing entry for an asset. Pricing fields mirror the 402 challenge.
    """
    id: str
    title: str
    description: Optional[str] = None
    price: str = Field(..., description="Price in the token's smallest unit (as string).")
    decimals: int
    currency: str
    mint: str = Field(..., description="Token mint / contract address.")
    recipient: str
    tags: List[str] = []
    createdAt: str = ""


class AssetListResponse(BaseModel):
    assets: List[AssetSummary]
    count: int


class DownloadUrlResponse(BaseModel):
    """
    Returned instead of a 402 when the caller may download the asset.
    `price` is only present for free assets.
    """
    url: str
    price: Optional[int] = None
