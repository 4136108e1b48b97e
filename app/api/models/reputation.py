# app/api/models/reputation.py
from pydantic import BaseModel
from typing import List, Optional


class ReputationNFTResponse(BaseModel):
    mint: str
    score: int
    level: str
    timestamp: int
    transactionSignature: Optional[str] = None
    explorerUrl: Optional[str] = None


class ReputationResponse(BaseModel):
    wallet: str
    score: int
    level: str
    formattedScore: str
    totalPayments: int
    totalSpent: int
    totalDownloads: int
    totalEarnings: int
    lastUpdated: int
    nfts: List[ReputationNFTResponse] = []
