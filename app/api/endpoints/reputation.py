# app/api/endpoints/reputation.py
from fastapi import APIRouter, Depends, Path
from typing import Any
import logging

from app.api.deps import get_chain_client, get_reputation_engine
from app.api.models.reputation import ReputationNFTResponse, ReputationResponse
from app.chain import ChainClient
from app.core.errors import ServerError
from app.reputation.engine import ReputationEngine
from app.reputation.policy import format_score

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{wallet}", response_model=ReputationResponse)
def get_reputation(
    wallet: str = Path(..., description="Wallet address"),
    engine: ReputationEngine = Depends(get_reputation_engine),
    chain: ChainClient = Depends(get_chain_client),
) -> Any:
    """
    Get a wallet's reputation, computing it on first request, with its milestone NFTs.
    """
    try:
        record = engine.get_or_compute(wallet)
        nfts = engine.list_nfts(wallet)
    except Exception as e:
        logger.error(f"Failed to fetch reputation for {wallet}: {e}")
        raise ServerError() from e

    return ReputationResponse(
        wallet=record.wallet,
        score=record.score,
        level=record.level,
        formattedScore=format_score(record.score, engine.policy),
        totalPayments=record.total_payments,
        totalSpent=record.total_spent,
        totalDownloads=record.total_downloads,
        totalEarnings=record.total_earnings,
        lastUpdated=record.last_updated,
        nfts=[
            ReputationNFTResponse(
                mint=nft.mint,
                score=nft.score,
                level=nft.level,
                timestamp=nft.timestamp,
                transactionSignature=nft.transaction_signature,
                explorerUrl=chain.explorer_url(nft.transaction_signature) if nft.transaction_signature else None,
            )
            for nft in nfts
        ],
    )
