# app/api/endpoints/provider.py
from fastapi import APIRouter, Depends, Query
from typing import Any, Dict, List
import logging

from app.api.deps import get_repository
from app.api.models.provider import AssetEarnings, ProviderEarningsResponse
from app.chain.base import addresses_equal
from app.core.config import settings
from app.core.errors import ServerError
from app.storage.records import PaymentRecord
from app.storage.repository import Repository
from app.wallet.agent import to_decimal_string

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/earnings", response_model=ProviderEarningsResponse)
def provider_earnings(
    recipient: str = Query(..., description="Payee address"),
    repository: Repository = Depends(get_repository),
) -> Any:
    """
    Summarise what a payee has earned, per asset, from recorded payments.
    """
    try:
        assets = [a for a in repository.list_assets() if addresses_equal(a.recipient, recipient)]
        payments = repository.list_payments(recipient=recipient)
    except Exception as e:
        logger.error(f"Failed to compute earnings for {recipient}: {e}")
        raise ServerError() from e

    by_asset: Dict[str, List[PaymentRecord]] = {}
    for payment in payments:
        by_asset.setdefault(payment.asset_id, []).append(payment)

    earnings = []
    for asset in assets:
        asset_payments = by_asset.get(asset.id, [])
        total = sum(p.amount for p in asset_payments)
        earnings.append(AssetEarnings(
            assetId=asset.id,
            title=asset.title,
            earnings=total,
            earningsFormatted=to_decimal_string(total, asset.decimals),
            paymentCount=len(asset_payments),
        ))
    earnings.sort(key=lambda e: e.earnings, reverse=True)

    total_earnings = sum(p.amount for p in payments)
    return ProviderEarningsResponse(
        recipient=recipient,
        totalEarnings=total_earnings,
        totalEarningsFormatted=to_decimal_string(total_earnings, settings.PAYMENT_DECIMALS),
        totalPayments=len(payments),
        earningsByAsset=earnings,
    )
