# app/api/endpoints/assets.py
from fastapi import APIRouter, Depends, Path, Request
from fastapi.responses import JSONResponse, RedirectResponse
from typing import Any
import logging

from app.api.deps import get_repository, get_token_codec
from app.api.models.assets import AssetListResponse, AssetSummary, DownloadUrlResponse
from app.core.config import settings
from app.core.errors import AssetNotFoundError, PaymentError, ServerError, UnauthorizedError
from app.storage.records import Asset
from app.storage.repository import Repository
from app.x402 import audit
from app.x402.challenge import challenge_for_asset, format_402_response, requires_payment
from app.x402.tokens import AccessTokenCodec, extract_bearer_token

logger = logging.getLogger(__name__)

router = APIRouter()


def download_url(asset_id: str) -> str:
    return f"{settings.API_V1_STR}/assets/{asset_id}/full"


def _summary(asset: Asset) -> AssetSummary:
    return AssetSummary(
        id=asset.id,
        title=asset.title,
        description=asset.description,
        price=str(asset.price),
        decimals=asset.decimals,
        currency=asset.currency,
        mint=asset.token_address,
        recipient=asset.recipient,
        tags=asset.tags,
        createdAt=asset.created_at,
    )


@router.get("/", response_model=AssetListResponse)
def list_assets(repository: Repository = Depends(get_repository)) -> Any:
    """
    List every asset in the catalogue with its pricing.
    """
    try:
        assets = [_summary(a) for a in repository.list_assets()]
    except Exception as e:
        logger.error(f"Failed to list assets: {e}")
        raise ServerError() from e
    return AssetListResponse(assets=assets, count=len(assets))


@router.get(
    "/{asset_id}",
    response_model=DownloadUrlResponse,
    responses={402: {"description": "Payment required; body carries the payment challenge"}},
)
def get_asset(
    request: Request,
    asset_id: str = Path(..., description="Asset identifier"),
    repository: Repository = Depends(get_repository),
    codec: AccessTokenCodec = Depends(get_token_codec),
) -> Any:
    """
    Get a download URL for an asset, or a payment challenge.

    - Valid bearer token scoped to this asset: 200 with the download URL
    - Free asset: 200 with the download URL and `price: 0`
    - Otherwise: 402 with a fresh payment challenge

    Raises:
        AssetNotFoundError: 404 if the asset does not exist
    """
    asset = repository.get_asset(asset_id)
    if asset is None:
        raise AssetNotFoundError(assetId=asset_id)

    token = extract_bearer_token(request)
    if token and codec.is_authorized(token, asset_id):
        logger.info(f"Authorized access to asset {asset_id}")
        return DownloadUrlResponse(url=download_url(asset_id))

    if not requires_payment(asset):
        return DownloadUrlResponse(url=download_url(asset_id), price=0)

    challenge = challenge_for_asset(
        asset,
        network=settings.CHAIN_NETWORK,
        expires_in=settings.CHALLENGE_TTL_SECONDS,
    )
    audit.log_challenge_issued(
        asset_id=asset.id,
        amount=challenge.amount,
        currency=challenge.currency,
        network=challenge.network,
        recipient=challenge.recipient,
        payment_request_token=challenge.payment_request_token,
        expires_at=challenge.expires_at,
    )
    logger.info(f"Issued payment challenge for {asset.id}: {challenge.amount} {challenge.currency}")

    body = format_402_response(
        challenge,
        description=f"Payment required to access {asset.title}",
        metadata={"title": asset.title, "createdAt": asset.created_at},
    )
    return JSONResponse(status_code=402, content=body)


@router.get("/{asset_id}/full")
def download_asset(
    request: Request,
    asset_id: str = Path(..., description="Asset identifier"),
    repository: Repository = Depends(get_repository),
    codec: AccessTokenCodec = Depends(get_token_codec),
) -> Any:
    """
    Redirect a token holder to the asset's content location.

    Accepts the token as `Authorization: Bearer <token>` or `?access=<token>`.
    """
    token = extract_bearer_token(request)
    if not token:
        raise UnauthorizedError("Access token required")
    if not codec.is_authorized(token, asset_id):
        raise UnauthorizedError("Invalid or expired token")

    try:
        asset = repository.get_asset(asset_id)
    except PaymentError:
        raise
    except Exception as e:
        logger.error(f"Failed to load asset {asset_id}: {e}")
        raise ServerError() from e

    if asset is None:
        raise AssetNotFoundError(assetId=asset_id)
    if not asset.ipfs_url:
        raise AssetNotFoundError("Asset content is not available", assetId=asset_id)

    logger.info(f"Redirecting download of {asset_id} to {asset.ipfs_url}")
    return RedirectResponse(asset.ipfs_url, status_code=302)
