# app/api/deps.py
"""
Process-wide service instances, handed to routers through `Depends`.

Each provider is cached so the whole app shares one repository, chain
client and background queue. Tests swap them via `app.dependency_overrides`.
"""
import logging
from functools import lru_cache

from app.chain import ChainClient, build_chain_client
from app.core.config import settings
from app.reputation.engine import ReputationEngine
from app.reputation.minter import HttpReputationMinter
from app.reputation.tasks import BackgroundTaskQueue
from app.storage.repository import Repository, SQLiteRepository, load_asset_catalog
from app.wallet.agent import AgentWalletService
from app.wallet.vault import KeyVault
from app.x402.tokens import AccessTokenCodec
from app.x402.verifier import ReceiptVerifier

logger = logging.getLogger(__name__)


@lru_cache()
def get_repository() -> Repository:
    repository = SQLiteRepository(settings.DATABASE_PATH)
    if settings.ASSET_CATALOG_PATH:
        load_asset_catalog(repository, settings.ASSET_CATALOG_PATH)
    return repository


@lru_cache()
def get_chain_client() -> ChainClient:
    return build_chain_client(settings)


@lru_cache()
def get_token_codec() -> AccessTokenCodec:
    return AccessTokenCodec(settings.JWT_SECRET, default_ttl=settings.ACCESS_TOKEN_TTL_SECONDS)


@lru_cache()
def get_task_queue() -> BackgroundTaskQueue:
    return BackgroundTaskQueue(max_workers=settings.REPUTATION_WORKERS)


@lru_cache()
def get_reputation_engine() -> ReputationEngine:
    minter = None
    if settings.MINTER_URL:
        minter = HttpReputationMinter(str(settings.MINTER_URL), api_key=settings.MINTER_API_KEY)
    else:
        logger.info("MINTER_URL not set, reputation NFTs will not be minted")
    return ReputationEngine(get_repository(), minter=minter)


@lru_cache()
def get_receipt_verifier() -> ReceiptVerifier:
    engine = get_reputation_engine()
    queue = get_task_queue()

    def on_payment(payer: str, recipient: str, amount: int) -> None:
        queue.submit("reputation-update", engine.record_payment, payer, recipient, amount)

    return ReceiptVerifier(
        get_repository(),
        get_chain_client(),
        get_token_codec(),
        on_payment=on_payment,
        self_payment_policy=settings.SELF_PAYMENT_POLICY,
        token_ttl=settings.ACCESS_TOKEN_TTL_SECONDS,
    )


@lru_cache()
def get_agent_service() -> AgentWalletService:
    return AgentWalletService(
        get_repository(),
        get_chain_client(),
        KeyVault(),
        get_receipt_verifier(),
        currency=settings.PAYMENT_CURRENCY,
        decimals=settings.PAYMENT_DECIMALS,
        default_token_address=settings.PAYMENT_TOKEN_ADDRESS,
        password_min_length=settings.AGENT_PASSWORD_MIN_LENGTH,
    )
