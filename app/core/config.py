# app/core/config.py
from pydantic_settings import BaseSettings
from pydantic import AnyHttpUrl # AnyHttpUrl stays in pydantic core
from functools import lru_cache
from typing import Literal, Optional
from dotenv import load_dotenv

# Load .env file if it exists
load_dotenv()

class Settings(BaseSettings):
    PROJECT_NAME: str = "Pay-per-Asset Gateway"
    API_V1_STR: str = "/api/v1"

    # Ledger used for payment verification and agent wallets
    CHAIN_KIND: Literal["evm", "solana"] = "evm"
    CHAIN_RPC_URL: AnyHttpUrl = "https://sepolia.base.org" # validates that it's a URL
    CHAIN_NETWORK: str = "base-sepolia"
    CHAIN_ID: int = 84532
    CHAIN_EXPLORER_URL: str = "https://sepolia.basescan.org/tx/{signature}"
    CHAIN_RPC_TIMEOUT_SECONDS: float = 10.0
    CHAIN_CONFIRM_RETRIES: int = 5
    CHAIN_CONFIRM_TIMEOUT_SECONDS: float = 30.0

    # Token assets are priced in (USDC by default)
    PAYMENT_TOKEN_ADDRESS: str = "0x036CbD53842c5426634e7929541eC2318f3dCF7e"
    PAYMENT_CURRENCY: str = "USDC"
    PAYMENT_DECIMALS: int = 6

    # Access tokens and challenges
    JWT_SECRET: str = "change-me-in-production"
    ACCESS_TOKEN_TTL_SECONDS: int = 300
    CHALLENGE_TTL_SECONDS: int = 300

    # "reject", "flag" or "allow" payments where payer == recipient
    SELF_PAYMENT_POLICY: Literal["reject", "flag", "allow"] = "reject"

    # Persistence
    DATABASE_PATH: str = "data/gateway.db"
    ASSET_CATALOG_PATH: Optional[str] = None # JSON list of assets loaded at startup
    AUDIT_ENABLED: bool = True
    AUDIT_LOG_PATH: str = "logs/payments_audit.jsonl"

    # Agent wallets
    AGENT_PASSWORD_MIN_LENGTH: int = 8

    # Reputation NFT minting collaborator
    MINTER_URL: Optional[AnyHttpUrl] = None
    MINTER_API_KEY: Optional[str] = None
    REPUTATION_WORKERS: int = 2

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields from .env

@lru_cache() # Cache the settings object for performance
def get_settings() -> Settings:
    return Settings()

settings = get_settings()
