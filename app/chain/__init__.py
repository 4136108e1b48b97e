# app/chain/__init__.py
"""
Ledger access for payment verification and agent transfers.

The receipt verifier and agent wallet are written against `ChainClient`;
`build_chain_client` picks the implementation named by CHAIN_KIND:
- evm: ERC-20 tokens over EVM JSON-RPC (app.chain.evm)
- solana: SPL tokens over Solana JSON-RPC (app.chain.solana)
"""
from typing import Optional

from app.core.config import Settings, settings as default_settings
from app.chain.base import ChainClient, ChainRPCError, ConfirmedTransaction, TransferEvent


def build_chain_client(config: Optional[Settings] = None) -> ChainClient:
    """Create the chain client for the configured ledger."""
    config = config or default_settings
    common = dict(
        timeout=config.CHAIN_RPC_TIMEOUT_SECONDS,
        confirm_retries=config.CHAIN_CONFIRM_RETRIES,
        confirm_timeout=config.CHAIN_CONFIRM_TIMEOUT_SECONDS,
    )

    if config.CHAIN_KIND == "solana":
        from app.chain.solana import SolanaChainClient
        return SolanaChainClient(
            str(config.CHAIN_RPC_URL),
            network=config.CHAIN_NETWORK,
            explorer_template=config.CHAIN_EXPLORER_URL,
            **common,
        )

    from app.chain.evm import EvmChainClient
    return EvmChainClient(
        str(config.CHAIN_RPC_URL),
        chain_id=config.CHAIN_ID,
        network=config.CHAIN_NETWORK,
        explorer_template=config.CHAIN_EXPLORER_URL,
        **common,
    )


__all__ = [
    "ChainClient",
    "ChainRPCError",
    "ConfirmedTransaction",
    "TransferEvent",
    "build_chain_client",
]
