# app/reputation/engine.py
"""
Reputation engine.

Scores are folded from the payment ledger: payments a wallet made and
downloads it received as a payee. Recomputing is idempotent, so the engine
can be re-run after every verified payment without double counting. When a
wallet first reaches a level above newcomer, a milestone NFT is minted.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional

from app.reputation.minter import HttpReputationMinter, MintError
from app.reputation.policy import DEFAULT_POLICY, ReputationPolicy, ReputationStats, format_score
from app.storage.records import ReputationNFT, ReputationRecord
from app.storage.repository import Repository
from app.x402 import audit

logger = logging.getLogger(__name__)


def wallet_key(wallet: str) -> str:
    """Canonical storage key: hex addresses are case-insensitive, base58 is not."""
    wallet = wallet.strip()
    return wallet.lower() if wallet.lower().startswith("0x") else wallet


class ReputationEngine:
    def __init__(
        self,
        repository: Repository,
        minter: Optional[HttpReputationMinter] = None,
        policy: ReputationPolicy = DEFAULT_POLICY,
        clock: Callable[[], float] = time.time,
    ):
        self.repository = repository
        self.minter = minter
        self.policy = policy
        self._clock = clock
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def recompute(self, wallet: str) -> ReputationRecord:
        """Rebuild a wallet's record from every payment it made or received."""
        key = wallet_key(wallet)
        with self._wallet_lock(key):
            made = self.repository.list_payments(payer=key)
            received = self.repository.list_payments(recipient=key)

            stats = ReputationStats(
                total_payments=len(made),
                total_spent=sum(p.amount for p in made),
                total_downloads=len(received),
                total_earnings=sum(p.amount for p in received),
            )
            score = self.policy.score(stats)
            record = ReputationRecord(
                wallet=key,
                score=score,
                level=self.policy.level(score),
                total_payments=stats.total_payments,
                total_spent=stats.total_spent,
                total_downloads=stats.total_downloads,
                total_earnings=stats.total_earnings,
                last_updated=int(self._clock()),
            )
            self.repository.upsert_reputation(record)
        logger.info(f"Reputation for {key}: {format_score(score, self.policy)}")
        return record

    def get_or_compute(self, wallet: str) -> ReputationRecord:
        record = self.repository.get_reputation(wallet_key(wallet))
        if record is None:
            record = self.recompute(wallet)
        return record

    def list_nfts(self, wallet: str) -> List[ReputationNFT]:
        return self.repository.list_reputation_nfts(wallet_key(wallet))

    def _wallet_lock(self, key: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(key, threading.Lock())

    def mint_if_eligible(self, wallet: str, score: int) -> Optional[ReputationNFT]:
        """
        Mint a milestone NFT for the level `score` reaches.

        Nothing is minted for newcomers, for a level the wallet already holds
        an NFT for, or when no minter is configured. Mint failures are logged
        and return None. Concurrent calls for one wallet are serialized.
        """
        key = wallet_key(wallet)
        level = self.policy.level(score)
        if self.policy.rank(level) <= 0:
            return None
        if self.minter is None:
            logger.debug(f"No minter configured, skipping {level} NFT for {key}")
            return None

        with self._wallet_lock(key):
            if any(nft.level == level for nft in self.repository.list_reputation_nfts(key)):
                logger.debug(f"{key} already holds a {level} reputation NFT")
                return None

            metadata = self.build_metadata(key, score, level)
            try:
                result = self.minter.mint(key, metadata)
            except MintError as e:
                logger.error(f"Failed to mint {level} reputation NFT for {key}: {e}")
                return None

            nft = ReputationNFT(
                wallet=key,
                mint=result.mint,
                score=score,
                level=level,
                timestamp=int(self._clock()),
                transaction_signature=result.signature,
                metadata=metadata,
            )
            if not self.repository.append_reputation_nft(nft):
                logger.warning(f"Discarding duplicate {level} reputation NFT {result.mint} for {key}")
                return None

        logger.info(f"Minted {level} reputation NFT {result.mint} for {key}")
        audit.log_reputation_minted(key, result.mint, score, level)
        return nft

    def update_and_mint(self, wallet: str, amount: int = 0) -> Optional[ReputationNFT]:
        """Refresh a payer's score, then mint if a new level was reached."""
        logger.debug(f"Updating reputation for {wallet} after payment of {amount}")
        record = self.recompute(wallet)
        return self.mint_if_eligible(record.wallet, record.score)

    def record_payment(self, payer: str, recipient: str, amount: int) -> Optional[ReputationNFT]:
        """
        Post-payment hook: the payee's download counters change too, so both
        sides are recomputed. Only the payer can reach a new NFT level here.
        """
        if recipient and wallet_key(recipient) != wallet_key(payer):
            self.recompute(recipient)
        return self.update_and_mint(payer, amount)

    def build_metadata(self, wallet: str, score: int, level: str) -> Dict[str, Any]:
        return {
            "name": f"Reputation: {level.capitalize()}",
            "symbol": "REP",
            "description": f"Reputation milestone for {wallet}: {format_score(score, self.policy)}",
            "attributes": [
                {"trait_type": "Level", "value": level},
                {"trait_type": "Score", "value": score},
            ],
        }
