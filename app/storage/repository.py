# app/storage/repository.py
"""
Persistence for assets, verified payments, agent wallets and reputation.

The payments table carries a UNIQUE constraint on the transaction signature;
`append_payment_unique` reports a duplicate insert instead of raising so the
caller can treat it as an idempotent replay. Agent counter updates are single
SQL statements executed under the repository lock, keyed by the payment
signature so the same payment is never applied twice. A wallet holds at most
one reputation NFT per level.
"""
import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional

from app.storage.records import (
    AgentWallet,
    Asset,
    EncryptedKey,
    PaymentRecord,
    ReputationNFT,
    ReputationRecord,
)

logger = logging.getLogger(__name__)


class Repository(ABC):
    """Storage interface consumed by the payment, wallet and reputation services."""

    # Assets
    @abstractmethod
    def get_asset(self, asset_id: str) -> Optional[Asset]: ...

    @abstractmethod
    def list_assets(self) -> List[Asset]: ...

    @abstractmethod
    def save_asset(self, asset: Asset) -> None: ...

    # Payments
    @abstractmethod
    def get_payment_by_signature(self, signature: str) -> Optional[PaymentRecord]: ...

    @abstractmethod
    def append_payment_unique(self, record: PaymentRecord) -> bool:
        """Insert a payment; return False if the signature already exists."""

    @abstractmethod
    def list_payments(
        self,
        payer: Optional[str] = None,
        recipient: Optional[str] = None,
    ) -> List[PaymentRecord]: ...

    # Agent wallets
    @abstractmethod
    def save_agent_wallet(self, agent: AgentWallet) -> None: ...

    @abstractmethod
    def get_agent_wallet(self, agent_id: str) -> Optional[AgentWallet]: ...

    @abstractmethod
    def list_agent_wallets(self, user_id: str) -> List[AgentWallet]: ...

    @abstractmethod
    def update_agent_balance(self, agent_id: str, balance: int) -> Optional[AgentWallet]: ...

    @abstractmethod
    def apply_agent_payment(self, agent_id: str, signature: str, amount: int) -> Optional[AgentWallet]:
        """Atomically debit balance and bump spend counters once per signature."""

    # Reputation
    @abstractmethod
    def get_reputation(self, wallet: str) -> Optional[ReputationRecord]: ...

    @abstractmethod
    def upsert_reputation(self, record: ReputationRecord) -> None: ...

    @abstractmethod
    def append_reputation_nft(self, nft: ReputationNFT) -> bool:
        """Store an NFT; False if the wallet already holds one at that level."""

    @abstractmethod
    def list_reputation_nfts(self, wallet: str) -> List[ReputationNFT]: ...


_SCHEMA = """
CREATE TABLE IF NOT EXISTS assets (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    price INTEGER NOT NULL,
    decimals INTEGER NOT NULL,
    currency TEXT NOT NULL,
    token_address TEXT NOT NULL,
    recipient TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL DEFAULT '',
    description TEXT,
    ipfs_url TEXT
);

CREATE TABLE IF NOT EXISTS payments (
    signature TEXT PRIMARY KEY,
    asset_id TEXT NOT NULL,
    payer TEXT NOT NULL,
    recipient TEXT,
    amount INTEGER NOT NULL,
    timestamp INTEGER NOT NULL,
    payment_request_token TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_payments_payer ON payments(lower(payer));
CREATE INDEX IF NOT EXISTS idx_payments_recipient ON payments(lower(recipient));

CREATE TABLE IF NOT EXISTS agent_wallets (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    agent_address TEXT NOT NULL,
    encrypted_private_key TEXT NOT NULL,
    balance INTEGER NOT NULL DEFAULT 0,
    total_spent INTEGER NOT NULL DEFAULT 0,
    total_purchases INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_agent_wallets_user ON agent_wallets(user_id);

CREATE TABLE IF NOT EXISTS agent_payments (
    signature TEXT PRIMARY KEY,
    agent_id TEXT NOT NULL REFERENCES agent_wallets(id),
    amount INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS reputation (
    wallet TEXT PRIMARY KEY,
    score INTEGER NOT NULL,
    level TEXT NOT NULL,
    total_payments INTEGER NOT NULL,
    total_spent INTEGER NOT NULL,
    total_downloads INTEGER NOT NULL,
    total_earnings INTEGER NOT NULL,
    last_updated INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS reputation_nfts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    wallet TEXT NOT NULL,
    mint TEXT NOT NULL,
    score INTEGER NOT NULL,
    level TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    transaction_signature TEXT,
    metadata TEXT NOT NULL DEFAULT '{}'
);
CREATE UNIQUE INDEX IF NOT EXISTS idx_reputation_nfts_wallet_level ON reputation_nfts(lower(wallet), level);
"""


class SQLiteRepository(Repository):
    """SQLite-backed repository, thread-safe through a single connection lock."""

    def __init__(self, db_path: str = "data/gateway.db"):
        self._db_path = db_path
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._conn = sqlite3.connect(db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.executescript(_SCHEMA)
        self._conn.commit()
        logger.info(f"Repository ready at {db_path}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # --- Assets ---

    def get_asset(self, asset_id: str) -> Optional[Asset]:
        with self._lock:
            row = self._conn.execute("SELECT * FROM assets WHERE id = ?", (asset_id,)).fetchone()
        return _row_to_asset(row) if row else None

    def list_assets(self) -> List[Asset]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM assets ORDER BY created_at DESC").fetchall()
        return [_row_to_asset(r) for r in rows]

    def save_asset(self, asset: Asset) -> None:
        with self._lock:
            self._conn.execute(
                """INSERT OR REPLACE INTO assets (
                    id, title, price, decimals, currency, token_address, recipient,
                    tags, created_at, description, ipfs_url
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    asset.id, asset.title, asset.price, asset.decimals, asset.currency,
                    asset.token_address, asset.recipient, json.dumps(asset.tags),
                    asset.created_at, asset.description, asset.ipfs_url,
                ),
            )
            self._conn.commit()

    # --- Payments ---

    def get_payment_by_signature(self, signature: str) -> Optional[PaymentRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM payments WHERE signature = ?", (signature,)
            ).fetchone()
        return _row_to_payment(row) if row else None

    def append_payment_unique(self, record: PaymentRecord) -> bool:
        with self._lock:
            try:
                self._conn.execute(
                    """INSERT INTO payments (
                        signature, asset_id, payer, recipient, amount, timestamp,
                        payment_request_token
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        record.signature, record.asset_id, record.payer, record.recipient,
                        record.amount, record.timestamp, record.payment_request_token,
                    ),
                )
                self._conn.commit()
            except sqlite3.IntegrityError:
                self._conn.rollback()
                logger.info(f"Payment {record.signature} already recorded")
                return False
        return True

    def list_payments(
        self,
        payer: Optional[str] = None,
        recipient: Optional[str] = None,
    ) -> List[PaymentRecord]:
        query = "SELECT * FROM payments WHERE 1=1"
        params: List[Any] = []
        if payer is not None:
            query += " AND lower(payer) = lower(?)"
            params.append(payer)
        if recipient is not None:
            query += " AND lower(recipient) = lower(?)"
            params.append(recipient)
        query += " ORDER BY timestamp, signature"
        with self._lock:
            rows = self._conn.execute(query, params).fetchall()
        return [_row_to_payment(r) for r in rows]

    # --- Agent wallets ---

    def save_agent_wallet(self, agent: AgentWallet) -> None:
        with self._lock:
            self._conn.execute(
                """INSERT OR REPLACE INTO agent_wallets (
                    id, user_id, agent_address, encrypted_private_key, balance,
                    total_spent, total_purchases, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    agent.id, agent.user_id, agent.agent_address,
                    json.dumps(agent.encrypted_private_key.to_dict()),
                    agent.balance, agent.total_spent, agent.total_purchases,
                    agent.created_at,
                ),
            )
            self._conn.commit()

    def get_agent_wallet(self, agent_id: str) -> Optional[AgentWallet]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM agent_wallets WHERE id = ?", (agent_id,)
            ).fetchone()
        return _row_to_agent(row) if row else None

    def list_agent_wallets(self, user_id: str) -> List[AgentWallet]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM agent_wallets WHERE user_id = ? ORDER BY created_at", (user_id,)
            ).fetchall()
        return [_row_to_agent(r) for r in rows]

    def update_agent_balance(self, agent_id: str, balance: int) -> Optional[AgentWallet]:
        with self._lock:
            self._conn.execute(
                "UPDATE agent_wallets SET balance = ? WHERE id = ?", (balance, agent_id)
            )
            self._conn.commit()
            row = self._conn.execute(
                "SELECT * FROM agent_wallets WHERE id = ?", (agent_id,)
            ).fetchone()
        return _row_to_agent(row) if row else None

    def apply_agent_payment(self, agent_id: str, signature: str, amount: int) -> Optional[AgentWallet]:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT INTO agent_payments (signature, agent_id, amount) VALUES (?, ?, ?)",
                    (signature, agent_id, amount),
                )
                self._conn.execute(
                    """UPDATE agent_wallets
                       SET balance = MAX(balance - ?, 0),
                           total_spent = total_spent + ?,
                           total_purchases = total_purchases + 1
                       WHERE id = ?""",
                    (amount, amount, agent_id),
                )
                self._conn.commit()
            except sqlite3.IntegrityError:
                self._conn.rollback()
                logger.info(f"Agent payment {signature} already applied to {agent_id}")
            row = self._conn.execute(
                "SELECT * FROM agent_wallets WHERE id = ?", (agent_id,)
            ).fetchone()
        return _row_to_agent(row) if row else None

    # --- Reputation ---

    def get_reputation(self, wallet: str) -> Optional[ReputationRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM reputation WHERE wallet = ?", (wallet,)
            ).fetchone()
        if not row:
            return None
        return ReputationRecord(
            wallet=row["wallet"],
            score=row["score"],
            level=row["level"],
            total_payments=row["total_payments"],
            total_spent=row["total_spent"],
            total_downloads=row["total_downloads"],
            total_earnings=row["total_earnings"],
            last_updated=row["last_updated"],
        )

    def upsert_reputation(self, record: ReputationRecord) -> None:
        with self._lock:
            self._conn.execute(
                """INSERT INTO reputation (
                    wallet, score, level, total_payments, total_spent,
                    total_downloads, total_earnings, last_updated
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(wallet) DO UPDATE SET
                    score = excluded.score,
                    level = excluded.level,
                    total_payments = excluded.total_payments,
                    total_spent = excluded.total_spent,
                    total_downloads = excluded.total_downloads,
                    total_earnings = excluded.total_earnings,
                    last_updated = excluded.last_updated""",
                (
                    record.wallet, record.score, record.level, record.total_payments,
                    record.total_spent, record.total_downloads, record.total_earnings,
                    record.last_updated,
                ),
            )
            self._conn.commit()

    def append_reputation_nft(self, nft: ReputationNFT) -> bool:
        with self._lock:
            try:
                self._conn.execute(
                    """INSERT INTO reputation_nfts (
                        wallet, mint, score, level, timestamp, transaction_signature, metadata
                    ) VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (
                        nft.wallet, nft.mint, nft.score, nft.level, nft.timestamp,
                        nft.transaction_signature, json.dumps(nft.metadata),
                    ),
                )
                self._conn.commit()
            except sqlite3.IntegrityError:
                self._conn.rollback()
                logger.info(f"{nft.wallet} already holds a {nft.level} reputation NFT")
                return False
        return True

    def list_reputation_nfts(self, wallet: str) -> List[ReputationNFT]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM reputation_nfts WHERE lower(wallet) = lower(?) ORDER BY id",
                (wallet,),
            ).fetchall()
        return [
            ReputationNFT(
                wallet=r["wallet"],
                mint=r["mint"],
                score=r["score"],
                level=r["level"],
                timestamp=r["timestamp"],
                transaction_signature=r["transaction_signature"],
                metadata=json.loads(r["metadata"] or "{}"),
            )
            for r in rows
        ]


def _row_to_asset(row: sqlite3.Row) -> Asset:
    return Asset(
        id=row["id"],
        title=row["title"],
        price=row["price"],
        decimals=row["decimals"],
        currency=row["currency"],
        token_address=row["token_address"],
        recipient=row["recipient"],
        tags=json.loads(row["tags"] or "[]"),
        created_at=row["created_at"],
        description=row["description"],
        ipfs_url=row["ipfs_url"],
    )


def _row_to_payment(row: sqlite3.Row) -> PaymentRecord:
    return PaymentRecord(
        asset_id=row["asset_id"],
        signature=row["signature"],
        payer=row["payer"],
        amount=row["amount"],
        timestamp=row["timestamp"],
        payment_request_token=row["payment_request_token"],
        recipient=row["recipient"],
    )


def _row_to_agent(row: sqlite3.Row) -> AgentWallet:
    return AgentWallet(
        id=row["id"],
        user_id=row["user_id"],
        agent_address=row["agent_address"],
        encrypted_private_key=EncryptedKey.from_dict(json.loads(row["encrypted_private_key"])),
        balance=row["balance"],
        total_spent=row["total_spent"],
        total_purchases=row["total_purchases"],
        created_at=row["created_at"],
    )


def asset_from_dict(data: Dict[str, Any]) -> Asset:
    """Build an Asset from a camelCase catalogue entry (e.g. a seed JSON file)."""
    return Asset(
        id=data["id"],
        title=data.get("title", ""),
        price=int(data.get("price", 0)),
        decimals=int(data.get("decimals", 6)),
        currency=data.get("currency", "USDC"),
        token_address=data.get("tokenAddress") or data.get("mint", ""),
        recipient=data["recipient"],
        tags=list(data.get("tags", [])),
        created_at=data.get("createdAt", ""),
        description=data.get("description"),
        ipfs_url=data.get("ipfsUrl"),
    )


def load_asset_catalog(repository: Repository, path: str) -> int:
    """
    Seed assets from a JSON file holding a list of catalogue entries.

    Returns:
        Number of assets saved
    """
    with open(path, "r") as f:
        entries = json.load(f)
    if not isinstance(entries, list):
        raise ValueError(f"Asset catalogue {path} must contain a JSON list")

    for entry in entries:
        repository.save_asset(asset_from_dict(entry))
    logger.info(f"Loaded {len(entries)} assets from {path}")
    return len(entries)
