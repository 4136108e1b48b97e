# app/storage/records.py
"""Domain records persisted by the repository."""
import time
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Asset:
    """A priced digital asset. `price` is in the token's smallest unit."""
    id: str
    title: str
    price: int
    decimals: int
    currency: str
    token_address: str
    recipient: str
    tags: List[str] = field(default_factory=list)
    created_at: str = ""
    description: Optional[str] = None
    ipfs_url: Optional[str] = None

    @property
    def is_free(self) -> bool:
        return not self.price


@dataclass(frozen=True)
class PaymentRecord:
    """A verified on-chain payment. `signature` is the idempotency key."""
    asset_id: str
    signature: str
    payer: str
    amount: int
    timestamp: int
    payment_request_token: str
    recipient: Optional[str] = None


@dataclass(frozen=True)
class EncryptedKey:
    """Password-encrypted private key blob (base64 text fields)."""
    ciphertext: str
    salt: str
    iv: str

    def to_dict(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedKey":
        return cls(ciphertext=data["ciphertext"], salt=data["salt"], iv=data["iv"])


@dataclass
class AgentWallet:
    id: str
    user_id: str
    agent_address: str
    encrypted_private_key: EncryptedKey
    balance: int = 0
    total_spent: int = 0
    total_purchases: int = 0
    created_at: str = ""

    def public_view(self) -> Dict[str, Any]:
        """Wallet fields that may leave the server (never the encrypted key)."""
        return {
            "id": self.id,
            "agentAddress": self.agent_address,
            "userId": self.user_id,
            "createdAt": self.created_at,
            "balance": self.balance,
            "totalSpent": self.total_spent,
            "totalPurchases": self.total_purchases,
        }


@dataclass
class ReputationRecord:
    wallet: str
    score: int
    level: str
    total_payments: int = 0
    total_spent: int = 0
    total_downloads: int = 0
    total_earnings: int = 0
    last_updated: int = field(default_factory=lambda: int(time.time()))


@dataclass(frozen=True)
class ReputationNFT:
    wallet: str
    mint: str
    score: int
    level: str
    timestamp: int
    transaction_signature: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
