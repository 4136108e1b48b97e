# app/reputation/policy.py
"""
Reputation scoring policy.

The score curve and level thresholds live behind `ReputationPolicy` so the
engine never hard-codes them. `DEFAULT_POLICY` weighs payments made, whole
currency units spent and downloads received, capped at 1000.
"""
from dataclasses import dataclass
from typing import Tuple

MAX_SCORE = 1000

NEWCOMER = "newcomer"

# (minimum score, level), highest first
DEFAULT_LEVELS: Tuple[Tuple[int, str], ...] = (
    (800, "platinum"),
    (500, "gold"),
    (250, "silver"),
    (100, "bronze"),
    (0, NEWCOMER),
)


@dataclass(frozen=True)
class ReputationStats:
    total_payments: int = 0
    total_spent: int = 0
    total_downloads: int = 0
    total_earnings: int = 0


@dataclass(frozen=True)
class ReputationPolicy:
    payment_weight: int = 10
    download_weight: int = 5
    decimals: int = 6
    max_score: int = MAX_SCORE
    levels: Tuple[Tuple[int, str], ...] = DEFAULT_LEVELS

    def score(self, stats: ReputationStats) -> int:
        spent_units = stats.total_spent // (10 ** self.decimals)
        raw = (
            self.payment_weight * stats.total_payments
            + spent_units
            + self.download_weight * stats.total_downloads
        )
        return max(0, min(self.max_score, raw))

    def level(self, score: int) -> str:
        for threshold, name in self.levels:
            if score >= threshold:
                return name
        return self.levels[-1][1]

    def rank(self, level: str) -> int:
        """Position of `level` from the bottom (newcomer is 0)."""
        names = [name for _, name in reversed(self.levels)]
        return names.index(level) if level in names else -1


DEFAULT_POLICY = ReputationPolicy()


def format_score(score: int, policy: ReputationPolicy = DEFAULT_POLICY) -> str:
    """e.g. 742 -> "742 (Gold)"."""
    return f"{score} ({policy.level(score).capitalize()})"
