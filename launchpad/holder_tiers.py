"""
Holder Tiers

Static reward brackets keyed on held token balance.

A wallet's tier is the highest tier whose minimum balance it meets. Each
tier grants bonus daily votes on top of the base allowance.
"""

from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional, Tuple


@dataclass(frozen=True)
class HolderTier:
    """A balance bracket and the bonus votes it grants."""
    tier_id: int
    name: str
    min_balance: int
    bonus_votes: int
    color: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# Strictly increasing thresholds
HOLDER_TIERS: Tuple[HolderTier, ...] = (
    HolderTier(1, "Supporter", 1_000_000, 1, "#8B5CF6"),
    HolderTier(2, "Contributor", 10_000_000, 3, "#7C3AED"),
    HolderTier(3, "Advocate", 25_000_000, 6, "#6D28D9"),
    HolderTier(4, "Builder", 50_000_000, 10, "#5B21B6"),
    HolderTier(5, "Leader", 100_000_000, 15, "#4C1D95"),
    HolderTier(6, "Whale", 250_000_000, 25, "#3730A3"),
    HolderTier(7, "Guardian", 500_000_000, 40, "#312E81"),
    HolderTier(8, "Titan", 750_000_000, 60, "#1E1B4B"),
    HolderTier(9, "OG", 1_000_000_000, 100, "#FFE500"),
    HolderTier(10, "Legendary", 2_000_000_000, 151, "#FF8C00"),
)


def get_tier_for_balance(balance: int) -> Optional[HolderTier]:
    """Highest tier the balance qualifies for, or None below the first."""
    for tier in reversed(HOLDER_TIERS):
        if balance >= tier.min_balance:
            return tier
    return None


def get_bonus_votes(balance: int) -> int:
    tier = get_tier_for_balance(balance)
    return tier.bonus_votes if tier else 0


def get_next_tier(balance: int) -> Optional[HolderTier]:
    """The tier after the current one, or None at the top."""
    current = get_tier_for_balance(balance)
    if current is None:
        return HOLDER_TIERS[0]

    index = HOLDER_TIERS.index(current)
    if index < len(HOLDER_TIERS) - 1:
        return HOLDER_TIERS[index + 1]
    return None


def get_tier_progress(balance: int) -> Dict[str, float]:
    """
    Progress from the current tier floor towards the next tier.

    Returns: {"current", "required", "percentage"}
    """
    next_tier = get_next_tier(balance)
    if next_tier is None:
        return {"current": balance, "required": balance, "percentage": 100.0}

    current = get_tier_for_balance(balance)
    floor = current.min_balance if current else 0
    required = next_tier.min_balance - floor
    return {
        "current": balance - floor,
        "required": required,
        "percentage": min(100.0, (balance - floor) / required * 100),
    }


def format_balance(balance: float) -> str:
    """Compact display form: 1.5K, 12.0M, 2.0B."""
    if balance >= 1_000_000_000:
        return f"{balance / 1_000_000_000:.1f}B"
    if balance >= 1_000_000:
        return f"{balance / 1_000_000:.1f}M"
    if balance >= 1_000:
        return f"{balance / 1_000:.1f}K"
    return str(balance)
