"""
Reward Tier Module
==================

Step function from cumulative exploration distance to a reward tier.

    none     <  200 m   0 items
    bronze   <  500 m   1 item
    silver   < 1000 m   2 items
    gold     < 2000 m   3 items
    diamond  >= 2000 m  5 items
"""

from enum import Enum
from typing import Tuple


class Rarity(str, Enum):
    COMMON = "common"
    RARE = "rare"
    EPIC = "epic"


class RewardTier(str, Enum):
    NONE = "none"
    BRONZE = "bronze"
    SILVER = "silver"
    GOLD = "gold"
    DIAMOND = "diamond"

    @property
    def item_count(self) -> int:
        return _ITEM_COUNTS[self]

    @property
    def rarity_odds(self) -> Tuple[float, float, float]:
        """Probabilities of (common, rare, epic)."""
        return _RARITY_ODDS[self]

    @property
    def rank(self) -> int:
        return _ORDER.index(self)


_ORDER = (
    RewardTier.NONE,
    RewardTier.BRONZE,
    RewardTier.SILVER,
    RewardTier.GOLD,
    RewardTier.DIAMOND,
)

# (exclusive upper bound in meters, tier)
TIER_THRESHOLDS = (
    (200.0, RewardTier.NONE),
    (500.0, RewardTier.BRONZE),
    (1000.0, RewardTier.SILVER),
    (2000.0, RewardTier.GOLD),
)

_ITEM_COUNTS = {
    RewardTier.NONE: 0,
    RewardTier.BRONZE: 1,
    RewardTier.SILVER: 2,
    RewardTier.GOLD: 3,
    RewardTier.DIAMOND: 5,
}

_RARITY_ODDS = {
    RewardTier.NONE: (0.0, 0.0, 0.0),
    RewardTier.BRONZE: (0.9, 0.1, 0.0),
    RewardTier.SILVER: (0.7, 0.25, 0.05),
    RewardTier.GOLD: (0.5, 0.35, 0.15),
    RewardTier.DIAMOND: (0.3, 0.4, 0.3),
}


def tier_for_distance(distance_m: float) -> RewardTier:
    """Monotonic step function of distance."""
    for upper, tier in TIER_THRESHOLDS:
        if distance_m < upper:
            return tier
    return RewardTier.DIAMOND


def roll_rarity(tier: RewardTier, roll: float) -> Rarity:
    """
    Pick a rarity for roll in [0, 1).

    Uses cumulative odds epic-first, falling back to rare then common.
    """
    common, rare, epic = tier.rarity_odds
    if roll < epic:
        return Rarity.EPIC
    if roll < epic + rare:
        return Rarity.RARE
    return Rarity.COMMON
