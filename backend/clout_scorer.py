"""
Clout Scoring System.

THE CORE ALGORITHM OF CLOUT CALCULATOR.

For each track, computes a "clout score" that measures how well the
curator's pick paid off:
- Inflation-adjusted growth (did the artist really grow?)
- Volume weight (how many people actually showed up?)
- Discovery tier multiplier (how early was the pick?)
- Relevance factor (did the artist ever become broadly popular?)

Negative growth gives negative scores. Bad picks hurt.
"""
import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional
from config import MULTIPLIER_CAPS
from inflation import adjust_for_inflation, calculate_growth
from listener_estimator import lookup_bracket


class DiscoveryTier(Enum):
    """Named bucket of an artist's audience at discovery time."""
    BEDROOM_PRODUCER = ("Bedroom Producer", "🎧", "#FF10F0")
    SOUNDCLOUD_RAPPER = ("Soundcloud Rapper", "☁️", "#FF6B35")
    UNDERGROUND_LEGEND = ("Underground Legend", "🔥", "#FFD700")
    LOCAL_HERO = ("Local Hero", "⭐", "#FFA500")
    EARLY_ADOPTER = ("Early Adopter", "🎯", "#9B59B6")
    TASTEMAKER = ("Tastemaker", "💎", "#3498DB")
    AHEAD_OF_CURVE = ("Ahead of Curve", "🌊", "#1ABC9C")
    INDIE_ENTHUSIAST = ("Indie Enthusiast", "🎸", "#16A085")
    RISING_STAR_HUNTER = ("Rising Star Hunter", "🌟", "#27AE60")
    TRENDING_FINDER = ("Trending Finder", "📈", "#2ECC71")
    POPULAR_FOLLOWER = ("Popular Follower", "🎵", "#BDC3C7")
    MAINSTREAM = ("Mainstream", "📻", "#95A5A6")

    def __init__(self, label: str, emoji: str, color: str):
        self.label = label
        self.emoji = emoji
        self.color = color


# (listeners at add, upper bound exclusive) -> (multiplier, tier)
DISCOVERY_TIERS = [
    (100, (20, DiscoveryTier.BEDROOM_PRODUCER)),
    (500, (15, DiscoveryTier.SOUNDCLOUD_RAPPER)),
    (1_000, (12, DiscoveryTier.UNDERGROUND_LEGEND)),
    (5_000, (8, DiscoveryTier.LOCAL_HERO)),
    (10_000, (6, DiscoveryTier.EARLY_ADOPTER)),
    (50_000, (4, DiscoveryTier.TASTEMAKER)),
    (100_000, (3, DiscoveryTier.AHEAD_OF_CURVE)),
    (500_000, (2.5, DiscoveryTier.INDIE_ENTHUSIAST)),
    (1_000_000, (2, DiscoveryTier.RISING_STAR_HUNTER)),
    (5_000_000, (1.5, DiscoveryTier.TRENDING_FINDER)),
    (10_000_000, (1.2, DiscoveryTier.POPULAR_FOLLOWER)),
]
MAINSTREAM_TIER = (1, DiscoveryTier.MAINSTREAM)


class UndefinedGrowthError(ValueError):
    """Inflation-adjusted growth is not a finite number (no past audience)."""

    def __init__(self, listeners_at_add: int, current_listeners: int, growth: float):
        super().__init__(
            f"Growth undefined for {listeners_at_add} -> {current_listeners} listeners ({growth})"
        )
        self.listeners_at_add = listeners_at_add
        self.current_listeners = current_listeners
        self.growth = growth


@dataclass(frozen=True)
class ScoreBreakdown:
    """A track's clout score with every intermediate value, for display."""
    score: int
    inflation_adjusted_growth_pct: int
    raw_growth_pct: int
    absolute_growth: int
    volume_weight: float
    discovery_tier: DiscoveryTier
    tier_multiplier: float
    capped_multiplier: float
    relevance_factor: float
    listeners_at_discovery: int


def round_half_up(value: float) -> int:
    """Round to nearest integer, halves toward positive infinity."""
    return math.floor(value + 0.5)


def classify_tier(listeners_at_add: int) -> tuple[float, DiscoveryTier]:
    """Return (multiplier, tier) for an artist's audience at discovery."""
    return lookup_bracket(listeners_at_add, DISCOVERY_TIERS, MAINSTREAM_TIER)


def cap_multiplier(tier_multiplier: float, current_listeners: int) -> float:
    """Limit the discovery bonus for artists who never made it big."""
    cap = lookup_bracket(current_listeners, MULTIPLIER_CAPS, None)
    if cap is None:
        return float(tier_multiplier)
    return float(min(tier_multiplier, cap))


def relevance_factor(current_listeners: int) -> float:
    """
    Scale: 10M listeners = 1.0, 1M = 0.9, 100K = 0.8, 10K = 0.7.
    Never below 0.3, never above 1.
    """
    return min((math.log10(max(current_listeners, 1)) + 3) / 10, 1.0)


def score(
    listeners_at_add: int,
    current_listeners: int,
    added_date: datetime,
    now: Optional[datetime] = None
) -> ScoreBreakdown:
    """
    Compute the clout score for a single track.

    CLOUT SCORE FORMULA:
    base  = inflation_adjusted_growth * log10(|absolute_growth| + 1) * capped_multiplier
    score = round(base * relevance_factor)

    Raises UndefinedGrowthError when growth can't be computed.
    """
    # =========================================================================
    # COMPONENT 1: Inflation-adjusted growth (no floor at zero)
    # =========================================================================
    inflation_adjusted_growth = adjust_for_inflation(
        current_listeners, listeners_at_add, added_date, now
    )
    if not math.isfinite(inflation_adjusted_growth):
        raise UndefinedGrowthError(listeners_at_add, current_listeners, inflation_adjusted_growth)

    # =========================================================================
    # COMPONENT 2: Volume weight (log scale so raw counts don't dominate)
    # =========================================================================
    absolute_growth = current_listeners - listeners_at_add
    volume_weight = math.log10(abs(absolute_growth) + 1)

    # =========================================================================
    # COMPONENT 3: Discovery tier, capped by final size
    # =========================================================================
    tier_multiplier, tier = classify_tier(listeners_at_add)
    capped = cap_multiplier(tier_multiplier, current_listeners)

    # =========================================================================
    # COMPONENT 4: Relevance
    # =========================================================================
    relevance = relevance_factor(current_listeners)

    base_score = inflation_adjusted_growth * volume_weight * capped
    final_score = base_score * relevance

    return ScoreBreakdown(
        score=round_half_up(final_score),
        inflation_adjusted_growth_pct=round_half_up(inflation_adjusted_growth),
        raw_growth_pct=round_half_up(calculate_growth(current_listeners, listeners_at_add)),
        absolute_growth=absolute_growth,
        volume_weight=round(volume_weight, 2),
        discovery_tier=tier,
        tier_multiplier=float(tier_multiplier),
        capped_multiplier=round(capped, 1),
        relevance_factor=round(relevance, 2),
        listeners_at_discovery=listeners_at_add,
    )
