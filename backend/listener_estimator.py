"""
Historical listener estimation.

True historical listener counts aren't available from Spotify, so this
projects an artist's current audience backward to the date a track was
added, assuming compound monthly growth (artist growth + platform growth).

Results are approximations, not ground truth.
"""
import math
from datetime import datetime, timezone
from typing import Optional, TypeVar
from config import (
    DAYS_PER_MONTH,
    PLATFORM_MONTHLY_GROWTH,
    ARTIST_GROWTH_BRACKETS,
    DEFAULT_ARTIST_GROWTH,
)

T = TypeVar("T")


def lookup_bracket(value: float, table: list[tuple[float, T]], default: T) -> T:
    """
    Return the value of the first bracket whose upper bound exceeds `value`.

    Tables are ordered (upper_bound_exclusive, value) pairs; `default`
    applies when no bound matches.
    """
    for upper_bound, bracket_value in table:
        if value < upper_bound:
            return bracket_value
    return default


def months_between(added_date: datetime, now: Optional[datetime] = None) -> float:
    """
    Fractional months elapsed since `added_date` (30-day months).
    Negative for dates in the future.
    """
    now = now or datetime.now(timezone.utc)
    elapsed_days = (now - added_date).total_seconds() / 86400
    return elapsed_days / DAYS_PER_MONTH


def artist_growth_rate(current_listeners: int) -> float:
    """Monthly growth rate assumed for an artist of this size."""
    return lookup_bracket(current_listeners, ARTIST_GROWTH_BRACKETS, DEFAULT_ARTIST_GROWTH)


def estimate_past_listeners(
    current_listeners: int,
    added_date: datetime,
    now: Optional[datetime] = None
) -> int:
    """
    Estimate how many listeners an artist had when a track was added.

    past = current / (1 + artist_rate + platform_rate) ^ months_ago
    """
    months_ago = months_between(added_date, now)
    combined_rate = artist_growth_rate(current_listeners) + PLATFORM_MONTHLY_GROWTH
    return math.floor(current_listeners / math.pow(1 + combined_rate, months_ago))
