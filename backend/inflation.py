"""
Growth calculations, with and without platform inflation.

Spotify's whole user base grows every month, so every artist's numbers
drift upward even if nobody new discovered them. The inflation-adjusted
growth removes that drift to show genuine artist-specific growth.
"""
import math
from datetime import datetime
from typing import Optional
from config import PLATFORM_MONTHLY_GROWTH
from listener_estimator import months_between


def calculate_growth(current_listeners: int, past_listeners: int) -> float:
    """Plain growth percentage. Returns 0 when there is no past audience."""
    if past_listeners == 0:
        return 0.0
    return (current_listeners - past_listeners) / past_listeners * 100


def adjust_for_inflation(
    current_listeners: int,
    past_listeners: int,
    added_date: datetime,
    now: Optional[datetime] = None
) -> float:
    """
    Growth percentage after removing platform-wide inflation.

    Unlike calculate_growth there is no zero guard: with past_listeners == 0
    the ratio is undefined and the result is +inf, -inf or nan. Callers
    must check math.isfinite() before using it.
    """
    months_ago = months_between(added_date, now)
    platform_inflation = math.pow(1 + PLATFORM_MONTHLY_GROWTH, months_ago)
    adjusted_current = current_listeners / platform_inflation

    if past_listeners == 0:
        # Python raises on float division by zero; keep IEEE semantics instead
        if adjusted_current == 0:
            return math.nan
        return math.copysign(math.inf, adjusted_current)

    return (adjusted_current - past_listeners) / past_listeners * 100
