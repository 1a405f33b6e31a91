"""
Playlist-level clout aggregation.

Scores every track in a playlist, sorts them, and reduces the per-track
scores into playlist statistics. Normalized score rewards consistency over
playlist size: average * sqrt(track_count).
"""
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional
from clout_scorer import ScoreBreakdown, UndefinedGrowthError, score
from listener_estimator import estimate_past_listeners


@dataclass(frozen=True)
class TrackObservation:
    """One playlist entry with its primary artist's current numbers."""
    artist_id: str
    artist_name: str
    track_name: str
    added_at: datetime
    current_followers: int
    current_popularity: int = 0


@dataclass(frozen=True)
class ScoredTrack:
    """A playlist entry paired with its score breakdown."""
    observation: TrackObservation
    breakdown: ScoreBreakdown

    @property
    def score(self) -> int:
        return self.breakdown.score


@dataclass(frozen=True)
class PlaylistSummary:
    """Aggregate clout for a playlist. Tracks sorted by score, highest first."""
    track_count: int
    total_score: int
    average_score: float
    normalized_score: float
    tracks: tuple[ScoredTrack, ...]
    # Tracks whose growth couldn't be computed (no estimated past audience)
    unscored: tuple[TrackObservation, ...] = field(default_factory=tuple)


class EmptyPlaylistError(ValueError):
    """No scoreable tracks remained after filtering."""

    def __init__(self, skipped: int = 0, unscored: int = 0):
        super().__init__(
            f"No valid tracks to score ({skipped} skipped, {unscored} with undefined growth)"
        )
        self.skipped = skipped
        self.unscored = unscored


def score_observation(
    observation: TrackObservation,
    now: Optional[datetime] = None
) -> ScoredTrack:
    """Estimate the audience at add time and score a single track."""
    listeners_at_add = estimate_past_listeners(
        observation.current_followers, observation.added_at, now
    )
    breakdown = score(
        listeners_at_add, observation.current_followers, observation.added_at, now
    )
    return ScoredTrack(observation=observation, breakdown=breakdown)


def aggregate(
    observations: Iterable[TrackObservation],
    now: Optional[datetime] = None
) -> PlaylistSummary:
    """
    Score all observations and summarize the playlist.

    - Observations without an artist id are skipped.
    - Tracks with undefined growth are reported in `unscored`.
    - Raises EmptyPlaylistError if nothing could be scored.
    """
    # Pin "now" so every track is measured against the same instant
    now = now or datetime.now(timezone.utc)

    scored: list[ScoredTrack] = []
    unscored: list[TrackObservation] = []
    skipped = 0

    for observation in observations:
        if not observation.artist_id:
            skipped += 1
            continue

        try:
            scored.append(score_observation(observation, now))
        except UndefinedGrowthError as e:
            print(f"[clout] Unscored '{observation.track_name}' by {observation.artist_name}: {e}")
            unscored.append(observation)

    if skipped:
        print(f"[clout] Skipped {skipped} observations without an artist id")

    if not scored:
        raise EmptyPlaylistError(skipped=skipped, unscored=len(unscored))

    # Stable sort keeps playlist order for equal scores
    scored.sort(key=lambda t: t.score, reverse=True)

    track_count = len(scored)
    total_score = sum(t.score for t in scored)
    average_score = total_score / track_count
    normalized_score = average_score * math.sqrt(track_count)

    return PlaylistSummary(
        track_count=track_count,
        total_score=total_score,
        average_score=average_score,
        normalized_score=normalized_score,
        tracks=tuple(scored),
        unscored=tuple(unscored),
    )
