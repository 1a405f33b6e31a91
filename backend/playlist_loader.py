"""
Playlist Loader.

Turns raw Spotify playlist items + artist payloads into TrackObservations
for the clout aggregator.

Spotify playlist items are messy: local files have no artist id, removed
tracks come back as `track: null`, podcast episodes have no artists.
Those are skipped here so the scoring core only sees clean records.
"""
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from spotify_client import SpotifyClient
from playlist_aggregator import TrackObservation

# open.spotify.com/playlist/<id> or spotify:playlist:<id>
PLAYLIST_ID_PATTERN = re.compile(r"playlist[/:]([a-zA-Z0-9]+)")
BARE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9]+$")


@dataclass
class LoadedPlaylist:
    """A playlist's metadata and its scoreable observations."""
    playlist_id: str
    name: Optional[str]
    observations: list[TrackObservation] = field(default_factory=list)
    # Items dropped for missing track/artist data
    skipped: int = 0


def extract_playlist_id(url_or_id: str) -> Optional[str]:
    """Pull the playlist id out of a share URL, a URI, or a bare id."""
    if not url_or_id:
        return None
    value = url_or_id.strip()

    match = PLAYLIST_ID_PATTERN.search(value)
    if match:
        return match.group(1)
    if BARE_ID_PATTERN.match(value):
        return value
    return None


def parse_added_at(value: str) -> datetime:
    """Parse Spotify's ISO-8601 `added_at`. Naive timestamps are UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def primary_artist_id(item: dict) -> Optional[str]:
    """Id of the first credited artist on a playlist item, if any."""
    track = item.get("track") or {}
    artists = track.get("artists") or []
    if not artists:
        return None
    return artists[0].get("id")


def build_observations(
    items: list[dict],
    artists_by_id: dict[str, dict]
) -> tuple[list[TrackObservation], int]:
    """
    Build observations from playlist items and fetched artist payloads.

    Returns (observations, skipped_count).
    """
    observations: list[TrackObservation] = []
    skipped = 0

    for item in items:
        track = item.get("track")
        artist_id = primary_artist_id(item)
        added_at = item.get("added_at")

        if not track or not artist_id or not added_at:
            skipped += 1
            continue

        artist = artists_by_id.get(artist_id)
        if not artist:
            skipped += 1
            continue

        try:
            added_date = parse_added_at(added_at)
        except (ValueError, AttributeError):
            print(f"[loader] Bad added_at '{added_at}' on '{track.get('name')}'")
            skipped += 1
            continue

        followers = (artist.get("followers") or {}).get("total") or 0
        observations.append(TrackObservation(
            artist_id=artist_id,
            artist_name=artist.get("name") or track["artists"][0].get("name", "Unknown"),
            track_name=track.get("name", "Unknown"),
            added_at=added_date,
            current_followers=int(followers),
            current_popularity=int(artist.get("popularity") or 0),
        ))

    if skipped:
        print(f"[loader] Skipped {skipped} playlist items with missing track/artist data")

    return observations, skipped


async def fetch_artists_for_items(client: SpotifyClient, items: list[dict]) -> dict[str, dict]:
    """Batch-fetch the primary artist of every item."""
    artist_ids = [artist_id for artist_id in map(primary_artist_id, items) if artist_id]
    if not artist_ids:
        return {}
    return await client.get_artists(artist_ids)


async def load_playlist_observations(client: SpotifyClient, playlist_id: str) -> LoadedPlaylist:
    """
    Fetch a playlist and its artists, ready for scoring.

    STEPS:
    1. Playlist metadata (name)
    2. Every playlist item (paginated)
    3. Unique primary artists (batched, cached)
    4. Observations, skipping malformed items
    """
    playlist = await client.get_playlist(playlist_id)
    items = await client.get_playlist_tracks(playlist_id)
    print(f"[loader] Playlist '{playlist.get('name')}': {len(items)} items")

    artists_by_id = await fetch_artists_for_items(client, items)
    observations, skipped = build_observations(items, artists_by_id)

    return LoadedPlaylist(
        playlist_id=playlist_id,
        name=playlist.get("name"),
        observations=observations,
        skipped=skipped,
    )
