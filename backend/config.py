"""
Configuration for Clout Calculator backend.
Load Spotify API credentials and service limits from environment variables.
"""
import os
from datetime import datetime, timezone
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _parse_timestamp(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; empty means unset. Naive values are UTC."""
    value = value.strip()
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# Spotify OAuth Configuration
SPOTIFY_CLIENT_ID = os.getenv("SPOTIFY_CLIENT_ID", "")
SPOTIFY_CLIENT_SECRET = os.getenv("SPOTIFY_CLIENT_SECRET", "")
SPOTIFY_REDIRECT_URI = os.getenv("SPOTIFY_REDIRECT_URI", "http://localhost:3000/callback")

# Spotify API Base URLs
SPOTIFY_AUTH_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_BASE = "https://api.spotify.com/v1"

# Required Spotify Scopes
SPOTIFY_SCOPES = [
    "playlist-read-private",        # User's private playlists
    "playlist-read-collaborative",  # Collaborative playlists
]

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000").split(",")
    if origin.strip()
]

# =========================================================================
# AVAILABILITY
# =========================================================================

# Spotify "timeout" window. While set and in the future, analyses are refused.
TIMEOUT_UNTIL = _parse_timestamp(os.getenv("SPOTIFY_TIMEOUT_UNTIL", ""))

# Per-caller throttle for analysis endpoints
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "5"))
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))

# Retry policy around Spotify API calls
SPOTIFY_MAX_RETRIES = int(os.getenv("SPOTIFY_MAX_RETRIES", "3"))
SPOTIFY_BACKOFF_SECONDS = float(os.getenv("SPOTIFY_BACKOFF_SECONDS", "1.0"))
SPOTIFY_MAX_RETRY_AFTER = int(os.getenv("SPOTIFY_MAX_RETRY_AFTER", "120"))

ARTIST_CACHE_TTL_SECONDS = int(os.getenv("ARTIST_CACHE_TTL_SECONDS", "3600"))

# =========================================================================
# SCORING MODEL
# =========================================================================

DAYS_PER_MONTH = 30

# Spotify's user base grows ~17% per year, which inflates every artist's numbers
PLATFORM_MONTHLY_GROWTH = 0.013

# Monthly artist growth by current audience size (upper bound exclusive).
# Smaller artists grow faster percentage-wise.
ARTIST_GROWTH_BRACKETS = [
    (10_000, 0.05),
    (100_000, 0.03),
    (1_000_000, 0.02),
]
DEFAULT_ARTIST_GROWTH = 0.01

# Max discovery multiplier by final audience size. Artists who never got
# big don't earn the full early discovery bonus.
MULTIPLIER_CAPS = [
    (10_000, 2),
    (50_000, 4),
    (100_000, 6),
]
