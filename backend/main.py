"""
Clout Calculator - FastAPI Backend

How much credit does a curator deserve for adding artists to a playlist
before they blew up?

Flow:
1. Paste a public playlist URL (or connect Spotify for private ones)
2. Fetch every track + its primary artist's current numbers
3. Estimate each artist's audience when the track was added
4. Score each pick (inflation-adjusted growth x discovery tier x relevance)
5. Summarize the playlist (total, average, size-normalized)
"""
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional
import urllib.parse

import httpx
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from config import (
    SPOTIFY_CLIENT_ID,
    SPOTIFY_AUTH_URL,
    SPOTIFY_REDIRECT_URI,
    SPOTIFY_SCOPES,
    CORS_ORIGINS,
    TIMEOUT_UNTIL,
    RATE_LIMIT_MAX_REQUESTS,
    RATE_LIMIT_WINDOW_SECONDS,
    ARTIST_CACHE_TTL_SECONDS,
)
from spotify_client import (
    SpotifyClient,
    SpotifyTimeoutError,
    ClientCredentialsToken,
    exchange_code_for_token,
    refresh_access_token,
)
from playlist_loader import (
    build_observations,
    extract_playlist_id,
    fetch_artists_for_items,
    load_playlist_observations,
)
from playlist_aggregator import EmptyPlaylistError, PlaylistSummary, aggregate
from clout_scorer import round_half_up
from listener_estimator import months_between
from throttle import (
    AnalysisGate,
    AnalysisInProgressError,
    ArtistCache,
    RequestThrottle,
    TimeoutWindow,
)


app = FastAPI(
    title="Clout Calculator",
    description="Scores a playlist curator for adding artists before they got big.",
    version="0.3.0"
)

# CORS for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

SCORING_NOTE = "Scores are inflation-adjusted to account for Spotify platform growth"


def init_state(
    target: FastAPI,
    timeout_until: Optional[datetime] = TIMEOUT_UNTIL,
    throttle: Optional[RequestThrottle] = None,
    gate: Optional[AnalysisGate] = None,
    cache: Optional[ArtistCache] = None,
    app_token: Optional[ClientCredentialsToken] = None,
):
    """Attach the availability guards and app token to an app instance."""
    target.state.timeout_window = TimeoutWindow(timeout_until)
    target.state.throttle = throttle or RequestThrottle(
        RATE_LIMIT_MAX_REQUESTS, RATE_LIMIT_WINDOW_SECONDS
    )
    target.state.analysis_gate = gate or AnalysisGate()
    target.state.artist_cache = cache or ArtistCache(ARTIST_CACHE_TTL_SECONDS)
    target.state.app_token = app_token or ClientCredentialsToken()


init_state(app)


# =========================================================================
# DEPENDENCIES
# =========================================================================

ClientFactory = Callable[[], Awaitable[SpotifyClient]]


def get_client_factory(request: Request) -> ClientFactory:
    """
    Factory for an app-token Spotify client.
    Deferred so availability guards run before any token request.
    """
    state = request.app.state

    async def factory() -> SpotifyClient:
        token = await state.app_token.get()
        return SpotifyClient(token, cache=state.artist_cache)

    return factory


def get_user_token(authorization: Optional[str] = Header(None)) -> str:
    """Extract the user's bearer token from the Authorization header."""
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="No access token provided")
    return authorization.split(" ", 1)[1].strip()


# =========================================================================
# REQUEST / RESPONSE MODELS
# =========================================================================

class CamelModel(BaseModel):
    """Serialized with camelCase keys for the browser UI."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AuthUrlResponse(CamelModel):
    """Spotify authorization URL."""
    auth_url: str


class TokenResponse(CamelModel):
    """OAuth token exchange response."""
    access_token: str
    refresh_token: str
    expires_in: int


class RefreshRequest(CamelModel):
    refresh_token: str


class ArtistResponse(CamelModel):
    """Current artist numbers."""
    id: str
    name: str
    followers: int
    popularity: int


class TimeoutStatusResponse(CamelModel):
    in_timeout: bool
    timeout_until: Optional[str] = None
    message: Optional[str] = None


class AnalyzePlaylistRequest(CamelModel):
    """Playlist id, share URL, or spotify: URI."""
    playlist_id: str


class CalculateCloutRequest(CamelModel):
    """Raw playlist items already fetched by the caller."""
    playlist_id: Optional[str] = None
    tracks: list[dict]


class TrackClout(CamelModel):
    """A single track's clout with the numbers behind it."""
    track_name: str
    artist_name: str
    artist_id: str
    added_at: str
    added_ago: str
    current_followers: int
    followers_when_added: int
    popularity: int
    raw_growth: int
    inflation_adjusted_growth: int
    absolute_growth: int
    volume_weight: float
    discovery_tier: str
    tier_emoji: str
    tier_color: str
    early_discovery_bonus: float
    capped_multiplier: float
    relevance_factor: float
    clout_score: int


class CloutResponse(CamelModel):
    """Playlist clout summary. Tracks sorted by clout, highest first."""
    playlist_id: Optional[str] = None
    playlist_name: Optional[str] = None
    total_clout: int
    average_clout: int
    normalized_score: int
    track_count: int
    skipped_tracks: int
    unscored_tracks: int
    tracks: list[TrackClout]
    note: str = SCORING_NOTE


# =========================================================================
# AUTH ENDPOINTS
# =========================================================================

@app.get("/login", response_model=AuthUrlResponse)
def get_spotify_auth_url():
    """Generate Spotify OAuth authorization URL."""
    if not SPOTIFY_CLIENT_ID:
        raise HTTPException(status_code=500, detail="Spotify client ID not configured")

    params = {
        "client_id": SPOTIFY_CLIENT_ID,
        "response_type": "code",
        "redirect_uri": SPOTIFY_REDIRECT_URI,
        "scope": " ".join(SPOTIFY_SCOPES),
    }

    auth_url = f"{SPOTIFY_AUTH_URL}?{urllib.parse.urlencode(params)}"
    return AuthUrlResponse(auth_url=auth_url)


@app.get("/callback", response_model=TokenResponse)
async def spotify_callback(code: Optional[str] = Query(None)):
    """Exchange authorization code for access token."""
    if not code:
        raise HTTPException(status_code=400, detail="No authorization code provided")

    try:
        token_data = await exchange_code_for_token(code)
        return TokenResponse(
            access_token=token_data["access_token"],
            refresh_token=token_data.get("refresh_token", ""),
            expires_in=token_data.get("expires_in", 3600)
        )
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Token exchange failed: {str(e)}")


@app.post("/refresh", response_model=TokenResponse)
async def refresh_token(request: RefreshRequest):
    """Refresh an expired user access token."""
    try:
        token_data = await refresh_access_token(request.refresh_token)
        return TokenResponse(
            access_token=token_data["access_token"],
            # Spotify only sometimes rotates the refresh token
            refresh_token=token_data.get("refresh_token", request.refresh_token),
            expires_in=token_data.get("expires_in", 3600)
        )
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Token refresh failed: {str(e)}")


# =========================================================================
# SPOTIFY PASSTHROUGH ENDPOINTS
# =========================================================================

@app.get("/api/playlists")
async def get_playlists(
    request: Request,
    access_token: str = Depends(get_user_token),
    limit: int = Query(50, ge=1, le=50),
):
    """Get the connected user's playlists."""
    try:
        client = SpotifyClient(access_token, cache=request.app.state.artist_cache)
        return await client.get_user_playlists(limit)
    except SpotifyTimeoutError as e:
        raise HTTPException(status_code=503, detail=_timeout_detail(e.retry_after))
    except httpx.HTTPStatusError as e:
        raise HTTPException(status_code=e.response.status_code, detail="Failed to fetch playlists")
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch playlists: {str(e)}")


@app.get("/api/playlist/{playlist_id}/tracks")
async def get_playlist_tracks(
    playlist_id: str,
    request: Request,
    access_token: str = Depends(get_user_token),
):
    """Get every item in a playlist, with added dates."""
    try:
        client = SpotifyClient(access_token, cache=request.app.state.artist_cache)
        return {"tracks": await client.get_playlist_tracks(playlist_id)}
    except SpotifyTimeoutError as e:
        raise HTTPException(status_code=503, detail=_timeout_detail(e.retry_after))
    except httpx.HTTPStatusError as e:
        raise HTTPException(status_code=e.response.status_code, detail="Failed to fetch playlist tracks")
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch playlist tracks: {str(e)}")


@app.get("/api/artist/{artist_id}", response_model=ArtistResponse)
async def get_artist(artist_id: str, client_factory: ClientFactory = Depends(get_client_factory)):
    """Get an artist's current followers and popularity."""
    try:
        client = await client_factory()
        artist = await client.get_artist(artist_id)
        return ArtistResponse(
            id=artist["id"],
            name=artist.get("name", "Unknown"),
            followers=(artist.get("followers") or {}).get("total") or 0,
            popularity=artist.get("popularity") or 0,
        )
    except SpotifyTimeoutError as e:
        raise HTTPException(status_code=503, detail=_timeout_detail(e.retry_after))
    except httpx.HTTPStatusError as e:
        raise HTTPException(status_code=e.response.status_code, detail="Failed to fetch artist data")
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"Failed to fetch artist data: {str(e)}")


# =========================================================================
# CLOUT ENDPOINTS
# =========================================================================

@app.get("/api/timeout-status", response_model=TimeoutStatusResponse)
def get_timeout_status(request: Request):
    """Whether Spotify currently has us in timeout."""
    return TimeoutStatusResponse(**request.app.state.timeout_window.status())


@app.post("/api/analyze-public-playlist", response_model=CloutResponse)
async def analyze_public_playlist(
    body: AnalyzePlaylistRequest,
    request: Request,
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """
    Full pipeline for a public playlist: fetch, estimate, score, summarize.

    One analysis runs at a time; callers are throttled.
    """
    playlist_id = extract_playlist_id(body.playlist_id)
    if not playlist_id:
        raise HTTPException(status_code=400, detail="Invalid Spotify playlist URL")

    _check_availability(request)

    try:
        with request.app.state.analysis_gate.hold():
            client = await client_factory()
            loaded = await load_playlist_observations(client, playlist_id)
            now = datetime.now(timezone.utc)
            summary = aggregate(loaded.observations, now)
    except AnalysisInProgressError:
        raise HTTPException(status_code=409, detail={
            "error": "PROCESSING",
            "message": "Another playlist is currently being analyzed. Please try again in a moment.",
        })
    except EmptyPlaylistError as e:
        raise HTTPException(status_code=422, detail=_empty_detail(e, skipped=loaded.skipped))
    except SpotifyTimeoutError as e:
        raise HTTPException(status_code=503, detail=_timeout_detail(e.retry_after))
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 404:
            raise HTTPException(status_code=404, detail="Playlist not found. Make sure the playlist is public.")
        raise HTTPException(status_code=502, detail=f"Spotify request failed: {e.response.status_code}")
    except Exception as e:
        print(f"[clout] Analysis of {playlist_id} failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to analyze playlist: {str(e)}")

    print(f"[clout] {loaded.name}: {summary.track_count} tracks, total {summary.total_score}")
    return _format_summary(
        summary,
        now=now,
        playlist_id=playlist_id,
        playlist_name=loaded.name,
        skipped=loaded.skipped,
    )


@app.post("/api/calculate-clout", response_model=CloutResponse)
async def calculate_clout(
    body: CalculateCloutRequest,
    request: Request,
    client_factory: ClientFactory = Depends(get_client_factory),
):
    """
    Score playlist items the caller already fetched (e.g. a private playlist
    read with the user's token). Artist data is fetched with the app token.
    """
    _check_availability(request)

    try:
        client = await client_factory()
        artists_by_id = await fetch_artists_for_items(client, body.tracks)
        observations, skipped = build_observations(body.tracks, artists_by_id)
        now = datetime.now(timezone.utc)
        summary = aggregate(observations, now)
    except EmptyPlaylistError as e:
        raise HTTPException(status_code=422, detail=_empty_detail(e, skipped=skipped))
    except SpotifyTimeoutError as e:
        raise HTTPException(status_code=503, detail=_timeout_detail(e.retry_after))
    except Exception as e:
        print(f"[clout] Calculation failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to calculate clout score: {str(e)}")

    return _format_summary(summary, now=now, playlist_id=body.playlist_id, skipped=skipped)


def _check_availability(request: Request):
    """Refuse the request if Spotify has us in timeout or the caller is throttled."""
    state = request.app.state

    if state.timeout_window.is_active():
        status = state.timeout_window.status()
        raise HTTPException(status_code=503, detail={
            "error": "SPOTIFY_TIMEOUT",
            "timeoutUntil": status["timeout_until"],
            "message": status["message"],
        })

    caller = request.client.host if request.client else "unknown"
    decision = state.throttle.check(caller)
    if not decision.allowed:
        raise HTTPException(
            status_code=429,
            detail={"error": "RATE_LIMITED", "message": "Too many requests. Please wait a moment."},
            headers={"Retry-After": str(decision.retry_after)},
        )


def _timeout_detail(retry_after: int) -> dict:
    return {
        "error": "SPOTIFY_TIMEOUT",
        "retryAfter": retry_after,
        "message": TimeoutWindow.MESSAGE,
    }


def _empty_detail(error: EmptyPlaylistError, skipped: int) -> dict:
    return {
        "error": "NO_VALID_TRACKS",
        "message": "No valid tracks found in this playlist.",
        "skippedTracks": skipped + error.skipped,
        "unscoredTracks": error.unscored,
    }


def _format_summary(
    summary: PlaylistSummary,
    now: datetime,
    playlist_id: Optional[str] = None,
    playlist_name: Optional[str] = None,
    skipped: int = 0,
) -> CloutResponse:
    """Convert a PlaylistSummary into the UI's response shape."""
    tracks = []
    for scored in summary.tracks:
        obs = scored.observation
        b = scored.breakdown
        tracks.append(TrackClout(
            track_name=obs.track_name,
            artist_name=obs.artist_name,
            artist_id=obs.artist_id,
            added_at=obs.added_at.isoformat(),
            added_ago=f"{int(months_between(obs.added_at, now))} months ago",
            current_followers=obs.current_followers,
            followers_when_added=b.listeners_at_discovery,
            popularity=obs.current_popularity,
            raw_growth=b.raw_growth_pct,
            inflation_adjusted_growth=b.inflation_adjusted_growth_pct,
            absolute_growth=b.absolute_growth,
            volume_weight=b.volume_weight,
            discovery_tier=b.discovery_tier.label,
            tier_emoji=b.discovery_tier.emoji,
            tier_color=b.discovery_tier.color,
            early_discovery_bonus=b.tier_multiplier,
            capped_multiplier=b.capped_multiplier,
            relevance_factor=b.relevance_factor,
            clout_score=b.score,
        ))

    return CloutResponse(
        playlist_id=playlist_id,
        playlist_name=playlist_name,
        total_clout=summary.total_score,
        average_clout=round_half_up(summary.average_score),
        normalized_score=round_half_up(summary.normalized_score),
        track_count=summary.track_count,
        skipped_tracks=skipped,
        unscored_tracks=len(summary.unscored),
        tracks=tracks,
    )


# =========================================================================
# HEALTH CHECK
# =========================================================================

@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok", "service": "clout-calculator", "version": "0.3.0"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
