"""
Spotify API client for fetching playlist and artist data.
Handles all communication with Spotify Web API.
"""
import asyncio
import math
import time
import httpx
from typing import Awaitable, Callable, Optional
from config import (
    SPOTIFY_API_BASE,
    SPOTIFY_TOKEN_URL,
    SPOTIFY_CLIENT_ID,
    SPOTIFY_CLIENT_SECRET,
    SPOTIFY_REDIRECT_URI,
    SPOTIFY_MAX_RETRIES,
    SPOTIFY_BACKOFF_SECONDS,
    SPOTIFY_MAX_RETRY_AFTER,
)
from throttle import ArtistCache

# Spotify batch limits
PLAYLIST_PAGE_SIZE = 100
ARTISTS_PER_REQUEST = 50


class SpotifyTimeoutError(Exception):
    """Spotify asked us to back off for longer than we're willing to wait."""

    def __init__(self, retry_after: int):
        super().__init__(f"Spotify rate limit: retry after {retry_after}s")
        self.retry_after = retry_after


class SpotifyClient:
    """Wrapper for Spotify Web API calls."""

    def __init__(
        self,
        access_token: str,
        cache: Optional[ArtistCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_retries: int = SPOTIFY_MAX_RETRIES,
    ):
        self.access_token = access_token
        self.headers = {"Authorization": f"Bearer {access_token}"}
        self.cache = cache
        self.transport = transport
        self.max_retries = max_retries
        self._sleep = sleep

    async def _get(self, endpoint: str, params: Optional[dict] = None) -> dict:
        """
        Make authenticated GET request to Spotify API.

        `endpoint` may be a path or an absolute URL (pagination `next` links).
        Retries 429 and 5xx responses with backoff.
        """
        url = endpoint if endpoint.startswith("http") else f"{SPOTIFY_API_BASE}{endpoint}"

        async with httpx.AsyncClient(transport=self.transport) as client:
            for attempt in range(self.max_retries + 1):
                response = await client.get(url, headers=self.headers, params=params)

                retryable = response.status_code == 429 or response.status_code >= 500
                if not retryable or attempt == self.max_retries:
                    break

                delay = self._retry_delay(response, attempt)
                print(f"[spotify] {response.status_code} on {url}, retrying in {delay}s")
                await self._sleep(delay)

            if response.status_code == 429:
                # Still rate limited after every retry
                retry_after = self._retry_after_seconds(response)
                raise SpotifyTimeoutError(retry_after or math.ceil(self._backoff(self.max_retries)))

            response.raise_for_status()
            return response.json()

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = self._retry_after_seconds(response)
        if retry_after is not None:
            if retry_after > SPOTIFY_MAX_RETRY_AFTER:
                raise SpotifyTimeoutError(retry_after)
            return float(retry_after)
        return self._backoff(attempt)

    @staticmethod
    def _retry_after_seconds(response: httpx.Response) -> Optional[int]:
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None and retry_after.isdigit():
            return int(retry_after)
        return None

    @staticmethod
    def _backoff(attempt: int) -> float:
        return SPOTIFY_BACKOFF_SECONDS * (2 ** attempt)

    # =========================================================================
    # PLAYLISTS
    # =========================================================================

    async def get_user_playlists(self, limit: int = 50) -> dict:
        """Fetch the current user's playlists."""
        return await self._get("/me/playlists", {"limit": limit})

    async def get_playlist(self, playlist_id: str) -> dict:
        """Fetch playlist metadata (name, owner, track total)."""
        return await self._get(f"/playlists/{playlist_id}", {
            "fields": "id,name,owner(display_name),tracks(total)"
        })

    async def get_playlist_tracks(self, playlist_id: str) -> list[dict]:
        """
        Fetch every item in a playlist, following pagination.
        Each item carries `added_at` and a `track` payload (may be null).
        """
        items: list[dict] = []
        url: Optional[str] = f"/playlists/{playlist_id}/tracks"
        params: Optional[dict] = {"limit": PLAYLIST_PAGE_SIZE}

        while url:
            page = await self._get(url, params)
            items.extend(page.get("items", []))
            url = page.get("next")
            # `next` already carries offset and limit
            params = None

        return items

    # =========================================================================
    # ARTISTS
    # =========================================================================

    async def get_artist(self, artist_id: str) -> dict:
        """Fetch single artist details including followers and popularity."""
        if self.cache is not None:
            cached = self.cache.get(artist_id)
            if cached is not None:
                return cached

        artist = await self._get(f"/artists/{artist_id}")
        if self.cache is not None:
            self.cache.put(artist)
        return artist

    async def get_artists(self, artist_ids: list[str]) -> dict[str, dict]:
        """
        Fetch many artists, 50 per request.
        Returns artist_id -> artist payload; unknown ids are left out.
        """
        artists: dict[str, dict] = {}
        missing: list[str] = []

        for artist_id in dict.fromkeys(artist_ids):
            cached = self.cache.get(artist_id) if self.cache is not None else None
            if cached is not None:
                artists[artist_id] = cached
            else:
                missing.append(artist_id)

        for start in range(0, len(missing), ARTISTS_PER_REQUEST):
            batch = missing[start:start + ARTISTS_PER_REQUEST]
            data = await self._get("/artists", {"ids": ",".join(batch)})
            for artist in data.get("artists", []):
                # Spotify returns null for ids it doesn't know
                if not artist or not artist.get("id"):
                    continue
                artists[artist["id"]] = artist
                if self.cache is not None:
                    self.cache.put(artist)

        return artists


async def exchange_code_for_token(
    code: str,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> dict:
    """
    Exchange OAuth authorization code for access token.
    Called after user authorizes via Spotify.
    """
    async with httpx.AsyncClient(transport=transport) as client:
        response = await client.post(
            SPOTIFY_TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": SPOTIFY_REDIRECT_URI,
                "client_id": SPOTIFY_CLIENT_ID,
                "client_secret": SPOTIFY_CLIENT_SECRET,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )
        response.raise_for_status()
        return response.json()


async def refresh_access_token(
    refresh_token: str,
    transport: Optional[httpx.AsyncBaseTransport] = None
) -> dict:
    """Refresh an expired access token."""
    async with httpx.AsyncClient(transport=transport) as client:
        response = await client.post(
            SPOTIFY_TOKEN_URL,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": SPOTIFY_CLIENT_ID,
                "client_secret": SPOTIFY_CLIENT_SECRET,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"}
        )
        response.raise_for_status()
        return response.json()


class ClientCredentialsToken:
    """
    App-level access token (client credentials flow) for public data.
    Cached until shortly before expiry.
    """

    # Refresh this many seconds before Spotify's stated expiry
    EXPIRY_MARGIN = 60

    def __init__(
        self,
        client_id: str = SPOTIFY_CLIENT_ID,
        client_secret: str = SPOTIFY_CLIENT_SECRET,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.transport = transport
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self._lock = asyncio.Lock()

    async def get(self) -> str:
        async with self._lock:
            if self._token and self._clock() < self._expires_at:
                return self._token

            async with httpx.AsyncClient(transport=self.transport) as client:
                response = await client.post(
                    SPOTIFY_TOKEN_URL,
                    data={"grant_type": "client_credentials"},
                    auth=(self.client_id, self.client_secret),
                    headers={"Content-Type": "application/x-www-form-urlencoded"}
                )
                response.raise_for_status()
                data = response.json()

            self._token = data["access_token"]
            self._expires_at = self._clock() + data.get("expires_in", 3600) - self.EXPIRY_MARGIN
            return self._token
