"""
API tests for the Clout Calculator backend.
Spotify is replaced by an httpx.MockTransport behind the client factory.

Run with: pytest test_api.py -v
"""
import math
import httpx
import pytest
from datetime import datetime, timedelta, timezone
from fastapi.testclient import TestClient

import main
from main import app, get_client_factory, init_state
from spotify_client import SpotifyClient
from throttle import AnalysisGate, RequestThrottle


def iso_days_ago(days: int) -> str:
    moment = datetime.now(timezone.utc) - timedelta(days=days)
    return moment.isoformat().replace("+00:00", "Z")


PLAYLIST_ITEMS = [
    {
        "added_at": iso_days_ago(720),
        "track": {"name": "Early Pick", "artists": [{"id": "big", "name": "Big Now"}]},
    },
    {
        "added_at": iso_days_ago(60),
        "track": {"name": "Late Pick", "artists": [{"id": "mid", "name": "Mid Size"}]},
    },
    {"added_at": iso_days_ago(30), "track": None},
    {
        "added_at": iso_days_ago(30),
        "track": {"name": "Local File", "artists": [{"id": None, "name": "Me"}]},
    },
]

ARTISTS = {
    "big": {"id": "big", "name": "Big Now", "followers": {"total": 2_000_000}, "popularity": 78},
    "mid": {"id": "mid", "name": "Mid Size", "followers": {"total": 45_000}, "popularity": 41},
    "ghost": {"id": "ghost", "name": "Ghost", "followers": {"total": 0}, "popularity": 0},
}


def spotify_handler(request: httpx.Request) -> httpx.Response:
    path = request.url.path
    if path == "/v1/playlists/abc123":
        return httpx.Response(200, json={"id": "abc123", "name": "Early Picks"})
    if path == "/v1/playlists/abc123/tracks":
        return httpx.Response(200, json={"items": PLAYLIST_ITEMS, "next": None})
    if path == "/v1/playlists/empty1":
        return httpx.Response(200, json={"id": "empty1", "name": "Nothing"})
    if path == "/v1/playlists/empty1/tracks":
        return httpx.Response(200, json={"items": [{"added_at": iso_days_ago(1), "track": None}], "next": None})
    if path == "/v1/artists":
        ids = request.url.params["ids"].split(",")
        return httpx.Response(200, json={"artists": [ARTISTS.get(i) for i in ids]})
    if path.startswith("/v1/artists/") and path.rsplit("/", 1)[1] in ARTISTS:
        return httpx.Response(200, json=ARTISTS[path.rsplit("/", 1)[1]])
    return httpx.Response(404, json={"error": {"status": 404, "message": "Not found"}})


@pytest.fixture
def client():
    init_state(app, timeout_until=None)

    async def factory():
        return SpotifyClient("test-token", transport=httpx.MockTransport(spotify_handler))

    app.dependency_overrides[get_client_factory] = lambda: factory
    yield TestClient(app)
    app.dependency_overrides.clear()
    init_state(app)


# =========================================================================
# ANALYZE PUBLIC PLAYLIST
# =========================================================================

class TestAnalyzePlaylist:
    """Test the full playlist pipeline endpoint."""

    def test_scores_playlist(self, client):
        response = client.post("/api/analyze-public-playlist", json={"playlistId": "abc123"})
        assert response.status_code == 200

        data = response.json()
        assert data["playlistId"] == "abc123"
        assert data["playlistName"] == "Early Picks"
        assert data["trackCount"] == 2
        assert data["skippedTracks"] == 2
        assert data["unscoredTracks"] == 0
        assert data["totalClout"] == sum(t["cloutScore"] for t in data["tracks"])
        assert data["averageClout"] == math.floor(data["totalClout"] / 2 + 0.5)

        scores = [t["cloutScore"] for t in data["tracks"]]
        assert scores == sorted(scores, reverse=True)

    def test_track_fields(self, client):
        data = client.post("/api/analyze-public-playlist", json={"playlistId": "abc123"}).json()
        early = next(t for t in data["tracks"] if t["trackName"] == "Early Pick")

        assert early["artistName"] == "Big Now"
        assert early["currentFollowers"] == 2_000_000
        assert early["followersWhenAdded"] < 2_000_000
        assert early["popularity"] == 78
        assert early["addedAgo"] == "24 months ago"
        assert early["earlyDiscoveryBonus"] >= 1
        assert early["tierEmoji"]
        assert early["tierColor"].startswith("#")
        assert early["relevanceFactor"] == pytest.approx(0.93)

    def test_accepts_share_url(self, client):
        response = client.post(
            "/api/analyze-public-playlist",
            json={"playlistId": "https://open.spotify.com/playlist/abc123?si=xyz"},
        )
        assert response.status_code == 200
        assert response.json()["playlistId"] == "abc123"

    def test_invalid_playlist_url(self, client):
        response = client.post("/api/analyze-public-playlist", json={"playlistId": "not a url!"})
        assert response.status_code == 400

    def test_playlist_not_found(self, client):
        response = client.post("/api/analyze-public-playlist", json={"playlistId": "missing1"})
        assert response.status_code == 404

    def test_no_valid_tracks(self, client):
        response = client.post("/api/analyze-public-playlist", json={"playlistId": "empty1"})
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["error"] == "NO_VALID_TRACKS"
        assert detail["skippedTracks"] == 1

    def test_one_analysis_at_a_time(self, client):
        gate = AnalysisGate()
        gate.try_acquire()
        init_state(app, timeout_until=None, gate=gate)

        response = client.post("/api/analyze-public-playlist", json={"playlistId": "abc123"})
        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "PROCESSING"

    def test_gate_released_after_analysis(self, client):
        gate = AnalysisGate()
        init_state(app, timeout_until=None, gate=gate)
        client.post("/api/analyze-public-playlist", json={"playlistId": "abc123"})
        assert not gate.busy

    def test_throttled(self, client):
        init_state(app, timeout_until=None, throttle=RequestThrottle(max_requests=1, window_seconds=60))

        first = client.post("/api/analyze-public-playlist", json={"playlistId": "abc123"})
        second = client.post("/api/analyze-public-playlist", json={"playlistId": "abc123"})
        assert first.status_code == 200
        assert second.status_code == 429
        assert int(second.headers["Retry-After"]) >= 1

    def test_spotify_still_rate_limiting(self, client):
        """Spotify answering 429 past the last retry is a timeout, not a bad gateway."""
        def always_limited(request: httpx.Request) -> httpx.Response:
            return httpx.Response(429, headers={"Retry-After": "5"})

        async def factory():
            return SpotifyClient("test-token", transport=httpx.MockTransport(always_limited), max_retries=0)

        app.dependency_overrides[get_client_factory] = lambda: factory

        response = client.post("/api/analyze-public-playlist", json={"playlistId": "abc123"})
        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["error"] == "SPOTIFY_TIMEOUT"
        assert detail["retryAfter"] == 5

    def test_spotify_timeout_window(self, client):
        until = datetime.now(timezone.utc) + timedelta(days=1)
        init_state(app, timeout_until=until)

        response = client.post("/api/analyze-public-playlist", json={"playlistId": "abc123"})
        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["error"] == "SPOTIFY_TIMEOUT"
        assert detail["timeoutUntil"] == until.isoformat()


# =========================================================================
# CALCULATE CLOUT (caller-supplied items)
# =========================================================================

class TestCalculateClout:
    """Test scoring of caller-supplied playlist items."""

    def test_scores_supplied_tracks(self, client):
        response = client.post(
            "/api/calculate-clout",
            json={"playlistId": "private1", "tracks": PLAYLIST_ITEMS},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["playlistId"] == "private1"
        assert data["trackCount"] == 2
        assert data["skippedTracks"] == 2
        assert data["note"]

    def test_unscoreable_artist_reported(self, client):
        items = PLAYLIST_ITEMS + [{
            "added_at": iso_days_ago(90),
            "track": {"name": "Nobody Heard", "artists": [{"id": "ghost", "name": "Ghost"}]},
        }]
        data = client.post("/api/calculate-clout", json={"tracks": items}).json()
        assert data["trackCount"] == 2
        assert data["unscoredTracks"] == 1

    def test_only_malformed_tracks(self, client):
        response = client.post(
            "/api/calculate-clout",
            json={"tracks": [{"added_at": iso_days_ago(5), "track": None}]},
        )
        assert response.status_code == 422
        assert response.json()["detail"]["skippedTracks"] == 1

    def test_missing_tracks_rejected(self, client):
        response = client.post("/api/calculate-clout", json={"playlistId": "x"})
        assert response.status_code == 422


# =========================================================================
# OTHER ENDPOINTS
# =========================================================================

class TestOtherEndpoints:
    """Test auth, passthrough, and status endpoints."""

    def test_timeout_status_clear(self, client):
        data = client.get("/api/timeout-status").json()
        assert data == {"inTimeout": False, "timeoutUntil": None, "message": None}

    def test_timeout_status_active(self, client):
        init_state(app, timeout_until=datetime.now(timezone.utc) + timedelta(hours=2))
        data = client.get("/api/timeout-status").json()
        assert data["inTimeout"] is True
        assert data["message"]

    def test_artist(self, client):
        data = client.get("/api/artist/mid").json()
        assert data == {"id": "mid", "name": "Mid Size", "followers": 45_000, "popularity": 41}

    def test_artist_not_found(self, client):
        assert client.get("/api/artist/unknown").status_code == 404

    def test_login_requires_client_id(self, client, monkeypatch):
        monkeypatch.setattr(main, "SPOTIFY_CLIENT_ID", "")
        assert client.get("/login").status_code == 500

    def test_login_url(self, client, monkeypatch):
        monkeypatch.setattr(main, "SPOTIFY_CLIENT_ID", "my-client")
        auth_url = client.get("/login").json()["authUrl"]
        assert auth_url.startswith("https://accounts.spotify.com/authorize?")
        assert "client_id=my-client" in auth_url
        assert "playlist-read-private" in auth_url

    def test_callback_requires_code(self, client):
        assert client.get("/callback").status_code == 400

    def test_playlists_require_token(self, client):
        assert client.get("/api/playlists").status_code == 401

    def test_health(self, client):
        assert client.get("/health").json()["status"] == "ok"


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
