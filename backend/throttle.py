"""
Availability guards around the Spotify-backed analysis.

- RequestThrottle: per-caller sliding window limit
- AnalysisGate: one playlist analysis in flight at a time
- TimeoutWindow: configured "Spotify put us in timeout" period
- ArtistCache: short-lived cache of artist payloads

All of these are owned by the app instance and injected, never module state.
"""
import time
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Callable, Deque, Optional


@dataclass(frozen=True)
class ThrottleDecision:
    allowed: bool
    retry_after: int = 0


class RequestThrottle:
    """Allow at most `max_requests` per caller within `window_seconds`."""

    def __init__(
        self,
        max_requests: int = 5,
        window_seconds: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests = max(1, int(max_requests))
        self.window_seconds = max(1, int(window_seconds))
        self._clock = clock
        self._events: dict[str, Deque[float]] = {}
        self._lock = Lock()

    def check(self, caller_key: str) -> ThrottleDecision:
        now = self._clock()
        cutoff = now - self.window_seconds
        with self._lock:
            self._forget_idle(cutoff)
            window = self._events.setdefault(caller_key, deque())

            if len(window) >= self.max_requests:
                retry_after = int(window[0] + self.window_seconds - now) + 1
                return ThrottleDecision(allowed=False, retry_after=max(1, retry_after))

            window.append(now)
            return ThrottleDecision(allowed=True)

    def _forget_idle(self, cutoff: float):
        """Prune every caller's window; drop callers with nothing left."""
        for key in list(self._events):
            window = self._events[key]
            while window and window[0] <= cutoff:
                window.popleft()
            if not window:
                del self._events[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


class AnalysisInProgressError(RuntimeError):
    """Another playlist analysis is already running."""


class AnalysisGate:
    """Single in-flight flag for playlist analyses."""

    def __init__(self):
        self._lock = Lock()
        self._busy = False

    @property
    def busy(self) -> bool:
        return self._busy

    def try_acquire(self) -> bool:
        with self._lock:
            if self._busy:
                return False
            self._busy = True
            return True

    def release(self):
        with self._lock:
            self._busy = False

    @contextmanager
    def hold(self):
        if not self.try_acquire():
            raise AnalysisInProgressError("Another playlist is currently being analyzed")
        try:
            yield
        finally:
            self.release()


class TimeoutWindow:
    """A configured period during which Spotify calls are refused."""

    MESSAGE = "Spotify has put us in timeout due to high traffic. Please try again later."

    def __init__(self, until: Optional[datetime] = None):
        self.until = until

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if self.until is None:
            return False
        now = now or datetime.now(timezone.utc)
        return now < self.until

    def status(self, now: Optional[datetime] = None) -> dict:
        active = self.is_active(now)
        return {
            "in_timeout": active,
            "timeout_until": self.until.isoformat() if active else None,
            "message": self.MESSAGE if active else None,
        }


class ArtistCache:
    """TTL cache of Spotify artist payloads keyed by artist id."""

    def __init__(self, ttl_seconds: int = 3600, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, dict]] = {}
        self._lock = Lock()

    def get(self, artist_id: str) -> Optional[dict]:
        with self._lock:
            entry = self._entries.get(artist_id)
            if entry is None:
                return None
            stored_at, artist = entry
            if self._clock() - stored_at >= self.ttl_seconds:
                del self._entries[artist_id]
                return None
            return artist

    def put(self, artist: dict):
        artist_id = artist.get("id")
        if not artist_id:
            return
        now = self._clock()
        with self._lock:
            self._sweep(now)
            # Re-insert so entries stay ordered by store time
            self._entries.pop(artist_id, None)
            self._entries[artist_id] = (now, artist)

    def _sweep(self, now: float):
        """Evict expired entries from the oldest end."""
        while self._entries:
            oldest_id = next(iter(self._entries))
            stored_at, _ = self._entries[oldest_id]
            if now - stored_at < self.ttl_seconds:
                break
            del self._entries[oldest_id]

    def clear(self):
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
