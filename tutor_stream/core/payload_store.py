"""Short-lived handoff of turn payloads.

Clients that can only open a stream with GET first POST the turn payload,
receive a session id, then connect. Entries expire after a short TTL and are
removed lazily on access.
"""

import time
from typing import Generic, TypeVar

T = TypeVar("T")


class PayloadStore(Generic[T]):
    """In-memory mapping of session id to payload with per-entry expiry."""

    def __init__(self, ttl_seconds: float = 120.0):
        self.ttl_seconds = ttl_seconds
        self._entries: dict[str, tuple[float, T]] = {}

    def _purge(self, now: float) -> None:
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    def set(self, session_id: str, payload: T) -> None:
        now = time.monotonic()
        self._purge(now)
        self._entries[session_id] = (now + self.ttl_seconds, payload)

    def take(self, session_id: str) -> T | None:
        """Remove and return a payload; each prepared stream is consumed once."""
        self._purge(time.monotonic())
        entry = self._entries.pop(session_id, None)
        return entry[1] if entry else None

    def __len__(self) -> int:
        self._purge(time.monotonic())
        return len(self._entries)
