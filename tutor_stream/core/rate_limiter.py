"""In-memory token bucket rate limiting for tutoring turns."""

import time
from typing import Any, Dict, Tuple

from fastapi import HTTPException

from tutor_stream.core.config import get_settings
from tutor_stream.core.logging import get_logger

logger = get_logger(__name__)

ANONYMOUS_KEY = "anonymous"


class RateLimiter:
    """
    Token bucket per key (e.g. user id).

    Buckets start full at ``burst_size`` and refill at
    ``requests_per_minute / 60`` tokens per second. State lives in process
    memory, so limits are per worker.
    """

    def __init__(self, requests_per_minute: int = 10, burst_size: int = 15):
        self.requests_per_minute = requests_per_minute
        self.burst_size = burst_size
        self.refill_rate = requests_per_minute / 60.0  # tokens per second

        # key -> (tokens, last_refill_time)
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._request_counts: Dict[str, int] = {}

    def _refill_bucket(self, key: str, now: float) -> float:
        tokens, last_refill = self._buckets.get(key, (float(self.burst_size), now))
        tokens = min(self.burst_size, tokens + (now - last_refill) * self.refill_rate)
        self._buckets[key] = (tokens, now)
        return tokens

    def check_limit(self, key: str, cost: float = 1.0) -> bool:
        """
        Consume ``cost`` tokens for ``key``.

        Returns:
            True if allowed

        Raises:
            HTTPException: 429 with a Retry-After header if rate limited
        """
        now = time.time()
        tokens = self._refill_bucket(key, now)

        if tokens >= cost:
            self._buckets[key] = (tokens - cost, now)
            self._request_counts[key] = self._request_counts.get(key, 0) + 1
            return True

        retry_after = int((cost - tokens) / self.refill_rate) + 1 if self.refill_rate else 60
        logger.warning(
            f"Rate limit exceeded for key: {key}, "
            f"tokens: {tokens:.2f}/{self.burst_size}, "
            f"retry after: {retry_after}s"
        )
        raise HTTPException(
            status_code=429,
            detail=f"Rate limit exceeded. Try again in {retry_after} seconds.",
            headers={"Retry-After": str(retry_after)},
        )

    def get_stats(self, key: str) -> Dict[str, Any]:
        tokens = self._refill_bucket(key, time.time())
        return {
            "tokens_remaining": int(tokens),
            "burst_size": self.burst_size,
            "requests_per_minute": self.requests_per_minute,
            "total_requests": self._request_counts.get(key, 0),
        }

    def reset(self, key: str | None = None) -> None:
        """Forget one key, or every key when ``key`` is None."""
        if key is None:
            self._buckets.clear()
            self._request_counts.clear()
            return
        self._buckets.pop(key, None)
        self._request_counts.pop(key, None)
        logger.info(f"Rate limit reset for key: {key}")


_settings = get_settings()
tutor_rate_limiter = RateLimiter(
    requests_per_minute=_settings.TUTOR_REQUESTS_PER_MINUTE,
    burst_size=_settings.TUTOR_BURST_SIZE,
)


def _key(user_id: str | None) -> str:
    return f"tutor:{user_id or ANONYMOUS_KEY}"


def check_tutor_rate_limit(user_id: str | None) -> None:
    """
    Check rate limit for a tutoring turn.

    Raises:
        HTTPException: 429 if rate limited
    """
    tutor_rate_limiter.check_limit(_key(user_id))


def get_tutor_rate_limit_stats(user_id: str | None) -> Dict[str, Any]:
    return tutor_rate_limiter.get_stats(_key(user_id))
