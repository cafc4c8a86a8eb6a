"""
In-memory rate limiting for token-protected public links.

The accounting "mark as paid" link is reachable without a session, so a
sliding window per (client IP, path) caps how fast tokens can be guessed.
State lives in-process; one limiter per worker.
"""
import logging
import math
import time
from collections import defaultdict
from typing import Callable, Optional

from fastapi import Request

from domain.errors import RateLimitError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window request counter keyed by arbitrary strings."""

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._requests: dict[str, list[float]] = defaultdict(list)
        self._clock = clock or time.monotonic

    def _cleanup(self, key: str, window_seconds: int) -> None:
        cutoff = self._clock() - window_seconds
        self._requests[key] = [ts for ts in self._requests[key] if ts > cutoff]

    def check(self, key: str, max_requests: int, window_seconds: int) -> bool:
        """Record a hit for `key`; False when the window is already full."""
        self._cleanup(key, window_seconds)
        if len(self._requests[key]) >= max_requests:
            return False
        self._requests[key].append(self._clock())
        return True

    def retry_after(self, key: str, window_seconds: int) -> int:
        """Whole seconds until the oldest hit in the window expires; 0 when none are recorded."""
        self._cleanup(key, window_seconds)
        hits = self._requests[key]
        if not hits:
            return 0
        return max(1, math.ceil(hits[0] + window_seconds - self._clock()))

    def reset(self) -> None:
        self._requests.clear()


limiter = RateLimiter()


def rate_limit(max_requests: int = 10, window_seconds: int = 60):
    """
    FastAPI dependency factory.

        @router.get("/api/orders/mark-paid")
        async def link(_=Depends(rate_limit(10, 60))): ...
    """
    async def _check_rate_limit(request: Request):
        client_ip = request.client.host if request.client else "unknown"
        key = f"{client_ip}:{request.url.path}"

        if not limiter.check(key, max_requests, window_seconds):
            retry_after = limiter.retry_after(key, window_seconds)
            logger.warning(
                f"Rate limit exceeded: {client_ip} on {request.url.path} "
                f"({max_requests}/{window_seconds}s)"
            )
            raise RateLimitError(
                f"Rate limit exceeded. Maximum {max_requests} requests per {window_seconds} seconds.",
                details={"limit": max_requests, "window_seconds": window_seconds, "retry_after": retry_after},
            )

    return _check_rate_limit
