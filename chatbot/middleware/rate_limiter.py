"""
In-memory rate limiting for the chatbot endpoint.

Each client gets two sliding windows, per minute and per day, keyed by the
first address in X-Forwarded-For (or the socket peer). State is per process;
a multi-worker deployment enforces the limits per worker.
"""

import time
from collections import deque
from typing import Deque, Dict, Optional

import structlog
from fastapi import HTTPException, Request, status

from chatbot.models import ErrorResponse
from libs.common.settings import get_settings

logger = structlog.get_logger(__name__)


def client_id(request: Request) -> str:
    """Client identifier: first X-Forwarded-For address, else the peer host."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        client_ip = forwarded_for.split(",")[0].strip()
    else:
        client_ip = request.client.host if request.client else "unknown"
    return f"ip:{client_ip}"


class RateLimiter:
    """Simple sliding window rate limiter."""

    def __init__(self, max_requests: int = 10, window_seconds: int = 60):
        """
        Initialize rate limiter.

        Args:
            max_requests: Maximum requests allowed in window
            window_seconds: Time window in seconds
        """
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._history: Dict[str, Deque[float]] = {}

    def _clean_old_requests(self, key: str, current_time: float):
        history = self._history.get(key)
        if history is None:
            return
        cutoff_time = current_time - self.window_seconds
        while history and history[0] <= cutoff_time:
            history.popleft()
        if not history:
            del self._history[key]

    def retry_after(self, key: str, current_time: float) -> int:
        history = self._history.get(key)
        if not history:
            return self.window_seconds
        return int(self.window_seconds - (current_time - history[0])) + 1

    def count(self, key: str) -> int:
        return len(self._history.get(key, ()))

    def is_limited(self, key: str, current_time: Optional[float] = None) -> bool:
        current_time = time.time() if current_time is None else current_time
        self._clean_old_requests(key, current_time)
        return self.count(key) >= self.max_requests

    def record(self, key: str, current_time: Optional[float] = None):
        self._history.setdefault(key, deque()).append(time.time() if current_time is None else current_time)

    def reset(self):
        self._history.clear()

    def reject(self, key: str, current_time: float):
        """Raise the 429 for ``key``."""
        retry_after = self.retry_after(key, current_time)
        logger.warning(
            "Rate limit exceeded",
            client_id=key,
            current_count=self.count(key),
            max_requests=self.max_requests,
            window_seconds=self.window_seconds,
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=ErrorResponse(
                error_code="RATE_LIMIT_EXCEEDED",
                message=f"Too many requests. Maximum {self.max_requests} requests per {self.window_seconds} seconds.",
                retry_after_seconds=retry_after,
            ).model_dump(exclude_none=True),
            headers={"Retry-After": str(retry_after)},
        )


class QueryRateLimits:
    """Per-minute and per-day windows checked together; a request counts against both or neither."""

    def __init__(self, per_minute: int = 10, per_day: int = 200, enabled: bool = True):
        self.enabled = enabled
        self.windows = (
            RateLimiter(max_requests=per_minute, window_seconds=60),
            RateLimiter(max_requests=per_day, window_seconds=86400),
        )

    async def __call__(self, request: Request) -> None:
        """
        Check the request against every window, then record it in each.

        Raises:
            HTTPException: 429 if any window is full
        """
        if not self.enabled:
            return

        key = client_id(request)
        current_time = time.time()
        for window in self.windows:
            if window.is_limited(key, current_time):
                window.reject(key, current_time)
        for window in self.windows:
            window.record(key, current_time)

        logger.debug("Rate limit check passed", client_id=key)

    def reset(self):
        for window in self.windows:
            window.reset()


_query_rate_limits: Optional[QueryRateLimits] = None


def get_query_rate_limits() -> QueryRateLimits:
    """Global limiter for the query endpoint, sized from settings."""
    global _query_rate_limits
    if _query_rate_limits is None:
        s = get_settings()
        _query_rate_limits = QueryRateLimits(
            per_minute=s.rate_limit_per_minute,
            per_day=s.rate_limit_per_day,
            enabled=s.rate_limit_enabled,
        )
    return _query_rate_limits


async def enforce_query_rate_limits(request: Request) -> None:
    """FastAPI dependency for the query endpoint."""
    await get_query_rate_limits()(request)
