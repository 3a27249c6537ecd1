"""
Rate limiting middleware for the sign-in endpoints.

Sliding window per (limit pattern, client) pair, applied to the /auth endpoints.
"""

import asyncio
import time
from collections import deque
from typing import Awaitable, Callable, Deque, Dict, Optional, Tuple

from fastapi import Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse, Response

import structlog

from ..config import settings

logger = structlog.stdlib.get_logger(__name__)


class RateLimitExceeded(Exception):
    """Rate limit has been exceeded."""
    def __init__(self, limit: int, window_seconds: int, retry_after: int):
        self.limit = limit
        self.window_seconds = window_seconds
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded: {limit} requests per {window_seconds}s")


def default_limits() -> Dict[str, Dict[str, int]]:
    per_minute = settings.auth_rate_limit_per_minute
    return {
        # Pattern: {"limit": requests, "window": seconds}
        "/auth/nonce": {"limit": per_minute, "window": 60},
        "/auth/message": {"limit": per_minute, "window": 60},
        "/auth/verify": {"limit": per_minute, "window": 60},
        "default": {"limit": 100, "window": 60},
    }


class RateLimiter:
    """In-process sliding window rate limiter.

    Hits are keyed on the matched limit pattern, so unknown paths share the
    ``default`` bucket. Idle keys are purged once per ``purge_interval``.
    """

    def __init__(
        self,
        limits: Optional[Dict[str, Dict[str, int]]] = None,
        clock: Callable[[], float] = time.monotonic,
        purge_interval: float = 60.0,
    ):
        self.limits = limits or default_limits()
        self._hits: Dict[str, Deque[float]] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._purge_interval = purge_interval
        self._last_purge = clock()

    def _match_limit(self, path: str) -> Tuple[str, Dict[str, int]]:
        if path in self.limits:
            return path, self.limits[path]

        for pattern, limit in self.limits.items():
            if pattern != "default" and path.startswith(pattern):
                return pattern, limit

        return "default", self.limits.get("default", {"limit": 100, "window": 60})

    async def check_limit(self, key: str, limit: int, window_seconds: int) -> bool:
        """
        Record a hit for ``key``.

        Returns True if within limits, raises RateLimitExceeded otherwise.
        """
        async with self._lock:
            now = self._clock()
            if now - self._last_purge >= self._purge_interval:
                self._purge(now)

            window_start = now - window_seconds
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= window_start:
                hits.popleft()

            if len(hits) >= limit:
                retry_after = max(1, int(hits[0] + window_seconds - now) + 1)
                raise RateLimitExceeded(limit, window_seconds, retry_after)

            hits.append(now)
            return True

    def _purge(self, now: float) -> None:
        longest = max((limit["window"] for limit in self.limits.values()), default=60)
        idle = [key for key, hits in self._hits.items() if not hits or hits[-1] <= now - longest]
        for key in idle:
            del self._hits[key]
        self._last_purge = now

    async def check_request(self, request: Request, identifier: Optional[str] = None) -> bool:
        pattern, limit_config = self._match_limit(request.url.path)

        if identifier is None:
            identifier = request.client.host if request.client else "unknown"

        return await self.check_limit(
            key=f"{pattern}:{identifier}",
            limit=limit_config["limit"],
            window_seconds=limit_config["window"],
        )


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app,
        rate_limiter: Optional[RateLimiter] = None,
        include_paths: Optional[list] = None,
    ):
        super().__init__(app)
        self.rate_limiter = rate_limiter or RateLimiter()
        self.include_paths = include_paths or ["/auth/"]

    async def dispatch(
        self,
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        path = request.url.path
        if not any(path.startswith(p) for p in self.include_paths):
            return await call_next(request)

        try:
            await self.rate_limiter.check_request(request)
        except RateLimitExceeded as e:
            logger.warning("rate_limit_exceeded", path=path, limit=e.limit, retry_after=e.retry_after)
            return JSONResponse(
                {"error": "Rate limit exceeded", "retry_after": e.retry_after},
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                headers={
                    "Retry-After": str(e.retry_after),
                    "X-RateLimit-Limit": str(e.limit),
                    "X-RateLimit-Window": str(e.window_seconds),
                },
            )
        return await call_next(request)
