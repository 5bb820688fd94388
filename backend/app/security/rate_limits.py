############################################################
#
# chatbridge - Conversation Relay for LLM Chat Providers
#
# rate_limits.py: Fixed-window rate limiting implementation
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Rate limiting implementation."""

import asyncio
import heapq
import math
import time
from dataclasses import dataclass
from typing import Dict, Optional

from starlette.requests import Request

from backend.app.logging_config import get_logger

logger = get_logger(__name__)

# Entries beyond this force a sweep; live windows closest to reset go first if needed
MAX_ENTRIES = 10_000


@dataclass
class RateLimitWindow:
    """Request count for one key inside its current window."""

    count: int
    reset_at: float


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_at: float

    @property
    def retry_after(self) -> int:
        """Whole seconds until the window resets (at least 1)."""
        return max(1, math.ceil(self.reset_at - time.time()))


class RateLimiter:
    """
    In-memory fixed-window rate limiter.

    The first request for a key opens a window of ``window_seconds``; up to
    ``limit`` requests are admitted until it expires.
    """

    def __init__(self, max_entries: int = MAX_ENTRIES):
        self.max_entries = max_entries
        self._windows: Dict[str, RateLimitWindow] = {}
        self._lock = asyncio.Lock()

    async def hit(self, key: str, limit: int, window_seconds: float) -> RateLimitResult:
        """
        Record one request for *key* and report whether it is allowed.

        Args:
            key: Rate limit key (e.g. ``chat:{user_id}:{client_ip}``)
            limit: Requests allowed per window
            window_seconds: Window length

        Returns:
            RateLimitResult
        """
        async with self._lock:
            now = time.time()
            if key not in self._windows and len(self._windows) >= self.max_entries:
                self._sweep(now)
                self._evict_oldest()

            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                window = RateLimitWindow(count=1, reset_at=now + window_seconds)
                self._windows[key] = window
                return RateLimitResult(True, limit - 1, window.reset_at)

            if window.count >= limit:
                logger.info("rate_limit_exceeded", key=key, limit=limit)
                return RateLimitResult(False, 0, window.reset_at)

            window.count += 1
            return RateLimitResult(True, limit - window.count, window.reset_at)

    def _sweep(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now > w.reset_at]
        for key in expired:
            del self._windows[key]

    def _evict_oldest(self) -> None:
        overflow = len(self._windows) - self.max_entries + 1
        if overflow > 0:
            oldest = heapq.nsmallest(overflow, self._windows.items(), key=lambda item: item[1].reset_at)
            for key, _ in oldest:
                del self._windows[key]
            logger.warning("rate_limit_entries_evicted", count=len(oldest))

    async def cleanup(self) -> None:
        """Drop expired windows."""
        async with self._lock:
            self._sweep(time.time())

    def reset(self) -> None:
        self._windows.clear()


def _first_ip(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    ip = value.split(",")[0].strip()
    return ip or None


def get_client_ip(request: Request) -> str:
    """Best-effort client address: proxy headers first, then the socket peer."""
    for header in ("x-forwarded-for", "x-real-ip"):
        ip = _first_ip(request.headers.get(header))
        if ip:
            return ip
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


# Global rate limiter instance
_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter instance."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter
