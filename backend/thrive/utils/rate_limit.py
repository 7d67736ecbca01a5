"""In-memory rate limiter for login and password-reset endpoints."""

from __future__ import annotations

import os
import threading
import time
from collections import defaultdict, deque

from fastapi import HTTPException, Request


class InMemoryRateLimiter:
    """Sliding-log limiter per key.

    Each key keeps the timestamps of its accepted hits; a hit expires on
    its own once it is older than the window, so there is no shared reset
    point. State lives in process memory, so limits are per worker.
    """

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._hits = defaultdict(deque)
        self._lock = threading.Lock()

    def allow(self, key: str, max_requests: int, window_seconds: int) -> tuple[bool, int]:
        now = self._clock()
        retry_after = 0
        with self._lock:
            q = self._hits[key]
            cutoff = now - window_seconds
            while q and q[0] < cutoff:
                q.popleft()
            if len(q) >= max_requests:
                retry_after = max(1, int(window_seconds - (now - q[0])))
                return False, retry_after
            q.append(now)
        return True, retry_after

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()


def enforce_rate_limit(limiter: InMemoryRateLimiter, request: Request, limit_env: str, default_limit: int) -> None:
    """Raise 429 once the client exceeds `limit_env` hits per window.

    Thresholds are read from the environment on every call so they can
    be tuned without restarting the process.
    """
    max_requests = int(os.getenv(limit_env, str(default_limit)))
    window = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", str(15 * 60)))
    key = f"{request.client.host if request.client else 'unknown'}:{request.url.path}"
    allowed, retry_after = limiter.allow(key, max_requests, window)
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"too many attempts; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )
