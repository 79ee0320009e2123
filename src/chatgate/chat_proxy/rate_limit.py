"""Fixed-window admission control for the public endpoints."""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

from fastapi import Request

from .errors import err_rate_limited


@dataclass
class RateDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_s: int

    def headers(self) -> dict[str, str]:
        headers = {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.reset_s),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.reset_s)
        return headers


class FixedWindowRateLimiter:
    """Count hits per key inside consecutive windows of ``window_s`` seconds.

    Keys are ``(endpoint, client)``. A window opens at a key's first hit and
    the counter resets once it has elapsed.
    """

    def __init__(
        self,
        limit: int,
        window_s: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.limit = limit
        self.window_s = window_s
        self._clock = clock
        self._lock = threading.Lock()
        self._windows: Dict[Tuple[str, str], Tuple[float, int]] = {}

    def hit(self, endpoint: str, client: str) -> RateDecision:
        now = self._clock()
        key = (endpoint, client)
        with self._lock:
            self._prune(now)
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_s:
                started, count = now, 0
            count += 1
            self._windows[key] = (started, count)
        reset_s = max(0, math.ceil(started + self.window_s - now))
        return RateDecision(
            allowed=count <= self.limit,
            limit=self.limit,
            remaining=max(0, self.limit - count),
            reset_s=reset_s,
        )

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, (started, _) in self._windows.items()
            if now - started >= self.window_s
        ]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


def rate_limited(
    limiter: FixedWindowRateLimiter, endpoint: str, message: str
) -> Callable[[Request], None]:
    """FastAPI dependency rejecting requests over the endpoint's ceiling."""

    def dependency(request: Request) -> None:
        client = request.client.host if request.client else "unknown"
        decision = limiter.hit(endpoint, client)
        if not decision.allowed:
            raise err_rate_limited(message, decision.headers())

    return dependency
