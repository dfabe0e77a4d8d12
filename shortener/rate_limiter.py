# Admission guard for the shorten endpoint.
# Fixed window counter per caller key, reset lazily on the first request after
# the window ends. Single event loop, so no locking.

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from fastapi import Request
from prometheus_client import Counter

from shortener.config import Settings
from shortener.exceptions import RateLimitExceeded

__all__ = ["AdmissionGuard", "AdmissionResult", "RateWindow", "caller_key", "enforce_rate_limit"]

logger = logging.getLogger("urlshortener.rate_limiter")

RATE_LIMIT_REJECTIONS_TOTAL = Counter(
    "url_shortener_rate_limit_rejections_total",
    "Requests rejected by the admission guard",
)


@dataclass
class RateWindow:
    count: int
    reset_at: float


@dataclass(frozen=True)
class AdmissionResult:
    allowed: bool
    retry_after: int | None = None


class AdmissionGuard:
    """
    Fixed window rate limiter keyed by caller identity.
    Rejected requests past the first overflow do not grow the counter.
    """

    def __init__(
        self,
        window_seconds: float = 60,
        max_requests: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._windows: dict[str, RateWindow] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "AdmissionGuard":
        return cls(
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
        )

    def __len__(self) -> int:
        return len(self._windows)

    def window(self, key: str) -> RateWindow | None:
        return self._windows.get(key)

    def check(self, key: str) -> AdmissionResult:
        now = self._clock()
        record = self._windows.get(key)

        if record is None:
            record = RateWindow(count=0, reset_at=now + self.window_seconds)
            self._windows[key] = record

        if now > record.reset_at:
            record.count = 0
            record.reset_at = now + self.window_seconds

        if record.count < self.max_requests:
            record.count += 1
            return AdmissionResult(allowed=True)

        # Freeze at the first overflow.
        record.count = self.max_requests + 1
        retry_after = max(1, math.ceil(record.reset_at - now))
        RATE_LIMIT_REJECTIONS_TOTAL.inc()
        logger.warning(f"Rate limit exceeded for client: {key}")
        return AdmissionResult(allowed=False, retry_after=retry_after)

    def sweep(self) -> int:
        """Drop windows whose reset time has passed."""
        now = self._clock()
        stale = [key for key, record in self._windows.items() if now > record.reset_at]
        for key in stale:
            del self._windows[key]
        if stale:
            logger.debug(f"Cleaned up {len(stale)} rate limit records")
        return len(stale)


def caller_key(request: Request) -> str:
    """Identify the caller: x-client-id header, then client host."""
    client_id = request.headers.get("x-client-id")
    if client_id:
        return client_id
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def enforce_rate_limit(request: Request) -> None:
    """FastAPI dependency that rejects callers over their allowance."""
    guard: AdmissionGuard = request.app.state.services.guard
    key = caller_key(request)
    result = guard.check(key)
    if not result.allowed:
        raise RateLimitExceeded(key, result.retry_after or 1)
