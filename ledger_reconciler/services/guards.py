"""
Per-key request guards.

Two in-process serialization mechanisms used by the flows:
1. RequestRateLimiter - a sliding-window counter throttling how often the
   extraction collaborator may be called per user
2. ConfirmLockRegistry - a set of fingerprints of in-flight confirmations,
   so a double-tapped confirm cannot commit the same draft twice

DESIGN DECISION: Both are keyed (never global) and live in process memory.
They are correct for a single instance only; a multi-instance deployment
has to back them with a shared store offering atomic increment and TTL.
"""

import time
from collections import deque
from typing import Callable, Optional

import structlog


logger = structlog.get_logger(__name__)


class RequestRateLimiter:
    """
    Sliding-window rate limiter keyed by user id.

    At most `max_requests` calls are allowed in any `window_seconds`
    interval.
    """

    def __init__(
        self,
        max_requests: int,
        window_seconds: float,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._max_requests = max_requests
        self._window = window_seconds
        self._clock = clock or time.monotonic
        self._hits: dict[str, deque] = {}

    def _prune(self, key: str, now: float) -> deque:
        hits = self._hits.setdefault(key, deque())
        while hits and now - hits[0] >= self._window:
            hits.popleft()
        return hits

    def try_acquire(self, key: str) -> bool:
        """Record a request; False when the key is over its limit."""
        now = self._clock()
        hits = self._prune(key, now)
        if len(hits) >= self._max_requests:
            logger.warning("rate_limit_exceeded", key=key, window=self._window)
            return False
        hits.append(now)
        return True

    def retry_after(self, key: str) -> float:
        """Seconds until the next request for this key would be accepted."""
        now = self._clock()
        hits = self._prune(key, now)
        if len(hits) < self._max_requests:
            return 0.0
        return max(0.0, self._window - (now - hits[0]))

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._hits.clear()
        else:
            self._hits.pop(key, None)


class ConfirmLockRegistry:
    """
    Idempotency locks for confirm actions.

    Usage:
        if not locks.acquire(fingerprint):
            return duplicate
        try:
            ...commit...
        finally:
            locks.release(fingerprint)
    """

    def __init__(self):
        self._in_flight: set[str] = set()

    def acquire(self, fingerprint: str) -> bool:
        if fingerprint in self._in_flight:
            logger.info("confirm_lock_busy", fingerprint=fingerprint[:16])
            return False
        self._in_flight.add(fingerprint)
        return True

    def release(self, fingerprint: str) -> None:
        self._in_flight.discard(fingerprint)

    def is_locked(self, fingerprint: str) -> bool:
        return fingerprint in self._in_flight
