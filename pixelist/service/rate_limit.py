from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict

from pixelist.logging import get_logger

logger = get_logger(__name__)


@dataclass
class RateLimitEntry:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int


class RateLimiter:
    """Fixed-window attempt counter keyed by an identity string.

    Keys look like ``login:<username>`` or ``2fa:<user_id>``. State is local
    to this instance; the runtime owns one per process.
    """

    def __init__(
        self,
        max_attempts: int = 10,
        window_seconds: float = 15 * 60,
        *,
        sweep_threshold: int = 10_000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.sweep_threshold = sweep_threshold
        self._clock = clock
        self._entries: Dict[str, RateLimitEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _sweep(self, now: float) -> None:
        expired = [key for key, entry in self._entries.items() if now > entry.reset_at]
        for key in expired:
            del self._entries[key]
        logger.debug("rate_limit_swept", removed=len(expired), remaining=len(self._entries))

    def check(self, key: str) -> RateLimitResult:
        """Record an attempt for ``key`` and report whether it may proceed."""
        now = self._clock()
        with self._lock:
            if len(self._entries) > self.sweep_threshold:
                self._sweep(now)

            entry = self._entries.get(key)
            if entry is None or now > entry.reset_at:
                self._entries[key] = RateLimitEntry(count=1, reset_at=now + self.window_seconds)
                return RateLimitResult(allowed=True, remaining=self.max_attempts - 1)

            if entry.count >= self.max_attempts:
                return RateLimitResult(allowed=False, remaining=0)

            entry.count += 1
            return RateLimitResult(allowed=True, remaining=self.max_attempts - entry.count)

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)
