"""
Fixed-window rate limiting for clone requests
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from . import config
from .errors import RateLimitError


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_time: float
    retry_after: Optional[float] = None


@dataclass
class _Window:
    count: int
    reset_time: float
    blocked_until: Optional[float] = None


class RateLimiter:
    def __init__(self, max_requests: int = config.RATE_LIMIT, window: float = config.RATE_WINDOW,
                 block_duration: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window = window
        self.block_duration = block_duration
        self.clock = clock
        self._entries: Dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._next_prune = clock() + window

    def check(self, identifier: str = "default") -> RateLimitResult:
        """Count one request against identifier and report whether it is allowed"""
        now = self.clock()
        with self._lock:
            if now >= self._next_prune:
                self._prune(now)
            entry = self._entries.get(identifier)

            if entry and entry.blocked_until and entry.blocked_until > now:
                return RateLimitResult(False, 0, entry.blocked_until, entry.blocked_until - now)

            if entry is None or entry.reset_time <= now:
                entry = _Window(count=1, reset_time=now + self.window)
                self._entries[identifier] = entry
                return RateLimitResult(True, self.max_requests - 1, entry.reset_time)

            entry.count += 1
            if entry.count > self.max_requests:
                if self.block_duration:
                    entry.blocked_until = now + self.block_duration
                until = entry.blocked_until or entry.reset_time
                return RateLimitResult(False, 0, entry.reset_time, until - now)

            return RateLimitResult(True, self.max_requests - entry.count, entry.reset_time)

    def _prune(self, now: float):
        """Drop windows that have expired and are not blocked. Caller holds the lock."""
        expired = [
            key for key, entry in self._entries.items()
            if entry.reset_time <= now and not (entry.blocked_until and entry.blocked_until > now)
        ]
        for key in expired:
            del self._entries[key]
        self._next_prune = now + self.window

    def enforce(self, identifier: str = "default"):
        result = self.check(identifier)
        if not result.allowed:
            raise RateLimitError(
                "Too many clone requests. Please try again later.",
                retry_after=result.retry_after or 0.0,
            )
        return result

    def reset(self, identifier: str = "default"):
        with self._lock:
            self._entries.pop(identifier, None)
