from __future__ import annotations

import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable

Clock = Callable[[], int]


def epoch_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class RateLimitEntry:
    count: int
    reset_time: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    count: int
    reset_time: int

    def retry_after_seconds(self, now: int) -> int:
        return max(1, -(-(self.reset_time - now) // 1000))


@dataclass(frozen=True)
class SweepResult:
    expired: int
    evicted: int
    remaining: int


class FixedWindowRateLimiter:
    """
    Fixed-window request counter keyed by client IP.

    In-memory per process (good enough to discourage abuse). Windows are not
    sliding: a burst straddling a window boundary can admit up to twice the
    limit in a short span.
    """

    def __init__(
        self,
        *,
        limit: int = 30,
        window_ms: int = 60_000,
        max_entries: int = 10_000,
        clock: Clock | None = None,
    ) -> None:
        self.limit = max(1, int(limit))
        self.window_ms = max(1, int(window_ms))
        self.max_entries = max(1, int(max_entries))
        self._clock: Clock = clock or epoch_ms
        self._entries: dict[str, RateLimitEntry] = {}
        self._lock = Lock()

    def now(self) -> int:
        return self._clock()

    def hit(self, key: str) -> RateLimitDecision:
        """Count one request for `key` and report whether it is allowed."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_time:
                entry = RateLimitEntry(count=1, reset_time=now + self.window_ms)
                self._entries[key] = entry
                return RateLimitDecision(allowed=True, count=entry.count, reset_time=entry.reset_time)

            if entry.count >= self.limit:
                return RateLimitDecision(allowed=False, count=entry.count, reset_time=entry.reset_time)

            entry.count += 1
            return RateLimitDecision(allowed=True, count=entry.count, reset_time=entry.reset_time)

    def sweep(self) -> SweepResult:
        """
        Drop expired entries, then evict the soonest-expiring ones while the
        store is still above `max_entries`.
        """
        now = self._clock()
        with self._lock:
            expired_keys = [k for k, e in self._entries.items() if now > e.reset_time]
            for k in expired_keys:
                del self._entries[k]

            evicted = 0
            surplus = len(self._entries) - self.max_entries
            if surplus > 0:
                oldest = sorted(self._entries.items(), key=lambda kv: kv[1].reset_time)[:surplus]
                for k, _ in oldest:
                    del self._entries[k]
                evicted = len(oldest)

            return SweepResult(expired=len(expired_keys), evicted=evicted, remaining=len(self._entries))

    def get(self, key: str) -> RateLimitEntry | None:
        with self._lock:
            e = self._entries.get(key)
            return RateLimitEntry(count=e.count, reset_time=e.reset_time) if e else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
