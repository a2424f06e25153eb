from __future__ import annotations

import asyncio
from typing import Any

from ..observability.logging import get_logger
from ..services.rate_limiter import FixedWindowRateLimiter

log = get_logger("rate_limit_sweeper")


class RateLimitSweeper:
    """
    Periodic housekeeping for the click rate-limit store.

    Owned by the application lifespan: `start()` at startup, `stop()` at
    shutdown. Each tick runs `limiter.sweep()`, which takes the same lock as
    the request path.
    """

    def __init__(self, limiter: FixedWindowRateLimiter, *, interval_seconds: float = 300.0) -> None:
        self.limiter = limiter
        self.interval_seconds = max(0.01, float(interval_seconds))
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def run_once(self) -> dict[str, Any]:
        res = self.limiter.sweep()
        out = {"expired": res.expired, "evicted": res.evicted, "remaining": res.remaining}
        if res.evicted:
            log.warning("rate_limit_store_over_capacity", max_entries=self.limiter.max_entries, **out)
        elif res.expired:
            log.info("rate_limit_sweep", **out)
        return out

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.run_once()
            except Exception:
                # Never let a bad tick kill the loop.
                log.exception("rate_limit_sweep_failed")

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop(), name="rate-limit-sweeper")
        log.info("rate_limit_sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        task = self._task
        self._task = None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        log.info("rate_limit_sweeper_stopped")
