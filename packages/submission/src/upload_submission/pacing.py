"""Request pacing for outgoing OData calls.

ERP gateways throttle aggressively and a mass upload fires hundreds of POSTs
in a row. RequestPacer is a continuously refilling token bucket: bursts up to
`burst` requests go out immediately, after that requests are spaced so the
average stays at `rate` per second.

A pacer built with rate=None never waits, which is what tests and backends
without throttling use.

Usage:
    pacer = RequestPacer(rate=5.0)
    await pacer.wait()   # returns once the request may be sent
"""

from __future__ import annotations

import asyncio
import time


class RequestPacer:
    def __init__(self, rate: float | None, burst: float | None = None) -> None:
        if rate is not None and rate <= 0:
            raise ValueError(f"rate must be positive or None, got {rate}")
        self.rate = rate
        self.burst = burst if burst is not None else max(rate or 0.0, 1.0)
        self.available = self.burst
        self.waits = 0
        self._updated_at = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def enabled(self) -> bool:
        return self.rate is not None

    async def wait(self) -> None:
        """Block until one request may be sent, then account for it."""
        if self.rate is None:
            return
        async with self._lock:
            self._top_up(self.rate)
            if self.available < 1.0:
                self.waits += 1
                await asyncio.sleep((1.0 - self.available) / self.rate)
                self._top_up(self.rate)
            self.available -= 1.0

    def _top_up(self, rate: float) -> None:
        now = time.monotonic()
        self.available = min(self.burst, self.available + (now - self._updated_at) * rate)
        self._updated_at = now
