"""Process-wide bound on concurrent repodata downloads.

Downloading and parsing ``repodata.json`` is CPU and memory heavy, so the
number of fetches running at once is capped regardless of how many requests
are in flight.  Permits are handed out first come, first served.
"""

from __future__ import annotations

import asyncio
from types import TracebackType
from typing import Optional

from solve_server.core.errors import InternalError


class FetchLimiter:
    """Counting permit pool of fixed capacity."""

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"FetchLimiter capacity must be at least 1, got {capacity}")
        self._capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_use = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        return self._in_use

    async def acquire(self) -> None:
        await self._semaphore.acquire()
        self._in_use += 1

    def release(self) -> None:
        if self._in_use == 0:
            raise InternalError("FetchLimiter released more permits than were acquired")
        self._in_use -= 1
        self._semaphore.release()

    async def __aenter__(self) -> FetchLimiter:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        self.release()
