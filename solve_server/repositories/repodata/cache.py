"""In-memory repodata cache with single-flight fetching and TTL expiry.

Lifecycle of a key::

    EMPTY --get--> FETCHING --ok--> FRESH --ttl passes--> STALE --get--> FETCHING
                      |
                      +--error--> previous entry (or EMPTY)

Rules:

- At most one fetch per key is in flight.  Callers arriving while it runs
  attach to it and receive the same document or the same exception.
- Fetches run as detached tasks.  A caller being cancelled never cancels the
  fetch, so its result still lands in the cache for everybody else.
- Every fetch holds one ``FetchLimiter`` permit while it runs.
- Entries are replaced, never mutated; a document handed out earlier stays
  valid after a refresh.
- Staleness is evaluated lazily on access.  Failures are not retried here;
  the next caller simply starts a new fetch.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, NamedTuple, Optional, Sequence

from solve_server.models.repodata.document import RepoData
from solve_server.workers.limiter import FetchLimiter

logger = logging.getLogger(__name__)

Fetcher = Callable[[str, str], Awaitable[RepoData]]
Clock = Callable[[], float]


class MetadataKey(NamedTuple):
    """Identity of one repodata document: channel base URL and subdir."""

    channel: str
    platform: str

    @property
    def subdir_url(self) -> str:
        return f"{self.channel}{self.platform}/"

    def __str__(self) -> str:
        return self.subdir_url


class CacheState(str, enum.Enum):
    EMPTY = "empty"
    FETCHING = "fetching"
    FRESH = "fresh"
    STALE = "stale"


@dataclass(frozen=True)
class MetadataCacheEntry:
    state: CacheState
    document: Optional[RepoData] = None
    fetched_at: Optional[float] = None


_EMPTY = MetadataCacheEntry(CacheState.EMPTY)


class MetadataCache:
    """Keyed store of repodata documents shared by all requests."""

    def __init__(
        self,
        fetcher: Fetcher,
        limiter: FetchLimiter,
        ttl: float,
        clock: Clock = time.monotonic,
    ) -> None:
        self._fetcher = fetcher
        self._limiter = limiter
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[MetadataKey, MetadataCacheEntry] = {}
        self._inflight: dict[MetadataKey, asyncio.Task[RepoData]] = {}

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def _is_fresh(self, entry: MetadataCacheEntry) -> bool:
        if entry.document is None or entry.fetched_at is None or self._ttl <= 0:
            return False
        return self._clock() - entry.fetched_at <= self._ttl

    def entry(self, key: MetadataKey) -> MetadataCacheEntry:
        return self._entries.get(key, _EMPTY)

    def state(self, key: MetadataKey) -> CacheState:
        """Current state of *key*, with staleness evaluated now."""
        entry = self.entry(key)
        if entry.state is CacheState.FRESH and not self._is_fresh(entry):
            return CacheState.STALE
        return entry.state

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def get_or_fetch(self, key: MetadataKey) -> RepoData:
        """Return the document for *key*, fetching it if missing or stale.

        Raises:
            FetchError: propagated from the fetcher; every caller waiting on
                the same fetch receives the same exception.
        """
        entry = self._entries.get(key)
        if entry is not None and entry.state is CacheState.FRESH and self._is_fresh(entry):
            logger.debug("Cache hit: %s", key)
            return entry.document  # type: ignore[return-value]

        task = self._inflight.get(key)
        if task is None:
            if entry is not None and entry.document is not None:
                logger.debug("Cache hit, but data was stale: %s", key)
            task = self._start_fetch(key, entry)
        else:
            logger.debug("Fetch already in flight, waiting for it: %s", key)

        return await asyncio.shield(task)

    async def get_all(self, keys: Sequence[MetadataKey]) -> dict[MetadataKey, RepoData]:
        """Fetch every key concurrently; fail on the first error.

        Fetches for the other keys keep running after a failure and still
        populate the cache.
        """
        documents = await asyncio.gather(*(self.get_or_fetch(key) for key in keys))
        return dict(zip(keys, documents))

    def _start_fetch(
        self, key: MetadataKey, previous: Optional[MetadataCacheEntry]
    ) -> asyncio.Task[RepoData]:
        # No await between the in-flight check and this registration.
        self._entries[key] = MetadataCacheEntry(
            CacheState.FETCHING,
            document=previous.document if previous else None,
            fetched_at=previous.fetched_at if previous else None,
        )
        task = asyncio.create_task(self._fetch(key, previous), name=f"fetch {key}")
        self._inflight[key] = task
        task.add_done_callback(self._log_outcome)
        return task

    async def _fetch(self, key: MetadataKey, previous: Optional[MetadataCacheEntry]) -> RepoData:
        try:
            async with self._limiter:
                document = await self._fetcher(key.channel, key.platform)
        except BaseException:
            self._entries[key] = previous if previous is not None else _EMPTY
            raise
        else:
            self._entries[key] = MetadataCacheEntry(
                CacheState.FRESH, document=document, fetched_at=self._clock()
            )
            return document
        finally:
            self._inflight.pop(key, None)

    @staticmethod
    def _log_outcome(task: asyncio.Task[RepoData]) -> None:
        # Retrieving the exception here also keeps asyncio from complaining
        # when every waiter was cancelled before the fetch failed.
        if task.cancelled():
            logger.warning("%s was cancelled", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("%s failed: %s", task.get_name(), exc)

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    def gc(self) -> int:
        """Drop entries whose TTL has passed.  Returns how many were removed."""
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.state is not CacheState.FETCHING and not self._is_fresh(entry)
        ]
        for key in expired:
            del self._entries[key]
        logger.debug("GC cleared %d keys from cache", len(expired))
        return len(expired)

    async def aclose(self) -> None:
        """Cancel fetches still in flight and wait for them to finish."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        if tasks:
            logger.info("Cancelled %d in-flight repodata fetch(es)", len(tasks))


async def run_periodic_gc(cache: MetadataCache, interval: float) -> None:
    """Call ``cache.gc()`` every *interval* seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        cache.gc()
