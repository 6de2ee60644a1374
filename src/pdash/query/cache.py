"""In-memory query cache with staleness windows and generation tracking.

Each entry is keyed by ``(resource name, parameter tuple)``. Reads inside the
resource's staleness window are answered from memory; everything else goes
through one shared in-flight fetch per key. Every start, write and
invalidation bumps the entry's generation, and a fetch only applies its
result if its generation is still the entry's latest. A slow, superseded
request therefore never overwrites newer data.

Reads never raise ``FetchError`` into callers. They return a ``QueryState``.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import structlog

from pdash.errors import FetchError
from pdash.query.resources import ResourceSpec
from pdash.records.client import RecordClient

logger = structlog.get_logger()

CacheKey = tuple[str, tuple[Any, ...]]


class QueryStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class QueryState:
    """Snapshot of one cache entry as seen by a reader."""

    key: CacheKey
    status: QueryStatus
    data: Any = None
    error: FetchError | None = None
    updated_at: float | None = None
    is_fetching: bool = False
    is_stale: bool = True

    @property
    def is_loading(self) -> bool:
        return self.status == QueryStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status == QueryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status == QueryStatus.ERROR

    @classmethod
    def idle(cls, key: CacheKey) -> QueryState:
        return cls(key=key, status=QueryStatus.IDLE)


@dataclass
class CacheEntry:
    spec: ResourceSpec
    params: dict[str, Any]
    data: Any = None
    error: FetchError | None = None
    updated_at: float | None = None
    last_access: float = 0.0
    generation: int = 0
    invalidated: bool = False
    task: asyncio.Task[None] | None = field(default=None, repr=False)

    @property
    def status(self) -> QueryStatus:
        if self.task is not None and not self.task.done():
            return QueryStatus.LOADING
        if self.error is not None:
            return QueryStatus.ERROR
        if self.updated_at is not None:
            return QueryStatus.SUCCESS
        return QueryStatus.IDLE


class QueryCache:
    """Per-session cache of record-store resources."""

    def __init__(
        self,
        client: RecordClient,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._clock = clock
        self._sleep = sleep
        self._entries: dict[CacheKey, CacheEntry] = {}
        self._closed = False
        # Superseded fetches still running; kept so close() can cancel them
        self._detached: set[asyncio.Task[None]] = set()

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def closed(self) -> bool:
        return self._closed

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch(self, spec: ResourceSpec, params: Mapping[str, Any], force: bool = False) -> QueryState:
        """Return the entry for ``params``, fetching it when missing or stale.

        Disabled queries never touch the network and report ``idle``.
        ``force`` starts a new fetch even when the entry is fresh or one is
        already in flight; the newer fetch supersedes the older one.
        """
        key = _cache_key(spec, params)
        if not spec.is_enabled(params):
            return QueryState.idle(key)
        if self._closed:
            entry = self._entries.get(key)
            return self._state(entry) if entry else QueryState.idle(key)

        entry = self._entry(spec, params)
        entry.last_access = self._clock()
        if not force and self._is_fresh(entry):
            return self._state(entry)
        if force or entry.task is None:
            self._start(entry)
        await self._settle(entry)
        return self._state(entry)

    def peek(self, spec: ResourceSpec, params: Mapping[str, Any]) -> QueryState:
        """Return the entry for ``params`` without fetching."""
        key = _cache_key(spec, params)
        entry = self._entries.get(key)
        if entry is None or not spec.is_enabled(params):
            return QueryState.idle(key)
        return self._state(entry)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set_data(self, spec: ResourceSpec, params: Mapping[str, Any], data: Any) -> None:
        """Write ``data`` directly, superseding any fetch in flight."""
        entry = self._entry(spec, params)
        entry.generation += 1
        self._detach(entry)
        entry.data = data
        entry.error = None
        entry.invalidated = False
        entry.updated_at = entry.last_access = self._clock()
        logger.debug("query_data_set", resource=spec.name, key=spec.key(params), generation=entry.generation)

    def seed(self, spec: ResourceSpec, params: Mapping[str, Any], data: Any) -> bool:
        """Fill an entry only if nothing is cached or loading for it yet."""
        existing = self._entries.get(_cache_key(spec, params))
        if existing is not None and (existing.updated_at is not None or existing.task is not None):
            return False
        self.set_data(spec, params, data)
        return True

    def invalidate(self, name: str, params_prefix: tuple[Any, ...] = ()) -> int:
        """Mark matching entries stale so the next read refetches.

        Takes effect immediately: fetches already in flight for these
        entries are detached and their results discarded.
        """
        count = 0
        for (entry_name, key), entry in self._entries.items():
            if entry_name != name or key[: len(params_prefix)] != params_prefix:
                continue
            self._invalidate_entry(entry)
            count += 1
        logger.debug("query_invalidated", resource=name, prefix=params_prefix, entries=count)
        return count

    def invalidate_all(self) -> int:
        for entry in self._entries.values():
            self._invalidate_entry(entry)
        logger.debug("query_invalidated_all", entries=len(self._entries))
        return len(self._entries)

    def prune(self) -> int:
        """Drop idle entries unused for longer than their resource's gc window."""
        now = self._clock()
        expired = [
            key
            for key, entry in self._entries.items()
            if entry.task is None and now - entry.last_access > entry.spec.gc_seconds
        ]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.debug("query_entries_pruned", entries=len(expired))
        return len(expired)

    async def close(self) -> None:
        """Stop applying results and cancel every fetch still in flight."""
        self._closed = True
        tasks = [entry.task for entry in self._entries.values() if entry.task is not None]
        tasks.extend(self._detached)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._detached.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _entry(self, spec: ResourceSpec, params: Mapping[str, Any]) -> CacheEntry:
        key = _cache_key(spec, params)
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(spec=spec, params=dict(params), last_access=self._clock())
            self._entries[key] = entry
        return entry

    def _invalidate_entry(self, entry: CacheEntry) -> None:
        entry.invalidated = True
        entry.generation += 1
        self._detach(entry)

    def _detach(self, entry: CacheEntry) -> None:
        """Unhook the entry's fetch; if still running, its result is discarded."""
        task = entry.task
        entry.task = None
        if task is not None and not task.done():
            self._detached.add(task)
            task.add_done_callback(self._detached.discard)

    def _is_fresh(self, entry: CacheEntry) -> bool:
        if entry.updated_at is None or entry.invalidated or entry.error is not None:
            return False
        return self._clock() - entry.updated_at < entry.spec.staleness_seconds

    def _state(self, entry: CacheEntry) -> QueryState:
        return QueryState(
            key=(entry.spec.name, entry.spec.key(entry.params)),
            status=entry.status,
            data=entry.data,
            error=entry.error,
            updated_at=entry.updated_at,
            is_fetching=entry.task is not None and not entry.task.done(),
            is_stale=not self._is_fresh(entry),
        )

    def _start(self, entry: CacheEntry) -> None:
        self._detach(entry)
        entry.generation += 1
        entry.task = asyncio.create_task(
            self._run(entry, entry.generation),
            name=f"query:{entry.spec.name}",
        )

    def _is_current(self, entry: CacheEntry, generation: int) -> bool:
        key = _cache_key(entry.spec, entry.params)
        return not self._closed and entry.generation == generation and self._entries.get(key) is entry

    def _superseded(self, entry: CacheEntry, generation: int) -> bool:
        """Invalidated while ``generation`` was loading, with nothing newer to wait for."""
        key = _cache_key(entry.spec, entry.params)
        return (
            entry.task is None
            and entry.generation != generation
            and not self._closed
            and not self._is_fresh(entry)
            and self._entries.get(key) is entry
        )

    async def _settle(self, entry: CacheEntry) -> None:
        """Wait until the entry's latest fetch has finished.

        A fetch detached by an invalidation is replaced by a new one, so
        readers that were waiting get post-invalidation data.
        """
        while True:
            task = entry.task
            if task is None or task.done():
                return
            generation = entry.generation
            try:
                await asyncio.shield(task)
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
                if self._closed:
                    return
            if self._superseded(entry, generation):
                logger.debug("query_refetch_after_invalidation", resource=entry.spec.name, generation=generation)
                self._start(entry)
            elif entry.task is None or entry.task is task:
                return

    async def _run(self, entry: CacheEntry, generation: int) -> None:
        task = asyncio.current_task()
        spec = entry.spec
        try:
            data = await self._load(spec, entry.params)
        except FetchError as exc:
            if self._is_current(entry, generation):
                entry.error = exc
                logger.info(
                    "query_fetch_failed",
                    resource=spec.name,
                    key=spec.key(entry.params),
                    error_type=type(exc).__name__,
                    status=exc.status,
                    error=exc.message,
                )
            else:
                logger.debug("query_error_discarded", resource=spec.name, generation=generation)
        else:
            if self._is_current(entry, generation):
                entry.data = data
                entry.error = None
                entry.invalidated = False
                entry.updated_at = self._clock()
            else:
                logger.debug(
                    "query_result_discarded",
                    resource=spec.name,
                    generation=generation,
                    latest=entry.generation,
                )
        finally:
            if entry.task is task:
                entry.task = None

    async def _load(self, spec: ResourceSpec, params: Mapping[str, Any]) -> Any:
        """Fetch and normalize one resource, retrying per its policy."""
        path, query = spec.request(params)
        attempt = 0
        while True:
            try:
                payload = await self._client.get_json(path, query)
                return spec.normalize(payload)
            except FetchError as exc:
                if not spec.retry.should_retry(exc, attempt):
                    raise
                delay = spec.retry.delay_for(attempt)
                logger.info(
                    "query_fetch_retry",
                    resource=spec.name,
                    attempt=attempt + 1,
                    delay=delay,
                    error=exc.message,
                )
                await self._sleep(delay)
                attempt += 1


def _cache_key(spec: ResourceSpec, params: Mapping[str, Any]) -> CacheKey:
    return (spec.name, spec.key(params))
