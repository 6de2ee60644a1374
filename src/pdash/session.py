"""Per-user dashboard sessions.

Each identity-provider credential gets its own record client, query cache,
composer and mutation service, so cached data never leaks between users.
Sessions idle past ``session_idle_seconds`` are closed on the next lookup.
"""

from __future__ import annotations

import hashlib
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import structlog

from pdash.compose.composer import ViewComposer
from pdash.config import Settings
from pdash.mutations.notifier import Notifier
from pdash.mutations.service import MutationService
from pdash.query.cache import QueryCache
from pdash.query.queries import DashboardQueries
from pdash.query.resources import build_resource_table
from pdash.records.client import RecordClient

logger = structlog.get_logger()


@dataclass(frozen=True)
class Credential:
    """The caller's credential, forwarded unchanged to the record store."""

    kind: str  # "bearer" or "cookie"
    value: str

    def headers(self, cookie_name: str) -> dict[str, str]:
        if self.kind == "bearer":
            return {"Authorization": f"Bearer {self.value}"}
        return {"Cookie": f"{cookie_name}={self.value}"}

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(f"{self.kind}:{self.value}".encode()).hexdigest()


@dataclass
class DashboardSession:
    key: str
    client: RecordClient
    cache: QueryCache
    queries: DashboardQueries
    composer: ViewComposer
    mutations: MutationService
    notifier: Notifier
    last_seen: float

    async def close(self) -> None:
        await self.composer.close()
        await self.cache.close()
        await self.client.aclose()


def build_session(
    settings: Settings,
    credential: Credential,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> DashboardSession:
    client = RecordClient(
        settings.record_api_base_url,
        headers=credential.headers(settings.session_cookie_name),
        timeout=settings.request_timeout_seconds,
        transport=transport,
    )
    cache = QueryCache(client, clock=clock)
    queries = DashboardQueries(cache, build_resource_table(settings))
    notifier = Notifier(settings.notification_buffer_size)
    return DashboardSession(
        key=credential.fingerprint,
        client=client,
        cache=cache,
        queries=queries,
        composer=ViewComposer(queries, settings),
        mutations=MutationService(client, queries, notifier),
        notifier=notifier,
        last_seen=clock(),
    )


class SessionRegistry:
    """Dashboard sessions keyed by credential fingerprint."""

    def __init__(
        self,
        settings: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._transport = transport
        self._clock = clock
        self._sessions: dict[str, DashboardSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def get(self, credential: Credential) -> DashboardSession:
        """Return the caller's session, creating it on first use."""
        await self.prune_idle()
        session = self._sessions.get(credential.fingerprint)
        if session is None:
            session = build_session(self._settings, credential, transport=self._transport, clock=self._clock)
            self._sessions[session.key] = session
            logger.info("session_created", session=session.key[:12], sessions=len(self._sessions))
        session.last_seen = self._clock()
        session.cache.prune()
        return session

    async def prune_idle(self) -> int:
        now = self._clock()
        idle = [
            key
            for key, session in self._sessions.items()
            if now - session.last_seen > self._settings.session_idle_seconds
        ]
        for key in idle:
            session = self._sessions.pop(key)
            await session.close()
            logger.info("session_expired", session=key[:12])
        return len(idle)

    async def close(self) -> None:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            await session.close()


_registry: SessionRegistry | None = None


async def init_sessions(settings: Settings, transport: httpx.AsyncBaseTransport | None = None) -> None:
    """Initialize the session registry."""
    global _registry  # noqa: PLW0603
    _registry = SessionRegistry(settings, transport=transport)


async def close_sessions() -> None:
    """Close every session and drop the registry."""
    global _registry  # noqa: PLW0603
    if _registry:
        await _registry.close()
        _registry = None


def get_sessions() -> SessionRegistry:
    """Get the session registry."""
    if _registry is None:
        msg = "Sessions not initialized. Call init_sessions() first."
        raise RuntimeError(msg)
    return _registry
