"""Shared test fixtures."""

from __future__ import annotations

import asyncio
import inspect
from collections import Counter
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from pdash.compose.composer import ViewComposer
from pdash.config import Settings
from pdash.mutations.notifier import Notifier
from pdash.mutations.service import MutationService
from pdash.query.cache import QueryCache
from pdash.query.queries import DashboardQueries
from pdash.query.resources import build_resource_table
from pdash.records.client import RecordClient

BASE_URL = "http://records.test"
FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)

Responder = Any


class FakeRecordStore:
    """Scripted record-store backend for ``httpx.MockTransport``.

    Each route holds a list of responders used in order; the last one repeats.
    A responder is a JSON body (served with 200), an ``httpx.Response``, or a
    callable (sync or async) taking the request. Unknown routes answer 404.
    """

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], list[Responder]] = {}
        self.calls: Counter[tuple[str, str]] = Counter()
        self.requests: list[httpx.Request] = []

    def on(self, method: str, path: str, *responders: Responder) -> None:
        self.routes[(method.upper(), path)] = list(responders)

    def get(self, path: str, *responders: Responder) -> None:
        self.on("GET", path, *responders)

    def count(self, method: str, path: str) -> int:
        return self.calls[(method.upper(), path)]

    def gets(self, path: str) -> int:
        return self.count("GET", path)

    @property
    def total_calls(self) -> int:
        return sum(self.calls.values())

    async def handler(self, request: httpx.Request) -> httpx.Response:
        key = (request.method, request.url.path)
        self.calls[key] += 1
        self.requests.append(request)
        responders = self.routes.get(key)
        if not responders:
            return httpx.Response(404, json={"error": "Not found"})
        responder = responders[min(self.calls[key], len(responders)) - 1]
        if callable(responder):
            responder = responder(request)
            if inspect.isawaitable(responder):
                responder = await responder
        if isinstance(responder, httpx.Response):
            # Fresh copy so a repeated responder can be served more than once
            return httpx.Response(responder.status_code, headers=responder.headers, content=responder.content)
        return httpx.Response(200, json=responder)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


class FakeClock:
    """Monotonic clock the test moves by hand."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def scenario_participation(
    cohort_id: str = "c1",
    *,
    current: Any = True,
    initiative_id: str | None = None,
    initiative_name: str = "Design Thinking",
    participation_type: str = "Team",
    team_id: str | None = None,
) -> dict[str, Any]:
    initiative: dict[str, Any] = {"name": initiative_name, "Participation Type": participation_type}
    if initiative_id:
        initiative["id"] = initiative_id
    record: dict[str, Any] = {
        "cohort": {"id": cohort_id, "Current Cohort": current, "initiativeDetails": initiative},
    }
    if team_id:
        record["teamId"] = team_id
    return record


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        record_api_base_url=BASE_URL,
        prefetch_submissions=False,
        retry_base_delay_seconds=1.0,
        retry_max_delay_seconds=30.0,
    )


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> list[float]:
    """Delays requested through ``fake_sleep``."""
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]) -> Callable[[float], Any]:
    async def sleep(delay: float) -> None:
        sleeps.append(delay)
        await asyncio.sleep(0)

    return sleep


@pytest_asyncio.fixture
async def record_client(store: FakeRecordStore) -> AsyncGenerator[RecordClient, None]:
    client = RecordClient(BASE_URL, headers={"Authorization": "Bearer test-token"}, transport=store.transport)
    yield client
    await client.aclose()


@pytest_asyncio.fixture
async def cache(
    record_client: RecordClient,
    clock: FakeClock,
    fake_sleep: Callable[[float], Any],
) -> AsyncGenerator[QueryCache, None]:
    query_cache = QueryCache(record_client, clock=clock, sleep=fake_sleep)
    yield query_cache
    await query_cache.close()


@pytest.fixture
def queries(cache: QueryCache, settings: Settings) -> DashboardQueries:
    return DashboardQueries(cache, build_resource_table(settings))


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(max_items=20)


@pytest.fixture
def mutations(record_client: RecordClient, queries: DashboardQueries, notifier: Notifier) -> MutationService:
    return MutationService(record_client, queries, notifier)


@pytest_asyncio.fixture
async def composer(
    queries: DashboardQueries,
    settings: Settings,
    fake_sleep: Callable[[float], Any],
) -> AsyncGenerator[ViewComposer, None]:
    view_composer = ViewComposer(queries, settings, now=lambda: FIXED_NOW, sleep=fake_sleep)
    yield view_composer
    await view_composer.close()


@pytest.fixture
def program_store(store: FakeRecordStore) -> FakeRecordStore:
    """One current team-based cohort with a linked team and no milestones."""
    store.get("/api/user/profile", {"profile": {"contactId": "con1", "firstName": "Grace", "lastName": "Hopper"}})
    store.get("/api/teams", {"teams": [{"id": "t1", "cohortIds": ["c1"], "name": "Squad"}]})
    store.get("/api/user/check-application", {"applications": []})
    store.get("/api/user/participation", {"participation": [scenario_participation()]})
    store.get("/api/cohorts/c1/milestones", {"milestones": []})
    return store


@pytest_asyncio.fixture
async def client(settings: Settings, store: FakeRecordStore) -> AsyncGenerator[AsyncClient, None]:
    """Dashboard service client; record-store traffic goes to ``store``."""
    from pdash.main import create_app
    from pdash.session import close_sessions, init_sessions

    await init_sessions(settings, transport=store.transport)
    app = create_app()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    await close_sessions()


@pytest_asyncio.fixture
async def authed_client(client: AsyncClient) -> AsyncGenerator[AsyncClient, None]:
    """Client carrying a Bearer credential for the record store."""
    client.headers["Authorization"] = "Bearer token-a"
    yield client
