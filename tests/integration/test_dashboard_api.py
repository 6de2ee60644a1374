"""Integration tests: dashboard view and selection endpoints."""

from __future__ import annotations

import httpx
import pytest
from httpx import AsyncClient

from conftest import FakeRecordStore, scenario_participation


@pytest.fixture
def two_programs(program_store: FakeRecordStore) -> FakeRecordStore:
    """A current team program (i1/c1) and a past individual one (i2/c2) with real milestones."""
    program_store.get(
        "/api/user/participation",
        {
            "participation": [
                scenario_participation("c1", initiative_id="i1"),
                scenario_participation(
                    "c2",
                    current=False,
                    initiative_id="i2",
                    initiative_name="Robotics",
                    participation_type="Individual",
                ),
            ]
        },
    )
    program_store.get(
        "/api/cohorts/c2/milestones",
        {
            "milestones": [
                {"id": "m2", "name": "Prototype", "number": 2},
                {"id": "m1", "name": "Kickoff", "number": 1},
            ]
        },
    )
    return program_store


class TestProgramView:
    """Integration: composed program view."""

    @pytest.mark.asyncio
    async def test_requires_credential(self, client: AsyncClient, store: FakeRecordStore) -> None:
        response = await client.get("/api/v1/dashboard/view")
        assert response.status_code == 401
        assert response.json() == {"detail": "Please log in"}
        assert store.total_calls == 0

    @pytest.mark.asyncio
    async def test_view_with_fallback_milestones(
        self, authed_client: AsyncClient, program_store: FakeRecordStore
    ) -> None:
        response = await authed_client.get("/api/v1/dashboard/view")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["program_id"] == "c1"
        assert data["initiative_name"] == "Design Thinking"
        assert data["is_team_based"] is True
        assert data["team"]["id"] == "t1"
        assert data["team"]["cohortIds"] == ["c1"]
        assert data["profile"]["firstName"] == "Grace"
        assert data["milestones"]["source"] == "fallback"
        assert len(data["milestones"]["items"]) == 5
        assert data["degraded_sources"] == []

    @pytest.mark.asyncio
    async def test_bearer_forwarded_to_record_store(
        self, authed_client: AsyncClient, program_store: FakeRecordStore
    ) -> None:
        await authed_client.get("/api/v1/dashboard/view")
        assert {r.headers["authorization"] for r in program_store.requests} == {"Bearer token-a"}

    @pytest.mark.asyncio
    async def test_session_cookie_forwarded(self, client: AsyncClient, program_store: FakeRecordStore) -> None:
        response = await client.get("/api/v1/dashboard/view", headers={"Cookie": "appSession=cookie-1"})
        assert response.status_code == 200
        assert program_store.requests[0].headers["cookie"] == "appSession=cookie-1"

    @pytest.mark.asyncio
    async def test_repeat_view_served_from_cache(
        self, authed_client: AsyncClient, program_store: FakeRecordStore
    ) -> None:
        await authed_client.get("/api/v1/dashboard/view")
        calls = program_store.total_calls
        await authed_client.get("/api/v1/dashboard/view")
        assert program_store.total_calls == calls

    @pytest.mark.asyncio
    async def test_users_do_not_share_cache(self, client: AsyncClient, program_store: FakeRecordStore) -> None:
        await client.get("/api/v1/dashboard/view", headers={"Authorization": "Bearer token-a"})
        await client.get("/api/v1/dashboard/view", headers={"Authorization": "Bearer token-b"})
        assert program_store.gets("/api/user/profile") == 2

    @pytest.mark.asyncio
    async def test_upstream_auth_failure(self, authed_client: AsyncClient, program_store: FakeRecordStore) -> None:
        program_store.get("/api/user/profile", httpx.Response(401, json={"error": "jwt expired"}))
        response = await authed_client.get("/api/v1/dashboard/view")
        assert response.status_code == 401
        assert response.json() == {"detail": "Please log in."}

    @pytest.mark.asyncio
    async def test_degraded_source_still_renders(
        self, authed_client: AsyncClient, program_store: FakeRecordStore
    ) -> None:
        program_store.get("/api/user/check-application", httpx.Response(400, json={"error": "bad"}))
        response = await authed_client.get("/api/v1/dashboard/view")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ready"
        assert data["degraded_sources"] == ["applications"]
        assert data["applications"] == []

    @pytest.mark.asyncio
    async def test_not_participating(self, authed_client: AsyncClient, program_store: FakeRecordStore) -> None:
        program_store.get("/api/user/participation", httpx.Response(404))
        response = await authed_client.get("/api/v1/dashboard/view")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "not_participating"
        assert data["has_participation"] is False
        assert data["degraded_sources"] == []

    @pytest.mark.asyncio
    async def test_program_query_param(self, authed_client: AsyncClient, two_programs: FakeRecordStore) -> None:
        response = await authed_client.get("/api/v1/dashboard/view", params={"program_id": "i2"})
        data = response.json()
        assert data["program_id"] == "i2"
        assert data["is_team_based"] is False
        assert data["milestones"]["source"] == "remote"
        assert [m["id"] for m in data["milestones"]["items"]] == ["m1", "m2"]


class TestSelection:
    """Integration: active program and team selection."""

    @pytest.mark.asyncio
    async def test_programs_listed(self, authed_client: AsyncClient, two_programs: FakeRecordStore) -> None:
        response = await authed_client.get("/api/v1/dashboard/programs")
        assert response.status_code == 200
        data = response.json()
        assert data["active_program_id"] is None
        assert [(p["id"], p["name"], p["is_team_based"]) for p in data["programs"]] == [
            ("i1", "Design Thinking", True),
            ("i2", "Robotics", False),
        ]

    @pytest.mark.asyncio
    async def test_active_program_persists(self, authed_client: AsyncClient, two_programs: FakeRecordStore) -> None:
        response = await authed_client.put("/api/v1/dashboard/active-program", json={"program_id": "i2"})
        assert response.status_code == 200
        assert response.json()["program_id"] == "i2"

        view = (await authed_client.get("/api/v1/dashboard/view")).json()
        assert view["program_id"] == "i2"
        programs = (await authed_client.get("/api/v1/dashboard/programs")).json()
        assert programs["active_program_id"] == "i2"

    @pytest.mark.asyncio
    async def test_team_switch(self, authed_client: AsyncClient, program_store: FakeRecordStore) -> None:
        program_store.get(
            "/api/teams",
            {"teams": [{"id": "t1", "cohortIds": ["c1"]}, {"id": "t2", "cohortIds": ["c1"]}]},
        )
        first = (await authed_client.get("/api/v1/dashboard/view")).json()
        assert first["team"]["id"] == "t1"
        assert first["user_has_multiple_teams"] is True

        response = await authed_client.put("/api/v1/dashboard/programs/c1/team", json={"team_id": "t2"})
        assert response.status_code == 200
        assert response.json()["team"]["id"] == "t2"

        cleared = await authed_client.put("/api/v1/dashboard/programs/c1/team", json={"team_id": None})
        assert cleared.json()["team"]["id"] == "t1"


class TestRefreshAndNotifications:
    @pytest.mark.asyncio
    async def test_refresh_profile(self, authed_client: AsyncClient, program_store: FakeRecordStore) -> None:
        await authed_client.get("/api/v1/dashboard/view")
        response = await authed_client.post("/api/v1/dashboard/refresh", json={"scope": "profile"})
        assert response.status_code == 200
        assert response.json() == {"scope": "profile", "invalidated": 1}

        await authed_client.get("/api/v1/dashboard/view")
        assert program_store.gets("/api/user/profile") == 2
        assert program_store.gets("/api/teams") == 1

    @pytest.mark.asyncio
    async def test_refresh_all(self, authed_client: AsyncClient, program_store: FakeRecordStore) -> None:
        await authed_client.get("/api/v1/dashboard/view")
        response = await authed_client.post("/api/v1/dashboard/refresh", json={})
        assert response.json() == {"scope": "all", "invalidated": 5}

    @pytest.mark.asyncio
    async def test_refresh_unknown_scope(self, authed_client: AsyncClient) -> None:
        response = await authed_client.post("/api/v1/dashboard/refresh", json={"scope": "everything"})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_notifications_drained(self, authed_client: AsyncClient, store: FakeRecordStore) -> None:
        store.on("PUT", "/api/user/profile", {"success": True})
        await authed_client.put("/api/v1/profile", json={"firstName": "Ada"})

        response = await authed_client.get("/api/v1/dashboard/notifications")
        assert response.status_code == 200
        [notice] = response.json()
        assert notice["level"] == "success"
        assert notice["message"] == "Profile updated successfully"

        again = await authed_client.get("/api/v1/dashboard/notifications")
        assert again.json() == []
