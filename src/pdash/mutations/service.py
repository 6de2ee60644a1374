"""Mutation service: validated writes that keep the query cache coherent.

Every operation validates its payload locally, sends one write to the record
store, and on success either writes the result straight into the cache or
invalidates the entries it makes stale. Failures leave the cache untouched,
queue an error notice, and re-raise. Identical calls made while one is
already in flight share that request.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar
from urllib.parse import quote

import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from pdash.errors import FetchError, ValidationError
from pdash.mutations.notifier import Notifier
from pdash.mutations.schemas import (
    OnboardingUpdate,
    ProfileUpdate,
    RewardClaim,
    SubmissionCreate,
    TeamCreate,
    TeamInvite,
    TeamUpdate,
)
from pdash.query.queries import DashboardQueries
from pdash.query.resources import unwrap
from pdash.records.client import RecordClient
from pdash.records.schemas import Profile

logger = structlog.get_logger()

ModelT = TypeVar("ModelT", bound=BaseModel)

MutationKey = tuple[str, str, str]


def validation_fields(exc: PydanticValidationError) -> dict[str, str]:
    """Flatten pydantic errors into ``{field: message}``."""
    fields: dict[str, str] = {}
    for error in exc.errors():
        name = ".".join(str(part) for part in error["loc"]) or "_"
        fields.setdefault(name, error["msg"].removeprefix("Value error, "))
    return fields


class MutationService:
    """Record-store writes for one dashboard session."""

    def __init__(self, client: RecordClient, queries: DashboardQueries, notifier: Notifier) -> None:
        self._client = client
        self._queries = queries
        self._notifier = notifier
        self._inflight: dict[MutationKey, asyncio.Task[Any]] = {}

    @property
    def in_flight(self) -> int:
        return sum(1 for task in self._inflight.values() if not task.done())

    # ------------------------------------------------------------------
    # Profile and user
    # ------------------------------------------------------------------

    async def update_profile(self, payload: Mapping[str, Any]) -> Profile:
        """PUT a partial profile and write the merged result into the profile cache."""
        update = self._validate(ProfileUpdate, payload, "profile")
        body = update.to_payload(partial=True)

        def apply(result: Any) -> Profile:
            profile = self._merge_profile(update, result)
            self._queries.set("profile", profile)
            return profile

        return await self._execute(
            "update_profile",
            update.contact_id or "me",
            body,
            lambda: self._client.send_json("PUT", "/api/user/profile", body),
            apply=apply,
            success="Profile updated successfully",
            failure="Failed to update profile",
        )

    def _merge_profile(self, update: ProfileUpdate, result: Any) -> Profile:
        cached = self._queries.peek("profile").data
        merged: dict[str, Any] = cached.model_dump() if isinstance(cached, Profile) else {}
        merged.update(update.model_dump(exclude_unset=True))
        server = unwrap(result, ("profile",))
        if isinstance(server, dict) and server:
            try:
                merged.update(Profile.model_validate(server).model_dump(exclude_unset=True))
            except PydanticValidationError:
                logger.warning("profile_response_unrecognized", keys=sorted(server))
        return Profile.model_validate(merged)

    async def update_metadata(self, metadata: Mapping[str, Any]) -> dict[str, Any]:
        """POST user metadata and write the stored result into the metadata cache."""
        if not isinstance(metadata, Mapping) or not metadata:
            raise self._reject("metadata", {"_": "Metadata must be a non-empty object"})
        body = dict(metadata)

        def apply(result: Any) -> dict[str, Any]:
            if isinstance(result, dict) and result:
                stored = result
            else:
                cached = self._queries.peek("user_metadata").data
                stored = {**(cached if isinstance(cached, dict) else {}), **body}
            self._queries.set("user_metadata", stored)
            return stored

        return await self._execute(
            "update_metadata",
            "me",
            body,
            lambda: self._client.send_json("POST", "/api/user/metadata", body),
            apply=apply,
            success="User preferences updated",
            failure="Failed to update preferences",
        )

    async def update_onboarding_status(self, completed: Any) -> Any:
        update = self._validate(OnboardingUpdate, {"completed": completed}, "onboarding")
        body = update.to_payload()

        def apply(result: Any) -> Any:
            self._queries.invalidate("user_metadata")
            self._queries.invalidate("profile")
            return result

        return await self._execute(
            "update_onboarding_status",
            "me",
            body,
            lambda: self._client.send_json("POST", "/api/user/onboarding-completed", body),
            apply=apply,
            success="Onboarding progress updated",
            failure="Failed to update onboarding progress",
        )

    # ------------------------------------------------------------------
    # Teams
    # ------------------------------------------------------------------

    async def update_team(self, team_id: str, payload: Mapping[str, Any]) -> Any:
        """PATCH a team, then invalidate the team list and its cohort links."""
        self._require_id("team", team_id, "teamId")
        update = self._validate(TeamUpdate, payload, "team")
        body = update.to_payload(partial=True)

        def apply(result: Any) -> Any:
            self._queries.invalidate("teams")
            self._queries.invalidate("team_cohorts", team_id)
            return result

        return await self._execute(
            "update_team",
            team_id,
            body,
            lambda: self._client.send_json("PATCH", f"/api/teams/{quote(team_id, safe='')}", body),
            apply=apply,
            success="Team updated successfully",
            failure="Failed to update team",
        )

    async def invite_member(self, team_id: str, payload: Mapping[str, Any]) -> Any:
        self._require_id("invite", team_id, "teamId")
        invite = self._validate(TeamInvite, payload, "invite")
        body = invite.to_payload()

        return await self._execute(
            "invite_member",
            team_id,
            body,
            lambda: self._client.send_json("POST", f"/api/teams/{quote(team_id, safe='')}/invite", body),
            apply=self._invalidating("teams"),
            success=f"Invitation sent to {invite.first_name} {invite.last_name}",
            failure="Failed to send invitation",
        )

    async def create_team(self, payload: Mapping[str, Any]) -> Any:
        """POST a new team, linked to a cohort when one is given."""
        team = self._validate(TeamCreate, payload, "team")
        body = team.to_payload(exclude={"cohort_id"})
        params = {"cohortId": team.cohort_id} if team.cohort_id else None

        return await self._execute(
            "create_team",
            team.cohort_id or "-",
            body,
            lambda: self._client.send_json("POST", "/api/teams/create", body, params=params),
            apply=self._invalidating("teams"),
            success="Team created successfully",
            failure="Failed to create team",
        )

    # ------------------------------------------------------------------
    # Submissions and rewards
    # ------------------------------------------------------------------

    async def create_submission(self, payload: Mapping[str, Any]) -> Any:
        submission = self._validate(SubmissionCreate, payload, "submission")
        body = submission.to_payload()

        def apply(result: Any) -> Any:
            # Covers the team-wide entry and every per-milestone entry
            self._queries.invalidate("team_submissions", submission.team_id)
            return result

        return await self._execute(
            "create_submission",
            f"{submission.team_id}:{submission.milestone_id}",
            body,
            lambda: self._client.send_json("POST", "/api/teams/submissions", body),
            apply=apply,
            success="Submission created successfully",
            failure="Failed to create submission",
        )

    async def claim_reward(self, payload: Mapping[str, Any]) -> Any:
        claim = self._validate(RewardClaim, payload, "reward claim")
        body = claim.to_payload()

        return await self._execute(
            "claim_reward",
            claim.reward_id,
            body,
            lambda: self._client.send_json("POST", "/api/rewards/claim", body),
            # Points balances live on teams
            apply=self._invalidating("claimed_rewards", "rewards", "teams"),
            success="Reward claimed successfully",
            failure="Failed to claim reward",
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _invalidating(self, *names: str) -> Callable[[Any], Any]:
        def apply(result: Any) -> Any:
            for name in names:
                self._queries.invalidate(name)
            return result

        return apply

    def _validate(self, model: type[ModelT], payload: Any, what: str) -> ModelT:
        try:
            return model.model_validate(payload)
        except PydanticValidationError as exc:
            raise self._reject(what, validation_fields(exc)) from exc

    def _require_id(self, what: str, value: str | None, field: str) -> None:
        if not value or not str(value).strip():
            raise self._reject(what, {field: "is required"})

    def _reject(self, what: str, fields: dict[str, str]) -> ValidationError:
        error = ValidationError(f"Invalid {what} request", status=None, fields=fields)
        field, message = next(iter(fields.items()))
        self._notifier.error(message if field == "_" else f"{field}: {message}")
        logger.info("mutation_rejected", what=what, fields=fields)
        return error

    async def _execute(
        self,
        kind: str,
        entity: str,
        body: Any,
        call: Callable[[], Awaitable[Any]],
        *,
        apply: Callable[[Any], Any],
        success: str,
        failure: str,
    ) -> Any:
        key: MutationKey = (kind, entity, json.dumps(body, sort_keys=True, default=str))
        task = self._inflight.get(key)
        if task is None or task.done():
            task = asyncio.create_task(self._perform(kind, entity, call, apply, success, failure))
            self._inflight[key] = task
            task.add_done_callback(lambda done: self._forget(key, done))
        else:
            logger.info("mutation_deduplicated", kind=kind, entity=entity)
        return await asyncio.shield(task)

    def _forget(self, key: MutationKey, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the outcome retrieved even when every caller was cancelled
        if not task.cancelled():
            task.exception()

    async def _perform(
        self,
        kind: str,
        entity: str,
        call: Callable[[], Awaitable[Any]],
        apply: Callable[[Any], Any],
        success: str,
        failure: str,
    ) -> Any:
        try:
            result = await call()
        except FetchError as exc:
            self._notifier.error(exc.server_message or failure)
            logger.warning(
                "mutation_failed",
                kind=kind,
                entity=entity,
                error_type=type(exc).__name__,
                status=exc.status,
                error=exc.message,
            )
            raise
        outcome = apply(result)
        self._notifier.success(success)
        logger.info("mutation_succeeded", kind=kind, entity=entity)
        return outcome
