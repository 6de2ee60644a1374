"""Resource table: unwrapping, request building, enablement and retry policy."""

from __future__ import annotations

import pytest

from pdash.config import Settings
from pdash.errors import AuthError, FetchError, ParseError, RateLimitError, TransientServerError
from pdash.query.resources import (
    CLAIMED_REWARDS,
    INSTITUTION_LOOKUP,
    MILESTONES,
    POINT_TRANSACTIONS,
    PROFILE,
    RESOURCES,
    TEAM_SUBMISSIONS,
    TEAMS,
    USER_METADATA,
    RetryPolicy,
    build_resource_table,
)
from pdash.records.schemas import Milestone, Profile, Team


class TestUnwrap:
    def test_wrapped_list(self) -> None:
        teams = TEAMS.normalize({"teams": [{"id": "t1", "cohortIds": ["c1"]}]})
        assert [team.id for team in teams] == ["t1"]
        assert isinstance(teams[0], Team)
        assert teams[0].cohort_ids == ["c1"]

    def test_bare_list(self) -> None:
        teams = TEAMS.normalize([{"id": "t1"}, {"id": "t2"}])
        assert [team.id for team in teams] == ["t1", "t2"]

    def test_wrapped_and_bare_object(self) -> None:
        wrapped = PROFILE.normalize({"profile": {"firstName": "Ada"}})
        bare = PROFILE.normalize({"firstName": "Ada"})
        assert isinstance(wrapped, Profile)
        assert wrapped.first_name == bare.first_name == "Ada"

    def test_null_list_is_empty(self) -> None:
        assert MILESTONES.normalize({"milestones": None}) == []

    def test_claimed_rewards_key(self) -> None:
        claimed = CLAIMED_REWARDS.normalize({"claimedRewards": [{"id": "cr1", "rewardId": ["r1"]}]})
        assert claimed[0].reward_id == "r1"

    def test_metadata_kept_raw(self) -> None:
        assert USER_METADATA.normalize({"onboarding": {"done": True}}) == {"onboarding": {"done": True}}

    def test_non_list_payload_is_parse_error(self) -> None:
        with pytest.raises(ParseError):
            TEAMS.normalize({"teams": "nope"})

    def test_invalid_record_is_parse_error(self) -> None:
        with pytest.raises(ParseError):
            TEAMS.normalize([{"name": "no id"}])

    def test_milestone_fields_normalized(self) -> None:
        [milestone] = MILESTONES.normalize(
            [{"id": "m1", "Number": "2", "dueDate": "2026-04-01", "status": "Completed"}]
        )
        assert isinstance(milestone, Milestone)
        assert milestone.number == 2
        assert milestone.due_date is not None and milestone.due_date.tzinfo is not None
        assert milestone.status.value == "completed"
        assert milestone.provenance.value == "remote"

    def test_submission_meta_error(self) -> None:
        payload = {"submissions": [], "meta": {"error": True, "errorCode": "TABLE_MISSING", "errorMessage": "gone"}}
        with pytest.raises(FetchError, match="TABLE_MISSING"):
            TEAM_SUBMISSIONS.normalize(payload)


class TestRequest:
    def test_path_parameter(self) -> None:
        assert MILESTONES.request({"cohort_id": "c1"}) == ("/api/cohorts/c1/milestones", {})

    def test_path_parameter_escaped(self) -> None:
        path, _ = MILESTONES.request({"cohort_id": "a/b"})
        assert path == "/api/cohorts/a%2Fb/milestones"

    def test_query_parameters(self) -> None:
        path, query = TEAM_SUBMISSIONS.request({"team_id": "t1", "milestone_id": "m1"})
        assert path == "/api/teams/t1/submissions"
        assert query == {"milestoneId": "m1"}

    def test_missing_optional_query_omitted(self) -> None:
        _, query = TEAM_SUBMISSIONS.request({"team_id": "t1", "milestone_id": None})
        assert query == {}

    def test_institution_query_name(self) -> None:
        assert INSTITUTION_LOOKUP.request({"query": "Stanford"}) == ("/api/institution-lookup", {"q": "Stanford"})


class TestEnabled:
    def test_path_parameter_required(self) -> None:
        assert MILESTONES.is_enabled({"cohort_id": None}) is False
        assert MILESTONES.is_enabled({"cohort_id": "c1"}) is True

    @pytest.mark.parametrize(("query", "enabled"), [(None, False), ("", False), ("St", False), ("Sta", True)])
    def test_institution_lookup_needs_three_characters(self, query: str | None, enabled: bool) -> None:
        assert INSTITUTION_LOOKUP.is_enabled({"query": query}) is enabled

    def test_points_need_contact_or_team(self) -> None:
        assert POINT_TRANSACTIONS.is_enabled({"contact_id": None, "team_id": None}) is False
        assert POINT_TRANSACTIONS.is_enabled({"contact_id": "con1", "team_id": None}) is True
        assert POINT_TRANSACTIONS.is_enabled({"contact_id": None, "team_id": "t1"}) is True


class TestRetryPolicy:
    def test_transient_retried_until_budget(self) -> None:
        policy = RetryPolicy(retries=2)
        error = TransientServerError("down", 503)
        assert policy.should_retry(error, 0) is True
        assert policy.should_retry(error, 1) is True
        assert policy.should_retry(error, 2) is False

    @pytest.mark.parametrize("error", [AuthError("x", 401), RateLimitError("x"), ParseError("x"), FetchError("x", 403)])
    def test_client_errors_never_retried(self, error: FetchError) -> None:
        assert RetryPolicy().should_retry(error, 0) is False

    def test_backoff_doubles_and_caps(self) -> None:
        policy = RetryPolicy(base_delay=1.0, max_delay=3.0)
        assert [policy.delay_for(attempt) for attempt in range(4)] == [1.0, 2.0, 3.0, 3.0]


class TestResourceTable:
    def test_every_resource_listed(self) -> None:
        assert set(RESOURCES) == {
            "profile",
            "teams",
            "applications",
            "participation",
            "milestones",
            "team_submissions",
            "team_cohorts",
            "majors",
            "user_metadata",
            "institution_lookup",
            "initiative_conflicts",
            "point_transactions",
            "achievements",
            "rewards",
            "claimed_rewards",
        }

    def test_staleness_windows(self) -> None:
        assert RESOURCES["profile"].staleness_seconds == 300
        assert RESOURCES["participation"].staleness_seconds == 600
        assert RESOURCES["milestones"].staleness_seconds == 900
        assert RESOURCES["team_submissions"].staleness_seconds == 180
        assert RESOURCES["majors"].staleness_seconds == 3600

    def test_lookup_retry_budgets(self) -> None:
        assert RESOURCES["institution_lookup"].retry.retries == 1
        assert RESOURCES["initiative_conflicts"].retry.retries == 1
        assert RESOURCES["teams"].retry.retries == 2

    def test_settings_applied(self) -> None:
        settings = Settings(
            _env_file=None,
            staleness_overrides={"teams": 60},
            retry_base_delay_seconds=0.25,
            retry_max_delay_seconds=2.0,
        )
        table = build_resource_table(settings)
        assert table["teams"].staleness_seconds == 60
        assert table["profile"].staleness_seconds == 300
        assert table["institution_lookup"].retry.retries == 1
        assert table["institution_lookup"].retry.base_delay == 0.25
        assert table["teams"].retry.max_delay == 2.0
