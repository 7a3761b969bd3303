from __future__ import annotations

import allure
import pytest

from crosssell_tasks.generation.errors import ValidationError
from crosssell_tasks.generation.models import (
    CreatedTaskLink,
    GenerateTasksRequest,
    GenerationOptions,
    GenerationResult,
    LinkFailure,
    PriorityTier,
    TaskPriority,
)

pytestmark = [
    allure.epic("Task Generation"),
    allure.feature("Request & Response"),
]


def test_payload_defaults() -> None:
    request = GenerateTasksRequest.from_payload({"tenant_scope": "a-1", "created_by": "agent-7"})

    assert request.tier_filter == (PriorityTier.HOT, PriorityTier.HIGH)
    assert request.opportunity_ids == ()
    assert request.max_opportunities is None
    assert request.options == GenerationOptions()


def test_payload_is_fully_parsed() -> None:
    request = GenerateTasksRequest.from_payload(
        {
            "created_by": "agent-7",
            "opportunity_ids": ["opp-1", "opp-2"],
            "tier_filter": ["medium", "LOW", "low"],
            "max_opportunities": 5,
            "options": {
                "auto_assign_to": "agent-9",
                "include_talking_points_in_notes": False,
                "set_due_date_to_renewal": False,
                "due_date_days_before_renewal": 7,
                "create_subtasks": False,
                "priority_mapping": {"hot": "high", "LOW": "Medium"},
            },
        },
        tenant_scope="a-1",
    )

    assert request.tenant_scope == "a-1"
    assert request.opportunity_ids == ("opp-1", "opp-2")
    assert request.tier_filter == (PriorityTier.MEDIUM, PriorityTier.LOW)
    assert request.max_opportunities == 5
    assert request.options == GenerationOptions(
        auto_assign_to="agent-9",
        include_talking_points_in_notes=False,
        set_due_date_to_renewal=False,
        due_date_days_before_renewal=7,
        create_subtasks=False,
        priority_mapping={"HOT": TaskPriority.HIGH, "LOW": TaskPriority.MEDIUM},
    )


def test_empty_tier_filter_is_kept_as_every_tier() -> None:
    request = GenerateTasksRequest.from_payload(
        {"tenant_scope": "a-1", "created_by": "agent-7", "tier_filter": []},
    )

    assert request.tier_filter == ()
    assert request.selection_criteria(limit=10).tier_filter == ()


@pytest.mark.parametrize(
    ("payload", "message"),
    [
        ({"tenant_scope": "a-1"}, "created_by is required"),
        ({"created_by": "agent-7"}, "tenant_scope is required"),
        ({"tenant_scope": "a-1", "created_by": "x", "tier_filter": ["WARM"]}, "unknown priority"),
        ({"tenant_scope": "a-1", "created_by": "x", "max_opportunities": 0}, "positive integer"),
        ({"tenant_scope": "a-1", "created_by": "x", "max_opportunities": "5"}, "integer"),
        ({"tenant_scope": "a-1", "created_by": "x", "opportunity_ids": "opp-1"}, "list of strings"),
        (
            {"tenant_scope": "a-1", "created_by": "x", "options": {"create_subtasks": "yes"}},
            "create_subtasks must be a boolean",
        ),
        (
            {
                "tenant_scope": "a-1",
                "created_by": "x",
                "options": {"due_date_days_before_renewal": -2},
            },
            "due_date_days_before_renewal must be >= 0",
        ),
        (
            {
                "tenant_scope": "a-1",
                "created_by": "x",
                "options": {"due_date_days_before_renewal": 1_000_000},
            },
            "due_date_days_before_renewal must be <= 3650",
        ),
        (
            {
                "tenant_scope": "a-1",
                "created_by": "x",
                "options": {"priority_mapping": {"HOT": "critical"}},
            },
            "priority_mapping has invalid entry",
        ),
    ],
)
def test_malformed_payloads_raise_validation_error(payload: dict, message: str) -> None:
    with pytest.raises(ValidationError, match=message) as error:
        GenerateTasksRequest.from_payload(payload)

    assert error.value.code == "validation_error"


def test_selection_criteria_carries_tier_values_and_limit() -> None:
    request = GenerateTasksRequest(tenant_scope="a-1", created_by="agent-7")

    criteria = request.selection_criteria(limit=7)

    assert criteria.tenant_scope == "a-1"
    assert criteria.tier_filter == ("HOT", "HIGH")
    assert criteria.limit == 7


def test_result_payload_includes_errors_only_when_present() -> None:
    link = CreatedTaskLink(task_id="t-1", opportunity_id="opp-1")
    clean = GenerationResult(success=True, tasks_created=1, tasks=[link])
    partial = GenerationResult(
        success=True,
        tasks_created=1,
        tasks=[link],
        errors=[LinkFailure("opp-1", "t-1", "link_failed", "Failed to link task: locked")],
    )

    assert clean.to_payload() == {
        "success": True,
        "tasks_created": 1,
        "tasks": [{"task_id": "t-1", "opportunity_id": "opp-1"}],
    }
    assert partial.to_payload()["errors"] == [
        {"opportunity_id": "opp-1", "error": "Failed to link task: locked"},
    ]
