"""Domain models for opportunity selection, task drafts and run results."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any

from crosssell_tasks.generation.errors import ValidationError


class PriorityTier(str, Enum):
    """Opportunity urgency tiers assigned by the external scoring process."""

    HOT = "HOT"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class TaskPriority(str, Enum):
    """Task priorities understood by the task store."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ActivityAction(str, Enum):
    """Activity log action kinds written by this pipeline."""

    TASK_CREATED = "task_created"


DEFAULT_TIER_FILTER: tuple[PriorityTier, ...] = (PriorityTier.HOT, PriorityTier.HIGH)
MAX_DUE_DATE_DAYS_BEFORE_RENEWAL = 3650


@dataclass(slots=True, frozen=True)
class Opportunity:
    """Scored cross-sell opportunity as read from the opportunity store."""

    opportunity_id: str
    tenant_scope: str
    customer_name: str
    recommended_product: str
    priority_tier: str
    priority_rank: int
    phone: str | None = None
    email: str | None = None
    renewal_date: date | None = None
    current_products: str = ""
    current_premium: float | None = None
    potential_premium_add: float | None = None
    talking_point_1: str | None = None
    talking_point_2: str | None = None
    talking_point_3: str | None = None
    dismissed: bool = False
    task_id: str | None = None


@dataclass(slots=True, frozen=True)
class OpportunityImport:
    """Opportunity payload loaded from an external export."""

    opportunity_id: str
    customer_name: str
    recommended_product: str
    priority_tier: str
    priority_rank: int
    priority_score: int = 0
    phone: str | None = None
    email: str | None = None
    renewal_date: date | None = None
    current_products: str = ""
    current_premium: float | None = None
    potential_premium_add: float | None = None
    talking_point_1: str | None = None
    talking_point_2: str | None = None
    talking_point_3: str | None = None


@dataclass(slots=True)
class ImportResult:
    """Counters for one opportunity import."""

    inserted: int = 0
    updated: int = 0


@dataclass(slots=True, frozen=True)
class GenerationOptions:
    """Per-run knobs for turning opportunities into tasks."""

    auto_assign_to: str | None = None
    include_talking_points_in_notes: bool = True
    set_due_date_to_renewal: bool = True
    due_date_days_before_renewal: int = 3
    create_subtasks: bool = True
    priority_mapping: Mapping[str, TaskPriority] | None = None


@dataclass(slots=True)
class Subtask:
    """Checklist entry nested under a task."""

    subtask_id: str
    text: str
    priority: TaskPriority
    completed: bool = False


@dataclass(slots=True)
class TaskDraft:
    """Task ready for bulk insert, correlated to its source opportunity."""

    correlation_key: str
    opportunity_id: str
    tenant_scope: str
    text: str
    priority: TaskPriority
    created_by: str
    assigned_to: str
    due_date: datetime | None
    notes: str
    subtasks: list[Subtask]
    category: str
    customer_name: str
    premium_amount: float | None
    priority_tier: str


@dataclass(slots=True, frozen=True)
class CreatedTaskRef:
    """Store-generated task id paired with the draft correlation key."""

    correlation_key: str
    task_id: str


@dataclass(slots=True, frozen=True)
class CreatedTaskLink:
    """Task created for one opportunity."""

    task_id: str
    opportunity_id: str


@dataclass(slots=True, frozen=True)
class LinkFailure:
    """Advisory record for a task whose opportunity claim did not commit."""

    opportunity_id: str
    task_id: str
    code: str
    error: str


@dataclass(slots=True)
class ActivityLogEntry:
    """Audit entry appended for every created task."""

    action: ActivityAction
    actor: str
    tenant_scope: str
    task_id: str | None
    task_text: str | None
    opportunity_id: str | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)
    entry_id: int | None = None


@dataclass(slots=True)
class TaskView:
    """Readable task view with its ordered subtasks."""

    task_id: str
    tenant_scope: str
    opportunity_id: str | None
    text: str
    priority: str
    created_by: str
    assigned_to: str
    due_date: datetime | None
    notes: str
    category: str
    customer_name: str | None
    premium_amount: float | None
    created_at: datetime
    subtasks: list[Subtask] = field(default_factory=list)


@dataclass(slots=True)
class OrphanedTaskView:
    """Task created from an opportunity that does not point back at it."""

    task_id: str
    opportunity_id: str
    text: str
    created_at: datetime
    opportunity_task_id: str | None
    opportunity_exists: bool


@dataclass(slots=True, frozen=True)
class SelectionCriteria:
    """Eligibility filter for one selection pass."""

    tenant_scope: str
    opportunity_ids: tuple[str, ...] = ()
    tier_filter: tuple[str, ...] = tuple(tier.value for tier in DEFAULT_TIER_FILTER)
    limit: int | None = None


@dataclass(slots=True, frozen=True)
class GenerateTasksRequest:
    """Input of one task generation run."""

    tenant_scope: str
    created_by: str
    opportunity_ids: tuple[str, ...] = ()
    tier_filter: tuple[PriorityTier, ...] = DEFAULT_TIER_FILTER
    max_opportunities: int | None = None
    options: GenerationOptions = field(default_factory=GenerationOptions)

    def validate(self) -> None:
        """Raise ``ValidationError`` for requests that must not reach the store."""

        if not self.created_by or not self.created_by.strip():
            raise ValidationError("created_by is required")
        if not self.tenant_scope or not self.tenant_scope.strip():
            raise ValidationError("tenant_scope is required")
        if self.max_opportunities is not None and self.max_opportunities <= 0:
            raise ValidationError(
                f"max_opportunities must be a positive integer, got {self.max_opportunities!r}",
            )
        if any(not opportunity_id for opportunity_id in self.opportunity_ids):
            raise ValidationError("opportunity_ids must not contain empty values")
        options = self.options
        if options.due_date_days_before_renewal < 0:
            raise ValidationError("options.due_date_days_before_renewal must be >= 0")
        if options.due_date_days_before_renewal > MAX_DUE_DATE_DAYS_BEFORE_RENEWAL:
            raise ValidationError(
                "options.due_date_days_before_renewal must be <= "
                f"{MAX_DUE_DATE_DAYS_BEFORE_RENEWAL}",
            )
        if options.auto_assign_to is not None and not options.auto_assign_to.strip():
            raise ValidationError("options.auto_assign_to must not be blank")
        if options.priority_mapping is not None:
            for tier, priority in options.priority_mapping.items():
                if tier not in PriorityTier.__members__:
                    raise ValidationError(f"options.priority_mapping has unknown tier {tier!r}")
                if not isinstance(priority, TaskPriority):
                    raise ValidationError(
                        f"options.priority_mapping[{tier!r}] must be a TaskPriority",
                    )

    def selection_criteria(self, *, limit: int | None) -> SelectionCriteria:
        return SelectionCriteria(
            tenant_scope=self.tenant_scope,
            opportunity_ids=self.opportunity_ids,
            tier_filter=tuple(tier.value for tier in self.tier_filter),
            limit=limit,
        )

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        tenant_scope: str | None = None,
    ) -> GenerateTasksRequest:
        """Build a request from its wire shape, rejecting malformed values."""

        scope = tenant_scope or payload.get("tenant_scope")
        if not isinstance(scope, str) or not scope:
            raise ValidationError("tenant_scope is required")
        created_by = payload.get("created_by")
        if not isinstance(created_by, str) or not created_by:
            raise ValidationError("created_by is required")

        raw_ids = payload.get("opportunity_ids") or []
        if not isinstance(raw_ids, list | tuple) or not all(
            isinstance(value, str) for value in raw_ids
        ):
            raise ValidationError("opportunity_ids must be a list of strings")

        raw_tiers = payload.get("tier_filter")
        tier_filter = (
            DEFAULT_TIER_FILTER if raw_tiers is None else _parse_tiers(raw_tiers, "tier_filter")
        )

        max_opportunities = payload.get("max_opportunities")
        if max_opportunities is not None and (
            isinstance(max_opportunities, bool) or not isinstance(max_opportunities, int)
        ):
            raise ValidationError("max_opportunities must be an integer")

        request = cls(
            tenant_scope=scope,
            created_by=created_by,
            opportunity_ids=tuple(raw_ids),
            tier_filter=tier_filter,
            max_opportunities=max_opportunities,
            options=_parse_options(payload.get("options") or {}),
        )
        request.validate()
        return request


@dataclass(slots=True)
class GenerationResult:
    """Outcome of one run: created tasks plus advisory link failures."""

    success: bool
    tasks_created: int
    tasks: list[CreatedTaskLink] = field(default_factory=list)
    errors: list[LinkFailure] | None = None
    message: str | None = None

    @classmethod
    def empty(cls) -> GenerationResult:
        return cls(
            success=True,
            tasks_created=0,
            tasks=[],
            message="No opportunities found matching criteria",
        )

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": self.success,
            "tasks_created": self.tasks_created,
            "tasks": [
                {"task_id": link.task_id, "opportunity_id": link.opportunity_id}
                for link in self.tasks
            ],
        }
        if self.errors:
            payload["errors"] = [
                {"opportunity_id": failure.opportunity_id, "error": failure.error}
                for failure in self.errors
            ]
        if self.message:
            payload["message"] = self.message
        return payload


def _parse_tiers(raw: object, name: str) -> tuple[PriorityTier, ...]:
    if not isinstance(raw, list | tuple):
        raise ValidationError(f"{name} must be a list of priority tiers")
    tiers: list[PriorityTier] = []
    for value in raw:
        try:
            tier = PriorityTier(str(value).upper())
        except ValueError as error:
            raise ValidationError(f"{name} has unknown priority tier {value!r}") from error
        if tier not in tiers:
            tiers.append(tier)
    return tuple(tiers)


def _parse_options(raw: object) -> GenerationOptions:
    if not isinstance(raw, Mapping):
        raise ValidationError("options must be an object")

    flags: dict[str, bool] = {}
    for name in ("include_talking_points_in_notes", "set_due_date_to_renewal", "create_subtasks"):
        value = raw.get(name, True)
        if not isinstance(value, bool):
            raise ValidationError(f"options.{name} must be a boolean")
        flags[name] = value

    days = raw.get("due_date_days_before_renewal", 3)
    if isinstance(days, bool) or not isinstance(days, int):
        raise ValidationError("options.due_date_days_before_renewal must be an integer")

    assignee = raw.get("auto_assign_to")
    if assignee is not None and not isinstance(assignee, str):
        raise ValidationError("options.auto_assign_to must be a string")

    mapping: dict[str, TaskPriority] | None = None
    raw_mapping = raw.get("priority_mapping")
    if raw_mapping is not None:
        if not isinstance(raw_mapping, Mapping):
            raise ValidationError("options.priority_mapping must be an object")
        mapping = {}
        for tier, priority in raw_mapping.items():
            try:
                mapping[PriorityTier(str(tier).upper()).value] = TaskPriority(str(priority).lower())
            except ValueError as error:
                raise ValidationError(
                    f"options.priority_mapping has invalid entry {tier!r}: {priority!r}",
                ) from error

    return GenerationOptions(
        auto_assign_to=assignee or None,
        include_talking_points_in_notes=flags["include_talking_points_in_notes"],
        set_due_date_to_renewal=flags["set_due_date_to_renewal"],
        due_date_days_before_renewal=days,
        create_subtasks=flags["create_subtasks"],
        priority_mapping=mapping,
    )
