"""Pure opportunity -> task draft transformation."""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, time, timedelta
from types import MappingProxyType
from uuid import uuid4

from crosssell_tasks.generation.models import (
    GenerationOptions,
    Opportunity,
    Subtask,
    TaskDraft,
    TaskPriority,
)
from crosssell_tasks.generation.storage.common import utc_now

TASK_CATEGORY = "prospecting"

DEFAULT_PRIORITY_MAPPING: Mapping[str, TaskPriority] = MappingProxyType(
    {
        "HOT": TaskPriority.URGENT,
        "HIGH": TaskPriority.HIGH,
        "MEDIUM": TaskPriority.MEDIUM,
        "LOW": TaskPriority.LOW,
    },
)

DEFAULT_SUBTASK_CHECKLIST: tuple[tuple[str, TaskPriority], ...] = (
    ("Review customer account and current coverage", TaskPriority.HIGH),
    ("Make contact attempt (call/email)", TaskPriority.HIGH),
    ("Present cross-sell opportunity and value proposition", TaskPriority.MEDIUM),
    ("Generate quote if interested", TaskPriority.MEDIUM),
    ("Follow up on quote and close sale", TaskPriority.MEDIUM),
)

DEFAULT_TALKING_POINTS: tuple[str, str, str] = (
    "Review customer needs",
    "Present bundle savings",
    "Emphasize value",
)


def _default_priority_mapping() -> Mapping[str, TaskPriority]:
    return DEFAULT_PRIORITY_MAPPING


def _new_id() -> str:
    return str(uuid4())


@dataclass(slots=True, frozen=True)
class MaterializerConfig:
    """Immutable defaults injected into the materializer."""

    priority_mapping: Mapping[str, TaskPriority] = field(default_factory=_default_priority_mapping)
    subtask_checklist: tuple[tuple[str, TaskPriority], ...] = DEFAULT_SUBTASK_CHECKLIST
    talking_point_defaults: tuple[str, str, str] = DEFAULT_TALKING_POINTS
    fallback_priority: TaskPriority = TaskPriority.MEDIUM
    category: str = TASK_CATEGORY


class TaskMaterializer:
    """Turns opportunities into task drafts without touching any store.

    Output depends only on the opportunity, the options, the injected clock
    and the injected id factory, so two calls with the same clock produce
    drafts that differ only in generated identifiers.
    """

    def __init__(
        self,
        *,
        config: MaterializerConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self.config = config or MaterializerConfig()
        self._clock = clock
        self._id_factory = id_factory

    def materialize_all(
        self,
        opportunities: Sequence[Opportunity],
        options: GenerationOptions,
        *,
        created_by: str,
    ) -> list[TaskDraft]:
        now = self._clock()
        return [
            self._materialize(opportunity, options, created_by=created_by, now=now)
            for opportunity in opportunities
        ]

    def materialize(
        self,
        opportunity: Opportunity,
        options: GenerationOptions,
        *,
        created_by: str,
    ) -> TaskDraft:
        return self._materialize(opportunity, options, created_by=created_by, now=self._clock())

    def resolve_priority(
        self,
        tier: str,
        mapping: Mapping[str, TaskPriority] | None = None,
    ) -> TaskPriority:
        table = mapping if mapping is not None else self.config.priority_mapping
        return table.get(tier, self.config.fallback_priority)

    def build_notes(self, opportunity: Opportunity) -> str:
        defaults = self.config.talking_point_defaults
        points = (
            opportunity.talking_point_1,
            opportunity.talking_point_2,
            opportunity.talking_point_3,
        )
        lines = [
            f"**Customer:** {opportunity.customer_name}",
            f"**Phone:** {opportunity.phone or 'N/A'}",
            f"**Email:** {opportunity.email or 'N/A'}",
            "",
            f"**Current Products:** {opportunity.current_products or 'N/A'}",
            f"**Recommended:** {opportunity.recommended_product}",
            f"**Potential Premium:** {_format_premium(opportunity.potential_premium_add)}",
            "",
            "**Talking Points:**",
        ]
        for index, (point, default) in enumerate(zip(points, defaults, strict=True), start=1):
            lines.append(f"{index}. {(point or '').strip() or default}")
        return "\n".join(lines)

    def due_date_for(
        self,
        opportunity: Opportunity,
        options: GenerationOptions,
        *,
        now: datetime,
    ) -> datetime | None:
        if not options.set_due_date_to_renewal or opportunity.renewal_date is None:
            return None
        candidate = datetime.combine(
            opportunity.renewal_date - timedelta(days=options.due_date_days_before_renewal),
            time.min,
            tzinfo=UTC,
        )
        if candidate > now:
            return candidate
        # Renewal is imminent or already passed.
        return now + timedelta(days=1)

    def build_subtasks(self, options: GenerationOptions) -> list[Subtask]:
        if not options.create_subtasks:
            return []
        return [
            Subtask(subtask_id=self._id_factory(), text=text, priority=priority)
            for text, priority in self.config.subtask_checklist
        ]

    def _materialize(
        self,
        opportunity: Opportunity,
        options: GenerationOptions,
        *,
        created_by: str,
        now: datetime,
    ) -> TaskDraft:
        return TaskDraft(
            correlation_key=self._id_factory(),
            opportunity_id=opportunity.opportunity_id,
            tenant_scope=opportunity.tenant_scope,
            text=f"Cross-sell {opportunity.recommended_product} to {opportunity.customer_name}",
            priority=self.resolve_priority(opportunity.priority_tier, options.priority_mapping),
            created_by=created_by,
            assigned_to=options.auto_assign_to or created_by,
            due_date=self.due_date_for(opportunity, options, now=now),
            notes=self.build_notes(opportunity) if options.include_talking_points_in_notes else "",
            subtasks=self.build_subtasks(options),
            category=self.config.category,
            customer_name=opportunity.customer_name,
            premium_amount=opportunity.potential_premium_add,
            priority_tier=opportunity.priority_tier,
        )


def _format_premium(value: float | None) -> str:
    if value is None:
        return "N/A"
    if float(value).is_integer():
        return f"${value:,.0f}"
    return f"${value:,.2f}"
