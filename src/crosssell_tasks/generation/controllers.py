"""Controllers for task generation CLI commands."""

from __future__ import annotations

import json
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from crosssell_tasks.config import Settings
from crosssell_tasks.generation.csv_import import load_opportunities_csv
from crosssell_tasks.generation.models import (
    GenerateTasksRequest,
    GenerationOptions,
    GenerationResult,
    Opportunity,
    PriorityTier,
)
from crosssell_tasks.generation.notifier import ActivityNotifier
from crosssell_tasks.generation.pipeline import TaskGenerationOrchestrator, run_task_generation
from crosssell_tasks.generation.repository import SQLiteRepository

NOTIFIER_DRAIN_TIMEOUT_SECONDS = 10.0


@dataclass(slots=True)
class GenerateCommand:
    """CLI inputs for a task generation run."""

    db_path: Path | None
    tenant_scope: str | None
    created_by: str | None
    opportunity_ids: tuple[str, ...]
    tiers: tuple[str, ...]
    max_opportunities: int | None
    auto_assign_to: str | None
    include_talking_points: bool
    set_due_date_to_renewal: bool
    due_date_days_before_renewal: int | None
    create_subtasks: bool
    as_json: bool


@dataclass(slots=True)
class CreateFromOpportunityCommand:
    """CLI inputs for single-opportunity task creation."""

    db_path: Path | None
    tenant_scope: str | None
    created_by: str | None
    opportunity_id: str
    auto_assign_to: str | None
    as_json: bool


@dataclass(slots=True)
class ImportOpportunitiesCommand:
    """CLI inputs for CSV opportunity import."""

    db_path: Path | None
    tenant_scope: str | None
    csv_path: Path


@dataclass(slots=True)
class ListOpportunitiesCommand:
    """CLI inputs for opportunity listing."""

    db_path: Path | None
    tenant_scope: str | None
    include_claimed: bool
    include_dismissed: bool
    limit: int


@dataclass(slots=True)
class DismissOpportunityCommand:
    """CLI inputs for opportunity dismissal."""

    db_path: Path | None
    tenant_scope: str | None
    opportunity_id: str
    reason: str | None


@dataclass(slots=True)
class OrphanedTasksCommand:
    """CLI inputs for the orphaned task report."""

    db_path: Path | None
    tenant_scope: str | None
    limit: int


@dataclass(slots=True)
class ActivityListCommand:
    """CLI inputs for activity log listing."""

    db_path: Path | None
    tenant_scope: str | None
    task_id: str | None
    limit: int


class TaskGenerationCliController:
    """Coordinates task generation command execution."""

    def generate(self, command: GenerateCommand) -> list[str]:
        settings = _settings(command.db_path)
        tiers = command.tiers or settings.generation.default_tiers
        days = command.due_date_days_before_renewal
        payload = {
            "tenant_scope": command.tenant_scope or settings.user_context.tenant_scope,
            "created_by": command.created_by or settings.user_context.actor,
            "opportunity_ids": list(command.opportunity_ids),
            "tier_filter": list(tiers),
            "max_opportunities": command.max_opportunities,
            "options": {
                "auto_assign_to": command.auto_assign_to,
                "include_talking_points_in_notes": command.include_talking_points,
                "set_due_date_to_renewal": command.set_due_date_to_renewal,
                "due_date_days_before_renewal": (
                    settings.generation.due_date_days_before_renewal if days is None else days
                ),
                "create_subtasks": command.create_subtasks,
            },
        }
        request = GenerateTasksRequest.from_payload(payload)

        with _repository(settings) as repository, _notifier(settings, repository) as notifier:
            result = run_task_generation(
                settings=settings,
                repository=repository,
                notifier=notifier,
                request=request,
            )
        return _result_lines(result, as_json=command.as_json)

    def create_from_opportunity(self, command: CreateFromOpportunityCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository, _notifier(settings, repository) as notifier:
            result = TaskGenerationOrchestrator(
                settings=settings.generation,
                repository=repository,
                notifier=notifier,
            ).generate_for_opportunity(
                tenant_scope=command.tenant_scope or settings.user_context.tenant_scope,
                opportunity_id=command.opportunity_id,
                created_by=command.created_by or settings.user_context.actor,
                options=GenerationOptions(
                    auto_assign_to=command.auto_assign_to,
                    due_date_days_before_renewal=settings.generation.due_date_days_before_renewal,
                ),
            )
        return _result_lines(result, as_json=command.as_json)

    def import_opportunities(self, command: ImportOpportunitiesCommand) -> list[str]:
        settings = _settings(command.db_path)
        records = load_opportunities_csv(command.csv_path)
        tenant_scope = command.tenant_scope or settings.user_context.tenant_scope
        with _repository(settings) as repository:
            result = repository.upsert_opportunities(records, tenant_scope=tenant_scope)
        return [
            "Opportunity import completed: "
            f"tenant_scope={tenant_scope} rows={len(records)} "
            f"inserted={result.inserted} updated={result.updated}",
        ]

    def list_opportunities(self, command: ListOpportunitiesCommand) -> list[str]:
        settings = _settings(command.db_path)
        tenant_scope = command.tenant_scope or settings.user_context.tenant_scope
        with _repository(settings) as repository:
            opportunities = repository.list_opportunities(
                tenant_scope=tenant_scope,
                include_claimed=command.include_claimed,
                include_dismissed=command.include_dismissed,
                limit=command.limit,
            )
        if not opportunities:
            return [f"No opportunities found: tenant_scope={tenant_scope}"]
        return [f"Opportunities: {len(opportunities)}"] + [
            _opportunity_line(opportunity) for opportunity in opportunities
        ]

    def dismiss_opportunity(self, command: DismissOpportunityCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _repository(settings) as repository:
            dismissed = repository.dismiss_opportunity(
                tenant_scope=command.tenant_scope or settings.user_context.tenant_scope,
                opportunity_id=command.opportunity_id,
                reason=command.reason,
            )
        if not dismissed:
            raise ValueError(
                "Opportunity cannot be dismissed (missing, already claimed or already dismissed): "
                f"{command.opportunity_id}",
            )
        return [f"Opportunity dismissed: opportunity_id={command.opportunity_id}"]

    def orphaned_tasks(self, command: OrphanedTasksCommand) -> list[str]:
        settings = _settings(command.db_path)
        tenant_scope = command.tenant_scope or settings.user_context.tenant_scope
        with _repository(settings) as repository:
            orphans = repository.list_orphaned_tasks(tenant_scope=tenant_scope, limit=command.limit)
        if not orphans:
            return [f"No orphaned tasks: tenant_scope={tenant_scope}"]
        lines = [f"Orphaned tasks: {len(orphans)}"]
        for orphan in orphans:
            if not orphan.opportunity_exists:
                state = "opportunity_missing"
            elif orphan.opportunity_task_id is None:
                state = "unclaimed"
            else:
                state = f"claimed_by={orphan.opportunity_task_id}"
            lines.append(
                f"- task_id={orphan.task_id} opportunity_id={orphan.opportunity_id} "
                f"{state} created_at={orphan.created_at.isoformat()} text={orphan.text}",
            )
        return lines

    def activity(self, command: ActivityListCommand) -> list[str]:
        settings = _settings(command.db_path)
        tenant_scope = command.tenant_scope or settings.user_context.tenant_scope
        with _repository(settings) as repository:
            entries = repository.list_activity(
                tenant_scope=tenant_scope,
                task_id=command.task_id,
                limit=command.limit,
            )
        if not entries:
            return [f"No activity: tenant_scope={tenant_scope}"]
        return [
            f"- {entry.created_at.isoformat()} action={entry.action.value} actor={entry.actor} "
            f"task_id={entry.task_id or '-'} opportunity_id={entry.opportunity_id or '-'} "
            f"text={entry.task_text or '-'}"
            for entry in entries
        ]


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _result_lines(result: GenerationResult, *, as_json: bool) -> list[str]:
    if as_json:
        return [json.dumps(result.to_payload(), ensure_ascii=False, indent=2)]
    if result.tasks_created == 0:
        return [result.message or "No tasks created."]
    lines = [
        "Task generation completed: "
        f"tasks_created={result.tasks_created} link_errors={len(result.errors or [])}",
    ]
    lines.extend(
        f"- task_id={link.task_id} opportunity_id={link.opportunity_id}" for link in result.tasks
    )
    for failure in result.errors or []:
        lines.append(f"! opportunity_id={failure.opportunity_id} error={failure.error}")
    return lines


def _opportunity_line(opportunity: Opportunity) -> str:
    tier = opportunity.priority_tier
    marker = "*" if tier == PriorityTier.HOT.value else "-"
    renewal = opportunity.renewal_date.isoformat() if opportunity.renewal_date else "-"
    state = "dismissed" if opportunity.dismissed else (opportunity.task_id or "open")
    return (
        f"{marker} {opportunity.opportunity_id} rank={opportunity.priority_rank} tier={tier} "
        f"customer={opportunity.customer_name} product={opportunity.recommended_product} "
        f"renewal={renewal} state={state}"
    )


@contextmanager
def _repository(settings: Settings) -> Iterator[SQLiteRepository]:
    repository = SQLiteRepository(
        settings.db_path,
        busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    try:
        repository.init_schema()
        yield repository
    finally:
        repository.close()


@contextmanager
def _notifier(settings: Settings, repository: SQLiteRepository) -> Iterator[ActivityNotifier]:
    notifier = ActivityNotifier(
        sink=repository,
        max_workers=settings.generation.notify_max_workers,
        max_retries=settings.generation.notify_max_retries,
        retry_base_seconds=settings.generation.notify_retry_base_seconds,
    )
    try:
        yield notifier
    finally:
        # Audit writes must land before the repository closes.
        notifier.drain(timeout=NOTIFIER_DRAIN_TIMEOUT_SECONDS)
        notifier.close(wait=False)
