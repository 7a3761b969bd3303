"""End-to-end opportunity to task generation orchestration."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from crosssell_tasks.config import GenerationSettings, Settings
from crosssell_tasks.generation.context import RunContext
from crosssell_tasks.generation.errors import (
    ALREADY_CLAIMED,
    OPPORTUNITY_DISMISSED,
    OPPORTUNITY_NOT_FOUND,
    SelectionError,
)
from crosssell_tasks.generation.materializer import TaskMaterializer
from crosssell_tasks.generation.models import (
    ActivityAction,
    ActivityLogEntry,
    CreatedTaskLink,
    GenerateTasksRequest,
    GenerationOptions,
    GenerationResult,
    Opportunity,
    TaskDraft,
)
from crosssell_tasks.generation.notifier import ActivityNotifier
from crosssell_tasks.generation.reconciler import LinkReconciler
from crosssell_tasks.generation.repository import SQLiteRepository
from crosssell_tasks.generation.selector import OpportunitySelector
from crosssell_tasks.generation.storage.common import utc_now
from crosssell_tasks.generation.writer import BatchWriter

logger = logging.getLogger(__name__)

ACTIVITY_SOURCE = "cross_sell_opportunity"


class TaskGenerationOrchestrator:
    """Coordinates selection, materialization, batch write, claims and audit.

    Stages run in a fixed order. Anything raised before the batch write
    leaves no trace in the task store. Once tasks exist the run reports
    success; lost claims are returned as advisory errors and audit writes
    happen in the background.
    """

    def __init__(
        self,
        *,
        settings: GenerationSettings,
        repository: SQLiteRepository,
        notifier: ActivityNotifier,
        materializer: TaskMaterializer | None = None,
        selector: OpportunitySelector | None = None,
        writer: BatchWriter | None = None,
        reconciler: LinkReconciler | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.settings = settings
        self.repository = repository
        self.notifier = notifier
        self.materializer = materializer or TaskMaterializer(clock=clock)
        self.selector = selector or OpportunitySelector(
            store=repository,
            max_opportunities=settings.max_opportunities,
        )
        self.writer = writer or BatchWriter(store=repository)
        self.reconciler = reconciler or LinkReconciler(
            store=repository,
            max_workers=settings.link_max_workers,
        )
        self._clock = clock

    def generate(
        self,
        request: GenerateTasksRequest,
        *,
        context: RunContext | None = None,
    ) -> GenerationResult:
        request.validate()
        context = context or RunContext.with_timeout(self.settings.run_timeout_seconds)
        context.raise_if_cancelled("selection")

        limit = self.selector.effective_limit(request.max_opportunities)
        opportunities = self.selector.select(request.selection_criteria(limit=limit))
        if not opportunities:
            logger.info(
                "No opportunities found matching criteria (tenant_scope=%s)",
                request.tenant_scope,
            )
            return GenerationResult.empty()

        return self._create_tasks(
            opportunities,
            tenant_scope=request.tenant_scope,
            created_by=request.created_by,
            options=request.options,
            context=context,
        )

    def generate_for_opportunity(
        self,
        *,
        tenant_scope: str,
        opportunity_id: str,
        created_by: str,
        options: GenerationOptions | None = None,
        context: RunContext | None = None,
    ) -> GenerationResult:
        """Create the task for one named opportunity, refusing claimed or dismissed ones."""

        request = GenerateTasksRequest(
            tenant_scope=tenant_scope,
            created_by=created_by,
            opportunity_ids=(opportunity_id,),
            options=options or GenerationOptions(),
        )
        request.validate()
        context = context or RunContext.with_timeout(self.settings.run_timeout_seconds)
        context.raise_if_cancelled("selection")

        try:
            opportunity = self.repository.get_opportunity(opportunity_id, tenant_scope=tenant_scope)
        except SQLAlchemyError as exc:
            raise SelectionError(f"Failed to fetch opportunity: {exc}") from exc
        if opportunity is None:
            raise SelectionError(
                f"Opportunity not found: {opportunity_id}",
                code=OPPORTUNITY_NOT_FOUND,
            )
        if opportunity.task_id is not None:
            raise SelectionError(
                f"Task already created for this opportunity (task_id={opportunity.task_id})",
                code=ALREADY_CLAIMED,
            )
        if opportunity.dismissed:
            raise SelectionError(
                f"Opportunity was dismissed: {opportunity_id}",
                code=OPPORTUNITY_DISMISSED,
            )

        return self._create_tasks(
            [opportunity],
            tenant_scope=tenant_scope,
            created_by=created_by,
            options=request.options,
            context=context,
        )

    def _create_tasks(
        self,
        opportunities: Sequence[Opportunity],
        *,
        tenant_scope: str,
        created_by: str,
        options: GenerationOptions,
        context: RunContext,
    ) -> GenerationResult:
        drafts = self.materializer.materialize_all(opportunities, options, created_by=created_by)
        context.raise_if_cancelled("batch write")
        task_ids = self.writer.write(drafts)

        links = [
            CreatedTaskLink(task_id=task_id, opportunity_id=draft.opportunity_id)
            for draft, task_id in zip(drafts, task_ids, strict=True)
        ]
        failures = self.reconciler.reconcile(links, tenant_scope=tenant_scope, context=context)
        self.notifier.notify(
            self._activity_entries(drafts, task_ids, actor=created_by),
            context=context,
        )

        logger.info(
            "Task generation finished (tenant_scope=%s created=%d link_errors=%d)",
            tenant_scope,
            len(links),
            len(failures),
        )
        return GenerationResult(
            success=True,
            tasks_created=len(links),
            tasks=links,
            errors=failures or None,
        )

    def _activity_entries(
        self,
        drafts: Sequence[TaskDraft],
        task_ids: Sequence[str],
        *,
        actor: str,
    ) -> list[ActivityLogEntry]:
        now = self._clock()
        return [
            ActivityLogEntry(
                action=ActivityAction.TASK_CREATED,
                actor=actor,
                tenant_scope=draft.tenant_scope,
                task_id=task_id,
                task_text=draft.text,
                opportunity_id=draft.opportunity_id,
                created_at=now,
                details={
                    "source": ACTIVITY_SOURCE,
                    "opportunity_id": draft.opportunity_id,
                    "customer_name": draft.customer_name,
                    "priority_tier": draft.priority_tier,
                },
            )
            for draft, task_id in zip(drafts, task_ids, strict=True)
        ]


def run_task_generation(
    *,
    settings: Settings,
    repository: SQLiteRepository,
    notifier: ActivityNotifier,
    request: GenerateTasksRequest,
    context: RunContext | None = None,
) -> GenerationResult:
    """Run one task generation pass with provided dependencies."""

    return TaskGenerationOrchestrator(
        settings=settings.generation,
        repository=repository,
        notifier=notifier,
    ).generate(request, context=context)
