"""SQLModel-backed storage facade for opportunities, tasks and activity log."""

from __future__ import annotations

import json
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import and_, func, or_
from sqlalchemy import insert as sa_insert
from sqlalchemy import update as sa_update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col, select

from crosssell_tasks.generation.errors import (
    NotificationError,
    OpportunityAlreadyClaimedError,
    OpportunityNotFoundError,
)
from crosssell_tasks.generation.models import (
    ActivityAction,
    ActivityLogEntry,
    CreatedTaskRef,
    ImportResult,
    Opportunity,
    OpportunityImport,
    OrphanedTaskView,
    SelectionCriteria,
    Subtask,
    TaskDraft,
    TaskPriority,
    TaskView,
)
from crosssell_tasks.generation.storage.alembic_runner import upgrade_head
from crosssell_tasks.generation.storage.common import (
    build_sqlite_engine,
    connect_sqlite_with_policy,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from crosssell_tasks.generation.storage.sqlmodel_models import (
    ActivityLogRow,
    OpportunityRow,
    TaskRow,
    TaskSubtaskRow,
)

ACTIVITY_TASK_TEXT_MAX_CHARS = 100


class SQLiteRepository:
    """Facade that persists opportunities, tasks and activity using SQLModel and Alembic."""

    def __init__(self, db_path: Path, *, busy_timeout_ms: int = 5_000) -> None:
        self.db_path = db_path
        self.busy_timeout_ms = busy_timeout_ms
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=busy_timeout_ms)

        # Keep low-level connection for tests and ad-hoc debugging queries.
        self._connection = connect_sqlite_with_policy(
            db_path=db_path,
            busy_timeout_ms=busy_timeout_ms,
        )

    def close(self) -> None:
        self._connection.close()
        self.engine.dispose()

    def init_schema(self) -> None:
        upgrade_head(self.db_path)

    # -- opportunities ---------------------------------------------------------

    def upsert_opportunities(
        self,
        records: Iterable[OpportunityImport],
        *,
        tenant_scope: str,
    ) -> ImportResult:
        """Insert or refresh opportunity data; claim and dismissal state are never touched."""

        result = ImportResult()
        now = utc_now()
        with Session(self.engine) as session:
            for record in records:
                row = session.exec(
                    select(OpportunityRow).where(
                        OpportunityRow.opportunity_id == record.opportunity_id,
                    ),
                ).one_or_none()
                if row is not None and row.tenant_scope != tenant_scope:
                    raise ValueError(
                        "Opportunity id already belongs to another tenant scope "
                        f"(opportunity_id={record.opportunity_id}).",
                    )
                if row is None:
                    row = OpportunityRow(
                        opportunity_id=record.opportunity_id,
                        tenant_scope=tenant_scope,
                        priority_rank=record.priority_rank,
                        priority_tier=record.priority_tier,
                        customer_name=record.customer_name,
                        recommended_product=record.recommended_product,
                        created_at=to_db_datetime(now),
                        updated_at=to_db_datetime(now),
                    )
                    result.inserted += 1
                else:
                    result.updated += 1
                row.priority_rank = record.priority_rank
                row.priority_tier = record.priority_tier
                row.priority_score = record.priority_score
                row.customer_name = record.customer_name
                row.phone = record.phone
                row.email = record.email
                row.renewal_date = record.renewal_date
                row.current_products = record.current_products
                row.recommended_product = record.recommended_product
                row.current_premium = record.current_premium
                row.potential_premium_add = record.potential_premium_add
                row.talking_point_1 = record.talking_point_1
                row.talking_point_2 = record.talking_point_2
                row.talking_point_3 = record.talking_point_3
                row.updated_at = to_db_datetime(now)
                session.add(row)
            session.commit()
        return result

    def get_opportunity(self, opportunity_id: str, *, tenant_scope: str) -> Opportunity | None:
        with Session(self.engine) as session:
            row = session.exec(
                select(OpportunityRow).where(
                    OpportunityRow.opportunity_id == opportunity_id,
                    OpportunityRow.tenant_scope == tenant_scope,
                ),
            ).one_or_none()
            return _to_opportunity(row) if row is not None else None

    def list_opportunities(
        self,
        *,
        tenant_scope: str,
        include_claimed: bool = False,
        include_dismissed: bool = False,
        limit: int = 50,
    ) -> list[Opportunity]:
        with Session(self.engine) as session:
            statement = select(OpportunityRow).where(OpportunityRow.tenant_scope == tenant_scope)
            if not include_claimed:
                statement = statement.where(col(OpportunityRow.task_id).is_(None))
            if not include_dismissed:
                statement = statement.where(col(OpportunityRow.dismissed).is_(False))
            rows = session.exec(
                statement.order_by(
                    col(OpportunityRow.priority_rank).asc(),
                    col(OpportunityRow.opportunity_id).asc(),
                ).limit(max(1, limit)),
            ).all()
        return [_to_opportunity(row) for row in rows]

    def select_eligible_opportunities(self, criteria: SelectionCriteria) -> list[Opportunity]:
        """Unclaimed, undismissed, in-scope opportunities in rank order.

        An explicit id list replaces the tier filter; an empty tier filter
        means every tier.
        """

        with Session(self.engine) as session:
            statement = select(OpportunityRow).where(
                col(OpportunityRow.task_id).is_(None),
                col(OpportunityRow.dismissed).is_(False),
                OpportunityRow.tenant_scope == criteria.tenant_scope,
            )
            if criteria.opportunity_ids:
                statement = statement.where(
                    col(OpportunityRow.opportunity_id).in_(list(criteria.opportunity_ids)),
                )
            elif criteria.tier_filter:
                statement = statement.where(
                    col(OpportunityRow.priority_tier).in_(list(criteria.tier_filter)),
                )
            statement = statement.order_by(
                col(OpportunityRow.priority_rank).asc(),
                col(OpportunityRow.opportunity_id).asc(),
            )
            if criteria.limit is not None:
                statement = statement.limit(criteria.limit)
            rows = session.exec(statement).all()
        return [_to_opportunity(row) for row in rows]

    def dismiss_opportunity(
        self,
        *,
        tenant_scope: str,
        opportunity_id: str,
        reason: str | None = None,
    ) -> bool:
        """Dismiss an unclaimed opportunity; False when missing, claimed or already dismissed."""

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(OpportunityRow)
                .where(
                    col(OpportunityRow.opportunity_id) == opportunity_id,
                    col(OpportunityRow.tenant_scope) == tenant_scope,
                    col(OpportunityRow.task_id).is_(None),
                    col(OpportunityRow.dismissed).is_(False),
                )
                .values(
                    dismissed=True,
                    dismissed_reason=reason,
                    updated_at=to_db_datetime(utc_now()),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                return False
            session.commit()
            return True

    def claim_opportunity(self, *, tenant_scope: str, opportunity_id: str, task_id: str) -> None:
        """Compare-and-swap ``task_id`` onto an unclaimed opportunity.

        Raises ``OpportunityAlreadyClaimedError`` or ``OpportunityNotFoundError``
        when the conditional update matches zero rows.
        """

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(OpportunityRow)
                .where(
                    col(OpportunityRow.opportunity_id) == opportunity_id,
                    col(OpportunityRow.tenant_scope) == tenant_scope,
                    col(OpportunityRow.task_id).is_(None),
                )
                .values(task_id=task_id, updated_at=to_db_datetime(utc_now())),
            )
            if result.rowcount == 1:
                session.commit()
                return
            session.rollback()

            current = session.exec(
                select(OpportunityRow.task_id).where(
                    OpportunityRow.opportunity_id == opportunity_id,
                    OpportunityRow.tenant_scope == tenant_scope,
                ),
            ).all()
        if not current:
            raise OpportunityNotFoundError(
                f"Opportunity not found (opportunity_id={opportunity_id})",
                opportunity_id=opportunity_id,
            )
        raise OpportunityAlreadyClaimedError(
            f"Opportunity already claimed by task {current[0]} (opportunity_id={opportunity_id})",
            opportunity_id=opportunity_id,
            claimed_by_task_id=current[0],
        )

    # -- tasks -----------------------------------------------------------------

    @contextmanager
    def task_batch(self) -> Iterator[SQLiteTaskBatch]:
        """One transaction for a bulk task insert; any exception rolls the batch back."""

        with Session(self.engine) as session:
            try:
                yield SQLiteTaskBatch(session)
                session.commit()
            except Exception:
                session.rollback()
                raise

    def get_task(self, task_id: str) -> TaskView | None:
        with Session(self.engine) as session:
            row = session.exec(select(TaskRow).where(TaskRow.task_id == task_id)).one_or_none()
            if row is None:
                return None
            subtask_rows = session.exec(
                select(TaskSubtaskRow)
                .where(TaskSubtaskRow.task_id == task_id)
                .order_by(col(TaskSubtaskRow.position).asc()),
            ).all()
            return _to_task_view(row, subtask_rows)

    def count_tasks(self, *, tenant_scope: str) -> int:
        with Session(self.engine) as session:
            return int(
                session.exec(
                    select(func.count())
                    .select_from(TaskRow)
                    .where(col(TaskRow.tenant_scope) == tenant_scope),
                ).one(),
            )

    def list_orphaned_tasks(self, *, tenant_scope: str, limit: int = 100) -> list[OrphanedTaskView]:
        """Tasks created from an opportunity whose claim does not point back at them."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(TaskRow, OpportunityRow)
                .join(
                    OpportunityRow,
                    and_(
                        col(OpportunityRow.opportunity_id) == col(TaskRow.opportunity_id),
                        col(OpportunityRow.tenant_scope) == col(TaskRow.tenant_scope),
                    ),
                    isouter=True,
                )
                .where(
                    TaskRow.tenant_scope == tenant_scope,
                    col(TaskRow.opportunity_id).is_not(None),
                    or_(
                        col(OpportunityRow.opportunity_id).is_(None),
                        col(OpportunityRow.task_id).is_(None),
                        col(OpportunityRow.task_id) != col(TaskRow.task_id),
                    ),
                )
                .order_by(col(TaskRow.created_at).asc(), col(TaskRow.task_id).asc())
                .limit(max(1, limit)),
            ).all()

        return [
            OrphanedTaskView(
                task_id=str(task.task_id),
                opportunity_id=str(task.opportunity_id),
                text=task.text,
                created_at=to_utc_aware_datetime(task.created_at),
                opportunity_task_id=opportunity.task_id if opportunity is not None else None,
                opportunity_exists=opportunity is not None,
            )
            for task, opportunity in rows
        ]

    # -- activity log ----------------------------------------------------------

    def append_activity(self, entry: ActivityLogEntry) -> None:
        task_text = entry.task_text[:ACTIVITY_TASK_TEXT_MAX_CHARS] if entry.task_text else None
        try:
            with Session(self.engine) as session:
                session.add(
                    ActivityLogRow(
                        tenant_scope=entry.tenant_scope,
                        action=entry.action.value,
                        task_id=entry.task_id,
                        task_text=task_text,
                        opportunity_id=entry.opportunity_id,
                        actor=entry.actor,
                        details_json=json.dumps(entry.details, ensure_ascii=True, sort_keys=True),
                        created_at=to_db_datetime(entry.created_at),
                    ),
                )
                session.commit()
        except SQLAlchemyError as exc:
            raise NotificationError(f"Failed to write activity log: {exc}") from exc

    def list_activity(
        self,
        *,
        tenant_scope: str,
        task_id: str | None = None,
        limit: int = 20,
    ) -> list[ActivityLogEntry]:
        with Session(self.engine) as session:
            statement = select(ActivityLogRow).where(ActivityLogRow.tenant_scope == tenant_scope)
            if task_id is not None:
                statement = statement.where(ActivityLogRow.task_id == task_id)
            rows = session.exec(
                statement.order_by(
                    col(ActivityLogRow.created_at).desc(),
                    col(ActivityLogRow.entry_id).desc(),
                ).limit(max(1, limit)),
            ).all()
        return [
            ActivityLogEntry(
                action=ActivityAction(row.action),
                actor=row.actor,
                tenant_scope=row.tenant_scope,
                task_id=row.task_id,
                task_text=row.task_text,
                opportunity_id=row.opportunity_id,
                created_at=to_utc_aware_datetime(row.created_at),
                details=json.loads(row.details_json),
                entry_id=row.entry_id,
            )
            for row in rows
        ]


class SQLiteTaskBatch:
    """Bulk insert handle bound to an open ``task_batch`` transaction."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def insert_tasks(self, drafts: Sequence[TaskDraft]) -> list[CreatedTaskRef]:
        """Insert drafts and return store-generated ids keyed by correlation key.

        Returned order follows the store, not the input.
        """

        if not drafts:
            return []
        now = to_db_datetime(utc_now())
        self._session.exec(
            sa_insert(TaskRow.__table__),  # type: ignore[attr-defined]
            params=[
                {
                    "tenant_scope": draft.tenant_scope,
                    "correlation_key": draft.correlation_key,
                    "opportunity_id": draft.opportunity_id,
                    "text": draft.text,
                    "status": "todo",
                    "completed": False,
                    "priority": draft.priority.value,
                    "created_by": draft.created_by,
                    "assigned_to": draft.assigned_to,
                    "due_date": to_db_datetime(draft.due_date) if draft.due_date else None,
                    "notes": draft.notes,
                    "category": draft.category,
                    "customer_name": draft.customer_name,
                    "premium_amount": draft.premium_amount,
                    "created_at": now,
                }
                for draft in drafts
            ],
        )
        keys = [draft.correlation_key for draft in drafts]
        created = self._session.exec(
            select(TaskRow.correlation_key, TaskRow.task_id).where(
                col(TaskRow.correlation_key).in_(keys),
            ),
        ).all()
        ids_by_key = {key: str(task_id) for key, task_id in created}

        subtask_params = [
            {
                "task_id": ids_by_key[draft.correlation_key],
                "position": position,
                "subtask_id": subtask.subtask_id,
                "text": subtask.text,
                "completed": subtask.completed,
                "priority": subtask.priority.value,
            }
            for draft in drafts
            if draft.correlation_key in ids_by_key
            for position, subtask in enumerate(draft.subtasks)
        ]
        if subtask_params:
            self._session.exec(
                sa_insert(TaskSubtaskRow.__table__),  # type: ignore[attr-defined]
                params=subtask_params,
            )

        return [CreatedTaskRef(correlation_key=key, task_id=task_id) for key, task_id in created]


def _to_opportunity(row: OpportunityRow) -> Opportunity:
    return Opportunity(
        opportunity_id=row.opportunity_id,
        tenant_scope=row.tenant_scope,
        customer_name=row.customer_name,
        recommended_product=row.recommended_product,
        priority_tier=row.priority_tier,
        priority_rank=row.priority_rank,
        phone=row.phone,
        email=row.email,
        renewal_date=row.renewal_date,
        current_products=row.current_products,
        current_premium=row.current_premium,
        potential_premium_add=row.potential_premium_add,
        talking_point_1=row.talking_point_1,
        talking_point_2=row.talking_point_2,
        talking_point_3=row.talking_point_3,
        dismissed=row.dismissed,
        task_id=row.task_id,
    )


def _to_task_view(row: TaskRow, subtask_rows: Sequence[TaskSubtaskRow]) -> TaskView:
    return TaskView(
        task_id=str(row.task_id),
        tenant_scope=row.tenant_scope,
        opportunity_id=row.opportunity_id,
        text=row.text,
        priority=row.priority,
        created_by=row.created_by,
        assigned_to=row.assigned_to,
        due_date=to_utc_aware_datetime(row.due_date) if row.due_date is not None else None,
        notes=row.notes,
        category=row.category,
        customer_name=row.customer_name,
        premium_amount=row.premium_amount,
        created_at=to_utc_aware_datetime(row.created_at),
        subtasks=[
            Subtask(
                subtask_id=subtask.subtask_id,
                text=subtask.text,
                priority=TaskPriority(subtask.priority),
                completed=subtask.completed,
            )
            for subtask in subtask_rows
        ],
    )
