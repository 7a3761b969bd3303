"""Single bulk insert of task drafts with count/order enforcement."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from contextlib import AbstractContextManager
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from crosssell_tasks.generation.errors import BatchWriteError
from crosssell_tasks.generation.models import CreatedTaskRef, TaskDraft

logger = logging.getLogger(__name__)


class TaskBatch(Protocol):
    """Bulk insert handle inside one store transaction."""

    def insert_tasks(self, drafts: Sequence[TaskDraft]) -> list[CreatedTaskRef]:
        """Insert drafts with nested subtasks; result order is unspecified."""
        raise NotImplementedError


class TaskStore(Protocol):
    """Task store accepting bulk inserts in a rollback-on-error transaction."""

    def task_batch(self) -> AbstractContextManager[TaskBatch]:
        """Open a transaction that commits on clean exit and rolls back on error."""
        raise NotImplementedError


class BatchWriter:
    """Writes every draft of a run or none of them."""

    def __init__(self, *, store: TaskStore) -> None:
        self.store = store

    def write(self, drafts: Sequence[TaskDraft]) -> list[str]:
        """Insert all drafts and return task ids in draft order."""

        if not drafts:
            return []
        _ensure_unique_keys(drafts)

        try:
            with self.store.task_batch() as batch:
                created = batch.insert_tasks(drafts)
                # Raising here rolls the whole batch back.
                task_ids = correlate_task_ids(drafts, created)
        except BatchWriteError as error:
            logger.error("Task batch rejected, nothing was created: %s", error)
            raise
        except SQLAlchemyError as exc:
            logger.error("Task batch insert failed (drafts=%d): %s", len(drafts), exc)
            raise BatchWriteError(
                f"Failed to create tasks: {exc}",
                expected=len(drafts),
            ) from exc

        logger.info("Task batch committed (tasks=%d)", len(task_ids))
        return task_ids


def correlate_task_ids(
    drafts: Sequence[TaskDraft],
    created: Sequence[CreatedTaskRef],
) -> list[str]:
    """Re-sort store results into draft order; any pairing gap is fatal."""

    if len(created) != len(drafts):
        raise BatchWriteError(
            "Task creation partially failed - count mismatch "
            f"(expected={len(drafts)}, returned={len(created)})",
            expected=len(drafts),
            returned=len(created),
        )

    ids_by_key: dict[str, str] = {}
    for ref in created:
        if ref.correlation_key in ids_by_key:
            raise BatchWriteError(
                f"Task creation returned duplicate correlation key {ref.correlation_key!r}",
                expected=len(drafts),
                returned=len(created),
            )
        ids_by_key[ref.correlation_key] = ref.task_id

    missing = [draft.opportunity_id for draft in drafts if draft.correlation_key not in ids_by_key]
    if missing:
        raise BatchWriteError(
            "Task creation returned ids that do not correlate to drafts "
            f"(missing opportunities: {', '.join(missing)})",
            expected=len(drafts),
            returned=len(created),
        )
    return [ids_by_key[draft.correlation_key] for draft in drafts]


def _ensure_unique_keys(drafts: Sequence[TaskDraft]) -> None:
    keys = {draft.correlation_key for draft in drafts}
    if len(keys) != len(drafts):
        raise BatchWriteError(
            "Task drafts must carry unique correlation keys",
            expected=len(drafts),
        )
