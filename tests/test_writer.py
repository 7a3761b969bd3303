from __future__ import annotations

from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from itertools import count

import allure
import pytest
from conftest import TENANT, TamperingStore
from sqlalchemy.exc import SQLAlchemyError

from crosssell_tasks.generation.errors import BatchWriteError
from crosssell_tasks.generation.materializer import TaskMaterializer
from crosssell_tasks.generation.models import (
    CreatedTaskRef,
    GenerationOptions,
    Opportunity,
    TaskDraft,
)
from crosssell_tasks.generation.writer import BatchWriter, correlate_task_ids

pytestmark = [
    allure.epic("Task Generation"),
    allure.feature("Batch Task Write"),
]


def _drafts(*opportunity_ids: str) -> list[TaskDraft]:
    ids = count(1)
    materializer = TaskMaterializer(id_factory=lambda: f"key-{next(ids)}")
    opportunities = [
        Opportunity(
            opportunity_id=opportunity_id,
            tenant_scope=TENANT,
            customer_name=f"Customer {opportunity_id}",
            recommended_product="Umbrella",
            priority_tier="HOT",
            priority_rank=rank,
        )
        for rank, opportunity_id in enumerate(opportunity_ids, start=1)
    ]
    return materializer.materialize_all(opportunities, GenerationOptions(), created_by="agent-7")


class _FailingBatch:
    def insert_tasks(self, drafts: Sequence[TaskDraft]) -> list[CreatedTaskRef]:
        raise SQLAlchemyError("disk I/O error")


class _FailingStore:
    @contextmanager
    def task_batch(self) -> Iterator[_FailingBatch]:
        yield _FailingBatch()


def test_write_returns_ids_in_draft_order(repository) -> None:
    drafts = _drafts("opp-1", "opp-2", "opp-3")

    task_ids = BatchWriter(store=repository).write(drafts)

    assert len(task_ids) == 3
    assert len(set(task_ids)) == 3
    for draft, task_id in zip(drafts, task_ids, strict=True):
        task = repository.get_task(task_id)
        assert task is not None
        assert task.opportunity_id == draft.opportunity_id
        assert task.text == draft.text
        assert [subtask.text for subtask in task.subtasks] == [
            subtask.text for subtask in draft.subtasks
        ]


def test_store_order_does_not_leak_into_result(repository) -> None:
    drafts = _drafts("opp-1", "opp-2", "opp-3")
    store = TamperingStore(repository, lambda refs: list(reversed(refs)))

    task_ids = BatchWriter(store=store).write(drafts)

    assert [repository.get_task(task_id).opportunity_id for task_id in task_ids] == [
        "opp-1",
        "opp-2",
        "opp-3",
    ]


def test_count_mismatch_aborts_and_rolls_back(repository) -> None:
    drafts = _drafts("opp-1", "opp-2", "opp-3")
    store = TamperingStore(repository, lambda refs: refs[:-1])

    with pytest.raises(BatchWriteError, match="count mismatch") as error:
        BatchWriter(store=store).write(drafts)

    assert error.value.expected == 3
    assert error.value.returned == 2
    assert repository.count_tasks(tenant_scope=TENANT) == 0
    subtasks = repository._connection.execute("SELECT COUNT(*) AS n FROM task_subtasks").fetchone()
    assert subtasks["n"] == 0


def test_store_error_becomes_batch_write_error() -> None:
    with pytest.raises(BatchWriteError, match="Failed to create tasks") as error:
        BatchWriter(store=_FailingStore()).write(_drafts("opp-1"))

    assert error.value.code == "batch_write_failed"
    assert isinstance(error.value.__cause__, SQLAlchemyError)


def test_duplicate_correlation_keys_are_rejected_before_insert(repository) -> None:
    drafts = _drafts("opp-1", "opp-2")
    drafts[1].correlation_key = drafts[0].correlation_key

    with pytest.raises(BatchWriteError, match="unique correlation keys"):
        BatchWriter(store=repository).write(drafts)

    assert repository.count_tasks(tenant_scope=TENANT) == 0


def test_empty_batch_is_a_no_op() -> None:
    assert BatchWriter(store=_FailingStore()).write([]) == []


def test_correlation_rejects_unknown_and_duplicate_keys() -> None:
    drafts = _drafts("opp-1", "opp-2")

    with pytest.raises(BatchWriteError, match="missing opportunities: opp-2"):
        correlate_task_ids(
            drafts,
            [
                CreatedTaskRef(correlation_key=drafts[0].correlation_key, task_id="t-1"),
                CreatedTaskRef(correlation_key="stranger", task_id="t-2"),
            ],
        )
    with pytest.raises(BatchWriteError, match="duplicate correlation key"):
        correlate_task_ids(
            drafts,
            [
                CreatedTaskRef(correlation_key=drafts[0].correlation_key, task_id="t-1"),
                CreatedTaskRef(correlation_key=drafts[0].correlation_key, task_id="t-2"),
            ],
        )
