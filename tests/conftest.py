"""Shared test fixtures."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import pytest

from crosssell_tasks.generation.models import CreatedTaskRef, OpportunityImport, TaskDraft
from crosssell_tasks.generation.repository import SQLiteRepository

TENANT = "agency-1"


class _TamperingBatch:
    """Delegates to a real batch, then rewrites what it returns."""

    def __init__(self, inner, tamper) -> None:
        self._inner = inner
        self._tamper = tamper

    def insert_tasks(self, drafts: Sequence[TaskDraft]) -> list[CreatedTaskRef]:
        return self._tamper(self._inner.insert_tasks(drafts))


class TamperingStore:
    def __init__(self, repository: SQLiteRepository, tamper) -> None:
        self._repository = repository
        self._tamper = tamper

    @contextmanager
    def task_batch(self) -> Iterator[_TamperingBatch]:
        with self._repository.task_batch() as batch:
            yield _TamperingBatch(batch, self._tamper)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "crosssell.db"


@pytest.fixture()
def repository(db_path: Path) -> Iterator[SQLiteRepository]:
    repo = SQLiteRepository(db_path)
    repo.init_schema()
    try:
        yield repo
    finally:
        repo.close()


def make_import(
    opportunity_id: str,
    *,
    rank: int,
    tier: str = "HOT",
    **overrides: Any,
) -> OpportunityImport:
    values: dict[str, Any] = {
        "opportunity_id": opportunity_id,
        "customer_name": f"Customer {opportunity_id}",
        "recommended_product": "Umbrella",
        "priority_tier": tier,
        "priority_rank": rank,
        "priority_score": 100 - rank,
        "phone": "555-0100",
        "email": f"{opportunity_id}@example.com",
        "current_products": "Auto, Home",
        "potential_premium_add": 450.0,
    }
    values.update(overrides)
    return OpportunityImport(**values)


@pytest.fixture()
def seed_opportunities(
    repository: SQLiteRepository,
) -> Callable[..., list[OpportunityImport]]:
    """Insert ``(opportunity_id, rank, tier)`` triples for a tenant."""

    def _seed(
        *specs: tuple[str, int, str],
        tenant_scope: str = TENANT,
    ) -> list[OpportunityImport]:
        records = [
            make_import(opportunity_id, rank=rank, tier=tier)
            for opportunity_id, rank, tier in specs
        ]
        repository.upsert_opportunities(records, tenant_scope=tenant_scope)
        return records

    return _seed
