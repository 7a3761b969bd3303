"""Per-opportunity conditional claims with bounded fan-out."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from crosssell_tasks.generation.context import RunContext
from crosssell_tasks.generation.errors import CANCELLED, LINK_FAILED, LinkError
from crosssell_tasks.generation.models import CreatedTaskLink, LinkFailure

logger = logging.getLogger(__name__)


class ClaimStore(Protocol):
    """Opportunity store supporting single-row conditional updates."""

    def claim_opportunity(self, *, tenant_scope: str, opportunity_id: str, task_id: str) -> None:
        """Set ``task_id`` only where it is still NULL; raise ``LinkError`` otherwise."""
        raise NotImplementedError


class LinkReconciler:
    """Claims each opportunity for its new task; failures are collected, never retried."""

    def __init__(self, *, store: ClaimStore, max_workers: int = 8) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        self.store = store
        self.max_workers = max_workers

    def reconcile(
        self,
        links: Sequence[CreatedTaskLink],
        *,
        tenant_scope: str,
        context: RunContext,
    ) -> list[LinkFailure]:
        """Return failures in input order; an empty list means every claim committed."""

        if not links:
            return []

        executor = ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(links)),
            thread_name_prefix="opportunity-claim",
        )
        futures: list[Future[LinkFailure | None]] = []
        try:
            for link in links:
                futures.append(executor.submit(self._claim, link, tenant_scope, context))
            wait(futures, timeout=context.remaining())
        finally:
            # Queued claims past the deadline are dropped; running ones finish.
            executor.shutdown(wait=True, cancel_futures=True)

        failures: list[LinkFailure] = []
        for link, future in zip(links, futures, strict=True):
            if future.cancelled():
                failure = _not_attempted(link, reason="run deadline exceeded")
            elif (error := future.exception()) is not None:
                logger.error(
                    "Unexpected claim failure (opportunity_id=%s task_id=%s)",
                    link.opportunity_id,
                    link.task_id,
                    exc_info=error,
                )
                failure = LinkFailure(
                    opportunity_id=link.opportunity_id,
                    task_id=link.task_id,
                    code=LINK_FAILED,
                    error=f"Failed to link task: {error}",
                )
            else:
                failure = future.result()
            if failure is not None:
                failures.append(failure)

        if failures:
            logger.warning(
                "Opportunity claims incomplete: %d of %d failed (tenant_scope=%s)",
                len(failures),
                len(links),
                tenant_scope,
            )
        return failures

    def _claim(
        self,
        link: CreatedTaskLink,
        tenant_scope: str,
        context: RunContext,
    ) -> LinkFailure | None:
        if context.cancelled:
            return _not_attempted(link, reason="run cancelled")
        try:
            self.store.claim_opportunity(
                tenant_scope=tenant_scope,
                opportunity_id=link.opportunity_id,
                task_id=link.task_id,
            )
        except LinkError as error:
            logger.warning(
                "Claim lost (opportunity_id=%s task_id=%s code=%s): %s",
                link.opportunity_id,
                link.task_id,
                error.code,
                error,
            )
            return LinkFailure(
                opportunity_id=link.opportunity_id,
                task_id=link.task_id,
                code=error.code,
                error=f"Failed to link task: {error.message}",
            )
        except SQLAlchemyError as exc:
            logger.warning(
                "Claim update failed (opportunity_id=%s task_id=%s): %s",
                link.opportunity_id,
                link.task_id,
                exc,
            )
            return LinkFailure(
                opportunity_id=link.opportunity_id,
                task_id=link.task_id,
                code=LINK_FAILED,
                error=f"Failed to link task: {exc}",
            )
        return None


def _not_attempted(link: CreatedTaskLink, *, reason: str) -> LinkFailure:
    return LinkFailure(
        opportunity_id=link.opportunity_id,
        task_id=link.task_id,
        code=CANCELLED,
        error=f"Failed to link task: claim not attempted ({reason})",
    )
