"""Eligible opportunity selection."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.exc import SQLAlchemyError

from crosssell_tasks.generation.errors import SelectionError
from crosssell_tasks.generation.models import Opportunity, SelectionCriteria

logger = logging.getLogger(__name__)


class OpportunityStore(Protocol):
    """Opportunity store supporting filtered, ordered range queries."""

    def select_eligible_opportunities(self, criteria: SelectionCriteria) -> list[Opportunity]:
        """Return unclaimed, undismissed, in-scope opportunities in rank order."""
        raise NotImplementedError


class OpportunitySelector:
    """Proposes candidates for one run; claiming happens later."""

    def __init__(self, *, store: OpportunityStore, max_opportunities: int) -> None:
        if max_opportunities <= 0:
            raise ValueError("max_opportunities must be > 0")
        self.store = store
        self.max_opportunities = max_opportunities

    def effective_limit(self, requested: int | None) -> int:
        if requested is None:
            return self.max_opportunities
        return min(requested, self.max_opportunities)

    def select(self, criteria: SelectionCriteria) -> list[Opportunity]:
        try:
            opportunities = self.store.select_eligible_opportunities(criteria)
        except SQLAlchemyError as exc:
            logger.error(
                "Opportunity selection failed (tenant_scope=%s): %s",
                criteria.tenant_scope,
                exc,
            )
            raise SelectionError(f"Failed to fetch opportunities: {exc}") from exc

        # A claimed opportunity must never be proposed again, whatever the store returned.
        eligible = [
            opportunity
            for opportunity in opportunities
            if opportunity.task_id is None and not opportunity.dismissed
        ]
        if criteria.limit is not None:
            eligible = eligible[: criteria.limit]
        logger.info(
            "Selected %d eligible opportunities (tenant_scope=%s explicit_ids=%d tiers=%s)",
            len(eligible),
            criteria.tenant_scope,
            len(criteria.opportunity_ids),
            ",".join(criteria.tier_filter) or "*",
        )
        return eligible
