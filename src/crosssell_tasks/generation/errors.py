"""Error taxonomy for the task generation pipeline.

Fatal kinds (validation, selection, batch write, cancellation) abort a run
before any side effect is reported. Link errors are collected per
opportunity and surfaced next to an otherwise successful result.
Notification errors never leave the notifier.
"""

from __future__ import annotations

from dataclasses import dataclass

VALIDATION_ERROR = "validation_error"
SELECTION_FAILED = "selection_failed"
BATCH_WRITE_FAILED = "batch_write_failed"
CANCELLED = "cancelled"
LINK_FAILED = "link_failed"
ALREADY_CLAIMED = "already_claimed"
OPPORTUNITY_NOT_FOUND = "opportunity_not_found"
OPPORTUNITY_DISMISSED = "opportunity_dismissed"
NOTIFICATION_FAILED = "notification_failed"


@dataclass(slots=True)
class TaskGenerationError(Exception):
    """Base task generation error."""

    message: str
    code: str = "task_generation_error"

    def __str__(self) -> str:
        return self.message


@dataclass(slots=True)
class ValidationError(TaskGenerationError):
    """Request rejected before any I/O."""

    code: str = VALIDATION_ERROR


@dataclass(slots=True)
class SelectionError(TaskGenerationError):
    """Opportunity query failed or the requested opportunity is not selectable."""

    code: str = SELECTION_FAILED


@dataclass(slots=True)
class BatchWriteError(TaskGenerationError):
    """Bulk task insert failed; the whole batch was rolled back."""

    code: str = BATCH_WRITE_FAILED
    expected: int = 0
    returned: int = 0


@dataclass(slots=True)
class GenerationCancelled(TaskGenerationError):
    """Run was cancelled or ran past its deadline before tasks were written."""

    code: str = CANCELLED


@dataclass(slots=True)
class LinkError(TaskGenerationError):
    """Claiming one opportunity for its task failed."""

    code: str = LINK_FAILED
    opportunity_id: str = ""


@dataclass(slots=True)
class OpportunityAlreadyClaimedError(LinkError):
    """Conditional claim matched zero rows because another task owns the opportunity."""

    code: str = ALREADY_CLAIMED
    claimed_by_task_id: str | None = None


@dataclass(slots=True)
class OpportunityNotFoundError(LinkError):
    """Conditional claim matched zero rows because the opportunity does not exist."""

    code: str = OPPORTUNITY_NOT_FOUND


@dataclass(slots=True)
class NotificationError(TaskGenerationError):
    """Activity log write failed."""

    code: str = NOTIFICATION_FAILED
