"""Deadline and cancellation shared by every stage of one run."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field

from crosssell_tasks.generation.errors import GenerationCancelled


@dataclass(slots=True)
class RunContext:
    """Caller-owned cancellation token with an optional monotonic deadline."""

    deadline: float | None = None
    cancel_event: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def with_timeout(cls, seconds: float | None) -> RunContext:
        if seconds is None:
            return cls()
        return cls(deadline=time.monotonic() + max(0.0, seconds))

    def remaining(self) -> float | None:
        """Seconds left before the deadline, ``None`` when unbounded."""

        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    @property
    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set() or self.expired

    def cancel(self) -> None:
        self.cancel_event.set()

    def wait_for_cancel(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; return True only if ``cancel()`` was called.

        The deadline does not cut the sleep short, so detached work such as
        activity delivery can keep retrying after the run has returned.
        """

        return self.cancel_event.wait(timeout=seconds)

    def raise_if_cancelled(self, stage: str) -> None:
        if self.cancel_event.is_set():
            raise GenerationCancelled(f"Run cancelled before {stage}.")
        if self.expired:
            raise GenerationCancelled(f"Run deadline exceeded before {stage}.")
