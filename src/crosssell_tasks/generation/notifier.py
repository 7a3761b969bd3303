"""Fire-and-forget activity log writes with bounded retries."""

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from dataclasses import dataclass
from typing import Protocol

from crosssell_tasks.generation.context import RunContext
from crosssell_tasks.generation.models import ActivityLogEntry

logger = logging.getLogger(__name__)


class ActivitySink(Protocol):
    """Append-only activity log."""

    def append_activity(self, entry: ActivityLogEntry) -> None:
        raise NotImplementedError


@dataclass(slots=True)
class NotifierStats:
    """Delivery counters since the notifier was created."""

    submitted: int = 0
    delivered: int = 0
    failed: int = 0
    dropped: int = 0


class ActivityNotifier:
    """Writes audit entries off the request path.

    ``notify`` returns immediately; callers never observe delivery errors.
    Each entry gets ``max_retries`` extra attempts with exponential backoff
    and is logged and abandoned after that. ``drain`` and ``close`` exist for
    process shutdown and tests, not for the generation flow.
    """

    def __init__(
        self,
        *,
        sink: ActivitySink,
        max_workers: int = 4,
        max_retries: int = 2,
        retry_base_seconds: float = 0.1,
    ) -> None:
        if max_workers <= 0:
            raise ValueError("max_workers must be > 0")
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.sink = sink
        self.max_retries = max_retries
        self.retry_base_seconds = retry_base_seconds
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="activity-log",
        )
        self._lock = threading.Lock()
        self._pending: set[Future[None]] = set()
        self._stats = NotifierStats()
        self._closed = False

    @property
    def stats(self) -> NotifierStats:
        with self._lock:
            return NotifierStats(
                submitted=self._stats.submitted,
                delivered=self._stats.delivered,
                failed=self._stats.failed,
                dropped=self._stats.dropped,
            )

    def notify(self, entries: Sequence[ActivityLogEntry], *, context: RunContext) -> None:
        """Schedule every entry for delivery and return without waiting."""

        for entry in entries:
            if not entry.actor:
                logger.warning(
                    "No actor for activity entry, skipping log (task_id=%s)",
                    entry.task_id,
                )
                with self._lock:
                    self._stats.dropped += 1
                continue
            with self._lock:
                if self._closed:
                    logger.warning(
                        "Activity notifier closed, entry not logged (task_id=%s)",
                        entry.task_id,
                    )
                    self._stats.dropped += 1
                    continue
                future = self._executor.submit(self._deliver, entry, context)
                self._stats.submitted += 1
                self._pending.add(future)
            future.add_done_callback(self._forget)

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for scheduled entries; True when nothing is left pending."""

        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait_futures(pending, timeout=timeout)
        return not not_done

    def close(self, *, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)

    def _deliver(self, entry: ActivityLogEntry, context: RunContext) -> None:
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                self.sink.append_activity(entry)
            except Exception as exc:  # noqa: BLE001
                if attempt + 1 >= attempts:
                    logger.error(
                        "Activity log failed after %d attempts - operation continued "
                        "(task_id=%s action=%s): %s",
                        attempts,
                        entry.task_id,
                        entry.action.value,
                        exc,
                    )
                    break
                delay = self.retry_base_seconds * (2**attempt)
                logger.warning(
                    "Activity log attempt %d/%d failed, retrying in %.2fs (task_id=%s): %s",
                    attempt + 1,
                    attempts,
                    delay,
                    entry.task_id,
                    exc,
                )
                if context.wait_for_cancel(delay):
                    logger.error(
                        "Activity log abandoned, run cancelled (task_id=%s)",
                        entry.task_id,
                    )
                    break
            else:
                with self._lock:
                    self._stats.delivered += 1
                return
        with self._lock:
            self._stats.failed += 1

    def _forget(self, future: Future[None]) -> None:
        with self._lock:
            self._pending.discard(future)
        if future.cancelled():
            logger.warning("Activity log entry cancelled before delivery")
            return
        error = future.exception()
        if error is not None:
            logger.error("Activity log worker crashed", exc_info=error)

