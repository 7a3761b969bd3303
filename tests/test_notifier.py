from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime

import allure
import pytest
from conftest import TENANT

from crosssell_tasks.generation.context import RunContext
from crosssell_tasks.generation.models import ActivityAction, ActivityLogEntry
from crosssell_tasks.generation.notifier import ActivityNotifier

pytestmark = [
    allure.epic("Task Generation"),
    allure.feature("Activity Log"),
]


class _Sink:
    def __init__(self, *, fail_times: int = 0, gate: threading.Event | None = None) -> None:
        self.fail_times = fail_times
        self.gate = gate
        self.attempts = 0
        self.entries: list[ActivityLogEntry] = []
        self._lock = threading.Lock()

    def append_activity(self, entry: ActivityLogEntry) -> None:
        if self.gate is not None:
            self.gate.wait(timeout=5)
        with self._lock:
            self.attempts += 1
            if self.attempts <= self.fail_times:
                raise RuntimeError(f"write failed #{self.attempts}")
            self.entries.append(entry)


def _entry(task_id: str, *, actor: str = "agent-7") -> ActivityLogEntry:
    return ActivityLogEntry(
        action=ActivityAction.TASK_CREATED,
        actor=actor,
        tenant_scope=TENANT,
        task_id=task_id,
        task_text=f"Cross-sell Umbrella ({task_id})",
        opportunity_id=f"opp-{task_id}",
        created_at=datetime(2026, 10, 19, tzinfo=UTC),
    )


@pytest.fixture()
def make_notifier():
    created: list[ActivityNotifier] = []

    def _make(sink, **kwargs) -> ActivityNotifier:
        kwargs.setdefault("retry_base_seconds", 0.0)
        notifier = ActivityNotifier(sink=sink, **kwargs)
        created.append(notifier)
        return notifier

    yield _make
    for notifier in created:
        notifier.close()


def test_every_entry_is_delivered(make_notifier) -> None:
    sink = _Sink()
    notifier = make_notifier(sink)

    notifier.notify([_entry("1"), _entry("2"), _entry("3")], context=RunContext())

    assert notifier.drain(timeout=5)
    assert sorted(entry.task_id for entry in sink.entries) == ["1", "2", "3"]
    assert notifier.stats.submitted == 3
    assert notifier.stats.delivered == 3


def test_notify_returns_before_delivery(make_notifier) -> None:
    gate = threading.Event()
    sink = _Sink(gate=gate)
    notifier = make_notifier(sink)

    notifier.notify([_entry("1")], context=RunContext())

    assert sink.entries == []
    assert not notifier.drain(timeout=0.05)
    gate.set()
    assert notifier.drain(timeout=5)
    assert len(sink.entries) == 1


def test_transient_failures_are_retried(make_notifier) -> None:
    sink = _Sink(fail_times=2)
    notifier = make_notifier(sink, max_retries=2)

    notifier.notify([_entry("1")], context=RunContext())

    assert notifier.drain(timeout=5)
    assert sink.attempts == 3
    assert len(sink.entries) == 1
    assert notifier.stats.failed == 0


def test_exhausted_retries_are_logged_and_swallowed(make_notifier, caplog) -> None:
    sink = _Sink(fail_times=10)
    notifier = make_notifier(sink, max_retries=2)

    with caplog.at_level(logging.WARNING, logger="crosssell_tasks.generation.notifier"):
        notifier.notify([_entry("1")], context=RunContext())
        assert notifier.drain(timeout=5)

    assert sink.attempts == 3
    assert sink.entries == []
    assert notifier.stats.failed == 1
    assert "failed after 3 attempts - operation continued" in caplog.text


def test_entry_without_actor_is_dropped(make_notifier, caplog) -> None:
    sink = _Sink()
    notifier = make_notifier(sink)

    with caplog.at_level(logging.WARNING, logger="crosssell_tasks.generation.notifier"):
        notifier.notify([_entry("1", actor="")], context=RunContext())

    assert notifier.drain(timeout=5)
    assert sink.attempts == 0
    assert notifier.stats.dropped == 1
    assert "No actor for activity entry" in caplog.text


def test_cancelled_run_stops_retrying(make_notifier) -> None:
    sink = _Sink(fail_times=10)
    notifier = make_notifier(sink, max_retries=5, retry_base_seconds=30.0)
    context = RunContext()
    context.cancel()

    notifier.notify([_entry("1")], context=context)

    assert notifier.drain(timeout=5)
    assert sink.attempts == 1
    assert notifier.stats.failed == 1


def test_expired_deadline_keeps_retrying(make_notifier) -> None:
    sink = _Sink(fail_times=2)
    notifier = make_notifier(sink, max_retries=2, retry_base_seconds=0.01)

    notifier.notify([_entry("1")], context=RunContext.with_timeout(0))

    assert notifier.drain(timeout=5)
    assert sink.attempts == 3
    assert len(sink.entries) == 1
    assert notifier.stats.delivered == 1


def test_closed_notifier_drops_new_entries(make_notifier) -> None:
    sink = _Sink()
    notifier = make_notifier(sink)
    notifier.close()

    notifier.notify([_entry("1")], context=RunContext())

    assert sink.attempts == 0
    assert notifier.stats.dropped == 1


def test_repository_is_an_activity_sink(repository, make_notifier) -> None:
    notifier = make_notifier(repository)
    long_text = "x" * 150
    entry = _entry("task-1")
    entry.task_text = long_text
    entry.details = {"source": "cross_sell_opportunity"}

    notifier.notify([entry], context=RunContext())

    assert notifier.drain(timeout=5)
    stored = repository.list_activity(tenant_scope=TENANT)
    assert len(stored) == 1
    assert stored[0].task_text == "x" * 100
    assert stored[0].details == {"source": "cross_sell_opportunity"}
    assert stored[0].action is ActivityAction.TASK_CREATED
