from __future__ import annotations

from pathlib import Path

import allure
import pytest

from crosssell_tasks.config import GenerationSettings, Settings

pytestmark = [
    allure.epic("Task Generation"),
    allure.feature("Configuration"),
]


def test_defaults_match_documented_values(monkeypatch) -> None:
    for name in (
        "CROSSSELL_TASKS_DB_PATH",
        "CROSSSELL_TASKS_DEFAULT_TIERS",
        "CROSSSELL_TASKS_MAX_OPPORTUNITIES",
        "CROSSSELL_TASKS_TENANT_SCOPE",
        "CROSSSELL_TASKS_ACTOR",
    ):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.db_path == Path(".crosssell_tasks.db")
    assert settings.generation.default_tiers == ("HOT", "HIGH")
    assert settings.generation.max_opportunities == 100
    assert settings.generation.due_date_days_before_renewal == 3
    assert settings.generation.notify_max_retries == 2
    assert settings.generation.notify_retry_base_seconds == pytest.approx(0.1)
    assert settings.user_context.tenant_scope == "default_agency"
    settings.validate()


def test_environment_overrides(monkeypatch, tmp_path: Path) -> None:
    monkeypatch.setenv("CROSSSELL_TASKS_DEFAULT_TIERS", " hot, medium ,hot,")
    monkeypatch.setenv("CROSSSELL_TASKS_MAX_OPPORTUNITIES", "25")
    monkeypatch.setenv("CROSSSELL_TASKS_LINK_MAX_WORKERS", "3")
    monkeypatch.setenv("CROSSSELL_TASKS_RUN_TIMEOUT_SECONDS", "7.5")
    monkeypatch.setenv("CROSSSELL_TASKS_TENANT_SCOPE", "agency-9")
    monkeypatch.setenv("CROSSSELL_TASKS_ACTOR", "scheduler")

    settings = Settings.from_env(db_path=tmp_path / "x.db")

    assert settings.db_path == tmp_path / "x.db"
    assert settings.generation.default_tiers == ("HOT", "MEDIUM")
    assert settings.generation.max_opportunities == 25
    assert settings.generation.link_max_workers == 3
    assert settings.generation.run_timeout_seconds == pytest.approx(7.5)
    assert settings.user_context.tenant_scope == "agency-9"
    assert settings.user_context.actor == "scheduler"


@pytest.mark.parametrize(
    ("generation", "message"),
    [
        (GenerationSettings(max_opportunities=0), "MAX_OPPORTUNITIES"),
        (GenerationSettings(due_date_days_before_renewal=-1), "DUE_DATE_DAYS_BEFORE_RENEWAL"),
        (GenerationSettings(due_date_days_before_renewal=3651), "must be <= 3650"),
        (GenerationSettings(link_max_workers=0), "LINK_MAX_WORKERS"),
        (GenerationSettings(notify_max_workers=0), "NOTIFY_MAX_WORKERS"),
        (GenerationSettings(notify_max_retries=-1), "NOTIFY_MAX_RETRIES"),
        (GenerationSettings(run_timeout_seconds=0), "RUN_TIMEOUT_SECONDS"),
        (GenerationSettings(default_tiers=("HOT", "WARM")), "WARM"),
    ],
)
def test_validate_rejects_unusable_values(generation: GenerationSettings, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        Settings(generation=generation).validate()


def test_validate_rejects_non_positive_busy_timeout() -> None:
    with pytest.raises(ValueError, match="SQLITE_BUSY_TIMEOUT_MS"):
        Settings(sqlite_busy_timeout_ms=0).validate()
