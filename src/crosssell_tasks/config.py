"""Runtime configuration for task generation pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from crosssell_tasks.generation.models import MAX_DUE_DATE_DAYS_BEFORE_RENEWAL

KNOWN_TIERS = ("HOT", "HIGH", "MEDIUM", "LOW")


@dataclass(slots=True)
class GenerationSettings:
    """Selection caps, fan-out bounds and notification retry policy."""

    default_tiers: tuple[str, ...] = ("HOT", "HIGH")
    max_opportunities: int = 100
    due_date_days_before_renewal: int = 3
    link_max_workers: int = 8
    notify_max_workers: int = 4
    notify_max_retries: int = 2
    notify_retry_base_seconds: float = 0.1
    run_timeout_seconds: float = 60.0


@dataclass(slots=True)
class UserContextSettings:
    """Default tenant/actor context for CLI runs."""

    tenant_scope: str = "default_agency"
    actor: str = "system"


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".crosssell_tasks.db")
    sqlite_busy_timeout_ms: int = 5_000
    generation: GenerationSettings = field(default_factory=GenerationSettings)
    user_context: UserContextSettings = field(default_factory=UserContextSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("CROSSSELL_TASKS_DB_PATH", ".crosssell_tasks.db")),
            sqlite_busy_timeout_ms=int(os.getenv("CROSSSELL_TASKS_SQLITE_BUSY_TIMEOUT_MS", "5000")),
            generation=GenerationSettings(
                default_tiers=_env_tiers("CROSSSELL_TASKS_DEFAULT_TIERS", default=("HOT", "HIGH")),
                max_opportunities=int(os.getenv("CROSSSELL_TASKS_MAX_OPPORTUNITIES", "100")),
                due_date_days_before_renewal=int(
                    os.getenv("CROSSSELL_TASKS_DUE_DATE_DAYS_BEFORE_RENEWAL", "3"),
                ),
                link_max_workers=int(os.getenv("CROSSSELL_TASKS_LINK_MAX_WORKERS", "8")),
                notify_max_workers=int(os.getenv("CROSSSELL_TASKS_NOTIFY_MAX_WORKERS", "4")),
                notify_max_retries=int(os.getenv("CROSSSELL_TASKS_NOTIFY_MAX_RETRIES", "2")),
                notify_retry_base_seconds=float(
                    os.getenv("CROSSSELL_TASKS_NOTIFY_RETRY_BASE_SECONDS", "0.1"),
                ),
                run_timeout_seconds=float(os.getenv("CROSSSELL_TASKS_RUN_TIMEOUT_SECONDS", "60")),
            ),
            user_context=UserContextSettings(
                tenant_scope=os.getenv("CROSSSELL_TASKS_TENANT_SCOPE", "default_agency"),
                actor=os.getenv("CROSSSELL_TASKS_ACTOR", "system"),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error for values the pipeline cannot run with."""

        generation = self.generation
        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("CROSSSELL_TASKS_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if generation.max_opportunities <= 0:
            raise ValueError("CROSSSELL_TASKS_MAX_OPPORTUNITIES must be > 0.")
        if generation.due_date_days_before_renewal < 0:
            raise ValueError("CROSSSELL_TASKS_DUE_DATE_DAYS_BEFORE_RENEWAL must be >= 0.")
        if generation.due_date_days_before_renewal > MAX_DUE_DATE_DAYS_BEFORE_RENEWAL:
            raise ValueError(
                "CROSSSELL_TASKS_DUE_DATE_DAYS_BEFORE_RENEWAL must be <= "
                f"{MAX_DUE_DATE_DAYS_BEFORE_RENEWAL}.",
            )
        if generation.link_max_workers <= 0:
            raise ValueError("CROSSSELL_TASKS_LINK_MAX_WORKERS must be > 0.")
        if generation.notify_max_workers <= 0:
            raise ValueError("CROSSSELL_TASKS_NOTIFY_MAX_WORKERS must be > 0.")
        if generation.notify_max_retries < 0:
            raise ValueError("CROSSSELL_TASKS_NOTIFY_MAX_RETRIES must be >= 0.")
        if generation.notify_retry_base_seconds < 0:
            raise ValueError("CROSSSELL_TASKS_NOTIFY_RETRY_BASE_SECONDS must be >= 0.")
        if generation.run_timeout_seconds <= 0:
            raise ValueError("CROSSSELL_TASKS_RUN_TIMEOUT_SECONDS must be > 0.")
        unknown = [tier for tier in generation.default_tiers if tier not in KNOWN_TIERS]
        if unknown:
            raise ValueError(
                f"Unknown priority tier(s) in CROSSSELL_TASKS_DEFAULT_TIERS: {', '.join(unknown)}",
            )


def _env_tiers(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    tiers: list[str] = []
    for part in raw.split(","):
        token = part.strip().upper()
        if token and token not in tiers:
            tiers.append(token)
    return tuple(tiers)
