"""Load scored opportunities from a CSV export."""

from __future__ import annotations

import csv
import math
from datetime import date
from pathlib import Path

from crosssell_tasks.generation.models import OpportunityImport, PriorityTier

REQUIRED_COLUMNS = (
    "opportunity_id",
    "customer_name",
    "recommended_product",
    "priority_tier",
    "priority_rank",
)


def load_opportunities_csv(path: Path) -> list[OpportunityImport]:
    """Parse an opportunity export; raise ``ValueError`` naming the bad line."""

    with path.open("r", encoding="utf-8", newline="") as handle:
        reader = csv.DictReader(handle)
        columns = set(reader.fieldnames or ())
        missing = [name for name in REQUIRED_COLUMNS if name not in columns]
        if missing:
            raise ValueError(f"{path}: missing required column(s): {', '.join(missing)}")

        records: list[OpportunityImport] = []
        seen: set[str] = set()
        for row in reader:
            line = reader.line_num
            try:
                record = _parse_row(row)
            except ValueError as error:
                raise ValueError(f"{path}:{line}: {error}") from error
            if record.opportunity_id in seen:
                raise ValueError(
                    f"{path}:{line}: duplicate opportunity_id {record.opportunity_id!r}",
                )
            seen.add(record.opportunity_id)
            records.append(record)
    return records


def _parse_row(row: dict[str, str | None]) -> OpportunityImport:
    for name in REQUIRED_COLUMNS:
        if not _text(row.get(name)):
            raise ValueError(f"{name} is required")

    tier = _text(row.get("priority_tier")).upper()
    if tier not in PriorityTier.__members__:
        raise ValueError(f"unknown priority_tier {row.get('priority_tier')!r}")

    return OpportunityImport(
        opportunity_id=_text(row.get("opportunity_id")),
        customer_name=_text(row.get("customer_name")),
        recommended_product=_text(row.get("recommended_product")),
        priority_tier=tier,
        priority_rank=_int(row.get("priority_rank"), "priority_rank"),
        priority_score=_int(row.get("priority_score"), "priority_score", default=0),
        phone=_text(row.get("phone")) or None,
        email=_text(row.get("email")) or None,
        renewal_date=_date(row.get("renewal_date")),
        current_products=_text(row.get("current_products")),
        current_premium=_float(row.get("current_premium"), "current_premium"),
        potential_premium_add=_float(row.get("potential_premium_add"), "potential_premium_add"),
        talking_point_1=_text(row.get("talking_point_1")) or None,
        talking_point_2=_text(row.get("talking_point_2")) or None,
        talking_point_3=_text(row.get("talking_point_3")) or None,
    )


def _text(value: str | None) -> str:
    return (value or "").strip()


def _int(value: str | None, name: str, *, default: int | None = None) -> int:
    raw = _text(value)
    if not raw and default is not None:
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ValueError(f"{name} must be an integer, got {value!r}") from error


def _float(value: str | None, name: str) -> float | None:
    raw = _text(value).replace(",", "").lstrip("$")
    if not raw:
        return None
    try:
        parsed = float(raw)
    except ValueError as error:
        raise ValueError(f"{name} must be a number, got {value!r}") from error
    if not math.isfinite(parsed):
        raise ValueError(f"{name} must be a finite number, got {value!r}")
    return parsed


def _date(value: str | None) -> date | None:
    raw = _text(value)
    if not raw:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError as error:
        raise ValueError(f"renewal_date must be YYYY-MM-DD, got {value!r}") from error
