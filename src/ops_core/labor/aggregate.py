"""Gold layer: labor hours per (date, environment, team, user).

Raw time-registration shifts are normalized, re-ingested copies are
collapsed, and the remaining shifts are grouped with pandas. Rows are
written by upsert on their natural key, so a run over a subset of dates
never erases groups outside its scope.

Examples:
    >>> batch = aggregate_labor_hours([
    ...     {"date": "2024-10-24", "environment_id": 1, "team_id": 2, "user_id": 1, "hours_worked": 8},
    ...     {"date": "2024-10-24", "environment_id": 1, "team_id": 2, "user_id": 1, "hours_worked": 0},
    ... ])
    >>> batch.records[0]["shiftCount"], batch.records[0]["employeeCount"]
    (2, 1)

"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import numpy as np
import pandas as pd

from ops_core.labor.shifts import (
    DEFAULT_FALLBACK_HOURLY_WAGE,
    Shift,
    dedupe_shifts,
    normalize_shifts,
)

logger = logging.getLogger(__name__)

LABOR_KEYS = ["date", "environmentId", "teamId", "userId"]


@dataclass
class LaborBatch:
    """Aggregated labor rows plus what was skipped on the way."""

    records: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    skipped: int = 0
    duplicates_collapsed: int = 0
    shifts_processed: int = 0


def shifts_frame(shifts: Iterable[Shift]) -> pd.DataFrame:
    """DataFrame of shifts with string keys ("" for missing) for grouping."""
    rows = [
        {
            "date": s.date,
            "environmentId": s.environment_id or "",
            "teamId": s.team_id or "",
            "teamName": s.team_name or "",
            "userId": s.user_id or "",
            "hours": s.hours,
            "breakMinutes": s.break_minutes,
            "wageCost": s.wage_cost,
            "status": s.status or "",
        }
        for s in shifts
    ]
    columns = [
        "date", "environmentId", "teamId", "teamName", "userId",
        "hours", "breakMinutes", "wageCost", "status",
    ]
    return pd.DataFrame(rows, columns=columns)


def _first_nonblank(values: pd.Series) -> str:
    for v in values:
        if v:
            return v
    return ""


def _safe_div(num: pd.Series, den: pd.Series) -> pd.Series:
    return (num / den.replace(0, np.nan)).fillna(0.0)


def group_labor(df: pd.DataFrame, by_user: bool = True) -> list[dict[str, Any]]:
    """Group a shifts frame into labor rows.

    Args:
        df: Output of :func:`shifts_frame`.
        by_user: Group per user (default) or roll up per team.

    Returns:
        List of row dicts sorted by key; missing key parts are None.

    """
    if df.empty:
        return []
    keys = LABOR_KEYS if by_user else LABOR_KEYS[:-1]
    df = df.assign(_employee=df["userId"].replace("", np.nan))
    grouped = (
        df.groupby(keys, sort=True)
        .agg(
            teamName=("teamName", _first_nonblank),
            totalHoursWorked=("hours", "sum"),
            totalBreakMinutes=("breakMinutes", "sum"),
            totalWageCost=("wageCost", "sum"),
            employeeCount=("_employee", "nunique"),
            shiftCount=("hours", "size"),
        )
        .reset_index()
    )
    grouped["avgHoursPerEmployee"] = _safe_div(grouped["totalHoursWorked"], grouped["employeeCount"])
    grouped["avgWagePerHour"] = _safe_div(grouped["totalWageCost"], grouped["totalHoursWorked"])

    money = [
        "totalHoursWorked",
        "totalBreakMinutes",
        "totalWageCost",
        "avgHoursPerEmployee",
        "avgWagePerHour",
    ]
    grouped[money] = grouped[money].round(2)

    records = []
    for row in grouped.to_dict(orient="records"):
        record: dict[str, Any] = {k: (row[k] or None) for k in keys}
        record["date"] = row["date"]
        record["teamName"] = row["teamName"] or None
        for col in money:
            record[col] = float(row[col])
        record["employeeCount"] = int(row["employeeCount"])
        record["shiftCount"] = int(row["shiftCount"])
        records.append(record)
    return records


def aggregate_labor_hours(
    raw_shifts: Iterable[Mapping[str, Any]],
    by_user: bool = True,
    fallback_hourly_wage: float = DEFAULT_FALLBACK_HOURLY_WAGE,
) -> LaborBatch:
    """Aggregate raw time-registration shifts into labor rows.

    Args:
        raw_shifts: ``eitje_time_registration_shifts_raw`` documents.
        by_user: Key rows by (date, environmentId, teamId, userId) when True,
            by (date, environmentId, teamId) otherwise.
        fallback_hourly_wage: Hourly wage for shifts without any cost.

    Returns:
        LaborBatch with rows rounded to 2 decimals.

    """
    shifts, warnings = normalize_shifts(raw_shifts, fallback_hourly_wage)
    batch = LaborBatch(warnings=warnings, skipped=len(warnings))
    shifts, batch.duplicates_collapsed = dedupe_shifts(shifts)
    batch.shifts_processed = len(shifts)
    batch.records = group_labor(shifts_frame(shifts), by_user=by_user)
    logger.info(
        "Aggregated %d shifts into %d labor rows (%d skipped, %d duplicates collapsed)",
        batch.shifts_processed,
        len(batch.records),
        batch.skipped,
        batch.duplicates_collapsed,
    )
    return batch
