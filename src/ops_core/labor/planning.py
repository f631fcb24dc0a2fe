"""Gold layer: planned hours per (date, environment, team)."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import numpy as np
import pandas as pd

from ops_core.labor.aggregate import LaborBatch, shifts_frame
from ops_core.labor.shifts import dedupe_shifts, normalize_shifts

logger = logging.getLogger(__name__)

PLANNING_KEYS = ["date", "environmentId", "teamId"]


def _status_counts(status: pd.Series) -> pd.DataFrame:
    # anything that is neither confirmed nor cancelled counts as planned
    return pd.DataFrame(
        {
            "confirmed": (status == "confirmed").astype(int),
            "cancelled": (status == "cancelled").astype(int),
            "planned": (~status.isin(["confirmed", "cancelled"])).astype(int),
        }
    )


def aggregate_planning_hours(raw_shifts: Iterable[Mapping[str, Any]]) -> LaborBatch:
    """Aggregate raw planning shifts into planning rows.

    Planned cost is taken from the shift only; no wage estimate is made
    for planned shifts without cost. Re-ingested copies of a shift are
    collapsed first.

    Args:
        raw_shifts: ``eitje_planning_shifts_raw`` documents.

    Returns:
        LaborBatch whose records carry ``plannedHoursTotal``,
        ``totalBreakMinutes``, ``totalPlannedCost``, ``employeeCount``,
        ``shiftCount``, status counts and averages.

    """
    shifts, warnings = normalize_shifts(
        raw_shifts,
        fallback_hourly_wage=None,
        hours_field="planned_hours",
        cost_field="planned_cost",
    )
    batch = LaborBatch(warnings=warnings, skipped=len(warnings))
    shifts, batch.duplicates_collapsed = dedupe_shifts(shifts)
    batch.shifts_processed = len(shifts)
    df = shifts_frame(shifts)
    if df.empty:
        return batch

    df = pd.concat([df, _status_counts(df["status"])], axis=1)
    df["_employee"] = df["userId"].replace("", np.nan)
    grouped = (
        df.groupby(PLANNING_KEYS, sort=True)
        .agg(
            plannedHoursTotal=("hours", "sum"),
            totalBreakMinutes=("breakMinutes", "sum"),
            totalPlannedCost=("wageCost", "sum"),
            employeeCount=("_employee", "nunique"),
            shiftCount=("hours", "size"),
            confirmedCount=("confirmed", "sum"),
            cancelledCount=("cancelled", "sum"),
            plannedCount=("planned", "sum"),
        )
        .reset_index()
    )
    grouped["avgHoursPerEmployee"] = (
        grouped["plannedHoursTotal"] / grouped["employeeCount"].replace(0, np.nan)
    ).fillna(0.0)
    grouped["avgCostPerHour"] = (
        grouped["totalPlannedCost"] / grouped["plannedHoursTotal"].replace(0, np.nan)
    ).fillna(0.0)

    floats = [
        "plannedHoursTotal",
        "totalBreakMinutes",
        "totalPlannedCost",
        "avgHoursPerEmployee",
        "avgCostPerHour",
    ]
    counts = ["employeeCount", "shiftCount", "confirmedCount", "cancelledCount", "plannedCount"]
    grouped[floats] = grouped[floats].round(2)

    for row in grouped.to_dict(orient="records"):
        record: dict[str, Any] = {k: (row[k] or None) for k in PLANNING_KEYS}
        record.update({col: float(row[col]) for col in floats})
        record.update({col: int(row[col]) for col in counts})
        batch.records.append(record)

    logger.info("Aggregated %d planning shifts into %d rows", len(shifts), len(batch.records))
    return batch
