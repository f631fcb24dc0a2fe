"""Normalization of raw Eitje shift documents.

Shift documents carry normalized columns (``user_id``, ``team_id``,
``environment_id``, ``hours_worked``, ``wage_cost``...) written at ingestion
time, plus the untouched API payload under ``raw_data``. Normalized columns
win; ``raw_data`` paths are the fallback. A zero in a normalized column is
treated as "not filled in" and falls through to ``raw_data``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from ops_core.exceptions import DataQualityError
from ops_core.normalize import pick, to_float, to_key
from ops_core.utils import coerce_date, coerce_datetime

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_HOURLY_WAGE = 15.0


class MalformedShift(DataQualityError):
    """A shift document cannot be placed on a date."""


@dataclass(frozen=True)
class Shift:
    """One normalized shift (time registration or planning)."""

    date: str
    environment_id: Optional[str]
    team_id: Optional[str]
    team_name: Optional[str]
    user_id: Optional[str]
    hours: float
    break_minutes: float
    wage_cost: float
    source: str = "eitje"
    source_id: Optional[str] = None
    ingested_at: Optional[datetime] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    status: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _raw(doc: Mapping[str, Any]) -> Mapping[str, Any]:
    raw = doc.get("raw_data")
    return raw if isinstance(raw, Mapping) else {}


def _id_value(value: Any) -> Optional[str]:
    # nested objects like {"id": 3, "name": "Bar"}
    if isinstance(value, Mapping):
        return to_key(value.get("id"))
    return to_key(value)


def first_id(doc: Mapping[str, Any], name: str) -> Optional[str]:
    """Identifier from the normalized columns, then from ``raw_data``."""
    for source in (doc, _raw(doc)):
        value = _id_value(pick(source, name))
        if value is not None:
            return value
    return None


def first_nonzero(doc: Mapping[str, Any], name: str) -> float:
    """First non-zero numeric value from the normalized columns, then ``raw_data``."""
    for source in (doc, _raw(doc)):
        value = to_float(pick(source, name))
        if value:
            return value
    return 0.0


def hours_from_times(start: Optional[datetime], end: Optional[datetime]) -> float:
    """Hours between two timestamps, never negative.

    Examples:
        >>> from datetime import datetime, timezone
        >>> hours_from_times(datetime(2024, 1, 1, 9, tzinfo=timezone.utc),
        ...                  datetime(2024, 1, 1, 17, 30, tzinfo=timezone.utc))
        8.5

    """
    if start is None or end is None:
        return 0.0
    return max(0.0, (end - start).total_seconds() / 3600.0)


def shift_date(doc: Mapping[str, Any]) -> Optional[str]:
    for source in (doc, _raw(doc)):
        day = coerce_date(pick(source, "shift_date"))
        if day is not None:
            return day.isoformat()
    return None


def shift_location(doc: Mapping[str, Any]) -> Optional[str]:
    """Location key of a shift document: its environment, else ``locationId``."""
    return first_id(doc, "environment_id") or to_key(doc.get("locationId"))


def normalize_shift(
    doc: Mapping[str, Any],
    fallback_hourly_wage: float | None = DEFAULT_FALLBACK_HOURLY_WAGE,
    hours_field: str = "hours_worked",
    cost_field: str = "wage_cost",
) -> Shift:
    """Normalize one raw shift document.

    Hours fall back to end - start when no hours field is filled in. Wage
    cost falls back to ``hours * fallback_hourly_wage`` when the shift
    carries no cost at all.

    Args:
        doc: Raw shift document.
        fallback_hourly_wage: Hourly wage used to estimate missing costs.
            Pass None to leave missing costs at 0 (planning shifts).
        hours_field: Canonical alias name for the hours value.
        cost_field: Canonical alias name for the cost value.

    Returns:
        Normalized Shift.

    Raises:
        MalformedShift: If the document has no usable date.

    Examples:
        >>> s = normalize_shift({"date": "2024-10-24", "user_id": 1, "hours_worked": 8})
        >>> s.hours, s.wage_cost
        (8.0, 120.0)

    """
    day = shift_date(doc)
    if day is None:
        raise MalformedShift(f"shift {doc.get('sourceId') or doc.get('id') or '?'} has no date")

    start = coerce_datetime(pick(doc, "start_time")) or coerce_datetime(pick(_raw(doc), "start_time"))
    end = coerce_datetime(pick(doc, "end_time")) or coerce_datetime(pick(_raw(doc), "end_time"))

    hours = first_nonzero(doc, hours_field) or hours_from_times(start, end)
    wage = first_nonzero(doc, cost_field)
    if not wage and fallback_hourly_wage is not None:
        wage = hours * fallback_hourly_wage

    team_name = pick(doc, "team_name") or pick(_raw(doc), "team_name")
    status = pick(doc, "status") or pick(_raw(doc), "status")
    raw_id = _raw(doc).get("id")

    return Shift(
        date=day,
        environment_id=first_id(doc, "environment_id"),
        team_id=first_id(doc, "team_id"),
        team_name=str(team_name).strip() if team_name else None,
        user_id=first_id(doc, "user_id"),
        hours=hours,
        break_minutes=first_nonzero(doc, "break_minutes"),
        wage_cost=wage,
        source=str(doc.get("source") or "eitje"),
        source_id=to_key(doc.get("sourceId")) or to_key(raw_id),
        ingested_at=coerce_datetime(doc.get("ingestedAt")),
        start=start,
        end=end,
        status=str(status).strip().lower() if status else None,
    )


def normalize_shifts(
    docs: Iterable[Mapping[str, Any]],
    fallback_hourly_wage: float | None = DEFAULT_FALLBACK_HOURLY_WAGE,
    hours_field: str = "hours_worked",
    cost_field: str = "wage_cost",
) -> tuple[list[Shift], list[str]]:
    """Normalize many shift documents, collecting warnings for skipped ones."""
    shifts: list[Shift] = []
    warnings: list[str] = []
    for doc in docs:
        try:
            shifts.append(normalize_shift(doc, fallback_hourly_wage, hours_field, cost_field))
        except MalformedShift as e:
            message = f"Skipping record without date: {e}"
            logger.warning(message)
            warnings.append(message)
    return shifts, warnings


def dedupe_shifts(shifts: Iterable[Shift]) -> tuple[list[Shift], int]:
    """Collapse the same shift ingested more than once.

    Shifts sharing ``(source, source_id)`` are reduced to the copy with the
    latest ``ingested_at`` (the first one on ties). Shifts without a
    ``source_id`` are always kept. Output keeps first-occurrence order.

    Returns:
        Tuple of (deduplicated shifts, number of copies dropped).

    """
    kept: list[Shift] = []
    index: dict[tuple[str, str], int] = {}
    dropped = 0
    for shift in shifts:
        if shift.source_id is None:
            kept.append(shift)
            continue
        key = (shift.source, shift.source_id)
        if key not in index:
            index[key] = len(kept)
            kept.append(shift)
            continue
        dropped += 1
        current = kept[index[key]]
        if shift.ingested_at is not None and (
            current.ingested_at is None or shift.ingested_at > current.ingested_at
        ):
            kept[index[key]] = shift
    if dropped:
        logger.info("Collapsed %d re-ingested shift copies", dropped)
    return kept, dropped
