"""Public trigger functions for the aggregation engine.

Each function runs one pass against a RawStore and returns an
AggregationResult. Every call is safe to re-run: the aggregate
collections end up in the same state for the same raw data.

Examples:
    >>> from ops_core import MemoryStore, aggregate_sales_line_items
    >>> store = MemoryStore()
    >>> result = aggregate_sales_line_items(store, ("2024-10-01", "2024-10-31"))
    >>> result.to_dict()["recordsAggregated"]
    0

"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional, Union

from ops_core.config import EngineConfig
from ops_core.pipeline import AggregationEngine, AggregationResult, CancelToken
from ops_core.store.base import RawStore
from ops_core.utils import DateRange

logger = logging.getLogger(__name__)

DateRangeLike = Union[DateRange, tuple[str, str]]


def to_date_range(date_range: DateRangeLike) -> DateRange:
    """Accept a DateRange or a ("YYYY-MM-DD", "YYYY-MM-DD") tuple.

    Raises:
        ValueError: If the dates are malformed or start is after end.

    """
    if isinstance(date_range, DateRange):
        return date_range
    try:
        start, end = date_range
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid date range {date_range!r}: expected (start, end)") from e
    return DateRange.from_strings(str(start), str(end))


def _engine(
    store: RawStore,
    config: EngineConfig | None,
    cancel_token: CancelToken | None,
) -> AggregationEngine:
    return AggregationEngine(store, config=config, cancel_token=cancel_token)


def aggregate_sales_line_items(
    store: RawStore,
    date_range: DateRangeLike,
    location_id: Optional[str] = None,
    mode: str = "incremental",
    config: EngineConfig | None = None,
    cancel_token: CancelToken | None = None,
) -> AggregationResult:
    """Flatten Bork tickets into ``sales_line_items_aggregated``.

    The daily sales mart is refreshed for the same dates.

    Args:
        store: Document store.
        date_range: Dates to aggregate (inclusive).
        location_id: Restrict to one location; None processes all locations.
        mode: "incremental" (only changed dates) or "force" (whole range).
        config: Engine configuration.
        cancel_token: Optional cancellation token.

    Returns:
        AggregationResult describing the pass.

    Raises:
        ValueError: If mode or dates are invalid.
        StoreUnavailableError: If the store keeps failing after retries.
        AggregationCancelled: If the pass was cancelled.

    Examples:
        >>> result = aggregate_sales_line_items(store, ("2024-10-01", "2024-10-31"), "loc-1")
        >>> result = aggregate_sales_line_items(store, ("2024-10-01", "2024-10-31"), mode="force")

    """
    return _engine(store, config, cancel_token).aggregate_sales_line_items(
        to_date_range(date_range), location_id, mode
    )


def aggregate_labor_hours(
    store: RawStore,
    date_range: DateRangeLike,
    location_id: Optional[str] = None,
    mode: str = "incremental",
    config: EngineConfig | None = None,
    cancel_token: CancelToken | None = None,
    by_user: bool = True,
) -> AggregationResult:
    """Aggregate Eitje shifts into ``eitje_labor_hours_aggregated``.

    ``location_id`` is an Eitje environment id. With ``by_user=False`` the
    per-team rollup is written to ``eitje_labor_hours_team_aggregated``.
    """
    return _engine(store, config, cancel_token).aggregate_labor_hours(
        to_date_range(date_range), location_id, mode, by_user=by_user
    )


def aggregate_planning_hours(
    store: RawStore,
    date_range: DateRangeLike,
    location_id: Optional[str] = None,
    mode: str = "incremental",
    config: EngineConfig | None = None,
    cancel_token: CancelToken | None = None,
) -> AggregationResult:
    """Aggregate planned shifts into ``eitje_planning_hours_aggregated``."""
    return _engine(store, config, cancel_token).aggregate_planning_hours(
        to_date_range(date_range), location_id, mode
    )


def aggregate_revenue_days(
    store: RawStore,
    date_range: DateRangeLike,
    location_id: Optional[str] = None,
    mode: str = "incremental",
    config: EngineConfig | None = None,
    cancel_token: CancelToken | None = None,
) -> AggregationResult:
    """Aggregate Eitje revenue days into ``eitje_revenue_days_aggregated``."""
    return _engine(store, config, cancel_token).aggregate_revenue_days(
        to_date_range(date_range), location_id, mode
    )


def aggregate_sales_daily(
    store: RawStore,
    date_range: DateRangeLike,
    location_id: Optional[str] = None,
    mode: str = "force",
    config: EngineConfig | None = None,
    cancel_token: CancelToken | None = None,
) -> AggregationResult:
    """Rebuild ``sales_daily_aggregated`` from stored line items."""
    return _engine(store, config, cancel_token).aggregate_sales_daily(
        to_date_range(date_range), location_id, mode
    )


def reconcile_worker_profiles(
    store: RawStore,
    now: datetime | date | None = None,
    strict: bool = False,
    config: EngineConfig | None = None,
    cancel_token: CancelToken | None = None,
) -> AggregationResult:
    """Rebuild ``worker_profiles_aggregated`` from identity sources and shifts.

    Args:
        store: Document store.
        now: Aggregation time used for team activity; defaults to the current time.
        strict: Raise IdentityConflictError on duplicate worker profiles
            instead of reporting them.
        config: Engine configuration.
        cancel_token: Optional cancellation token.

    """
    return _engine(store, config, cancel_token).reconcile_worker_profiles(now=now, strict=strict)
