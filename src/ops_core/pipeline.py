"""Aggregation orchestrator.

The engine ties the pieces together for one pass:

1. Ask the ChangeTracker which date ranges changed (``mode="incremental"``)
   or take the whole requested range (``mode="force"``).
2. Read the raw documents for each range and run the aggregator.
3. Write the aggregate collection: line items by atomic slice replace,
   labor/planning/revenue/worker rows by upsert on their natural key.
4. Advance the ChangeMarker, only after every write succeeded.

A StoreUnavailableError re-runs the whole pass from step 1, up to
``EngineConfig.max_write_retries`` times, then propagates. Cancellation
(CancelToken or ``max_duration_seconds``) raises AggregationCancelled and
leaves the marker untouched.

Examples:
    >>> from ops_core.store import MemoryStore
    >>> from ops_core.utils import DateRange
    >>> engine = AggregationEngine(MemoryStore())
    >>> result = engine.aggregate_sales_line_items(DateRange.from_strings("2024-10-01", "2024-10-31"))
    >>> result.records_aggregated
    0

"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional, TypeVar

from ops_core.config import EngineConfig
from ops_core.exceptions import AggregationCancelled, StoreUnavailableError
from ops_core.identity.reconcile import reconcile
from ops_core.labor.aggregate import LABOR_KEYS, LaborBatch, aggregate_labor_hours
from ops_core.labor.planning import PLANNING_KEYS, aggregate_planning_hours
from ops_core.labor.revenue import REVENUE_KEYS, aggregate_revenue_days
from ops_core.labor.shifts import dedupe_shifts, normalize_shifts, shift_location
from ops_core.normalize import to_key
from ops_core.sales.categories import CategoryResolver, build_resolver
from ops_core.sales.line_items import aggregate_line_items, collect_waiter_names
from ops_core.sales.marts import build_sales_daily
from ops_core.store.base import RawStore, UpsertOp
from ops_core.tracking import ChangeTracker, DocPredicate
from ops_core.utils import DateRange, coerce_datetime, format_duration, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")

VALID_MODES = ("incremental", "force")


@dataclass
class AggregationResult:
    """Outcome of one trigger call.

    Attributes:
        records_aggregated: Aggregate rows written.
        records_processed: Raw records read.
        warnings: Data-quality issues (skipped records, duplicates, fallbacks).
        errors: Failures that ended the pass.
        incremental: True when only changed ranges were processed.
        aggregated_dates: YYYY-MM-DD dates that were (re)aggregated.
        processing_time: Wall-clock seconds.
    """

    records_aggregated: int = 0
    records_processed: int = 0
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    incremental: bool = False
    aggregated_dates: list[str] = field(default_factory=list)
    processing_time: float = 0.0

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "recordsAggregated": self.records_aggregated,
            "recordsProcessed": self.records_processed,
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "incremental": self.incremental,
            "aggregatedDates": sorted(self.aggregated_dates),
            "processingTime": round(self.processing_time, 3),
        }


class CancelToken:
    """Cooperative cancellation flag checked between steps of a pass."""

    def __init__(self) -> None:
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._reason = reason

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[str]:
        return self._reason


def _validate_mode(mode: str) -> None:
    if mode not in VALID_MODES:
        raise ValueError(f"Invalid mode '{mode}'. Must be 'incremental' or 'force'.")


def _range_filter(date_range: DateRange, location_id: Optional[str]) -> dict[str, Any]:
    query: dict[str, Any] = {"date": date_range.as_filter()}
    if location_id is not None:
        query["locationId"] = location_id
    return query


def _upsert_ops(records: Iterable[Mapping[str, Any]], keys: list[str]) -> list[UpsertOp]:
    ops = []
    for record in records:
        key = {k: record.get(k) for k in keys}
        ops.append(UpsertOp(filter=key, update=dict(record)))
    return ops


class AggregationEngine:
    """Runs aggregation passes against a RawStore.

    Args:
        store: Document store holding raw, aggregate and marker collections.
        config: Policy constants; defaults to ``EngineConfig()``.
        cancel_token: Optional token checked between steps.
    """

    def __init__(
        self,
        store: RawStore,
        config: EngineConfig | None = None,
        cancel_token: CancelToken | None = None,
    ) -> None:
        self.store = store
        self.config = config or EngineConfig()
        self.collections = self.config.collections
        self.cancel_token = cancel_token or CancelToken()
        self._deadline: Optional[float] = None

    # ------------------------------------------------------------------ #
    # Pass control
    # ------------------------------------------------------------------ #

    def _checkpoint(self) -> None:
        if self.cancel_token.cancelled:
            raise AggregationCancelled(f"Aggregation cancelled: {self.cancel_token.reason}")
        if self._deadline is not None and time.monotonic() > self._deadline:
            raise AggregationCancelled(
                f"Aggregation exceeded time budget of {self.config.max_duration_seconds}s"
            )

    def _with_retries(self, name: str, attempt: Callable[[], T]) -> T:
        """Run a whole pass, re-running it from scratch on store failures."""
        retries = self.config.max_write_retries
        if self.config.max_duration_seconds is not None:
            self._deadline = time.monotonic() + self.config.max_duration_seconds
        failures = 0
        try:
            while True:
                try:
                    return attempt()
                except StoreUnavailableError as e:
                    failures += 1
                    if failures > retries:
                        logger.error("%s failed after %d attempt(s): %s", name, failures, e)
                        raise
                    logger.warning(
                        "%s failed (%s), re-running pass (%d/%d)", name, e, failures, retries
                    )
        finally:
            self._deadline = None

    def _incremental_pass(
        self,
        name: str,
        source: str,
        raw_collection: str,
        date_range: DateRange,
        location_id: Optional[str],
        mode: str,
        belongs: Optional[DocPredicate],
        run_range: Callable[[DateRange, AggregationResult], set[str]],
    ) -> AggregationResult:
        _validate_mode(mode)
        clock = time.perf_counter()
        logger.info("Running %s for %s (location=%s, mode=%s)", name, date_range, location_id, mode)

        def attempt() -> AggregationResult:
            started_at = utc_now()
            result = AggregationResult(incremental=(mode == "incremental"))
            tracker = ChangeTracker(self.store, self.collections)
            self._checkpoint()
            if mode == "force":
                ranges = [date_range]
            else:
                ranges = tracker.changed_ranges(
                    source,
                    location_id,
                    date_range,
                    raw_collection=raw_collection,
                    belongs=belongs,
                )

            failed: set[str] = set()
            for sub_range in ranges:
                self._checkpoint()
                failed |= run_range(sub_range, result)
                result.aggregated_dates.extend(
                    d.isoformat() for d in sub_range.days() if d.isoformat() not in failed
                )

            self._checkpoint()
            tracker.advance(
                source,
                location_id,
                started_at,
                failed,
                processed_range=date_range,
                raw_collection=raw_collection,
                belongs=belongs,
            )
            result.warnings.extend(dict.fromkeys(tracker.warnings))
            return result

        result = self._with_retries(name, attempt)
        result.processing_time = time.perf_counter() - clock
        logger.info(
            "%s done: %d rows from %d raw records in %s (%d warnings)",
            name,
            result.records_aggregated,
            result.records_processed,
            format_duration(result.processing_time),
            len(result.warnings),
        )
        return result

    # ------------------------------------------------------------------ #
    # Sales
    # ------------------------------------------------------------------ #

    def load_resolver(self, location_id: Optional[str] = None) -> CategoryResolver:
        """Build the category resolver for a pass from stored product groups."""
        groups = self.store.find(self.collections.product_groups)
        if location_id is not None:
            groups = [
                g for g in groups if to_key(g.get("locationId")) in (None, location_id)
            ]
        return build_resolver(groups, max_depth=self.config.max_hierarchy_depth)

    def aggregate_sales_line_items(
        self,
        date_range: DateRange,
        location_id: Optional[str] = None,
        mode: str = "incremental",
    ) -> AggregationResult:
        """Rebuild sales line items (and the daily mart) for changed dates.

        Each changed range is replaced as one atomic slice (date range plus
        location, or all locations when ``location_id`` is None).
        """
        resolver_cache: list[CategoryResolver] = []

        def run_range(sub_range: DateRange, result: AggregationResult) -> set[str]:
            if not resolver_cache:
                resolver_cache.append(self.load_resolver(location_id))
            query = _range_filter(sub_range, location_id)
            docs = self.store.find(self.collections.bork_raw, query)
            batch = aggregate_line_items(docs, resolver_cache[0])
            self._checkpoint()
            written = self.store.replace_many(self.collections.sales_line_items, query, batch.records)
            self.store.replace_many(
                self.collections.sales_daily, query, build_sales_daily(batch.records)
            )
            result.records_processed += batch.documents_processed
            result.records_aggregated += written.inserted
            result.warnings.extend(batch.warnings)
            return batch.failed_dates

        return self._incremental_pass(
            "sales line items",
            "bork",
            self.collections.bork_raw,
            date_range,
            location_id,
            mode,
            None,
            run_range,
        )

    def aggregate_sales_daily(
        self,
        date_range: DateRange,
        location_id: Optional[str] = None,
        mode: str = "force",
    ) -> AggregationResult:
        """Rebuild the daily sales mart from stored line items.

        The mart is derived from aggregates, not raw data, so every call
        rebuilds the whole range.
        """
        _validate_mode(mode)
        clock = time.perf_counter()

        def attempt() -> AggregationResult:
            self._checkpoint()
            result = AggregationResult(incremental=False)
            query = _range_filter(date_range, location_id)
            lines = self.store.find(self.collections.sales_line_items, query)
            rows = build_sales_daily(lines)
            self._checkpoint()
            written = self.store.replace_many(self.collections.sales_daily, query, rows)
            result.records_processed = len(lines)
            result.records_aggregated = written.inserted
            result.aggregated_dates = sorted({r["date"] for r in rows})
            return result

        result = self._with_retries("sales daily", attempt)
        result.processing_time = time.perf_counter() - clock
        return result

    # ------------------------------------------------------------------ #
    # Labor
    # ------------------------------------------------------------------ #

    @staticmethod
    def _shift_belongs(location_id: Optional[str]) -> DocPredicate:
        def belongs(doc: Mapping[str, Any]) -> bool:
            return location_id is None or shift_location(doc) == location_id

        return belongs

    def _labor_style_pass(
        self,
        name: str,
        source: str,
        raw_collection: str,
        target: str,
        keys: list[str],
        aggregate: Callable[[list[dict[str, Any]]], LaborBatch],
        date_range: DateRange,
        location_id: Optional[str],
        mode: str,
    ) -> AggregationResult:
        belongs = self._shift_belongs(location_id)

        def run_range(sub_range: DateRange, result: AggregationResult) -> set[str]:
            docs = [
                d
                for d in self.store.find(raw_collection, {"date": sub_range.as_filter()})
                if belongs(d)
            ]
            batch = aggregate(docs)
            self._checkpoint()
            if batch.records:
                written = self.store.bulk_upsert(target, _upsert_ops(batch.records, keys))
                result.records_aggregated += written.upserted + written.matched
            result.records_processed += len(docs)
            result.warnings.extend(batch.warnings)
            return set()

        return self._incremental_pass(
            name, source, raw_collection, date_range, location_id, mode, belongs, run_range
        )

    def aggregate_labor_hours(
        self,
        date_range: DateRange,
        location_id: Optional[str] = None,
        mode: str = "incremental",
        by_user: bool = True,
    ) -> AggregationResult:
        """Upsert labor hours per (date, environment, team[, user]).

        Per-user rows and team rollups (``by_user=False``) live in separate
        collections and keep separate markers.
        """
        if by_user:
            name, source, target, keys = (
                "labor hours", "eitje", self.collections.labor_hours, LABOR_KEYS
            )
        else:
            name, source, target, keys = (
                "team labor hours", "eitje_team", self.collections.labor_hours_team, LABOR_KEYS[:-1]
            )
        return self._labor_style_pass(
            name,
            source,
            self.collections.shifts_raw,
            target,
            keys,
            lambda docs: aggregate_labor_hours(
                docs, by_user=by_user, fallback_hourly_wage=self.config.fallback_hourly_wage
            ),
            date_range,
            location_id,
            mode,
        )

    def aggregate_planning_hours(
        self,
        date_range: DateRange,
        location_id: Optional[str] = None,
        mode: str = "incremental",
    ) -> AggregationResult:
        """Upsert planned hours per (date, environment, team)."""
        return self._labor_style_pass(
            "planning hours",
            "eitje_planning",
            self.collections.planning_raw,
            self.collections.planning_hours,
            PLANNING_KEYS,
            aggregate_planning_hours,
            date_range,
            location_id,
            mode,
        )

    def aggregate_revenue_days(
        self,
        date_range: DateRange,
        location_id: Optional[str] = None,
        mode: str = "incremental",
    ) -> AggregationResult:
        """Upsert revenue days per (date, environment)."""
        return self._labor_style_pass(
            "revenue days",
            "eitje_revenue",
            self.collections.revenue_raw,
            self.collections.revenue_days,
            REVENUE_KEYS,
            aggregate_revenue_days,
            date_range,
            location_id,
            mode,
        )

    # ------------------------------------------------------------------ #
    # Identity
    # ------------------------------------------------------------------ #

    def reconcile_worker_profiles(
        self,
        now: datetime | date | None = None,
        strict: bool = False,
    ) -> AggregationResult:
        """Rebuild ``worker_profiles_aggregated`` from all identity sources.

        Raises:
            IdentityConflictError: If ``strict`` is set and duplicates exist.

        """
        clock = time.perf_counter()
        aggregated_at = coerce_datetime(now) if now is not None else utc_now()
        logger.info("Reconciling worker profiles")

        def attempt() -> AggregationResult:
            c = self.collections
            self._checkpoint()
            profiles = self.store.find(c.worker_profiles)
            shifts, shift_warnings = normalize_shifts(
                self.store.find(c.shifts_raw), fallback_hourly_wage=None
            )
            shifts, _ = dedupe_shifts(shifts)
            outcome = reconcile(
                unified_users=self.store.find(c.unified_users),
                eitje_raw_users=self.store.find(c.eitje_users_raw),
                bork_waiter_names=collect_waiter_names(self.store.find(c.bork_raw)),
                worker_profiles=profiles,
                shifts=shifts,
                teams=self.store.find(c.eitje_teams_raw),
                now=aggregated_at,
                strict=strict,
                activity_window_days=self.config.activity_window_days,
            )
            self._checkpoint()
            ops = []
            for profile in outcome.profiles:
                if profile["eitjeUserId"] is not None:
                    key = {"eitjeUserId": profile["eitjeUserId"]}
                else:
                    key = {"eitjeUserId": None, "profileId": profile["profileId"]}
                ops.append(UpsertOp(filter=key, update={**profile, "lastAggregated": aggregated_at}))
            written = self.store.bulk_upsert(c.worker_profiles_aggregated, ops) if ops else None

            result = AggregationResult(incremental=False)
            result.records_processed = len(profiles)
            result.records_aggregated = (written.upserted + written.matched) if written else 0
            result.warnings.extend(shift_warnings)
            result.warnings.extend(outcome.warnings)
            if outcome.unmatched_shift_users:
                result.warnings.append(
                    f"{len(outcome.unmatched_shift_users)} shift user(s) without worker profile: "
                    + ", ".join(outcome.unmatched_shift_users)
                )
            if outcome.unmatched_waiter_names:
                result.warnings.append(
                    f"{len(outcome.unmatched_waiter_names)} Bork waiter name(s) not matched: "
                    + ", ".join(outcome.unmatched_waiter_names)
                )
            return result

        result = self._with_retries("worker profiles", attempt)
        result.processing_time = time.perf_counter() - clock
        logger.info(
            "Worker profiles done: %d rows in %s",
            result.records_aggregated,
            format_duration(result.processing_time),
        )
        return result
