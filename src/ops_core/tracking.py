"""Change detection for incremental aggregation.

One ChangeMarker document per (source, locationId) lives in the
``aggregation_markers`` collection. It records when the last successful
pass started and which dates failed in it. An incremental pass then only
re-aggregates:

- dates whose raw documents were updated after ``lastAggregatedAt``
- dates left in ``pendingDates`` by an earlier pass

A raw document whose timestamp cannot be parsed counts as changed. The
first marker for a pair also records every raw date outside the processed
range as pending, so a narrow first pass hides nothing from a later wider
one.

A missing marker, or a raw query that fails, means the whole requested
range is re-aggregated.

Examples:
    >>> from ops_core.store import MemoryStore
    >>> from ops_core.utils import DateRange
    >>> tracker = ChangeTracker(MemoryStore())
    >>> tracker.changed_ranges("bork", "loc-1", DateRange.from_strings("2024-10-01", "2024-10-03"))
    [DateRange(start=datetime.date(2024, 10, 1), end=datetime.date(2024, 10, 3))]

"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from ops_core.config import CollectionNames
from ops_core.exceptions import StoreUnavailableError
from ops_core.normalize import to_key
from ops_core.store.base import RawStore, UpsertOp
from ops_core.utils import DateRange, coerce_date, coerce_datetime, dates_to_ranges

logger = logging.getLogger(__name__)

DocPredicate = Callable[[Mapping[str, Any]], bool]


@dataclass
class ChangeMarker:
    """Control-plane state for one (source, locationId) pair.

    Attributes:
        source: Raw source name ("bork", "eitje", "eitje_team", "eitje_planning",
            "eitje_revenue").
        location_id: Location the marker covers; None covers all locations.
        last_aggregated_at: Start time of the last successful pass.
        pending_dates: YYYY-MM-DD dates to retry regardless of updatedAt.
    """

    source: str
    location_id: Optional[str]
    last_aggregated_at: Optional[datetime]
    pending_dates: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "locationId": self.location_id,
            "lastAggregatedAt": self.last_aggregated_at,
            "pendingDates": sorted(self.pending_dates),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ChangeMarker:
        pending = data.get("pendingDates") or []
        return cls(
            source=str(data["source"]),
            location_id=to_key(data.get("locationId")),
            last_aggregated_at=coerce_datetime(data.get("lastAggregatedAt")),
            pending_dates=[str(d) for d in pending],
        )


def default_belongs(location_id: Optional[str]) -> DocPredicate:
    """Predicate matching raw documents by their ``locationId`` field."""

    def belongs(doc: Mapping[str, Any]) -> bool:
        return location_id is None or to_key(doc.get("locationId")) == location_id

    return belongs


class ChangeTracker:
    """Reads and advances ChangeMarkers and finds changed date ranges."""

    def __init__(self, store: RawStore, collections: CollectionNames | None = None) -> None:
        self.store = store
        self.collections = collections or CollectionNames()
        self.warnings: list[str] = []

    def raw_collection_for(self, source: str) -> str:
        """Raw collection watched for a source."""
        mapping = {
            "bork": self.collections.bork_raw,
            "eitje": self.collections.shifts_raw,
            "eitje_team": self.collections.shifts_raw,
            "eitje_planning": self.collections.planning_raw,
            "eitje_revenue": self.collections.revenue_raw,
        }
        if source not in mapping:
            raise ValueError(f"Unknown source '{source}'. Must be one of {sorted(mapping)}.")
        return mapping[source]

    def _warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)

    def read_marker(self, source: str, location_id: Optional[str]) -> Optional[ChangeMarker]:
        """Read the marker for (source, location_id); None if absent or unreadable."""
        doc = self.store.find_one(
            self.collections.markers, {"source": source, "locationId": location_id}
        )
        if doc is None:
            return None
        try:
            return ChangeMarker.from_dict(doc)
        except (KeyError, TypeError, ValueError):
            # corrupted marker is treated as missing
            return None

    def _changed_dates(
        self,
        raw_collection: str,
        since: Optional[datetime],
        belongs: DocPredicate,
        within: Optional[DateRange] = None,
    ) -> set[date]:
        """Dates of raw documents changed after ``since`` (every date when None).

        Timestamps are compared after :func:`coerce_datetime`, so strings and
        naive datetimes compare like stored datetimes. A document whose
        timestamp cannot be parsed counts as changed.
        """
        query = {"date": within.as_filter()} if within is not None else None
        dates = set()
        unreadable = 0
        for doc in self.store.find(raw_collection, query):
            if not belongs(doc):
                continue
            day = coerce_date(doc.get("date"))
            if day is None:
                continue
            if since is not None:
                # documents that were never updated count from their ingestion time
                stamp = doc.get("updatedAt")
                if stamp is None:
                    stamp = doc.get("ingestedAt")
                if stamp is None:
                    continue
                changed_at = coerce_datetime(stamp)
                if changed_at is None:
                    unreadable += 1
                elif changed_at <= since:
                    continue
            dates.add(day)
        if unreadable:
            self._warn(
                f"{unreadable} document(s) in {raw_collection} have an unreadable timestamp "
                "and are treated as changed"
            )
        return dates

    def changed_ranges(
        self,
        source: str,
        location_id: Optional[str],
        requested_range: DateRange,
        *,
        raw_collection: Optional[str] = None,
        belongs: Optional[DocPredicate] = None,
    ) -> list[DateRange]:
        """Date ranges inside ``requested_range`` that need re-aggregation.

        Args:
            source: Raw source name.
            location_id: Location key, or None for all locations.
            requested_range: Range the caller asked for.
            raw_collection: Raw collection to inspect (defaults per source).
            belongs: Predicate selecting the raw documents of ``location_id``.

        Returns:
            Minimal list of contiguous ranges; empty when nothing changed.

        """
        raw_collection = raw_collection or self.raw_collection_for(source)
        belongs = belongs or default_belongs(location_id)
        try:
            marker = self.read_marker(source, location_id)
        except StoreUnavailableError as e:
            self._warn(f"Cannot read marker for {source}/{location_id}, full range used: {e}")
            return [requested_range]
        if marker is None or marker.last_aggregated_at is None:
            logger.info("No marker for %s/%s: full range %s", source, location_id, requested_range)
            return [requested_range]

        try:
            dates = self._changed_dates(
                raw_collection, marker.last_aggregated_at, belongs, within=requested_range
            )
        except StoreUnavailableError as e:
            self._warn(f"Changed-date query failed for {source}/{location_id}, full range used: {e}")
            return [requested_range]

        for pending in marker.pending_dates:
            day = coerce_date(pending)
            if day is not None and requested_range.contains(day):
                dates.add(day)

        ranges = dates_to_ranges(dates)
        logger.info(
            "%s/%s: %d changed date(s) in %s since %s",
            source,
            location_id,
            len(dates),
            requested_range,
            marker.last_aggregated_at.isoformat(),
        )
        return ranges

    def advance(
        self,
        source: str,
        location_id: Optional[str],
        aggregated_at: datetime,
        failed_dates: Iterable[str | date] = (),
        *,
        processed_range: Optional[DateRange] = None,
        raw_collection: Optional[str] = None,
        belongs: Optional[DocPredicate] = None,
    ) -> ChangeMarker:
        """Move the marker forward after every write of a pass succeeded.

        ``lastAggregatedAt`` becomes ``aggregated_at`` (the pass start time)
        and ``failed_dates`` become pending. With a ``processed_range``,
        work outside it is kept pending: earlier pending dates, raw changes
        since the previous marker, and on the first marker every raw date.
        When that raw query fails the previous ``lastAggregatedAt`` is kept,
        so the next pass still sees those changes.

        Raises:
            StoreUnavailableError: If the marker cannot be written.

        """
        previous = self.read_marker(source, location_id)
        pending = {d.isoformat() if isinstance(d, date) else str(d) for d in failed_dates}
        marker_time = coerce_datetime(aggregated_at)

        if processed_range is not None:
            if previous is not None:
                for day_str in previous.pending_dates:
                    day = coerce_date(day_str)
                    if day is not None and not processed_range.contains(day):
                        pending.add(day.isoformat())
            since = previous.last_aggregated_at if previous is not None else None
            try:
                changed = self._changed_dates(
                    raw_collection or self.raw_collection_for(source),
                    since,
                    belongs or default_belongs(location_id),
                )
            except StoreUnavailableError as e:
                self._warn(
                    f"Changed-date query failed for {source}/{location_id}, marker time kept: {e}"
                )
                marker_time = since
            else:
                pending.update(d.isoformat() for d in changed if not processed_range.contains(d))

        marker = ChangeMarker(
            source=source,
            location_id=location_id,
            last_aggregated_at=marker_time,
            pending_dates=sorted(pending),
        )
        self.store.bulk_upsert(
            self.collections.markers,
            [
                UpsertOp(
                    filter={"source": source, "locationId": location_id},
                    update={
                        "lastAggregatedAt": marker.last_aggregated_at,
                        "pendingDates": marker.pending_dates,
                    },
                )
            ],
        )
        logger.debug(
            "Advanced marker %s/%s to %s (%d pending)",
            source,
            location_id,
            aggregated_at,
            len(pending),
        )
        return marker
