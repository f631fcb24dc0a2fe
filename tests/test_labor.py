"""Tests for shift normalization and the labor hours mart."""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest

from ops_core.exceptions import DataQualityError
from ops_core.labor import aggregate_labor_hours, dedupe_shifts, normalize_shift
from ops_core.labor.shifts import MalformedShift, shift_location


class TestNormalizeShift:
    def test_normalized_columns(self, make_shift: Callable[..., dict[str, Any]]) -> None:
        shift = normalize_shift(make_shift(wage_cost=100.0, break_minutes=30))
        assert (shift.date, shift.environment_id, shift.team_id, shift.user_id) == (
            "2024-10-24",
            "1",
            "2",
            "1",
        )
        assert shift.hours == 8.0
        assert shift.wage_cost == 100.0
        assert shift.break_minutes == 30.0

    def test_zero_falls_through_to_raw_data(self) -> None:
        doc = {
            "date": "2024-10-24",
            "hours_worked": 0,
            "raw_data": {
                "user": {"id": 5},
                "team": {"id": 9, "name": "Keuken"},
                "environment": {"id": 3},
                "hours": 6.5,
                "costs": {"wage": 91.0},
            },
        }
        shift = normalize_shift(doc)
        assert shift.hours == 6.5
        assert shift.wage_cost == 91.0
        assert (shift.user_id, shift.team_id, shift.environment_id) == ("5", "9", "3")
        assert shift.team_name == "Keuken"
        assert shift_location(doc) == "3"

    def test_hours_from_times(self) -> None:
        shift = normalize_shift(
            {
                "date": "2024-10-24",
                "start": "2024-10-24T09:00:00Z",
                "end": "2024-10-24T17:30:00Z",
            }
        )
        assert shift.hours == 8.5

    def test_fallback_wage(self, make_shift: Callable[..., dict[str, Any]]) -> None:
        assert normalize_shift(make_shift(hours=4)).wage_cost == 60.0
        assert normalize_shift(make_shift(hours=4), fallback_hourly_wage=20.0).wage_cost == 80.0
        assert normalize_shift(make_shift(hours=4), fallback_hourly_wage=None).wage_cost == 0.0

    def test_date_from_raw_data(self) -> None:
        assert normalize_shift({"raw_data": {"start_date": "2024-10-24T08:00:00"}}).date == "2024-10-24"

    def test_no_date_raises(self) -> None:
        with pytest.raises(MalformedShift, match="has no date"):
            normalize_shift({"user_id": 1, "hours_worked": 8})
        assert issubclass(MalformedShift, DataQualityError)


class TestDedupeShifts:
    def test_latest_ingestion_wins(self, make_shift: Callable[..., dict[str, Any]]) -> None:
        early = normalize_shift(
            make_shift(hours=6, sourceId="s1", ingestedAt=datetime(2024, 10, 25, tzinfo=timezone.utc))
        )
        late = normalize_shift(
            make_shift(hours=7, sourceId="s1", ingestedAt=datetime(2024, 10, 26, tzinfo=timezone.utc))
        )
        other = normalize_shift(make_shift(hours=3, sourceId="s2"))
        kept, dropped = dedupe_shifts([early, other, late])
        assert dropped == 1
        assert [s.hours for s in kept] == [7.0, 3.0]

    def test_shifts_without_source_id_are_kept(self, make_shift: Callable[..., dict[str, Any]]) -> None:
        shifts = [normalize_shift(make_shift()), normalize_shift(make_shift())]
        kept, dropped = dedupe_shifts(shifts)
        assert (len(kept), dropped) == (2, 0)

    def test_raw_id_is_source_id(self, make_shift: Callable[..., dict[str, Any]]) -> None:
        shift = normalize_shift(make_shift(raw_data={"id": 77}))
        assert shift.source_id == "77"


class TestAggregateLaborHours:
    def test_duplicate_shift_scenario(self, make_shift: Callable[..., dict[str, Any]]) -> None:
        batch = aggregate_labor_hours([make_shift(hours=8.0), make_shift(hours=0)])
        assert len(batch.records) == 1
        row = batch.records[0]
        assert (row["date"], row["environmentId"], row["teamId"], row["userId"]) == (
            "2024-10-24",
            "1",
            "2",
            "1",
        )
        assert row["shiftCount"] == 2
        assert row["employeeCount"] == 1
        assert row["totalHoursWorked"] == 8.0
        assert row["totalWageCost"] == 120.0
        assert row["avgHoursPerEmployee"] == 8.0
        assert row["avgWagePerHour"] == 15.0

    def test_reingested_copies_are_collapsed(self, make_shift: Callable[..., dict[str, Any]]) -> None:
        batch = aggregate_labor_hours(
            [make_shift(sourceId="s1"), make_shift(sourceId="s1"), make_shift(user_id=2, sourceId="s2")]
        )
        assert batch.duplicates_collapsed == 1
        assert sorted(r["userId"] for r in batch.records) == ["1", "2"]
        assert all(r["shiftCount"] == 1 for r in batch.records)

    def test_team_rollup(self, make_shift: Callable[..., dict[str, Any]]) -> None:
        batch = aggregate_labor_hours(
            [make_shift(user_id=1, hours=8), make_shift(user_id=2, hours=4)], by_user=False
        )
        row = batch.records[0]
        assert "userId" not in row
        assert (row["employeeCount"], row["shiftCount"], row["totalHoursWorked"]) == (2, 2, 12.0)
        assert row["avgHoursPerEmployee"] == 6.0

    def test_records_without_date_are_skipped(self, make_shift: Callable[..., dict[str, Any]]) -> None:
        broken = make_shift()
        del broken["date"]
        batch = aggregate_labor_hours([broken, make_shift()])
        assert batch.skipped == 1
        assert len(batch.warnings) == 1
        assert batch.records[0]["shiftCount"] == 1

    def test_missing_keys_become_none(self) -> None:
        batch = aggregate_labor_hours([{"date": "2024-10-24", "hours_worked": 2}])
        row = batch.records[0]
        assert (row["environmentId"], row["teamId"], row["userId"]) == (None, None, None)
        assert row["employeeCount"] == 0
        assert row["avgHoursPerEmployee"] == 0.0

    def test_empty_input(self) -> None:
        assert aggregate_labor_hours([]).records == []
