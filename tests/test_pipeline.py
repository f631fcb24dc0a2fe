"""End-to-end tests for the aggregation passes."""

from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from ops_core import (
    AggregationCancelled,
    CancelToken,
    EngineConfig,
    FileStore,
    MemoryStore,
    StoreUnavailableError,
    aggregate_labor_hours,
    aggregate_planning_hours,
    aggregate_revenue_days,
    aggregate_sales_daily,
    aggregate_sales_line_items,
    reconcile_worker_profiles,
)
from ops_core.store import UpsertOp
from ops_core.utils import DateRange

OCTOBER = ("2024-10-01", "2024-10-31")
FUTURE = datetime(2100, 1, 1, tzinfo=timezone.utc)


class FlakyStore(MemoryStore):
    """MemoryStore whose replace_many fails a given number of times."""

    def __init__(self, collections: dict, failures: int, on_write: Callable[[], None] | None = None) -> None:
        super().__init__(collections)
        self.failures = failures
        self.calls = 0
        self.on_write = on_write

    def replace_many(self, collection: str, filter: Any, docs: Any):
        self.calls += 1
        if self.on_write is not None:
            self.on_write()
        if self.failures > 0:
            self.failures -= 1
            raise StoreUnavailableError("connection reset")
        return super().replace_many(collection, filter, docs)


def _raw_collections(store: MemoryStore) -> dict:
    return {name: store.find(name) for name in store.collection_names()}


class TestSalesPass:
    def test_force_run_writes_line_items_daily_rows_and_marker(self, sales_store: MemoryStore) -> None:
        result = aggregate_sales_line_items(sales_store, OCTOBER, "loc-1", mode="force")

        assert result.success
        assert result.incremental is False
        assert result.records_processed == 2
        assert result.records_aggregated == 3
        assert result.aggregated_dates[:2] == ["2024-10-01", "2024-10-02"]

        lines = sales_store.find("sales_line_items_aggregated")
        assert sorted(r["productName"] for r in lines) == ["Cola", "Fries", "Pils"]
        assert {r["locationId"] for r in lines} == {"loc-1"}
        assert sales_store.count("sales_daily_aggregated") == 2

        marker = sales_store.find_one("aggregation_markers", {"source": "bork", "locationId": "loc-1"})
        assert marker is not None
        assert marker["pendingDates"] == []

    def test_all_locations(self, sales_store: MemoryStore) -> None:
        aggregate_sales_line_items(sales_store, OCTOBER, mode="force")
        lines = sales_store.find("sales_line_items_aggregated")
        assert {r["locationId"] for r in lines} == {"loc-1", "loc-2"}
        assert sales_store.find_one("aggregation_markers", {"locationId": None})["source"] == "bork"

    def test_idempotent(self, sales_store: MemoryStore) -> None:
        aggregate_sales_line_items(sales_store, OCTOBER, "loc-1", mode="force")
        first = sales_store.find("sales_line_items_aggregated")
        first_daily = sales_store.find("sales_daily_aggregated")
        aggregate_sales_line_items(sales_store, OCTOBER, "loc-1", mode="force")
        assert sales_store.find("sales_line_items_aggregated") == first
        assert sales_store.find("sales_daily_aggregated") == first_daily

    def test_incremental_rerun_without_changes_writes_nothing(self, sales_store: MemoryStore) -> None:
        aggregate_sales_line_items(sales_store, OCTOBER, "loc-1")
        before = sales_store.find("sales_line_items_aggregated")

        result = aggregate_sales_line_items(sales_store, OCTOBER, "loc-1")
        assert result.incremental is True
        assert result.records_aggregated == 0
        assert result.aggregated_dates == []
        assert sales_store.find("sales_line_items_aggregated") == before

    def test_incremental_rerun_picks_up_one_changed_date(
        self, sales_store: MemoryStore, make_bork_doc: Callable[..., dict[str, Any]]
    ) -> None:
        aggregate_sales_line_items(sales_store, OCTOBER, "loc-1")
        new_payload = [{"Orders": [{"Lines": [{"ProductName": "Bitterballen", "GroupName": "Food", "Qty": 8}]}]}]
        sales_store.bulk_upsert(
            "bork_raw_data",
            [
                UpsertOp(
                    {"date": "2024-10-25", "locationId": "loc-1"},
                    {"rawApiResponse": new_payload, "updatedAt": FUTURE},
                )
            ],
        )

        result = aggregate_sales_line_items(sales_store, OCTOBER, "loc-1")
        assert result.aggregated_dates == ["2024-10-25"]
        names = sorted(r["productName"] for r in sales_store.find("sales_line_items_aggregated"))
        assert names == ["Bitterballen", "Cola", "Pils"]
        day = sales_store.find_one("sales_daily_aggregated", {"date": "2024-10-25"})
        assert day["totalQuantity"] == 8.0
        assert day["topCategory"] == "Food"

    def test_missing_payload_becomes_pending(
        self, sales_store: MemoryStore, make_bork_doc: Callable[..., dict[str, Any]]
    ) -> None:
        sales_store.insert_many("bork_raw_data", [make_bork_doc("2024-10-26", None)])
        result = aggregate_sales_line_items(sales_store, OCTOBER, "loc-1", mode="force")
        assert "2024-10-26" not in result.aggregated_dates
        assert any("no ticket payload" in w for w in result.warnings)
        marker = sales_store.find_one("aggregation_markers", {"source": "bork", "locationId": "loc-1"})
        assert marker["pendingDates"] == ["2024-10-26"]

        # pending date is retried on the next incremental run
        retry = aggregate_sales_line_items(sales_store, OCTOBER, "loc-1")
        assert retry.aggregated_dates == []
        assert any("no ticket payload" in w for w in retry.warnings)

    def test_narrow_first_run_does_not_hide_other_dates(self, sales_store: MemoryStore) -> None:
        first = aggregate_sales_line_items(sales_store, ("2024-10-24", "2024-10-24"), "loc-1")
        assert first.aggregated_dates == ["2024-10-24"]

        wider = aggregate_sales_line_items(sales_store, OCTOBER, "loc-1")
        assert wider.aggregated_dates == ["2024-10-25"]
        names = sorted(r["productName"] for r in sales_store.find("sales_line_items_aggregated"))
        assert names == ["Cola", "Fries", "Pils"]

    def test_string_update_timestamps(self, sales_store: MemoryStore) -> None:
        def touch(stamp: str) -> None:
            sales_store.bulk_upsert(
                "bork_raw_data",
                [UpsertOp({"date": "2024-10-25", "locationId": "loc-1"}, {"updatedAt": stamp})],
            )

        touch("2024-10-26T06:00:00Z")
        aggregate_sales_line_items(sales_store, OCTOBER, "loc-1")

        unchanged = aggregate_sales_line_items(sales_store, OCTOBER, "loc-1")
        assert unchanged.success
        assert unchanged.aggregated_dates == []

        touch("2100-01-01T00:00:00Z")
        changed = aggregate_sales_line_items(sales_store, OCTOBER, "loc-1")
        assert changed.aggregated_dates == ["2024-10-25"]

    def test_invalid_mode(self, sales_store: MemoryStore) -> None:
        with pytest.raises(ValueError, match="Invalid mode"):
            aggregate_sales_line_items(sales_store, OCTOBER, mode="full")

    def test_invalid_dates(self, sales_store: MemoryStore) -> None:
        with pytest.raises(ValueError, match="Invalid date format"):
            aggregate_sales_line_items(sales_store, ("2024-10-01", "31-10-2024"))

    def test_standalone_daily_rebuild(self, sales_store: MemoryStore) -> None:
        aggregate_sales_line_items(sales_store, OCTOBER, mode="force")
        sales_store.delete_many("sales_daily_aggregated")

        result = aggregate_sales_daily(sales_store, OCTOBER, "loc-1")
        assert result.records_processed == 3
        assert result.records_aggregated == 2
        assert result.aggregated_dates == ["2024-10-24", "2024-10-25"]
        assert sales_store.count("sales_daily_aggregated", {"locationId": "loc-2"}) == 0


class TestFailureHandling:
    def test_store_failure_is_retried(self, sales_store: MemoryStore) -> None:
        store = FlakyStore(_raw_collections(sales_store), failures=1)
        result = aggregate_sales_line_items(store, OCTOBER, "loc-1", mode="force")
        assert result.success
        assert store.count("sales_line_items_aggregated") == 3
        assert store.count("aggregation_markers") == 1

    def test_persistent_failure_raises_and_keeps_marker(self, sales_store: MemoryStore) -> None:
        store = FlakyStore(_raw_collections(sales_store), failures=100)
        with pytest.raises(StoreUnavailableError, match="connection reset"):
            aggregate_sales_line_items(
                store, OCTOBER, "loc-1", mode="force", config=EngineConfig(max_write_retries=2)
            )
        assert store.calls == 3
        assert store.count("aggregation_markers") == 0
        assert store.count("sales_line_items_aggregated") == 0

    def test_cancelled_before_start(self, sales_store: MemoryStore) -> None:
        token = CancelToken()
        token.cancel("shutdown")
        with pytest.raises(AggregationCancelled, match="shutdown"):
            aggregate_sales_line_items(sales_store, OCTOBER, "loc-1", cancel_token=token)
        assert sales_store.count("aggregation_markers") == 0

    def test_cancelled_mid_pass_does_not_advance_marker(self, sales_store: MemoryStore) -> None:
        token = CancelToken()
        store = FlakyStore(_raw_collections(sales_store), failures=0, on_write=token.cancel)
        with pytest.raises(AggregationCancelled):
            aggregate_sales_line_items(store, OCTOBER, "loc-1", mode="force", cancel_token=token)
        assert store.count("aggregation_markers") == 0

    def test_time_budget(self, sales_store: MemoryStore, monkeypatch: pytest.MonkeyPatch) -> None:
        ticks = iter(range(0, 10_000, 100))
        monkeypatch.setattr("ops_core.pipeline.time.monotonic", lambda: next(ticks))
        with pytest.raises(AggregationCancelled, match="time budget"):
            aggregate_sales_line_items(
                sales_store, OCTOBER, "loc-1", config=EngineConfig(max_duration_seconds=1)
            )


class TestLaborPasses:
    @pytest.fixture
    def labor_store(self, make_shift: Callable[..., dict[str, Any]]) -> MemoryStore:
        return MemoryStore(
            {
                "eitje_time_registration_shifts_raw": [
                    make_shift(hours=8.0),
                    make_shift(hours=0),
                    make_shift(user_id=2, hours=4.0),
                    make_shift(environment_id=5, hours=6.0),
                    make_shift(day="2024-10-25", raw_data={"environment": {"id": 1}}, environment_id=None),
                ],
                "eitje_planning_shifts_raw": [
                    {"date": "2024-10-24", "environment_id": 1, "team_id": 2, "user_id": 1, "planned_hours": 8},
                ],
                "eitje_revenue_days_raw": [
                    {"date": "2024-10-24", "environment_id": 1, "amt_in_cents": 150000},
                ],
            }
        )

    def test_labor_hours_for_one_environment(self, labor_store: MemoryStore) -> None:
        result = aggregate_labor_hours(labor_store, OCTOBER, location_id="1", mode="force")
        assert result.records_processed == 4
        rows = labor_store.find("eitje_labor_hours_aggregated")
        assert {r["environmentId"] for r in rows} == {"1"}
        user1 = labor_store.find_one("eitje_labor_hours_aggregated", {"date": "2024-10-24", "userId": "1"})
        assert (user1["shiftCount"], user1["employeeCount"]) == (2, 1)

    def test_labor_rerun_upserts_in_place(self, labor_store: MemoryStore) -> None:
        aggregate_labor_hours(labor_store, OCTOBER, mode="force")
        count = labor_store.count("eitje_labor_hours_aggregated")
        aggregate_labor_hours(labor_store, OCTOBER, mode="force")
        assert labor_store.count("eitje_labor_hours_aggregated") == count == 4

    def test_labor_marker_uses_eitje_source(self, labor_store: MemoryStore) -> None:
        aggregate_labor_hours(labor_store, OCTOBER, location_id="1")
        assert labor_store.find_one("aggregation_markers", {"source": "eitje", "locationId": "1"})

    def test_team_rollup_keeps_per_user_rows(self, labor_store: MemoryStore) -> None:
        aggregate_labor_hours(labor_store, OCTOBER, mode="force")
        per_user = labor_store.find("eitje_labor_hours_aggregated")

        aggregate_labor_hours(labor_store, OCTOBER, mode="force", by_user=False)
        assert labor_store.find("eitje_labor_hours_aggregated") == per_user
        team = labor_store.find_one(
            "eitje_labor_hours_team_aggregated", {"date": "2024-10-24", "environmentId": "1"}
        )
        assert (team["totalHoursWorked"], team["employeeCount"]) == (12.0, 2)
        assert "userId" not in team
        assert {m["source"] for m in labor_store.find("aggregation_markers")} == {"eitje", "eitje_team"}

    def test_team_rollup_does_not_consume_per_user_changes(self, labor_store: MemoryStore) -> None:
        aggregate_labor_hours(labor_store, OCTOBER, by_user=False)
        result = aggregate_labor_hours(labor_store, OCTOBER)
        assert result.records_aggregated == 4

    def test_planning_and_revenue(self, labor_store: MemoryStore) -> None:
        planning = aggregate_planning_hours(labor_store, OCTOBER)
        revenue = aggregate_revenue_days(labor_store, OCTOBER)
        assert planning.records_aggregated == 1
        assert revenue.records_aggregated == 1
        assert labor_store.find_one("eitje_planning_hours_aggregated")["plannedHoursTotal"] == 8.0
        assert labor_store.find_one("eitje_revenue_days_aggregated")["totalRevenue"] == 1500.0
        sources = {m["source"] for m in labor_store.find("aggregation_markers")}
        assert sources == {"eitje_planning", "eitje_revenue"}


class TestWorkerProfiles:
    @pytest.fixture
    def identity_store(
        self, make_bork_doc: Callable[..., dict[str, Any]], make_shift: Callable[..., dict[str, Any]]
    ) -> MemoryStore:
        return MemoryStore(
            {
                "unified_users": [
                    {"_id": "u1", "firstName": "Ana", "lastName": "Vos", "systemMappings": [{"system": "eitje", "externalId": "1"}]}
                ],
                "eitje_users_raw": [{"id": 2, "first_name": "Bram", "last_name": "de Wit"}],
                "eitje_teams_raw": [{"id": 2, "name": "Bediening"}],
                "worker_profiles": [
                    {"_id": "p1", "eitje_user_id": 1},
                    {"_id": "p1b", "eitje_user_id": 1},
                    {"_id": "p2", "eitje_user_id": 2},
                    {"_id": "p3"},
                ],
                "eitje_time_registration_shifts_raw": [make_shift(day="2024-10-20"), make_shift(user_id=7)],
                "bork_raw_data": [make_bork_doc("2024-10-24", [{"WaiterName": "Ana Vos", "Orders": []}])],
            }
        )

    def test_reconcile_writes_one_row_per_worker(self, identity_store: MemoryStore) -> None:
        now = datetime(2024, 10, 26, tzinfo=timezone.utc)
        result = reconcile_worker_profiles(identity_store, now=now)

        rows = identity_store.find("worker_profiles_aggregated")
        assert len(rows) == 3
        ana = identity_store.find_one("worker_profiles_aggregated", {"eitjeUserId": "1"})
        assert ana["profileId"] == "p1"
        assert ana["borkWaiterName"] == "Ana Vos"
        assert ana["teams"][0]["teamName"] == "Bediening"
        assert ana["teams"][0]["isActive"] is True
        assert ana["lastAggregated"] == now
        assert identity_store.find_one("worker_profiles_aggregated", {"eitjeUserId": "2"})["name"] == "Bram de Wit"

        assert result.records_processed == 4
        assert any("Duplicate eitjeUserId 1" in w for w in result.warnings)
        assert any("without worker profile: 7" in w for w in result.warnings)

        reconcile_worker_profiles(identity_store, now=now)
        assert identity_store.count("worker_profiles_aggregated") == 3

    def test_reingested_shift_counts_once(
        self, identity_store: MemoryStore, make_shift: Callable[..., dict[str, Any]]
    ) -> None:
        shift = make_shift(day="2024-10-22", sourceId="shift-22")
        identity_store.insert_many("eitje_time_registration_shifts_raw", [shift, dict(shift)])

        reconcile_worker_profiles(identity_store, now=datetime(2024, 10, 26, tzinfo=timezone.utc))
        ana = identity_store.find_one("worker_profiles_aggregated", {"eitjeUserId": "1"})
        assert ana["teams"][0]["shiftCount"] == 2

    def test_strict_mode(self, identity_store: MemoryStore) -> None:
        from ops_core import IdentityConflictError

        with pytest.raises(IdentityConflictError):
            reconcile_worker_profiles(identity_store, strict=True)
        assert identity_store.count("worker_profiles_aggregated") == 0


def test_file_store_end_to_end(tmp_path: Path, sales_store: MemoryStore) -> None:
    store = FileStore.from_root(tmp_path)
    for name, docs in _raw_collections(sales_store).items():
        store.insert_many(name, docs)

    first = aggregate_sales_line_items(store, DateRange.from_strings(*OCTOBER), "loc-1")
    assert first.records_aggregated == 3
    assert (tmp_path / "aggregated" / "sales_line_items_aggregated.json").exists()
    assert (tmp_path / "control" / "aggregation_markers.json").exists()

    second = aggregate_sales_line_items(store, OCTOBER, "loc-1")
    assert second.records_aggregated == 0
