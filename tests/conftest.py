"""Shared fixtures: raw Bork/Eitje documents and seeded stores."""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import pytest

from ops_core.store import MemoryStore

INGESTED = datetime(2024, 10, 26, 6, 0, tzinfo=timezone.utc)


@pytest.fixture
def product_groups() -> list[dict[str, Any]]:
    """Beverages > Soft Drinks, Beverages > Beer, Food (root)."""
    return [
        {"groupId": "g1", "groupName": "Beverages", "parentGroupId": None, "groupLevel": 1},
        {"groupId": "g2", "groupName": "Soft Drinks", "parentGroupName": "Beverages", "groupLevel": 2},
        {"groupId": "g3", "groupName": "Beer", "parentGroupId": "g1", "groupLevel": 2},
        {"groupId": "g4", "groupName": "Food", "groupLevel": 1},
    ]


@pytest.fixture
def make_bork_doc() -> Callable[..., dict[str, Any]]:
    """Factory for bork_raw_data documents."""

    def _make(
        day: str,
        tickets: Any,
        location_id: str = "loc-1",
        source_id: str | None = None,
        **extra: Any,
    ) -> dict[str, Any]:
        doc = {
            "date": day,
            "locationId": location_id,
            "sourceId": source_id or f"bork-{location_id}-{day}",
            "ingestedAt": INGESTED,
            "rawApiResponse": tickets,
        }
        doc.update(extra)
        return doc

    return _make


@pytest.fixture
def cola_ticket() -> dict[str, Any]:
    return {
        "Key": "t1",
        "TicketNumber": 101,
        "WaiterName": "Ana Vos",
        "Orders": [
            {
                "Key": "o1",
                "TableNr": "12",
                "Lines": [
                    {
                        "Key": "l1",
                        "ProductName": "Cola",
                        "GroupName": "Soft Drinks",
                        "Qty": 2,
                        "Price": 3.0,
                        "TotalInc": 6.0,
                        "TotalEx": 5.5,
                        "VatPerc": 9,
                    },
                    {
                        "Key": "l2",
                        "ProductName": "Pils",
                        "GroupName": "Beer",
                        "Qty": 1,
                        "Price": 5.0,
                        "TotalInc": 5.0,
                        "TotalEx": 4.13,
                        "VatPerc": 21,
                    },
                ],
            }
        ],
    }


@pytest.fixture
def sales_store(
    product_groups: list[dict[str, Any]],
    make_bork_doc: Callable[..., dict[str, Any]],
    cola_ticket: dict[str, Any],
) -> MemoryStore:
    """Store with product groups and two days of tickets for loc-1 plus one for loc-2."""
    second_day = {
        "Key": "t2",
        "Orders": [
            {"Key": "o2", "Lines": [{"Key": "l3", "ProductName": "Fries", "GroupName": "Food", "Qty": 3, "TotalInc": 12.0}]}
        ],
    }
    return MemoryStore(
        {
            "bork_product_groups": product_groups,
            "bork_raw_data": [
                make_bork_doc("2024-10-24", {"Tickets": [cola_ticket]}),
                make_bork_doc("2024-10-25", [second_day]),
                make_bork_doc("2024-10-24", [second_day], location_id="loc-2"),
            ],
        }
    )


@pytest.fixture
def make_shift() -> Callable[..., dict[str, Any]]:
    """Factory for eitje_time_registration_shifts_raw documents."""

    def _make(
        day: str = "2024-10-24",
        user_id: Any = 1,
        team_id: Any = 2,
        environment_id: Any = 1,
        hours: Any = 8.0,
        **extra: Any,
    ) -> dict[str, Any]:
        doc = {
            "date": day,
            "user_id": user_id,
            "team_id": team_id,
            "environment_id": environment_id,
            "hours_worked": hours,
            "ingestedAt": INGESTED,
        }
        doc.update(extra)
        return doc

    return _make
