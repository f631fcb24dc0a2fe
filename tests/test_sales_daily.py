"""Tests for the daily sales mart."""

import pytest

from ops_core.sales.marts import build_sales_daily, vat_band


@pytest.fixture
def lines() -> list[dict]:
    return [
        {
            "date": "2024-10-24",
            "locationId": "loc-1",
            "productName": "Cola",
            "category": "Soft Drinks",
            "quantity": 2.0,
            "totalExVat": 5.5,
            "totalIncVat": 6.0,
            "vatRate": 9.0,
            "vatAmount": 0.5,
            "costPrice": 1.0,
        },
        {
            "date": "2024-10-24",
            "locationId": "loc-1",
            "productName": "Pils",
            "category": "Beer",
            "quantity": 1.0,
            "totalExVat": 4.13,
            "totalIncVat": 5.0,
            "vatRate": 0.21,
            "vatAmount": 0.0,
            "costPrice": None,
        },
        {
            "date": "2024-10-25",
            "locationId": "loc-1",
            "productName": "Fries",
            "category": None,
            "quantity": 3.0,
            "totalExVat": 11.01,
            "totalIncVat": 12.0,
            "vatRate": 9.0,
            "vatAmount": 0.99,
            "costPrice": None,
        },
    ]


class TestVatBand:
    @pytest.mark.parametrize(
        "rate,band",
        [(9, 9), (9.0, 9), (0.09, 9), (21, 21), (0.21, 21), (6, 0), (0, 0), (None, 0), ("x", 0)],
    )
    def test_bands(self, rate: object, band: int) -> None:
        assert vat_band(rate) == band


class TestBuildSalesDaily:
    def test_one_row_per_date_and_location(self, lines: list[dict]) -> None:
        rows = build_sales_daily(lines)
        assert [(r["date"], r["locationId"]) for r in rows] == [
            ("2024-10-24", "loc-1"),
            ("2024-10-25", "loc-1"),
        ]

    def test_totals_and_vat_split(self, lines: list[dict]) -> None:
        day = build_sales_daily(lines)[0]
        assert day["totalQuantity"] == 3.0
        assert day["totalRevenueExclVat"] == 9.63
        assert day["totalRevenueInclVat"] == 11.0
        # Pils has no explicit VAT amount: inc - ex
        assert day["totalVatAmount"] == 1.37
        assert (day["vat9Base"], day["vat9Amount"]) == (5.5, 0.5)
        assert (day["vat21Base"], day["vat21Amount"]) == (4.13, 0.87)
        assert day["totalCost"] == 2.0
        assert day["avgPrice"] == 3.21
        assert (day["productCount"], day["uniqueProducts"]) == (2, 2)

    def test_category_breakdown(self, lines: list[dict]) -> None:
        day = build_sales_daily(lines)[0]
        assert day["topCategory"] == "Soft Drinks"
        assert day["categoryBreakdown"] == [
            {"category": "Soft Drinks", "revenue": 6.0, "percentage": 54.55},
            {"category": "Beer", "revenue": 5.0, "percentage": 45.45},
        ]

    def test_missing_category_is_unknown(self, lines: list[dict]) -> None:
        day = build_sales_daily(lines)[1]
        assert day["topCategory"] == "Unknown"

    def test_empty_input(self) -> None:
        assert build_sales_daily([]) == []

    def test_zero_quantity_day(self) -> None:
        rows = build_sales_daily(
            [{"date": "2024-10-24", "locationId": None, "productName": "Void", "quantity": 0}]
        )
        assert rows[0]["avgPrice"] == 0.0
        assert rows[0]["locationId"] is None
