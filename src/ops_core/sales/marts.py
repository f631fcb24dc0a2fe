"""Gold layer: daily sales mart built from line items.

One row per (date, locationId) with totals, the Dutch VAT split (9% and
21%, classified from each line's own VAT rate) and a revenue breakdown by
category.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

VAT_BANDS = (9, 21)
UNKNOWN_CATEGORY = "Unknown"

_NUMERIC_COLUMNS = ["quantity", "totalExVat", "totalIncVat", "vatRate", "vatAmount", "costPrice"]
_TEXT_COLUMNS = ["date", "locationId", "productName", "category"]


def vat_band(rate: Any) -> int:
    """Classify a VAT rate (percent or fraction) into 9, 21 or 0 (other).

    Examples:
        >>> vat_band(21)
        21
        >>> vat_band(0.09)
        9
        >>> vat_band(6)
        0

    """
    try:
        r = float(rate)
    except (TypeError, ValueError):
        return 0
    if np.isnan(r):
        return 0
    if 0 < r <= 1:
        r *= 100
    for band in VAT_BANDS:
        if abs(r - band) < 0.5:
            return band
    return 0


def _line_frame(records: Iterable[Mapping[str, Any]]) -> pd.DataFrame:
    df = pd.DataFrame.from_records(list(records))
    for col in _NUMERIC_COLUMNS:
        if col not in df.columns:
            df[col] = np.nan
        df[col] = pd.to_numeric(df[col], errors="coerce")
    for col in _TEXT_COLUMNS:
        if col not in df.columns:
            df[col] = ""
        df[col] = df[col].fillna("").astype(str)
    df[["quantity", "totalExVat", "totalIncVat", "vatAmount"]] = df[
        ["quantity", "totalExVat", "totalIncVat", "vatAmount"]
    ].fillna(0.0)
    return df


def build_sales_daily(records: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """Aggregate line items into one daily row per (date, locationId).

    Args:
        records: ``sales_line_items_aggregated`` rows.

    Returns:
        Rows sorted by (date, locationId). Money values rounded to 2
        decimals; ``categoryBreakdown`` is sorted by revenue, highest first.

    Examples:
        >>> rows = build_sales_daily([
        ...     {"date": "2024-10-24", "locationId": "loc-1", "productName": "Cola",
        ...      "category": "Soft Drinks", "quantity": 2, "totalExVat": 5.5,
        ...      "totalIncVat": 6.0, "vatRate": 9, "vatAmount": 0.5},
        ... ])
        >>> rows[0]["vat9Base"], rows[0]["topCategory"]
        (5.5, 'Soft Drinks')

    """
    df = _line_frame(records)
    if df.empty:
        return []

    # explicit VAT amount wins, otherwise inc - ex
    df["_vat"] = np.where(df["vatAmount"] != 0, df["vatAmount"], df["totalIncVat"] - df["totalExVat"])
    df["_cost"] = df["costPrice"].fillna(0.0) * df["quantity"]
    df["_band"] = df["vatRate"].map(vat_band)
    for band in VAT_BANDS:
        in_band = df["_band"] == band
        df[f"_base{band}"] = df["totalExVat"].where(in_band, 0.0)
        df[f"_vat{band}"] = df["_vat"].where(in_band, 0.0)
    df["_category"] = df["category"].replace("", UNKNOWN_CATEGORY)

    keys = ["date", "locationId"]
    daily = (
        df.groupby(keys, sort=True)
        .agg(
            totalQuantity=("quantity", "sum"),
            totalRevenueExclVat=("totalExVat", "sum"),
            totalRevenueInclVat=("totalIncVat", "sum"),
            totalVatAmount=("_vat", "sum"),
            totalCost=("_cost", "sum"),
            vat9Base=("_base9", "sum"),
            vat9Amount=("_vat9", "sum"),
            vat21Base=("_base21", "sum"),
            vat21Amount=("_vat21", "sum"),
            productCount=("productName", "size"),
            uniqueProducts=("productName", "nunique"),
        )
        .reset_index()
    )
    daily["avgPrice"] = (
        daily["totalRevenueExclVat"] / daily["totalQuantity"].replace(0, np.nan)
    ).fillna(0.0)

    by_category = (
        df.groupby(keys + ["_category"], sort=True)["totalIncVat"].sum().reset_index()
    )
    breakdowns: dict[tuple[str, str], list[dict[str, Any]]] = {}
    for (day, loc), part in by_category.groupby(keys, sort=True):
        total = float(part["totalIncVat"].sum())
        part = part.sort_values(["totalIncVat", "_category"], ascending=[False, True])
        breakdowns[(day, loc)] = [
            {
                "category": row["_category"],
                "revenue": round(float(row["totalIncVat"]), 2),
                "percentage": round(float(row["totalIncVat"]) / total * 100, 2) if total else 0.0,
            }
            for _, row in part.iterrows()
        ]

    money = [
        "totalRevenueExclVat",
        "totalRevenueInclVat",
        "totalVatAmount",
        "totalCost",
        "avgPrice",
        "vat9Base",
        "vat9Amount",
        "vat21Base",
        "vat21Amount",
    ]
    daily[money] = daily[money].round(2)

    out: list[dict[str, Any]] = []
    for _, row in daily.iterrows():
        breakdown = breakdowns.get((row["date"], row["locationId"]), [])
        out.append(
            {
                "date": row["date"],
                "locationId": row["locationId"] or None,
                "totalQuantity": round(float(row["totalQuantity"]), 2),
                **{col: float(row[col]) for col in money},
                "productCount": int(row["productCount"]),
                "uniqueProducts": int(row["uniqueProducts"]),
                "topCategory": breakdown[0]["category"] if breakdown else None,
                "categoryBreakdown": breakdown,
            }
        )
    logger.debug("Built %d daily sales rows from %d line items", len(out), len(df))
    return out
