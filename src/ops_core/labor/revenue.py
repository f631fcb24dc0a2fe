"""Gold layer: Eitje revenue days per (date, environment).

Eitje reports revenue in cents (``amt_in_cents``); the mart is in euros.
Payment-method totals are turned into percentages of their sum.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from typing import Any

import numpy as np
import pandas as pd

from ops_core.labor.aggregate import LaborBatch
from ops_core.labor.shifts import first_id, first_nonzero, shift_date
from ops_core.normalize import pick, to_key
from ops_core.utils import coerce_datetime

logger = logging.getLogger(__name__)

REVENUE_KEYS = ["date", "environmentId"]
PAYMENT_METHODS = ("cash", "card", "digital", "other")
DEFAULT_CURRENCY = "EUR"


def normalize_revenue_day(doc: Mapping[str, Any]) -> dict[str, Any] | None:
    """Flatten one raw revenue-day document; None when it has no date."""
    day = shift_date(doc)
    if day is None:
        return None
    raw = doc.get("raw_data") if isinstance(doc.get("raw_data"), Mapping) else {}
    revenue = first_nonzero(doc, "revenue_cents") / 100.0
    row = {
        "date": day,
        "environmentId": first_id(doc, "environment_id") or "",
        "revenue": revenue,
        "revenueExclVat": first_nonzero(doc, "revenue_excl_vat"),
        "revenueInclVat": first_nonzero(doc, "revenue_incl_vat"),
        "vatAmount": first_nonzero(doc, "revenue_vat_amount"),
        "vatRate": first_nonzero(doc, "revenue_vat_rate"),
        "netRevenue": first_nonzero(doc, "net_revenue"),
        "grossRevenue": first_nonzero(doc, "gross_revenue"),
        "transactionCount": first_nonzero(doc, "transaction_count") or 1.0,
        "currency": pick(doc, "currency") or pick(raw, "currency") or "",
        "_source": str(doc.get("source") or "eitje"),
        "_sourceId": to_key(doc.get("sourceId")) or to_key(raw.get("id")),
        "_ingestedAt": coerce_datetime(doc.get("ingestedAt")),
    }
    for method in PAYMENT_METHODS:
        row[method] = first_nonzero(doc, f"{method}_revenue")
    return row


def collapse_reingested(df: pd.DataFrame) -> tuple[pd.DataFrame, int]:
    """Keep one row per ``(source, sourceId)``: the latest ``ingestedAt``.

    Ties and missing ingestion times keep the first copy. Rows without a
    source id are always kept.
    """
    has_id = df["_sourceId"].notna()
    with_id = df[has_id].assign(_ingestedAt=pd.to_datetime(df.loc[has_id, "_ingestedAt"], utc=True))
    kept = with_id.sort_values(
        "_ingestedAt", ascending=False, na_position="last", kind="mergesort"
    ).drop_duplicates(subset=["_source", "_sourceId"], keep="first")
    dropped = len(with_id) - len(kept)
    if dropped:
        logger.info("Collapsed %d re-ingested revenue day copies", dropped)
    rest = df[~has_id]
    combined = pd.concat([kept, rest]) if len(rest) else kept
    return combined.sort_index(), dropped


def aggregate_revenue_days(raw_days: Iterable[Mapping[str, Any]]) -> LaborBatch:
    """Aggregate raw revenue-day documents.

    The same day ingested more than once counts once, see
    :func:`collapse_reingested`.

    Args:
        raw_days: ``eitje_revenue_days_raw`` documents.

    Returns:
        LaborBatch whose records carry revenue totals in euros, VAT
        figures, payment-method totals and percentages, transaction count,
        min/max transaction value and currency.

    """
    batch = LaborBatch()
    rows = []
    for doc in raw_days:
        row = normalize_revenue_day(doc)
        if row is None:
            message = f"Skipping revenue day without date: {doc.get('sourceId') or doc.get('id') or '?'}"
            logger.warning(message)
            batch.warnings.append(message)
            batch.skipped += 1
            continue
        rows.append(row)
    if not rows:
        return batch

    df, batch.duplicates_collapsed = collapse_reingested(pd.DataFrame(rows))
    batch.shifts_processed = len(df)
    df["_vatRate"] = df["vatRate"].where(df["vatRate"] > 0)
    df["_txValue"] = df["revenue"].where(df["revenue"] > 0)
    grouped = (
        df.groupby(REVENUE_KEYS, sort=True)
        .agg(
            totalRevenue=("revenue", "sum"),
            transactionCount=("transactionCount", "sum"),
            totalRevenueExclVat=("revenueExclVat", "sum"),
            totalRevenueInclVat=("revenueInclVat", "sum"),
            totalVatAmount=("vatAmount", "sum"),
            avgVatRate=("_vatRate", "mean"),
            totalCashRevenue=("cash", "sum"),
            totalCardRevenue=("card", "sum"),
            totalDigitalRevenue=("digital", "sum"),
            totalOtherRevenue=("other", "sum"),
            maxTransactionValue=("_txValue", "max"),
            minTransactionValue=("_txValue", "min"),
            netRevenue=("netRevenue", "sum"),
            grossRevenue=("grossRevenue", "sum"),
            currency=("currency", lambda s: next((c for c in s if c), DEFAULT_CURRENCY)),
        )
        .reset_index()
    )
    grouped["avgRevenuePerTransaction"] = (
        grouped["totalRevenue"] / grouped["transactionCount"].replace(0, np.nan)
    )
    payment_total = grouped[
        ["totalCashRevenue", "totalCardRevenue", "totalDigitalRevenue", "totalOtherRevenue"]
    ].sum(axis=1)
    for method in PAYMENT_METHODS:
        total_col = f"total{method.capitalize()}Revenue"
        grouped[f"{method}Percentage"] = grouped[total_col] / payment_total.replace(0, np.nan) * 100

    value_cols = [c for c in grouped.columns if c not in REVENUE_KEYS + ["currency", "transactionCount"]]
    grouped[value_cols] = grouped[value_cols].fillna(0.0).round(2)

    for row in grouped.to_dict(orient="records"):
        record: dict[str, Any] = {
            "date": row["date"],
            "environmentId": row["environmentId"] or None,
            "transactionCount": int(row["transactionCount"]),
            "currency": row["currency"],
        }
        record.update({col: float(row[col]) for col in value_cols})
        batch.records.append(record)

    logger.info("Aggregated %d revenue days into %d rows", len(df), len(batch.records))
    return batch
