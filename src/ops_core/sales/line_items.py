"""Flatten Bork ticket payloads into sales line items.

Each raw ``bork_raw_data`` document holds the vendor response for one
(location, business day) under ``rawApiResponse``. The payload is a list of
tickets, ``{"Tickets": [...]}``, ``{"tickets": [...]}`` or a single ticket.
Every ticket carries orders, every order carries lines, and every line
becomes one row of ``sales_line_items_aggregated``.

Field names drift between API versions, so all lookups go through
:mod:`ops_core.normalize`.

Examples:
    >>> from ops_core.sales.categories import build_resolver
    >>> doc = {"date": "2024-10-24", "locationId": "loc-1", "rawApiResponse": {
    ...     "Orders": [{"Lines": [{"ProductName": "Cola", "Qty": 2, "TotalInc": 6.0}]}]}}
    >>> batch = aggregate_line_items([doc], build_resolver([]))
    >>> batch.records[0]["quantity"]
    2.0

"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from ops_core.exceptions import DataQualityError
from ops_core.normalize import pick, strip_invisibles, to_float, to_int, to_key
from ops_core.sales.categories import CategoryResolver
from ops_core.utils import coerce_date, coerce_datetime

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Numeric line fields: output name -> canonical alias name
NUMERIC_FIELDS = {
    "quantity": "quantity",
    "unitPrice": "unit_price",
    "totalExVat": "total_ex_vat",
    "totalIncVat": "total_inc_vat",
    "vatRate": "vat_rate",
    "vatAmount": "vat_amount",
}


class MalformedLine(DataQualityError):
    """A single line could not be normalized."""


@dataclass
class LineItemBatch:
    """Result of flattening a set of raw Bork documents.

    Attributes:
        records: One dict per order line, in deterministic order.
        warnings: Human-readable descriptions of skipped input.
        lines_seen: Lines encountered (valid or not).
        lines_skipped: Lines skipped as malformed.
        failed_dates: Dates whose documents carried no ticket payload.
        documents_processed: Raw documents read.
    """

    records: list[dict[str, Any]] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    lines_seen: int = 0
    lines_skipped: int = 0
    failed_dates: set[str] = field(default_factory=set)
    documents_processed: int = 0

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


def extract_tickets(raw_response: Any) -> Optional[list[Any]]:
    """Return the ticket list of a raw payload, or None when there is none.

    Examples:
        >>> extract_tickets({"Tickets": [{"Key": "t1"}]})
        [{'Key': 't1'}]
        >>> extract_tickets({"Key": "t1"})
        [{'Key': 't1'}]
        >>> extract_tickets(None)

    """
    if raw_response is None:
        return None
    if isinstance(raw_response, list):
        return raw_response
    if isinstance(raw_response, Mapping):
        if not raw_response:
            return None
        tickets = pick(raw_response, "tickets")
        if isinstance(tickets, list):
            return tickets
        return [raw_response]
    return None


def document_sort_key(doc: Mapping[str, Any]) -> tuple[str, str, datetime]:
    """Deterministic processing order for raw documents: (date, sourceId, ingestedAt)."""
    day = coerce_date(doc.get("date"))
    return (
        day.isoformat() if day else "",
        str(doc.get("sourceId") or ""),
        coerce_datetime(doc.get("ingestedAt")) or _EPOCH,
    )


def _number(line: Mapping[str, Any], name: str) -> float:
    raw = pick(line, name)
    if raw is None:
        return 0.0
    value = to_float(raw)
    if value is None:
        raise MalformedLine(f"unparseable {name} {raw!r}")
    return value


def _text(value: Any) -> Optional[str]:
    s = strip_invisibles(value)
    return s or None


def build_line_record(
    line: Mapping[str, Any],
    order: Mapping[str, Any],
    ticket: Mapping[str, Any],
    day: str,
    location_id: Optional[str],
    resolver: CategoryResolver,
) -> dict[str, Any]:
    """Normalize one order line into a SalesLineItemAggregated row.

    Order-level table, waiter and time fall back to the ticket's values.
    Absent numeric fields become 0; negative quantities are kept.

    Raises:
        MalformedLine: If a numeric field is present but unparseable.

    """
    numbers = {out: _number(line, alias) for out, alias in NUMERIC_FIELDS.items()}
    cost_raw = pick(line, "cost_price")
    cost_price = to_float(cost_raw) if cost_raw is not None else None

    group_name = _text(pick(line, "group_name"))
    match = resolver.find_main_category(group_name or "")

    table_raw = pick(order, "order_table", pick(ticket, "ticket_table"))
    waiter = pick(order, "order_waiter", pick(ticket, "ticket_waiter"))
    time_value = pick(order, "time", pick(ticket, "time"))

    return {
        "ticketKey": to_key(pick(ticket, "ticket_key")) or "",
        "ticketNumber": to_key(pick(ticket, "ticket_number")) or "",
        "orderKey": to_key(pick(order, "order_key")) or "",
        "orderLineKey": to_key(pick(line, "line_key")) or "",
        "date": day,
        "locationId": location_id,
        "productName": _text(pick(line, "product_name")) or "",
        "productSku": to_key(pick(line, "product_sku")),
        "category": match.category,
        "groupName": group_name,
        "mainCategory": match.main_category,
        "quantity": numbers["quantity"],
        "unitPrice": numbers["unitPrice"],
        "totalExVat": numbers["totalExVat"],
        "totalIncVat": numbers["totalIncVat"],
        "vatRate": numbers["vatRate"],
        "vatAmount": numbers["vatAmount"],
        "costPrice": cost_price,
        "waiterName": _text(waiter),
        "paymentMethod": _text(pick(ticket, "payment_method")),
        "tableNumber": to_int(table_raw) if table_raw is not None else None,
        "time": _text(time_value),
    }


def _iter_lines(
    ticket: Mapping[str, Any],
    where: str,
    batch: LineItemBatch,
) -> Iterable[tuple[Mapping[str, Any], Mapping[str, Any]]]:
    orders = pick(ticket, "orders", [])
    if not isinstance(orders, list):
        batch.warn(f"{where}: orders is not a list, ticket skipped")
        return
    for oi, order in enumerate(orders):
        if not isinstance(order, Mapping):
            batch.warn(f"{where} order {oi}: not an object, skipped")
            continue
        lines = pick(order, "lines", [])
        if not isinstance(lines, list):
            batch.warn(f"{where} order {oi}: lines is not a list, order skipped")
            continue
        for li, line in enumerate(lines):
            batch.lines_seen += 1
            if not isinstance(line, Mapping):
                batch.lines_skipped += 1
                batch.warn(f"{where} order {oi} line {li}: not an object, skipped")
                continue
            yield order, line


def collect_waiter_names(raw_docs: Iterable[Mapping[str, Any]]) -> set[str]:
    """Distinct waiter names on the tickets and orders of raw Bork documents."""
    names: set[str] = set()
    for doc in raw_docs:
        for ticket in extract_tickets(doc.get("rawApiResponse")) or []:
            if not isinstance(ticket, Mapping):
                continue
            candidates = [pick(ticket, "ticket_waiter")]
            orders = pick(ticket, "orders", [])
            if isinstance(orders, list):
                candidates.extend(pick(o, "order_waiter") for o in orders if isinstance(o, Mapping))
            names.update(n for n in (_text(c) for c in candidates) if n)
    return names


def aggregate_line_items(
    raw_docs: Iterable[Mapping[str, Any]],
    resolver: CategoryResolver,
) -> LineItemBatch:
    """Flatten raw Bork documents into line-item rows.

    Never raises on bad input: malformed tickets, orders and lines are
    skipped and described in ``warnings``; documents without a ticket
    payload put their date into ``failed_dates``.

    Args:
        raw_docs: ``bork_raw_data`` documents.
        resolver: Category resolver for the pass.

    Returns:
        LineItemBatch with rows ordered by (date, sourceId, ingestedAt),
        then ticket/order/line position.

    """
    batch = LineItemBatch()
    docs = sorted(raw_docs, key=document_sort_key)
    for doc in docs:
        batch.documents_processed += 1
        source_id = doc.get("sourceId") or doc.get("_id") or "?"
        day = coerce_date(doc.get("date"))
        if day is None:
            batch.warn(f"Document {source_id}: missing or invalid date {doc.get('date')!r}, skipped")
            continue
        day_str = day.isoformat()
        location_id = to_key(doc.get("locationId"))

        tickets = extract_tickets(doc.get("rawApiResponse"))
        if tickets is None:
            batch.failed_dates.add(day_str)
            batch.warn(f"Document {source_id} ({day_str}): no ticket payload, date queued for retry")
            continue

        for ti, ticket in enumerate(tickets):
            where = f"Document {source_id} ({day_str}) ticket {ti}"
            if not isinstance(ticket, Mapping):
                batch.warn(f"{where}: not an object, skipped")
                continue
            for order, line in _iter_lines(ticket, where, batch):
                try:
                    record = build_line_record(line, order, ticket, day_str, location_id, resolver)
                except MalformedLine as e:
                    batch.lines_skipped += 1
                    batch.warn(f"{where}: line skipped, {e}")
                    continue
                batch.records.append(record)

    logger.info(
        "Flattened %d documents into %d line items (%d lines skipped)",
        batch.documents_processed,
        len(batch.records),
        batch.lines_skipped,
    )
    return batch
