"""Field normalization layer for loosely-typed raw payloads.

Vendor payloads name the same field differently across API versions
(``Qty``/``qty``/``Quantity``...). Every alias table lives here, and
aggregators only ever ask for canonical names through :func:`pick`.

Key utilities:
- Alias lookup: ``pick``, ``pick_path`` (dotted paths into nested payloads)
- Text normalization: strip invisible characters, collapse whitespace
- Number parsing: robust handling of various number formats

Examples:
    >>> from ops_core.normalize import pick, to_float
    >>> pick({"Qty": 2}, "quantity")
    2
    >>> to_float("1.234,56")
    1234.56
"""

from __future__ import annotations

import math
import re
import unicodedata
from collections.abc import Mapping, Sequence
from typing import Any, Optional, Union

# canonical name -> aliases, in priority order
ALIASES: dict[str, tuple[str, ...]] = {
    # Bork ticket envelope
    "tickets": ("Tickets", "tickets"),
    "orders": ("Orders", "orders"),
    "lines": ("Lines", "lines"),
    "ticket_key": ("Key", "key"),
    "ticket_number": ("TicketNumber", "TicketNr", "ticketNumber", "ticketNr"),
    "ticket_table": ("TableNumber", "tableNumber", "TableName", "tableName"),
    "ticket_waiter": ("WaiterName", "waiterName", "UserName", "userName"),
    "payment_method": ("PaymentMethod", "paymentMethod"),
    "time": ("Time", "time"),
    # Bork order
    "order_key": ("Key", "key"),
    "order_table": ("TableNr", "tableNr", "TableNumber", "tableNumber"),
    "order_waiter": ("UserName", "userName", "WaiterName", "waiterName"),
    # Bork order line
    "line_key": ("Key", "key", "LineKey", "lineKey"),
    "product_name": ("ProductName", "productName", "Name", "name"),
    "product_sku": ("ProductSku", "productSku", "Sku", "sku"),
    "group_name": ("GroupName", "groupName", "Category", "category"),
    "quantity": ("Qty", "qty", "Quantity", "quantity"),
    "unit_price": ("Price", "price", "UnitPrice", "unitPrice"),
    "total_ex_vat": ("TotalEx", "totalEx", "TotalExVat", "totalExVat"),
    "total_inc_vat": ("TotalInc", "totalInc", "TotalIncVat", "totalIncVat"),
    "vat_rate": ("VatPerc", "vatPerc", "VatRate", "vatRate"),
    "vat_amount": ("VatAmount", "vatAmount"),
    "cost_price": ("CostPrice", "costPrice"),
    # Eitje shift (normalized columns first, then raw_data paths)
    "shift_date": ("date", "start_date", "resource_date"),
    "environment_id": ("environment_id", "environment.id", "environment"),
    "team_id": ("team_id", "teamId", "team.id", "team"),
    "team_name": ("team_name", "teamName", "team.name"),
    "user_id": (
        "user_id", "userId", "user.id", "employee_id", "employeeId",
        "employee.id", "worker_id", "workerId", "worker.id",
    ),
    "hours_worked": (
        "hours_worked", "hours", "totalHours", "total_hours", "hoursWorked",
        "duration", "duration_hours", "work_hours", "worked_hours",
        "time.hours", "shift.hours", "shift_data.hours",
    ),
    "start_time": (
        "start_time", "start_datetime", "start", "startDateTime", "startTime",
        "clock_in", "clockIn", "time.start", "shift.start", "shift_data.start",
    ),
    "end_time": (
        "end_time", "end_datetime", "end", "endDateTime", "endTime",
        "clock_out", "clockOut", "time.end", "shift.end", "shift_data.end",
    ),
    "break_minutes": (
        "break_minutes", "breaks", "breakMinutes", "break_minutes_actual",
        "break_time", "breakTime", "break_duration", "breakDuration",
        "time.breaks", "shift.breaks", "shift_data.breaks",
    ),
    "wage_cost": (
        "wage_cost", "wageCost", "wage", "total_wage", "totalWage",
        "costs.wage", "costs.wage_cost", "costs.wageCost",
        "labor_cost", "laborCost", "laborCosts", "labor_costs",
        "total_cost", "totalCost", "total_costs", "totalCosts",
        "cost", "price", "amount", "cost_amount",
        "shift.cost", "shift.wage", "shift_data.cost", "shift_data.wage",
    ),
    # Eitje planning shift
    "planned_hours": ("planned_hours", "hours", "totalHours", "total_hours"),
    "planned_cost": ("planned_cost", "costs.planned", "plannedCost", "wage_cost"),
    "status": ("status",),
    # Eitje revenue day
    "revenue_cents": ("amt_in_cents", "amount", "revenue", "total", "total_revenue"),
    "revenue_excl_vat": ("revenue_excl_vat", "net_revenue", "revenue_ex_vat", "net"),
    "revenue_incl_vat": ("revenue_incl_vat", "gross_revenue", "revenue", "total"),
    "revenue_vat_amount": ("vat_amount", "vat", "tax_amount"),
    "revenue_vat_rate": ("vat_percentage", "vat_rate", "tax_rate", "vat"),
    "cash_revenue": ("cash_revenue", "cash", "payment_methods.cash", "payments.cash"),
    "card_revenue": ("card_revenue", "card", "payment_methods.card", "payments.card"),
    "digital_revenue": (
        "digital_revenue", "digital", "payment_methods.digital", "payments.digital",
    ),
    "other_revenue": ("other_revenue", "other", "payment_methods.other", "payments.other"),
    "net_revenue": ("net_revenue", "net"),
    "gross_revenue": ("gross_revenue", "gross"),
    "transaction_count": (
        "transaction_count", "transactions_count", "count", "number_of_transactions",
    ),
    "currency": ("currency", "currency_code"),
    # Eitje user / team master data
    "eitje_id": ("id", "userId", "user_id"),
    "first_name": ("first_name", "firstName"),
    "last_name": ("last_name", "lastName"),
    "eitje_team_id": ("id", "team_id"),
    "eitje_team_name": ("name", "team_name"),
}

# Unicode characters that should be stripped from text
NBSP = "\u00a0"  # Non-breaking space
NNBSP = "\u202f"  # Narrow non-breaking space
ZW = "".join(chr(c) for c in (0x200B, 0x200C, 0x200D, 0xFEFF))  # Zero-width characters

_CURRENCY_RE = re.compile(r"[^\d,.\-\(\)\s]")


def _is_missing(value: Any, skip_empty: bool) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if skip_empty and isinstance(value, str) and value.strip() == "":
        return True
    return False


def get_path(record: Any, path: str) -> Any:
    """Follow a dotted path into nested mappings; None when any hop is missing."""
    cur = record
    for part in path.split("."):
        if not isinstance(cur, Mapping):
            return None
        cur = cur.get(part)
        if cur is None:
            return None
    return cur


def aliases_for(name: str | Sequence[str]) -> tuple[str, ...]:
    """Resolve a canonical name (or an explicit alias list) to its aliases."""
    if isinstance(name, str):
        return ALIASES.get(name, (name,))
    return tuple(name)


def pick(
    record: Any,
    name: str | Sequence[str],
    default: Any = None,
    *,
    skip_empty: bool = True,
) -> Any:
    """Return the first present value among the aliases of ``name``.

    Aliases may be dotted paths into nested payloads. Empty strings count as
    missing unless ``skip_empty`` is False; zero never counts as missing.

    Args:
        record: Raw payload (any mapping; non-mappings yield ``default``).
        name: Canonical field name from ``ALIASES`` or an explicit alias list.
        default: Value returned when no alias is present.
        skip_empty: Treat blank strings as missing.

    Examples:
        >>> pick({"qty": 0, "Quantity": 3}, "quantity")
        0
        >>> pick({"raw": {"team": {"id": 7}}}, ["raw.team.id"])
        7

    """
    if not isinstance(record, Mapping):
        return default
    for alias in aliases_for(name):
        value = get_path(record, alias) if "." in alias else record.get(alias)
        if not _is_missing(value, skip_empty):
            return value
    return default


def pick_path(
    sources: Sequence[Any],
    name: str | Sequence[str],
    default: Any = None,
) -> Any:
    """Like :func:`pick` but over several payloads in priority order."""
    for source in sources:
        value = pick(source, name)
        if value is not None:
            return value
    return default


def strip_invisibles(x: Any) -> Optional[str]:
    """Remove invisible and problematic whitespace characters from text.

    Examples:
        >>> strip_invisibles("  Hello World  ")
        'Hello World'
        >>> strip_invisibles(None)

    """
    if x is None or (isinstance(x, float) and math.isnan(x)):
        return None
    s = str(x)
    s = s.replace("\r", "").replace("\t", " ").replace(NBSP, " ").replace(NNBSP, " ")
    s = re.sub(r"[%s]" % re.escape(ZW), "", s)
    s = re.sub(r"\s+", " ", s).strip()
    return s


def normalize_name(x: Any) -> str:
    """Casefolded, accent-free, whitespace-collapsed key for name matching.

    Examples:
        >>> normalize_name("  José  van Dijk ")
        'jose van dijk'

    """
    s = strip_invisibles(x) or ""
    s = unicodedata.normalize("NFKD", s)
    s = "".join(ch for ch in s if not unicodedata.combining(ch))
    return s.casefold()


def to_float(x: Any) -> Optional[float]:
    """Robustly parse numbers in various formats.

    Handles:
    - Native ints/floats (bools are rejected)
    - US format: '1,234.56'
    - EU format: '1.234,56'
    - Negative in parentheses: '(1,234.56)'
    - Currency symbols: '€ 1 234,56'

    Returns:
        Parsed float value or None if parsing fails.

    Examples:
        >>> to_float("1,234.56")
        1234.56
        >>> to_float("(12,50)")
        -12.5
        >>> to_float(-2)
        -2.0

    """
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, (int, float)):
        v = float(x)
        return None if (math.isnan(v) or math.isinf(v)) else v
    s = str(x).strip()
    if not s:
        return None

    neg = False
    if s.startswith("(") and s.endswith(")"):
        neg, s = True, s[1:-1].strip()

    s = _CURRENCY_RE.sub("", s)
    s = re.sub(r"\s+", "", s)
    if not s:
        return None

    has_dot = "." in s
    has_com = "," in s

    def _finalize(num_str: str, negative: bool) -> Optional[float]:
        try:
            v = float(num_str)
        except ValueError:
            return None
        return -v if negative else v

    # 1.234,56 (EU)
    if re.fullmatch(r"-?\d{1,3}(?:\.\d{3})+,\d{1,2}", s):
        return _finalize(s.replace(".", "").replace(",", "."), neg)

    # 1,234.56 (US)
    if re.fullmatch(r"-?\d{1,3}(?:,\d{3})+\.\d{1,2}", s):
        return _finalize(s.replace(",", ""), neg)

    if has_com and not has_dot:
        if re.fullmatch(r"-?\d{1,3}(?:,\d{3})+", s):
            return _finalize(s.replace(",", ""), neg)
        return _finalize(s.replace(",", "."), neg)

    if has_dot and not has_com:
        if s.count(".") == 1:
            return _finalize(s, neg)
        if re.fullmatch(r"-?\d{1,3}(?:\.\d{3})+", s):
            return _finalize(s.replace(".", ""), neg)
        return _finalize(s, neg)

    return _finalize(s.replace(",", "."), neg)


def to_int(x: Any) -> Union[int, None]:
    """Convert a value to int via float parsing and rounding; None on failure.

    Examples:
        >>> to_int("12")
        12
        >>> to_int("abc")

    """
    v = to_float(x)
    if v is None:
        return None
    return int(round(v))


def to_key(x: Any) -> Optional[str]:
    """Identifier as a stripped string ("7" for 7 and 7.0); None when blank."""
    if x is None or isinstance(x, bool):
        return None
    if isinstance(x, float):
        if math.isnan(x):
            return None
        if x.is_integer():
            return str(int(x))
    s = str(x).strip()
    return s or None
