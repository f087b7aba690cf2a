# formatting.py
"""Display formatting for money, dates and invoice list rows."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, List

from dateutil import parser as dateutil_parser

from totals import invoice_totals

DATE_FORMAT = "%d/%m/%Y"


def safe_float(value: Any, default: float = 0.0) -> float:
    """Parse a finite float; inf, nan and overflowing input fall back to the default."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    return number if math.isfinite(number) else default


def safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return default


def fmt_money(amount: float, symbol: str) -> str:
    """PDF money cell: glyph prefix, two decimals, no grouping."""
    return f"{symbol}{amount:.2f}"


def _group_western(digits: str) -> str:
    return f"{int(digits):,}"


def _group_indian(digits: str) -> str:
    # 12,34,56,789: last three digits, then pairs
    if len(digits) <= 3:
        return digits
    head, tail = digits[:-3], digits[-3:]
    groups = []
    while len(head) > 2:
        groups.insert(0, head[-2:])
        head = head[:-2]
    if head:
        groups.insert(0, head)
    return ",".join(groups + [tail])


def fmt_currency(amount: float, symbol: str = "₹", grouping: str = "indian") -> str:
    if not math.isfinite(amount):
        return f"{symbol}{amount}"
    text = f"{abs(amount):.2f}"
    digits, _, cents = text.partition(".")
    grouped = _group_indian(digits) if grouping == "indian" else _group_western(digits)
    sign = "-" if amount < 0 and text != "0.00" else ""
    return f"{sign}{symbol}{grouped}.{cents}"


def fmt_date(raw: Any) -> str:
    """Format a date as dd/mm/yyyy; strings that don't parse come back unchanged."""
    if raw is None:
        return ""
    if isinstance(raw, (date, datetime)):
        return raw.strftime(DATE_FORMAT)
    raw = str(raw).strip()
    if not raw:
        return raw
    try:
        return dateutil_parser.parse(raw).strftime(DATE_FORMAT)
    except (ValueError, OverflowError):
        return raw


def split_lines(text: str) -> List[str]:
    if not text:
        return []
    return [line.strip() for line in text.splitlines() if line.strip()]


@dataclass(frozen=True)
class InvoiceRow:
    invoice_number: str
    date: str
    customer_name: str
    vehicle: str
    amount: str


def format_invoice_row(invoice, symbol: str = "₹", grouping: str = "indian") -> InvoiceRow:
    return InvoiceRow(
        invoice_number=invoice.invoice_number,
        date=fmt_date(invoice.date),
        customer_name=invoice.customer_name,
        vehicle=invoice.vehicle_number or "N/A",
        amount=fmt_currency(invoice_totals(invoice).total, symbol, grouping),
    )
