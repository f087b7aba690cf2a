# filters.py
"""Search and filter predicate for the saved-invoices list."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Iterable, List, Mapping, Optional

from models import Invoice, parse_date
from totals import invoice_totals

ALL_VEHICLES = "all"


@dataclass(frozen=True)
class FilterSpec:
    search: str = ""
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    vehicle_type: str = ALL_VEHICLES

    @classmethod
    def from_args(cls, args: Mapping[str, str]) -> "FilterSpec":
        """Build a filter from request arguments; blank or unparseable bounds are left inactive."""
        return cls(
            search=(args.get("q") or "").strip(),
            date_from=parse_date((args.get("date_from") or "").strip()),
            date_to=parse_date((args.get("date_to") or "").strip()),
            min_amount=_parse_amount(args.get("min_amount")),
            max_amount=_parse_amount(args.get("max_amount")),
            vehicle_type=(args.get("vehicle") or "").strip() or ALL_VEHICLES,
        )

    def is_default(self) -> bool:
        return self == FilterSpec()


def _parse_amount(raw: Optional[str]) -> Optional[float]:
    raw = (raw or "").strip()
    if not raw:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def matches_search(invoice: Invoice, term: str) -> bool:
    needle = term.lower()
    return (
        needle in invoice.customer_name.lower()
        or needle in invoice.invoice_number.lower()
        or needle in (invoice.registration or "").lower()
    )


def matches(invoice: Invoice, spec: FilterSpec) -> bool:
    if spec.search and not matches_search(invoice, spec.search):
        return False

    if spec.date_from is not None and (invoice.date is None or invoice.date < spec.date_from):
        return False
    if spec.date_to is not None and (invoice.date is None or invoice.date > spec.date_to):
        return False

    if spec.min_amount is not None or spec.max_amount is not None:
        total = invoice_totals(invoice).total
        if spec.min_amount is not None and total < spec.min_amount:
            return False
        if spec.max_amount is not None and total > spec.max_amount:
            return False

    if spec.vehicle_type != ALL_VEHICLES and invoice.vehicle_number != spec.vehicle_type:
        return False

    return True


def apply_filters(invoices: Iterable[Invoice], spec: FilterSpec) -> List[Invoice]:
    """All active predicates ANDed; input order is kept."""
    return [inv for inv in invoices if matches(inv, spec)]


def vehicle_choices(invoices: Iterable[Invoice]) -> List[str]:
    seen: List[str] = []
    for inv in invoices:
        if inv.vehicle_number and inv.vehicle_number not in seen:
            seen.append(inv.vehicle_number)
    return [ALL_VEHICLES, *seen]
