# totals.py
"""
Invoice money math.

Amounts stay at full float precision; rounding to two decimals only happens
when a value is formatted for display.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class InvoiceTotals:
    subtotal: float
    tax_rate: float
    tax_amount: float
    discount_rate: float
    discount_amount: float
    total: float


def line_amount(item) -> float:
    return item.quantity * item.price


def subtotal(items: Iterable) -> float:
    return sum((line_amount(item) for item in items), 0.0)


def calculate_totals(items: Iterable, tax: Optional[float] = None, discount: Optional[float] = None) -> InvoiceTotals:
    # Negative quantities, prices or rates are not rejected; they flow through as-is.
    tax_rate = float(tax or 0.0)
    discount_rate = float(discount or 0.0)

    base = subtotal(items)
    tax_amount = base * (tax_rate / 100)
    discount_amount = base * (discount_rate / 100)

    return InvoiceTotals(
        subtotal=base,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        discount_rate=discount_rate,
        discount_amount=discount_amount,
        total=base + tax_amount - discount_amount,
    )


def invoice_totals(invoice) -> InvoiceTotals:
    return calculate_totals(invoice.items, tax=invoice.tax, discount=invoice.discount)
