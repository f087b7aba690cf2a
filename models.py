# models.py
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timezone
from typing import Any, Iterable, Optional

from dateutil import parser as dateutil_parser
from sqlalchemy import create_engine, String, Text, DateTime
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    mapped_column,
    sessionmaker,
)

from formatting import safe_float, safe_int
from totals import InvoiceTotals, invoice_totals

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# SQLAlchemy base
# -----------------------------
class Base(DeclarativeBase):
    pass


# -----------------------------
# Tables
# -----------------------------
class StoredValue(Base):
    """
    One JSON blob per named key (invoices, companySettings, ...).
    Writes replace the whole value; there is no per-record row.
    """
    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="null")

    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


# -----------------------------
# Engine / Session factory
# -----------------------------
def make_engine(db_url: str, echo: bool = False):
    """
    Create SQLAlchemy engine.
    Note: SQLite path must exist (instance/ folder). db_init.py / create_app create it.
    """
    return create_engine(db_url, echo=echo, future=True)


def make_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


# -----------------------------
# Value parsing
# -----------------------------
def parse_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return dateutil_parser.parse(str(value)).date()
    except (ValueError, OverflowError):
        return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = dateutil_parser.isoparse(str(value))
        except (ValueError, OverflowError):
            return None
    # Stored timestamps without an offset are treated as UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _text(value: Any) -> str:
    return "" if value is None else str(value)


# -----------------------------
# Records
# -----------------------------
@dataclass
class LineItem:
    service: str
    quantity: int = 1
    price: float = 0.0
    description: str = ""

    @property
    def amount(self) -> float:
        return self.quantity * self.price

    @classmethod
    def from_dict(cls, data: dict) -> "LineItem":
        # Older records use serviceType + description instead of service.
        service = data.get("service")
        if service is None:
            service = data.get("serviceType")
        return cls(
            service=_text(service),
            quantity=safe_int(data.get("quantity"), 0),
            price=safe_float(data.get("price"), 0.0),
            description=_text(data.get("description")),
        )

    def to_dict(self) -> dict:
        out = {"service": self.service, "quantity": self.quantity, "price": self.price}
        if self.description:
            out["description"] = self.description
        return out


@dataclass
class Invoice:
    invoice_number: str
    date: Optional[date] = None
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    customer_address: str = ""
    vehicle_number: str = ""
    items: list[LineItem] = field(default_factory=list)
    discount: float = 0.0
    tax: Optional[float] = None
    notes: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    vehicle_registration: Optional[str] = None

    # Convenience totals (computed, not stored)
    def totals(self) -> InvoiceTotals:
        return invoice_totals(self)

    def invoice_total(self) -> float:
        return self.totals().total

    @property
    def registration(self) -> str:
        """Registration used by text search; the vehicle number when no separate field was stored."""
        return self.vehicle_registration or self.vehicle_number

    def sort_key(self) -> datetime:
        if self.created_at is not None:
            return self.created_at
        if self.date is not None:
            return datetime.combine(self.date, dt_time.min, tzinfo=timezone.utc)
        return datetime.min.replace(tzinfo=timezone.utc)

    @classmethod
    def from_dict(cls, data: dict) -> "Invoice":
        raw_tax = data.get("tax")
        registration = data.get("vehicleRegistration")
        return cls(
            invoice_number=_text(data.get("invoiceNumber")),
            date=parse_date(data.get("date")),
            customer_name=_text(data.get("customerName")),
            customer_email=_text(data.get("customerEmail")),
            customer_phone=_text(data.get("customerPhone")),
            customer_address=_text(data.get("customerAddress")),
            vehicle_number=_text(data.get("vehicleNumber")),
            items=[LineItem.from_dict(it) for it in (data.get("items") or []) if isinstance(it, dict)],
            discount=safe_float(data.get("discount"), 0.0),
            tax=None if raw_tax in (None, "") else safe_float(raw_tax, 0.0),
            notes=_text(data.get("notes")),
            created_at=parse_timestamp(data.get("createdAt")),
            updated_at=parse_timestamp(data.get("updatedAt")),
            vehicle_registration=None if registration is None else _text(registration),
        )

    def to_dict(self) -> dict:
        out = {
            "invoiceNumber": self.invoice_number,
            "date": self.date.isoformat() if self.date else "",
            "customerName": self.customer_name,
            "customerEmail": self.customer_email,
            "customerPhone": self.customer_phone,
            "customerAddress": self.customer_address,
            "vehicleNumber": self.vehicle_number,
            "items": [it.to_dict() for it in self.items],
            "discount": self.discount,
            "notes": self.notes,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
        if self.tax is not None:
            out["tax"] = self.tax
        if self.updated_at is not None:
            out["updatedAt"] = self.updated_at.isoformat()
        if self.vehicle_registration is not None:
            out["vehicleRegistration"] = self.vehicle_registration
        return out


@dataclass
class CompanyProfile:
    company_name: str = ""
    address: str = ""
    phone: str = ""
    email: str = ""
    website: str = ""
    # Images are data URLs (data:image/png;base64,...)
    logo: str = ""
    qr_code: str = ""
    terms_and_conditions: str = ""
    # Collected on the settings screen, not printed anywhere
    bank_name: str = ""
    account_number: str = ""
    ifsc_code: str = ""
    branch_name: str = ""

    _KEYS = (
        ("company_name", "companyName"),
        ("address", "address"),
        ("phone", "phone"),
        ("email", "email"),
        ("website", "website"),
        ("bank_name", "bankName"),
        ("account_number", "accountNumber"),
        ("ifsc_code", "ifscCode"),
        ("branch_name", "branchName"),
        ("logo", "logo"),
        ("qr_code", "qrCode"),
        ("terms_and_conditions", "termsAndConditions"),
    )

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "CompanyProfile":
        data = data or {}
        return cls(**{attr: _text(data.get(key)) for attr, key in cls._KEYS})

    def to_dict(self) -> dict:
        return {key: getattr(self, attr) for attr, key in self._KEYS}


@dataclass
class Credentials:
    username: str
    password: str

    @classmethod
    def from_dict(cls, data: dict) -> "Credentials":
        return cls(username=_text(data.get("username")), password=_text(data.get("password")))

    def to_dict(self) -> dict:
        return {"username": self.username, "password": self.password}


# -----------------------------
# Invoice number generator
# -----------------------------
def _sequence_of(invoice_number: str, prefix: str) -> int:
    if not invoice_number.startswith(prefix):
        return 0
    m = re.match(r"\d+", invoice_number[len(prefix):])
    return int(m.group(0)) if m else 0


def fallback_invoice_number(prefix: str = "INV-", seq_width: int = 3, taken: Iterable[str] = ()) -> str:
    """Last digits of the epoch milliseconds, stepped forward past any number in `taken`."""
    taken = set(taken)
    stamp = int(time.time() * 1000)
    space = 10 ** seq_width
    for offset in range(space):
        candidate = f"{prefix}{(stamp + offset) % space:0{seq_width}d}"
        if candidate not in taken:
            return candidate
    # every short suffix is in use
    return f"{prefix}{stamp}"


def next_invoice_number(invoices: Iterable[Invoice], prefix: str = "INV-", seq_width: int = 3) -> str:
    """
    Returns the next invoice number like INV-### (highest existing + 1).
    Numbers that don't parse count as 0, so an empty collection starts at INV-001.
    If the collection itself can't be read, falls back to a timestamp-derived number.
    """
    seen = []
    try:
        invoices = list(invoices)
        seen = [getattr(inv, "invoice_number", None) for inv in invoices]
        highest = max((_sequence_of(inv.invoice_number, prefix) for inv in invoices), default=0)
    except (AttributeError, TypeError) as exc:
        fallback = fallback_invoice_number(prefix, seq_width, seen)
        logger.warning("Invoice number generation failed (%s); using %s", exc, fallback)
        return fallback

    return f"{prefix}{highest + 1:0{seq_width}d}"
