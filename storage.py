# storage.py
"""
Key-value persistence for invoices, company settings and the login credential.

Every key holds one JSON document; a write replaces the whole value, so the
invoice collection is read-modify-written as a unit on every save.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError

from models import (
    CompanyProfile,
    Credentials,
    Invoice,
    StoredValue,
    fallback_invoice_number,
    next_invoice_number,
    utcnow,
)

logger = logging.getLogger(__name__)

INVOICES_KEY = "invoices"
SETTINGS_KEY = "companySettings"
CREDENTIALS_KEY = "userCredentials"
PREVIEW_KEY = "previewInvoice"


class StorageError(RuntimeError):
    pass


class KeyValueStore:
    def __init__(self, session_factory):
        self._session_factory = session_factory

    def read(self, key: str, default: Any = None) -> Any:
        try:
            with self._session_factory() as s:
                row = s.get(StoredValue, key)
                if row is None:
                    return default
                value = json.loads(row.value)
        except (SQLAlchemyError, ValueError) as exc:
            raise StorageError(f"Could not read {key!r}") from exc
        return default if value is None else value

    def write(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value)
            with self._session_factory() as s:
                row = s.get(StoredValue, key)
                if row is None:
                    s.add(StoredValue(key=key, value=payload))
                else:
                    row.value = payload
                s.commit()
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            raise StorageError(f"Could not write {key!r}") from exc

    def remove(self, key: str) -> None:
        try:
            with self._session_factory() as s:
                row = s.get(StoredValue, key)
                if row is not None:
                    s.delete(row)
                    s.commit()
        except SQLAlchemyError as exc:
            raise StorageError(f"Could not remove {key!r}") from exc


# -----------------------------
# Collection edits (pure)
# -----------------------------
def upsert_record(records: list[dict], invoice: Invoice) -> tuple[list[dict], bool]:
    """
    Replace the record with the same invoice number in place, or prepend it.
    Returns (new records, created).
    """
    out = list(records)
    for i, rec in enumerate(out):
        if rec.get("invoiceNumber") == invoice.invoice_number:
            out[i] = invoice.to_dict()
            return out, False
    out.insert(0, invoice.to_dict())
    return out, True


def remove_record(records: list[dict], invoice_number: str) -> tuple[list[dict], int]:
    kept = [rec for rec in records if rec.get("invoiceNumber") != invoice_number]
    return kept, len(records) - len(kept)


@dataclass(frozen=True)
class DashboardStats:
    total_invoices: int
    total_amount: float
    pending_invoices: int


class InvoiceStore:
    """Typed access to the named keys."""

    def __init__(self, kv: KeyValueStore, config):
        self.kv = kv
        self.prefix = config.INVOICE_PREFIX
        self.seq_width = config.INVOICE_SEQ_WIDTH
        self.default_credentials = Credentials(config.DEFAULT_USERNAME, config.DEFAULT_PASSWORD)

    # -----------------------------
    # Invoices
    # -----------------------------
    def _records(self) -> list[dict]:
        data = self.kv.read(INVOICES_KEY, [])
        if not isinstance(data, list):
            raise StorageError(f"{INVOICES_KEY!r} does not hold a list")
        return [rec for rec in data if isinstance(rec, dict)]

    def load_invoices(self) -> list[Invoice]:
        """Newest first: by createdAt, falling back to the invoice date."""
        invoices = [Invoice.from_dict(rec) for rec in self._records()]
        invoices.sort(key=Invoice.sort_key, reverse=True)
        return invoices

    def get_invoice(self, invoice_number: str) -> Optional[Invoice]:
        for rec in self._records():
            if rec.get("invoiceNumber") == invoice_number:
                return Invoice.from_dict(rec)
        return None

    def save_invoice(self, invoice: Invoice) -> tuple[Invoice, bool]:
        records = self._records()
        exists = any(rec.get("invoiceNumber") == invoice.invoice_number for rec in records)
        if exists:
            invoice = replace(invoice, updated_at=utcnow())
        elif invoice.created_at is None:
            invoice = replace(invoice, created_at=utcnow())

        records, created = upsert_record(records, invoice)
        self.kv.write(INVOICES_KEY, records)
        logger.info("%s invoice %s", "Created" if created else "Updated", invoice.invoice_number)
        return invoice, created

    def delete_invoice(self, invoice_number: str) -> int:
        records, removed = remove_record(self._records(), invoice_number)
        if removed:
            self.kv.write(INVOICES_KEY, records)
            logger.info("Deleted invoice %s", invoice_number)
        return removed

    def next_invoice_number(self) -> str:
        try:
            invoices = self.load_invoices()
        except StorageError as exc:
            fallback = fallback_invoice_number(self.prefix, self.seq_width)
            logger.warning("Could not read invoices for numbering (%s); using %s", exc, fallback)
            return fallback
        return next_invoice_number(invoices, self.prefix, self.seq_width)

    def dashboard_stats(self) -> DashboardStats:
        invoices = self.load_invoices()
        return DashboardStats(
            total_invoices=len(invoices),
            total_amount=sum((inv.invoice_total() for inv in invoices), 0.0),
            # Invoices carry no paid state, so every invoice counts as pending
            pending_invoices=len(invoices),
        )

    # -----------------------------
    # Company profile
    # -----------------------------
    def load_profile(self) -> CompanyProfile:
        data = self.kv.read(SETTINGS_KEY, {})
        return CompanyProfile.from_dict(data if isinstance(data, dict) else {})

    def save_profile(self, profile: CompanyProfile) -> None:
        self.kv.write(SETTINGS_KEY, profile.to_dict())
        logger.info("Company settings saved")

    # -----------------------------
    # Login credential
    # -----------------------------
    def load_credentials(self) -> Credentials:
        data = self.kv.read(CREDENTIALS_KEY)
        if isinstance(data, dict) and data.get("username"):
            return Credentials.from_dict(data)
        return self.default_credentials

    def save_credentials(self, credentials: Credentials) -> None:
        self.kv.write(CREDENTIALS_KEY, credentials.to_dict())
        logger.info("Credentials updated for %s", credentials.username)

    def check_login(self, username: str, password: str) -> bool:
        creds = self.load_credentials()
        return username == creds.username and password == creds.password

    # -----------------------------
    # Preview hand-off
    # -----------------------------
    def stash_preview(self, invoice: Invoice, profile: CompanyProfile) -> None:
        payload = invoice.to_dict()
        payload["companyDetails"] = profile.to_dict()
        self.kv.write(PREVIEW_KEY, payload)

    def load_preview(self) -> Optional[tuple[Invoice, CompanyProfile]]:
        data = self.kv.read(PREVIEW_KEY)
        if not isinstance(data, dict):
            return None
        details = data.get("companyDetails")
        profile = CompanyProfile.from_dict(details) if isinstance(details, dict) else self.load_profile()
        return Invoice.from_dict(data), profile

    def clear_preview(self) -> None:
        self.kv.remove(PREVIEW_KEY)
