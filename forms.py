# forms.py
"""Turn submitted form fields into records, and the rules that gate saving them."""
from __future__ import annotations

import base64
from datetime import date, datetime
from typing import Optional

from formatting import safe_float, safe_int
from models import CompanyProfile, Credentials, Invoice, LineItem

MIN_PASSWORD_LENGTH = 6


class ValidationError(ValueError):
    pass


def _to_float(s, default=0.0):
    s = (s or "").strip()
    return safe_float(s, default) if s else float(default)


def _to_int(s, default=0):
    s = (s or "").strip()
    return safe_int(s, default) if s else int(default)


def parse_line_items(services, quantities, prices, descriptions=()):
    out = []
    n = max(len(services), len(quantities), len(prices))
    for i in range(n):
        service = (services[i] if i < len(services) else "").strip()
        qty = (quantities[i] if i < len(quantities) else "").strip()
        price = (prices[i] if i < len(prices) else "").strip()
        desc = (descriptions[i] if i < len(descriptions) else "").strip()
        if not service and not qty and not price and not desc:
            continue
        out.append(LineItem(service=service, quantity=_to_int(qty, 0), price=_to_float(price, 0.0), description=desc))
    return out


def invoice_from_form(
    form,
    *,
    invoice_number: str,
    invoice_date: Optional[date],
    created_at: Optional[datetime] = None,
) -> Invoice:
    """Build an Invoice from the editor fields; nothing is validated here so the form can be re-shown as typed."""
    raw_tax = (form.get("tax") or "").strip()
    return Invoice(
        invoice_number=invoice_number,
        date=invoice_date,
        customer_name=(form.get("customer_name") or "").strip(),
        customer_email=(form.get("customer_email") or "").strip(),
        customer_phone=(form.get("customer_phone") or "").strip(),
        customer_address=(form.get("customer_address") or "").strip(),
        vehicle_number=(form.get("vehicle_number") or "").strip(),
        items=parse_line_items(
            form.getlist("service"),
            form.getlist("quantity"),
            form.getlist("price"),
            form.getlist("description"),
        ),
        discount=_to_float(form.get("discount"), 0.0),
        tax=_to_float(raw_tax, 0.0) if raw_tax else None,
        notes=(form.get("notes") or "").rstrip(),
        created_at=created_at,
    )


def validate_invoice(invoice: Invoice) -> None:
    if not invoice.customer_name:
        raise ValidationError("Please enter customer name")
    if not invoice.items:
        raise ValidationError("Please add at least one service item")
    if any(not item.service for item in invoice.items):
        raise ValidationError("Please fill in all service items")


# -----------------------------
# Settings
# -----------------------------
PROFILE_TEXT_FIELDS = (
    "company_name",
    "address",
    "phone",
    "email",
    "website",
    "bank_name",
    "account_number",
    "ifsc_code",
    "branch_name",
    "terms_and_conditions",
)


def image_to_data_url(data: bytes, mimetype: str) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mimetype or 'application/octet-stream'};base64,{encoded}"


def read_image_upload(upload, max_bytes: int) -> Optional[str]:
    """Return a data URL for an uploaded image, or None when no file was picked."""
    if upload is None or not getattr(upload, "filename", ""):
        return None
    data = upload.read()
    if not data:
        return None
    if len(data) > max_bytes:
        raise ValidationError(f"File size should be less than {max_bytes // 1000}KB")
    return image_to_data_url(data, upload.mimetype)


def profile_from_form(form, files, current: CompanyProfile, max_image_bytes: int) -> CompanyProfile:
    fields = {name: (form.get(name) or "").strip() for name in PROFILE_TEXT_FIELDS}
    images = {}
    for name in ("logo", "qr_code"):
        uploaded = read_image_upload(files.get(name), max_image_bytes)
        if uploaded is not None:
            images[name] = uploaded
        elif form.get(f"remove_{name}") == "1":
            images[name] = ""
        else:
            images[name] = getattr(current, name)
    return CompanyProfile(**fields, **images)


def change_password(credentials: Credentials, current: str, new: str, confirm: str) -> Credentials:
    if current != credentials.password:
        raise ValidationError("Current password is incorrect")
    if new != confirm:
        raise ValidationError("New passwords do not match")
    if len(new) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"New password must be at least {MIN_PASSWORD_LENGTH} characters long")
    return Credentials(username=credentials.username, password=new)
