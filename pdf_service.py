# pdf_service.py
"""
Invoice PDF layout and export.

Layout is computed first as a list of positioned draw operations per page
(coordinates in points, measured from the page's top-left corner), then
painted onto a reportlab canvas. Keeping the two apart lets callers inspect
where every block landed without parsing a PDF.
"""
import base64
import binascii
import io
import logging
import os
import re
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Iterator, List, Optional, Sequence, Tuple

from reportlab.pdfgen import canvas
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.pdfmetrics import stringWidth
from reportlab.pdfbase.ttfonts import TTFont, TTFError

from config import Config
from formatting import fmt_date, fmt_money, split_lines
from models import CompanyProfile, Invoice
from totals import InvoiceTotals, invoice_totals

logger = logging.getLogger(__name__)

PAGE_W, PAGE_H = A4
M = 15 * mm

# Header
LOGO_W, LOGO_H = 50 * mm, 20 * mm
COMPANY_X = M + 60 * mm
COMPANY_NAME_Y = M + 10 * mm
COMPANY_LINES_Y = M + 15 * mm
LINE_STEP = 5 * mm
META_X = PAGE_W - M - 40 * mm
META_TITLE_Y = M + 10 * mm
META_NUMBER_Y = M + 20 * mm
META_DATE_Y = M + 25 * mm
COMPANY_LINES_MAX_W = META_X - COMPANY_X - 5 * mm

# Billing block; these are minimums, the running cursor pushes them down
BILL_TO_Y = M + 45 * mm
CUSTOMER_LINES_OFFSET = 10 * mm
BLOCK_GAP = 10 * mm

# Items table
TABLE_Y = M + 85 * mm
TABLE_W = PAGE_W - 2 * M
COLUMNS = (
    ("Service", TABLE_W - 90 * mm, "left"),
    ("Qty", 20 * mm, "right"),
    ("Price", 35 * mm, "right"),
    ("Amount", 35 * mm, "right"),
)
TABLE_FONT_SIZE = 9
ROW_H = 7 * mm
CELL_PAD = 2 * mm
CELL_LINE_H = 4 * mm
TEXT_BASELINE = 4.6 * mm
HEADER_FILL = (69, 69, 69)
STRIPE_FILL = (245, 245, 245)
WHITE = (255, 255, 255)
BLACK = (0, 0, 0)

# Totals
TOTALS_GAP = 10 * mm
TOTALS_STEP = 5 * mm
TOTALS_LABEL_X = PAGE_W - M - 80 * mm
TOTALS_VALUE_X = PAGE_W - M - 20 * mm
QR_SIZE = 30 * mm
QR_RAISE = 5 * mm

# Terms, pinned to the page bottom
TERMS_HEADING_Y = PAGE_H - M - 30 * mm
TERMS_TEXT_Y = PAGE_H - M - 25 * mm
TERMS_LINE_H = 3.5 * mm
TERMS_FONT_SIZE = 8
TERMS_CLEARANCE = 6 * mm

# Continuation pages
CONT_CAPTION_Y = M + 5 * mm
CONT_TABLE_Y = M + 12 * mm


class PdfGenerationError(RuntimeError):
    pass


# -----------------------------
# Fonts
# -----------------------------
@dataclass(frozen=True)
class FontSet:
    regular: str
    bold: str
    currency: str


STANDARD_FONTS = FontSet("Helvetica", "Helvetica-Bold", Config.PDF_CURRENCY_FALLBACK)

SYSTEM_REGULAR_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/Library/Fonts/DejaVuSans.ttf",
]
SYSTEM_BOLD_CANDIDATES = [
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans-Bold.ttf",
    "/Library/Fonts/DejaVuSans-Bold.ttf",
]


def find_font_path(override: str, candidates: Sequence[str]) -> Optional[str]:
    if override and os.path.exists(override):
        return override
    for path in candidates:
        if os.path.exists(path):
            return path
    return None


@lru_cache(maxsize=1)
def resolve_fonts() -> FontSet:
    """Register a Unicode TTF for the currency glyph; Helvetica with an ASCII label otherwise."""
    regular_path = find_font_path(Config.INVOICE_FONT_PATH, SYSTEM_REGULAR_CANDIDATES)
    if not regular_path:
        logger.info("No Unicode font found; PDFs use Helvetica and %r", Config.PDF_CURRENCY_FALLBACK)
        return STANDARD_FONTS

    bold_path = find_font_path(Config.INVOICE_FONT_BOLD_PATH, SYSTEM_BOLD_CANDIDATES)
    try:
        pdfmetrics.registerFont(TTFont("InvoiceSans", regular_path))
        bold_name = "InvoiceSans"
        if bold_path:
            pdfmetrics.registerFont(TTFont("InvoiceSans-Bold", bold_path))
            bold_name = "InvoiceSans-Bold"
    except (TTFError, OSError) as exc:
        logger.warning("Could not load font %s (%s); falling back to Helvetica", regular_path, exc)
        return STANDARD_FONTS

    return FontSet("InvoiceSans", bold_name, Config.CURRENCY_SYMBOL)


def _wrap_text(text, font, size, max_width):
    words = str(text).split()
    lines = []
    current = ""

    def split_long_token(token: str):
        """Break a single long token (like an email) into width-safe chunks."""
        if stringWidth(token, font, size) <= max_width:
            return [token]
        chunks = []
        remaining = token
        while remaining:
            lo, hi = 1, len(remaining)
            fit = 1
            while lo <= hi:
                mid = (lo + hi) // 2
                if stringWidth(remaining[:mid], font, size) <= max_width:
                    fit = mid
                    lo = mid + 1
                else:
                    hi = mid - 1
            chunks.append(remaining[:fit])
            remaining = remaining[fit:]
        return chunks

    for w in [piece for word in words for piece in split_long_token(word)]:
        test = current + (" " if current else "") + w
        if stringWidth(test, font, size) <= max_width:
            current = test
        else:
            if current:
                lines.append(current)
            current = w
    if current:
        lines.append(current)
    return lines or [""]


# -----------------------------
# Draw operations
# -----------------------------
@dataclass(frozen=True)
class TextOp:
    x: float
    y: float  # baseline, from the top edge
    text: str
    font: str
    size: float
    align: str = "left"
    color: Tuple[int, int, int] = BLACK


@dataclass(frozen=True)
class RectOp:
    x: float
    y: float  # top edge
    width: float
    height: float
    fill: Tuple[int, int, int]


@dataclass(frozen=True)
class ImageOp:
    name: str
    data: bytes
    x: float
    y: float  # top edge
    width: float
    height: float


@dataclass
class PageLayout:
    ops: list = field(default_factory=list)

    def text(self, x, y, text, font, size, align="left", color=BLACK):
        self.ops.append(TextOp(x, y, text, font, size, align, color))

    def texts(self) -> List[TextOp]:
        return [op for op in self.ops if isinstance(op, TextOp)]

    def images(self) -> List[ImageOp]:
        return [op for op in self.ops if isinstance(op, ImageOp)]


@dataclass
class DocumentLayout:
    title: str
    pages: List[PageLayout]

    def texts(self) -> List[TextOp]:
        return [op for page in self.pages for op in page.texts()]

    def images(self) -> List[ImageOp]:
        return [op for page in self.pages for op in page.images()]


# -----------------------------
# Content helpers
# -----------------------------
def decode_image(value: str, name: str) -> Optional[bytes]:
    """Bytes of a stored data URL (or bare base64) image; None when empty or unreadable."""
    if not value:
        return None
    _, sep, payload = value.partition("base64,")
    try:
        data = base64.b64decode(payload if sep else value, validate=True)
        ImageReader(io.BytesIO(data)).getSize()
    except (binascii.Error, ValueError) as exc:
        logger.warning("Skipping %s image: not valid base64 (%s)", name, exc)
        return None
    except Exception:
        logger.warning("Skipping %s image: could not be decoded", name, exc_info=True)
        return None
    return data


def company_lines(profile: CompanyProfile) -> List[str]:
    lines = split_lines(profile.address)
    if profile.phone:
        lines.append(f"Phone: {profile.phone}")
    if profile.email:
        lines.append(f"Email: {profile.email}")
    return lines


def customer_lines(invoice: Invoice) -> List[str]:
    lines = []
    if invoice.customer_name:
        lines.append(invoice.customer_name)
    lines.extend(split_lines(invoice.customer_address))
    if invoice.customer_phone:
        lines.append(f"Phone: {invoice.customer_phone}")
    if invoice.customer_email:
        lines.append(f"Email: {invoice.customer_email}")
    if invoice.vehicle_number:
        lines.append(f"Vehicle Number: {invoice.vehicle_number}")
    return lines


def _fmt_rate(rate: float) -> str:
    return f"{rate:g}"


def totals_lines(totals: InvoiceTotals, symbol: str) -> List[Tuple[str, str, bool]]:
    """(label, value, bold) in print order; tax and discount only when positive."""
    lines = [("Subtotal:", fmt_money(totals.subtotal, symbol), False)]
    if totals.tax_rate > 0:
        lines.append((f"Tax ({_fmt_rate(totals.tax_rate)}%):", fmt_money(totals.tax_amount, symbol), False))
    if totals.discount_rate > 0:
        lines.append((f"Discount ({_fmt_rate(totals.discount_rate)}%):", fmt_money(totals.discount_amount, symbol), False))
    lines.append(("Total:", fmt_money(totals.total, symbol), True))
    return lines


@dataclass(frozen=True)
class TableRow:
    cells: Tuple[Tuple[str, ...], ...]
    height: float


def build_rows(invoice: Invoice, fonts: FontSet) -> List[TableRow]:
    service_w = COLUMNS[0][1] - 2 * CELL_PAD
    rows = []
    for item in invoice.items:
        service = _wrap_text(item.service, fonts.regular, TABLE_FONT_SIZE, service_w)
        if item.description:
            service += _wrap_text(item.description, fonts.regular, TABLE_FONT_SIZE, service_w)
        cells = (
            tuple(service),
            (str(item.quantity),),
            (fmt_money(item.price, fonts.currency),),
            (fmt_money(item.amount, fonts.currency),),
        )
        rows.append(TableRow(cells, ROW_H + (len(service) - 1) * CELL_LINE_H))
    return rows


def iter_row_groups(rows: Sequence[TableRow], first_top: float, cont_top: float, floor: float) -> Iterator[List[TableRow]]:
    """
    Yield the rows that go on each page. A row stays on the current page only
    if it ends above `floor`; every group holds at least one row, and an
    empty table still yields one (empty) group so its header gets drawn.
    """
    group: List[TableRow] = []
    y = first_top + ROW_H
    for row in rows:
        if group and y + row.height > floor:
            yield group
            group = []
            y = cont_top + ROW_H
        group.append(row)
        y += row.height
    yield group


# -----------------------------
# Layout
# -----------------------------
class InvoiceLayout:
    def __init__(self, invoice: Invoice, profile: CompanyProfile, fonts: FontSet):
        self.invoice = invoice
        self.profile = profile
        self.fonts = fonts
        self.totals = invoice_totals(invoice)
        self.terms = (profile.terms_and_conditions or "").strip()
        self.floor = TERMS_HEADING_Y - TERMS_CLEARANCE if self.terms else PAGE_H - M
        self.pages: List[PageLayout] = []

    def new_page(self) -> PageLayout:
        page = PageLayout()
        if self.pages:
            page.text(M, CONT_CAPTION_Y, f"INVOICE {self.invoice.invoice_number} (cont.)", self.fonts.bold, 10)
        self.pages.append(page)
        return page

    def header(self, page: PageLayout) -> float:
        """Logo, company block and invoice meta; returns the lowest baseline/edge used."""
        bottom = M
        logo = decode_image(self.profile.logo, "logo")
        if logo:
            page.ops.append(ImageOp("logo", logo, M, M, LOGO_W, LOGO_H))
            bottom = M + LOGO_H

        if self.profile.company_name:
            page.text(COMPANY_X, COMPANY_NAME_Y, self.profile.company_name, self.fonts.bold, 18)
            bottom = max(bottom, COMPANY_NAME_Y)

        y = COMPANY_LINES_Y
        for detail in company_lines(self.profile):
            for ln in _wrap_text(detail, self.fonts.regular, 10, COMPANY_LINES_MAX_W):
                page.text(COMPANY_X, y, ln, self.fonts.regular, 10)
                bottom = max(bottom, y)
                y += LINE_STEP

        page.text(META_X, META_TITLE_Y, "INVOICE", self.fonts.bold, 12)
        page.text(META_X, META_NUMBER_Y, f"Invoice #: {self.invoice.invoice_number}", self.fonts.regular, 10)
        if self.invoice.date:
            page.text(META_X, META_DATE_Y, f"Date: {fmt_date(self.invoice.date)}", self.fonts.regular, 10)
        return max(bottom, META_DATE_Y)

    def billing(self, page: PageLayout, header_bottom: float) -> float:
        top = max(BILL_TO_Y, header_bottom + BLOCK_GAP)
        page.text(M, top, "Bill To:", self.fonts.bold, 11)
        bottom = top
        y = top + CUSTOMER_LINES_OFFSET
        for detail in customer_lines(self.invoice):
            for ln in _wrap_text(detail, self.fonts.regular, 10, TABLE_W / 2):
                page.text(M, y, ln, self.fonts.regular, 10)
                bottom = y
                y += LINE_STEP
        return bottom

    def table(self, page: PageLayout, top: float, rows: Sequence[TableRow]) -> float:
        """Header band plus rows; returns the table's end position."""
        page.ops.append(RectOp(M, top, TABLE_W, ROW_H, HEADER_FILL))
        x = M
        for title, width, align in COLUMNS:
            tx = x + width - CELL_PAD if align == "right" else x + CELL_PAD
            page.text(tx, top + TEXT_BASELINE, title, self.fonts.bold, TABLE_FONT_SIZE, align, WHITE)
            x += width

        y = top + ROW_H
        for i, row in enumerate(rows):
            if i % 2 == 1:
                page.ops.append(RectOp(M, y, TABLE_W, row.height, STRIPE_FILL))
            x = M
            for (_, width, align), lines in zip(COLUMNS, row.cells):
                tx = x + width - CELL_PAD if align == "right" else x + CELL_PAD
                for n, ln in enumerate(lines):
                    page.text(tx, y + TEXT_BASELINE + n * CELL_LINE_H, ln, self.fonts.regular, TABLE_FONT_SIZE, align)
                x += width
            y += row.height
        return y

    def totals_block(self, page: PageLayout, table_end: float) -> None:
        lines = totals_lines(self.totals, self.fonts.currency)
        qr = decode_image(self.profile.qr_code, "QR code")

        y = table_end + TOTALS_GAP
        block_bottom = y + (len(lines) - 1) * TOTALS_STEP
        if qr:
            block_bottom = max(block_bottom, y - QR_RAISE + QR_SIZE)
        if block_bottom > self.floor:
            page = self.new_page()
            y = CONT_TABLE_Y + TOTALS_GAP

        for label, value, bold in lines:
            font = self.fonts.bold if bold else self.fonts.regular
            page.text(TOTALS_LABEL_X, y, label, font, 10)
            page.text(TOTALS_VALUE_X, y, value, font, 10, align="right")
            y += TOTALS_STEP

        if qr:
            first_y = y - len(lines) * TOTALS_STEP
            page.ops.append(ImageOp("qr_code", qr, M, first_y - QR_RAISE, QR_SIZE, QR_SIZE))

    def terms_block(self, page: PageLayout) -> None:
        if not self.terms:
            return
        page.text(M, TERMS_HEADING_Y, "Terms and Conditions:", self.fonts.bold, 10)
        y = TERMS_TEXT_Y
        for paragraph in split_lines(self.terms):
            for ln in _wrap_text(paragraph, self.fonts.regular, TERMS_FONT_SIZE, TABLE_W):
                page.text(M, y, ln, self.fonts.regular, TERMS_FONT_SIZE)
                y += TERMS_LINE_H

    def build(self) -> DocumentLayout:
        page = self.new_page()
        header_bottom = self.header(page)
        billing_bottom = self.billing(page, header_bottom)
        table_top = max(TABLE_Y, billing_bottom + BLOCK_GAP)

        table_end = table_top
        groups = iter_row_groups(build_rows(self.invoice, self.fonts), table_top, CONT_TABLE_Y, self.floor)
        for n, group in enumerate(groups):
            if n:
                page = self.new_page()
                table_top = CONT_TABLE_Y
            table_end = self.table(page, table_top, group)

        self.totals_block(page, table_end)
        self.terms_block(self.pages[-1])
        return DocumentLayout(title=f"Invoice - {self.invoice.invoice_number}", pages=self.pages)


def layout_invoice(invoice: Invoice, profile: CompanyProfile, fonts: Optional[FontSet] = None) -> DocumentLayout:
    return InvoiceLayout(invoice, profile, fonts or resolve_fonts()).build()


# -----------------------------
# Painting
# -----------------------------
def _rgb(color):
    return tuple(c / 255 for c in color)


def _draw(pdf, op) -> None:
    if isinstance(op, TextOp):
        pdf.setFillColorRGB(*_rgb(op.color))
        pdf.setFont(op.font, op.size)
        if op.align == "right":
            pdf.drawRightString(op.x, PAGE_H - op.y, op.text)
        else:
            pdf.drawString(op.x, PAGE_H - op.y, op.text)
    elif isinstance(op, RectOp):
        pdf.setFillColorRGB(*_rgb(op.fill))
        pdf.rect(op.x, PAGE_H - op.y - op.height, op.width, op.height, stroke=0, fill=1)
    elif isinstance(op, ImageOp):
        img = ImageReader(io.BytesIO(op.data))
        pdf.drawImage(img, op.x, PAGE_H - op.y - op.height, width=op.width, height=op.height, mask="auto")
    else:
        raise TypeError(f"Unknown draw operation: {op!r}")


def paint(layout: DocumentLayout) -> bytes:
    buf = io.BytesIO()
    pdf = canvas.Canvas(buf, pagesize=A4)
    pdf.setTitle(layout.title)
    for i, page in enumerate(layout.pages):
        if i:
            pdf.showPage()
        for op in page.ops:
            _draw(pdf, op)
    pdf.save()
    return buf.getvalue()


# -----------------------------
# Public entry points
# -----------------------------
def _safe_filename(name: str) -> str:
    # strip characters not allowed on Windows/mac paths
    return re.sub(r'[\\/*?:"<>|]', "", (name or "")).strip() or "Invoice"


def pdf_filename(invoice: Invoice) -> str:
    return f"Invoice-{_safe_filename(invoice.invoice_number)}.pdf"


def render_invoice_pdf(invoice: Invoice, profile: CompanyProfile, fonts: Optional[FontSet] = None) -> bytes:
    try:
        return paint(layout_invoice(invoice, profile, fonts))
    except Exception as exc:
        logger.exception("PDF generation failed for invoice %s", invoice.invoice_number)
        raise PdfGenerationError(f"Could not generate PDF for {invoice.invoice_number}") from exc


def export_invoice_pdf(invoice: Invoice, profile: CompanyProfile, exports_dir: str, fonts: Optional[FontSet] = None) -> str:
    """
    Renders the invoice and writes it to exports_dir/Invoice-<number>.pdf.

    Returns: absolute pdf path on disk.
    """
    blob = render_invoice_pdf(invoice, profile, fonts)
    os.makedirs(exports_dir, exist_ok=True)
    pdf_path = os.path.abspath(os.path.join(exports_dir, pdf_filename(invoice)))
    try:
        with open(pdf_path, "wb") as fh:
            fh.write(blob)
    except OSError as exc:
        logger.exception("Could not write %s", pdf_path)
        raise PdfGenerationError(f"Could not write {pdf_path}") from exc
    return pdf_path
