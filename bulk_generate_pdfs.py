# bulk_generate_pdfs.py
import argparse
import os
from pathlib import Path

from config import Config
from models import Base, make_engine, make_session_factory
from pdf_service import PdfGenerationError, export_invoice_pdf, pdf_filename
from storage import InvoiceStore, KeyValueStore, StorageError


def main(argv=None):
    parser = argparse.ArgumentParser(description="Bulk export invoice PDFs.")
    parser.add_argument("--year", type=str, default="", help="Only export invoices dated in a given year (YYYY).")
    parser.add_argument("--all", action="store_true", help="Regenerate PDFs even if one already exists.")
    args = parser.parse_args(argv)

    target_year = (args.year or "").strip()
    if target_year and not (target_year.isdigit() and len(target_year) == 4):
        raise SystemExit("Year must be 4 digits, e.g. --year 2025")

    # Ensure exports dir exists
    Path(Config.EXPORTS_DIR).mkdir(parents=True, exist_ok=True)

    engine = make_engine(Config.SQLALCHEMY_DATABASE_URI, echo=Config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)
    store = InvoiceStore(KeyValueStore(make_session_factory(engine)), Config)

    try:
        invoices = store.load_invoices()
        profile = store.load_profile()
    except StorageError as e:
        raise SystemExit(f"Could not read the store: {e}")

    # Oldest first, so the log reads in invoice order
    invoices.reverse()
    if target_year:
        invoices = [inv for inv in invoices if inv.date is not None and inv.date.year == int(target_year)]

    if not invoices:
        print("No invoices found for the given filter.")
        return

    total = len(invoices)
    generated = 0
    skipped = 0
    failed = 0

    for i, inv in enumerate(invoices, start=1):
        target = os.path.join(Config.EXPORTS_DIR, pdf_filename(inv))
        if os.path.exists(target) and not args.all:
            skipped += 1
            print(f"[{i}/{total}] SKIP  {inv.invoice_number} (already has PDF)")
            continue

        try:
            path = export_invoice_pdf(inv, profile, Config.EXPORTS_DIR)
        except PdfGenerationError as e:
            failed += 1
            print(f"[{i}/{total}] FAIL  {inv.invoice_number}  ({e})")
            continue

        generated += 1
        print(f"[{i}/{total}] DONE  {inv.invoice_number} -> {path}")

    print("\n✅ Bulk PDF export complete.")
    print(f"Generated: {generated}")
    print(f"Skipped:   {skipped}")
    print(f"Failed:    {failed}")
    print(f"Exports:   {Config.EXPORTS_DIR}")


if __name__ == "__main__":
    main()
