# app.py
import io
import logging
from datetime import date
from pathlib import Path

from flask import (
    Flask, render_template, request, redirect, url_for,
    flash, send_file, abort
)
from flask_login import (
    LoginManager, UserMixin, login_user, logout_user,
    login_required, current_user
)

from config import Config
from filters import FilterSpec, apply_filters, vehicle_choices
from formatting import fmt_currency, fmt_date, format_invoice_row
from forms import (
    ValidationError, change_password, invoice_from_form,
    profile_from_form, validate_invoice
)
from models import Base, Invoice, LineItem, make_engine, make_session_factory
from pdf_service import PdfGenerationError, pdf_filename, render_invoice_pdf
from storage import InvoiceStore, KeyValueStore, StorageError

login_manager = LoginManager()
login_manager.login_view = "login"
login_manager.login_message_category = "error"


# -----------------------------
# Flask-Login user wrapper
# -----------------------------
class AppUser(UserMixin):
    def __init__(self, username: str):
        self.id = username
        self.username = username


# -----------------------------
# Helpers
# -----------------------------
def _ensure_dirs(config):
    uri = config.SQLALCHEMY_DATABASE_URI
    if uri.startswith("sqlite:///"):
        Path(uri[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)
    Path(config.EXPORTS_DIR).mkdir(parents=True, exist_ok=True)


def _blank_invoice(invoice_number: str) -> Invoice:
    return Invoice(
        invoice_number=invoice_number,
        date=date.today(),
        items=[LineItem(service="", quantity=1, price=0.0)],
    )


def _pdf_response(blob: bytes, invoice: Invoice):
    return send_file(
        io.BytesIO(blob),
        as_attachment=True,
        download_name=pdf_filename(invoice),
        mimetype="application/pdf"
    )


# -----------------------------
# App factory
# -----------------------------
def create_app(config=Config):
    _ensure_dirs(config)

    app = Flask(__name__)
    app.config.from_object(config)
    app.logger.setLevel(getattr(logging, config.LOG_LEVEL, logging.INFO))

    login_manager.init_app(app)

    engine = make_engine(config.SQLALCHEMY_DATABASE_URI, echo=config.SQLALCHEMY_ECHO)
    Base.metadata.create_all(engine)

    SessionLocal = make_session_factory(engine)
    store = InvoiceStore(KeyValueStore(SessionLocal), config)
    app.extensions["invoice_store"] = store

    symbol = config.CURRENCY_SYMBOL
    grouping = config.NUMBER_GROUPING

    @app.template_filter("currency")
    def _currency_filter(amount):
        return fmt_currency(amount, symbol, grouping)

    @app.template_filter("ddmmyyyy")
    def _date_filter(value):
        return fmt_date(value)

    @login_manager.user_loader
    def load_user(user_id: str):
        try:
            creds = store.load_credentials()
        except StorageError:
            app.logger.exception("Could not read credentials")
            return None
        return AppUser(creds.username) if user_id == creds.username else None

    def _load_invoice_or_404(invoice_number: str) -> Invoice:
        try:
            inv = store.get_invoice(invoice_number)
        except StorageError:
            app.logger.exception("Could not load invoice %s", invoice_number)
            abort(500)
        if inv is None:
            abort(404)
        return inv

    def _load_profile():
        try:
            return store.load_profile()
        except StorageError:
            app.logger.exception("Could not load company settings")
            flash("Error loading company settings", "error")
            return None

    # -----------------------------
    # Auth routes
    # -----------------------------
    @app.route("/login", methods=["GET", "POST"])
    def login():
        if current_user.is_authenticated:
            return redirect(url_for("dashboard"))

        if request.method == "POST":
            username = (request.form.get("username") or "").strip()
            password = request.form.get("password") or ""
            try:
                ok = store.check_login(username, password)
            except StorageError:
                app.logger.exception("Could not read credentials")
                flash("Login failed. Please try again.", "error")
                return render_template("login.html", username=username)

            if ok:
                login_user(AppUser(username))
                return redirect(url_for("dashboard"))

            flash("Invalid username or password", "error")
            return render_template("login.html", username=username)
        return render_template("login.html")

    @app.route("/logout")
    @login_required
    def logout():
        try:
            store.clear_preview()
        except StorageError:
            app.logger.exception("Could not clear preview")
        logout_user()
        return redirect(url_for("login"))

    # -----------------------------
    # Index / dashboard
    # -----------------------------
    @app.route("/")
    def index():
        return redirect(url_for("dashboard" if current_user.is_authenticated else "login"))

    @app.route("/dashboard")
    @login_required
    def dashboard():
        stats = None
        try:
            stats = store.dashboard_stats()
        except StorageError:
            app.logger.exception("Could not load dashboard data")
            flash("Error loading invoices", "error")
        return render_template("dashboard.html", stats=stats)

    # -----------------------------
    # Saved invoices (search / filter / paginate)
    # -----------------------------
    @app.route("/invoices")
    @login_required
    def invoices():
        spec = FilterSpec.from_args(request.args)
        try:
            all_invoices = store.load_invoices()
        except StorageError:
            app.logger.exception("Could not load invoices")
            flash("Error loading invoices", "error")
            all_invoices = []

        filtered = apply_filters(all_invoices, spec)

        per_page = config.INVOICES_PER_PAGE
        try:
            page = max(0, int(request.args.get("page", "0")))
        except ValueError:
            page = 0
        page_count = max(1, -(-len(filtered) // per_page))
        page = min(page, page_count - 1)
        visible = filtered[page * per_page:(page + 1) * per_page]

        args = {k: v for k, v in request.args.items() if k != "page"}
        return render_template(
            "invoices_list.html",
            rows=[format_invoice_row(inv, symbol, grouping) for inv in visible],
            total_count=len(filtered),
            vehicles=vehicle_choices(all_invoices),
            args=args,
            vehicle=spec.vehicle_type,
            filtering=not spec.is_default(),
            page=page,
            page_count=page_count,
        )

    # -----------------------------
    # Create / edit
    # -----------------------------
    def _handle_invoice_post(inv: Invoice, mode: str):
        """Shared submit path: validate, then save / save+download / preview."""
        action = request.form.get("action", "save")
        try:
            validate_invoice(inv)
        except ValidationError as e:
            flash(str(e), "error")
            return render_template("invoice_form.html", mode=mode, inv=inv)

        if action == "preview":
            profile = _load_profile()
            if profile is None:
                return render_template("invoice_form.html", mode=mode, inv=inv)
            try:
                store.stash_preview(inv, profile)
            except StorageError:
                app.logger.exception("Could not store preview")
                flash("Error preparing preview", "error")
                return render_template("invoice_form.html", mode=mode, inv=inv)
            return redirect(url_for("preview"))

        try:
            saved, created = store.save_invoice(inv)
        except StorageError:
            app.logger.exception("Could not save invoice %s", inv.invoice_number)
            flash("Error saving invoice", "error")
            return render_template("invoice_form.html", mode=mode, inv=inv)

        if action == "download":
            profile = _load_profile()
            if profile is None:
                return redirect(url_for("invoices"))
            try:
                blob = render_invoice_pdf(saved, profile)
            except PdfGenerationError:
                flash("Error generating PDF", "error")
                return redirect(url_for("invoices"))
            return _pdf_response(blob, saved)

        if created:
            flash("Invoice saved successfully", "success")
            return redirect(url_for("invoice_new"))
        flash("Invoice updated successfully", "success")
        return redirect(url_for("invoices"))

    @app.route("/invoices/new", methods=["GET", "POST"])
    @login_required
    def invoice_new():
        if request.method == "POST":
            # Numbers are assigned at save time so two open forms can't collide
            inv = invoice_from_form(
                request.form,
                invoice_number=store.next_invoice_number(),
                invoice_date=date.today(),
            )
            return _handle_invoice_post(inv, "new")

        return render_template("invoice_form.html", mode="new", inv=_blank_invoice(store.next_invoice_number()))

    @app.route("/invoices/<invoice_number>/edit", methods=["GET", "POST"])
    @login_required
    def invoice_edit(invoice_number):
        existing = _load_invoice_or_404(invoice_number)

        if request.method == "POST":
            inv = invoice_from_form(
                request.form,
                invoice_number=existing.invoice_number,
                invoice_date=existing.date,
                created_at=existing.created_at,
            )
            return _handle_invoice_post(inv, "edit")

        return render_template("invoice_form.html", mode="edit", inv=existing)

    @app.route("/invoices/<invoice_number>/delete", methods=["POST"])
    @login_required
    def invoice_delete(invoice_number):
        try:
            removed = store.delete_invoice(invoice_number)
        except StorageError:
            app.logger.exception("Could not delete invoice %s", invoice_number)
            flash("Error deleting invoice", "error")
            return redirect(url_for("invoices"))

        if not removed:
            abort(404)
        flash("Invoice deleted successfully", "success")
        return redirect(url_for("invoices"))

    # -----------------------------
    # PDF / preview
    # -----------------------------
    @app.route("/invoices/<invoice_number>/pdf")
    @login_required
    def invoice_pdf(invoice_number):
        inv = _load_invoice_or_404(invoice_number)
        profile = _load_profile()
        if profile is None:
            return redirect(url_for("invoices"))
        try:
            blob = render_invoice_pdf(inv, profile)
        except PdfGenerationError:
            flash("Error generating PDF", "error")
            return redirect(url_for("invoices"))
        return _pdf_response(blob, inv)

    def _load_preview():
        try:
            return store.load_preview()
        except StorageError:
            app.logger.exception("Could not load preview")
            flash("Error loading preview", "error")
            return None

    @app.route("/preview")
    @login_required
    def preview():
        loaded = _load_preview()
        if loaded is None:
            return redirect(url_for("invoices"))
        inv, profile = loaded
        return render_template("invoice_preview.html", inv=inv, company=profile, totals=inv.totals())

    @app.route("/preview/pdf")
    @login_required
    def preview_pdf():
        loaded = _load_preview()
        if loaded is None:
            return redirect(url_for("invoices"))
        inv, profile = loaded
        try:
            blob = render_invoice_pdf(inv, profile)
        except PdfGenerationError:
            flash("Error generating PDF", "error")
            return redirect(url_for("preview"))
        return _pdf_response(blob, inv)

    # -----------------------------
    # Settings
    # -----------------------------
    @app.route("/settings", methods=["GET", "POST"])
    @login_required
    def settings():
        current = _load_profile()
        if current is None:
            return redirect(url_for("dashboard"))

        if request.method == "POST":
            try:
                profile = profile_from_form(request.form, request.files, current, config.MAX_IMAGE_BYTES)
            except ValidationError as e:
                flash(str(e), "error")
                return render_template("settings.html", company=current)

            try:
                store.save_profile(profile)
            except StorageError:
                app.logger.exception("Could not save company settings")
                flash("Error saving settings", "error")
                return render_template("settings.html", company=profile)

            flash("Settings saved successfully!", "success")
            return redirect(url_for("settings"))

        return render_template("settings.html", company=current)

    @app.route("/settings/password", methods=["POST"])
    @login_required
    def settings_password():
        try:
            creds = store.load_credentials()
            updated = change_password(
                creds,
                request.form.get("current_password") or "",
                request.form.get("new_password") or "",
                request.form.get("confirm_password") or "",
            )
            store.save_credentials(updated)
        except ValidationError as e:
            flash(str(e), "error")
            return redirect(url_for("settings"))
        except StorageError:
            app.logger.exception("Could not update credentials")
            flash("Error changing password", "error")
            return redirect(url_for("settings"))

        flash("Password changed successfully!", "success")
        return redirect(url_for("settings"))

    return app


if __name__ == "__main__":
    app = create_app()
    app.run(debug=True)
