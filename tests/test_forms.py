import io
import unittest
from datetime import date

from werkzeug.datastructures import FileStorage, MultiDict

from forms import (
    ValidationError,
    change_password,
    invoice_from_form,
    parse_line_items,
    profile_from_form,
    read_image_upload,
    validate_invoice,
)
from models import CompanyProfile, Credentials


def _upload(data: bytes, filename="logo.png", mimetype="image/png") -> FileStorage:
    return FileStorage(stream=io.BytesIO(data), filename=filename, content_type=mimetype)


class InvoiceFormTests(unittest.TestCase):
    def _form(self, **overrides):
        fields = MultiDict([
            ("customer_name", "  Anil Kumar "),
            ("customer_email", "anil@example.com"),
            ("customer_phone", "9876543210"),
            ("customer_address", "12 Main St"),
            ("vehicle_number", "MH12AB1234"),
            ("service", "Oil change"),
            ("quantity", "2"),
            ("price", "500"),
            ("description", ""),
            ("service", "Brake pads"),
            ("quantity", "1"),
            ("price", "1500"),
            ("description", "Front axle"),
            ("service", ""),
            ("quantity", ""),
            ("price", ""),
            ("description", ""),
            ("discount", "10"),
            ("tax", ""),
            ("notes", "Check tyres next time"),
        ])
        for key, value in overrides.items():
            fields.setlist(key, value if isinstance(value, list) else [value])
        return fields

    def test_invoice_from_form(self) -> None:
        inv = invoice_from_form(self._form(), invoice_number="INV-001", invoice_date=date(2024, 3, 5))

        self.assertEqual(inv.invoice_number, "INV-001")
        self.assertEqual(inv.customer_name, "Anil Kumar")
        self.assertEqual(len(inv.items), 2)
        self.assertEqual(inv.items[1].description, "Front axle")
        self.assertEqual(inv.discount, 10.0)
        self.assertIsNone(inv.tax)
        self.assertAlmostEqual(inv.invoice_total(), 2250.0)
        validate_invoice(inv)

    def test_parse_line_items_fallbacks(self) -> None:
        items = parse_line_items(["Wash", "Polish"], ["x", ""], ["abc", "300"])

        self.assertEqual([(i.service, i.quantity, i.price) for i in items], [("Wash", 0, 0.0), ("Polish", 0, 300.0)])

    def test_non_finite_numbers_read_as_zero(self) -> None:
        form = self._form(price=["inf", "1e309"], discount="nan", tax="-inf")

        inv = invoice_from_form(form, invoice_number="INV-001", invoice_date=None)

        self.assertEqual([item.price for item in inv.items], [0.0, 0.0])
        self.assertEqual(inv.discount, 0.0)
        self.assertEqual(inv.tax, 0.0)
        self.assertEqual(inv.invoice_total(), 0.0)
        validate_invoice(inv)

    def test_missing_customer_name(self) -> None:
        inv = invoice_from_form(self._form(customer_name=" "), invoice_number="INV-001", invoice_date=None)

        with self.assertRaisesRegex(ValidationError, "Please enter customer name"):
            validate_invoice(inv)

    def test_no_items(self) -> None:
        form = self._form(service=[], quantity=[], price=[], description=[])
        inv = invoice_from_form(form, invoice_number="INV-001", invoice_date=None)

        with self.assertRaisesRegex(ValidationError, "Please add at least one service item"):
            validate_invoice(inv)

    def test_item_without_service(self) -> None:
        form = self._form(service=["Oil change", ""], quantity=["1", "2"], price=["500", "100"], description=[])
        inv = invoice_from_form(form, invoice_number="INV-001", invoice_date=None)

        with self.assertRaisesRegex(ValidationError, "Please fill in all service items"):
            validate_invoice(inv)


class SettingsFormTests(unittest.TestCase):
    def test_upload_becomes_data_url(self) -> None:
        url = read_image_upload(_upload(b"\x89PNG fake"), 500000)

        self.assertTrue(url.startswith("data:image/png;base64,"))

    def test_upload_over_limit_is_rejected(self) -> None:
        with self.assertRaisesRegex(ValidationError, "File size should be less than 500KB"):
            read_image_upload(_upload(b"x" * 500001), 500000)

    def test_no_file_picked(self) -> None:
        self.assertIsNone(read_image_upload(None, 500000))
        self.assertIsNone(read_image_upload(_upload(b"", filename=""), 500000))

    def test_profile_keeps_replaces_and_removes_images(self) -> None:
        current = CompanyProfile(company_name="Old", logo="data:image/png;base64,OLD", qr_code="data:image/png;base64,QR")
        form = MultiDict({"company_name": " Speedy Garage ", "phone": "020-1234", "remove_qr_code": "1"})

        profile = profile_from_form(form, MultiDict(), current, 500000)

        self.assertEqual(profile.company_name, "Speedy Garage")
        self.assertEqual(profile.phone, "020-1234")
        self.assertEqual(profile.logo, current.logo)
        self.assertEqual(profile.qr_code, "")

        replaced = profile_from_form(form, MultiDict({"logo": _upload(b"new")}), current, 500000)
        self.assertNotEqual(replaced.logo, current.logo)
        self.assertTrue(replaced.logo.startswith("data:image/png;base64,"))


class PasswordTests(unittest.TestCase):
    def setUp(self) -> None:
        self.creds = Credentials("admin", "admin123")

    def test_change_password(self) -> None:
        updated = change_password(self.creds, "admin123", "secret1", "secret1")

        self.assertEqual(updated, Credentials("admin", "secret1"))

    def test_wrong_current_password(self) -> None:
        with self.assertRaisesRegex(ValidationError, "Current password is incorrect"):
            change_password(self.creds, "nope", "secret1", "secret1")

    def test_mismatched_confirmation(self) -> None:
        with self.assertRaisesRegex(ValidationError, "do not match"):
            change_password(self.creds, "admin123", "secret1", "secret2")

    def test_too_short(self) -> None:
        with self.assertRaisesRegex(ValidationError, "at least 6 characters"):
            change_password(self.creds, "admin123", "abc", "abc")


if __name__ == "__main__":
    unittest.main()
