import io
import os
import tempfile
import unittest

from app import create_app
from config import Config


class AppTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        tmp = self._tmp.name

        class TestConfig(Config):
            TESTING = True
            SECRET_KEY = "test"
            SQLALCHEMY_DATABASE_URI = f"sqlite:///{os.path.join(tmp, 'test.db')}"
            EXPORTS_DIR = os.path.join(tmp, "exports")
            DEFAULT_USERNAME = "admin"
            DEFAULT_PASSWORD = "admin123"
            INVOICES_PER_PAGE = 2

        self.app = create_app(TestConfig)
        self.store = self.app.extensions["invoice_store"]
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def login(self, username="admin", password="admin123"):
        return self.client.post("/login", data={"username": username, "password": password}, follow_redirects=True)

    def invoice_form(self, **overrides):
        data = {
            "customer_name": "Anil Kumar",
            "customer_phone": "9876543210",
            "vehicle_number": "MH12AB1234",
            "service": ["Oil change", "Brake pads"],
            "quantity": ["2", "1"],
            "price": ["500", "1500"],
            "description": ["", "Front axle"],
            "discount": "10",
            "tax": "",
            "notes": "",
            "action": "save",
        }
        data.update(overrides)
        return data


class AuthTests(AppTestCase):
    def test_screens_require_login(self) -> None:
        for path in ("/dashboard", "/invoices", "/invoices/new", "/settings"):
            resp = self.client.get(path)
            self.assertEqual(resp.status_code, 302, path)
            self.assertIn("/login", resp.headers["Location"])

    def test_index_redirects(self) -> None:
        self.assertIn("/login", self.client.get("/").headers["Location"])
        self.login()
        self.assertIn("/dashboard", self.client.get("/").headers["Location"])

    def test_bad_login(self) -> None:
        resp = self.login(password="wrong")

        self.assertIn("Invalid username or password", resp.get_data(as_text=True))
        self.assertEqual(self.client.get("/dashboard").status_code, 302)

    def test_login_and_logout(self) -> None:
        resp = self.login()

        self.assertEqual(resp.status_code, 200)
        self.assertIn("Garage Dashboard", resp.get_data(as_text=True))

        self.client.get("/logout")
        self.assertEqual(self.client.get("/dashboard").status_code, 302)


class InvoiceRouteTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login()

    def test_new_form_shows_next_number(self) -> None:
        resp = self.client.get("/invoices/new")

        self.assertEqual(resp.status_code, 200)
        self.assertIn("INV-001", resp.get_data(as_text=True))

    def test_create_invoice(self) -> None:
        resp = self.client.post("/invoices/new", data=self.invoice_form(), follow_redirects=True)

        self.assertIn("Invoice saved successfully", resp.get_data(as_text=True))
        inv = self.store.get_invoice("INV-001")
        self.assertIsNotNone(inv)
        self.assertEqual(inv.customer_name, "Anil Kumar")
        self.assertEqual(inv.items[1].description, "Front axle")
        self.assertAlmostEqual(inv.invoice_total(), 2250.0)
        self.assertIsNotNone(inv.created_at)

        self.client.post("/invoices/new", data=self.invoice_form(customer_name="Sunita"), follow_redirects=True)
        self.assertIsNotNone(self.store.get_invoice("INV-002"))

    def test_validation_keeps_form(self) -> None:
        resp = self.client.post("/invoices/new", data=self.invoice_form(customer_name=""))
        body = resp.get_data(as_text=True)

        self.assertEqual(resp.status_code, 200)
        self.assertIn("Please enter customer name", body)
        self.assertIn("Brake pads", body)
        self.assertEqual(self.store.load_invoices(), [])

    def test_list_filters_and_paginates(self) -> None:
        for name in ("Anil", "Sunita", "Ravi"):
            self.client.post("/invoices/new", data=self.invoice_form(customer_name=name))

        body = self.client.get("/invoices").get_data(as_text=True)
        self.assertIn("3 invoice(s)", body)
        self.assertNotIn("Reset Filters", body)
        self.assertIn("₹2,250.00", body)
        self.assertIn("page 1 of 2", body)

        body = self.client.get("/invoices?q=sunita").get_data(as_text=True)
        self.assertIn("1 invoice(s)", body)
        self.assertIn("Sunita", body)
        self.assertNotIn("Ravi", body)
        self.assertIn("Reset Filters", body)

        body = self.client.get("/invoices?min_amount=5000").get_data(as_text=True)
        self.assertIn("No invoices found", body)

    def test_non_finite_price_keeps_list_renderable(self) -> None:
        self.client.post("/invoices/new", data=self.invoice_form(price=["inf", "nan"], discount="1e309"))

        inv = self.store.get_invoice("INV-001")
        self.assertEqual(inv.invoice_total(), 0.0)

        resp = self.client.get("/invoices")
        self.assertEqual(resp.status_code, 200)
        self.assertIn("₹0.00", resp.get_data(as_text=True))
        self.assertEqual(self.client.get("/dashboard").status_code, 200)

    def test_edit_replaces_in_place(self) -> None:
        self.client.post("/invoices/new", data=self.invoice_form())
        self.client.post("/invoices/new", data=self.invoice_form(customer_name="Sunita"))
        created_at = self.store.get_invoice("INV-001").created_at

        resp = self.client.post(
            "/invoices/INV-001/edit",
            data=self.invoice_form(customer_name="Anil K.", discount="0"),
            follow_redirects=True,
        )

        self.assertIn("Invoice updated successfully", resp.get_data(as_text=True))
        inv = self.store.get_invoice("INV-001")
        self.assertEqual(inv.customer_name, "Anil K.")
        self.assertEqual(inv.created_at, created_at)
        self.assertIsNotNone(inv.updated_at)
        self.assertEqual(len(self.store.load_invoices()), 2)

    def test_unknown_invoice_is_404(self) -> None:
        self.assertEqual(self.client.get("/invoices/INV-404/edit").status_code, 404)
        self.assertEqual(self.client.get("/invoices/INV-404/pdf").status_code, 404)
        self.assertEqual(self.client.post("/invoices/INV-404/delete").status_code, 404)

    def test_delete(self) -> None:
        self.client.post("/invoices/new", data=self.invoice_form())

        resp = self.client.post("/invoices/INV-001/delete", follow_redirects=True)

        self.assertIn("Invoice deleted successfully", resp.get_data(as_text=True))
        self.assertIsNone(self.store.get_invoice("INV-001"))

    def test_pdf_download(self) -> None:
        self.client.post("/invoices/new", data=self.invoice_form())

        resp = self.client.get("/invoices/INV-001/pdf")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.mimetype, "application/pdf")
        self.assertIn("Invoice-INV-001.pdf", resp.headers["Content-Disposition"])
        self.assertTrue(resp.data.startswith(b"%PDF"))

    def test_save_and_download(self) -> None:
        resp = self.client.post("/invoices/new", data=self.invoice_form(action="download"))

        self.assertEqual(resp.mimetype, "application/pdf")
        self.assertIsNotNone(self.store.get_invoice("INV-001"))

    def test_preview_uses_placeholders(self) -> None:
        resp = self.client.post(
            "/invoices/new",
            data=self.invoice_form(action="preview", customer_phone=""),
            follow_redirects=True,
        )
        body = resp.get_data(as_text=True)

        self.assertIn("Company Name", body)
        self.assertIn("Phone: N/A", body)
        self.assertIn("Anil Kumar", body)
        self.assertEqual(self.store.load_invoices(), [])

        pdf = self.client.get("/preview/pdf")
        self.assertTrue(pdf.data.startswith(b"%PDF"))

        self.client.get("/logout")
        self.assertIsNone(self.store.load_preview())

    def test_dashboard_stats(self) -> None:
        self.client.post("/invoices/new", data=self.invoice_form())

        body = self.client.get("/dashboard").get_data(as_text=True)

        self.assertIn("₹2,250.00", body)


class SettingsRouteTests(AppTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.login()

    def test_save_settings_with_logo(self) -> None:
        resp = self.client.post(
            "/settings",
            data={
                "company_name": "Speedy Garage",
                "phone": "020-1234",
                "logo": (io.BytesIO(b"\x89PNG small"), "logo.png"),
            },
            content_type="multipart/form-data",
            follow_redirects=True,
        )

        self.assertIn("Settings saved successfully!", resp.get_data(as_text=True))
        profile = self.store.load_profile()
        self.assertEqual(profile.company_name, "Speedy Garage")
        self.assertTrue(profile.logo.startswith("data:image/png;base64,"))

    def test_oversized_logo_is_rejected(self) -> None:
        resp = self.client.post(
            "/settings",
            data={"company_name": "Speedy Garage", "logo": (io.BytesIO(b"x" * 600000), "logo.png")},
            content_type="multipart/form-data",
        )

        self.assertIn("File size should be less than 500KB", resp.get_data(as_text=True))
        self.assertEqual(self.store.load_profile().company_name, "")

    def test_change_password(self) -> None:
        resp = self.client.post(
            "/settings/password",
            data={"current_password": "admin123", "new_password": "secret1", "confirm_password": "secret1"},
            follow_redirects=True,
        )
        self.assertIn("Password changed successfully!", resp.get_data(as_text=True))

        self.client.get("/logout")
        self.assertIn("Invalid username or password", self.login().get_data(as_text=True))
        self.assertIn("Garage Dashboard", self.login(password="secret1").get_data(as_text=True))

    def test_change_password_rejects_short(self) -> None:
        resp = self.client.post(
            "/settings/password",
            data={"current_password": "admin123", "new_password": "abc", "confirm_password": "abc"},
            follow_redirects=True,
        )

        self.assertIn("at least 6 characters", resp.get_data(as_text=True))
        self.assertTrue(self.store.check_login("admin", "admin123"))


if __name__ == "__main__":
    unittest.main()
