import unittest
from decimal import Decimal
from unittest.mock import patch

from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError

from app.core.auth import get_current_user
from app.models.ledger import ActivityLog, Attachment, Booking, Expense, Transaction
from app.services import attachment_ledger
from app.services.attachment_ledger import display_name, infer_expense_category
from app.utils.alerting import alert_tracker
from tests.conftest import LedgerApiTestCase

UPLOAD = "app.services.attachment_ledger.upload_attachment_blob"


class AttachmentBinderTests(LedgerApiTestCase):
    """Upload + ledger binding: Expense, Transaction and invoice index entry."""

    def _upload(self, booking_id, *, file_name="hotel-tbilisi.pdf", data=None):
        return self.client.post(
            f"/api/v1/bookings/{booking_id}/attachments",
            files={"file": (file_name, b"%PDF-1.4 test", "application/pdf")},
            data=data or {},
        )

    # ------------------------------------------------------------------
    # Ledger rows
    # ------------------------------------------------------------------

    @patch(UPLOAD, side_effect=lambda path, content, content_type: path)
    def test_invoice_with_amount_writes_expense_and_transaction(self, _upload):
        booking = self._create_booking()
        resp = self._upload(booking.id, data={"attachment_type": "invoice", "amount": "500"})
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertIsNotNone(body["expense_id"])
        self.assertIsNotNone(body["transaction_id"])
        self.assertTrue(body["invoice_amount_indexed"])

        db = self.SessionLocal()
        expense = db.query(Expense).one()
        txn = db.query(Transaction).one()
        attachment = db.query(Attachment).one()

        self.assertEqual(expense.description, "Invoice: hotel-tbilisi.pdf")
        self.assertEqual(expense.amount, Decimal("500.00"))
        self.assertEqual(expense.expense_type, "hotel")
        self.assertEqual(expense.attachment_id, attachment.id)

        self.assertEqual(txn.description, "Invoice: hotel-tbilisi.pdf")
        self.assertEqual(txn.amount, Decimal("500.00"))
        self.assertEqual(txn.currency, "GEL")
        self.assertEqual(txn.category, "hotel")
        self.assertEqual(txn.kind, "out")
        self.assertEqual(txn.type, "expense")
        self.assertEqual(txn.status, "pending")
        self.assertFalse(txn.is_paid)
        self.assertTrue(txn.is_auto_generated)
        self.assertEqual(txn.attachment_id, attachment.id)
        self.assertEqual(txn.booking_id, booking.id)
        db.close()

    @patch(UPLOAD, side_effect=lambda path, content, content_type: path)
    def test_payment_uses_payment_prefix_and_skips_index(self, _upload):
        booking = self._create_booking()
        resp = self._upload(
            booking.id,
            file_name="transfer.png",
            data={"attachment_type": "payment", "amount": "120.5", "context": "transport"},
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertFalse(resp.json()["invoice_amount_indexed"])

        db = self.SessionLocal()
        txn = db.query(Transaction).one()
        self.assertEqual(txn.description, "Payment: transfer.png")
        self.assertEqual(txn.category, "transport")
        self.assertEqual(txn.amount, Decimal("120.50"))
        refreshed = db.get(Booking, booking.id)
        self.assertNotIn("invoice_amounts", refreshed.document)
        db.close()

    @patch(UPLOAD, side_effect=lambda path, content, content_type: path)
    def test_custom_name_keeps_file_extension(self, _upload):
        booking = self._create_booking()
        resp = self._upload(booking.id, data={"custom_name": "Hotel Rustaveli", "amount": "80"})
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()["attachment"]["file_name"], "Hotel Rustaveli.pdf")

        db = self.SessionLocal()
        self.assertEqual(db.query(Expense).one().description, "Invoice: Hotel Rustaveli.pdf")
        db.close()

    @patch(UPLOAD, side_effect=lambda path, content, content_type: path)
    def test_no_amount_writes_no_ledger_rows(self, _upload):
        booking = self._create_booking()
        resp = self._upload(booking.id)
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertIsNone(resp.json()["expense_id"])

        db = self.SessionLocal()
        self.assertEqual(db.query(Attachment).count(), 1)
        self.assertEqual(db.query(Expense).count(), 0)
        self.assertEqual(db.query(Transaction).count(), 0)
        db.close()

    @patch(UPLOAD, side_effect=lambda path, content, content_type: path)
    def test_zero_amount_writes_no_ledger_rows(self, _upload):
        booking = self._create_booking()
        resp = self._upload(booking.id, data={"amount": "0"})
        self.assertEqual(resp.status_code, 200, resp.text)

        db = self.SessionLocal()
        self.assertEqual(db.query(Expense).count(), 0)
        self.assertEqual(db.query(Transaction).count(), 0)
        db.close()

    @patch(UPLOAD, side_effect=lambda path, content, content_type: path)
    def test_invoice_amount_entry_written_to_booking_document(self, _upload):
        booking = self._create_booking(document={"notes": "keep me"})
        resp = self._upload(
            booking.id,
            data={"amount": "300", "original_currency": "usd", "original_amount": "110"},
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        attachment_id = resp.json()["attachment"]["id"]

        db = self.SessionLocal()
        document = db.get(Booking, booking.id).document
        self.assertEqual(document["notes"], "keep me")
        self.assertEqual(
            document["invoice_amounts"][attachment_id],
            {"amount": 300.0, "original_currency": "USD", "original_amount": 110.0},
        )
        db.close()

        detail = self.client.get(f"/api/v1/bookings/{booking.id}")
        self.assertEqual(detail.json()["invoice_total"], 300.0)

    @patch(UPLOAD, side_effect=lambda path, content, content_type: path)
    def test_activity_log_records_upload_and_binding(self, _upload):
        booking = self._create_booking()
        self._upload(booking.id, data={"amount": "45"})

        db = self.SessionLocal()
        actions = sorted(row.action for row in db.query(ActivityLog).all())
        self.assertEqual(actions, ["ATTACHMENT_LEDGER_BOUND", "ATTACHMENT_UPLOADED"])
        db.close()

    # ------------------------------------------------------------------
    # Validation and failures
    # ------------------------------------------------------------------

    def test_upload_requires_authentication(self):
        booking = self._create_booking()
        self.app.dependency_overrides.pop(get_current_user)
        with patch(UPLOAD) as upload:
            resp = self._upload(booking.id, data={"amount": "10"})
        self.assertEqual(resp.status_code, 401)
        upload.assert_not_called()

    def test_visitor_cannot_upload(self):
        booking = self._create_booking()
        self.current_user.role = "VISITOR"
        with patch(UPLOAD) as upload:
            resp = self._upload(booking.id, data={"amount": "10"})
        self.assertEqual(resp.status_code, 403)
        upload.assert_not_called()

    def test_negative_amount_rejected(self):
        booking = self._create_booking()
        with patch(UPLOAD) as upload:
            resp = self._upload(booking.id, data={"amount": "-5"})
        self.assertEqual(resp.status_code, 400)
        upload.assert_not_called()

    def test_unknown_original_currency_rejected(self):
        booking = self._create_booking()
        with patch(UPLOAD) as upload:
            resp = self._upload(booking.id, data={"amount": "5", "original_currency": "XYZ"})
        self.assertEqual(resp.status_code, 400)
        upload.assert_not_called()

    def test_missing_booking_returns_404(self):
        with patch(UPLOAD) as upload:
            resp = self._upload("00000000-0000-0000-0000-00000000dead", data={"amount": "5"})
        self.assertEqual(resp.status_code, 404)
        upload.assert_not_called()

    def test_empty_file_rejected(self):
        booking = self._create_booking()
        resp = self.client.post(
            f"/api/v1/bookings/{booking.id}/attachments",
            files={"file": ("empty.pdf", b"", "application/pdf")},
        )
        self.assertEqual(resp.status_code, 400)

    def test_upload_failure_writes_no_rows(self):
        booking = self._create_booking()
        with patch(UPLOAD, side_effect=HTTPException(502, "Failed to upload file to storage")):
            resp = self._upload(booking.id, data={"amount": "500"})
        self.assertEqual(resp.status_code, 502)

        db = self.SessionLocal()
        self.assertEqual(db.query(Attachment).count(), 0)
        self.assertEqual(db.query(Expense).count(), 0)
        self.assertEqual(db.query(Transaction).count(), 0)
        db.close()

    @patch(UPLOAD, side_effect=lambda path, content, content_type: path)
    def test_ledger_failure_keeps_attachment_and_writes_no_ledger_rows(self, _upload):
        booking = self._create_booking()
        real_log = attachment_ledger.create_activity_log

        def failing_log(db, **kwargs):
            if kwargs["action"] == "ATTACHMENT_LEDGER_BOUND":
                raise SQLAlchemyError("ledger write failed")
            return real_log(db, **kwargs)

        with patch("app.services.attachment_ledger.create_activity_log", side_effect=failing_log):
            resp = self._upload(booking.id, data={"amount": "500"})

        self.assertEqual(resp.status_code, 500)
        self.assertEqual(resp.json()["detail"], "Ledger store error")

        db = self.SessionLocal()
        self.assertEqual(db.query(Attachment).count(), 1)
        self.assertEqual(db.query(Expense).count(), 0)
        self.assertEqual(db.query(Transaction).count(), 0)
        self.assertNotIn("invoice_amounts", db.get(Booking, booking.id).document)
        db.close()
        self.assertEqual(alert_tracker.count("ATTACHMENT_LEDGER_BIND_FAILED"), 1)


class BinderHelperTests(unittest.TestCase):
    def test_display_name(self):
        self.assertEqual(display_name("scan.JPG", None), "scan.JPG")
        self.assertEqual(display_name("scan.JPG", "  "), "scan.JPG")
        self.assertEqual(display_name("scan.jpg", "Museum tickets"), "Museum tickets.jpg")
        self.assertEqual(display_name("scan.jpg", "Museum tickets.jpg"), "Museum tickets.jpg")
        self.assertEqual(display_name("noext", "Receipt"), "Receipt.pdf")

    def test_infer_expense_category(self):
        self.assertEqual(infer_expense_category("Guide").value, "guide")
        self.assertEqual(infer_expense_category("spa").value, "hotel")
        self.assertEqual(infer_expense_category(None).value, "hotel")
