from datetime import date

from app.models.ledger import Attachment, Booking, Expense
from app.schemas.ledger import InvoiceAmountEntry, InvoiceAmounts
from tests.conftest import LedgerApiTestCase


def test_from_document_accepts_camel_case_and_bare_numbers():
    index = InvoiceAmounts.from_document(
        {
            "invoice_amounts": {
                "a1": {"amount": 100, "originalCurrency": "USD", "originalAmount": 37},
                "a2": 55.5,
                "broken": "not-a-number",
            }
        }
    )
    assert set(index.entries) == {"a1", "a2"}
    assert index.entries["a1"].original_currency == "USD"
    assert index.entries["a1"].original_amount == 37.0
    assert index.entries["a2"].amount == 55.5
    assert index.total() == 155.5


def test_missing_document_gives_empty_index():
    assert InvoiceAmounts.from_document(None).entries == {}
    assert InvoiceAmounts.from_document({"other": 1}).total() == 0


def test_merge_and_remove_do_not_mutate_the_original():
    base = InvoiceAmounts.from_document({"invoice_amounts": {"a1": {"amount": 10}}})
    merged = base.merge("a2", InvoiceAmountEntry(amount=20))
    assert "a2" in merged
    assert "a2" not in base

    removed = merged.remove("a1")
    assert "a1" not in removed
    assert "a1" in merged
    assert removed.total() == 20


def test_apply_to_writes_snake_case_and_keeps_other_keys():
    index = InvoiceAmounts().merge("a1", InvoiceAmountEntry(amount=12.5, original_currency="USD"))
    document = {"notes": "x"}
    updated = index.apply_to(document)
    assert updated == {"notes": "x", "invoice_amounts": {"a1": {"amount": 12.5, "original_currency": "USD"}}}
    assert document == {"notes": "x"}


class InvoiceAmountsRebuildTests(LedgerApiTestCase):
    def test_rebuild_recomputes_from_invoice_expenses(self):
        booking = self._create_booking(
            document={
                "invoice_amounts": {
                    "stale-entry": {"amount": 999},
                },
                "notes": "keep",
            }
        )
        db = self.SessionLocal()
        invoice = Attachment(booking_id=booking.id, file_name="hotel.pdf", file_path="p/hotel.pdf")
        payment = Attachment(
            booking_id=booking.id,
            file_name="transfer.pdf",
            file_path="p/transfer.pdf",
            attachment_type="payment",
        )
        db.add_all([invoice, payment])
        db.flush()
        for attachment, amount in ((invoice, 320), (payment, 100)):
            db.add(
                Expense(
                    attachment_id=attachment.id,
                    booking_id=booking.id,
                    expense_type="hotel",
                    amount=amount,
                    expense_date=date(2026, 3, 1),
                )
            )
        stored = db.get(Booking, booking.id)
        stored.document = {
            "notes": "keep",
            "invoice_amounts": {
                "stale-entry": {"amount": 999},
                str(invoice.id): {"amount": 1, "original_currency": "USD", "original_amount": 120},
            },
        }
        db.commit()
        invoice_id = str(invoice.id)
        db.close()

        resp = self.client.post(f"/api/v1/bookings/{booking.id}/invoice-amounts/rebuild")
        self.assertEqual(resp.status_code, 200, resp.text)
        body = resp.json()
        self.assertEqual(body["total"], 320.0)
        self.assertEqual(list(body["invoice_amounts"]), [invoice_id])

        db = self.SessionLocal()
        document = db.get(Booking, booking.id).document
        self.assertEqual(document["notes"], "keep")
        self.assertEqual(
            document["invoice_amounts"],
            {invoice_id: {"amount": 320.0, "original_currency": "USD", "original_amount": 120.0}},
        )
        db.close()

    def test_coworker_cannot_rebuild(self):
        booking = self._create_booking()
        self.current_user.role = "COWORKER"
        resp = self.client.post(f"/api/v1/bookings/{booking.id}/invoice-amounts/rebuild")
        self.assertEqual(resp.status_code, 403)
