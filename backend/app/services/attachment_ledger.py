"""Attachment <-> ledger synchronization.

Binding an attachment that carries an amount writes one Expense, one
Transaction and (for invoices) an ``invoice_amounts`` entry on the booking
document. Unbinding removes all of them, then removes the blob.

Units of work:

- bind: the blob upload comes first and aborts everything on failure. The
  attachment row is committed on its own; the ledger triple is committed in
  a second, single transaction. A failure there leaves the attachment in
  place and is re-raised.
- unbind: phase 1 deletes ledger rows, the index entry and the attachment
  row in one transaction. Phase 2 removes the blob only after phase 1 has
  committed; its failures are logged and swallowed.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from pathlib import Path
from typing import Optional

from fastapi import HTTPException
from sqlalchemy import and_, delete, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.auth import CurrentUser
from app.core.config import get_settings
from app.core.storage import build_attachment_path, remove_attachment_blob, upload_attachment_blob
from app.models.ledger import Attachment, Booking, Expense, Transaction
from app.schemas.ledger import (
    AttachmentType,
    ExpenseCategory,
    InvoiceAmountEntry,
    InvoiceAmounts,
    TransactionKind,
    TransactionStatus,
    TransactionType,
)
from app.services.activity_log import create_activity_log
from app.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)


def ledger_description(attachment_type: AttachmentType, name: str) -> str:
    return f"{AttachmentType(attachment_type).description_prefix}: {name}"


def candidate_descriptions(name: str) -> list[str]:
    # Both prefixes: the attachment type may have changed after the ledger row was written.
    return [ledger_description(t, name) for t in (AttachmentType.PAYMENT, AttachmentType.INVOICE)]


def display_name(file_name: str, custom_name: Optional[str]) -> str:
    custom = (custom_name or "").strip()
    if not custom:
        return file_name
    ext = Path(file_name or "").suffix.lower() or ".pdf"
    if custom.lower().endswith(ext):
        return custom
    return f"{custom}{ext}"


def infer_expense_category(context: Optional[str]) -> ExpenseCategory:
    raw = (context or "").strip().lower()
    if raw:
        try:
            return ExpenseCategory(raw)
        except ValueError:
            logger.info("Unknown expense context %r, falling back to default category", raw)
    try:
        return ExpenseCategory(get_settings().default_expense_category.strip().lower())
    except ValueError:
        return ExpenseCategory.OTHER


def quantize_amount(value) -> Decimal:
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def _today():
    return datetime.now(timezone.utc).date()


@dataclass
class BindRequest:
    booking_id: str
    file_name: str
    content: bytes
    content_type: Optional[str] = None
    custom_name: Optional[str] = None
    attachment_type: AttachmentType = AttachmentType.INVOICE
    amount: Optional[Decimal] = None
    original_currency: Optional[str] = None
    original_amount: Optional[Decimal] = None
    context: Optional[str] = None

    @property
    def has_amount(self) -> bool:
        return self.amount is not None and self.amount > 0


@dataclass
class BindResult:
    attachment: Attachment
    expense: Optional[Expense] = None
    transaction: Optional[Transaction] = None
    invoice_amount_indexed: bool = False


@dataclass
class UnbindResult:
    attachment_id: str
    booking_id: str
    expenses_deleted: int = 0
    transactions_deleted: int = 0
    invoice_amount_removed: bool = False
    blob_removed: bool = False


def _require_actor(actor: Optional[CurrentUser]) -> CurrentUser:
    if actor is None or not actor.id:
        raise HTTPException(401, "Not authenticated")
    return actor


def _get_booking_or_404(db: Session, booking_id) -> Booking:
    booking = db.get(Booking, booking_id)
    if booking is None:
        raise HTTPException(404, "Booking not found")
    return booking


def _validate_original_currency(currency: Optional[str]) -> Optional[str]:
    if currency is None or not currency.strip():
        return None
    normalized = currency.strip().upper()
    if normalized not in get_settings().allowed_currencies:
        raise HTTPException(400, f"Unsupported currency: {normalized}")
    return normalized


def bind_attachment(db: Session, actor: Optional[CurrentUser], request: BindRequest) -> BindResult:
    actor = _require_actor(actor)
    if request.amount is not None and request.amount < 0:
        raise HTTPException(400, "Invalid amount")
    original_currency = _validate_original_currency(request.original_currency)
    booking = _get_booking_or_404(db, request.booking_id)
    attachment_type = AttachmentType(request.attachment_type)
    name = display_name(request.file_name, request.custom_name)

    path = build_attachment_path(actor.id, str(booking.id), request.file_name)
    upload_attachment_blob(path, request.content, request.content_type)

    attachment = Attachment(
        booking_id=booking.id,
        file_name=name,
        file_path=path,
        file_size=len(request.content),
        attachment_type=attachment_type.value,
        uploaded_by=actor.id,
    )
    db.add(attachment)
    try:
        db.flush()
        create_activity_log(
            db,
            entity_type="attachment",
            entity_id=str(attachment.id),
            action="ATTACHMENT_UPLOADED",
            actor=actor,
            new_value={
                "booking_id": str(booking.id),
                "file_name": name,
                "attachment_type": attachment_type.value,
            },
            label=name,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.warning("Attachment row insert failed; blob %s is orphaned", path)
        raise
    db.refresh(attachment)

    result = BindResult(attachment=attachment)
    if not request.has_amount:
        return result

    amount = quantize_amount(request.amount)
    category = infer_expense_category(request.context)
    description = ledger_description(attachment_type, name)
    today = _today()

    try:
        expense = Expense(
            attachment_id=attachment.id,
            booking_id=booking.id,
            expense_type=category.value,
            description=description,
            amount=amount,
            expense_date=today,
            created_by=actor.id,
        )
        transaction = Transaction(
            booking_id=booking.id,
            attachment_id=attachment.id,
            kind=TransactionKind.OUT.value,
            type=TransactionType.EXPENSE.value,
            category=category.value,
            description=description,
            amount=amount,
            currency=get_settings().base_currency,
            date=today,
            status=TransactionStatus.PENDING.value,
            is_paid=False,
            is_auto_generated=True,
            created_by=actor.id,
        )
        db.add_all([expense, transaction])

        if attachment_type is AttachmentType.INVOICE:
            db.refresh(booking)
            entry = InvoiceAmountEntry(
                amount=float(amount),
                original_currency=original_currency,
                original_amount=float(request.original_amount) if request.original_amount is not None else None,
            )
            booking.document = InvoiceAmounts.from_document(booking.document).merge(
                str(attachment.id), entry
            ).apply_to(booking.document)
            result.invoice_amount_indexed = True

        db.flush()
        create_activity_log(
            db,
            entity_type="attachment",
            entity_id=str(attachment.id),
            action="ATTACHMENT_LEDGER_BOUND",
            actor=actor,
            new_value={
                "expense_id": str(expense.id),
                "transaction_id": str(transaction.id),
                "amount": float(amount),
                "category": category.value,
            },
            label=description,
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        alert_tracker.record(
            "ATTACHMENT_LEDGER_BIND_FAILED",
            {"attachment_id": str(attachment.id), "booking_id": str(booking.id)},
        )
        logger.error("Ledger rows for attachment %s were not written", attachment.id)
        raise

    result.expense = expense
    result.transaction = transaction
    return result


def unbind_attachment(
    db: Session,
    actor: Optional[CurrentUser],
    *,
    attachment_id: str,
    file_path: Optional[str] = None,
    booking_id: Optional[str] = None,
    attachment_type: Optional[AttachmentType] = None,
    file_name: Optional[str] = None,
) -> UnbindResult:
    actor = _require_actor(actor)

    # Phase 1: authoritative database deletion.
    attachment = db.get(Attachment, attachment_id)
    if attachment is None:
        raise HTTPException(404, "Attachment not found")

    name = file_name or attachment.file_name
    booking_id = booking_id or attachment.booking_id
    kind = AttachmentType(attachment_type or attachment.attachment_type)
    path = file_path or attachment.file_path
    result = UnbindResult(attachment_id=str(attachment.id), booking_id=str(booking_id))

    try:
        result.expenses_deleted = db.execute(
            delete(Expense).where(Expense.attachment_id == attachment.id)
        ).rowcount

        # TODO: drop the description fallback once legacy rows have attachment_id backfilled.
        result.transactions_deleted = db.execute(
            delete(Transaction).where(
                or_(
                    Transaction.attachment_id == attachment.id,
                    and_(
                        Transaction.attachment_id.is_(None),
                        Transaction.booking_id == booking_id,
                        Transaction.description.in_(candidate_descriptions(name)),
                    ),
                )
            )
        ).rowcount

        if kind is AttachmentType.INVOICE:
            booking = db.get(Booking, booking_id)
            if booking is not None:
                index = InvoiceAmounts.from_document(booking.document)
                if str(attachment.id) in index:
                    booking.document = index.remove(str(attachment.id)).apply_to(booking.document)
                    db.flush()
                    result.invoice_amount_removed = True

        deleted = db.execute(delete(Attachment).where(Attachment.id == attachment.id)).rowcount
        if not deleted:
            raise HTTPException(404, "Attachment not found")

        create_activity_log(
            db,
            entity_type="attachment",
            entity_id=str(attachment.id),
            action="ATTACHMENT_DELETED",
            actor=actor,
            old_value={
                "booking_id": str(booking_id),
                "file_name": name,
                "attachment_type": kind.value,
            },
            new_value={
                "expenses_deleted": result.expenses_deleted,
                "transactions_deleted": result.transactions_deleted,
            },
            label=name,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    # Phase 2: best-effort blob cleanup. An orphaned blob only costs storage.
    try:
        remove_attachment_blob(path)
        result.blob_removed = True
    except Exception:
        logger.warning("Blob removal failed for %s (attachment %s)", path, result.attachment_id, exc_info=True)
        alert_tracker.record(
            "ATTACHMENT_BLOB_REMOVE_FAILED",
            {"attachment_id": result.attachment_id, "file_path": path},
        )
    return result


def rebuild_invoice_amounts(db: Session, booking_id: str) -> InvoiceAmounts:
    """Recompute ``invoice_amounts`` from invoice attachments and their Expense rows.

    ``original_*`` fields of surviving entries are kept; they are not stored
    on ledger rows. Does not commit.
    """
    booking = _get_booking_or_404(db, booking_id)
    current = InvoiceAmounts.from_document(booking.document)

    rows = db.execute(
        select(Attachment.id, func.sum(Expense.amount))
        .join(Expense, Expense.attachment_id == Attachment.id)
        .where(
            Attachment.booking_id == booking.id,
            Attachment.attachment_type == AttachmentType.INVOICE.value,
        )
        .group_by(Attachment.id)
    ).all()

    rebuilt = InvoiceAmounts()
    for attachment_id, total in rows:
        key = str(attachment_id)
        previous = current.entries.get(key)
        rebuilt = rebuilt.merge(
            key,
            InvoiceAmountEntry(
                amount=float(total),
                original_currency=previous.original_currency if previous else None,
                original_amount=previous.original_amount if previous else None,
            ),
        )

    booking.document = rebuilt.apply_to(booking.document)
    return rebuilt


def list_attachments(db: Session, booking_id: str) -> list[Attachment]:
    return (
        db.execute(
            select(Attachment)
            .where(Attachment.booking_id == booking_id)
            .order_by(Attachment.uploaded_at.desc())
        )
        .scalars()
        .all()
    )


def attachment_expense_amounts(db: Session, booking_id: str) -> dict[str, float]:
    rows = db.execute(
        select(Expense.attachment_id, Expense.amount).where(
            Expense.booking_id == booking_id,
            Expense.attachment_id.is_not(None),
        )
    ).all()
    return {str(attachment_id): float(amount) for attachment_id, amount in rows}
