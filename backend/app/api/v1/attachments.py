import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from sqlalchemy.orm import Session

from app.core.auth import ATTACHMENT_ROLES, CurrentUser, require_roles
from app.core.config import get_settings
from app.core.dependencies import get_db
from app.core.storage import create_signed_attachment_url
from app.models.ledger import Attachment, Booking
from app.schemas.ledger import (
    AttachmentDeleteResponse,
    AttachmentExpensesResponse,
    AttachmentListResponse,
    AttachmentOut,
    AttachmentType,
    AttachmentUploadResponse,
    SignedUrlResponse,
)
from app.services.attachment_ledger import (
    BindRequest,
    attachment_expense_amounts,
    bind_attachment,
    list_attachments,
    unbind_attachment,
)

router = APIRouter()
logger = logging.getLogger(__name__)

ATTACHMENT_READ_ROLES = ATTACHMENT_ROLES + ("BOOKING",)


def _parse_decimal(value: Optional[str], field: str) -> Optional[Decimal]:
    if value is None or str(value).strip() == "":
        return None
    try:
        parsed = Decimal(str(value).strip())
    except InvalidOperation as exc:
        raise HTTPException(400, f"Invalid {field}") from exc
    if not parsed.is_finite() or parsed < 0:
        raise HTTPException(400, f"Invalid {field}")
    return parsed


@router.post("/bookings/{booking_id}/attachments", response_model=AttachmentUploadResponse)
async def upload_attachment(
    booking_id: str,
    file: UploadFile = File(...),
    attachment_type: AttachmentType = Form(AttachmentType.INVOICE),
    custom_name: Optional[str] = Form(None),
    amount: Optional[str] = Form(None),
    original_currency: Optional[str] = Form(None),
    original_amount: Optional[str] = Form(None),
    context: Optional[str] = Form(None),
    current_user: CurrentUser = Depends(require_roles(*ATTACHMENT_ROLES)),
    db: Session = Depends(get_db),
):
    settings = get_settings()
    content = await file.read()
    if not content:
        raise HTTPException(400, "Empty file")
    if len(content) > settings.max_attachment_bytes:
        raise HTTPException(413, "File too large")

    result = bind_attachment(
        db,
        current_user,
        BindRequest(
            booking_id=booking_id,
            file_name=file.filename or "attachment",
            content=content,
            content_type=file.content_type,
            custom_name=custom_name,
            attachment_type=attachment_type,
            amount=_parse_decimal(amount, "amount"),
            original_currency=original_currency,
            original_amount=_parse_decimal(original_amount, "original amount"),
            context=context,
        ),
    )
    return AttachmentUploadResponse(
        attachment=_attachment_to_out(result.attachment),
        expense_id=str(result.expense.id) if result.expense else None,
        transaction_id=str(result.transaction.id) if result.transaction else None,
        invoice_amount_indexed=result.invoice_amount_indexed,
    )


@router.get("/bookings/{booking_id}/attachments", response_model=AttachmentListResponse)
def get_booking_attachments(
    booking_id: str,
    current_user: CurrentUser = Depends(require_roles(*ATTACHMENT_READ_ROLES)),
    db: Session = Depends(get_db),
):
    if not db.get(Booking, booking_id):
        raise HTTPException(404, "Booking not found")
    return AttachmentListResponse(items=[_attachment_to_out(a) for a in list_attachments(db, booking_id)])


@router.get("/bookings/{booking_id}/attachment-expenses", response_model=AttachmentExpensesResponse)
def get_attachment_expenses(
    booking_id: str,
    current_user: CurrentUser = Depends(require_roles(*ATTACHMENT_READ_ROLES)),
    db: Session = Depends(get_db),
):
    return AttachmentExpensesResponse(amounts=attachment_expense_amounts(db, booking_id))


@router.delete("/attachments/{attachment_id}", response_model=AttachmentDeleteResponse)
def delete_attachment(
    attachment_id: str,
    current_user: CurrentUser = Depends(require_roles(*ATTACHMENT_ROLES)),
    db: Session = Depends(get_db),
):
    result = unbind_attachment(db, current_user, attachment_id=attachment_id)
    return AttachmentDeleteResponse(
        success=True,
        attachment_id=result.attachment_id,
        expenses_deleted=result.expenses_deleted,
        transactions_deleted=result.transactions_deleted,
        invoice_amount_removed=result.invoice_amount_removed,
        blob_removed=result.blob_removed,
    )


@router.get("/attachments/{attachment_id}/url", response_model=SignedUrlResponse)
def get_attachment_url(
    attachment_id: str,
    current_user: CurrentUser = Depends(require_roles(*ATTACHMENT_READ_ROLES)),
    db: Session = Depends(get_db),
):
    attachment = db.get(Attachment, attachment_id)
    if not attachment:
        raise HTTPException(404, "Attachment not found")
    return SignedUrlResponse(
        url=create_signed_attachment_url(attachment.file_path),
        expires_in=get_settings().attachment_signed_url_ttl_seconds,
    )


def _attachment_to_out(a: Attachment) -> AttachmentOut:
    return AttachmentOut(
        id=str(a.id),
        booking_id=str(a.booking_id),
        file_name=a.file_name,
        file_path=a.file_path,
        file_size=a.file_size,
        attachment_type=a.attachment_type,
        uploaded_at=a.uploaded_at,
        uploaded_by=str(a.uploaded_by) if a.uploaded_by else None,
    )
