import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.auth import BOOKING_EDITOR_ROLES, SALARY_MANAGER_ROLES, CurrentUser, require_roles
from app.core.dependencies import get_db
from app.models.ledger import Booking
from app.schemas.booking import BookingCreate, BookingOut, BookingUpdate
from app.schemas.ledger import InvoiceAmounts, InvoiceAmountsResponse
from app.services.activity_log import create_activity_log
from app.services.attachment_ledger import rebuild_invoice_amounts
from app.services.confirmation_codes import allocate_confirmation_code, date_key

router = APIRouter()
logger = logging.getLogger(__name__)

BOOKING_READ_ROLES = ("ADMIN", "ACCOUNTANT", "WORKER", "COWORKER", "BOOKING")
PAID_FLAG_ROLES = ("ADMIN", "ACCOUNTANT", "WORKER")


def _get_booking(db: Session, booking_id: str) -> Booking:
    booking = db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(404, "Booking not found")
    return booking


@router.post("/bookings", response_model=BookingOut)
def create_booking(
    payload: BookingCreate,
    current_user: CurrentUser = Depends(require_roles(*BOOKING_EDITOR_ROLES)),
    db: Session = Depends(get_db),
):
    booking = Booking(
        confirmation_code=allocate_confirmation_code(db, payload.arrival_date),
        date_code=date_key(payload.arrival_date),
        arrival_date=payload.arrival_date,
        departure_date=payload.departure_date,
        main_client_name=payload.main_client_name,
        document={},
        created_by=current_user.id,
    )
    db.add(booking)
    db.flush()

    create_activity_log(
        db,
        entity_type="booking",
        entity_id=str(booking.id),
        action="BOOKING_CREATED",
        actor=current_user,
        new_value={"confirmation_code": booking.confirmation_code},
        label=booking.confirmation_code,
    )
    db.commit()
    db.refresh(booking)
    return _booking_to_out(booking)


@router.get("/bookings/{booking_id}", response_model=BookingOut)
def get_booking(
    booking_id: str,
    current_user: CurrentUser = Depends(require_roles(*BOOKING_READ_ROLES)),
    db: Session = Depends(get_db),
):
    return _booking_to_out(_get_booking(db, booking_id))


@router.patch("/bookings/{booking_id}", response_model=BookingOut)
def update_booking(
    booking_id: str,
    payload: BookingUpdate,
    current_user: CurrentUser = Depends(require_roles(*BOOKING_EDITOR_ROLES)),
    db: Session = Depends(get_db),
):
    booking = _get_booking(db, booking_id)
    old_code = booking.confirmation_code

    arrival = payload.arrival_date or booking.arrival_date
    departure = payload.departure_date if payload.departure_date is not None else booking.departure_date
    if departure and departure < arrival:
        raise HTTPException(400, "Departure date must be after arrival date")

    if payload.arrival_date and payload.arrival_date != booking.arrival_date:
        booking.confirmation_code = allocate_confirmation_code(db, payload.arrival_date, exclude_id=booking.id)
        booking.date_code = date_key(payload.arrival_date)
        booking.arrival_date = payload.arrival_date
    booking.departure_date = departure
    if payload.main_client_name is not None:
        booking.main_client_name = payload.main_client_name

    create_activity_log(
        db,
        entity_type="booking",
        entity_id=str(booking.id),
        action="BOOKING_UPDATED",
        actor=current_user,
        old_value={"confirmation_code": old_code},
        new_value={"confirmation_code": booking.confirmation_code},
        label=booking.confirmation_code,
    )
    db.commit()
    db.refresh(booking)
    return _booking_to_out(booking)


@router.post("/bookings/{booking_id}/mark-paid", response_model=BookingOut)
def mark_booking_paid(
    booking_id: str,
    current_user: CurrentUser = Depends(require_roles(*PAID_FLAG_ROLES)),
    db: Session = Depends(get_db),
):
    booking = _get_booking(db, booking_id)
    booking.is_paid = True
    booking.paid_at = datetime.now(timezone.utc)
    booking.paid_by = current_user.id
    create_activity_log(
        db,
        entity_type="booking",
        entity_id=str(booking.id),
        action="BOOKING_MARKED_PAID",
        actor=current_user,
        new_value={"is_paid": True},
        label=booking.confirmation_code,
    )
    db.commit()
    db.refresh(booking)
    return _booking_to_out(booking)


@router.post("/bookings/{booking_id}/unmark-paid", response_model=BookingOut)
def unmark_booking_paid(
    booking_id: str,
    current_user: CurrentUser = Depends(require_roles(*PAID_FLAG_ROLES)),
    db: Session = Depends(get_db),
):
    booking = _get_booking(db, booking_id)
    booking.is_paid = False
    booking.paid_at = None
    booking.paid_by = None
    create_activity_log(
        db,
        entity_type="booking",
        entity_id=str(booking.id),
        action="BOOKING_UNMARKED_PAID",
        actor=current_user,
        new_value={"is_paid": False},
        label=booking.confirmation_code,
    )
    db.commit()
    db.refresh(booking)
    return _booking_to_out(booking)


@router.post("/bookings/{booking_id}/invoice-amounts/rebuild", response_model=InvoiceAmountsResponse)
def rebuild_booking_invoice_amounts(
    booking_id: str,
    current_user: CurrentUser = Depends(require_roles(*SALARY_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    index = rebuild_invoice_amounts(db, booking_id)
    create_activity_log(
        db,
        entity_type="booking",
        entity_id=booking_id,
        action="INVOICE_AMOUNTS_REBUILT",
        actor=current_user,
        new_value={"entries": len(index.entries), "total": index.total()},
    )
    db.commit()
    return InvoiceAmountsResponse(booking_id=booking_id, invoice_amounts=index.entries, total=index.total())


def _booking_to_out(b: Booking) -> BookingOut:
    return BookingOut(
        id=str(b.id),
        confirmation_code=b.confirmation_code,
        date_code=b.date_code,
        arrival_date=b.arrival_date,
        departure_date=b.departure_date,
        main_client_name=b.main_client_name,
        is_paid=bool(b.is_paid),
        paid_at=b.paid_at,
        paid_by=str(b.paid_by) if b.paid_by else None,
        invoice_total=InvoiceAmounts.from_document(b.document).total(),
        created_at=b.created_at,
    )
