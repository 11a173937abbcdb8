import logging
import string
from datetime import date
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.ledger import Booking

logger = logging.getLogger(__name__)

CODE_LETTERS = string.ascii_uppercase


def date_key(arrival: date) -> str:
    """Compact DDMMYYYY key shared by all bookings arriving on the same day."""
    return arrival.strftime("%d%m%Y")


def code_letter(existing_count: int) -> str:
    # A, B, ... Z; saturates at Z from the 26th booking of a day onwards.
    if existing_count < 0:
        existing_count = 0
    return CODE_LETTERS[min(existing_count, len(CODE_LETTERS) - 1)]


def allocate_confirmation_code(db: Session, arrival: date, exclude_id: Optional[str] = None) -> str:
    """Count-then-write allocation.

    Concurrent creation for the same day can hand out the same code; codes
    saturate at Z, so they are not unique by construction either.
    """
    key = date_key(arrival)
    stmt = select(func.count(Booking.id)).where(Booking.date_code == key)
    if exclude_id is not None:
        stmt = stmt.where(Booking.id != exclude_id)
    count = db.execute(stmt).scalar() or 0
    code = f"{code_letter(count)}{key}"
    logger.debug("Allocated confirmation code %s (existing=%s)", code, count)
    return code
