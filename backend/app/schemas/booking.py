from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator


class BookingCreate(BaseModel):
    arrival_date: date
    departure_date: Optional[date] = None
    main_client_name: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def _departure_after_arrival(self):
        if self.departure_date and self.departure_date < self.arrival_date:
            raise ValueError("Departure date must be after arrival date")
        return self


class BookingUpdate(BaseModel):
    arrival_date: Optional[date] = None
    departure_date: Optional[date] = None
    main_client_name: Optional[str] = Field(default=None, max_length=255)


class BookingOut(BaseModel):
    id: str
    confirmation_code: str
    date_code: str
    arrival_date: date
    departure_date: Optional[date] = None
    main_client_name: Optional[str] = None
    is_paid: bool
    paid_at: Optional[datetime] = None
    paid_by: Optional[str] = None
    invoice_total: float
    created_at: Optional[datetime] = None
