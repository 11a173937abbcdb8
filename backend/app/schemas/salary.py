from datetime import date
from enum import StrEnum
from typing import Optional

from pydantic import BaseModel, Field

from app.schemas.ledger import TransactionOut


class SalaryFrequency(StrEnum):
    MONTHLY = "monthly"
    WEEKLY = "weekly"


class SalaryProfileUpsert(BaseModel):
    # Range checks live in the service so every caller gets the same messages.
    name: str
    amount: float
    frequency: str = SalaryFrequency.MONTHLY.value
    due_day: Optional[int] = None
    due_weekday: Optional[int] = None
    currency: str = "GEL"


class SalaryProfileOut(BaseModel):
    id: str
    name: str
    amount: float
    currency: str
    is_active: bool
    frequency: SalaryFrequency
    due_day: Optional[int] = None
    due_weekday: Optional[int] = None


class SalaryProfileListResponse(BaseModel):
    items: list[SalaryProfileOut]


class ReconcileRequest(BaseModel):
    month: Optional[str] = Field(default=None, pattern=r"^\d{4}-\d{2}$")
    week_start: Optional[date] = None


class ReconcileResponse(BaseModel):
    period_key: str
    frequency: SalaryFrequency
    inserted: int
    updated: int
    unchanged: int
    skipped_confirmed: int


class SalaryTransactionListResponse(BaseModel):
    period_key: str
    items: list[TransactionOut]
