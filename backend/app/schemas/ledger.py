from datetime import date as date_type, datetime
from enum import StrEnum
from typing import Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class AttachmentType(StrEnum):
    INVOICE = "invoice"
    PAYMENT = "payment"

    @property
    def description_prefix(self) -> str:
        return "Invoice" if self is AttachmentType.INVOICE else "Payment"


class TransactionKind(StrEnum):
    IN = "in"
    OUT = "out"


class TransactionType(StrEnum):
    INCOME = "income"
    EXPENSE = "expense"


class TransactionStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    VOID = "void"


class ExpenseCategory(StrEnum):
    HOTEL = "hotel"
    TRANSPORT = "transport"
    GUIDE = "guide"
    MEALS = "meals"
    TICKETS = "tickets"
    SALARY = "salary"
    OTHER = "other"


# --- invoice_amounts projection ---


class InvoiceAmountEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    amount: float
    original_currency: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("original_currency", "originalCurrency"),
    )
    original_amount: Optional[float] = Field(
        default=None,
        validation_alias=AliasChoices("original_amount", "originalAmount"),
    )


class InvoiceAmounts(BaseModel):
    """Typed view over ``Booking.document["invoice_amounts"]``.

    The index is a derived projection of the ledger rows: it is only ever
    merged, removed from, or rebuilt, and nothing enforces ledger invariants
    by reading it.
    """

    entries: dict[str, InvoiceAmountEntry] = Field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Optional[dict]) -> "InvoiceAmounts":
        raw = (document or {}).get("invoice_amounts") or {}
        entries: dict[str, InvoiceAmountEntry] = {}
        if isinstance(raw, dict):
            for key, value in raw.items():
                if isinstance(value, dict):
                    entries[str(key)] = InvoiceAmountEntry.model_validate(value)
                elif isinstance(value, (int, float)):
                    entries[str(key)] = InvoiceAmountEntry(amount=float(value))
        return cls(entries=entries)

    def merge(self, attachment_id: str, entry: InvoiceAmountEntry) -> "InvoiceAmounts":
        entries = dict(self.entries)
        entries[str(attachment_id)] = entry
        return InvoiceAmounts(entries=entries)

    def remove(self, attachment_id: str) -> "InvoiceAmounts":
        entries = {k: v for k, v in self.entries.items() if k != str(attachment_id)}
        return InvoiceAmounts(entries=entries)

    def total(self) -> float:
        return round(sum(e.amount for e in self.entries.values()), 2)

    def __contains__(self, attachment_id: object) -> bool:
        return str(attachment_id) in self.entries

    def apply_to(self, document: Optional[dict]) -> dict:
        """Return a new document dict carrying this index."""
        updated = dict(document or {})
        updated["invoice_amounts"] = {
            key: entry.model_dump(exclude_none=True) for key, entry in self.entries.items()
        }
        return updated


# --- Attachments ---


class AttachmentOut(BaseModel):
    id: str
    booking_id: str
    file_name: str
    file_path: str
    file_size: Optional[int] = None
    attachment_type: AttachmentType
    uploaded_at: Optional[datetime] = None
    uploaded_by: Optional[str] = None


class AttachmentListResponse(BaseModel):
    items: list[AttachmentOut]


class AttachmentUploadResponse(BaseModel):
    attachment: AttachmentOut
    expense_id: Optional[str] = None
    transaction_id: Optional[str] = None
    invoice_amount_indexed: bool = False


class AttachmentDeleteResponse(BaseModel):
    success: bool
    attachment_id: str
    expenses_deleted: int
    transactions_deleted: int
    invoice_amount_removed: bool
    blob_removed: bool


class AttachmentExpensesResponse(BaseModel):
    amounts: dict[str, float]


class SignedUrlResponse(BaseModel):
    url: Optional[str] = None
    expires_in: int


class InvoiceAmountsResponse(BaseModel):
    booking_id: str
    invoice_amounts: dict[str, InvoiceAmountEntry]
    total: float


# --- Ledger rows ---


class TransactionOut(BaseModel):
    id: str
    booking_id: Optional[str] = None
    owner_id: Optional[str] = None
    attachment_id: Optional[str] = None
    kind: TransactionKind
    type: TransactionType
    category: str
    description: Optional[str] = None
    amount: float
    currency: str
    date: date_type
    status: TransactionStatus
    is_paid: bool
    is_auto_generated: bool
    notes: Optional[str] = None
