import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    SmallInteger,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from sqlalchemy.types import CHAR, TypeDecorator

Base = declarative_base()


class GUID(TypeDecorator):
    impl = CHAR
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PGUUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, uuid.UUID):
            return value if dialect.name == "postgresql" else str(value)
        if isinstance(value, str):
            try:
                parsed = uuid.UUID(value)
            except ValueError:
                return value
            return parsed if dialect.name == "postgresql" else str(parsed)
        return value

    def process_result_value(self, value, dialect):
        if value is None or isinstance(value, uuid.UUID):
            return value
        try:
            return uuid.UUID(value)
        except ValueError:
            return value


UUID_TYPE = GUID()
JSON_TYPE = JSON().with_variant(JSONB, "postgresql")

SALARY_ACTIVE_ROW = "category = 'salary' AND status <> 'void'"


def _uuid_pk() -> Column:
    return Column(
        UUID_TYPE,
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (Index("idx_bookings_date_code", "date_code"),)

    id = _uuid_pk()
    confirmation_code = Column(String(16), nullable=False)
    date_code = Column(String(8), nullable=False)
    arrival_date = Column(Date, nullable=False)
    departure_date = Column(Date)
    main_client_name = Column(String(255))
    # Free-form booking document; holds the invoice_amounts projection.
    document = Column(JSON_TYPE, nullable=False, default=dict)
    is_paid = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    paid_at = Column(DateTime(timezone=True))
    paid_by = Column(UUID_TYPE)
    created_by = Column(UUID_TYPE)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class Attachment(Base):
    __tablename__ = "booking_attachments"
    __table_args__ = (
        CheckConstraint(
            "attachment_type IN ('invoice','payment')",
            name="chk_attachment_type",
        ),
        Index("idx_attachments_booking", "booking_id"),
    )

    id = _uuid_pk()
    booking_id = Column(UUID_TYPE, ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False)
    file_name = Column(String(512), nullable=False)
    file_path = Column(Text, nullable=False)
    file_size = Column(Integer)
    attachment_type = Column(String(16), nullable=False, default="invoice", server_default=text("'invoice'"))
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    uploaded_by = Column(UUID_TYPE)


class Expense(Base):
    __tablename__ = "expenses"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_expense_amount_positive"),
        Index("idx_expenses_attachment", "attachment_id"),
        Index("idx_expenses_booking", "booking_id"),
    )

    id = _uuid_pk()
    attachment_id = Column(UUID_TYPE, ForeignKey("booking_attachments.id", ondelete="SET NULL"))
    booking_id = Column(UUID_TYPE, ForeignKey("bookings.id", ondelete="CASCADE"))
    expense_type = Column(String(32), nullable=False)
    description = Column(Text)
    amount = Column(Numeric(12, 2), nullable=False)
    expense_date = Column(Date, nullable=False)
    created_by = Column(UUID_TYPE)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Owner(Base):
    """A person on the payroll; the salary_* columns form the salary profile."""

    __tablename__ = "owners"
    __table_args__ = (
        CheckConstraint(
            "salary_frequency IN ('monthly','weekly')",
            name="chk_owner_salary_frequency",
        ),
        CheckConstraint(
            "salary_due_day IS NULL OR (salary_due_day >= 1 AND salary_due_day <= 31)",
            name="chk_owner_salary_due_day",
        ),
        CheckConstraint(
            "salary_due_weekday IS NULL OR (salary_due_weekday >= 1 AND salary_due_weekday <= 7)",
            name="chk_owner_salary_due_weekday",
        ),
    )

    id = _uuid_pk()
    name = Column(String(255), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    salary_amount = Column(Numeric(12, 2))
    salary_currency = Column(String(3), nullable=False, default="GEL", server_default=text("'GEL'"))
    salary_frequency = Column(String(16), nullable=False, default="monthly", server_default=text("'monthly'"))
    salary_due_day = Column(SmallInteger)
    salary_due_weekday = Column(SmallInteger)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount > 0", name="chk_transaction_amount_positive"),
        CheckConstraint("kind IN ('in','out')", name="chk_transaction_kind"),
        CheckConstraint("type IN ('income','expense')", name="chk_transaction_type"),
        CheckConstraint(
            "status IN ('pending','confirmed','void')",
            name="chk_transaction_status",
        ),
        Index("idx_transactions_booking", "booking_id"),
        Index("idx_transactions_attachment", "attachment_id"),
        Index("idx_transactions_category_date", "category", "date"),
        # One live salary row per owner and period.
        Index(
            "uniq_transactions_salary_owner_period",
            "owner_id",
            "salary_period",
            unique=True,
            postgresql_where=text(SALARY_ACTIVE_ROW),
            sqlite_where=text(SALARY_ACTIVE_ROW),
        ),
    )

    id = _uuid_pk()
    booking_id = Column(UUID_TYPE, ForeignKey("bookings.id", ondelete="CASCADE"))
    owner_id = Column(UUID_TYPE, ForeignKey("owners.id", ondelete="SET NULL"))
    attachment_id = Column(UUID_TYPE, ForeignKey("booking_attachments.id", ondelete="SET NULL"))
    kind = Column(String(8), nullable=False)
    type = Column(String(16), nullable=False)
    category = Column(String(32), nullable=False)
    description = Column(Text)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="GEL", server_default=text("'GEL'"))
    date = Column(Date, nullable=False)
    status = Column(String(16), nullable=False, default="pending", server_default=text("'pending'"))
    is_paid = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    is_auto_generated = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    notes = Column(Text)
    salary_period = Column(String(10))
    created_by = Column(UUID_TYPE)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class ActivityLog(Base):
    __tablename__ = "activity_log"
    __table_args__ = (
        Index("idx_activity_log_performed_at", "performed_at"),
        Index("idx_activity_log_entity", "entity_type", "entity_id"),
    )

    id = _uuid_pk()
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(String(64), nullable=False)
    action = Column(String(64), nullable=False)
    old_value = Column(JSON_TYPE)
    new_value = Column(JSON_TYPE)
    actor_role = Column(String(32), nullable=False)
    actor_id = Column(UUID_TYPE)
    label = Column(Text, nullable=False, default="", server_default=text("''"))
    performed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
