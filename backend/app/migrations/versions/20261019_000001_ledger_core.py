"""ledger core schema

Revision ID: 20261019_000001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261019_000001"
down_revision = None
branch_labels = None
depends_on = None


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)


def upgrade() -> None:
    op.execute("CREATE EXTENSION IF NOT EXISTS pgcrypto")

    op.create_table(
        "bookings",
        _id_column(),
        sa.Column("confirmation_code", sa.String(16), nullable=False),
        sa.Column("date_code", sa.String(8), nullable=False),
        sa.Column("arrival_date", sa.Date(), nullable=False),
        sa.Column("departure_date", sa.Date()),
        sa.Column("main_client_name", sa.String(255)),
        sa.Column("document", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("paid_by", postgresql.UUID(as_uuid=True)),
        sa.Column("created_by", postgresql.UUID(as_uuid=True)),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_bookings_date_code", "bookings", ["date_code"])

    op.create_table(
        "booking_attachments",
        _id_column(),
        sa.Column(
            "booking_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("bookings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_name", sa.String(512), nullable=False),
        sa.Column("file_path", sa.Text(), nullable=False),
        sa.Column("file_size", sa.Integer()),
        sa.Column("attachment_type", sa.String(16), nullable=False, server_default=sa.text("'invoice'")),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("uploaded_by", postgresql.UUID(as_uuid=True)),
        sa.CheckConstraint("attachment_type IN ('invoice','payment')", name="chk_attachment_type"),
    )
    op.create_index("idx_attachments_booking", "booking_attachments", ["booking_id"])

    op.create_table(
        "expenses",
        _id_column(),
        sa.Column(
            "attachment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("booking_attachments.id", ondelete="SET NULL"),
        ),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id", ondelete="CASCADE")),
        sa.Column("expense_type", sa.String(32), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("expense_date", sa.Date(), nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True)),
        _created_at(),
        sa.CheckConstraint("amount > 0", name="chk_expense_amount_positive"),
    )
    op.create_index("idx_expenses_attachment", "expenses", ["attachment_id"])
    op.create_index("idx_expenses_booking", "expenses", ["booking_id"])

    op.create_table(
        "owners",
        _id_column(),
        sa.Column("name", sa.String(255), nullable=False, unique=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("salary_amount", sa.Numeric(12, 2)),
        sa.Column("salary_currency", sa.String(3), nullable=False, server_default=sa.text("'GEL'")),
        sa.Column("salary_frequency", sa.String(16), nullable=False, server_default=sa.text("'monthly'")),
        sa.Column("salary_due_day", sa.SmallInteger()),
        sa.Column("salary_due_weekday", sa.SmallInteger()),
        _created_at(),
        sa.CheckConstraint("salary_frequency IN ('monthly','weekly')", name="chk_owner_salary_frequency"),
        sa.CheckConstraint(
            "salary_due_day IS NULL OR (salary_due_day >= 1 AND salary_due_day <= 31)",
            name="chk_owner_salary_due_day",
        ),
        sa.CheckConstraint(
            "salary_due_weekday IS NULL OR (salary_due_weekday >= 1 AND salary_due_weekday <= 7)",
            name="chk_owner_salary_due_weekday",
        ),
    )

    op.create_table(
        "transactions",
        _id_column(),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id", ondelete="CASCADE")),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("owners.id", ondelete="SET NULL")),
        sa.Column(
            "attachment_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("booking_attachments.id", ondelete="SET NULL"),
        ),
        sa.Column("kind", sa.String(8), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("category", sa.String(32), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'GEL'")),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("is_paid", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_auto_generated", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("notes", sa.Text()),
        sa.Column("salary_period", sa.String(10)),
        sa.Column("created_by", postgresql.UUID(as_uuid=True)),
        _created_at(),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("amount > 0", name="chk_transaction_amount_positive"),
        sa.CheckConstraint("kind IN ('in','out')", name="chk_transaction_kind"),
        sa.CheckConstraint("type IN ('income','expense')", name="chk_transaction_type"),
        sa.CheckConstraint("status IN ('pending','confirmed','void')", name="chk_transaction_status"),
    )
    op.create_index("idx_transactions_booking", "transactions", ["booking_id"])
    op.create_index("idx_transactions_attachment", "transactions", ["attachment_id"])
    op.create_index("idx_transactions_category_date", "transactions", ["category", "date"])
    op.create_index(
        "uniq_transactions_salary_owner_period",
        "transactions",
        ["owner_id", "salary_period"],
        unique=True,
        postgresql_where=sa.text("category = 'salary' AND status <> 'void'"),
    )

    op.create_table(
        "activity_log",
        _id_column(),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(64), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("old_value", postgresql.JSONB()),
        sa.Column("new_value", postgresql.JSONB()),
        sa.Column("actor_role", sa.String(32), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True)),
        sa.Column("label", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("performed_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("idx_activity_log_performed_at", "activity_log", ["performed_at"])
    op.create_index("idx_activity_log_entity", "activity_log", ["entity_type", "entity_id"])


def downgrade() -> None:
    op.drop_table("activity_log")
    op.drop_index("uniq_transactions_salary_owner_period", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("owners")
    op.drop_table("expenses")
    op.drop_table("booking_attachments")
    op.drop_table("bookings")
