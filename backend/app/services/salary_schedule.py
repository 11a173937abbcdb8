"""Salary schedules and the period reconciler.

A salary profile is paid either monthly (on a day of the month, clamped to
the month's length) or weekly (on a weekday, 1 = Monday). For a given period
the reconciler makes sure each active profile has exactly one live salary
transaction: missing rows are inserted, drifted pending rows are patched, and
confirmed rows are never touched. Re-running it for an unchanged roster
writes nothing.

A partial unique index on ``(owner_id, salary_period)`` backs the
one-row-per-period rule, so two concurrent passes cannot both insert.
"""

import calendar
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Optional, Union

from fastapi import HTTPException
from sqlalchemy import and_, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.auth import SALARY_MANAGER_ROLES, CurrentUser
from app.core.config import get_settings
from app.models.ledger import Owner, Transaction
from app.schemas.ledger import TransactionKind, TransactionStatus, TransactionType
from app.schemas.salary import SalaryFrequency, SalaryProfileUpsert
from app.services.activity_log import create_activity_log
from app.services.attachment_ledger import quantize_amount
from app.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)

SALARY_CATEGORY = "salary"


# --- schedules ---


@dataclass(frozen=True)
class MonthlySchedule:
    due_day: int


@dataclass(frozen=True)
class WeeklySchedule:
    due_weekday: int


SalarySchedule = Union[MonthlySchedule, WeeklySchedule]


# --- periods ---


@dataclass(frozen=True)
class MonthPeriod:
    year: int
    month: int

    @classmethod
    def containing(cls, day: date) -> "MonthPeriod":
        return cls(day.year, day.month)

    @classmethod
    def parse(cls, key: str) -> "MonthPeriod":
        try:
            year, month = (int(part) for part in key.split("-"))
            date(year, month, 1)
        except ValueError as exc:
            raise ValueError(f"invalid month key: {key!r}") from exc
        return cls(year, month)

    @property
    def key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])


@dataclass(frozen=True)
class WeekPeriod:
    week_start: date

    def __post_init__(self) -> None:
        monday = self.week_start - timedelta(days=self.week_start.weekday())
        object.__setattr__(self, "week_start", monday)

    @classmethod
    def containing(cls, day: date) -> "WeekPeriod":
        return cls(day)

    @property
    def key(self) -> str:
        return self.week_start.isoformat()

    @property
    def start(self) -> date:
        return self.week_start

    @property
    def end(self) -> date:
        return self.week_start + timedelta(days=6)


SalaryPeriod = Union[MonthPeriod, WeekPeriod]


def period_frequency(period: SalaryPeriod) -> SalaryFrequency:
    if isinstance(period, MonthPeriod):
        return SalaryFrequency.MONTHLY
    if isinstance(period, WeekPeriod):
        return SalaryFrequency.WEEKLY
    raise TypeError(f"unsupported period: {period!r}")


def schedule_frequency(schedule: SalarySchedule) -> SalaryFrequency:
    if isinstance(schedule, MonthlySchedule):
        return SalaryFrequency.MONTHLY
    if isinstance(schedule, WeeklySchedule):
        return SalaryFrequency.WEEKLY
    raise TypeError(f"unsupported schedule: {schedule!r}")


def due_date(schedule: SalarySchedule, period: SalaryPeriod) -> date:
    if isinstance(schedule, MonthlySchedule) and isinstance(period, MonthPeriod):
        day = min(max(1, schedule.due_day), period.end.day)
        return date(period.year, period.month, day)
    if isinstance(schedule, WeeklySchedule) and isinstance(period, WeekPeriod):
        weekday = min(max(1, schedule.due_weekday), 7)
        return period.week_start + timedelta(days=weekday - 1)
    raise ValueError(f"{schedule!r} cannot be evaluated for {period!r}")


def salary_description(name: str, period: SalaryPeriod) -> str:
    return f"Salary - {name} ({period.key})"


def salary_period_marker(period: SalaryPeriod) -> str:
    field_name = "salary_month" if isinstance(period, MonthPeriod) else "salary_week_start"
    return f"{field_name}={period.key}"


def salary_notes(owner_id: str, period: SalaryPeriod) -> str:
    return f"salary_owner_id={owner_id};{salary_period_marker(period)}"


# --- profiles ---


@dataclass(frozen=True)
class SalaryProfile:
    id: str
    name: str
    amount: Decimal
    currency: str
    schedule: SalarySchedule
    is_active: bool = True

    @property
    def frequency(self) -> SalaryFrequency:
        return schedule_frequency(self.schedule)


def normalize_currency(value: Optional[str]) -> str:
    settings = get_settings()
    normalized = (value or "").strip().upper()
    return normalized if normalized in settings.allowed_currencies else settings.base_currency


def profile_from_owner(owner: Owner) -> Optional[SalaryProfile]:
    if owner.salary_amount is None:
        return None
    if owner.salary_frequency == SalaryFrequency.WEEKLY.value:
        if owner.salary_due_weekday is None:
            return None
        schedule: SalarySchedule = WeeklySchedule(int(owner.salary_due_weekday))
    else:
        if owner.salary_due_day is None:
            return None
        schedule = MonthlySchedule(int(owner.salary_due_day))
    return SalaryProfile(
        id=str(owner.id),
        name=owner.name,
        amount=quantize_amount(owner.salary_amount),
        currency=normalize_currency(owner.salary_currency),
        schedule=schedule,
        is_active=bool(owner.is_active),
    )


def load_salary_profiles(db: Session, frequency: Optional[SalaryFrequency] = None) -> list[SalaryProfile]:
    owners = (
        db.execute(
            select(Owner)
            .where(Owner.is_active.is_(True), Owner.salary_amount.is_not(None))
            .order_by(Owner.name)
        )
        .scalars()
        .all()
    )
    profiles = [p for p in (profile_from_owner(o) for o in owners) if p is not None]
    if frequency is not None:
        profiles = [p for p in profiles if p.frequency == frequency]
    return profiles


def _validate_upsert(payload: SalaryProfileUpsert) -> tuple[str, SalaryFrequency, str]:
    name = (payload.name or "").strip()
    if len(name) < 2:
        raise HTTPException(400, "invalid name")
    if payload.amount is None or payload.amount <= 0:
        raise HTTPException(400, "invalid amount")
    currency = (payload.currency or "").strip().upper()
    if currency not in get_settings().allowed_currencies:
        raise HTTPException(400, "invalid currency")
    try:
        frequency = SalaryFrequency((payload.frequency or "").strip().lower())
    except ValueError:
        raise HTTPException(400, "invalid frequency")
    if frequency is SalaryFrequency.MONTHLY:
        if payload.due_day is None or not 1 <= payload.due_day <= 31:
            raise HTTPException(400, "invalid due day")
    elif payload.due_weekday is None or not 1 <= payload.due_weekday <= 7:
        raise HTTPException(400, "invalid due weekday")
    return name, frequency, currency


def upsert_salary_profile(db: Session, actor: Optional[CurrentUser], payload: SalaryProfileUpsert) -> Owner:
    """Create or re-activate the profile keyed by name. Does not commit."""
    if actor is None:
        raise HTTPException(401, "Not authenticated")
    if actor.role not in SALARY_MANAGER_ROLES:
        raise HTTPException(403, "not authorized")
    name, frequency, currency = _validate_upsert(payload)

    values = {
        "name": name,
        "is_active": True,
        "salary_amount": quantize_amount(payload.amount),
        "salary_currency": currency,
        "salary_frequency": frequency.value,
        "salary_due_day": payload.due_day if frequency is SalaryFrequency.MONTHLY else None,
        "salary_due_weekday": payload.due_weekday if frequency is SalaryFrequency.WEEKLY else None,
    }
    changes = {k: v for k, v in values.items() if k != "name"}

    dialect_name = getattr(getattr(getattr(db, "bind", None), "dialect", None), "name", "") or ""
    table = Owner.__table__
    if dialect_name in ("postgresql", "sqlite"):
        insert_fn = pg_insert if dialect_name == "postgresql" else sqlite_insert
        stmt = insert_fn(table).values(id=uuid.uuid4(), **values)
        stmt = stmt.on_conflict_do_update(index_elements=["name"], set_=changes)
        db.execute(stmt)
    else:
        # Check-then-write; may race on other dialects.
        existing = db.execute(select(Owner).where(Owner.name == name)).scalar_one_or_none()
        if existing is None:
            db.add(Owner(**values))
        else:
            for key, value in changes.items():
                setattr(existing, key, value)
        db.flush()

    owner = db.execute(
        select(Owner).where(Owner.name == name).execution_options(populate_existing=True)
    ).scalar_one()
    create_activity_log(
        db,
        entity_type="salary_profile",
        entity_id=str(owner.id),
        action="SALARY_PROFILE_UPSERTED",
        actor=actor,
        new_value={
            "name": name,
            "amount": float(values["salary_amount"]),
            "currency": currency,
            "frequency": frequency.value,
            "due_day": values["salary_due_day"],
            "due_weekday": values["salary_due_weekday"],
        },
        label=name,
    )
    return owner


def deactivate_salary_profile(db: Session, actor: CurrentUser, owner_id: str) -> bool:
    """Missing profiles are a no-op. Does not commit."""
    owner = db.get(Owner, owner_id)
    if owner is None or not owner.is_active:
        return False
    owner.is_active = False
    create_activity_log(
        db,
        entity_type="salary_profile",
        entity_id=str(owner.id),
        action="SALARY_PROFILE_DEACTIVATED",
        actor=actor,
        old_value={"is_active": True},
        new_value={"is_active": False},
        label=owner.name,
    )
    return True


# --- reconciler ---


@dataclass
class ReconcileSummary:
    period_key: str
    frequency: SalaryFrequency
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    skipped_confirmed: int = 0

    @property
    def writes(self) -> int:
        return self.inserted + self.updated


@dataclass
class ReconcilePlan:
    inserts: list[Transaction] = field(default_factory=list)
    updates: list[tuple[uuid.UUID, dict]] = field(default_factory=list)


def period_salary_transactions(
    db: Session, period: SalaryPeriod, owner_ids: Optional[list[str]] = None
) -> list[Transaction]:
    """Live salary rows belonging to ``period``.

    Rows written before ``salary_period`` existed are matched on their notes
    marker, so a monthly row never answers for a week and vice versa.
    """
    legacy = and_(
        Transaction.salary_period.is_(None),
        Transaction.notes.endswith(salary_period_marker(period), autoescape=True),
        Transaction.date >= period.start,
        Transaction.date <= period.end,
    )
    stmt = select(Transaction).where(
        Transaction.category == SALARY_CATEGORY,
        Transaction.kind == TransactionKind.OUT.value,
        Transaction.status != TransactionStatus.VOID.value,
        or_(Transaction.salary_period == period.key, legacy),
    )
    if owner_ids is not None:
        stmt = stmt.where(Transaction.owner_id.in_(owner_ids))
    stmt = stmt.order_by(Transaction.date, Transaction.created_at)
    return db.execute(stmt).scalars().all()


def plan_salary_changes(
    period: SalaryPeriod,
    profiles: list[SalaryProfile],
    existing: list[Transaction],
    summary: ReconcileSummary,
) -> ReconcilePlan:
    by_owner: dict[str, Transaction] = {}
    for row in existing:
        if row.owner_id is not None:
            # First row wins; duplicates are not cleaned up here.
            by_owner.setdefault(str(row.owner_id), row)

    plan = ReconcilePlan()
    for profile in profiles:
        due = due_date(profile.schedule, period)
        description = salary_description(profile.name, period)
        notes = salary_notes(profile.id, period)
        row = by_owner.get(profile.id)

        if row is None:
            plan.inserts.append(
                Transaction(
                    owner_id=profile.id,
                    kind=TransactionKind.OUT.value,
                    type=TransactionType.EXPENSE.value,
                    category=SALARY_CATEGORY,
                    description=description,
                    amount=profile.amount,
                    currency=profile.currency,
                    date=due,
                    status=TransactionStatus.PENDING.value,
                    is_paid=False,
                    is_auto_generated=True,
                    notes=notes,
                    salary_period=period.key,
                )
            )
            summary.inserted += 1
            continue

        if row.status == TransactionStatus.CONFIRMED.value:
            summary.skipped_confirmed += 1
            continue

        drifted = (
            quantize_amount(row.amount or 0) != profile.amount
            or row.date != due
            or normalize_currency(row.currency) != profile.currency
        )
        if not drifted:
            summary.unchanged += 1
            continue

        plan.updates.append(
            (
                row.id,
                {
                    "amount": profile.amount,
                    "date": due,
                    "currency": profile.currency,
                    "description": description,
                    "notes": notes,
                },
            )
        )
        summary.updated += 1
    return plan


def reconcile_salary_profiles(
    db: Session,
    period: SalaryPeriod,
    profiles: list[SalaryProfile],
    *,
    actor: Optional[CurrentUser] = None,
    retry_on_conflict: bool = True,
) -> ReconcileSummary:
    frequency = period_frequency(period)
    summary = ReconcileSummary(period_key=period.key, frequency=frequency)
    profiles = [p for p in profiles if p.is_active and p.frequency == frequency]
    if not profiles:
        return summary

    existing = period_salary_transactions(db, period, [p.id for p in profiles])
    plan = plan_salary_changes(period, profiles, existing, summary)
    if not plan.inserts and not plan.updates:
        return summary

    try:
        if plan.inserts:
            db.add_all(plan.inserts)
            db.flush()
        for row_id, patch in plan.updates:
            db.execute(update(Transaction).where(Transaction.id == row_id).values(**patch))

        create_activity_log(
            db,
            entity_type="salary_period",
            entity_id=period.key,
            action="SALARY_PERIOD_RECONCILED",
            actor=actor,
            new_value={
                "frequency": frequency.value,
                "inserted": summary.inserted,
                "updated": summary.updated,
            },
            label=period.key,
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        alert_tracker.record("SALARY_RECONCILE_CONFLICT", {"period": period.key})
        if not retry_on_conflict:
            raise
        logger.warning("Salary reconcile conflict for %s, re-reading period", period.key)
        return reconcile_salary_profiles(db, period, profiles, actor=actor, retry_on_conflict=False)

    logger.info(
        "Salary %s %s reconciled: inserted=%s updated=%s",
        frequency.value,
        period.key,
        summary.inserted,
        summary.updated,
    )
    return summary


def reconcile_salary_period(
    db: Session, period: SalaryPeriod, *, actor: Optional[CurrentUser] = None
) -> ReconcileSummary:
    profiles = load_salary_profiles(db, period_frequency(period))
    return reconcile_salary_profiles(db, period, profiles, actor=actor)
