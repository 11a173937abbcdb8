import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.core.auth import SALARY_MANAGER_ROLES, CurrentUser, require_roles
from app.core.dependencies import get_db
from app.models.ledger import Owner, Transaction
from app.schemas.ledger import TransactionOut
from app.schemas.salary import (
    ReconcileRequest,
    ReconcileResponse,
    SalaryProfileListResponse,
    SalaryProfileOut,
    SalaryProfileUpsert,
    SalaryTransactionListResponse,
)
from app.services.salary_schedule import (
    MonthlySchedule,
    MonthPeriod,
    SalaryPeriod,
    SalaryProfile,
    WeeklySchedule,
    WeekPeriod,
    deactivate_salary_profile,
    load_salary_profiles,
    period_salary_transactions,
    reconcile_salary_period,
    upsert_salary_profile,
)

router = APIRouter()
logger = logging.getLogger(__name__)

SALARY_READ_ROLES = SALARY_MANAGER_ROLES


def _resolve_period(month: Optional[str], week_start: Optional[date]) -> SalaryPeriod:
    if bool(month) == bool(week_start):
        raise HTTPException(400, "Provide exactly one of month or week_start")
    if month:
        try:
            return MonthPeriod.parse(month)
        except ValueError as exc:
            raise HTTPException(400, str(exc)) from exc
    return WeekPeriod(week_start)


@router.get("/admin/salaries/profiles", response_model=SalaryProfileListResponse)
def list_salary_profiles(
    current_user: CurrentUser = Depends(require_roles(*SALARY_READ_ROLES)),
    db: Session = Depends(get_db),
):
    return SalaryProfileListResponse(items=[_profile_to_out(p) for p in load_salary_profiles(db)])


@router.put("/admin/salaries/profiles", response_model=SalaryProfileOut)
def put_salary_profile(
    payload: SalaryProfileUpsert,
    current_user: CurrentUser = Depends(require_roles(*SALARY_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    owner = upsert_salary_profile(db, current_user, payload)
    db.commit()
    db.refresh(owner)
    return _owner_to_out(owner)


@router.delete("/admin/salaries/profiles/{owner_id}")
def delete_salary_profile(
    owner_id: str,
    current_user: CurrentUser = Depends(require_roles(*SALARY_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    changed = deactivate_salary_profile(db, current_user, owner_id)
    db.commit()
    return {"success": True, "deactivated": changed}


@router.post("/admin/salaries/reconcile", response_model=ReconcileResponse)
def reconcile_salaries(
    payload: ReconcileRequest,
    current_user: CurrentUser = Depends(require_roles(*SALARY_MANAGER_ROLES)),
    db: Session = Depends(get_db),
):
    period = _resolve_period(payload.month, payload.week_start)
    summary = reconcile_salary_period(db, period, actor=current_user)
    return ReconcileResponse(
        period_key=summary.period_key,
        frequency=summary.frequency,
        inserted=summary.inserted,
        updated=summary.updated,
        unchanged=summary.unchanged,
        skipped_confirmed=summary.skipped_confirmed,
    )


@router.get("/admin/salaries/transactions", response_model=SalaryTransactionListResponse)
def list_salary_transactions(
    month: Optional[str] = Query(None, pattern=r"^\d{4}-\d{2}$"),
    week_start: Optional[date] = Query(None),
    current_user: CurrentUser = Depends(require_roles(*SALARY_READ_ROLES)),
    db: Session = Depends(get_db),
):
    period = _resolve_period(month, week_start)
    rows = period_salary_transactions(db, period)
    return SalaryTransactionListResponse(
        period_key=period.key,
        items=[transaction_to_out(t) for t in rows],
    )


def _profile_to_out(p: SalaryProfile) -> SalaryProfileOut:
    out = SalaryProfileOut(
        id=p.id,
        name=p.name,
        amount=float(p.amount),
        currency=p.currency,
        is_active=p.is_active,
        frequency=p.frequency,
    )
    if isinstance(p.schedule, MonthlySchedule):
        out.due_day = p.schedule.due_day
    elif isinstance(p.schedule, WeeklySchedule):
        out.due_weekday = p.schedule.due_weekday
    return out


def _owner_to_out(o: Owner) -> SalaryProfileOut:
    return SalaryProfileOut(
        id=str(o.id),
        name=o.name,
        amount=float(o.salary_amount or 0),
        currency=o.salary_currency,
        is_active=bool(o.is_active),
        frequency=o.salary_frequency,
        due_day=o.salary_due_day,
        due_weekday=o.salary_due_weekday,
    )


def transaction_to_out(t: Transaction) -> TransactionOut:
    return TransactionOut(
        id=str(t.id),
        booking_id=str(t.booking_id) if t.booking_id else None,
        owner_id=str(t.owner_id) if t.owner_id else None,
        attachment_id=str(t.attachment_id) if t.attachment_id else None,
        kind=t.kind,
        type=t.type,
        category=t.category,
        description=t.description,
        amount=float(t.amount),
        currency=t.currency,
        date=t.date,
        status=t.status,
        is_paid=bool(t.is_paid),
        is_auto_generated=bool(t.is_auto_generated),
        notes=t.notes,
    )
