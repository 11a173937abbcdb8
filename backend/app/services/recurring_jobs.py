from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timezone

from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core import dependencies
from app.services.salary_schedule import MonthPeriod, ReconcileSummary, WeekPeriod, reconcile_salary_period

logger = logging.getLogger(__name__)


def _today_utc() -> date:
    return datetime.now(timezone.utc).date()


def reconcile_current_salary_periods(db: Session, today: date | None = None) -> list[ReconcileSummary]:
    """
    Idempotent: reconciles the month and the Monday-anchored week containing `today`.
    Monthly and weekly profiles run as independent passes.
    """
    today = today or _today_utc()
    return [
        reconcile_salary_period(db, MonthPeriod.containing(today)),
        reconcile_salary_period(db, WeekPeriod.containing(today)),
    ]


async def _salary_reconcile_loop(*, interval_seconds: int) -> None:
    # Backoff on errors to avoid tight loops.
    error_sleep = max(10, min(300, interval_seconds))
    while True:
        try:
            settings = get_settings()
            if not settings.enable_recurring_jobs or dependencies.SessionLocal is None:
                await asyncio.sleep(interval_seconds)
                continue

            with dependencies.session_scope() as db:
                summaries = await asyncio.to_thread(reconcile_current_salary_periods, db)
            for summary in summaries:
                if summary.writes:
                    logger.info(
                        "Salary worker %s: inserted=%s updated=%s",
                        summary.period_key,
                        summary.inserted,
                        summary.updated,
                    )
            await asyncio.sleep(interval_seconds)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Salary reconcile worker error")
            await asyncio.sleep(error_sleep)


def start_salary_reconcile_worker() -> asyncio.Task | None:
    """
    Starts the in-process reconcile loop. Callers keep the returned task if they
    need explicit cancellation.
    """
    settings = get_settings()
    interval = int(max(60, min(86400, settings.salary_reconcile_interval_seconds or 3600)))
    return asyncio.create_task(_salary_reconcile_loop(interval_seconds=interval))
