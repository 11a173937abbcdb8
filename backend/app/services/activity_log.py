import logging
from typing import Any, Optional

from sqlalchemy.orm import Session

from app.core.auth import CurrentUser
from app.models.ledger import ActivityLog
from app.utils.alerting import alert_tracker

logger = logging.getLogger(__name__)

REDACTED_FIELDS = {"passport", "phone", "email", "id_number"}


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: "[REDACTED]" if isinstance(key, str) and key.lower() in REDACTED_FIELDS else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def create_activity_log(
    db: Session,
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    actor: Optional[CurrentUser],
    old_value: Optional[dict[str, Any]] = None,
    new_value: Optional[dict[str, Any]] = None,
    label: str = "",
) -> None:
    """Stage an activity row in the caller's unit of work (no commit here)."""
    db.add(
        ActivityLog(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            old_value=_redact(old_value),
            new_value=_redact(new_value),
            actor_role=actor.role if actor else "SYSTEM",
            actor_id=actor.id if actor else None,
            label=label,
        )
    )
    try:
        alert_tracker.record(action, new_value)
    except Exception:
        logger.exception("Alert tracker failed for action=%s", action)
