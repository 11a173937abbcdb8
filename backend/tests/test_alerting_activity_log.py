import logging
import uuid

from sqlalchemy.orm import sessionmaker

from app.core.auth import CurrentUser
from app.models.ledger import ActivityLog, Base
from app.services.activity_log import create_activity_log
from app.utils.alerting import AlertTracker
from tests.conftest import make_sqlite_engine


def test_alert_logged_at_each_threshold_multiple(caplog):
    tracker = AlertTracker(3600, {"ATTACHMENT_BLOB_REMOVE_FAILED": 2})
    with caplog.at_level(logging.WARNING, logger="app.utils.alerting"):
        counts = [tracker.record("ATTACHMENT_BLOB_REMOVE_FAILED", {"n": i}) for i in range(4)]

    assert counts == [1, 2, 3, 4]
    alerts = [r for r in caplog.records if "ALERT action=ATTACHMENT_BLOB_REMOVE_FAILED" in r.getMessage()]
    assert len(alerts) == 2


def test_untracked_actions_are_ignored():
    tracker = AlertTracker(3600, {"SALARY_RECONCILE_CONFLICT": 3})
    assert tracker.record("BOOKING_CREATED") == 0
    assert tracker.count("BOOKING_CREATED") == 0
    tracker.record("SALARY_RECONCILE_CONFLICT")
    tracker.reset()
    assert tracker.count("SALARY_RECONCILE_CONFLICT") == 0


def test_activity_log_redacts_contact_fields_and_defaults_actor():
    engine = make_sqlite_engine()
    Base.metadata.create_all(engine)
    db = sessionmaker(bind=engine)()
    try:
        create_activity_log(
            db,
            entity_type="booking",
            entity_id=uuid.uuid4(),
            action="BOOKING_UPDATED",
            actor=None,
            new_value={"main_client_name": "Nino", "contact": {"Phone": "+995555", "email": "n@example.com"}},
        )
        actor = CurrentUser(id=str(uuid.uuid4()), role="WORKER")
        create_activity_log(db, entity_type="booking", entity_id="b1", action="BOOKING_CREATED", actor=actor)
        db.commit()

        system_row = db.query(ActivityLog).filter(ActivityLog.action == "BOOKING_UPDATED").one()
        assert system_row.actor_role == "SYSTEM"
        assert system_row.actor_id is None
        assert system_row.new_value == {
            "main_client_name": "Nino",
            "contact": {"Phone": "[REDACTED]", "email": "[REDACTED]"},
        }

        worker_row = db.query(ActivityLog).filter(ActivityLog.action == "BOOKING_CREATED").one()
        assert worker_row.actor_role == "WORKER"
        assert str(worker_row.actor_id) == actor.id
    finally:
        db.close()
        Base.metadata.drop_all(engine)
        engine.dispose()
