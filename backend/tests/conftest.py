import unittest
import uuid
from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.config import get_settings
from app.utils.alerting import alert_tracker


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    # Some tests mutate env vars and clear the settings cache. Ensure we don't leak
    # a cached Settings instance (e.g. with a different JWT secret) across tests.
    get_settings.cache_clear()
    alert_tracker.reset()
    yield
    get_settings.cache_clear()


def make_sqlite_engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


class StatementLog:
    """Records executed SQL, commits and arbitrary markers in order."""

    def __init__(self, engine):
        self.entries: list[tuple[str, tuple]] = []
        self._engine = engine
        event.listen(engine, "before_cursor_execute", self._on_execute)
        event.listen(engine, "commit", self._on_commit)

    def _on_execute(self, conn, cursor, statement, parameters, context, executemany):
        params = parameters if isinstance(parameters, tuple) else tuple(parameters or ())
        self.entries.append((statement, params))

    def _on_commit(self, conn):
        self.entries.append(("COMMIT", ()))

    def mark(self, label: str) -> None:
        self.entries.append((label, ()))

    def clear(self) -> None:
        self.entries.clear()

    def statements(self, prefix: str) -> list[tuple[str, tuple]]:
        return [(s, p) for s, p in self.entries if s.startswith(prefix)]

    def index_of(self, prefix: str) -> int:
        for i, (statement, _) in enumerate(self.entries):
            if statement.startswith(prefix):
                return i
        raise AssertionError(f"no statement starting with {prefix!r}")

    def close(self) -> None:
        event.remove(self._engine, "before_cursor_execute", self._on_execute)
        event.remove(self._engine, "commit", self._on_commit)


class LedgerApiTestCase(unittest.TestCase):
    """In-memory SQLite app harness with auth and DB dependency overrides."""

    role = "ADMIN"

    def setUp(self):
        from app.core.auth import CurrentUser, get_current_user
        from app.core.dependencies import get_db
        from app.main import app
        from app.models.ledger import Base

        self.app = app
        self.Base = Base
        self.engine = make_sqlite_engine()
        Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(bind=self.engine)

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        self.current_user = CurrentUser(id=str(uuid.uuid4()), role=self.role, email="desk@example.com")

        def override_get_current_user():
            return self.current_user

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_current_user] = override_get_current_user
        self.client = TestClient(app)

    def tearDown(self):
        self.client.close()
        self.app.dependency_overrides.clear()
        self.Base.metadata.drop_all(self.engine)
        self.engine.dispose()

    def _create_booking(self, arrival=date(2026, 3, 14), document=None, code=None):
        from app.models.ledger import Booking
        from app.services.confirmation_codes import date_key

        db = self.SessionLocal()
        booking = Booking(
            confirmation_code=code or f"A{date_key(arrival)}",
            date_code=date_key(arrival),
            arrival_date=arrival,
            main_client_name="Nino Beridze",
            document=document or {},
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
        db.close()
        return booking
