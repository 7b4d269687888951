"""
Pytest configuration and fixtures.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Callable
from datetime import datetime, time
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from tests.test_constants import TEST_INTERNAL_JOB_TOKEN

# Force a throwaway SQLite DB when pytest runs; don't inherit from .env
_TEST_DB_DIR = tempfile.mkdtemp(prefix="mindledger-test-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'app.db')}"
os.environ.setdefault("INTERNAL_JOB_TOKEN", TEST_INTERNAL_JOB_TOKEN)
os.environ["REPORT_SCHEDULER_ENABLED"] = "false"
# No real mail in tests unless a test wires a channel explicitly
os.environ["SMTP_HOST"] = ""
os.environ["SMTP_USER"] = ""
os.environ["SMTP_PASSWORD"] = ""

from tests.doubles import RecordingChannel  # noqa: E402


@pytest.fixture(autouse=True)
def _clear_cached_singletons() -> None:
    """Clear lru_cache'd settings and scheduler before and after each test."""
    from app.config import get_settings
    from app.services.reports.scheduler import get_report_scheduler

    get_settings.cache_clear()
    get_report_scheduler.cache_clear()
    yield
    get_settings.cache_clear()
    get_report_scheduler.cache_clear()


@pytest.fixture
def engine(tmp_path):
    """Per-test SQLite database with all tables created."""
    import app.models  # noqa: F401
    from app.db.session import Base

    eng = create_engine(
        f"sqlite:///{tmp_path / 'reports.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Session:
    """Database session on the per-test database."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client() -> TestClient:
    """FastAPI test client."""
    from app.main import app

    return TestClient(app)


@pytest.fixture
def client_with_db(db: Session) -> TestClient:
    """TestClient with get_db overridden to use the test db session."""
    from app.db.session import get_db
    from app.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    c = TestClient(app)
    yield c
    app.dependency_overrides.pop(get_db, None)


# ── Seed helpers ────────────────────────────────────────────────────


@pytest.fixture
def make_user(db: Session) -> Callable:
    """Insert a user (and optionally a streak row); returns the user id."""
    from app.models import User, UserStreak

    def _make(
        user_id: str,
        tier: str = "PRO",
        email: str | None = "default",
        first_name: str | None = None,
        streak: int | None = None,
    ) -> str:
        if email == "default":
            email = f"{user_id}@example.com"
        db.add(User(id=user_id, tier=tier, email=email, first_name=first_name))
        if streak is not None:
            db.add(UserStreak(user_id=user_id, current_streak=streak, longest_streak=streak))
        db.commit()
        return user_id

    return _make


@pytest.fixture
def make_conversation(db: Session) -> Callable:
    """Insert a conversation with raw bias detections at ``updated_at``."""
    from app.models import Conversation

    def _make(user_id: str, updated_at: datetime, biases: list | None = None) -> None:
        db.add(
            Conversation(
                user_id=user_id,
                biases=biases,
                created_at=updated_at,
                updated_at=updated_at,
            )
        )
        db.commit()

    return _make


# ── Pipeline doubles ────────────────────────────────────────────────


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def weekly_cadence():
    from app.services.reports.cadence import Cadence

    return Cadence(frequency="weekly", day_of_week=6, at=time(9, 0), tz=ZoneInfo("UTC"))


@pytest.fixture
def make_orchestrator(session_factory, channel, weekly_cadence) -> Callable:
    """Build a ReportOrchestrator on the test database."""
    from app.services.reports.data_source import SqlReportDataSource
    from app.services.reports.orchestrator import ReportOrchestrator
    from app.services.reports.report_store import ReportStore

    def _make(
        delivery=channel,
        data_source=None,
        max_workers: int = 4,
        user_timeout: float = 120.0,
    ):
        return ReportOrchestrator(
            session_factory=session_factory,
            data_source=data_source or SqlReportDataSource(["PRO"]),
            store=ReportStore(),
            delivery=delivery,
            cadence=weekly_cadence,
            max_workers=max_workers,
            user_timeout=user_timeout,
        )

    return _make
