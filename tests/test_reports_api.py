"""Tests for the weekly report JSON API (/api/users/{user_id}/reports)."""

from __future__ import annotations

from datetime import datetime, timedelta
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.models import WeeklyReport
from app.services.reports.exceptions import RenderError
from app.services.reports.report_store import ReportStore
from tests.doubles import WINDOW_START, FailingDataSource
from tests.test_constants import TEST_INTERNAL_JOB_TOKEN

HEADERS = {"X-Internal-Token": TEST_INTERNAL_JOB_TOKEN}


@pytest.fixture
def use_orchestrator(client_with_db: TestClient, make_orchestrator):
    """Install an orchestrator on the test database; returns a setter for variants."""
    from app.api.reports import get_orchestrator
    from app.main import app

    def _install(**kwargs):
        orchestrator = make_orchestrator(**kwargs)
        app.dependency_overrides[get_orchestrator] = lambda: orchestrator
        return orchestrator

    _install()
    yield _install
    app.dependency_overrides.pop(get_orchestrator, None)


@pytest.fixture
def api(client_with_db: TestClient, use_orchestrator) -> TestClient:
    return client_with_db


def _seed_report(db, user_id: str, window_start: datetime, content: bytes = b"%PDF-1.4 x"):
    report, _ = ReportStore().upsert_if_absent(
        db,
        WeeklyReport(
            user_id=user_id,
            window_start=window_start,
            window_end=window_start + timedelta(days=7),
            session_count=1,
            current_streak=0,
            top_biases=[],
            artifact_ref="",
        ),
        artifact=content,
    )
    return report


# ── Auth ─────────────────────────────────────────────────────


def test_missing_token_returns_422(api: TestClient) -> None:
    assert api.get("/api/users/u1/reports").status_code == 422


def test_wrong_token_returns_403(api: TestClient) -> None:
    response = api.get("/api/users/u1/reports", headers={"X-Internal-Token": "wrong-token"})
    assert response.status_code == 403


# ── POST /generate ───────────────────────────────────────────


def test_generate_creates_report(api, make_user, make_conversation, use_orchestrator, channel):
    make_user("u1", first_name="Dana", streak=3)
    window = use_orchestrator().window()
    make_conversation("u1", window.start + timedelta(hours=1), [{"name": "Anchoring"}])

    response = api.post("/api/users/u1/reports/generate", headers=HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["user_id"] == "u1"
    assert data["session_count"] == 1
    assert data["current_streak"] == 3
    assert data["top_biases"] == [{"name": "Anchoring", "count": 1, "avg_intensity": 50}]
    assert datetime.fromisoformat(data["window_start"]) == window.start
    assert data["email_sent_at"] is not None
    assert len(channel.sent) == 1


def test_generate_is_idempotent(api, make_user) -> None:
    make_user("u1")
    first = api.post("/api/users/u1/reports/generate", headers=HEADERS).json()
    second = api.post("/api/users/u1/reports/generate", headers=HEADERS).json()
    forced = api.post(
        "/api/users/u1/reports/generate", headers=HEADERS, params={"force": "true"}
    ).json()
    assert first["id"] == second["id"] == forced["id"]


def test_generate_unknown_user_returns_404(api) -> None:
    response = api.post("/api/users/ghost/reports/generate", headers=HEADERS)
    assert response.status_code == 404


def test_generate_data_failure_returns_502(api, make_user, use_orchestrator) -> None:
    make_user("u1")
    use_orchestrator(data_source=FailingDataSource({"u1"}))
    response = api.post("/api/users/u1/reports/generate", headers=HEADERS)
    assert response.status_code == 502
    assert "conversation store unavailable" in response.json()["detail"]


def test_generate_render_failure_returns_422(api, make_user) -> None:
    make_user("u1")
    with patch(
        "app.services.reports.orchestrator.render", side_effect=RenderError("bad input")
    ):
        response = api.post("/api/users/u1/reports/generate", headers=HEADERS)
    assert response.status_code == 422


# ── GET ──────────────────────────────────────────────────────


def test_get_report(api, db) -> None:
    report = _seed_report(db, "u1", WINDOW_START)
    response = api.get(f"/api/users/u1/reports/{report.id}", headers=HEADERS)
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == report.id
    assert data["email_sent_at"] is None
    assert datetime.fromisoformat(data["window_start"]) == WINDOW_START


def test_get_report_of_other_user_returns_404(api, db) -> None:
    report = _seed_report(db, "u1", WINDOW_START)
    assert api.get(f"/api/users/u2/reports/{report.id}", headers=HEADERS).status_code == 404


def test_get_missing_report_returns_404(api) -> None:
    assert api.get("/api/users/u1/reports/999", headers=HEADERS).status_code == 404


def test_list_reports_newest_first(api, db) -> None:
    for weeks in range(3):
        _seed_report(db, "u1", WINDOW_START - timedelta(weeks=weeks), content=bytes([weeks]))

    response = api.get("/api/users/u1/reports", headers=HEADERS)

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 3
    starts = [datetime.fromisoformat(r["window_start"]) for r in data["reports"]]
    assert starts == sorted(starts, reverse=True)
    assert starts[0] == WINDOW_START


def test_list_reports_respects_limit(api, db) -> None:
    for weeks in range(3):
        _seed_report(db, "u1", WINDOW_START - timedelta(weeks=weeks), content=bytes([weeks]))
    data = api.get("/api/users/u1/reports", headers=HEADERS, params={"limit": 2}).json()
    assert len(data["reports"]) == 2


def test_list_reports_rejects_bad_limit(api) -> None:
    response = api.get("/api/users/u1/reports", headers=HEADERS, params={"limit": 0})
    assert response.status_code == 422


def test_list_reports_empty(api) -> None:
    data = api.get("/api/users/nobody/reports", headers=HEADERS).json()
    assert data == {"reports": [], "total": 0}


# ── Artifact ─────────────────────────────────────────────────


def test_download_artifact(api, db) -> None:
    report = _seed_report(db, "u1", WINDOW_START, content=b"%PDF-1.4 stored bytes")
    response = api.get(f"/api/users/u1/reports/{report.id}/artifact", headers=HEADERS)
    assert response.status_code == 200
    assert response.headers["content-type"] == "application/pdf"
    assert "mindledger-weekly-report-" in response.headers["content-disposition"]
    assert response.content == b"%PDF-1.4 stored bytes"


def test_download_artifact_unknown_report_returns_404(api) -> None:
    assert api.get("/api/users/u1/reports/5/artifact", headers=HEADERS).status_code == 404


# ── Resend ───────────────────────────────────────────────────


def test_resend_report(api, db, make_user, channel) -> None:
    make_user("u1", first_name="Dana")
    report = _seed_report(db, "u1", WINDOW_START, content=b"%PDF-1.4 resend me")

    response = api.post(f"/api/users/u1/reports/{report.id}/resend", headers=HEADERS)

    assert response.status_code == 200
    assert response.json()["status"] == "sent"
    assert channel.sent == [("u1@example.com", "Dana", b"%PDF-1.4 resend me")]


def test_resend_without_transport_reports_skipped(api, db, make_user, use_orchestrator) -> None:
    make_user("u1")
    use_orchestrator(delivery=None)
    report = _seed_report(db, "u1", WINDOW_START)
    data = api.post(f"/api/users/u1/reports/{report.id}/resend", headers=HEADERS).json()
    assert data["status"] == "skipped"


def test_resend_unknown_report_returns_404(api, make_user) -> None:
    make_user("u1")
    assert api.post("/api/users/u1/reports/77/resend", headers=HEADERS).status_code == 404
