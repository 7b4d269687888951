"""Tests for internal job endpoints (/internal/run_weekly_reports)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from app.services.reports.types import BatchSummary, ReportWindow
from tests.doubles import WINDOW_END, WINDOW_START
from tests.test_constants import TEST_INTERNAL_JOB_TOKEN

# ── Fixtures ────────────────────────────────────────────────────────

VALID_TOKEN = TEST_INTERNAL_JOB_TOKEN  # matches conftest.py env setup


def _scheduler(summary: BatchSummary | None) -> MagicMock:
    scheduler = MagicMock()
    scheduler.trigger.return_value = summary
    return scheduler


# ── /internal/run_weekly_reports ────────────────────────────────────


class TestRunWeeklyReports:
    def test_valid_token_runs_batch(self, client: TestClient):
        summary = BatchSummary(
            succeeded=48,
            failed=2,
            errors=[("u7", "DataFetchError: timeout"), ("u9", "RenderError: bad")],
            emails_sent=45,
            emails_skipped=1,
            emails_failed=2,
            reports_created=48,
            window=ReportWindow(WINDOW_START, WINDOW_END),
            job_run_id=12,
        )
        scheduler = _scheduler(summary)
        with patch("app.api.internal.get_report_scheduler", return_value=scheduler):
            response = client.post(
                "/internal/run_weekly_reports",
                headers={"X-Internal-Token": VALID_TOKEN},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["job_run_id"] == 12
        assert data["succeeded"] == 48
        assert data["failed"] == 2
        assert data["errors"][0] == {"user_id": "u7", "reason": "DataFetchError: timeout"}
        assert data["emails_sent"] == 45
        assert data["emails_failed"] == 2
        assert data["window_start"].startswith("2026-03-01T09:00:00")
        scheduler.trigger.assert_called_once()

    def test_run_in_flight_returns_skipped(self, client: TestClient):
        with patch("app.api.internal.get_report_scheduler", return_value=_scheduler(None)):
            response = client.post(
                "/internal/run_weekly_reports",
                headers={"X-Internal-Token": VALID_TOKEN},
            )
        assert response.status_code == 200
        assert response.json()["status"] == "skipped"

    def test_unexpected_error_returns_failed(self, client: TestClient):
        scheduler = MagicMock()
        scheduler.trigger.side_effect = RuntimeError("pool exhausted")
        with patch("app.api.internal.get_report_scheduler", return_value=scheduler):
            response = client.post(
                "/internal/run_weekly_reports",
                headers={"X-Internal-Token": VALID_TOKEN},
            )
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "failed"
        assert "pool exhausted" in data["error"]

    def test_missing_token_returns_422(self, client: TestClient):
        response = client.post("/internal/run_weekly_reports")
        assert response.status_code == 422

    def test_wrong_token_returns_403(self, client: TestClient):
        response = client.post(
            "/internal/run_weekly_reports",
            headers={"X-Internal-Token": "wrong-token"},
        )
        assert response.status_code == 403

    def test_unconfigured_token_rejects_everything(
        self, client: TestClient, monkeypatch
    ):
        monkeypatch.setenv("INTERNAL_JOB_TOKEN", "")
        from app.config import get_settings

        get_settings.cache_clear()
        response = client.post(
            "/internal/run_weekly_reports",
            headers={"X-Internal-Token": ""},
        )
        assert response.status_code == 403


def test_end_to_end_batch_over_internal_endpoint(
    client: TestClient, make_user, make_orchestrator, channel
):
    """The endpoint drives a real scheduler and orchestrator on the test database."""
    from app.services.reports.scheduler import ReportScheduler

    make_user("u1", first_name="Dana")
    make_user("u2", first_name="Sam", email=None)
    scheduler = ReportScheduler(make_orchestrator())

    with patch("app.api.internal.get_report_scheduler", return_value=scheduler):
        response = client.post(
            "/internal/run_weekly_reports",
            headers={"X-Internal-Token": VALID_TOKEN},
        )

    data = response.json()
    assert data["status"] == "completed"
    assert data["succeeded"] == 2
    assert data["emails_sent"] == 1
    assert data["emails_skipped"] == 1
    assert [addr for addr, _, _ in channel.sent] == ["u1@example.com"]
