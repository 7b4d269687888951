"""Weekly report schemas."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utc(value: datetime | None) -> datetime | None:
    # SQLite returns naive datetimes; stored values are UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class BiasAggregateRead(BaseModel):
    name: str
    count: int = Field(ge=1)
    avg_intensity: int = Field(ge=0, le=100)


class ReportRead(BaseModel):
    """A stored weekly report. The artifact itself is served separately."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    window_start: datetime
    window_end: datetime
    session_count: int
    current_streak: int
    top_biases: list[BiasAggregateRead] = Field(default_factory=list)
    artifact_ref: str
    created_at: datetime
    email_sent_at: datetime | None = None

    @field_validator("window_start", "window_end", "created_at", "email_sent_at")
    @classmethod
    def _as_utc(cls, value: datetime | None) -> datetime | None:
        return _utc(value)


class ReportList(BaseModel):
    reports: list[ReportRead]
    total: int = 0


class DeliveryOutcomeRead(BaseModel):
    status: str
    detail: str | None = None
    sent_at: datetime | None = None


class BatchErrorRead(BaseModel):
    user_id: str
    reason: str


class BatchSummaryRead(BaseModel):
    """Scheduled-run result, for cron logs."""

    status: str
    job_run_id: int | None = None
    window_start: datetime | None = None
    window_end: datetime | None = None
    succeeded: int = 0
    failed: int = 0
    errors: list[BatchErrorRead] = Field(default_factory=list)
    reports_created: int = 0
    reports_reused: int = 0
    emails_sent: int = 0
    emails_skipped: int = 0
    emails_failed: int = 0
    error: str | None = None

    @classmethod
    def from_summary(cls, summary) -> BatchSummaryRead:
        return cls(
            status=summary.status,
            job_run_id=summary.job_run_id,
            window_start=summary.window.start if summary.window else None,
            window_end=summary.window.end if summary.window else None,
            succeeded=summary.succeeded,
            failed=summary.failed,
            errors=[BatchErrorRead(user_id=u, reason=r) for u, r in summary.errors],
            reports_created=summary.reports_created,
            reports_reused=summary.reports_reused,
            emails_sent=summary.emails_sent,
            emails_skipped=summary.emails_skipped,
            emails_failed=summary.emails_failed,
            error=summary.error,
        )
