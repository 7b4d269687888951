"""Weekly report orchestration.

Per user: fetch events and streak, aggregate, render, store, deliver. In batch
mode every user runs independently on a bounded thread pool with its own
database session; a failure is caught at the user boundary and folded into the
BatchSummary. ``run_for_user`` runs the same steps synchronously and lets
failures propagate to the caller.

Each worker owns its user's outcome. The per-user deadline is checked by the
worker itself between stages, so a late pipeline stops before storing (FAILED,
nothing persisted) or, once stored, before delivery (EMAIL_FAILED, report
kept). The coordinator only records finished futures and waits for every
worker before the batch returns.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import UTC, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import Settings, get_settings
from app.models.job_run import JobRun
from app.models.weekly_report import WeeklyReport
from app.services.reports.aggregator import aggregate
from app.services.reports.blob_store import get_blob_store
from app.services.reports.cadence import Cadence
from app.services.reports.data_source import ReportDataSource, SqlReportDataSource
from app.services.reports.delivery import DeliveryChannel, build_delivery_channel
from app.services.reports.exceptions import (
    ConfigurationError,
    PipelineCancelled,
    PipelineTimeout,
    ReportNotFoundError,
    describe_error,
)
from app.services.reports.renderer import render
from app.services.reports.report_store import ReportStore
from app.services.reports.types import (
    BatchSummary,
    DeliveryOutcome,
    PipelineResult,
    PipelineState,
    ReportWindow,
    UserProfile,
)

logger = logging.getLogger(__name__)

JOB_TYPE = "weekly_reports"

# DeliveryOutcome.detail when the send succeeded but email_sent_at could not be written
TIMESTAMP_NOT_RECORDED = "timestamp not recorded"

# How often the coordinator wakes up to check cancellation and overdue users
_POLL_SECONDS = 0.25


@dataclass
class _UserRun:
    """Progress and deadline of one user's batch pipeline, owned by its worker."""

    user_id: str
    timeout: float | None = None
    state: PipelineState = PipelineState.PENDING
    started: float | None = None

    def expired(self) -> bool:
        if not self.timeout or self.timeout <= 0 or self.started is None:
            return False
        return time.monotonic() - self.started > self.timeout

    def timeout_error(self) -> PipelineTimeout:
        return PipelineTimeout(
            f"pipeline exceeded {self.timeout:g}s (reached {self.state.value})"
        )


class ReportOrchestrator:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        data_source: ReportDataSource,
        store: ReportStore,
        delivery: DeliveryChannel | None,
        cadence: Cadence,
        max_workers: int = 4,
        user_timeout: float = 120.0,
    ) -> None:
        self.session_factory = session_factory
        self.data_source = data_source
        self.store = store
        self.delivery = delivery
        self.cadence = cadence
        self.max_workers = max(1, max_workers)
        self.user_timeout = user_timeout

    def window(self, now: datetime | None = None) -> ReportWindow:
        return self.cadence.window_for(now or datetime.now(UTC))

    # ── Per-user pipeline ──────────────────────────────────────────

    @staticmethod
    def _checkpoint(run: _UserRun | None, cancel: threading.Event | None) -> None:
        if cancel is not None and cancel.is_set():
            raise PipelineCancelled("batch cancelled")
        if run is not None and run.expired():
            raise run.timeout_error()

    def _advance(self, run: _UserRun | None, state: PipelineState) -> None:
        if run is not None:
            run.state = state

    def _require_delivery(self) -> DeliveryChannel:
        if self.delivery is None:
            raise ConfigurationError("no delivery transport configured")
        return self.delivery

    def _deliver(
        self,
        db: Session,
        report: WeeklyReport,
        profile: UserProfile,
        artifact: bytes,
    ) -> tuple[PipelineState, DeliveryOutcome]:
        """Attempt delivery of a stored report. Never raises; the report stays stored."""
        try:
            channel = self._require_delivery()
        except ConfigurationError as exc:
            logger.info("report_email_skipped: user_id=%s reason=%s", profile.id, exc)
            return PipelineState.EMAIL_SKIPPED, DeliveryOutcome(status="skipped", detail=str(exc))
        if not profile.email:
            logger.info("report_email_skipped: user_id=%s reason=no email address", profile.id)
            return PipelineState.EMAIL_SKIPPED, DeliveryOutcome(
                status="skipped", detail="no email address"
            )

        try:
            outcome = channel.deliver(profile.email, profile.first_name, artifact)
        except Exception as exc:
            logger.exception("report_email_failed: user_id=%s report_id=%s", profile.id, report.id)
            return PipelineState.EMAIL_FAILED, DeliveryOutcome(
                status="failed", detail=describe_error(exc)
            )
        if outcome.status != "sent":
            return PipelineState.EMAIL_FAILED, outcome

        try:
            self.store.mark_delivered(db, report.id, outcome.sent_at)
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "report_mark_delivered_failed: user_id=%s report_id=%s", profile.id, report.id
            )
            # The email went out but email_sent_at is still null
            return PipelineState.EMAIL_SENT, DeliveryOutcome(
                status="sent", detail=TIMESTAMP_NOT_RECORDED, sent_at=outcome.sent_at
            )
        return PipelineState.EMAIL_SENT, outcome

    def _run_pipeline(
        self,
        db: Session,
        profile: UserProfile,
        window: ReportWindow,
        *,
        force: bool = False,
        cancel: threading.Event | None = None,
        run: _UserRun | None = None,
    ) -> tuple[WeeklyReport, PipelineResult]:
        if not force:
            existing = self.store.get_for_window(db, profile.id, window.start)
            if existing is not None:
                self._advance(run, PipelineState.STORED)
                return existing, PipelineResult(
                    user_id=profile.id, state=PipelineState.STORED, report_id=existing.id
                )

        self._checkpoint(run, cancel)
        events = self.data_source.get_events(db, profile.id, window.start, window.end)
        streak = self.data_source.get_streak(db, profile.id)
        self._advance(run, PipelineState.FETCHED)

        self._checkpoint(run, cancel)
        top_biases = aggregate(events)
        self._advance(run, PipelineState.AGGREGATED)

        self._checkpoint(run, cancel)
        artifact = render(
            profile,
            window.start.astimezone(self.cadence.tz),
            window.end.astimezone(self.cadence.tz),
            len(events),
            streak,
            top_biases,
        )
        self._advance(run, PipelineState.RENDERED)

        self._checkpoint(run, cancel)
        report, created = self.store.upsert_if_absent(
            db,
            WeeklyReport(
                user_id=profile.id,
                window_start=window.start,
                window_end=window.end,
                session_count=len(events),
                current_streak=streak,
                top_biases=[b.to_dict() for b in top_biases],
                artifact_ref="",
            ),
            artifact=artifact,
        )
        self._advance(run, PipelineState.STORED)
        logger.info(
            "report_stored: user_id=%s report_id=%s created=%s sessions=%d biases=%d",
            profile.id,
            report.id,
            created,
            len(events),
            len(top_biases),
        )

        if not created and not force:
            # A concurrent run stored this window first and owns its delivery
            return report, PipelineResult(
                user_id=profile.id, state=PipelineState.STORED, report_id=report.id
            )
        if report.email_sent_at is not None:
            return report, PipelineResult(
                user_id=profile.id,
                state=PipelineState.EMAIL_SENT,
                report_id=report.id,
                created=created,
                delivery=DeliveryOutcome(
                    status="sent", detail="already delivered", sent_at=report.email_sent_at
                ),
            )
        if run is not None and run.expired():
            # Stored but out of time: keep the report, do not start a delivery
            reason = describe_error(run.timeout_error())
            logger.error(
                "report_delivery_abandoned: user_id=%s report_id=%s reason=%s",
                profile.id,
                report.id,
                reason,
            )
            self._advance(run, PipelineState.EMAIL_FAILED)
            return report, PipelineResult(
                user_id=profile.id,
                state=PipelineState.EMAIL_FAILED,
                report_id=report.id,
                created=created,
                delivery=DeliveryOutcome(status="failed", detail=reason),
            )
        if not created:
            artifact = self.store.fetch_artifact(db, report)
        state, outcome = self._deliver(db, report, profile, artifact)
        self._advance(run, state)
        return report, PipelineResult(
            user_id=profile.id,
            state=state,
            report_id=report.id,
            created=created,
            delivery=outcome,
        )

    # ── On-demand ──────────────────────────────────────────────────

    def run_for_user(
        self,
        user_id: str,
        force: bool = False,
        now: datetime | None = None,
        db: Session | None = None,
    ) -> WeeklyReport:
        """Generate (or return) the current window's report for one user.

        Errors propagate unchanged. Without ``force`` an existing report for the
        window is returned as-is. With ``force`` the pipeline runs again; the
        stored row is still never duplicated or rewritten, and delivery is
        retried when that row was never delivered.
        """
        window = self.window(now)
        own_session = db is None
        session = self.session_factory() if own_session else db
        try:
            profile = self.data_source.get_profile(session, user_id)
            report, result = self._run_pipeline(session, profile, window, force=force)
            logger.info(
                "On-demand report: user_id=%s report_id=%s state=%s",
                user_id,
                report.id,
                result.state.value,
            )
            session.refresh(report)
            if own_session:
                session.expunge(report)
            return report
        finally:
            if own_session:
                session.close()

    def resend_report(
        self, user_id: str, report_id: int, db: Session | None = None
    ) -> DeliveryOutcome:
        """Deliver an already stored report again, from its stored artifact."""
        own_session = db is None
        session = self.session_factory() if own_session else db
        try:
            report = self.store.get_by_id(session, user_id, report_id)
            if report is None:
                raise ReportNotFoundError(f"report {report_id} not found for user {user_id}")
            profile = self.data_source.get_profile(session, user_id)
            artifact = self.store.fetch_artifact(session, report)
            _, outcome = self._deliver(session, report, profile, artifact)
            return outcome
        finally:
            if own_session:
                session.close()

    # ── Batch ──────────────────────────────────────────────────────

    def _run_user(
        self,
        profile: UserProfile,
        window: ReportWindow,
        cancel: threading.Event,
        run: _UserRun,
    ) -> PipelineResult:
        run.started = time.monotonic()
        db = self.session_factory()
        try:
            _, result = self._run_pipeline(db, profile, window, cancel=cancel, run=run)
            return result
        except PipelineTimeout as exc:
            db.rollback()
            logger.error("Weekly report timed out for user %s: %s", profile.id, exc)
            return PipelineResult(
                user_id=profile.id, state=PipelineState.FAILED, error=describe_error(exc)
            )
        except Exception as exc:
            db.rollback()
            logger.exception("Weekly report failed for user %s", profile.id)
            return PipelineResult(
                user_id=profile.id, state=PipelineState.FAILED, error=describe_error(exc)
            )
        finally:
            db.close()

    def _process_users(
        self,
        users: list[UserProfile],
        window: ReportWindow,
        cancel: threading.Event,
        summary: BatchSummary,
    ) -> None:
        """Fan users out to the pool and tally results as workers finish.

        Returns only after every submitted worker has finished or been
        cancelled, so no pipeline outlives the batch (or the run lock).
        """
        pool = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="weekly-report"
        )
        futures: dict[Future, _UserRun] = {}
        try:
            for profile in users:
                run = _UserRun(user_id=profile.id, timeout=self.user_timeout)
                futures[pool.submit(self._run_user, profile, window, cancel, run)] = run

            pending = set(futures)
            overdue: set[str] = set()
            cancel_seen = False
            while pending:
                done, pending = wait(pending, timeout=_POLL_SECONDS, return_when=FIRST_COMPLETED)
                for future in done:
                    run = futures[future]
                    if future.cancelled():
                        summary.record(
                            PipelineResult(
                                user_id=run.user_id,
                                state=PipelineState.FAILED,
                                error="PipelineCancelled: batch cancelled",
                            )
                        )
                        continue
                    summary.record(future.result())

                if cancel.is_set() and not cancel_seen:
                    cancel_seen = True
                    logger.warning("Weekly report batch cancelled; dropping queued users")
                    for future in pending:
                        future.cancel()

                for future in pending:
                    run = futures[future]
                    if run.user_id not in overdue and run.expired():
                        overdue.add(run.user_id)
                        logger.warning(
                            "Weekly report for user %s past its %gs deadline in state %s; "
                            "waiting for the worker to stop",
                            run.user_id,
                            self.user_timeout,
                            run.state.value,
                        )
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

    def run_batch(
        self,
        now: datetime | None = None,
        cancel: threading.Event | None = None,
    ) -> BatchSummary:
        """Generate reports for every eligible user for the current window.

        Never raises for per-user failures. Records a JobRun for audit.
        """
        cancel = cancel or threading.Event()
        window = self.window(now)
        summary = BatchSummary(window=window)

        db = self.session_factory()
        try:
            job = JobRun(job_type=JOB_TYPE, status="running", window_start=window.start)
            db.add(job)
            db.commit()
            db.refresh(job)
            summary.job_run_id = job.id

            logger.info(
                "Starting weekly reports: window=[%s, %s) job_run_id=%s",
                window.start.isoformat(),
                window.end.isoformat(),
                job.id,
            )
            try:
                users = self.data_source.list_eligible_users(db)
                logger.info("Generating reports for %d eligible users", len(users))
                self._process_users(users, window, cancel, summary)
            except Exception as exc:
                logger.exception("Weekly report batch failed")
                summary.status = "failed"
                summary.error = describe_error(exc)

            if summary.status != "failed" and cancel.is_set():
                summary.status = "cancelled"
            job.finished_at = datetime.now(UTC)
            job.status = summary.status
            job.users_processed = summary.succeeded
            job.users_failed = summary.failed
            job.emails_sent = summary.emails_sent
            messages = [f"{user_id}: {reason}" for user_id, reason in summary.errors[:10]]
            if summary.error:
                messages.insert(0, summary.error)
            job.error_message = "; ".join(messages) if messages else None
            db.commit()
        finally:
            db.close()

        logger.info(
            "Weekly reports %s: succeeded=%d failed=%d created=%d reused=%d "
            "emails_sent=%d emails_skipped=%d emails_failed=%d",
            summary.status,
            summary.succeeded,
            summary.failed,
            summary.reports_created,
            summary.reports_reused,
            summary.emails_sent,
            summary.emails_skipped,
            summary.emails_failed,
        )
        return summary


def build_report_orchestrator(
    settings: Settings | None = None,
    session_factory: Callable[[], Session] | None = None,
) -> ReportOrchestrator:
    """Wire the orchestrator from settings: SQL source, blob store, optional SMTP."""
    if settings is None:
        settings = get_settings()
    if session_factory is None:
        from app.db.session import SessionLocal

        session_factory = SessionLocal
    return ReportOrchestrator(
        session_factory=session_factory,
        data_source=SqlReportDataSource(list(settings.report_eligible_tiers)),
        store=ReportStore(get_blob_store(settings)),
        delivery=build_delivery_channel(settings),
        cadence=Cadence.from_settings(settings),
        max_workers=settings.report_max_workers,
        user_timeout=settings.report_user_timeout,
    )
