"""Weekly report scheduler.

Holds the only process-wide state of the report pipeline: whether a batch is
currently running. ``trigger`` takes a non-blocking run lock for the whole
batch; a tick that finds the lock held is skipped and logged, never queued.
On PostgreSQL a session advisory lock extends the guarantee across processes
(e.g. several Gunicorn workers or a cron-driven run next to the in-process
scheduler).

Lifecycle: ``start()`` at application startup spawns the tick thread;
``stop()`` at shutdown cancels any in-flight batch and joins the thread.
"""

from __future__ import annotations

import logging
import threading
from datetime import UTC, datetime
from functools import lru_cache

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from app.services.reports.cadence import Cadence
from app.services.reports.orchestrator import ReportOrchestrator, build_report_orchestrator
from app.services.reports.types import BatchSummary

logger = logging.getLogger(__name__)

# Arbitrary constant key for pg_try_advisory_lock; unique to this job
ADVISORY_LOCK_KEY = 0x4D4C5752  # "MLWR"


class AdvisoryRunLock:
    """Cross-process run lock via pg_try_advisory_lock. No-op on other backends."""

    def __init__(self, engine: Engine, key: int = ADVISORY_LOCK_KEY) -> None:
        self.engine = engine
        self.key = key
        self._conn: Connection | None = None

    def acquire(self) -> bool:
        if self.engine.dialect.name != "postgresql":
            return True
        conn = self.engine.connect()
        try:
            acquired = bool(
                conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": self.key}).scalar()
            )
        except Exception:
            conn.close()
            raise
        if not acquired:
            conn.close()
            return False
        self._conn = conn
        return True

    def release(self) -> None:
        if self._conn is None:
            return
        try:
            self._conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": self.key})
            self._conn.commit()
        finally:
            self._conn.close()
            self._conn = None


class ReportScheduler:
    def __init__(
        self,
        orchestrator: ReportOrchestrator,
        cadence: Cadence | None = None,
        run_lock: AdvisoryRunLock | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.cadence = cadence or orchestrator.cadence
        self.run_lock = run_lock
        self.last_summary: BatchSummary | None = None
        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def next_run_at(self, now: datetime | None = None) -> datetime:
        return self.cadence.next_tick(now or datetime.now(UTC))

    def _acquire_shared_lock(self) -> bool:
        if self.run_lock is None:
            return True
        try:
            return self.run_lock.acquire()
        except Exception:
            logger.exception("Weekly report tick skipped: run lock unavailable")
            return False

    def trigger(self, now: datetime | None = None) -> BatchSummary | None:
        """Run one batch unless one is already in flight. Returns None when skipped."""
        if not self._lock.acquire(blocking=False):
            logger.warning("Weekly report tick skipped: previous run still in flight")
            return None
        try:
            if not self._acquire_shared_lock():
                logger.warning("Weekly report tick skipped: another process holds the run lock")
                return None
            try:
                summary = self.orchestrator.run_batch(now=now, cancel=self._cancel)
            finally:
                if self.run_lock is not None:
                    self.run_lock.release()
            self.last_summary = summary
            return summary
        finally:
            self._lock.release()

    def _loop(self) -> None:
        last_fired: datetime | None = None
        while not self._stop.is_set():
            now = datetime.now(UTC)
            next_at = self.next_run_at(max(now, last_fired) if last_fired else now)
            delay = (next_at - now).total_seconds()
            logger.info("Next weekly report run at %s", next_at.isoformat())
            if self._stop.wait(timeout=max(0.0, delay)):
                break
            last_fired = next_at
            try:
                self.trigger(now=next_at)
            except Exception:
                logger.exception("Weekly report tick failed")

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._cancel.clear()
        self._thread = threading.Thread(
            target=self._loop, name="weekly-report-scheduler", daemon=True
        )
        self._thread.start()
        logger.info(
            "Weekly report scheduler started: frequency=%s tz=%s",
            self.cadence.frequency,
            self.cadence.tz.key,
        )

    def stop(self, timeout: float | None = 30.0) -> None:
        self._stop.set()
        self._cancel.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Weekly report scheduler stopped")


@lru_cache(maxsize=1)
def get_report_scheduler() -> ReportScheduler:
    """Process-wide scheduler shared by the tick thread and /internal/run_weekly_reports."""
    from app.db.session import engine

    return ReportScheduler(build_report_orchestrator(), run_lock=AdvisoryRunLock(engine))
