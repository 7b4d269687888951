"""Idempotent persistence for weekly reports.

One row per (user_id, window_start). Rows are never updated except to set
``email_sent_at`` once, after a successful delivery.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.models.weekly_report import WeeklyReport
from app.services.reports.blob_store import BlobStore, DatabaseBlobStore

logger = logging.getLogger(__name__)

_INSERT_ATTEMPTS = 2


class ReportStore:
    def __init__(self, blob_store: BlobStore | None = None) -> None:
        self.blob_store = blob_store or DatabaseBlobStore()

    def get_for_window(
        self, db: Session, user_id: str, window_start: datetime
    ) -> WeeklyReport | None:
        return db.scalars(
            select(WeeklyReport).where(
                WeeklyReport.user_id == user_id,
                WeeklyReport.window_start == window_start,
            )
        ).first()

    def upsert_if_absent(
        self,
        db: Session,
        report: WeeklyReport,
        artifact: bytes | None = None,
    ) -> tuple[WeeklyReport, bool]:
        """Insert ``report`` unless one exists for its (user_id, window_start).

        When ``artifact`` is given it is written to the blob store in the same
        transaction and ``report.artifact_ref`` is set from it. Returns
        ``(stored_report, created)``; an existing row is returned unchanged.
        A concurrent insert of the same key resolves to the winner's row.
        """
        for attempt in range(1, _INSERT_ATTEMPTS + 1):
            existing = self.get_for_window(db, report.user_id, report.window_start)
            if existing is not None:
                logger.info(
                    "report_exists: user_id=%s window_start=%s report_id=%s",
                    report.user_id,
                    report.window_start,
                    existing.id,
                )
                return existing, False
            try:
                if artifact is not None:
                    report.artifact_ref = self.blob_store.store(db, artifact)
                db.add(report)
                db.commit()
            except IntegrityError:
                db.rollback()
                if attempt == _INSERT_ATTEMPTS:
                    raise
                logger.info(
                    "report_insert_conflict: user_id=%s window_start=%s, retrying",
                    report.user_id,
                    report.window_start,
                )
                continue
            db.refresh(report)
            return report, True
        raise AssertionError("unreachable")

    def mark_delivered(self, db: Session, report_id: int, sent_at: datetime | None = None) -> bool:
        """Set email_sent_at if it is still null. Returns True when this call set it."""
        when = sent_at or datetime.now(UTC)
        result = db.execute(
            update(WeeklyReport)
            .where(WeeklyReport.id == report_id, WeeklyReport.email_sent_at.is_(None))
            .values(email_sent_at=when)
        )
        db.commit()
        return result.rowcount == 1

    def get_by_id(self, db: Session, user_id: str, report_id: int) -> WeeklyReport | None:
        """Report by id, scoped to its owner; None when missing or owned by another user."""
        return db.scalars(
            select(WeeklyReport).where(
                WeeklyReport.id == report_id,
                WeeklyReport.user_id == user_id,
            )
        ).first()

    def list_by_user(self, db: Session, user_id: str, limit: int = 10) -> list[WeeklyReport]:
        return list(
            db.scalars(
                select(WeeklyReport)
                .where(WeeklyReport.user_id == user_id)
                .order_by(WeeklyReport.window_start.desc())
                .limit(limit)
            )
        )

    def fetch_artifact(self, db: Session, report: WeeklyReport) -> bytes:
        return self.blob_store.fetch(db, report.artifact_ref)
