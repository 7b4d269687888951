"""Internal job endpoints for cron/scripts.

These endpoints are secured with a static token (X-Internal-Token header),
NOT user auth.  They are meant for automated triggers only.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from app.api.deps import require_internal_token
from app.schemas.report import BatchSummaryRead
from app.services.reports import get_report_scheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/internal", include_in_schema=False)


@router.post("/run_weekly_reports", response_model=BatchSummaryRead)
def run_weekly_reports(
    _token: None = Depends(require_internal_token),
) -> BatchSummaryRead:
    """Run one weekly report batch for the current window.

    Blocks until the batch finishes. When a batch is already in flight
    (in-process scheduler or another worker) the call returns status
    "skipped" without running anything.
    """
    scheduler = get_report_scheduler()
    try:
        summary = scheduler.trigger()
    except Exception as exc:
        logger.exception("Internal weekly report run failed")
        return BatchSummaryRead(status="failed", error=str(exc))
    if summary is None:
        return BatchSummaryRead(status="skipped", error="a weekly report run is already in flight")
    return BatchSummaryRead.from_summary(summary)
