"""Weekly report JSON API routes.

Called by the chat backend with the shared service token; the user is
identified by path, not by session.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_internal_token
from app.config import get_settings
from app.schemas.report import DeliveryOutcomeRead, ReportList, ReportRead
from app.services.reports import (
    DataFetchError,
    RenderError,
    ReportNotFoundError,
    ReportOrchestrator,
    UserNotFoundError,
    get_report_scheduler,
)
from app.services.reports.delivery import attachment_filename

logger = logging.getLogger(__name__)

router = APIRouter(dependencies=[Depends(require_internal_token)])


def get_orchestrator() -> ReportOrchestrator:
    """Orchestrator dependency; overridden in tests."""
    return get_report_scheduler().orchestrator


def _http_error(exc: Exception) -> HTTPException:
    """Map pipeline errors to HTTP status codes."""
    if isinstance(exc, (UserNotFoundError, ReportNotFoundError)):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, RenderError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=502, detail=str(exc))


@router.post("/{user_id}/reports/generate", response_model=ReportRead)
def generate_report(
    user_id: str,
    force: bool = Query(False, description="Re-run the pipeline even if a report exists"),
    db: Session = Depends(get_db),
    orchestrator: ReportOrchestrator = Depends(get_orchestrator),
) -> ReportRead:
    """Generate (or return) the current window's report for one user."""
    try:
        report = orchestrator.run_for_user(user_id, force=force, db=db)
    except (DataFetchError, RenderError) as exc:
        logger.warning("On-demand report failed for user %s: %s", user_id, exc)
        raise _http_error(exc) from exc
    return ReportRead.model_validate(report)


@router.get("/{user_id}/reports", response_model=ReportList)
def list_reports(
    user_id: str,
    limit: int | None = Query(None, ge=1, le=100),
    db: Session = Depends(get_db),
    orchestrator: ReportOrchestrator = Depends(get_orchestrator),
) -> ReportList:
    """Most recent reports first."""
    if limit is None:
        limit = get_settings().report_list_limit
    reports = orchestrator.store.list_by_user(db, user_id, limit=limit)
    items = [ReportRead.model_validate(r) for r in reports]
    return ReportList(reports=items, total=len(items))


@router.get("/{user_id}/reports/{report_id}", response_model=ReportRead)
def get_report(
    user_id: str,
    report_id: int,
    db: Session = Depends(get_db),
    orchestrator: ReportOrchestrator = Depends(get_orchestrator),
) -> ReportRead:
    report = orchestrator.store.get_by_id(db, user_id, report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    return ReportRead.model_validate(report)


@router.get("/{user_id}/reports/{report_id}/artifact")
def get_report_artifact(
    user_id: str,
    report_id: int,
    db: Session = Depends(get_db),
    orchestrator: ReportOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Download the stored PDF."""
    report = orchestrator.store.get_by_id(db, user_id, report_id)
    if report is None:
        raise HTTPException(status_code=404, detail="Report not found")
    try:
        content = orchestrator.store.fetch_artifact(db, report)
    except KeyError:
        logger.error("Artifact %s missing for report %s", report.artifact_ref, report.id)
        raise HTTPException(status_code=404, detail="Report artifact not found") from None
    filename = attachment_filename(report.created_at.date())
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/{user_id}/reports/{report_id}/resend", response_model=DeliveryOutcomeRead)
def resend_report(
    user_id: str,
    report_id: int,
    db: Session = Depends(get_db),
    orchestrator: ReportOrchestrator = Depends(get_orchestrator),
) -> DeliveryOutcomeRead:
    """Deliver a stored report again. Delivery failures are reported, not raised."""
    try:
        outcome = orchestrator.resend_report(user_id, report_id, db=db)
    except (ReportNotFoundError, DataFetchError) as exc:
        raise _http_error(exc) from exc
    return DeliveryOutcomeRead(status=outcome.status, detail=outcome.detail, sent_at=outcome.sent_at)
