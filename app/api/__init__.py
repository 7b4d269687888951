"""API routes."""

from app.api.internal import router as internal_router
from app.api.reports import router as reports_router

__all__ = ["internal_router", "reports_router"]
