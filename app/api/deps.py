"""Shared FastAPI dependencies for API routes."""

from __future__ import annotations

import logging
import secrets

from fastapi import Header, HTTPException

from app.config import get_settings
from app.db.session import get_db  # re-export

__all__ = [
    "get_db",
    "require_internal_token",
]

logger = logging.getLogger(__name__)


def require_internal_token(x_internal_token: str = Header(...)) -> None:
    """Validate the service token from the X-Internal-Token header.

    Uses constant-time comparison. Raises 403 if the token is not configured
    or does not match.
    """
    expected = get_settings().internal_job_token
    if not expected or not secrets.compare_digest(x_internal_token, expected):
        logger.warning("Internal token auth failed: invalid or missing token")
        raise HTTPException(status_code=403, detail="Invalid internal token")
