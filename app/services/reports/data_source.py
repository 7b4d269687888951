"""Read-only access to the collaborator data a report is built from.

Users, conversations and streaks are owned by other services; this module only
reads them. Any backend failure surfaces as DataFetchError.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.models.conversation import Conversation
from app.models.user import User
from app.models.user_streak import UserStreak
from app.services.reports.exceptions import DataFetchError, UserNotFoundError
from app.services.reports.types import ConversationEvent, UserProfile

logger = logging.getLogger(__name__)


class ReportDataSource(ABC):
    """Collaborator interface consumed by the report orchestrator."""

    @abstractmethod
    def list_eligible_users(self, db: Session) -> list[UserProfile]:
        ...

    @abstractmethod
    def get_profile(self, db: Session, user_id: str) -> UserProfile:
        """Raises UserNotFoundError for unknown users."""
        ...

    @abstractmethod
    def get_events(
        self, db: Session, user_id: str, window_start: datetime, window_end: datetime
    ) -> list[ConversationEvent]:
        """Events with window_start <= timestamp < window_end, oldest first."""
        ...

    @abstractmethod
    def get_streak(self, db: Session, user_id: str) -> int:
        ...


def _aware(value: datetime) -> datetime:
    # SQLite drops tzinfo; stored values are UTC
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _to_profile(user: User) -> UserProfile:
    return UserProfile(
        id=user.id,
        tier=user.tier,
        email=(user.email or "").strip() or None,
        first_name=(user.first_name or "").strip() or None,
    )


class SqlReportDataSource(ReportDataSource):
    """Reads ``users``, ``conversations`` and ``user_streaks`` from the shared database."""

    def __init__(self, eligible_tiers: list[str] | None = None) -> None:
        if eligible_tiers is None:
            eligible_tiers = list(get_settings().report_eligible_tiers)
        self.eligible_tiers = [t.upper() for t in eligible_tiers]

    def list_eligible_users(self, db: Session) -> list[UserProfile]:
        try:
            users = db.scalars(
                select(User)
                .where(func.upper(User.tier).in_(self.eligible_tiers))
                .order_by(User.id)
            ).all()
        except SQLAlchemyError as exc:
            raise DataFetchError(f"could not list eligible users: {exc}") from exc
        return [_to_profile(u) for u in users]

    def get_profile(self, db: Session, user_id: str) -> UserProfile:
        try:
            user = db.get(User, user_id)
        except SQLAlchemyError as exc:
            raise DataFetchError(f"could not load user {user_id}: {exc}") from exc
        if user is None:
            raise UserNotFoundError(f"user {user_id} not found")
        return _to_profile(user)

    def get_events(
        self, db: Session, user_id: str, window_start: datetime, window_end: datetime
    ) -> list[ConversationEvent]:
        try:
            rows = db.execute(
                select(Conversation.updated_at, Conversation.biases)
                .where(
                    Conversation.user_id == user_id,
                    Conversation.updated_at >= window_start,
                    Conversation.updated_at < window_end,
                )
                .order_by(Conversation.updated_at, Conversation.id)
            ).all()
        except SQLAlchemyError as exc:
            raise DataFetchError(f"could not load events for user {user_id}: {exc}") from exc
        return [
            ConversationEvent.from_raw(user_id, _aware(updated_at), biases)
            for updated_at, biases in rows
        ]

    def get_streak(self, db: Session, user_id: str) -> int:
        try:
            streak = db.get(UserStreak, user_id)
        except SQLAlchemyError as exc:
            raise DataFetchError(f"could not load streak for user {user_id}: {exc}") from exc
        if streak is None:
            return 0
        return max(0, int(streak.current_streak or 0))
