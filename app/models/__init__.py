"""SQLAlchemy models."""

from app.models.conversation import Conversation
from app.models.job_run import JobRun
from app.models.report_artifact import ReportArtifact
from app.models.user import User
from app.models.user_streak import UserStreak
from app.models.weekly_report import WeeklyReport

__all__ = [
    "Conversation",
    "JobRun",
    "ReportArtifact",
    "User",
    "UserStreak",
    "WeeklyReport",
]
