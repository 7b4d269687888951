"""
Application configuration. Loads from environment variables.
Secrets and sensitive config must never be hardcoded.
"""

import os

from dotenv import load_dotenv

load_dotenv()
from functools import lru_cache


@lru_cache(maxsize=1)
def get_settings() -> "Settings":
    """Return cached settings instance."""
    return Settings()


class Settings:
    """Application settings loaded from environment."""

    # App
    app_name: str = "MindLedger"
    debug: bool = False

    # Database (postgresql+psycopg for psycopg3; use postgresql:// for psycopg2)
    database_url: str = "postgresql+psycopg://localhost:5432/mindledger_dev"
    db_connect_timeout: int = 10  # seconds
    db_statement_timeout_ms: int = 30000  # PostgreSQL only; 0 = no limit

    # Security
    internal_job_token: str = ""  # Required for /internal/* and /api/users/* endpoints

    # Weekly reports: cadence
    report_frequency: str = "weekly"  # daily or weekly
    report_day_of_week: int = 6  # 0=Monday .. 6=Sunday
    report_time: str = "09:00"  # 24h, in report_timezone
    report_timezone: str = "UTC"
    report_scheduler_enabled: bool = False  # in-process scheduler; cron uses /internal instead

    # Weekly reports: batch execution
    report_max_workers: int = 4
    report_user_timeout: float = 120.0  # seconds per user pipeline
    report_eligible_tiers: list[str] = ["PRO"]  # always rebound per instance in __init__
    report_list_limit: int = 10

    # Weekly reports: artifact storage (database or filesystem)
    report_blob_store: str = "database"
    report_blob_dir: str = "var/report_artifacts"

    # SMTP / Email
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "MindLedger <noreply@mindledger.app>"
    smtp_timeout: float = 30.0

    def __init__(self) -> None:
        self.app_name = os.getenv("APP_NAME", self.app_name)
        self.debug = os.getenv("DEBUG", "false").lower() == "true"

        default_user = os.getenv("PGUSER") or os.getenv("USER") or "postgres"
        default_url = (
            f"postgresql+psycopg://{default_user}:"
            f"{os.getenv('PGPASSWORD', '')}@"
            f"{os.getenv('PGHOST', 'localhost')}:"
            f"{os.getenv('PGPORT', '5432')}/"
            f"{os.getenv('PGDATABASE', 'mindledger_dev')}"
        )
        raw_url = os.getenv("DATABASE_URL", default_url)
        # Ensure psycopg3 driver if URL uses generic postgresql://
        if raw_url.startswith("postgresql://") and not raw_url.startswith("postgresql+psycopg"):
            raw_url = raw_url.replace("postgresql://", "postgresql+psycopg://", 1)
        self.database_url = raw_url
        self.db_connect_timeout = int(os.getenv("DB_CONNECT_TIMEOUT", str(self.db_connect_timeout)))
        self.db_statement_timeout_ms = int(
            os.getenv("DB_STATEMENT_TIMEOUT_MS", str(self.db_statement_timeout_ms))
        )

        self.internal_job_token = os.getenv("INTERNAL_JOB_TOKEN", "")

        self.report_frequency = os.getenv("REPORT_FREQUENCY", self.report_frequency).lower()
        self.report_day_of_week = int(
            os.getenv("REPORT_DAY_OF_WEEK", str(self.report_day_of_week))
        )
        self.report_time = os.getenv("REPORT_TIME", self.report_time)
        self.report_timezone = os.getenv("REPORT_TIMEZONE", self.report_timezone)
        self.report_scheduler_enabled = (
            os.getenv("REPORT_SCHEDULER_ENABLED", "false").lower() == "true"
        )

        self.report_max_workers = max(
            1, int(os.getenv("REPORT_MAX_WORKERS", str(self.report_max_workers)))
        )
        self.report_user_timeout = float(
            os.getenv("REPORT_USER_TIMEOUT", str(self.report_user_timeout))
        )
        # Comma-separated tiers; matched case-insensitively
        _tiers = os.getenv("REPORT_ELIGIBLE_TIERS", ",".join(self.report_eligible_tiers))
        self.report_eligible_tiers = [t.strip().upper() for t in _tiers.split(",") if t.strip()]
        self.report_list_limit = int(os.getenv("REPORT_LIST_LIMIT", str(self.report_list_limit)))

        self.report_blob_store = os.getenv("REPORT_BLOB_STORE", self.report_blob_store).lower()
        self.report_blob_dir = os.getenv("REPORT_BLOB_DIR", self.report_blob_dir)

        self.smtp_host = os.getenv("SMTP_HOST", "")
        self.smtp_port = int(os.getenv("SMTP_PORT", "587"))
        self.smtp_user = os.getenv("SMTP_USER", "")
        self.smtp_password = os.getenv("SMTP_PASSWORD", "")
        self.smtp_from = os.getenv("SMTP_FROM") or self.smtp_from
        self.smtp_timeout = float(os.getenv("SMTP_TIMEOUT", str(self.smtp_timeout)))

    @property
    def smtp_configured(self) -> bool:
        """True when SMTP host and credentials are all present."""
        return bool(self.smtp_host and self.smtp_user and self.smtp_password)
