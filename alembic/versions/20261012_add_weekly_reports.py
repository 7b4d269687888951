"""add weekly_reports and report_artifacts tables

Revision ID: 20261012_weekly_reports
Revises: 001
Create Date: 2026-10-12

One report per (user_id, window_start); the unique constraint is what makes
concurrent batch and on-demand runs collapse to a single row. job_runs gains
the weekly report batch counters.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

from alembic import op

_JSON = sa.JSON().with_variant(JSONB(), "postgresql")

revision: str = "20261012_weekly_reports"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "report_artifacts",
        sa.Column("ref", sa.String(64), nullable=False),
        sa.Column("content_type", sa.String(64), nullable=False),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("content", sa.LargeBinary(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("ref"),
    )
    op.create_table(
        "weekly_reports",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("window_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("window_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("session_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("top_biases", _JSON, nullable=False),
        sa.Column("artifact_ref", sa.String(128), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("email_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "window_start", name="uq_weekly_reports_user_window"),
    )
    op.create_index(
        "ix_weekly_reports_user_id_window_start",
        "weekly_reports",
        ["user_id", "window_start"],
    )

    op.add_column("job_runs", sa.Column("window_start", sa.DateTime(timezone=True), nullable=True))
    op.add_column("job_runs", sa.Column("users_processed", sa.Integer(), nullable=True))
    op.add_column("job_runs", sa.Column("users_failed", sa.Integer(), nullable=True))
    op.add_column("job_runs", sa.Column("emails_sent", sa.Integer(), nullable=True))


def downgrade() -> None:
    op.drop_column("job_runs", "emails_sent")
    op.drop_column("job_runs", "users_failed")
    op.drop_column("job_runs", "users_processed")
    op.drop_column("job_runs", "window_start")
    op.drop_index("ix_weekly_reports_user_id_window_start", table_name="weekly_reports")
    op.drop_table("weekly_reports")
    op.drop_table("report_artifacts")
