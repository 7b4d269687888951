"""Tests for the SQL report data source."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from app.services.reports.data_source import SqlReportDataSource
from app.services.reports.exceptions import DataFetchError, UserNotFoundError
from tests.doubles import IN_WINDOW, WINDOW_END, WINDOW_START


@pytest.fixture
def source() -> SqlReportDataSource:
    return SqlReportDataSource(["pro"])


def _broken_db() -> MagicMock:
    db = MagicMock()
    error = OperationalError("SELECT 1", {}, Exception("connection reset"))
    db.scalars.side_effect = error
    db.execute.side_effect = error
    db.get.side_effect = error
    return db


def test_eligible_users_filtered_by_tier_case_insensitively(db, make_user, source) -> None:
    make_user("u-b", tier="PRO")
    make_user("u-a", tier="pro")
    make_user("u-c", tier="FREE")

    users = source.list_eligible_users(db)

    assert [u.id for u in users] == ["u-a", "u-b"]


def test_profile_normalizes_blank_fields(db, make_user, source) -> None:
    make_user("u1", email="  ", first_name="")
    profile = source.get_profile(db, "u1")
    assert profile.email is None
    assert profile.first_name is None


def test_unknown_user_raises_user_not_found(db, source) -> None:
    with pytest.raises(UserNotFoundError) as exc_info:
        source.get_profile(db, "ghost")
    assert isinstance(exc_info.value, LookupError)
    assert isinstance(exc_info.value, DataFetchError)


def test_events_use_half_open_window(db, make_user, make_conversation, source) -> None:
    make_user("u1")
    make_conversation("u1", WINDOW_START - timedelta(seconds=1), [{"name": "Before"}])
    make_conversation("u1", WINDOW_START, [{"name": "AtStart"}])
    make_conversation("u1", IN_WINDOW, [{"name": "Inside", "confidence": 0.4}])
    make_conversation("u1", WINDOW_END, [{"name": "AtEnd"}])

    events = source.get_events(db, "u1", WINDOW_START, WINDOW_END)

    assert [e.detections[0].name for e in events] == ["AtStart", "Inside"]
    assert events[0].occurred_at.tzinfo is not None
    assert events[1].detections[0].severity == 40.0


def test_events_are_scoped_to_user(db, make_user, make_conversation, source) -> None:
    make_user("u1")
    make_user("u2")
    make_conversation("u2", IN_WINDOW, [{"name": "Theirs"}])
    assert source.get_events(db, "u1", WINDOW_START, WINDOW_END) == []


def test_conversation_without_biases_still_counts(db, make_user, make_conversation, source):
    make_user("u1")
    make_conversation("u1", IN_WINDOW, None)
    events = source.get_events(db, "u1", WINDOW_START, WINDOW_END)
    assert len(events) == 1
    assert events[0].detections == ()


def test_streak_defaults_to_zero(db, make_user, source) -> None:
    make_user("u1")
    make_user("u2", streak=6)
    assert source.get_streak(db, "u1") == 0
    assert source.get_streak(db, "u2") == 6


@pytest.mark.parametrize(
    "call",
    [
        lambda s, db: s.list_eligible_users(db),
        lambda s, db: s.get_profile(db, "u1"),
        lambda s, db: s.get_events(db, "u1", WINDOW_START, WINDOW_END),
        lambda s, db: s.get_streak(db, "u1"),
    ],
)
def test_backend_errors_become_data_fetch_errors(source, call) -> None:
    with pytest.raises(DataFetchError):
        call(source, _broken_db())
