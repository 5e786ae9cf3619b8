"""Tests for the daily member sync window."""

from __future__ import annotations

import datetime

from faction.config import MEMBER_SYNC_HOUR_UTC, MEMBER_SYNC_MIN_HOURS
from faction.scheduler import should_sync

UTC = datetime.timezone.utc


def at_sync_hour(day: int = 2) -> datetime.datetime:
    return datetime.datetime(2024, 5, day, MEMBER_SYNC_HOUR_UTC, 10, tzinfo=UTC)


def test_first_sync_runs_in_sync_hour():
    assert should_sync(at_sync_hour(), None)


def test_no_sync_outside_sync_hour():
    off_hour = at_sync_hour().replace(hour=(MEMBER_SYNC_HOUR_UTC + 1) % 24)

    assert not should_sync(off_hour, None)


def test_recent_sync_is_not_repeated():
    now = at_sync_hour()

    assert not should_sync(now, now - datetime.timedelta(minutes=30))
    assert not should_sync(now, now - datetime.timedelta(hours=MEMBER_SYNC_MIN_HOURS - 1))
    assert should_sync(now, now - datetime.timedelta(hours=MEMBER_SYNC_MIN_HOURS))


def test_naive_last_sync_is_treated_as_utc():
    now = at_sync_hour()
    yesterday = (now - datetime.timedelta(days=1)).replace(tzinfo=None)

    assert should_sync(now, yesterday)
