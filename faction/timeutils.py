"""Time utilities for the bot."""

import datetime
import time
from zoneinfo import ZoneInfo

from .config import TIMEZONE


def get_timezone():
    """Get the display timezone."""
    return ZoneInfo(TIMEZONE)


def now_ts() -> int:
    """Current epoch time in whole seconds."""
    return int(time.time())


def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def iso_now() -> str:
    return utc_now().isoformat()


def format_countdown(seconds: int) -> str:
    """Format a remaining duration as `Xm Ys`."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}m {seconds % 60}s"


def format_timestamp(timestamp: int) -> str:
    """Format an epoch timestamp in the display timezone."""
    moment = datetime.datetime.fromtimestamp(timestamp, get_timezone())
    return moment.strftime("%Y-%m-%d %H:%M")


def hours_since_iso(value: str) -> float:
    """Hours elapsed since an ISO-8601 timestamp."""
    past = datetime.datetime.fromisoformat(value)
    if past.tzinfo is None:
        past = past.replace(tzinfo=datetime.timezone.utc)
    return (utc_now() - past).total_seconds() / 3600
