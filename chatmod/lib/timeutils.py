"""
Millisecond timestamp helpers shared by the analytics code.
"""
import time
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Union
from zoneinfo import ZoneInfo

MS_PER_MINUTE = 60 * 1000
MS_PER_HOUR = 60 * MS_PER_MINUTE
MS_PER_DAY = 24 * MS_PER_HOUR


def now_ms() -> int:
    return int(time.time() * 1000)


def resolve_tz(tz: Union[str, tzinfo, None]) -> tzinfo:
    if tz is None:
        return timezone.utc
    if isinstance(tz, str):
        return ZoneInfo(tz)
    return tz


def to_local(timestamp_ms: int, tz: tzinfo) -> datetime:
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=tz)


def day_key(timestamp_ms: int, tz: tzinfo) -> str:
    """Calendar date (YYYY-MM-DD) of a timestamp in the given zone."""
    return to_local(timestamp_ms, tz).date().isoformat()


def week_key(timestamp_ms: int, tz: tzinfo) -> str:
    """Date of the Sunday that starts the timestamp's week."""
    local_date = to_local(timestamp_ms, tz).date()
    # Monday=0 ... Sunday=6
    days_since_sunday = (local_date.weekday() + 1) % 7
    return (local_date - timedelta(days=days_since_sunday)).isoformat()


def iso_utc(timestamp_ms: int) -> str:
    return to_local(timestamp_ms, timezone.utc).isoformat(timespec="milliseconds")
