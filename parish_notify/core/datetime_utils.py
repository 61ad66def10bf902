"""Centralized datetime utilities for consistent timezone handling.

All stored timestamps are naive UTC (SQLAlchemy models use naive UTC).
Parish-local calendar dates are derived from an IANA zone name, or from a
legacy ``UTC+HH:MM`` offset string still present on older parish records.

Usage:
    from parish_notify.core.datetime_utils import utc_now, parish_local_date_parts

    parts = parish_local_date_parts(utc_now(), parish.timezone)
    if parts.month == user.birthday_month and parts.day == user.birthday_day:
        ...
"""

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Literal
from zoneinfo import ZoneInfo

LEGACY_UTC_OFFSET_PATTERN = re.compile(r"^UTC([+-])(\d{1,2})(?::?(\d{2}))?$", re.IGNORECASE)


def utc_now() -> datetime:
    """Get current UTC time as naive datetime.

    Returns naive datetime for database compatibility.
    """
    return datetime.now(UTC).replace(tzinfo=None)


def to_naive_utc(dt: datetime) -> datetime:
    """Convert a datetime to naive UTC.

    Args:
        dt: Datetime to convert (can be aware or naive)

    Returns:
        Naive UTC datetime for database compatibility
    """
    if dt.tzinfo is None:
        # Already naive, assume it's UTC
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)


def is_valid_timezone(tz_name: str) -> bool:
    """Check if a timezone name is a valid IANA identifier."""
    if not tz_name:
        return False
    try:
        ZoneInfo(tz_name)
        return True
    except (KeyError, ValueError):
        return False


def parse_legacy_utc_offset(timezone: str) -> int | None:
    """Parse a legacy ``UTC+HH[:MM]`` string into an offset in minutes.

    Returns None when the string is not a legacy offset or is out of range.
    """
    match = LEGACY_UTC_OFFSET_PATTERN.match(timezone.strip())
    if not match:
        return None

    sign = 1 if match.group(1) == "+" else -1
    hours = int(match.group(2))
    minutes = int(match.group(3) or "0")
    if hours > 14 or minutes > 59:
        return None

    return sign * (hours * 60 + minutes)


def is_legacy_utc_offset_timezone(timezone: str) -> bool:
    return parse_legacy_utc_offset(timezone) is not None


@dataclass(frozen=True)
class LocalDateParts:
    """A wall-clock instant broken down in a parish's timezone."""

    year: int
    month: int
    day: int
    hour: int
    minute: int
    mode: Literal["iana", "legacy-offset"]

    @property
    def date_key(self) -> str:
        return f"{self.year:04d}-{self.month:02d}-{self.day:02d}"

    @property
    def local_label(self) -> str:
        return f"{self.date_key} {self.hour:02d}:{self.minute:02d}"


def parish_local_date_parts(now_utc: datetime, timezone: str) -> LocalDateParts:
    """Resolve ``now_utc`` to the local calendar date in ``timezone``.

    Args:
        now_utc: Current instant (naive UTC or aware)
        timezone: IANA zone name or legacy ``UTC±HH[:MM]`` offset

    Returns:
        LocalDateParts with year, month, day, hour, minute and date_key

    Raises:
        ValueError: If the timezone is neither a valid IANA zone nor an offset
    """
    aware = now_utc.replace(tzinfo=UTC) if now_utc.tzinfo is None else now_utc

    offset_minutes = parse_legacy_utc_offset(timezone)
    if offset_minutes is not None:
        local = aware.astimezone(UTC) + timedelta(minutes=offset_minutes)
        mode: Literal["iana", "legacy-offset"] = "legacy-offset"
    else:
        if not is_valid_timezone(timezone):
            raise ValueError(f"Invalid timezone: {timezone!r}")
        local = aware.astimezone(ZoneInfo(timezone))
        mode = "iana"

    return LocalDateParts(
        year=local.year,
        month=local.month,
        day=local.day,
        hour=local.hour,
        minute=local.minute,
        mode=mode,
    )


def parse_local_time(value: str, interval_minutes: int = 15) -> tuple[int, int] | None:
    """Parse an ``HH:MM`` send time aligned to ``interval_minutes``.

    Returns (hour, minute) or None if the value is malformed or misaligned.
    """
    match = re.fullmatch(r"(\d{2}):(\d{2})", value.strip())
    if not match:
        return None

    hour, minute = int(match.group(1)), int(match.group(2))
    if hour > 23 or minute > 59 or minute % interval_minutes != 0:
        return None

    return hour, minute


def is_in_send_window(
    now_hour: int,
    now_minute: int,
    send_hour: int,
    send_minute: int,
    window_minutes: int = 15,
) -> bool:
    """Check if local time falls in [send time, send time + window).

    A cron firing every ``window_minutes`` hits each window exactly once.
    """
    diff = (now_hour * 60 + now_minute) - (send_hour * 60 + send_minute)
    return 0 <= diff < window_minutes
