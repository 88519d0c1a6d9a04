"""
Calendar helpers shared by the engine.

Slot arithmetic is done in integer minutes since midnight, and "today" is
always the salon's local calendar date. Nothing here converts through UTC,
which would move late-evening dates across midnight for zones ahead of UTC.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

WEEKDAYS = (
    "monday",
    "tuesday",
    "wednesday",
    "thursday",
    "friday",
    "saturday",
    "sunday",
)

MINUTES_PER_DAY = 24 * 60


def parse_hhmm(value: str) -> int:
    """Parse ``HH:MM`` (24h) into minutes since midnight."""
    raw = str(value or "").strip()
    hours, sep, minutes = raw.partition(":")
    if not sep or not hours.isdigit() or not minutes.isdigit():
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    total = int(hours) * 60 + int(minutes)
    if int(minutes) >= 60 or not 0 <= total <= MINUTES_PER_DAY:
        raise ValueError(f"Invalid time {value!r}, expected HH:MM")
    return total


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def minutes_of(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute


def at_minutes(day: date, minutes: int) -> datetime:
    return datetime.combine(day, time.min) + timedelta(minutes=minutes)


def weekday_name(day: date) -> str:
    return WEEKDAYS[day.weekday()]


def parse_local_date(value: str) -> date:
    """Parse ``YYYY-MM-DD`` as a plain calendar date (no time, no zone)."""
    return date.fromisoformat(str(value).strip()[:10])


def salon_zone(tz_name: str | None) -> ZoneInfo:
    try:
        return ZoneInfo((tz_name or "UTC").strip() or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo("UTC")


def local_now(tz_name: str | None) -> datetime:
    """Current salon wall-clock time as a naive datetime."""
    return datetime.now(timezone.utc).astimezone(salon_zone(tz_name)).replace(tzinfo=None)


def to_salon_local(value: datetime, tz_name: str | None) -> datetime:
    """Naive salon-local datetime; aware values are converted first."""
    if value.tzinfo is None:
        return value.replace(second=0, microsecond=0)
    local = value.astimezone(salon_zone(tz_name)).replace(tzinfo=None)
    return local.replace(second=0, microsecond=0)


def date_range(start: date, end: date) -> list[date]:
    days: list[date] = []
    cursor = start
    while cursor <= end:
        days.append(cursor)
        cursor += timedelta(days=1)
    return days
