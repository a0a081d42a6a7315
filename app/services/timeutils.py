from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.settings import get_settings

DEFAULT_TIMEZONE = "Africa/Accra"


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)

    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)

    return ts_utc.astimezone(timezone.utc)


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or DEFAULT_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except (ZoneInfoNotFoundError, ValueError):
        return ZoneInfo(DEFAULT_TIMEZONE)


def to_local(ts_utc: datetime) -> datetime:
    return normalize_ts(ts_utc).astimezone(attendance_timezone())


def local_day(ts_utc: datetime) -> date:
    return to_local(ts_utc).date()


def local_day_bounds_utc(reference_ts_utc: datetime) -> tuple[datetime, datetime]:
    tz = attendance_timezone()
    local_start = datetime.combine(local_day(reference_ts_utc), time.min, tzinfo=tz)
    local_end = local_start + timedelta(days=1)
    return local_start.astimezone(timezone.utc), local_end.astimezone(timezone.utc)


def end_of_local_day_utc(day: date) -> datetime:
    """Last second (23:59:59) of ``day`` in the attendance timezone, as UTC."""
    local_end = datetime.combine(day, time(23, 59, 59), tzinfo=attendance_timezone())
    return local_end.astimezone(timezone.utc)
