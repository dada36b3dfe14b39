"""
Clock-time arithmetic and date parsing.

Slot and booking times are local wall-clock times of the service, pinned to
the single timezone in Config.SERVICE_TIMEZONE. Payment timestamps are kept in
naive UTC, like every other *_at column in the app.
"""
import re
from datetime import date, datetime, time, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app, has_app_context

from scheduling.errors import FormatError

MINUTES_PER_DAY = 24 * 60
DEFAULT_TIMEZONE = "America/Argentina/Buenos_Aires"

_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})$")
_LEGACY_DATE_RE = re.compile(r"^(\d{2})/(\d{2})/(\d{4})$")


def to_minutes(value: str) -> int:
    """'HH:MM' -> minutes since midnight."""
    if not isinstance(value, str):
        raise FormatError(f"Invalid time {value!r}. Use HH:MM")
    m = _TIME_RE.match(value.strip())
    if not m:
        raise FormatError(f"Invalid time {value!r}. Use HH:MM")
    hours, minutes = int(m.group(1)), int(m.group(2))
    if hours > 23 or minutes > 59:
        raise FormatError(f"Invalid time {value!r}. Use HH:MM")
    return hours * 60 + minutes


def to_time(minutes: int) -> str:
    """Minutes since midnight -> zero-padded 'HH:MM'. Wraps past midnight."""
    if minutes < 0:
        raise FormatError(f"Invalid minute offset {minutes}")
    minutes = minutes % MINUTES_PER_DAY
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def duration(start: str, end: str) -> int:
    start_m = to_minutes(start)
    end_m = to_minutes(end)
    # end before start: the range crosses midnight
    if end_m < start_m:
        return (MINUTES_PER_DAY - start_m) + end_m
    return end_m - start_m


def normalize_time(value: str) -> str:
    """'9:00' -> '09:00'."""
    return to_time(to_minutes(value))


def parse_date(value) -> date:
    # Accepts ISO "YYYY-MM-DD" and the legacy "DD/MM/YYYY" used by older clients
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str) or not value.strip():
        raise FormatError("Invalid date. Use YYYY-MM-DD")
    raw = value.strip()
    legacy = _LEGACY_DATE_RE.match(raw)
    try:
        if legacy:
            return date(int(legacy.group(3)), int(legacy.group(2)), int(legacy.group(1)))
        return date.fromisoformat(raw)
    except ValueError:
        raise FormatError(f"Invalid date {value!r}. Use YYYY-MM-DD") from None


def service_timezone() -> ZoneInfo:
    name = DEFAULT_TIMEZONE
    if has_app_context():
        name = current_app.config.get("SERVICE_TIMEZONE", DEFAULT_TIMEZONE)
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError:
        raise FormatError(f"Unknown timezone {name!r}") from None


def service_now() -> datetime:
    """Current wall-clock time in the service timezone, naive."""
    return datetime.now(service_timezone()).replace(tzinfo=None)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _parse_iso(value) -> datetime:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        raise FormatError("Invalid datetime. Use ISO e.g. 2026-01-20T18:00:00")
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        raise FormatError(f"Invalid datetime {value!r}. Use ISO e.g. 2026-01-20T18:00:00") from None


def parse_datetime(value) -> datetime:
    """
    ISO datetime -> naive wall-clock in the service timezone.
    Naive input is taken to already be service-local.
    """
    dt = _parse_iso(value)
    if dt.tzinfo is not None:
        dt = dt.astimezone(service_timezone()).replace(tzinfo=None)
    return dt


def parse_utc_datetime(value) -> datetime:
    """ISO datetime -> naive UTC. Naive input is taken to already be UTC."""
    dt = _parse_iso(value)
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def combine(day: date, clock: str) -> datetime:
    minutes = to_minutes(clock)
    return datetime.combine(day, time(minutes // 60, minutes % 60))


def minutes_of(dt: datetime) -> int:
    return dt.hour * 60 + dt.minute
