from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional, Tuple
from zoneinfo import ZoneInfo


UTC = timezone.utc


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def midnight_utc(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=UTC)


def local_zone(name: Optional[str] = None) -> tzinfo:
    """Return ``ZoneInfo(name)`` or the system local zone."""

    if name:
        return ZoneInfo(name)
    zone = datetime.now().astimezone().tzinfo
    return zone or UTC


def local_day_bounds(
    now: Optional[datetime] = None, zone: Optional[tzinfo] = None
) -> Tuple[datetime, datetime]:
    """Start and end of the local calendar day containing ``now``."""

    zone = zone or local_zone()
    current = (ensure_utc(now) or utc_now()).astimezone(zone)
    start = datetime.combine(current.date(), time.min, tzinfo=zone)
    end = start + timedelta(days=1) - timedelta(microseconds=1)
    return start, end


def time_block(
    day: date, start_hour: int, minutes: int, zone: Optional[tzinfo] = None
) -> Tuple[datetime, datetime]:
    """Block of ``minutes`` starting at ``start_hour`` local time on ``day``."""

    zone = zone or local_zone()
    start = datetime.combine(day, time(hour=start_hour), tzinfo=zone)
    return start, start + timedelta(minutes=max(minutes, 1))


def _normalize_fraction(s: str) -> str:
    """Pad or trim fractional seconds to 6 digits."""

    digits = s[:6]
    if len(digits) < 6:
        digits = digits + "0" * (6 - len(digits))
    return digits


def parse_rfc3339(s: Optional[str]) -> Optional[datetime]:
    """Parse a RFC3339 string and return a timezone-aware UTC datetime."""

    if not s:
        return None

    value = s.strip()
    if not value:
        return None

    if value.endswith("Z"):
        value = value[:-1] + "+00:00"

    if "." in value:
        head, tail = value.split(".", 1)
        tz_sign = "+"
        tz_suffix = "00:00"
        if "+" in tail:
            frac, tz_suffix = tail.split("+", 1)
            tz_sign = "+"
        elif "-" in tail:
            frac, tz_suffix = tail.split("-", 1)
            tz_sign = "-"
        else:
            frac = tail
        frac = _normalize_fraction(frac)
        value = f"{head}.{frac}{tz_sign}{tz_suffix}"
    try:
        dt = datetime.fromisoformat(value)
    except ValueError:
        return None

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    else:
        dt = dt.astimezone(UTC)
    return dt


def to_rfc3339_utc(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to RFC3339 in UTC."""

    if dt is None:
        return None
    value = ensure_utc(dt)
    if value is None:
        return None
    return value.replace(microsecond=0).isoformat().replace("+00:00", "Z")


__all__ = [
    "UTC",
    "ensure_utc",
    "local_day_bounds",
    "local_zone",
    "midnight_utc",
    "parse_rfc3339",
    "time_block",
    "to_rfc3339_utc",
    "utc_now",
]
