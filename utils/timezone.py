"""UTC-everywhere time handling and the injectable clock."""

from datetime import datetime, timezone
from typing import Callable

# Anything that returns the current aware datetime. Services take one of these
# so tests can pin "now" instead of reading the wall clock.
Clock = Callable[[], datetime]


def now_utc() -> datetime:
    """
    Current time in UTC.

    This is the default Clock. Business rules never call it directly;
    they receive `now` from whoever owns the clock.
    """
    return datetime.now(timezone.utc)


def fixed_clock(moment: datetime) -> Clock:
    """
    Clock that always returns the same instant.

    Raises ValueError if the datetime is naive.
    """
    pinned = to_utc(moment)
    return lambda: pinned


def to_utc(dt: datetime) -> datetime:
    """
    Convert a datetime to UTC.

    Raises ValueError if datetime is naive (no timezone).
    """
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot convert naive datetime to UTC. Datetime must be timezone-aware."
        )
    return dt.astimezone(timezone.utc)


def parse_iso(iso_string: str) -> datetime:
    """
    Parse ISO 8601 datetime string to UTC datetime.

    Accepts a trailing 'Z'. Raises ValueError if string has no timezone info.
    """
    if iso_string.endswith("Z"):
        iso_string = iso_string[:-1] + "+00:00"
    dt = datetime.fromisoformat(iso_string)
    if dt.tzinfo is None:
        raise ValueError(
            "Cannot parse naive datetime string. "
            "Include timezone offset (e.g., 'Z' or '+00:00')."
        )
    return to_utc(dt)
