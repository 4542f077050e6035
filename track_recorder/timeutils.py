"""Time parsing and formatting utilities."""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta, timezone

from zoneinfo import ZoneInfo

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def now_ms() -> int:
    """Current wall-clock time as Unix epoch milliseconds."""

    return time.time_ns() // 1_000_000


def tzinfo_from_name(tz_name: str) -> timezone:
    """Create tzinfo from an IANA timezone name.

    Args:
        tz_name: Timezone name like "Europe/Berlin" or "UTC".

    Returns:
        tzinfo instance.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        raise ValueError(f"Invalid timezone: {tz_name!r}. Example: Europe/Berlin") from exc


def dt_from_epoch_ms(epoch_ms: int, tz_name: str = "UTC") -> datetime:
    """Convert epoch milliseconds to a timezone-aware datetime.

    The conversion is exact to the millisecond (no float round-trip).
    """

    dt = _EPOCH + timedelta(milliseconds=epoch_ms)
    if tz_name == "UTC":
        return dt
    return dt.astimezone(tzinfo_from_name(tz_name))


def epoch_ms_from_dt(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds.

    Args:
        dt: Datetime. If naive, will be treated as UTC.

    Returns:
        Epoch milliseconds (sub-millisecond part truncated).
    """

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return (dt - _EPOCH) // timedelta(milliseconds=1)


def epoch_ms_from_iso(text: str) -> int | None:
    """Parse an ISO-8601 timestamp; None if it cannot be parsed.

    Naive timestamps are taken as UTC; a trailing "Z" is accepted.
    """

    s = text.strip()
    if not s:
        return None
    if s.endswith(("Z", "z")):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return epoch_ms_from_dt(dt)
