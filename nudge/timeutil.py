"""Logical-day helpers.

A logical day starts at the day boundary hour (05:00 local by default), so
activity between midnight and the boundary still belongs to the previous
calendar date.
"""

import re
import time
from datetime import date, datetime, timedelta

DEFAULT_DAY_BOUNDARY_HOUR = 5

DATESTAMP_PATTERN = re.compile(r"\d{4}-\d{2}-\d{2}")
# Date with an optional clock time, as embedded in dataset rows
DATETIME_PATTERN = re.compile(r"(\d{4}-\d{2}-\d{2})(?:[ T](\d{2}):(\d{2})(?::(\d{2}))?)?")


def now_ts() -> float:
    return time.time()


def logical_date(ts: float | None = None, boundary_hour: int = DEFAULT_DAY_BOUNDARY_HOUR) -> date:
    """Return the logical date for a unix timestamp (default: now)."""
    if ts is None:
        ts = now_ts()
    moment = datetime.fromtimestamp(ts)
    return (moment - timedelta(hours=boundary_hour)).date()


def logical_today(now: float | None = None, boundary_hour: int = DEFAULT_DAY_BOUNDARY_HOUR) -> date:
    return logical_date(now, boundary_hour)


def same_logical_day(
    a: float, b: float, boundary_hour: int = DEFAULT_DAY_BOUNDARY_HOUR
) -> bool:
    return logical_date(a, boundary_hour) == logical_date(b, boundary_hour)


def parse_embedded_datetime(text: str) -> datetime | None:
    """Parse the last ``YYYY-MM-DD[ HH:MM[:SS]]`` found in text.

    A bare date is read as local midnight. Returns None when nothing parses.
    """
    matches = list(DATETIME_PATTERN.finditer(text))
    for match in reversed(matches):
        day, hour, minute, second = match.groups()
        try:
            parsed = datetime.strptime(day, "%Y-%m-%d")
            if hour is not None:
                parsed = parsed.replace(
                    hour=int(hour), minute=int(minute), second=int(second or 0)
                )
            return parsed
        except ValueError:
            continue
    return None


def format_posted(ts: float, precise: bool = False) -> str:
    """Render a posted time: integer seconds, or 7 fractional digits."""
    if precise:
        return f"{ts:.7f}"
    return str(int(ts))
