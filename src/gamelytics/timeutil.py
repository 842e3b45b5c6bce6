"""Time helpers: the millisecond clock, calendar buckets, and time references.

Supports:
- ISO format: "2025-01-15", "2025-01-15T14:30:00"
- Relative: "7 days ago", "2 weeks ago", "1 month ago"
- Named: "yesterday", "today", "last week", "last month"
"""

import re
import time
from datetime import datetime, timedelta, timezone

from dateutil import parser as dateparser
from dateutil.relativedelta import relativedelta


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


def to_datetime(ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def to_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are treated as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def day_key(ms: int) -> str:
    """UTC calendar day, e.g. ``2025-01-15``."""
    return to_datetime(ms).date().isoformat()


def week_key(ms: int) -> str:
    """ISO week, e.g. ``2025-W03``."""
    year, week, _ = to_datetime(ms).isocalendar()
    return f"{year}-W{week:02d}"


def parse_time_reference(ref: str, now: datetime | None = None) -> datetime:
    """Parse human-friendly time references.

    Args:
        ref: Time reference string
        now: Reference point for relative times (default: utcnow)

    Returns:
        Parsed datetime (timezone-aware UTC)

    Raises:
        ValueError: If the reference cannot be parsed

    Examples:
        >>> parse_time_reference("2025-01-15")
        datetime(2025, 1, 15, 0, 0, tzinfo=timezone.utc)

        >>> parse_time_reference("7 days ago")  # relative to now
        datetime(...)
    """
    if now is None:
        now = datetime.now(timezone.utc)

    ref = ref.strip().lower()

    if ref == "yesterday":
        return (now - timedelta(days=1)).replace(hour=0, minute=0, second=0, microsecond=0)
    if ref == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if ref == "last week":
        return now - timedelta(weeks=1)
    if ref == "last month":
        return now - relativedelta(months=1)

    ago_match = re.match(r"(\d+)\s*(second|minute|hour|day|week|month)s?\s*ago", ref)
    if ago_match:
        amount = int(ago_match.group(1))
        unit = ago_match.group(2)

        if unit == "month":
            return now - relativedelta(months=amount)
        return now - timedelta(**{f"{unit}s": amount})

    try:
        parsed = dateparser.parse(ref)
        if parsed is None:
            raise ValueError(f"Cannot parse time reference: {ref}")

        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)

        return parsed
    except (ValueError, OverflowError, dateparser.ParserError) as e:
        raise ValueError(f"Cannot parse time reference: {ref}") from e


def parse_time_reference_ms(ref: str, now: datetime | None = None) -> int:
    """Same as parse_time_reference, returning epoch milliseconds."""
    return to_ms(parse_time_reference(ref, now))


def format_relative_time(ms: int, now: int | None = None) -> str:
    """Format an epoch-millisecond timestamp as "2 days ago" and similar."""
    from .constants import (
        MS_PER_SECOND,
        SECONDS_PER_DAY,
        SECONDS_PER_HOUR,
        SECONDS_PER_MINUTE,
        SECONDS_PER_WEEK,
    )

    if now is None:
        now = now_ms()

    seconds = (now - ms) // MS_PER_SECOND
    if seconds < 0:
        return "in the future"

    if seconds < SECONDS_PER_MINUTE:
        return f"{seconds} seconds ago"
    elif seconds < SECONDS_PER_HOUR:
        minutes = seconds // SECONDS_PER_MINUTE
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    elif seconds < SECONDS_PER_DAY:
        hours = seconds // SECONDS_PER_HOUR
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    elif seconds < SECONDS_PER_WEEK:
        days = seconds // SECONDS_PER_DAY
        return f"{days} day{'s' if days != 1 else ''} ago"
    else:
        weeks = seconds // SECONDS_PER_WEEK
        return f"{weeks} week{'s' if weeks != 1 else ''} ago"
