"""Duration formatting/parsing and calendar helpers.

All functions here are pure; nothing keeps state between calls.
"""

import calendar
import re
from datetime import datetime, timedelta

DURATION_PART_PATTERN = re.compile(r"(\d+)([dhms])")
TIME_ESTIMATE_PATTERN = re.compile(r"^(\d+(?:\.\d+)?)\s*([hmds])$", re.IGNORECASE)

_UNIT_SECONDS = {"d": 86400, "h": 3600, "m": 60, "s": 1}


def seconds_between(start: datetime, end: datetime) -> int:
    """Whole seconds from start to end, floored at millisecond precision.

    The result may be negative; callers decide whether that is an error.
    """
    delta_ms = (end - start) // timedelta(milliseconds=1)
    return delta_ms // 1000


def format_duration(seconds: float) -> str:
    """Render seconds as ``1d 2h 3m 4s``, omitting zero units.

    Negative input renders as ``0s``.
    """
    remaining = max(0, int(seconds))
    days, remaining = divmod(remaining, 86400)
    hours, remaining = divmod(remaining, 3600)
    minutes, secs = divmod(remaining, 60)

    parts: list[str] = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def format_duration_short(seconds: float) -> str:
    """Render seconds as ``2h 5m``, ``5m`` or ``42s``."""
    seconds = max(0, int(seconds))
    hours, remaining = divmod(seconds, 3600)
    minutes = remaining // 60
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m"
    return f"{seconds}s"


def parse_duration(text: str) -> int:
    """Parse ``1d 2h 30m 15s`` style strings into seconds.

    Unrecognised text contributes nothing, so garbage parses to 0.
    """
    return sum(int(value) * _UNIT_SECONDS[unit] for value, unit in DURATION_PART_PATTERN.findall(text))


def parse_time_estimate(estimate: str) -> float:
    """Parse a single-unit estimate like ``2h``, ``30m``, ``1d`` or ``2.5h``.

    Returns:
        Estimate in seconds

    Raises:
        ValueError: If the string is not a number followed by one unit
    """
    match = TIME_ESTIMATE_PATTERN.match(estimate.strip())
    if not match:
        raise ValueError('Invalid time estimate format. Use format like "2h", "30m", "1d", or "2.5h"')
    value = float(match.group(1))
    return value * _UNIT_SECONDS[match.group(2).lower()]


def date_string(value: datetime) -> str:
    return value.strftime("%Y-%m-%d")


def start_of_day(value: datetime) -> datetime:
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def end_of_day(value: datetime) -> datetime:
    return value.replace(hour=23, minute=59, second=59, microsecond=999000)


def start_of_week(value: datetime) -> datetime:
    """Sunday 00:00 of the week containing value."""
    days_since_sunday = (value.weekday() + 1) % 7
    return start_of_day(value - timedelta(days=days_since_sunday))


def start_of_month(value: datetime) -> datetime:
    return start_of_day(value.replace(day=1))


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
