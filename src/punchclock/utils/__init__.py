"""Shared utilities."""

from punchclock.utils.logging import get_logger, setup_logging
from punchclock.utils.metrics import get_metrics
from punchclock.utils.timefmt import format_duration, parse_duration, parse_time_estimate

__all__ = [
    "get_logger",
    "setup_logging",
    "get_metrics",
    "format_duration",
    "parse_duration",
    "parse_time_estimate",
]
