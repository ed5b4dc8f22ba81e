"""structlog setup for punchclock.

Events are routed through stdlib logging so one handler list serves both
structlog loggers and third-party libraries (aiosqlite, click).
"""

import logging
import sys
from functools import lru_cache
from typing import IO, Any

import structlog
from structlog.types import EventDict, Processor

from punchclock.config import Settings, get_settings
from punchclock.utils.timefmt import format_duration

# Libraries that are chatty below WARNING
QUIET_LOGGERS = ("aiosqlite", "asyncio")

REDACTED = "***REDACTED***"
SENSITIVE_KEY_PARTS = ("password", "secret", "token", "api_key", "authorization", "credential")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: REDACTED if _is_sensitive(str(k)) else _redact(v) for k, v in value.items()}
    return value


def redact_sensitive(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask values under secret-looking keys, including inside nested dicts."""
    return _redact(event_dict)


def add_duration_text(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
    """Render ``duration_seconds`` as ``duration`` ("1h 5m") next to the raw value."""
    seconds = event_dict.get("duration_seconds")
    if isinstance(seconds, (int, float)) and "duration" not in event_dict:
        event_dict["duration"] = format_duration(seconds)
    return event_dict


def shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        add_duration_text,
        redact_sensitive,
    ]


def _handler(target: logging.Handler, renderer: Processor, pre_chain: list[Processor]) -> logging.Handler:
    target.setFormatter(structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=pre_chain))
    return target


def _console_renderer(stream: IO[str], log_format: str) -> Processor:
    if log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=stream.isatty())


def setup_logging(settings: Settings | None = None, use_stderr: bool = False) -> None:
    """Configure structured logging.

    Args:
        settings: Source of log_level, log_format and log_file (defaults to get_settings())
        use_stderr: Log to stderr, keeping stdout free for command output
    """
    settings = settings or get_settings()
    pre_chain = shared_processors()
    stream = sys.stderr if use_stderr else sys.stdout

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handlers = [_handler(logging.StreamHandler(stream), _console_renderer(stream, settings.log_format), pre_chain)]
    if settings.log_file:
        # Files always get JSON lines
        handlers.append(
            _handler(logging.FileHandler(settings.log_file), structlog.processors.JSONRenderer(), pre_chain)
        )

    root = logging.getLogger()
    for old in root.handlers[:]:
        root.removeHandler(old)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(getattr(logging, settings.log_level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


@lru_cache(maxsize=128)
def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a cached structured logger by name."""
    return structlog.get_logger(name)


def bind_context(**values: Any) -> None:
    """Attach key/values (e.g. ``command="track start"``) to every later event."""
    structlog.contextvars.bind_contextvars(**values)
