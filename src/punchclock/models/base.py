"""Common model configuration and timestamp helpers."""

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict


def utc_now() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC.

    Naive datetimes are taken to already be in UTC, which is how the storage
    layer writes them.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_utc_optional(value: datetime | None) -> datetime | None:
    """Like ensure_utc, passing None through."""
    if value is None:
        return None
    return ensure_utc(value)


class PunchclockModel(BaseModel):
    """Base for entity models."""

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        use_enum_values=True,
    )
