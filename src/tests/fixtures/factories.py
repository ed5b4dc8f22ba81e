"""Factories for building model instances without a repository."""

from datetime import datetime, timedelta, timezone
from typing import Any

from punchclock.models import Task, TaskState, TimeSession

# Monday, fixed so day/week grouping is deterministic
T0 = datetime(2024, 1, 15, 9, 0, 0, tzinfo=timezone.utc)


def at(seconds: float = 0, base: datetime = T0) -> datetime:
    """T0 shifted by a number of seconds."""
    return base + timedelta(seconds=seconds)


class TaskFactory:
    """Factory for Task instances with sequential numbers."""

    _counter = 0

    @classmethod
    def create(cls, **overrides: Any) -> Task:
        cls._counter += 1
        defaults: dict[str, Any] = {
            "id": cls._counter,
            "project_id": 1,
            "number": f"PTC-{cls._counter}",
            "title": f"Task {cls._counter}",
            "state": TaskState.PENDING,
            "created_at": T0,
            "updated_at": T0,
        }
        defaults.update(overrides)
        return Task(**defaults)


class SessionFactory:
    """Factory for TimeSession snapshots in a given state."""

    @staticmethod
    def active(started_at: datetime = T0, **overrides: Any) -> TimeSession:
        return TimeSession(id=1, task_id=1, started_at=started_at, **overrides)

    @staticmethod
    def paused(started_at: datetime = T0, paused_after: int = 60, **overrides: Any) -> TimeSession:
        return TimeSession(
            id=1,
            task_id=1,
            started_at=started_at,
            paused_at=started_at + timedelta(seconds=paused_after),
            duration_seconds=paused_after,
            **overrides,
        )

    @staticmethod
    def stopped(started_at: datetime = T0, seconds: int = 60, task_id: int = 1, **overrides: Any) -> TimeSession:
        return TimeSession(
            id=overrides.pop("id", 1),
            task_id=task_id,
            started_at=started_at,
            stopped_at=started_at + timedelta(seconds=seconds),
            duration_seconds=seconds,
            **overrides,
        )
