"""Project and task models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from punchclock.models.base import PunchclockModel, ensure_utc, ensure_utc_optional, utc_now


class TaskState(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class Project(PunchclockModel):
    """A named container of tasks."""

    id: int = Field(default=0, ge=0, description="Storage-assigned identifier (0 until persisted)")
    name: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _normalize_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class Task(PunchclockModel):
    """A unit of work that time sessions are tracked against.

    Attributes:
        id: Storage-assigned identifier
        project_id: Owning project
        number: Human-readable number, unique within the project (e.g. "PTC-12")
        title: Short summary
        description: Optional details
        state: Lifecycle state
        size_estimate: Story points, positive when set
        time_estimate_hours: Estimated effort in hours, positive when set
        tags: Free-form tags, unique per task, case-sensitive
    """

    id: int = Field(default=0, ge=0)
    project_id: int = Field(..., gt=0)
    number: str = Field(..., min_length=1, max_length=50)
    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = None
    state: TaskState = TaskState.PENDING
    size_estimate: float | None = Field(default=None, gt=0)
    time_estimate_hours: float | None = Field(default=None, gt=0)
    tags: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, v: list[str]) -> list[str]:
        """Strip tags, drop empties and duplicates, keep first-seen order."""
        seen: list[str] = []
        for tag in v:
            tag = tag.strip()
            if tag and tag not in seen:
                seen.append(tag)
        return seen

    @field_validator("created_at", "updated_at")
    @classmethod
    def _normalize_timestamps(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def has_estimate(self) -> bool:
        """True when either a size or a time estimate is set."""
        return self.size_estimate is not None or self.time_estimate_hours is not None

    def is_completed(self) -> bool:
        return self.state == TaskState.COMPLETED


class TaskFilters(BaseModel):
    """Selection criteria for TaskRepository.list().

    A task matches ``tags`` only when it carries every listed tag.
    """

    project_id: int | None = None
    state: TaskState | None = None
    tags: list[str] = Field(default_factory=list)
    created_from: datetime | None = None
    created_to: datetime | None = None
    updated_from: datetime | None = None
    updated_to: datetime | None = None
    search: str | None = None

    @field_validator("created_from", "created_to", "updated_from", "updated_to")
    @classmethod
    def _normalize_bounds(cls, v: datetime | None) -> datetime | None:
        return ensure_utc_optional(v)

    def matches(self, task: Task) -> bool:
        """Check a task against every criterion (used by in-memory storage)."""
        if self.project_id is not None and task.project_id != self.project_id:
            return False
        if self.state is not None and task.state != self.state:
            return False
        if self.tags and not all(tag in task.tags for tag in self.tags):
            return False
        if self.created_from and task.created_at < self.created_from:
            return False
        if self.created_to and task.created_at > self.created_to:
            return False
        if self.updated_from and task.updated_at < self.updated_from:
            return False
        if self.updated_to and task.updated_at > self.updated_to:
            return False
        if self.search:
            needle = self.search.lower()
            haystack = f"{task.number} {task.title} {task.description or ''}".lower()
            if needle not in haystack:
                return False
        return True
