"""Time session model and session query types."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

from punchclock.models.base import ensure_utc, ensure_utc_optional, utc_now


class SessionState(str, Enum):
    """Derived session state. Never stored."""

    ACTIVE = "active"
    PAUSED = "paused"
    STOPPED = "stopped"


class TimeSession(BaseModel):
    """One tracking interval on one task.

    Snapshots are frozen; transitions produce new instances (see
    ``punchclock.core.session_state``). The model supports a single
    pause/resume pair per session.
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(default=0, ge=0, description="Storage-assigned identifier (0 until persisted)")
    task_id: int = Field(..., gt=0)
    started_at: datetime
    paused_at: datetime | None = None
    resumed_at: datetime | None = None
    stopped_at: datetime | None = None
    duration_seconds: int = Field(default=0, ge=0, description="Sum of active intervals in whole seconds")
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("started_at", "created_at", "updated_at")
    @classmethod
    def _normalize_required(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @field_validator("paused_at", "resumed_at", "stopped_at")
    @classmethod
    def _normalize_optional(cls, v: datetime | None) -> datetime | None:
        return ensure_utc_optional(v)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def state(self) -> SessionState:
        if self.stopped_at is not None:
            return SessionState.STOPPED
        if self.paused_at is not None and self.resumed_at is None:
            return SessionState.PAUSED
        return SessionState.ACTIVE

    @property
    def is_open(self) -> bool:
        """True while the session has not been stopped."""
        return self.stopped_at is None


class SessionFilters(BaseModel):
    """Selection criteria for SessionRepository.list()."""

    task_id: int | None = None
    task_ids: list[int] | None = None
    started_from: datetime | None = None
    started_to: datetime | None = None
    state: SessionState | None = None

    @field_validator("started_from", "started_to")
    @classmethod
    def _normalize_bounds(cls, v: datetime | None) -> datetime | None:
        return ensure_utc_optional(v)

    def matches(self, session: TimeSession) -> bool:
        if self.task_id is not None and session.task_id != self.task_id:
            return False
        if self.task_ids is not None and session.task_id not in self.task_ids:
            return False
        if self.started_from and session.started_at < self.started_from:
            return False
        if self.started_to and session.started_at > self.started_to:
            return False
        if self.state is not None and session.state != self.state:
            return False
        return True


class DurationBreakdown(BaseModel):
    """Detailed duration figures for one session at a given instant."""

    total_seconds: int
    active_seconds: int
    paused_seconds: int
    is_active: bool
    is_paused: bool
    is_completed: bool


class SessionStats(BaseModel):
    """Aggregate counts and durations over a set of sessions."""

    total_sessions: int = 0
    total_duration: int = 0
    average_duration: float = 0.0
    longest_session: int = 0
    shortest_session: int = 0
    active_sessions: int = 0
    paused_sessions: int = 0
    completed_sessions: int = 0
