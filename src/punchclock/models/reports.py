"""Report models produced by the reporting engine."""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from punchclock.models.base import ensure_utc_optional
from punchclock.models.session import TimeSession

ReportPeriod = Literal["week", "month"]
GroupBy = Literal["project", "task", "tags", "day", "week", "month"]


class EstimationQuality(str, Enum):
    """Qualitative band for average time-estimation accuracy."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"


class ReportFilters(BaseModel):
    """Scope shared by all reports.

    Attributes:
        project_id: Restrict to one project's tasks
        task_id: Restrict to a single task
        tags: Restrict to tasks carrying all of these tags
        from_date: Inclusive start of the reporting window
        to_date: Inclusive end of the reporting window
    """

    project_id: int | None = None
    task_id: int | None = None
    tags: list[str] = Field(default_factory=list)
    from_date: datetime | None = None
    to_date: datetime | None = None

    @field_validator("from_date", "to_date")
    @classmethod
    def _normalize_bounds(cls, v: datetime | None) -> datetime | None:
        return ensure_utc_optional(v)

    @property
    def scopes_tasks(self) -> bool:
        """True if the filters narrow the task set."""
        return self.project_id is not None or self.task_id is not None or bool(self.tags)


class TrendDirection(BaseModel):
    """Direction and magnitude of change between the last two trend samples."""

    increasing: bool = False
    change: float = 0.0


class GroupedTime(BaseModel):
    """Time totals for one group of sessions."""

    group: str
    total_time: int
    session_count: int
    average_session_time: float


class TaskTimeTotal(BaseModel):
    task_id: int
    total_time: int
    session_count: int


class DailyTime(BaseModel):
    date: str
    total_time: int
    session_count: int


class TimeReport(BaseModel):
    """Time totals over a set of sessions."""

    filters: ReportFilters
    total_time: int = 0
    session_count: int = 0
    average_session_time: float = 0.0
    longest_session: int = 0
    shortest_session: int = 0
    sessions: list[TimeSession] = Field(default_factory=list)
    groups: list[GroupedTime] = Field(default_factory=list)
    top_tasks: list[TaskTimeTotal] = Field(default_factory=list)
    daily_breakdown: list[DailyTime] = Field(default_factory=list)


class VelocityTrendPoint(BaseModel):
    """Velocity figures for one period-sized bucket of the trend series."""

    period: str
    period_start: datetime
    period_end: datetime
    velocity: float
    throughput: float
    completed_tasks: int
    total_time_spent: int


class ForecastPoint(BaseModel):
    period: str
    predicted_velocity: float
    predicted_tasks: int


class VelocityReport(BaseModel):
    """Completion velocity over a window.

    ``throughput`` is computed identically to ``velocity`` (tasks per day).
    Both are kept so consumers relying on either name keep working.
    """

    filters: ReportFilters
    period: ReportPeriod
    period_days: int = 0
    total_tasks: int = 0
    completed_tasks: int = 0
    total_time_spent: int = 0
    average_task_time: float = 0.0
    velocity: float = 0.0
    throughput: float = 0.0
    completion_rate: float = 0.0
    cycle_time: float = 0.0
    lead_time: float = 0.0
    trend: list[VelocityTrendPoint] = Field(default_factory=list)
    velocity_trend: TrendDirection = Field(default_factory=TrendDirection)
    throughput_trend: TrendDirection = Field(default_factory=TrendDirection)
    average_velocity: float = 0.0
    average_throughput: float = 0.0
    velocity_consistency: float = 100.0
    productivity_score: float = 0.0
    forecast: list[ForecastPoint] = Field(default_factory=list)


class TaskEstimationAccuracy(BaseModel):
    """Estimate versus actual time for one task.

    Accuracy and bias are only set when the task has a time estimate and at
    least one session in the reporting window.
    """

    task_id: int
    task_number: str
    task_title: str
    size_estimate: float | None = None
    estimate_seconds: float | None = None
    actual_seconds: int | None = None
    time_accuracy: float | None = None
    time_bias: float | None = None

    @property
    def is_sample(self) -> bool:
        return self.time_accuracy is not None


class EstimationReport(BaseModel):
    """Estimation accuracy and bias over a set of tasks.

    ``time_bias`` is positive when work took longer than estimated.
    """

    filters: ReportFilters
    total_tasks: int = 0
    tasks_with_estimates: int = 0
    tasks_with_time_estimates: int = 0
    tasks_with_size_estimates: int = 0
    estimation_coverage: float = 0.0
    time_estimation_coverage: float = 0.0
    size_estimation_coverage: float = 0.0
    average_time_estimate: float = 0.0
    average_size_estimate: float = 0.0
    average_actual_time: float = 0.0
    time_accuracy: float = 0.0
    time_bias: float = 0.0
    estimation_quality: EstimationQuality = EstimationQuality.POOR
    estimation_consistency: float = 100.0
    per_task_accuracy: list[TaskEstimationAccuracy] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @property
    def samples(self) -> list[TaskEstimationAccuracy]:
        return [a for a in self.per_task_accuracy if a.is_sample]

    def most_accurate(self, limit: int = 10) -> list[TaskEstimationAccuracy]:
        return sorted(self.samples, key=lambda a: a.time_accuracy or 0.0, reverse=True)[:limit]

    def least_accurate(self, limit: int = 10) -> list[TaskEstimationAccuracy]:
        return sorted(self.samples, key=lambda a: a.time_accuracy or 0.0)[:limit]

    def most_underestimated(self, limit: int = 10) -> list[TaskEstimationAccuracy]:
        """Tasks that overran their estimate the most."""
        over = [a for a in self.samples if (a.time_bias or 0.0) > 0]
        return sorted(over, key=lambda a: a.time_bias or 0.0, reverse=True)[:limit]

    def most_overestimated(self, limit: int = 10) -> list[TaskEstimationAccuracy]:
        """Tasks that finished furthest under their estimate."""
        under = [a for a in self.samples if (a.time_bias or 0.0) < 0]
        return sorted(under, key=lambda a: a.time_bias or 0.0)[:limit]
