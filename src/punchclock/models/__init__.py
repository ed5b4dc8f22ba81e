"""Data models for tasks, sessions and reports."""

from punchclock.models.base import PunchclockModel, ensure_utc, utc_now
from punchclock.models.reports import (
    DailyTime,
    EstimationQuality,
    EstimationReport,
    ForecastPoint,
    GroupBy,
    GroupedTime,
    ReportFilters,
    ReportPeriod,
    TaskEstimationAccuracy,
    TaskTimeTotal,
    TimeReport,
    TrendDirection,
    VelocityReport,
    VelocityTrendPoint,
)
from punchclock.models.session import (
    DurationBreakdown,
    SessionFilters,
    SessionState,
    SessionStats,
    TimeSession,
)
from punchclock.models.task import Project, Task, TaskFilters, TaskState

__all__ = [
    # Base
    "PunchclockModel",
    "ensure_utc",
    "utc_now",
    # Entities
    "Project",
    "Task",
    "TaskFilters",
    "TaskState",
    "TimeSession",
    "SessionFilters",
    "SessionState",
    "SessionStats",
    "DurationBreakdown",
    # Reports
    "ReportFilters",
    "ReportPeriod",
    "GroupBy",
    "TimeReport",
    "GroupedTime",
    "TaskTimeTotal",
    "DailyTime",
    "VelocityReport",
    "VelocityTrendPoint",
    "ForecastPoint",
    "TrendDirection",
    "EstimationReport",
    "EstimationQuality",
    "TaskEstimationAccuracy",
]
