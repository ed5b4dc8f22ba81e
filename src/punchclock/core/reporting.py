"""Reporting engine: time, velocity and estimation-accuracy reports.

Each report fetches the scoped task set and the sessions started inside the
reporting window, then aggregates. Aggregation helpers are module-level pure
functions; empty inputs never raise and every ratio falls back to 0 when its
denominator is 0.
"""

import math
import statistics
import time
from collections import defaultdict
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone, tzinfo

from punchclock.models import (
    DailyTime,
    EstimationQuality,
    EstimationReport,
    ForecastPoint,
    GroupBy,
    GroupedTime,
    ReportFilters,
    ReportPeriod,
    SessionFilters,
    Task,
    TaskEstimationAccuracy,
    TaskFilters,
    TaskTimeTotal,
    TimeReport,
    TimeSession,
    TrendDirection,
    VelocityReport,
    VelocityTrendPoint,
)
from punchclock.storage.base import SessionRepository, TaskRepository
from punchclock.utils.logging import get_logger
from punchclock.utils.metrics import get_metrics
from punchclock.utils.timefmt import add_months, date_string, start_of_day, start_of_month, start_of_week

logger = get_logger(__name__)
metrics = get_metrics()

DEFAULT_PERIOD_DAYS = {"week": 7, "month": 30}
SECONDS_PER_DAY = 86400

# Velocity at which the velocity half of the productivity score saturates
EXCELLENT_VELOCITY = 10.0

COVERAGE_THRESHOLD = 50.0
ACCURACY_THRESHOLD = 60.0
BIAS_THRESHOLD = 20.0
CONSISTENCY_THRESHOLD = 70.0


def ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0.0 when the denominator is 0."""
    return numerator / denominator if denominator else 0.0


def percentage(part: float, whole: float) -> float:
    return ratio(part, whole) * 100


def period_days(from_date: datetime | None, to_date: datetime | None, period: ReportPeriod) -> int:
    """Whole days spanned by the window, rounded up.

    Falls back to the nominal period length (7 or 30) when either bound is
    missing.
    """
    if from_date is None or to_date is None:
        return DEFAULT_PERIOD_DAYS[period]
    return math.ceil((to_date - from_date) / timedelta(days=1))


def next_period_start(value: datetime, period: ReportPeriod) -> datetime:
    if period == "week":
        return value + timedelta(days=7)
    return add_months(value, 1)


def consistency(values: list[float]) -> float:
    """100 minus the coefficient of variation as a percentage, floored at 0.

    Fewer than two values, or identical values, count as fully consistent.
    """
    if len(values) < 2:
        return 100.0
    mean = statistics.fmean(values)
    deviation = statistics.pstdev(values)
    if deviation == 0:
        return 100.0
    if mean == 0:
        return 0.0
    return max(0.0, 100.0 - deviation / abs(mean) * 100)


def trend_direction(values: list[float]) -> TrendDirection:
    """Relative change between the last two values."""
    if len(values) < 2:
        return TrendDirection()
    previous, recent = values[-2], values[-1]
    change = percentage(recent - previous, previous)
    return TrendDirection(increasing=recent > previous, change=abs(change))


# --- Time report ------------------------------------------------------------


def summarize_sessions(sessions: list[TimeSession]) -> dict[str, float]:
    """Total, count, average, longest and shortest session durations."""
    durations = [s.duration_seconds for s in sessions]
    total = sum(durations)
    return {
        "total_time": total,
        "session_count": len(durations),
        "average_session_time": ratio(total, len(durations)),
        "longest_session": max(durations, default=0),
        "shortest_session": min(durations, default=0),
    }


def _group_keys(
    session: TimeSession,
    group_by: GroupBy,
    tasks_by_id: dict[int, Task],
    tz: tzinfo,
) -> list[str]:
    """Group labels a session belongs to. Only ``tags`` can yield several."""
    task = tasks_by_id.get(session.task_id)
    local_start = session.started_at.astimezone(tz)

    if group_by == "task":
        return [task.number if task else f"Task {session.task_id}"]
    if group_by == "project":
        return [f"Project {task.project_id}" if task else "Unknown project"]
    if group_by == "tags":
        if task and task.tags:
            return list(task.tags)
        return ["(untagged)"]
    if group_by == "day":
        return [date_string(local_start)]
    if group_by == "week":
        return [date_string(start_of_week(local_start))]
    return [date_string(start_of_month(local_start))]


def group_sessions(
    sessions: list[TimeSession],
    group_by: GroupBy,
    tasks_by_id: dict[int, Task] | None = None,
    tz: tzinfo = timezone.utc,
) -> list[GroupedTime]:
    """Time totals per group, largest total first.

    A session on a task with several tags counts toward each tag's group.
    """
    tasks_by_id = tasks_by_id or {}
    groups: dict[str, list[int]] = defaultdict(list)
    for session in sessions:
        for key in _group_keys(session, group_by, tasks_by_id, tz):
            groups[key].append(session.duration_seconds)

    result = [
        GroupedTime(
            group=key,
            total_time=sum(durations),
            session_count=len(durations),
            average_session_time=ratio(sum(durations), len(durations)),
        )
        for key, durations in groups.items()
    ]
    return sorted(result, key=lambda g: (-g.total_time, g.group))


def top_tasks(sessions: list[TimeSession], limit: int = 10) -> list[TaskTimeTotal]:
    totals: dict[int, list[int]] = defaultdict(list)
    for session in sessions:
        totals[session.task_id].append(session.duration_seconds)
    ranked = [
        TaskTimeTotal(task_id=task_id, total_time=sum(durations), session_count=len(durations))
        for task_id, durations in totals.items()
    ]
    return sorted(ranked, key=lambda t: (-t.total_time, t.task_id))[:limit]


def daily_breakdown(sessions: list[TimeSession], tz: tzinfo = timezone.utc) -> list[DailyTime]:
    days: dict[str, list[int]] = defaultdict(list)
    for session in sessions:
        days[date_string(start_of_day(session.started_at.astimezone(tz)))].append(session.duration_seconds)
    return [
        DailyTime(date=day, total_time=sum(durations), session_count=len(durations))
        for day, durations in sorted(days.items())
    ]


# --- Velocity report --------------------------------------------------------


def aggregate_velocity(
    tasks: list[Task],
    sessions: list[TimeSession],
    days: int,
) -> dict[str, float]:
    """Completion counts and per-day rates for one window."""
    completed = [t for t in tasks if t.is_completed()]
    total_time = sum(s.duration_seconds for s in sessions)
    per_day = ratio(len(completed), days) if days > 0 else 0.0
    return {
        "total_tasks": len(tasks),
        "completed_tasks": len(completed),
        "total_time_spent": total_time,
        "average_task_time": ratio(total_time, len(completed)),
        "velocity": per_day,
        "throughput": per_day,
        "completion_rate": percentage(len(completed), len(tasks)),
    }


def lead_time(tasks: Iterable[Task]) -> float:
    """Mean seconds from creation to last update over completed tasks."""
    spans = [(t.updated_at - t.created_at).total_seconds() for t in tasks if t.is_completed()]
    return ratio(sum(spans), len(spans))


def _in_window(value: datetime, start: datetime, end: datetime, inclusive_end: bool) -> bool:
    if inclusive_end:
        return start <= value <= end
    return start <= value < end


def velocity_trend(
    tasks: list[Task],
    sessions: list[TimeSession],
    from_date: datetime,
    to_date: datetime,
    period: ReportPeriod,
) -> list[VelocityTrendPoint]:
    """One velocity sample per period-sized bucket between the bounds.

    Buckets are half-open except the last, which is clipped to ``to_date``
    and includes it.
    """
    points: list[VelocityTrendPoint] = []
    bucket_start = from_date
    while bucket_start < to_date:
        bucket_end = min(next_period_start(bucket_start, period), to_date)
        last = bucket_end == to_date
        bucket_tasks = [t for t in tasks if _in_window(t.updated_at, bucket_start, bucket_end, last)]
        bucket_sessions = [s for s in sessions if _in_window(s.started_at, bucket_start, bucket_end, last)]
        figures = aggregate_velocity(
            bucket_tasks,
            bucket_sessions,
            period_days(bucket_start, bucket_end, period),
        )
        points.append(
            VelocityTrendPoint(
                period=date_string(bucket_start),
                period_start=bucket_start,
                period_end=bucket_end,
                velocity=figures["velocity"],
                throughput=figures["throughput"],
                completed_tasks=int(figures["completed_tasks"]),
                total_time_spent=int(figures["total_time_spent"]),
            )
        )
        bucket_start = bucket_end
    return points


def forecast(
    average_velocity: float,
    period: ReportPeriod,
    start: datetime,
    periods: int = 4,
) -> list[ForecastPoint]:
    """Project the average velocity forward over the next periods."""
    points: list[ForecastPoint] = []
    current = start
    for _ in range(periods):
        current = next_period_start(current, period)
        points.append(
            ForecastPoint(
                period=date_string(current),
                predicted_velocity=average_velocity,
                predicted_tasks=round(average_velocity * DEFAULT_PERIOD_DAYS[period]),
            )
        )
    return points


# --- Estimation report ------------------------------------------------------


def actual_time_by_task(sessions: list[TimeSession]) -> dict[int, int]:
    totals: dict[int, int] = defaultdict(int)
    for session in sessions:
        totals[session.task_id] += session.duration_seconds
    return dict(totals)


def estimate_accuracy(task: Task, actual_seconds: int | None) -> TaskEstimationAccuracy:
    """Accuracy and bias of one task's time estimate.

    accuracy = 100 - |actual - estimate| / estimate * 100 (can go negative)
    bias = (actual - estimate) / estimate * 100 (positive: took longer)
    """
    estimate_seconds = task.time_estimate_hours * 3600 if task.time_estimate_hours is not None else None
    accuracy = bias = None
    if estimate_seconds and actual_seconds is not None:
        deviation = (actual_seconds - estimate_seconds) / estimate_seconds * 100
        accuracy = 100 - abs(deviation)
        bias = deviation

    return TaskEstimationAccuracy(
        task_id=task.id,
        task_number=task.number,
        task_title=task.title,
        size_estimate=task.size_estimate,
        estimate_seconds=estimate_seconds,
        actual_seconds=actual_seconds,
        time_accuracy=accuracy,
        time_bias=bias,
    )


def estimation_quality(accuracy: float) -> EstimationQuality:
    if accuracy >= 80:
        return EstimationQuality.EXCELLENT
    if accuracy >= 60:
        return EstimationQuality.GOOD
    if accuracy >= 40:
        return EstimationQuality.FAIR
    return EstimationQuality.POOR


def estimation_recommendations(report: EstimationReport) -> list[str]:
    """Free-text hints keyed off coverage, accuracy, bias and consistency."""
    if report.tasks_with_estimates == 0:
        return []

    hints: list[str] = []
    if report.estimation_coverage < COVERAGE_THRESHOLD:
        hints.append("Increase estimation coverage - many tasks lack estimates")

    if not report.samples:
        return hints

    if report.time_accuracy < ACCURACY_THRESHOLD:
        hints.append("Improve time estimation accuracy - consider breaking down tasks into smaller pieces")
    if report.time_bias > BIAS_THRESHOLD:
        hints.append(
            "Reduce underestimation bias - tasks are taking longer than expected; "
            "base estimates on historical actuals"
        )
    elif report.time_bias < -BIAS_THRESHOLD:
        hints.append("Reduce overestimation bias - tasks finish well under their estimates")
    if report.estimation_consistency < CONSISTENCY_THRESHOLD:
        hints.append("Improve estimation consistency - establish estimation standards and training")
    return hints


class ReportingEngine:
    """Builds reports from task and session history."""

    def __init__(
        self,
        tasks: TaskRepository,
        sessions: SessionRepository,
        tz: tzinfo = timezone.utc,
    ) -> None:
        """Initialize reporting engine.

        Args:
            tasks: Task repository
            sessions: Session repository
            tz: Zone used for day/week/month grouping labels
        """
        self.tasks = tasks
        self.sessions = sessions
        self.tz = tz

    async def _scoped_tasks(self, filters: ReportFilters, window_on_updated: bool = False) -> list[Task]:
        """Tasks selected by project, task and tags (and optionally last update)."""
        task_filters = TaskFilters(project_id=filters.project_id, tags=filters.tags)
        if window_on_updated:
            task_filters.updated_from = filters.from_date
            task_filters.updated_to = filters.to_date

        if filters.task_id is not None:
            task = await self.tasks.get_by_id(filters.task_id)
            return [task] if task is not None and task_filters.matches(task) else []
        return await self.tasks.list(task_filters)

    async def _scoped_sessions(self, filters: ReportFilters, tasks: list[Task] | None) -> list[TimeSession]:
        """Sessions started inside the window, restricted to ``tasks`` when scoped."""
        task_ids = [t.id for t in tasks] if tasks is not None and filters.scopes_tasks else None
        return await self.sessions.list(
            SessionFilters(
                task_ids=task_ids,
                started_from=filters.from_date,
                started_to=filters.to_date,
            )
        )

    async def time_report(
        self,
        filters: ReportFilters | None = None,
        group_by: GroupBy | None = None,
        top_limit: int = 10,
    ) -> TimeReport:
        """Totals over sessions in scope.

        Args:
            filters: Scope and window
            group_by: Optional grouping for the ``groups`` breakdown
            top_limit: Number of entries in ``top_tasks``
        """
        start = time.perf_counter()
        filters = filters or ReportFilters()

        tasks: list[Task] | None = None
        if filters.scopes_tasks or group_by in ("task", "project", "tags"):
            tasks = await self._scoped_tasks(filters)
        sessions = await self._scoped_sessions(filters, tasks)
        tasks_by_id = {t.id: t for t in tasks or []}

        report = TimeReport(
            filters=filters,
            sessions=sessions,
            groups=group_sessions(sessions, group_by, tasks_by_id, self.tz) if group_by else [],
            top_tasks=top_tasks(sessions, top_limit),
            daily_breakdown=daily_breakdown(sessions, self.tz),
            **summarize_sessions(sessions),
        )

        metrics.record_report("time", time.perf_counter() - start)
        logger.info("report_generated", report="time", session_count=report.session_count)
        return report

    async def velocity_report(
        self,
        filters: ReportFilters | None = None,
        period: ReportPeriod = "week",
        forecast_periods: int = 4,
    ) -> VelocityReport:
        """Completed tasks per day over the window, with a per-period trend.

        Tasks are placed in the window by their last update, which is when a
        completed task was marked completed.
        """
        start = time.perf_counter()
        filters = filters or ReportFilters()

        tasks = await self._scoped_tasks(filters, window_on_updated=True)
        sessions = await self._scoped_sessions(filters, tasks)
        days = period_days(filters.from_date, filters.to_date, period)
        figures = aggregate_velocity(tasks, sessions, days)

        trend: list[VelocityTrendPoint] = []
        if filters.from_date is not None and filters.to_date is not None:
            trend = velocity_trend(tasks, sessions, filters.from_date, filters.to_date, period)

        velocities = [p.velocity for p in trend]
        throughputs = [p.throughput for p in trend]
        average_velocity = ratio(sum(velocities), len(velocities))
        velocity_score = min(100.0, figures["velocity"] / EXCELLENT_VELOCITY * 100)

        report = VelocityReport(
            filters=filters,
            period=period,
            period_days=days,
            total_tasks=int(figures["total_tasks"]),
            completed_tasks=int(figures["completed_tasks"]),
            total_time_spent=int(figures["total_time_spent"]),
            average_task_time=figures["average_task_time"],
            velocity=figures["velocity"],
            throughput=figures["throughput"],
            completion_rate=figures["completion_rate"],
            cycle_time=figures["average_task_time"],
            lead_time=lead_time(tasks),
            trend=trend,
            velocity_trend=trend_direction(velocities),
            throughput_trend=trend_direction(throughputs),
            average_velocity=average_velocity,
            average_throughput=ratio(sum(throughputs), len(throughputs)),
            velocity_consistency=consistency(velocities),
            productivity_score=(velocity_score + figures["completion_rate"]) / 2,
            forecast=(
                forecast(average_velocity, period, filters.to_date, forecast_periods)
                if len(trend) >= 2 and filters.to_date is not None
                else []
            ),
        )

        metrics.record_report("velocity", time.perf_counter() - start)
        logger.info(
            "report_generated",
            report="velocity",
            total_tasks=report.total_tasks,
            completed_tasks=report.completed_tasks,
        )
        return report

    async def estimation_report(self, filters: ReportFilters | None = None) -> EstimationReport:
        """Estimate-versus-actual accuracy and bias over the tasks in scope."""
        start = time.perf_counter()
        filters = filters or ReportFilters()

        tasks = await self._scoped_tasks(filters)
        sessions = await self._scoped_sessions(filters, tasks)
        actuals = actual_time_by_task(sessions)

        per_task = [estimate_accuracy(task, actuals.get(task.id)) for task in tasks]
        samples = [a for a in per_task if a.is_sample]
        time_estimates = [t.time_estimate_hours * 3600 for t in tasks if t.time_estimate_hours is not None]
        size_estimates = [t.size_estimate for t in tasks if t.size_estimate is not None]
        actual_times = [actuals[t.id] for t in tasks if t.id in actuals]
        accuracies = [a.time_accuracy for a in samples if a.time_accuracy is not None]
        biases = [a.time_bias for a in samples if a.time_bias is not None]

        total = len(tasks)
        with_estimates = sum(1 for t in tasks if t.has_estimate)
        time_accuracy = ratio(sum(accuracies), len(accuracies))

        report = EstimationReport(
            filters=filters,
            total_tasks=total,
            tasks_with_estimates=with_estimates,
            tasks_with_time_estimates=len(time_estimates),
            tasks_with_size_estimates=len(size_estimates),
            estimation_coverage=percentage(with_estimates, total),
            time_estimation_coverage=percentage(len(time_estimates), total),
            size_estimation_coverage=percentage(len(size_estimates), total),
            average_time_estimate=ratio(sum(time_estimates), len(time_estimates)),
            average_size_estimate=ratio(sum(size_estimates), len(size_estimates)),
            average_actual_time=ratio(sum(actual_times), len(actual_times)),
            time_accuracy=time_accuracy,
            time_bias=ratio(sum(biases), len(biases)),
            estimation_quality=estimation_quality(time_accuracy),
            estimation_consistency=consistency(accuracies),
            per_task_accuracy=per_task,
        )
        report.recommendations = estimation_recommendations(report)

        metrics.record_report("estimation", time.perf_counter() - start)
        logger.info(
            "report_generated",
            report="estimation",
            total_tasks=total,
            samples=len(samples),
        )
        return report
