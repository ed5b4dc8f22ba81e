"""Unit tests for the data models."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from punchclock.models import (
    EstimationReport,
    ReportFilters,
    SessionFilters,
    SessionState,
    Task,
    TaskFilters,
    TaskState,
    TimeSession,
)
from punchclock.models.reports import TaskEstimationAccuracy
from tests.fixtures.factories import T0, SessionFactory, TaskFactory, at


class TestTask:
    """Tests for the Task model."""

    def test_defaults(self) -> None:
        task = Task(project_id=1, number="PTC-1", title="Docs")

        assert task.state == TaskState.PENDING
        assert task.tags == []
        assert task.has_estimate is False

    def test_tags_are_stripped_and_deduplicated(self) -> None:
        task = Task(project_id=1, number="PTC-1", title="Docs", tags=[" api", "api", "", "Docs", "docs"])

        assert task.tags == ["api", "Docs", "docs"]

    @pytest.mark.parametrize("field", ["size_estimate", "time_estimate_hours"])
    def test_estimates_must_be_positive(self, field: str) -> None:
        with pytest.raises(ValidationError):
            Task(project_id=1, number="PTC-1", title="Docs", **{field: 0})

    def test_invalid_state_rejected(self) -> None:
        with pytest.raises(ValidationError):
            Task(project_id=1, number="PTC-1", title="Docs", state="done")

    def test_naive_timestamps_become_utc(self) -> None:
        task = Task(project_id=1, number="PTC-1", title="Docs", created_at=datetime(2024, 1, 1, 12, 0))

        assert task.created_at.tzinfo is not None
        assert task.created_at.utcoffset() == timedelta(0)

    def test_is_completed(self) -> None:
        assert TaskFactory.create(state=TaskState.COMPLETED).is_completed()
        assert not TaskFactory.create(state=TaskState.BLOCKED).is_completed()


class TestTaskFilters:
    """Tests for in-memory task matching."""

    def test_all_tags_required(self) -> None:
        task = TaskFactory.create(tags=["api", "urgent"])

        assert TaskFilters(tags=["api"]).matches(task)
        assert not TaskFilters(tags=["api", "later"]).matches(task)

    def test_search(self) -> None:
        task = TaskFactory.create(title="Fix login redirect")

        assert TaskFilters(search="LOGIN").matches(task)
        assert not TaskFilters(search="logout").matches(task)

    def test_updated_window(self) -> None:
        task = TaskFactory.create(updated_at=at(3600))

        assert TaskFilters(updated_from=T0, updated_to=at(7200)).matches(task)
        assert not TaskFilters(updated_from=at(7200)).matches(task)


class TestTimeSession:
    """Tests for the TimeSession model."""

    def test_state_is_derived(self) -> None:
        assert SessionFactory.active().state == SessionState.ACTIVE
        assert SessionFactory.paused().state == SessionState.PAUSED
        assert SessionFactory.stopped().state == SessionState.STOPPED

    def test_frozen(self) -> None:
        session = SessionFactory.active()
        with pytest.raises(ValidationError):
            session.duration_seconds = 10  # type: ignore[misc]

    def test_negative_duration_rejected(self) -> None:
        with pytest.raises(ValidationError):
            TimeSession(task_id=1, started_at=T0, duration_seconds=-1)

    def test_timestamps_normalized_to_utc(self) -> None:
        plus_two = timezone(timedelta(hours=2))
        session = TimeSession(task_id=1, started_at=datetime(2024, 1, 15, 11, 0, tzinfo=plus_two))

        assert session.started_at == T0
        assert session.started_at.tzinfo == timezone.utc

    def test_dump_includes_state(self) -> None:
        assert SessionFactory.paused().model_dump(mode="json")["state"] == "paused"

    def test_filters_match_state(self) -> None:
        assert SessionFilters(state=SessionState.PAUSED).matches(SessionFactory.paused())
        assert not SessionFilters(state="stopped").matches(SessionFactory.paused())


class TestReportModels:
    """Tests for report models."""

    def test_filters_scope(self) -> None:
        assert ReportFilters().scopes_tasks is False
        assert ReportFilters(tags=["api"]).scopes_tasks is True
        assert ReportFilters(from_date=T0).scopes_tasks is False

    def test_estimation_rankings(self) -> None:
        def sample(task_id: int, bias: float) -> TaskEstimationAccuracy:
            return TaskEstimationAccuracy(
                task_id=task_id,
                task_number=f"PTC-{task_id}",
                task_title="t",
                estimate_seconds=3600,
                actual_seconds=int(3600 * (1 + bias / 100)),
                time_accuracy=100 - abs(bias),
                time_bias=bias,
            )

        unsampled = TaskEstimationAccuracy(task_id=9, task_number="PTC-9", task_title="t")
        report = EstimationReport(
            filters=ReportFilters(),
            per_task_accuracy=[sample(1, 10), sample(2, -40), sample(3, 60), unsampled],
        )

        assert len(report.samples) == 3
        assert [a.task_id for a in report.most_accurate(2)] == [1, 2]
        assert [a.task_id for a in report.least_accurate(1)] == [3]
        assert [a.task_id for a in report.most_underestimated()] == [3, 1]
        assert [a.task_id for a in report.most_overestimated()] == [2]
