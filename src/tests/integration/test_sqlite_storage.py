"""Integration tests for the SQLite repositories."""

import asyncio
from datetime import timedelta, timezone
from pathlib import Path

import pytest

from punchclock.core import ReportingEngine, TrackingCoordinator, session_state
from punchclock.errors import (
    ActiveSessionExistsError,
    AlreadyStoppedError,
    DuplicateProjectError,
    DuplicateTaskNumberError,
    InvalidStateError,
    ProjectNotFoundError,
    SessionNotFoundError,
    TaskNotFoundError,
)
from punchclock.models import (
    Project,
    ReportFilters,
    SessionFilters,
    SessionState,
    Task,
    TaskFilters,
    TaskState,
    TimeSession,
)
from punchclock.storage import (
    Database,
    SQLiteProjectRepository,
    SQLiteSessionRepository,
    SQLiteTaskRepository,
)
from tests.fixtures.factories import T0, at


class TestProjectsAndTasks:
    """Project and task persistence."""

    @pytest.mark.asyncio
    async def test_task_round_trip_keeps_tag_order(
        self,
        sqlite_tasks: SQLiteTaskRepository,
        sqlite_task: Task,
    ) -> None:
        loaded = await sqlite_tasks.get_by_id(sqlite_task.id)

        assert loaded is not None
        assert loaded.tags == ["docs", "backend"]
        assert loaded.state == TaskState.IN_PROGRESS
        assert loaded.time_estimate_hours == 2

    @pytest.mark.asyncio
    async def test_duplicate_project_name(self, sqlite_projects: SQLiteProjectRepository) -> None:
        await sqlite_projects.create(Project(name="acme"))

        with pytest.raises(DuplicateProjectError):
            await sqlite_projects.create(Project(name="acme"))

    @pytest.mark.asyncio
    async def test_duplicate_task_number(self, sqlite_tasks: SQLiteTaskRepository, sqlite_task: Task) -> None:
        with pytest.raises(DuplicateTaskNumberError):
            await sqlite_tasks.create(Task(project_id=sqlite_task.project_id, number="PTC-1", title="Again"))

    @pytest.mark.asyncio
    async def test_task_in_missing_project(self, sqlite_tasks: SQLiteTaskRepository) -> None:
        with pytest.raises(ProjectNotFoundError):
            await sqlite_tasks.create(Task(project_id=99, number="PTC-1", title="Orphan"))

    @pytest.mark.asyncio
    async def test_update_replaces_tags(self, sqlite_tasks: SQLiteTaskRepository, sqlite_task: Task) -> None:
        updated = await sqlite_tasks.update(sqlite_task.id, {"tags": ["frontend"], "state": "completed"})
        loaded = await sqlite_tasks.get_by_id(sqlite_task.id)

        assert updated.state == TaskState.COMPLETED
        assert loaded is not None
        assert loaded.tags == ["frontend"]

    @pytest.mark.asyncio
    async def test_update_missing_task(self, sqlite_tasks: SQLiteTaskRepository) -> None:
        with pytest.raises(TaskNotFoundError):
            await sqlite_tasks.update(404, {"title": "Nothing"})

    @pytest.mark.asyncio
    async def test_task_filters(self, sqlite_tasks: SQLiteTaskRepository, sqlite_task: Task) -> None:
        await sqlite_tasks.create(Task(project_id=sqlite_task.project_id, number="PTC-2", title="Deploy", tags=["ops"]))

        by_tag = await sqlite_tasks.list(TaskFilters(tags=["docs", "backend"]))
        by_state = await sqlite_tasks.list(TaskFilters(state=TaskState.PENDING))
        by_search = await sqlite_tasks.list(TaskFilters(search="deploy"))

        assert [t.number for t in by_tag] == ["PTC-1"]
        assert [t.number for t in by_state] == ["PTC-2"]
        assert [t.number for t in by_search] == ["PTC-2"]

    @pytest.mark.asyncio
    async def test_project_delete_cascades(
        self,
        sqlite_projects: SQLiteProjectRepository,
        sqlite_tasks: SQLiteTaskRepository,
        sqlite_sessions: SQLiteSessionRepository,
        sqlite_task: Task,
    ) -> None:
        session = await sqlite_sessions.create(sqlite_task.id, T0)

        assert await sqlite_projects.delete(sqlite_task.project_id) is True
        assert await sqlite_tasks.get_by_id(sqlite_task.id) is None
        assert await sqlite_sessions.get_by_id(session.id) is None


class TestSessions:
    """Time session persistence and the single open session rule."""

    @pytest.mark.asyncio
    async def test_create_and_reload(self, sqlite_sessions: SQLiteSessionRepository, sqlite_task: Task) -> None:
        created = await sqlite_sessions.create(sqlite_task.id, T0)
        loaded = await sqlite_sessions.get_by_id(created.id)

        assert loaded == created
        assert loaded.started_at == T0
        assert loaded.started_at.tzinfo is not None
        assert loaded.state == SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_second_open_session_rejected(
        self,
        sqlite_sessions: SQLiteSessionRepository,
        sqlite_task: Task,
    ) -> None:
        first = await sqlite_sessions.create(sqlite_task.id, T0)

        with pytest.raises(ActiveSessionExistsError) as exc_info:
            await sqlite_sessions.create(sqlite_task.id, at(60))

        assert exc_info.value.session_id == first.id
        assert exc_info.value.per_task is True

    @pytest.mark.asyncio
    async def test_session_for_missing_task(self, sqlite_sessions: SQLiteSessionRepository) -> None:
        with pytest.raises(TaskNotFoundError):
            await sqlite_sessions.create(404, T0)

    @pytest.mark.asyncio
    async def test_stopped_session_is_frozen(
        self,
        sqlite_sessions: SQLiteSessionRepository,
        sqlite_task: Task,
    ) -> None:
        session = await sqlite_sessions.create(sqlite_task.id, T0)
        await sqlite_sessions.update(session.id, {"stopped_at": at(60), "duration_seconds": 60})

        with pytest.raises(AlreadyStoppedError):
            await sqlite_sessions.update(session.id, {"duration_seconds": 10})

    @pytest.mark.asyncio
    async def test_update_missing_session(self, sqlite_sessions: SQLiteSessionRepository) -> None:
        with pytest.raises(SessionNotFoundError):
            await sqlite_sessions.update(404, {"duration_seconds": 10})

    @pytest.mark.asyncio
    async def test_state_queries(self, sqlite_sessions: SQLiteSessionRepository, sqlite_task: Task) -> None:
        session = await sqlite_sessions.create(sqlite_task.id, T0)
        await sqlite_sessions.update(session.id, {"paused_at": at(30), "duration_seconds": 30})

        active = await sqlite_sessions.get_active_session()
        paused = await sqlite_sessions.get_paused_sessions()
        running = await sqlite_sessions.list(SessionFilters(state=SessionState.ACTIVE))

        assert active is not None and active.id == session.id
        assert [s.id for s in paused] == [session.id]
        assert running == []

    @pytest.mark.asyncio
    async def test_list_filters(self, sqlite_sessions: SQLiteSessionRepository, sqlite_task: Task) -> None:
        early = await sqlite_sessions.create(sqlite_task.id, T0)
        await sqlite_sessions.update(early.id, {"stopped_at": at(60), "duration_seconds": 60})
        late = await sqlite_sessions.create(sqlite_task.id, at(86400))

        window = await sqlite_sessions.list(SessionFilters(started_from=at(3600)))
        scoped = await sqlite_sessions.list(SessionFilters(task_ids=[sqlite_task.id]))
        none = await sqlite_sessions.list(SessionFilters(task_ids=[]))
        stopped = await sqlite_sessions.list(SessionFilters(state=SessionState.STOPPED))

        assert [s.id for s in window] == [late.id]
        assert [s.id for s in scoped] == [late.id, early.id]
        assert none == []
        assert [s.id for s in stopped] == [early.id]

    @pytest.mark.asyncio
    async def test_concurrent_connections_admit_one(self, tmp_path: Path) -> None:
        """Two connections to one file cannot both open a session."""
        path = tmp_path / "shared.db"
        async with Database(path) as first, Database(path) as second:
            owner = await SQLiteProjectRepository(first).create(Project(name="acme"))
            task = await SQLiteTaskRepository(first).create(Task(project_id=owner.id, number="PTC-1", title="Docs"))

            results = await asyncio.gather(
                SQLiteSessionRepository(first).create(task.id, T0),
                SQLiteSessionRepository(second).create(task.id, T0),
                return_exceptions=True,
            )

        rejected = [r for r in results if isinstance(r, ActiveSessionExistsError)]
        assert len(rejected) == 1

    @pytest.mark.asyncio
    async def test_stale_snapshot_rejected(self, sqlite_sessions: SQLiteSessionRepository, sqlite_task: Task) -> None:
        snapshot = await sqlite_sessions.create(sqlite_task.id, T0)
        await sqlite_sessions.update(snapshot.id, {"paused_at": at(60), "duration_seconds": 60}, expected=snapshot)

        with pytest.raises(InvalidStateError, match="changed since it was read"):
            await sqlite_sessions.update(
                snapshot.id,
                {"stopped_at": at(3600), "duration_seconds": 3600},
                expected=snapshot,
            )

        stored = await sqlite_sessions.get_by_id(snapshot.id)
        assert stored is not None
        assert stored.state == SessionState.PAUSED
        assert stored.duration_seconds == 60


class TestOverlappingTransitions:
    """Transitions racing on one session over a shared database."""

    @pytest.mark.asyncio
    async def test_pause_and_stop_keep_duration_consistent(
        self,
        sqlite_tasks: SQLiteTaskRepository,
        sqlite_sessions: SQLiteSessionRepository,
        sqlite_task: Task,
    ) -> None:
        coordinator = TrackingCoordinator(sqlite_tasks, sqlite_sessions)
        session = await coordinator.start_tracking(sqlite_task.id, T0)

        results = await asyncio.gather(
            coordinator.pause_tracking(session.id, at(60)),
            coordinator.stop_tracking(session.id, at(3600)),
            return_exceptions=True,
        )

        assert any(isinstance(r, TimeSession) for r in results)
        assert all(isinstance(r, (TimeSession, InvalidStateError)) for r in results)
        stored = await sqlite_sessions.get_by_id(session.id)
        assert stored is not None
        assert stored.duration_seconds == session_state.calculate_duration(stored, now=at(3600))

    @pytest.mark.asyncio
    async def test_overlapping_pauses_admit_one(
        self,
        sqlite_tasks: SQLiteTaskRepository,
        sqlite_sessions: SQLiteSessionRepository,
        sqlite_task: Task,
    ) -> None:
        coordinator = TrackingCoordinator(sqlite_tasks, sqlite_sessions)
        session = await coordinator.start_tracking(sqlite_task.id, T0)

        results = await asyncio.gather(
            coordinator.pause_tracking(session.id, at(60)),
            coordinator.pause_tracking(session.id, at(90)),
            return_exceptions=True,
        )

        paused = [r for r in results if isinstance(r, TimeSession)]
        rejected = [r for r in results if isinstance(r, InvalidStateError)]
        assert len(paused) == 1
        assert len(rejected) == 1
        stored = await sqlite_sessions.get_by_id(session.id)
        assert stored is not None
        assert stored.paused_at == paused[0].paused_at
        assert stored.duration_seconds == session_state.calculate_duration(stored)


class TestEndToEnd:
    """Coordinator and reporting over SQLite."""

    @pytest.mark.asyncio
    async def test_track_and_report(
        self,
        sqlite_tasks: SQLiteTaskRepository,
        sqlite_sessions: SQLiteSessionRepository,
        sqlite_task: Task,
    ) -> None:
        coordinator = TrackingCoordinator(sqlite_tasks, sqlite_sessions)
        session = await coordinator.start_tracking(sqlite_task.id, T0)
        await coordinator.pause_tracking(session.id, at(3600))
        await coordinator.resume_tracking(session.id, at(4200))
        stopped = await coordinator.stop_tracking(session.id, at(9600))

        engine = ReportingEngine(sqlite_tasks, sqlite_sessions)
        window = ReportFilters(from_date=T0 - timedelta(days=1), to_date=T0 + timedelta(days=1))
        time_report = await engine.time_report(window, group_by="tags")
        estimation = await engine.estimation_report(window)

        assert stopped.duration_seconds == 9000
        assert time_report.total_time == 9000
        assert [g.group for g in time_report.groups] == ["backend", "docs"]
        assert estimation.time_accuracy == pytest.approx(75.0)
        assert estimation.time_bias == pytest.approx(25.0)

    @pytest.mark.asyncio
    async def test_timestamps_survive_reopen(self, tmp_path: Path) -> None:
        path = tmp_path / "reopen.db"
        berlin_noon = T0.astimezone(timezone(timedelta(hours=1)))

        async with Database(path) as db:
            owner = await SQLiteProjectRepository(db).create(Project(name="acme"))
            task = await SQLiteTaskRepository(db).create(Task(project_id=owner.id, number="PTC-1", title="Docs"))
            session = await SQLiteSessionRepository(db).create(task.id, berlin_noon)

        async with Database(path) as db:
            reloaded = await SQLiteSessionRepository(db).get_by_id(session.id)

        assert reloaded is not None
        assert reloaded.started_at == T0
        assert reloaded.started_at.utcoffset() == timedelta(0)
