"""Pytest fixtures for the punchclock tests."""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable, Generator
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

from punchclock.config import Settings, get_settings
from punchclock.core import ReportingEngine, TrackingCoordinator
from punchclock.models import Project, Task, TaskState, TimeSession
from punchclock.storage import (
    Database,
    InMemoryProjectRepository,
    InMemorySessionRepository,
    InMemoryStore,
    InMemoryTaskRepository,
    SQLiteProjectRepository,
    SQLiteSessionRepository,
    SQLiteTaskRepository,
)
from tests.fixtures.factories import T0


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Keep real config files and PUNCHCLOCK_* variables out of every test."""
    for key in list(os.environ):
        if key.upper().startswith("PUNCHCLOCK_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings pointing at a temporary database."""
    return Settings(
        database_path=str(tmp_path / "punchclock.db"),
        timezone="UTC",
        log_level="DEBUG",
        log_format="console",
        metrics_enabled=False,
    )


# --- In-memory repositories -------------------------------------------------


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def project_repo(store: InMemoryStore) -> InMemoryProjectRepository:
    return InMemoryProjectRepository(store)


@pytest.fixture
def task_repo(store: InMemoryStore) -> InMemoryTaskRepository:
    return InMemoryTaskRepository(store)


@pytest.fixture
def session_repo(store: InMemoryStore) -> InMemorySessionRepository:
    return InMemorySessionRepository(store)


@pytest.fixture
def coordinator(task_repo: InMemoryTaskRepository, session_repo: InMemorySessionRepository) -> TrackingCoordinator:
    return TrackingCoordinator(task_repo, session_repo)


@pytest.fixture
def reporting(task_repo: InMemoryTaskRepository, session_repo: InMemorySessionRepository) -> ReportingEngine:
    return ReportingEngine(task_repo, session_repo)


@pytest_asyncio.fixture
async def project(project_repo: InMemoryProjectRepository) -> Project:
    return await project_repo.create(Project(name="acme", description="Acme website"))


@pytest.fixture
def make_task(task_repo: InMemoryTaskRepository, project: Project) -> Callable[..., Awaitable[Task]]:
    """Factory creating tasks in the default project with sequential numbers."""
    counter = {"n": 0}

    async def _make(**fields: Any) -> Task:
        counter["n"] += 1
        values: dict[str, Any] = {
            "project_id": project.id,
            "number": f"PTC-{counter['n']}",
            "title": f"Task {counter['n']}",
            "created_at": T0,
            "updated_at": T0,
        }
        values.update(fields)
        return await task_repo.create(Task(**values))

    return _make


@pytest_asyncio.fixture
async def task(make_task: Callable[..., Awaitable[Task]]) -> Task:
    return await make_task(title="Write documentation")


@pytest.fixture
def make_session(
    coordinator: TrackingCoordinator,
) -> Callable[..., Awaitable[TimeSession]]:
    """Factory recording a stopped session of ``seconds`` starting at ``start``."""

    async def _make(task_id: int, start: datetime, seconds: int) -> TimeSession:
        session = await coordinator.start_tracking(task_id, start)
        return await coordinator.stop_tracking(session.id, start + timedelta(seconds=seconds))

    return _make


# --- SQLite repositories ----------------------------------------------------


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[Database, None]:
    """File-backed database, closed after the test."""
    db = Database(tmp_path / "punchclock.db")
    await db.initialize()
    yield db
    await db.close()


@pytest.fixture
def sqlite_projects(database: Database) -> SQLiteProjectRepository:
    return SQLiteProjectRepository(database)


@pytest.fixture
def sqlite_tasks(database: Database) -> SQLiteTaskRepository:
    return SQLiteTaskRepository(database)


@pytest.fixture
def sqlite_sessions(database: Database) -> SQLiteSessionRepository:
    return SQLiteSessionRepository(database)


@pytest_asyncio.fixture
async def sqlite_task(sqlite_projects: SQLiteProjectRepository, sqlite_tasks: SQLiteTaskRepository) -> Task:
    owner = await sqlite_projects.create(Project(name="acme"))
    return await sqlite_tasks.create(
        Task(
            project_id=owner.id,
            number="PTC-1",
            title="Write documentation",
            state=TaskState.IN_PROGRESS,
            time_estimate_hours=2,
            tags=["docs", "backend"],
        )
    )
