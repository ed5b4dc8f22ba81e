"""In-memory repository implementations.

Useful for tests and for embedding the core without a database. All three
repositories share one ``InMemoryStore`` so cascading deletes and the
single-open-session check see the same data.
"""

import asyncio
from datetime import datetime
from typing import Any

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
    SessionFilters,
    SessionState,
    Task,
    TaskFilters,
    TimeSession,
    utc_now,
)
from punchclock.storage.base import (
    SESSION_UPDATABLE_FIELDS,
    TASK_UPDATABLE_FIELDS,
    ProjectRepository,
    SessionRepository,
    TaskRepository,
    check_update_fields,
    same_transitions,
)


class InMemoryStore:
    """Shared tables and lock for the in-memory repositories."""

    def __init__(self) -> None:
        self.projects: dict[int, Project] = {}
        self.tasks: dict[int, Task] = {}
        self.sessions: dict[int, TimeSession] = {}
        self.lock = asyncio.Lock()
        self._ids = {"projects": 0, "tasks": 0, "sessions": 0}

    def next_id(self, table: str) -> int:
        self._ids[table] += 1
        return self._ids[table]

    def clear(self) -> None:
        self.projects.clear()
        self.tasks.clear()
        self.sessions.clear()

    def delete_task_cascade(self, task_id: int) -> None:
        self.tasks.pop(task_id, None)
        for session_id in [s.id for s in self.sessions.values() if s.task_id == task_id]:
            del self.sessions[session_id]


class InMemoryProjectRepository(ProjectRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    async def create(self, project: Project) -> Project:
        async with self._store.lock:
            if any(p.name == project.name for p in self._store.projects.values()):
                raise DuplicateProjectError(project.name)
            created = project.model_copy(update={"id": self._store.next_id("projects")})
            self._store.projects[created.id] = created
            return created

    async def get_by_id(self, project_id: int) -> Project | None:
        return self._store.projects.get(project_id)

    async def get_by_name(self, name: str) -> Project | None:
        for project in self._store.projects.values():
            if project.name == name:
                return project
        return None

    async def list(self) -> list[Project]:
        return sorted(self._store.projects.values(), key=lambda p: p.name)

    async def delete(self, project_id: int) -> bool:
        async with self._store.lock:
            if project_id not in self._store.projects:
                return False
            del self._store.projects[project_id]
            for task_id in [t.id for t in self._store.tasks.values() if t.project_id == project_id]:
                self._store.delete_task_cascade(task_id)
            return True


class InMemoryTaskRepository(TaskRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def _number_taken(self, project_id: int, number: str, exclude_id: int | None = None) -> bool:
        return any(
            t.project_id == project_id and t.number == number and t.id != exclude_id
            for t in self._store.tasks.values()
        )

    async def create(self, task: Task) -> Task:
        async with self._store.lock:
            if task.project_id not in self._store.projects:
                raise ProjectNotFoundError(task.project_id)
            if self._number_taken(task.project_id, task.number):
                raise DuplicateTaskNumberError(task.project_id, task.number)
            created = task.model_copy(update={"id": self._store.next_id("tasks")})
            self._store.tasks[created.id] = created
            return created

    async def get_by_id(self, task_id: int) -> Task | None:
        return self._store.tasks.get(task_id)

    async def get_by_number(self, project_id: int, number: str) -> Task | None:
        for task in self._store.tasks.values():
            if task.project_id == project_id and task.number == number:
                return task
        return None

    async def exists(self, task_id: int) -> bool:
        return task_id in self._store.tasks

    async def list(self, filters: TaskFilters | None = None) -> list[Task]:
        filters = filters or TaskFilters()
        matching = [t for t in self._store.tasks.values() if filters.matches(t)]
        return sorted(matching, key=lambda t: (t.created_at, t.id))

    async def update(self, task_id: int, fields: dict[str, Any]) -> Task:
        check_update_fields(fields, TASK_UPDATABLE_FIELDS)
        async with self._store.lock:
            existing = self._store.tasks.get(task_id)
            if existing is None:
                raise TaskNotFoundError(task_id)
            number = fields.get("number")
            if number is not None and self._number_taken(existing.project_id, number, task_id):
                raise DuplicateTaskNumberError(existing.project_id, number)
            # Re-validate through the model so estimates and tags stay well-formed
            updated = Task.model_validate({**existing.model_dump(), **fields, "updated_at": utc_now()})
            self._store.tasks[task_id] = updated
            return updated

    async def delete(self, task_id: int) -> bool:
        async with self._store.lock:
            if task_id not in self._store.tasks:
                return False
            self._store.delete_task_cascade(task_id)
            return True


class InMemorySessionRepository(SessionRepository):
    def __init__(self, store: InMemoryStore) -> None:
        self._store = store

    def _open_sessions(self) -> list[TimeSession]:
        return [s for s in self._store.sessions.values() if s.is_open]

    async def create(self, task_id: int, started_at: datetime) -> TimeSession:
        async with self._store.lock:
            if task_id not in self._store.tasks:
                raise TaskNotFoundError(task_id)
            open_sessions = self._open_sessions()
            if open_sessions:
                current = open_sessions[0]
                raise ActiveSessionExistsError(
                    session_id=current.id,
                    task_id=current.task_id,
                    per_task=current.task_id == task_id,
                )
            session = TimeSession(
                id=self._store.next_id("sessions"),
                task_id=task_id,
                started_at=started_at,
            )
            self._store.sessions[session.id] = session
            return session

    async def get_by_id(self, session_id: int) -> TimeSession | None:
        return self._store.sessions.get(session_id)

    async def update(
        self,
        session_id: int,
        fields: dict[str, Any],
        expected: TimeSession | None = None,
    ) -> TimeSession:
        check_update_fields(fields, SESSION_UPDATABLE_FIELDS)
        async with self._store.lock:
            existing = self._store.sessions.get(session_id)
            if existing is None:
                raise SessionNotFoundError(session_id)
            if not existing.is_open:
                raise AlreadyStoppedError(session_id)
            if expected is not None and not same_transitions(existing, expected):
                raise InvalidStateError("update", existing.state.value, "session changed since it was read")
            updated = TimeSession.model_validate(
                {**existing.model_dump(exclude={"state"}), **fields, "updated_at": utc_now()}
            )
            self._store.sessions[session_id] = updated
            return updated

    async def get_active_session(self) -> TimeSession | None:
        open_sessions = sorted(self._open_sessions(), key=lambda s: s.started_at, reverse=True)
        return open_sessions[0] if open_sessions else None

    async def get_active_session_for_task(self, task_id: int) -> TimeSession | None:
        for session in sorted(self._open_sessions(), key=lambda s: s.started_at, reverse=True):
            if session.task_id == task_id:
                return session
        return None

    async def get_paused_sessions(self) -> list[TimeSession]:
        paused = [s for s in self._store.sessions.values() if s.state == SessionState.PAUSED]
        return sorted(paused, key=lambda s: s.paused_at or s.started_at, reverse=True)

    async def list(self, filters: SessionFilters | None = None) -> list[TimeSession]:
        filters = filters or SessionFilters()
        matching = [s for s in self._store.sessions.values() if filters.matches(s)]
        return sorted(matching, key=lambda s: (s.started_at, s.id), reverse=True)

    async def delete(self, session_id: int) -> bool:
        async with self._store.lock:
            return self._store.sessions.pop(session_id, None) is not None
