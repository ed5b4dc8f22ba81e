"""Abstract repositories the core depends on.

Concrete implementations live in ``storage.sqlite`` (aiosqlite) and
``storage.memory`` (in-process). The core only ever sees these interfaces,
passed in explicitly.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from punchclock.models import Project, SessionFilters, Task, TaskFilters, TimeSession

# Fields a caller may change through TaskRepository.update()
TASK_UPDATABLE_FIELDS = frozenset(
    {"number", "title", "description", "state", "size_estimate", "time_estimate_hours", "tags"}
)

# Fields a caller may change through SessionRepository.update()
SESSION_UPDATABLE_FIELDS = frozenset({"paused_at", "resumed_at", "stopped_at", "duration_seconds"})


class ProjectRepository(ABC):
    """Data access for projects."""

    @abstractmethod
    async def create(self, project: Project) -> Project:
        """Persist a new project.

        Raises:
            DuplicateProjectError: If the name is taken
        """

    @abstractmethod
    async def get_by_id(self, project_id: int) -> Project | None:
        """Get a project by ID, or None."""

    @abstractmethod
    async def get_by_name(self, name: str) -> Project | None:
        """Get a project by its unique name, or None."""

    @abstractmethod
    async def list(self) -> list[Project]:
        """All projects ordered by name."""

    @abstractmethod
    async def delete(self, project_id: int) -> bool:
        """Delete a project with its tasks and their sessions."""


class TaskRepository(ABC):
    """Data access for tasks."""

    @abstractmethod
    async def create(self, task: Task) -> Task:
        """Persist a new task.

        Raises:
            ProjectNotFoundError: If the owning project does not exist
            DuplicateTaskNumberError: If the number is taken in the project
        """

    @abstractmethod
    async def get_by_id(self, task_id: int) -> Task | None:
        """Get a task by ID, or None."""

    @abstractmethod
    async def get_by_number(self, project_id: int, number: str) -> Task | None:
        """Get a task by its project-scoped number, or None."""

    @abstractmethod
    async def exists(self, task_id: int) -> bool:
        """Check whether a task exists."""

    @abstractmethod
    async def list(self, filters: TaskFilters | None = None) -> list[Task]:
        """Tasks matching the filters, ordered by creation time."""

    @abstractmethod
    async def update(self, task_id: int, fields: dict[str, Any]) -> Task:
        """Apply a partial update and bump ``updated_at``.

        Raises:
            TaskNotFoundError: If the task does not exist
            DuplicateTaskNumberError: If a renumber collides
        """

    @abstractmethod
    async def delete(self, task_id: int) -> bool:
        """Delete a task and its sessions. Returns False if it did not exist."""


class SessionRepository(ABC):
    """Data access for time sessions.

    "Active" in the query names means not yet stopped: the session is either
    running or paused. At most one such session may exist at any time and
    ``create`` must enforce that atomically.
    """

    @abstractmethod
    async def create(self, task_id: int, started_at: datetime) -> TimeSession:
        """Open a new session.

        The open-session check and the insert form one atomic operation.

        Raises:
            ActiveSessionExistsError: If any session is still open
        """

    @abstractmethod
    async def get_by_id(self, session_id: int) -> TimeSession | None:
        """Get a session by ID, or None."""

    @abstractmethod
    async def update(
        self,
        session_id: int,
        fields: dict[str, Any],
        expected: TimeSession | None = None,
    ) -> TimeSession:
        """Atomically apply a partial update to an open session.

        With ``expected`` set the update is a compare-and-set: it only applies
        while the stored pause, resume and stop timestamps still equal the
        snapshot the new values were computed from.

        Raises:
            SessionNotFoundError: If the session does not exist
            AlreadyStoppedError: If the stored session is already stopped
            InvalidStateError: If the stored session no longer matches ``expected``
        """

    @abstractmethod
    async def get_active_session(self) -> TimeSession | None:
        """The open (not stopped) session, if any."""

    @abstractmethod
    async def get_active_session_for_task(self, task_id: int) -> TimeSession | None:
        """The open session on a given task, if any."""

    @abstractmethod
    async def get_paused_sessions(self) -> list[TimeSession]:
        """Open sessions currently paused, most recently paused first."""

    @abstractmethod
    async def list(self, filters: SessionFilters | None = None) -> list[TimeSession]:
        """Sessions matching the filters, most recently started first."""

    @abstractmethod
    async def delete(self, session_id: int) -> bool:
        """Delete a session. Returns False if it did not exist."""


def check_update_fields(fields: dict[str, Any], allowed: frozenset[str]) -> None:
    """Reject partial updates touching fields outside ``allowed``."""
    unknown = set(fields) - allowed
    if unknown:
        raise ValueError(f"Cannot update fields: {', '.join(sorted(unknown))}")


def same_transitions(stored: TimeSession, expected: TimeSession) -> bool:
    """True if no pause, resume or stop was recorded since ``expected`` was read."""
    return (
        stored.paused_at == expected.paused_at
        and stored.resumed_at == expected.resumed_at
        and stored.stopped_at == expected.stopped_at
    )
