"""Error taxonomy for tracking and reporting operations."""

from datetime import datetime


class PunchclockError(Exception):
    """Base class for all punchclock errors."""


class TaskNotFoundError(PunchclockError):
    """Raised when a task does not exist."""

    def __init__(self, task_id: int | str) -> None:
        self.task_id = task_id
        super().__init__(f"Task {task_id} not found")


class ProjectNotFoundError(PunchclockError):
    """Raised when a project does not exist."""

    def __init__(self, project: int | str) -> None:
        self.project = project
        super().__init__(f"Project {project} not found")


class SessionNotFoundError(PunchclockError):
    """Raised when a time session does not exist."""

    def __init__(self, session_id: int) -> None:
        self.session_id = session_id
        super().__init__(f"Time session {session_id} not found")


class ActiveSessionExistsError(PunchclockError):
    """Raised when starting a session while another one is still open.

    Attributes:
        session_id: ID of the open session, when known
        task_id: Task the open session belongs to, when known
        per_task: True if the conflict is on the requested task itself
    """

    def __init__(
        self,
        session_id: int | None = None,
        task_id: int | None = None,
        per_task: bool = False,
    ) -> None:
        self.session_id = session_id
        self.task_id = task_id
        self.per_task = per_task
        if per_task:
            message = f"Time tracking is already active for task {task_id}"
        elif session_id is not None:
            message = f"Another time session is already active (session {session_id}, task {task_id})"
        else:
            message = "Another time session is already active"
        super().__init__(message)


class InvalidStateError(PunchclockError):
    """Raised when a transition is not legal from the session's current state."""

    def __init__(self, operation: str, state: str, reason: str | None = None) -> None:
        self.operation = operation
        self.state = state
        message = f"Cannot {operation} session in {state} state"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class AlreadyStoppedError(InvalidStateError):
    """Raised when stopping a session that is already stopped."""

    def __init__(self, session_id: int | None = None) -> None:
        self.session_id = session_id
        super().__init__("stop", "stopped", "session is already stopped")


class InvalidTimestampOrderError(PunchclockError):
    """Raised when session timestamps violate started < paused < resumed < stopped."""

    def __init__(self, message: str, timestamps: dict[str, datetime | None] | None = None) -> None:
        self.timestamps = timestamps or {}
        super().__init__(message)


class DuplicateTaskNumberError(PunchclockError):
    """Raised when a task number is already used within its project."""

    def __init__(self, project_id: int, number: str) -> None:
        self.project_id = project_id
        self.number = number
        super().__init__(f"Task number '{number}' already exists in project {project_id}")


class DuplicateProjectError(PunchclockError):
    """Raised when a project name is already taken."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Project '{name}' already exists")


class NoActiveSessionError(PunchclockError):
    """Raised when an operation needs the open session and none exists."""

    def __init__(self) -> None:
        super().__init__("No time session is open")
