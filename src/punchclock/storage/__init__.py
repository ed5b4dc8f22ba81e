"""Repositories for projects, tasks and time sessions."""

from punchclock.storage.base import ProjectRepository, SessionRepository, TaskRepository
from punchclock.storage.memory import (
    InMemoryProjectRepository,
    InMemorySessionRepository,
    InMemoryStore,
    InMemoryTaskRepository,
)
from punchclock.storage.sqlite import (
    Database,
    SQLiteProjectRepository,
    SQLiteSessionRepository,
    SQLiteTaskRepository,
)

__all__ = [
    # Interfaces
    "ProjectRepository",
    "TaskRepository",
    "SessionRepository",
    # In-memory
    "InMemoryStore",
    "InMemoryProjectRepository",
    "InMemoryTaskRepository",
    "InMemorySessionRepository",
    # SQLite
    "Database",
    "SQLiteProjectRepository",
    "SQLiteTaskRepository",
    "SQLiteSessionRepository",
]
