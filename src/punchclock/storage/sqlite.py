"""SQLite-backed repositories using aiosqlite.

One ``Database`` owns a single connection in autocommit mode; every write
runs in an explicit ``BEGIN IMMEDIATE`` transaction so check-then-write
sequences are atomic across processes sharing the file. The schema also
carries a partial unique index that admits at most one open time session.
"""

import asyncio
import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import aiosqlite

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
)
from punchclock.utils.logging import get_logger
from punchclock.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL UNIQUE,
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    number TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT,
    state TEXT NOT NULL DEFAULT 'pending'
        CHECK (state IN ('pending', 'in-progress', 'completed', 'blocked')),
    size_estimate REAL CHECK (size_estimate IS NULL OR size_estimate > 0),
    time_estimate_hours REAL CHECK (time_estimate_hours IS NULL OR time_estimate_hours > 0),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (project_id, number)
);

CREATE TABLE IF NOT EXISTS task_tags (
    task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    tag TEXT NOT NULL,
    position INTEGER NOT NULL,
    PRIMARY KEY (task_id, tag)
);

CREATE TABLE IF NOT EXISTS time_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id INTEGER NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    started_at TEXT NOT NULL,
    paused_at TEXT,
    resumed_at TEXT,
    stopped_at TEXT,
    duration_seconds INTEGER NOT NULL DEFAULT 0 CHECK (duration_seconds >= 0),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_project_id ON tasks(project_id);
CREATE INDEX IF NOT EXISTS idx_tasks_state ON tasks(state);
CREATE INDEX IF NOT EXISTS idx_task_tags_tag ON task_tags(tag);
CREATE INDEX IF NOT EXISTS idx_time_sessions_task_id ON time_sessions(task_id);
CREATE INDEX IF NOT EXISTS idx_time_sessions_started_at ON time_sessions(started_at);

-- At most one session may be open (not stopped) at any time
CREATE UNIQUE INDEX IF NOT EXISTS idx_time_sessions_single_open
    ON time_sessions((stopped_at IS NULL)) WHERE stopped_at IS NULL;
"""

OPEN_SESSION_SQL = "stopped_at IS NULL"
PAUSED_SESSION_SQL = "stopped_at IS NULL AND paused_at IS NOT NULL AND resumed_at IS NULL"
RUNNING_SESSION_SQL = "stopped_at IS NULL AND (paused_at IS NULL OR resumed_at IS NOT NULL)"


def to_db_time(value: datetime | None) -> str | None:
    """Serialize as fixed-width UTC ISO-8601 so text comparison orders correctly."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class Database:
    """Connection owner for the SQLite repositories."""

    def __init__(self, path: str | Path = ":memory:") -> None:
        """Initialize database handle.

        Args:
            path: SQLite file path, or ":memory:" for a throwaway database
        """
        self.path = str(path)
        self._conn: aiosqlite.Connection | None = None
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Open the connection and create the schema if missing."""
        if self._conn is not None:
            return
        if self.path != ":memory:":
            Path(self.path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(self.path, isolation_level=None)
        self._conn.row_factory = aiosqlite.Row

        await self._conn.execute("PRAGMA foreign_keys=ON")
        if self.path != ":memory:":
            await self._conn.execute("PRAGMA journal_mode=WAL")
            await self._conn.execute("PRAGMA synchronous=NORMAL")
        await self._conn.executescript(SCHEMA)
        logger.info("database_initialized", path=self.path)

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None
            logger.debug("database_closed", path=self.path)

    async def __aenter__(self) -> "Database":
        await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database is not initialized; call initialize() first")
        return self._conn

    @asynccontextmanager
    async def transaction(self, repository: str, operation: str) -> AsyncIterator[aiosqlite.Connection]:
        """Run a block inside BEGIN IMMEDIATE ... COMMIT, rolling back on error."""
        async with self._lock:
            conn = self.conn
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException as e:
                await conn.execute("ROLLBACK")
                metrics.record_storage_operation(repository, operation, type(e).__name__)
                raise
            await conn.execute("COMMIT")
            metrics.record_storage_operation(repository, operation, "success")

    async def fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> aiosqlite.Row | None:
        async with self.conn.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> list[aiosqlite.Row]:
        async with self.conn.execute(sql, params) as cursor:
            return list(await cursor.fetchall())


def _row_to_project(row: aiosqlite.Row) -> Project:
    return Project(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )


def _row_to_session(row: aiosqlite.Row) -> TimeSession:
    return TimeSession(
        id=row["id"],
        task_id=row["task_id"],
        started_at=from_db_time(row["started_at"]),
        paused_at=from_db_time(row["paused_at"]),
        resumed_at=from_db_time(row["resumed_at"]),
        stopped_at=from_db_time(row["stopped_at"]),
        duration_seconds=row["duration_seconds"],
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
    )


class SQLiteProjectRepository(ProjectRepository):
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(self, project: Project) -> Project:
        try:
            async with self._db.transaction("projects", "create") as conn:
                cursor = await conn.execute(
                    "INSERT INTO projects (name, description, created_at, updated_at) VALUES (?, ?, ?, ?)",
                    (
                        project.name,
                        project.description,
                        to_db_time(project.created_at),
                        to_db_time(project.updated_at),
                    ),
                )
                project_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            raise DuplicateProjectError(project.name) from e
        logger.info("project_created", project_id=project_id, name=project.name)
        return project.model_copy(update={"id": project_id})

    async def get_by_id(self, project_id: int) -> Project | None:
        row = await self._db.fetchone("SELECT * FROM projects WHERE id = ?", (project_id,))
        return _row_to_project(row) if row else None

    async def get_by_name(self, name: str) -> Project | None:
        row = await self._db.fetchone("SELECT * FROM projects WHERE name = ?", (name,))
        return _row_to_project(row) if row else None

    async def delete(self, project_id: int) -> bool:
        async with self._db.transaction("projects", "delete") as conn:
            cursor = await conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            return cursor.rowcount > 0

    async def list(self) -> list[Project]:
        rows = await self._db.fetchall("SELECT * FROM projects ORDER BY name")
        return [_row_to_project(row) for row in rows]


class SQLiteTaskRepository(TaskRepository):
    def __init__(self, db: Database) -> None:
        self._db = db

    async def _load_tags(self, task_ids: list[int]) -> dict[int, list[str]]:
        if not task_ids:
            return {}
        placeholders = ",".join("?" for _ in task_ids)
        rows = await self._db.fetchall(
            f"SELECT task_id, tag FROM task_tags WHERE task_id IN ({placeholders}) ORDER BY task_id, position",
            tuple(task_ids),
        )
        tags: dict[int, list[str]] = {task_id: [] for task_id in task_ids}
        for row in rows:
            tags[row["task_id"]].append(row["tag"])
        return tags

    async def _rows_to_tasks(self, rows: list[aiosqlite.Row]) -> list[Task]:
        tags = await self._load_tags([row["id"] for row in rows])
        return [
            Task(
                id=row["id"],
                project_id=row["project_id"],
                number=row["number"],
                title=row["title"],
                description=row["description"],
                state=row["state"],
                size_estimate=row["size_estimate"],
                time_estimate_hours=row["time_estimate_hours"],
                tags=tags.get(row["id"], []),
                created_at=from_db_time(row["created_at"]),
                updated_at=from_db_time(row["updated_at"]),
            )
            for row in rows
        ]

    @staticmethod
    async def _write_tags(conn: aiosqlite.Connection, task_id: int, tags: list[str]) -> None:
        await conn.execute("DELETE FROM task_tags WHERE task_id = ?", (task_id,))
        await conn.executemany(
            "INSERT INTO task_tags (task_id, tag, position) VALUES (?, ?, ?)",
            [(task_id, tag, position) for position, tag in enumerate(tags)],
        )

    async def create(self, task: Task) -> Task:
        try:
            async with self._db.transaction("tasks", "create") as conn:
                async with conn.execute("SELECT 1 FROM projects WHERE id = ?", (task.project_id,)) as cursor:
                    if await cursor.fetchone() is None:
                        raise ProjectNotFoundError(task.project_id)
                cursor = await conn.execute(
                    """
                    INSERT INTO tasks
                    (project_id, number, title, description, state, size_estimate,
                     time_estimate_hours, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task.project_id,
                        task.number,
                        task.title,
                        task.description,
                        task.state,
                        task.size_estimate,
                        task.time_estimate_hours,
                        to_db_time(task.created_at),
                        to_db_time(task.updated_at),
                    ),
                )
                task_id = cursor.lastrowid
                await self._write_tags(conn, task_id, task.tags)
        except sqlite3.IntegrityError as e:
            raise DuplicateTaskNumberError(task.project_id, task.number) from e
        logger.info("task_created", task_id=task_id, project_id=task.project_id, number=task.number)
        return task.model_copy(update={"id": task_id})

    async def get_by_id(self, task_id: int) -> Task | None:
        rows = await self._db.fetchall("SELECT * FROM tasks WHERE id = ?", (task_id,))
        tasks = await self._rows_to_tasks(rows)
        return tasks[0] if tasks else None

    async def get_by_number(self, project_id: int, number: str) -> Task | None:
        rows = await self._db.fetchall(
            "SELECT * FROM tasks WHERE project_id = ? AND number = ?",
            (project_id, number),
        )
        tasks = await self._rows_to_tasks(rows)
        return tasks[0] if tasks else None

    async def exists(self, task_id: int) -> bool:
        row = await self._db.fetchone("SELECT 1 FROM tasks WHERE id = ?", (task_id,))
        return row is not None

    async def update(self, task_id: int, fields: dict[str, Any]) -> Task:
        check_update_fields(fields, TASK_UPDATABLE_FIELDS)
        existing = await self.get_by_id(task_id)
        if existing is None:
            raise TaskNotFoundError(task_id)
        # Validate the merged record before touching the row
        updated = Task.model_validate({**existing.model_dump(), **fields, "updated_at": utc_now()})

        try:
            async with self._db.transaction("tasks", "update") as conn:
                cursor = await conn.execute(
                    """
                    UPDATE tasks SET number = ?, title = ?, description = ?, state = ?,
                        size_estimate = ?, time_estimate_hours = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        updated.number,
                        updated.title,
                        updated.description,
                        updated.state,
                        updated.size_estimate,
                        updated.time_estimate_hours,
                        to_db_time(updated.updated_at),
                        task_id,
                    ),
                )
                if cursor.rowcount == 0:
                    raise TaskNotFoundError(task_id)
                if "tags" in fields:
                    await self._write_tags(conn, task_id, updated.tags)
        except sqlite3.IntegrityError as e:
            raise DuplicateTaskNumberError(existing.project_id, updated.number) from e
        logger.info("task_updated", task_id=task_id, fields=sorted(fields))
        return updated

    async def delete(self, task_id: int) -> bool:
        async with self._db.transaction("tasks", "delete") as conn:
            cursor = await conn.execute("DELETE FROM tasks WHERE id = ?", (task_id,))
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("task_deleted", task_id=task_id)
        return deleted

    async def list(self, filters: TaskFilters | None = None) -> list[Task]:
        filters = filters or TaskFilters()
        sql = "SELECT * FROM tasks WHERE 1=1"
        params: list[Any] = []

        if filters.project_id is not None:
            sql += " AND project_id = ?"
            params.append(filters.project_id)
        if filters.state is not None:
            sql += " AND state = ?"
            params.append(filters.state.value)
        for tag in filters.tags:
            sql += " AND EXISTS (SELECT 1 FROM task_tags tt WHERE tt.task_id = tasks.id AND tt.tag = ?)"
            params.append(tag)
        if filters.created_from:
            sql += " AND created_at >= ?"
            params.append(to_db_time(filters.created_from))
        if filters.created_to:
            sql += " AND created_at <= ?"
            params.append(to_db_time(filters.created_to))
        if filters.updated_from:
            sql += " AND updated_at >= ?"
            params.append(to_db_time(filters.updated_from))
        if filters.updated_to:
            sql += " AND updated_at <= ?"
            params.append(to_db_time(filters.updated_to))
        if filters.search:
            sql += " AND (number LIKE ? OR title LIKE ? OR description LIKE ?)"
            pattern = f"%{filters.search}%"
            params.extend([pattern, pattern, pattern])

        sql += " ORDER BY created_at, id"
        rows = await self._db.fetchall(sql, tuple(params))
        return await self._rows_to_tasks(rows)


class SQLiteSessionRepository(SessionRepository):
    def __init__(self, db: Database) -> None:
        self._db = db

    async def create(self, task_id: int, started_at: datetime) -> TimeSession:
        now = utc_now()
        try:
            async with self._db.transaction("time_sessions", "create") as conn:
                async with conn.execute(
                    f"SELECT id, task_id FROM time_sessions WHERE {OPEN_SESSION_SQL} LIMIT 1"
                ) as cursor:
                    current = await cursor.fetchone()
                if current is not None:
                    raise ActiveSessionExistsError(
                        session_id=current["id"],
                        task_id=current["task_id"],
                        per_task=current["task_id"] == task_id,
                    )
                cursor = await conn.execute(
                    """
                    INSERT INTO time_sessions (task_id, started_at, duration_seconds, created_at, updated_at)
                    VALUES (?, ?, 0, ?, ?)
                    """,
                    (task_id, to_db_time(started_at), to_db_time(now), to_db_time(now)),
                )
                session_id = cursor.lastrowid
        except sqlite3.IntegrityError as e:
            # Either the single-open index fired (a concurrent writer won) or
            # the task foreign key failed.
            if not await SQLiteTaskRepository(self._db).exists(task_id):
                raise TaskNotFoundError(task_id) from e
            raise ActiveSessionExistsError() from e

        session = await self.get_by_id(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def get_by_id(self, session_id: int) -> TimeSession | None:
        row = await self._db.fetchone("SELECT * FROM time_sessions WHERE id = ?", (session_id,))
        return _row_to_session(row) if row else None

    async def update(
        self,
        session_id: int,
        fields: dict[str, Any],
        expected: TimeSession | None = None,
    ) -> TimeSession:
        check_update_fields(fields, SESSION_UPDATABLE_FIELDS)
        assignments = [f"{name} = ?" for name in fields]
        params: list[Any] = [
            to_db_time(value) if isinstance(value, datetime) or name.endswith("_at") else value
            for name, value in fields.items()
        ]
        assignments.append("updated_at = ?")
        params.append(to_db_time(utc_now()))

        sql = f"UPDATE time_sessions SET {', '.join(assignments)} WHERE id = ? AND {OPEN_SESSION_SQL}"
        params.append(session_id)
        if expected is not None:
            # Compare-and-set against the snapshot the new values came from
            sql += " AND paused_at IS ? AND resumed_at IS ?"
            params.extend([to_db_time(expected.paused_at), to_db_time(expected.resumed_at)])

        async with self._db.transaction("time_sessions", "update") as conn:
            cursor = await conn.execute(sql, tuple(params))
            if cursor.rowcount == 0:
                async with conn.execute("SELECT * FROM time_sessions WHERE id = ?", (session_id,)) as check:
                    row = await check.fetchone()
                if row is None:
                    raise SessionNotFoundError(session_id)
                stored = _row_to_session(row)
                if not stored.is_open:
                    raise AlreadyStoppedError(session_id)
                raise InvalidStateError("update", stored.state.value, "session changed since it was read")

        session = await self.get_by_id(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def get_active_session(self) -> TimeSession | None:
        row = await self._db.fetchone(
            f"SELECT * FROM time_sessions WHERE {OPEN_SESSION_SQL} ORDER BY started_at DESC LIMIT 1"
        )
        return _row_to_session(row) if row else None

    async def get_active_session_for_task(self, task_id: int) -> TimeSession | None:
        row = await self._db.fetchone(
            f"SELECT * FROM time_sessions WHERE task_id = ? AND {OPEN_SESSION_SQL} ORDER BY started_at DESC LIMIT 1",
            (task_id,),
        )
        return _row_to_session(row) if row else None

    async def get_paused_sessions(self) -> list[TimeSession]:
        rows = await self._db.fetchall(
            f"SELECT * FROM time_sessions WHERE {PAUSED_SESSION_SQL} ORDER BY paused_at DESC"
        )
        return [_row_to_session(row) for row in rows]

    async def delete(self, session_id: int) -> bool:
        async with self._db.transaction("time_sessions", "delete") as conn:
            cursor = await conn.execute("DELETE FROM time_sessions WHERE id = ?", (session_id,))
            return cursor.rowcount > 0

    async def list(self, filters: SessionFilters | None = None) -> list[TimeSession]:
        filters = filters or SessionFilters()
        sql = "SELECT * FROM time_sessions WHERE 1=1"
        params: list[Any] = []

        if filters.task_id is not None:
            sql += " AND task_id = ?"
            params.append(filters.task_id)
        if filters.task_ids is not None:
            if not filters.task_ids:
                return []
            sql += f" AND task_id IN ({','.join('?' for _ in filters.task_ids)})"
            params.extend(filters.task_ids)
        if filters.started_from:
            sql += " AND started_at >= ?"
            params.append(to_db_time(filters.started_from))
        if filters.started_to:
            sql += " AND started_at <= ?"
            params.append(to_db_time(filters.started_to))
        if filters.state is not None:
            sql += " AND " + {
                SessionState.ACTIVE: RUNNING_SESSION_SQL,
                SessionState.PAUSED: PAUSED_SESSION_SQL,
                SessionState.STOPPED: "stopped_at IS NOT NULL",
            }[filters.state]

        sql += " ORDER BY started_at DESC, id DESC"
        rows = await self._db.fetchall(sql, tuple(params))
        return [_row_to_session(row) for row in rows]
