"""Tracking coordinator: session lifecycle against the repositories."""

import time
from collections.abc import Awaitable, Callable
from datetime import datetime

from punchclock.core import session_state
from punchclock.errors import ActiveSessionExistsError, PunchclockError, SessionNotFoundError, TaskNotFoundError
from punchclock.models import DurationBreakdown, SessionFilters, SessionStats, SessionState, TimeSession
from punchclock.models.base import ensure_utc, utc_now
from punchclock.storage.base import SessionRepository, TaskRepository
from punchclock.utils.logging import get_logger
from punchclock.utils.metrics import get_metrics

logger = get_logger(__name__)
metrics = get_metrics()


class TrackingCoordinator:
    """Starts, pauses, resumes and stops time sessions.

    Enforces that at most one session is open (not stopped) at any time,
    across all tasks. Holds no session state of its own: every call reads
    from and writes to the session repository, so an instance can be built
    per invocation.

    Each transition is written as a compare-and-set against the snapshot it
    was computed from. Of two overlapping transitions on one session the
    loser fails with InvalidStateError instead of overwriting the winner.
    """

    def __init__(self, tasks: TaskRepository, sessions: SessionRepository) -> None:
        """Initialize coordinator.

        Args:
            tasks: Task repository, used for existence checks
            sessions: Session repository, the source of truth for sessions
        """
        self.tasks = tasks
        self.sessions = sessions

    async def _timed(self, operation: str, func: Callable[[], Awaitable[TimeSession]]) -> TimeSession:
        start = time.perf_counter()
        try:
            session = await func()
        except PunchclockError as e:
            metrics.record_transition(operation, type(e).__name__, time.perf_counter() - start)
            logger.warning(f"session_{operation}_rejected", error=str(e), error_type=type(e).__name__)
            raise
        metrics.record_transition(operation, "success", time.perf_counter() - start)
        return session

    async def _load(self, session_id: int) -> TimeSession:
        session = await self.sessions.get_by_id(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def start_tracking(self, task_id: int, start_time: datetime | None = None) -> TimeSession:
        """Open a new session on a task.

        Args:
            task_id: Task to track
            start_time: Start instant (defaults to now)

        Returns:
            The persisted session

        Raises:
            TaskNotFoundError: If the task does not exist
            ActiveSessionExistsError: If any session is open, on this task or another
        """

        async def _start() -> TimeSession:
            if not await self.tasks.exists(task_id):
                raise TaskNotFoundError(task_id)

            current = await self.sessions.get_active_session()
            if current is not None:
                raise ActiveSessionExistsError(
                    session_id=current.id,
                    task_id=current.task_id,
                    per_task=current.task_id == task_id,
                )
            task_session = await self.sessions.get_active_session_for_task(task_id)
            if task_session is not None:
                raise ActiveSessionExistsError(session_id=task_session.id, task_id=task_id, per_task=True)

            # The repository re-checks inside its transaction; a concurrent
            # start that slipped past the reads above fails there.
            started_at = ensure_utc(start_time or utc_now())
            session = await self.sessions.create(task_id, started_at)
            logger.info("session_started", session_id=session.id, task_id=task_id, started_at=started_at.isoformat())
            return session

        return await self._timed("start", _start)

    async def pause_tracking(self, session_id: int, pause_time: datetime | None = None) -> TimeSession:
        """Pause a running session.

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidStateError: If the session is not running or was paused before
            InvalidTimestampOrderError: If pause_time is not after the start
        """

        async def _pause() -> TimeSession:
            session = await self._load(session_id)
            paused = session_state.pause(session, pause_time)
            saved = await self.sessions.update(
                session_id,
                {"paused_at": paused.paused_at, "duration_seconds": paused.duration_seconds},
                expected=session,
            )
            logger.info("session_paused", session_id=session_id, duration_seconds=saved.duration_seconds)
            return saved

        return await self._timed("pause", _pause)

    async def resume_tracking(self, session_id: int, resume_time: datetime | None = None) -> TimeSession:
        """Resume a paused session.

        Raises:
            SessionNotFoundError: If the session does not exist
            InvalidStateError: If the session is not paused
            InvalidTimestampOrderError: If resume_time is not after the pause
        """

        async def _resume() -> TimeSession:
            session = await self._load(session_id)
            resumed = session_state.resume(session, resume_time)
            saved = await self.sessions.update(
                session_id,
                {"resumed_at": resumed.resumed_at, "duration_seconds": resumed.duration_seconds},
                expected=session,
            )
            logger.info("session_resumed", session_id=session_id)
            return saved

        return await self._timed("resume", _resume)

    async def stop_tracking(self, session_id: int, stop_time: datetime | None = None) -> TimeSession:
        """Stop a session and persist its final duration.

        Raises:
            SessionNotFoundError: If the session does not exist
            AlreadyStoppedError: If the session is already stopped
            InvalidTimestampOrderError: If stop_time is not after the latest timestamp
        """

        async def _stop() -> TimeSession:
            session = await self._load(session_id)
            stopped = session_state.stop(session, stop_time)
            saved = await self.sessions.update(
                session_id,
                {"stopped_at": stopped.stopped_at, "duration_seconds": stopped.duration_seconds},
                expected=session,
            )
            logger.info(
                "session_stopped",
                session_id=session_id,
                task_id=saved.task_id,
                duration_seconds=saved.duration_seconds,
            )
            return saved

        return await self._timed("stop", _stop)

    async def pause_active_session(self, pause_time: datetime | None = None) -> TimeSession | None:
        """Pause whichever session is open and running. None if there is none."""
        current = await self.sessions.get_active_session()
        if current is None or current.state != SessionState.ACTIVE:
            return None
        return await self.pause_tracking(current.id, pause_time)

    async def stop_active_session(self, stop_time: datetime | None = None) -> TimeSession | None:
        """Stop whichever session is open. None if there is none."""
        current = await self.sessions.get_active_session()
        if current is None:
            return None
        return await self.stop_tracking(current.id, stop_time)

    async def get_active_session(self) -> TimeSession | None:
        """The open (running or paused) session, if any."""
        return await self.sessions.get_active_session()

    async def get_active_session_for_task(self, task_id: int) -> TimeSession | None:
        return await self.sessions.get_active_session_for_task(task_id)

    async def get_paused_sessions(self) -> list[TimeSession]:
        return await self.sessions.get_paused_sessions()

    async def get_session(self, session_id: int) -> TimeSession | None:
        return await self.sessions.get_by_id(session_id)

    async def get_live_duration(self, session_id: int, now: datetime | None = None) -> DurationBreakdown:
        """Duration of a session as of ``now``, counting a running session up to now."""
        session = await self._load(session_id)
        return session_state.duration_breakdown(session, now)

    async def get_total_time_for_task(self, task_id: int) -> int:
        sessions = await self.sessions.list(SessionFilters(task_id=task_id))
        return sum(s.duration_seconds for s in sessions)

    async def get_session_stats(self, filters: SessionFilters | None = None) -> SessionStats:
        """Counts and duration aggregates over the matching sessions."""
        sessions = await self.sessions.list(filters)
        if not sessions:
            return SessionStats()
        durations = [s.duration_seconds for s in sessions]
        return SessionStats(
            total_sessions=len(sessions),
            total_duration=sum(durations),
            average_duration=sum(durations) / len(durations),
            longest_session=max(durations),
            shortest_session=min(durations),
            active_sessions=sum(1 for s in sessions if s.state == SessionState.ACTIVE),
            paused_sessions=sum(1 for s in sessions if s.state == SessionState.PAUSED),
            completed_sessions=sum(1 for s in sessions if s.state == SessionState.STOPPED),
        )

    async def list_sessions(self, filters: SessionFilters | None = None) -> list[TimeSession]:
        return await self.sessions.list(filters)
