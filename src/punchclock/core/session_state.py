"""Session state machine and duration calculator.

Pure functions over ``TimeSession`` snapshots. No I/O: callers load and
persist sessions, this module only decides whether a transition is legal and
what the resulting timestamps and duration are.

A session moves active -> paused -> active -> stopped, with at most one
pause/resume pair. ``stopped`` is terminal.
"""

from datetime import datetime

from punchclock.errors import AlreadyStoppedError, InvalidStateError, InvalidTimestampOrderError
from punchclock.models.base import ensure_utc, utc_now
from punchclock.models.session import DurationBreakdown, SessionState, TimeSession
from punchclock.utils.timefmt import seconds_between


def derive_state(session: TimeSession) -> SessionState:
    """Return the state implied by the session's timestamps."""
    return SessionState(session.state)


def validate_timestamps(session: TimeSession) -> None:
    """Check started < paused < resumed < stopped for the timestamps present.

    Raises:
        InvalidTimestampOrderError: On the first ordering violation found
    """
    timestamps = {
        "started_at": session.started_at,
        "paused_at": session.paused_at,
        "resumed_at": session.resumed_at,
        "stopped_at": session.stopped_at,
    }

    if session.paused_at is not None and session.paused_at <= session.started_at:
        raise InvalidTimestampOrderError("Pause time must be after start time", timestamps)

    if session.resumed_at is not None:
        if session.paused_at is None:
            raise InvalidTimestampOrderError("Resume time requires a pause time", timestamps)
        if session.resumed_at <= session.paused_at:
            raise InvalidTimestampOrderError("Resume time must be after pause time", timestamps)

    if session.stopped_at is not None:
        latest = max(t for t in (session.started_at, session.paused_at, session.resumed_at) if t is not None)
        if session.stopped_at <= latest:
            raise InvalidTimestampOrderError(
                "Stop time must be after the start, pause and resume times",
                timestamps,
            )


def calculate_duration(session: TimeSession, now: datetime | None = None) -> int:
    """Sum of active intervals in whole seconds.

    active = (paused - started) + (end - resumed), where ``end`` is
    ``stopped_at`` or ``now``. A session that was never paused counts
    (end - started); one paused and not resumed counts (paused - started).

    Raises:
        InvalidTimestampOrderError: If the computed duration is negative,
            e.g. ``now`` lies before ``started_at``
    """
    end = session.stopped_at or ensure_utc(now or utc_now())

    if session.paused_at is None:
        total = seconds_between(session.started_at, end)
    else:
        total = seconds_between(session.started_at, session.paused_at)
        if session.resumed_at is not None:
            total += seconds_between(session.resumed_at, end)

    if total < 0:
        raise InvalidTimestampOrderError(
            f"Computed negative duration ({total}s) for session {session.id}",
            {"started_at": session.started_at, "end": end},
        )
    return total


def duration_breakdown(session: TimeSession, now: datetime | None = None) -> DurationBreakdown:
    """Active and paused seconds of a session as of ``now``."""
    active = calculate_duration(session, now)
    paused = 0
    if session.paused_at is not None:
        pause_end = session.resumed_at or session.stopped_at or ensure_utc(now or utc_now())
        paused = max(0, seconds_between(session.paused_at, pause_end))

    state = derive_state(session)
    return DurationBreakdown(
        total_seconds=active + paused,
        active_seconds=active,
        paused_seconds=paused,
        is_active=state == SessionState.ACTIVE,
        is_paused=state == SessionState.PAUSED,
        is_completed=state == SessionState.STOPPED,
    )


def _transition(session: TimeSession, at: datetime, **changes: datetime) -> TimeSession:
    """Apply timestamp changes, validate, and recompute the duration."""
    candidate = session.model_copy(update=changes)
    validate_timestamps(candidate)
    duration = calculate_duration(candidate, now=at)
    return candidate.model_copy(update={"duration_seconds": duration, "updated_at": utc_now()})


def pause(session: TimeSession, at: datetime | None = None) -> TimeSession:
    """Pause an active session.

    Raises:
        InvalidStateError: If the session is not active, or was already
            paused and resumed once (only one pause per session)
        InvalidTimestampOrderError: If ``at`` is not after the start
    """
    state = derive_state(session)
    if state != SessionState.ACTIVE:
        raise InvalidStateError("pause", state.value)
    if session.resumed_at is not None:
        raise InvalidStateError(
            "pause",
            state.value,
            "session was already paused once; stop it and start a new session",
        )
    at = ensure_utc(at or utc_now())
    return _transition(session, at, paused_at=at)


def resume(session: TimeSession, at: datetime | None = None) -> TimeSession:
    """Resume a paused session.

    Raises:
        InvalidStateError: If the session is not paused
        InvalidTimestampOrderError: If ``at`` is not after the pause
    """
    state = derive_state(session)
    if state != SessionState.PAUSED:
        raise InvalidStateError("resume", state.value)
    at = ensure_utc(at or utc_now())
    return _transition(session, at, resumed_at=at)


def stop(session: TimeSession, at: datetime | None = None) -> TimeSession:
    """Stop an active or paused session and fix its final duration.

    Raises:
        AlreadyStoppedError: If the session is already stopped
        InvalidTimestampOrderError: If ``at`` is not after the latest timestamp
    """
    if derive_state(session) == SessionState.STOPPED:
        raise AlreadyStoppedError(session.id or None)
    at = ensure_utc(at or utc_now())
    return _transition(session, at, stopped_at=at)
