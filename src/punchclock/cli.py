"""CLI entry point for punchclock.

Usage:
    punchclock project add acme                  # Create a project
    punchclock task add acme PTC-1 "Write docs"  # Create a task
    punchclock task update 1 --estimate-hours 3  # Change a task
    punchclock track start 1                     # Start tracking task 1
    punchclock track pause | resume | stop       # Drive the open session
    punchclock track status                      # Show the open session
    punchclock report time --group-by day        # Time report
    punchclock init-config                       # Create config file
"""

import asyncio
import contextlib
import json
import sqlite3
import sys
from collections.abc import Awaitable, Callable
from datetime import datetime
from pathlib import Path
from typing import Any, NoReturn, TypeVar

import click
from prometheus_client import REGISTRY, write_to_textfile
from pydantic import BaseModel, ValidationError

from punchclock import __version__
from punchclock.config import Settings, get_config_path, get_default_config, load_settings_with_toml
from punchclock.core import ReportingEngine, TrackingCoordinator
from punchclock.errors import (
    ActiveSessionExistsError,
    DuplicateProjectError,
    DuplicateTaskNumberError,
    InvalidStateError,
    InvalidTimestampOrderError,
    NoActiveSessionError,
    ProjectNotFoundError,
    PunchclockError,
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
from punchclock.storage import Database, SQLiteProjectRepository, SQLiteSessionRepository, SQLiteTaskRepository
from punchclock.utils.logging import bind_context, get_logger, setup_logging
from punchclock.utils.timefmt import end_of_day, format_duration, parse_time_estimate

T = TypeVar("T")

DATETIME_FORMATS = ["%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M"]
GROUP_BY_CHOICES = ["project", "task", "tags", "day", "week", "month"]

logger = get_logger(__name__)


class ErrorCategory:
    """Error categories for clear error messages."""

    CONFIGURATION = "configuration"
    DATABASE = "database"
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    STATE = "state"
    INTERNAL = "internal"


def format_error(category: str, message: str, remediation: str) -> str:
    """Format error with category and remediation.

    Args:
        category: Error category
        message: Error message
        remediation: Suggested fix

    Returns:
        Formatted error string
    """
    return f"""
Error [{category.upper()}]: {message}

Remediation: {remediation}
"""


def describe_error(error: PunchclockError) -> tuple[str, str]:
    """Category and remediation hint for a domain error."""
    if isinstance(error, TaskNotFoundError):
        return ErrorCategory.NOT_FOUND, "List tasks with: punchclock task list"
    if isinstance(error, ProjectNotFoundError):
        return ErrorCategory.NOT_FOUND, "Create the project with: punchclock project add <name>"
    if isinstance(error, SessionNotFoundError):
        return ErrorCategory.NOT_FOUND, "Check the open session with: punchclock track status"
    if isinstance(error, NoActiveSessionError):
        return ErrorCategory.STATE, "Start one with: punchclock track start <task-id>"
    if isinstance(error, ActiveSessionExistsError):
        return ErrorCategory.STATE, "Stop the open session first: punchclock track stop"
    if isinstance(error, InvalidStateError):
        return ErrorCategory.STATE, "Check the session state with: punchclock track status"
    if isinstance(error, InvalidTimestampOrderError):
        return ErrorCategory.VALIDATION, "Timestamps must be ordered: started < paused < resumed < stopped"
    if isinstance(error, (DuplicateProjectError, DuplicateTaskNumberError)):
        return ErrorCategory.VALIDATION, "Choose a name or number that is not already taken"
    return ErrorCategory.INTERNAL, "Re-run with --log-level DEBUG for details"


def fail(category: str, message: str, remediation: str) -> NoReturn:
    click.echo(format_error(category, message, remediation), err=True)
    sys.exit(1)


class Services:
    """Repositories and engines over one open database."""

    def __init__(self, db: Database, settings: Settings) -> None:
        self.settings = settings
        self.projects = SQLiteProjectRepository(db)
        self.tasks = SQLiteTaskRepository(db)
        self.sessions = SQLiteSessionRepository(db)
        self.tracking = TrackingCoordinator(self.tasks, self.sessions)
        self.reporting = ReportingEngine(self.tasks, self.sessions, tz=settings.tzinfo)

    async def project_by_name(self, name: str) -> Project:
        project = await self.projects.get_by_name(name)
        if project is None:
            raise ProjectNotFoundError(name)
        return project

    async def current_session(self, session_id: int | None) -> TimeSession:
        """The given session, or the open one when no id is passed."""
        if session_id is not None:
            session = await self.tracking.get_session(session_id)
            if session is None:
                raise SessionNotFoundError(session_id)
            return session
        session = await self.tracking.get_active_session()
        if session is None:
            raise NoActiveSessionError()
        return session


async def _with_services(settings: Settings, action: Callable[[Services], Awaitable[T]]) -> T:
    async with Database(settings.resolved_database_path) as db:
        return await action(Services(db, settings))


def run(ctx: click.Context, action: Callable[[Services], Awaitable[T]]) -> T:
    """Run an async action against the configured database, reporting errors."""
    settings: Settings = ctx.obj["settings"]
    try:
        return asyncio.run(_with_services(settings, action))
    except PunchclockError as e:
        category, remediation = describe_error(e)
        fail(category, str(e), remediation)
    except ValidationError as e:
        fail(ErrorCategory.VALIDATION, str(e), "Check the command arguments")
    except sqlite3.Error as e:
        logger.error("database_error", error=str(e), path=str(settings.resolved_database_path))
        fail(
            ErrorCategory.DATABASE,
            f"Cannot use database at {settings.resolved_database_path}",
            f"Check the file is writable or pass --db <path>.\n\nDetails: {e}",
        )


def localize(ctx: click.Context, value: datetime | None, end: bool = False) -> datetime | None:
    """Attach the configured timezone to a naive CLI timestamp.

    With ``end`` set, a bare date (midnight) stands for the whole day.
    """
    if value is None:
        return None
    if end and value.hour == value.minute == value.second == value.microsecond == 0:
        value = end_of_day(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=ctx.obj["settings"].tzinfo)
    return value


def parse_estimate_hours(ctx: click.Context, param: click.Parameter, value: str | None) -> float | None:
    """Accept plain hours (``2.5``) or a unit estimate (``90m``, ``1d``)."""
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        pass
    try:
        return parse_time_estimate(value) / 3600
    except ValueError as e:
        raise click.BadParameter(str(e)) from e


def is_json(ctx: click.Context) -> bool:
    return ctx.obj["settings"].output_format == "json"


def echo_json(data: BaseModel | list[BaseModel]) -> None:
    if isinstance(data, list):
        click.echo(json.dumps([item.model_dump(mode="json") for item in data], indent=2))
    else:
        click.echo(data.model_dump_json(indent=2))


def format_time(ctx: click.Context, value: datetime | None) -> str:
    if value is None:
        return "-"
    return value.astimezone(ctx.obj["settings"].tzinfo).strftime("%Y-%m-%d %H:%M:%S")


def echo_session(ctx: click.Context, session: TimeSession, action: str) -> None:
    if is_json(ctx):
        echo_json(session)
        return
    click.echo(
        f"{action} session {session.id} on task {session.task_id} "
        f"[{session.state.value}] {format_duration(session.duration_seconds)}"
    )


def write_metrics(settings: Settings) -> None:
    if settings.metrics_enabled and settings.metrics_file:
        write_to_textfile(settings.metrics_file, REGISTRY)


@click.group()
@click.option(
    "--config",
    type=click.Path(exists=False),
    help="Override global config file path",
)
@click.option(
    "--db",
    type=click.Path(dir_okay=False),
    help="Override database file path",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"]),
    help="Override log level",
)
@click.option("--json", "json_output", is_flag=True, help="Print JSON instead of tables")
@click.version_option(version=__version__, prog_name="punchclock")
@click.pass_context
def main(
    ctx: click.Context,
    config: str | None,
    db: str | None,
    log_level: str | None,
    json_output: bool,
) -> None:
    """Punch the clock: track time on tasks and report on it.

    Configuration is loaded from (in priority order):
    1. CLI arguments
    2. Environment variables (PUNCHCLOCK_*)
    3. Global config file (~/.config/punchclock/config.toml)
    4. Built-in defaults
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config

    try:
        settings = load_settings_with_toml(Path(config) if config else None)
        if db:
            settings.database_path = db
        if log_level:
            settings.log_level = log_level
        if json_output:
            settings.output_format = "json"
    except (ValidationError, ValueError) as e:
        fail(ErrorCategory.CONFIGURATION, "Invalid configuration", f"Fix the config file or environment.\n\n{e}")

    # Logs go to stderr so command output stays parseable
    setup_logging(settings, use_stderr=True)
    bind_context(command=ctx.invoked_subcommand)
    ctx.obj["settings"] = settings
    ctx.call_on_close(lambda: write_metrics(settings))


@main.command()
@click.pass_context
def init_config(ctx: click.Context) -> None:
    """Create global configuration file with defaults.

    Creates the configuration file at ~/.config/punchclock/config.toml
    (or %APPDATA%/punchclock/config.toml on Windows).
    """
    import tomli_w

    config_path = Path(ctx.obj.get("config_path") or get_config_path())

    if config_path.exists():
        click.echo(f"Config file already exists: {config_path}")
        if not click.confirm("Overwrite?"):
            sys.exit(0)

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "wb") as f:
        tomli_w.dump(get_default_config(), f)

    # chmod may not be supported on Windows
    with contextlib.suppress(OSError):
        config_path.chmod(0o600)

    click.echo(f"Created config file: {config_path}")


# --- Projects ---------------------------------------------------------------


@main.group()
def project() -> None:
    """Manage projects."""


@project.command("add")
@click.argument("name")
@click.option("--description", help="Project description")
@click.pass_context
def project_add(ctx: click.Context, name: str, description: str | None) -> None:
    """Create a project."""
    created = run(ctx, lambda s: s.projects.create(Project(name=name, description=description)))
    if is_json(ctx):
        echo_json(created)
    else:
        click.echo(f"Created project {created.id}: {created.name}")


@project.command("list")
@click.pass_context
def project_list(ctx: click.Context) -> None:
    """List projects."""
    projects = run(ctx, lambda s: s.projects.list())
    if is_json(ctx):
        echo_json(projects)
        return
    if not projects:
        click.echo("No projects.")
        return
    for p in projects:
        click.echo(f"{p.id:>4}  {p.name:<24}  {p.description or ''}")


@project.command("show")
@click.argument("name")
@click.pass_context
def project_show(ctx: click.Context, name: str) -> None:
    """Show a project with its task count and tracked time."""

    async def _show(s: Services) -> dict[str, Any]:
        owner = await s.project_by_name(name)
        tasks = await s.tasks.list(TaskFilters(project_id=owner.id))
        sessions = await s.tracking.list_sessions(SessionFilters(task_ids=[t.id for t in tasks]))
        return {
            "project": owner,
            "task_count": len(tasks),
            "completed_tasks": sum(1 for t in tasks if t.state == TaskState.COMPLETED.value),
            "total_time": sum(session.duration_seconds for session in sessions),
        }

    details = run(ctx, _show)
    owner: Project = details["project"]
    if is_json(ctx):
        click.echo(json.dumps({**details, "project": owner.model_dump(mode="json")}, indent=2))
        return

    click.echo(f"Project {owner.id}: {owner.name}")
    if owner.description:
        click.echo(f"  {owner.description}")
    click.echo(f"  Tasks:      {details['completed_tasks']}/{details['task_count']} completed")
    click.echo(f"  Time spent: {format_duration(details['total_time'])}")
    click.echo(f"  Created:    {format_time(ctx, owner.created_at)}")


@project.command("delete")
@click.argument("name")
@click.option("--force", is_flag=True, help="Delete without confirmation")
@click.pass_context
def project_delete(ctx: click.Context, name: str, force: bool) -> None:
    """Delete a project with all its tasks and sessions."""
    if not force:
        click.confirm(f"Delete project '{name}' with all its tasks and time sessions?", abort=True)

    async def _delete(s: Services) -> Project:
        owner = await s.project_by_name(name)
        await s.projects.delete(owner.id)
        return owner

    deleted = run(ctx, _delete)
    click.echo(f"Deleted project {deleted.id}: {deleted.name}")


# --- Tasks ------------------------------------------------------------------


@main.group()
def task() -> None:
    """Manage tasks."""


@task.command("add")
@click.argument("project_name", metavar="PROJECT")
@click.argument("number")
@click.argument("title")
@click.option("--description", help="Task description")
@click.option(
    "--estimate-hours",
    callback=parse_estimate_hours,
    help='Time estimate in hours, or with a unit ("90m", "1d")',
)
@click.option("--size", type=float, help="Size estimate in story points")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.pass_context
def task_add(
    ctx: click.Context,
    project_name: str,
    number: str,
    title: str,
    description: str | None,
    estimate_hours: float | None,
    size: float | None,
    tags: tuple[str, ...],
) -> None:
    """Create a task in PROJECT."""

    async def _add(s: Services) -> Task:
        owner = await s.project_by_name(project_name)
        return await s.tasks.create(
            Task(
                project_id=owner.id,
                number=number,
                title=title,
                description=description,
                time_estimate_hours=estimate_hours,
                size_estimate=size,
                tags=list(tags),
            )
        )

    created = run(ctx, _add)
    if is_json(ctx):
        echo_json(created)
    else:
        click.echo(f"Created task {created.id}: {created.number} {created.title}")


@task.command("list")
@click.option("--project", "project_name", help="Only tasks in this project")
@click.option("--state", type=click.Choice([s.value for s in TaskState]), help="Only tasks in this state")
@click.option("--tag", "tags", multiple=True, help="Only tasks carrying every given tag")
@click.pass_context
def task_list(ctx: click.Context, project_name: str | None, state: str | None, tags: tuple[str, ...]) -> None:
    """List tasks."""

    async def _list(s: Services) -> list[Task]:
        project_id = (await s.project_by_name(project_name)).id if project_name else None
        return await s.tasks.list(TaskFilters(project_id=project_id, state=state, tags=list(tags)))

    tasks = run(ctx, _list)
    if is_json(ctx):
        echo_json(tasks)
        return
    if not tasks:
        click.echo("No tasks.")
        return
    for t in tasks:
        estimate = f"{t.time_estimate_hours:g}h" if t.time_estimate_hours else "-"
        tag_text = ",".join(t.tags)
        click.echo(f"{t.id:>4}  {t.number:<10}  {t.state:<11}  {estimate:>6}  {t.title}  {tag_text}")


@task.command("state")
@click.argument("task_id", type=int)
@click.argument("state", type=click.Choice([s.value for s in TaskState]))
@click.pass_context
def task_state(ctx: click.Context, task_id: int, state: str) -> None:
    """Set the state of TASK_ID."""
    updated = run(ctx, lambda s: s.tasks.update(task_id, {"state": state}))
    if is_json(ctx):
        echo_json(updated)
    else:
        click.echo(f"Task {updated.number} is now {updated.state}")


@task.command("show")
@click.argument("task_id", type=int)
@click.pass_context
def task_show(ctx: click.Context, task_id: int) -> None:
    """Show TASK_ID with its time sessions."""

    async def _show(s: Services) -> tuple[Task, list[TimeSession]]:
        found = await s.tasks.get_by_id(task_id)
        if found is None:
            raise TaskNotFoundError(task_id)
        return found, await s.tracking.list_sessions(SessionFilters(task_id=task_id))

    found, sessions = run(ctx, _show)
    total = sum(session.duration_seconds for session in sessions)
    if is_json(ctx):
        click.echo(
            json.dumps(
                {
                    "task": found.model_dump(mode="json"),
                    "total_time": total,
                    "sessions": [session.model_dump(mode="json") for session in sessions],
                },
                indent=2,
            )
        )
        return

    click.echo(f"Task {found.id}: {found.number} {found.title}")
    if found.description:
        click.echo(f"  {found.description}")
    click.echo(f"  State:      {found.state}")
    if found.time_estimate_hours:
        click.echo(f"  Estimate:   {found.time_estimate_hours:g}h")
    if found.size_estimate:
        click.echo(f"  Size:       {found.size_estimate:g} points")
    if found.tags:
        click.echo(f"  Tags:       {', '.join(found.tags)}")
    click.echo(f"  Time spent: {format_duration(total)} in {len(sessions)} sessions")
    for session in sessions:
        click.echo(
            f"    {session.id:>4}  {format_time(ctx, session.started_at)}  "
            f"{session.state.value:<7}  {format_duration(session.duration_seconds)}"
        )


@task.command("update")
@click.argument("task_id", type=int)
@click.option("--number", help="New task number")
@click.option("--title", help="New title")
@click.option("--description", help="New description")
@click.option(
    "--estimate-hours",
    callback=parse_estimate_hours,
    help='Time estimate in hours, or with a unit ("90m", "1d")',
)
@click.option("--size", type=float, help="Size estimate in story points")
@click.option("--state", type=click.Choice([s.value for s in TaskState]), help="New state")
@click.option("--tag", "tags", multiple=True, help="Replace tags (repeatable)")
@click.option("--clear-tags", is_flag=True, help="Remove all tags")
@click.pass_context
def task_update(
    ctx: click.Context,
    task_id: int,
    number: str | None,
    title: str | None,
    description: str | None,
    estimate_hours: float | None,
    size: float | None,
    state: str | None,
    tags: tuple[str, ...],
    clear_tags: bool,
) -> None:
    """Change fields of TASK_ID."""
    fields: dict[str, Any] = {
        name: value
        for name, value in {
            "number": number,
            "title": title,
            "description": description,
            "time_estimate_hours": estimate_hours,
            "size_estimate": size,
            "state": state,
        }.items()
        if value is not None
    }
    if tags or clear_tags:
        fields["tags"] = [] if clear_tags else list(tags)
    if not fields:
        raise click.UsageError("Nothing to update; pass at least one option")

    updated = run(ctx, lambda s: s.tasks.update(task_id, fields))
    if is_json(ctx):
        echo_json(updated)
    else:
        click.echo(f"Updated task {updated.id}: {', '.join(sorted(fields))}")


@task.command("delete")
@click.argument("task_id", type=int)
@click.option("--force", is_flag=True, help="Delete without confirmation")
@click.pass_context
def task_delete(ctx: click.Context, task_id: int, force: bool) -> None:
    """Delete TASK_ID and its time sessions."""
    if not force:
        click.confirm(f"Delete task {task_id} and its time sessions?", abort=True)

    async def _delete(s: Services) -> None:
        if not await s.tasks.delete(task_id):
            raise TaskNotFoundError(task_id)

    run(ctx, _delete)
    click.echo(f"Deleted task {task_id}")


# --- Tracking ---------------------------------------------------------------


@main.group()
def track() -> None:
    """Start, pause, resume and stop time sessions."""


at_option = click.option(
    "--at",
    type=click.DateTime(formats=DATETIME_FORMATS),
    help="Timestamp to record instead of now (configured timezone if naive)",
)
session_option = click.option("--session", "session_id", type=int, help="Session id (defaults to the open one)")


@track.command("start")
@click.argument("task_id", type=int)
@at_option
@click.pass_context
def track_start(ctx: click.Context, task_id: int, at: datetime | None) -> None:
    """Start tracking TASK_ID."""
    session = run(ctx, lambda s: s.tracking.start_tracking(task_id, localize(ctx, at)))
    echo_session(ctx, session, "Started")


@track.command("pause")
@session_option
@at_option
@click.pass_context
def track_pause(ctx: click.Context, session_id: int | None, at: datetime | None) -> None:
    """Pause the running session."""

    async def _pause(s: Services) -> TimeSession:
        current = await s.current_session(session_id)
        return await s.tracking.pause_tracking(current.id, localize(ctx, at))

    echo_session(ctx, run(ctx, _pause), "Paused")


@track.command("resume")
@session_option
@at_option
@click.pass_context
def track_resume(ctx: click.Context, session_id: int | None, at: datetime | None) -> None:
    """Resume the paused session."""

    async def _resume(s: Services) -> TimeSession:
        current = await s.current_session(session_id)
        return await s.tracking.resume_tracking(current.id, localize(ctx, at))

    echo_session(ctx, run(ctx, _resume), "Resumed")


@track.command("stop")
@session_option
@at_option
@click.pass_context
def track_stop(ctx: click.Context, session_id: int | None, at: datetime | None) -> None:
    """Stop the open session."""

    async def _stop(s: Services) -> TimeSession:
        current = await s.current_session(session_id)
        return await s.tracking.stop_tracking(current.id, localize(ctx, at))

    echo_session(ctx, run(ctx, _stop), "Stopped")


@track.command("status")
@click.pass_context
def track_status(ctx: click.Context) -> None:
    """Show the open session and its live duration."""

    async def _status(s: Services) -> dict[str, Any] | None:
        session = await s.tracking.get_active_session()
        if session is None:
            return None
        task = await s.tasks.get_by_id(session.task_id)
        live = await s.tracking.get_live_duration(session.id)
        return {"session": session, "task": task, "duration": live}

    status = run(ctx, _status)
    if status is None:
        if is_json(ctx):
            click.echo("null")
        else:
            click.echo("No time session is open.")
        return

    session: TimeSession = status["session"]
    if is_json(ctx):
        click.echo(
            json.dumps(
                {
                    "session": session.model_dump(mode="json"),
                    "duration": status["duration"].model_dump(mode="json"),
                },
                indent=2,
            )
        )
        return

    task: Task | None = status["task"]
    label = f"{task.number} {task.title}" if task else f"task {session.task_id}"
    click.echo(f"Session {session.id} on {label}")
    click.echo(f"  State:    {session.state.value}")
    click.echo(f"  Started:  {format_time(ctx, session.started_at)}")
    if session.state == SessionState.PAUSED:
        click.echo(f"  Paused:   {format_time(ctx, session.paused_at)}")
    click.echo(f"  Duration: {format_duration(status['duration'].total_seconds)}")


# --- Reports ----------------------------------------------------------------


def report_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Scope and window options shared by every report command."""
    options = [
        click.option("--project", "project_name", help="Only tasks in this project"),
        click.option("--task", "task_id", type=int, help="Only this task"),
        click.option("--tag", "tags", multiple=True, help="Only tasks carrying every given tag"),
        click.option("--from", "from_date", type=click.DateTime(formats=DATETIME_FORMATS), help="Window start"),
        click.option("--to", "to_date", type=click.DateTime(formats=DATETIME_FORMATS), help="Window end"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


async def build_filters(
    ctx: click.Context,
    s: Services,
    project_name: str | None,
    task_id: int | None,
    tags: tuple[str, ...],
    from_date: datetime | None,
    to_date: datetime | None,
) -> ReportFilters:
    project_id = (await s.project_by_name(project_name)).id if project_name else None
    return ReportFilters(
        project_id=project_id,
        task_id=task_id,
        tags=list(tags),
        from_date=localize(ctx, from_date),
        to_date=localize(ctx, to_date, end=True),
    )


@main.group()
def report() -> None:
    """Time, velocity and estimation reports."""


@report.command("time")
@report_options
@click.option("--group-by", type=click.Choice(GROUP_BY_CHOICES), help="Break totals down by group")
@click.pass_context
def report_time(ctx: click.Context, group_by: str | None, **scope: Any) -> None:
    """Time spent per group, task and day."""

    async def _report(s: Services) -> Any:
        return await s.reporting.time_report(await build_filters(ctx, s, **scope), group_by=group_by)

    result = run(ctx, _report)
    if is_json(ctx):
        echo_json(result)
        return

    click.echo(f"Total time:     {format_duration(result.total_time)}")
    click.echo(f"Sessions:       {result.session_count}")
    click.echo(f"Average:        {format_duration(result.average_session_time)}")
    click.echo(f"Longest:        {format_duration(result.longest_session)}")
    if result.groups:
        click.echo()
        click.echo(f"By {group_by}:")
        for group in result.groups:
            click.echo(f"  {group.group:<24} {format_duration(group.total_time):>14}  ({group.session_count})")


@report.command("velocity")
@report_options
@click.option("--period", type=click.Choice(["week", "month"]), help="Trend bucket size")
@click.pass_context
def report_velocity(ctx: click.Context, period: str | None, **scope: Any) -> None:
    """Completed tasks per day, with a per-period trend."""
    period = period or ctx.obj["settings"].default_report_period

    async def _report(s: Services) -> Any:
        return await s.reporting.velocity_report(await build_filters(ctx, s, **scope), period=period)

    result = run(ctx, _report)
    if is_json(ctx):
        echo_json(result)
        return

    click.echo(f"Tasks:           {result.completed_tasks}/{result.total_tasks} completed")
    click.echo(f"Completion rate: {result.completion_rate:.1f}%")
    click.echo(f"Velocity:        {result.velocity:.2f} tasks/day over {result.period_days} days")
    click.echo(f"Time spent:      {format_duration(result.total_time_spent)}")
    click.echo(f"Avg task time:   {format_duration(result.average_task_time)}")
    click.echo(f"Productivity:    {result.productivity_score:.1f}")
    if result.trend:
        click.echo()
        click.echo(f"Per {period}:")
        for point in result.trend:
            click.echo(f"  {point.period}  {point.velocity:6.2f}/day  {point.completed_tasks:>3} done")


@report.command("estimation")
@report_options
@click.pass_context
def report_estimation(ctx: click.Context, **scope: Any) -> None:
    """Estimate-versus-actual accuracy and bias."""

    async def _report(s: Services) -> Any:
        return await s.reporting.estimation_report(await build_filters(ctx, s, **scope))

    result = run(ctx, _report)
    if is_json(ctx):
        echo_json(result)
        return

    click.echo(f"Coverage:    {result.estimation_coverage:.1f}% of {result.total_tasks} tasks")
    click.echo(f"Accuracy:    {result.time_accuracy:.1f}% ({result.estimation_quality.value})")
    click.echo(f"Bias:        {result.time_bias:+.1f}%")
    click.echo(f"Consistency: {result.estimation_consistency:.1f}")
    if result.recommendations:
        click.echo()
        click.echo("Recommendations:")
        for hint in result.recommendations:
            click.echo(f"  - {hint}")


if __name__ == "__main__":
    main()
