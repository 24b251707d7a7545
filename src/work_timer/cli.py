"""Command-line interface for the work timer."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Optional

import typer

from .catalog import ProjectCatalog
from .config import TrackerSettings
from .paths import get_db_path, get_log_path
from .store import Store
from .worklog import WorkLogStore

app = typer.Typer(help="Desktop work timer driven by the foreground app and idle time.")
project_app = typer.Typer(help="Manage projects and their program matchers.")
app.add_typer(project_app, name="project")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

DB_OPTION = typer.Option(
    None,
    "--db",
    path_type=Path,
    help="Location of the work timer SQLite database.",
)


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
    )


@app.command()
def run(
    db_path: Optional[Path] = DB_OPTION,
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        path_type=Path,
        help="Also write logs to this file (defaults to the data directory).",
    ),
) -> None:
    """Track activity in the foreground until interrupted."""
    from .tracker import Tracker

    handler = logging.FileHandler(log_file or get_log_path(), encoding="utf-8")
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.getLogger().addHandler(handler)

    tracker = Tracker.open(db_path or get_db_path())
    typer.echo("Tracking activity (Ctrl+C to stop)")
    tracker.run_forever()


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the API."
    ),
    db_path: Optional[Path] = DB_OPTION,
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Open the API documentation in your default browser.",
    ),
) -> None:
    """Track activity and serve the local control API."""
    from .server_runner import run_server

    run_server(
        host=host,
        port=port,
        db_path=db_path or get_db_path(),
        settings=TrackerSettings(),
        open_browser=open_browser,
    )


@app.command()
def summary(
    date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Date (YYYY-MM-DD) to summarize. Defaults to today.",
    ),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Print a summary of time per state and project for one day."""
    from .reporting import SummaryPrinter

    target = datetime.strptime(date, "%Y-%m-%d") if date else datetime.now()
    with _catalog(db_path) as (catalog, work_logs):
        SummaryPrinter(catalog, work_logs).print_daily_summary(target)


@app.command()
def settings(
    sleeping_threshold: Optional[int] = typer.Option(
        None, "--sleeping-threshold", min=1, help="Seconds of rest before counting as sleep."
    ),
    hardworking_threshold: Optional[int] = typer.Option(
        None, "--hardworking-threshold", min=1, help="Seconds of work before hard working."
    ),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Show settings, or update thresholds when options are given."""
    from .config import SettingsStore

    store = Store.open(db_path or get_db_path())
    try:
        settings_store = SettingsStore(store)
        updates = {}
        if sleeping_threshold is not None:
            updates["sleeping_threshold_seconds"] = sleeping_threshold
        if hardworking_threshold is not None:
            updates["hardworking_threshold_seconds"] = hardworking_threshold
        current = settings_store.update(updates) if updates else settings_store.load()
        for key, value in current.to_mapping().items():
            typer.echo(f"{key}: {value}")
    finally:
        store.close()


@project_app.command("list")
def project_list(db_path: Optional[Path] = DB_OPTION) -> None:
    """List projects; the selected one is marked with '*'."""
    with _catalog(db_path) as (catalog, _):
        selected = catalog.get_selected_project_id()
        projects = catalog.list_projects()
        if not projects:
            typer.echo("No projects yet.")
        for project in projects:
            marker = "*" if project.id == selected else " "
            programs = ", ".join(project.program_matchers) or "-"
            typer.echo(
                f"{marker} {project.id}  {project.name:<24} {project.daily_goal_hours:g}h/day  [{programs}]"
            )


@project_app.command("add")
def project_add(
    name: str = typer.Argument(..., help="Project name."),
    programs: List[str] = typer.Option([], "--program", "-p", help="Program matcher (repeatable)."),
    goal: float = typer.Option(8.0, "--goal", min=0.1, help="Daily goal in hours."),
    color: str = typer.Option("#3B82F6", "--color", help="Display color."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Create a project."""
    with _catalog(db_path) as (catalog, _):
        try:
            project = catalog.create_project(
                name, color=color, program_matchers=programs, daily_goal_hours=goal
            )
        except ValueError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc
        typer.echo(f"Created project {project.name} ({project.id})")


@project_app.command("remove")
def project_remove(
    project_id: str = typer.Argument(..., help="Project id."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Delete a project and its work logs."""
    with _catalog(db_path) as (catalog, _):
        if not catalog.delete_project(project_id):
            typer.echo(f"Project not found: {project_id}", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"Deleted project {project_id}")


@project_app.command("select")
def project_select(
    project_id: Optional[str] = typer.Argument(None, help="Project id; omit to clear."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Select the project that work time is attributed to."""
    with _catalog(db_path) as (catalog, _):
        if not catalog.select_project(project_id):
            typer.echo(f"Project not found: {project_id}", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"Current project: {project_id or '(none)'}")


@project_app.command("add-program")
def project_add_program(
    project_id: str = typer.Argument(..., help="Project id."),
    matcher: str = typer.Argument(..., help="Program name or fragment to match."),
    db_path: Optional[Path] = DB_OPTION,
) -> None:
    """Add a program matcher to a project."""
    with _catalog(db_path) as (catalog, _):
        if not catalog.add_program_matcher(project_id, matcher):
            typer.echo("Matcher already present or project not found.", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"Added {matcher!r} to {project_id}")


@contextmanager
def _catalog(db_path: Optional[Path]) -> Iterator[tuple[ProjectCatalog, WorkLogStore]]:
    """Open the store and yield ``(catalog, work_logs)`` for one command."""
    store = Store.open(db_path or get_db_path())
    try:
        work_logs = WorkLogStore(store)
        yield ProjectCatalog(store, work_logs), work_logs
    finally:
        store.close()
