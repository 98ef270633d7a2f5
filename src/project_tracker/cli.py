"""Command-line interface for the project tracker."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Optional

import typer

from .errors import MigrationFailure, TrackerError
from .filters import Filter
from .models import Project
from .paths import resolve_db_path

if TYPE_CHECKING:
    from .controller import ActivityController

app = typer.Typer(help="Track the time you spend on your projects.")

DATETIME_FORMATS = ["%Y-%m-%d %H:%M", "%Y-%m-%dT%H:%M", "%Y-%m-%d %H:%M:%S"]


def _db_option():
    return typer.Option(
        None,
        "--db",
        help="Location of the tracker SQLite database.",
    )


@app.callback(no_args_is_help=True)
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs.")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


@contextmanager
def _tracker(db_path: Optional[Path]) -> Iterator["ActivityController"]:
    from .controller import ActivityController
    from .db import gateway_connection

    try:
        with gateway_connection(resolve_db_path(db_path)) as gateway:
            yield ActivityController.from_gateway(gateway)
    except MigrationFailure as exc:
        typer.secho(f"Could not open the database: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=2) from exc
    except TrackerError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc


def _find_project(controller: "ActivityController", project_id: int) -> Project:
    project = controller.projection.find_project(project_id)
    if project is None:
        typer.secho(f"No project with id {project_id}.", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    return project


@app.command()
def projects(
    show_all: bool = typer.Option(False, "--all", "-a", help="Include archived projects."),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """List projects."""
    with _tracker(db_path) as controller:
        view = controller.projection.all_projects if show_all else controller.projection.active_projects
        selected = controller.selected_project
        for project in view:
            marker = "*" if project == selected else " "
            suffix = "" if project.active else " (archived)"
            typer.echo(f"{marker} {project.id:>4}  {project.title}{suffix}")


@app.command("add-project")
def add_project(
    title: str = typer.Argument(..., help="Title of the new project."),
    description: str = typer.Option("", "--description", "-d"),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Create a new project."""
    with _tracker(db_path) as controller:
        try:
            project = controller.add_project(Project(title=title, description=description))
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc
        typer.echo(f"Added project {project.id}: {project.title}")


@app.command("rename-project")
def rename_project(
    project_id: int = typer.Argument(...),
    title: str = typer.Argument(...),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Change the title of a project."""
    with _tracker(db_path) as controller:
        project = _find_project(controller, project_id)
        try:
            controller.update_project(project, title=title)
        except ValueError as exc:
            raise typer.BadParameter(str(exc)) from exc


@app.command("archive-project")
def archive_project(project_id: int = typer.Argument(...), db_path: Optional[Path] = _db_option()) -> None:
    """Hide a project from the active project list."""
    with _tracker(db_path) as controller:
        controller.update_project(_find_project(controller, project_id), active=False)


@app.command("restore-project")
def restore_project(project_id: int = typer.Argument(...), db_path: Optional[Path] = _db_option()) -> None:
    """Make an archived project active again."""
    with _tracker(db_path) as controller:
        controller.update_project(_find_project(controller, project_id), active=True)


@app.command("remove-project")
def remove_project(
    project_id: int = typer.Argument(...),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation."),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Delete a project and all of its activities."""
    with _tracker(db_path) as controller:
        project = _find_project(controller, project_id)
        if not yes:
            typer.confirm(
                f"Delete project '{project.title}' and all of its activities?", abort=True
            )
        controller.remove_project(project)


@app.command()
def select(project_id: int = typer.Argument(...), db_path: Optional[Path] = _db_option()) -> None:
    """Switch to another project; a running activity continues on it."""
    with _tracker(db_path) as controller:
        controller.change_project(_find_project(controller, project_id))
        typer.echo(f"Selected {controller.selected_project.title}.")


@app.command()
def start(
    at: Optional[datetime] = typer.Option(None, "--at", formats=DATETIME_FORMATS),
    project_id: Optional[int] = typer.Option(None, "--project", "-p"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Start tracking the selected project."""
    with _tracker(db_path) as controller:
        if project_id is not None:
            controller.change_project(_find_project(controller, project_id))
        if description is not None:
            controller.set_description(description)
        controller.start(at)
        typer.echo(
            f"Tracking {controller.selected_project.title} since {controller.start_time:%H:%M}."
        )


@app.command()
def stop(
    at: Optional[datetime] = typer.Option(None, "--at", formats=DATETIME_FORMATS),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Stop tracking and record the activity."""
    from .reporting import format_duration

    with _tracker(db_path) as controller:
        recorded = controller.stop(at)
        for activity in recorded:
            typer.echo(f"Recorded {activity} ({format_duration(activity.duration)})")


@app.command()
def describe(text: str = typer.Argument(...), db_path: Optional[Path] = _db_option()) -> None:
    """Set the description of the running activity."""
    with _tracker(db_path) as controller:
        controller.set_description(text)


@app.command()
def status(db_path: Optional[Path] = _db_option()) -> None:
    """Show what is being tracked."""
    from .reporting import format_duration

    with _tracker(db_path) as controller:
        project = controller.selected_project
        if not controller.active:
            title = project.title if project else "none"
            typer.echo(f"Idle. Selected project: {title}.")
            return
        typer.echo(
            f"Tracking {project.title} since {controller.start_time:%Y-%m-%d %H:%M} "
            f"({format_duration(controller.elapsed)})."
        )
        if controller.description:
            typer.echo(f"Description: {controller.description}")


@app.command("filter")
def set_filter(
    project_id: Optional[int] = typer.Option(None, "--project", "-p"),
    since: Optional[datetime] = typer.Option(None, "--since", formats=["%Y-%m-%d"]),
    until: Optional[datetime] = typer.Option(None, "--until", formats=["%Y-%m-%d"]),
    contains: Optional[str] = typer.Option(None, "--contains"),
    clear: bool = typer.Option(False, "--clear", help="Show all activities again."),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Restrict the activities shown by ``log`` and ``report``."""
    with _tracker(db_path) as controller:
        if clear:
            controller.set_filter(None)
            return
        new_filter = Filter(
            project_id=project_id,
            start_date=since.date() if since else None,
            end_date=until.date() if until else None,
            description=contains or None,
        )
        controller.set_filter(None if new_filter.is_empty else new_filter)


@app.command()
def log(db_path: Optional[Path] = _db_option()) -> None:
    """List the activities matching the current filter."""
    from .reporting import format_duration

    with _tracker(db_path) as controller:
        activities = controller.activities
        if not activities:
            typer.echo("No activities.")
            return
        for activity in activities:
            typer.echo(
                f"{activity.id:>5}  {activity.start:%Y-%m-%d %H:%M}-{activity.end:%H:%M}  "
                f"{format_duration(activity.duration)}  {activity.project.title}  "
                f"{activity.description}"
            )


@app.command("remove-activity")
def remove_activity(activity_id: int = typer.Argument(...), db_path: Optional[Path] = _db_option()) -> None:
    """Delete a recorded activity."""
    with _tracker(db_path) as controller:
        activity = controller.projection.find_activity(activity_id)
        if activity is None:
            typer.secho(f"No activity with id {activity_id}.", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        controller.remove_activity(activity)


@app.command()
def report(
    by: str = typer.Option("day", "--by", help="One of day, week, month, quarter, project."),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Print tracked time of the filtered activities grouped by period or project."""
    from .reporting import REPORTS, SummaryPrinter

    if by not in REPORTS:
        raise typer.BadParameter(f"must be one of {', '.join(REPORTS)}", param_hint="--by")
    with _tracker(db_path) as controller:
        SummaryPrinter(controller.activities).print_report(by)


@app.command()
def summary(
    date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Date (YYYY-MM-DD) to summarize. Defaults to today.",
    ),
    db_path: Optional[Path] = _db_option(),
) -> None:
    """Print a high-level summary for a specific day."""
    from .reporting import SummaryPrinter

    target = datetime.strptime(date, "%Y-%m-%d") if date else datetime.now()
    with _tracker(db_path) as controller:
        SummaryPrinter(controller.projection.all_activities()).print_daily_summary(target)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(
        8765, "--port", min=1, max=65535, help="TCP port for the API."
    ),
    db_path: Optional[Path] = _db_option(),
    idle_minutes: Optional[float] = typer.Option(
        None,
        "--idle-threshold",
        min=0.5,
        help="Minutes without input before the user counts as inactive.",
    ),
) -> None:
    """Run the local HTTP API with the inactivity monitor."""
    from .server_runner import run_server

    run_server(
        host=host,
        port=port,
        db_path=db_path,
        idle_minutes=idle_minutes,
    )


if __name__ == "__main__":  # pragma: no cover
    app()
