"""CLI entrypoint for geoflow."""

import logging
from pathlib import Path

import rich_click as click

from geoflow import __version__
from geoflow.config import Settings
from geoflow.controllers import (
    ListTasksCommand,
    RetryTaskCommand,
    ServeCommand,
    WorkerCommand,
    WorkflowCliController,
    WorkflowCreateCommand,
    WorkflowLookupCommand,
)
from geoflow.engine.errors import WorkflowDefinitionError

click.rich_click.USE_MARKDOWN = True
CONTROLLER = WorkflowCliController()

DB_PATH_HELP = "SQLite DB path."


@click.group()
@click.version_option(version=__version__, prog_name="geoflow")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging level; defaults to GEOFLOW_LOG_LEVEL or INFO.",
)
def geoflow(log_level: str | None) -> None:
    """Geospatial workflow runner CLI."""

    try:
        level = (log_level or Settings.from_env().log_level).upper()
        logging.basicConfig(
            level=level,
            format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        )
    except ValueError as error:
        raise click.ClickException(f"Invalid configuration: {error}") from error


@geoflow.group()
def db() -> None:
    """Database commands."""


@db.command("init")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
def db_init(db_path: Path | None) -> None:
    """Apply schema migrations."""

    _emit_lines(CONTROLLER.init_db(db_path))


@geoflow.group()
def workflow() -> None:
    """Workflow commands."""


@workflow.command("create")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--client-id", required=True, help="Client identifier stored with the workflow.")
@click.option(
    "--geojson-file",
    "geojson_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="GeoJSON payload handed to every task.",
)
@click.option(
    "--definition",
    "definition_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Workflow definition JSON; defaults to the bundled example workflow.",
)
def workflow_create(
    db_path: Path | None,
    client_id: str,
    geojson_path: Path,
    definition_path: Path | None,
) -> None:
    """Create a workflow with queued tasks."""

    try:
        lines = CONTROLLER.create_workflow(
            WorkflowCreateCommand(
                db_path=db_path,
                client_id=client_id,
                geojson_path=geojson_path,
                definition_path=definition_path,
            ),
        )
    except WorkflowDefinitionError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@workflow.command("status")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--workflow-id", required=True, help="Workflow id.")
def workflow_status(db_path: Path | None, workflow_id: str) -> None:
    """Show workflow status and task progress."""

    try:
        lines = CONTROLLER.workflow_status(
            WorkflowLookupCommand(db_path=db_path, workflow_id=workflow_id),
        )
    except LookupError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@workflow.command("results")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--workflow-id", required=True, help="Workflow id.")
def workflow_results(db_path: Path | None, workflow_id: str) -> None:
    """Print the final result of a completed workflow."""

    try:
        lines = CONTROLLER.workflow_results(
            WorkflowLookupCommand(db_path=db_path, workflow_id=workflow_id),
        )
    except (LookupError, RuntimeError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@geoflow.group()
def tasks() -> None:
    """Task commands."""


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--workflow-id", default=None, help="Optional workflow filter.")
@click.option(
    "--status",
    type=click.Choice(["queued", "running", "completed", "failed"], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def tasks_list(
    db_path: Path | None,
    workflow_id: str | None,
    status: str | None,
    limit: int,
) -> None:
    """List tasks."""

    _emit_lines(
        CONTROLLER.list_tasks(
            ListTasksCommand(
                db_path=db_path,
                workflow_id=workflow_id,
                status=status,
                limit=limit,
            ),
        ),
    )


@tasks.command("retry")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--task-id", required=True, help="Task id.")
def tasks_retry(db_path: Path | None, task_id: str) -> None:
    """Manually re-queue a failed task."""

    try:
        lines = CONTROLLER.retry_task(RetryTaskCommand(db_path=db_path, task_id=task_id))
    except RuntimeError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@geoflow.command("worker")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Run one scheduling cycle or keep polling until interrupted.",
)
@click.option(
    "--max-cycles",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for scheduling cycles in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many consecutive cycles without a runnable task.",
)
def worker(
    db_path: Path | None,
    once: bool,
    max_cycles: int | None,
    max_idle_polls: int | None,
) -> None:
    """Run the task scheduler."""

    try:
        lines = CONTROLLER.run_worker(
            WorkerCommand(
                db_path=db_path,
                once=once,
                max_cycles=max_cycles,
                max_idle_polls=max_idle_polls,
            ),
        )
    except ValueError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@geoflow.command("serve")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help=DB_PATH_HELP)
@click.option("--host", default=None, help="Bind host; defaults to GEOFLOW_API_HOST.")
@click.option(
    "--port",
    type=click.IntRange(min=1, max=65535),
    default=None,
    help="Bind port; defaults to GEOFLOW_API_PORT.",
)
def serve(db_path: Path | None, host: str | None, port: int | None) -> None:
    """Serve the workflow status/results HTTP API."""

    try:
        CONTROLLER.serve(ServeCommand(db_path=db_path, host=host, port=port))
    except ValueError as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    geoflow()
