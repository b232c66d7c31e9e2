"""CLI entrypoint for image-tasks."""

import logging
from collections.abc import Callable
from pathlib import Path

import rich_click as click

from image_tasks import __version__
from image_tasks.orchestrator.controllers import (
    ListTasksCommand,
    QueueStatsCommand,
    ReconcileCommand,
    SubmitTaskCommand,
    TaskCliController,
    TaskIdCommand,
    WorkerRunCommand,
)

click.rich_click.USE_MARKDOWN = True
TASK_CONTROLLER = TaskCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="image-tasks")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    envvar="IMAGE_TASKS_LOG_LEVEL",
    default="INFO",
    show_default=True,
    help="Logging level (env: IMAGE_TASKS_LOG_LEVEL).",
)
def image_tasks(log_level: str) -> None:
    """Image variant task pipeline CLI."""

    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)


@image_tasks.group()
def tasks() -> None:
    """Task submission and inspection commands."""


@tasks.command("submit")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("original_path")
def tasks_submit(db_path: Path | None, original_path: str) -> None:
    """Create a task for a local image path or an http(s) image URL."""

    _emit_lines_from(
        lambda: TASK_CONTROLLER.submit(
            SubmitTaskCommand(db_path=db_path, original_path=original_path),
        ),
    )


@tasks.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["pending", "processing", "completed", "failed"], case_sensitive=False),
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
def tasks_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List tasks, newest first."""

    _emit_lines_from(
        lambda: TASK_CONTROLLER.list_tasks(
            ListTasksCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@tasks.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def tasks_show(db_path: Path | None, task_id: str) -> None:
    """Show one task with its variants and event trail."""

    _emit_lines_from(
        lambda: TASK_CONTROLLER.show_task(TaskIdCommand(db_path=db_path, task_id=task_id)),
    )


@tasks.command("reconcile")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--older-than-seconds",
    type=click.IntRange(min=0),
    default=None,
    help="Only PENDING tasks older than this (default: IMAGE_TASKS_ORPHAN_AFTER_SECONDS).",
)
def tasks_reconcile(db_path: Path | None, older_than_seconds: int | None) -> None:
    """Enqueue jobs for PENDING tasks that never got one."""

    _emit_lines_from(
        lambda: TASK_CONTROLLER.reconcile(
            ReconcileCommand(db_path=db_path, older_than_seconds=older_than_seconds),
        ),
    )


@tasks.command("purge")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--task-id", required=True, help="Task id.")
def tasks_purge(db_path: Path | None, task_id: str) -> None:
    """Remove all stored variant files of one task."""

    _emit_lines_from(
        lambda: TASK_CONTROLLER.purge_task(TaskIdCommand(db_path=db_path, task_id=task_id)),
    )


@image_tasks.group()
def worker() -> None:
    """Worker commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Consumer threads (default: IMAGE_TASKS_WORKER_CONCURRENCY).",
)
@click.option(
    "--once/--loop",
    default=False,
    show_default=True,
    help="Handle at most one job, or loop until the queue is idle.",
)
@click.option(
    "--max-jobs",
    type=click.IntRange(min=1),
    default=None,
    help="Optional cap for processed jobs per consumer thread in loop mode.",
)
@click.option(
    "--max-idle-polls",
    type=click.IntRange(min=0),
    default=1,
    show_default=True,
    help="Consecutive empty polls before a consumer exits; 0 polls forever.",
)
def worker_run(
    db_path: Path | None,
    concurrency: int | None,
    once: bool,
    max_jobs: int | None,
    max_idle_polls: int,
) -> None:
    """Run the image task worker pool."""

    _emit_lines_from(
        lambda: TASK_CONTROLLER.run_worker(
            WorkerRunCommand(
                db_path=db_path,
                concurrency=concurrency,
                once=once,
                max_jobs=max_jobs,
                max_idle_polls=max_idle_polls or None,
            ),
        ),
    )


@image_tasks.group()
def queue() -> None:
    """Job queue commands."""


@queue.command("stats")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def queue_stats(db_path: Path | None) -> None:
    """Show job counts per delivery state."""

    _emit_lines_from(lambda: TASK_CONTROLLER.queue_stats(QueueStatsCommand(db_path=db_path)))


def _emit_lines_from(produce: Callable[[], list[str]]) -> None:
    try:
        lines = produce()
    except (ValueError, LookupError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    image_tasks()
