"""Controllers for image task CLI commands."""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from image_tasks.config import Settings
from image_tasks.http.fetcher import RemoteFetcher
from image_tasks.imaging.content_store import ContentStore
from image_tasks.imaging.variants import VariantEngine
from image_tasks.orchestrator.models import TaskStatus
from image_tasks.orchestrator.pool import WorkerPool
from image_tasks.orchestrator.queue import SQLiteJobQueue
from image_tasks.orchestrator.repository import SQLiteTaskRepository
from image_tasks.orchestrator.services import TaskOrchestrator
from image_tasks.orchestrator.worker import ConsumerRunSummary, ImageTaskWorker, JobConsumer


@dataclass(slots=True)
class SubmitTaskCommand:
    """CLI input for task submission."""

    db_path: Path | None
    original_path: str


@dataclass(slots=True)
class ListTasksCommand:
    """CLI input for task listing."""

    db_path: Path | None
    status: str | None
    limit: int


@dataclass(slots=True)
class TaskIdCommand:
    """CLI input for commands addressing one task."""

    db_path: Path | None
    task_id: str


@dataclass(slots=True)
class ReconcileCommand:
    db_path: Path | None
    older_than_seconds: int | None


@dataclass(slots=True)
class WorkerRunCommand:
    """CLI input for worker execution."""

    db_path: Path | None
    concurrency: int | None
    once: bool
    max_jobs: int | None
    max_idle_polls: int | None = 1


@dataclass(slots=True)
class QueueStatsCommand:
    db_path: Path | None


class TaskCliController:
    """Coordinates submission, worker and inspection CLI operations."""

    def submit(self, command: SubmitTaskCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _task_stores(settings) as (repository, queue):
            orchestrator = TaskOrchestrator(
                repository=repository,
                queue=queue,
                job_max_attempts=settings.worker.job_max_attempts,
            )
            submission = orchestrator.create_task(command.original_path)

        return [
            "Task submitted: "
            f"task_id={submission.task_id} status={submission.status.value} "
            f"price={submission.price}",
        ]

    def list_tasks(self, command: ListTasksCommand) -> list[str]:
        settings = _settings(command.db_path)
        status_filter = _parse_status(command.status)
        with _task_stores(settings) as (repository, _):
            tasks = repository.list_all(status=status_filter, limit=command.limit)

        lines = [f"Tasks: {len(tasks)}"]
        for task in tasks:
            lines.append(
                f"  {task.task_id} status={task.status.value} price={task.price} "
                f"variants={len(task.images)} created_at={task.created_at.isoformat()} "
                f"source={task.original_path}",
            )
        return lines

    def show_task(self, command: TaskIdCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _task_stores(settings) as (repository, _):
            task = repository.get(command.task_id)
            events = repository.list_events(command.task_id)

        lines = [
            f"Task: {task.task_id}",
            f"Status: {task.status.value}",
            f"Price: {task.price}",
            f"Source: {task.original_path}",
            f"Failure kind: {task.failure_kind or '-'}",
            f"Error: {task.error_message or '-'}",
            f"Created: {task.created_at.isoformat()}",
            f"Updated: {task.updated_at.isoformat()}",
            f"Variants: {len(task.images)}",
        ]
        for variant in task.images:
            lines.append(f"  {variant.resolution}: {variant.path}")
        lines.append(f"Events: {len(events)}")
        for event in events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def reconcile(self, command: ReconcileCommand) -> list[str]:
        """Enqueue jobs for PENDING tasks that were persisted without one."""

        settings = _settings(command.db_path)
        older_than = (
            command.older_than_seconds
            if command.older_than_seconds is not None
            else settings.worker.orphan_after_seconds
        )
        with _task_stores(settings) as (repository, queue):
            orchestrator = TaskOrchestrator(
                repository=repository,
                queue=queue,
                job_max_attempts=settings.worker.job_max_attempts,
            )
            requeued = orchestrator.reconcile_orphans(older_than=timedelta(seconds=older_than))

        lines = [f"Orphaned tasks re-enqueued: {len(requeued)}"]
        lines.extend(f"  {task_id}" for task_id in requeued)
        return lines

    def purge_task(self, command: TaskIdCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _task_stores(settings) as (repository, _):
            task = repository.get(command.task_id)
        ContentStore(settings.storage.output_dir).purge_task(task.task_id)
        return [f"Task outputs removed: {task.task_id}"]

    def run_worker(self, command: WorkerRunCommand) -> list[str]:
        settings = _settings(command.db_path)
        concurrency = command.concurrency or settings.worker.concurrency
        with _task_stores(settings) as (repository, queue), ExitStack() as stack:

            def _consumer(index: int, stop_event: threading.Event) -> JobConsumer:
                fetcher = stack.enter_context(
                    RemoteFetcher(
                        max_file_size_bytes=settings.download.max_file_size_bytes,
                        timeout_seconds=settings.download.timeout_seconds,
                        supported_formats=settings.imaging.supported_formats,
                    ),
                )
                worker = build_image_worker(
                    settings=settings,
                    repository=repository,
                    fetcher=fetcher,
                )
                return JobConsumer(
                    queue=queue,
                    handlers=worker.handlers(),
                    worker_id=f"{settings.worker.worker_id}-{index}",
                    poll_interval_seconds=settings.worker.poll_interval_seconds,
                    retry_base_seconds=settings.worker.retry_base_seconds,
                    retry_max_seconds=settings.worker.retry_max_seconds,
                    stale_claim_seconds=settings.worker.stale_claim_seconds,
                    stop_event=stop_event,
                )

            if command.once:
                summary = _consumer(0, threading.Event()).run_once()
            else:
                pool = WorkerPool(size=concurrency, consumer_factory=_consumer)
                summary = pool.run(
                    max_jobs_per_worker=command.max_jobs,
                    max_idle_polls=command.max_idle_polls,
                )

        return [_render_summary(summary)]

    def queue_stats(self, command: QueueStatsCommand) -> list[str]:
        settings = _settings(command.db_path)
        with _task_stores(settings) as (_, queue):
            stats = queue.stats()
        return [
            "Queue: "
            f"queued={stats.queued} claimed={stats.claimed} "
            f"done={stats.done} dead={stats.dead}",
        ]


def build_image_worker(
    *,
    settings: Settings,
    repository: SQLiteTaskRepository,
    fetcher: RemoteFetcher,
) -> ImageTaskWorker:
    store = ContentStore(settings.storage.output_dir)
    engine = VariantEngine(
        store=store,
        resolutions=settings.imaging.resolutions,
        supported_formats=settings.imaging.supported_formats,
        jpeg_quality=settings.imaging.jpeg_quality,
        min_dimension=settings.imaging.min_dimension,
        max_dimension=settings.imaging.max_dimension,
    )
    return ImageTaskWorker(repository=repository, store=store, engine=engine, fetcher=fetcher)


def _render_summary(summary: ConsumerRunSummary) -> str:
    return (
        "Worker summary: "
        f"processed={summary.processed} acked={summary.acked} "
        f"retried={summary.retried} dead_lettered={summary.dead_lettered} "
        f"idle_polls={summary.idle_polls}"
    )


def _settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _parse_status(value: str | None) -> TaskStatus | None:
    if value is None:
        return None
    return TaskStatus(value.strip().lower())


@contextmanager
def _task_stores(settings: Settings) -> Iterator[tuple[SQLiteTaskRepository, SQLiteJobQueue]]:
    repository = SQLiteTaskRepository(db_path=settings.db_path)
    repository.init_schema()
    queue = SQLiteJobQueue(db_path=settings.db_path)
    try:
        yield repository, queue
    finally:
        queue.close()
        repository.close()
