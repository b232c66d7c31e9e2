"""Image task worker: job handlers and the queue consumer loop."""

from __future__ import annotations

import logging
import signal
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from image_tasks.http.fetcher import RemoteFetcher
from image_tasks.imaging.content_store import ContentStore
from image_tasks.imaging.variants import VariantEngine
from image_tasks.orchestrator.errors import (
    ErrorKind,
    ImagePipelineError,
    InvalidJobPayloadError,
    describe_failure,
    describe_failure_kind,
)
from image_tasks.orchestrator.models import JobStatus, JobType, JobView, TaskStatus, TaskView
from image_tasks.orchestrator.queue import SQLiteJobQueue
from image_tasks.orchestrator.repository import TaskRepository

logger = logging.getLogger(__name__)

JobHandler = Callable[[dict[str, Any]], object]


class ImageTaskWorker:
    """Drives one task from PENDING through PROCESSING to a terminal state.

    Image pipeline failures end the task as FAILED with a curated message.
    Errors raised by the repository itself propagate to the job consumer so
    the queue can redeliver the job.
    """

    def __init__(
        self,
        *,
        repository: TaskRepository,
        store: ContentStore,
        engine: VariantEngine,
        fetcher: RemoteFetcher,
    ) -> None:
        self.repository = repository
        self.store = store
        self.engine = engine
        self.fetcher = fetcher

    def handlers(self) -> dict[str, JobHandler]:
        return {
            JobType.PROCESS_IMAGE.value: self.handle_process_image,
            JobType.PROCESS_IMAGE_FROM_URL.value: self.handle_process_image_from_url,
        }

    def handle_process_image(self, payload: dict[str, Any]) -> TaskView:
        task_id = _required_field(payload, "task_id")
        original_path = _required_field(payload, "original_path")
        return self.process(task_id, lambda: self.store.read(original_path))

    def handle_process_image_from_url(self, payload: dict[str, Any]) -> TaskView:
        task_id = _required_field(payload, "task_id")
        image_url = _required_field(payload, "image_url")
        return self.process(task_id, lambda: self.fetcher.fetch(image_url).data)

    def process(self, task_id: str, load_bytes: Callable[[], bytes]) -> TaskView:
        task = self.repository.get(task_id)
        if task.status.is_terminal:
            logger.info("Task %s already %s; skipping redelivered job", task_id, task.status.value)
            return task

        self.repository.update_status(task_id, TaskStatus.PROCESSING)
        logger.info("Processing task %s (%s)", task_id, task.original_path)

        try:
            data = load_bytes()
            batch = self.engine.create_variants(task_id=task_id, data=data)
        except ImagePipelineError as error:
            return self._fail(task_id, kind=error.kind, message=describe_failure(error))
        except Exception:
            logger.exception("Unexpected error while processing task %s", task_id)
            return self._fail(
                task_id,
                kind=ErrorKind.UNEXPECTED,
                message=describe_failure_kind(ErrorKind.UNEXPECTED),
            )

        completed = self.repository.update_status(
            task_id,
            TaskStatus.COMPLETED,
            images=batch.variants,
        )
        logger.info("Task %s completed with %d variant(s)", task_id, len(batch.variants))
        return completed

    def _fail(self, task_id: str, *, kind: ErrorKind, message: str) -> TaskView:
        logger.warning("Task %s failed [%s]: %s", task_id, kind.value, message)
        return self.repository.update_status(
            task_id,
            TaskStatus.FAILED,
            error_message=message,
            failure_kind=kind.value,
        )


def _required_field(payload: Mapping[str, Any], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value:
        raise InvalidJobPayloadError(f"Job payload is missing {name!r}.")
    return value


@dataclass(slots=True)
class ConsumerRunSummary:
    """Aggregate consumer counters for CLI reporting."""

    processed: int = 0
    acked: int = 0
    retried: int = 0
    dead_lettered: int = 0
    idle_polls: int = 0

    def add(self, other: ConsumerRunSummary) -> None:
        self.processed += other.processed
        self.acked += other.acked
        self.retried += other.retried
        self.dead_lettered += other.dead_lettered
        self.idle_polls += other.idle_polls


class JobConsumer:
    """Claims queued jobs and dispatches them to handlers by job type."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        queue: SQLiteJobQueue,
        handlers: Mapping[str, JobHandler],
        worker_id: str,
        poll_interval_seconds: float = 1.0,
        retry_base_seconds: int = 5,
        retry_max_seconds: int = 300,
        stale_claim_seconds: int = 900,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.queue = queue
        self.handlers = dict(handlers)
        self.worker_id = worker_id
        self.poll_interval_seconds = poll_interval_seconds
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self.stale_claim_seconds = stale_claim_seconds
        self._stop = stop_event or threading.Event()

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        self._stop.set()

    def run_once(self) -> ConsumerRunSummary:
        """Process at most one job from the queue."""

        summary = ConsumerRunSummary()
        job = self._claim_job()
        if job is None:
            summary.idle_polls = 1
            return summary

        summary.processed = 1
        handler = self.handlers.get(job.job_type)
        if handler is None:
            self.queue.dead_letter(
                job.job_id,
                worker_id=self.worker_id,
                error=f"No handler for job type {job.job_type!r}",
            )
            summary.dead_lettered = 1
            return summary

        logger.info(
            "Job %s claimed by %s (%s, attempt %d/%d)",
            job.job_id,
            self.worker_id,
            job.job_type,
            job.attempts,
            job.max_attempts,
        )
        try:
            handler(job.payload)
        except InvalidJobPayloadError as error:
            self.queue.dead_letter(job.job_id, worker_id=self.worker_id, error=str(error))
            summary.dead_lettered = 1
            return summary
        except Exception as error:
            logger.exception("Job %s raised; releasing it for redelivery", job.job_id)
            status = self.queue.nack(
                job.job_id,
                worker_id=self.worker_id,
                error=f"{type(error).__name__}: {error}",
                retry_base_seconds=self.retry_base_seconds,
                retry_max_seconds=self.retry_max_seconds,
            )
            if status == JobStatus.DEAD:
                summary.dead_lettered = 1
            else:
                summary.retried = 1
            return summary

        self.queue.ack(job.job_id, worker_id=self.worker_id)
        summary.acked = 1
        return summary

    def run_loop(
        self,
        *,
        max_jobs: int | None = None,
        max_idle_polls: int | None = 1,
        install_signal_handlers: bool = True,
    ) -> ConsumerRunSummary:
        """Run until the queue stays idle, ``max_jobs`` is reached or a stop is requested.

        Args:
            max_jobs: Stop after processing this many jobs (None = unlimited).
            max_idle_polls: How many consecutive empty polls before exiting
                (None = poll forever).
            install_signal_handlers: Turn SIGINT/SIGTERM into a graceful stop.
                Only effective in the main thread.
        """

        aggregate = ConsumerRunSummary()
        consecutive_idle = 0
        with stop_on_signals(self._stop, enabled=install_signal_handlers):
            while True:
                if self.stop_requested:
                    return aggregate
                if max_jobs is not None and aggregate.processed >= max_jobs:
                    return aggregate

                summary = self.run_once()
                aggregate.add(summary)

                if summary.processed == 0:
                    consecutive_idle += 1
                    if max_idle_polls is not None and consecutive_idle >= max_idle_polls:
                        return aggregate
                    self._sleep_with_stop(self.poll_interval_seconds)
                    continue
                consecutive_idle = 0

    def _claim_job(self) -> JobView | None:
        self._recover_stale_claims()
        if self.stop_requested:
            return None
        return self.queue.claim_next(worker_id=self.worker_id)

    def _recover_stale_claims(self) -> None:
        if self.stale_claim_seconds <= 0:
            return
        self.queue.recover_stale_claims(stale_after=timedelta(seconds=self.stale_claim_seconds))

    def _sleep_with_stop(self, seconds: float) -> None:
        if seconds > 0:
            self._stop.wait(seconds)


@contextmanager
def stop_on_signals(stop_event: threading.Event, *, enabled: bool = True) -> Iterator[None]:
    """Set ``stop_event`` on SIGINT/SIGTERM while the block runs."""

    if not enabled or threading.current_thread() is not threading.main_thread():
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.warning("Received %s; finishing current job before stopping", name)
        stop_event.set()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
