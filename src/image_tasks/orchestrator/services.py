"""Use-case services: accepting image tasks and handing them to the queue."""

from __future__ import annotations

import logging
from datetime import timedelta
from urllib.parse import urlparse

from image_tasks.orchestrator.models import JobType, TaskCreate, TaskSubmission, TaskView
from image_tasks.orchestrator.pricing import random_task_price
from image_tasks.orchestrator.queue import JobQueue
from image_tasks.orchestrator.repository import TaskRepository
from image_tasks.storage.common import utc_now

logger = logging.getLogger(__name__)


def classify_source(original_path: str) -> JobType:
    """Absolute http(s) URLs with a host are downloaded; anything else is a local path."""

    try:
        parsed = urlparse(original_path.strip())
    except ValueError:
        return JobType.PROCESS_IMAGE
    if parsed.scheme.lower() in {"http", "https"} and parsed.netloc:
        return JobType.PROCESS_IMAGE_FROM_URL
    return JobType.PROCESS_IMAGE


def build_job_payload(task: TaskView, job_type: JobType) -> dict[str, str]:
    if job_type == JobType.PROCESS_IMAGE_FROM_URL:
        return {"task_id": task.task_id, "image_url": task.original_path.strip()}
    return {"task_id": task.task_id, "original_path": task.original_path}


class TaskOrchestrator:
    """Persists new tasks and enqueues exactly one processing job per task."""

    def __init__(
        self,
        *,
        repository: TaskRepository,
        queue: JobQueue,
        job_max_attempts: int = 3,
    ) -> None:
        self.repository = repository
        self.queue = queue
        self.job_max_attempts = job_max_attempts

    def create_task(self, original_path: str) -> TaskSubmission:
        """Price, persist and enqueue a task; returns while it is still PENDING.

        If enqueueing fails the task is left PENDING without a job and the
        error is re-raised; ``reconcile_orphans`` picks such tasks up later.
        """

        if not original_path.strip():
            raise ValueError("original_path must not be empty.")

        task = self.repository.create(
            TaskCreate(original_path=original_path, price=random_task_price()),
        )
        logger.info("Task created: %s (price %s)", task.task_id, task.price)

        try:
            self._enqueue(task)
        except Exception:
            logger.exception("Failed to enqueue job for task %s", task.task_id)
            raise

        return TaskSubmission(task_id=task.task_id, status=task.status, price=task.price)

    def reconcile_orphans(self, *, older_than: timedelta) -> list[str]:
        """Enqueue the missing job for PENDING tasks that never got one."""

        cutoff = utc_now() - older_than
        requeued: list[str] = []
        for task in self.repository.list_pending_before(cutoff):
            if self.queue.has_job_for_task(task.task_id):
                continue
            try:
                self._enqueue(task)
            except Exception:
                logger.exception("Could not re-enqueue orphaned task %s; skipping", task.task_id)
                continue
            logger.warning("Re-enqueued orphaned task %s", task.task_id)
            requeued.append(task.task_id)
        return requeued

    def _enqueue(self, task: TaskView) -> None:
        job_type = classify_source(task.original_path)
        self.queue.enqueue(
            job_type,
            build_job_payload(task, job_type),
            max_attempts=self.job_max_attempts,
        )
