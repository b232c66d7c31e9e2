from __future__ import annotations

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Any

import allure
import pytest

from image_tasks.orchestrator.models import JobType, JobView, TaskStatus
from image_tasks.orchestrator.queue import SQLiteJobQueue
from image_tasks.orchestrator.repository import SQLiteTaskRepository
from image_tasks.orchestrator.services import TaskOrchestrator, classify_source

pytestmark = [
    allure.epic("Task Orchestration"),
    allure.feature("Task Submission"),
]


class _BrokenQueue:
    def enqueue(self, job_type: Any, payload: dict[str, Any], *, max_attempts: int = 3) -> JobView:
        raise ConnectionError("queue unavailable")

    def has_job_for_task(self, task_id: str) -> bool:
        return False


def _orchestrator(repository, queue) -> TaskOrchestrator:
    return TaskOrchestrator(repository=repository, queue=queue, job_max_attempts=4)


def test_create_task_returns_pending_priced_task(
    repository: SQLiteTaskRepository,
    job_queue: SQLiteJobQueue,
) -> None:
    submission = _orchestrator(repository, job_queue).create_task("/tmp/img.jpg")

    assert submission.status == TaskStatus.PENDING
    assert Decimal("5.00") <= submission.price <= Decimal("50.00")
    stored = repository.get(submission.task_id)
    assert stored.status == TaskStatus.PENDING
    assert stored.images == []
    assert stored.price == submission.price
    assert stored.original_path == "/tmp/img.jpg"


def test_local_path_enqueues_exactly_one_process_image_job(
    repository: SQLiteTaskRepository,
    job_queue: SQLiteJobQueue,
) -> None:
    submission = _orchestrator(repository, job_queue).create_task("/tmp/img.jpg")

    job = job_queue.claim_next(worker_id="w")
    assert job is not None
    assert job.job_type == JobType.PROCESS_IMAGE.value
    assert job.payload == {"task_id": submission.task_id, "original_path": "/tmp/img.jpg"}
    assert job.max_attempts == 4
    assert job_queue.claim_next(worker_id="w") is None


def test_url_enqueues_process_image_from_url_job(
    repository: SQLiteTaskRepository,
    job_queue: SQLiteJobQueue,
) -> None:
    submission = _orchestrator(repository, job_queue).create_task(
        "https://cdn.example.com/img.jpg",
    )

    job = job_queue.claim_next(worker_id="w")
    assert job is not None
    assert job.job_type == JobType.PROCESS_IMAGE_FROM_URL.value
    assert job.payload == {
        "task_id": submission.task_id,
        "image_url": "https://cdn.example.com/img.jpg",
    }


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("http://cdn.example.com/a.png", JobType.PROCESS_IMAGE_FROM_URL),
        ("HTTPS://cdn.example.com/a.png", JobType.PROCESS_IMAGE_FROM_URL),
        ("ftp://host/img.jpg", JobType.PROCESS_IMAGE),
        ("file:///tmp/img.jpg", JobType.PROCESS_IMAGE),
        ("https:///no-host.jpg", JobType.PROCESS_IMAGE),
        ("/tmp/img.jpg", JobType.PROCESS_IMAGE),
        ("relative/img.jpg", JobType.PROCESS_IMAGE),
        ("C:\\images\\img.jpg", JobType.PROCESS_IMAGE),
    ],
)
def test_classify_source_only_treats_http_urls_as_downloads(value: str, expected: JobType) -> None:
    assert classify_source(value) == expected


def test_blank_input_is_rejected_before_persisting(
    repository: SQLiteTaskRepository,
    job_queue: SQLiteJobQueue,
) -> None:
    with pytest.raises(ValueError, match="must not be empty"):
        _orchestrator(repository, job_queue).create_task("   ")

    assert repository.list_all() == []


def test_enqueue_failure_leaves_task_pending_and_propagates(
    repository: SQLiteTaskRepository,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.ERROR, logger="image_tasks.orchestrator.services")

    with pytest.raises(ConnectionError):
        _orchestrator(repository, _BrokenQueue()).create_task("/tmp/img.jpg")

    tasks = repository.list_all()
    assert len(tasks) == 1
    assert tasks[0].status == TaskStatus.PENDING
    assert "Failed to enqueue job" in caplog.text


def test_reconcile_requeues_only_orphaned_pending_tasks(
    repository: SQLiteTaskRepository,
    job_queue: SQLiteJobQueue,
) -> None:
    with pytest.raises(ConnectionError):
        _orchestrator(repository, _BrokenQueue()).create_task("https://cdn.example.com/o.png")
    orphan_id = repository.list_all()[0].task_id
    healthy = _orchestrator(repository, job_queue).create_task("/tmp/ok.jpg")

    orchestrator = _orchestrator(repository, job_queue)
    assert orchestrator.reconcile_orphans(older_than=timedelta(hours=1)) == []
    assert orchestrator.reconcile_orphans(older_than=timedelta(seconds=0)) == [orphan_id]
    assert orchestrator.reconcile_orphans(older_than=timedelta(seconds=0)) == []

    assert job_queue.has_job_for_task(orphan_id)
    assert job_queue.has_job_for_task(healthy.task_id)
    assert job_queue.stats().queued == 2


def test_unparseable_url_is_treated_as_local_path() -> None:
    assert classify_source("http://[::1/img.jpg") == JobType.PROCESS_IMAGE


def test_unparseable_url_still_gets_its_job(
    repository: SQLiteTaskRepository,
    job_queue: SQLiteJobQueue,
) -> None:
    submission = _orchestrator(repository, job_queue).create_task("http://[::1/img.jpg")

    job = job_queue.claim_next(worker_id="w")
    assert job is not None
    assert job.task_id == submission.task_id
    assert job.job_type == JobType.PROCESS_IMAGE.value
    assert job.payload["original_path"] == "http://[::1/img.jpg"


def test_original_input_is_stored_unmodified(
    repository: SQLiteTaskRepository,
    job_queue: SQLiteJobQueue,
) -> None:
    orchestrator = _orchestrator(repository, job_queue)
    local = orchestrator.create_task("  /tmp/img.jpg ")
    remote = orchestrator.create_task(" https://cdn.example.com/img.jpg\n")

    assert repository.get(local.task_id).original_path == "  /tmp/img.jpg "
    assert repository.get(remote.task_id).original_path == " https://cdn.example.com/img.jpg\n"
    jobs = [job_queue.claim_next(worker_id="w"), job_queue.claim_next(worker_id="w")]
    payloads = {job.task_id: job.payload for job in jobs if job is not None}
    assert payloads[local.task_id]["original_path"] == "  /tmp/img.jpg "
    assert payloads[remote.task_id]["image_url"] == "https://cdn.example.com/img.jpg"


def test_reconcile_skips_a_task_that_cannot_be_enqueued(
    repository: SQLiteTaskRepository,
    job_queue: SQLiteJobQueue,
    caplog: pytest.LogCaptureFixture,
) -> None:
    class _RejectingQueue(SQLiteJobQueue):
        def enqueue(self, job_type, payload, *, max_attempts=3):
            if payload.get("original_path") == "/tmp/poison.jpg":
                raise ConnectionError("queue rejected job")
            return super().enqueue(job_type, payload, max_attempts=max_attempts)

    broken = _orchestrator(repository, _BrokenQueue())
    with pytest.raises(ConnectionError):
        broken.create_task("/tmp/poison.jpg")
    poison_id = repository.list_all()[0].task_id
    with pytest.raises(ConnectionError):
        broken.create_task("/tmp/fine.jpg")
    fine_id = next(task.task_id for task in repository.list_all() if task.task_id != poison_id)

    rejecting = _RejectingQueue(job_queue.db_path)
    caplog.set_level(logging.ERROR, logger="image_tasks.orchestrator.services")
    try:
        requeued = _orchestrator(repository, rejecting).reconcile_orphans(
            older_than=timedelta(seconds=0),
        )
    finally:
        rejecting.close()

    assert requeued == [fine_id]
    assert job_queue.has_job_for_task(fine_id)
    assert not job_queue.has_job_for_task(poison_id)
    assert "Could not re-enqueue orphaned task" in caplog.text
