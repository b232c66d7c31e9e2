"""SQLite-backed job queue with at-least-once delivery."""

from __future__ import annotations

import json
import logging
import random
from datetime import timedelta
from pathlib import Path
from typing import Any, Protocol
from uuid import uuid4

from sqlalchemy import func
from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from image_tasks.orchestrator.models import JobStatus, JobType, JobView, QueueStats
from image_tasks.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from image_tasks.storage.sqlmodel_models import ImageJob

logger = logging.getLogger(__name__)

_LAST_ERROR_LIMIT = 500


class JobQueue(Protocol):
    """Enqueue side of the queue, as seen by the task orchestrator."""

    def enqueue(
        self,
        job_type: JobType | str,
        payload: dict[str, Any],
        *,
        max_attempts: int = 3,
    ) -> JobView:
        """Durably store one job for later delivery."""

    def has_job_for_task(self, task_id: str) -> bool:
        """Whether any job, in any state, references ``task_id``."""


class SQLiteJobQueue:
    """Durable job queue; claims are conditional updates so one job has one owner."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        rng: random.Random | None = None,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)
        self._random = rng or random.Random()  # noqa: S311

    def close(self) -> None:
        self.engine.dispose()

    def enqueue(
        self,
        job_type: JobType | str,
        payload: dict[str, Any],
        *,
        max_attempts: int = 3,
    ) -> JobView:
        """Store a QUEUED job that is ready immediately."""

        task_id = payload.get("task_id")
        if not isinstance(task_id, str) or not task_id:
            raise ValueError("Job payload must carry a task_id.")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be > 0.")

        type_value = job_type.value if isinstance(job_type, JobType) else job_type
        now = utc_now()
        with Session(self.engine) as session:
            row = ImageJob(
                job_id=str(uuid4()),
                job_type=type_value,
                task_id=task_id,
                payload_json=json.dumps(payload, ensure_ascii=False, sort_keys=True),
                status=JobStatus.QUEUED.value,
                attempts=0,
                max_attempts=max_attempts,
                available_at=now,
                claimed_at=None,
                worker_id=None,
                last_error=None,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info("Job enqueued: %s %s (task %s)", type_value, row.job_id, task_id)
            return _to_job_view(row)

    def get(self, job_id: str) -> JobView | None:
        with Session(self.engine) as session:
            row = session.exec(select(ImageJob).where(ImageJob.job_id == job_id)).one_or_none()
        return _to_job_view(row) if row is not None else None

    def claim_next(self, *, worker_id: str) -> JobView | None:
        """Atomically claim the oldest ready job, or return None."""

        while True:
            now = utc_now()
            with Session(self.engine) as session:
                candidate = session.exec(
                    select(ImageJob)
                    .where(
                        ImageJob.status == JobStatus.QUEUED.value,
                        col(ImageJob.available_at) <= to_db_datetime(now),
                    )
                    .order_by(
                        col(ImageJob.available_at).asc(),
                        col(ImageJob.created_at).asc(),
                    )
                    .limit(1),
                ).one_or_none()
                if candidate is None:
                    return None

                result = session.exec(
                    sa_update(ImageJob)
                    .where(
                        col(ImageJob.job_id) == candidate.job_id,
                        col(ImageJob.status) == JobStatus.QUEUED.value,
                    )
                    .values(
                        status=JobStatus.CLAIMED.value,
                        attempts=candidate.attempts + 1,
                        claimed_at=to_db_datetime(now),
                        worker_id=worker_id,
                        updated_at=to_db_datetime(now),
                    ),
                )
                if result.rowcount != 1:
                    session.rollback()
                    continue

                session.commit()
                claimed = session.exec(
                    select(ImageJob).where(ImageJob.job_id == candidate.job_id),
                ).one()
                return _to_job_view(claimed)

    def ack(self, job_id: str, *, worker_id: str) -> None:
        """Mark a job claimed by ``worker_id`` as done."""

        self._finish(job_id, worker_id=worker_id, status=JobStatus.DONE, last_error=None)

    def dead_letter(self, job_id: str, *, worker_id: str, error: str) -> None:
        """Stop redelivering a job claimed by ``worker_id``."""

        self._finish(job_id, worker_id=worker_id, status=JobStatus.DEAD, last_error=error)
        logger.error("Job %s dead-lettered: %s", job_id, error)

    def nack(
        self,
        job_id: str,
        *,
        worker_id: str,
        error: str,
        retry_base_seconds: int = 5,
        retry_max_seconds: int = 300,
    ) -> JobStatus:
        """Return a failed job to the queue with backoff, or dead-letter it.

        Returns the status the job ends up in.
        """

        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(select(ImageJob).where(ImageJob.job_id == job_id)).one_or_none()
            if row is None:
                raise LookupError(f"Job not found: {job_id}")
            if row.status != JobStatus.CLAIMED.value or row.worker_id != worker_id:
                raise RuntimeError(
                    f"Job {job_id} is not claimed by {worker_id} (status={row.status}).",
                )

            max_attempts = row.max_attempts
            if row.attempts >= max_attempts:
                next_status = JobStatus.DEAD
                available_at = to_utc_aware_datetime(row.available_at)
            else:
                next_status = JobStatus.QUEUED
                delay = self.compute_retry_delay(
                    attempt=row.attempts,
                    retry_base_seconds=retry_base_seconds,
                    retry_max_seconds=retry_max_seconds,
                )
                available_at = now + timedelta(seconds=delay)

            result = session.exec(
                sa_update(ImageJob)
                .where(
                    col(ImageJob.job_id) == job_id,
                    col(ImageJob.status) == JobStatus.CLAIMED.value,
                    col(ImageJob.worker_id) == worker_id,
                )
                .values(
                    status=next_status.value,
                    available_at=to_db_datetime(available_at),
                    claimed_at=None,
                    worker_id=None,
                    last_error=error[:_LAST_ERROR_LIMIT],
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise RuntimeError(f"Job {job_id} changed concurrently while releasing it.")
            session.commit()

        if next_status == JobStatus.DEAD:
            logger.error("Job %s exhausted %d attempts: %s", job_id, max_attempts, error)
        else:
            logger.warning("Job %s will be redelivered at %s: %s", job_id, available_at, error)
        return next_status

    def compute_retry_delay(
        self,
        *,
        attempt: int,
        retry_base_seconds: int,
        retry_max_seconds: int,
    ) -> float:
        max_delay = min(
            retry_max_seconds,
            retry_base_seconds * (2 ** max(attempt - 1, 0)),
        )
        return self._random.uniform(0, max_delay)

    def recover_stale_claims(self, *, stale_after: timedelta) -> int:
        """Requeue jobs whose consumer vanished without ack or nack."""

        now = utc_now()
        cutoff = to_db_datetime(now - stale_after)
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ImageJob)
                .where(
                    col(ImageJob.status) == JobStatus.CLAIMED.value,
                    col(ImageJob.claimed_at) < cutoff,
                )
                .values(
                    status=JobStatus.QUEUED.value,
                    available_at=to_db_datetime(now),
                    claimed_at=None,
                    worker_id=None,
                    last_error="claim expired",
                    updated_at=to_db_datetime(now),
                ),
            )
            session.commit()
        recovered = int(result.rowcount or 0)
        if recovered:
            logger.warning("Recovered %d stale job claim(s)", recovered)
        return recovered

    def has_job_for_task(self, task_id: str) -> bool:
        with Session(self.engine) as session:
            count = session.exec(
                select(func.count()).select_from(ImageJob).where(ImageJob.task_id == task_id),
            ).one()
        return int(count) > 0

    def stats(self) -> QueueStats:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ImageJob.status, func.count()).group_by(ImageJob.status),
            ).all()
        counts = {status: int(count) for status, count in rows}
        return QueueStats(
            queued=counts.get(JobStatus.QUEUED.value, 0),
            claimed=counts.get(JobStatus.CLAIMED.value, 0),
            done=counts.get(JobStatus.DONE.value, 0),
            dead=counts.get(JobStatus.DEAD.value, 0),
        )

    def _finish(
        self,
        job_id: str,
        *,
        worker_id: str,
        status: JobStatus,
        last_error: str | None,
    ) -> None:
        now = utc_now()
        with Session(self.engine) as session:
            result = session.exec(
                sa_update(ImageJob)
                .where(
                    col(ImageJob.job_id) == job_id,
                    col(ImageJob.status) == JobStatus.CLAIMED.value,
                    col(ImageJob.worker_id) == worker_id,
                )
                .values(
                    status=status.value,
                    last_error=last_error[:_LAST_ERROR_LIMIT] if last_error else None,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise RuntimeError(
                    f"Job {job_id} is not claimed by {worker_id}; cannot mark it {status.value}.",
                )
            session.commit()


def _to_job_view(row: ImageJob) -> JobView:
    payload = json.loads(row.payload_json) if row.payload_json else {}
    return JobView(
        job_id=row.job_id,
        job_type=row.job_type,
        task_id=row.task_id,
        payload=payload if isinstance(payload, dict) else {},
        status=JobStatus(row.status),
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        available_at=to_utc_aware_datetime(row.available_at),
        claimed_at=(
            to_utc_aware_datetime(row.claimed_at) if row.claimed_at is not None else None
        ),
        worker_id=row.worker_id,
        last_error=row.last_error,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
