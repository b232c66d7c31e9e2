"""Domain models for image tasks and queued jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in {TaskStatus.COMPLETED, TaskStatus.FAILED}


class JobType(str, Enum):
    """Queued job kinds, one handler each."""

    PROCESS_IMAGE = "process-image"
    PROCESS_IMAGE_FROM_URL = "process-image-from-url"


class JobStatus(str, Enum):
    """Queue-side delivery states."""

    QUEUED = "queued"
    CLAIMED = "claimed"
    DONE = "done"
    DEAD = "dead"


@dataclass(slots=True, frozen=True)
class ImageVariant:
    """One resized output stored under its resolution label."""

    resolution: str
    path: str

    def to_dict(self) -> dict[str, str]:
        return {"resolution": self.resolution, "path": self.path}


@dataclass(slots=True)
class TaskView:
    """Readable task view for CLI, orchestrator and worker logic."""

    task_id: str
    status: TaskStatus
    price: Decimal
    original_path: str
    images: list[ImageVariant]
    error_message: str | None
    failure_kind: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class TaskEventView:
    """Task event entry for audit trail."""

    event_id: int
    task_id: str
    event_type: str
    status_from: TaskStatus | None
    status_to: TaskStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class TaskSubmission:
    """What the caller gets back after submitting an image."""

    task_id: str
    status: TaskStatus
    price: Decimal


@dataclass(slots=True)
class JobView:
    """Queued job as seen by consumers."""

    job_id: str
    job_type: str
    task_id: str
    payload: dict[str, Any]
    status: JobStatus
    attempts: int
    max_attempts: int
    available_at: datetime
    claimed_at: datetime | None
    worker_id: str | None
    last_error: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class QueueStats:
    """Job counts per delivery state."""

    queued: int = 0
    claimed: int = 0
    done: int = 0
    dead: int = 0


@dataclass(slots=True)
class TaskCreate:
    """Input payload for persisting a new task."""

    original_path: str
    price: Decimal
    task_id: str | None = None
