"""Persistent task repository backed by SQLModel + SQLite."""

from __future__ import annotations

import json
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Protocol
from uuid import uuid4

from sqlalchemy import update as sa_update
from sqlmodel import Session, col, select

from image_tasks.orchestrator.errors import InvalidTransitionError, TaskNotFoundError
from image_tasks.orchestrator.models import (
    ImageVariant,
    TaskCreate,
    TaskEventView,
    TaskStatus,
    TaskView,
)
from image_tasks.storage.alembic_runner import upgrade_head
from image_tasks.storage.common import (
    DEFAULT_BUSY_TIMEOUT_MS,
    build_sqlite_engine,
    to_db_datetime,
    to_utc_aware_datetime,
    utc_now,
)
from image_tasks.storage.sqlmodel_models import ImageTask, ImageTaskEvent

_ALLOWED_SOURCES: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset(),
    # PROCESSING -> PROCESSING covers queue redelivery after a worker crash.
    TaskStatus.PROCESSING: frozenset({TaskStatus.PENDING, TaskStatus.PROCESSING}),
    TaskStatus.COMPLETED: frozenset({TaskStatus.PROCESSING}),
    TaskStatus.FAILED: frozenset({TaskStatus.PROCESSING}),
}


class TaskRepository(Protocol):
    """Durable store for task records."""

    def create(self, payload: TaskCreate) -> TaskView:
        """Persist a new PENDING task."""

    def get(self, task_id: str) -> TaskView:
        """Return one task or raise ``TaskNotFoundError``."""

    def update_status(
        self,
        task_id: str,
        status: TaskStatus,
        *,
        images: list[ImageVariant] | None = None,
        error_message: str | None = None,
        failure_kind: str | None = None,
    ) -> TaskView:
        """Apply one status transition."""

    def list_all(
        self,
        *,
        limit: int | None = None,
        status: TaskStatus | None = None,
    ) -> list[TaskView]:
        """List tasks, newest first."""

    def list_pending_before(self, cutoff: datetime) -> list[TaskView]:
        """PENDING tasks created before ``cutoff``."""


class SQLiteTaskRepository:
    """Task persistence facade backed by SQLModel + SQLite."""

    def __init__(
        self,
        db_path: Path,
        *,
        sqlite_busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    ) -> None:
        self.db_path = db_path
        self.engine = build_sqlite_engine(db_path=db_path, busy_timeout_ms=sqlite_busy_timeout_ms)

    def close(self) -> None:
        """Close underlying DB resources."""

        self.engine.dispose()

    def init_schema(self) -> None:
        """Run schema migrations."""

        upgrade_head(self.db_path)

    def create(self, payload: TaskCreate) -> TaskView:
        """Create a PENDING task with no variants."""

        if not payload.original_path.strip():
            raise ValueError("original_path must not be empty.")
        now = utc_now()
        task_id = payload.task_id or str(uuid4())
        with Session(self.engine) as session:
            row = ImageTask(
                task_id=task_id,
                status=TaskStatus.PENDING.value,
                price_cents=price_to_cents(payload.price),
                original_path=payload.original_path,
                images_json="[]",
                error_message=None,
                failure_kind=None,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            self._add_event(
                session=session,
                task_id=task_id,
                event_type="created",
                status_from=None,
                status_to=TaskStatus.PENDING,
                details={"price": str(payload.price)},
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def get(self, task_id: str) -> TaskView:
        with Session(self.engine) as session:
            row = session.exec(select(ImageTask).where(ImageTask.task_id == task_id)).one_or_none()
        if row is None:
            raise TaskNotFoundError(task_id)
        return _to_task_view(row)

    def update_status(  # noqa: PLR0913
        self,
        task_id: str,
        status: TaskStatus,
        *,
        images: list[ImageVariant] | None = None,
        error_message: str | None = None,
        failure_kind: str | None = None,
    ) -> TaskView:
        """Move a task to ``status``; ``updated_at`` changes on every transition."""

        _check_outcome_fields(
            status=status,
            images=images,
            error_message=error_message,
            failure_kind=failure_kind,
        )
        now = utc_now()
        with Session(self.engine) as session:
            row = session.exec(select(ImageTask).where(ImageTask.task_id == task_id)).one_or_none()
            if row is None:
                raise TaskNotFoundError(task_id)

            previous = TaskStatus(row.status)
            if previous not in _ALLOWED_SOURCES[status]:
                raise InvalidTransitionError(
                    f"Task {task_id} cannot move from {previous.value} to {status.value}.",
                )

            result = session.exec(
                sa_update(ImageTask)
                .where(
                    col(ImageTask.task_id) == task_id,
                    col(ImageTask.status) == previous.value,
                )
                .values(
                    status=status.value,
                    images_json=json.dumps(
                        [variant.to_dict() for variant in images or []],
                        ensure_ascii=False,
                    ),
                    error_message=error_message,
                    failure_kind=failure_kind,
                    updated_at=to_db_datetime(now),
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                raise InvalidTransitionError(
                    "Task state changed concurrently while updating status "
                    f"(task_id={task_id}).",
                )

            details: dict[str, object] = {}
            if images:
                details["variants"] = len(images)
            if failure_kind is not None:
                details["failure_kind"] = failure_kind
            self._add_event(
                session=session,
                task_id=task_id,
                event_type=status.value,
                status_from=previous,
                status_to=status,
                details=details,
            )
            session.commit()
            session.refresh(row)
            return _to_task_view(row)

    def list_all(
        self,
        *,
        limit: int | None = None,
        status: TaskStatus | None = None,
    ) -> list[TaskView]:
        """List tasks newest first, optionally filtered by status."""

        with Session(self.engine) as session:
            statement = select(ImageTask).order_by(
                col(ImageTask.created_at).desc(),
                col(ImageTask.task_id).desc(),
            )
            if status is not None:
                statement = statement.where(ImageTask.status == status.value)
            if limit is not None:
                statement = statement.limit(limit)
            rows = session.exec(statement).all()
        return [_to_task_view(row) for row in rows]

    def list_pending_before(self, cutoff: datetime) -> list[TaskView]:
        """PENDING tasks created before ``cutoff``, oldest first."""

        with Session(self.engine) as session:
            rows = session.exec(
                select(ImageTask)
                .where(
                    ImageTask.status == TaskStatus.PENDING.value,
                    col(ImageTask.created_at) < to_db_datetime(cutoff),
                )
                .order_by(col(ImageTask.created_at).asc()),
            ).all()
        return [_to_task_view(row) for row in rows]

    def list_events(self, task_id: str) -> list[TaskEventView]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ImageTaskEvent)
                .where(ImageTaskEvent.task_id == task_id)
                .order_by(col(ImageTaskEvent.created_at).asc(), col(ImageTaskEvent.id).asc()),
            ).all()

        events: list[TaskEventView] = []
        for row in rows:
            details = {}
            if row.details_json:
                parsed = json.loads(row.details_json)
                if isinstance(parsed, dict):
                    details = parsed
            events.append(
                TaskEventView(
                    event_id=row.id or 0,
                    task_id=row.task_id,
                    event_type=row.event_type,
                    status_from=(
                        TaskStatus(row.status_from) if row.status_from is not None else None
                    ),
                    status_to=TaskStatus(row.status_to) if row.status_to is not None else None,
                    created_at=to_utc_aware_datetime(row.created_at),
                    details=details,
                ),
            )
        return events

    def _add_event(  # noqa: PLR0913
        self,
        *,
        session: Session,
        task_id: str,
        event_type: str,
        status_from: TaskStatus | None,
        status_to: TaskStatus | None,
        details: dict[str, object],
    ) -> None:
        session.add(
            ImageTaskEvent(
                task_id=task_id,
                event_type=event_type,
                status_from=status_from.value if status_from is not None else None,
                status_to=status_to.value if status_to is not None else None,
                details_json=json.dumps(details, ensure_ascii=False, sort_keys=True)
                if details
                else None,
                created_at=utc_now(),
            ),
        )


def price_to_cents(price: Decimal) -> int:
    cents = price * 100
    if cents != cents.to_integral_value():
        raise ValueError(f"Price must have at most 2 decimal places, got {price}.")
    return int(cents)


def cents_to_price(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(Decimal("0.01"))


def _check_outcome_fields(
    *,
    status: TaskStatus,
    images: list[ImageVariant] | None,
    error_message: str | None,
    failure_kind: str | None,
) -> None:
    if status == TaskStatus.COMPLETED and not images:
        raise ValueError("A completed task needs at least one image variant.")
    if status != TaskStatus.COMPLETED and images:
        raise ValueError("Image variants can only be stored on completed tasks.")
    if status == TaskStatus.FAILED and not error_message:
        raise ValueError("A failed task needs an error message.")
    if status != TaskStatus.FAILED and (error_message is not None or failure_kind is not None):
        raise ValueError("Error details can only be stored on failed tasks.")


def _to_task_view(row: ImageTask) -> TaskView:
    images = [
        ImageVariant(resolution=str(item["resolution"]), path=str(item["path"]))
        for item in json.loads(row.images_json or "[]")
    ]
    return TaskView(
        task_id=row.task_id,
        status=TaskStatus(row.status),
        price=cents_to_price(row.price_cents),
        original_path=row.original_path,
        images=images,
        error_message=row.error_message,
        failure_kind=row.failure_kind,
        created_at=to_utc_aware_datetime(row.created_at),
        updated_at=to_utc_aware_datetime(row.updated_at),
    )
