"""SQLModel ORM tables for tasks, task events and queued jobs."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class ImageTask(SQLModel, table=True):
    __tablename__ = "image_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_image_tasks_status_created", "status", "created_at"),
        Index("idx_image_tasks_updated", "updated_at"),
    )

    task_id: str = Field(primary_key=True)
    status: str = Field(index=True)
    price_cents: int
    original_path: str = Field(sa_column=Column(Text, nullable=False))
    images_json: str = Field(
        default="[]",
        sa_column=Column(Text, nullable=False, server_default="[]"),
    )
    error_message: str | None = Field(default=None, sa_column=Column(Text))
    failure_kind: str | None = Field(default=None, index=True)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ImageTaskEvent(SQLModel, table=True):
    __tablename__ = "image_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_image_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("image_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    event_type: str
    status_from: str | None = None
    status_to: str | None = None
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class ImageJob(SQLModel, table=True):
    __tablename__ = "image_jobs"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_image_jobs_ready", "status", "available_at", "created_at"),)

    job_id: str = Field(primary_key=True)
    job_type: str = Field(index=True)
    task_id: str = Field(index=True)
    payload_json: str = Field(sa_column=Column(Text, nullable=False))
    status: str = Field(index=True)
    attempts: int = Field(default=0)
    max_attempts: int = Field(default=3)
    available_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    claimed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    worker_id: str | None = None
    last_error: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
