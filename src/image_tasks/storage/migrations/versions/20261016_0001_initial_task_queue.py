"""Initial image task, task event and job queue schema."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261016_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "image_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("original_path", sa.Text(), nullable=False),
        sa.Column("images_json", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("failure_kind", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_image_tasks_status", "image_tasks", ["status"])
    op.create_index("ix_image_tasks_failure_kind", "image_tasks", ["failure_kind"])
    op.create_index("idx_image_tasks_status_created", "image_tasks", ["status", "created_at"])
    op.create_index("idx_image_tasks_updated", "image_tasks", ["updated_at"])

    op.create_table(
        "image_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["image_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "idx_image_task_events_task_time",
        "image_task_events",
        ["task_id", "created_at"],
    )

    op.create_table(
        "image_jobs",
        sa.Column("job_id", sa.String(), nullable=False),
        sa.Column("job_type", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="3"),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("worker_id", sa.String(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id"),
    )
    op.create_index("ix_image_jobs_job_type", "image_jobs", ["job_type"])
    op.create_index("ix_image_jobs_task_id", "image_jobs", ["task_id"])
    op.create_index("ix_image_jobs_status", "image_jobs", ["status"])
    op.create_index(
        "idx_image_jobs_ready",
        "image_jobs",
        ["status", "available_at", "created_at"],
    )


def downgrade() -> None:
    op.drop_index("idx_image_jobs_ready", table_name="image_jobs")
    op.drop_index("ix_image_jobs_status", table_name="image_jobs")
    op.drop_index("ix_image_jobs_task_id", table_name="image_jobs")
    op.drop_index("ix_image_jobs_job_type", table_name="image_jobs")
    op.drop_table("image_jobs")
    op.drop_index("idx_image_task_events_task_time", table_name="image_task_events")
    op.drop_table("image_task_events")
    op.drop_index("idx_image_tasks_updated", table_name="image_tasks")
    op.drop_index("idx_image_tasks_status_created", table_name="image_tasks")
    op.drop_index("ix_image_tasks_failure_kind", table_name="image_tasks")
    op.drop_index("ix_image_tasks_status", table_name="image_tasks")
    op.drop_table("image_tasks")
