"""Initial backlog schema: tasks and append-only task events."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261018_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "backlog_tasks",
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("project", sa.String(), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("owner", sa.String(), nullable=True),
        sa.Column("parent_id", sa.String(), nullable=True),
        sa.Column("sibling_ids_json", sa.Text(), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["parent_id"], ["backlog_tasks.task_id"]),
        sa.PrimaryKeyConstraint("task_id"),
    )
    op.create_index("ix_backlog_tasks_project", "backlog_tasks", ["project"], unique=False)
    op.create_index("ix_backlog_tasks_priority", "backlog_tasks", ["priority"], unique=False)
    op.create_index("ix_backlog_tasks_status", "backlog_tasks", ["status"], unique=False)
    op.create_index("ix_backlog_tasks_owner", "backlog_tasks", ["owner"], unique=False)
    op.create_index("ix_backlog_tasks_parent_id", "backlog_tasks", ["parent_id"], unique=False)
    op.create_index(
        "idx_backlog_tasks_queue",
        "backlog_tasks",
        ["status", "priority", "task_id"],
        unique=False,
    )
    op.create_index(
        "idx_backlog_tasks_project_status",
        "backlog_tasks",
        ["project", "status"],
        unique=False,
    )
    op.create_index(
        "idx_backlog_tasks_liveness",
        "backlog_tasks",
        ["status", "updated_at"],
        unique=False,
    )

    op.create_table(
        "backlog_task_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("actor", sa.String(), nullable=True),
        sa.Column("status_from", sa.String(), nullable=True),
        sa.Column("status_to", sa.String(), nullable=True),
        sa.Column("details_json", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["task_id"], ["backlog_tasks.task_id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_backlog_task_events_task_id",
        "backlog_task_events",
        ["task_id"],
        unique=False,
    )
    op.create_index(
        "ix_backlog_task_events_event_type",
        "backlog_task_events",
        ["event_type"],
        unique=False,
    )
    op.create_index("ix_backlog_task_events_actor", "backlog_task_events", ["actor"], unique=False)
    op.create_index(
        "ix_backlog_task_events_status_from",
        "backlog_task_events",
        ["status_from"],
        unique=False,
    )
    op.create_index(
        "ix_backlog_task_events_status_to",
        "backlog_task_events",
        ["status_to"],
        unique=False,
    )
    op.create_index(
        "idx_backlog_task_events_task_time",
        "backlog_task_events",
        ["task_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_table("backlog_task_events")
    op.drop_table("backlog_tasks")
