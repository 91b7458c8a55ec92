"""SQLModel ORM tables for backlog storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, ForeignKey, Index, Text
from sqlmodel import Field, SQLModel


class BacklogTask(SQLModel, table=True):
    __tablename__ = "backlog_tasks"  # type: ignore[bad-override]
    __table_args__ = (
        Index("idx_backlog_tasks_queue", "status", "priority", "task_id"),
        Index("idx_backlog_tasks_project_status", "project", "status"),
        Index("idx_backlog_tasks_liveness", "status", "updated_at"),
    )

    task_id: str = Field(primary_key=True)
    title: str
    description: str = Field(default="", sa_column=Column(Text, nullable=False, server_default=""))
    project: str | None = Field(default=None, index=True)
    priority: int = Field(default=2, index=True)
    status: str = Field(index=True)
    owner: str | None = Field(default=None, index=True)
    parent_id: str | None = Field(
        default=None,
        sa_column=Column(
            ForeignKey("backlog_tasks.task_id"),
            nullable=True,
            index=True,
        ),
    )
    sibling_ids_json: str | None = Field(default=None, sa_column=Column(Text))
    failure_reason: str | None = Field(default=None, sa_column=Column(Text))
    version: int = Field(default=0)
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    claimed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    updated_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))


class BacklogTaskEvent(SQLModel, table=True):
    __tablename__ = "backlog_task_events"  # type: ignore[bad-override]
    __table_args__ = (Index("idx_backlog_task_events_task_time", "task_id", "created_at"),)

    id: int | None = Field(default=None, primary_key=True)
    task_id: str = Field(
        sa_column=Column(
            ForeignKey("backlog_tasks.task_id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
    )
    event_type: str = Field(index=True)
    actor: str | None = Field(default=None, index=True)
    status_from: str | None = Field(default=None, index=True)
    status_to: str | None = Field(default=None, index=True)
    details_json: str | None = Field(default=None, sa_column=Column(Text))
    created_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
