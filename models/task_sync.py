"""SQLModel table for per-task synchronization metadata."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, ForeignKey, Integer
from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


SYNC_PENDING = "pending"
SYNC_SYNCED = "synced"
SYNC_FAILED = "failed"
SYNC_STATUSES = (SYNC_PENDING, SYNC_SYNCED, SYNC_FAILED)


class TaskSyncMetadata(SQLModel, table=True):
    """Link between a local task and its Google Tasks item / Calendar event."""

    __tablename__ = "task_sync_metadata"

    id: Optional[int] = Field(default=None, primary_key=True)
    task_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("task.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
            index=True,
        )
    )
    remote_task_id: Optional[str] = Field(default=None, index=True)
    remote_event_id: Optional[str] = Field(default=None, index=True)
    is_fixed_schedule: bool = False
    last_sync_time: Optional[datetime] = None
    sync_status: str = Field(default=SYNC_PENDING, index=True)
    sync_error: Optional[str] = None
    retry_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def has_remote(self) -> bool:
        return bool(self.remote_task_id or self.remote_event_id)


__all__ = [
    "TaskSyncMetadata",
    "SYNC_PENDING",
    "SYNC_SYNCED",
    "SYNC_FAILED",
    "SYNC_STATUSES",
]
