"""Append-only audit trail of sync attempts."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


OP_IMPORT = "import"
OP_EXPORT_CREATE = "export-create"
OP_EXPORT_UPDATE = "export-update"
OP_EXPORT_COMPLETE = "export-complete"
OPERATIONS = (OP_IMPORT, OP_EXPORT_CREATE, OP_EXPORT_UPDATE, OP_EXPORT_COMPLETE)

ENTITY_TASK = "task"
ENTITY_EVENT = "event"

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"


class SyncLogEntry(SQLModel, table=True):
    __tablename__ = "sync_log"
    __table_args__ = (Index("ix_sync_log_user_timestamp", "user_id", "timestamp"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: int
    operation: str
    entity_type: str
    entity_id: Optional[str] = Field(default=None, index=True)
    status: str
    details: Optional[str] = None  # JSON
    timestamp: datetime = Field(default_factory=utc_now)


__all__ = [
    "SyncLogEntry",
    "OP_IMPORT",
    "OP_EXPORT_CREATE",
    "OP_EXPORT_UPDATE",
    "OP_EXPORT_COMPLETE",
    "OPERATIONS",
    "ENTITY_TASK",
    "ENTITY_EVENT",
    "STATUS_SUCCESS",
    "STATUS_FAILURE",
]
