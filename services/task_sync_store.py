"""Persistence helpers for per-task Google synchronization state."""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func
from sqlmodel import select

from datetime_utils import ensure_utc, utc_now
from models.task_sync import SYNC_FAILED, SYNC_STATUSES, SYNC_SYNCED, TaskSyncMetadata
from storage.db import get_session


def _normalize(row: Optional[TaskSyncMetadata]) -> Optional[TaskSyncMetadata]:
    # SQLite hands datetimes back naive
    if row is not None:
        row.last_sync_time = ensure_utc(row.last_sync_time)
        row.created_at = ensure_utc(row.created_at)
        row.updated_at = ensure_utc(row.updated_at)
    return row


class TaskSyncStore:
    """Wrapper around SQLModel session for :class:`TaskSyncMetadata` rows."""

    def __init__(self, session_factory=get_session) -> None:
        self._session_factory = session_factory

    def _find(self, session, task_id: int) -> Optional[TaskSyncMetadata]:
        stmt = select(TaskSyncMetadata).where(TaskSyncMetadata.task_id == task_id)
        return session.exec(stmt).first()

    def get(self, task_id: int) -> Optional[TaskSyncMetadata]:
        with self._session_factory() as session:
            return _normalize(self._find(session, task_id))

    def get_by_remote_task(self, remote_task_id: str) -> Optional[TaskSyncMetadata]:
        if not remote_task_id:
            return None
        with self._session_factory() as session:
            stmt = select(TaskSyncMetadata).where(TaskSyncMetadata.remote_task_id == remote_task_id)
            return _normalize(session.exec(stmt).first())

    def get_by_remote_event(self, remote_event_id: str) -> Optional[TaskSyncMetadata]:
        if not remote_event_id:
            return None
        with self._session_factory() as session:
            stmt = select(TaskSyncMetadata).where(TaskSyncMetadata.remote_event_id == remote_event_id)
            return _normalize(session.exec(stmt).first())

    def create(self, task_id: int, **fields) -> TaskSyncMetadata:
        now = utc_now()
        with self._session_factory() as session:
            row = TaskSyncMetadata(task_id=task_id, created_at=now, updated_at=now, **fields)
            self._check(row)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _normalize(row)

    def update(self, task_id: int, **fields) -> TaskSyncMetadata:
        with self._session_factory() as session:
            row = self._find(session, task_id)
            if row is None:
                raise LookupError(f"No sync metadata for task {task_id}")
            for key, value in fields.items():
                setattr(row, key, value)
            row.updated_at = utc_now()
            self._check(row)
            session.add(row)
            session.commit()
            session.refresh(row)
            return _normalize(row)

    @staticmethod
    def _check(row: TaskSyncMetadata) -> None:
        if row.sync_status not in SYNC_STATUSES:
            raise ValueError(f"Unknown sync status {row.sync_status!r}")
        if row.sync_status == SYNC_SYNCED and not row.has_remote():
            raise ValueError("A synced row needs at least one remote id")
        if (row.retry_count or 0) < 0:
            raise ValueError("retry_count cannot be negative")

    def list_by_status(self, status: str = SYNC_FAILED) -> List[TaskSyncMetadata]:
        with self._session_factory() as session:
            stmt = (
                select(TaskSyncMetadata)
                .where(TaskSyncMetadata.sync_status == status)
                .order_by(TaskSyncMetadata.task_id)
            )
            return [_normalize(row) for row in session.exec(stmt).all()]

    def count_not_synced(self) -> int:
        with self._session_factory() as session:
            stmt = select(func.count()).select_from(TaskSyncMetadata).where(
                TaskSyncMetadata.sync_status != SYNC_SYNCED
            )
            return int(session.exec(stmt).one())


__all__ = ["TaskSyncStore"]
