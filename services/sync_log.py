"""Append-only store for :class:`SyncLogEntry` rows."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlmodel import select

from datetime_utils import ensure_utc, utc_now
from models.sync_log import (
    ENTITY_EVENT,
    ENTITY_TASK,
    OPERATIONS,
    STATUS_FAILURE,
    STATUS_SUCCESS,
    SyncLogEntry,
)
from storage.db import get_session


class SyncLog:
    """Writes one row per sync attempt. Rows are never updated or deleted here."""

    def __init__(self, session_factory=get_session) -> None:
        self._session_factory = session_factory

    def append(
        self,
        user_id: int,
        operation: str,
        entity_type: str,
        entity_id: Optional[Any],
        status: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> SyncLogEntry:
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown sync operation {operation!r}")
        if entity_type not in (ENTITY_TASK, ENTITY_EVENT):
            raise ValueError(f"Unknown entity type {entity_type!r}")
        if status not in (STATUS_SUCCESS, STATUS_FAILURE):
            raise ValueError(f"Unknown status {status!r}")
        entry = SyncLogEntry(
            user_id=user_id,
            operation=operation,
            entity_type=entity_type,
            entity_id=None if entity_id is None else str(entity_id),
            status=status,
            details=json.dumps(details, default=str) if details else None,
            timestamp=utc_now(),
        )
        with self._session_factory() as session:
            session.add(entry)
            session.commit()
            session.refresh(entry)
            entry.timestamp = ensure_utc(entry.timestamp)
            return entry

    def latest_for_entity(self, entity_id: Any, entity_type: str = ENTITY_TASK) -> Optional[SyncLogEntry]:
        with self._session_factory() as session:
            stmt = (
                select(SyncLogEntry)
                .where(
                    SyncLogEntry.entity_id == str(entity_id),
                    SyncLogEntry.entity_type == entity_type,
                )
                .order_by(SyncLogEntry.timestamp.desc(), SyncLogEntry.id.desc())
            )
            entry = session.exec(stmt).first()
            if entry is not None:
                entry.timestamp = ensure_utc(entry.timestamp)
            return entry

    def last_success_time(self, user_id: int) -> Optional[datetime]:
        with self._session_factory() as session:
            stmt = select(func.max(SyncLogEntry.timestamp)).where(
                SyncLogEntry.user_id == user_id, SyncLogEntry.status == STATUS_SUCCESS
            )
            return ensure_utc(session.exec(stmt).one())

    def recent(self, user_id: int, limit: int = 50) -> List[SyncLogEntry]:
        with self._session_factory() as session:
            stmt = (
                select(SyncLogEntry)
                .where(SyncLogEntry.user_id == user_id)
                .order_by(SyncLogEntry.timestamp.desc(), SyncLogEntry.id.desc())
                .limit(limit)
            )
            entries = list(session.exec(stmt).all())
        for entry in entries:
            entry.timestamp = ensure_utc(entry.timestamp)
        return entries


def entry_details(entry: Optional[SyncLogEntry]) -> Dict[str, Any]:
    if entry is None or not entry.details:
        return {}
    try:
        data = json.loads(entry.details)
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def failed_operation(entry: Optional[SyncLogEntry]) -> Optional[str]:
    """Operation of ``entry`` when it records a failure, else ``None``."""

    if entry is None or entry.status != STATUS_FAILURE:
        return None
    return entry.operation


__all__ = ["SyncLog", "entry_details", "failed_operation"]
