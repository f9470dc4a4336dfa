from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlmodel import select

from core.priorities import normalize_priority
from datetime_utils import utc_now
from models.domain import Domain
from models.task import Task
from storage.db import get_session

# Only these fields are ever written back by an import.
MIRRORED_FIELDS = ("title", "description", "due_date")


class TaskRepository:
    """Thin access to Task/Domain rows for the sync engine."""

    def __init__(self, session_factory=get_session) -> None:
        self._session_factory = session_factory

    def get(self, task_id: int) -> Optional[Task]:
        with self._session_factory() as session:
            return session.get(Task, task_id)

    def create_from_import(
        self,
        *,
        title: str,
        domain_id: int,
        description: Optional[str] = None,
        due_date: Optional[date] = None,
        priority: Optional[str] = None,
        estimated_minutes: int = 30,
        updated_at: Optional[datetime] = None,
    ) -> Task:
        stamp = updated_at or utc_now()
        with self._session_factory() as session:
            task = Task(
                title=title,
                description=description,
                domain_id=domain_id,
                priority=normalize_priority(priority),
                estimated_minutes=max(int(estimated_minutes or 0), 1),
                due_date=due_date,
                created_at=stamp,
                updated_at=stamp,
            )
            session.add(task)
            session.commit()
            session.refresh(task)
            return task

    def update_mirrored(self, task_id: int, updated_at: datetime, **fields) -> Task:
        unknown = set(fields) - set(MIRRORED_FIELDS)
        if unknown:
            raise ValueError(f"Import may not write fields: {sorted(unknown)}")
        with self._session_factory() as session:
            obj = session.get(Task, task_id)
            if not obj:
                raise ValueError("Task not found")
            for key, value in fields.items():
                setattr(obj, key, value)
            obj.updated_at = updated_at
            session.add(obj)
            session.commit()
            session.refresh(obj)
            return obj

    def ensure_default_domain(self, default_domain_id: Optional[int], name: str) -> Domain:
        with self._session_factory() as session:
            if default_domain_id is not None:
                domain = session.get(Domain, default_domain_id)
                if domain:
                    return domain
            domain = session.exec(select(Domain).order_by(Domain.id)).first()
            if domain:
                return domain
            domain = Domain(name=name, description="Items imported from Google")
            session.add(domain)
            session.commit()
            session.refresh(domain)
            return domain


__all__ = ["TaskRepository", "MIRRORED_FIELDS"]
