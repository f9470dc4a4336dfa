# lifemanager/models/task.py
from typing import Optional
from datetime import date, datetime

from datetime_utils import utc_now
from sqlmodel import SQLModel, Field

class Task(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    description: Optional[str] = None
    domain_id: int = Field(foreign_key="domain.id", index=True)
    priority: str = "should-do"      # must-do / should-do / nice-to-have
    estimated_minutes: int = 30
    due_date: Optional[date] = None
    status: str = "todo"             # todo / in-progress / done / dropped
    rrule: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
