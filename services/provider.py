"""Provider client interface, DTOs and Google error translation."""

from __future__ import annotations

import json
import logging
import socket
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

import httplib2
from googleapiclient.errors import HttpError

from datetime_utils import parse_rfc3339
from services.errors import INVALID_REQUEST, TRANSIENT, ProviderError, classify_status

T = TypeVar("T")


# ---------- DTOs ----------
@dataclass
class EventInput:
    summary: str
    # None on both leaves the event times untouched on update
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    description: Optional[str] = None
    location: Optional[str] = None


@dataclass
class TaskInput:
    title: str
    notes: Optional[str] = None
    due: Optional[datetime] = None


@dataclass
class RemoteEvent:
    id: str
    summary: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: List[str] = field(default_factory=list)
    recurring_event_id: Optional[str] = None

    @property
    def duration_minutes(self) -> int:
        return max(int((self.end - self.start).total_seconds() // 60), 0)


@dataclass
class RemoteTask:
    id: str
    title: str
    notes: Optional[str] = None
    due: Optional[datetime] = None
    status: str = "needsAction"


# ---------- payload parsing ----------
def parse_event(item: Dict[str, Any]) -> RemoteEvent:
    """Turn a Calendar API event into a :class:`RemoteEvent`; ``ValueError`` if malformed."""

    if not isinstance(item, dict):
        raise ValueError("Calendar event payload is not an object")
    event_id = item.get("id")
    summary = (item.get("summary") or "").strip()
    if not event_id or not summary:
        raise ValueError(f"Invalid event data from Google Calendar: id={event_id!r} summary={summary!r}")
    start = parse_rfc3339((item.get("start") or {}).get("dateTime"))
    end = parse_rfc3339((item.get("end") or {}).get("dateTime"))
    if start is None or end is None:
        raise ValueError(f"Invalid event data from Google Calendar: missing start/end for {event_id}")
    if end < start:
        raise ValueError(f"Event {event_id} ends before it starts")
    return RemoteEvent(
        id=str(event_id),
        summary=summary,
        start=start,
        end=end,
        description=item.get("description") or None,
        location=item.get("location") or None,
        attendees=[a.get("email") for a in item.get("attendees") or [] if a.get("email")],
        recurring_event_id=item.get("recurringEventId"),
    )


def parse_task(item: Dict[str, Any]) -> RemoteTask:
    """Turn a Tasks API item into a :class:`RemoteTask`; ``ValueError`` if malformed."""

    if not isinstance(item, dict):
        raise ValueError("Task payload is not an object")
    task_id = item.get("id")
    title = (item.get("title") or "").strip()
    if not task_id or not title:
        raise ValueError(f"Invalid task data from Google Tasks: id={task_id!r} title={title!r}")
    due_raw = item.get("due")
    due = parse_rfc3339(due_raw) if due_raw else None
    if due_raw and due is None:
        raise ValueError(f"Unparseable due date {due_raw!r} on task {task_id}")
    return RemoteTask(
        id=str(task_id),
        title=title,
        notes=item.get("notes") or None,
        due=due,
        status=item.get("status") or "needsAction",
    )


# ---------- error translation ----------
def _http_error_reason(exc: HttpError) -> Optional[str]:
    try:
        payload = json.loads(exc.content.decode("utf-8"))
        errors = payload.get("error", {}).get("errors") or []
        if errors:
            return errors[0].get("reason")
    except (AttributeError, ValueError, UnicodeDecodeError):
        return None
    return None


def translate_error(exc: BaseException, context: str) -> ProviderError:
    if isinstance(exc, ProviderError):
        return exc
    if isinstance(exc, HttpError):
        status = getattr(exc, "resp", None) and getattr(exc.resp, "status", None)
        code = int(status or 0)
        kind = classify_status(code, _http_error_reason(exc))
        return ProviderError(kind, f"{context} failed: {exc}", status=code or None)
    if isinstance(exc, (socket.timeout, TimeoutError)):
        return ProviderError(TRANSIENT, f"{context} timed out")
    return ProviderError(TRANSIENT, f"{context} failed: {exc}")


def call_provider(context: str, func: Callable[[], T]) -> T:
    """Run ``func`` and re-raise any API or transport failure as ``ProviderError``."""

    try:
        return func()
    except (HttpError, httplib2.HttpLib2Error, OSError) as exc:
        raise translate_error(exc, context) from exc


def backoff_delay(attempt: int, base: float, ceiling: float) -> float:
    return min(ceiling, base * 2 ** max(attempt, 0))


def with_backoff(
    func: Callable[[], T],
    *,
    retries: int,
    base_delay: float,
    max_delay: float,
    logger: Optional[logging.Logger] = None,
) -> T:
    """Call ``func``, sleeping and retrying up to ``retries`` times on retryable ``ProviderError``s."""

    attempt = 0
    while True:
        try:
            return func()
        except ProviderError as exc:
            if not exc.retryable or attempt >= retries:
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            attempt += 1
            if logger is not None:
                logger.warning("%s; retry %s/%s in %.1fs", exc, attempt, retries, delay)
            time.sleep(delay)


# ---------- interface ----------
class ProviderClient(ABC):
    """Stateless adapter over one Google resource collection."""

    resource: str = ""

    @abstractmethod
    def list_today(self, credential, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Raw remote payloads relevant for today's import."""

    @abstractmethod
    def create(self, credential, item) -> str:
        ...

    @abstractmethod
    def update(self, credential, remote_id: str, item) -> str:
        ...

    def complete(self, credential, remote_id: str) -> str:
        raise ProviderError(INVALID_REQUEST, f"{self.resource} items cannot be completed")

    @abstractmethod
    def delete(self, credential, remote_id: str) -> str:
        ...


__all__ = [
    "EventInput",
    "TaskInput",
    "RemoteEvent",
    "RemoteTask",
    "ProviderClient",
    "backoff_delay",
    "call_provider",
    "with_backoff",
    "parse_event",
    "parse_task",
    "translate_error",
]
