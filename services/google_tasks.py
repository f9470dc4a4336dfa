"""Minimal Google Tasks client used by the synchronisation service."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from googleapiclient.discovery import build

from core.settings import GOOGLE_SYNC
from datetime_utils import ensure_utc, local_day_bounds, local_zone, parse_rfc3339, to_rfc3339_utc, utc_now
from services.errors import NOT_FOUND, TRANSIENT, ProviderError
from services.provider import ProviderClient, TaskInput, call_provider

DEFAULT_TASKLIST = "@default"


def _build_service(creds) -> Any:
    return build("tasks", "v1", credentials=creds, cache_discovery=False)


def _format_due(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    normalized = ensure_utc(value)
    # tasks API only keeps the date part of ``due``
    normalized = normalized.replace(hour=0, minute=0, second=0, microsecond=0)
    return to_rfc3339_utc(normalized)


class GoogleTasksClient(ProviderClient):
    """Tasks v1 adapter. New items go to the default list; lookups scan every list."""

    resource = "tasks"

    def __init__(
        self,
        *,
        service_factory: Callable[[Any], Any] = _build_service,
        timezone: Optional[str] = GOOGLE_SYNC.timezone,
    ) -> None:
        self._service_factory = service_factory
        self.timezone = timezone

    # ------------------------------------------------------------------
    # Lookup helpers
    def _tasklist_ids(self, service) -> List[str]:
        ids: List[str] = []
        page_token: Optional[str] = None
        while True:
            request = service.tasklists().list(maxResults=100, pageToken=page_token)
            response = call_provider("List task lists", request.execute)
            ids.extend(item["id"] for item in response.get("items", []) if item.get("id"))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return ids

    def _find_tasklist(self, service, task_id: str) -> str:
        for tasklist_id in self._tasklist_ids(service):
            request = service.tasks().get(tasklist=tasklist_id, task=task_id)
            try:
                found = call_provider("Get task", request.execute)
            except ProviderError as exc:
                if exc.kind == NOT_FOUND:
                    continue
                raise
            if found.get("id") == task_id:
                return tasklist_id
        raise ProviderError(NOT_FOUND, f"Task {task_id} not found in any task list", status=404)

    # ------------------------------------------------------------------
    # Import
    def list_today(self, credential, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Incomplete tasks due today or overdue, across all lists. Undated tasks are skipped."""

        _, end_of_day = local_day_bounds(now, local_zone(self.timezone))
        service = self._service_factory(credential)
        result: List[Dict[str, Any]] = []
        for tasklist_id in self._tasklist_ids(service):
            page_token: Optional[str] = None
            while True:
                request = service.tasks().list(
                    tasklist=tasklist_id,
                    showCompleted=False,
                    showHidden=False,
                    maxResults=100,
                    pageToken=page_token,
                )
                response = call_provider("List tasks", request.execute)
                for item in response.get("items", []):
                    due = parse_rfc3339(item.get("due"))
                    # Google stores due dates as UTC midnight of the chosen day
                    if due is not None and due.date() <= end_of_day.date():
                        result.append(item)
                    elif item.get("due") and due is None:
                        # malformed, let the importer report it
                        result.append(item)
                page_token = response.get("nextPageToken")
                if not page_token:
                    break
        return result

    # ------------------------------------------------------------------
    # CRUD helpers
    def create(self, credential, item: TaskInput) -> str:
        service = self._service_factory(credential)
        body: Dict[str, Any] = {"title": item.title.strip() or "Task", "status": "needsAction"}
        notes_value = (item.notes or "").strip()
        if notes_value:
            body["notes"] = notes_value
        due_value = _format_due(item.due)
        if due_value:
            body["due"] = due_value
        request = service.tasks().insert(tasklist=DEFAULT_TASKLIST, body=body)
        response = call_provider("Create task", request.execute)
        task_id = response.get("id")
        if not task_id:
            raise ProviderError(TRANSIENT, "No task ID returned from Google Tasks")
        return task_id

    def update(self, credential, remote_id: str, item: TaskInput) -> str:
        service = self._service_factory(credential)
        tasklist_id = self._find_tasklist(service, remote_id)
        body: Dict[str, Optional[str]] = {
            "title": item.title.strip() or "Task",
            "notes": (item.notes or "").strip() or None,
            "due": _format_due(item.due),
        }
        request = service.tasks().patch(tasklist=tasklist_id, task=remote_id, body=body)
        response = call_provider("Update task", request.execute)
        return response.get("id") or remote_id

    def complete(self, credential, remote_id: str) -> str:
        service = self._service_factory(credential)
        tasklist_id = self._find_tasklist(service, remote_id)
        body = {"status": "completed", "completed": to_rfc3339_utc(utc_now())}
        request = service.tasks().patch(tasklist=tasklist_id, task=remote_id, body=body)
        response = call_provider("Complete task", request.execute)
        return response.get("id") or remote_id

    def delete(self, credential, remote_id: str) -> str:
        service = self._service_factory(credential)
        try:
            tasklist_id = self._find_tasklist(service, remote_id)
            request = service.tasks().delete(tasklist=tasklist_id, task=remote_id)
            call_provider("Delete task", request.execute)
        except ProviderError as exc:
            if exc.kind != NOT_FOUND:
                raise
        return remote_id


__all__ = ["GoogleTasksClient", "DEFAULT_TASKLIST"]
