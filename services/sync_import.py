"""One-way import of today's Google Calendar events and Google Tasks."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from itertools import combinations
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from core.logging_setup import get_sync_logger
from core.priorities import DEFAULT_PRIORITY, FIXED_PRIORITY
from core.settings import GOOGLE_SYNC, GoogleSyncSettings
from datetime_utils import ensure_utc, local_zone, utc_now
from models.sync_log import ENTITY_EVENT, ENTITY_TASK, OP_IMPORT, STATUS_FAILURE, STATUS_SUCCESS
from models.task_sync import SYNC_SYNCED
from services.errors import ProviderError, error_kind
from services.provider import ProviderClient, RemoteEvent, RemoteTask, parse_event, parse_task, with_backoff
from services.sync_locks import TASK_LOCKS, KeyedLocks
from services.sync_log import SyncLog
from services.task_repository import TaskRepository
from services.task_sync_store import TaskSyncStore

CONFLICT_MODIFIED_LOCALLY = "modified_locally"
CONFLICT_OVERLAP = "overlap"

# failures that stay inside one item and never abort the whole import
ITEM_ERRORS = (ProviderError, ValueError, LookupError, SQLAlchemyError)


@dataclass
class Conflict:
    kind: str
    entity_type: str
    remote_id: str
    message: str
    task_id: Optional[int] = None
    other_remote_id: Optional[str] = None


@dataclass
class SyncErrorRecord:
    entity_type: str
    remote_id: Optional[str]
    message: str
    kind: str = "internal"


@dataclass
class ImportResult:
    calendar_events_imported: int = 0
    tasks_imported: int = 0
    conflicts: List[Conflict] = field(default_factory=list)
    errors: List[SyncErrorRecord] = field(default_factory=list)


def find_overlaps(events: List[RemoteEvent]) -> List[Tuple[RemoteEvent, RemoteEvent]]:
    """Every unordered pair of events whose time ranges intersect."""

    ordered = sorted(events, key=lambda e: (e.start, e.end, e.id))
    return [
        (first, second)
        for first, second in combinations(ordered, 2)
        if first.start < second.end and second.start < first.end
    ]


class ImportOrchestrator:
    def __init__(
        self,
        token_manager,
        calendar: ProviderClient,
        tasks: ProviderClient,
        repo: TaskRepository,
        sync_store: TaskSyncStore,
        sync_log: SyncLog,
        settings: GoogleSyncSettings = GOOGLE_SYNC,
        locks: KeyedLocks = TASK_LOCKS,
    ) -> None:
        self.tokens = token_manager
        self.calendar = calendar
        self.tasks = tasks
        self.repo = repo
        self.store = sync_store
        self.log = sync_log
        self.settings = settings
        self.locks = locks
        self.logger = get_sync_logger("import")

    # ------------------------------------------------------------------
    # Public API
    def import_from_google(
        self,
        user_id: int,
        default_domain_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ImportResult:
        # no credential, no writes
        credential = self.tokens.get_live_credential(user_id, self.settings.provider)
        result = ImportResult()
        domain = self.repo.ensure_default_domain(default_domain_id, self.settings.default_domain_name)

        raw_events = self._fetch(user_id, ENTITY_EVENT, self.calendar, credential, now, result)
        if raw_events is not None:
            events = self._parse_all(user_id, ENTITY_EVENT, raw_events, parse_event, result)
            self._report_overlaps(user_id, events, result)
            for event in events:
                if self._run_item(user_id, ENTITY_EVENT, event.id, result,
                                  lambda e=event: self._import_event(user_id, e, domain.id, result)):
                    result.calendar_events_imported += 1

        raw_tasks = self._fetch(user_id, ENTITY_TASK, self.tasks, credential, now, result)
        if raw_tasks is not None:
            for task in self._parse_all(user_id, ENTITY_TASK, raw_tasks, parse_task, result):
                if self._run_item(user_id, ENTITY_TASK, task.id, result,
                                  lambda t=task: self._import_task(user_id, t, domain.id, result)):
                    result.tasks_imported += 1

        self.logger.info(
            "Import for user %s: %s events, %s tasks, %s conflicts, %s errors",
            user_id,
            result.calendar_events_imported,
            result.tasks_imported,
            len(result.conflicts),
            len(result.errors),
        )
        return result

    # ------------------------------------------------------------------
    # Collection helpers
    def _fetch(self, user_id, entity_type, client, credential, now, result) -> Optional[List[Dict[str, Any]]]:
        try:
            return with_backoff(
                lambda: client.list_today(credential, now=now),
                retries=self.settings.provider_retries,
                base_delay=self.settings.provider_backoff_sec,
                max_delay=self.settings.provider_backoff_max_sec,
                logger=self.logger,
            )
        except ProviderError as exc:
            self.logger.error("Fetching %s items failed: %s", client.resource, exc)
            result.errors.append(SyncErrorRecord(entity_type, None, str(exc), exc.kind))
            self.log.append(user_id, OP_IMPORT, entity_type, None, STATUS_FAILURE, {
                "error": str(exc),
                "error_kind": exc.kind,
                "retryable": exc.retryable,
            })
            return None

    def _parse_all(self, user_id, entity_type, items, parser: Callable, result) -> List[Any]:
        parsed = []
        for item in items:
            remote_id = item.get("id") if isinstance(item, dict) else None
            try:
                parsed.append(parser(item))
            except ValueError as exc:
                self._record_error(user_id, entity_type, remote_id, exc, result)
        return parsed

    def _run_item(self, user_id, entity_type, remote_id, result, action: Callable[[], bool]) -> bool:
        try:
            return action()
        except ITEM_ERRORS as exc:
            self._record_error(user_id, entity_type, remote_id, exc, result)
            return False

    def _record_error(self, user_id, entity_type, remote_id, exc, result) -> None:
        kind = error_kind(exc) if not isinstance(exc, ValueError) else "invalid_payload"
        self.logger.warning("Import of %s %s failed: %s", entity_type, remote_id, exc)
        result.errors.append(SyncErrorRecord(entity_type, remote_id, str(exc), kind))
        self.log.append(user_id, OP_IMPORT, entity_type, remote_id, STATUS_FAILURE, {
            "error": str(exc),
            "error_kind": kind,
            "retryable": False,
        })

    def _report_overlaps(self, user_id, events: List[RemoteEvent], result) -> None:
        for first, second in find_overlaps(events):
            message = f"'{first.summary}' overlaps '{second.summary}'"
            result.conflicts.append(Conflict(
                kind=CONFLICT_OVERLAP,
                entity_type=ENTITY_EVENT,
                remote_id=first.id,
                other_remote_id=second.id,
                message=message,
            ))
            self.log.append(user_id, OP_IMPORT, ENTITY_EVENT, f"{first.id},{second.id}", STATUS_FAILURE, {
                "conflict": CONFLICT_OVERLAP,
                "message": message,
                "error_kind": "conflict",
                "retryable": False,
            })

    # ------------------------------------------------------------------
    # Per-item import
    def _local_day(self, moment: datetime) -> date:
        return ensure_utc(moment).astimezone(local_zone(self.settings.timezone)).date()

    def _import_event(self, user_id: int, event: RemoteEvent, domain_id: int, result: ImportResult) -> bool:
        fields = {
            "title": event.summary,
            "description": event.description,
            "due_date": self._local_day(event.start),
        }
        row = self.store.get_by_remote_event(event.id)
        if row is None:
            stamp = utc_now()
            task = self.repo.create_from_import(
                domain_id=domain_id,
                priority=FIXED_PRIORITY,
                estimated_minutes=event.duration_minutes or self.settings.default_import_minutes,
                updated_at=stamp,
                **fields,
            )
            self.store.create(
                task.id,
                remote_event_id=event.id,
                is_fixed_schedule=True,
                sync_status=SYNC_SYNCED,
                last_sync_time=stamp,
            )
            self._log_success(user_id, ENTITY_EVENT, event.id, task.id, "created")
            return True
        return self._update_existing(user_id, ENTITY_EVENT, event.id, row.task_id, fields, result, fixed=True)

    def _import_task(self, user_id: int, item: RemoteTask, domain_id: int, result: ImportResult) -> bool:
        fields = {
            "title": item.title,
            "description": item.notes,
            # Tasks API dates are UTC midnight of the chosen day
            "due_date": ensure_utc(item.due).date() if item.due else None,
        }
        row = self.store.get_by_remote_task(item.id)
        if row is None:
            stamp = utc_now()
            task = self.repo.create_from_import(
                domain_id=domain_id,
                priority=DEFAULT_PRIORITY,
                estimated_minutes=self.settings.default_import_minutes,
                updated_at=stamp,
                **fields,
            )
            self.store.create(
                task.id,
                remote_task_id=item.id,
                is_fixed_schedule=False,
                sync_status=SYNC_SYNCED,
                last_sync_time=stamp,
            )
            self._log_success(user_id, ENTITY_TASK, item.id, task.id, "created")
            return True
        return self._update_existing(user_id, ENTITY_TASK, item.id, row.task_id, fields, result, fixed=False)

    def _update_existing(
        self,
        user_id: int,
        entity_type: str,
        remote_id: str,
        task_id: int,
        fields: Dict[str, Any],
        result: ImportResult,
        *,
        fixed: bool,
    ) -> bool:
        with self.locks.hold(task_id):
            return self._apply_remote(user_id, entity_type, remote_id, task_id, fields, result, fixed)

    def _apply_remote(self, user_id, entity_type, remote_id, task_id, fields, result, fixed) -> bool:
        # re-read under the task lock
        row = self.store.get(task_id)
        task = self.repo.get(task_id)
        if row is None or task is None:
            raise LookupError(f"Task {task_id} linked to {remote_id} no longer exists")

        last_sync = ensure_utc(row.last_sync_time)
        local_updated = ensure_utc(task.updated_at)
        if last_sync is None or (local_updated is not None and local_updated > last_sync):
            message = f"Task {task.id} was modified locally since the last sync"
            result.conflicts.append(Conflict(
                kind=CONFLICT_MODIFIED_LOCALLY,
                entity_type=entity_type,
                remote_id=remote_id,
                task_id=task.id,
                message=message,
            ))
            self.logger.info("Conflict on %s %s: %s", entity_type, remote_id, message)
            self.log.append(user_id, OP_IMPORT, entity_type, remote_id, STATUS_FAILURE, {
                "conflict": CONFLICT_MODIFIED_LOCALLY,
                "task_id": task.id,
                "message": message,
                "error_kind": "conflict",
                "retryable": False,
            })
            return False

        stamp = utc_now()
        self.repo.update_mirrored(task.id, stamp, **fields)
        updates: Dict[str, Any] = {"last_sync_time": stamp, "is_fixed_schedule": fixed}
        if entity_type == ENTITY_EVENT:
            updates["remote_event_id"] = remote_id
        else:
            updates["remote_task_id"] = remote_id
        self.store.update(task.id, **updates)
        self._log_success(user_id, entity_type, remote_id, task.id, "updated")
        return True

    def _log_success(self, user_id, entity_type, remote_id, task_id, action) -> None:
        self.log.append(user_id, OP_IMPORT, entity_type, remote_id, STATUS_SUCCESS, {
            "action": action,
            "task_id": task_id,
        })


__all__ = [
    "ImportOrchestrator",
    "ImportResult",
    "Conflict",
    "SyncErrorRecord",
    "find_overlaps",
    "CONFLICT_MODIFIED_LOCALLY",
    "CONFLICT_OVERLAP",
]
