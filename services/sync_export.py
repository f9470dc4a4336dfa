"""One-way export of local task changes to Google Tasks and Calendar."""

from __future__ import annotations

from typing import Any, Callable, Dict, Optional, Set

from sqlalchemy.exc import SQLAlchemyError

from core.logging_setup import get_sync_logger
from core.settings import GOOGLE_SYNC, GoogleSyncSettings
from datetime_utils import local_zone, midnight_utc, time_block, utc_now
from models.sync_log import (
    ENTITY_TASK,
    OP_EXPORT_COMPLETE,
    OP_EXPORT_CREATE,
    OP_EXPORT_UPDATE,
    STATUS_FAILURE,
    STATUS_SUCCESS,
)
from models.task import Task
from models.task_sync import SYNC_FAILED, SYNC_SYNCED, TaskSyncMetadata
from services.errors import (
    ProviderError,
    ReauthRequiredError,
    TaskNotFoundError,
    error_kind,
    is_retryable,
)
from services.provider import EventInput, ProviderClient, TaskInput, with_backoff
from services.sync_locks import TASK_LOCKS, KeyedLocks
from services.sync_log import SyncLog, failed_operation
from services.task_repository import TaskRepository
from services.task_sync_store import TaskSyncStore

REMOTE_TASK = "remote_task_id"
REMOTE_EVENT = "remote_event_id"

# recorded on the row and swallowed
RECOVERABLE_ERRORS = (ProviderError, SQLAlchemyError)
# recorded on the row and re-raised
CREDENTIAL_ERRORS = (ReauthRequiredError, ProviderError)


def has_remote_id(row: Optional[TaskSyncMetadata]) -> bool:
    return row is not None and bool(row.remote_task_id or row.remote_event_id)


def missing_remote_ids(task: Task, row: Optional[TaskSyncMetadata]) -> Set[str]:
    """Remote ids the task should be linked to but is not (yet)."""

    if row is None:
        required = {REMOTE_TASK}
        if task.due_date is not None:
            required.add(REMOTE_EVENT)
        return required
    if row.is_fixed_schedule:
        # calendar-owned rows never grow a Tasks item
        required = {REMOTE_EVENT}
    else:
        required = {REMOTE_TASK}
        if task.due_date is not None:
            required.add(REMOTE_EVENT)
    return {name for name in required if not getattr(row, name)}


class ExportOrchestrator:
    """Pushes local creates, edits and completions; one log entry per call."""

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
        self.logger = get_sync_logger("export")

    # ------------------------------------------------------------------
    # Public API
    def export_new_task(self, user_id: int, task_id: int) -> TaskSyncMetadata:
        with self.locks.hold(task_id):
            return self._export_new(user_id, task_id)

    def export_task_modification(self, user_id: int, task_id: int) -> Optional[TaskSyncMetadata]:
        with self.locks.hold(task_id):
            row = self.store.get(task_id)
            if row is None:
                return None
            return self._export_modification(user_id, self._load_task(task_id), row)

    def export_task_completion(self, user_id: int, task_id: int) -> Optional[TaskSyncMetadata]:
        with self.locks.hold(task_id):
            row = self.store.get(task_id)
            if row is None:
                return None
            return self._export_completion(user_id, self._load_task(task_id), row)

    # ------------------------------------------------------------------
    # Operations (caller holds the task lock)
    def _load_task(self, task_id: int) -> Task:
        task = self.repo.get(task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    def _resumes_creation(self, row: TaskSyncMetadata) -> bool:
        """A linked row only grows new remote items after a failed create."""

        if not has_remote_id(row):
            return True
        latest = self.log.latest_for_entity(row.task_id, ENTITY_TASK)
        return failed_operation(latest) == OP_EXPORT_CREATE

    def _call(self, func: Callable[[], str]) -> str:
        return with_backoff(
            func,
            retries=self.settings.provider_retries,
            base_delay=self.settings.provider_backoff_sec,
            max_delay=self.settings.provider_backoff_max_sec,
            logger=self.logger,
        )

    def _export_new(self, user_id: int, task_id: int) -> TaskSyncMetadata:
        task = self._load_task(task_id)
        row = self.store.get(task_id)
        missing = missing_remote_ids(task, row)
        if row is not None and (not missing or not self._resumes_creation(row)):
            return self._export_modification(user_id, task, row)

        def work(credential, progress: Dict[str, Any]) -> Dict[str, Any]:
            if REMOTE_TASK in missing:
                progress[REMOTE_TASK] = self._call(lambda: self.tasks.create(credential, self._task_input(task)))
            if REMOTE_EVENT in missing:
                progress[REMOTE_EVENT] = self._call(
                    lambda: self.calendar.create(credential, self._event_input(task, row))
                )
            return {"created": sorted(missing)}

        return self._attempt(user_id, task, row, OP_EXPORT_CREATE, work)

    def _export_modification(self, user_id: int, task: Task, row: TaskSyncMetadata) -> TaskSyncMetadata:
        def work(credential, progress: Dict[str, Any]) -> Dict[str, Any]:
            pushed = []
            if row.remote_task_id:
                self._call(lambda: self.tasks.update(credential, row.remote_task_id, self._task_input(task)))
                pushed.append(REMOTE_TASK)
            if row.remote_event_id:
                self._call(
                    lambda: self.calendar.update(credential, row.remote_event_id, self._event_input(task, row))
                )
                pushed.append(REMOTE_EVENT)
            return {"updated": pushed}

        return self._attempt(user_id, task, row, OP_EXPORT_UPDATE, work)

    def _export_completion(self, user_id: int, task: Task, row: TaskSyncMetadata) -> TaskSyncMetadata:
        if not row.remote_task_id:
            # an event-only row has nothing to complete
            return self._record_success(user_id, task.id, row, OP_EXPORT_COMPLETE, {}, {
                "skipped": "no linked Google Tasks item",
            })

        def work(credential, progress: Dict[str, Any]) -> Dict[str, Any]:
            self._call(lambda: self.tasks.complete(credential, row.remote_task_id))
            return {"completed": row.remote_task_id}

        return self._attempt(user_id, task, row, OP_EXPORT_COMPLETE, work)

    # ------------------------------------------------------------------
    # Outcome recording
    def _attempt(
        self,
        user_id: int,
        task: Task,
        row: Optional[TaskSyncMetadata],
        operation: str,
        work: Callable[[Any, Dict[str, Any]], Dict[str, Any]],
    ) -> TaskSyncMetadata:
        progress: Dict[str, Any] = {}
        try:
            credential = self.tokens.get_live_credential(user_id, self.settings.provider)
        except CREDENTIAL_ERRORS as exc:
            self._record_failure(user_id, task.id, row, operation, exc, progress)
            raise
        try:
            details = work(credential, progress)
        except RECOVERABLE_ERRORS as exc:
            return self._record_failure(user_id, task.id, row, operation, exc, progress)
        try:
            return self._record_success(user_id, task.id, row, operation, progress, details)
        except SQLAlchemyError as exc:
            # remote ids in ``progress`` are kept on the failed row
            return self._record_failure(user_id, task.id, row, operation, exc, progress)

    def _record_success(self, user_id, task_id, row, operation, progress, details) -> TaskSyncMetadata:
        fields = dict(
            progress,
            sync_status=SYNC_SYNCED,
            sync_error=None,
            retry_count=0,
            last_sync_time=utc_now(),
        )
        if row is None:
            saved = self.store.create(task_id, is_fixed_schedule=False, **fields)
        else:
            saved = self.store.update(task_id, **fields)
        self.logger.info("%s of task %s succeeded", operation, task_id)
        self.log.append(user_id, operation, ENTITY_TASK, task_id, STATUS_SUCCESS, dict(
            details,
            remote_task_id=saved.remote_task_id,
            remote_event_id=saved.remote_event_id,
        ))
        return saved

    def _record_failure(self, user_id, task_id, row, operation, exc, progress) -> TaskSyncMetadata:
        fields = dict(progress, sync_status=SYNC_FAILED, sync_error=str(exc))
        if row is None:
            saved = self.store.create(task_id, is_fixed_schedule=False, retry_count=0, **fields)
        else:
            saved = self.store.update(task_id, retry_count=(row.retry_count or 0) + 1, **fields)
        self.logger.error("%s of task %s failed: %s", operation, task_id, exc)
        self.log.append(user_id, operation, ENTITY_TASK, task_id, STATUS_FAILURE, {
            "error": str(exc),
            "error_kind": error_kind(exc),
            "retryable": is_retryable(exc),
            "retry_count": saved.retry_count,
        })
        return saved

    # ------------------------------------------------------------------
    # Payloads
    def _task_input(self, task: Task) -> TaskInput:
        return TaskInput(
            title=task.title,
            notes=task.description,
            due=midnight_utc(task.due_date) if task.due_date else None,
        )

    def _event_input(self, task: Task, row: Optional[TaskSyncMetadata]) -> EventInput:
        if (row is not None and row.is_fixed_schedule) or task.due_date is None:
            # keep the remote times of imported meetings
            return EventInput(summary=task.title, description=task.description)
        start, end = time_block(
            task.due_date,
            self.settings.default_block_start_hour,
            task.estimated_minutes or self.settings.default_import_minutes,
            local_zone(self.settings.timezone),
        )
        return EventInput(summary=task.title, start=start, end=end, description=task.description)


__all__ = ["ExportOrchestrator", "has_remote_id", "missing_remote_ids", "REMOTE_TASK", "REMOTE_EVENT"]
