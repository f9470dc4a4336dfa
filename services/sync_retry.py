"""Manual replay of failed exports."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from core.logging_setup import get_sync_logger
from models.sync_log import (
    ENTITY_TASK,
    OP_EXPORT_COMPLETE,
    OP_EXPORT_CREATE,
    OP_EXPORT_UPDATE,
    STATUS_FAILURE,
    SyncLogEntry,
)
from models.task_sync import SYNC_FAILED, SYNC_SYNCED, TaskSyncMetadata
from services.sync_export import ExportOrchestrator, has_remote_id
from services.sync_log import SyncLog, entry_details, failed_operation
from services.task_repository import TaskRepository
from services.task_sync_store import TaskSyncStore

INTENT_CREATE = "create"
INTENT_MODIFY = "modify"
INTENT_COMPLETE = "complete"

_INTENT_BY_OPERATION = {
    OP_EXPORT_CREATE: INTENT_CREATE,
    OP_EXPORT_UPDATE: INTENT_MODIFY,
    OP_EXPORT_COMPLETE: INTENT_COMPLETE,
}


@dataclass
class RetryReport:
    attempted: List[int] = field(default_factory=list)
    succeeded: List[int] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)
    skipped: List[int] = field(default_factory=list)


class RetryCoordinator:
    def __init__(
        self,
        exporter: ExportOrchestrator,
        repo: TaskRepository,
        sync_store: TaskSyncStore,
        sync_log: SyncLog,
    ) -> None:
        self.exporter = exporter
        self.repo = repo
        self.store = sync_store
        self.log = sync_log
        self.logger = get_sync_logger("retry")

    def retry_failed_operations(self, user_id: int) -> RetryReport:
        report = RetryReport()
        for row in self.store.list_by_status(SYNC_FAILED):
            task = self.repo.get(row.task_id)
            latest = self.log.latest_for_entity(row.task_id, ENTITY_TASK)
            if task is None or not self._retryable(latest):
                report.skipped.append(row.task_id)
                continue

            intent = self.infer_intent(task, row, failed_operation(latest))
            report.attempted.append(row.task_id)
            self.logger.info("Retrying %s of task %s (attempt %s)", intent, row.task_id, row.retry_count + 1)
            if intent == INTENT_CREATE:
                saved = self.exporter.export_new_task(user_id, row.task_id)
            elif intent == INTENT_COMPLETE:
                saved = self.exporter.export_task_completion(user_id, row.task_id)
            else:
                saved = self.exporter.export_task_modification(user_id, row.task_id)

            if saved is not None and saved.sync_status == SYNC_SYNCED:
                report.succeeded.append(row.task_id)
            else:
                report.failed.append(row.task_id)

        self.logger.info(
            "Retry for user %s: %s attempted, %s succeeded, %s failed, %s skipped",
            user_id,
            len(report.attempted),
            len(report.succeeded),
            len(report.failed),
            len(report.skipped),
        )
        return report

    @staticmethod
    def _retryable(latest: Optional[SyncLogEntry]) -> bool:
        if latest is None or latest.status != STATUS_FAILURE:
            return True
        # not_found / invalid_request wait for a manual fix
        return entry_details(latest).get("retryable", True) is not False

    @staticmethod
    def infer_intent(task, row: TaskSyncMetadata, last_failed: Optional[str] = None) -> str:
        """Replay the export that failed; guess from the row only when the log has no failure."""

        if last_failed in _INTENT_BY_OPERATION:
            return _INTENT_BY_OPERATION[last_failed]
        if not has_remote_id(row):
            return INTENT_CREATE
        if task.status == "done":
            return INTENT_COMPLETE
        return INTENT_MODIFY


__all__ = ["RetryCoordinator", "RetryReport", "INTENT_CREATE", "INTENT_MODIFY", "INTENT_COMPLETE"]
