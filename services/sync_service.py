from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from core.logging_setup import get_sync_logger
from core.settings import GOOGLE_SYNC, GoogleSyncSettings
from datetime_utils import ensure_utc
from models.task_sync import SYNC_FAILED, TaskSyncMetadata
from services.credential_store import CredentialStore
from services.errors import SyncEngineError
from services.google_auth import TokenManager
from services.google_calendar import GoogleCalendarClient
from services.google_tasks import GoogleTasksClient
from services.provider import ProviderClient
from services.sync_export import ExportOrchestrator
from services.sync_import import ImportOrchestrator, ImportResult
from services.sync_locks import TASK_LOCKS, KeyedLocks
from services.sync_log import SyncLog
from services.sync_retry import RetryCoordinator, RetryReport
from services.task_repository import TaskRepository
from services.task_sync_store import TaskSyncStore
from services.token_crypto import TokenCipher
from storage.db import get_session, init_db


@dataclass
class FailedOperation:
    task_id: int
    error: Optional[str]
    retry_count: int
    updated_at: Optional[datetime]


@dataclass
class SyncStatus:
    is_connected: bool = False
    has_tokens: bool = False
    connection_error: Optional[str] = None
    last_sync_time: Optional[datetime] = None
    pending_operations: int = 0
    failed_operations: List[FailedOperation] = field(default_factory=list)


def _failed_operation(row: TaskSyncMetadata) -> FailedOperation:
    return FailedOperation(
        task_id=row.task_id,
        error=row.sync_error,
        retry_count=row.retry_count or 0,
        updated_at=ensure_utc(row.updated_at),
    )


class SyncService:
    """Entry points of the Google sync engine, wired from settings."""

    def __init__(
        self,
        token_manager: TokenManager,
        calendar: ProviderClient,
        tasks: ProviderClient,
        repo: TaskRepository,
        sync_store: TaskSyncStore,
        sync_log: SyncLog,
        settings: GoogleSyncSettings = GOOGLE_SYNC,
        locks: KeyedLocks = TASK_LOCKS,
    ) -> None:
        self.tokens = token_manager
        self.repo = repo
        self.store = sync_store
        self.log = sync_log
        self.settings = settings
        self.importer = ImportOrchestrator(
            token_manager, calendar, tasks, repo, sync_store, sync_log, settings, locks
        )
        self.exporter = ExportOrchestrator(
            token_manager, calendar, tasks, repo, sync_store, sync_log, settings, locks
        )
        self.retrier = RetryCoordinator(self.exporter, repo, sync_store, sync_log)
        self.logger = get_sync_logger()

    @classmethod
    def from_settings(cls, settings: GoogleSyncSettings = GOOGLE_SYNC, session_factory=get_session) -> "SyncService":
        if session_factory is get_session:
            init_db()
        cipher = TokenCipher(settings.token_encryption_key, client_secret=settings.client_secret)
        token_manager = TokenManager(CredentialStore(cipher, session_factory), settings=settings)
        return cls(
            token_manager,
            GoogleCalendarClient(settings.calendar_id, timezone=settings.timezone),
            GoogleTasksClient(timezone=settings.timezone),
            TaskRepository(session_factory),
            TaskSyncStore(session_factory),
            SyncLog(session_factory),
            settings,
        )

    # ------------------------------------------------------------------
    # Connection
    def initiate_auth(self, state: Optional[str] = None) -> str:
        return self.tokens.initiate_auth(state)

    def complete_auth(self, user_id: int, code: str) -> None:
        tokens = self.tokens.exchange_code(code)
        self.tokens.store_tokens(user_id, self.settings.provider, tokens)

    def disconnect(self, user_id: int) -> bool:
        return self.tokens.revoke_tokens(user_id, self.settings.provider)

    # ------------------------------------------------------------------
    # Sync
    def import_from_google(self, user_id: int, default_domain_id: Optional[int] = None) -> ImportResult:
        return self.importer.import_from_google(user_id, default_domain_id)

    def export_new_task(self, user_id: int, task_id: int) -> TaskSyncMetadata:
        return self.exporter.export_new_task(user_id, task_id)

    def export_task_modification(self, user_id: int, task_id: int) -> Optional[TaskSyncMetadata]:
        return self.exporter.export_task_modification(user_id, task_id)

    def export_task_completion(self, user_id: int, task_id: int) -> Optional[TaskSyncMetadata]:
        return self.exporter.export_task_completion(user_id, task_id)

    def retry_failed_operations(self, user_id: int) -> RetryReport:
        return self.retrier.retry_failed_operations(user_id)

    # ------------------------------------------------------------------
    # Status
    def get_sync_status(self, user_id: int) -> SyncStatus:
        """Snapshot of the connection and queue state. Never raises."""

        status = SyncStatus()
        try:
            status.has_tokens = self.tokens.has_tokens(user_id, self.settings.provider)
            status.last_sync_time = self.log.last_success_time(user_id)
            status.pending_operations = self.store.count_not_synced()
            status.failed_operations = [_failed_operation(r) for r in self.store.list_by_status(SYNC_FAILED)]
        except Exception as exc:
            self.logger.error("Sync status lookup failed: %s", exc)
            status.connection_error = str(exc)
            return status

        if not status.has_tokens:
            return status
        try:
            self.tokens.get_live_credential(user_id, self.settings.provider)
            status.is_connected = True
        except SyncEngineError as exc:
            status.connection_error = str(exc)
        except Exception as exc:
            self.logger.error("Credential check failed: %s", exc)
            status.connection_error = str(exc)
        return status


__all__ = ["SyncService", "SyncStatus", "FailedOperation"]
