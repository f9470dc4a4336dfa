"""ORM models exposed by the Life Manager sync engine."""
from .domain import Domain
from .task import Task
from .oauth_token import OAuthToken
from .task_sync import TaskSyncMetadata
from .sync_log import SyncLogEntry

__all__ = ["Domain", "Task", "OAuthToken", "TaskSyncMetadata", "SyncLogEntry"]
