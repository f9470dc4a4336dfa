"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env or os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    override = environ.get("LIFEMANAGER_DATA_DIR")
    if override:
        return Path(override).expanduser()

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "LifeManager"


DATA_DIR = get_default_data_dir(APP_NAME)
SECRETS_DIR = DATA_DIR / "secrets"
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, SECRETS_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


DB_PATH = DATA_DIR / "app.db"
CLIENT_SECRET_PATH = SECRETS_DIR / "client_secret.json"
SYNC_LOG_PATH = LOG_DIR / "sync.log"


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(name)
    if value is None or not value.strip():
        return default
    return value.strip()


@dataclass(frozen=True)
class GoogleSyncSettings:
    enabled: bool = True
    provider: str = "google"
    scopes: tuple[str, ...] = (
        "https://www.googleapis.com/auth/calendar",
        "https://www.googleapis.com/auth/tasks",
    )
    client_id: Optional[str] = field(default_factory=lambda: _env("GOOGLE_CLIENT_ID"))
    client_secret: Optional[str] = field(default_factory=lambda: _env("GOOGLE_CLIENT_SECRET"))
    redirect_uri: str = field(
        default_factory=lambda: _env(
            "GOOGLE_REDIRECT_URI", "http://localhost:5173/auth/google/callback"
        )
    )
    client_secret_path: Path = CLIENT_SECRET_PATH
    token_encryption_key: Optional[str] = field(
        default_factory=lambda: _env("LIFEMANAGER_TOKEN_KEY")
    )
    auth_uri: str = "https://accounts.google.com/o/oauth2/auth"
    token_uri: str = "https://oauth2.googleapis.com/token"
    revoke_uri: str = "https://oauth2.googleapis.com/revoke"
    calendar_id: str = "primary"
    refresh_margin_sec: int = 300
    http_timeout_sec: int = 30
    # in-call retries of rate_limited / transient Google errors
    provider_retries: int = 5
    provider_backoff_sec: float = 1.0
    provider_backoff_max_sec: float = 60.0
    default_block_start_hour: int = 9
    default_import_minutes: int = 30
    default_domain_name: str = "Google Import"
    default_user_id: int = 1
    timezone: Optional[str] = field(default_factory=lambda: _env("LIFEMANAGER_TIMEZONE"))


GOOGLE_SYNC = GoogleSyncSettings()


@dataclass(frozen=True)
class LoggingSettings:
    path: Path = SYNC_LOG_PATH
    level: str = field(default_factory=lambda: _env("LIFEMANAGER_LOG_LEVEL", "INFO"))
    max_bytes: int = 1_000_000
    backup_count: int = 3


LOGGING = LoggingSettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "SECRETS_DIR",
    "LOG_DIR",
    "DB_PATH",
    "CLIENT_SECRET_PATH",
    "SYNC_LOG_PATH",
    "GOOGLE_SYNC",
    "LOGGING",
    "GoogleSyncSettings",
    "LoggingSettings",
    "get_default_data_dir",
]
