"""Logging configuration for the sync engine."""
from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from core.settings import LOGGING

ROOT_LOGGER = "lifemanager"


def _ensure_root(path: Optional[Path] = None) -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        target = Path(path or LOGGING.path)
        target.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            target,
            maxBytes=LOGGING.max_bytes,
            backupCount=LOGGING.backup_count,
            encoding="utf-8",
        )
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        handler.setFormatter(formatter)
        root.addHandler(handler)
        root.setLevel(getattr(logging, str(LOGGING.level).upper(), logging.INFO))
    return root


def get_sync_logger(name: str = "sync") -> logging.Logger:
    """Return ``lifemanager.<name>``, attaching the rotating file handler once."""

    _ensure_root()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


__all__ = ["ROOT_LOGGER", "get_sync_logger"]
