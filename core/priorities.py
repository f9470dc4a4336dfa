"""Utility helpers for task priorities and statuses."""
from __future__ import annotations

from typing import Optional

# Order matters: index 0 is the most urgent level.
PRIORITIES: tuple[str, ...] = ("must-do", "should-do", "nice-to-have")
DEFAULT_PRIORITY = "should-do"
FIXED_PRIORITY = "must-do"

TASK_STATUSES: tuple[str, ...] = ("todo", "in-progress", "done", "dropped")
DEFAULT_STATUS = "todo"


def normalize_priority(value: Optional[str]) -> str:
    if not value:
        return DEFAULT_PRIORITY
    lowered = str(value).strip().lower().replace("_", "-").replace(" ", "-")
    if lowered in PRIORITIES:
        return lowered
    return DEFAULT_PRIORITY


def normalize_status(value: Optional[str]) -> str:
    if not value:
        return DEFAULT_STATUS
    lowered = str(value).strip().lower()
    if lowered in TASK_STATUSES:
        return lowered
    if lowered in {"completed", "complete", "finished"}:
        return "done"
    if lowered in {"needsaction", "needs_action", "needs-action"}:
        return "todo"
    return DEFAULT_STATUS


__all__ = [
    "PRIORITIES",
    "DEFAULT_PRIORITY",
    "FIXED_PRIORITY",
    "TASK_STATUSES",
    "DEFAULT_STATUS",
    "normalize_priority",
    "normalize_status",
]
