"""Per-key mutexes serializing sync work on the same task or account."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Dict, Hashable, Iterator, List


class KeyedLocks:
    """A lock per key, kept only while some thread holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        # key -> [lock, holders + waiters]
        self._locks: Dict[Hashable, List] = {}

    def _acquire_entry(self, key: Hashable) -> threading.Lock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _release_entry(self, key: Hashable) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        lock = self._acquire_entry(key)
        try:
            with lock:
                yield
        finally:
            self._release_entry(key)

    def is_held(self, key: Hashable) -> bool:
        with self._guard:
            entry = self._locks.get(key)
            return entry is not None and entry[0].locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared by every exporter/importer/retry coordinator and token manager in the process.
TASK_LOCKS = KeyedLocks()
REFRESH_LOCKS = KeyedLocks()


__all__ = ["KeyedLocks", "TASK_LOCKS", "REFRESH_LOCKS"]
