import threading
import time
from contextlib import contextmanager
from datetime import timedelta

import pytest
from sqlmodel import SQLModel, create_engine

from models import Task
from services.sync_export import ExportOrchestrator
from services.sync_import import ImportOrchestrator
from services.sync_locks import KeyedLocks
from services.sync_retry import RetryCoordinator
from tests.fakes import FakeTasksClient

USER = 1


class RecordingLocks(KeyedLocks):
    def __init__(self):
        super().__init__()
        self.requested = []

    @contextmanager
    def hold(self, key):
        self.requested.append(key)
        with super().hold(key):
            yield


class BlockingTasksClient(FakeTasksClient):
    """Parks the first update of ``blocked_id`` until ``release`` is set."""

    def __init__(self, blocked_id, items=None):
        super().__init__(items)
        self.blocked_id = blocked_id
        self.entered = threading.Event()
        self.release = threading.Event()

    def update(self, credential, remote_id, item):
        if remote_id == self.blocked_id and not self.release.is_set():
            self.entered.set()
            self.release.wait(timeout=5)
        return super().update(credential, remote_id, item)


@pytest.fixture()
def engine(tmp_path):
    # one connection per thread
    engine = create_engine(
        f"sqlite:///{(tmp_path / 'sync.db').as_posix()}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture()
def locks():
    return RecordingLocks()


@pytest.fixture()
def blocking_tasks():
    return BlockingTasksClient("gt-a")


@pytest.fixture()
def exporter(token_manager, calendar, blocking_tasks, repo, sync_store, sync_log, settings, locks):
    return ExportOrchestrator(token_manager, calendar, blocking_tasks, repo, sync_store, sync_log, settings, locks)


def _wait_for_requests(locks, key, count):
    deadline = time.monotonic() + 5
    while locks.requested.count(key) < count:
        assert time.monotonic() < deadline, "lock was never requested"
        time.sleep(0.01)
    # give the waiter time to park on the lock
    time.sleep(0.05)


def _start(target):
    thread = threading.Thread(target=target)
    thread.start()
    return thread


def test_retry_waits_for_running_export_of_same_task(
    exporter, blocking_tasks, repo, sync_store, sync_log, locks, make_task, make_row
):
    task_a = make_task(title="Blocked")
    task_b = make_task(title="Free")
    make_row(task_a, remote_task_id="gt-a", sync_status="failed", retry_count=1)
    make_row(task_b, remote_task_id="gt-b", sync_status="synced")
    retrier = RetryCoordinator(exporter, repo, sync_store, sync_log)
    reports = []

    export_thread = _start(lambda: exporter.export_task_modification(USER, task_a))
    assert blocking_tasks.entered.wait(timeout=5)

    # another task is not held up
    other = exporter.export_task_modification(USER, task_b)
    assert other.sync_status == "synced"

    retry_thread = _start(lambda: reports.append(retrier.retry_failed_operations(USER)))
    _wait_for_requests(locks, task_a, 2)
    assert retry_thread.is_alive()
    assert [remote_id for remote_id, _ in blocking_tasks.updated] == ["gt-b"]

    blocking_tasks.release.set()
    export_thread.join(timeout=5)
    retry_thread.join(timeout=5)

    assert not export_thread.is_alive() and not retry_thread.is_alive()
    assert [remote_id for remote_id, _ in blocking_tasks.updated] == ["gt-b", "gt-a", "gt-a"]
    assert reports[0].attempted == [task_a]
    assert sync_store.get(task_a).sync_status == "synced"
    assert len(locks) == 0


def test_import_waits_for_running_export_of_same_task(
    exporter, blocking_tasks, token_manager, calendar, repo, sync_store, sync_log, settings, locks,
    make_task, make_row, session_factory, domain_id,
):
    task_id = make_task(title="Local title")
    with session_factory() as session:
        stale = session.get(Task, task_id).updated_at - timedelta(minutes=10)
    make_row(task_id, remote_task_id="gt-a", sync_status="synced", last_sync_time=stale)
    blocking_tasks.items = [{"id": "gt-a", "title": "Remote title", "status": "needsAction"}]
    importer = ImportOrchestrator(token_manager, calendar, blocking_tasks, repo, sync_store, sync_log, settings, locks)
    results = []

    export_thread = _start(lambda: exporter.export_task_modification(USER, task_id))
    assert blocking_tasks.entered.wait(timeout=5)

    import_thread = _start(lambda: results.append(importer.import_from_google(USER, domain_id)))
    _wait_for_requests(locks, task_id, 2)
    assert import_thread.is_alive()
    assert results == []

    blocking_tasks.release.set()
    export_thread.join(timeout=5)
    import_thread.join(timeout=5)

    assert not import_thread.is_alive()
    # the import saw the export's fresh last_sync_time, not the stale one
    assert results[0].conflicts == []
    assert results[0].tasks_imported == 1
    assert repo.get(task_id).title == "Remote title"
