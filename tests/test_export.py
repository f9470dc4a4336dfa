import time
from dataclasses import replace

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import select

from models import TaskSyncMetadata
from models.sync_log import OP_EXPORT_COMPLETE, OP_EXPORT_CREATE, OP_EXPORT_UPDATE
from services.errors import (
    NOT_FOUND,
    RATE_LIMITED,
    TRANSIENT,
    ProviderError,
    ReauthRequiredError,
    TaskNotFoundError,
)
from services.sync_export import ExportOrchestrator
from services.sync_log import entry_details
from tests.fakes import FakeTokenManager

USER = 1


@pytest.fixture()
def exporter(token_manager, calendar, tasks, repo, sync_store, sync_log, settings):
    return ExportOrchestrator(token_manager, calendar, tasks, repo, sync_store, sync_log, settings)


def test_new_task_with_due_date_links_task_and_event(exporter, make_task, sync_store, sync_log, due_day, calendar):
    task_id = make_task(due_date=due_day, estimated_minutes=45)

    row = exporter.export_new_task(USER, task_id)

    assert row.remote_task_id == "task-1"
    assert row.remote_event_id == "event-1"
    assert row.sync_status == "synced"
    assert row.last_sync_time is not None
    assert row.retry_count == 0
    assert row.is_fixed_schedule is False
    assert sync_store.get(task_id).remote_event_id == "event-1"

    event = calendar.created[0]
    assert event.start.hour == 9
    assert (event.end - event.start).total_seconds() == 45 * 60

    entries = sync_log.recent(USER)
    assert len(entries) == 1
    assert entries[0].operation == OP_EXPORT_CREATE
    assert entries[0].status == "success"
    assert entries[0].entity_id == str(task_id)


def test_new_undated_task_only_creates_tasks_item(exporter, make_task, calendar, tasks):
    task_id = make_task()

    row = exporter.export_new_task(USER, task_id)

    assert row.remote_task_id == "task-1"
    assert row.remote_event_id is None
    assert row.sync_status == "synced"
    assert calendar.created == []
    assert tasks.created[0].due is None


def test_exporting_twice_creates_one_resource_set(exporter, make_task, calendar, tasks, due_day, session_factory):
    task_id = make_task(due_date=due_day)

    exporter.export_new_task(USER, task_id)
    row = exporter.export_new_task(USER, task_id)

    assert len(tasks.created) == 1
    assert len(calendar.created) == 1
    assert tasks.updated[0][0] == "task-1"
    assert calendar.updated[0][0] == "event-1"
    assert row.sync_status == "synced"

    with session_factory() as session:
        rows = session.exec(select(TaskSyncMetadata)).all()
    assert len(rows) == 1


def test_missing_task_raises(exporter):
    with pytest.raises(TaskNotFoundError):
        exporter.export_new_task(USER, 999)


def test_modification_and_completion_without_metadata_do_nothing(exporter, make_task, sync_store, sync_log, tasks):
    task_id = make_task()

    assert exporter.export_task_modification(USER, task_id) is None
    assert exporter.export_task_completion(USER, task_id) is None

    assert sync_store.get(task_id) is None
    assert sync_log.recent(USER) == []
    assert tasks.updated == [] and tasks.completed == []


def test_partial_failure_keeps_created_id_and_resume_creates_rest(exporter, make_task, calendar, tasks, due_day, sync_log):
    task_id = make_task(due_date=due_day)
    calendar.failures["create"] = ProviderError(TRANSIENT, "backend error", status=503)

    row = exporter.export_new_task(USER, task_id)

    assert row.sync_status == "failed"
    assert row.remote_task_id == "task-1"
    assert row.remote_event_id is None
    assert row.retry_count == 0
    assert "backend error" in row.sync_error
    failure = sync_log.latest_for_entity(task_id)
    assert failure.status == "failure"
    assert entry_details(failure)["retryable"] is True
    assert entry_details(failure)["error_kind"] == TRANSIENT

    del calendar.failures["create"]
    row = exporter.export_new_task(USER, task_id)

    assert row.sync_status == "synced"
    assert row.remote_event_id == "event-1"
    assert row.retry_count == 0
    assert row.sync_error is None
    assert len(tasks.created) == 1


def test_modification_failure_increments_retry_count(exporter, make_task, make_row, tasks):
    task_id = make_task()
    make_row(task_id, remote_task_id="task-7", sync_status="synced", retry_count=0)
    tasks.failures["update"] = ProviderError(NOT_FOUND, "gone", status=404)

    first = exporter.export_task_modification(USER, task_id)
    second = exporter.export_task_modification(USER, task_id)

    assert first.sync_status == "failed"
    assert first.retry_count == 1
    assert second.retry_count == 2


def test_modification_success_resets_state(exporter, make_task, make_row, tasks, sync_log):
    task_id = make_task(title="Renamed", description="notes")
    make_row(task_id, remote_task_id="task-7", sync_status="failed", retry_count=3, sync_error="boom")

    row = exporter.export_task_modification(USER, task_id)

    assert row.sync_status == "synced"
    assert row.retry_count == 0
    assert row.sync_error is None
    remote_id, payload = tasks.updated[0]
    assert remote_id == "task-7"
    assert payload.title == "Renamed"
    assert payload.notes == "notes"
    assert sync_log.latest_for_entity(task_id).operation == OP_EXPORT_UPDATE


def test_fixed_schedule_event_keeps_remote_times(exporter, make_task, make_row, calendar, due_day):
    task_id = make_task(title="Standup", due_date=due_day)
    make_row(task_id, remote_event_id="evt-9", is_fixed_schedule=True, sync_status="synced")

    exporter.export_task_modification(USER, task_id)

    remote_id, payload = calendar.updated[0]
    assert remote_id == "evt-9"
    assert payload.summary == "Standup"
    assert payload.start is None and payload.end is None


def test_completion_marks_remote_task_completed(exporter, make_task, make_row, tasks, sync_log):
    task_id = make_task(status="done")
    make_row(task_id, remote_task_id="task-3", sync_status="synced")

    row = exporter.export_task_completion(USER, task_id)

    assert tasks.completed == ["task-3"]
    assert tasks.deleted == []
    assert row.last_sync_time is not None
    assert sync_log.latest_for_entity(task_id).operation == OP_EXPORT_COMPLETE


def test_completion_of_event_only_row_is_skipped(exporter, make_task, make_row, tasks, sync_log, token_manager):
    task_id = make_task(status="done")
    make_row(task_id, remote_event_id="evt-1", is_fixed_schedule=True, sync_status="synced")

    row = exporter.export_task_completion(USER, task_id)

    assert row.sync_status == "synced"
    assert tasks.completed == []
    entry = sync_log.latest_for_entity(task_id)
    assert entry.status == "success"
    assert "skipped" in entry_details(entry)


def test_credential_failure_is_recorded_then_raised(calendar, tasks, repo, sync_store, sync_log, settings, make_task):
    exporter = ExportOrchestrator(
        FakeTokenManager(error=ReauthRequiredError("refresh token revoked")),
        calendar, tasks, repo, sync_store, sync_log, settings,
    )
    task_id = make_task()

    with pytest.raises(ReauthRequiredError):
        exporter.export_new_task(USER, task_id)

    row = sync_store.get(task_id)
    assert row.sync_status == "failed"
    assert "refresh token revoked" in row.sync_error
    entries = sync_log.recent(USER)
    assert len(entries) == 1
    assert entry_details(entries[0])["error_kind"] == "reauth_required"
    assert tasks.created == []


def test_local_write_failure_after_remote_success_is_recorded(exporter, make_task, sync_store, sync_log, monkeypatch):
    task_id = make_task()
    original_create = sync_store.create
    calls = []

    def flaky_create(task_id, **fields):
        calls.append(fields.get("sync_status"))
        if fields.get("sync_status") == "synced":
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))
        return original_create(task_id, **fields)

    monkeypatch.setattr(sync_store, "create", flaky_create)

    row = exporter.export_new_task(USER, task_id)

    assert calls == ["synced", "failed"]
    assert row.sync_status == "failed"
    assert row.remote_task_id == "task-1"
    assert sync_log.latest_for_entity(task_id).status == "failure"


def test_export_new_on_linked_row_pushes_modification(exporter, make_task, make_row, calendar, tasks, due_day, sync_log):
    task_id = make_task(title="Renamed", due_date=due_day)
    make_row(task_id, remote_task_id="task-7", sync_status="synced")

    row = exporter.export_new_task(USER, task_id)

    assert calendar.created == [] and tasks.created == []
    assert tasks.updated[0][0] == "task-7"
    assert row.remote_event_id is None
    assert sync_log.latest_for_entity(task_id).operation == OP_EXPORT_UPDATE


def test_transient_errors_are_retried_with_backoff(
    token_manager, calendar, tasks, repo, sync_store, sync_log, settings, make_task, make_row, monkeypatch
):
    delays = []
    monkeypatch.setattr(time, "sleep", delays.append)
    exporter = ExportOrchestrator(
        token_manager, calendar, tasks, repo, sync_store, sync_log,
        replace(settings, provider_retries=3, provider_backoff_sec=1.0, provider_backoff_max_sec=60.0),
    )
    task_id = make_task(title="Renamed")
    make_row(task_id, remote_task_id="task-7", sync_status="synced")
    tasks.flaky["update"] = [
        ProviderError(RATE_LIMITED, "slow down", status=429),
        ProviderError(TRANSIENT, "backend error", status=503),
    ]

    row = exporter.export_task_modification(USER, task_id)

    assert tasks.calls["update"] == 3
    assert delays == [1.0, 2.0]
    assert row.sync_status == "synced"
    assert row.retry_count == 0
    entries = sync_log.recent(USER)
    assert [e.status for e in entries] == ["success"]


def test_backoff_gives_up_after_configured_retries(
    token_manager, calendar, tasks, repo, sync_store, sync_log, settings, make_task, make_row, monkeypatch
):
    delays = []
    monkeypatch.setattr(time, "sleep", delays.append)
    exporter = ExportOrchestrator(
        token_manager, calendar, tasks, repo, sync_store, sync_log,
        replace(settings, provider_retries=4, provider_backoff_sec=10.0, provider_backoff_max_sec=30.0),
    )
    task_id = make_task()
    make_row(task_id, remote_task_id="task-7", sync_status="synced")
    tasks.failures["update"] = ProviderError(TRANSIENT, "backend error", status=503)

    row = exporter.export_task_modification(USER, task_id)

    assert tasks.calls["update"] == 5
    assert delays == [10.0, 20.0, 30.0, 30.0]
    assert row.sync_status == "failed"
    assert row.retry_count == 1


def test_not_found_is_not_retried_in_call(
    token_manager, calendar, tasks, repo, sync_store, sync_log, settings, make_task, make_row, monkeypatch
):
    delays = []
    monkeypatch.setattr(time, "sleep", delays.append)
    exporter = ExportOrchestrator(
        token_manager, calendar, tasks, repo, sync_store, sync_log, replace(settings, provider_backoff_sec=1.0)
    )
    task_id = make_task(status="done")
    make_row(task_id, remote_task_id="task-7", sync_status="synced")
    tasks.failures["complete"] = ProviderError(NOT_FOUND, "gone", status=404)

    row = exporter.export_task_completion(USER, task_id)

    assert tasks.calls["complete"] == 1
    assert delays == []
    assert row.sync_status == "failed"
    assert entry_details(sync_log.latest_for_entity(task_id))["retryable"] is False
