import os
import sys
import tempfile
from datetime import date
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# keep the app data dir (sqlite file, sync.log) out of the user's home
os.environ.setdefault("LIFEMANAGER_DATA_DIR", tempfile.mkdtemp(prefix="lifemanager-tests-"))

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

import models  # noqa: F401
from core.settings import GoogleSyncSettings
from models import Domain, Task, TaskSyncMetadata
from services.sync_log import SyncLog
from services.task_repository import TaskRepository
from services.task_sync_store import TaskSyncStore
from tests.fakes import FakeCalendarClient, FakeTasksClient, FakeTokenManager


@pytest.fixture()
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture()
def session_factory(engine):
    def factory():
        return Session(engine)

    return factory


@pytest.fixture()
def settings():
    return GoogleSyncSettings(
        timezone="UTC",
        client_id="cid",
        client_secret="csecret",
        provider_backoff_sec=0.0,
    )


@pytest.fixture()
def repo(session_factory):
    return TaskRepository(session_factory)


@pytest.fixture()
def sync_store(session_factory):
    return TaskSyncStore(session_factory)


@pytest.fixture()
def sync_log(session_factory):
    return SyncLog(session_factory)


@pytest.fixture()
def calendar():
    return FakeCalendarClient()


@pytest.fixture()
def tasks():
    return FakeTasksClient()


@pytest.fixture()
def token_manager():
    return FakeTokenManager()


@pytest.fixture()
def domain_id(session_factory):
    with session_factory() as session:
        domain = Domain(name="Health")
        session.add(domain)
        session.commit()
        session.refresh(domain)
        return domain.id


@pytest.fixture()
def make_task(session_factory, domain_id):
    def _make(title="Write report", due_date=None, status="todo", description=None, **fields):
        with session_factory() as session:
            task = Task(
                title=title,
                description=description,
                domain_id=domain_id,
                due_date=due_date,
                status=status,
                **fields,
            )
            session.add(task)
            session.commit()
            session.refresh(task)
            return task.id

    return _make


@pytest.fixture()
def make_row(session_factory):
    def _make(task_id, **fields):
        with session_factory() as session:
            row = TaskSyncMetadata(task_id=task_id, **fields)
            session.add(row)
            session.commit()
            session.refresh(row)
            return row

    return _make


@pytest.fixture()
def due_day():
    return date(2024, 5, 1)
