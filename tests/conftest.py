"""
docflow Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from docflow.db.stores import InMemoryUserDirectory, InMemoryWorkflowStore
from docflow.engine.config import DocflowConfig
from docflow.workflow.engine import WorkflowEngine
from docflow.workflow.models import Role, Task, TaskStatus, User

SECRETARY = 1
LEADER = 2
DEPUTY = 3
OFFICER = 4
OFFICER_2 = 5
ADMIN = 6
DEPUTY_2 = 7
INACTIVE_OFFICER = 8
LEADER_2 = 9

USER_IDS = SimpleNamespace(
    SECRETARY=SECRETARY,
    LEADER=LEADER,
    DEPUTY=DEPUTY,
    OFFICER=OFFICER,
    OFFICER_2=OFFICER_2,
    ADMIN=ADMIN,
    DEPUTY_2=DEPUTY_2,
    INACTIVE_OFFICER=INACTIVE_OFFICER,
    LEADER_2=LEADER_2,
)


@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset global singletons between tests."""
    import docflow.engine.config as cfg_mod
    import docflow.engine.logging as log_mod

    cfg_mod._config = None
    yield
    log_mod.shutdown_logging()
    cfg_mod._config = None


class FakeClock:
    """Deterministic clock; frozen unless advanced."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def uid():
    """User ids of the seeded directory."""
    return USER_IDS


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc))


@pytest.fixture
def users():
    return InMemoryUserDirectory([
        User(id=SECRETARY, role=Role.SECRETARY, name="Văn thư"),
        User(id=LEADER, role=Role.TEAM_LEADER, name="Trưởng"),
        User(id=DEPUTY, role=Role.DEPUTY, name="Phó 1"),
        User(id=OFFICER, role=Role.OFFICER, name="Cán bộ 1"),
        User(id=OFFICER_2, role=Role.OFFICER, name="Cán bộ 2"),
        User(id=ADMIN, role=Role.ADMINISTRATOR, name="Quản trị"),
        User(id=DEPUTY_2, role=Role.DEPUTY, name="Phó 2"),
        User(id=INACTIVE_OFFICER, role=Role.OFFICER, is_active=False, name="Nghỉ"),
        User(id=LEADER_2, role=Role.TEAM_LEADER, name="Trưởng 2"),
    ])


@pytest.fixture
def store():
    return InMemoryWorkflowStore()


@pytest.fixture
def config():
    return DocflowConfig()


@pytest.fixture
def engine(store, users, config, clock):
    return WorkflowEngine(store, store, users, config=config, clock=clock)


@pytest.fixture
def make_task(store, clock):
    """Seed a task directly into the store (no ledger entry)."""
    counter = {"id": 100}

    def _make(status=TaskStatus.NOT_STARTED, assigned_to_id=None, created_by_id=SECRETARY, **fields):
        counter["id"] += 1
        task = Task(
            id=counter["id"],
            status=status,
            assigned_to_id=assigned_to_id,
            created_by_id=created_by_id,
            created_at=clock(),
            **fields,
        )
        return store.put(task)

    return _make


@pytest.fixture
def sqlite_factory():
    """Session factory on a fresh in-memory SQLite database with all tables."""
    from docflow.db.session import close_db, init_db

    factory = init_db("sqlite://", create_tables=True)
    yield factory
    close_db()
