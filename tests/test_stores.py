"""Unit tests for docflow.db.stores — in-memory stores and the store protocols."""

import pytest

from docflow.db.stores import (
    HistoryStore,
    InMemoryUserDirectory,
    InMemoryWorkflowStore,
    TaskStore,
    UserDirectory,
)
from docflow.engine.errors import ConcurrencyError, NotFoundError
from docflow.workflow.models import Role, StatusHistoryEntry, Task, TaskStatus, User


class TestProtocols:
    def test_in_memory_store_satisfies_protocols(self):
        store = InMemoryWorkflowStore()
        assert isinstance(store, TaskStore)
        assert isinstance(store, HistoryStore)

    def test_in_memory_directory_satisfies_protocol(self):
        assert isinstance(InMemoryUserDirectory(), UserDirectory)


class TestInMemoryWorkflowStore:
    def test_create_assigns_ids(self):
        store = InMemoryWorkflowStore()
        a = store.create(created_by_id=1)
        b = store.create(created_by_id=1)
        assert (a.id, b.id) == (1, 2)
        assert store.load(2) == b

    def test_put_advances_next_id(self):
        store = InMemoryWorkflowStore()
        store.put(Task(id=40, created_by_id=1))
        assert store.create(created_by_id=1).id == 41

    def test_load_missing(self):
        with pytest.raises(NotFoundError) as exc_info:
            InMemoryWorkflowStore().load(3)
        assert exc_info.value.entity == "task"

    def test_save_bumps_version(self):
        store = InMemoryWorkflowStore()
        task = store.create(created_by_id=1)
        saved = store.save(task.model_copy(update={"description": "x"}))
        assert saved.version == 2
        assert store.load(task.id).description == "x"

    def test_stale_save(self):
        store = InMemoryWorkflowStore()
        task = store.create(created_by_id=1)
        store.save(task)
        with pytest.raises(ConcurrencyError) as exc_info:
            store.save(task)
        assert exc_info.value.expected_version == 1
        assert exc_info.value.actual_version == 2

    def test_deleted_tasks_hidden(self):
        store = InMemoryWorkflowStore()
        task = store.create(created_by_id=1)
        store.save(task.model_copy(update={"is_deleted": True}))
        with pytest.raises(NotFoundError):
            store.load(task.id)
        assert store.list() == []
        assert len(store.list(include_deleted=True)) == 1

    def test_history_is_per_task_and_ordered(self):
        store = InMemoryWorkflowStore()
        for seq, status in enumerate([TaskStatus.NOT_STARTED, TaskStatus.RECEIVED], start=1):
            store.append(StatusHistoryEntry(task_id=1, new_status=status, changed_by_id=1, sequence=seq))
        store.append(StatusHistoryEntry(task_id=2, new_status=TaskStatus.NOT_STARTED, changed_by_id=1))
        assert [e.sequence for e in store.list_by_task(1)] == [1, 2]
        assert store.list_by_task(3) == []

    def test_list_by_task_returns_copy(self):
        store = InMemoryWorkflowStore()
        store.append(StatusHistoryEntry(task_id=1, new_status=TaskStatus.NOT_STARTED, changed_by_id=1))
        store.list_by_task(1).clear()
        assert len(store.list_by_task(1)) == 1

    def test_transaction_rolls_back(self):
        store = InMemoryWorkflowStore()
        task = store.create(created_by_id=1)
        with pytest.raises(RuntimeError):
            with store.transaction():
                store.save(task.model_copy(update={"description": "changed"}))
                store.append(StatusHistoryEntry(task_id=task.id, new_status=TaskStatus.NOT_STARTED, changed_by_id=1))
                store.create(created_by_id=1)
                raise RuntimeError("boom")
        assert store.load(task.id).description == ""
        assert store.list_by_task(task.id) == []
        assert [t.id for t in store.list()] == [task.id]

    def test_transaction_commits(self):
        store = InMemoryWorkflowStore()
        task = store.create(created_by_id=1)
        with store.transaction():
            store.save(task.model_copy(update={"description": "kept"}))
        assert store.load(task.id).description == "kept"


class TestInMemoryUserDirectory:
    def test_lookup(self):
        users = InMemoryUserDirectory([User(id=1, role=Role.DEPUTY)])
        assert users.get_role(1) is Role.DEPUTY
        assert users.is_active(1)

    def test_missing_user(self):
        with pytest.raises(NotFoundError) as exc_info:
            InMemoryUserDirectory().get_user(9)
        assert exc_info.value.entity == "user"

    def test_deactivate(self):
        users = InMemoryUserDirectory()
        users.add(User(id=2, role=Role.OFFICER))
        users.deactivate(2)
        assert not users.is_active(2)
        assert [u.id for u in users.list()] == [2]
