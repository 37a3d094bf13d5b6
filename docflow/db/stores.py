"""
Store interfaces consumed by the workflow engine, plus in-memory implementations.

    TaskStore      load / create / save (optimistic version check) / list
    HistoryStore   append / list_by_task (oldest first)
    UserDirectory  get_user / get_role / is_active

The in-memory store keeps tasks and ledger together so one transaction()
covers both, the same guarantee SqlWorkflowStore gets from a DB session.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Protocol, runtime_checkable

from docflow.engine.errors import ConcurrencyError, NotFoundError
from docflow.workflow.models import Role, StatusHistoryEntry, Task, User


@runtime_checkable
class TaskStore(Protocol):
    def load(self, task_id: int) -> Task: ...

    def create(self, **fields: Any) -> Task: ...

    def save(self, task: Task) -> Task: ...

    def list(self, include_deleted: bool = False) -> List[Task]: ...


@runtime_checkable
class HistoryStore(Protocol):
    def append(self, entry: StatusHistoryEntry) -> StatusHistoryEntry: ...

    def list_by_task(self, task_id: int) -> List[StatusHistoryEntry]: ...


@runtime_checkable
class UserDirectory(Protocol):
    def get_user(self, user_id: int) -> User: ...

    def get_role(self, user_id: int) -> Role: ...

    def is_active(self, user_id: int) -> bool: ...


def task_not_found(task_id: int) -> NotFoundError:
    return NotFoundError(f"Task {task_id} not found", entity="task", entity_id=task_id, task_id=task_id)


def user_not_found(user_id: int) -> NotFoundError:
    return NotFoundError(f"User {user_id} not found", entity="user", entity_id=user_id)


def stale_task(task_id: int, expected: int, actual: int) -> ConcurrencyError:
    return ConcurrencyError(
        f"Task {task_id} was modified concurrently (expected version {expected}, found {actual})",
        task_id=task_id,
        expected_version=expected,
        actual_version=actual,
    )


# ---------------------------------------------------------------------------
# In-memory implementations
# ---------------------------------------------------------------------------

class InMemoryWorkflowStore:
    """
    TaskStore + HistoryStore kept in dicts.

    save() enforces the version check; transaction() snapshots both
    collections and restores them if the block raises.
    """

    def __init__(self) -> None:
        self._tasks: Dict[int, Task] = {}
        self._history: Dict[int, List[StatusHistoryEntry]] = {}
        self._next_id = 1
        self._lock = threading.RLock()

    # -- TaskStore --------------------------------------------------------

    def load(self, task_id: int) -> Task:
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None or task.is_deleted:
            raise task_not_found(task_id)
        return task

    def create(self, **fields: Any) -> Task:
        with self._lock:
            task = Task(id=self._next_id, **fields)
            self._tasks[task.id] = task
            self._next_id += 1
            return task

    def put(self, task: Task) -> Task:
        """Insert a task as-is (seeding existing data)."""
        with self._lock:
            self._tasks[task.id] = task
            self._next_id = max(self._next_id, task.id + 1)
            return task

    def save(self, task: Task) -> Task:
        with self._lock:
            stored = self._tasks.get(task.id)
            if stored is None:
                raise task_not_found(task.id)
            if stored.version != task.version:
                raise stale_task(task.id, task.version, stored.version)
            saved = task.model_copy(update={"version": task.version + 1})
            self._tasks[task.id] = saved
            return saved

    def list(self, include_deleted: bool = False) -> List[Task]:
        with self._lock:
            tasks = sorted(self._tasks.values(), key=lambda t: t.id)
        return [t for t in tasks if include_deleted or not t.is_deleted]

    # -- HistoryStore -----------------------------------------------------

    def append(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        with self._lock:
            self._history.setdefault(entry.task_id, []).append(entry)
        return entry

    def list_by_task(self, task_id: int) -> List[StatusHistoryEntry]:
        with self._lock:
            return list(self._history.get(task_id, []))

    # -- Transactions -----------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator["InMemoryWorkflowStore"]:
        with self._lock:
            tasks = dict(self._tasks)
            history = {k: list(v) for k, v in self._history.items()}
            next_id = self._next_id
            try:
                yield self
            except BaseException:
                self._tasks = tasks
                self._history = history
                self._next_id = next_id
                raise


class InMemoryUserDirectory:
    """UserDirectory backed by a dict of User values."""

    def __init__(self, users: Optional[Iterable[User]] = None) -> None:
        self._users: Dict[int, User] = {u.id: u for u in users or ()}

    def add(self, user: User) -> User:
        self._users[user.id] = user
        return user

    def deactivate(self, user_id: int) -> User:
        user = self.get_user(user_id).model_copy(update={"is_active": False})
        self._users[user_id] = user
        return user

    def get_user(self, user_id: int) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise user_not_found(user_id)
        return user

    def get_role(self, user_id: int) -> Role:
        return self.get_user(user_id).role

    def is_active(self, user_id: int) -> bool:
        return self.get_user(user_id).is_active

    def list(self) -> List[User]:
        return sorted(self._users.values(), key=lambda u: u.id)
