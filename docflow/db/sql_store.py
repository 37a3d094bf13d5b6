"""
SQLAlchemy-backed stores.

SqlWorkflowStore implements TaskStore + HistoryStore. Outside a
transaction() block every call runs in its own committed session; inside
one, all calls on the same thread share a session that commits (or rolls
back) when the block exits, so a task update and its ledger entry land
together.

Optimistic locking uses TaskRow.version (SQLAlchemy version_id_col): a
stale write raises ConcurrencyError.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from docflow.db.models import StatusHistoryRow, TaskRow, UserRow
from docflow.db.session import session_scope
from docflow.db.stores import stale_task, task_not_found, user_not_found
from docflow.engine.errors import WorkflowValidationError
from docflow.engine.logging import log, log_user_event
from docflow.workflow.models import Role, StatusHistoryEntry, Task, User

logger = logging.getLogger("docflow.db.sql_store")

# Task fields written to TaskRow; id and version are managed by the database
_TASK_COLUMNS = (
    "status",
    "created_by_id",
    "assigned_to_id",
    "description",
    "deadline",
    "deadline_type",
    "task_type",
    "incoming_document_id",
    "processing_content",
    "processing_notes",
    "completion_date",
    "is_deleted",
    "created_at",
    "updated_at",
)


def _column_values(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {
        k: (v.value if isinstance(v, Enum) else v)
        for k, v in fields.items()
        if k in _TASK_COLUMNS and v is not None
    }


class SqlWorkflowStore:
    """TaskStore + HistoryStore over the tasks / task_status_history tables."""

    def __init__(self, session_factory: sessionmaker):
        self._factory = session_factory
        self._local = threading.local()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        session = getattr(self._local, "session", None)
        if session is not None:
            yield session
        else:
            with session_scope(self._factory) as session:
                yield session

    @contextmanager
    def transaction(self) -> Iterator["SqlWorkflowStore"]:
        """Share one session across calls on this thread; commit on success."""
        if getattr(self._local, "session", None) is not None:
            yield self
            return
        with session_scope(self._factory) as session:
            self._local.session = session
            try:
                yield self
            finally:
                self._local.session = None

    # -- TaskStore --------------------------------------------------------

    def load(self, task_id: int) -> Task:
        with self._session() as session:
            row = session.get(TaskRow, task_id)
            if row is None or row.is_deleted:
                raise task_not_found(task_id)
            return row.to_model()

    def create(self, **fields: Any) -> Task:
        # Validate through the domain model before touching the database
        Task(id=0, **fields)
        with self._session() as session:
            row = TaskRow(**_column_values(fields))
            session.add(row)
            session.flush()
            return row.to_model()

    def save(self, task: Task) -> Task:
        with self._session() as session:
            row = session.get(TaskRow, task.id)
            if row is None:
                raise task_not_found(task.id)
            if row.version != task.version:
                raise stale_task(task.id, task.version, row.version)

            for key, value in _column_values(task.model_dump()).items():
                if key != "created_at":
                    setattr(row, key, value)
            # Nullable columns: _column_values skips None, so clears are written here
            row.assigned_to_id = task.assigned_to_id
            row.completion_date = task.completion_date
            row.deadline = task.deadline
            row.incoming_document_id = task.incoming_document_id
            # Every save is a new version, even when no column value changed
            flag_modified(row, "updated_at")
            if task.is_deleted and row.deleted_at is None:
                row.deleted_at = task.updated_at or datetime.now(timezone.utc)

            try:
                session.flush()
            except StaleDataError as e:
                raise stale_task(task.id, task.version, task.version + 1) from e
            return row.to_model()

    def list(self, include_deleted: bool = False) -> List[Task]:
        with self._session() as session:
            stmt = select(TaskRow).order_by(TaskRow.id)
            if not include_deleted:
                stmt = stmt.where(TaskRow.is_deleted.is_(False))
            return [row.to_model() for row in session.scalars(stmt)]

    # -- HistoryStore -----------------------------------------------------

    def append(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        with self._session() as session:
            session.add(StatusHistoryRow.from_model(entry))
            session.flush()
        return entry

    def list_by_task(self, task_id: int) -> List[StatusHistoryEntry]:
        with self._session() as session:
            stmt = (
                select(StatusHistoryRow)
                .where(StatusHistoryRow.task_id == task_id)
                .order_by(StatusHistoryRow.sequence)
            )
            return [row.to_model() for row in session.scalars(stmt)]


class SqlUserDirectory:
    """UserDirectory over the users table, plus the admin writes the CLI needs."""

    def __init__(self, session_factory: sessionmaker):
        self._factory = session_factory

    def get_user(self, user_id: int) -> User:
        with session_scope(self._factory) as session:
            row = session.get(UserRow, user_id)
            if row is None:
                raise user_not_found(user_id)
            return row.to_model()

    def get_role(self, user_id: int) -> Role:
        return self.get_user(user_id).role

    def is_active(self, user_id: int) -> bool:
        return self.get_user(user_id).is_active

    def get_by_username(self, username: str) -> Optional[User]:
        with session_scope(self._factory) as session:
            row = session.scalars(select(UserRow).where(UserRow.username == username)).first()
            return row.to_model() if row else None

    def list(self) -> List[User]:
        with session_scope(self._factory) as session:
            return [row.to_model() for row in session.scalars(select(UserRow).order_by(UserRow.id))]

    def add_user(self, username: str, role: Role, name: str = "", is_active: bool = True) -> User:
        try:
            with session_scope(self._factory) as session:
                row = UserRow(username=username, name=name, role=Role(role).value, is_active=is_active)
                session.add(row)
                session.flush()
                user = row.to_model()
        except IntegrityError as e:
            raise WorkflowValidationError(
                f"Username '{username}' is already taken",
                validation_errors=[{"field": "username", "message": "already taken"}],
            ) from e
        logger.info("Added user %s (%s) as %s", user.id, username, user.role.value)
        log(log_user_event("user_added", user.id, user.role.value, user.is_active))
        return user

    def deactivate(self, user_id: int) -> User:
        with session_scope(self._factory) as session:
            row = session.get(UserRow, user_id)
            if row is None:
                raise user_not_found(user_id)
            row.is_active = False
            user = row.to_model()
        log(log_user_event("user_deactivated", user.id, user.role.value, user.is_active))
        return user
