"""
docflow Workflow Engine — the only component that changes a task.

Every operation goes through WorkflowEngine.execute():

    0. validate the request shape
    1. load task, actor and target (not found / inactive)
    2. authorization            (ForbiddenError)
    3. status transition        (InvalidTransitionError)
    4. apply the mutation       ─┐ one store transaction:
    5. append the ledger entry  ─┘ both persist or neither
    6. return the new snapshot and the entry

Failures come back as OperationResult.failure(error) with nothing
persisted. Operations on the same task are serialized by a per-task lock;
different tasks run in parallel. Across processes the store's version
check raises ConcurrencyError on a stale write.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager, nullcontext
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from docflow.engine.config import DocflowConfig, get_config
from docflow.engine.context import operation_scope
from docflow.engine.errors import (
    ForbiddenError,
    ForbiddenReason,
    InactiveUserError,
    WorkflowError,
    WorkflowValidationError,
)
from docflow.engine.logging import log, log_operation, log_operation_denied, log_task_created
from docflow.workflow.authorization import can_create, check_permission, permitted_operations
from docflow.workflow.models import (
    DeadlineType,
    OperationKind,
    OperationRequest,
    OperationResult,
    StatusHistoryEntry,
    Task,
    TaskStatus,
    TaskType,
    User,
    utcnow,
)
from docflow.workflow.transitions import is_legal, next_status

logger = logging.getLogger("docflow.workflow.engine")

_TICK = timedelta(microseconds=1)


class TaskLockRegistry:
    """One lock per task id, kept only while someone holds or waits for it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[int, threading.Lock] = {}
        self._waiters: Dict[int, int] = {}

    @contextmanager
    def hold(self, task_id: int) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(task_id, threading.Lock())
            self._waiters[task_id] = self._waiters.get(task_id, 0) + 1
        try:
            with lock:
                yield
        finally:
            with self._guard:
                self._waiters[task_id] -= 1
                if not self._waiters[task_id]:
                    del self._waiters[task_id]
                    del self._locks[task_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


class WorkflowEngine:
    """
    Executes workflow operations against a task store, a history store
    and a user directory.

    Usage:
        store = InMemoryWorkflowStore()
        engine = WorkflowEngine(store, store, users)
        result = engine.execute(OperationRequest(kind=OperationKind.ASSIGN, ...))
    """

    def __init__(
        self,
        tasks: Any,
        history: Any,
        users: Any,
        *,
        config: Optional[DocflowConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._tasks = tasks
        self._history = history
        self._users = users
        self._config = config or get_config()
        self._clock = clock or utcnow
        self._locks = TaskLockRegistry()

    # -----------------------------------------------------------------------
    # Operations
    # -----------------------------------------------------------------------

    def execute(self, request: OperationRequest) -> OperationResult:
        """Run one operation. Never raises WorkflowError; returns it in the result."""
        start_time = time.monotonic()
        operation = request.kind.value

        with operation_scope(request.actor_id, operation, request.task_id) as ctx:
            try:
                old, task, entry = self._run(request)
            except WorkflowError as e:
                if e.execution_id is None:
                    e.execution_id = ctx.execution_id
                logger.info(
                    "Rejected %s on task %s by user %s: %r",
                    operation, request.task_id, request.actor_id, e,
                )
                log(log_operation_denied(
                    operation=operation,
                    execution_id=ctx.execution_id,
                    actor_id=request.actor_id,
                    task_id=request.task_id,
                    error=e.to_dict(),
                ))
                return OperationResult.failure(e)

            duration_ms = (time.monotonic() - start_time) * 1000
            logger.debug(
                "%s task %s: %s -> %s (%.1fms)",
                operation, task.id, old.status.value, task.status.value, duration_ms,
            )
            log(log_operation(
                operation=operation,
                execution_id=ctx.execution_id,
                actor_id=request.actor_id,
                task_id=task.id,
                old_status=entry.old_status.value if entry.old_status else None,
                new_status=entry.new_status.value,
                assignee_changed=entry.assignee_changed,
                old_assignee_id=entry.old_assignee_id,
                new_assignee_id=entry.new_assignee_id,
                duration_ms=duration_ms,
            ))
            return OperationResult.success(task, entry)

    def execute_or_raise(self, request: OperationRequest) -> Task:
        """Like execute(), but raises the WorkflowError instead of returning it."""
        return self.execute(request).unwrap()

    def create_task(
        self,
        actor_id: int,
        description: str = "",
        *,
        deadline: Optional[datetime] = None,
        deadline_type: DeadlineType = DeadlineType.SPECIFIC,
        task_type: TaskType = TaskType.INDEPENDENT,
        incoming_document_id: Optional[int] = None,
        note: Optional[str] = None,
    ) -> OperationResult:
        """
        Create an unassigned NotStarted task and write its first ledger
        entry (no previous status). Only the document office may create.
        """
        with operation_scope(actor_id, "create") as ctx:
            try:
                self._check_note(note)
                actor = self._active_user(actor_id, "actor")
                if not can_create(actor.role):
                    raise ForbiddenError(
                        f"{actor.role.value} may not create tasks",
                        ForbiddenReason.ROLE_NOT_PERMITTED,
                        actor_id=actor_id,
                        actor_role=actor.role,
                        operation="create",
                    )
                now = self._now()
                with self._transaction():
                    task = self._tasks.create(
                        status=TaskStatus.NOT_STARTED,
                        created_by_id=actor_id,
                        description=description,
                        deadline=deadline,
                        deadline_type=deadline_type,
                        task_type=task_type,
                        incoming_document_id=incoming_document_id,
                        created_at=now,
                        updated_at=now,
                    )
                    entry = self._history.append(StatusHistoryEntry(
                        task_id=task.id,
                        old_status=None,
                        new_status=task.status,
                        changed_by_id=actor_id,
                        note=note,
                        sequence=1,
                        timestamp=now,
                    ))
            except WorkflowError as e:
                if e.execution_id is None:
                    e.execution_id = ctx.execution_id
                log(log_operation_denied("create", ctx.execution_id, actor_id, None, e.to_dict()))
                return OperationResult.failure(e)

            ctx.task_id = task.id
            logger.info("Task %s created by user %s", task.id, actor_id)
            log(log_task_created(ctx.execution_id, actor_id, task.id, task.task_type.value))
            return OperationResult.success(task, entry)

    # -----------------------------------------------------------------------
    # Queries
    # -----------------------------------------------------------------------

    def get_task(self, task_id: int) -> Task:
        return self._tasks.load(task_id)

    def history(self, task_id: int) -> List[StatusHistoryEntry]:
        """Ledger of *task_id*, oldest first."""
        return self._history.list_by_task(task_id)

    def available_operations(self, actor_id: int, task_id: int) -> List[OperationKind]:
        """Operations *actor_id* is authorised for and the task's status accepts."""
        task = self._tasks.load(task_id)
        actor = self._users.get_user(actor_id)
        if not actor.is_active:
            return []
        return [
            op for op in permitted_operations(actor.role, actor.id, task)
            if is_legal(op, task.status)
        ]

    # -----------------------------------------------------------------------
    # Internals
    # -----------------------------------------------------------------------

    def _run(self, request: OperationRequest):
        self._validate(request)

        with self._locks.hold(request.task_id):
            task = self._tasks.load(request.task_id)
            actor = self._active_user(request.actor_id, "actor", task_id=task.id)
            target = None
            if request.target_user_id is not None:
                target = self._active_user(request.target_user_id, "target", task_id=task.id)

            check_permission(
                request.kind,
                actor.role,
                actor.id,
                task,
                target.role if target else None,
                target.id if target else None,
            )
            new_status = next_status(request.kind, task.status)

            now = self._now()
            with self._transaction():
                history = self._history.list_by_task(task.id)
                if history and now <= history[-1].timestamp:
                    now = history[-1].timestamp + _TICK

                saved = self._tasks.save(self._apply(request, task, new_status, target, now))
                entry = self._history.append(StatusHistoryEntry(
                    task_id=task.id,
                    old_status=self._prior_status(task, history),
                    new_status=saved.status,
                    changed_by_id=actor.id,
                    operation=request.kind,
                    note=request.note,
                    assignee_changed=saved.assigned_to_id != task.assigned_to_id,
                    old_assignee_id=task.assigned_to_id,
                    new_assignee_id=saved.assigned_to_id,
                    sequence=len(history) + 1,
                    timestamp=now,
                ))
        return task, saved, entry

    def _apply(
        self,
        request: OperationRequest,
        task: Task,
        new_status: TaskStatus,
        target: Optional[User],
        now: datetime,
    ) -> Task:
        update: Dict[str, Any] = {"status": new_status, "updated_at": now}
        kind = request.kind

        if kind.requires_target:
            update["assigned_to_id"] = target.id
        elif kind is OperationKind.DELETE:
            update["is_deleted"] = True
        elif kind is OperationKind.REVIEW_APPROVE:
            update["completion_date"] = now
        elif kind is OperationKind.EDIT:
            update.update(request.changes.as_update())
        elif kind is OperationKind.UPDATE_PROGRESS:
            update["processing_content"] = request.progress.processing_content
            update["processing_notes"] = request.progress.processing_notes

        # Rebuild rather than model_copy so the assignee invariant is re-validated
        return Task(**{**task.model_dump(), **update})

    def _validate(self, request: OperationRequest) -> None:
        kind = request.kind
        errors: List[Dict[str, str]] = []

        if kind.requires_target and request.target_user_id is None:
            errors.append({"field": "target_user_id", "message": f"{kind.value} requires a target user"})
        if not kind.requires_target and request.target_user_id is not None:
            errors.append({"field": "target_user_id", "message": f"{kind.value} does not take a target user"})
        if request.changes is not None and kind is not OperationKind.EDIT:
            errors.append({"field": "changes", "message": "only edit takes task changes"})
        if kind is OperationKind.EDIT and (request.changes is None or not request.changes.as_update()):
            errors.append({"field": "changes", "message": "edit requires at least one changed field"})
        if request.progress is not None and kind is not OperationKind.UPDATE_PROGRESS:
            errors.append({"field": "progress", "message": "only update_progress takes progress content"})
        if kind is OperationKind.UPDATE_PROGRESS and request.progress is None:
            errors.append({"field": "progress", "message": "update_progress requires progress content"})
        errors.extend(self._note_errors(request.note))

        if errors:
            raise WorkflowValidationError(
                f"Invalid {kind.value} request: " + "; ".join(e["message"] for e in errors),
                operation=kind,
                task_id=request.task_id,
                actor_id=request.actor_id,
                validation_errors=errors,
            )

    def _note_errors(self, note: Optional[str]) -> List[Dict[str, str]]:
        limit = self._config.workflow.note_max_length
        if note is not None and len(note) > limit:
            return [{"field": "note", "message": f"note exceeds {limit} characters"}]
        return []

    def _check_note(self, note: Optional[str]) -> None:
        errors = self._note_errors(note)
        if errors:
            raise WorkflowValidationError(errors[0]["message"], validation_errors=errors)

    def _active_user(self, user_id: int, kind: str, task_id: Optional[int] = None) -> User:
        user = self._users.get_user(user_id)
        if not user.is_active:
            raise InactiveUserError(
                f"{kind.capitalize()} user {user_id} is inactive",
                user_id=user_id,
                task_id=task_id,
                role=kind,
            )
        return user

    def _transaction(self):
        transaction = getattr(self._tasks, "transaction", None)
        return transaction() if transaction is not None else nullcontext()

    def _now(self) -> datetime:
        # Stored timestamps are UTC-aware; a naive clock reading is taken as UTC
        now = self._clock()
        return now if now.tzinfo is not None else now.replace(tzinfo=timezone.utc)

    @staticmethod
    def _prior_status(task: Task, history: List[StatusHistoryEntry]) -> Optional[TaskStatus]:
        """None only for a never-touched NotStarted task with an empty ledger."""
        if not history and task.status is TaskStatus.NOT_STARTED:
            return None
        return task.status
