"""Workflow domain types — roles, statuses, tasks, users, ledger entries, requests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from docflow.engine.errors import WorkflowError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _LabelledEnum(str, Enum):
    """str Enum that also parses the original office's Vietnamese labels."""

    @classmethod
    def _labels(cls) -> Dict[str, str]:
        return {}

    @property
    def label(self) -> str:
        return self._labels()[self.value]

    @classmethod
    def parse(cls, value: str) -> "_LabelledEnum":
        if isinstance(value, cls):
            return value
        text = str(value).strip()
        for member in cls:
            if text == member.value or text == member.name or text == member.label:
                return member
        raise ValueError(f"Unknown {cls.__name__}: {value!r}")


class Role(_LabelledEnum):
    SECRETARY = "secretary"
    TEAM_LEADER = "team_leader"
    DEPUTY = "deputy"
    OFFICER = "officer"
    ADMINISTRATOR = "administrator"

    @classmethod
    def _labels(cls) -> Dict[str, str]:
        return ROLE_LABELS


ROLE_LABELS = {
    "secretary": "Văn thư",
    "team_leader": "Trưởng Công An Xã",
    "deputy": "Phó Công An Xã",
    "officer": "Cán bộ",
    "administrator": "Quản trị viên",
}


class TaskStatus(_LabelledEnum):
    NOT_STARTED = "not_started"
    RECEIVED = "received"
    IN_PROGRESS = "in_progress"
    UNDER_REVIEW = "under_review"
    COMPLETED = "completed"

    @classmethod
    def _labels(cls) -> Dict[str, str]:
        return STATUS_LABELS

    @property
    def is_terminal(self) -> bool:
        return self is TaskStatus.COMPLETED


STATUS_LABELS = {
    "not_started": "Chưa bắt đầu",
    "received": "Tiếp nhận văn bản",
    "in_progress": "Đang xử lí",
    "under_review": "Xem xét",
    "completed": "Hoàn thành",
}


class OperationKind(str, Enum):
    ASSIGN = "assign"
    DELEGATE = "delegate"
    FORWARD = "forward"
    SUBMIT_FOR_REVIEW = "submit_for_review"
    REVIEW_APPROVE = "review_approve"
    REVIEW_REJECT = "review_reject"
    EDIT = "edit"
    DELETE = "delete"
    UPDATE_PROGRESS = "update_progress"

    @property
    def requires_target(self) -> bool:
        return self in TARGETED_OPERATIONS


# Operations that route the task to another user
TARGETED_OPERATIONS = frozenset({OperationKind.ASSIGN, OperationKind.DELEGATE, OperationKind.FORWARD})


class DeadlineType(str, Enum):
    SPECIFIC = "specific"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class TaskType(str, Enum):
    DOCUMENT_LINKED = "document_linked"
    INDEPENDENT = "independent"


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------

class User(BaseModel):
    """Directory entry; the engine only reads it."""

    model_config = ConfigDict(frozen=True)

    id: int
    role: Role
    is_active: bool = True
    name: str = ""
    username: Optional[str] = None


class Task(BaseModel):
    """
    Immutable task snapshot.

    Only the workflow engine builds snapshots with a different status or
    assignee; callers hold values, never live rows.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    status: TaskStatus = TaskStatus.NOT_STARTED
    created_by_id: int
    assigned_to_id: Optional[int] = None
    description: str = Field(default="", max_length=2000)
    deadline: Optional[datetime] = None
    deadline_type: DeadlineType = DeadlineType.SPECIFIC
    task_type: TaskType = TaskType.INDEPENDENT
    incoming_document_id: Optional[int] = None
    processing_content: str = ""
    processing_notes: str = ""
    completion_date: Optional[datetime] = None
    is_deleted: bool = False
    version: int = 1
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_assignee(self) -> "Task":
        if self.assigned_to_id is None and self.status is not TaskStatus.NOT_STARTED:
            raise ValueError(f"task in status '{self.status.value}' must have an assignee")
        return self


class StatusHistoryEntry(BaseModel):
    """One ledger line. Appended by the engine, never changed afterwards."""

    model_config = ConfigDict(frozen=True)

    task_id: int
    old_status: Optional[TaskStatus] = None
    new_status: TaskStatus
    changed_by_id: int
    operation: Optional[OperationKind] = None
    note: Optional[str] = None
    assignee_changed: bool = False
    old_assignee_id: Optional[int] = None
    new_assignee_id: Optional[int] = None
    sequence: int = 1
    timestamp: datetime = Field(default_factory=utcnow)


# ---------------------------------------------------------------------------
# Requests / results
# ---------------------------------------------------------------------------

class TaskChanges(BaseModel):
    """
    Editable task fields (Edit operation). Only fields passed explicitly
    are changed; passing None clears deadline or incoming_document_id.
    """

    description: Optional[str] = Field(default=None, max_length=2000)
    deadline: Optional[datetime] = None
    deadline_type: Optional[DeadlineType] = None
    incoming_document_id: Optional[int] = None

    def as_update(self) -> Dict[str, object]:
        return {
            k: v for k, v in self.model_dump(exclude_unset=True).items()
            if v is not None or k in _CLEARABLE
        }


_CLEARABLE = frozenset({"deadline", "incoming_document_id"})


class ProgressUpdate(BaseModel):
    """Assignee's processing content (UpdateProgress operation)."""

    processing_content: str = ""
    processing_notes: str = ""


class OperationRequest(BaseModel):
    kind: OperationKind
    actor_id: int
    task_id: int
    target_user_id: Optional[int] = None
    note: Optional[str] = None
    changes: Optional[TaskChanges] = None
    progress: Optional[ProgressUpdate] = None


@dataclass(frozen=True)
class OperationResult:
    """Outcome of WorkflowEngine.execute: the new state or a typed error."""

    task: Optional[Task] = None
    entry: Optional[StatusHistoryEntry] = None
    error: Optional[WorkflowError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, task: Task, entry: StatusHistoryEntry) -> "OperationResult":
        return cls(task=task, entry=entry)

    @classmethod
    def failure(cls, error: WorkflowError) -> "OperationResult":
        return cls(error=error)

    def unwrap(self) -> Task:
        """Return the updated task or raise the carried error."""
        if self.error is not None:
            raise self.error
        return self.task
