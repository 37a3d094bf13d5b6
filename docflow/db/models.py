"""
docflow tables — users, tasks, task_status_history.

Rows are persistence detail: stores convert them to the immutable
workflow models (Task, User, StatusHistoryEntry) before returning.
"""

from __future__ import annotations

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)

from docflow.db.base import AuditMixin, Base, SoftDeleteMixin, as_utc
from docflow.workflow.models import (
    DeadlineType,
    OperationKind,
    Role,
    StatusHistoryEntry,
    Task,
    TaskStatus,
    TaskType,
    User,
)


def _in(values) -> str:
    return ", ".join(f"'{v.value}'" for v in values)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

class UserRow(Base, AuditMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    name = Column(String(200), nullable=False, default="")
    role = Column(String(20), nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    __table_args__ = (
        CheckConstraint(f"role IN ({_in(Role)})", name="ck_users_role"),
    )

    def to_model(self) -> User:
        return User(
            id=self.id,
            role=Role(self.role),
            is_active=self.is_active,
            name=self.name or "",
            username=self.username,
        )

    def __repr__(self) -> str:
        return f"<UserRow(id={self.id}, username='{self.username}', role='{self.role}')>"


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------

class TaskRow(Base, AuditMixin, SoftDeleteMixin):
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    description = Column(Text, nullable=False, default="")
    status = Column(String(20), nullable=False, default=TaskStatus.NOT_STARTED.value, index=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    assigned_to_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)
    deadline = Column(DateTime(timezone=True), nullable=True, index=True)
    deadline_type = Column(String(20), nullable=False, default=DeadlineType.SPECIFIC.value)
    task_type = Column(String(20), nullable=False, default=TaskType.INDEPENDENT.value)
    incoming_document_id = Column(Integer, nullable=True)
    processing_content = Column(Text, nullable=False, default="")
    processing_notes = Column(Text, nullable=False, default="")
    completion_date = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint(f"status IN ({_in(TaskStatus)})", name="ck_tasks_status"),
        CheckConstraint(
            f"assigned_to_id IS NOT NULL OR status = '{TaskStatus.NOT_STARTED.value}'",
            name="ck_tasks_assignee_status",
        ),
    )

    def to_model(self) -> Task:
        return Task(
            id=self.id,
            status=TaskStatus(self.status),
            created_by_id=self.created_by_id,
            assigned_to_id=self.assigned_to_id,
            description=self.description or "",
            deadline=as_utc(self.deadline),
            deadline_type=DeadlineType(self.deadline_type),
            task_type=TaskType(self.task_type),
            incoming_document_id=self.incoming_document_id,
            processing_content=self.processing_content or "",
            processing_notes=self.processing_notes or "",
            completion_date=as_utc(self.completion_date),
            is_deleted=self.is_deleted,
            version=self.version,
            created_at=as_utc(self.created_at),
            updated_at=as_utc(self.updated_at),
        )

    def __repr__(self) -> str:
        return f"<TaskRow(id={self.id}, status='{self.status}', assigned_to_id={self.assigned_to_id})>"


# ---------------------------------------------------------------------------
# Status history (append-only)
# ---------------------------------------------------------------------------

class StatusHistoryRow(Base):
    __tablename__ = "task_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(Integer, ForeignKey("tasks.id"), nullable=False)
    sequence = Column(Integer, nullable=False)
    old_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=False)
    changed_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    operation = Column(String(30), nullable=True)
    note = Column(String(2000), nullable=True)
    assignee_changed = Column(Boolean, default=False, nullable=False)
    old_assignee_id = Column(Integer, nullable=True)
    new_assignee_id = Column(Integer, nullable=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_tsh_task_sequence", "task_id", "sequence", unique=True),
    )

    @classmethod
    def from_model(cls, entry: StatusHistoryEntry) -> "StatusHistoryRow":
        return cls(
            task_id=entry.task_id,
            sequence=entry.sequence,
            old_status=entry.old_status.value if entry.old_status else None,
            new_status=entry.new_status.value,
            changed_by_id=entry.changed_by_id,
            operation=entry.operation.value if entry.operation else None,
            note=entry.note,
            assignee_changed=entry.assignee_changed,
            old_assignee_id=entry.old_assignee_id,
            new_assignee_id=entry.new_assignee_id,
            timestamp=entry.timestamp,
        )

    def to_model(self) -> StatusHistoryEntry:
        return StatusHistoryEntry(
            task_id=self.task_id,
            old_status=TaskStatus(self.old_status) if self.old_status else None,
            new_status=TaskStatus(self.new_status),
            changed_by_id=self.changed_by_id,
            operation=OperationKind(self.operation) if self.operation else None,
            note=self.note,
            assignee_changed=self.assignee_changed,
            old_assignee_id=self.old_assignee_id,
            new_assignee_id=self.new_assignee_id,
            sequence=self.sequence,
            timestamp=as_utc(self.timestamp),
        )
