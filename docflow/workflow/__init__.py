"""docflow Workflow — task state machine, authorization and the engine that applies them."""

from docflow.workflow.engine import WorkflowEngine  # noqa: F401
from docflow.workflow.models import (  # noqa: F401
    OperationKind,
    OperationRequest,
    OperationResult,
    ProgressUpdate,
    Role,
    StatusHistoryEntry,
    Task,
    TaskChanges,
    TaskStatus,
    User,
)

__all__ = [
    "WorkflowEngine",
    "OperationKind",
    "OperationRequest",
    "OperationResult",
    "ProgressUpdate",
    "Role",
    "StatusHistoryEntry",
    "Task",
    "TaskChanges",
    "TaskStatus",
    "User",
]
