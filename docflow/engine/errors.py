"""
docflow Error Hierarchy — Typed workflow failures.

Every failure the workflow engine can report is a WorkflowError subclass.
Errors carry structured context (task_id, actor_id, execution_id) and are
serializable to JSON so callers can render precise messages and the audit
log can store them verbatim.

Hierarchy:
    WorkflowError
    ├── NotFoundError             — Task or user missing
    ├── InactiveUserError         — Actor or target user deactivated
    ├── ForbiddenError            — Authorization rule failed (carries reason)
    ├── InvalidTransitionError    — Operation illegal from current status
    ├── WorkflowValidationError   — Malformed request
    ├── ConcurrencyError          — Stale task version on save
    └── ConfigError               — Invalid docflow.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ForbiddenReason(str, Enum):
    """Why an authorization check failed."""

    ROLE_NOT_PERMITTED = "role_not_permitted"
    NOT_OWNER = "not_owner"
    SELF_TARGET = "self_target"
    WRONG_STATUS = "wrong_status"


class WorkflowError(Exception):
    """
    Base error for all docflow engine failures.
    All context is serializable to JSON.
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.execution_id: Optional[str] = context.get("execution_id")
        self.task_id: Optional[int] = context.get("task_id")
        self.actor_id: Optional[int] = context.get("actor_id")
        self.operation: Optional[str] = _plain(context.get("operation"))
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict for logging and API responses."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "execution_id": self.execution_id,
            "task_id": self.task_id,
            "actor_id": self.actor_id,
            "operation": self.operation,
            "timestamp": self.timestamp,
            "context": {
                k: str(_plain(v)) for k, v in self.context.items()
                if k not in ("execution_id", "task_id", "actor_id", "operation")
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.task_id is not None:
            parts.append(f"task_id={self.task_id}")
        if self.execution_id:
            parts.append(f"execution_id={self.execution_id}")
        return " | ".join(parts)


class NotFoundError(WorkflowError):
    """Task or user does not exist (or the task was deleted)."""

    def __init__(self, message: str, **context: Any):
        self.entity: Optional[str] = context.get("entity")
        self.entity_id: Optional[Any] = context.get("entity_id")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["entity"] = self.entity
        d["entity_id"] = self.entity_id
        return d


class InactiveUserError(WorkflowError):
    """Actor or target user is deactivated."""

    def __init__(self, message: str, **context: Any):
        self.user_id: Optional[int] = context.get("user_id")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["user_id"] = self.user_id
        return d


class ForbiddenError(WorkflowError):
    """
    Authorization rule failed.
    Always carries a ForbiddenReason so the caller can tell role mismatches
    from ownership and self-target problems.
    """

    def __init__(self, message: str, reason: ForbiddenReason, **context: Any):
        self.reason = ForbiddenReason(reason)
        self.actor_role: Optional[str] = _plain(context.get("actor_role"))
        self.target_role: Optional[str] = _plain(context.get("target_role"))
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["reason"] = self.reason.value
        d["actor_role"] = self.actor_role
        d["target_role"] = self.target_role
        return d


class InvalidTransitionError(WorkflowError):
    """Requested operation is not legal from the task's current status."""

    def __init__(
        self,
        message: str,
        current: Any,
        expected: Sequence[Any] = (),
        **context: Any,
    ):
        self.current = current
        self.expected = tuple(expected)
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["current"] = _plain(self.current)
        d["expected"] = [_plain(s) for s in self.expected]
        return d


class WorkflowValidationError(WorkflowError):
    """
    Malformed request (missing target, note too long, payload on the wrong
    operation). Includes field-level error details.
    """

    def __init__(self, message: str, **context: Any):
        self.validation_errors: List[Dict[str, Any]] = context.get("validation_errors") or []
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["validation_errors"] = self.validation_errors
        return d


class ConcurrencyError(WorkflowError):
    """Task was modified by someone else between load and save."""

    def __init__(self, message: str, **context: Any):
        self.expected_version: Optional[int] = context.get("expected_version")
        self.actual_version: Optional[int] = context.get("actual_version")
        super().__init__(message, **context)


class ConfigError(WorkflowError):
    """Configuration error — invalid docflow.yaml."""
    pass


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value
