"""
docflow Operation Context — per-operation state carried in contextvars.

The workflow engine opens an OperationContext for the duration of each
operation so that errors and audit log entries raised anywhere below it
share one execution_id.

Usage:
    from docflow.engine.context import operation_scope, get_operation_context
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

current_operation_context: ContextVar[Optional["OperationContext"]] = ContextVar(
    "operation_context", default=None
)


def new_execution_id() -> str:
    return f"exec_{uuid.uuid4().hex[:12]}"


@dataclass
class OperationContext:
    """State of the operation currently being executed."""

    actor_id: int
    operation: str
    task_id: Optional[int] = None
    execution_id: str = field(default_factory=new_execution_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "actor_id": self.actor_id,
            "operation": self.operation,
            "task_id": self.task_id,
            "execution_id": self.execution_id,
        }


def get_operation_context() -> Optional[OperationContext]:
    return current_operation_context.get()


def current_execution_id() -> Optional[str]:
    ctx = current_operation_context.get()
    return ctx.execution_id if ctx else None


@contextmanager
def operation_scope(
    actor_id: int,
    operation: str,
    task_id: Optional[int] = None,
) -> Iterator[OperationContext]:
    """Set an OperationContext for the enclosed block and restore the previous one."""
    ctx = OperationContext(actor_id=actor_id, operation=operation, task_id=task_id)
    token = current_operation_context.set(ctx)
    try:
        yield ctx
    finally:
        current_operation_context.reset(token)
