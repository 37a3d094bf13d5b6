"""
docflow — Task workflow and role-based delegation engine for a
document-management office (incoming/outgoing registries, task tracking).

The engine decides who may assign, delegate, forward, edit, delete, submit
or review a task, computes the task's next status, and records every
accepted operation in an append-only ledger.

    from docflow.workflow import WorkflowEngine, OperationRequest, OperationKind
"""

__version__ = "1.0.0"
__all__ = ["engine", "workflow", "db", "cli"]
