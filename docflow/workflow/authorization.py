"""
Authorization Rules — who may perform which operation on a task.

Pure functions: no stores, no clock, no logging. Each rule either returns
normally or raises ForbiddenError with a ForbiddenReason, checked in this
order: actor role → ownership → self-target → target role.

Status legality is NOT judged here (see transitions.py), with one
exception: Assign by a TeamLeader or Deputy is only authorised on a task
nobody has been assigned to yet, because re-assignment authority belongs
to the document office (Secretary, Administrator).
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Callable, Dict, FrozenSet, List, Mapping, Optional

from docflow.engine.errors import ForbiddenError, ForbiddenReason
from docflow.workflow.models import OperationKind, Role, Task, TaskStatus
from docflow.workflow.roles import eligible_targets, is_eligible_target

# Roles allowed to attempt each operation at all
ACTOR_ROLES: Mapping[OperationKind, FrozenSet[Role]] = MappingProxyType({
    OperationKind.ASSIGN: frozenset({Role.SECRETARY, Role.TEAM_LEADER, Role.DEPUTY, Role.ADMINISTRATOR}),
    OperationKind.DELEGATE: frozenset({Role.TEAM_LEADER, Role.DEPUTY}),
    OperationKind.FORWARD: frozenset({Role.TEAM_LEADER, Role.DEPUTY, Role.OFFICER}),
    OperationKind.EDIT: frozenset({Role.SECRETARY, Role.TEAM_LEADER}),
    OperationKind.DELETE: frozenset({Role.SECRETARY, Role.TEAM_LEADER, Role.ADMINISTRATOR}),
    OperationKind.SUBMIT_FOR_REVIEW: frozenset({Role.OFFICER}),
    OperationKind.REVIEW_APPROVE: frozenset({Role.TEAM_LEADER, Role.DEPUTY, Role.ADMINISTRATOR}),
    OperationKind.REVIEW_REJECT: frozenset({Role.TEAM_LEADER, Role.DEPUTY, Role.ADMINISTRATOR}),
    OperationKind.UPDATE_PROGRESS: frozenset(Role),
})

# Roles that act on any task regardless of ownership or status
OFFICE_AUTHORITY: Mapping[OperationKind, FrozenSet[Role]] = MappingProxyType({
    OperationKind.ASSIGN: frozenset({Role.SECRETARY, Role.ADMINISTRATOR}),
    OperationKind.EDIT: frozenset({Role.SECRETARY}),
    OperationKind.DELETE: frozenset({Role.SECRETARY}),
})

# Roles that may create tasks
CREATOR_ROLES: FrozenSet[Role] = frozenset({Role.SECRETARY, Role.ADMINISTRATOR})


def _deny(reason: ForbiddenReason, message: str, operation: OperationKind,
          actor_role: Role, actor_id: int, task: Task,
          target_role: Optional[Role] = None) -> None:
    raise ForbiddenError(
        message,
        reason,
        operation=operation,
        actor_role=actor_role,
        actor_id=actor_id,
        task_id=task.id,
        target_role=target_role,
    )


def _has_office_authority(operation: OperationKind, actor_role: Role) -> bool:
    return actor_role in OFFICE_AUTHORITY.get(operation, frozenset())


def _check_target_role(operation, actor_role, actor_id, task, target_role) -> None:
    if target_role is not None and not is_eligible_target(operation, actor_role, target_role):
        _deny(
            ForbiddenReason.ROLE_NOT_PERMITTED,
            f"{actor_role.value} cannot {operation.value} to {target_role.value}",
            operation, actor_role, actor_id, task, target_role,
        )


# ---------------------------------------------------------------------------
# Per-operation rules
# ---------------------------------------------------------------------------

def _assign(operation, actor_role, actor_id, task, target_role, target_id) -> None:
    if not _has_office_authority(operation, actor_role) and task.status is not TaskStatus.NOT_STARTED:
        _deny(
            ForbiddenReason.WRONG_STATUS,
            f"only the document office may re-assign a task in status '{task.status.value}'",
            operation, actor_role, actor_id, task, target_role,
        )
    _check_target_role(operation, actor_role, actor_id, task, target_role)


def _delegate(operation, actor_role, actor_id, task, target_role, target_id) -> None:
    if task.assigned_to_id != actor_id:
        _deny(ForbiddenReason.NOT_OWNER, "only the current assignee may delegate this task",
              operation, actor_role, actor_id, task, target_role)
    if target_id is not None and target_id == task.assigned_to_id:
        _deny(ForbiddenReason.SELF_TARGET, "task is already assigned to this user",
              operation, actor_role, actor_id, task, target_role)
    _check_target_role(operation, actor_role, actor_id, task, target_role)


def _forward(operation, actor_role, actor_id, task, target_role, target_id) -> None:
    if actor_id not in (task.assigned_to_id, task.created_by_id):
        _deny(ForbiddenReason.NOT_OWNER, "only the assignee or the creator may forward this task",
              operation, actor_role, actor_id, task, target_role)
    if target_id is not None and target_id in (task.assigned_to_id, actor_id):
        _deny(ForbiddenReason.SELF_TARGET, "cannot forward a task to its current assignee or to yourself",
              operation, actor_role, actor_id, task, target_role)
    _check_target_role(operation, actor_role, actor_id, task, target_role)


def _edit(operation, actor_role, actor_id, task, target_role, target_id) -> None:
    if _has_office_authority(operation, actor_role):
        return
    if actor_id not in (task.created_by_id, task.assigned_to_id):
        _deny(ForbiddenReason.NOT_OWNER, "only the creator or the assignee may edit this task",
              operation, actor_role, actor_id, task)


def _delete(operation, actor_role, actor_id, task, target_role, target_id) -> None:
    if _has_office_authority(operation, actor_role):
        return
    if actor_id != task.created_by_id:
        _deny(ForbiddenReason.NOT_OWNER, "only the creator may delete this task",
              operation, actor_role, actor_id, task)


def _submit(operation, actor_role, actor_id, task, target_role, target_id) -> None:
    if task.assigned_to_id != actor_id:
        _deny(ForbiddenReason.NOT_OWNER, "only the assignee may submit this task for review",
              operation, actor_role, actor_id, task)


def _review(operation, actor_role, actor_id, task, target_role, target_id) -> None:
    if task.assigned_to_id == actor_id:
        _deny(ForbiddenReason.SELF_TARGET, "cannot review your own submission",
              operation, actor_role, actor_id, task)


def _update_progress(operation, actor_role, actor_id, task, target_role, target_id) -> None:
    if task.assigned_to_id != actor_id:
        _deny(ForbiddenReason.NOT_OWNER, "only the assignee may update processing content",
              operation, actor_role, actor_id, task)


_RULES: Dict[OperationKind, Callable[..., None]] = {
    OperationKind.ASSIGN: _assign,
    OperationKind.DELEGATE: _delegate,
    OperationKind.FORWARD: _forward,
    OperationKind.EDIT: _edit,
    OperationKind.DELETE: _delete,
    OperationKind.SUBMIT_FOR_REVIEW: _submit,
    OperationKind.REVIEW_APPROVE: _review,
    OperationKind.REVIEW_REJECT: _review,
    OperationKind.UPDATE_PROGRESS: _update_progress,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def check_permission(
    operation: OperationKind,
    actor_role: Role,
    actor_id: int,
    task: Task,
    target_role: Optional[Role] = None,
    target_id: Optional[int] = None,
) -> None:
    """
    Raise ForbiddenError unless *actor* may perform *operation* on *task*.

    Target checks run only when target_role / target_id are given, so the
    same rules answer "could this user forward at all?" for menus.
    """
    if actor_role not in ACTOR_ROLES[operation]:
        _deny(
            ForbiddenReason.ROLE_NOT_PERMITTED,
            f"{actor_role.value} may not {operation.value} tasks",
            operation, actor_role, actor_id, task, target_role,
        )
    _RULES[operation](operation, actor_role, actor_id, task, target_role, target_id)


def can_perform(
    operation: OperationKind,
    actor_role: Role,
    actor_id: int,
    task: Task,
    target_role: Optional[Role] = None,
    target_id: Optional[int] = None,
) -> bool:
    try:
        check_permission(operation, actor_role, actor_id, task, target_role, target_id)
    except ForbiddenError:
        return False
    return True


def can_create(actor_role: Role) -> bool:
    return actor_role in CREATOR_ROLES


def permitted_operations(actor_role: Role, actor_id: int, task: Task) -> List[OperationKind]:
    """Operations the actor is authorised to attempt on *task*, ignoring status legality."""
    result = []
    for operation in OperationKind:
        if operation.requires_target and not eligible_targets(operation, actor_role):
            continue
        if can_perform(operation, actor_role, actor_id, task):
            result.append(operation)
    return result
