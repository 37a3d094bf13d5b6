"""
Status Transition Rules — the task state machine.

    NotStarted ──assign──▶ Received ──delegate──▶ InProgress ──submit──▶ UnderReview ──approve──▶ Completed
                                                     ▲                        │
                                                     └────────reject──────────┘

Operations that only re-route or annotate a task keep its status. Anything
not in TRANSITIONS is illegal, and nothing leaves Completed.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import List, Mapping

from docflow.engine.errors import InvalidTransitionError
from docflow.workflow.models import OperationKind, TaskStatus

S = TaskStatus

_ACTIVE = (S.NOT_STARTED, S.RECEIVED, S.IN_PROGRESS, S.UNDER_REVIEW)

# operation → {current status → next status}
TRANSITIONS: Mapping[OperationKind, Mapping[TaskStatus, TaskStatus]] = MappingProxyType({
    OperationKind.ASSIGN: MappingProxyType({
        S.NOT_STARTED: S.RECEIVED,
        S.RECEIVED: S.RECEIVED,
        S.IN_PROGRESS: S.IN_PROGRESS,
        S.UNDER_REVIEW: S.UNDER_REVIEW,
    }),
    OperationKind.DELEGATE: MappingProxyType({
        S.RECEIVED: S.IN_PROGRESS,
        S.IN_PROGRESS: S.IN_PROGRESS,
    }),
    OperationKind.FORWARD: MappingProxyType({
        S.RECEIVED: S.RECEIVED,
        S.IN_PROGRESS: S.IN_PROGRESS,
    }),
    OperationKind.SUBMIT_FOR_REVIEW: MappingProxyType({S.IN_PROGRESS: S.UNDER_REVIEW}),
    OperationKind.REVIEW_APPROVE: MappingProxyType({S.UNDER_REVIEW: S.COMPLETED}),
    OperationKind.REVIEW_REJECT: MappingProxyType({S.UNDER_REVIEW: S.IN_PROGRESS}),
    OperationKind.EDIT: MappingProxyType({s: s for s in _ACTIVE}),
    OperationKind.DELETE: MappingProxyType({s: s for s in _ACTIVE}),
    OperationKind.UPDATE_PROGRESS: MappingProxyType({
        S.RECEIVED: S.RECEIVED,
        S.IN_PROGRESS: S.IN_PROGRESS,
    }),
})


def next_status(operation: OperationKind, current: TaskStatus) -> TaskStatus:
    """
    Return the status *operation* leads to from *current*.

    Raises:
        InvalidTransitionError: the operation is illegal from *current*;
            carries the statuses it would have been legal from.
    """
    table = TRANSITIONS[operation]
    expected = tuple(table)

    # Hard stop: whatever the table says, a closed task stays closed.
    if current.is_terminal:
        raise InvalidTransitionError(
            f"task is {current.value}; no further {operation.value} is possible",
            current,
            expected,
            operation=operation,
        )

    if current not in table:
        raise InvalidTransitionError(
            f"cannot {operation.value} a task in status '{current.value}'",
            current,
            expected,
            operation=operation,
        )
    return table[current]


def is_legal(operation: OperationKind, current: TaskStatus) -> bool:
    return not current.is_terminal and current in TRANSITIONS[operation]


def legal_operations(current: TaskStatus) -> List[OperationKind]:
    """Operations the state machine accepts from *current*."""
    return [op for op in OperationKind if is_legal(op, current)]
