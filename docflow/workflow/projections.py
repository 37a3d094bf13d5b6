"""
Read-only projections of tasks — deadline urgency, workflow stages, visibility.

None of these change a task; they derive display and filtering data from it.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from docflow.workflow.models import Role, Task, TaskStatus


class Urgency(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class RemainingTime:
    """Time left until a deadline. Negative parts mean the deadline has passed."""

    days: int
    hours: int
    minutes: int
    is_overdue: bool
    urgency: Urgency

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["urgency"] = self.urgency.value
        return d


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def remaining_time(
    deadline: Optional[datetime],
    now: Optional[datetime] = None,
    *,
    high_days: int = 3,
    urgent_days: int = 1,
) -> RemainingTime:
    """
    Break the time until *deadline* into days/hours/minutes and classify it.

    More than high_days left is Normal, more than urgent_days is High,
    anything less is Urgent, and a passed deadline is Overdue. No deadline
    is Normal.
    """
    if deadline is None:
        return RemainingTime(0, 0, 0, False, Urgency.NORMAL)

    now = _aware(now or datetime.now(timezone.utc))
    diff = _aware(deadline) - now
    seconds = int(diff.total_seconds())

    if seconds < 0:
        overdue = -seconds
        return RemainingTime(
            days=-(overdue // 86400),
            hours=-((overdue % 86400) // 3600),
            minutes=-((overdue % 3600) // 60),
            is_overdue=True,
            urgency=Urgency.OVERDUE,
        )

    days = seconds // 86400
    if days > high_days:
        urgency = Urgency.NORMAL
    elif days > urgent_days:
        urgency = Urgency.HIGH
    else:
        urgency = Urgency.URGENT
    return RemainingTime(
        days=days,
        hours=(seconds % 86400) // 3600,
        minutes=(seconds % 3600) // 60,
        is_overdue=False,
        urgency=urgency,
    )


def classify_urgency(task: Task, now: Optional[datetime] = None, **thresholds: int) -> Urgency:
    """Urgency of a task; completed tasks are never late."""
    if task.status is TaskStatus.COMPLETED:
        return Urgency.NORMAL
    return remaining_time(task.deadline, now, **thresholds).urgency


# ---------------------------------------------------------------------------
# Workflow stages
# ---------------------------------------------------------------------------

STAGES = (TaskStatus.RECEIVED, TaskStatus.IN_PROGRESS, TaskStatus.UNDER_REVIEW, TaskStatus.COMPLETED)


@dataclass(frozen=True)
class Stage:
    status: TaskStatus
    completed: bool
    current: bool


def workflow_stages(status: TaskStatus) -> List[Stage]:
    """The four progress stages with completed / current flags for *status*."""
    position = STAGES.index(status) if status in STAGES else -1
    return [
        Stage(
            status=stage,
            completed=index < position or status is TaskStatus.COMPLETED,
            current=index == position,
        )
        for index, stage in enumerate(STAGES)
    ]


def current_stage_index(status: TaskStatus) -> int:
    """0-based index into STAGES, -1 before the task is received."""
    return STAGES.index(status) if status in STAGES else -1


# ---------------------------------------------------------------------------
# Visibility
# ---------------------------------------------------------------------------

def can_view(role: Role, user_id: int, task: Task) -> bool:
    if task.is_deleted:
        return False
    if role in (Role.SECRETARY, Role.ADMINISTRATOR):
        return True
    if role in (Role.TEAM_LEADER, Role.DEPUTY):
        return user_id in (task.assigned_to_id, task.created_by_id)
    return task.assigned_to_id == user_id


def visible_tasks(role: Role, user_id: int, tasks: Iterable[Task]) -> List[Task]:
    return [t for t in tasks if can_view(role, user_id, t)]
