"""Unit tests for docflow.workflow.projections — urgency, stages, visibility."""

from datetime import datetime, timedelta, timezone

import pytest

from docflow.workflow.models import Role, Task, TaskStatus
from docflow.workflow.projections import (
    STAGES,
    Urgency,
    classify_urgency,
    current_stage_index,
    can_view,
    remaining_time,
    visible_tasks,
    workflow_stages,
)

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class TestRemainingTime:
    def test_no_deadline(self):
        left = remaining_time(None, NOW)
        assert left.urgency is Urgency.NORMAL
        assert not left.is_overdue

    def test_breakdown(self):
        left = remaining_time(NOW + timedelta(days=5, hours=3, minutes=20), NOW)
        assert (left.days, left.hours, left.minutes) == (5, 3, 20)
        assert left.urgency is Urgency.NORMAL

    @pytest.mark.parametrize("delta, urgency", [
        (timedelta(days=4), Urgency.NORMAL),
        (timedelta(days=3, hours=5), Urgency.HIGH),
        (timedelta(days=2), Urgency.HIGH),
        (timedelta(days=1, hours=23), Urgency.URGENT),
        (timedelta(hours=2), Urgency.URGENT),
        (timedelta(minutes=-1), Urgency.OVERDUE),
    ])
    def test_urgency_bands(self, delta, urgency):
        assert remaining_time(NOW + delta, NOW).urgency is urgency

    def test_overdue_is_negative(self):
        left = remaining_time(NOW - timedelta(days=2, hours=1), NOW)
        assert left.is_overdue
        assert (left.days, left.hours) == (-2, -1)

    def test_custom_thresholds(self):
        assert remaining_time(NOW + timedelta(days=4), NOW, high_days=5, urgent_days=2).urgency is Urgency.HIGH

    def test_naive_deadline_is_utc(self):
        naive = (NOW + timedelta(hours=1)).replace(tzinfo=None)
        assert remaining_time(naive, NOW).urgency is Urgency.URGENT

    def test_to_dict(self):
        d = remaining_time(NOW - timedelta(hours=1), NOW).to_dict()
        assert d["urgency"] == "overdue"
        assert d["is_overdue"] is True


class TestClassifyUrgency:
    def test_completed_never_overdue(self):
        task = Task(
            id=1, created_by_id=1, assigned_to_id=2, status=TaskStatus.COMPLETED,
            deadline=NOW - timedelta(days=10),
        )
        assert classify_urgency(task, NOW) is Urgency.NORMAL

    def test_open_task_overdue(self):
        task = Task(id=1, created_by_id=1, deadline=NOW - timedelta(days=1))
        assert classify_urgency(task, NOW) is Urgency.OVERDUE


class TestStages:
    def test_not_started(self):
        stages = workflow_stages(TaskStatus.NOT_STARTED)
        assert [s.status for s in stages] == list(STAGES)
        assert not any(s.completed or s.current for s in stages)
        assert current_stage_index(TaskStatus.NOT_STARTED) == -1

    def test_in_progress(self):
        stages = workflow_stages(TaskStatus.IN_PROGRESS)
        assert [s.completed for s in stages] == [True, False, False, False]
        assert [s.current for s in stages] == [False, True, False, False]
        assert current_stage_index(TaskStatus.IN_PROGRESS) == 1

    def test_completed(self):
        stages = workflow_stages(TaskStatus.COMPLETED)
        assert all(s.completed for s in stages)
        assert stages[-1].current


class TestVisibility:
    def _tasks(self):
        return [
            Task(id=1, created_by_id=1, assigned_to_id=2, status=TaskStatus.RECEIVED),
            Task(id=2, created_by_id=2, assigned_to_id=4, status=TaskStatus.IN_PROGRESS),
            Task(id=3, created_by_id=1, assigned_to_id=4, status=TaskStatus.IN_PROGRESS),
            Task(id=4, created_by_id=1, assigned_to_id=5, status=TaskStatus.RECEIVED, is_deleted=True),
            Task(id=5, created_by_id=1),
        ]

    @pytest.mark.parametrize("role, user_id, expected", [
        (Role.SECRETARY, 1, [1, 2, 3, 5]),
        (Role.ADMINISTRATOR, 6, [1, 2, 3, 5]),
        (Role.TEAM_LEADER, 2, [1, 2]),
        (Role.DEPUTY, 3, []),
        (Role.OFFICER, 4, [2, 3]),
        (Role.OFFICER, 5, []),
    ])
    def test_visible_tasks(self, role, user_id, expected):
        assert [t.id for t in visible_tasks(role, user_id, self._tasks())] == expected

    def test_deleted_hidden_even_from_office(self):
        deleted = self._tasks()[3]
        assert not can_view(Role.SECRETARY, 1, deleted)
