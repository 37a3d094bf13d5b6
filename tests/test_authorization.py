"""Unit tests for docflow.workflow.authorization — pure permission rules."""

import pytest

from docflow.engine.errors import ForbiddenError, ForbiddenReason
from docflow.workflow.authorization import (
    can_create,
    can_perform,
    check_permission,
    permitted_operations,
)
from docflow.workflow.models import OperationKind, Role, Task, TaskStatus

K = OperationKind
R = Role
S = TaskStatus


def task(status=S.RECEIVED, assigned_to_id=10, created_by_id=1):
    return Task(id=50, status=status, assigned_to_id=assigned_to_id, created_by_id=created_by_id)


def reason_of(*args, **kwargs):
    with pytest.raises(ForbiddenError) as exc_info:
        check_permission(*args, **kwargs)
    return exc_info.value.reason


class TestActorRoles:
    @pytest.mark.parametrize("operation, role", [
        (K.DELEGATE, R.OFFICER),
        (K.DELEGATE, R.SECRETARY),
        (K.DELEGATE, R.ADMINISTRATOR),
        (K.ASSIGN, R.OFFICER),
        (K.FORWARD, R.SECRETARY),
        (K.SUBMIT_FOR_REVIEW, R.TEAM_LEADER),
        (K.REVIEW_APPROVE, R.OFFICER),
        (K.REVIEW_REJECT, R.SECRETARY),
        (K.EDIT, R.OFFICER),
        (K.DELETE, R.DEPUTY),
    ])
    def test_role_not_permitted(self, operation, role):
        assert reason_of(operation, role, 10, task()) is ForbiddenReason.ROLE_NOT_PERMITTED

    def test_error_context(self):
        with pytest.raises(ForbiddenError) as exc_info:
            check_permission(K.DELEGATE, R.OFFICER, 10, task())
        err = exc_info.value
        assert err.actor_role == "officer"
        assert err.task_id == 50
        assert err.operation == "delegate"


class TestCheckOrder:
    def test_ownership_before_target_role(self):
        # Not the assignee AND an ineligible target: ownership is reported
        assert reason_of(K.DELEGATE, R.DEPUTY, 99, task(), R.TEAM_LEADER, 2) is ForbiddenReason.NOT_OWNER

    def test_self_target_before_target_role(self):
        # Deputy delegating to themselves: Deputy is not an eligible Delegate target either
        assert reason_of(K.DELEGATE, R.DEPUTY, 10, task(), R.DEPUTY, 10) is ForbiddenReason.SELF_TARGET


class TestAssign:
    def test_office_may_reassign_any_status(self):
        for status in (S.RECEIVED, S.IN_PROGRESS, S.UNDER_REVIEW, S.COMPLETED):
            check_permission(K.ASSIGN, R.SECRETARY, 1, task(status), R.DEPUTY, 3)

    def test_leader_assigns_unassigned_task(self):
        check_permission(K.ASSIGN, R.TEAM_LEADER, 2, task(S.NOT_STARTED, None), R.OFFICER, 4)

    def test_leader_reassign_is_wrong_status(self):
        assert reason_of(K.ASSIGN, R.TEAM_LEADER, 2, task(S.IN_PROGRESS), R.OFFICER, 4) is ForbiddenReason.WRONG_STATUS

    def test_deputy_assign_to_leader(self):
        assert reason_of(
            K.ASSIGN, R.DEPUTY, 3, task(S.NOT_STARTED, None), R.TEAM_LEADER, 2,
        ) is ForbiddenReason.ROLE_NOT_PERMITTED


class TestForward:
    def test_creator_may_forward(self):
        check_permission(K.FORWARD, R.TEAM_LEADER, 1, task(created_by_id=1), R.OFFICER, 4)

    def test_stranger_may_not_forward(self):
        assert reason_of(K.FORWARD, R.OFFICER, 77, task(), R.DEPUTY, 3) is ForbiddenReason.NOT_OWNER

    def test_forward_to_current_assignee(self):
        assert reason_of(K.FORWARD, R.TEAM_LEADER, 1, task(), R.OFFICER, 10) is ForbiddenReason.SELF_TARGET

    def test_without_target_only_ownership_checked(self):
        assert can_perform(K.FORWARD, R.OFFICER, 10, task())


class TestReviewEditDelete:
    def test_admin_may_review(self):
        check_permission(K.REVIEW_APPROVE, R.ADMINISTRATOR, 6, task(S.UNDER_REVIEW))

    def test_review_own_work(self):
        assert reason_of(K.REVIEW_REJECT, R.DEPUTY, 10, task(S.UNDER_REVIEW)) is ForbiddenReason.SELF_TARGET

    def test_assignee_leader_may_edit(self):
        check_permission(K.EDIT, R.TEAM_LEADER, 10, task())

    def test_admin_deletes_only_own(self):
        assert reason_of(K.DELETE, R.ADMINISTRATOR, 6, task(created_by_id=1)) is ForbiddenReason.NOT_OWNER
        check_permission(K.DELETE, R.ADMINISTRATOR, 6, task(created_by_id=6))

    def test_submit_requires_assignee(self):
        assert reason_of(K.SUBMIT_FOR_REVIEW, R.OFFICER, 11, task(S.IN_PROGRESS)) is ForbiddenReason.NOT_OWNER


class TestHelpers:
    def test_can_create(self):
        assert can_create(R.SECRETARY)
        assert can_create(R.ADMINISTRATOR)
        assert not can_create(R.TEAM_LEADER)
        assert not can_create(R.OFFICER)

    def test_permitted_operations_for_deputy_assignee(self):
        ops = permitted_operations(R.DEPUTY, 10, task())
        assert set(ops) == {K.DELEGATE, K.FORWARD, K.UPDATE_PROGRESS}

    def test_permitted_operations_for_deputy_reviewer(self):
        ops = permitted_operations(R.DEPUTY, 3, task(S.UNDER_REVIEW))
        assert set(ops) == {K.REVIEW_APPROVE, K.REVIEW_REJECT}
