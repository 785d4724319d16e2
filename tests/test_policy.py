import pytest

from gym_retention.exceptions import ForbiddenError
from gym_retention.schemas.schemas import UserRole
from gym_retention.services.policy import (
    Action, CurrentUser, authorize, can_attempt, is_allowed
)


def actor(role: UserRole, user_id: str = "user-1") -> CurrentUser:
    return CurrentUser(id=user_id, role=role)


@pytest.mark.parametrize("role", [UserRole.OWNER, UserRole.ADMIN])
@pytest.mark.parametrize("action", list(Action))
def test_owner_and_admin_may_do_everything(role, action):
    assert is_allowed(actor(role), action)


def test_staff_may_not_recalculate():
    staff = actor(UserRole.STAFF)

    assert not is_allowed(staff, Action.RECALCULATE)
    assert is_allowed(staff, Action.UPDATE_TASK)
    assert is_allowed(staff, Action.VIEW_MEMBER_RISK, resource_owner_id="someone-else")


@pytest.mark.parametrize("action", list(Action))
def test_trainer_is_denied(action):
    assert not is_allowed(actor(UserRole.TRAINER), action)
    assert not can_attempt(actor(UserRole.TRAINER), action)


def test_member_may_only_view_own_risk():
    member = actor(UserRole.MEMBER, "member-user")

    assert is_allowed(member, Action.VIEW_MEMBER_RISK, resource_owner_id="member-user")
    assert not is_allowed(member, Action.VIEW_MEMBER_RISK, resource_owner_id="other-user")
    assert not is_allowed(member, Action.VIEW_MEMBER_RISK)
    assert not is_allowed(member, Action.LIST_MEMBERS)
    assert not is_allowed(member, Action.UPDATE_TASK)


def test_member_can_attempt_owner_scoped_action_only():
    member = actor(UserRole.MEMBER)

    assert can_attempt(member, Action.VIEW_MEMBER_RISK)
    assert not can_attempt(member, Action.VIEW_OVERVIEW)


def test_authorize_raises_forbidden():
    with pytest.raises(ForbiddenError) as exc_info:
        authorize(actor(UserRole.STAFF), Action.RECALCULATE)

    assert exc_info.value.status_code == 403
    assert "STAFF" in exc_info.value.message
