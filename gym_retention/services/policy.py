"""
Authorization policy for retention endpoints.

A single decision function replaces per-route role decorators: given the
caller and, where relevant, the user id owning the resource, it answers
allow or deny.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from gym_retention.exceptions import ForbiddenError
from gym_retention.schemas.schemas import UserRole


class Action(str, Enum):
    VIEW_OVERVIEW = "view_overview"
    LIST_MEMBERS = "list_members"
    VIEW_MEMBER_RISK = "view_member_risk"
    RECALCULATE = "recalculate"
    LIST_TASKS = "list_tasks"
    UPDATE_TASK = "update_task"


@dataclass(frozen=True)
class CurrentUser:
    """Authenticated caller, passed explicitly into service calls."""
    id: str
    role: UserRole
    email: Optional[str] = None


STAFF_ACTIONS = frozenset({
    Action.VIEW_OVERVIEW,
    Action.LIST_MEMBERS,
    Action.VIEW_MEMBER_RISK,
    Action.LIST_TASKS,
    Action.UPDATE_TASK,
})

ROLE_ACTIONS = {
    UserRole.OWNER: frozenset(Action),
    UserRole.ADMIN: frozenset(Action),
    UserRole.STAFF: STAFF_ACTIONS,
    UserRole.TRAINER: frozenset(),
    UserRole.MEMBER: frozenset(),
}

# Actions a member may perform on resources they own
OWNER_SCOPED_ACTIONS = frozenset({Action.VIEW_MEMBER_RISK})


def is_allowed(actor: CurrentUser, action: Action, resource_owner_id: Optional[str] = None) -> bool:
    if action in ROLE_ACTIONS.get(actor.role, frozenset()):
        return True
    return (
        actor.role == UserRole.MEMBER
        and action in OWNER_SCOPED_ACTIONS
        and resource_owner_id is not None
        and resource_owner_id == actor.id
    )


def can_attempt(actor: CurrentUser, action: Action) -> bool:
    """Whether the caller could be allowed for some resource owner."""
    if action in ROLE_ACTIONS.get(actor.role, frozenset()):
        return True
    return actor.role == UserRole.MEMBER and action in OWNER_SCOPED_ACTIONS


def authorize(actor: CurrentUser, action: Action, resource_owner_id: Optional[str] = None) -> None:
    if not is_allowed(actor, action, resource_owner_id):
        raise ForbiddenError(f"Role {actor.role.value} may not perform {action.value}")
