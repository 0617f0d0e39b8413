"""Authorization rules for records and user management.

``authorize`` is a pure function of the identity, the action and an
optional target; it never touches the store. ``enforce`` turns a denial into
the matching service exception.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .exceptions import AuthenticationError, AuthorizationError, BizDataError
from .models.user import User

UNAUTHORIZED = "Unauthorized"
FORBIDDEN = "Forbidden"
SELF_DELETE = "Cannot delete your own account"
SELF_ROLE_CHANGE = "Cannot change your own role or status"


class Action(str, Enum):
    LOGIN = "auth:login"
    REGISTER = "auth:register"

    LIST_RECORDS = "record:list"
    READ_RECORD = "record:read"
    CREATE_RECORD = "record:create"
    UPDATE_RECORD = "record:update"
    DELETE_RECORD = "record:delete"
    IMPORT_RECORDS = "record:import"
    EXPORT_RECORDS = "record:export"

    LIST_USERS = "user:list"
    CREATE_USER = "user:create"
    UPDATE_USER = "user:update"
    MANAGE_USERS = "user:manage"
    DELETE_USER = "user:delete"
    MANAGE_ROLES = "user:manage-roles"
    EXPORT_USERS = "user:export"

    CLEAN_SESSIONS = "session:clean"


PUBLIC_ACTIONS = frozenset({Action.LOGIN, Action.REGISTER})
MEMBER_ACTIONS = frozenset(
    {
        Action.LIST_RECORDS,
        Action.CREATE_RECORD,
        Action.IMPORT_RECORDS,
        Action.EXPORT_RECORDS,
    }
)
OWNER_ACTIONS = frozenset(
    {Action.READ_RECORD, Action.UPDATE_RECORD, Action.DELETE_RECORD}
)
ADMIN_ACTIONS = frozenset(
    {
        Action.LIST_USERS,
        Action.CREATE_USER,
        Action.MANAGE_USERS,
        Action.DELETE_USER,
        Action.MANAGE_ROLES,
        Action.EXPORT_USERS,
        Action.CLEAN_SESSIONS,
    }
)


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: Optional[str] = None
    status_code: int = 200

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def _deny(reason: str, status_code: int = 403) -> Decision:
    return Decision(False, reason, status_code)


def authorize(
    identity: Optional[User], action: Action, target: Optional[Any] = None
) -> Decision:
    """Decide whether ``identity`` may perform ``action`` on ``target``.

    ``target`` is a ``BusinessData`` row for record actions and a ``User``
    for user actions.
    """
    if action in PUBLIC_ACTIONS:
        return ALLOW
    if identity is None:
        return _deny(UNAUTHORIZED, 401)

    # checked before the role so admins cannot lock themselves out
    if action is Action.DELETE_USER and target is not None and target.id == identity.id:
        return _deny(SELF_DELETE)
    if action is Action.MANAGE_ROLES and target is not None and target.id == identity.id:
        return _deny(SELF_ROLE_CHANGE)

    if identity.is_admin:
        return ALLOW

    if action in MEMBER_ACTIONS:
        return ALLOW
    if action in OWNER_ACTIONS:
        if target is not None and target.owner_id == identity.id:
            return ALLOW
        return _deny(FORBIDDEN)
    if action is Action.UPDATE_USER:
        if target is not None and target.id == identity.id:
            return ALLOW
        return _deny(UNAUTHORIZED)
    if action in ADMIN_ACTIONS:
        return _deny(UNAUTHORIZED)
    return _deny(FORBIDDEN)


def enforce(
    identity: Optional[User], action: Action, target: Optional[Any] = None
) -> None:
    """Raise the service error matching a denied decision."""
    decision = authorize(identity, action, target)
    if decision.allowed:
        return
    if decision.status_code == 401:
        raise AuthenticationError(decision.reason)
    if decision.status_code == 403:
        raise AuthorizationError(decision.reason)
    raise BizDataError(decision.reason, decision.status_code)


def record_scope(identity: User) -> Optional[str]:
    """Owner id to filter record listings by, or None for every record."""
    return None if identity.is_admin else identity.id
