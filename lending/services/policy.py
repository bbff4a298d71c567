"""
Access policy: a pure decision function over ``(actor, action, owner)``.

No persisted state and no I/O: the role table below plus the actor passed in
by the caller are the whole input.  Services call :func:`require` before any
mutation so a denied request never touches the store.
"""

import enum
import logging
import uuid

from lending.auth.actor import STAFF_ROLES, Actor, Role
from lending.core.config import settings
from lending.core.errors import Forbidden

logger = logging.getLogger(__name__)


class Action(str, enum.Enum):
    BORROW = "BORROW"
    RETURN_LOAN = "RETURN_LOAN"
    VIEW_LOAN = "VIEW_LOAN"
    LIST_ALL_LOANS = "LIST_ALL_LOANS"
    CREATE_BOOK = "CREATE_BOOK"
    UPDATE_BOOK = "UPDATE_BOOK"
    RESIZE_BOOK = "RESIZE_BOOK"
    DELETE_BOOK = "DELETE_BOOK"
    CREATE_AUTHOR = "CREATE_AUTHOR"
    CREATE_CATEGORY = "CREATE_CATEGORY"


class Decision(str, enum.Enum):
    ALLOW = "ALLOW"
    DENY = "DENY"


_ALL_ROLES: frozenset[Role] = frozenset(Role)
_ADMIN_ONLY: frozenset[Role] = frozenset({Role.ADMIN})

# Roles allowed regardless of resource ownership.
_ROLE_TABLE: dict[Action, frozenset[Role]] = {
    Action.BORROW: _ALL_ROLES,
    Action.RETURN_LOAN: STAFF_ROLES,
    Action.VIEW_LOAN: STAFF_ROLES,
    Action.LIST_ALL_LOANS: STAFF_ROLES,
    Action.CREATE_BOOK: STAFF_ROLES,
    Action.UPDATE_BOOK: STAFF_ROLES,
    Action.RESIZE_BOOK: STAFF_ROLES,
    Action.DELETE_BOOK: STAFF_ROLES,
    Action.CREATE_AUTHOR: STAFF_ROLES,
}

# Actions the owner of the resource may perform even without a listed role.
_OWNER_ACTIONS: frozenset[Action] = frozenset({Action.RETURN_LOAN, Action.VIEW_LOAN})


def allowed_roles(action: Action) -> frozenset[Role]:
    if action is Action.CREATE_CATEGORY:
        return _ADMIN_ONLY if settings.CATEGORY_ADMIN_ONLY else STAFF_ROLES
    return _ROLE_TABLE[action]


def authorize(
    actor: Actor,
    action: Action,
    resource_owner: uuid.UUID | None = None,
) -> Decision:
    if actor.role in allowed_roles(action):
        return Decision.ALLOW
    if action in _OWNER_ACTIONS and resource_owner is not None and resource_owner == actor.id:
        return Decision.ALLOW
    return Decision.DENY


def require(
    actor: Actor,
    action: Action,
    resource_owner: uuid.UUID | None = None,
    *,
    message: str | None = None,
) -> None:
    """Raise :class:`Forbidden` unless *actor* may perform *action*."""
    if authorize(actor, action, resource_owner) is Decision.DENY:
        logger.info("Denied %s for actor %s (%s)", action.value, actor.id, actor.role.value)
        raise Forbidden(message)


def loan_scope(actor: Actor) -> uuid.UUID | None:
    """Holder id to restrict a loan listing to, or None for all loans."""
    if authorize(actor, Action.LIST_ALL_LOANS) is Decision.ALLOW:
        return None
    return actor.id
