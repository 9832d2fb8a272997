"""Capability checks evaluated before any mutation.

``authorize`` is a pure function of the actor, the operation and the branch
the operation targets. Services call :func:`ensure` up front and never branch
on the actor's role afterwards, except to pin branch-scoped list queries.
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass
from typing import Optional

from pydantic import BaseModel

from .errors import Forbidden
from .models import Role


class Actor(BaseModel):
    """Authenticated identity handed to the services by the auth layer."""

    id: uuid.UUID
    role: Role
    branch_id: Optional[uuid.UUID] = None

    @property
    def is_central(self) -> bool:
        return self.role == Role.CENTRAL_ADMIN


class Operation(str, enum.Enum):
    DIRECTORY_VIEW = "directory.view"
    DIRECTORY_MANAGE = "directory.manage"
    STOCK_VIEW = "stock.view"
    STOCK_OPNAME = "stock.opname"
    REQUEST_CREATE = "request.create"
    REQUEST_VIEW = "request.view"
    REQUEST_APPROVE = "request.approve"
    REQUEST_SHIP = "request.ship"
    REQUEST_REJECT = "request.reject"
    REQUEST_RECEIVE = "request.receive"
    DISTRIBUTION_CREATE = "distribution.create"
    DISTRIBUTION_VIEW = "distribution.view"
    DISTRIBUTION_RETURN = "distribution.return"
    AUDIT_VIEW = "audit.view"
    USER_VIEW = "user.view"
    USER_MANAGE = "user.manage"
    COURIER_MANAGE = "courier.manage"


# Operations a role may perform on any branch.
_GLOBAL: dict[Role, frozenset[Operation]] = {
    Role.CENTRAL_ADMIN: frozenset(
        {
            Operation.DIRECTORY_VIEW,
            Operation.DIRECTORY_MANAGE,
            Operation.STOCK_VIEW,
            Operation.STOCK_OPNAME,
            Operation.REQUEST_VIEW,
            Operation.REQUEST_APPROVE,
            Operation.REQUEST_SHIP,
            Operation.REQUEST_REJECT,
            Operation.REQUEST_RECEIVE,
            Operation.DISTRIBUTION_VIEW,
            Operation.AUDIT_VIEW,
            Operation.USER_VIEW,
            Operation.USER_MANAGE,
            Operation.COURIER_MANAGE,
        }
    ),
    Role.BRANCH_ADMIN: frozenset({Operation.DIRECTORY_VIEW}),
    Role.COURIER: frozenset({Operation.DIRECTORY_VIEW}),
}

# Operations a role may perform only against its own branch.
_OWN_BRANCH: dict[Role, frozenset[Operation]] = {
    Role.CENTRAL_ADMIN: frozenset(),
    Role.BRANCH_ADMIN: frozenset(
        {
            Operation.STOCK_VIEW,
            Operation.STOCK_OPNAME,
            Operation.REQUEST_CREATE,
            Operation.REQUEST_VIEW,
            Operation.REQUEST_RECEIVE,
            Operation.DISTRIBUTION_CREATE,
            Operation.DISTRIBUTION_VIEW,
            Operation.DISTRIBUTION_RETURN,
            Operation.USER_VIEW,
            Operation.COURIER_MANAGE,
        }
    ),
    Role.COURIER: frozenset({Operation.DISTRIBUTION_VIEW}),
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = Decision(True)


def authorize(actor: Actor, operation: Operation, target_branch_id: uuid.UUID | None = None) -> Decision:
    """Decide whether ``actor`` may run ``operation`` against ``target_branch_id``.

    A ``None`` target means the operation is not bound to a single branch yet
    (list queries); branch-scoped roles are then pinned by the caller.
    """

    if operation in _GLOBAL.get(actor.role, frozenset()):
        return ALLOW
    if operation not in _OWN_BRANCH.get(actor.role, frozenset()):
        return Decision(False, f"Role {actor.role.value} may not perform {operation.value}")
    if actor.branch_id is None:
        return Decision(False, "User is not assigned to a branch")
    if target_branch_id is not None and target_branch_id != actor.branch_id:
        return Decision(False, "Access denied: this data belongs to another branch")
    return ALLOW


def ensure(actor: Actor, operation: Operation, target_branch_id: uuid.UUID | None = None) -> None:
    decision = authorize(actor, operation, target_branch_id)
    if not decision:
        raise Forbidden(decision.reason)


def scoped_branch(actor: Actor, requested_branch_id: uuid.UUID | None) -> uuid.UUID | None:
    """Branch filter for list queries: branch-scoped roles only see their own."""

    if actor.is_central:
        return requested_branch_id
    return actor.branch_id
