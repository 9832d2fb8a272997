import uuid

import pytest

from kitchen_logistics.errors import Forbidden
from kitchen_logistics.models import Role
from kitchen_logistics.rbac import Actor, Operation, authorize, ensure, scoped_branch

OWN = uuid.uuid4()
OTHER = uuid.uuid4()

central = Actor(id=uuid.uuid4(), role=Role.CENTRAL_ADMIN, branch_id=uuid.uuid4())
branch_admin = Actor(id=uuid.uuid4(), role=Role.BRANCH_ADMIN, branch_id=OWN)
courier = Actor(id=uuid.uuid4(), role=Role.COURIER, branch_id=OWN)


@pytest.mark.parametrize(
    "operation",
    [
        Operation.REQUEST_APPROVE,
        Operation.REQUEST_SHIP,
        Operation.REQUEST_REJECT,
        Operation.STOCK_OPNAME,
        Operation.DIRECTORY_MANAGE,
        Operation.AUDIT_VIEW,
        Operation.USER_MANAGE,
    ],
)
def test_central_admin_acts_on_any_branch(operation):
    assert authorize(central, operation, OTHER)
    assert authorize(central, operation)


@pytest.mark.parametrize(
    "operation",
    [Operation.REQUEST_CREATE, Operation.DISTRIBUTION_CREATE, Operation.DISTRIBUTION_RETURN],
)
def test_central_admin_cannot_act_as_a_kitchen(operation):
    decision = authorize(central, operation, OTHER)
    assert not decision
    assert "CENTRAL_ADMIN" in decision.reason


def test_branch_admin_is_pinned_to_own_branch():
    assert authorize(branch_admin, Operation.REQUEST_RECEIVE, OWN)
    assert authorize(branch_admin, Operation.STOCK_OPNAME, OWN)

    denied = authorize(branch_admin, Operation.REQUEST_RECEIVE, OTHER)
    assert not denied
    assert "another branch" in denied.reason


@pytest.mark.parametrize(
    "operation",
    [
        Operation.REQUEST_APPROVE,
        Operation.REQUEST_SHIP,
        Operation.REQUEST_REJECT,
        Operation.AUDIT_VIEW,
        Operation.USER_MANAGE,
    ],
)
def test_branch_admin_cannot_run_center_operations(operation):
    assert not authorize(branch_admin, operation, OWN)


def test_courier_only_views_own_distributions():
    assert authorize(courier, Operation.DISTRIBUTION_VIEW, OWN)
    assert not authorize(courier, Operation.DISTRIBUTION_VIEW, OTHER)
    assert not authorize(courier, Operation.DISTRIBUTION_RETURN, OWN)
    assert not authorize(courier, Operation.REQUEST_CREATE, OWN)
    assert authorize(courier, Operation.DIRECTORY_VIEW)


def test_branch_role_without_branch_is_denied():
    orphan = Actor(id=uuid.uuid4(), role=Role.BRANCH_ADMIN, branch_id=None)
    decision = authorize(orphan, Operation.REQUEST_CREATE)
    assert not decision
    assert decision.reason == "User is not assigned to a branch"


def test_ensure_raises_forbidden_with_reason():
    with pytest.raises(Forbidden) as exc:
        ensure(branch_admin, Operation.DISTRIBUTION_RETURN, OTHER)
    assert exc.value.status_code == 403
    assert "another branch" in exc.value.detail


def test_scoped_branch_pins_branch_roles():
    assert scoped_branch(central, None) is None
    assert scoped_branch(central, OTHER) == OTHER
    assert scoped_branch(branch_admin, OTHER) == OWN
    assert scoped_branch(courier, None) == OWN


def test_branch_admin_manages_couriers_of_own_branch_only():
    assert authorize(branch_admin, Operation.COURIER_MANAGE, OWN)
    assert authorize(branch_admin, Operation.USER_VIEW, OWN)
    assert not authorize(branch_admin, Operation.COURIER_MANAGE, OTHER)
    assert not authorize(courier, Operation.USER_VIEW, OWN)
