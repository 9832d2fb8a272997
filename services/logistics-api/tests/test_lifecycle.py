import asyncio
import datetime as dt
import re
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from kitchen_logistics import activity, deps, lifecycle, models, schemas
from kitchen_logistics.errors import Forbidden, InsufficientStock, InvalidInput, InvalidTransition, NotFound

Status = models.RequestStatus


def _create(run, world, *lines, notes=None, actor=None):
    payload = schemas.RequestCreate(
        items=[schemas.RequestItemInput(material_id=material_id, qty=qty) for material_id, qty in lines],
        notes=notes,
    )

    async def scenario(session):
        request = await lifecycle.create_request(session, actor or world.branch_admin, payload)
        return request.id

    return run(scenario)


def _snapshot(run, request_id):
    async def scenario(session):
        request = await lifecycle.get_request(session, request_id)
        return {
            "code": request.code,
            "status": request.status,
            "notes": request.notes,
            "processed_by_id": request.processed_by_id,
            "items": {item.material_id: (item.qty, item.qty_approved) for item in request.items},
        }

    return run(scenario)


def _actions(run):
    async def scenario(session):
        result = await session.execute(select(models.LogActivity.action).order_by(models.LogActivity.timestamp))
        return list(result.scalars())

    return run(scenario)


def test_round_trip_moves_stock_from_center_to_branch(world, run, seed_stock, stock_at, notifier):
    seed_stock(world.rice_id, world.center_id, 20)
    request_id = _create(run, world, (world.rice_id, 10))

    async def approve(session):
        request = await lifecycle.get_request(session, request_id)
        item_id = request.items[0].id
        approvals = [schemas.ItemApproval(item_id=item_id, qty_approved=Decimal("7"))]
        return await lifecycle.approve_request(session, world.central, request_id, approvals, notifier=notifier)

    run(approve)
    assert _snapshot(run, request_id)["status"] == Status.APPROVED.value

    run(lifecycle.ship_request, world.central, request_id, notifier=notifier)
    assert stock_at(world.rice_id, world.center_id) == Decimal("13")
    assert stock_at(world.rice_id, world.branch_id) is None

    run(lifecycle.receive_request, world.branch_admin, request_id)
    assert stock_at(world.rice_id, world.branch_id) == Decimal("7")
    assert stock_at(world.rice_id, world.center_id) == Decimal("13")

    snapshot = _snapshot(run, request_id)
    assert snapshot["status"] == Status.RECEIVED.value
    assert snapshot["processed_by_id"] == world.central.id
    assert snapshot["items"][world.rice_id] == (Decimal("10"), Decimal("7"))

    assert _actions(run) == [
        activity.CREATE_REQUEST,
        activity.APPROVE_REQUEST,
        activity.SHIP_REQUEST,
        activity.RECEIVE_REQUEST,
    ]
    assert [n.subject for n in notifier.published] == ["Request approved", "Request shipped"]
    assert all(n.branch_id == world.branch_id for n in notifier.published)


def test_omitted_items_are_approved_in_full(world, run, seed_stock, stock_at):
    seed_stock(world.rice_id, world.center_id, 20)
    request_id = _create(run, world, (world.rice_id, 10))

    run(lifecycle.approve_request, world.central, request_id)
    run(lifecycle.ship_request, world.central, request_id)
    run(lifecycle.receive_request, world.branch_admin, request_id)

    assert stock_at(world.rice_id, world.center_id) == Decimal("10")
    assert stock_at(world.rice_id, world.branch_id) == Decimal("10")


def test_insufficient_stock_ships_nothing(world, run, seed_stock, stock_at):
    seed_stock(world.rice_id, world.center_id, 20)
    seed_stock(world.oil_id, world.center_id, 2)
    request_id = _create(run, world, (world.rice_id, 5), (world.oil_id, 3))
    run(lifecycle.approve_request, world.central, request_id)

    with pytest.raises(InsufficientStock) as exc:
        run(lifecycle.ship_request, world.central, request_id)

    assert "Minyak Goreng" in exc.value.detail
    assert _snapshot(run, request_id)["status"] == Status.APPROVED.value
    assert stock_at(world.rice_id, world.center_id) == Decimal("20")
    assert stock_at(world.oil_id, world.center_id) == Decimal("2")
    assert activity.SHIP_REQUEST not in _actions(run)


def test_zero_approved_items_are_skipped(world, run, seed_stock, stock_at):
    seed_stock(world.rice_id, world.center_id, 5)
    request_id = _create(run, world, (world.rice_id, 5), (world.oil_id, 4))

    async def approve(session):
        request = await lifecycle.get_request(session, request_id)
        oil = next(item for item in request.items if item.material_id == world.oil_id)
        approvals = [schemas.ItemApproval(item_id=oil.id, qty_approved=Decimal("0"))]
        await lifecycle.approve_request(session, world.central, request_id, approvals)

    run(approve)
    run(lifecycle.ship_request, world.central, request_id)
    run(lifecycle.receive_request, world.branch_admin, request_id)

    assert stock_at(world.rice_id, world.branch_id) == Decimal("5")
    assert stock_at(world.oil_id, world.branch_id) is None
    assert stock_at(world.oil_id, world.center_id) is None


@pytest.mark.parametrize(
    "steps, operation, current",
    [
        ([], "ship", "PENDING"),
        ([], "receive", "PENDING"),
        (["approve"], "approve", "APPROVED"),
        (["approve"], "reject", "APPROVED"),
        (["approve"], "receive", "APPROVED"),
        (["approve", "ship"], "ship", "SHIPPED"),
        (["reject"], "approve", "REJECTED"),
        (["approve", "ship", "receive"], "receive", "RECEIVED"),
    ],
)
def test_invalid_transitions_report_current_status(world, run, seed_stock, steps, operation, current):
    seed_stock(world.rice_id, world.center_id, 50)
    request_id = _create(run, world, (world.rice_id, 1))
    calls = {
        "approve": lambda: run(lifecycle.approve_request, world.central, request_id),
        "ship": lambda: run(lifecycle.ship_request, world.central, request_id),
        "receive": lambda: run(lifecycle.receive_request, world.branch_admin, request_id),
        "reject": lambda: run(lifecycle.reject_request, world.central, request_id, "No budget"),
    }
    for step in steps:
        calls[step]()

    with pytest.raises(InvalidTransition) as exc:
        calls[operation]()

    assert exc.value.current_status == current
    assert exc.value.to_payload()["current_status"] == current
    assert f"Current status: {current}" in exc.value.detail


def test_stale_second_ship_fails_without_double_decrement(world, run, seed_stock, stock_at):
    seed_stock(world.rice_id, world.center_id, 20)
    request_id = _create(run, world, (world.rice_id, 10))
    run(lifecycle.approve_request, world.central, request_id)

    async def scenario():
        async with deps.SessionLocal() as first, deps.SessionLocal() as second:
            stale = await lifecycle.get_request(second, request_id)
            assert stale.status == Status.APPROVED.value
            await lifecycle.ship_request(first, world.central, request_id)
            with pytest.raises(InvalidTransition) as exc:
                await lifecycle.ship_request(second, world.central, request_id)
            return exc.value.current_status

    assert asyncio.run(scenario()) == Status.SHIPPED.value
    assert stock_at(world.rice_id, world.center_id) == Decimal("10")


def test_reject_appends_reason_to_notes(world, run, notifier):
    with_notes = _create(run, world, (world.rice_id, 1), notes="Urgent for Monday")
    without_notes = _create(run, world, (world.oil_id, 1))

    run(lifecycle.reject_request, world.central, with_notes, "Budget exhausted", notifier=notifier)
    run(lifecycle.reject_request, world.central, without_notes, "  Duplicate  ")

    assert _snapshot(run, with_notes)["notes"] == "Urgent for Monday | REJECTED REASON: Budget exhausted"
    assert _snapshot(run, without_notes)["notes"] == "REJECTED REASON: Duplicate"
    assert _snapshot(run, with_notes)["status"] == Status.REJECTED.value
    assert [n.subject for n in notifier.published] == ["Request rejected"]


def test_reject_requires_reason(world, run):
    request_id = _create(run, world, (world.rice_id, 1))
    with pytest.raises(InvalidInput):
        run(lifecycle.reject_request, world.central, request_id, "   ")
    assert _snapshot(run, request_id)["status"] == Status.PENDING.value


def test_failing_notifier_does_not_undo_approval(world, run):
    class Broken:
        def publish(self, notification):
            raise RuntimeError("queue is gone")

    request_id = _create(run, world, (world.rice_id, 1))
    run(lifecycle.approve_request, world.central, request_id, notifier=Broken())
    assert _snapshot(run, request_id)["status"] == Status.APPROVED.value


def test_approve_rejects_foreign_item_and_excess_qty(world, run):
    first = _create(run, world, (world.rice_id, 4))
    second = _create(run, world, (world.oil_id, 2))

    async def approve_with(session, target, item_owner, qty):
        owner = await lifecycle.get_request(session, item_owner)
        approvals = [schemas.ItemApproval(item_id=owner.items[0].id, qty_approved=Decimal(qty))]
        await lifecycle.approve_request(session, world.central, target, approvals)

    with pytest.raises(NotFound):
        run(approve_with, first, second, "1")
    with pytest.raises(InvalidInput):
        run(approve_with, first, first, "5")
    assert _snapshot(run, first)["status"] == Status.PENDING.value


def test_create_validates_items(world, run):
    with pytest.raises(InvalidInput):
        _create(run, world, (world.rice_id, 1), (world.rice_id, 2))

    async def deactivate(session):
        material = await session.get(models.Material, world.oil_id)
        material.is_active = False
        await session.commit()

    run(deactivate)
    with pytest.raises(InvalidInput):
        _create(run, world, (world.oil_id, 1))


def test_only_active_branch_admins_create_requests(world, run):
    with pytest.raises(Forbidden):
        _create(run, world, (world.rice_id, 1), actor=world.central)
    with pytest.raises(Forbidden):
        _create(run, world, (world.rice_id, 1), actor=world.stale_admin)


def test_receive_is_limited_to_destination_branch(world, run, seed_stock):
    seed_stock(world.rice_id, world.center_id, 5)
    request_id = _create(run, world, (world.rice_id, 1))
    run(lifecycle.approve_request, world.central, request_id)
    run(lifecycle.ship_request, world.central, request_id)

    with pytest.raises(Forbidden):
        run(lifecycle.receive_request, world.other_admin, request_id)
    assert _snapshot(run, request_id)["status"] == Status.SHIPPED.value


def test_codes_are_unique_and_increasing(world, run):
    codes = [_snapshot(run, _create(run, world, (world.rice_id, 1)))["code"] for _ in range(3)]

    assert len(set(codes)) == 3
    assert all(re.fullmatch(r"REQ-\d{8}-\d{4}", code) for code in codes)
    assert [int(code[-4:]) for code in codes] == [1, 2, 3]


def test_branch_admin_lists_only_own_requests(world, run):
    _create(run, world, (world.rice_id, 1))
    _create(run, world, (world.rice_id, 1), actor=world.other_admin)

    async def scenario(session):
        own = await lifecycle.list_requests(session, world.branch_admin, page=1, limit=10)
        pending = await lifecycle.list_requests(session, world.central, page=1, limit=10, status=Status.PENDING)
        tomorrow = dt.date.today() + dt.timedelta(days=2)
        future = await lifecycle.list_requests(session, world.central, page=1, limit=10, start_date=tomorrow)
        count = (await session.execute(select(func.count()).select_from(models.Request))).scalar_one()
        return [r.branch_id for r in own.items], pending.meta.total, future.meta.total, count

    own, pending_total, future_total, count = run(scenario)
    assert own == [world.branch_id]
    assert pending_total == 2
    assert future_total == 0
    assert count == 2


def test_other_branch_cannot_view_request(world, run):
    request_id = _create(run, world, (world.rice_id, 1))
    with pytest.raises(Forbidden):
        run(lifecycle.find_request, world.other_admin, request_id)
