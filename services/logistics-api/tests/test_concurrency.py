"""Interleaved operations on separate sessions, run with ``asyncio.gather``."""

import asyncio
import re
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from kitchen_logistics import activity, deps, lifecycle, models, schemas
from kitchen_logistics.errors import InsufficientStock, InvalidTransition

Status = models.RequestStatus


def _approved_request(run, world, qty):
    payload = schemas.RequestCreate(items=[schemas.RequestItemInput(material_id=world.rice_id, qty=qty)])

    async def scenario(session):
        request = await lifecycle.create_request(session, world.branch_admin, payload)
        await lifecycle.approve_request(session, world.central, request.id)
        return request.id

    return run(scenario)


async def _ship(actor, request_id):
    async with deps.SessionLocal() as session:
        return await lifecycle.ship_request(session, actor, request_id)


def _statuses(run, *request_ids):
    async def scenario(session):
        result = await session.execute(
            select(models.Request.id, models.Request.status).where(models.Request.id.in_(request_ids))
        )
        return dict(result.all())

    return run(scenario)


def _ship_logs(run):
    async def scenario(session):
        result = await session.execute(
            select(models.LogActivity).where(models.LogActivity.action == activity.SHIP_REQUEST)
        )
        return list(result.scalars())

    return run(scenario)


def test_concurrent_ships_of_one_request_succeed_once(world, run, seed_stock, stock_at):
    seed_stock(world.rice_id, world.center_id, 20)
    request_id = _approved_request(run, world, 10)

    async def both():
        return await asyncio.gather(
            _ship(world.central, request_id), _ship(world.central, request_id), return_exceptions=True
        )

    results = asyncio.run(both())

    shipped = [r for r in results if isinstance(r, models.Request)]
    failed = [r for r in results if isinstance(r, InvalidTransition)]
    assert len(shipped) == 1 and len(failed) == 1
    assert failed[0].current_status == Status.SHIPPED.value
    assert stock_at(world.rice_id, world.center_id) == Decimal("10")
    assert len(_ship_logs(run)) == 1


def test_concurrent_ships_never_overdraw_center_stock(world, run, seed_stock, stock_at):
    seed_stock(world.rice_id, world.center_id, 10)
    first = _approved_request(run, world, 6)
    second = _approved_request(run, world, 6)

    async def both():
        return await asyncio.gather(_ship(world.central, first), _ship(world.central, second), return_exceptions=True)

    results = asyncio.run(both())

    assert sum(isinstance(r, models.Request) for r in results) == 1
    assert sum(isinstance(r, InsufficientStock) for r in results) == 1
    assert stock_at(world.rice_id, world.center_id) == Decimal("4")
    assert sorted(_statuses(run, first, second).values()) == [Status.APPROVED.value, Status.SHIPPED.value]


def test_concurrent_creates_get_distinct_codes(world):
    payload = schemas.RequestCreate(items=[schemas.RequestItemInput(material_id=world.rice_id, qty=1)])

    async def create():
        async with deps.SessionLocal() as session:
            request = await lifecycle.create_request(session, world.branch_admin, payload)
            return request.code

    async def many():
        return await asyncio.gather(*(create() for _ in range(5)))

    codes = asyncio.run(many())

    assert len(set(codes)) == 5
    assert all(re.fullmatch(r"REQ-\d{8}-\d{4}", code) for code in codes)
    assert sorted(int(code[-4:]) for code in codes) == [1, 2, 3, 4, 5]


def test_failed_audit_insert_rolls_back_shipment(world, run, seed_stock, stock_at, monkeypatch):
    seed_stock(world.rice_id, world.center_id, 20)
    request_id = _approved_request(run, world, 10)
    real_record = activity.record

    def broken_record(session, actor_id, action, details):
        entry = real_record(session, actor_id, action, details)
        entry.action = None  # violates NOT NULL when flushed
        return entry

    monkeypatch.setattr(activity, "record", broken_record)
    with pytest.raises(IntegrityError):
        run(lifecycle.ship_request, world.central, request_id)
    monkeypatch.undo()

    assert _statuses(run, request_id) == {request_id: Status.APPROVED.value}
    assert stock_at(world.rice_id, world.center_id) == Decimal("20")
    assert _ship_logs(run) == []

    run(lifecycle.ship_request, world.central, request_id)
    assert stock_at(world.rice_id, world.center_id) == Decimal("10")
