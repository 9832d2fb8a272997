"""Material request lifecycle.

::

    PENDING --approve--> APPROVED --ship--> SHIPPED --receive--> RECEIVED
       |
       +--reject--> REJECTED

Each transition loads the request row ``FOR UPDATE`` and then moves it with a
compare-and-set UPDATE on the expected status, so of two concurrent callers
only one can claim the transition; the other sees the new status and gets
:class:`InvalidTransition`. Ledger changes, the status change and the
activity row commit together or not at all.
"""

from __future__ import annotations

import datetime as dt
import logging
import uuid
from collections.abc import Sequence
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from . import activity, directory, ledger, models, notifications, schemas, sequences
from .clock import utcnow
from .deps import atomic
from .errors import Forbidden, InvalidInput, InvalidTransition, NotFound
from .pagination import Page, paginate
from .rbac import Actor, Operation, ensure, scoped_branch

logger = logging.getLogger(__name__)

Status = models.RequestStatus


async def get_request(session: AsyncSession, request_id: uuid.UUID, *, for_update: bool = False) -> models.Request:
    query = (
        select(models.Request)
        .where(models.Request.id == request_id)
        .options(selectinload(models.Request.items))
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update(of=models.Request)
    result = await session.execute(query)
    request = result.scalar_one_or_none()
    if request is None:
        raise NotFound("Request not found")
    return request


def _require_status(request: models.Request, expected: Status, verb: str) -> None:
    if request.status != expected.value:
        raise InvalidTransition(
            f"Only {expected.value} requests can be {verb}. Current status: {request.status}",
            current_status=request.status,
        )


async def _transition(
    session: AsyncSession, request: models.Request, expected: Status, target: Status, **values: Any
) -> None:
    result = await session.execute(
        update(models.Request)
        .where(models.Request.id == request.id, models.Request.status == expected.value)
        .values(status=target.value, **values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        current = (
            await session.execute(select(models.Request.status).where(models.Request.id == request.id))
        ).scalar_one()
        raise InvalidTransition(
            f"Request {request.code} is no longer {expected.value}. Current status: {current}",
            current_status=current,
        )
    logger.info("Request %s: %s -> %s", request.code, expected.value, target.value)


def _item_summary(items: Sequence[models.RequestItem]) -> list[dict[str, Any]]:
    return [
        {"material": item.material.name, "qty": item.effective_qty, "unit": item.material.unit}
        for item in items
    ]


def _notify(notifier: notifications.Notifier | None, notification: notifications.Notification) -> None:
    if notifier is None:
        return
    try:
        notifier.publish(notification)
    except Exception:
        logger.exception("Could not queue notification %r", notification.subject)


async def create_request(
    session: AsyncSession,
    actor: Actor,
    payload: schemas.RequestCreate,
    *,
    today: dt.date | None = None,
) -> models.Request:
    ensure(actor, Operation.REQUEST_CREATE)
    branch = await session.get(models.Branch, actor.branch_id)
    if branch is None or not branch.is_active:
        raise Forbidden("Your branch is not valid or is inactive")
    if not payload.items:
        raise InvalidInput("A request needs at least one item")

    seen: set[uuid.UUID] = set()
    lines: list[tuple[models.Material, Decimal]] = []
    for line in payload.items:
        if line.material_id in seen:
            raise InvalidInput("Each material may appear only once per request")
        seen.add(line.material_id)
        if line.qty <= 0:
            raise InvalidInput("Requested quantity must be greater than zero")
        material = await directory.get_material(session, line.material_id)
        if not material.is_active:
            raise InvalidInput(f"Material {material.name} is deactivated")
        lines.append((material, line.qty))

    async with atomic(session):
        code = await sequences.next_request_code(session, today or utcnow().date())
        request = models.Request(
            code=code,
            branch_id=branch.id,
            status=Status.PENDING.value,
            notes=payload.notes,
            request_date=utcnow(),
        )
        request.items = [
            models.RequestItem(material_id=material.id, qty=qty, position=position)
            for position, (material, qty) in enumerate(lines)
        ]
        session.add(request)
        await session.flush()
        activity.record(
            session,
            actor.id,
            activity.CREATE_REQUEST,
            {
                "request_id": request.id,
                "code": code,
                "items": [{"material": m.name, "qty": qty, "unit": m.unit} for m, qty in lines],
            },
        )
    logger.info("Request %s created for branch %s", code, branch.name)
    return await get_request(session, request.id)


async def approve_request(
    session: AsyncSession,
    actor: Actor,
    request_id: uuid.UUID,
    approvals: Sequence[schemas.ItemApproval] = (),
    *,
    notifier: notifications.Notifier | None = None,
) -> models.Request:
    """Approve a PENDING request.

    Items not listed in ``approvals`` are granted their full requested qty.
    """

    ensure(actor, Operation.REQUEST_APPROVE)
    async with atomic(session):
        request = await get_request(session, request_id, for_update=True)
        _require_status(request, Status.PENDING, "approved")

        items_by_id = {item.id: item for item in request.items}
        granted: dict[uuid.UUID, Decimal] = {}
        for approval in approvals:
            item = items_by_id.get(approval.item_id)
            if item is None:
                raise NotFound(f"Item {approval.item_id} is not part of request {request.code}")
            if approval.qty_approved < 0:
                raise InvalidInput("Approved quantity cannot be negative")
            if approval.qty_approved > item.qty:
                raise InvalidInput(
                    f"Approved quantity for {item.material.name} ({approval.qty_approved}) "
                    f"exceeds the requested quantity ({item.qty})"
                )
            granted[item.id] = approval.qty_approved
        for item in request.items:
            item.qty_approved = granted.get(item.id, item.qty)

        await _transition(
            session,
            request,
            Status.PENDING,
            Status.APPROVED,
            processed_by_id=actor.id,
            processed_at=utcnow(),
        )
        activity.record(
            session,
            actor.id,
            activity.APPROVE_REQUEST,
            {
                "request_id": request.id,
                "code": request.code,
                "approved": [
                    {
                        "material": item.material.name,
                        "qty": item.qty,
                        "qty_approved": item.qty_approved,
                        "unit": item.material.unit,
                    }
                    for item in request.items
                ],
            },
        )
    _notify(notifier, notifications.request_approved(request.branch_id, request.code))
    return await get_request(session, request_id)


async def ship_request(
    session: AsyncSession,
    actor: Actor,
    request_id: uuid.UUID,
    *,
    notifier: notifications.Notifier | None = None,
) -> models.Request:
    """Ship an APPROVED request out of the central warehouse.

    Either every item's center stock is decremented and the request becomes
    SHIPPED, or :class:`InsufficientStock` is raised and nothing changes.
    """

    ensure(actor, Operation.REQUEST_SHIP)
    async with atomic(session):
        request = await get_request(session, request_id, for_update=True)
        _require_status(request, Status.APPROVED, "shipped")
        center = await directory.get_center_branch(session)

        await _transition(session, request, Status.APPROVED, Status.SHIPPED)
        for item in request.items:
            qty = item.effective_qty
            if qty > 0:
                await ledger.adjust(session, item.material_id, center.id, -qty)
        activity.record(
            session,
            actor.id,
            activity.SHIP_REQUEST,
            {
                "request_id": request.id,
                "code": request.code,
                "from_branch": center.name,
                "summary": _item_summary(request.items),
            },
        )
    _notify(notifier, notifications.request_shipped(request.branch_id, request.code))
    return await get_request(session, request_id)


async def receive_request(session: AsyncSession, actor: Actor, request_id: uuid.UUID) -> models.Request:
    async with atomic(session):
        request = await get_request(session, request_id, for_update=True)
        ensure(actor, Operation.REQUEST_RECEIVE, request.branch_id)
        _require_status(request, Status.SHIPPED, "received")

        await _transition(session, request, Status.SHIPPED, Status.RECEIVED)
        for item in request.items:
            qty = item.effective_qty
            if qty > 0:
                await ledger.adjust(session, item.material_id, request.branch_id, qty)
        activity.record(
            session,
            actor.id,
            activity.RECEIVE_REQUEST,
            {
                "request_id": request.id,
                "code": request.code,
                "received_items": _item_summary(request.items),
            },
        )
    return await get_request(session, request_id)


async def reject_request(
    session: AsyncSession,
    actor: Actor,
    request_id: uuid.UUID,
    reason: str,
    *,
    notifier: notifications.Notifier | None = None,
) -> models.Request:
    ensure(actor, Operation.REQUEST_REJECT)
    reason = reason.strip()
    if not reason:
        raise InvalidInput("A rejection reason is required")

    async with atomic(session):
        request = await get_request(session, request_id, for_update=True)
        _require_status(request, Status.PENDING, "rejected")
        note = f"REJECTED REASON: {reason}"
        await _transition(
            session,
            request,
            Status.PENDING,
            Status.REJECTED,
            processed_by_id=actor.id,
            processed_at=utcnow(),
            notes=f"{request.notes} | {note}" if request.notes else note,
        )
        activity.record(
            session,
            actor.id,
            activity.REJECT_REQUEST,
            {"request_id": request.id, "code": request.code, "reason": reason},
        )
    _notify(notifier, notifications.request_rejected(request.branch_id, request.code, reason))
    return await get_request(session, request_id)


async def find_request(session: AsyncSession, actor: Actor, request_id: uuid.UUID) -> models.Request:
    request = await get_request(session, request_id)
    ensure(actor, Operation.REQUEST_VIEW, request.branch_id)
    return request


async def list_requests(
    session: AsyncSession,
    actor: Actor,
    *,
    page: int,
    limit: int,
    status: Status | None = None,
    start_date: dt.date | None = None,
    end_date: dt.date | None = None,
    branch_id: uuid.UUID | None = None,
) -> Page:
    ensure(actor, Operation.REQUEST_VIEW)
    effective_branch = scoped_branch(actor, branch_id)

    conditions = []
    if effective_branch is not None:
        conditions.append(models.Request.branch_id == effective_branch)
    if status is not None:
        conditions.append(models.Request.status == status.value)
    if start_date is not None:
        conditions.append(models.Request.request_date >= dt.datetime.combine(start_date, dt.time.min))
    if end_date is not None:
        conditions.append(models.Request.request_date <= dt.datetime.combine(end_date, dt.time.max))

    query = (
        select(models.Request)
        .where(*conditions)
        .options(selectinload(models.Request.items))
        .order_by(models.Request.request_date.desc())
    )
    count_query = select(func.count()).select_from(models.Request).where(*conditions)
    return await paginate(session, query, count_query, page=page, limit=limit)
