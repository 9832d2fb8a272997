"""Branch-scoped stock ledger.

Every quantity change is a single UPDATE statement whose WHERE clause carries
the floor check, so concurrent decrements against one (material, branch)
pair serialize on the row lock and can never drive ``qty`` below zero. The
functions here never commit except :func:`set_absolute`, which is an
operation of its own; the lifecycle commits ledger changes together with the
status transition and audit row that caused them.
"""

from __future__ import annotations

import logging
import uuid
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import activity, directory, models
from .clock import utcnow
from .errors import Conflict, Forbidden, InsufficientStock, InvalidInput, NotFound
from .pagination import Page, paginate
from .rbac import Actor, Operation, ensure, scoped_branch

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _stock_key(material_id: uuid.UUID, branch_id: uuid.UUID):
    return (models.Stock.material_id == material_id, models.Stock.branch_id == branch_id)


async def get_stock(
    session: AsyncSession, material_id: uuid.UUID, branch_id: uuid.UUID, *, for_update: bool = False
) -> models.Stock | None:
    query = select(models.Stock).where(*_stock_key(material_id, branch_id)).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update(of=models.Stock)
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def _increment(session: AsyncSession, material_id: uuid.UUID, branch_id: uuid.UUID, qty: Decimal) -> None:
    bump = (
        update(models.Stock)
        .where(*_stock_key(material_id, branch_id))
        .values(qty=models.Stock.qty + qty, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(bump)
    if result.rowcount:
        return
    try:
        async with session.begin_nested():
            session.add(models.Stock(material_id=material_id, branch_id=branch_id, qty=qty, updated_at=utcnow()))
    except IntegrityError:
        # a concurrent receipt created the row between our UPDATE and INSERT
        await session.execute(bump)


async def _decrement(session: AsyncSession, material_id: uuid.UUID, branch_id: uuid.UUID, qty: Decimal) -> None:
    take = (
        update(models.Stock)
        .where(*_stock_key(material_id, branch_id), models.Stock.qty >= qty)
        .values(qty=models.Stock.qty - qty, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(take)
    if result.rowcount:
        return

    current = await get_stock(session, material_id, branch_id)
    available = current.qty if current is not None else ZERO
    material = await session.get(models.Material, material_id)
    label = material.name if material is not None else str(material_id)
    raise InsufficientStock(f"Insufficient stock for material {label}. Available: {available}")


async def adjust(session: AsyncSession, material_id: uuid.UUID, branch_id: uuid.UUID, delta: Decimal) -> None:
    """Apply ``delta`` to the (material, branch) record in the caller's transaction.

    Positive deltas create the record when it does not exist yet; negative
    deltas raise :class:`InsufficientStock` rather than going below zero.
    """

    delta = Decimal(delta)
    if delta > 0:
        await _increment(session, material_id, branch_id, delta)
    elif delta < 0:
        await _decrement(session, material_id, branch_id, -delta)


async def set_absolute(
    session: AsyncSession,
    actor: Actor,
    *,
    material_id: uuid.UUID,
    branch_id: uuid.UUID,
    qty: Decimal,
    reason: str | None = None,
) -> models.Stock:
    """Stock opname: overwrite the counted quantity and log the difference."""

    ensure(actor, Operation.STOCK_OPNAME, branch_id)
    qty = Decimal(qty)
    if qty < 0:
        raise InvalidInput("Stock quantity cannot be negative")

    material = await directory.get_material(session, material_id)
    branch = await directory.get_branch(session, branch_id)
    if not material.is_active:
        raise InvalidInput("Material is deactivated")
    if not branch.is_active:
        raise InvalidInput("Branch is deactivated")

    current = await get_stock(session, material_id, branch_id, for_update=True)
    if current is None and actor.role == models.Role.BRANCH_ADMIN:
        raise Forbidden(
            "No stock record exists for this branch yet. Branch admins may only correct "
            "existing stock; new stock must arrive through a request from the center."
        )
    if current is not None and current.qty == qty:
        return current

    old_qty = current.qty if current is not None else ZERO
    if current is None:
        session.add(models.Stock(material_id=material_id, branch_id=branch_id, qty=qty, updated_at=utcnow()))
    else:
        current.qty = qty
        current.updated_at = utcnow()

    activity.record(
        session,
        actor.id,
        activity.STOCK_OPNAME,
        {
            "branch": branch.name,
            "material": material.name,
            "reason": reason or "Manual Adjustment",
            "changes": {
                "from": old_qty,
                "to": qty,
                "difference": qty - old_qty,
                "type": "INITIALIZATION" if current is None else "ADJUSTMENT",
            },
        },
    )
    try:
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise Conflict("Stock record was created concurrently; retry the opname") from exc
    logger.info("Opname %s @ %s: %s -> %s", material.name, branch.name, old_qty, qty)

    stock = await get_stock(session, material_id, branch_id)
    assert stock is not None
    return stock


async def list_stock(
    session: AsyncSession,
    actor: Actor,
    *,
    page: int,
    limit: int,
    branch_id: uuid.UUID | None = None,
    search: str | None = None,
) -> Page:
    ensure(actor, Operation.STOCK_VIEW)
    effective_branch = scoped_branch(actor, branch_id)

    conditions = []
    if effective_branch is not None:
        conditions.append(models.Stock.branch_id == effective_branch)
    if search:
        conditions.append(models.Material.name.ilike(f"%{search}%"))

    query = (
        select(models.Stock)
        .join(models.Stock.material)
        .join(models.Stock.branch)
        .where(*conditions)
        .order_by(models.Branch.is_center.desc(), models.Material.name.asc())
    )
    count_query = select(func.count()).select_from(models.Stock).join(models.Stock.material).where(*conditions)
    return await paginate(session, query, count_query, page=page, limit=limit)


async def find_stock(session: AsyncSession, actor: Actor, stock_id: uuid.UUID) -> models.Stock:
    stock = await session.get(models.Stock, stock_id)
    if stock is None:
        raise NotFound("Stock record not found")
    ensure(actor, Operation.STOCK_VIEW, stock.branch_id)
    return stock
