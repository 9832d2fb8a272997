"""Outbound food distributions to schools and their container returns."""

from __future__ import annotations

import datetime as dt
import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import activity, directory, models, schemas
from .clock import utcnow
from .deps import atomic
from .errors import Forbidden, InvalidInput, NotFound
from .pagination import Page, paginate
from .rbac import Actor, Operation, ensure, scoped_branch

logger = logging.getLogger(__name__)

Status = models.DistributionStatus


def derive_return_status(returned_container: int, container_count: int) -> Status:
    """Status implied by how many of the sent containers have come back."""

    if returned_container == container_count:
        return Status.SELESAI
    if returned_container == 0:
        return Status.DIKIRIM
    return Status.WADAH_KEMBALI_SEBAGIAN


async def get_distribution(
    session: AsyncSession, distribution_id: uuid.UUID, *, for_update: bool = False
) -> models.Distribution:
    query = (
        select(models.Distribution)
        .where(models.Distribution.id == distribution_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update(of=models.Distribution)
    distribution = (await session.execute(query)).scalar_one_or_none()
    if distribution is None:
        raise NotFound("Distribution not found")
    return distribution


async def create_distribution(
    session: AsyncSession, actor: Actor, payload: schemas.DistributionCreate
) -> models.Distribution:
    ensure(actor, Operation.DISTRIBUTION_CREATE)
    branch = await session.get(models.Branch, actor.branch_id)
    if branch is None or not branch.is_active:
        raise Forbidden("Your branch is not valid or is inactive")
    if payload.container_count < 1:
        raise InvalidInput("At least one container must be sent")
    school = await directory.get_school(session, payload.school_id)
    if not school.is_active:
        raise NotFound("School not found or inactive")

    async with atomic(session):
        distribution = models.Distribution(
            branch_id=branch.id,
            school_id=school.id,
            courier_name=payload.courier_name,
            container_count=payload.container_count,
            returned_container=0,
            status=Status.DIKIRIM.value,
            sent_at=utcnow(),
        )
        session.add(distribution)
        await session.flush()
        activity.record(
            session,
            actor.id,
            activity.DISTRIBUTION_SENT,
            {
                "distribution_id": distribution.id,
                "school": school.name,
                "containers": payload.container_count,
                "courier": payload.courier_name,
            },
        )
    logger.info("Distribution %s sent to %s (%d containers)", distribution.id, school.name, payload.container_count)
    return await get_distribution(session, distribution.id)


async def update_return(
    session: AsyncSession, actor: Actor, distribution_id: uuid.UUID, returned_container: int
) -> models.Distribution:
    """Record the cumulative number of containers returned so far.

    The status is recomputed from scratch on every call, so repeating a call
    with the same count leaves the same state (an activity row is still
    written each time).
    """

    if returned_container < 0:
        raise InvalidInput("Returned containers cannot be negative")

    async with atomic(session):
        distribution = await get_distribution(session, distribution_id, for_update=True)
        ensure(actor, Operation.DISTRIBUTION_RETURN, distribution.branch_id)
        if returned_container > distribution.container_count:
            raise InvalidInput(
                f"Returned containers ({returned_container}) cannot exceed "
                f"containers sent ({distribution.container_count})"
            )

        status = derive_return_status(returned_container, distribution.container_count)
        distribution.returned_container = returned_container
        distribution.status = status.value
        distribution.returned_at = utcnow() if status == Status.SELESAI else None
        activity.record(
            session,
            actor.id,
            activity.DISTRIBUTION_RETURN_UPDATE,
            {
                "distribution_id": distribution.id,
                "sent": distribution.container_count,
                "returned": returned_container,
                "status": status.value,
            },
        )
    return await get_distribution(session, distribution_id)


async def find_distribution(session: AsyncSession, actor: Actor, distribution_id: uuid.UUID) -> models.Distribution:
    distribution = await get_distribution(session, distribution_id)
    ensure(actor, Operation.DISTRIBUTION_VIEW, distribution.branch_id)
    return distribution


async def list_distributions(
    session: AsyncSession,
    actor: Actor,
    *,
    page: int,
    limit: int,
    school_id: uuid.UUID | None = None,
    status: Status | None = None,
    date: dt.date | None = None,
) -> Page:
    ensure(actor, Operation.DISTRIBUTION_VIEW)
    effective_branch = scoped_branch(actor, None)

    conditions = []
    if effective_branch is not None:
        conditions.append(models.Distribution.branch_id == effective_branch)
    if school_id is not None:
        conditions.append(models.Distribution.school_id == school_id)
    if status is not None:
        conditions.append(models.Distribution.status == status.value)
    if date is not None:
        conditions.append(models.Distribution.sent_at >= dt.datetime.combine(date, dt.time.min))
        conditions.append(models.Distribution.sent_at <= dt.datetime.combine(date, dt.time.max))

    query = select(models.Distribution).where(*conditions).order_by(models.Distribution.sent_at.desc())
    count_query = select(func.count()).select_from(models.Distribution).where(*conditions)
    return await paginate(session, query, count_query, page=page, limit=limit)
