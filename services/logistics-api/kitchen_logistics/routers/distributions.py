import datetime as dt
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import distribution as tracker
from .. import models, schemas
from ..auth import get_current_actor
from ..deps import get_session
from ..pagination import DEFAULT_LIMIT, MAX_LIMIT
from ..rbac import Actor

router = APIRouter()


def _build_distribution_response(row: models.Distribution) -> schemas.DistributionResponse:
    return schemas.DistributionResponse(
        id=row.id,
        branch_id=row.branch_id,
        branch_name=row.branch.name,
        school_id=row.school_id,
        school_name=row.school.name,
        courier_name=row.courier_name,
        container_count=row.container_count,
        returned_container=row.returned_container,
        status=row.status,
        sent_at=row.sent_at,
        returned_at=row.returned_at,
    )


@router.post("/", response_model=schemas.DistributionResponse, status_code=status.HTTP_201_CREATED)
async def create_distribution(
    payload: schemas.DistributionCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.DistributionResponse:
    return _build_distribution_response(await tracker.create_distribution(session, actor, payload))


@router.get("/", response_model=schemas.DistributionPage)
async def list_distributions(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    school_id: Optional[uuid.UUID] = Query(None, alias="schoolId"),
    status_filter: Optional[models.DistributionStatus] = Query(None, alias="status"),
    date: Optional[dt.date] = Query(None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.DistributionPage:
    result = await tracker.list_distributions(
        session, actor, page=page, limit=limit, school_id=school_id, status=status_filter, date=date
    )
    return schemas.DistributionPage(
        data=[_build_distribution_response(row) for row in result.items],
        meta=result.meta,
    )


@router.get("/{distribution_id}", response_model=schemas.DistributionResponse)
async def get_distribution(
    distribution_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.DistributionResponse:
    return _build_distribution_response(await tracker.find_distribution(session, actor, distribution_id))


@router.patch("/{distribution_id}/return", response_model=schemas.DistributionResponse)
async def update_return(
    distribution_id: uuid.UUID,
    payload: schemas.DistributionReturnUpdate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.DistributionResponse:
    row = await tracker.update_return(session, actor, distribution_id, payload.returned_container)
    return _build_distribution_response(row)
