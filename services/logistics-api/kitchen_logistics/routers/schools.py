from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import directory, schemas
from ..auth import get_current_actor
from ..deps import get_session
from ..pagination import DEFAULT_LIMIT, MAX_LIMIT
from ..rbac import Actor, Operation, ensure

router = APIRouter()


@router.get("/", response_model=schemas.SchoolPage)
async def list_schools(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    only_active: bool = Query(False, alias="onlyActive"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.SchoolPage:
    ensure(actor, Operation.DIRECTORY_VIEW)
    result = await directory.list_schools(session, page=page, limit=limit, only_active=only_active)
    return schemas.SchoolPage(
        data=[schemas.SchoolResponse.model_validate(row) for row in result.items],
        meta=result.meta,
    )


@router.post("/", response_model=schemas.SchoolResponse, status_code=status.HTTP_201_CREATED)
async def create_school(
    payload: schemas.SchoolCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.SchoolResponse:
    return schemas.SchoolResponse.model_validate(await directory.create_school(session, actor, payload))
