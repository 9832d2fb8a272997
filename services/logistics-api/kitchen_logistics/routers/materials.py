import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import directory, schemas
from ..auth import get_current_actor
from ..deps import get_session
from ..pagination import DEFAULT_LIMIT, MAX_LIMIT
from ..rbac import Actor, Operation, ensure

router = APIRouter()


@router.get("/", response_model=schemas.MaterialPage)
async def list_materials(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    search: Optional[str] = Query(None),
    only_active: bool = Query(False, alias="onlyActive"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.MaterialPage:
    ensure(actor, Operation.DIRECTORY_VIEW)
    result = await directory.list_materials(session, page=page, limit=limit, search=search, only_active=only_active)
    return schemas.MaterialPage(
        data=[schemas.MaterialResponse.model_validate(row) for row in result.items],
        meta=result.meta,
    )


@router.get("/{material_id}", response_model=schemas.MaterialResponse)
async def get_material(
    material_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.MaterialResponse:
    ensure(actor, Operation.DIRECTORY_VIEW)
    return schemas.MaterialResponse.model_validate(await directory.get_material(session, material_id))


@router.post("/", response_model=schemas.MaterialResponse, status_code=status.HTTP_201_CREATED)
async def create_material(
    payload: schemas.MaterialCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.MaterialResponse:
    return schemas.MaterialResponse.model_validate(await directory.create_material(session, actor, payload))


@router.patch("/{material_id}", response_model=schemas.MaterialResponse)
async def update_material(
    material_id: uuid.UUID,
    payload: schemas.MaterialUpdate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.MaterialResponse:
    return schemas.MaterialResponse.model_validate(await directory.update_material(session, actor, material_id, payload))


@router.delete("/{material_id}", response_model=schemas.MaterialResponse)
async def delete_material(
    material_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.MaterialResponse:
    return schemas.MaterialResponse.model_validate(await directory.remove_material(session, actor, material_id))
