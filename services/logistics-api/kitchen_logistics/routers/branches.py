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


@router.get("/", response_model=schemas.BranchPage)
async def list_branches(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    search: Optional[str] = Query(None),
    only_active: bool = Query(False, alias="onlyActive"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.BranchPage:
    ensure(actor, Operation.DIRECTORY_VIEW)
    result = await directory.list_branches(session, page=page, limit=limit, search=search, only_active=only_active)
    return schemas.BranchPage(
        data=[schemas.BranchResponse.model_validate(row) for row in result.items],
        meta=result.meta,
    )


@router.get("/{branch_id}", response_model=schemas.BranchResponse)
async def get_branch(
    branch_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.BranchResponse:
    ensure(actor, Operation.DIRECTORY_VIEW)
    return schemas.BranchResponse.model_validate(await directory.get_branch(session, branch_id))


@router.post("/", response_model=schemas.BranchResponse, status_code=status.HTTP_201_CREATED)
async def create_branch(
    payload: schemas.BranchCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.BranchResponse:
    return schemas.BranchResponse.model_validate(await directory.create_branch(session, actor, payload))


@router.patch("/{branch_id}", response_model=schemas.BranchResponse)
async def update_branch(
    branch_id: uuid.UUID,
    payload: schemas.BranchUpdate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.BranchResponse:
    return schemas.BranchResponse.model_validate(await directory.update_branch(session, actor, branch_id, payload))


@router.delete("/{branch_id}", response_model=schemas.BranchResponse)
async def delete_branch(
    branch_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.BranchResponse:
    return schemas.BranchResponse.model_validate(await directory.remove_branch(session, actor, branch_id))
