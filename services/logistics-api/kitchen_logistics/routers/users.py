import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import schemas, users
from ..auth import get_current_actor
from ..deps import get_session
from ..models import Role
from ..pagination import DEFAULT_LIMIT, MAX_LIMIT
from ..rbac import Actor

router = APIRouter()


@router.get("/", response_model=schemas.UserPage)
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    search: Optional[str] = Query(None),
    role: Optional[Role] = Query(None),
    branch_id: Optional[uuid.UUID] = Query(None, alias="branchId"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.UserPage:
    result = await users.list_users(
        session, actor, page=page, limit=limit, search=search, role=role, branch_id=branch_id
    )
    return schemas.UserPage(
        data=[schemas.UserResponse.model_validate(row) for row in result.items],
        meta=result.meta,
    )


@router.get("/{user_id}", response_model=schemas.UserResponse)
async def get_user(
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.UserResponse:
    return schemas.UserResponse.model_validate(await users.find_user(session, actor, user_id))


@router.post("/", response_model=schemas.UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(
    payload: schemas.UserCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.UserResponse:
    return schemas.UserResponse.model_validate(await users.create_user(session, actor, payload))


@router.patch("/{user_id}", response_model=schemas.UserResponse)
async def update_user(
    user_id: uuid.UUID,
    payload: schemas.UserUpdate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.UserResponse:
    return schemas.UserResponse.model_validate(await users.update_user(session, actor, user_id, payload))


@router.delete("/{user_id}", response_model=schemas.UserResponse)
async def deactivate_user(
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.UserResponse:
    return schemas.UserResponse.model_validate(await users.deactivate_user(session, actor, user_id))
