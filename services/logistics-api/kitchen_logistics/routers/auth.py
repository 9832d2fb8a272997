from fastapi import APIRouter, Depends, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .. import activity
from .. import auth as auth_utils
from .. import models, schemas
from ..deps import get_session
from ..errors import api_error

router = APIRouter()


async def _register_login_attempt(
    session: AsyncSession,
    *,
    username: str,
    success: bool,
    user: models.User | None,
    detail: str | None = None,
) -> None:
    activity.record(
        session,
        user.id if user is not None else None,
        activity.LOGIN_SUCCESS if success else activity.LOGIN_FAILED,
        {"username": username, "success": success, "detail": detail},
    )
    await session.commit()


@router.post("/login", response_model=schemas.Token)
async def login(payload: schemas.LoginRequest, session: AsyncSession = Depends(get_session)) -> schemas.Token:
    result = await session.execute(select(models.User).where(models.User.username == payload.username))
    user = result.scalar_one_or_none()
    if user is None or not auth_utils.verify_password(payload.password, user.password_hash):
        await _register_login_attempt(
            session,
            username=payload.username,
            success=False,
            user=None,
            detail="Invalid credentials",
        )
        raise api_error(status.HTTP_401_UNAUTHORIZED, "auth.invalid_credentials", "Invalid credentials")
    if not user.is_active:
        await _register_login_attempt(
            session,
            username=payload.username,
            success=False,
            user=user,
            detail="Inactive user",
        )
        raise api_error(status.HTTP_403_FORBIDDEN, "auth.inactive_user", "Inactive user")
    await _register_login_attempt(session, username=payload.username, success=True, user=user)
    return schemas.Token(access_token=auth_utils.token_for(user))


@router.post("/refresh", response_model=schemas.Token)
async def refresh(user: models.User = Depends(auth_utils.get_current_user)) -> schemas.Token:
    return schemas.Token(access_token=auth_utils.token_for(user))


@router.get("/me", response_model=schemas.UserProfile)
async def me(user: models.User = Depends(auth_utils.get_current_user)) -> schemas.UserProfile:
    return schemas.UserProfile(
        id=user.id,
        username=user.username,
        name=user.name,
        email=user.email,
        role=user.role,
        branch_id=user.branch_id,
        active=user.is_active,
        created_at=user.created_at,
    )
