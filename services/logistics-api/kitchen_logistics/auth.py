import datetime as dt
import os
import uuid
from typing import Any, Optional

import bcrypt
from fastapi import Depends, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .clock import utcnow
from .deps import get_session
from .errors import api_error
from .rbac import Actor

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")

JWT_SECRET = os.getenv("JWT_SECRET", "changeme")
JWT_ALGORITHM = os.getenv("JWT_ALG", "HS256")
JWT_EXP_HOURS = int(os.getenv("JWT_EXP_HOURS", "8"))


class TokenData(BaseModel):
    user_id: str
    role: str


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        try:
            return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
        except ValueError:
            return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict[str, Any], expires_delta: Optional[dt.timedelta] = None) -> str:
    to_encode = data.copy()
    expire = utcnow() + (expires_delta or dt.timedelta(hours=JWT_EXP_HOURS))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, JWT_SECRET, algorithm=JWT_ALGORITHM)


def token_for(user: models.User) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role})


async def get_current_user(
    token: str = Depends(oauth2_scheme), session: AsyncSession = Depends(get_session)
) -> models.User:
    credentials_exception = api_error(
        status.HTTP_401_UNAUTHORIZED,
        "auth.invalid_token",
        "Invalid token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        data = TokenData(user_id=payload.get("sub") or "", role=payload.get("role") or "")
        if not data.user_id or not data.role:
            raise credentials_exception
    except JWTError as exc:
        raise credentials_exception from exc
    try:
        user_id = uuid.UUID(data.user_id)
    except ValueError as exc:
        raise credentials_exception from exc
    result = await session.execute(select(models.User).where(models.User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise credentials_exception
    if not user.is_active:
        raise api_error(status.HTTP_403_FORBIDDEN, "auth.inactive_user", "Inactive user")
    return user


async def get_current_actor(user: models.User = Depends(get_current_user)) -> Actor:
    """Reduce the authenticated user to the descriptor the services consume."""

    return Actor(id=user.id, role=models.Role(user.role), branch_id=user.branch_id)
