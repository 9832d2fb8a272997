"""User account maintenance.

Central admins manage every account. Branch admins manage the courier
accounts of their own branch. Accounts are never hard-deleted because audit
rows reference them; :func:`deactivate_user` flips ``is_active`` instead.
"""

from __future__ import annotations

import logging
import uuid

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import activity, directory, models, schemas
from .auth import get_password_hash
from .errors import Conflict, InvalidInput, NotFound
from .models import Role
from .pagination import Page, paginate
from .rbac import Actor, Operation, ensure, scoped_branch

logger = logging.getLogger(__name__)


def _manage_operation(role: Role) -> Operation:
    return Operation.COURIER_MANAGE if role == Role.COURIER else Operation.USER_MANAGE


def _view_operation(user: models.User) -> Operation:
    # accounts without a branch are only visible to those who may manage them
    return Operation.USER_VIEW if user.branch_id is not None else Operation.USER_MANAGE


async def get_user(session: AsyncSession, user_id: uuid.UUID) -> models.User:
    user = await session.get(models.User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


async def _ensure_unique(
    session: AsyncSession,
    *,
    username: str | None = None,
    email: str | None = None,
    exclude_id: uuid.UUID | None = None,
) -> None:
    checks = []
    if username:
        checks.append(("username", func.lower(models.User.username) == username.lower()))
    if email:
        checks.append(("email", func.lower(models.User.email) == email.lower()))
    for field, condition in checks:
        query = select(models.User.id).where(condition)
        if exclude_id is not None:
            query = query.where(models.User.id != exclude_id)
        result = await session.execute(query.limit(1))
        if result.first() is not None:
            raise Conflict(f"A user with this {field} already exists", code=f"conflict.duplicate_{field}")


async def _resolve_branch(session: AsyncSession, role: Role, branch_id: uuid.UUID | None) -> uuid.UUID | None:
    if role == Role.CENTRAL_ADMIN:
        return None
    if branch_id is None:
        raise InvalidInput("Branch admins and couriers must be assigned to a branch")
    branch = await directory.get_branch(session, branch_id)
    if not branch.is_active:
        raise InvalidInput("Branch is deactivated")
    return branch.id


def _normalize_email(email: str | None) -> str | None:
    if email is None:
        return None
    return email.strip().lower() or None


async def list_users(
    session: AsyncSession,
    actor: Actor,
    *,
    page: int,
    limit: int,
    search: str | None = None,
    role: Role | None = None,
    branch_id: uuid.UUID | None = None,
) -> Page:
    ensure(actor, Operation.USER_VIEW)
    effective_branch = scoped_branch(actor, branch_id)

    conditions = []
    if effective_branch is not None:
        conditions.append(models.User.branch_id == effective_branch)
    if role is not None:
        conditions.append(models.User.role == role.value)
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                models.User.name.ilike(pattern),
                models.User.username.ilike(pattern),
                models.User.email.ilike(pattern),
            )
        )
    query = select(models.User).where(*conditions).order_by(models.User.created_at.desc(), models.User.username)
    count_query = select(func.count()).select_from(models.User).where(*conditions)
    return await paginate(session, query, count_query, page=page, limit=limit)


async def find_user(session: AsyncSession, actor: Actor, user_id: uuid.UUID) -> models.User:
    user = await get_user(session, user_id)
    ensure(actor, _view_operation(user), user.branch_id)
    return user


async def create_user(session: AsyncSession, actor: Actor, payload: schemas.UserCreate) -> models.User:
    target_branch = None if payload.role == Role.CENTRAL_ADMIN else payload.branch_id
    ensure(actor, _manage_operation(payload.role), target_branch)

    username = payload.username.strip()
    name = payload.name.strip()
    if not username or not name:
        raise InvalidInput("Username and name are required")
    email = _normalize_email(payload.email)
    branch_id = await _resolve_branch(session, payload.role, target_branch)
    await _ensure_unique(session, username=username, email=email)

    user = models.User(
        username=username,
        name=name,
        email=email,
        password_hash=get_password_hash(payload.password),
        role=payload.role.value,
        branch_id=branch_id,
        is_active=True,
    )
    try:
        session.add(user)
        await session.flush()
        activity.record(
            session,
            actor.id,
            activity.CREATE_USER,
            {"user_id": user.id, "username": username, "role": user.role, "branch_id": branch_id},
        )
        await session.commit()
    except IntegrityError as exc:
        await session.rollback()
        raise Conflict("A user with this username already exists", code="conflict.duplicate_username") from exc
    logger.info("User %s created with role %s", username, user.role)
    return user


async def update_user(
    session: AsyncSession, actor: Actor, user_id: uuid.UUID, payload: schemas.UserUpdate
) -> models.User:
    user = await get_user(session, user_id)
    current_role = Role(user.role)
    ensure(actor, _manage_operation(current_role), user.branch_id)

    fields = payload.model_dump(exclude_unset=True)
    # null only clears the optional email; elsewhere it means "leave as is"
    changes = {field: value for field, value in fields.items() if value is not None or field == "email"}
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise InvalidInput("Name cannot be blank")
    if "email" in changes:
        changes["email"] = _normalize_email(changes["email"])
        await _ensure_unique(session, email=changes["email"], exclude_id=user.id)

    new_role = changes.get("role", current_role)
    if user.id == actor.id and (new_role != current_role or changes.get("is_active") is False):
        raise InvalidInput("You cannot change the role or deactivate your own account")
    if "role" in changes or "branch_id" in changes:
        requested_branch = changes.get("branch_id", user.branch_id)
        ensure(actor, _manage_operation(new_role), None if new_role == Role.CENTRAL_ADMIN else requested_branch)
        changes["branch_id"] = await _resolve_branch(session, new_role, requested_branch)
        changes["role"] = new_role.value

    password = changes.pop("password", None)
    before = {"name": user.name, "email": user.email, "role": user.role, "branch_id": user.branch_id, "is_active": user.is_active}
    for field, value in changes.items():
        setattr(user, field, value)
    if password is not None:
        user.password_hash = get_password_hash(password)

    activity.record(
        session,
        actor.id,
        activity.UPDATE_USER,
        {"user_id": user.id, "before": before, "after": changes, "password_changed": password is not None},
    )
    await session.commit()
    return user


async def deactivate_user(session: AsyncSession, actor: Actor, user_id: uuid.UUID) -> models.User:
    user = await get_user(session, user_id)
    ensure(actor, _manage_operation(Role(user.role)), user.branch_id)
    if user.id == actor.id:
        raise InvalidInput("You cannot deactivate your own account")
    if not user.is_active:
        return user

    user.is_active = False
    activity.record(session, actor.id, activity.DEACTIVATE_USER, {"user_id": user.id, "username": user.username})
    await session.commit()
    logger.info("User %s deactivated", user.username)
    return user
