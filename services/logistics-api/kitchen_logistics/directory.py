"""Branch, material and school lookups plus their admin maintenance.

Records referenced by ledger or lifecycle rows are never hard-deleted; they
are deactivated through ``update`` instead.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import activity, models, schemas
from .errors import Conflict, InvalidInput, NotFound
from .pagination import Page, paginate
from .rbac import Actor, Operation, ensure

logger = logging.getLogger(__name__)


async def get_branch(session: AsyncSession, branch_id: uuid.UUID) -> models.Branch:
    branch = await session.get(models.Branch, branch_id)
    if branch is None:
        raise NotFound("Branch not found")
    return branch


async def get_center_branch(session: AsyncSession) -> models.Branch:
    result = await session.execute(select(models.Branch).where(models.Branch.is_center.is_(True)))
    center = result.scalar_one_or_none()
    if center is None:
        raise NotFound("Central warehouse branch is not configured")
    return center


async def get_material(session: AsyncSession, material_id: uuid.UUID) -> models.Material:
    material = await session.get(models.Material, material_id)
    if material is None:
        raise NotFound("Material not found")
    return material


async def get_school(session: AsyncSession, school_id: uuid.UUID) -> models.School:
    school = await session.get(models.School, school_id)
    if school is None:
        raise NotFound("School not found")
    return school


async def _exists(session: AsyncSession, query) -> bool:
    result = await session.execute(query.limit(1))
    return result.first() is not None


async def _ensure_unique_name(
    session: AsyncSession, model, label: str, name: str, exclude_id: uuid.UUID | None = None
) -> None:
    query = select(model.id).where(func.lower(model.name) == name.strip().lower())
    if exclude_id is not None:
        query = query.where(model.id != exclude_id)
    if await _exists(session, query):
        raise Conflict(f"A {label} named \"{name}\" already exists", code="conflict.duplicate_name")


async def _ensure_single_center(session: AsyncSession, exclude_id: uuid.UUID | None = None) -> None:
    query = select(models.Branch.id).where(models.Branch.is_center.is_(True))
    if exclude_id is not None:
        query = query.where(models.Branch.id != exclude_id)
    if await _exists(session, query):
        raise Conflict("A central warehouse branch already exists", code="conflict.center_exists")


def _changes(payload, *, nullable: tuple[str, ...] = ()) -> dict:
    """Fields sent in ``payload``; an explicit null only counts for nullable columns."""

    changes = {
        field: value
        for field, value in payload.model_dump(exclude_unset=True).items()
        if value is not None or field in nullable
    }
    if "name" in changes:
        changes["name"] = changes["name"].strip()
        if not changes["name"]:
            raise InvalidInput("Name cannot be blank")
    return changes


@asynccontextmanager
async def _unique_write(session: AsyncSession, detail: str, code: str) -> AsyncIterator[None]:
    # unique indexes catch what the pre-checks miss under concurrent writes
    try:
        yield
    except IntegrityError as exc:
        await session.rollback()
        raise Conflict(detail, code=code) from exc


# Branches


async def list_branches(
    session: AsyncSession, *, page: int, limit: int, search: str | None = None, only_active: bool = False
) -> Page:
    conditions = []
    if only_active:
        conditions.append(models.Branch.is_active.is_(True))
    if search:
        conditions.append(models.Branch.name.ilike(f"%{search}%"))
    query = (
        select(models.Branch)
        .where(*conditions)
        .order_by(models.Branch.is_center.desc(), models.Branch.name.asc())
    )
    count_query = select(func.count()).select_from(models.Branch).where(*conditions)
    return await paginate(session, query, count_query, page=page, limit=limit)


async def create_branch(session: AsyncSession, actor: Actor, payload: schemas.BranchCreate) -> models.Branch:
    ensure(actor, Operation.DIRECTORY_MANAGE)
    name = payload.name.strip()
    if not name:
        raise InvalidInput("Branch name is required")
    await _ensure_unique_name(session, models.Branch, "branch", name)
    if payload.is_center:
        await _ensure_single_center(session)

    branch = models.Branch(
        name=name,
        address=payload.address,
        is_center=payload.is_center,
        is_active=payload.is_active,
    )
    async with _unique_write(session, f"A branch named \"{name}\" or another center branch already exists", "conflict"):
        session.add(branch)
        await session.flush()
        activity.record(session, actor.id, activity.CREATE_BRANCH, {"id": branch.id, "name": branch.name})
        await session.commit()
    logger.info("Branch %s created", branch.name)
    return branch


async def update_branch(
    session: AsyncSession, actor: Actor, branch_id: uuid.UUID, payload: schemas.BranchUpdate
) -> models.Branch:
    ensure(actor, Operation.DIRECTORY_MANAGE)
    branch = await get_branch(session, branch_id)
    changes = _changes(payload, nullable=("address",))
    if changes.get("name"):
        await _ensure_unique_name(session, models.Branch, "branch", changes["name"], exclude_id=branch.id)
    if changes.get("is_center"):
        await _ensure_single_center(session, exclude_id=branch.id)

    before = {"name": branch.name, "address": branch.address, "is_center": branch.is_center, "is_active": branch.is_active}
    for field, value in changes.items():
        setattr(branch, field, value)
    activity.record(session, actor.id, activity.UPDATE_BRANCH, {"id": branch.id, "updates": changes, "before": before})
    async with _unique_write(session, "Branch conflicts with an existing branch name or center", "conflict"):
        await session.commit()
    return branch


async def remove_branch(session: AsyncSession, actor: Actor, branch_id: uuid.UUID) -> models.Branch:
    ensure(actor, Operation.DIRECTORY_MANAGE)
    branch = await get_branch(session, branch_id)
    if await _exists(session, select(models.User.id).where(models.User.branch_id == branch.id)):
        raise Conflict("Branch still has registered users; deactivate it instead")
    dependents = (
        select(models.Stock.id).where(models.Stock.branch_id == branch.id),
        select(models.Request.id).where(models.Request.branch_id == branch.id),
        select(models.Distribution.id).where(models.Distribution.branch_id == branch.id),
    )
    for query in dependents:
        if await _exists(session, query):
            raise Conflict("Branch has stock or transaction history; deactivate it instead")

    await session.delete(branch)
    activity.record(session, actor.id, activity.DELETE_BRANCH, {"name": branch.name, "deleted_id": branch.id})
    await session.commit()
    return branch


# Materials


async def list_materials(
    session: AsyncSession, *, page: int, limit: int, search: str | None = None, only_active: bool = False
) -> Page:
    conditions = []
    if only_active:
        conditions.append(models.Material.is_active.is_(True))
    if search:
        conditions.append(models.Material.name.ilike(f"%{search}%"))
    query = select(models.Material).where(*conditions).order_by(models.Material.name.asc())
    count_query = select(func.count()).select_from(models.Material).where(*conditions)
    return await paginate(session, query, count_query, page=page, limit=limit)


async def create_material(session: AsyncSession, actor: Actor, payload: schemas.MaterialCreate) -> models.Material:
    ensure(actor, Operation.DIRECTORY_MANAGE)
    name = payload.name.strip()
    if not name:
        raise InvalidInput("Material name is required")
    await _ensure_unique_name(session, models.Material, "material", name)
    material = models.Material(name=name, unit=payload.unit.strip(), is_active=payload.is_active)
    async with _unique_write(session, f"A material named \"{name}\" already exists", "conflict.duplicate_name"):
        session.add(material)
        await session.flush()
        activity.record(session, actor.id, activity.CREATE_MATERIAL, {"material_id": material.id, "name": material.name})
        await session.commit()
    return material


async def update_material(
    session: AsyncSession, actor: Actor, material_id: uuid.UUID, payload: schemas.MaterialUpdate
) -> models.Material:
    ensure(actor, Operation.DIRECTORY_MANAGE)
    material = await get_material(session, material_id)
    changes = _changes(payload)
    if changes.get("name"):
        await _ensure_unique_name(session, models.Material, "material", changes["name"], exclude_id=material.id)

    before = {"name": material.name, "unit": material.unit, "active": material.is_active}
    for field, value in changes.items():
        setattr(material, field, value)
    activity.record(
        session,
        actor.id,
        activity.UPDATE_MATERIAL,
        {"material_id": material.id, "before": before, "after": changes},
    )
    async with _unique_write(session, f"A material named \"{material.name}\" already exists", "conflict.duplicate_name"):
        await session.commit()
    return material


async def remove_material(session: AsyncSession, actor: Actor, material_id: uuid.UUID) -> models.Material:
    ensure(actor, Operation.DIRECTORY_MANAGE)
    material = await get_material(session, material_id)
    referenced = await _exists(
        session, select(models.Stock.id).where(models.Stock.material_id == material.id)
    ) or await _exists(session, select(models.RequestItem.id).where(models.RequestItem.material_id == material.id))
    if referenced:
        raise Conflict(
            "Material has stock or request history and cannot be deleted; deactivate it instead",
            code="conflict.referenced",
        )

    await session.delete(material)
    activity.record(session, actor.id, activity.DELETE_MATERIAL, {"name": material.name})
    await session.commit()
    return material


# Schools


async def list_schools(session: AsyncSession, *, page: int, limit: int, only_active: bool = False) -> Page:
    conditions = [models.School.is_active.is_(True)] if only_active else []
    query = select(models.School).where(*conditions).order_by(models.School.name.asc())
    count_query = select(func.count()).select_from(models.School).where(*conditions)
    return await paginate(session, query, count_query, page=page, limit=limit)


async def create_school(session: AsyncSession, actor: Actor, payload: schemas.SchoolCreate) -> models.School:
    ensure(actor, Operation.DIRECTORY_MANAGE)
    if not payload.name.strip():
        raise InvalidInput("School name is required")
    school = models.School(name=payload.name.strip(), address=payload.address, is_active=payload.is_active)
    session.add(school)
    await session.flush()
    activity.record(session, actor.id, activity.CREATE_SCHOOL, {"school_id": school.id, "name": school.name})
    await session.commit()
    return school
