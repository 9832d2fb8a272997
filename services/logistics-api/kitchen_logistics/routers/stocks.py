import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .. import ledger, models, schemas
from ..auth import get_current_actor
from ..deps import get_session
from ..pagination import DEFAULT_LIMIT, MAX_LIMIT
from ..rbac import Actor

router = APIRouter()


def _build_stock_entry(row: models.Stock) -> schemas.StockEntry:
    return schemas.StockEntry(
        id=row.id,
        material_id=row.material_id,
        material_name=row.material.name,
        unit=row.material.unit,
        branch_id=row.branch_id,
        branch_name=row.branch.name,
        is_center=row.branch.is_center,
        qty=row.qty,
        updated_at=row.updated_at,
    )


@router.get("/", response_model=schemas.StockPage)
async def list_stock(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    branch_id: Optional[uuid.UUID] = Query(None, alias="branchId"),
    search: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.StockPage:
    result = await ledger.list_stock(session, actor, page=page, limit=limit, branch_id=branch_id, search=search)
    return schemas.StockPage(data=[_build_stock_entry(row) for row in result.items], meta=result.meta)


@router.get("/{stock_id}", response_model=schemas.StockEntry)
async def get_stock(
    stock_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.StockEntry:
    return _build_stock_entry(await ledger.find_stock(session, actor, stock_id))


@router.post("/opname", response_model=schemas.StockEntry)
async def stock_opname(
    payload: schemas.StockOpnameRequest,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.StockEntry:
    stock = await ledger.set_absolute(
        session,
        actor,
        material_id=payload.material_id,
        branch_id=payload.branch_id,
        qty=payload.qty,
        reason=payload.reason,
    )
    return _build_stock_entry(stock)
