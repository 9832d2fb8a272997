"""Routers for the material request lifecycle."""

import datetime as dt
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .. import lifecycle, models, schemas
from ..auth import get_current_actor
from ..deps import get_notifier, get_session
from ..pagination import DEFAULT_LIMIT, MAX_LIMIT
from ..rbac import Actor

router = APIRouter()


def _build_request_response(request: models.Request) -> schemas.RequestResponse:
    return schemas.RequestResponse(
        id=request.id,
        code=request.code,
        branch_id=request.branch_id,
        branch_name=request.branch.name,
        status=request.status,
        notes=request.notes,
        processed_by_id=request.processed_by_id,
        processed_by_name=request.processed_by.name if request.processed_by else None,
        processed_at=request.processed_at,
        request_date=request.request_date,
        items=[
            schemas.RequestItemResponse(
                id=item.id,
                material_id=item.material_id,
                material_name=item.material.name,
                unit=item.material.unit,
                qty=item.qty,
                qty_approved=item.qty_approved,
                effective_qty=item.effective_qty,
            )
            for item in request.items
        ],
    )


@router.post("/", response_model=schemas.RequestResponse, status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: schemas.RequestCreate,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.RequestResponse:
    request = await lifecycle.create_request(session, actor, payload)
    return _build_request_response(request)


@router.get("/", response_model=schemas.RequestPage)
async def list_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=MAX_LIMIT),
    status_filter: Optional[models.RequestStatus] = Query(None, alias="status"),
    start_date: Optional[dt.date] = Query(None, alias="startDate"),
    end_date: Optional[dt.date] = Query(None, alias="endDate"),
    branch_id: Optional[uuid.UUID] = Query(None, alias="branchId"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.RequestPage:
    result = await lifecycle.list_requests(
        session,
        actor,
        page=page,
        limit=limit,
        status=status_filter,
        start_date=start_date,
        end_date=end_date,
        branch_id=branch_id,
    )
    return schemas.RequestPage(data=[_build_request_response(r) for r in result.items], meta=result.meta)


@router.get("/{request_id}", response_model=schemas.RequestResponse)
async def get_request(
    request_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.RequestResponse:
    request = await lifecycle.find_request(session, actor, request_id)
    return _build_request_response(request)


@router.patch("/{request_id}/approve", response_model=schemas.RequestResponse)
async def approve_request(
    request_id: uuid.UUID,
    payload: schemas.RequestApprove,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    notifier=Depends(get_notifier),
) -> schemas.RequestResponse:
    request = await lifecycle.approve_request(session, actor, request_id, payload.items, notifier=notifier)
    return _build_request_response(request)


@router.patch("/{request_id}/ship", response_model=schemas.RequestResponse)
async def ship_request(
    request_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    notifier=Depends(get_notifier),
) -> schemas.RequestResponse:
    request = await lifecycle.ship_request(session, actor, request_id, notifier=notifier)
    return _build_request_response(request)


@router.patch("/{request_id}/receive", response_model=schemas.RequestResponse)
async def receive_request(
    request_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.RequestResponse:
    request = await lifecycle.receive_request(session, actor, request_id)
    return _build_request_response(request)


@router.patch("/{request_id}/reject", response_model=schemas.RequestResponse)
async def reject_request(
    request_id: uuid.UUID,
    payload: schemas.RequestReject,
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
    notifier=Depends(get_notifier),
) -> schemas.RequestResponse:
    request = await lifecycle.reject_request(session, actor, request_id, payload.reason, notifier=notifier)
    return _build_request_response(request)
