import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .. import activity, schemas
from ..auth import get_current_actor
from ..deps import get_session
from ..pagination import MAX_LIMIT
from ..rbac import Actor, Operation, ensure

router = APIRouter()


@router.get("/", response_model=schemas.AuditPage)
async def list_audit(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=MAX_LIMIT),
    action: Optional[str] = Query(None),
    user_id: Optional[uuid.UUID] = Query(None, alias="userId"),
    session: AsyncSession = Depends(get_session),
    actor: Actor = Depends(get_current_actor),
) -> schemas.AuditPage:
    ensure(actor, Operation.AUDIT_VIEW)
    result = await activity.list_activity(session, page=page, limit=limit, action=action, user_id=user_id)
    return schemas.AuditPage(
        data=[schemas.AuditEntry.model_validate(row) for row in result.items],
        meta=result.meta,
    )
