"""Append-only activity log written inside the caller's transaction."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from pydantic_core import to_jsonable_python
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .clock import utcnow
from .pagination import Page, paginate

logger = logging.getLogger(__name__)

CREATE_REQUEST = "CREATE_REQUEST"
APPROVE_REQUEST = "APPROVE_REQUEST"
SHIP_REQUEST = "SHIP_REQUEST"
RECEIVE_REQUEST = "RECEIVE_REQUEST"
REJECT_REQUEST = "REJECT_REQUEST"
STOCK_OPNAME = "STOCK_OPNAME"
DISTRIBUTION_SENT = "DISTRIBUTION_SENT"
DISTRIBUTION_RETURN_UPDATE = "DISTRIBUTION_RETURN_UPDATE"
CREATE_BRANCH = "CREATE_BRANCH"
UPDATE_BRANCH = "UPDATE_BRANCH"
DELETE_BRANCH = "DELETE_BRANCH"
CREATE_MATERIAL = "CREATE_MATERIAL"
UPDATE_MATERIAL = "UPDATE_MATERIAL"
DELETE_MATERIAL = "DELETE_MATERIAL"
CREATE_SCHOOL = "CREATE_SCHOOL"
CREATE_USER = "CREATE_USER"
UPDATE_USER = "UPDATE_USER"
DEACTIVATE_USER = "DEACTIVATE_USER"
LOGIN_SUCCESS = "LOGIN_SUCCESS"
LOGIN_FAILED = "LOGIN_FAILED"


def record(session: AsyncSession, actor_id: uuid.UUID | None, action: str, details: dict[str, Any]) -> models.LogActivity:
    """Stage an audit row in ``session``.

    The row is flushed with the business change it documents, so a failing
    insert aborts the whole commit.
    """

    entry = models.LogActivity(
        user_id=actor_id,
        action=action,
        details=to_jsonable_python(details),
        timestamp=utcnow(),
    )
    session.add(entry)
    logger.debug("activity %s by %s staged", action, actor_id)
    return entry


async def list_activity(
    session: AsyncSession,
    *,
    page: int,
    limit: int,
    action: str | None = None,
    user_id: uuid.UUID | None = None,
) -> Page:
    conditions = []
    if action:
        conditions.append(models.LogActivity.action == action)
    if user_id:
        conditions.append(models.LogActivity.user_id == user_id)

    query = select(models.LogActivity).where(*conditions).order_by(models.LogActivity.timestamp.desc())
    count_query = select(func.count()).select_from(models.LogActivity).where(*conditions)
    return await paginate(session, query, count_query, page=page, limit=limit)
