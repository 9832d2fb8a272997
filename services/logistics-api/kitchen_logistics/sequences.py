"""Atomic counters backing human-readable document codes."""

from __future__ import annotations

import datetime as dt
import logging
import os

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from . import models

logger = logging.getLogger(__name__)

# "global" keeps one counter for every request ever created; "daily" restarts
# the numbering each day.
REQUEST_CODE_SCOPE = os.getenv("REQUEST_CODE_SCOPE", "global")


async def next_value(session: AsyncSession, name: str, *, seed: int = 0) -> int:
    """Increment counter ``name`` inside the caller's transaction and return it.

    The increment is a single UPDATE, so the row lock it takes serializes
    concurrent callers until the surrounding transaction ends. A missing
    counter starts at ``seed + 1``.
    """

    bump = (
        update(models.SequenceCounter)
        .where(models.SequenceCounter.name == name)
        .values(value=models.SequenceCounter.value + 1)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(bump)
    if result.rowcount == 0:
        try:
            async with session.begin_nested():
                session.add(models.SequenceCounter(name=name, value=seed + 1))
        except IntegrityError:
            # another transaction created the counter first
            await session.execute(bump)
    value = await session.execute(select(models.SequenceCounter.value).where(models.SequenceCounter.name == name))
    return value.scalar_one()


def format_request_code(day: dt.date, number: int) -> str:
    return f"REQ-{day:%Y%m%d}-{number:04d}"


async def next_request_code(session: AsyncSession, day: dt.date) -> str:
    if REQUEST_CODE_SCOPE == "daily":
        number = await next_value(session, f"request_code:{day:%Y%m%d}")
    else:
        # continue from existing requests when the counter is first created
        existing = (await session.execute(select(func.count()).select_from(models.Request))).scalar_one()
        number = await next_value(session, "request_code", seed=existing)
    code = format_request_code(day, number)
    logger.debug("allocated request code %s", code)
    return code
