from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Select
from sqlalchemy.ext.asyncio import AsyncSession

DEFAULT_LIMIT = 10
MAX_LIMIT = 100


class PageMeta(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total: int
    page: int
    limit: int
    last_page: int = Field(alias="lastPage")
    has_next_page: bool = Field(alias="hasNextPage")
    has_prev_page: bool = Field(alias="hasPrevPage")


def build_meta(total: int, page: int, limit: int) -> PageMeta:
    last_page = math.ceil(total / limit) if limit else 0
    return PageMeta(
        total=total,
        page=page,
        limit=limit,
        last_page=last_page,
        has_next_page=page < last_page,
        has_prev_page=page > 1,
    )


@dataclass
class Page:
    items: list[Any]
    meta: PageMeta


async def paginate(session: AsyncSession, query: Select, count_query: Select, *, page: int, limit: int) -> Page:
    offset = (page - 1) * limit
    result = await session.execute(query.offset(offset).limit(limit))
    total = (await session.execute(count_query)).scalar_one()
    return Page(items=list(result.scalars().unique().all()), meta=build_meta(total, page, limit))
