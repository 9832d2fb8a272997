"""Create the first central admin account.

Reads its credentials from the environment and is safe to run repeatedly::

    ADMIN_EMAIL=admin@example.org ADMIN_PASSWORD=... python -m kitchen_logistics.seed
"""

from __future__ import annotations

import asyncio
import logging
import os

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from . import activity, models
from .auth import get_password_hash
from .deps import SessionLocal, engine

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_USERNAME = "admin"
DEFAULT_ADMIN_NAME = "Super Admin Pusat"


async def ensure_admin(
    session: AsyncSession,
    *,
    username: str,
    email: str,
    password: str,
    name: str = DEFAULT_ADMIN_NAME,
) -> bool:
    """Create the central admin unless the username or email is taken; return whether it was created."""

    email = email.strip().lower()
    result = await session.execute(
        select(models.User.id)
        .where(or_(func.lower(models.User.username) == username.lower(), func.lower(models.User.email) == email))
        .limit(1)
    )
    if result.first() is not None:
        logger.info("Central admin %s already exists", email)
        return False

    admin = models.User(
        username=username,
        name=name,
        email=email,
        password_hash=get_password_hash(password),
        role=models.Role.CENTRAL_ADMIN.value,
        branch_id=None,
        is_active=True,
    )
    session.add(admin)
    await session.flush()
    activity.record(
        session,
        None,
        activity.CREATE_USER,
        {"user_id": admin.id, "username": username, "role": admin.role, "source": "seed"},
    )
    await session.commit()
    logger.info("Central admin %s created", email)
    return True


async def run_seed() -> bool:
    email = os.getenv("ADMIN_EMAIL", "")
    password = os.getenv("ADMIN_PASSWORD", "")
    if not email or not password:
        logger.error("ADMIN_EMAIL and ADMIN_PASSWORD must be set")
        raise SystemExit(1)

    async with engine.begin() as connection:
        await connection.run_sync(models.Base.metadata.create_all)
    async with SessionLocal() as session:
        return await ensure_admin(
            session,
            username=os.getenv("ADMIN_USERNAME", DEFAULT_ADMIN_USERNAME),
            email=email,
            password=password,
            name=os.getenv("ADMIN_NAME", DEFAULT_ADMIN_NAME),
        )


def main() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    asyncio.run(run_seed())


if __name__ == "__main__":
    main()
