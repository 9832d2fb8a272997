import asyncio
import os
import sys
import tempfile
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

import pytest

# Ensure the package is importable when running tests from the repo root
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

_DB_DIR = tempfile.mkdtemp(prefix="kitchen-logistics-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR}/test.db"
os.environ.setdefault("JWT_SECRET", "test-secret")

from kitchen_logistics import deps, ledger, models  # noqa: E402
from kitchen_logistics.rbac import Actor  # noqa: E402
from kitchen_logistics.models import Role  # noqa: E402


@dataclass
class World:
    center_id: uuid.UUID
    branch_id: uuid.UUID
    other_branch_id: uuid.UUID
    inactive_branch_id: uuid.UUID
    rice_id: uuid.UUID
    oil_id: uuid.UUID
    school_id: uuid.UUID
    central: Actor
    branch_admin: Actor
    other_admin: Actor
    courier: Actor
    stale_admin: Actor


class RecordingNotifier:
    def __init__(self):
        self.published = []

    def publish(self, notification):
        self.published.append(notification)


async def _reset_schema() -> None:
    async with deps.engine.begin() as connection:
        await connection.run_sync(models.Base.metadata.drop_all)
        await connection.run_sync(models.Base.metadata.create_all)


async def _seed() -> World:
    async with deps.SessionLocal() as session:
        center = models.Branch(name="Gudang Pusat", address="Jl. Pusat 1", is_center=True)
        branch = models.Branch(name="Dapur Cabang Utara")
        other = models.Branch(name="Dapur Cabang Selatan")
        inactive = models.Branch(name="Dapur Tutup", is_active=False)
        rice = models.Material(name="Beras", unit="kg")
        oil = models.Material(name="Minyak Goreng", unit="liter")
        school = models.School(name="SD Negeri 1", address="Jl. Sekolah 1")
        session.add_all([center, branch, other, inactive, rice, oil, school])
        await session.flush()

        def user(username, role, branch_id):
            return models.User(
                username=username,
                name=username.title(),
                email=f"{username}@example.test",
                password_hash="not-a-real-hash",
                role=role.value,
                branch_id=branch_id,
            )

        users = {
            "central": user("central", Role.CENTRAL_ADMIN, center.id),
            "north": user("north", Role.BRANCH_ADMIN, branch.id),
            "south": user("south", Role.BRANCH_ADMIN, other.id),
            "courier": user("courier", Role.COURIER, branch.id),
            "closed": user("closed", Role.BRANCH_ADMIN, inactive.id),
        }
        session.add_all(users.values())
        await session.commit()

        def actor(key):
            u = users[key]
            return Actor(id=u.id, role=Role(u.role), branch_id=u.branch_id)

        return World(
            center_id=center.id,
            branch_id=branch.id,
            other_branch_id=other.id,
            inactive_branch_id=inactive.id,
            rice_id=rice.id,
            oil_id=oil.id,
            school_id=school.id,
            central=actor("central"),
            branch_admin=actor("north"),
            other_admin=actor("south"),
            courier=actor("courier"),
            stale_admin=actor("closed"),
        )


@pytest.fixture()
def world() -> World:
    asyncio.run(_reset_schema())
    return asyncio.run(_seed())


@pytest.fixture()
def run():
    """Run ``fn(session, ...)`` on a fresh session and event loop."""

    def _run(fn, *args, **kwargs):
        async def _inner():
            async with deps.SessionLocal() as session:
                return await fn(session, *args, **kwargs)

        return asyncio.run(_inner())

    return _run


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def stock_at(run):
    """Current qty of a (material, branch) pair, or None without a record."""

    def _stock_at(material_id, branch_id):
        async def _read(session):
            stock = await ledger.get_stock(session, material_id, branch_id)
            return None if stock is None else Decimal(stock.qty)

        return run(_read)

    return _stock_at


@pytest.fixture()
def seed_stock(run):
    def _seed_stock(material_id, branch_id, qty):
        async def _write(session):
            await ledger.adjust(session, material_id, branch_id, Decimal(qty))
            await session.commit()

        run(_write)

    return _seed_stock
