import os
import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TRACING_ENABLED", "false")

from riselocal_api import models  # noqa: E402,F401
from riselocal_api.app import create_app  # noqa: E402
from riselocal_api.db.base import Base  # noqa: E402
from riselocal_api.db.session import get_session  # noqa: E402
from riselocal_api.models import Deal, User, Vendor  # noqa: E402
from riselocal_api.observability.redemptions import get_redemption_store  # noqa: E402


@dataclass
class Seeded:
    owner: User
    vendor: Vendor
    other_vendor: Vendor
    member: User
    shopper: User


DealFactory = Callable[..., Awaitable[Deal]]


async def _create_all(engine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@pytest.fixture(autouse=True)
def reset_redemption_store():
    get_redemption_store().reset()
    yield
    get_redemption_store().reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    await _create_all(engine)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """File-backed database so concurrent sessions get their own connections."""

    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'redemptions.db'}",
        future=True,
        connect_args={"timeout": 30},
    )
    await _create_all(engine)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


async def _seed(factory) -> Seeded:
    async with factory() as session:
        owner = User(email="owner@example.com", display_name="Bakery Owner")
        member = User(
            email="member@example.com",
            display_name="Pass Member",
            is_pass_member=True,
            pass_expires_at=datetime(2099, 1, 1, tzinfo=timezone.utc),
        )
        shopper = User(email="shopper@example.com", display_name="Shopper")
        session.add_all([owner, member, shopper])
        await session.flush()
        vendor = Vendor(name="Corner Bakery", owner_user_id=owner.id, contact_email="bakery@example.com")
        other_vendor = Vendor(name="Book Nook", contact_email="books@example.com")
        session.add_all([vendor, other_vendor])
        await session.commit()
        return Seeded(owner=owner, vendor=vendor, other_vendor=other_vendor, member=member, shopper=shopper)


def _deal_factory(factory, vendor_id) -> DealFactory:
    async def create(**overrides: Any) -> Deal:
        values: dict[str, Any] = {"vendor_id": vendor_id, "title": "Free coffee"}
        values.update(overrides)
        async with factory() as session:
            deal = Deal(**values)
            session.add(deal)
            await session.commit()
            return deal

    return create


@pytest_asyncio.fixture
async def seeded(session_factory) -> Seeded:
    return await _seed(session_factory)


@pytest_asyncio.fixture
async def make_deal(session_factory, seeded) -> DealFactory:
    return _deal_factory(session_factory, seeded.vendor.id)


@pytest_asyncio.fixture
async def file_seeded(file_session_factory) -> Seeded:
    return await _seed(file_session_factory)


@pytest_asyncio.fixture
async def make_file_deal(file_session_factory, file_seeded) -> DealFactory:
    return _deal_factory(file_session_factory, file_seeded.vendor.id)
