"""Seed a development vendor, shoppers and sample deals into the API database."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
import os
from typing import Any, TypedDict

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from riselocal_api.core.settings import settings
from riselocal_api.db.base import Base
from riselocal_api.models import CouponRedemptionType, Deal, DealCode, DealCodeStatus, User, Vendor


class SeedUser(TypedDict):
    email: str
    display_name: str
    is_pass_member: bool


DEV_USERS: list[SeedUser] = [
    {
        "email": os.getenv("SEED_OWNER_EMAIL", "owner@riselocal.dev").lower(),
        "display_name": "Corner Bakery Owner",
        "is_pass_member": False,
    },
    {
        "email": os.getenv("SEED_MEMBER_EMAIL", "member@riselocal.dev").lower(),
        "display_name": "Pass Member QA",
        "is_pass_member": True,
    },
    {
        "email": os.getenv("SEED_SHOPPER_EMAIL", "shopper@riselocal.dev").lower(),
        "display_name": "Shopper QA",
        "is_pass_member": False,
    },
]

VENDOR_NAME = "Corner Bakery"

DEV_DEALS: list[dict[str, Any]] = [
    {
        "title": "Free coffee with any pastry",
        "deal_type": "freebie",
        "claim_window_minutes": 10,
        "max_redemptions_per_user": 1,
    },
    {
        "title": "10% off every week",
        "deal_type": "percentage",
        "discount_value": "10",
        "redemption_frequency": "weekly",
    },
    {
        "title": "Members: half-price loaf",
        "deal_type": "percentage",
        "discount_value": "50",
        "is_pass_locked": True,
        "cooldown_hours": 24,
        "max_redemptions_per_user": 4,
    },
    {
        "title": "Online order code",
        "deal_type": "coupon",
        "is_pass_locked": True,
        "coupon_redemption_type": CouponRedemptionType.PASS_UNIQUE_CODE_POOL,
    },
]

POOL_CODES = [f"BAKERY-{index:04d}" for index in range(1, 21)]


async def _upsert_user(session: AsyncSession, seed: SeedUser, now: datetime) -> User:
    with session.no_autoflush:
        existing = await session.execute(select(User).where(User.email == seed["email"]))
    record = existing.scalar_one_or_none()
    pass_expiry = now + timedelta(days=365) if seed["is_pass_member"] else None
    if record:
        record.display_name = seed["display_name"]
        record.is_pass_member = seed["is_pass_member"]
        record.pass_expires_at = pass_expiry
        return record

    record = User(
        email=seed["email"],
        display_name=seed["display_name"],
        is_pass_member=seed["is_pass_member"],
        pass_expires_at=pass_expiry,
    )
    session.add(record)
    await session.flush()
    return record


async def seed_deals(session: AsyncSession) -> None:
    now = datetime.now(timezone.utc)
    users = [await _upsert_user(session, seed, now) for seed in DEV_USERS]
    owner = users[0]

    vendor = (await session.execute(select(Vendor).where(Vendor.name == VENDOR_NAME))).scalar_one_or_none()
    if vendor is None:
        vendor = Vendor(name=VENDOR_NAME, owner_user_id=owner.id, contact_email=owner.email, is_verified=True)
        session.add(vendor)
        await session.flush()

    for values in DEV_DEALS:
        existing = await session.execute(
            select(Deal).where(Deal.vendor_id == vendor.id, Deal.title == values["title"])
        )
        if existing.scalar_one_or_none() is not None:
            continue
        deal = Deal(vendor_id=vendor.id, **values)
        session.add(deal)
        await session.flush()
        if deal.coupon_redemption_type == CouponRedemptionType.PASS_UNIQUE_CODE_POOL:
            session.add_all(
                [DealCode(deal_id=deal.id, code=code, status=DealCodeStatus.AVAILABLE) for code in POOL_CODES]
            )

    await session.commit()


async def main() -> None:
    engine = create_async_engine(settings.database_url, future=True)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        if settings.database_url.startswith("sqlite"):
            async with engine.begin() as connection:
                await connection.run_sync(Base.metadata.create_all)
        async with session_factory() as session:
            await seed_deals(session)
        print("Development deals ready")
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
