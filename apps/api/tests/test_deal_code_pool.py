from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from riselocal_api.models import CouponRedemptionType, DealCode, DealCodeStatus
from riselocal_api.services.redemptions import (
    CouponCodeResult,
    FailureReason,
    PoolRedeemResult,
    RedemptionFailure,
    RedemptionService,
)


T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
POOL = CouponRedemptionType.PASS_UNIQUE_CODE_POOL


async def _pool_deal(make_deal, session_factory, vendor_id, codes=("SAVE-001", "SAVE-002"), **overrides):
    deal = await make_deal(coupon_redemption_type=POOL, **overrides)
    async with session_factory() as session:
        added = await RedemptionService(session).upload_pool_codes(deal.id, vendor_id, list(codes))
    assert added == len(codes)
    return deal


@pytest.mark.asyncio
async def test_upload_skips_blanks_and_duplicates(session_factory, seeded, make_deal) -> None:
    deal = await make_deal(coupon_redemption_type=POOL)

    async with session_factory() as session:
        service = RedemptionService(session)
        first = await service.upload_pool_codes(deal.id, seeded.vendor.id, ["A-100", " A-100 ", "", "  ", "B-200"])
        second = await service.upload_pool_codes(deal.id, seeded.vendor.id, ["B-200", "C-300"])
        stats = await service.pool_stats(deal.id, seeded.vendor.id)

    assert first == 2
    assert second == 1
    assert stats["AVAILABLE"] == 3
    assert stats["total"] == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("codes", [[], ["", "   "], ["X" * 51]])
async def test_upload_rejects_invalid_batches(session_factory, seeded, make_deal, codes) -> None:
    deal = await make_deal(coupon_redemption_type=POOL)

    async with session_factory() as session:
        with pytest.raises(ValueError):
            await RedemptionService(session).upload_pool_codes(deal.id, seeded.vendor.id, codes)


@pytest.mark.asyncio
async def test_upload_requires_owning_vendor(session_factory, seeded, make_deal) -> None:
    deal = await make_deal(coupon_redemption_type=POOL)

    async with session_factory() as session:
        result = await RedemptionService(session).upload_pool_codes(deal.id, seeded.other_vendor.id, ["A-100"])

    assert isinstance(result, RedemptionFailure)
    assert result.reason == FailureReason.UNAUTHORIZED


@pytest.mark.asyncio
async def test_member_claims_and_reuses_reservation(session_factory, seeded, make_deal) -> None:
    deal = await _pool_deal(make_deal, session_factory, seeded.vendor.id, code_reserve_minutes=20)

    async with session_factory() as session:
        service = RedemptionService(session)
        claimed = await service.claim_coupon_code(deal.id, seeded.member, now=T0)
        again = await service.claim_coupon_code(deal.id, seeded.member, now=T0 + timedelta(minutes=5))
        stats = await service.pool_stats(deal.id, seeded.vendor.id)

    assert isinstance(claimed, CouponCodeResult)
    assert claimed.type == "UNIQUE"
    assert claimed.code in {"SAVE-001", "SAVE-002"}
    assert claimed.expires_at == T0 + timedelta(minutes=20)
    assert claimed.reused is False
    assert again.reused is True
    assert again.code_id == claimed.code_id
    assert stats["RESERVED"] == 1
    assert stats["AVAILABLE"] == 1


@pytest.mark.asyncio
async def test_pool_requires_active_pass(session_factory, seeded, make_deal) -> None:
    deal = await _pool_deal(make_deal, session_factory, seeded.vendor.id)

    async with session_factory() as session:
        service = RedemptionService(session)
        shopper = await service.claim_coupon_code(deal.id, seeded.shopper, now=T0)
        anonymous = await service.claim_coupon_code(deal.id, None, now=T0)

    assert shopper.reason == FailureReason.MEMBERSHIP_REQUIRED
    assert anonymous.reason == FailureReason.MEMBERSHIP_REQUIRED


@pytest.mark.asyncio
async def test_vendor_redeems_reserved_code_once(session_factory, seeded, make_deal) -> None:
    deal = await _pool_deal(make_deal, session_factory, seeded.vendor.id)

    async with session_factory() as session:
        service = RedemptionService(session)
        claimed = await service.claim_coupon_code(deal.id, seeded.member, now=T0)
        redeemed = await service.redeem_pool_code(deal.id, seeded.vendor.id, claimed.code, now=T0 + timedelta(minutes=3))
        replay = await service.redeem_pool_code(deal.id, seeded.vendor.id, claimed.code, now=T0 + timedelta(minutes=4))
        foreign = await service.redeem_pool_code(deal.id, seeded.other_vendor.id, claimed.code, now=T0)
        unknown = await service.redeem_pool_code(deal.id, seeded.vendor.id, "NOPE", now=T0)

    assert isinstance(redeemed, PoolRedeemResult)
    assert redeemed.user_id == seeded.member.id
    assert redeemed.redeemed_at == T0 + timedelta(minutes=3)
    assert replay.reason == FailureReason.ALREADY_CONSUMED
    assert foreign.reason == FailureReason.UNAUTHORIZED
    assert unknown.reason == FailureReason.NOT_FOUND


@pytest.mark.asyncio
async def test_unclaimed_code_cannot_be_redeemed(session_factory, seeded, make_deal) -> None:
    deal = await _pool_deal(make_deal, session_factory, seeded.vendor.id)

    async with session_factory() as session:
        result = await RedemptionService(session).redeem_pool_code(deal.id, seeded.vendor.id, "SAVE-001", now=T0)

    assert result.reason == FailureReason.NOT_FOUND


@pytest.mark.asyncio
async def test_stale_reservation_cannot_be_redeemed(session_factory, seeded, make_deal) -> None:
    deal = await _pool_deal(make_deal, session_factory, seeded.vendor.id, code_reserve_minutes=30)

    async with session_factory() as session:
        service = RedemptionService(session)
        claimed = await service.claim_coupon_code(deal.id, seeded.member, now=T0)
        late = await service.redeem_pool_code(deal.id, seeded.vendor.id, claimed.code, now=T0 + timedelta(minutes=30))

    assert late.reason == FailureReason.EXPIRED


@pytest.mark.asyncio
async def test_user_cap_and_exhaustion(session_factory, seeded, make_deal) -> None:
    capped = await _pool_deal(make_deal, session_factory, seeded.vendor.id)
    single = await _pool_deal(
        make_deal,
        session_factory,
        seeded.vendor.id,
        codes=("ONLY-1",),
        title="Single code",
        max_redemptions_per_user=2,
    )

    async with session_factory() as session:
        service = RedemptionService(session)
        claimed = await service.claim_coupon_code(capped.id, seeded.member, now=T0)
        await service.redeem_pool_code(capped.id, seeded.vendor.id, claimed.code, now=T0)
        limited = await service.claim_coupon_code(capped.id, seeded.member, now=T0 + timedelta(minutes=1))

        only = await service.claim_coupon_code(single.id, seeded.member, now=T0)
        await service.redeem_pool_code(single.id, seeded.vendor.id, only.code, now=T0)
        exhausted = await service.claim_coupon_code(single.id, seeded.member, now=T0 + timedelta(minutes=1))

    assert limited.reason == FailureReason.LIMIT_EXCEEDED
    assert exhausted.reason == FailureReason.POOL_EXHAUSTED


@pytest.mark.asyncio
async def test_sweep_releases_reservations_back_to_pool(session_factory, seeded, make_deal) -> None:
    deal = await _pool_deal(make_deal, session_factory, seeded.vendor.id, code_reserve_minutes=30)

    async with session_factory() as session:
        service = RedemptionService(session)
        await service.claim_coupon_code(deal.id, seeded.member, now=T0)
        untouched = await service.sweep_pool_reservations(now=T0 + timedelta(minutes=29))
        swept = await service.sweep_pool_reservations(now=T0 + timedelta(minutes=30))
        stats = await service.pool_stats(deal.id, seeded.vendor.id)
        released = (
            await session.execute(
                select(DealCode)
                .where(DealCode.deal_id == deal.id, DealCode.status == DealCodeStatus.AVAILABLE)
                .execution_options(populate_existing=True)
            )
        ).scalars().all()

    assert untouched == {"released": 0, "expired": 0}
    assert swept == {"released": 1, "expired": 0}
    assert stats["AVAILABLE"] == 2
    assert all(code.assigned_to_user_id is None for code in released)


@pytest.mark.asyncio
async def test_sweep_expires_reservations_when_release_disabled(session_factory, seeded, make_deal) -> None:
    deal = await _pool_deal(
        make_deal,
        session_factory,
        seeded.vendor.id,
        code_reserve_minutes=30,
        release_expired_reservations=False,
    )

    async with session_factory() as session:
        service = RedemptionService(session)
        await service.claim_coupon_code(deal.id, seeded.member, now=T0)
        swept = await service.sweep_pool_reservations(now=T0 + timedelta(hours=1))
        stats = await service.pool_stats(deal.id, seeded.vendor.id)

    assert swept == {"released": 0, "expired": 1}
    assert stats["EXPIRED"] == 1
    assert stats["AVAILABLE"] == 1


@pytest.mark.asyncio
async def test_lapsed_reservation_is_replaced_on_next_claim(session_factory, seeded, make_deal) -> None:
    deal = await _pool_deal(make_deal, session_factory, seeded.vendor.id, codes=("ONLY-1",), code_reserve_minutes=10)

    async with session_factory() as session:
        service = RedemptionService(session)
        first = await service.claim_coupon_code(deal.id, seeded.member, now=T0)
        second = await service.claim_coupon_code(deal.id, seeded.member, now=T0 + timedelta(minutes=15))

    assert isinstance(second, CouponCodeResult)
    assert second.reused is False
    assert second.code == first.code
    assert second.expires_at == T0 + timedelta(minutes=25)


@pytest.mark.asyncio
async def test_static_code_flow(session_factory, seeded, make_deal) -> None:
    public = await make_deal(coupon_redemption_type=CouponRedemptionType.FREE_STATIC_CODE, static_code="BAKERY10")
    locked = await make_deal(
        title="Members static",
        coupon_redemption_type=CouponRedemptionType.FREE_STATIC_CODE,
        static_code="PASS20",
        is_pass_locked=True,
    )
    plain = await make_deal(title="No coupon")

    async with session_factory() as session:
        service = RedemptionService(session)
        shared = await service.claim_coupon_code(public.id, seeded.shopper, now=T0)
        denied = await service.claim_coupon_code(locked.id, seeded.shopper, now=T0)
        member = await service.claim_coupon_code(locked.id, seeded.member, now=T0)
        none = await service.claim_coupon_code(plain.id, seeded.member, now=T0)

    assert shared.type == "STATIC"
    assert shared.code == "BAKERY10"
    assert shared.code_id is None
    assert denied.reason == FailureReason.MEMBERSHIP_REQUIRED
    assert member.code == "PASS20"
    assert none.reason == FailureReason.NOT_FOUND
