import asyncio
from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from riselocal_api.models import DealRedemption, RedemptionKind
from riselocal_api.services.redemptions import (
    FailureReason,
    RedeemResult,
    RedemptionFailure,
    RedemptionService,
)


MONDAY = datetime(2026, 10, 19, 9, 30, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_button_redemption_is_recorded_as_redeemed(session_factory, seeded, make_deal) -> None:
    deal = await make_deal(title="Half-price pastry", redemption_frequency="unlimited")

    async with session_factory() as session:
        result = await RedemptionService(session).redeem(deal.id, seeded.shopper, "qr", now=MONDAY)

    assert isinstance(result, RedeemResult)
    assert result.redemption.status == "redeemed"
    assert result.redemption.kind == RedemptionKind.BUTTON
    assert result.redemption.source == "qr"
    assert result.redemption.redeemed_at == MONDAY
    assert result.deal_title == "Half-price pastry"
    assert result.vendor_name == "Corner Bakery"


@pytest.mark.asyncio
async def test_scenario_weekly_frequency_window(session_factory, seeded, make_deal) -> None:
    deal = await make_deal(redemption_frequency="weekly")

    async with session_factory() as session:
        service = RedemptionService(session)
        first = await service.redeem(deal.id, seeded.shopper, now=MONDAY)
        assert isinstance(first, RedeemResult)

        wednesday = MONDAY + timedelta(days=2)
        blocked = await service.redeem(deal.id, seeded.shopper, now=wednesday)
        assert isinstance(blocked, RedemptionFailure)
        assert blocked.reason == FailureReason.FREQUENCY_WINDOW_ACTIVE
        assert blocked.retry_after == timedelta(days=5)

        later = await service.redeem(deal.id, seeded.shopper, now=MONDAY + timedelta(days=8))
        assert isinstance(later, RedeemResult)


@pytest.mark.asyncio
async def test_once_frequency_blocks_repeat_taps(session_factory, seeded, make_deal) -> None:
    deal = await make_deal()

    async with session_factory() as session:
        service = RedemptionService(session)
        await service.redeem(deal.id, seeded.shopper, now=MONDAY)
        repeat = await service.redeem(deal.id, seeded.shopper, now=MONDAY + timedelta(days=365))

    assert repeat.reason == FailureReason.FREQUENCY_WINDOW_ACTIVE
    assert repeat.retry_after is None


@pytest.mark.asyncio
async def test_custom_frequency_uses_configured_days(session_factory, seeded, make_deal) -> None:
    deal = await make_deal(redemption_frequency="custom", custom_redemption_days=3)

    async with session_factory() as session:
        service = RedemptionService(session)
        await service.redeem(deal.id, seeded.shopper, now=MONDAY)
        blocked = await service.redeem(deal.id, seeded.shopper, now=MONDAY + timedelta(days=2))
        allowed = await service.redeem(deal.id, seeded.shopper, now=MONDAY + timedelta(days=3))

    assert blocked.reason == FailureReason.FREQUENCY_WINDOW_ACTIVE
    assert isinstance(allowed, RedeemResult)


@pytest.mark.asyncio
async def test_global_cap_applies_to_button_redemptions(session_factory, seeded, make_deal) -> None:
    deal = await make_deal(redemption_frequency="unlimited", max_redemptions_total=1)

    async with session_factory() as session:
        service = RedemptionService(session)
        first = await service.redeem(deal.id, seeded.shopper, now=MONDAY)
        second = await service.redeem(deal.id, seeded.member, now=MONDAY + timedelta(minutes=1))

    assert isinstance(first, RedeemResult)
    assert second.reason == FailureReason.LIMIT_EXCEEDED


@pytest.mark.asyncio
async def test_redeem_gates_membership_and_sign_in(session_factory, seeded, make_deal) -> None:
    locked = await make_deal(is_pass_locked=True)
    public = await make_deal(title="Public")

    async with session_factory() as session:
        service = RedemptionService(session)
        denied = await service.redeem(locked.id, seeded.shopper, now=MONDAY)
        anonymous = await service.redeem(public.id, None, now=MONDAY)
        missing = await service.redeem(uuid4(), seeded.shopper, now=MONDAY)
        member = await service.redeem(locked.id, seeded.member, now=MONDAY)

    assert denied.reason == FailureReason.MEMBERSHIP_REQUIRED
    assert anonymous.reason == FailureReason.UNAUTHORIZED
    assert missing.reason == FailureReason.NOT_FOUND
    assert isinstance(member, RedeemResult)


@pytest.mark.asyncio
async def test_redeem_rejects_inactive_and_ended_deals(session_factory, seeded, make_deal) -> None:
    inactive = await make_deal(is_active=False)
    ended = await make_deal(ends_at=MONDAY - timedelta(hours=1))

    async with session_factory() as session:
        service = RedemptionService(session)
        assert (await service.redeem(inactive.id, seeded.shopper, now=MONDAY)).reason == FailureReason.INACTIVE_DEAL
        assert (await service.redeem(ended.id, seeded.shopper, now=MONDAY)).reason == (
            FailureReason.OUTSIDE_AVAILABILITY_WINDOW
        )


@pytest.mark.asyncio
async def test_can_redeem_mirrors_redeem_without_writing(session_factory, seeded, make_deal) -> None:
    deal = await make_deal(redemption_frequency="weekly")
    locked = await make_deal(title="Members only", is_pass_locked=True)

    async with session_factory() as session:
        service = RedemptionService(session)
        before = await service.can_redeem(deal.id, seeded.shopper, now=MONDAY)
        assert before.can_redeem is True
        assert before.reason is None

        again = await service.can_redeem(deal.id, seeded.shopper, now=MONDAY)
        assert again.can_redeem is True

        await service.redeem(deal.id, seeded.shopper, now=MONDAY)
        after = await service.can_redeem(deal.id, seeded.shopper, now=MONDAY + timedelta(days=1))
        assert after.can_redeem is False
        assert after.reason == FailureReason.FREQUENCY_WINDOW_ACTIVE

        gated = await service.can_redeem(locked.id, seeded.shopper, now=MONDAY)
        assert gated.reason == FailureReason.MEMBERSHIP_REQUIRED

        signed_out = await service.can_redeem(deal.id, None, now=MONDAY)
        assert signed_out.reason == FailureReason.UNAUTHORIZED

        missing = await service.can_redeem(uuid4(), seeded.shopper, now=MONDAY)
        assert missing.reason == FailureReason.NOT_FOUND


async def _count_rows(factory, deal_id) -> int:
    async with factory() as session:
        result = await session.execute(select(func.count(DealRedemption.id)).where(DealRedemption.deal_id == deal_id))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_concurrent_taps_record_a_single_once_redemption(file_session_factory, file_seeded, make_file_deal) -> None:
    deal = await make_file_deal(redemption_frequency="once")

    async def tap():
        async with file_session_factory() as session:
            return await RedemptionService(session).redeem(deal.id, file_seeded.shopper, "app", now=MONDAY)

    results = await asyncio.gather(*(tap() for _ in range(6)))

    assert sum(1 for result in results if isinstance(result, RedeemResult)) == 1
    rejected = [result for result in results if isinstance(result, RedemptionFailure)]
    assert len(rejected) == 5
    assert {result.reason for result in rejected} == {FailureReason.FREQUENCY_WINDOW_ACTIVE}
    assert await _count_rows(file_session_factory, deal.id) == 1


@pytest.mark.asyncio
async def test_concurrent_taps_respect_global_cap(file_session_factory, file_seeded, make_file_deal) -> None:
    deal = await make_file_deal(redemption_frequency="unlimited", max_redemptions_total=1)
    users = [file_seeded.owner, file_seeded.member, file_seeded.shopper]

    async def tap(user):
        async with file_session_factory() as session:
            return await RedemptionService(session).redeem(deal.id, user, now=MONDAY)

    results = await asyncio.gather(*(tap(user) for user in users))

    assert sum(1 for result in results if isinstance(result, RedeemResult)) == 1
    assert {result.reason for result in results if isinstance(result, RedemptionFailure)} == {
        FailureReason.LIMIT_EXCEEDED
    }
    assert await _count_rows(file_session_factory, deal.id) == 1
