from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from riselocal_api.jobs.redemptions import sweep_redemptions
from riselocal_api.models import CouponRedemptionType, DealRedemption, RedemptionStatus
from riselocal_api.observability.redemptions import get_redemption_store
from riselocal_api.services.redemptions import RedemptionService
from riselocal_api.workers import RedemptionSweepWorker


T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


async def _stage(session_factory, seeded, make_deal) -> None:
    code_deal = await make_deal(claim_window_minutes=10)
    pool_deal = await make_deal(
        title="Pool",
        coupon_redemption_type=CouponRedemptionType.PASS_UNIQUE_CODE_POOL,
        code_reserve_minutes=15,
    )
    async with session_factory() as session:
        service = RedemptionService(session)
        await service.issue_code(code_deal.id, seeded.shopper, now=T0)
        await service.issue_code(code_deal.id, seeded.member, now=T0 + timedelta(minutes=30))
        await service.upload_pool_codes(pool_deal.id, seeded.vendor.id, ["SWEEP-1"])
        await service.claim_coupon_code(pool_deal.id, seeded.member, now=T0)


@pytest.mark.asyncio
async def test_sweep_expires_codes_and_reservations(session_factory, seeded, make_deal) -> None:
    await _stage(session_factory, seeded, make_deal)

    summary = await sweep_redemptions(session_factory=session_factory, now=T0 + timedelta(minutes=20))

    assert summary == {"expired_codes": 1, "released_reservations": 1, "expired_reservations": 0}

    async with session_factory() as session:
        statuses = (
            await session.execute(select(DealRedemption.user_id, DealRedemption.status))
        ).all()
    by_user = {user_id: status for user_id, status in statuses}
    assert by_user[seeded.shopper.id] == RedemptionStatus.EXPIRED
    assert by_user[seeded.member.id] == RedemptionStatus.ISSUED

    snapshot = get_redemption_store().snapshot()
    assert snapshot.sweeps["runs"] == 1
    assert snapshot.sweeps["expired_codes"] == 1
    assert snapshot.last_sweep_at is not None


@pytest.mark.asyncio
async def test_sweep_is_a_no_op_when_nothing_is_stale(session_factory, seeded, make_deal) -> None:
    await _stage(session_factory, seeded, make_deal)

    summary = await sweep_redemptions(session_factory=session_factory, now=T0 + timedelta(minutes=5))

    assert summary == {"expired_codes": 0, "released_reservations": 0, "expired_reservations": 0}


@pytest.mark.asyncio
async def test_worker_run_once_records_summary(session_factory, seeded) -> None:
    worker = RedemptionSweepWorker(session_factory, interval_seconds=60, trigger_label="test")

    summary = await worker.run_once(triggered_by="manual")

    assert summary == {"expired_codes": 0, "released_reservations": 0, "expired_reservations": 0}
    assert worker.last_summary == summary
    assert worker.last_error is None
    assert worker.is_running is False


@pytest.mark.asyncio
async def test_worker_run_once_surfaces_errors() -> None:
    def broken_factory():
        raise RuntimeError("database offline")

    worker = RedemptionSweepWorker(broken_factory, interval_seconds=60)

    with pytest.raises(RuntimeError):
        await worker.run_once()

    assert worker.last_error == "database offline"


@pytest.mark.asyncio
async def test_worker_start_and_stop(session_factory, seeded) -> None:
    worker = RedemptionSweepWorker(session_factory, interval_seconds=3600)

    worker.start()
    assert worker.is_running is True
    await worker.stop()

    assert worker.is_running is False
