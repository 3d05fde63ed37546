"""Jobs that retire stale redemption codes and pool reservations."""

# meta: job: redemption-sweep

from __future__ import annotations

import datetime as dt
from typing import Awaitable, Callable, Dict

from loguru import logger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.core.clock import resolve_now
from riselocal_api.models.redemption import DealRedemption, RedemptionStatus
from riselocal_api.observability.redemptions import get_redemption_store
from riselocal_api.services.redemptions import DealCodePoolManager

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


async def sweep_redemptions(
    *,
    session_factory: SessionFactory,
    now: dt.datetime | None = None,
) -> Dict[str, int]:
    """Expire issued codes past their claim window and time out pool reservations.

    Expiry is also applied lazily when a code is looked up, so this sweep only
    keeps history and the live-issue index tidy.
    """

    maybe_session = session_factory()
    session: AsyncSession
    if isinstance(maybe_session, AsyncSession):
        session = maybe_session
    else:
        session = await maybe_session

    reference = resolve_now(now)
    async with session as managed_session:
        expired_codes = await _expire_issued_codes(managed_session, reference)
        pool_summary = await DealCodePoolManager(managed_session).sweep_expired_reservations(now=reference)

        summary = {
            "expired_codes": expired_codes,
            "released_reservations": pool_summary["released"],
            "expired_reservations": pool_summary["expired"],
        }
        get_redemption_store().record_sweep(summary)
        logger.bind(summary=summary).info("Redemption sweep completed")
        return summary


async def _expire_issued_codes(session: AsyncSession, now: dt.datetime) -> int:
    stmt = (
        update(DealRedemption)
        .where(
            DealRedemption.status == RedemptionStatus.ISSUED,
            DealRedemption.expires_at <= now,
        )
        .values(status=RedemptionStatus.EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    await session.commit()
    return int(result.rowcount or 0)


__all__ = ["sweep_redemptions"]
