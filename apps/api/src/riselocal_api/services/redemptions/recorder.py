"""One-tap button redemptions recorded directly in their terminal state."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.core.clock import resolve_now
from riselocal_api.domain.redemptions import to_variant
from riselocal_api.models.deal import Deal
from riselocal_api.models.redemption import DealRedemption, RedemptionKind, RedemptionStatus

from .policy import RedemptionPolicyEngine
from .results import CanRedeemResult, FailureReason, RedeemResult, RedemptionFailure

if TYPE_CHECKING:  # pragma: no cover
    from loguru import Logger


class ButtonRedemptionRecorder:
    """Records a ``redeemed`` row after the deal, window, frequency and cap checks.

    The check-and-insert starts with a write to the deal row. That write takes
    the row lock on PostgreSQL and the database write lock on SQLite, so
    concurrent taps are serialized and each one sees the rows committed
    before it.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        policy: RedemptionPolicyEngine | None = None,
        log: "Logger | None" = None,
    ) -> None:
        self._db = db_session
        self._policy = policy or RedemptionPolicyEngine(db_session)
        self._log = log or logger

    async def redeem(
        self,
        deal: Deal,
        user_id: UUID,
        source: str | None = None,
        *,
        now: datetime | None = None,
    ) -> RedeemResult | RedemptionFailure:
        reference = resolve_now(now)
        log = self._log.bind(operation="redeem", deal_id=str(deal.id), user_id=str(user_id), source=source)

        locked = await self._lock_deal(deal.id)
        if locked is None:
            await self._db.commit()
            log.warning("Deal disappeared before redemption")
            return RedemptionFailure(FailureReason.NOT_FOUND, "Deal not found.")

        failure = await self._evaluate(locked, user_id, reference)
        if failure is not None:
            # nothing was written; ending the transaction releases the row lock
            await self._db.commit()
            log.info("Button redemption rejected", reason=failure.reason.value)
            return failure

        row = DealRedemption(
            deal_id=locked.id,
            vendor_id=locked.vendor_id,
            user_id=user_id,
            kind=RedemptionKind.BUTTON,
            status=RedemptionStatus.REDEEMED,
            source=source,
            redeemed_at=reference,
            created_at=reference,
            updated_at=reference,
        )
        self._db.add(row)
        await self._db.commit()
        log.info("Recorded button redemption", redemption_id=str(row.id))
        return RedeemResult(to_variant(row), deal_title=locked.title)

    async def can_redeem(
        self,
        deal: Deal,
        user_id: UUID,
        *,
        now: datetime | None = None,
    ) -> CanRedeemResult:
        failure = await self._evaluate(deal, user_id, resolve_now(now))
        if failure is None:
            return CanRedeemResult.allowed()
        return CanRedeemResult.from_failure(failure)

    async def _evaluate(self, deal: Deal, user_id: UUID, now: datetime) -> RedemptionFailure | None:
        return (
            self._policy.check_deal_active(deal)
            or self._policy.check_availability_window(deal, now=now)
            or await self._policy.check_frequency(deal, user_id, now=now)
            or await self._policy.check_global_cap(deal)
        )

    async def _lock_deal(self, deal_id: UUID) -> Deal | None:
        touched = await self._db.execute(
            update(Deal)
            .where(Deal.id == deal_id)
            .values(updated_at=func.now())
            .execution_options(synchronize_session=False)
        )
        if touched.rowcount == 0:
            return None
        stmt = select(Deal).where(Deal.id == deal_id).execution_options(populate_existing=True)
        return (await self._db.execute(stmt)).scalar_one_or_none()


__all__ = ["ButtonRedemptionRecorder"]
