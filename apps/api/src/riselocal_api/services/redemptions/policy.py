"""Limit, cooldown and frequency policies evaluated against redemption history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.core.clock import ensure_aware, resolve_now
from riselocal_api.models.deal import Deal, RedemptionFrequency
from riselocal_api.models.redemption import CONSUMED_STATUSES, DealRedemption, RedemptionStatus

from .results import FailureReason, RedemptionFailure


_FIXED_WINDOWS = {
    RedemptionFrequency.WEEKLY: timedelta(days=7),
    RedemptionFrequency.MONTHLY: timedelta(days=30),
}


@dataclass(frozen=True, slots=True)
class FrequencyWindow:
    """Resolved cadence; ``length`` of ``None`` means the whole deal lifetime."""

    frequency: RedemptionFrequency
    length: timedelta | None

    @property
    def unlimited(self) -> bool:
        return self.frequency == RedemptionFrequency.UNLIMITED


def resolve_frequency_window(deal: Deal) -> FrequencyWindow:
    """Map the stored cadence onto a window, falling back to ``once``."""

    try:
        frequency = RedemptionFrequency(deal.redemption_frequency or RedemptionFrequency.ONCE.value)
    except ValueError:
        return FrequencyWindow(RedemptionFrequency.ONCE, None)

    if frequency == RedemptionFrequency.UNLIMITED:
        return FrequencyWindow(frequency, None)
    if frequency in _FIXED_WINDOWS:
        return FrequencyWindow(frequency, _FIXED_WINDOWS[frequency])
    if frequency == RedemptionFrequency.CUSTOM:
        days = deal.custom_redemption_days
        if isinstance(days, int) and days > 0:
            return FrequencyWindow(frequency, timedelta(days=days))
        return FrequencyWindow(RedemptionFrequency.ONCE, None)
    return FrequencyWindow(RedemptionFrequency.ONCE, None)


class RedemptionPolicyEngine:
    """Read-only policy checks over freshly queried redemption history.

    These gate mutations but do not make them race-free on their own; the
    issuer and recorder rely on store constraints and row locks for that.
    """

    def __init__(self, db_session: AsyncSession) -> None:
        self._db = db_session

    async def verified_count_for_user(self, deal: Deal, user_id: UUID) -> int:
        stmt = select(func.count(DealRedemption.id)).where(
            DealRedemption.deal_id == deal.id,
            DealRedemption.user_id == user_id,
            DealRedemption.status.in_(CONSUMED_STATUSES),
        )
        return int((await self._db.execute(stmt)).scalar_one() or 0)

    async def total_verified_count(self, deal: Deal) -> int:
        stmt = select(func.count(DealRedemption.id)).where(
            DealRedemption.deal_id == deal.id,
            DealRedemption.status.in_(CONSUMED_STATUSES),
        )
        return int((await self._db.execute(stmt)).scalar_one() or 0)

    async def cooldown_remaining(
        self,
        deal: Deal,
        user_id: UUID,
        *,
        now: datetime | None = None,
    ) -> timedelta | None:
        hours = deal.cooldown_hours
        if not hours or hours <= 0:
            return None

        last_consumed = await self._latest_consumed_at(deal, user_id)
        if last_consumed is None:
            return None

        reference = resolve_now(now)
        available_at = last_consumed + timedelta(hours=hours)
        if available_at <= reference:
            return None
        return available_at - reference

    async def frequency_window_violation(
        self,
        deal: Deal,
        user_id: UUID,
        *,
        now: datetime | None = None,
    ) -> bool:
        return await self._latest_redeemed_in_window(deal, user_id, resolve_now(now)) is not None

    # Composite gates -----------------------------------------------------

    @staticmethod
    def check_deal_active(deal: Deal) -> RedemptionFailure | None:
        if deal.is_active:
            return None
        return RedemptionFailure(FailureReason.INACTIVE_DEAL, "This deal is no longer active.")

    @staticmethod
    def check_availability_window(deal: Deal, *, now: datetime | None = None) -> RedemptionFailure | None:
        reference = resolve_now(now)
        if deal.starts_at is not None and ensure_aware(deal.starts_at) > reference:
            return RedemptionFailure(
                FailureReason.OUTSIDE_AVAILABILITY_WINDOW,
                "This deal is not available yet.",
                retry_after=ensure_aware(deal.starts_at) - reference,
            )
        if deal.ends_at is not None and ensure_aware(deal.ends_at) < reference:
            return RedemptionFailure(FailureReason.OUTSIDE_AVAILABILITY_WINDOW, "This deal has ended.")
        return None

    async def check_user_cap(self, deal: Deal, user_id: UUID) -> RedemptionFailure | None:
        cap = deal.max_redemptions_per_user if deal.max_redemptions_per_user is not None else 1
        used = await self.verified_count_for_user(deal, user_id)
        if used < cap:
            return None
        return RedemptionFailure(
            FailureReason.LIMIT_EXCEEDED,
            "You have already redeemed this deal the maximum number of times.",
        )

    async def check_global_cap(self, deal: Deal) -> RedemptionFailure | None:
        cap = deal.max_redemptions_total
        if cap is None:
            return None
        used = await self.total_verified_count(deal)
        if used < cap:
            return None
        return RedemptionFailure(FailureReason.LIMIT_EXCEEDED, "This deal has reached its redemption limit.")

    async def check_cooldown(
        self,
        deal: Deal,
        user_id: UUID,
        *,
        now: datetime | None = None,
    ) -> RedemptionFailure | None:
        remaining = await self.cooldown_remaining(deal, user_id, now=now)
        if remaining is None:
            return None
        hours = max(1, int(remaining.total_seconds() // 3600))
        return RedemptionFailure(
            FailureReason.COOLDOWN_ACTIVE,
            f"Please wait about {hours} more hour(s) before redeeming this deal again.",
            retry_after=remaining,
        )

    async def check_frequency(
        self,
        deal: Deal,
        user_id: UUID,
        *,
        now: datetime | None = None,
    ) -> RedemptionFailure | None:
        reference = resolve_now(now)
        window = resolve_frequency_window(deal)
        latest = await self._latest_redeemed_in_window(deal, user_id, reference, window=window)
        if latest is None:
            return None
        if window.length is None:
            return RedemptionFailure(FailureReason.FREQUENCY_WINDOW_ACTIVE, "You have already redeemed this deal.")
        return RedemptionFailure(
            FailureReason.FREQUENCY_WINDOW_ACTIVE,
            f"This deal can be redeemed once every {window.length.days} day(s).",
            retry_after=latest + window.length - reference,
        )

    # History queries -----------------------------------------------------

    async def _latest_consumed_at(self, deal: Deal, user_id: UUID) -> datetime | None:
        stmt = select(DealRedemption.verified_at, DealRedemption.redeemed_at).where(
            DealRedemption.deal_id == deal.id,
            DealRedemption.user_id == user_id,
            DealRedemption.status.in_(CONSUMED_STATUSES),
        )
        result = await self._db.execute(stmt)
        stamps = [
            ensure_aware(stamp)
            for verified_at, redeemed_at in result.all()
            for stamp in (verified_at, redeemed_at)
            if stamp is not None
        ]
        return max(stamps) if stamps else None

    async def _latest_redeemed_in_window(
        self,
        deal: Deal,
        user_id: UUID,
        now: datetime,
        *,
        window: FrequencyWindow | None = None,
    ) -> datetime | None:
        window = window or resolve_frequency_window(deal)
        if window.unlimited:
            return None

        stmt = select(DealRedemption.redeemed_at).where(
            DealRedemption.deal_id == deal.id,
            DealRedemption.user_id == user_id,
            DealRedemption.status == RedemptionStatus.REDEEMED,
        )
        if window.length is not None:
            stmt = stmt.where(DealRedemption.redeemed_at > now - window.length)
        stmt = stmt.order_by(DealRedemption.redeemed_at.desc()).limit(1)
        latest = (await self._db.execute(stmt)).scalar_one_or_none()
        return ensure_aware(latest) if latest is not None else None


__all__ = ["FrequencyWindow", "RedemptionPolicyEngine", "resolve_frequency_window"]
