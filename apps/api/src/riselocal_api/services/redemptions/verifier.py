"""Vendor-side consumption of issued redemption codes."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from loguru import logger
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.core.clock import ensure_aware, resolve_now
from riselocal_api.domain.redemptions import to_variant
from riselocal_api.models.redemption import DealRedemption, RedemptionStatus

from .codes import normalize_code
from .results import FailureReason, RedemptionFailure, VerifyResult

if TYPE_CHECKING:  # pragma: no cover
    from loguru import Logger


_CONSUMED = {RedemptionStatus.VERIFIED, RedemptionStatus.VOIDED, RedemptionStatus.REDEEMED}


def _already_consumed() -> RedemptionFailure:
    return RedemptionFailure(FailureReason.ALREADY_CONSUMED, "This code has already been used.")


def _expired() -> RedemptionFailure:
    return RedemptionFailure(FailureReason.EXPIRED, "This code has expired. Ask the customer to claim a new one.")


class RedemptionVerifier:
    """Consumes an issued code exactly once.

    The ``issued -> verified`` transition is a single status-guarded UPDATE; a
    caller that loses the race sees zero affected rows and is told the code was
    already used.
    """

    def __init__(self, db_session: AsyncSession, *, log: "Logger | None" = None) -> None:
        self._db = db_session
        self._log = log or logger

    async def verify(
        self,
        code: str,
        vendor_id: UUID,
        *,
        now: datetime | None = None,
    ) -> VerifyResult | RedemptionFailure:
        reference = resolve_now(now)
        normalized = normalize_code(code)
        log = self._log.bind(operation="verify", vendor_id=str(vendor_id), code=normalized)

        redemption = await self._find_by_code(normalized) if normalized else None
        if redemption is None:
            log.info("Verification rejected", reason=FailureReason.NOT_FOUND.value)
            return RedemptionFailure(FailureReason.NOT_FOUND, "No redemption matches that code.")

        log = log.bind(redemption_id=str(redemption.id), deal_id=str(redemption.deal_id))
        if redemption.vendor_id != vendor_id:
            log.warning("Verification rejected", reason=FailureReason.UNAUTHORIZED.value)
            return RedemptionFailure(FailureReason.UNAUTHORIZED, "This code belongs to a different business.")

        status = RedemptionStatus(redemption.status)
        if status in _CONSUMED:
            log.info("Verification replayed", reason=FailureReason.ALREADY_CONSUMED.value, status=status.value)
            return _already_consumed()

        if status == RedemptionStatus.EXPIRED or self._past_expiry(redemption, reference):
            await self._mark_expired(redemption.id, reference)
            log.info("Verification rejected", reason=FailureReason.EXPIRED.value)
            return _expired()

        stmt = (
            update(DealRedemption)
            .where(
                DealRedemption.id == redemption.id,
                DealRedemption.status == RedemptionStatus.ISSUED,
                DealRedemption.expires_at > reference,
            )
            .values(status=RedemptionStatus.VERIFIED, verified_at=reference, updated_at=reference)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        await self._db.commit()

        refreshed = await self._reload(redemption.id)
        if result.rowcount == 0:
            current = RedemptionStatus(refreshed.status) if refreshed is not None else None
            if current == RedemptionStatus.ISSUED and refreshed is not None and self._past_expiry(refreshed, reference):
                await self._mark_expired(refreshed.id, reference)
                return _expired()
            if current == RedemptionStatus.EXPIRED:
                return _expired()
            log.info("Verification lost race", reason=FailureReason.ALREADY_CONSUMED.value)
            return _already_consumed()

        log.info("Redemption verified")
        return VerifyResult(to_variant(refreshed))

    async def _find_by_code(self, code: str) -> DealRedemption | None:
        stmt = (
            select(DealRedemption)
            .where(DealRedemption.code == code)
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _reload(self, redemption_id: UUID) -> DealRedemption | None:
        stmt = (
            select(DealRedemption)
            .where(DealRedemption.id == redemption_id)
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _mark_expired(self, redemption_id: UUID, now: datetime) -> None:
        stmt = (
            update(DealRedemption)
            .where(
                DealRedemption.id == redemption_id,
                DealRedemption.status == RedemptionStatus.ISSUED,
            )
            .values(status=RedemptionStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        await self._db.execute(stmt)
        await self._db.commit()

    @staticmethod
    def _past_expiry(redemption: DealRedemption, now: datetime) -> bool:
        if redemption.expires_at is None:
            return True
        return ensure_aware(redemption.expires_at) <= now


__all__ = ["RedemptionVerifier"]
