"""Pre-generated coupon code pools for external checkout flows.

Two flows share the pool columns on ``deals``:

* ``FREE_STATIC_CODE`` hands every eligible user the same ``static_code``.
* ``PASS_UNIQUE_CODE_POOL`` reserves one vendor-uploaded code per pass member
  for ``code_reserve_minutes``. Reservations move ``AVAILABLE -> RESERVED``
  with a status-guarded UPDATE, are consumed ``RESERVED -> REDEEMED`` by the
  vendor, and time out back to ``AVAILABLE`` or to ``EXPIRED`` according to the
  deal's ``release_expired_reservations`` flag.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterable
from uuid import UUID

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.core.clock import ensure_aware, resolve_now
from riselocal_api.core.settings import settings
from riselocal_api.models.deal import CouponRedemptionType, Deal
from riselocal_api.models.redemption import DealCode, DealCodeStatus

from .access import can_access_deal, has_active_membership
from .policy import RedemptionPolicyEngine
from .results import CouponCodeResult, FailureReason, PoolRedeemResult, RedemptionFailure

if TYPE_CHECKING:  # pragma: no cover
    from loguru import Logger


RESERVE_ATTEMPTS = 5
CANDIDATE_BATCH = 5


def _pool_empty() -> RedemptionFailure:
    return RedemptionFailure(FailureReason.POOL_EXHAUSTED, "All codes for this deal have been claimed.")


class DealCodePoolManager:
    """Upload, reserve, consume and sweep pool codes for a deal."""

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

    async def add_codes(self, deal: Deal, codes: Iterable[str]) -> int:
        """Add vendor-supplied codes to the pool, skipping blanks and duplicates."""

        deal_id = deal.id
        cleaned: list[str] = []
        seen: set[str] = set()
        for raw in codes:
            code = (raw or "").strip()
            if not code or code in seen:
                continue
            if len(code) > 50:
                raise ValueError(f"Code exceeds 50 characters: {code[:12]}...")
            seen.add(code)
            cleaned.append(code)

        if not cleaned:
            raise ValueError("No codes supplied")
        if len(cleaned) > settings.deal_code_max_upload:
            raise ValueError(f"At most {settings.deal_code_max_upload} codes may be uploaded at once")

        existing_stmt = select(DealCode.code).where(DealCode.deal_id == deal_id, DealCode.code.in_(cleaned))
        existing = set((await self._db.execute(existing_stmt)).scalars().all())
        fresh = [code for code in cleaned if code not in existing]
        self._db.add_all([DealCode(deal_id=deal_id, code=code, status=DealCodeStatus.AVAILABLE) for code in fresh])
        await self._db.commit()
        self._log.bind(operation="add_codes", deal_id=str(deal_id)).info(
            "Deal codes uploaded",
            added=len(fresh),
            duplicates=len(cleaned) - len(fresh),
        )
        return len(fresh)

    async def claim_code(
        self,
        deal: Deal,
        user: Any,
        *,
        now: datetime | None = None,
    ) -> CouponCodeResult | RedemptionFailure:
        reference = resolve_now(now)
        user_id = getattr(user, "id", None)
        log = self._log.bind(operation="claim_coupon_code", deal_id=str(deal.id), user_id=str(user_id))

        if deal.coupon_redemption_type is None:
            return RedemptionFailure(FailureReason.NOT_FOUND, "This deal does not offer a coupon code.")

        failure = self._policy.check_deal_active(deal) or self._policy.check_availability_window(deal, now=reference)
        if failure is not None:
            return failure

        flow = CouponRedemptionType(deal.coupon_redemption_type)
        if flow == CouponRedemptionType.FREE_STATIC_CODE:
            if not can_access_deal(user, deal, now=reference, log=log):
                return RedemptionFailure(FailureReason.MEMBERSHIP_REQUIRED, "A Rise Local Pass is required for this deal.")
            if not deal.static_code:
                log.warning("Static coupon deal has no code configured")
                return RedemptionFailure(FailureReason.NOT_FOUND, "This deal does not offer a coupon code.")
            return CouponCodeResult(type="STATIC", code=deal.static_code)

        if user_id is None or not has_active_membership(user, now=reference, log=log):
            return RedemptionFailure(FailureReason.MEMBERSHIP_REQUIRED, "A Rise Local Pass is required for this deal.")

        deal_id = deal.id
        reserve_minutes = deal.code_reserve_minutes
        if reserve_minutes is None:
            reserve_minutes = settings.deal_code_default_reserve_minutes
        per_user_cap = deal.max_redemptions_per_user if deal.max_redemptions_per_user is not None else 1
        release = bool(deal.release_expired_reservations)

        live = await self._live_reservation(deal_id, user_id, reference)
        if live is not None:
            return self._as_result(live, reused=True)
        await self._time_out(
            release=release,
            now=reference,
            criteria=(DealCode.deal_id == deal_id, DealCode.assigned_to_user_id == user_id),
        )

        redeemed = await self._db.execute(
            select(func.count(DealCode.id)).where(
                DealCode.deal_id == deal_id,
                DealCode.assigned_to_user_id == user_id,
                DealCode.status == DealCodeStatus.REDEEMED,
            )
        )
        if int(redeemed.scalar_one() or 0) >= per_user_cap:
            return RedemptionFailure(FailureReason.LIMIT_EXCEEDED, "You have already used your code for this deal.")

        expires_at = reference + timedelta(minutes=reserve_minutes)
        for attempt in range(1, RESERVE_ATTEMPTS + 1):
            candidates = (
                await self._db.execute(
                    select(DealCode.id)
                    .where(DealCode.deal_id == deal_id, DealCode.status == DealCodeStatus.AVAILABLE)
                    .order_by(DealCode.created_at, DealCode.id)
                    .limit(CANDIDATE_BATCH)
                )
            ).scalars().all()
            if not candidates:
                log.info("Deal code pool exhausted")
                return _pool_empty()

            for code_id in candidates:
                stmt = (
                    update(DealCode)
                    .where(DealCode.id == code_id, DealCode.status == DealCodeStatus.AVAILABLE)
                    .values(
                        status=DealCodeStatus.RESERVED,
                        assigned_to_user_id=user_id,
                        reserved_at=reference,
                        expires_at=expires_at,
                    )
                    .execution_options(synchronize_session=False)
                )
                try:
                    result = await self._db.execute(stmt)
                    await self._db.commit()
                except IntegrityError:
                    # a concurrent request already reserved a code for this user
                    await self._db.rollback()
                    live = await self._live_reservation(deal_id, user_id, reference)
                    if live is not None:
                        return self._as_result(live, reused=True)
                    break
                if result.rowcount == 1:
                    reserved = await self._get_code(code_id)
                    log.info("Reserved pool code", code_id=str(code_id), expires_at=expires_at.isoformat())
                    return self._as_result(reserved)
            log.debug("Pool candidates taken concurrently; retrying", attempt=attempt)

        return _pool_empty()

    async def redeem_code(
        self,
        deal: Deal,
        code: str,
        vendor_id: UUID,
        *,
        now: datetime | None = None,
    ) -> PoolRedeemResult | RedemptionFailure:
        reference = resolve_now(now)
        log = self._log.bind(operation="redeem_pool_code", deal_id=str(deal.id), vendor_id=str(vendor_id))
        if deal.vendor_id != vendor_id:
            return RedemptionFailure(FailureReason.UNAUTHORIZED, "This deal belongs to a different business.")

        row = (
            await self._db.execute(
                select(DealCode)
                .where(DealCode.deal_id == deal.id, DealCode.code == (code or "").strip())
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if row is None or row.status == DealCodeStatus.AVAILABLE:
            return RedemptionFailure(FailureReason.NOT_FOUND, "No claimed code matches that value.")
        failure = self._status_failure(row, reference)
        if failure is not None:
            return failure

        stmt = (
            update(DealCode)
            .where(
                DealCode.id == row.id,
                DealCode.status == DealCodeStatus.RESERVED,
                DealCode.expires_at > reference,
            )
            .values(status=DealCodeStatus.REDEEMED, redeemed_at=reference)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        await self._db.commit()
        current = await self._get_code(row.id)
        if result.rowcount == 0:
            return self._status_failure(current, reference) or RedemptionFailure(
                FailureReason.ALREADY_CONSUMED, "This code has already been used."
            )

        log.info("Pool code redeemed", code_id=str(current.id))
        return PoolRedeemResult(
            code_id=current.id,
            code=current.code,
            user_id=current.assigned_to_user_id,
            redeemed_at=ensure_aware(current.redeemed_at),
        )

    async def sweep_expired_reservations(self, *, now: datetime | None = None) -> dict[str, int]:
        """Time out stale reservations across every deal."""

        reference = resolve_now(now)
        released = await self._time_out(release=True, now=reference, criteria=())
        expired = await self._time_out(release=False, now=reference, criteria=())
        summary = {"released": released, "expired": expired}
        if released or expired:
            self._log.info("Swept expired code reservations", **summary)
        return summary

    async def pool_stats(self, deal: Deal) -> dict[str, int]:
        stmt = (
            select(DealCode.status, func.count(DealCode.id))
            .where(DealCode.deal_id == deal.id)
            .group_by(DealCode.status)
        )
        counts = {status.value: 0 for status in DealCodeStatus}
        for status, count in (await self._db.execute(stmt)).all():
            counts[DealCodeStatus(status).value] = int(count)
        counts["total"] = sum(counts[status.value] for status in DealCodeStatus)
        return counts

    async def _time_out(self, *, release: bool, now: datetime, criteria: tuple) -> int:
        """Move RESERVED codes past expiry back to AVAILABLE or on to EXPIRED.

        ``release`` selects which deals are affected: those whose
        ``release_expired_reservations`` flag matches it.
        """

        policy_deals = select(Deal.id).where(Deal.release_expired_reservations.is_(release))
        if release:
            values: dict[str, Any] = {
                "status": DealCodeStatus.AVAILABLE,
                "assigned_to_user_id": None,
                "reserved_at": None,
                "expires_at": None,
            }
        else:
            values = {"status": DealCodeStatus.EXPIRED}
        stmt = (
            update(DealCode)
            .where(
                DealCode.status == DealCodeStatus.RESERVED,
                DealCode.expires_at <= now,
                DealCode.deal_id.in_(policy_deals),
                *criteria,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        await self._db.commit()
        return int(result.rowcount or 0)

    async def _live_reservation(self, deal_id: UUID, user_id: UUID, now: datetime) -> DealCode | None:
        stmt = (
            select(DealCode)
            .where(
                DealCode.deal_id == deal_id,
                DealCode.assigned_to_user_id == user_id,
                DealCode.status == DealCodeStatus.RESERVED,
                DealCode.expires_at > now,
            )
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalars().first()

    async def _get_code(self, code_id: UUID) -> DealCode:
        stmt = select(DealCode).where(DealCode.id == code_id).execution_options(populate_existing=True)
        return (await self._db.execute(stmt)).scalar_one()

    @staticmethod
    def _status_failure(row: DealCode, now: datetime) -> RedemptionFailure | None:
        status = DealCodeStatus(row.status)
        if status == DealCodeStatus.REDEEMED:
            return RedemptionFailure(FailureReason.ALREADY_CONSUMED, "This code has already been used.")
        if status == DealCodeStatus.EXPIRED:
            return RedemptionFailure(FailureReason.EXPIRED, "This code reservation has expired.")
        if status == DealCodeStatus.RESERVED and (row.expires_at is None or ensure_aware(row.expires_at) <= now):
            return RedemptionFailure(FailureReason.EXPIRED, "This code reservation has expired.")
        if status == DealCodeStatus.AVAILABLE:
            return RedemptionFailure(FailureReason.EXPIRED, "This code reservation has expired.")
        return None

    @staticmethod
    def _as_result(row: DealCode, *, reused: bool = False) -> CouponCodeResult:
        return CouponCodeResult(
            type="UNIQUE",
            code=row.code,
            code_id=row.id,
            expires_at=ensure_aware(row.expires_at) if row.expires_at is not None else None,
            reused=reused,
        )


__all__ = ["DealCodePoolManager"]
