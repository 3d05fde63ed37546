"""Facade over the redemption components used by the HTTP layer and jobs."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Iterable, Sequence, Tuple
from uuid import UUID

from loguru import logger
from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.core.clock import resolve_now
from riselocal_api.domain.redemptions import Redemption, to_variant
from riselocal_api.models.deal import Deal
from riselocal_api.models.redemption import DealRedemption, RedemptionStatus
from riselocal_api.models.vendor import Vendor
from riselocal_api.observability.redemptions import get_redemption_store
from riselocal_api.observability.tracing import get_tracer
from riselocal_api.services.notifications import NotificationService

from .access import DealAccessInfo, DealLockStatus, access_info, can_access_deal, deal_lock_status
from .issuer import RedemptionCodeIssuer
from .policy import RedemptionPolicyEngine
from .pool import DealCodePoolManager
from .recorder import ButtonRedemptionRecorder
from .results import (
    CanRedeemResult,
    CouponCodeResult,
    FailureReason,
    HistoryPage,
    IssueCodeResult,
    PoolRedeemResult,
    RedeemResult,
    RedemptionFailure,
    VerifyResult,
    VoidResult,
)
from .verifier import RedemptionVerifier

if TYPE_CHECKING:  # pragma: no cover
    from loguru import Logger


Cursor = Tuple[datetime, UUID]


def _deal_not_found() -> RedemptionFailure:
    return RedemptionFailure(FailureReason.NOT_FOUND, "Deal not found.")


def _membership_required() -> RedemptionFailure:
    return RedemptionFailure(
        FailureReason.MEMBERSHIP_REQUIRED,
        "This deal is for Rise Local Pass members. Join to unlock it.",
    )


def _signed_out() -> RedemptionFailure:
    return RedemptionFailure(FailureReason.UNAUTHORIZED, "Sign in to redeem.")


def _outcome(result: Any) -> str:
    if isinstance(result, RedemptionFailure):
        return result.reason.value
    if getattr(result, "reused", False):
        return "reused"
    return "success"


class RedemptionService:
    """Coordinates access gating, redemption components and notifications.

    Both redemption models are exposed side by side: ``issue_code``/``verify``
    for the time-locked counter flow and ``redeem`` for one-tap redemptions.
    Which one a deal uses is the caller's choice.
    """

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        notification_service: NotificationService | None = None,
        log: "Logger | None" = None,
    ) -> None:
        self._db = db_session
        self._log = log or logger
        self._notifications = notification_service or NotificationService(db_session, deliver_in_background=True)
        self._policy = RedemptionPolicyEngine(db_session)
        self._issuer = RedemptionCodeIssuer(db_session, policy=self._policy, log=self._log)
        self._verifier = RedemptionVerifier(db_session, log=self._log)
        self._recorder = ButtonRedemptionRecorder(db_session, policy=self._policy, log=self._log)
        self._pool = DealCodePoolManager(db_session, policy=self._policy, log=self._log)
        self._store = get_redemption_store()
        self._tracer = get_tracer()

    @property
    def policy(self) -> RedemptionPolicyEngine:
        return self._policy

    async def get_deal(self, deal_id: UUID) -> Deal | None:
        return await self._db.get(Deal, deal_id)

    async def access_info(
        self,
        deal_id: UUID,
        user: Any,
        *,
        now: datetime | None = None,
    ) -> tuple[DealAccessInfo, DealLockStatus] | RedemptionFailure:
        deal = await self.get_deal(deal_id)
        if deal is None:
            return _deal_not_found()
        log = self._log.bind(operation="access_info", deal_id=str(deal_id))
        return access_info(user, deal, now=now, log=log), deal_lock_status(user, deal, now=now, log=log)

    async def issue_code(
        self,
        deal_id: UUID,
        user: Any,
        *,
        now: datetime | None = None,
    ) -> IssueCodeResult | RedemptionFailure:
        deal = await self.get_deal(deal_id)
        if deal is None:
            return self._record("issue_code", _deal_not_found())
        if not self._has_access(user, deal, now, operation="issue_code"):
            return self._record("issue_code", _membership_required())
        if getattr(user, "id", None) is None:
            return self._record("issue_code", _signed_out())

        with self._tracer.start_as_current_span("redemptions.issue_code") as span:
            span.set_attribute("deal.id", str(deal_id))
            result = await self._issuer.issue_code(deal, user.id, now=now)
            span.set_attribute("redemption.outcome", _outcome(result))
        return self._record("issue_code", result)

    async def verify(
        self,
        code: str,
        vendor_id: UUID,
        *,
        now: datetime | None = None,
    ) -> VerifyResult | RedemptionFailure:
        with self._tracer.start_as_current_span("redemptions.verify") as span:
            span.set_attribute("vendor.id", str(vendor_id))
            result = await self._verifier.verify(code, vendor_id, now=now)
            span.set_attribute("redemption.outcome", _outcome(result))
        self._record("verify", result)
        if isinstance(result, VerifyResult):
            await self._notify("redemption_verified", self._notifications.send_redemption_verified, result.redemption)
        return result

    async def redeem(
        self,
        deal_id: UUID,
        user: Any,
        source: str | None = None,
        *,
        now: datetime | None = None,
    ) -> RedeemResult | RedemptionFailure:
        deal = await self.get_deal(deal_id)
        if deal is None:
            return self._record("redeem", _deal_not_found())
        if not self._has_access(user, deal, now, operation="redeem"):
            return self._record("redeem", _membership_required())
        if getattr(user, "id", None) is None:
            return self._record("redeem", _signed_out())

        vendor_id = deal.vendor_id
        with self._tracer.start_as_current_span("redemptions.redeem") as span:
            span.set_attribute("deal.id", str(deal_id))
            result = await self._recorder.redeem(deal, user.id, source, now=now)
            span.set_attribute("redemption.outcome", _outcome(result))
        self._record("redeem", result)
        if isinstance(result, RedeemResult):
            vendor = await self._db.get(Vendor, vendor_id)
            result = replace(result, vendor_name=vendor.name if vendor else None)
            await self._notify("deal_redeemed", self._notifications.send_deal_redeemed, result.redemption)
        return result

    async def can_redeem(
        self,
        deal_id: UUID,
        user: Any,
        *,
        now: datetime | None = None,
    ) -> CanRedeemResult:
        deal = await self.get_deal(deal_id)
        if deal is None:
            return CanRedeemResult.from_failure(_deal_not_found())
        if not self._has_access(user, deal, now, operation="can_redeem"):
            return CanRedeemResult.from_failure(_membership_required())
        if user is None or getattr(user, "id", None) is None:
            return CanRedeemResult.from_failure(_signed_out())
        return await self._recorder.can_redeem(deal, user.id, now=now)

    async def void(
        self,
        redemption_id: UUID,
        reason: str,
        *,
        now: datetime | None = None,
    ) -> VoidResult | RedemptionFailure:
        """Void a redemption from any status; repeating the call is a no-op."""

        cleaned_reason = (reason or "").strip()
        if not cleaned_reason:
            raise ValueError("A void reason is required")

        reference = resolve_now(now)
        log = self._log.bind(operation="void", redemption_id=str(redemption_id))
        row = await self._load(redemption_id)
        if row is None:
            return self._record("void", RedemptionFailure(FailureReason.NOT_FOUND, "Redemption not found."))
        if RedemptionStatus(row.status) == RedemptionStatus.VOIDED:
            self._store.record_outcome("void", "already_voided")
            return VoidResult(to_variant(row), already_voided=True)

        previous_status = RedemptionStatus(row.status)
        stmt = (
            update(DealRedemption)
            .where(DealRedemption.id == redemption_id, DealRedemption.status != RedemptionStatus.VOIDED)
            .values(
                status=RedemptionStatus.VOIDED,
                voided_at=reference,
                void_reason=cleaned_reason,
                updated_at=reference,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        await self._db.commit()
        row = await self._load(redemption_id)
        if result.rowcount == 0:
            self._store.record_outcome("void", "already_voided")
            return VoidResult(to_variant(row), already_voided=True)

        log.info("Redemption voided", previous_status=previous_status.value, reason=cleaned_reason)
        self._store.record_outcome("void", "success")
        return VoidResult(to_variant(row))

    async def get_redemption(self, redemption_id: UUID) -> Redemption | None:
        row = await self._load(redemption_id)
        return to_variant(row) if row is not None else None

    async def list_user_history(
        self,
        user_id: UUID,
        *,
        limit: int = 25,
        cursor: Cursor | None = None,
        statuses: Sequence[RedemptionStatus] | None = None,
    ) -> HistoryPage:
        return await self._list_history(DealRedemption.user_id == user_id, limit=limit, cursor=cursor, statuses=statuses)

    async def list_vendor_history(
        self,
        vendor_id: UUID,
        *,
        limit: int = 25,
        cursor: Cursor | None = None,
        statuses: Sequence[RedemptionStatus] | None = None,
    ) -> HistoryPage:
        return await self._list_history(
            DealRedemption.vendor_id == vendor_id,
            limit=limit,
            cursor=cursor,
            statuses=statuses,
        )

    # Coupon code pool ----------------------------------------------------

    async def claim_coupon_code(
        self,
        deal_id: UUID,
        user: Any,
        *,
        now: datetime | None = None,
    ) -> CouponCodeResult | RedemptionFailure:
        deal = await self.get_deal(deal_id)
        if deal is None:
            return self._record("claim_coupon_code", _deal_not_found())
        return self._record("claim_coupon_code", await self._pool.claim_code(deal, user, now=now))

    async def upload_pool_codes(self, deal_id: UUID, vendor_id: UUID, codes: Iterable[str]) -> int | RedemptionFailure:
        deal = await self._vendor_deal(deal_id, vendor_id)
        if isinstance(deal, RedemptionFailure):
            return deal
        return await self._pool.add_codes(deal, codes)

    async def redeem_pool_code(
        self,
        deal_id: UUID,
        vendor_id: UUID,
        code: str,
        *,
        now: datetime | None = None,
    ) -> PoolRedeemResult | RedemptionFailure:
        deal = await self.get_deal(deal_id)
        if deal is None:
            return self._record("redeem_pool_code", _deal_not_found())
        return self._record("redeem_pool_code", await self._pool.redeem_code(deal, code, vendor_id, now=now))

    async def pool_stats(self, deal_id: UUID, vendor_id: UUID) -> dict[str, int] | RedemptionFailure:
        deal = await self._vendor_deal(deal_id, vendor_id)
        if isinstance(deal, RedemptionFailure):
            return deal
        return await self._pool.pool_stats(deal)

    async def sweep_pool_reservations(self, *, now: datetime | None = None) -> dict[str, int]:
        return await self._pool.sweep_expired_reservations(now=now)

    # Internals -----------------------------------------------------------

    def _has_access(self, user: Any, deal: Deal, now: datetime | None, *, operation: str) -> bool:
        log = self._log.bind(operation=operation, deal_id=str(deal.id))
        return can_access_deal(user, deal, now=now, log=log)

    async def _vendor_deal(self, deal_id: UUID, vendor_id: UUID) -> Deal | RedemptionFailure:
        deal = await self.get_deal(deal_id)
        if deal is None:
            return _deal_not_found()
        if deal.vendor_id != vendor_id:
            return RedemptionFailure(FailureReason.UNAUTHORIZED, "This deal belongs to a different business.")
        return deal

    async def _load(self, redemption_id: UUID) -> DealRedemption | None:
        stmt = (
            select(DealRedemption)
            .where(DealRedemption.id == redemption_id)
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalar_one_or_none()

    async def _list_history(
        self,
        owner_clause: Any,
        *,
        limit: int,
        cursor: Cursor | None,
        statuses: Sequence[RedemptionStatus] | None,
    ) -> HistoryPage:
        bounded_limit = max(1, min(limit, 100))
        stmt = (
            select(DealRedemption)
            .where(owner_clause)
            .order_by(DealRedemption.created_at.desc(), DealRedemption.id.desc())
        )
        if statuses:
            stmt = stmt.where(DealRedemption.status.in_(list(statuses)))
        if cursor:
            cursor_time, cursor_id = cursor
            stmt = stmt.where(
                or_(
                    DealRedemption.created_at < cursor_time,
                    and_(
                        DealRedemption.created_at == cursor_time,
                        DealRedemption.id < cursor_id,
                    ),
                )
            )

        stmt = stmt.limit(bounded_limit + 1)
        rows = list((await self._db.execute(stmt)).scalars().all())
        has_more = len(rows) > bounded_limit
        page = rows[:bounded_limit]
        next_cursor: Cursor | None = None
        if has_more and page:
            tail = page[-1]
            next_cursor = (tail.created_at, tail.id)
        return HistoryPage(redemptions=[to_variant(row) for row in page], next_cursor=next_cursor)

    def _record(self, operation: str, result: Any) -> Any:
        self._store.record_outcome(operation, _outcome(result))
        return result

    async def _notify(
        self,
        event_type: str,
        send: Callable[[Any], Awaitable[bool]],
        redemption: Redemption,
    ) -> None:
        """Notify after commit; failures are logged and never undo the redemption."""

        try:
            await send(redemption)
        except Exception as exc:  # noqa: BLE001 - delivery is best effort
            await self._db.rollback()
            self._log.bind(event_type=event_type, redemption_id=str(redemption.id)).exception(
                "Redemption notification failed",
                error=str(exc),
            )


__all__ = ["RedemptionService"]
