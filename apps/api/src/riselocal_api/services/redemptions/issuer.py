"""Time-locked redemption code issuance."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING
from uuid import UUID

from loguru import logger
from sqlalchemy import exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.core.clock import ensure_aware, resolve_now
from riselocal_api.core.settings import settings
from riselocal_api.domain.redemptions import to_variant
from riselocal_api.models.deal import Deal
from riselocal_api.models.redemption import DealRedemption, RedemptionKind, RedemptionStatus

from .codes import CodeGenerationExhausted, generate_unique_code
from .policy import RedemptionPolicyEngine
from .results import FailureReason, IssueCodeResult, RedemptionFailure

if TYPE_CHECKING:  # pragma: no cover
    from loguru import Logger


INSERT_RETRIES = 3


class RedemptionCodeIssuer:
    """Issues a short code a user shows at the counter within the claim window.

    At most one live ``issued`` row exists per (deal, user): the partial unique
    index rejects a concurrent second insert, and the loser replays the
    winner's code instead of failing.
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

    async def issue_code(
        self,
        deal: Deal,
        user_id: UUID,
        *,
        now: datetime | None = None,
    ) -> IssueCodeResult | RedemptionFailure:
        reference = resolve_now(now)
        # rollback() expires ORM state; keep plain values for the retry path
        deal_id, vendor_id = deal.id, deal.vendor_id
        claim_minutes = deal.claim_window_minutes
        if claim_minutes is None:
            claim_minutes = settings.redemption_default_claim_window_minutes
        log = self._log.bind(operation="issue_code", deal_id=str(deal_id), user_id=str(user_id))

        failure = self._policy.check_deal_active(deal) or self._policy.check_availability_window(deal, now=reference)
        if failure is not None:
            log.info("Code issuance rejected", reason=failure.reason.value)
            return failure

        existing = await self._live_issue(deal_id, user_id)
        if existing is not None:
            if ensure_aware(existing.expires_at) > reference:
                log.info("Returning existing live code", redemption_id=str(existing.id))
                return IssueCodeResult(to_variant(existing), reused=True)
            await self._retire_expired(existing.id, reference)
            log.info("Retired stale issued code", redemption_id=str(existing.id))

        failure = (
            await self._policy.check_user_cap(deal, user_id)
            or await self._policy.check_cooldown(deal, user_id, now=reference)
            or await self._policy.check_global_cap(deal)
        )
        if failure is not None:
            log.info("Code issuance rejected", reason=failure.reason.value)
            return failure

        for attempt in range(1, INSERT_RETRIES + 1):
            try:
                code = await generate_unique_code(self._code_taken)
            except CodeGenerationExhausted as exc:
                log.error("Code generation exhausted", attempts=exc.attempts, max_length=exc.max_length)
                return RedemptionFailure(
                    FailureReason.CODE_GENERATION_EXHAUSTED,
                    "Unable to generate a redemption code right now. Please try again.",
                )

            row = DealRedemption(
                deal_id=deal_id,
                vendor_id=vendor_id,
                user_id=user_id,
                kind=RedemptionKind.TIME_LOCKED,
                status=RedemptionStatus.ISSUED,
                code=code,
                issued_at=reference,
                expires_at=reference + timedelta(minutes=claim_minutes),
                created_at=reference,
                updated_at=reference,
            )
            self._db.add(row)
            try:
                await self._db.commit()
            except IntegrityError:
                await self._db.rollback()
                winner = await self._live_issue(deal_id, user_id)
                if winner is not None and ensure_aware(winner.expires_at) > reference:
                    log.warning("Concurrent issuance detected; replaying winner", redemption_id=str(winner.id))
                    return IssueCodeResult(to_variant(winner), reused=True)
                log.warning("Code insert collided; retrying", attempt=attempt)
                continue

            log.info(
                "Issued redemption code",
                redemption_id=str(row.id),
                expires_at=row.expires_at.isoformat(),
            )
            return IssueCodeResult(to_variant(row))

        return RedemptionFailure(
            FailureReason.CODE_GENERATION_EXHAUSTED,
            "Unable to generate a redemption code right now. Please try again.",
        )

    async def _live_issue(self, deal_id: UUID, user_id: UUID) -> DealRedemption | None:
        stmt = (
            select(DealRedemption)
            .where(
                DealRedemption.deal_id == deal_id,
                DealRedemption.user_id == user_id,
                DealRedemption.status == RedemptionStatus.ISSUED,
            )
            .execution_options(populate_existing=True)
        )
        return (await self._db.execute(stmt)).scalars().first()

    async def _retire_expired(self, redemption_id: UUID, now: datetime) -> None:
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

    async def _code_taken(self, code: str) -> bool:
        stmt = select(exists().where(DealRedemption.code == code))
        return bool((await self._db.execute(stmt)).scalar())


__all__ = ["RedemptionCodeIssuer"]
