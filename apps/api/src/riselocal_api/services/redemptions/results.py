"""Structured outcomes returned by the redemption components.

Validation failures are values, not exceptions: every component returns either
one of the success records below or a :class:`RedemptionFailure` before
touching the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, ClassVar, Literal
from uuid import UUID

from riselocal_api.domain.redemptions import (
    IssuedRedemption,
    Redemption,
    RedeemedRedemption,
    VerifiedRedemption,
    VoidedRedemption,
)


class FailureReason(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE_DEAL = "inactive_deal"
    OUTSIDE_AVAILABILITY_WINDOW = "outside_availability_window"
    LIMIT_EXCEEDED = "limit_exceeded"
    COOLDOWN_ACTIVE = "cooldown_active"
    FREQUENCY_WINDOW_ACTIVE = "frequency_window_active"
    CODE_GENERATION_EXHAUSTED = "code_generation_exhausted"
    UNAUTHORIZED = "unauthorized"
    ALREADY_CONSUMED = "already_consumed"
    EXPIRED = "expired"
    MEMBERSHIP_REQUIRED = "membership_required"
    POOL_EXHAUSTED = "pool_exhausted"


@dataclass(frozen=True, slots=True)
class RedemptionFailure:
    reason: FailureReason
    message: str
    retry_after: timedelta | None = None

    success: ClassVar[bool] = False

    def as_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "success": False,
            "reason": self.reason.value,
            "message": self.message,
        }
        if self.retry_after is not None:
            payload["retryAfterSeconds"] = int(self.retry_after.total_seconds())
        return payload


@dataclass(frozen=True, slots=True)
class IssueCodeResult:
    redemption: IssuedRedemption
    reused: bool = False

    success: ClassVar[bool] = True

    @property
    def code(self) -> str:
        return self.redemption.code

    @property
    def expires_at(self) -> datetime:
        return self.redemption.expires_at


@dataclass(frozen=True, slots=True)
class VerifyResult:
    redemption: VerifiedRedemption

    success: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class RedeemResult:
    redemption: RedeemedRedemption
    deal_title: str | None = None
    vendor_name: str | None = None

    success: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class CanRedeemResult:
    can_redeem: bool
    reason: FailureReason | None = None
    message: str | None = None

    @classmethod
    def allowed(cls) -> "CanRedeemResult":
        return cls(can_redeem=True)

    @classmethod
    def from_failure(cls, failure: RedemptionFailure) -> "CanRedeemResult":
        return cls(can_redeem=False, reason=failure.reason, message=failure.message)


@dataclass(frozen=True, slots=True)
class VoidResult:
    redemption: VoidedRedemption
    already_voided: bool = False

    success: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class CouponCodeResult:
    type: Literal["STATIC", "UNIQUE"]
    code: str
    code_id: UUID | None = None
    expires_at: datetime | None = None
    reused: bool = False

    success: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class PoolRedeemResult:
    code_id: UUID
    code: str
    user_id: UUID | None
    redeemed_at: datetime

    success: ClassVar[bool] = True


@dataclass(slots=True)
class HistoryPage:
    redemptions: list[Redemption] = field(default_factory=list)
    next_cursor: tuple[datetime, UUID] | None = None


__all__ = [
    "CanRedeemResult",
    "CouponCodeResult",
    "FailureReason",
    "HistoryPage",
    "IssueCodeResult",
    "PoolRedeemResult",
    "RedeemResult",
    "RedemptionFailure",
    "VerifyResult",
    "VoidResult",
]
