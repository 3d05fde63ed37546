"""Vendor-published deals and their redemption policy fields."""

from __future__ import annotations

from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import UUID

from riselocal_api.db.base import Base


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class RedemptionFrequency(str, Enum):
    """Named cadence applied to button redemptions."""

    ONCE = "once"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    UNLIMITED = "unlimited"
    CUSTOM = "custom"


class DealTier(str, Enum):
    """Legacy visibility tier kept for deals that predate the pass lock flag."""

    FREE = "free"
    MEMBER = "member"
    PREMIUM = "premium"


class CouponRedemptionType(str, Enum):
    """External coupon flows served from the deal code pool."""

    FREE_STATIC_CODE = "FREE_STATIC_CODE"
    PASS_UNIQUE_CODE_POOL = "PASS_UNIQUE_CODE_POOL"


class Deal(Base):
    """Offer published by a vendor."""

    __tablename__ = "deals"
    __table_args__ = (
        CheckConstraint("claim_window_minutes > 0", name="claim_window_positive"),
        CheckConstraint("code_reserve_minutes > 0", name="code_reserve_positive"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    vendor_id = Column(UUID(as_uuid=True), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    deal_type = Column(String(32), nullable=True)
    discount_value = Column(String(64), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    starts_at = Column(DateTime(timezone=True), nullable=True)
    ends_at = Column(DateTime(timezone=True), nullable=True)

    # Time-locked redemption policy
    claim_window_minutes = Column(Integer, nullable=False, default=10, server_default="10")
    max_redemptions_per_user = Column(Integer, nullable=False, default=1, server_default="1")
    max_redemptions_total = Column(Integer, nullable=True)
    cooldown_hours = Column(Integer, nullable=True)

    # Button redemption policy; unknown values are treated as "once"
    redemption_frequency = Column(
        String(16),
        nullable=False,
        default=RedemptionFrequency.ONCE.value,
        server_default=RedemptionFrequency.ONCE.value,
    )
    custom_redemption_days = Column(Integer, nullable=True)

    # Access gating
    is_pass_locked = Column(Boolean, nullable=False, default=False, server_default="false")
    tier = Column(String(16), nullable=True)

    # Coupon code pool
    coupon_redemption_type = Column(
        SqlEnum(
            CouponRedemptionType,
            name="coupon_redemption_type",
            values_callable=_enum_values,
        ),
        nullable=True,
    )
    static_code = Column(String(50), nullable=True)
    code_reserve_minutes = Column(Integer, nullable=False, default=30, server_default="30")
    release_expired_reservations = Column(Boolean, nullable=False, default=True, server_default="true")

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
