"""Deal redemption records and the pre-generated coupon code pool."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Column,
    DateTime,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID

from riselocal_api.db.base import Base


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RedemptionKind(str, Enum):
    """Which redemption model produced the record."""

    TIME_LOCKED = "time_locked"
    BUTTON = "button"


class RedemptionStatus(str, Enum):
    """Lifecycle statuses shared by both redemption models."""

    ISSUED = "issued"
    VERIFIED = "verified"
    EXPIRED = "expired"
    REDEEMED = "redeemed"
    VOIDED = "voided"


CONSUMED_STATUSES = (RedemptionStatus.VERIFIED, RedemptionStatus.REDEEMED)


class DealRedemption(Base):
    """One user's claim against a deal.

    Time-locked rows start ``issued`` with a code and a claim window; button rows
    are written directly as ``redeemed``. The partial unique index keeps at most
    one live issued code per (deal, user).
    """

    __tablename__ = "deal_redemptions"
    __table_args__ = (
        Index(
            "uq_deal_redemptions_live_issue",
            "deal_id",
            "user_id",
            unique=True,
            sqlite_where=text("status = 'issued'"),
            postgresql_where=text("status = 'issued'"),
        ),
        Index("ix_deal_redemptions_deal_status", "deal_id", "status"),
        Index("ix_deal_redemptions_user_deal", "user_id", "deal_id"),
        Index("ix_deal_redemptions_vendor_created", "vendor_id", "created_at"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    deal_id = Column(UUID(as_uuid=True), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False)
    vendor_id = Column(UUID(as_uuid=True), ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    kind = Column(
        SqlEnum(RedemptionKind, name="deal_redemption_kind", values_callable=_enum_values),
        nullable=False,
    )
    status = Column(
        SqlEnum(RedemptionStatus, name="deal_redemption_status", values_callable=_enum_values),
        nullable=False,
    )
    code = Column(String(32), nullable=True, unique=True)
    source = Column(String(64), nullable=True)
    issued_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    voided_at = Column(DateTime(timezone=True), nullable=True)
    void_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class DealCodeStatus(str, Enum):
    """Pool code lifecycle."""

    AVAILABLE = "AVAILABLE"
    RESERVED = "RESERVED"
    REDEEMED = "REDEEMED"
    EXPIRED = "EXPIRED"


class DealCode(Base):
    """Pre-generated coupon code uploaded by a vendor for pass-only pool deals."""

    __tablename__ = "deal_codes"
    __table_args__ = (
        UniqueConstraint("deal_id", "code", name="uq_deal_codes_deal_code"),
        Index("ix_deal_codes_deal_status", "deal_id", "status"),
        Index("ix_deal_codes_user_deal", "assigned_to_user_id", "deal_id"),
        Index(
            "uq_deal_codes_live_reservation",
            "deal_id",
            "assigned_to_user_id",
            unique=True,
            sqlite_where=text("status = 'RESERVED'"),
            postgresql_where=text("status = 'RESERVED'"),
        ),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    deal_id = Column(UUID(as_uuid=True), ForeignKey("deals.id", ondelete="CASCADE"), nullable=False)
    code = Column(String(50), nullable=False)
    status = Column(
        SqlEnum(DealCodeStatus, name="deal_code_status", values_callable=_enum_values),
        nullable=False,
        default=DealCodeStatus.AVAILABLE,
    )
    assigned_to_user_id = Column(UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reserved_at = Column(DateTime(timezone=True), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    redeemed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False)
