"""SQLAlchemy models package."""

from .deal import CouponRedemptionType, Deal, DealTier, RedemptionFrequency  # noqa: F401
from .redemption import (  # noqa: F401
    CONSUMED_STATUSES,
    DealCode,
    DealCodeStatus,
    DealRedemption,
    RedemptionKind,
    RedemptionStatus,
)
from .user import User  # noqa: F401
from .vendor import Vendor  # noqa: F401
