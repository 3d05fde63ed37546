"""Redemption domain values."""

from .variants import (  # noqa: F401
    ExpiredRedemption,
    IssuedRedemption,
    Redemption,
    RedeemedRedemption,
    VerifiedRedemption,
    VoidedRedemption,
    to_variant,
)
