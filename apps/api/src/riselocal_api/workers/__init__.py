"""Background workers supporting async processing."""

from .redemption_sweep import RedemptionSweepWorker

__all__ = [
    "RedemptionSweepWorker",
]
