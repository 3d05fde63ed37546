"""Recurring job entrypoints for redemption housekeeping."""

__all__ = [
    "redemptions",
]
