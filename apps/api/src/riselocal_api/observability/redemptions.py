from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from threading import Lock
from typing import Dict


@dataclass
class RedemptionSnapshot:
    outcomes: Dict[str, Dict[str, int]]
    notifications: Dict[str, int]
    sweeps: Dict[str, int]
    last_sweep_at: datetime | None

    def as_dict(self) -> Dict[str, object]:
        return {
            "outcomes": {operation: dict(counts) for operation, counts in self.outcomes.items()},
            "notifications": dict(self.notifications),
            "sweeps": dict(self.sweeps),
            "lastSweepAt": self.last_sweep_at.isoformat() if self.last_sweep_at else None,
        }


class RedemptionObservabilityStore:
    """Counts redemption outcomes per operation for dashboards and alerting."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._outcomes: Dict[str, Dict[str, int]] = defaultdict(lambda: defaultdict(int))
        self._notifications: Dict[str, int] = defaultdict(int)
        self._sweeps: Dict[str, int] = defaultdict(int)
        self._last_sweep_at: datetime | None = None

    def record_outcome(self, operation: str, outcome: str) -> None:
        with self._lock:
            self._outcomes[operation][outcome] += 1

    def record_notification(self, event_type: str, *, delivered: bool) -> None:
        with self._lock:
            key = f"{event_type}:{'delivered' if delivered else 'failed'}"
            self._notifications[key] += 1

    def record_sweep(self, summary: Dict[str, int]) -> None:
        with self._lock:
            self._sweeps["runs"] += 1
            for key, value in summary.items():
                self._sweeps[key] += int(value)
            self._last_sweep_at = datetime.now(timezone.utc)

    def snapshot(self) -> RedemptionSnapshot:
        with self._lock:
            outcomes = {operation: dict(counts) for operation, counts in self._outcomes.items()}
            notifications = dict(self._notifications)
            sweeps = dict(self._sweeps)
            last_sweep_at = self._last_sweep_at
        return RedemptionSnapshot(
            outcomes=outcomes,
            notifications=notifications,
            sweeps=sweeps,
            last_sweep_at=last_sweep_at,
        )

    def reset(self) -> None:
        with self._lock:
            self._outcomes.clear()
            self._notifications.clear()
            self._sweeps.clear()
            self._last_sweep_at = None


_STORE = RedemptionObservabilityStore()


def get_redemption_store() -> RedemptionObservabilityStore:
    return _STORE


__all__ = ["get_redemption_store", "RedemptionObservabilityStore", "RedemptionSnapshot"]
