"""Observability endpoints for redemption outcomes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from fastapi.responses import PlainTextResponse

from riselocal_api.api.dependencies.security import require_admin_api_key
from riselocal_api.observability.redemptions import get_redemption_store


router = APIRouter(prefix="/observability", tags=["Observability"])


@router.get(
    "/redemptions",
    dependencies=[Depends(require_admin_api_key)],
    summary="Redemption outcome counters",
)
async def get_redemption_snapshot() -> dict[str, object]:
    """Retrieve aggregated redemption counters (requires admin API key)."""
    return get_redemption_store().snapshot().as_dict()


def _format_metric(name: str, description: str, value: int | float, labels: dict[str, str] | None = None) -> list[str]:
    label_fragment = ""
    if labels:
        formatted = ",".join(f'{key}="{val}"' for key, val in sorted(labels.items()))
        label_fragment = f"{{{formatted}}}"
    return [
        f"# HELP {name} {description}",
        f"# TYPE {name} counter",
        f"{name}{label_fragment} {value}",
    ]


@router.get(
    "/prometheus",
    dependencies=[Depends(require_admin_api_key)],
    summary="Prometheus-formatted redemption metrics",
    response_class=PlainTextResponse,
    status_code=status.HTTP_200_OK,
)
async def get_prometheus_metrics() -> PlainTextResponse:
    snapshot = get_redemption_store().snapshot()
    lines: list[str] = []
    for operation, outcomes in sorted(snapshot.outcomes.items()):
        for outcome, count in sorted(outcomes.items()):
            lines.extend(
                _format_metric(
                    "riselocal_redemption_outcomes_total",
                    "Redemption operation outcomes",
                    count,
                    {"operation": operation, "outcome": outcome},
                )
            )
    for key, count in sorted(snapshot.notifications.items()):
        event_type, _, delivery = key.partition(":")
        lines.extend(
            _format_metric(
                "riselocal_redemption_notifications_total",
                "Redemption notification deliveries",
                count,
                {"event_type": event_type, "delivery": delivery},
            )
        )
    for key, count in sorted(snapshot.sweeps.items()):
        lines.extend(
            _format_metric(
                f"riselocal_redemption_sweep_{key}_total",
                "Redemption sweep totals",
                count,
            )
        )
    return PlainTextResponse("\n".join(lines) + "\n")
