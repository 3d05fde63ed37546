from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.core.settings import settings
from riselocal_api.db.session import get_session
from riselocal_api.observability.redemptions import get_redemption_store


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "starting", "disabled", "error", "degraded"]
    detail: str | None = Field(default=None, description="Human readable status detail")
    last_error_at: str | None = Field(default=None, description="ISO timestamp of most recent error")
    last_success_at: str | None = Field(default=None, description="ISO timestamp of most recent success")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "degraded", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/health/healthz", include_in_schema=False)
async def service_health_alias() -> dict[str, str]:
    """Backward-compatible alias under /health."""

    return await service_health()


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    components: Dict[str, ComponentStatus] = {}
    status: Literal["ready", "degraded", "error"] = "ready"

    components["database"] = await _evaluate_database(session)
    if components["database"].status == "error":
        status = "error"

    sweep_worker = getattr(request.app.state, "redemption_sweep_worker", None)
    if settings.redemption_sweep_worker_enabled and sweep_worker is not None:
        running = bool(getattr(sweep_worker, "is_running", False))
        sweep_status: Literal["ready", "starting", "disabled", "error"] = "ready" if running else "starting"
        detail = None if running else "Redemption sweep worker not running"
        last_error = getattr(sweep_worker, "last_error", None)
        if last_error:
            sweep_status = "error"
            detail = last_error
            status = "degraded" if status != "error" else status
        elif not running:
            status = "degraded" if status != "error" else status
        last_sweep_at = get_redemption_store().snapshot().last_sweep_at
        components["redemption_sweep"] = ComponentStatus(
            status=sweep_status,
            detail=detail,
            last_success_at=last_sweep_at.isoformat() if last_sweep_at else None,
        )
    else:
        components["redemption_sweep"] = ComponentStatus(
            status="disabled",
            detail="Redemption sweep worker disabled via settings (expiry applied on lookup)",
        )

    return ReadinessPayload(status=status, components=components)


@router.get("/health/readyz", include_in_schema=False)
async def service_readiness_alias(
    request: Request,
    session: AsyncSession = Depends(get_session),
) -> ReadinessPayload:
    """Backward-compatible alias for readiness checks under /health."""

    return await service_readiness(request, session)


async def _evaluate_database(session: AsyncSession) -> ComponentStatus:
    try:
        await session.execute(text("SELECT 1"))
    except SQLAlchemyError as error:
        return ComponentStatus(status="error", detail=f"Database unreachable ({error.__class__.__name__})")
    return ComponentStatus(status="ready")
