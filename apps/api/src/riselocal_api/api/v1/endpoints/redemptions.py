"""Redemption history for members and admin voids."""

from __future__ import annotations

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.api.dependencies.security import require_admin_api_key
from riselocal_api.api.dependencies.session import require_member_session
from riselocal_api.api.responses import failure_response
from riselocal_api.core.settings import settings
from riselocal_api.db.session import get_session
from riselocal_api.models.redemption import RedemptionStatus
from riselocal_api.models.user import User
from riselocal_api.services.redemptions import (
    HistoryPage,
    RedemptionFailure,
    RedemptionService,
    decode_time_uuid_cursor,
    encode_time_uuid_cursor,
)


router = APIRouter(prefix="/redemptions", tags=["Redemptions"])


class RedemptionHistoryResponse(BaseModel):
    success: bool = True
    redemptions: List[dict[str, Any]]
    nextCursor: Optional[str]


class RedemptionResponse(BaseModel):
    success: bool = True
    redemption: dict[str, Any]


class VoidRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=255, description="Why the redemption is being voided")


class VoidResponse(BaseModel):
    success: bool = True
    alreadyVoided: bool
    redemption: dict[str, Any]


def decode_history_cursor(cursor: str | None):
    if not cursor:
        return None
    try:
        return decode_time_uuid_cursor(cursor)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid redemption cursor") from exc


def history_response(page: HistoryPage) -> RedemptionHistoryResponse:
    return RedemptionHistoryResponse(
        redemptions=[redemption.as_dict() for redemption in page.redemptions],
        nextCursor=encode_time_uuid_cursor(*page.next_cursor) if page.next_cursor else None,
    )


@router.get("", response_model=RedemptionHistoryResponse, summary="Session user redemption history")
async def list_my_redemptions(
    limit: int = Query(settings.redemption_history_page_limit, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    status_filter: Optional[List[RedemptionStatus]] = Query(None, alias="status"),
    user: User = Depends(require_member_session),
    session: AsyncSession = Depends(get_session),
) -> RedemptionHistoryResponse:
    service = RedemptionService(session)
    page = await service.list_user_history(
        user.id,
        limit=limit,
        cursor=decode_history_cursor(cursor),
        statuses=status_filter,
    )
    return history_response(page)


@router.get("/{redemption_id}", response_model=RedemptionResponse, summary="Fetch one redemption")
async def get_my_redemption(
    redemption_id: UUID,
    user: User = Depends(require_member_session),
    session: AsyncSession = Depends(get_session),
) -> RedemptionResponse:
    service = RedemptionService(session)
    redemption = await service.get_redemption(redemption_id)
    if redemption is None or redemption.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Redemption not found")
    return RedemptionResponse(redemption=redemption.as_dict())


@router.post(
    "/{redemption_id}/void",
    response_model=VoidResponse,
    dependencies=[Depends(require_admin_api_key)],
    summary="Void a redemption",
)
async def void_redemption(
    redemption_id: UUID,
    payload: VoidRequest,
    session: AsyncSession = Depends(get_session),
) -> VoidResponse | JSONResponse:
    """Admin correction; voided redemptions stop counting toward caps."""

    service = RedemptionService(session)
    try:
        result = await service.void(redemption_id, payload.reason)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(result, RedemptionFailure):
        return failure_response(result)
    return VoidResponse(alreadyVoided=result.already_voided, redemption=result.redemption.as_dict())
