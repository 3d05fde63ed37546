"""Member-facing deal access and redemption endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.api.dependencies.session import optional_member_session, require_member_session
from riselocal_api.api.responses import failure_response
from riselocal_api.db.session import get_session
from riselocal_api.models.user import User
from riselocal_api.services.redemptions import (
    FailureReason,
    RedemptionFailure,
    RedemptionService,
)


router = APIRouter(prefix="/deals", tags=["Deals"])


class DealAccessResponse(BaseModel):
    success: bool = True
    dealId: UUID
    access: dict[str, Any]
    lockStatus: dict[str, bool]


class IssueCodeResponse(BaseModel):
    success: bool = True
    redemptionId: UUID
    code: str
    expiresAt: datetime
    reused: bool


class RedeemRequest(BaseModel):
    source: Optional[str] = Field(None, max_length=64, description="Surface the redemption came from")


class RedeemResponse(BaseModel):
    success: bool = True
    redemption: dict[str, Any]
    dealTitle: Optional[str]
    vendorName: Optional[str]


class CanRedeemResponse(BaseModel):
    success: bool = True
    canRedeem: bool
    reason: Optional[str]
    message: Optional[str]


class CouponCodeResponse(BaseModel):
    success: bool = True
    type: Literal["STATIC", "UNIQUE"]
    code: str
    codeId: Optional[UUID]
    expiresAt: Optional[datetime]
    reused: bool


@router.get("/{deal_id}/access", response_model=DealAccessResponse, summary="Deal membership access")
async def get_deal_access(
    deal_id: UUID,
    user: User | None = Depends(optional_member_session),
    session: AsyncSession = Depends(get_session),
) -> DealAccessResponse | JSONResponse:
    service = RedemptionService(session)
    result = await service.access_info(deal_id, user)
    if isinstance(result, RedemptionFailure):
        return failure_response(result)
    info, lock_status = result
    return DealAccessResponse(dealId=deal_id, access=info.as_dict(), lockStatus=lock_status.as_dict())


@router.post(
    "/{deal_id}/codes",
    response_model=IssueCodeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue a time-locked redemption code",
)
async def issue_redemption_code(
    deal_id: UUID,
    response: Response,
    user: User = Depends(require_member_session),
    session: AsyncSession = Depends(get_session),
) -> IssueCodeResponse | JSONResponse:
    """Issue a code to show at the counter; repeating the call replays the live code."""

    service = RedemptionService(session)
    result = await service.issue_code(deal_id, user)
    if isinstance(result, RedemptionFailure):
        return failure_response(result)
    if result.reused:
        response.status_code = status.HTTP_200_OK
    return IssueCodeResponse(
        redemptionId=result.redemption.id,
        code=result.code,
        expiresAt=result.expires_at,
        reused=result.reused,
    )


@router.post(
    "/{deal_id}/redeem",
    response_model=RedeemResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Redeem a deal with one tap",
)
async def redeem_deal(
    deal_id: UUID,
    payload: RedeemRequest | None = None,
    user: User = Depends(require_member_session),
    session: AsyncSession = Depends(get_session),
) -> RedeemResponse | JSONResponse:
    service = RedemptionService(session)
    result = await service.redeem(deal_id, user, payload.source if payload else None)
    if isinstance(result, RedemptionFailure):
        return failure_response(result)
    return RedeemResponse(
        redemption=result.redemption.as_dict(),
        dealTitle=result.deal_title,
        vendorName=result.vendor_name,
    )


@router.get("/{deal_id}/can-redeem", response_model=CanRedeemResponse, summary="Check one-tap eligibility")
async def can_redeem_deal(
    deal_id: UUID,
    user: User = Depends(require_member_session),
    session: AsyncSession = Depends(get_session),
) -> CanRedeemResponse | JSONResponse:
    service = RedemptionService(session)
    result = await service.can_redeem(deal_id, user)
    if result.reason == FailureReason.NOT_FOUND:
        return failure_response(RedemptionFailure(FailureReason.NOT_FOUND, result.message or "Deal not found."))
    return CanRedeemResponse(
        canRedeem=result.can_redeem,
        reason=result.reason.value if result.reason else None,
        message=result.message,
    )


@router.post("/{deal_id}/coupon-code", response_model=CouponCodeResponse, summary="Claim a coupon code")
async def claim_coupon_code(
    deal_id: UUID,
    user: User = Depends(require_member_session),
    session: AsyncSession = Depends(get_session),
) -> CouponCodeResponse | JSONResponse:
    service = RedemptionService(session)
    result = await service.claim_coupon_code(deal_id, user)
    if isinstance(result, RedemptionFailure):
        return failure_response(result)
    return CouponCodeResponse(
        type=result.type,
        code=result.code,
        codeId=result.code_id,
        expiresAt=result.expires_at,
        reused=result.reused,
    )
