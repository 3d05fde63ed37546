"""Vendor counter tools: code verification, history and coupon pools."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.api.dependencies.session import require_vendor_owner
from riselocal_api.api.responses import failure_response
from riselocal_api.core.settings import settings
from riselocal_api.db.session import get_session
from riselocal_api.models.redemption import RedemptionStatus
from riselocal_api.models.vendor import Vendor
from riselocal_api.services.redemptions import RedemptionFailure, RedemptionService

from .redemptions import RedemptionHistoryResponse, RedemptionResponse, decode_history_cursor, history_response


router = APIRouter(prefix="/vendors/{vendor_id}", tags=["Vendors"])


class VerifyCodeRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64, description="Code shown by the customer")


class PoolUploadRequest(BaseModel):
    codes: List[str] = Field(..., min_length=1, description="Pre-generated coupon codes")


class PoolUploadResponse(BaseModel):
    success: bool = True
    added: int


class PoolStatsResponse(BaseModel):
    success: bool = True
    available: int
    reserved: int
    redeemed: int
    expired: int
    total: int


class PoolRedeemRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)


class PoolRedeemResponse(BaseModel):
    success: bool = True
    codeId: UUID
    code: str
    userId: Optional[UUID]
    redeemedAt: datetime


@router.post("/redemptions/verify", response_model=RedemptionResponse, summary="Verify a customer code")
async def verify_redemption_code(
    payload: VerifyCodeRequest,
    vendor: Vendor = Depends(require_vendor_owner),
    session: AsyncSession = Depends(get_session),
) -> RedemptionResponse | JSONResponse:
    """Accept a code at the counter; each code verifies at most once."""

    service = RedemptionService(session)
    result = await service.verify(payload.code, vendor.id)
    if isinstance(result, RedemptionFailure):
        return failure_response(result)
    return RedemptionResponse(redemption=result.redemption.as_dict())


@router.get("/redemptions", response_model=RedemptionHistoryResponse, summary="Vendor redemption history")
async def list_vendor_redemptions(
    limit: int = Query(settings.redemption_history_page_limit, ge=1, le=100),
    cursor: str | None = Query(None, description="Opaque cursor for pagination"),
    status_filter: Optional[List[RedemptionStatus]] = Query(None, alias="status"),
    vendor: Vendor = Depends(require_vendor_owner),
    session: AsyncSession = Depends(get_session),
) -> RedemptionHistoryResponse:
    service = RedemptionService(session)
    page = await service.list_vendor_history(
        vendor.id,
        limit=limit,
        cursor=decode_history_cursor(cursor),
        statuses=status_filter,
    )
    return history_response(page)


@router.post(
    "/deals/{deal_id}/codes",
    response_model=PoolUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload coupon codes to a deal pool",
)
async def upload_pool_codes(
    deal_id: UUID,
    payload: PoolUploadRequest,
    vendor: Vendor = Depends(require_vendor_owner),
    session: AsyncSession = Depends(get_session),
) -> PoolUploadResponse | JSONResponse:
    service = RedemptionService(session)
    try:
        result = await service.upload_pool_codes(deal_id, vendor.id, payload.codes)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(result, RedemptionFailure):
        return failure_response(result)
    return PoolUploadResponse(added=result)


@router.get("/deals/{deal_id}/codes/stats", response_model=PoolStatsResponse, summary="Coupon pool counts")
async def get_pool_stats(
    deal_id: UUID,
    vendor: Vendor = Depends(require_vendor_owner),
    session: AsyncSession = Depends(get_session),
) -> PoolStatsResponse | JSONResponse:
    service = RedemptionService(session)
    result = await service.pool_stats(deal_id, vendor.id)
    if isinstance(result, RedemptionFailure):
        return failure_response(result)
    return PoolStatsResponse(
        available=result["AVAILABLE"],
        reserved=result["RESERVED"],
        redeemed=result["REDEEMED"],
        expired=result["EXPIRED"],
        total=result["total"],
    )


@router.post("/deals/{deal_id}/codes/redeem", response_model=PoolRedeemResponse, summary="Mark a pool code used")
async def redeem_pool_code(
    deal_id: UUID,
    payload: PoolRedeemRequest,
    vendor: Vendor = Depends(require_vendor_owner),
    session: AsyncSession = Depends(get_session),
) -> PoolRedeemResponse | JSONResponse:
    service = RedemptionService(session)
    result = await service.redeem_pool_code(deal_id, vendor.id, payload.code)
    if isinstance(result, RedemptionFailure):
        return failure_response(result)
    return PoolRedeemResponse(
        codeId=result.code_id,
        code=result.code,
        userId=result.user_id,
        redeemedAt=result.redeemed_at,
    )
