"""Translate redemption failures into HTTP responses."""

from __future__ import annotations

from fastapi import status
from fastapi.responses import JSONResponse

from riselocal_api.services.redemptions import FailureReason, RedemptionFailure

STATUS_BY_REASON: dict[FailureReason, int] = {
    FailureReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FailureReason.UNAUTHORIZED: status.HTTP_403_FORBIDDEN,
    FailureReason.MEMBERSHIP_REQUIRED: status.HTTP_403_FORBIDDEN,
    FailureReason.ALREADY_CONSUMED: status.HTTP_409_CONFLICT,
    FailureReason.EXPIRED: status.HTTP_410_GONE,
    FailureReason.LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
    FailureReason.COOLDOWN_ACTIVE: status.HTTP_429_TOO_MANY_REQUESTS,
    FailureReason.FREQUENCY_WINDOW_ACTIVE: status.HTTP_429_TOO_MANY_REQUESTS,
    FailureReason.INACTIVE_DEAL: status.HTTP_400_BAD_REQUEST,
    FailureReason.OUTSIDE_AVAILABILITY_WINDOW: status.HTTP_400_BAD_REQUEST,
    FailureReason.CODE_GENERATION_EXHAUSTED: status.HTTP_503_SERVICE_UNAVAILABLE,
    FailureReason.POOL_EXHAUSTED: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def failure_response(failure: RedemptionFailure) -> JSONResponse:
    headers: dict[str, str] = {}
    if failure.retry_after is not None:
        headers["Retry-After"] = str(max(int(failure.retry_after.total_seconds()), 0))
    return JSONResponse(
        status_code=STATUS_BY_REASON.get(failure.reason, status.HTTP_400_BAD_REQUEST),
        content=failure.as_dict(),
        headers=headers or None,
    )


__all__ = ["STATUS_BY_REASON", "failure_response"]
