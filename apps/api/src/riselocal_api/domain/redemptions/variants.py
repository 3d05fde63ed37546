"""Tagged redemption variants built from ``deal_redemptions`` rows.

Both redemption models share one table with many nullable columns. Callers
work with these variants instead, so each state carries exactly the fields that
are meaningful for it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Union
from uuid import UUID

from riselocal_api.core.clock import ensure_aware
from riselocal_api.models.redemption import DealRedemption, RedemptionKind, RedemptionStatus


@dataclass(frozen=True, slots=True)
class _RedemptionBase:
    id: UUID
    deal_id: UUID
    vendor_id: UUID
    user_id: UUID
    kind: RedemptionKind
    created_at: datetime | None

    def _base_payload(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "dealId": str(self.deal_id),
            "vendorId": str(self.vendor_id),
            "userId": str(self.user_id),
            "kind": self.kind.value,
            "status": self.status,
            "createdAt": _iso(self.created_at),
        }


@dataclass(frozen=True, slots=True)
class IssuedRedemption(_RedemptionBase):
    code: str
    issued_at: datetime
    expires_at: datetime
    status: Literal["issued"] = "issued"

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def as_dict(self) -> dict[str, Any]:
        payload = self._base_payload()
        payload.update(code=self.code, issuedAt=_iso(self.issued_at), expiresAt=_iso(self.expires_at))
        return payload


@dataclass(frozen=True, slots=True)
class VerifiedRedemption(_RedemptionBase):
    code: str
    issued_at: datetime | None
    verified_at: datetime
    status: Literal["verified"] = "verified"

    def as_dict(self) -> dict[str, Any]:
        payload = self._base_payload()
        payload.update(code=self.code, issuedAt=_iso(self.issued_at), verifiedAt=_iso(self.verified_at))
        return payload


@dataclass(frozen=True, slots=True)
class RedeemedRedemption(_RedemptionBase):
    redeemed_at: datetime
    source: str | None
    status: Literal["redeemed"] = "redeemed"

    def as_dict(self) -> dict[str, Any]:
        payload = self._base_payload()
        payload.update(redeemedAt=_iso(self.redeemed_at), source=self.source)
        return payload


@dataclass(frozen=True, slots=True)
class ExpiredRedemption(_RedemptionBase):
    code: str | None
    expires_at: datetime | None
    status: Literal["expired"] = "expired"

    def as_dict(self) -> dict[str, Any]:
        payload = self._base_payload()
        payload.update(code=self.code, expiresAt=_iso(self.expires_at))
        return payload


@dataclass(frozen=True, slots=True)
class VoidedRedemption(_RedemptionBase):
    code: str | None
    voided_at: datetime
    void_reason: str | None
    status: Literal["voided"] = "voided"

    def as_dict(self) -> dict[str, Any]:
        payload = self._base_payload()
        payload.update(code=self.code, voidedAt=_iso(self.voided_at), voidReason=self.void_reason)
        return payload


Redemption = Union[
    IssuedRedemption,
    VerifiedRedemption,
    RedeemedRedemption,
    ExpiredRedemption,
    VoidedRedemption,
]


def to_variant(row: DealRedemption) -> Redemption:
    """Project a persisted row onto its tagged variant."""

    base = {
        "id": row.id,
        "deal_id": row.deal_id,
        "vendor_id": row.vendor_id,
        "user_id": row.user_id,
        "kind": RedemptionKind(row.kind),
        "created_at": _aware(row.created_at),
    }
    status = RedemptionStatus(row.status)
    if status == RedemptionStatus.ISSUED:
        return IssuedRedemption(
            **base,
            code=row.code,
            issued_at=_aware(row.issued_at),
            expires_at=_aware(row.expires_at),
        )
    if status == RedemptionStatus.VERIFIED:
        return VerifiedRedemption(
            **base,
            code=row.code,
            issued_at=_aware(row.issued_at),
            verified_at=_aware(row.verified_at),
        )
    if status == RedemptionStatus.REDEEMED:
        return RedeemedRedemption(**base, redeemed_at=_aware(row.redeemed_at), source=row.source)
    if status == RedemptionStatus.EXPIRED:
        return ExpiredRedemption(**base, code=row.code, expires_at=_aware(row.expires_at))
    return VoidedRedemption(
        **base,
        code=row.code,
        voided_at=_aware(row.voided_at),
        void_reason=row.void_reason,
    )


def _aware(value: datetime | None) -> datetime | None:
    return ensure_aware(value) if value is not None else None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


__all__ = [
    "ExpiredRedemption",
    "IssuedRedemption",
    "Redemption",
    "RedeemedRedemption",
    "VerifiedRedemption",
    "VoidedRedemption",
    "to_variant",
]
