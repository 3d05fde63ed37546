"""Deal redemption engine: access gating, codes, button redemptions and pools."""

from .access import (
    AccessReason,
    DealAccessInfo,
    DealLockStatus,
    MemberIdentity,
    access_info,
    can_access_deal,
    deal_lock_status,
    has_active_membership,
)
from .codes import CODE_ALPHABET, generate_code, normalize_code
from .cursors import decode_time_uuid_cursor, encode_time_uuid_cursor
from .issuer import RedemptionCodeIssuer
from .policy import RedemptionPolicyEngine
from .pool import DealCodePoolManager
from .recorder import ButtonRedemptionRecorder
from .results import (
    CanRedeemResult,
    CouponCodeResult,
    FailureReason,
    HistoryPage,
    IssueCodeResult,
    PoolRedeemResult,
    RedeemResult,
    RedemptionFailure,
    VerifyResult,
    VoidResult,
)
from .service import RedemptionService
from .verifier import RedemptionVerifier

__all__ = [
    "AccessReason",
    "ButtonRedemptionRecorder",
    "CODE_ALPHABET",
    "CanRedeemResult",
    "CouponCodeResult",
    "DealAccessInfo",
    "DealCodePoolManager",
    "DealLockStatus",
    "FailureReason",
    "HistoryPage",
    "IssueCodeResult",
    "MemberIdentity",
    "PoolRedeemResult",
    "RedeemResult",
    "RedemptionCodeIssuer",
    "RedemptionFailure",
    "RedemptionPolicyEngine",
    "RedemptionService",
    "RedemptionVerifier",
    "VerifyResult",
    "VoidResult",
    "access_info",
    "can_access_deal",
    "deal_lock_status",
    "decode_time_uuid_cursor",
    "encode_time_uuid_cursor",
    "generate_code",
    "has_active_membership",
    "normalize_code",
]
