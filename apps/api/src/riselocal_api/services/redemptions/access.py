"""Membership-pass entitlement checks for locked deals.

Everything here is a pure function over the identity fields handed in by the
caller; nothing touches the database and nothing is cached between calls.
Entitlement fails closed: any missing, malformed or stale value denies access.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Mapping, Optional
from uuid import UUID

from riselocal_api.core.clock import ensure_aware, resolve_now

if TYPE_CHECKING:  # pragma: no cover
    from loguru import Logger


MEMBER_ONLY_TIERS = frozenset({"premium", "member"})


class AccessReason(str, Enum):
    PUBLIC = "public"
    MEMBER_WITH_PASS = "member_with_pass"
    LOCKED_NO_PASS = "locked_no_pass"
    LOCKED_NO_USER = "locked_no_user"


@dataclass(frozen=True, slots=True)
class MemberIdentity:
    """Identity provider view of the current user."""

    id: UUID | None
    is_pass_member: Any = False
    pass_expires_at: Any = None

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "MemberIdentity":
        raw_id = payload.get("id")
        identifier: UUID | None
        try:
            identifier = UUID(str(raw_id)) if raw_id is not None else None
        except ValueError:
            identifier = None
        return cls(
            id=identifier,
            is_pass_member=payload.get("isPassMember", payload.get("is_pass_member", False)),
            pass_expires_at=payload.get("passExpiresAt", payload.get("pass_expires_at")),
        )


@dataclass(frozen=True, slots=True)
class DealAccessInfo:
    is_locked: bool
    requires_membership: bool
    user_has_membership: bool
    reason: AccessReason

    def as_dict(self) -> dict[str, Any]:
        return {
            "isLocked": self.is_locked,
            "requiresMembership": self.requires_membership,
            "userHasMembership": self.user_has_membership,
            "reason": self.reason.value,
        }


@dataclass(frozen=True, slots=True)
class DealLockStatus:
    """Display flags for deal cards."""

    is_locked: bool
    show_lock_overlay: bool
    show_member_badge: bool
    can_redeem: bool

    def as_dict(self) -> dict[str, bool]:
        return {
            "isLocked": self.is_locked,
            "showLockOverlay": self.show_lock_overlay,
            "showMemberBadge": self.show_member_badge,
            "canRedeem": self.can_redeem,
        }


def parse_pass_expiry(value: Any) -> Optional[datetime]:
    """Return an aware UTC instant or ``None`` when the value is unusable."""

    if isinstance(value, datetime):
        return ensure_aware(value)
    if isinstance(value, str):
        candidate = value.strip()
        if not candidate:
            return None
        if candidate.endswith(("Z", "z")):
            candidate = f"{candidate[:-1]}+00:00"
        try:
            return ensure_aware(datetime.fromisoformat(candidate))
        except ValueError:
            return None
    return None


def has_active_membership(
    user: Any,
    *,
    now: datetime | None = None,
    log: "Logger | None" = None,
) -> bool:
    if user is None:
        _trace(log, "No user supplied", result=False)
        return False

    if getattr(user, "is_pass_member", False) is not True:
        _trace(log, "User is not a pass member", user_id=_user_id(user), result=False)
        return False

    raw_expiry = getattr(user, "pass_expires_at", None)
    if raw_expiry is None:
        _trace(log, "Pass member has no expiry", user_id=_user_id(user), result=False)
        return False

    expires_at = parse_pass_expiry(raw_expiry)
    if expires_at is None:
        _trace(log, "Pass expiry could not be parsed", user_id=_user_id(user), raw_expiry=str(raw_expiry), result=False)
        return False

    reference = resolve_now(now)
    active = expires_at > reference
    _trace(
        log,
        "Evaluated pass expiry",
        user_id=_user_id(user),
        pass_expires_at=expires_at.isoformat(),
        result=active,
    )
    return active


def is_membership_locked_deal(deal: Any) -> bool:
    if deal is None:
        return False
    if getattr(deal, "is_pass_locked", False) is True:
        return True
    tier = getattr(deal, "tier", None)
    return isinstance(tier, str) and tier in MEMBER_ONLY_TIERS


def can_access_deal(
    user: Any,
    deal: Any,
    *,
    now: datetime | None = None,
    log: "Logger | None" = None,
) -> bool:
    if not is_membership_locked_deal(deal):
        return True
    return has_active_membership(user, now=now, log=log)


def access_info(
    user: Any,
    deal: Any,
    *,
    now: datetime | None = None,
    log: "Logger | None" = None,
) -> DealAccessInfo:
    locked = is_membership_locked_deal(deal)
    has_pass = has_active_membership(user, now=now, log=log)

    if not locked:
        reason = AccessReason.PUBLIC
    elif has_pass:
        reason = AccessReason.MEMBER_WITH_PASS
    elif user is None:
        reason = AccessReason.LOCKED_NO_USER
    else:
        reason = AccessReason.LOCKED_NO_PASS

    return DealAccessInfo(
        is_locked=locked and not has_pass,
        requires_membership=locked,
        user_has_membership=has_pass,
        reason=reason,
    )


def deal_lock_status(
    user: Any,
    deal: Any,
    *,
    now: datetime | None = None,
    log: "Logger | None" = None,
) -> DealLockStatus:
    locked = is_membership_locked_deal(deal)
    has_pass = has_active_membership(user, now=now, log=log)
    blocked = locked and not has_pass
    return DealLockStatus(
        is_locked=blocked,
        show_lock_overlay=blocked,
        show_member_badge=locked,
        can_redeem=not blocked,
    )


def _user_id(user: Any) -> str | None:
    identifier = getattr(user, "id", None)
    return str(identifier) if identifier is not None else None


def _trace(log: "Logger | None", message: str, **context: Any) -> None:
    if log is not None:
        log.debug(message, **context)


__all__ = [
    "AccessReason",
    "DealAccessInfo",
    "DealLockStatus",
    "MemberIdentity",
    "access_info",
    "can_access_deal",
    "deal_lock_status",
    "has_active_membership",
    "is_membership_locked_deal",
    "parse_pass_expiry",
]
