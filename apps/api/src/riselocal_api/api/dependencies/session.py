"""Session-aware dependencies for member and vendor APIs."""

from __future__ import annotations

from uuid import UUID

from fastapi import Depends, Header, HTTPException, Path, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from riselocal_api.db.session import get_session
from riselocal_api.models.user import User
from riselocal_api.models.vendor import Vendor


def _parse_session_user(session_user: str) -> UUID:
    try:
        return UUID(session_user)
    except ValueError as error:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid session user identifier",
        ) from error


async def require_member_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the authenticated user from forwarded session headers."""

    if not session_user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing session user context",
        )

    user_id = _parse_session_user(session_user)
    stmt = select(User).where(User.id == user_id)
    result = await db.execute(stmt)
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session user not found",
        )

    return user


async def optional_member_session(
    session_user: str | None = Header(None, alias="X-Session-User"),
    db: AsyncSession = Depends(get_session),
) -> User | None:
    """Like :func:`require_member_session` but anonymous browsing is allowed."""

    if not session_user:
        return None
    user_id = _parse_session_user(session_user)
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def require_vendor_owner(
    vendor_id: UUID = Path(...),
    user: User = Depends(require_member_session),
    db: AsyncSession = Depends(get_session),
) -> Vendor:
    """Resolve the vendor from the path and ensure the session user owns it."""

    vendor = await db.get(Vendor, vendor_id)
    if vendor is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vendor not found")
    if vendor.owner_user_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Session user does not manage this vendor",
        )
    return vendor
