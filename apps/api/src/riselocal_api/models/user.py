from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, String, func
from sqlalchemy.dialects.postgresql import UUID

from riselocal_api.db.base import Base


class User(Base):
    """Marketplace account as mirrored from the identity provider.

    Only the membership pass fields are consulted by the redemption engine; the
    identity subsystem owns and refreshes them.
    """

    __tablename__ = "users"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String, nullable=False, unique=True, index=True)
    display_name = Column(String, nullable=True)
    is_pass_member = Column(Boolean, nullable=False, default=False, server_default="false")
    pass_expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
