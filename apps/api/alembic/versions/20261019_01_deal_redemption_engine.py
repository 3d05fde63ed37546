"""Deal redemption engine tables.

Revision ID: 20261019_01
Revises:
Create Date: 2026-10-19
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


redemption_kind_enum = sa.Enum("time_locked", "button", name="deal_redemption_kind")
redemption_status_enum = sa.Enum(
    "issued",
    "verified",
    "expired",
    "redeemed",
    "voided",
    name="deal_redemption_status",
)
coupon_type_enum = sa.Enum("FREE_STATIC_CODE", "PASS_UNIQUE_CODE_POOL", name="coupon_redemption_type")
deal_code_status_enum = sa.Enum("AVAILABLE", "RESERVED", "REDEEMED", "EXPIRED", name="deal_code_status")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(), nullable=False),
        sa.Column("display_name", sa.String(), nullable=True),
        sa.Column("is_pass_member", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("pass_expires_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "vendors",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "owner_user_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("contact_email", sa.String(), nullable=True),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_vendors_owner_user_id", "vendors", ["owner_user_id"])

    op.create_table(
        "deals",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "vendor_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("vendors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("deal_type", sa.String(length=32), nullable=True),
        sa.Column("discount_value", sa.String(length=64), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claim_window_minutes", sa.Integer(), nullable=False, server_default="10"),
        sa.Column("max_redemptions_per_user", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_redemptions_total", sa.Integer(), nullable=True),
        sa.Column("cooldown_hours", sa.Integer(), nullable=True),
        sa.Column("redemption_frequency", sa.String(length=16), nullable=False, server_default="once"),
        sa.Column("custom_redemption_days", sa.Integer(), nullable=True),
        sa.Column("is_pass_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("tier", sa.String(length=16), nullable=True),
        sa.Column("coupon_redemption_type", coupon_type_enum, nullable=True),
        sa.Column("static_code", sa.String(length=50), nullable=True),
        sa.Column("code_reserve_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("release_expired_reservations", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("claim_window_minutes > 0", name="ck_deals_claim_window_positive"),
        sa.CheckConstraint("code_reserve_minutes > 0", name="ck_deals_code_reserve_positive"),
    )
    op.create_index("ix_deals_vendor_id", "deals", ["vendor_id"])

    op.create_table(
        "deal_redemptions",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "deal_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "vendor_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("vendors.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "user_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("kind", redemption_kind_enum, nullable=False),
        sa.Column("status", redemption_status_enum, nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("source", sa.String(length=64), nullable=True),
        sa.Column("issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("voided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("void_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("code", name="uq_deal_redemptions_code"),
    )
    op.create_index(
        "uq_deal_redemptions_live_issue",
        "deal_redemptions",
        ["deal_id", "user_id"],
        unique=True,
        sqlite_where=sa.text("status = 'issued'"),
        postgresql_where=sa.text("status = 'issued'"),
    )
    op.create_index("ix_deal_redemptions_deal_status", "deal_redemptions", ["deal_id", "status"])
    op.create_index("ix_deal_redemptions_user_deal", "deal_redemptions", ["user_id", "deal_id"])
    op.create_index("ix_deal_redemptions_vendor_created", "deal_redemptions", ["vendor_id", "created_at"])

    op.create_table(
        "deal_codes",
        sa.Column("id", sa.dialects.postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "deal_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("deals.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("status", deal_code_status_enum, nullable=False, server_default="AVAILABLE"),
        sa.Column(
            "assigned_to_user_id",
            sa.dialects.postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("reserved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("deal_id", "code", name="uq_deal_codes_deal_code"),
    )
    op.create_index("ix_deal_codes_deal_status", "deal_codes", ["deal_id", "status"])
    op.create_index("ix_deal_codes_user_deal", "deal_codes", ["assigned_to_user_id", "deal_id"])
    op.create_index(
        "uq_deal_codes_live_reservation",
        "deal_codes",
        ["deal_id", "assigned_to_user_id"],
        unique=True,
        sqlite_where=sa.text("status = 'RESERVED'"),
        postgresql_where=sa.text("status = 'RESERVED'"),
    )


def downgrade() -> None:
    op.drop_index("uq_deal_codes_live_reservation", table_name="deal_codes")
    op.drop_index("ix_deal_codes_user_deal", table_name="deal_codes")
    op.drop_index("ix_deal_codes_deal_status", table_name="deal_codes")
    op.drop_table("deal_codes")

    op.drop_index("ix_deal_redemptions_vendor_created", table_name="deal_redemptions")
    op.drop_index("ix_deal_redemptions_user_deal", table_name="deal_redemptions")
    op.drop_index("ix_deal_redemptions_deal_status", table_name="deal_redemptions")
    op.drop_index("uq_deal_redemptions_live_issue", table_name="deal_redemptions")
    op.drop_table("deal_redemptions")

    op.drop_index("ix_deals_vendor_id", table_name="deals")
    op.drop_table("deals")

    op.drop_index("ix_vendors_owner_user_id", table_name="vendors")
    op.drop_table("vendors")

    op.drop_index("ix_users_email", table_name="users")
    op.drop_table("users")

    bind = op.get_bind()
    for enum in (deal_code_status_enum, coupon_type_enum, redemption_status_enum, redemption_kind_enum):
        enum.drop(bind, checkfirst=True)
