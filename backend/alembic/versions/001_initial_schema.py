"""Initial schema: users, assets, promotions, bookings, outbox_events.

Revision ID: 001
Revises: None
Create Date: 2026-10-17
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

BOOKING_STATUSES = (
    "'pending_payment', 'confirmed', 'active', 'completed', "
    "'cancelled', 'payment_failed', 'overdue'"
)


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("role", sa.String(20), nullable=False, server_default="user"),
        sa.Column("push_token", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "assets",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(100), nullable=False),
        sa.Column("hourly_rate_minor", sa.Integer(), nullable=False),
        sa.Column("overtime_hourly_rate_minor", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("availability_state", sa.String(20), nullable=False, server_default="available"),
        *_timestamps(),
        sa.CheckConstraint("hourly_rate_minor >= 0", name="check_asset_rate_non_negative"),
        sa.CheckConstraint("overtime_hourly_rate_minor >= 0", name="check_asset_overtime_rate_non_negative"),
        sa.CheckConstraint(
            "availability_state IN ('available', 'maintenance', 'unavailable')",
            name="check_asset_availability_state",
        ),
    )
    op.create_index("ix_assets_id", "assets", ["id"])
    op.create_index("ix_assets_category", "assets", ["category"])

    op.create_table(
        "promotions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("description", sa.String(500), nullable=False, server_default=""),
        sa.Column("discount_type", sa.String(20), nullable=False),
        sa.Column("discount_value", sa.Numeric(12, 2), nullable=False),
        sa.Column("max_discount_minor", sa.Integer(), nullable=True),
        sa.Column("min_booking_value_minor", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=False),
        sa.Column("valid_till", sa.DateTime(timezone=True), nullable=False),
        sa.Column("max_usage_count", sa.Integer(), nullable=False),
        sa.Column("user_max_usage_count", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("eligibility", sa.String(40), nullable=False, server_default="allUsers"),
        sa.Column("asset_categories", sa.JSON(), nullable=False),
        sa.Column("user_ids", sa.JSON(), nullable=False),
        sa.Column("created_by", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        # The ledger's conditional UPDATE keeps usage under the cap; this is the backstop
        sa.CheckConstraint("usage_count >= 0", name="check_promotion_usage_non_negative"),
        sa.CheckConstraint("usage_count <= max_usage_count", name="check_promotion_usage_lte_max"),
        sa.CheckConstraint("max_usage_count >= 1", name="check_promotion_max_usage_positive"),
        sa.CheckConstraint("user_max_usage_count >= 1", name="check_promotion_user_max_positive"),
        sa.CheckConstraint("discount_value >= 0", name="check_promotion_discount_non_negative"),
        sa.CheckConstraint("valid_till >= valid_from", name="check_promotion_validity_window"),
        sa.CheckConstraint(
            "discount_type IN ('percentage', 'fixedAmount')",
            name="check_promotion_discount_type",
        ),
    )
    op.create_index("ix_promotions_id", "promotions", ["id"])
    op.create_index("ix_promotions_code", "promotions", ["code"], unique=True)
    # "Available promotions" listing: active ones that have not expired
    op.create_index("ix_promotions_active_valid_till", "promotions", ["is_active", "valid_till"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_reference", sa.String(20), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("asset_id", sa.Integer(), sa.ForeignKey("assets.id"), nullable=False),
        sa.Column("promotion_id", sa.Integer(), sa.ForeignKey("promotions.id"), nullable=True),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actual_start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="INR"),
        sa.Column("original_amount_minor", sa.Integer(), nullable=False),
        sa.Column("discount_amount_minor", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("taxes_minor", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("final_amount_minor", sa.Integer(), nullable=False),
        sa.Column("overtime_charge_minor", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending_payment"),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column("gateway_order_id", sa.String(64), nullable=True),
        sa.Column("gateway_payment_id", sa.String(64), nullable=True),
        sa.Column("gateway_signature", sa.String(128), nullable=True),
        sa.Column("end_ride_photo_ref", sa.String(512), nullable=True),
        sa.Column("promotion_usage_recorded", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("promotion_usage_reverted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        *_timestamps(),
        sa.CheckConstraint("end_time > start_time", name="check_booking_window"),
        sa.CheckConstraint("original_amount_minor >= 0", name="check_booking_original_non_negative"),
        sa.CheckConstraint("discount_amount_minor >= 0", name="check_booking_discount_non_negative"),
        sa.CheckConstraint(
            "discount_amount_minor <= original_amount_minor",
            name="check_booking_discount_lte_original",
        ),
        sa.CheckConstraint("taxes_minor >= 0", name="check_booking_taxes_non_negative"),
        # Amount identity enforced by the database, not only by the pricing code
        sa.CheckConstraint(
            "final_amount_minor = original_amount_minor - discount_amount_minor + taxes_minor",
            name="check_booking_final_amount",
        ),
        sa.CheckConstraint("overtime_charge_minor >= 0", name="check_booking_overtime_non_negative"),
        sa.CheckConstraint(f"status IN ({BOOKING_STATUSES})", name="check_booking_status"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_booking_reference", "bookings", ["booking_reference"], unique=True)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_asset_id", "bookings", ["asset_id"])
    op.create_index("ix_bookings_promotion_id", "bookings", ["promotion_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_gateway_payment_id", "bookings", ["gateway_payment_id"])
    # One booking per gateway order; also the webhook lookup path
    op.create_unique_constraint("uq_bookings_gateway_order_id", "bookings", ["gateway_order_id"])
    # Availability check: WHERE asset_id = ? AND start_time < ? AND end_time > ?
    op.create_index("ix_bookings_asset_window", "bookings", ["asset_id", "start_time", "end_time"])
    # "My rentals": WHERE user_id = ? [AND status = ?] ORDER BY created_at DESC
    op.create_index("ix_bookings_user_status_created", "bookings", ["user_id", "status", "created_at"])

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("aggregate_id", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("idempotency_key", sa.String(160), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempt_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("last_error", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_outbox_events_id", "outbox_events", ["id"])
    op.create_index("ix_outbox_events_aggregate_id", "outbox_events", ["aggregate_id"])
    op.create_unique_constraint("uq_outbox_events_idempotency_key", "outbox_events", ["idempotency_key"])
    # Sweep: WHERE status = 'pending' AND next_attempt_at <= now()
    op.create_index("ix_outbox_status_next_attempt", "outbox_events", ["status", "next_attempt_at"])


def downgrade() -> None:
    op.drop_table("outbox_events")
    op.drop_table("bookings")
    op.drop_table("promotions")
    op.drop_table("assets")
    op.drop_table("users")
