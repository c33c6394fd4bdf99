"""Initial schema: users, branches, tables, schedules, offers, bookings, payments, webhook log.

Revision ID: 001
Revises: None
Create Date: 2026-10-16
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Users: profile and loyalty balance only, credentials live elsewhere
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("role", sa.String(20), nullable=False, server_default=sa.text("'customer'")),
        sa.Column("membership_tier", sa.String(20), nullable=False, server_default=sa.text("'Bronze'")),
        sa.Column("loyalty_points", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("loyalty_points >= 0", name="check_loyalty_points_non_negative"),
        sa.CheckConstraint("role IN ('customer', 'manager', 'admin')", name="check_user_role"),
    )
    op.create_index("ix_users_id", "users", ["id"])
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "branches",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("timezone", sa.String(64), nullable=False, server_default=sa.text("'UTC'")),
        sa.Column("operating_hours", sa.JSON(), nullable=False),
        sa.Column("total_seats", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_party_size", sa.Integer(), nullable=False, server_default=sa.text("20")),
        sa.Column("free_cancellation_hours", sa.Float(), nullable=False, server_default=sa.text("24")),
        sa.Column("cancellation_fee", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("min_booking_hours", sa.Float(), nullable=True),
        sa.Column("max_booking_hours", sa.Float(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        *_timestamps(),
        sa.CheckConstraint("cancellation_fee >= 0", name="check_branch_cancellation_fee"),
        sa.CheckConstraint("free_cancellation_hours >= 0", name="check_branch_free_cancellation_hours"),
    )
    op.create_index("ix_branches_id", "branches", ["id"])

    op.create_table(
        "restaurant_tables",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("table_number", sa.String(20), nullable=False),
        sa.Column("seats", sa.Integer(), nullable=False),
        sa.Column("theme", sa.String(20), nullable=False, server_default=sa.text("'Casual'")),
        sa.Column("price_multiplier", sa.Float(), nullable=False, server_default=sa.text("1.0")),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("advance_booking_days", sa.Integer(), nullable=True),
        sa.Column("min_booking_hours", sa.Float(), nullable=True),
        sa.Column("max_booking_hours", sa.Float(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("branch_id", "table_number", name="uq_branch_table_number"),
        sa.CheckConstraint("seats BETWEEN 1 AND 20", name="check_table_seats_range"),
        sa.CheckConstraint(
            "price_multiplier >= 0.5 AND price_multiplier <= 3.0",
            name="check_table_price_multiplier_range",
        ),
    )
    op.create_index("ix_restaurant_tables_id", "restaurant_tables", ["id"])
    op.create_index("ix_restaurant_tables_branch_id", "restaurant_tables", ["branch_id"])
    # Availability lookups filter by branch, then theme and capacity
    op.create_index("ix_tables_branch_theme_seats", "restaurant_tables", ["branch_id", "theme", "seats"])

    # One version counter per (table, day). Booking creation compare-and-sets it.
    op.create_table(
        "table_schedules",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("table_id", sa.Integer(), sa.ForeignKey("restaurant_tables.id"), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.UniqueConstraint("table_id", "booking_date", name="uq_table_schedule_day"),
    )

    op.create_table(
        "offers",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("code", sa.String(32), nullable=True),
        sa.Column("type", sa.String(20), nullable=False),
        sa.Column("discount_value", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("max_discount_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("min_order_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("valid_days", sa.JSON(), nullable=False),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_uses_per_user", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("min_party_size", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("max_party_size", sa.Integer(), nullable=False, server_default=sa.text("20")),
        sa.Column("membership_tiers", sa.JSON(), nullable=False),
        sa.Column("payment_methods", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("priority", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("conversions", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("revenue", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.UniqueConstraint("code", name="uq_offers_code"),
        sa.CheckConstraint(
            "type IN ('percentage', 'fixed', 'buy_one_get_one', 'combo', 'loyalty', 'seasonal', 'happy_hour')",
            name="check_offer_type",
        ),
        sa.CheckConstraint("discount_value >= 0", name="check_offer_discount_non_negative"),
        # The guarded increment relies on this never being crossed
        sa.CheckConstraint("max_uses IS NULL OR used_count <= max_uses", name="check_offer_usage_cap"),
    )
    op.create_index("ix_offers_id", "offers", ["id"])
    op.create_index("ix_offers_branch_active_dates", "offers", ["branch_id", "is_active", "start_date", "end_date"])

    op.create_table(
        "offer_usages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("offer_id", sa.Integer(), sa.ForeignKey("offers.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("offer_id", "user_id", name="uq_offer_usage_user"),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("reference", sa.String(20), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("branch_id", sa.Integer(), sa.ForeignKey("branches.id"), nullable=False),
        sa.Column("table_id", sa.Integer(), sa.ForeignKey("restaurant_tables.id"), nullable=False),
        sa.Column("booking_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("party_size", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("special_requests", sa.String(500), nullable=True),
        sa.Column("subtotal_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("offer_id", sa.Integer(), sa.ForeignKey("offers.id"), nullable=True),
        sa.Column("payment_id", sa.Integer(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("checked_in_by", sa.Integer(), nullable=True),
        sa.Column("cancelled_by", sa.String(20), nullable=True),
        sa.Column("cancellation_reason", sa.String(200), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rating_food", sa.Integer(), nullable=True),
        sa.Column("rating_service", sa.Integer(), nullable=True),
        sa.Column("rating_ambiance", sa.Integer(), nullable=True),
        sa.Column("rating_overall", sa.Integer(), nullable=True),
        sa.Column("review", sa.String(500), nullable=True),
        sa.Column("rated_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("party_size > 0", name="check_booking_party_size_positive"),
        sa.CheckConstraint("start_time < end_time", name="check_booking_slot_order"),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'completed')",
            name="check_booking_status",
        ),
        sa.CheckConstraint("total_amount >= 0", name="check_booking_total_non_negative"),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_reference", "bookings", ["reference"], unique=True)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_branch_id", "bookings", ["branch_id"])
    op.create_index("ix_bookings_payment_id", "bookings", ["payment_id"])
    # The overlap check reads every active booking of a table on a day
    op.create_index("ix_bookings_table_date_status", "bookings", ["table_id", "booking_date", "status"])

    op.create_table(
        "booking_items",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id", ondelete="CASCADE"), nullable=False),
        sa.Column("menu_item_id", sa.String(64), nullable=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("special_instructions", sa.Text(), nullable=True),
        sa.CheckConstraint("quantity > 0", name="check_item_quantity_positive"),
        sa.CheckConstraint("unit_price >= 0", name="check_item_price_non_negative"),
    )
    op.create_index("ix_booking_items_booking_id", "booking_items", ["booking_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("reference", sa.String(24), nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default=sa.text("'INR'")),
        sa.Column("method", sa.String(20), nullable=False, server_default=sa.text("'razorpay'")),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'pending'")),
        sa.Column("gateway", sa.String(20), nullable=True),
        sa.Column("gateway_order_id", sa.String(64), nullable=True),
        sa.Column("gateway_payment_id", sa.String(64), nullable=True),
        sa.Column("gateway_signature", sa.String(128), nullable=True),
        sa.Column("gateway_response", sa.JSON(), nullable=True),
        sa.Column("transaction_id", sa.String(64), nullable=True),
        sa.Column("transaction_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        sa.Column("gateway_fee", sa.Numeric(10, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("loyalty_points_awarded", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("refund_reference", sa.String(32), nullable=True),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("refund_reason", sa.String(200), nullable=True),
        sa.Column("refund_status", sa.String(20), nullable=True),
        sa.Column("refund_method", sa.String(20), nullable=True),
        sa.Column("refunded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("gateway_refund_id", sa.String(64), nullable=True),
        sa.Column("refund_failure_reason", sa.String(255), nullable=True),
        *_timestamps(),
        # One payment per booking: backstop for the compare-and-set in create_order
        sa.UniqueConstraint("booking_id", name="uq_payments_booking_id"),
        sa.CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'cancelled', 'refunded')",
            name="check_payment_status",
        ),
        sa.CheckConstraint(
            "refund_status IS NULL OR refund_status IN ('pending', 'processed', 'failed')",
            name="check_payment_refund_status",
        ),
    )
    op.create_index("ix_payments_id", "payments", ["id"])
    op.create_index("ix_payments_reference", "payments", ["reference"], unique=True)
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    op.create_index("ix_payments_gateway_order_id", "payments", ["gateway_order_id"], unique=True)
    op.create_index("ix_payments_gateway_payment_id", "payments", ["gateway_payment_id"])
    op.create_index("ix_payments_user_status", "payments", ["user_id", "status"])

    # Webhook deliveries; the unique event_id is what makes replays no-ops
    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_id", sa.String(64), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("result", sa.String(20), nullable=False),
        sa.Column("error_message", sa.String(255), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint("event_id", name="uq_webhook_events_event_id"),
    )


def downgrade() -> None:
    op.drop_table("webhook_events")
    op.drop_table("payments")
    op.drop_table("booking_items")
    op.drop_table("bookings")
    op.drop_table("offer_usages")
    op.drop_table("offers")
    op.drop_table("table_schedules")
    op.drop_table("restaurant_tables")
    op.drop_table("branches")
    op.drop_table("users")
