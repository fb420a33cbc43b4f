"""rental ledger tables

Revision ID: 0001_ledger
Revises:
Create Date: 2026-10-19
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_ledger"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=True),
        sa.Column("phone", sa.String(), nullable=False),
        sa.Column("role", sa.String(), nullable=False),
        sa.Column("push_token", sa.String(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_role", "users", ["role"], unique=False)

    op.create_table(
        "franchises",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("city", sa.String(), nullable=False),
        sa.Column("owner_id", sa.String(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_franchises_owner_id", "franchises", ["owner_id"], unique=False)

    op.create_table(
        "installation_requests",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("product_id", sa.String(), nullable=False),
        sa.Column("franchise_id", sa.String(), sa.ForeignKey("franchises.id"), nullable=False),
        sa.Column("order_type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("completed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_installation_requests_customer_id", "installation_requests", ["customer_id"], unique=False
    )
    op.create_index(
        "ix_installation_requests_franchise_id", "installation_requests", ["franchise_id"], unique=False
    )

    # Version column backs compare-and-set writes on every subscription update.
    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("connect_id", sa.String(), nullable=False),
        sa.Column("razorpay_subscription_id", sa.String(), nullable=True),
        sa.Column(
            "request_id",
            sa.String(),
            sa.ForeignKey("installation_requests.id"),
            nullable=False,
        ),
        sa.Column("customer_id", sa.String(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("product_id", sa.String(), nullable=False),
        sa.Column("franchise_id", sa.String(), sa.ForeignKey("franchises.id"), nullable=False),
        sa.Column("plan_name", sa.String(), nullable=False),
        sa.Column("monthly_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("deposit_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("current_period_start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("next_payment_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("request_id", name="uq_subscriptions_request_id"),
    )
    op.create_index("ix_subscriptions_connect_id", "subscriptions", ["connect_id"], unique=True)
    op.create_index(
        "ix_subscriptions_razorpay_subscription_id",
        "subscriptions",
        ["razorpay_subscription_id"],
        unique=True,
    )
    op.create_index("ix_subscriptions_customer_id", "subscriptions", ["customer_id"], unique=False)
    op.create_index("ix_subscriptions_franchise_id", "subscriptions", ["franchise_id"], unique=False)
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"], unique=False)
    op.create_index(
        "ix_subscriptions_franchise_status", "subscriptions", ["franchise_id", "status"], unique=False
    )

    # Unique gateway payment id makes webhook redelivery a no-op.
    op.create_table(
        "payments",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("razorpay_payment_id", sa.String(), nullable=True),
        sa.Column("razorpay_order_id", sa.String(), nullable=True),
        sa.Column("razorpay_subscription_id", sa.String(), nullable=True),
        sa.Column("user_id", sa.String(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("subscription_id", sa.String(), sa.ForeignKey("subscriptions.id"), nullable=True),
        sa.Column("franchise_id", sa.String(), sa.ForeignKey("franchises.id"), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("payment_method", sa.String(), nullable=False),
        sa.Column("collected_by_agent_id", sa.String(), nullable=True),
        sa.Column("receipt_image", sa.String(), nullable=True),
        sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("paid_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("razorpay_payment_id", name="uq_payments_razorpay_payment_id"),
    )
    op.create_index("ix_payments_razorpay_order_id", "payments", ["razorpay_order_id"], unique=False)
    op.create_index("ix_payments_user_id", "payments", ["user_id"], unique=False)
    op.create_index("ix_payments_subscription_id", "payments", ["subscription_id"], unique=False)
    op.create_index("ix_payments_status", "payments", ["status"], unique=False)
    op.create_index(
        "ix_payments_subscription_status_type",
        "payments",
        ["subscription_id", "status", "type"],
        unique=False,
    )

    op.create_table(
        "action_history",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("subscription_id", sa.String(), sa.ForeignKey("subscriptions.id"), nullable=True),
        sa.Column("payment_id", sa.String(), sa.ForeignKey("payments.id"), nullable=True),
        sa.Column("action_type", sa.String(), nullable=False),
        sa.Column("from_status", sa.String(), nullable=True),
        sa.Column("to_status", sa.String(), nullable=True),
        sa.Column("performed_by", sa.String(), nullable=False),
        sa.Column("performed_by_role", sa.String(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_action_history_payment_id", "action_history", ["payment_id"], unique=False)
    op.create_index("ix_action_history_action_type", "action_history", ["action_type"], unique=False)
    op.create_index(
        "ix_action_history_subscription_created",
        "action_history",
        ["subscription_id", sa.text("created_at DESC")],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_action_history_subscription_created", table_name="action_history")
    op.drop_index("ix_action_history_action_type", table_name="action_history")
    op.drop_index("ix_action_history_payment_id", table_name="action_history")
    op.drop_table("action_history")
    op.drop_index("ix_payments_subscription_status_type", table_name="payments")
    op.drop_index("ix_payments_status", table_name="payments")
    op.drop_index("ix_payments_subscription_id", table_name="payments")
    op.drop_index("ix_payments_user_id", table_name="payments")
    op.drop_index("ix_payments_razorpay_order_id", table_name="payments")
    op.drop_table("payments")
    op.drop_index("ix_subscriptions_franchise_status", table_name="subscriptions")
    op.drop_index("ix_subscriptions_status", table_name="subscriptions")
    op.drop_index("ix_subscriptions_franchise_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_customer_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_razorpay_subscription_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_connect_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_installation_requests_franchise_id", table_name="installation_requests")
    op.drop_index("ix_installation_requests_customer_id", table_name="installation_requests")
    op.drop_table("installation_requests")
    op.drop_index("ix_franchises_owner_id", table_name="franchises")
    op.drop_table("franchises")
    op.drop_index("ix_users_role", table_name="users")
    op.drop_table("users")
