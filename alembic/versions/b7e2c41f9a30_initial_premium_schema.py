"""initial premium schema

Revision ID: b7e2c41f9a30
Revises:
Create Date: 2026-10-19 10:12:41.508213

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql
import uuid
from decimal import Decimal


# revision identifiers, used by Alembic.
revision: str = 'b7e2c41f9a30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_DOC = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

BASIC_FEATURES = {
    "unlimited_messages": True,
    "profile_boost": True,
    "hide_ads": True,
    "unlimited_swipes": True,
}
GOLD_FEATURES = {**BASIC_FEATURES, "see_who_liked": True, "rewind": True, "boost_per_month": 3}
PLATINUM_FEATURES = {**GOLD_FEATURES, "passport": True, "boost_per_month": 10}


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False, server_default="user"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("is_premium", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("premium_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("premium_features", JSON_DOC, nullable=True),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "plans",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("code", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="TRY"),
        sa.Column("duration_days", sa.Integer(), nullable=False),
        sa.Column("features", JSON_DOC, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_popular", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_plans_code", "plans", ["code"], unique=True)

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("plan_id", sa.Uuid(), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("start_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payment_method", sa.String(length=50), nullable=True),
        sa.Column("external_tx_id", sa.String(length=255), nullable=True),
        sa.Column("amount_paid", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="TRY"),
        sa.Column("auto_renew", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_reason", sa.Text(), nullable=True),
        sa.Column("is_admin_given", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("admin_reason", sa.Text(), nullable=True),
        sa.Column("features", JSON_DOC, nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_plan_id", "subscriptions", ["plan_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])
    op.create_index("ix_subscriptions_end_at", "subscriptions", ["end_at"])
    op.create_index("ix_subscriptions_user_status_end", "subscriptions", ["user_id", "status", "end_at"])

    op.create_table(
        "payments",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("subscription_id", sa.Uuid(), sa.ForeignKey("subscriptions.id"), nullable=True),
        sa.Column("plan_id", sa.Uuid(), sa.ForeignKey("plans.id"), nullable=False),
        sa.Column("refund_of_id", sa.Uuid(), sa.ForeignKey("payments.id"), nullable=True),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("payment_method", sa.String(length=50), nullable=True),
        sa.Column("external_tx_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("gateway_response", JSON_DOC, nullable=True),
        sa.Column("is_admin_given", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    op.create_index("ix_payments_subscription_id", "payments", ["subscription_id"])
    op.create_index("ix_payments_plan_id", "payments", ["plan_id"])

    op.create_table(
        "feature_usage",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.Uuid(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("feature_name", sa.String(length=100), nullable=False),
        sa.Column("usage_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("last_used_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("user_id", "feature_name", name="uq_feature_usage_user_feature"),
    )
    op.create_index("ix_feature_usage_user_id", "feature_usage", ["user_id"])
    op.create_index("ix_feature_usage_feature_name", "feature_usage", ["feature_name"])

    plans = sa.table(
        "plans",
        sa.column("id", sa.Uuid),
        sa.column("code", sa.String),
        sa.column("name", sa.String),
        sa.column("description", sa.Text),
        sa.column("price", sa.Numeric),
        sa.column("currency", sa.String),
        sa.column("duration_days", sa.Integer),
        sa.column("features", JSON_DOC),
        sa.column("is_active", sa.Boolean),
        sa.column("is_popular", sa.Boolean),
        sa.column("display_order", sa.Integer),
    )

    op.bulk_insert(
        plans,
        [
            {
                "id": uuid.uuid4(),
                "code": "BASIC_1M",
                "name": "Basic",
                "description": "Unlimited messages and swipes, no ads",
                "price": Decimal("49.90"),
                "currency": "TRY",
                "duration_days": 30,
                "features": BASIC_FEATURES,
                "is_active": True,
                "is_popular": False,
                "display_order": 1,
            },
            {
                "id": uuid.uuid4(),
                "code": "GOLD_1M",
                "name": "Gold",
                "description": "See who liked you, rewind and 3 boosts a month",
                "price": Decimal("99.90"),
                "currency": "TRY",
                "duration_days": 30,
                "features": GOLD_FEATURES,
                "is_active": True,
                "is_popular": True,
                "display_order": 2,
            },
            {
                "id": uuid.uuid4(),
                "code": "PLATINUM_1M",
                "name": "Platinum",
                "description": "Everything in Gold, passport and 10 boosts a month",
                "price": Decimal("149.90"),
                "currency": "TRY",
                "duration_days": 30,
                "features": PLATINUM_FEATURES,
                "is_active": True,
                "is_popular": False,
                "display_order": 3,
            },
        ],
    )


def downgrade() -> None:
    op.drop_table("feature_usage")
    op.drop_table("payments")
    op.drop_table("subscriptions")
    op.drop_table("plans")
    op.drop_table("users")
