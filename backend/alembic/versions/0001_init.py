"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    def ensure_indexes(table: str, columns: list[str], unique: tuple[str, ...] = ()) -> None:
        idxs = existing_indexes(table)
        for col in columns:
            name = f"ix_{table}_{col}"
            if name not in idxs:
                op.create_index(name, table, [col], unique=col in unique)

    now = sa.text("(CURRENT_TIMESTAMP)")

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("name", sa.String(), nullable=True),
            sa.Column("role", sa.String(), nullable=True),
            sa.Column("credits", sa.Numeric(14, 2), nullable=False, server_default="0"),
            sa.Column("subscription_tier", sa.String(), nullable=True),
            sa.Column("last_credit_update", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
        )
    ensure_indexes("users", ["id", "email", "subscription_tier"], unique=("email",))

    if "user_credits" not in existing_tables:
        op.create_table(
            "user_credits",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("tier", sa.String(), nullable=True),
            sa.Column("monthly_allowance", sa.Integer(), nullable=True),
            sa.Column("renewal_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=now),
        )
    ensure_indexes("user_credits", ["id", "user_id"], unique=("user_id",))

    if "user_subscriptions" not in existing_tables:
        op.create_table(
            "user_subscriptions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("tier", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
            sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=True),
            sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("provider", sa.String(), nullable=True),
            sa.Column("provider_subscription_id", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=now),
        )
    ensure_indexes(
        "user_subscriptions",
        ["id", "user_id", "tier", "status", "provider", "provider_subscription_id"],
        unique=("user_id",),
    )

    if "credit_transactions" not in existing_tables:
        op.create_table(
            "credit_transactions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("amount", sa.Numeric(14, 2), nullable=True),
            sa.Column("type", sa.String(), nullable=True),
            sa.Column("payment_method", sa.String(), nullable=True),
            sa.Column("charge_id", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
            sa.Column("metadata", sa.JSON(), nullable=True),
        )
    ensure_indexes("credit_transactions", ["id", "user_id", "type", "payment_method", "charge_id"])

    if "user_purchases" not in existing_tables:
        op.create_table(
            "user_purchases",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("product_id", sa.String(), nullable=True),
            sa.Column("product_type", sa.String(), nullable=True),
            sa.Column("amount_cents", sa.Integer(), nullable=True),
            sa.Column("charge_id", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=now),
        )
    ensure_indexes(
        "user_purchases",
        ["id", "user_id", "product_id", "product_type", "charge_id", "status"],
        unique=("charge_id",),
    )

    if "coupons" not in existing_tables:
        op.create_table(
            "coupons",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("code", sa.String(), nullable=True),
            sa.Column("type", sa.String(), nullable=True),
            sa.Column("months", sa.Integer(), nullable=True),
            sa.Column("discount_percent", sa.Integer(), nullable=True),
            sa.Column("max_uses", sa.Integer(), nullable=True),
            sa.Column("uses", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
        )
    ensure_indexes("coupons", ["id", "code", "type"], unique=("code",))

    if "coupon_redemptions" not in existing_tables:
        op.create_table(
            "coupon_redemptions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("coupon_id", sa.Integer(), nullable=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("redemption_key", sa.String(), nullable=True),
            sa.Column("credits_granted", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
        )
    ensure_indexes(
        "coupon_redemptions",
        ["id", "coupon_id", "user_id", "redemption_key"],
        unique=("redemption_key",),
    )

    if "fanbases_products" not in existing_tables:
        op.create_table(
            "fanbases_products",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("fanbases_product_id", sa.String(), nullable=True),
            sa.Column("product_type", sa.String(), nullable=True),
            sa.Column("internal_reference", sa.String(), nullable=True),
            sa.Column("price_cents", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
        )
    ensure_indexes(
        "fanbases_products",
        ["id", "fanbases_product_id", "product_type", "internal_reference"],
        unique=("fanbases_product_id", "internal_reference"),
    )

    if "fanbases_customers" not in existing_tables:
        op.create_table(
            "fanbases_customers",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("fanbases_customer_id", sa.String(), nullable=True),
            sa.Column("payment_method_id", sa.String(), nullable=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=now),
        )
    ensure_indexes("fanbases_customers", ["id", "user_id", "fanbases_customer_id"], unique=("user_id",))

    if "checkout_sessions" not in existing_tables:
        op.create_table(
            "checkout_sessions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("provider", sa.String(), nullable=True),
            sa.Column("session_id", sa.String(), nullable=True),
            sa.Column("product_type", sa.String(), nullable=True),
            sa.Column("product_id", sa.String(), nullable=True),
            sa.Column("amount_cents", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=now),
        )
    ensure_indexes("checkout_sessions", ["id", "user_id", "provider", "session_id", "product_id", "status"])

    if "webhook_logs" not in existing_tables:
        op.create_table(
            "webhook_logs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("provider", sa.String(), nullable=True),
            sa.Column("event_type", sa.String(), nullable=True),
            sa.Column("status", sa.String(), nullable=True),
            sa.Column("user_id", sa.String(), nullable=True),
            sa.Column("payload", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=now),
        )
    ensure_indexes("webhook_logs", ["id", "provider", "event_type", "status", "user_id"])


def downgrade() -> None:
    for table in (
        "webhook_logs",
        "checkout_sessions",
        "fanbases_customers",
        "fanbases_products",
        "coupon_redemptions",
        "coupons",
        "user_purchases",
        "credit_transactions",
        "user_subscriptions",
        "user_credits",
        "users",
    ):
        op.drop_table(table)
