"""Create credit ledger tables

Revision ID: 3c1f6a2b9d40
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "3c1f6a2b9d40"
down_revision = None
branch_labels = None
depends_on = None


def _owner_columns() -> list[sa.Column]:
    return [
        sa.Column("owner_type", sa.String(), nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
    ]


def upgrade() -> None:
    # Owners
    op.create_table(
        "organizations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("plan_tier", sa.String(), nullable=False, server_default="free"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column(
            "organization_id",
            sa.Uuid(),
            sa.ForeignKey("organizations.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )

    # Batches
    op.create_table(
        "credit_batches",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_owner_columns(),
        sa.Column("feature_key", sa.String(), nullable=True),
        sa.Column("source_type", sa.String(), nullable=False),
        sa.Column("source_reference_id", sa.String(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("original_amount", sa.Integer(), nullable=False),
        sa.Column("remaining_amount", sa.Integer(), nullable=False),
        sa.Column("granted_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_expired", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("original_amount > 0", name="ck_batches_original_positive"),
        sa.CheckConstraint("remaining_amount >= 0", name="ck_batches_remaining_nonneg"),
        sa.CheckConstraint(
            "remaining_amount <= original_amount",
            name="ck_batches_remaining_le_original",
        ),
    )
    op.create_index(
        "idx_batches_owner_active",
        "credit_batches",
        ["owner_type", "owner_id", "is_expired"],
    )
    op.create_index("idx_batches_expiry", "credit_batches", ["is_expired", "expires_at"])

    # Balance cache
    op.create_table(
        "credit_balances",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_owner_columns(),
        sa.Column("available_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reserved_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_consumed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_received", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_expired", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("owner_type", "owner_id", name="uq_balances_owner"),
        sa.CheckConstraint("reserved_credits >= 0", name="ck_balances_reserved_nonneg"),
    )

    # Transactions and consumption log
    op.create_table(
        "credit_transactions",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_owner_columns(),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("transaction_type", sa.String(), nullable=False),
        sa.Column(
            "batch_id", sa.Uuid(), sa.ForeignKey("credit_batches.id"), nullable=True
        ),
        sa.Column("reservation_id", sa.Uuid(), nullable=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column(
            "metadata",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("idempotency_key", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.UniqueConstraint(
            "owner_type",
            "owner_id",
            "idempotency_key",
            name="uq_transactions_owner_idempotency",
        ),
    )
    op.create_index(
        "idx_transactions_owner_created",
        "credit_transactions",
        ["owner_type", "owner_id", "created_at"],
    )

    op.create_table(
        "consumption_log",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_owner_columns(),
        sa.Column(
            "batch_id", sa.Uuid(), sa.ForeignKey("credit_batches.id"), nullable=False
        ),
        sa.Column(
            "transaction_id",
            sa.Uuid(),
            sa.ForeignKey("credit_transactions.id"),
            nullable=False,
        ),
        sa.Column("feature_key", sa.String(), nullable=True),
        sa.Column("action_type", sa.String(), nullable=False),
        sa.Column("action_reference_id", sa.String(), nullable=True),
        sa.Column("quantity", sa.Integer(), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("quantity > 0", name="ck_consumption_quantity_positive"),
    )
    op.create_index(
        "idx_consumption_owner_consumed",
        "consumption_log",
        ["owner_type", "owner_id", "consumed_at"],
    )
    op.create_index(
        "idx_consumption_action",
        "consumption_log",
        ["action_type", "action_reference_id"],
    )

    # Reservations
    op.create_table(
        "credit_reservations",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_owner_columns(),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("feature_key", sa.String(), nullable=True),
        sa.Column("action_type", sa.String(), nullable=True),
        sa.Column("action_reference_id", sa.String(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="active"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transaction_id", sa.Uuid(), nullable=True),
        sa.CheckConstraint("amount > 0", name="ck_reservations_amount_positive"),
    )
    op.create_index(
        "idx_reservations_status_expiry",
        "credit_reservations",
        ["status", "expires_at"],
    )
    op.create_index(
        "idx_reservations_owner", "credit_reservations", ["owner_type", "owner_id"]
    )

    # Monthly usage, allowances and rollovers
    op.create_table(
        "usage_periods",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_owner_columns(),
        sa.Column("feature_key", sa.String(), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "owner_type",
            "owner_id",
            "feature_key",
            "period_start",
            name="uq_usage_periods_owner_feature_start",
        ),
        sa.CheckConstraint("credits_used >= 0", name="ck_usage_periods_used_nonneg"),
    )

    op.create_table(
        "plan_allowances",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_owner_columns(),
        sa.Column("feature_key", sa.String(), nullable=False, server_default="credits"),
        sa.Column("monthly_allowance", sa.Integer(), nullable=False),
        sa.Column("period_anchor", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rollover_window_months", sa.Integer(), nullable=True),
        sa.Column("max_rollover_credits", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "owner_type", "owner_id", "feature_key", name="uq_allowances_owner_feature"
        ),
        sa.CheckConstraint("monthly_allowance >= 0", name="ck_allowances_nonneg"),
    )

    op.create_table(
        "rollover_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        *_owner_columns(),
        sa.Column("feature_key", sa.String(), nullable=False),
        sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_period_end", sa.DateTime(timezone=True), nullable=False),
        sa.Column("rollover_credits", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "batch_id", sa.Uuid(), sa.ForeignKey("credit_batches.id"), nullable=True
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint(
            "owner_type",
            "owner_id",
            "feature_key",
            "period_start",
            name="uq_rollovers_owner_feature_period",
        ),
    )


def downgrade() -> None:
    op.drop_table("rollover_records")
    op.drop_table("plan_allowances")
    op.drop_table("usage_periods")
    op.drop_index("idx_reservations_owner", table_name="credit_reservations")
    op.drop_index("idx_reservations_status_expiry", table_name="credit_reservations")
    op.drop_table("credit_reservations")
    op.drop_index("idx_consumption_action", table_name="consumption_log")
    op.drop_index("idx_consumption_owner_consumed", table_name="consumption_log")
    op.drop_table("consumption_log")
    op.drop_index("idx_transactions_owner_created", table_name="credit_transactions")
    op.drop_table("credit_transactions")
    op.drop_table("credit_balances")
    op.drop_index("idx_batches_expiry", table_name="credit_batches")
    op.drop_index("idx_batches_owner_active", table_name="credit_batches")
    op.drop_table("credit_batches")
    op.drop_table("users")
    op.drop_table("organizations")
