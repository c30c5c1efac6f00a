"""initial finance schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ROLES = ("SUPERADMIN", "ADMIN", "MODERATOR", "USER")
ACCOUNT_TYPES = ("CASH", "CHECKING", "SAVINGS", "CREDIT_CARD", "INVESTMENT", "OTHER")
TXN_TYPES = ("INCOME", "EXPENSE", "TRANSFER")
CATEGORY_TYPES = ("INCOME", "EXPENSE")
BUDGET_PERIODS = ("WEEKLY", "MONTHLY", "QUARTERLY", "YEARLY")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "user",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email_hash", sa.String(length=64), nullable=False, unique=True),
        sa.Column("email_encrypted", sa.Text(), nullable=True),
        sa.Column("password_hash", sa.String(length=255), nullable=True),
        sa.Column("name", sa.String(length=120), nullable=True),
        sa.Column("role", sa.Enum(*ROLES, name="user_role"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "permission",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=80), nullable=False, unique=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("category", sa.String(length=40), nullable=False),
        sa.Column("default_roles", sa.JSON(), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "userpermission",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id", ondelete="CASCADE"), nullable=False),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permission.id", ondelete="CASCADE"), nullable=False),
        sa.Column("granted", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "permission_id", name="uq_user_permission"),
    )
    op.create_table(
        "currency",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("code", sa.String(length=3), nullable=False, unique=True),
        sa.Column("name", sa.String(length=60), nullable=False),
        sa.Column("symbol", sa.String(length=5), nullable=False),
        sa.Column("decimals", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "exchangerate",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("base_currency", sa.String(length=3), nullable=False),
        sa.Column("target_currency", sa.String(length=3), nullable=False),
        sa.Column("rate", sa.Numeric(20, 8), nullable=False),
        sa.Column("fetched_at", sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("base_currency", "target_currency", name="uq_exchange_rate_pair"),
        sa.CheckConstraint("rate > 0", name="ck_exchange_rate_positive"),
    )
    op.create_table(
        "account",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.Enum(*ACCOUNT_TYPES, name="account_type"), nullable=False),
        sa.Column("currency_id", sa.Integer(), sa.ForeignKey("currency.id"), nullable=False),
        sa.Column("initial_balance", sa.Numeric(18, 4), nullable=False),
        sa.Column("current_balance", sa.Numeric(18, 4), nullable=False),
        sa.Column("is_default", sa.Boolean(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("icon", sa.String(length=16), nullable=True),
        sa.Column("color", sa.String(length=16), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_account_user_id", "account", ["user_id"])
    op.create_table(
        "category",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.Enum(*CATEGORY_TYPES, name="category_type"), nullable=False),
        sa.Column("icon", sa.String(length=16), nullable=True),
        sa.Column("color", sa.String(length=16), nullable=True),
        sa.Column("keywords", sa.JSON(), nullable=False),
        sa.Column("parent_id", sa.Integer(), sa.ForeignKey("category.id", ondelete="SET NULL"), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_category_user_id", "category", ["user_id"])
    op.create_table(
        "categorizationrule",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id", ondelete="CASCADE"), nullable=False),
        sa.Column("merchant_pattern", sa.String(length=120), nullable=True),
        sa.Column("description_pattern", sa.String(length=200), nullable=True),
        sa.Column("priority", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "merchant_pattern IS NOT NULL OR description_pattern IS NOT NULL",
            name="ck_rule_has_pattern",
        ),
    )
    op.create_index("ix_categorizationrule_user_id", "categorizationrule", ["user_id"])
    op.create_table(
        "transaction",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("type", sa.Enum(*TXN_TYPES, name="txn_type"), nullable=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("original_amount", sa.Numeric(18, 4), nullable=True),
        sa.Column("original_currency", sa.String(length=3), nullable=True),
        sa.Column("exchange_rate", sa.Numeric(20, 8), nullable=True),
        sa.Column("currency_id", sa.Integer(), sa.ForeignKey("currency.id"), nullable=False),
        sa.Column("account_id", sa.Integer(), sa.ForeignKey("account.id"), nullable=False),
        sa.Column("to_account_id", sa.Integer(), sa.ForeignKey("account.id"), nullable=True),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id", ondelete="SET NULL"), nullable=True),
        sa.Column("description", sa.String(length=200), nullable=True),
        sa.Column("merchant", sa.String(length=120), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("source", sa.String(length=20), nullable=False),
        sa.Column("auto_categorization_score", sa.Numeric(5, 4), nullable=True),
        sa.Column("was_manually_edited", sa.Boolean(), nullable=False),
        sa.Column("document_type", sa.String(length=20), nullable=True),
        sa.Column("document_number", sa.String(length=50), nullable=True),
        sa.Column("merchant_rut", sa.String(length=15), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), nullable=False),
        sa.Column("deleted_at", sa.DateTime(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_transaction_amount_non_negative"),
        sa.CheckConstraint(
            "to_account_id IS NULL OR to_account_id != account_id",
            name="ck_transaction_transfer_distinct",
        ),
    )
    op.create_index(
        "ix_transaction_user_active_date", "transaction", ["user_id", "is_deleted", "transaction_date"]
    )
    op.create_table(
        "transactionitem",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("transaction_id", sa.Integer(), sa.ForeignKey("transaction.id", ondelete="CASCADE"), nullable=False),
        sa.Column("description", sa.String(length=200), nullable=False),
        sa.Column("quantity", sa.Numeric(12, 3), nullable=False),
        sa.Column("unit_price", sa.Numeric(18, 4), nullable=False),
        sa.Column("total_price", sa.Numeric(18, 4), nullable=False),
        *_timestamps(),
    )
    op.create_table(
        "budget",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=True),
        sa.Column("category_id", sa.Integer(), sa.ForeignKey("category.id", ondelete="SET NULL"), nullable=True),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("period", sa.Enum(*BUDGET_PERIODS, name="budget_period"), nullable=False),
        sa.Column("alert_at_75", sa.Boolean(), nullable=False),
        sa.Column("alert_at_90", sa.Boolean(), nullable=False),
        sa.Column("alert_at_100", sa.Boolean(), nullable=False),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_budget_amount_positive"),
    )
    op.create_index("ix_budget_user_id", "budget", ["user_id"])
    op.create_table(
        "savingsgoal",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("user.id"), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("icon", sa.String(length=16), nullable=True),
        sa.Column("color", sa.String(length=16), nullable=True),
        sa.Column("target_amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("current_amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("deadline", sa.Date(), nullable=True),
        sa.Column("milestone_25", sa.Boolean(), nullable=False),
        sa.Column("milestone_50", sa.Boolean(), nullable=False),
        sa.Column("milestone_75", sa.Boolean(), nullable=False),
        sa.Column("completed", sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("target_amount > 0", name="ck_goal_target_positive"),
        sa.CheckConstraint("current_amount >= 0", name="ck_goal_current_non_negative"),
    )
    op.create_index("ix_savingsgoal_user_id", "savingsgoal", ["user_id"])
    op.create_table(
        "auditlog",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("action", sa.String(length=80), nullable=False),
        sa.Column("category", sa.String(length=20), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("target_id", sa.String(length=64), nullable=True),
        sa.Column("target_type", sa.String(length=40), nullable=True),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("ip_address", sa.String(length=64), nullable=True),
        sa.Column("user_agent", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_auditlog_action", "auditlog", ["action"])
    op.create_index("ix_auditlog_category", "auditlog", ["category"])
    op.create_index("ix_auditlog_user_id", "auditlog", ["user_id"])
    op.create_index("ix_auditlog_created_at", "auditlog", ["created_at"])


def downgrade() -> None:
    for name in ("ix_auditlog_created_at", "ix_auditlog_user_id", "ix_auditlog_category", "ix_auditlog_action"):
        op.drop_index(name, table_name="auditlog")
    op.drop_table("auditlog")
    op.drop_index("ix_savingsgoal_user_id", table_name="savingsgoal")
    op.drop_table("savingsgoal")
    op.drop_index("ix_budget_user_id", table_name="budget")
    op.drop_table("budget")
    op.drop_table("transactionitem")
    op.drop_index("ix_transaction_user_active_date", table_name="transaction")
    op.drop_table("transaction")
    op.drop_index("ix_categorizationrule_user_id", table_name="categorizationrule")
    op.drop_table("categorizationrule")
    op.drop_index("ix_category_user_id", table_name="category")
    op.drop_table("category")
    op.drop_index("ix_account_user_id", table_name="account")
    op.drop_table("account")
    op.drop_table("exchangerate")
    op.drop_table("currency")
    op.drop_table("userpermission")
    op.drop_table("permission")
    op.drop_table("user")
