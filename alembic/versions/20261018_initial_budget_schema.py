"""initial budget schema

Revision ID: 20261018_initial_budget_schema
Revises:
Create Date: 2026-10-18 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from household_budget.core.types import GUID, CategoryMap

# revision identifiers, used by Alembic.
revision: str = "20261018_initial_budget_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# Reusable defaults
DEFAULT_NOW = sa.text("CURRENT_TIMESTAMP")


def upgrade() -> None:
    # categories
    op.create_table(
        "categories",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("household_id", GUID(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("type", sa.String(length=20), nullable=False, server_default="expense"),
        sa.Column("color", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("monthly_limit", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("warning_threshold", sa.Integer(), nullable=False, server_default="80"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("deleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("deleted_reason", sa.String(length=20), nullable=True),
        sa.Column("merged_into_id", GUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=DEFAULT_NOW, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["merged_into_id"], ["categories.id"]),
        sa.CheckConstraint("type IN ('expense', 'income')", name="ck_categories_type"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_categories_household", "categories", ["household_id"])
    op.create_index("idx_categories_type", "categories", ["household_id", "type"])

    # transactions (columns the budget engine touches)
    op.create_table(
        "transactions",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("household_id", GUID(), nullable=False),
        sa.Column("category_id", GUID(), nullable=True),
        sa.Column("category", sa.String(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("transaction_date", sa.Date(), nullable=False),
        sa.Column("original_category_id", GUID(), nullable=True),
        sa.Column("category_changed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("category_change_reason", sa.String(length=30), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=DEFAULT_NOW, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["category_id"], ["categories.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_transactions_household_category", "transactions", ["household_id", "category_id"])

    # personal_budgets (template versions)
    op.create_table(
        "personal_budgets",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("household_id", GUID(), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("categories", CategoryMap(), nullable=False),
        sa.Column("global_settings", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_by", GUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=DEFAULT_NOW, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("household_id", "version", name="uq_personal_budgets_household_version"),
    )
    op.create_index(op.f("ix_personal_budgets_household_id"), "personal_budgets", ["household_id"])
    op.create_index(
        "uq_personal_budgets_one_active",
        "personal_budgets",
        ["household_id"],
        unique=True,
        sqlite_where=sa.text("is_active = 1"),
        postgresql_where=sa.text("is_active"),
    )

    # monthly_budgets (snapshots)
    op.create_table(
        "monthly_budgets",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("household_id", GUID(), nullable=False),
        sa.Column("personal_budget_id", GUID(), nullable=True),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("categories", CategoryMap(), nullable=False),
        sa.Column("original_categories", CategoryMap(), nullable=False),
        sa.Column("global_settings", sa.JSON(), nullable=False),
        sa.Column("adjustment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=DEFAULT_NOW, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("household_id", "year", "month", name="uq_monthly_budgets_household_year_month"),
    )
    op.create_index(op.f("ix_monthly_budgets_household_id"), "monthly_budgets", ["household_id"])

    # budget_adjustments
    op.create_table(
        "budget_adjustments",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("household_id", GUID(), nullable=False),
        sa.Column("category_name", sa.String(), nullable=False),
        sa.Column("current_limit", sa.Numeric(12, 2), nullable=False),
        sa.Column("adjustment_type", sa.String(length=10), nullable=False),
        sa.Column("adjustment_amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("new_limit", sa.Numeric(12, 2), nullable=False),
        sa.Column("effective_year", sa.Integer(), nullable=False),
        sa.Column("effective_month", sa.Integer(), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("new_category_settings", sa.JSON(), nullable=True),
        sa.Column("is_applied", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_by", GUID(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=DEFAULT_NOW, nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "uq_budget_adjustments_pending",
        "budget_adjustments",
        ["household_id", "category_name", "effective_year", "effective_month"],
        unique=True,
        sqlite_where=sa.text("is_applied = 0"),
        postgresql_where=sa.text("NOT is_applied"),
    )
    op.create_index(
        "idx_budget_adjustments_effective",
        "budget_adjustments",
        ["household_id", "effective_year", "effective_month"],
    )

    # category_adjustment_history
    op.create_table(
        "category_adjustment_history",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("household_id", GUID(), nullable=False),
        sa.Column("category_name", sa.String(), nullable=False),
        sa.Column("adjustment_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("first_adjustment_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_adjusted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_increased_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("total_decreased_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=DEFAULT_NOW, nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("household_id", "category_name", name="uq_category_adjustment_history"),
    )

    # category_merge_history (append-only)
    op.create_table(
        "category_merge_history",
        sa.Column("id", GUID(), nullable=False),
        sa.Column("household_id", GUID(), nullable=False),
        sa.Column("source_category_id", GUID(), nullable=False),
        sa.Column("target_category_id", GUID(), nullable=False),
        sa.Column("source_category_name", sa.String(), nullable=False),
        sa.Column("target_category_name", sa.String(), nullable=False),
        sa.Column("source_category_color", sa.String(), nullable=True),
        sa.Column("source_category_monthly_limit", sa.Numeric(12, 2), nullable=True),
        sa.Column("source_category_settings", sa.JSON(), nullable=True),
        sa.Column("transactions_affected", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("monthly_budgets_affected", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("adjustments_cancelled", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("merged_at", sa.DateTime(timezone=True), server_default=DEFAULT_NOW, nullable=True),
        sa.Column("merged_by", GUID(), nullable=True),
        sa.Column("merge_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_category_merge_history_household_id"), "category_merge_history", ["household_id"])
    op.create_index(op.f("ix_category_merge_history_source_category_id"), "category_merge_history", ["source_category_id"])
    op.create_index(op.f("ix_category_merge_history_target_category_id"), "category_merge_history", ["target_category_id"])


def downgrade() -> None:
    # drop in reverse FK order
    op.drop_table("category_merge_history")
    op.drop_table("category_adjustment_history")
    op.drop_index("idx_budget_adjustments_effective", table_name="budget_adjustments")
    op.drop_index("uq_budget_adjustments_pending", table_name="budget_adjustments")
    op.drop_table("budget_adjustments")
    op.drop_table("monthly_budgets")
    op.drop_index("uq_personal_budgets_one_active", table_name="personal_budgets")
    op.drop_table("personal_budgets")
    op.drop_table("transactions")
    op.drop_table("categories")
