"""initial ledger schema

Revision ID: 202610180900
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202610180900"
down_revision = None
branch_labels = None
depends_on = None

ACCOUNT_TYPES = ("CASH", "BANK", "CARD", "E_WALLET", "OTHER")
TRANSACTION_TYPES = ("INCOME", "EXPENSE", "TRANSFER_DEBIT", "TRANSFER_CREDIT")
BILL_STATUSES = ("UNPAID", "PARTIAL", "PAID")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("type", sa.Enum(*ACCOUNT_TYPES, name="accounttype"), nullable=False),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="IDR"),
        sa.Column("balance", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("icon", sa.String(length=64)),
        *_timestamps(),
    )
    op.create_index("ix_accounts_user", "accounts", ["user_id"])

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("is_income", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("icon", sa.String(length=64)),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id", "is_income", "name", name="uq_category_user_kind_name"
        ),
    )

    op.create_table(
        "transfers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "from_account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "to_account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("note", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_transfers_amount_positive"),
        sa.CheckConstraint(
            "from_account_id <> to_account_id", name="ck_transfers_distinct_accounts"
        ),
    )
    op.create_index(
        "ix_transfers_user_created", "transfers", ["user_id", "created_at"]
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "account_id", sa.Integer(), sa.ForeignKey("accounts.id"), nullable=False
        ),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column(
            "type", sa.Enum(*TRANSACTION_TYPES, name="transactiontype"), nullable=False
        ),
        sa.Column("note", sa.Text()),
        sa.Column("occurred_at", sa.DateTime(), nullable=False),
        sa.Column("transfer_id", sa.Integer(), sa.ForeignKey("transfers.id")),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        sa.CheckConstraint(
            "(transfer_id IS NULL AND type IN ('INCOME', 'EXPENSE')) OR "
            "(transfer_id IS NOT NULL AND type IN ('TRANSFER_DEBIT', 'TRANSFER_CREDIT'))",
            name="ck_transactions_transfer_link",
        ),
    )
    op.create_index(
        "ix_transactions_user_occurred", "transactions", ["user_id", "occurred_at"]
    )
    op.create_index(
        "ix_transactions_user_category_occurred",
        "transactions",
        ["user_id", "category_id", "occurred_at"],
    )
    op.create_index("ix_transactions_account", "transactions", ["account_id"])
    op.create_index("ix_transactions_transfer", "transactions", ["transfer_id"])

    op.create_table(
        "bills",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="SET NULL"),
        ),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("due_date", sa.DateTime(), nullable=False),
        sa.Column(
            "status",
            sa.Enum(*BILL_STATUSES, name="billstatus"),
            nullable=False,
            server_default="UNPAID",
        ),
        sa.Column(
            "is_recurring", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("recurrence", sa.String(length=40)),
        sa.Column("note", sa.Text()),
        *_timestamps(),
        sa.CheckConstraint("total_amount > 0", name="ck_bills_total_positive"),
    )
    op.create_index("ix_bills_user_due", "bills", ["user_id", "due_date"])

    op.create_table(
        "bill_payments",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "bill_id",
            sa.Integer(),
            sa.ForeignKey("bills.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "transaction_id",
            sa.Integer(),
            sa.ForeignKey("transactions.id"),
            nullable=False,
            unique=True,
        ),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("paid_at", sa.DateTime(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_bill_payments_amount_positive"),
    )

    op.create_table(
        "category_budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint("amount > 0", name="ck_category_budget_amount_positive"),
        sa.CheckConstraint("month BETWEEN 1 AND 12", name="ck_category_budget_month"),
        sa.UniqueConstraint(
            "user_id",
            "category_id",
            "year",
            "month",
            name="uq_category_budget_user_category_month",
        ),
    )
    op.create_index(
        "ix_category_budget_user_month",
        "category_budgets",
        ["user_id", "year", "month"],
    )

    op.create_table(
        "monthly_summaries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column("income", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expense", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.UniqueConstraint("user_id", "year", "month", name="uq_summary_user_month"),
    )

    op.create_table(
        "monthly_category_summaries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        sa.Column(
            "category_id",
            sa.Integer(),
            sa.ForeignKey("categories.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "type", sa.Enum(*TRANSACTION_TYPES, name="transactiontype"), nullable=False
        ),
        *_timestamps(),
        sa.UniqueConstraint(
            "user_id",
            "year",
            "month",
            "category_id",
            "type",
            name="uq_category_summary_user_month_category_type",
        ),
    )
    op.create_index(
        "ix_category_summary_user_month",
        "monthly_category_summaries",
        ["user_id", "year", "month"],
    )


def downgrade() -> None:
    op.drop_index("ix_category_summary_user_month", "monthly_category_summaries")
    op.drop_table("monthly_category_summaries")
    op.drop_table("monthly_summaries")
    op.drop_index("ix_category_budget_user_month", "category_budgets")
    op.drop_table("category_budgets")
    op.drop_table("bill_payments")
    op.drop_index("ix_bills_user_due", "bills")
    op.drop_table("bills")
    op.drop_index("ix_transactions_transfer", "transactions")
    op.drop_index("ix_transactions_account", "transactions")
    op.drop_index("ix_transactions_user_category_occurred", "transactions")
    op.drop_index("ix_transactions_user_occurred", "transactions")
    op.drop_table("transactions")
    op.drop_index("ix_transfers_user_created", "transfers")
    op.drop_table("transfers")
    op.drop_table("categories")
    op.drop_index("ix_accounts_user", "accounts")
    op.drop_table("accounts")
