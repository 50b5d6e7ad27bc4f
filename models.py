from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


def _value_enum(enum_cls: type[Enum], name: str) -> SAEnum:
    return SAEnum(
        enum_cls,
        name=name,
        values_callable=lambda cls: [member.value for member in cls],
    )


class AccountType(str, Enum):
    cash = "CASH"
    bank = "BANK"
    card = "CARD"
    e_wallet = "E_WALLET"
    other = "OTHER"


class TransactionType(str, Enum):
    income = "INCOME"
    expense = "EXPENSE"
    transfer_debit = "TRANSFER_DEBIT"
    transfer_credit = "TRANSFER_CREDIT"

    @property
    def is_transfer(self) -> bool:
        return self in (TransactionType.transfer_debit, TransactionType.transfer_credit)


# Types that count as income/expense in reports; transfers are internal moves.
SUMMARY_TYPES = (TransactionType.income, TransactionType.expense)


class BillStatus(str, Enum):
    unpaid = "UNPAID"
    partial = "PARTIAL"
    paid = "PAID"


class EffectiveBillStatus(str, Enum):
    unpaid = "UNPAID"
    partial = "PARTIAL"
    paid = "PAID"
    overdue = "OVERDUE"


ACCOUNT_TYPE_ENUM = _value_enum(AccountType, "accounttype")
TRANSACTION_TYPE_ENUM = _value_enum(TransactionType, "transactiontype")
BILL_STATUS_ENUM = _value_enum(BillStatus, "billstatus")


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Account(Base, TimestampMixin):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[AccountType] = mapped_column(ACCOUNT_TYPE_ENUM, nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="IDR")
    balance: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    icon: Mapped[Optional[str]] = mapped_column(String(64))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="account"
    )

    __table_args__ = (Index("ix_accounts_user", "user_id"),)


class Category(Base, TimestampMixin):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_income: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    icon: Mapped[Optional[str]] = mapped_column(String(64))

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="category"
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "is_income", "name", name="uq_category_user_kind_name"
        ),
    )


class Transfer(Base, TimestampMixin):
    __tablename__ = "transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    from_account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    to_account_id: Mapped[int] = mapped_column(
        ForeignKey("accounts.id"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)

    from_account: Mapped["Account"] = relationship(
        "Account", foreign_keys=[from_account_id]
    )
    to_account: Mapped["Account"] = relationship(
        "Account", foreign_keys=[to_account_id]
    )
    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="transfer"
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transfers_amount_positive"),
        CheckConstraint(
            "from_account_id <> to_account_id", name="ck_transfers_distinct_accounts"
        ),
        Index("ix_transfers_user_created", "user_id", "created_at"),
    )


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    account_id: Mapped[int] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[TransactionType] = mapped_column(TRANSACTION_TYPE_ENUM, nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text)
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    transfer_id: Mapped[Optional[int]] = mapped_column(ForeignKey("transfers.id"))

    account: Mapped["Account"] = relationship("Account", back_populates="transactions")
    category: Mapped[Optional["Category"]] = relationship(
        "Category", back_populates="transactions"
    )
    transfer: Mapped[Optional["Transfer"]] = relationship(
        "Transfer", back_populates="transactions"
    )
    bill_payment: Mapped[Optional["BillPayment"]] = relationship(
        "BillPayment", back_populates="transaction", uselist=False
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "(transfer_id IS NULL AND type IN ('INCOME', 'EXPENSE')) OR "
            "(transfer_id IS NOT NULL AND type IN ('TRANSFER_DEBIT', 'TRANSFER_CREDIT'))",
            name="ck_transactions_transfer_link",
        ),
        Index("ix_transactions_user_occurred", "user_id", "occurred_at"),
        Index(
            "ix_transactions_user_category_occurred",
            "user_id",
            "category_id",
            "occurred_at",
        ),
        Index("ix_transactions_account", "account_id"),
        Index("ix_transactions_transfer", "transfer_id"),
    )


class Bill(Base, TimestampMixin):
    __tablename__ = "bills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("categories.id", ondelete="SET NULL")
    )
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    due_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[BillStatus] = mapped_column(
        BILL_STATUS_ENUM, nullable=False, default=BillStatus.unpaid
    )
    is_recurring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    recurrence: Mapped[Optional[str]] = mapped_column(String(40))
    note: Mapped[Optional[str]] = mapped_column(Text)

    category: Mapped[Optional["Category"]] = relationship("Category")
    payments: Mapped[list["BillPayment"]] = relationship(
        "BillPayment",
        back_populates="bill",
        cascade="all, delete-orphan",
        order_by="BillPayment.paid_at.desc()",
    )

    __table_args__ = (
        CheckConstraint("total_amount > 0", name="ck_bills_total_positive"),
        Index("ix_bills_user_due", "user_id", "due_date"),
    )


class BillPayment(Base, TimestampMixin):
    __tablename__ = "bill_payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    bill_id: Mapped[int] = mapped_column(
        ForeignKey("bills.id", ondelete="CASCADE"), nullable=False
    )
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id"), nullable=False, unique=True
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    paid_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    bill: Mapped["Bill"] = relationship("Bill", back_populates="payments")
    transaction: Mapped["Transaction"] = relationship(
        "Transaction", back_populates="bill_payment"
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_bill_payments_amount_positive"),
    )


class CategoryBudget(Base, TimestampMixin):
    """Monthly spending ceiling for one expense category.

    ``amount`` is stored in major currency units, unlike every other money
    column in the schema.
    """

    __tablename__ = "category_budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_category_budget_amount_positive"),
        CheckConstraint("month BETWEEN 1 AND 12", name="ck_category_budget_month"),
        UniqueConstraint(
            "user_id",
            "category_id",
            "year",
            "month",
            name="uq_category_budget_user_category_month",
        ),
        Index("ix_category_budget_user_month", "user_id", "year", "month"),
    )


class MonthlySummary(Base, TimestampMixin):
    __tablename__ = "monthly_summaries"
    __table_args__ = (
        UniqueConstraint("user_id", "year", "month", name="uq_summary_user_month"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    income: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    expense: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    net: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class MonthlyCategorySummary(Base, TimestampMixin):
    __tablename__ = "monthly_category_summaries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("categories.id", ondelete="CASCADE"), nullable=False
    )
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    type: Mapped[TransactionType] = mapped_column(TRANSACTION_TYPE_ENUM, nullable=False)

    category: Mapped["Category"] = relationship("Category")

    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "year",
            "month",
            "category_id",
            "type",
            name="uq_category_summary_user_month_category_type",
        ),
        Index("ix_category_summary_user_month", "user_id", "year", "month"),
    )
