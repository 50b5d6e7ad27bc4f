from datetime import datetime

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import AccountType, TransactionType
from schemas import (
    AccountIn,
    CategoryBudgetIn,
    CategoryIn,
    TransactionIn,
    TransferIn,
)
from services import (
    AccountService,
    BudgetService,
    CategoryService,
    MetricsService,
    NotFoundError,
    TransactionService,
    TransferService,
    UnauthorizedError,
    ValidationError,
    finance_ratios,
    minor_to_major,
)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def test_minor_to_major() -> None:
    assert minor_to_major(1_500_000) == 15_000
    assert minor_to_major(12_345) == pytest.approx(123.45)


def test_budget_vs_actual_converts_cents_to_major_units() -> None:
    with make_session() as session:
        account = AccountService(session).create(
            AccountIn(name="Bank", type=AccountType.bank)
        )
        groceries = CategoryService(session).create(CategoryIn(name="Groceries"))
        txns = TransactionService(session)
        for amount, day in ((1_000_000, 3), (500_000, 20)):
            txns.create(
                TransactionIn(
                    account_id=account.id,
                    category_id=groceries.id,
                    amount=amount,
                    type=TransactionType.expense,
                    occurred_at=datetime(2025, 4, day),
                )
            )
        txns.create(
            TransactionIn(
                account_id=account.id,
                category_id=groceries.id,
                amount=999_999,
                type=TransactionType.expense,
                occurred_at=datetime(2025, 5, 1),
            )
        )
        BudgetService(session).upsert(
            CategoryBudgetIn(
                category_id=groceries.id, year=2025, month=4, amount=20_000
            )
        )

        (row,) = BudgetService(session).vs_actual(2025, 4)

        assert row.category_name == "Groceries"
        assert row.budget_amount == 20_000
        assert row.actual_amount == 15_000
        assert row.remaining_amount == 5_000
        assert row.usage_rate == pytest.approx(75.0)
        assert row.over_budget is False


def test_upsert_replaces_amount_and_sorts_by_name() -> None:
    with make_session() as session:
        categories = CategoryService(session)
        transport = categories.create(CategoryIn(name="Transport"))
        dining = categories.create(CategoryIn(name="Dining"))
        budgets = BudgetService(session)

        first = budgets.upsert(
            CategoryBudgetIn(category_id=transport.id, year=2025, month=6, amount=100)
        )
        second = budgets.upsert(
            CategoryBudgetIn(category_id=transport.id, year=2025, month=6, amount=250)
        )
        budgets.upsert(
            CategoryBudgetIn(category_id=dining.id, year=2025, month=6, amount=80)
        )

        assert first.id == second.id
        assert second.amount == 250
        rows = budgets.vs_actual(2025, 6)
        assert [r.category_name for r in rows] == ["Dining", "Transport"]
        assert all(r.actual_amount == 0 and r.usage_rate == 0 for r in rows)
        assert [b.category_id for b in budgets.list_for_month(2025, 6)] == [
            dining.id,
            transport.id,
        ]


def test_over_budget_flag_and_transfers_ignored() -> None:
    with make_session() as session:
        accounts = AccountService(session)
        bank = accounts.create(AccountIn(name="Bank", type=AccountType.bank))
        cash = accounts.create(AccountIn(name="Cash", type=AccountType.cash))
        fun = CategoryService(session).create(CategoryIn(name="Fun"))
        txns = TransactionService(session)
        txns.create(
            TransactionIn(
                account_id=bank.id,
                amount=100_000,
                type=TransactionType.income,
                occurred_at=datetime(2025, 7, 1),
            )
        )
        txns.create(
            TransactionIn(
                account_id=bank.id,
                category_id=fun.id,
                amount=6_000,
                type=TransactionType.expense,
                occurred_at=datetime(2025, 7, 2),
            )
        )
        TransferService(session).create(
            TransferIn(
                from_account_id=bank.id,
                to_account_id=cash.id,
                amount=50_000,
                occurred_at=datetime(2025, 7, 3),
            )
        )
        BudgetService(session).upsert(
            CategoryBudgetIn(category_id=fun.id, year=2025, month=7, amount=50)
        )

        (row,) = BudgetService(session).vs_actual(2025, 7)

        assert row.actual_amount == 60
        assert row.remaining_amount == -10
        assert row.usage_rate == pytest.approx(120.0)
        assert row.over_budget is True


def test_budget_rejections() -> None:
    with make_session() as session:
        categories = CategoryService(session)
        salary = categories.create(CategoryIn(name="Salary", is_income=True))
        rent = categories.create(CategoryIn(name="Rent"))
        budgets = BudgetService(session)

        with pytest.raises(ValidationError):
            budgets.upsert(
                CategoryBudgetIn(category_id=salary.id, year=2025, month=1, amount=10)
            )
        with pytest.raises(NotFoundError):
            budgets.upsert(
                CategoryBudgetIn(category_id=999, year=2025, month=1, amount=10)
            )
        with pytest.raises(UnauthorizedError):
            BudgetService(session, user_id=2).upsert(
                CategoryBudgetIn(category_id=rent.id, year=2025, month=1, amount=10)
            )
        with pytest.raises(ValidationError):
            budgets.upsert(
                CategoryBudgetIn.model_construct(
                    category_id=rent.id, year=2025, month=13, amount=10
                )
            )

        budget = budgets.upsert(
            CategoryBudgetIn(category_id=rent.id, year=2025, month=1, amount=10)
        )
        budgets.delete(budget.id)
        assert budgets.vs_actual(2025, 1) == []


def test_finance_ratios() -> None:
    ratios = finance_ratios(income=200_000, expense=50_000)
    assert ratios.net == 150_000
    assert ratios.income_based_expense_percentage == pytest.approx(25.0)
    assert ratios.income_based_net_percentage == pytest.approx(75.0)
    assert ratios.cash_flow_income_percentage == pytest.approx(80.0)
    assert ratios.cash_flow_expense_percentage == pytest.approx(20.0)
    assert ratios.is_deficit is False

    empty = finance_ratios(income=0, expense=0)
    assert empty.has_income is False
    assert empty.income_based_expense_percentage == 0
    assert empty.cash_flow_income_percentage == 0

    deficit = finance_ratios(income=0, expense=1_000)
    assert deficit.is_deficit is True
    assert deficit.cash_flow_expense_percentage == pytest.approx(100.0)


def test_monthly_overview_reads_live_transactions() -> None:
    with make_session() as session:
        account = AccountService(session).create(
            AccountIn(name="Bank", type=AccountType.bank)
        )
        txns = TransactionService(session)
        txns.create(
            TransactionIn(
                account_id=account.id,
                amount=80_000,
                type=TransactionType.income,
                occurred_at=datetime(2025, 8, 31, 23, 0),
            )
        )
        txns.create(
            TransactionIn(
                account_id=account.id,
                amount=20_000,
                type=TransactionType.expense,
                occurred_at=datetime(2025, 9, 1, 0, 0),
            )
        )

        august = MetricsService(session).monthly_overview(2025, 8)
        september = MetricsService(session).monthly_overview(2025, 9)

        assert (august.income, august.expense, august.net) == (80_000, 0, 80_000)
        assert (september.income, september.expense) == (0, 20_000)
        assert september.ratios.is_deficit is True
        assert [a.balance for a in september.accounts] == [60_000]
