import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime

from sqlalchemy import create_engine, event, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from database import Base, enable_sqlite_pragmas
from models import (
    AccountType,
    MonthlyCategorySummary,
    MonthlySummary,
    TransactionType,
)
from schemas import AccountIn, CategoryIn, TransactionIn, TransferIn
from services import (
    AccountService,
    CategoryService,
    TransactionService,
    TransferService,
)
from summaries import (
    SummaryService,
    build_monthly_category_summary,
    build_monthly_summary,
)


def make_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", enable_sqlite_pragmas)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def seed_month(factory):
    with factory() as session:
        accounts = AccountService(session)
        bank = accounts.create(AccountIn(name="Bank", type=AccountType.bank))
        cash = accounts.create(AccountIn(name="Cash", type=AccountType.cash))
        categories = CategoryService(session)
        salary = categories.create(CategoryIn(name="Salary", is_income=True))
        food = categories.create(CategoryIn(name="Food"))
        travel = categories.create(CategoryIn(name="Travel"))
        txns = TransactionService(session)
        txns.create(
            TransactionIn(
                account_id=bank.id,
                category_id=salary.id,
                amount=500_000,
                type=TransactionType.income,
                occurred_at=datetime(2025, 3, 1, 9, 0),
            )
        )
        txns.create(
            TransactionIn(
                account_id=bank.id,
                category_id=food.id,
                amount=40_000,
                type=TransactionType.expense,
                occurred_at=datetime(2025, 3, 5),
            )
        )
        trip = txns.create(
            TransactionIn(
                account_id=bank.id,
                category_id=travel.id,
                amount=90_000,
                type=TransactionType.expense,
                occurred_at=datetime(2025, 3, 31, 23, 59),
            )
        )
        txns.create(
            TransactionIn(
                account_id=bank.id,
                amount=7_000,
                type=TransactionType.expense,
                occurred_at=datetime(2025, 4, 1),
            )
        )
        TransferService(session).create(
            TransferIn(
                from_account_id=bank.id,
                to_account_id=cash.id,
                amount=100_000,
                occurred_at=datetime(2025, 3, 10),
            )
        )
        return {"food": food.id, "travel": travel.id, "trip": trip.id}


def category_rows(factory, year: int, month: int) -> dict:
    with factory() as session:
        rows = session.scalars(
            select(MonthlyCategorySummary).where(
                MonthlyCategorySummary.year == year,
                MonthlyCategorySummary.month == month,
            )
        ).all()
        return {(r.category_id, r.type): r.amount for r in rows}


def test_build_monthly_summary_is_idempotent(tmp_path) -> None:
    factory = make_factory(tmp_path)
    seed_month(factory)

    with factory() as session:
        first = build_monthly_summary(session, 1, 2025, 3)
        session.commit()
        first_values = (first.income, first.expense, first.net)
        second = build_monthly_summary(session, 1, 2025, 3)
        session.commit()

        assert first_values == (500_000, 130_000, 370_000)
        assert (second.income, second.expense, second.net) == first_values
        assert session.scalar(select(func.count(MonthlySummary.id))) == 1


def test_category_summary_drops_emptied_categories(tmp_path) -> None:
    factory = make_factory(tmp_path)
    ids = seed_month(factory)

    with factory() as session:
        assert build_monthly_category_summary(session, 1, 2025, 3) == 3
        session.commit()
    assert category_rows(factory, 2025, 3)[(ids["travel"], TransactionType.expense)] == 90_000

    with factory() as session:
        TransactionService(session).delete(ids["trip"])
        build_monthly_category_summary(session, 1, 2025, 3)
        session.commit()

    rows = category_rows(factory, 2025, 3)
    assert (ids["travel"], TransactionType.expense) not in rows
    assert rows[(ids["food"], TransactionType.expense)] == 40_000


def test_ensure_uses_fast_path_once_built(tmp_path) -> None:
    factory = make_factory(tmp_path)
    ids = seed_month(factory)
    summaries = SummaryService(factory, user_id=1, max_workers=2)

    assert summaries.ensure(2025, 3) is True
    assert summaries.ensure(2025, 3) is False

    # Summaries are refreshed lazily: the fast path keeps the stale figures.
    with factory() as session:
        TransactionService(session).delete(ids["trip"])
    summaries.ensure(2025, 3)
    with factory() as session:
        stale = session.scalar(
            select(MonthlySummary.expense).where(MonthlySummary.month == 3)
        )
    assert stale == 130_000

    summaries.rebuild(2025, 3)
    with factory() as session:
        fresh = session.scalar(
            select(MonthlySummary.expense).where(MonthlySummary.month == 3)
        )
    assert fresh == 40_000


def test_month_without_categorized_activity_rebuilds_every_time(tmp_path) -> None:
    factory = make_factory(tmp_path)
    seed_month(factory)
    summaries = SummaryService(factory, user_id=1)

    assert summaries.ensure(2025, 4) is True
    assert summaries.ensure(2025, 4) is True
    with factory() as session:
        row = session.scalar(select(MonthlySummary).where(MonthlySummary.month == 4))
        assert row.expense == 7_000


def test_ranges_are_clamped_and_reversed_ranges_are_empty(tmp_path) -> None:
    factory = make_factory(tmp_path)
    seed_month(factory)
    summaries = SummaryService(factory, user_id=1, max_workers=3)

    assert summaries.ensure_range(2025, 14, 0) == 0
    assert summaries.force_rebuild(2025, 4, 2) == 0
    with factory() as session:
        assert session.scalars(select(MonthlySummary)).all() == []

    assert summaries.ensure_range(2025, 0, 14) == 12
    with factory() as session:
        months = session.scalars(
            select(MonthlySummary.month).order_by(MonthlySummary.month)
        ).all()
    assert months == list(range(1, 13))


def test_concurrent_ensure_keeps_one_row_per_month(tmp_path) -> None:
    factory = make_factory(tmp_path)
    seed_month(factory)
    summaries = SummaryService(factory, user_id=1, max_workers=4)

    with ThreadPoolExecutor(max_workers=3) as pool:
        results = list(pool.map(lambda _: summaries.ensure_range(2025, 1, 6), range(3)))

    assert results == [6, 6, 6]
    with factory() as session:
        per_month = session.execute(
            select(MonthlySummary.month, func.count(MonthlySummary.id)).group_by(
                MonthlySummary.month
            )
        ).all()
    assert sorted(per_month) == [(m, 1) for m in range(1, 7)]
    assert len(category_rows(factory, 2025, 3)) == 3


def test_integrity_error_from_racing_builder_is_logged(tmp_path, caplog) -> None:
    factory = make_factory(tmp_path)
    summaries = SummaryService(factory, user_id=1)

    def racing_builder(session, user_id, year, month):
        raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

    with caplog.at_level(logging.WARNING, logger="summaries"):
        summaries._run_builder(racing_builder, 2025, 1)

    assert "summary_build_race" in caplog.text
