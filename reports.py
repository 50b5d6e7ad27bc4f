from __future__ import annotations

import logging
import statistics
from typing import Optional

from sqlalchemy import func, select

from database import SessionFactory, SessionLocal, session_scope
from models import Category, MonthlyCategorySummary, MonthlySummary, TransactionType
from periods import MONTH_NAMES, month_range
from schemas import (
    AnnualReport,
    ReportInsights,
    ReportRange,
    ReportTotals,
    TopCategory,
    TrendPoint,
)
from services import get_current_user_id
from summaries import SummaryService

logger = logging.getLogger(__name__)

TOP_CATEGORY_LIMIT = 5


def expense_volatility(values: list[int]) -> str:
    """Bucket the coefficient of variation of monthly expenses."""
    if len(values) < 2:
        return "LOW"
    mean = sum(values) / len(values)
    cv = statistics.pstdev(values) / mean if mean > 0 else 0.0
    if cv < 0.15:
        return "LOW"
    if cv < 0.30:
        return "MEDIUM"
    return "HIGH"


def _percentage(part: int, whole: int) -> float:
    return part / whole * 100 if whole > 0 else 0.0


class AnnualReportService:
    def __init__(
        self,
        session_factory: SessionFactory = SessionLocal,
        user_id: Optional[int] = None,
        summaries: Optional[SummaryService] = None,
    ) -> None:
        self.session_factory = session_factory
        self.user_id = user_id or get_current_user_id()
        self.summaries = summaries or SummaryService(session_factory, self.user_id)

    def get(self, year: int, from_month: int = 1, to_month: int = 12) -> AnnualReport:
        from_month, to_month = month_range(from_month, to_month)
        self.summaries.ensure_range(year, from_month, to_month)

        with session_scope(self.session_factory) as session:
            monthly = {
                row.month: row
                for row in session.scalars(
                    select(MonthlySummary).where(
                        MonthlySummary.user_id == self.user_id,
                        MonthlySummary.year == year,
                        MonthlySummary.month.between(from_month, to_month),
                    )
                )
            }
            spent = func.sum(MonthlyCategorySummary.amount).label("amount")
            top_rows = session.execute(
                select(MonthlyCategorySummary.category_id, Category.name, spent)
                .join(Category, Category.id == MonthlyCategorySummary.category_id)
                .where(
                    MonthlyCategorySummary.user_id == self.user_id,
                    MonthlyCategorySummary.year == year,
                    MonthlyCategorySummary.month.between(from_month, to_month),
                    MonthlyCategorySummary.type == TransactionType.expense,
                )
                .group_by(MonthlyCategorySummary.category_id, Category.name)
                .order_by(spent.desc(), Category.name.asc())
                .limit(TOP_CATEGORY_LIMIT)
            ).all()

        trend: list[TrendPoint] = []
        for month in range(from_month, to_month + 1):
            row = monthly.get(month)
            income = row.income if row else 0
            expense = row.expense if row else 0
            trend.append(
                TrendPoint(
                    month=month,
                    month_name=MONTH_NAMES[month - 1],
                    income=income,
                    expense=expense,
                    net=income - expense,
                )
            )

        income = sum(p.income for p in trend)
        expense = sum(p.expense for p in trend)
        net = income - expense

        highest_expense_month = None
        highest_expense = 0
        lowest_saving_month = None
        lowest_saving = float("inf")
        for point in trend:
            if point.expense > highest_expense:
                highest_expense = point.expense
                highest_expense_month = point.month
            if point.net < lowest_saving:
                lowest_saving = point.net
                lowest_saving_month = point.month

        report = AnnualReport(
            year=year,
            range=ReportRange(from_month=from_month, to_month=to_month),
            totals=ReportTotals(
                income=income,
                expense=expense,
                net=net,
                expense_rate=_percentage(expense, income),
                saving_rate=_percentage(net, income),
            ),
            monthly_trend=trend,
            top_categories=[
                TopCategory(
                    category_id=row.category_id,
                    category_name=row.name,
                    amount=int(row.amount or 0),
                    percentage_of_expense=_percentage(int(row.amount or 0), expense),
                )
                for row in top_rows
            ],
            insights=ReportInsights(
                highest_expense_month=highest_expense_month,
                lowest_saving_month=lowest_saving_month,
                expense_volatility=expense_volatility([p.expense for p in trend]),
            ),
        )
        logger.info(
            f"annual_report: user={self.user_id} year={year} "
            f"range={from_month}-{to_month} income={income} expense={expense}"
        )
        return report
