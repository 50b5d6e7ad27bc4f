from datetime import datetime, timezone
from typing import Annotated, Literal, Optional

from pydantic import (
    AfterValidator,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from models import AccountType, BillStatus, EffectiveBillStatus, TransactionType


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


# Stored datetimes are naive UTC. Aware input is converted, naive input kept.
UtcDatetime = Annotated[datetime, AfterValidator(_naive_utc)]


class AccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: AccountType
    currency: Optional[str] = Field(default=None, min_length=1, max_length=8)
    icon: Optional[str] = Field(default=None, max_length=64)


class AccountUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    type: Optional[AccountType] = None
    currency: Optional[str] = Field(default=None, min_length=1, max_length=8)
    icon: Optional[str] = Field(default=None, max_length=64)


class CategoryIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    is_income: bool = False
    icon: Optional[str] = Field(default=None, max_length=64)


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    icon: Optional[str] = Field(default=None, max_length=64)


class TransactionIn(BaseModel):
    account_id: int
    category_id: Optional[int] = None
    amount: int = Field(..., gt=0)
    type: TransactionType
    note: Optional[str] = Field(default=None, max_length=500)
    occurred_at: Optional[UtcDatetime] = None

    @field_validator("type")
    @classmethod
    def _not_transfer(cls, value: TransactionType) -> TransactionType:
        if value.is_transfer:
            raise ValueError("Transfers must be recorded through the transfer endpoint")
        return value


class TransferIn(BaseModel):
    from_account_id: int
    to_account_id: int
    amount: int = Field(..., gt=0)
    note: Optional[str] = Field(default=None, max_length=500)
    occurred_at: Optional[UtcDatetime] = None

    @model_validator(mode="after")
    def _distinct_accounts(self) -> "TransferIn":
        if self.from_account_id == self.to_account_id:
            raise ValueError("From and to accounts must be different")
        return self


class BillIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    category_id: Optional[int] = None
    total_amount: int = Field(..., gt=0)
    due_date: UtcDatetime
    note: Optional[str] = Field(default=None, max_length=500)
    is_recurring: bool = False
    recurrence: Optional[str] = Field(default=None, max_length=40)


class BillUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    category_id: Optional[int] = None
    total_amount: Optional[int] = None
    due_date: Optional[UtcDatetime] = None
    note: Optional[str] = Field(default=None, max_length=500)
    is_recurring: Optional[bool] = None
    recurrence: Optional[str] = Field(default=None, max_length=40)


class BillPaymentIn(BaseModel):
    account_id: int
    amount: int = Field(..., gt=0)
    note: Optional[str] = Field(default=None, max_length=500)


class CategoryBudgetIn(BaseModel):
    category_id: int
    year: int = Field(..., ge=1970, le=3000)
    month: int = Field(..., ge=1, le=12)
    amount: int = Field(..., gt=0, description="Major currency units")


class ResyncIn(BaseModel):
    year: int = Field(..., ge=2000, le=2100)
    from_month: int = Field(default=1, ge=1, le=12)
    to_month: int = Field(default=12, ge=1, le=12)

    @model_validator(mode="after")
    def _ordered(self) -> "ResyncIn":
        if self.from_month > self.to_month:
            raise ValueError("from_month must be <= to_month")
        return self


class AccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    type: AccountType
    currency: str
    balance: int
    icon: Optional[str]


class CategoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    is_income: bool
    icon: Optional[str]


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    account_id: int
    category_id: Optional[int]
    amount: int
    type: TransactionType
    note: Optional[str]
    occurred_at: datetime
    transfer_id: Optional[int]
    account: Optional[AccountOut] = None
    category: Optional[CategoryOut] = None


class TransferOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    from_account_id: int
    to_account_id: int
    amount: int
    note: Optional[str]
    created_at: datetime
    transactions: list[TransactionOut] = Field(default_factory=list)


class BillPaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    bill_id: int
    transaction_id: int
    amount: int
    paid_at: datetime


class BillOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    category_id: Optional[int]
    total_amount: int
    due_date: datetime
    status: BillStatus
    is_recurring: bool
    recurrence: Optional[str]
    note: Optional[str]
    payments: list[BillPaymentOut] = Field(default_factory=list)


class BillDetailOut(BaseModel):
    bill: BillOut
    total_paid: int
    remaining: int
    progress: float
    is_overdue: bool
    effective_status: EffectiveBillStatus


class CategoryBudgetOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    category_id: int
    year: int
    month: int
    amount: int


class BudgetVsActualOut(BaseModel):
    id: int
    category_id: int
    category_name: str
    category_icon: Optional[str]
    budget_amount: int
    actual_amount: float
    remaining_amount: float
    usage_rate: float
    over_budget: bool


class ReportRange(BaseModel):
    from_month: int
    to_month: int


class ReportTotals(BaseModel):
    income: int
    expense: int
    net: int
    expense_rate: float
    saving_rate: float


class TrendPoint(BaseModel):
    month: int
    month_name: str
    income: int
    expense: int
    net: int


class TopCategory(BaseModel):
    category_id: int
    category_name: str
    amount: int
    percentage_of_expense: float


class ReportInsights(BaseModel):
    highest_expense_month: Optional[int]
    lowest_saving_month: Optional[int]
    expense_volatility: Literal["LOW", "MEDIUM", "HIGH"]


class AnnualReport(BaseModel):
    year: int
    range: ReportRange
    totals: ReportTotals
    monthly_trend: list[TrendPoint]
    top_categories: list[TopCategory]
    insights: ReportInsights


class FinanceRatios(BaseModel):
    income: int
    expense: int
    net: int
    has_income: bool
    is_deficit: bool
    income_based_expense_percentage: float
    income_based_net_percentage: float
    cash_flow_income_percentage: float
    cash_flow_expense_percentage: float


class MonthlyOverview(BaseModel):
    year: int
    month: int
    income: int
    expense: int
    net: int
    ratios: FinanceRatios
    accounts: list[AccountOut]


class BillPaymentResultOut(BaseModel):
    bill: BillDetailOut
    transaction: TransactionOut
    payment: BillPaymentOut


class BillSummaryOut(BaseModel):
    total_unpaid: int
    overdue_count: int
    upcoming_count: int


class ResyncOut(BaseModel):
    year: int
    synced_months: int
