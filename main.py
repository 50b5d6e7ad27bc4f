import logging
from dataclasses import asdict
from datetime import date, datetime
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import Depends, FastAPI, Header, HTTPException, Response
from sqlalchemy.orm import Session

from config import get_settings
from database import SessionFactory, SessionLocal
from models import TransactionType
from periods import month_period, resolve_month
from reports import AnnualReportService
from schemas import (
    AccountIn,
    AccountOut,
    AccountUpdate,
    AnnualReport,
    BillDetailOut,
    BillIn,
    BillOut,
    BillPaymentIn,
    BillPaymentOut,
    BillPaymentResultOut,
    BillSummaryOut,
    BillUpdate,
    BudgetVsActualOut,
    CategoryBudgetIn,
    CategoryBudgetOut,
    CategoryIn,
    CategoryOut,
    CategoryUpdate,
    MonthlyOverview,
    ResyncIn,
    ResyncOut,
    TransactionIn,
    TransactionOut,
    TransferIn,
    TransferOut,
)
from services import (
    AccountService,
    BillProgress,
    BillService,
    BudgetService,
    CategoryService,
    ConflictError,
    DataService,
    MetricsService,
    NotFoundError,
    TransactionFilters,
    TransactionService,
    TransferService,
    UnauthorizedError,
)
from summaries import SummaryService

settings = get_settings()
logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Personal Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_session_factory() -> SessionFactory:
    return SessionLocal


def get_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    return x_user_id or get_settings().default_user_id


def _local_today() -> date:
    return datetime.now(ZoneInfo(settings.timezone)).date()


def _http_error(exc: ValueError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, UnauthorizedError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _bill_detail(progress: BillProgress) -> BillDetailOut:
    return BillDetailOut(
        bill=BillOut.model_validate(progress.bill),
        total_paid=progress.total_paid,
        remaining=progress.remaining,
        progress=progress.progress,
        is_overdue=progress.is_overdue,
        effective_status=progress.effective_status,
    )


@app.get("/api/accounts", response_model=list[AccountOut])
def list_accounts(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    return [AccountOut.model_validate(a) for a in AccountService(db, user_id).list_all()]


@app.post("/api/accounts", response_model=AccountOut, status_code=201)
def create_account(
    payload: AccountIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        account = AccountService(db, user_id).create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return AccountOut.model_validate(account)


@app.get("/api/accounts/{account_id}", response_model=AccountOut)
def get_account(
    account_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    try:
        account = AccountService(db, user_id).get(account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return AccountOut.model_validate(account)


@app.put("/api/accounts/{account_id}", response_model=AccountOut)
def update_account(
    account_id: int,
    payload: AccountUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        account = AccountService(db, user_id).update(account_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return AccountOut.model_validate(account)


@app.delete("/api/accounts/{account_id}", status_code=204)
def delete_account(
    account_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    try:
        AccountService(db, user_id).delete(account_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/categories", response_model=list[CategoryOut])
def list_categories(
    is_income: Optional[bool] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    categories = CategoryService(db, user_id).list_all(is_income)
    return [CategoryOut.model_validate(c) for c in categories]


@app.post("/api/categories", response_model=CategoryOut, status_code=201)
def create_category(
    payload: CategoryIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        category = CategoryService(db, user_id).create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return CategoryOut.model_validate(category)


@app.put("/api/categories/{category_id}", response_model=CategoryOut)
def update_category(
    category_id: int,
    payload: CategoryUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        category = CategoryService(db, user_id).update(category_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return CategoryOut.model_validate(category)


@app.get("/api/transactions", response_model=list[TransactionOut])
def list_transactions(
    account_id: Optional[int] = None,
    type: Optional[TransactionType] = None,
    category_id: Optional[int] = None,
    q: Optional[str] = None,
    year: Optional[int] = None,
    month: Optional[int] = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    period = None
    if year is not None or month is not None:
        period = month_period(*resolve_month(year, month, today=_local_today()))
    filters = TransactionFilters(
        account_id=account_id, type=type, category_id=category_id, query=q
    )
    rows = TransactionService(db, user_id).list(
        filters, period=period, limit=min(max(limit, 1), 500), offset=max(offset, 0)
    )
    return [TransactionOut.model_validate(t) for t in rows]


@app.post("/api/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        txn = TransactionService(db, user_id).create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return TransactionOut.model_validate(txn)


@app.get("/api/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        txn = TransactionService(db, user_id).get(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return TransactionOut.model_validate(txn)


@app.put("/api/transactions/{transaction_id}", response_model=TransactionOut)
def update_transaction(
    transaction_id: int,
    payload: TransactionIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        txn = TransactionService(db, user_id).update(transaction_id, payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return TransactionOut.model_validate(txn)


@app.delete("/api/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        TransactionService(db, user_id).delete(transaction_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/transfers", response_model=list[TransferOut])
def list_transfers(
    limit: int = 100,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    rows = TransferService(db, user_id).list(limit=min(max(limit, 1), 500))
    return [TransferOut.model_validate(t) for t in rows]


@app.post("/api/transfers", response_model=TransferOut, status_code=201)
def create_transfer(
    payload: TransferIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        transfer = TransferService(db, user_id).create(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return TransferOut.model_validate(transfer)


@app.get("/api/transfers/{transfer_id}", response_model=TransferOut)
def get_transfer(
    transfer_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    try:
        transfer = TransferService(db, user_id).get(transfer_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return TransferOut.model_validate(transfer)


@app.delete("/api/transfers/{transfer_id}", status_code=204)
def delete_transfer(
    transfer_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    try:
        TransferService(db, user_id).delete(transfer_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/bills", response_model=list[BillDetailOut])
def list_bills(
    status: str = "ALL",
    order: str = "due_date",
    limit: int = 100,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        rows = BillService(db, user_id).list(
            status=status.upper(), limit=min(max(limit, 1), 500), order_by=order
        )
    except ValueError as exc:
        raise _http_error(exc) from exc
    return [_bill_detail(row) for row in rows]


@app.get("/api/bills/summary", response_model=BillSummaryOut)
def bill_summary(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    summary = BillService(db, user_id).summary()
    return BillSummaryOut(
        total_unpaid=summary.total_unpaid,
        overdue_count=summary.overdue_count,
        upcoming_count=summary.upcoming_count,
    )


@app.post("/api/bills", response_model=BillDetailOut, status_code=201)
def create_bill(
    payload: BillIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = BillService(db, user_id)
    try:
        bill = service.create(payload)
        return _bill_detail(service.get(bill.id))
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.get("/api/bills/{bill_id}", response_model=BillDetailOut)
def get_bill(
    bill_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    try:
        return _bill_detail(BillService(db, user_id).get(bill_id))
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.put("/api/bills/{bill_id}", response_model=BillDetailOut)
def update_bill(
    bill_id: int,
    payload: BillUpdate,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = BillService(db, user_id)
    try:
        service.update(bill_id, payload)
        return _bill_detail(service.get(bill_id))
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.post("/api/bills/{bill_id}/pay", response_model=BillPaymentResultOut)
def pay_bill(
    bill_id: int,
    payload: BillPaymentIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    service = BillService(db, user_id)
    try:
        result = service.pay(bill_id, payload)
        return BillPaymentResultOut(
            bill=_bill_detail(service.get(bill_id)),
            transaction=TransactionOut.model_validate(result.transaction),
            payment=BillPaymentOut.model_validate(result.payment),
        )
    except ValueError as exc:
        raise _http_error(exc) from exc


@app.delete("/api/bills/{bill_id}", status_code=204)
def delete_bill(
    bill_id: int,
    force: bool = False,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        BillService(db, user_id).delete(bill_id, force=force)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/budgets", response_model=list[CategoryBudgetOut])
def list_budgets(
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    year, month = resolve_month(year, month, today=_local_today())
    budgets = BudgetService(db, user_id).list_for_month(year, month)
    return [CategoryBudgetOut.model_validate(b) for b in budgets]


@app.post("/api/budgets", response_model=CategoryBudgetOut)
def upsert_budget(
    payload: CategoryBudgetIn,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    try:
        budget = BudgetService(db, user_id).upsert(payload)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return CategoryBudgetOut.model_validate(budget)


@app.get("/api/budgets/vs-actual", response_model=list[BudgetVsActualOut])
def budgets_vs_actual(
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    year, month = resolve_month(year, month, today=_local_today())
    rows = BudgetService(db, user_id).vs_actual(year, month)
    return [BudgetVsActualOut(**asdict(row)) for row in rows]


@app.delete("/api/budgets/{budget_id}", status_code=204)
def delete_budget(
    budget_id: int, db: Session = Depends(get_db), user_id: int = Depends(get_user_id)
):
    try:
        BudgetService(db, user_id).delete(budget_id)
    except ValueError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=204)


@app.get("/api/reports/monthly", response_model=MonthlyOverview)
def monthly_report(
    year: Optional[int] = None,
    month: Optional[int] = None,
    db: Session = Depends(get_db),
    user_id: int = Depends(get_user_id),
):
    year, month = resolve_month(year, month, today=_local_today())
    return MetricsService(db, user_id).monthly_overview(year, month)


@app.get("/api/reports/annual", response_model=AnnualReport)
def annual_report(
    year: Optional[int] = None,
    from_month: int = 1,
    to_month: int = 12,
    factory: SessionFactory = Depends(get_session_factory),
    user_id: int = Depends(get_user_id),
):
    year, _ = resolve_month(year, None, today=_local_today())
    return AnnualReportService(factory, user_id).get(year, from_month, to_month)


@app.post("/api/reports/resync", response_model=ResyncOut)
def resync_reports(
    payload: ResyncIn,
    factory: SessionFactory = Depends(get_session_factory),
    user_id: int = Depends(get_user_id),
):
    count = SummaryService(factory, user_id).force_rebuild(
        payload.year, payload.from_month, payload.to_month
    )
    return ResyncOut(year=payload.year, synced_months=count)


@app.post("/api/data/clear", status_code=204)
def clear_data(db: Session = Depends(get_db), user_id: int = Depends(get_user_id)):
    DataService(db, user_id).clear_all()
    return Response(status_code=204)


def main():
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    main()
