from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from config import get_settings
from database import atomic
from models import (
    Account,
    Bill,
    BillPayment,
    BillStatus,
    Category,
    CategoryBudget,
    EffectiveBillStatus,
    MonthlyCategorySummary,
    MonthlySummary,
    Transaction,
    TransactionType,
    Transfer,
)
from periods import Period, clamp_month, month_period
from schemas import (
    AccountIn,
    AccountOut,
    AccountUpdate,
    BillIn,
    BillPaymentIn,
    BillUpdate,
    CategoryBudgetIn,
    CategoryIn,
    CategoryUpdate,
    FinanceRatios,
    MonthlyOverview,
    TransactionIn,
    TransferIn,
)

logger = logging.getLogger(__name__)


class LedgerError(ValueError):
    """Base class for every rule violation raised by the ledger services."""


class ValidationError(LedgerError):
    pass


class NotFoundError(LedgerError):
    pass


class UnauthorizedError(LedgerError):
    pass


class ConflictError(LedgerError):
    """The operation would break a state rule of an existing entity."""


class InsufficientFundsError(ConflictError):
    pass


def get_current_user_id() -> int:
    return get_settings().default_user_id


def minor_to_major(amount: int) -> float:
    """Convert a transaction-space amount (cents) to budget-space units."""
    return amount / 100


def _owned(
    session: Session,
    model,
    row_id: int,
    user_id: int,
    label: str,
    *,
    for_update: bool = False,
):
    row = session.get(
        model, row_id, with_for_update=for_update, populate_existing=for_update
    )
    if row is None:
        raise NotFoundError(f"{label} not found")
    if row.user_id != user_id:
        raise UnauthorizedError(f"{label} does not belong to user")
    return row


# Balance mutation. Every create/update/delete path that touches a transaction
# goes through these helpers inside the caller's atomic unit.


def signed_effect(txn_type: TransactionType, amount: int) -> int:
    if txn_type in (TransactionType.income, TransactionType.transfer_credit):
        return amount
    return -amount


def _shift_balance(session: Session, account_id: int, delta: int) -> None:
    if delta == 0:
        return
    session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(balance=Account.balance + delta)
        .execution_options(synchronize_session="fetch")
    )


def debit_if_covered(session: Session, account_id: int, amount: int) -> bool:
    """Take ``amount`` off the balance only when the balance covers it.

    The guard is part of the UPDATE, so check and write are one statement and
    a concurrent writer cannot slip between them.
    """
    result = session.execute(
        update(Account)
        .where(Account.id == account_id, Account.balance >= amount)
        .values(balance=Account.balance - amount)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def apply_effect(
    session: Session, account_id: int, txn_type: TransactionType, amount: int
) -> None:
    _shift_balance(session, account_id, signed_effect(txn_type, amount))


def reverse_effect(
    session: Session, account_id: int, txn_type: TransactionType, amount: int
) -> None:
    _shift_balance(session, account_id, -signed_effect(txn_type, amount))


class AccountService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self) -> list[Account]:
        stmt = (
            select(Account)
            .where(Account.user_id == self.user_id)
            .order_by(Account.created_at.desc(), Account.id.desc())
        )
        return self.session.scalars(stmt).all()

    def get(self, account_id: int) -> Account:
        return _owned(self.session, Account, account_id, self.user_id, "Account")

    def create(self, data: AccountIn) -> Account:
        account = Account(
            user_id=self.user_id,
            name=data.name.strip(),
            type=data.type,
            currency=(data.currency or get_settings().default_currency).upper(),
            balance=0,
            icon=data.icon,
        )
        with atomic(self.session):
            self.session.add(account)
        self.session.refresh(account)
        return account

    def update(self, account_id: int, data: AccountUpdate) -> Account:
        with atomic(self.session):
            account = self.get(account_id)
            if data.name is not None:
                account.name = data.name.strip()
            if data.type is not None:
                account.type = data.type
            if data.currency is not None:
                account.currency = data.currency.upper()
            if "icon" in data.model_fields_set:
                account.icon = data.icon
        self.session.refresh(account)
        return account

    def delete(self, account_id: int) -> None:
        with atomic(self.session):
            account = self.get(account_id)
            count = int(
                self.session.execute(
                    select(func.count(Transaction.id)).where(
                        Transaction.account_id == account.id
                    )
                ).scalar_one()
                or 0
            )
            if count:
                raise ConflictError(
                    f"Cannot delete account with existing transactions ({count})"
                )
            self.session.delete(account)


class CategoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def list_all(self, is_income: Optional[bool] = None) -> list[Category]:
        stmt = (
            select(Category)
            .where(Category.user_id == self.user_id)
            .order_by(Category.is_income, Category.name)
        )
        if is_income is not None:
            stmt = stmt.where(Category.is_income.is_(is_income))
        return self.session.scalars(stmt).all()

    def get(self, category_id: int) -> Category:
        return _owned(self.session, Category, category_id, self.user_id, "Category")

    def _ensure_unique(
        self, name: str, is_income: bool, exclude_id: Optional[int] = None
    ) -> None:
        stmt = select(Category).where(
            Category.user_id == self.user_id,
            Category.is_income.is_(is_income),
            func.lower(Category.name) == name.lower(),
        )
        if exclude_id is not None:
            stmt = stmt.where(Category.id != exclude_id)
        if self.session.scalar(stmt):
            raise ConflictError("Category with this name already exists")

    def create(self, data: CategoryIn) -> Category:
        name = data.name.strip()
        with atomic(self.session):
            self._ensure_unique(name, data.is_income)
            category = Category(
                user_id=self.user_id,
                name=name,
                is_income=data.is_income,
                icon=data.icon,
            )
            self.session.add(category)
        self.session.refresh(category)
        return category

    def update(self, category_id: int, data: CategoryUpdate) -> Category:
        with atomic(self.session):
            category = self.get(category_id)
            if data.name is not None:
                name = data.name.strip()
                self._ensure_unique(name, category.is_income, exclude_id=category.id)
                category.name = name
            if "icon" in data.model_fields_set:
                category.icon = data.icon
        self.session.refresh(category)
        return category


@dataclass
class TransactionFilters:
    account_id: Optional[int] = None
    type: Optional[TransactionType] = None
    category_id: Optional[int] = None
    query: Optional[str] = None


class TransactionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    @staticmethod
    def _validate(data: TransactionIn) -> None:
        if data.amount <= 0:
            raise ValidationError("Amount must be positive")
        if TransactionType(data.type).is_transfer:
            raise ValidationError(
                "Transfer transactions can only be created through a transfer"
            )

    def _check_references(self, data: TransactionIn) -> None:
        _owned(self.session, Account, data.account_id, self.user_id, "Account")
        if data.category_id is None:
            return
        category = _owned(
            self.session, Category, data.category_id, self.user_id, "Category"
        )
        if category.is_income != (data.type == TransactionType.income):
            raise ValidationError("Category type mismatch")

    def _guard_bill_payment(self, txn: Transaction) -> None:
        linked = self.session.scalar(
            select(BillPayment.id).where(BillPayment.transaction_id == txn.id)
        )
        if linked is not None:
            raise ConflictError(
                "Transaction belongs to a bill payment; delete the bill to release it"
            )

    def create(self, data: TransactionIn) -> Transaction:
        self._validate(data)
        with atomic(self.session):
            self._check_references(data)
            txn = Transaction(
                user_id=self.user_id,
                account_id=data.account_id,
                category_id=data.category_id,
                amount=data.amount,
                type=TransactionType(data.type),
                note=data.note or None,
                occurred_at=data.occurred_at or datetime.utcnow(),
            )
            self.session.add(txn)
            self.session.flush()
            apply_effect(self.session, txn.account_id, txn.type, txn.amount)
        logger.info(
            f"transaction_created: id={txn.id} type={txn.type.value} "
            f"account={txn.account_id} amount={txn.amount}"
        )
        return self.get(txn.id)

    def get(self, transaction_id: int) -> Transaction:
        _owned(self.session, Transaction, transaction_id, self.user_id, "Transaction")
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account), joinedload(Transaction.category))
            .where(Transaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).one()

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        self._validate(data)
        with atomic(self.session):
            txn = _owned(
                self.session,
                Transaction,
                transaction_id,
                self.user_id,
                "Transaction",
                for_update=True,
            )
            if txn.type.is_transfer:
                raise ConflictError(
                    "Transfer transactions cannot be edited directly; "
                    "delete and recreate the transfer instead"
                )
            self._guard_bill_payment(txn)
            self._check_references(data)

            # The old account only sees the reversal, the new one only the new
            # effect; when both are the same account the two shifts compose.
            reverse_effect(self.session, txn.account_id, txn.type, txn.amount)

            txn.account_id = data.account_id
            txn.category_id = data.category_id
            txn.amount = data.amount
            txn.type = TransactionType(data.type)
            txn.note = data.note or None
            if data.occurred_at is not None:
                txn.occurred_at = data.occurred_at
            self.session.flush()

            apply_effect(self.session, txn.account_id, txn.type, txn.amount)
        logger.info(
            f"transaction_updated: id={txn.id} type={txn.type.value} "
            f"account={txn.account_id} amount={txn.amount}"
        )
        return self.get(txn.id)

    def delete(self, transaction_id: int) -> None:
        with atomic(self.session):
            txn = _owned(
                self.session,
                Transaction,
                transaction_id,
                self.user_id,
                "Transaction",
                for_update=True,
            )
            if txn.type.is_transfer:
                raise ConflictError(
                    "Cannot delete transfer transactions. Delete the transfer instead."
                )
            self._guard_bill_payment(txn)
            reverse_effect(self.session, txn.account_id, txn.type, txn.amount)
            self.session.delete(txn)
        logger.info(f"transaction_deleted: id={transaction_id}")

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        period: Optional[Period] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Transaction]:
        filters = filters or TransactionFilters()
        stmt = (
            select(Transaction)
            .options(joinedload(Transaction.account), joinedload(Transaction.category))
            .where(Transaction.user_id == self.user_id)
            .order_by(Transaction.occurred_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        if period is not None:
            stmt = stmt.where(
                Transaction.occurred_at >= period.start,
                Transaction.occurred_at < period.end,
            )
        if filters.account_id:
            stmt = stmt.where(Transaction.account_id == filters.account_id)
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category_id:
            stmt = stmt.where(Transaction.category_id == filters.category_id)
        if filters.query:
            like = f"%{filters.query.lower()}%"
            stmt = stmt.where(
                func.lower(func.coalesce(Transaction.note, "")).like(like)
            )
        return self.session.scalars(stmt).all()


class TransferService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _lock_accounts(self, from_id: int, to_id: int) -> tuple[Account, Account]:
        # Lock in id order so two opposite transfers cannot deadlock.
        rows: dict[int, Optional[Account]] = {}
        for account_id in sorted({from_id, to_id}):
            rows[account_id] = self.session.get(
                Account, account_id, with_for_update=True, populate_existing=True
            )
        source, target = rows[from_id], rows[to_id]
        if source is None or target is None:
            raise NotFoundError("Account not found")
        if source.user_id != self.user_id or target.user_id != self.user_id:
            raise UnauthorizedError("Not authorized for these accounts")
        return source, target

    def create(self, data: TransferIn) -> Transfer:
        if data.amount <= 0:
            raise ValidationError("Amount must be positive")
        if data.from_account_id == data.to_account_id:
            raise ValidationError("From and to accounts must be different")

        with atomic(self.session):
            source, target = self._lock_accounts(
                data.from_account_id, data.to_account_id
            )
            if not debit_if_covered(self.session, source.id, data.amount):
                raise InsufficientFundsError("Insufficient funds")
            self.session.expire(source, ["balance"])

            transfer = Transfer(
                user_id=self.user_id,
                from_account_id=source.id,
                to_account_id=target.id,
                amount=data.amount,
                note=data.note or None,
            )
            self.session.add(transfer)
            self.session.flush()

            occurred_at = data.occurred_at or datetime.utcnow()
            legs = [
                Transaction(
                    user_id=self.user_id,
                    account_id=source.id,
                    amount=data.amount,
                    type=TransactionType.transfer_debit,
                    note=data.note or None,
                    occurred_at=occurred_at,
                    transfer_id=transfer.id,
                ),
                Transaction(
                    user_id=self.user_id,
                    account_id=target.id,
                    amount=data.amount,
                    type=TransactionType.transfer_credit,
                    note=data.note or None,
                    occurred_at=occurred_at,
                    transfer_id=transfer.id,
                ),
            ]
            self.session.add_all(legs)
            self.session.flush()
            # The debit leg was applied by debit_if_covered above.
            credit = legs[1]
            apply_effect(self.session, credit.account_id, credit.type, credit.amount)
        logger.info(
            f"transfer_created: id={transfer.id} from={transfer.from_account_id} "
            f"to={transfer.to_account_id} amount={transfer.amount}"
        )
        return self.get(transfer.id)

    def get(self, transfer_id: int) -> Transfer:
        _owned(self.session, Transfer, transfer_id, self.user_id, "Transfer")
        stmt = (
            select(Transfer)
            .options(
                joinedload(Transfer.from_account),
                joinedload(Transfer.to_account),
                selectinload(Transfer.transactions),
            )
            .where(Transfer.id == transfer_id)
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).one()

    def list(self, limit: int = 100) -> list[Transfer]:
        stmt = (
            select(Transfer)
            .options(
                joinedload(Transfer.from_account),
                joinedload(Transfer.to_account),
                selectinload(Transfer.transactions),
            )
            .where(Transfer.user_id == self.user_id)
            .order_by(Transfer.created_at.desc(), Transfer.id.desc())
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def delete(self, transfer_id: int) -> None:
        with atomic(self.session):
            transfer = _owned(
                self.session,
                Transfer,
                transfer_id,
                self.user_id,
                "Transfer",
                for_update=True,
            )
            _shift_balance(self.session, transfer.from_account_id, transfer.amount)
            _shift_balance(self.session, transfer.to_account_id, -transfer.amount)
            for leg in list(transfer.transactions):
                self.session.delete(leg)
            self.session.flush()
            self.session.delete(transfer)
        logger.info(f"transfer_deleted: id={transfer_id}")


def status_for_paid(total_paid: int, total_amount: int) -> BillStatus:
    if total_paid >= total_amount:
        return BillStatus.paid
    if total_paid > 0:
        return BillStatus.partial
    return BillStatus.unpaid


def is_overdue(bill: Bill, now: Optional[datetime] = None) -> bool:
    now = now or datetime.utcnow()
    return bill.status != BillStatus.paid and bill.due_date < now


def effective_status(bill: Bill, now: Optional[datetime] = None) -> EffectiveBillStatus:
    """Display status: OVERDUE wins over UNPAID/PARTIAL once the due date passed.

    Computed on every read and never stored, so two reads straddling the due
    instant can disagree.
    """
    if is_overdue(bill, now):
        return EffectiveBillStatus.overdue
    return EffectiveBillStatus(bill.status.value)


@dataclass(frozen=True)
class BillProgress:
    bill: Bill
    total_paid: int
    remaining: int
    progress: float
    is_overdue: bool
    effective_status: EffectiveBillStatus


@dataclass(frozen=True)
class BillPaymentResult:
    bill: Bill
    transaction: Transaction
    payment: BillPayment


@dataclass(frozen=True)
class BillSummary:
    total_unpaid: int
    overdue_count: int
    upcoming_count: int


class BillService:
    UPCOMING_WINDOW = timedelta(days=30)

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _total_paid(self, bill_id: int) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(BillPayment.amount), 0)).where(
                    BillPayment.bill_id == bill_id
                )
            ).scalar_one()
            or 0
        )

    def _expense_category(self, category_id: int) -> Category:
        category = _owned(
            self.session, Category, category_id, self.user_id, "Category"
        )
        if category.is_income:
            raise ValidationError("Bills must use an expense category")
        return category

    @staticmethod
    def _progress(bill: Bill, now: Optional[datetime]) -> BillProgress:
        total_paid = sum(p.amount for p in bill.payments)
        progress = (
            total_paid / bill.total_amount * 100 if bill.total_amount > 0 else 0.0
        )
        return BillProgress(
            bill=bill,
            total_paid=total_paid,
            remaining=bill.total_amount - total_paid,
            progress=progress,
            is_overdue=is_overdue(bill, now),
            effective_status=effective_status(bill, now),
        )

    def create(self, data: BillIn) -> Bill:
        if data.total_amount <= 0:
            raise ValidationError("Total amount must be positive")
        with atomic(self.session):
            if data.category_id is not None:
                self._expense_category(data.category_id)
            bill = Bill(
                user_id=self.user_id,
                name=data.name.strip(),
                category_id=data.category_id,
                total_amount=data.total_amount,
                due_date=data.due_date,
                note=data.note,
                is_recurring=data.is_recurring,
                recurrence=data.recurrence,
                status=BillStatus.unpaid,
            )
            self.session.add(bill)
        self.session.refresh(bill)
        logger.info(f"bill_created: id={bill.id} total={bill.total_amount}")
        return bill

    def _load(self, bill_id: int) -> Bill:
        _owned(self.session, Bill, bill_id, self.user_id, "Bill")
        stmt = (
            select(Bill)
            .options(joinedload(Bill.category), selectinload(Bill.payments))
            .where(Bill.id == bill_id)
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).one()

    def get(self, bill_id: int, now: Optional[datetime] = None) -> BillProgress:
        return self._progress(self._load(bill_id), now)

    def list(
        self,
        status: Union[BillStatus, str] = "ALL",
        limit: Optional[int] = 100,
        order_by: str = "due_date",
        now: Optional[datetime] = None,
    ) -> list[BillProgress]:
        stmt = (
            select(Bill)
            .options(joinedload(Bill.category), selectinload(Bill.payments))
            .where(Bill.user_id == self.user_id)
        )
        if status != "ALL":
            stmt = stmt.where(Bill.status == BillStatus(status))
        if order_by == "created_at":
            stmt = stmt.order_by(Bill.created_at.desc(), Bill.id.desc())
        else:
            stmt = stmt.order_by(Bill.due_date.asc(), Bill.id.asc())
        if limit:
            stmt = stmt.limit(limit)
        return [self._progress(bill, now) for bill in self.session.scalars(stmt).all()]

    def summary(self, now: Optional[datetime] = None) -> BillSummary:
        now = now or datetime.utcnow()
        horizon = now + self.UPCOMING_WINDOW
        total_unpaid = 0
        overdue = 0
        upcoming = 0
        for row in self.list(limit=None, now=now):
            if row.bill.status == BillStatus.paid:
                continue
            total_unpaid += row.remaining
            if row.is_overdue:
                overdue += 1
            elif row.bill.due_date <= horizon:
                upcoming += 1
        return BillSummary(
            total_unpaid=total_unpaid, overdue_count=overdue, upcoming_count=upcoming
        )

    def update(self, bill_id: int, data: BillUpdate) -> Bill:
        fields = data.model_dump(exclude_unset=True)
        with atomic(self.session):
            bill = _owned(
                self.session, Bill, bill_id, self.user_id, "Bill", for_update=True
            )
            if bill.status == BillStatus.paid:
                raise ConflictError("Cannot edit a fully paid bill")

            if fields.get("total_amount") is not None:
                new_total = fields["total_amount"]
                if new_total <= 0:
                    raise ValidationError("Total amount must be positive")
                total_paid = self._total_paid(bill.id)
                if new_total < total_paid:
                    raise ConflictError(
                        f"New total amount ({new_total}) cannot be less than "
                        f"already paid amount ({total_paid})"
                    )
                bill.total_amount = new_total
                bill.status = status_for_paid(total_paid, new_total)

            if "category_id" in fields:
                if fields["category_id"] is not None:
                    self._expense_category(fields["category_id"])
                bill.category_id = fields["category_id"]
            if fields.get("name"):
                bill.name = fields["name"].strip()
            if fields.get("due_date") is not None:
                bill.due_date = fields["due_date"]
            if "note" in fields:
                bill.note = fields["note"]
            if fields.get("is_recurring") is not None:
                bill.is_recurring = fields["is_recurring"]
            if "recurrence" in fields:
                bill.recurrence = fields["recurrence"]
        return self._load(bill_id)

    def _load_for_payment(self, bill_id: int) -> Bill:
        bill = _owned(
            self.session, Bill, bill_id, self.user_id, "Bill", for_update=True
        )
        if bill.status == BillStatus.paid:
            raise ConflictError("Bill is already paid")
        return bill

    def pay(
        self, bill_id: int, data: BillPaymentIn, now: Optional[datetime] = None
    ) -> BillPaymentResult:
        if data.amount <= 0:
            raise ValidationError("Payment amount must be positive")
        paid_at = now or datetime.utcnow()

        with atomic(self.session):
            bill = self._load_for_payment(bill_id)
            # Claim the bill with a write before reading what has been paid, so
            # a concurrent payment either waits for this one or sees it.
            claimed = self.session.execute(
                update(Bill)
                .where(Bill.id == bill.id, Bill.status != BillStatus.paid)
                .values(updated_at=datetime.utcnow())
                .execution_options(synchronize_session=False)
            ).rowcount
            if not claimed:
                raise ConflictError("Bill is already paid")
            self.session.expire(bill)

            total_paid = self._total_paid(bill.id)
            remaining = bill.total_amount - total_paid
            if data.amount > remaining:
                raise ConflictError(
                    f"Payment amount ({data.amount}) exceeds remaining balance "
                    f"({remaining})"
                )

            _owned(self.session, Account, data.account_id, self.user_id, "Account")

            # A bill payment is an ordinary expense with bookkeeping on top.
            txn = Transaction(
                user_id=self.user_id,
                account_id=data.account_id,
                category_id=bill.category_id,
                amount=data.amount,
                type=TransactionType.expense,
                note=data.note or f"Payment for bill: {bill.name}",
                occurred_at=paid_at,
            )
            self.session.add(txn)
            self.session.flush()
            apply_effect(self.session, txn.account_id, txn.type, txn.amount)

            payment = BillPayment(
                bill_id=bill.id,
                transaction_id=txn.id,
                amount=data.amount,
                paid_at=paid_at,
            )
            self.session.add(payment)
            bill.status = status_for_paid(total_paid + data.amount, bill.total_amount)
            self.session.flush()
        logger.info(
            f"bill_paid: id={bill_id} amount={data.amount} status={bill.status.value}"
        )
        return BillPaymentResult(
            bill=self._load(bill_id), transaction=txn, payment=payment
        )

    def delete(self, bill_id: int, force: bool = False) -> None:
        with atomic(self.session):
            bill = self._load(bill_id)
            if bill.payments and not force:
                raise ConflictError(
                    "Bill has payments. Set force=true to delete "
                    "(transactions will be preserved)"
                )
            # Payment rows go with the bill; their expense transactions and the
            # account balances they produced stay as they are.
            self.session.delete(bill)
        logger.info(f"bill_deleted: id={bill_id} force={force}")


@dataclass(frozen=True)
class BudgetVsActual:
    id: int
    category_id: int
    category_name: str
    category_icon: Optional[str]
    budget_amount: int
    actual_amount: float
    remaining_amount: float
    usage_rate: float
    over_budget: bool


class BudgetService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def upsert(self, data: CategoryBudgetIn) -> CategoryBudget:
        if data.amount <= 0:
            raise ValidationError("Budget amount must be positive")
        if not 1 <= data.month <= 12:
            raise ValidationError("Month must be between 1 and 12")

        with atomic(self.session):
            category = _owned(
                self.session, Category, data.category_id, self.user_id, "Category"
            )
            if category.is_income:
                raise ValidationError("Cannot create budget for income category")

            existing = self.session.scalar(
                select(CategoryBudget).where(
                    CategoryBudget.user_id == self.user_id,
                    CategoryBudget.category_id == data.category_id,
                    CategoryBudget.year == data.year,
                    CategoryBudget.month == data.month,
                )
            )
            if existing:
                existing.amount = data.amount
                budget = existing
            else:
                budget = CategoryBudget(
                    user_id=self.user_id,
                    category_id=data.category_id,
                    year=data.year,
                    month=data.month,
                    amount=data.amount,
                )
                self.session.add(budget)
        self.session.refresh(budget)
        return budget

    def list_for_month(self, year: int, month: int) -> list[CategoryBudget]:
        stmt = (
            select(CategoryBudget)
            .join(CategoryBudget.category)
            .options(joinedload(CategoryBudget.category))
            .where(
                CategoryBudget.user_id == self.user_id,
                CategoryBudget.year == year,
                CategoryBudget.month == clamp_month(month),
                Category.is_income.is_(False),
            )
            .order_by(Category.name.asc())
        )
        return self.session.scalars(stmt).all()

    def delete(self, budget_id: int) -> None:
        with atomic(self.session):
            budget = _owned(
                self.session, CategoryBudget, budget_id, self.user_id, "Budget"
            )
            self.session.delete(budget)

    def spent_by_category_for_month(
        self, year: int, month: int, category_ids: Optional[list[int]] = None
    ) -> dict[int, int]:
        period = month_period(year, clamp_month(month))
        stmt = (
            select(
                Transaction.category_id,
                func.coalesce(func.sum(Transaction.amount), 0).label("spent"),
            )
            .where(
                Transaction.user_id == self.user_id,
                Transaction.type == TransactionType.expense,
                Transaction.category_id.isnot(None),
                Transaction.occurred_at >= period.start,
                Transaction.occurred_at < period.end,
            )
            .group_by(Transaction.category_id)
        )
        if category_ids is not None:
            stmt = stmt.where(Transaction.category_id.in_(category_ids))
        return {
            row.category_id: int(row.spent or 0) for row in self.session.execute(stmt)
        }

    def vs_actual(self, year: int, month: int) -> list[BudgetVsActual]:
        budgets = self.list_for_month(year, month)
        if not budgets:
            return []

        spent = self.spent_by_category_for_month(
            year, month, [b.category_id for b in budgets]
        )
        rows: list[BudgetVsActual] = []
        for budget in budgets:
            actual = minor_to_major(spent.get(budget.category_id, 0))
            usage = actual / budget.amount * 100 if budget.amount > 0 else 0.0
            rows.append(
                BudgetVsActual(
                    id=budget.id,
                    category_id=budget.category_id,
                    category_name=budget.category.name,
                    category_icon=budget.category.icon,
                    budget_amount=budget.amount,
                    actual_amount=actual,
                    remaining_amount=budget.amount - actual,
                    usage_rate=usage,
                    over_budget=actual > budget.amount,
                )
            )
        return rows


def finance_ratios(income: int, expense: int) -> FinanceRatios:
    net = income - expense
    has_income = income > 0
    cash_flow = income + expense
    return FinanceRatios(
        income=income,
        expense=expense,
        net=net,
        has_income=has_income,
        is_deficit=expense > income,
        income_based_expense_percentage=expense / income * 100 if has_income else 0.0,
        income_based_net_percentage=net / income * 100 if has_income else 0.0,
        cash_flow_income_percentage=income / cash_flow * 100 if cash_flow else 0.0,
        cash_flow_expense_percentage=expense / cash_flow * 100 if cash_flow else 0.0,
    )


class MetricsService:
    """Live, uncached month figures read straight from the transaction log."""

    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _total(self, txn_type: TransactionType, period: Period) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Transaction.amount), 0)).where(
                    Transaction.user_id == self.user_id,
                    Transaction.type == txn_type,
                    Transaction.occurred_at >= period.start,
                    Transaction.occurred_at < period.end,
                )
            ).scalar_one()
            or 0
        )

    def monthly_overview(self, year: int, month: int) -> MonthlyOverview:
        month = clamp_month(month)
        period = month_period(year, month)
        income = self._total(TransactionType.income, period)
        expense = self._total(TransactionType.expense, period)
        accounts = AccountService(self.session, self.user_id).list_all()
        return MonthlyOverview(
            year=year,
            month=month,
            income=income,
            expense=expense,
            net=income - expense,
            ratios=finance_ratios(income, expense),
            accounts=[AccountOut.model_validate(a) for a in accounts],
        )


class DataService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def clear_all(self) -> None:
        uid = self.user_id
        bill_ids = select(Bill.id).where(Bill.user_id == uid)
        with atomic(self.session):
            self.session.execute(
                delete(MonthlyCategorySummary).where(
                    MonthlyCategorySummary.user_id == uid
                )
            )
            self.session.execute(
                delete(MonthlySummary).where(MonthlySummary.user_id == uid)
            )
            self.session.execute(
                delete(CategoryBudget).where(CategoryBudget.user_id == uid)
            )
            self.session.execute(
                delete(BillPayment).where(BillPayment.bill_id.in_(bill_ids))
            )
            self.session.execute(delete(Bill).where(Bill.user_id == uid))
            self.session.execute(delete(Transaction).where(Transaction.user_id == uid))
            self.session.execute(delete(Transfer).where(Transfer.user_id == uid))
            self.session.execute(delete(Account).where(Account.user_id == uid))
            self.session.execute(delete(Category).where(Category.user_id == uid))
        self.session.expunge_all()
        logger.info(f"data_cleared: user={uid}")
