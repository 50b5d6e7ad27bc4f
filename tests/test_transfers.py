import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import create_engine, event, func, select
from sqlalchemy.orm import Session, sessionmaker

from database import Base, enable_sqlite_pragmas
from models import Account, AccountType, Transaction, TransactionType, Transfer
from schemas import AccountIn, TransactionIn, TransferIn
from services import (
    AccountService,
    InsufficientFundsError,
    NotFoundError,
    TransactionService,
    TransferService,
    UnauthorizedError,
    ValidationError,
)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def make_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'transfers.db'}",
        connect_args={"check_same_thread": False},
    )
    event.listen(engine, "connect", enable_sqlite_pragmas)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def balances(session: Session, *account_ids: int) -> list[int]:
    return [
        session.scalar(select(Account.balance).where(Account.id == account_id))
        for account_id in account_ids
    ]


def counts(session: Session) -> tuple[int, int]:
    return (
        session.scalar(select(func.count(Transfer.id))),
        session.scalar(select(func.count(Transaction.id))),
    )


def funded_accounts(session: Session, amount: int = 10_000):
    accounts = AccountService(session)
    source = accounts.create(AccountIn(name="Bank", type=AccountType.bank))
    target = accounts.create(AccountIn(name="E-wallet", type=AccountType.e_wallet))
    TransactionService(session).create(
        TransactionIn(account_id=source.id, amount=amount, type=TransactionType.income)
    )
    return source, target


def test_transfer_creates_two_legs_and_moves_money() -> None:
    with make_session() as session:
        source, target = funded_accounts(session)

        transfer = TransferService(session).create(
            TransferIn(
                from_account_id=source.id,
                to_account_id=target.id,
                amount=3_500,
                note="Top up",
            )
        )

        legs = sorted(transfer.transactions, key=lambda t: t.type.value)
        assert [leg.type for leg in legs] == [
            TransactionType.transfer_credit,
            TransactionType.transfer_debit,
        ]
        assert {leg.transfer_id for leg in legs} == {transfer.id}
        assert legs[0].account_id == target.id
        assert legs[1].account_id == source.id
        assert all(leg.amount == 3_500 for leg in legs)
        assert balances(session, source.id, target.id) == [6_500, 3_500]
        assert counts(session) == (1, 3)


def test_insufficient_funds_leaves_nothing_behind() -> None:
    with make_session() as session:
        source, target = funded_accounts(session, amount=1_000)

        with pytest.raises(InsufficientFundsError):
            TransferService(session).create(
                TransferIn(
                    from_account_id=source.id, to_account_id=target.id, amount=1_001
                )
            )

        assert balances(session, source.id, target.id) == [1_000, 0]
        assert counts(session) == (0, 1)


def test_transfer_to_missing_or_foreign_account_is_rejected() -> None:
    with make_session() as session:
        source, target = funded_accounts(session)
        transfers = TransferService(session)

        with pytest.raises(NotFoundError):
            transfers.create(
                TransferIn(from_account_id=source.id, to_account_id=999, amount=100)
            )
        with pytest.raises(UnauthorizedError):
            TransferService(session, user_id=2).create(
                TransferIn(
                    from_account_id=source.id, to_account_id=target.id, amount=100
                )
            )
        assert balances(session, source.id, target.id) == [10_000, 0]
        assert counts(session) == (0, 1)


def test_same_account_is_rejected_by_service() -> None:
    with make_session() as session:
        source, _ = funded_accounts(session)
        payload = TransferIn.model_construct(
            from_account_id=source.id,
            to_account_id=source.id,
            amount=100,
            note=None,
            occurred_at=None,
        )
        with pytest.raises(ValidationError):
            TransferService(session).create(payload)


def test_delete_restores_both_balances() -> None:
    with make_session() as session:
        source, target = funded_accounts(session)
        transfers = TransferService(session)
        transfer = transfers.create(
            TransferIn(from_account_id=source.id, to_account_id=target.id, amount=2_000)
        )

        transfers.delete(transfer.id)

        assert balances(session, source.id, target.id) == [10_000, 0]
        assert counts(session) == (0, 1)
        assert transfers.list() == []


def test_spent_transfer_credit_still_reverses() -> None:
    with make_session() as session:
        source, target = funded_accounts(session)
        transfers = TransferService(session)
        transfer = transfers.create(
            TransferIn(from_account_id=source.id, to_account_id=target.id, amount=2_000)
        )
        TransactionService(session).create(
            TransactionIn(
                account_id=target.id, amount=1_500, type=TransactionType.expense
            )
        )

        transfers.delete(transfer.id)

        assert balances(session, source.id, target.id) == [10_000, -1_500]


def test_concurrent_transfers_cannot_overdraw(tmp_path, monkeypatch) -> None:
    factory = make_factory(tmp_path)
    with factory() as session:
        source, target = funded_accounts(session, amount=10_000)

    # Both transfers read the funded balance before either one writes.
    both_loaded = threading.Barrier(2, timeout=10)
    lock_accounts = TransferService._lock_accounts

    def lock_then_wait(self, from_id, to_id):
        accounts = lock_accounts(self, from_id, to_id)
        both_loaded.wait()
        return accounts

    monkeypatch.setattr(TransferService, "_lock_accounts", lock_then_wait)

    def send(_):
        with factory() as session:
            try:
                TransferService(session).create(
                    TransferIn(
                        from_account_id=source.id,
                        to_account_id=target.id,
                        amount=10_000,
                    )
                )
            except InsufficientFundsError:
                return "insufficient"
            return "ok"

    with ThreadPoolExecutor(max_workers=2) as pool:
        outcomes = sorted(pool.map(send, range(2)))

    assert outcomes == ["insufficient", "ok"]
    with factory() as session:
        assert balances(session, source.id, target.id) == [0, 10_000]
        assert counts(session) == (1, 3)
