from datetime import date, datetime
from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session

from database import Base
from models import (
    Account,
    Budget,
    RecurringInterval,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from notifier import Notification


def memory_engine() -> Engine:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


def make_user(
    session: Session,
    email: str = "asha@example.com",
    name: Optional[str] = "Asha",
    *,
    with_default_account: bool = True,
) -> tuple[User, Optional[Account]]:
    user = User(email=email, name=name)
    session.add(user)
    session.flush()
    account = None
    if with_default_account:
        account = Account(user_id=user.id, name="Main", is_default=True)
        session.add(account)
        session.flush()
    return user, account


def make_budget(
    session: Session,
    user: User,
    amount_cents: int,
    last_alert_sent: Optional[datetime] = None,
) -> Budget:
    budget = Budget(
        user_id=user.id, amount_cents=amount_cents, last_alert_sent=last_alert_sent
    )
    session.add(budget)
    session.flush()
    return budget


def make_txn(
    session: Session,
    account: Account,
    amount_cents: int,
    when: datetime,
    *,
    type: TransactionType = TransactionType.expense,
    category: str = "groceries",
    status: TransactionStatus = TransactionStatus.completed,
) -> Transaction:
    txn = Transaction(
        user_id=account.user_id,
        account_id=account.id,
        type=type,
        amount_cents=amount_cents,
        category=category,
        date=when,
        status=status,
    )
    session.add(txn)
    session.flush()
    return txn


def make_template(
    session: Session,
    account: Account,
    *,
    interval: RecurringInterval = RecurringInterval.monthly,
    next_recurring_date: Optional[date] = None,
    amount_cents: int = 150_000,
    category: str = "housing",
    when: datetime = datetime(2024, 1, 1, 9, 0),
) -> Transaction:
    template = Transaction(
        user_id=account.user_id,
        account_id=account.id,
        type=TransactionType.expense,
        amount_cents=amount_cents,
        description="Rent",
        category=category,
        date=when,
        status=TransactionStatus.completed,
        is_recurring=True,
        recurring_interval=interval,
        next_recurring_date=next_recurring_date,
    )
    session.add(template)
    session.flush()
    return template


class RecordingNotifier:
    def __init__(self, ok: bool = True, fail_for: Optional[set[str]] = None) -> None:
        self.ok = ok
        self.fail_for = fail_for or set()
        self.sent: list[Notification] = []

    def send(self, notification: Notification) -> bool:
        if notification.to in self.fail_for:
            raise ConnectionError(f"SMTP refused {notification.to}")
        self.sent.append(notification)
        return self.ok
