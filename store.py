from __future__ import annotations

from datetime import date, datetime
from typing import Optional

from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.orm import Session, aliased, joinedload

from models import (
    Account,
    Budget,
    Transaction,
    TransactionStatus,
    TransactionType,
    User,
)
from schemas import (
    AccountRef,
    BudgetWithOwner,
    DueTemplate,
    PendingInstance,
    TransactionRow,
    UserContact,
)


class RecordStore:
    """Query and write access used by the scheduled jobs.

    Rows leave this class as DTOs; only ``get_transaction`` hands back the
    ORM object because settlement mutates it in place.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    def list_users(self) -> list[UserContact]:
        users = self.session.scalars(select(User).order_by(User.created_at, User.id))
        return [UserContact.model_validate(u) for u in users]

    def find_budgets(self) -> list[BudgetWithOwner]:
        budgets = self.session.scalars(
            select(Budget)
            .options(joinedload(Budget.user).joinedload(User.accounts))
            .order_by(Budget.created_at, Budget.id)
        ).unique()
        result = []
        for budget in budgets:
            default = next((a for a in budget.user.accounts if a.is_default), None)
            result.append(
                BudgetWithOwner(
                    id=budget.id,
                    amount_cents=budget.amount_cents,
                    last_alert_sent=budget.last_alert_sent,
                    user=UserContact.model_validate(budget.user),
                    default_account=(
                        AccountRef.model_validate(default) if default else None
                    ),
                )
            )
        return result

    def sum_expenses(
        self, user_id: str, account_id: str, start: datetime, end: datetime
    ) -> int:
        return int(
            self.session.execute(
                select(func.coalesce(func.sum(Transaction.amount_cents), 0)).where(
                    Transaction.user_id == user_id,
                    Transaction.account_id == account_id,
                    Transaction.type == TransactionType.expense,
                    Transaction.status != TransactionStatus.pending,
                    Transaction.date.between(start, end),
                )
            ).scalar_one()
            or 0
        )

    def update_budget(self, budget_id: str, *, last_alert_sent: datetime) -> None:
        budget = self.session.get(Budget, budget_id)
        if not budget:
            raise ValueError("Budget not found")
        budget.last_alert_sent = last_alert_sent
        self.session.flush()

    def find_due_templates(self, as_of: date) -> list[DueTemplate]:
        Instance = aliased(Transaction)
        has_open_instance = exists().where(
            Instance.recurring_template_id == Transaction.id,
            Instance.status == TransactionStatus.pending,
        )
        stmt = (
            select(Transaction)
            .where(
                Transaction.is_recurring.is_(True),
                Transaction.status == TransactionStatus.completed,
                Transaction.recurring_interval.is_not(None),
                or_(
                    Transaction.next_recurring_date <= as_of,
                    Transaction.next_recurring_date.is_(None),
                ),
                ~has_open_instance,
            )
            .order_by(Transaction.next_recurring_date, Transaction.id)
        )
        return [DueTemplate.model_validate(t) for t in self.session.scalars(stmt)]

    def create_pending_instance(
        self, template: DueTemplate, on: datetime
    ) -> PendingInstance:
        txn = Transaction(
            user_id=template.user_id,
            account_id=template.account_id,
            type=template.type,
            amount_cents=template.amount_cents,
            description=template.description,
            category=template.category,
            date=on,
            status=TransactionStatus.pending,
            is_recurring=False,
            recurring_template_id=template.id,
        )
        self.session.add(txn)
        self.session.flush()
        return PendingInstance.model_validate(txn)

    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self.session.get(Transaction, transaction_id)

    def update_transaction(self, transaction_id: str, **fields: object) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if not txn:
            raise ValueError("Transaction not found")
        for key, value in fields.items():
            if not hasattr(Transaction, key):
                raise ValueError(f"Unknown transaction field: {key}")
            setattr(txn, key, value)
        self.session.flush()
        return txn

    def claim_pending_instance(self, transaction_id: str, settled_at: datetime) -> bool:
        """Flip a PENDING instance to COMPLETED in one conditional UPDATE.

        Returns False when another writer already completed it.
        """
        result = self.session.execute(
            update(Transaction)
            .where(
                Transaction.id == transaction_id,
                Transaction.status == TransactionStatus.pending,
            )
            .values(status=TransactionStatus.completed, date=settled_at)
        )
        return result.rowcount == 1

    def adjust_account_balance(self, account_id: str, delta_cents: int) -> None:
        result = self.session.execute(
            update(Account)
            .where(Account.id == account_id)
            .values(balance_cents=Account.balance_cents + delta_cents)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount != 1:
            raise ValueError("Account not found")

    def find_monthly_transactions(
        self, user_id: str, start: datetime, end: datetime
    ) -> list[TransactionRow]:
        stmt = (
            select(Transaction)
            .where(
                Transaction.user_id == user_id,
                Transaction.status == TransactionStatus.completed,
                Transaction.date.between(start, end),
            )
            .order_by(Transaction.date, Transaction.id)
        )
        return [TransactionRow.model_validate(t) for t in self.session.scalars(stmt)]
