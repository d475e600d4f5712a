import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session

from models import TransactionStatus, TransactionType
from recurrence import local_now, next_date
from schemas import RecurringApprovedEvent
from store import RecordStore
from throttle import SlidingWindowLimiter


logger = logging.getLogger(__name__)


class TransactionNotFoundError(ValueError):
    pass


class TemplateNotFoundError(ValueError):
    pass


class SettlementThrottledError(RuntimeError):
    def __init__(self, user_id: str, retry_after: float) -> None:
        self.user_id = user_id
        self.retry_after = retry_after
        super().__init__(
            f"Settlement rate limit reached for user {user_id}; retry in {retry_after:.0f}s"
        )


@dataclass(frozen=True)
class SettlementResult:
    transaction_id: str
    template_id: str
    already_settled: bool
    next_recurring_date: Optional[date]


class SettlementProcessor:
    def __init__(self, limiter: SlidingWindowLimiter) -> None:
        self.limiter = limiter

    def admit(self, event: RecurringApprovedEvent) -> None:
        if not self.limiter.try_acquire(event.user_id):
            retry_after = self.limiter.retry_after(event.user_id)
            logger.warning(
                f"settlement: user_id={event.user_id} throttled retry_after={retry_after:.1f}s"
            )
            raise SettlementThrottledError(event.user_id, retry_after)

    def settle(
        self,
        session: Session,
        event: RecurringApprovedEvent,
        now: Optional[datetime] = None,
    ) -> SettlementResult:
        """Complete the pending instance and advance its template.

        The caller owns the transaction; both writes commit together or not
        at all. Settling an instance that is already completed is a no-op.
        """
        now = now or local_now()
        store = RecordStore(session)

        instance = store.get_transaction(event.transaction_id)
        if (
            instance is None
            or instance.user_id != event.user_id
            or instance.recurring_template_id != event.recurring_template_id
        ):
            raise TransactionNotFoundError(
                f"Pending transaction {event.transaction_id} not found"
            )

        template = store.get_transaction(event.recurring_template_id)
        if template is None or not template.is_recurring:
            raise TemplateNotFoundError(
                f"Recurring template {event.recurring_template_id} not found"
            )

        following = next_date(now, event.recurring_interval)

        # A concurrent delivery may have completed the row since it was loaded.
        if instance.status == TransactionStatus.completed or not (
            store.claim_pending_instance(instance.id, now)
        ):
            session.refresh(template)
            logger.info(
                f"settlement: transaction_id={instance.id} already settled, skipping"
            )
            return SettlementResult(
                transaction_id=instance.id,
                template_id=template.id,
                already_settled=True,
                next_recurring_date=template.next_recurring_date,
            )

        delta = (
            instance.amount_cents
            if instance.type == TransactionType.income
            else -instance.amount_cents
        )
        store.adjust_account_balance(instance.account_id, delta)
        store.update_transaction(
            template.id, last_processed=now, next_recurring_date=following.date()
        )

        logger.info(
            f"settlement: transaction_id={instance.id} template_id={template.id} "
            f"next_recurring_date={following.date().isoformat()}"
        )
        return SettlementResult(
            transaction_id=instance.id,
            template_id=template.id,
            already_settled=False,
            next_recurring_date=following.date(),
        )
