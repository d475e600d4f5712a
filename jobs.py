"""Entry points invoked by the scheduler and the event ingress.

Every handler opens its own session, so jobs on different scheduler threads
never share one.
"""

import logging
from functools import lru_cache
from typing import Optional

from sqlalchemy.orm import sessionmaker

from budget_alerts import AlertRunSummary, BudgetAlertEvaluator
from config import get_settings
from database import SessionLocal, session_scope
from insights import build_summarizer
from notifier import Notifier, build_notifier
from recurrence import InvalidIntervalError, RecurringMaterializer
from reports import MonthlyReportGenerator
from retry import RetryPolicy, run_with_retry
from schemas import RecurringApprovedEvent
from settlement import (
    SettlementProcessor,
    SettlementResult,
    SettlementThrottledError,
    TemplateNotFoundError,
    TransactionNotFoundError,
)
from throttle import SlidingWindowLimiter


logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_settlement_processor() -> SettlementProcessor:
    settings = get_settings()
    return SettlementProcessor(
        SlidingWindowLimiter(
            limit=settings.settlement_limit,
            window_secs=settings.settlement_window_secs,
        )
    )


def check_budget_alerts(
    factory: sessionmaker = SessionLocal, notifier: Optional[Notifier] = None
) -> AlertRunSummary:
    with session_scope(factory) as session:
        return BudgetAlertEvaluator(session, notifier or build_notifier()).run()


def materialize_recurring(factory: sessionmaker = SessionLocal) -> int:
    with session_scope(factory) as session:
        return RecurringMaterializer(session).run()


def send_monthly_reports(
    factory: sessionmaker = SessionLocal, notifier: Optional[Notifier] = None
) -> int:
    with session_scope(factory) as session:
        return MonthlyReportGenerator(
            session, notifier or build_notifier(), build_summarizer()
        ).run()


# Reference and input errors go back to the caller, whose own retry policy applies.
_NOT_RETRIED = (
    SettlementThrottledError,
    TransactionNotFoundError,
    TemplateNotFoundError,
    InvalidIntervalError,
)


def _retryable_settlement_error(exc: BaseException) -> bool:
    return not isinstance(exc, _NOT_RETRIED)


def handle_recurring_approved(
    event: RecurringApprovedEvent,
    *,
    factory: sessionmaker = SessionLocal,
    processor: Optional[SettlementProcessor] = None,
    policy: Optional[RetryPolicy] = None,
) -> SettlementResult:
    processor = processor or get_settlement_processor()
    processor.admit(event)
    base = policy or RetryPolicy.from_settings()
    policy = RetryPolicy(
        max_attempts=base.max_attempts,
        backoff=base.backoff,
        retry_on=_retryable_settlement_error,
    )

    def _attempt() -> SettlementResult:
        with session_scope(factory) as session:
            return processor.settle(session, event)

    return run_with_retry(
        _attempt, policy, name=f"settle:{event.transaction_id}"
    )
