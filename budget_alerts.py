import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from notifier import Notification, Notifier, render_email
from periods import current_month, same_month
from recurrence import local_now
from schemas import BudgetWithOwner
from store import RecordStore


logger = logging.getLogger(__name__)

ALERT_THRESHOLD_PERCENT = 80.0


@dataclass
class AlertRunSummary:
    evaluated: int = 0
    alerted: int = 0
    skipped: int = 0
    failed: int = 0


def should_alert(
    percent_used: float, last_alert_sent: Optional[datetime], now: datetime
) -> bool:
    if percent_used < ALERT_THRESHOLD_PERCENT:
        return False
    return last_alert_sent is None or not same_month(last_alert_sent, now)


class BudgetAlertEvaluator:
    def __init__(self, session: Session, notifier: Notifier) -> None:
        self.session = session
        self.store = RecordStore(session)
        self.notifier = notifier

    def run(self, now: Optional[datetime] = None) -> AlertRunSummary:
        now = now or local_now()
        summary = AlertRunSummary()
        budgets = self.store.find_budgets()
        logger.info(f"budget_alert: budgets={len(budgets)} now={now.isoformat()}")
        for budget in budgets:
            summary.evaluated += 1
            try:
                outcome = self._evaluate(budget, now)
                self.session.commit()
            except Exception:
                self.session.rollback()
                summary.failed += 1
                logger.exception(f"budget_alert: budget_id={budget.id} failed")
                continue
            if outcome == "alerted":
                summary.alerted += 1
            elif outcome == "skipped":
                summary.skipped += 1
            elif outcome == "failed":
                summary.failed += 1
        logger.info(
            f"budget_alert: evaluated={summary.evaluated} alerted={summary.alerted} "
            f"skipped={summary.skipped} failed={summary.failed}"
        )
        return summary

    def _evaluate(self, budget: BudgetWithOwner, now: datetime) -> str:
        account = budget.default_account
        if account is None:
            logger.debug(f"budget_alert: budget_id={budget.id} no default account")
            return "skipped"
        if budget.amount_cents == 0:
            logger.debug(f"budget_alert: budget_id={budget.id} zero limit")
            return "skipped"

        period = current_month(now.date())
        spent = self.store.sum_expenses(
            budget.user.id, account.id, period.start_at, period.end_at
        )
        percent_used = spent / budget.amount_cents * 100
        if not should_alert(percent_used, budget.last_alert_sent, now):
            return "ok"

        logger.warning(
            f"budget_alert: user_id={budget.user.id} budget_id={budget.id} "
            f"percent_used={percent_used:.1f}"
        )
        notification = Notification(
            to=budget.user.email,
            subject=f"Budget Alert for {account.name}",
            body=render_email(
                "budget_alert.html",
                user_name=budget.user.name,
                account_name=account.name,
                spent_cents=spent,
                limit_cents=budget.amount_cents,
                percent_used=percent_used,
            ),
        )
        if not self.notifier.send(notification):
            logger.warning(
                f"budget_alert: budget_id={budget.id} dispatch failed, will retry next run"
            )
            return "failed"
        self.store.update_budget(budget.id, last_alert_sent=now)
        return "alerted"
