import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from insights import TextSummarizer, generate_insights
from models import TransactionType
from notifier import Notification, Notifier, render_email
from periods import Period, previous_month
from recurrence import local_now
from schemas import MonthlyStats, TransactionRow, UserContact
from store import RecordStore


logger = logging.getLogger(__name__)


def compute_monthly_stats(transactions: list[TransactionRow]) -> MonthlyStats:
    stats = MonthlyStats()
    for txn in transactions:
        stats.transaction_count += 1
        if txn.type == TransactionType.income:
            stats.total_income += txn.amount_cents
        else:
            stats.total_expenses += txn.amount_cents
            stats.by_category[txn.category] = (
                stats.by_category.get(txn.category, 0) + txn.amount_cents
            )
    return stats


class MonthlyReportGenerator:
    def __init__(
        self,
        session: Session,
        notifier: Notifier,
        summarizer: Optional[TextSummarizer],
    ) -> None:
        self.session = session
        self.store = RecordStore(session)
        self.notifier = notifier
        self.summarizer = summarizer

    def run(self, now: Optional[datetime] = None) -> int:
        now = now or local_now()
        period = previous_month(now.date())
        users = self.store.list_users()
        logger.info(f"monthly_report: month={period.label!r} users={len(users)}")
        sent = 0
        for user in users:
            try:
                delivered = self._report_for(user, period)
            except Exception:
                self.session.rollback()
                logger.exception(f"monthly_report: user_id={user.id} failed")
                continue
            if delivered:
                sent += 1
            else:
                logger.warning(f"monthly_report: user_id={user.id} dispatch failed")
        logger.info(f"monthly_report: month={period.label!r} sent={sent}")
        return sent

    def _report_for(self, user: UserContact, period: Period) -> bool:
        transactions = self.store.find_monthly_transactions(
            user.id, period.start_at, period.end_at
        )
        stats = compute_monthly_stats(transactions)
        insights = generate_insights(self.summarizer, stats, period.label)
        categories = sorted(
            stats.by_category.items(), key=lambda item: item[1], reverse=True
        )
        return self.notifier.send(
            Notification(
                to=user.email,
                subject=f"Your Monthly Financial Report - {period.label}",
                body=render_email(
                    "monthly_report.html",
                    user_name=user.name,
                    month_name=period.label,
                    stats=stats,
                    categories=categories,
                    insights=insights,
                ),
            )
        )
