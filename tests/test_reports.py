from datetime import datetime

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from factories import RecordingNotifier, make_txn, make_user, memory_engine
from insights import generate_insights, rule_based_insights
from models import TransactionStatus, TransactionType
from reports import MonthlyReportGenerator, compute_monthly_stats
from schemas import MonthlyStats, TransactionRow
from store import RecordStore


OCT_1 = datetime(2026, 10, 1, 0, 0)


class FakeSummarizer:
    def __init__(self, response=None, error: Exception = None) -> None:
        self.response = response
        self.error = error
        self.calls = []

    def summarize(self, stats, month_name):
        self.calls.append((stats, month_name))
        if self.error:
            raise self.error
        return self.response


def _stats() -> MonthlyStats:
    return MonthlyStats(
        total_income=500_000,
        total_expenses=180_000,
        by_category={"housing": 150_000, "groceries": 30_000},
        transaction_count=3,
    )


def test_compute_monthly_stats_groups_expenses_by_category():
    rows = [
        TransactionRow(
            id="1",
            type=TransactionType.income,
            amount_cents=500_000,
            category="salary",
            date=datetime(2026, 9, 1),
        ),
        TransactionRow(
            id="2",
            type=TransactionType.expense,
            amount_cents=20_000,
            category="groceries",
            date=datetime(2026, 9, 2),
        ),
        TransactionRow(
            id="3",
            type=TransactionType.expense,
            amount_cents=10_000,
            category="groceries",
            date=datetime(2026, 9, 9),
        ),
        TransactionRow(
            id="4",
            type=TransactionType.expense,
            amount_cents=150_000,
            category="housing",
            date=datetime(2026, 9, 3),
        ),
    ]
    stats = compute_monthly_stats(rows)
    assert stats.total_income == 500_000
    assert stats.total_expenses == 180_000
    assert stats.by_category == {"groceries": 30_000, "housing": 150_000}
    assert stats.transaction_count == 4
    assert stats.net_cents == 320_000
    assert stats.top_category() == ("housing", 150_000)


def test_summarizer_response_is_used_when_complete():
    summarizer = FakeSummarizer(
        {
            "summary": "A steady month.",
            "topCategoryInsight": "Housing dominated.",
            "savingsInsight": "You saved well.",
        }
    )
    insights = generate_insights(summarizer, _stats(), "September 2026")
    assert insights.summary == "A steady month."
    assert insights.top_category_insight == "Housing dominated."
    assert insights.savings_insight == "You saved well."
    assert summarizer.calls[0][1] == "September 2026"


def test_missing_key_falls_back_to_rule_based_insights():
    summarizer = FakeSummarizer(
        {"summary": "A steady month.", "topCategoryInsight": "Housing dominated."}
    )
    insights = generate_insights(summarizer, _stats(), "September 2026")
    assert insights == rule_based_insights(_stats(), "September 2026")
    assert insights.summary
    assert "housing" in insights.top_category_insight
    assert insights.savings_insight.startswith("You saved")


def test_blank_or_non_object_responses_fall_back():
    blank = FakeSummarizer(
        {"summary": " ", "topCategoryInsight": "x", "savingsInsight": "y"}
    )
    assert generate_insights(blank, _stats(), "September 2026").summary.startswith(
        "In September 2026"
    )
    assert generate_insights(FakeSummarizer("not json"), _stats(), "September 2026")
    assert generate_insights(None, _stats(), "September 2026").savings_insight


def test_rule_based_insights_for_deficit_and_empty_month():
    deficit = MonthlyStats(
        total_income=10_000,
        total_expenses=25_000,
        by_category={"travel": 25_000},
        transaction_count=2,
    )
    insights = rule_based_insights(deficit, "August 2026")
    assert "travel" in insights.top_category_insight
    assert "more than you earned" in insights.savings_insight

    empty = rule_based_insights(MonthlyStats(), "August 2026")
    assert empty.summary and empty.top_category_insight and empty.savings_insight


def test_report_uses_previous_month_and_falls_back_on_timeout():
    engine = memory_engine()
    notifier = RecordingNotifier()
    with Session(engine) as session:
        _, account = make_user(session)
        make_txn(
            session,
            account,
            500_000,
            datetime(2026, 9, 1, 9, 0),
            type=TransactionType.income,
            category="salary",
        )
        make_txn(session, account, 150_000, datetime(2026, 9, 3, 9, 0), category="housing")
        make_txn(session, account, 30_000, datetime(2026, 9, 30, 23, 0))
        make_txn(session, account, 99_000, datetime(2026, 8, 31, 9, 0), category="travel")
        make_txn(session, account, 99_000, datetime(2026, 10, 1, 9, 0), category="travel")
        make_txn(
            session,
            account,
            99_000,
            datetime(2026, 9, 15, 9, 0),
            category="travel",
            status=TransactionStatus.pending,
        )
        session.commit()

        summarizer = FakeSummarizer(error=TimeoutError("deadline exceeded"))
        sent = MonthlyReportGenerator(session, notifier, summarizer).run(now=OCT_1)

        assert sent == 1
        stats, month_name = summarizer.calls[0]
        assert month_name == "September 2026"
        assert stats.total_income == 500_000
        assert stats.total_expenses == 180_000
        assert "travel" not in stats.by_category

        report = notifier.sent[0]
        assert report.subject == "Your Monthly Financial Report - September 2026"
        assert "housing" in report.body
        assert "You saved" in report.body


def test_one_failed_report_does_not_block_others():
    engine = memory_engine()
    notifier = RecordingNotifier(fail_for={"first@example.com"})
    with Session(engine) as session:
        make_user(session, email="first@example.com", name="First")
        make_user(session, email="second@example.com", name="Second")
        make_user(session, email="third@example.com", name=None)
        session.commit()

        sent = MonthlyReportGenerator(session, notifier, None).run(now=OCT_1)
        assert sent == 2
        assert {n.to for n in notifier.sent} == {
            "second@example.com",
            "third@example.com",
        }


def test_store_error_for_one_user_is_rolled_back_before_the_next(monkeypatch):
    engine = memory_engine()
    notifier = RecordingNotifier()
    with Session(engine) as session:
        first, _ = make_user(session, email="first@example.com", name="First")
        make_user(session, email="second@example.com", name="Second")
        session.commit()
        first_id = first.id

        # Mimic a server that refuses every statement until the failed
        # transaction is rolled back.
        state = {"aborted": False}
        original_find = RecordStore.find_monthly_transactions
        original_rollback = session.rollback

        def find(self, user_id, start, end):
            if state["aborted"] or user_id == first_id:
                state["aborted"] = True
                raise OperationalError("SELECT", {}, Exception("transaction aborted"))
            return original_find(self, user_id, start, end)

        def rollback():
            state["aborted"] = False
            original_rollback()

        monkeypatch.setattr(RecordStore, "find_monthly_transactions", find)
        monkeypatch.setattr(session, "rollback", rollback)

        sent = MonthlyReportGenerator(session, notifier, None).run(now=OCT_1)

    assert sent == 1
    assert [n.to for n in notifier.sent] == ["second@example.com"]
