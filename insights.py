from __future__ import annotations

import json
import logging
from typing import Optional, Protocol

import google.generativeai as genai
from pydantic import ValidationError

from config import Settings, get_settings
from notifier import format_money
from schemas import MonthlyInsights, MonthlyStats


logger = logging.getLogger(__name__)


class InsightsError(RuntimeError):
    pass


class TextSummarizer(Protocol):
    def summarize(self, stats: MonthlyStats, month_name: str) -> dict: ...


def _extract_json(text: str) -> dict:
    start = text.find("{")
    end = text.rfind("}") + 1
    if start < 0 or end <= start:
        raise InsightsError("No JSON object in model response")
    try:
        data = json.loads(text[start:end])
    except json.JSONDecodeError as exc:
        raise InsightsError("Model response is not valid JSON") from exc
    if not isinstance(data, dict):
        raise InsightsError("Model response is not a JSON object")
    return data


class GeminiSummarizer:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        genai.configure(api_key=settings.gemini_api_key)
        self._model = genai.GenerativeModel(
            model_name=settings.gemini_model,
            generation_config={"temperature": 0.4, "max_output_tokens": 512},
        )

    def _prompt(self, stats: MonthlyStats, month_name: str) -> str:
        categories = ", ".join(
            f"{name}: {format_money(amount)}"
            for name, amount in sorted(
                stats.by_category.items(), key=lambda item: item[1], reverse=True
            )
        )
        return f"""Analyze this financial data and provide a short monthly report.

Month: {month_name}
Total income: {format_money(stats.total_income)}
Total expenses: {format_money(stats.total_expenses)}
Net: {format_money(stats.net_cents)}
Transactions: {stats.transaction_count}
Expenses by category: {categories or "none"}

Write a 2-3 sentence friendly summary. Respond with ONLY a JSON object in this exact format:
{{"summary": "...", "topCategoryInsight": "...", "savingsInsight": "..."}}"""

    def summarize(self, stats: MonthlyStats, month_name: str) -> dict:
        response = self._model.generate_content(
            self._prompt(stats, month_name),
            request_options={"timeout": self.settings.llm_timeout_secs},
        )
        return _extract_json(response.text.strip())


def build_summarizer(settings: Optional[Settings] = None) -> Optional[TextSummarizer]:
    settings = settings or get_settings()
    if not settings.gemini_api_key:
        return None
    return GeminiSummarizer(settings)


def rule_based_insights(stats: MonthlyStats, month_name: str) -> MonthlyInsights:
    top = stats.top_category()
    net = stats.net_cents
    summary = (
        f"In {month_name} you recorded {stats.transaction_count} transactions, "
        f"with {format_money(stats.total_income)} in income and "
        f"{format_money(stats.total_expenses)} in expenses."
    )
    if top:
        name, amount = top
        share = amount / stats.total_expenses * 100 if stats.total_expenses else 0
        top_line = (
            f"Your biggest spending category was {name} at {format_money(amount)} "
            f"({share:.0f}% of expenses)."
        )
    else:
        top_line = "You had no categorized expenses this month."
    if net > 0:
        savings_line = f"You saved {format_money(net)}. Keep it up."
    elif net < 0:
        savings_line = (
            f"You spent {format_money(-net)} more than you earned. "
            "Review your largest categories to get back on track."
        )
    else:
        savings_line = "Your income and expenses balanced out exactly."
    return MonthlyInsights(
        summary=summary, top_category_insight=top_line, savings_insight=savings_line
    )


def generate_insights(
    summarizer: Optional[TextSummarizer], stats: MonthlyStats, month_name: str
) -> MonthlyInsights:
    if summarizer is None:
        return rule_based_insights(stats, month_name)
    try:
        raw = summarizer.summarize(stats, month_name)
        return MonthlyInsights.model_validate(raw)
    except ValidationError as exc:
        logger.warning(
            f"insights: month={month_name!r} malformed response, using fallback "
            f"errors={exc.error_count()}"
        )
    except Exception:
        logger.exception(f"insights: month={month_name!r} summarizer failed, using fallback")
    return rule_based_insights(stats, month_name)
