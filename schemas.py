from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import RecurringInterval, TransactionStatus, TransactionType


class AccountRef(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str


class UserContact(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str = Field(..., min_length=3)
    name: Optional[str] = None


class BudgetWithOwner(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    amount_cents: int = Field(..., ge=0)
    last_alert_sent: Optional[datetime] = None
    user: UserContact
    default_account: Optional[AccountRef] = None


class DueTemplate(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    account_id: str
    type: TransactionType
    amount_cents: int = Field(..., ge=0)
    description: Optional[str] = None
    category: str
    recurring_interval: RecurringInterval
    next_recurring_date: Optional[date] = None
    last_processed: Optional[datetime] = None


class PendingInstance(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    account_id: str
    type: TransactionType
    amount_cents: int
    category: str
    date: datetime
    status: TransactionStatus
    recurring_template_id: Optional[str] = None


class TransactionRow(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: TransactionType
    amount_cents: int
    category: str
    date: datetime


class RecurringApprovedEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    transaction_id: str = Field(..., alias="transactionId", min_length=1)
    recurring_template_id: str = Field(
        ..., alias="recurringTemplateId", min_length=1
    )
    recurring_interval: RecurringInterval = Field(..., alias="recurringInterval")
    user_id: str = Field(..., alias="userId", min_length=1)


class SignedEventIn(BaseModel):
    token: str = Field(..., min_length=1)


class MonthlyStats(BaseModel):
    total_income: int = 0
    total_expenses: int = 0
    by_category: dict[str, int] = Field(default_factory=dict)
    transaction_count: int = 0

    @property
    def net_cents(self) -> int:
        return self.total_income - self.total_expenses

    def top_category(self) -> Optional[tuple[str, int]]:
        if not self.by_category:
            return None
        name = max(self.by_category, key=lambda key: (self.by_category[key], key))
        return name, self.by_category[name]


class MonthlyInsights(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    summary: str
    top_category_insight: str = Field(..., alias="topCategoryInsight")
    savings_insight: str = Field(..., alias="savingsInsight")

    @field_validator("summary", "top_category_insight", "savings_insight")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Insight text cannot be empty")
        return value
