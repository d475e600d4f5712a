from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    @property
    def start_at(self) -> datetime:
        return datetime.combine(self.start, time.min)

    @property
    def end_at(self) -> datetime:
        return datetime.combine(self.end, time.max)

    @property
    def label(self) -> str:
        return self.start.strftime("%B %Y")


def _month_end(first: date) -> date:
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def current_month(today: Optional[date] = None) -> Period:
    today = today or date.today()
    first = today.replace(day=1)
    return Period("this_month", first, _month_end(first))


def previous_month(today: Optional[date] = None) -> Period:
    today = today or date.today()
    first_this = today.replace(day=1)
    last_month_end = first_this - date.resolution
    return Period("last_month", last_month_end.replace(day=1), last_month_end)


def same_month(a: date, b: date) -> bool:
    return a.year == b.year and a.month == b.month
