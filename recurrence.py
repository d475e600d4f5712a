import logging
from datetime import date, datetime, timedelta
from typing import Optional, TypeVar, Union
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config import get_settings
from models import RecurringInterval
from store import RecordStore


logger = logging.getLogger(__name__)

D = TypeVar("D", date, datetime)


class InvalidIntervalError(ValueError):
    pass


def local_now() -> datetime:
    """Wall-clock time in the configured timezone, stored naive."""
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None)


def local_today() -> date:
    return local_now().date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def _add_months(base: D, months: int) -> D:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    # Snap to the last day when the target month is shorter.
    day = min(base.day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def parse_interval(value: Union[RecurringInterval, str, None]) -> RecurringInterval:
    if isinstance(value, RecurringInterval):
        return value
    if isinstance(value, str):
        try:
            return RecurringInterval(value.strip().upper())
        except ValueError:
            pass
    raise InvalidIntervalError(f"Unsupported recurring interval: {value!r}")


def next_date(anchor: D, interval: Union[RecurringInterval, str]) -> D:
    """Return the anchor advanced by one interval.

    MONTHLY and YEARLY clamp to the end of the target month, so Jan 31 goes
    to Feb 28 (or 29) and Feb 29 goes to Feb 28 of the next year. The time
    of day of a ``datetime`` anchor is kept.
    """
    if not isinstance(anchor, date):
        raise InvalidIntervalError(f"Anchor must be a date, got {anchor!r}")
    unit = parse_interval(interval)
    if unit == RecurringInterval.daily:
        return anchor + timedelta(days=1)
    if unit == RecurringInterval.weekly:
        return anchor + timedelta(weeks=1)
    if unit == RecurringInterval.monthly:
        return _add_months(anchor, 1)
    return _add_months(anchor, 12)


class RecurringMaterializer:
    """Creates one pending instance per due template.

    Schedules are left alone here; a template only moves forward once its
    instance is settled.
    """

    def __init__(self, session: Session) -> None:
        self.session = session
        self.store = RecordStore(session)

    def run(self, now: Optional[datetime] = None) -> int:
        now = now or local_now()
        templates = self.store.find_due_templates(now.date())
        logger.info(
            f"recurring_materialize: as_of={now.date().isoformat()} due={len(templates)}"
        )
        created = 0
        for template in templates:
            try:
                instance = self.store.create_pending_instance(template, now)
                self.session.commit()
            except IntegrityError:
                self.session.rollback()
                logger.warning(
                    f"recurring_materialize: template_id={template.id} already has a pending instance"
                )
                continue
            except Exception:
                self.session.rollback()
                logger.exception(
                    f"recurring_materialize: template_id={template.id} failed"
                )
                continue
            created += 1
            logger.info(
                f"recurring_materialize: template_id={template.id} instance_id={instance.id}"
            )
        return created
