# fee_engine/core/periods.py - Calendar month helpers
import calendar
import re
from datetime import date, datetime
from typing import Optional, Tuple, Union

from fee_engine.core.exceptions import InvalidArgumentError

MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")


def parse_month(value: str) -> date:
    """Parse 'YYYY-MM' into the first day of that month"""
    if not isinstance(value, str):
        raise InvalidArgumentError("Month must be a string in YYYY-MM format")

    match = MONTH_PATTERN.match(value.strip())
    if not match:
        raise InvalidArgumentError(f"Invalid month format '{value}'. Use YYYY-MM")

    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12 or year < 1900:
        raise InvalidArgumentError(f"Invalid month '{value}'")
    return date(year, month, 1)


def normalize_month(value: Union[date, str]) -> date:
    """First day of the month containing value; accepts 'YYYY-MM' or 'YYYY-MM-DD'"""
    if isinstance(value, datetime):
        return value.date().replace(day=1)
    if isinstance(value, date):
        return value.replace(day=1)
    if isinstance(value, str) and len(value.strip()) == 10:
        try:
            return date.fromisoformat(value.strip()).replace(day=1)
        except ValueError:
            raise InvalidArgumentError(f"Invalid date '{value}'. Use YYYY-MM-DD")
    return parse_month(value)


def month_end(period_month: date) -> date:
    """Last day of the month"""
    last_day = calendar.monthrange(period_month.year, period_month.month)[1]
    return period_month.replace(day=last_day)


def month_bounds(period_month: date) -> Tuple[date, date]:
    start = period_month.replace(day=1)
    return start, month_end(start)


def format_month(period_month: date) -> str:
    return period_month.strftime("%Y-%m")


def is_active_in_month(effective_from: date, expires_at: Optional[date], period_month: date) -> bool:
    """
    Window rule for time-bounded assignments.

    Active for month M iff effective_from <= end(M) and
    (expires_at is None or expires_at >= start(M)).
    """
    start, end = month_bounds(period_month)
    if effective_from > end:
        return False
    return expires_at is None or expires_at >= start
