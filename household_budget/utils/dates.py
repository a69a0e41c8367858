from datetime import date, datetime
from typing import Optional, Tuple
import calendar
import pytz
from dateutil.relativedelta import relativedelta

from household_budget.core.config import settings


def today_in_budget_tz() -> date:
    """Current calendar date in the configured budget timezone."""
    tz = pytz.timezone(settings.BUDGET_TIMEZONE)
    return datetime.now(tz).date()


def current_year_month(today: Optional[date] = None) -> Tuple[int, int]:
    today = today or today_in_budget_tz()
    return today.year, today.month


def next_year_month(today: Optional[date] = None) -> Tuple[int, int]:
    today = today or today_in_budget_tz()
    nxt = today.replace(day=1) + relativedelta(months=1)
    return nxt.year, nxt.month


def has_month_started(year: int, month: int, today: Optional[date] = None) -> bool:
    return (year, month) <= current_year_month(today)


def is_elapsed_month(year: int, month: int, today: Optional[date] = None) -> bool:
    """True for months strictly before the current one."""
    return (year, month) < current_year_month(today)


def month_name(month: int) -> str:
    if 1 <= month <= 12:
        return calendar.month_name[month]
    return "Unknown"


def format_month_year(year: int, month: int) -> str:
    return f"{month_name(month)} {year}"
