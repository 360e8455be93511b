"""Formatting utilities for currency, percentages and dates."""

from decimal import Decimal, ROUND_HALF_UP
from datetime import date, datetime
from typing import Optional, Union


def to_decimal(value: Union[Decimal, float, int, str]) -> Decimal:
    """Convert a numeric value to Decimal without float artifacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_half_up(value: Union[Decimal, float]) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(to_decimal(value).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_currency(amount: Union[Decimal, float]) -> str:
    """Format an amount as a currency string."""
    dollars = to_decimal(amount)
    if dollars < 0:
        return f"-${abs(dollars):,.2f}"
    return f"${dollars:,.2f}"


def format_date(value: Union[date, datetime]) -> str:
    """Format a date or timestamp as e.g. "Mar 15, 2024"."""
    day = value.date() if isinstance(value, datetime) else value
    return day.strftime("%b %d, %Y")


def format_utilization(utilization: int) -> str:
    """Format an integer utilization percentage."""
    return f"{utilization}%"


def period_start(period: str, today: Optional[date] = None) -> date:
    """
    Get the first day of a reporting period.

    'week' is the trailing seven days; 'month' and 'quarter' start on the
    first day of the current calendar month/quarter. Unknown periods fall
    back to 'month'.
    """
    from dateutil.relativedelta import relativedelta

    today = today or date.today()
    if period == "week":
        return today - relativedelta(days=7)
    if period == "quarter":
        quarter_month = ((today.month - 1) // 3) * 3 + 1
        return today.replace(month=quarter_month, day=1)
    return today.replace(day=1)

