from __future__ import annotations

import calendar
from datetime import date, timedelta

EPOCH = date(1970, 1, 1)
# Day numbers representable as a `date`.
MIN_EPOCH_DAY = (date.min - EPOCH).days
MAX_EPOCH_DAY = (date.max - EPOCH).days


def date_to_epoch_day(value: date) -> int:
    """Days since 1970-01-01; the day number used inside intents."""
    return (value - EPOCH).days


def epoch_day_to_date(day_number: int) -> date:
    return EPOCH + timedelta(days=day_number)


def shift_months(month_start: date, offset: int) -> date:
    # Normalize any input date to month start for stable month arithmetic.
    absolute_index = (month_start.year * 12 + (month_start.month - 1)) + offset
    year, month_zero_based = divmod(absolute_index, 12)
    return date(year, month_zero_based + 1, 1)


def month_window(month_start: date) -> tuple[date, date]:
    # Inclusive window used for monthly aggregation.
    last_day = calendar.monthrange(month_start.year, month_start.month)[1]
    return month_start, date(month_start.year, month_start.month, last_day)


def month_to_date(as_of: date) -> tuple[date, date]:
    return as_of.replace(day=1), as_of


def previous_month(as_of: date) -> tuple[date, date]:
    return month_window(shift_months(as_of.replace(day=1), -1))


def trailing_week(as_of: date) -> tuple[date, date]:
    """Seven days ending on (and including) `as_of`."""
    return as_of - timedelta(days=6), as_of
