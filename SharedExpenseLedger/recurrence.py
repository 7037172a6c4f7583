"""
Recurrence Module

This module projects the next occurrence date of a recurring expense.

Rules:
    - DAILY: +1 calendar day (UTC)
    - WEEKLY: +7 calendar days (UTC)
    - MONTHLY: same day-of-month in the following month, clamped to the last
      day of that month when it does not exist there

Known limitation:
    A monthly recurrence that gets clamped keeps the clamped day from then on.
    An expense created on Jan 31 recurs on Feb 28, Mar 28, Apr 28, ... and never
    returns to the 30th/31st. Full calendar rules (RFC 5545) are not supported.

Functions:
    calculate_next_date: Project the date of the next occurrence.
"""

import calendar
from datetime import datetime, timedelta
from enum import Enum

from utils import as_utc


class RecurrenceRule(str, Enum):
    """How often an expense repeats."""
    NONE = "NONE"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


def _add_one_month(prior: datetime) -> datetime:
    year = prior.year
    month = prior.month + 1
    if month > 12:
        year += 1
        month = 1

    # Walk back from the prior day until it exists in the target month
    day = prior.day
    last_day = calendar.monthrange(year, month)[1]
    while day > last_day:
        day -= 1

    return prior.replace(year=year, month=month, day=day)


def calculate_next_date(recurrence_rule: RecurrenceRule, prior_date: datetime) -> datetime:
    """
    Calculate the date of the occurrence following `prior_date`.

    The date is projected in UTC; the time of day is preserved. Aware dates in
    another timezone are converted to UTC first, naive dates are taken as UTC.

    Args:
        recurrence_rule: DAILY, WEEKLY or MONTHLY.
        prior_date: Date of the current occurrence.

    Returns:
        datetime: Date of the next occurrence.

    Raises:
        ValueError: If the rule is NONE or unknown.
    """
    rule = RecurrenceRule(recurrence_rule)
    prior_date = as_utc(prior_date)

    if rule is RecurrenceRule.DAILY:
        return prior_date + timedelta(days=1)
    if rule is RecurrenceRule.WEEKLY:
        return prior_date + timedelta(days=7)
    if rule is RecurrenceRule.MONTHLY:
        return _add_one_month(prior_date)

    raise ValueError(f"Cannot project the next date for recurrence rule {rule.value}")
