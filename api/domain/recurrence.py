# SPDX-License-Identifier: Apache-2.0

"""
Recurrence expansion for scheduled activities.

This module contains pure functions turning an anchor date and a recurrence
rule into the ordered list of additional occurrence dates. The anchor itself
is stored separately as the parent record and is never part of the output.
"""

from datetime import date
from itertools import islice
from typing import Iterable, Iterator, List, Optional
from dateutil.relativedelta import relativedelta
from dateutil.rrule import rrule, DAILY, WEEKLY, MO, TU, WE, TH, FR, SA, SU

from models.enums import RecurrencePattern

# Hard limits on generated occurrences
MAX_WEEKDAY_OCCURRENCES = 100
MAX_STEP_OCCURRENCES = 52

# Weekday numbers as stored on activities (Sunday = 0)
WEEKDAYS_MAP = {0: SU, 1: MO, 2: TU, 3: WE, 4: TH, 5: FR, 6: SA}
WORKING_DAYS = (MO, TU, WE, TH, FR)


def uses_specific_days(pattern: Optional[str], days: Optional[Iterable[int]]) -> bool:
    """Check whether the rule is a weekly rule on explicit weekdays."""
    return _pattern_value(pattern) == RecurrencePattern.WEEKLY.value and bool(days)


def expand_recurrence(
    anchor: date,
    pattern: str,
    end_date: Optional[date] = None,
    days: Optional[Iterable[int]] = None
) -> List[date]:
    """
    Compute the additional occurrence dates of a recurring activity.

    Args:
        anchor: Date of the authored (parent) occurrence
        pattern: Recurrence frequency
        end_date: Inclusive upper bound; when missing only the caps apply
        days: Weekday numbers (Sunday = 0), used with WEEKLY only

    Returns:
        Dates strictly after the anchor, ascending
    """
    if end_date is not None and end_date <= anchor:
        return []

    pattern = _pattern_value(pattern)

    if uses_specific_days(pattern, days):
        byweekday = [WEEKDAYS_MAP[day] for day in sorted(set(days)) if day in WEEKDAYS_MAP]
        occurrences = _rule_dates(anchor, end_date, freq=WEEKLY, byweekday=byweekday)
        return list(islice(occurrences, MAX_WEEKDAY_OCCURRENCES))

    if pattern == RecurrencePattern.DAILY.value:
        occurrences = _rule_dates(anchor, end_date, freq=DAILY)
    elif pattern == RecurrencePattern.WEEKLY.value:
        occurrences = _rule_dates(anchor, end_date, freq=WEEKLY)
    elif pattern == RecurrencePattern.DAILY_NO_WEEKEND.value:
        occurrences = _rule_dates(anchor, end_date, freq=DAILY, byweekday=WORKING_DAYS)
    elif pattern == RecurrencePattern.MONTHLY.value:
        occurrences = _monthly_dates(anchor, end_date)
    else:
        raise ValueError(f"Unsupported recurrence pattern: {pattern}")

    return list(islice(occurrences, MAX_STEP_OCCURRENCES))


def _rule_dates(anchor: date, end_date: Optional[date], **rule_kwargs) -> Iterator[date]:
    rule_kwargs['dtstart'] = anchor
    if end_date is not None:
        rule_kwargs['until'] = end_date

    # rrule yields the anchor when it matches the rule
    return (occurrence.date() for occurrence in rrule(**rule_kwargs) if occurrence.date() > anchor)


def _monthly_dates(anchor: date, end_date: Optional[date]) -> Iterator[date]:
    # Chained month steps: a 31st anchor clamps on short months and keeps the clamped day
    current = anchor + relativedelta(months=1)
    while end_date is None or current <= end_date:
        yield current
        current += relativedelta(months=1)


def _pattern_value(pattern) -> Optional[str]:
    if isinstance(pattern, RecurrencePattern):
        return pattern.value
    return pattern
