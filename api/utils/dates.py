# SPDX-License-Identifier: Apache-2.0

"""
Date and time-of-day helpers shared by models, domain and routes.

Activity times are entered either as a bare hour (``9``) or as ``HH:MM``
(``09:30``) and are stored zero-padded as ``HH:MM``.
"""

import re
from datetime import date, datetime, time
from typing import Optional

DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
HEURE_PATTERN = re.compile(r'^(\d{1,2})(?::(\d{2}))?$')


def parse_iso_date(value: str) -> date:
    """
    Parse a strict ``YYYY-MM-DD`` string.

    Raises:
        ValueError: If the string is not a real calendar day in that format
    """
    if not isinstance(value, str) or not DATE_PATTERN.match(value):
        raise ValueError("Format de date invalide (attendu: AAAA-MM-JJ)")
    return datetime.strptime(value, "%Y-%m-%d").date()


def parse_heure(value: str) -> time:
    """
    Parse an ``H``/``HH``/``HH:MM`` time-of-day string.

    Raises:
        ValueError: If the format is wrong or the hour/minute is out of range
    """
    match = HEURE_PATTERN.match(value or "")
    if not match:
        raise ValueError("Format d'heure invalide (ex: 9 ou 09:00)")

    hours = int(match.group(1))
    minutes = int(match.group(2) or 0)
    if hours > 23 or minutes > 59:
        raise ValueError("Heure hors limites (00:00 à 23:59)")

    return time(hours, minutes)


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def to_datetime(day: Optional[date]) -> Optional[datetime]:
    """Convert a calendar day to the midnight datetime MongoDB stores."""
    if day is None:
        return None
    if isinstance(day, datetime):
        return day
    return start_of_day(day)


def to_date(value) -> Optional[date]:
    """Convert a stored datetime (or ISO string) back to a calendar day."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return datetime.fromisoformat(str(value)).date()

