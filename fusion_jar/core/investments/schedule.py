"""
Schedule arithmetic for investment intents.

Frequencies are free-form strings stored on the intent row: ``daily``,
``weekly``, ``monthly``, ``every N days`` and ``custom-N-days``. Anything
else advances by one day.
"""

from __future__ import annotations

import calendar
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from .models import utcnow

logger = logging.getLogger(__name__)

_EVERY_N_DAYS = re.compile(r"^every\s+(\d+)\s+days?$")
_CUSTOM_N_DAYS = re.compile(r"^custom-(\d+)-days?$")


@dataclass(frozen=True)
class Period:
    days: int = 0
    months: int = 0


def parse_frequency(frequency: Optional[str]) -> Optional[Period]:
    """Return the period for ``frequency`` or None when it is not understood."""
    text = (frequency or "").strip().lower()
    if text == "daily":
        return Period(days=1)
    if text == "weekly":
        return Period(days=7)
    if text == "monthly":
        return Period(months=1)
    for pattern in (_EVERY_N_DAYS, _CUSTOM_N_DAYS):
        match = pattern.match(text)
        if match and int(match.group(1)) >= 1:
            return Period(days=int(match.group(1)))
    return None


def is_valid_frequency(frequency: Optional[str]) -> bool:
    return parse_frequency(frequency) is not None


def _add_months(dt: datetime, months: int) -> datetime:
    """Same day next month, clamped to the month's last day."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def _advance(dt: datetime, period: Period) -> datetime:
    if period.months:
        return _add_months(dt, period.months)
    return dt + timedelta(days=period.days)


def compute_next_execution(
    frequency: Optional[str],
    now: Optional[datetime] = None,
    previous: Optional[datetime] = None,
) -> datetime:
    """
    Next execution time for an intent.

    The period is added to ``now``. When ``previous`` is given the result is
    strictly later than it, so a schedule never moves backwards even when the
    clock does.
    """
    now = now or utcnow()
    period = parse_frequency(frequency)
    if period is None:
        logger.warning("Unknown frequency %r, advancing by one day", frequency)
        period = Period(days=1)

    candidate = _advance(now, period)
    if previous is not None and candidate <= previous:
        candidate = _advance(previous, period)
    return candidate
