"""Utilities for working with ``YYYY-MM`` budget months."""

from __future__ import annotations

import re
from datetime import date
from typing import List, Tuple, Union

import pandas as pd

from .errors import InvalidMonth

_MONTH_PATTERN = re.compile(r"^\d{4}-(0[1-9]|1[0-2])$")

DateLike = Union[str, date]


def validate_month(month: str) -> str:
    """Return ``month`` unchanged if it is a ``YYYY-MM`` string."""

    if not isinstance(month, str) or not _MONTH_PATTERN.match(month):
        raise InvalidMonth(f"Expected a YYYY-MM month, got {month!r}")
    return month


def to_period(month: str) -> pd.Period:
    return pd.Period(validate_month(month), freq='M')


def month_of(value: DateLike) -> str:
    """Return the ``YYYY-MM`` month an ISO date (or ``date``) falls in."""

    if isinstance(value, date):
        return f"{value.year:04d}-{value.month:02d}"
    return str(value)[:7]


def month_range(month: str) -> Tuple[date, date]:
    """Return the first and last calendar day of ``month`` (inclusive)."""

    period = to_period(month)
    return period.start_time.date(), period.end_time.date()


def shift_month(month: str, offset: int) -> str:
    """Move ``month`` forward (or backward for negative ``offset``)."""

    return str(to_period(month) + offset)


def trailing_months(month: str, count: int) -> List[str]:
    """Return the ``count`` calendar months strictly before ``month``, oldest first.

    >>> trailing_months('2025-02', 3)
    ['2024-11', '2024-12', '2025-01']
    """

    period = to_period(month)
    return [str(period - offset) for offset in range(count, 0, -1)]


def current_month(today: date | None = None) -> str:
    return month_of(today or date.today())
