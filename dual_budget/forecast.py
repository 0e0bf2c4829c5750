"""Suggest next-month category budgets from trailing spend.

Fixed-expense categories keep their resolved budget.  The expected income
left over after fixed budgets is split across variable categories in
proportion to their average historical spend.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Sequence

import pandas as pd

from .aggregation import transactions_frame
from .config import FORECAST_WINDOW_MONTHS
from .models import Category, Transaction
from .overrides import Overrides, as_override_index, resolve_budget
from .periods import trailing_months, validate_month

logger = logging.getLogger(__name__)


def average_category_spend(
    history: Iterable[Transaction],
    categories: Sequence[Category],
    month: str,
    budget_type: Optional[str] = None,
    window_months: int = FORECAST_WINDOW_MONTHS,
) -> pd.Series:
    """Average monthly spend per category over the trailing window.

    Only expenses in known, non-excluded categories count.  Months with no
    counted spend at all are dropped as months without data; every category
    is averaged over the remaining months, a month without its spend
    counting as zero.

    Returns:
        Series indexed by category id (empty when no month had spend)
    """
    window = trailing_months(month, window_months)
    counted_ids = {
        c.id for c in categories
        if not c.exclude_from_budget and (budget_type is None or c.budget_type == budget_type)
    }
    frame = transactions_frame(history)
    frame = frame[
        (frame['flow'] == 'expense')
        & frame['month'].isin(window)
        & frame['category_id'].isin(counted_ids)
    ]
    if budget_type is not None:
        frame = frame[frame['budget_type'] == budget_type]
    if frame.empty:
        return pd.Series(dtype=float)

    monthly = frame.assign(spend=frame['amount'].abs()).pivot_table(
        index='month', columns='category_id', values='spend', aggfunc='sum'
    )
    monthly = monthly.fillna(0.0)
    monthly = monthly[monthly.sum(axis=1) > 0]
    if monthly.empty:
        return pd.Series(dtype=float)
    return monthly.mean(axis=0)


def suggest_budgets(
    history: Iterable[Transaction],
    categories: Sequence[Category],
    expected_income: float,
    month: str,
    overrides: Optional[Overrides] = (),
    budget_type: Optional[str] = None,
    window_months: int = FORECAST_WINDOW_MONTHS,
) -> Dict[str, float]:
    """Suggest a budget for each active, non-income category in ``month``.

    Args:
        history: Past transactions; anything outside the window is ignored
        categories: Categories to suggest for; deleted ones only contribute
            history
        expected_income: Income expected in ``month``
        month: Month being planned, ``YYYY-MM``
        overrides: Monthly budget overrides used for fixed categories
        budget_type: Restrict to one budget type
        window_months: Number of trailing months considered

    Returns:
        Mapping of category id to suggested amount, or ``{}`` when the window
        holds no counted spend.
    """
    validate_month(month)
    index = as_override_index(overrides)
    candidates = [
        c for c in categories
        if c.is_active
        and not c.is_deleted
        and not c.is_income_category
        and (budget_type is None or c.budget_type == budget_type)
    ]

    averages = average_category_spend(history, categories, month, budget_type, window_months)
    if averages.empty:
        logger.info("No spend in the %d months before %s; no suggestions", window_months, month)
        return {}

    fixed = [c for c in candidates if c.is_fixed_expense]
    variable = [c for c in candidates if not c.is_fixed_expense]

    suggestions: Dict[str, float] = {}
    total_fixed = 0.0
    for category in fixed:
        amount = resolve_budget(month, category.id, index, category)
        suggestions[category.id] = amount
        total_fixed += amount

    variable_avgs = {c.id: float(averages.get(c.id, 0.0)) for c in variable}
    # Equals the mean monthly variable total over the months with data
    avg_total_spend = sum(variable_avgs.values())
    remaining = max(float(expected_income) - total_fixed, 0.0)

    for category_id, avg in variable_avgs.items():
        if avg_total_spend <= 0:
            suggestions[category_id] = 0.0
            continue
        share = avg / avg_total_spend
        suggestions[category_id] = round(share * remaining, 2)

    logger.debug(
        "Suggested %d budgets for %s (fixed=%.2f, remaining=%.2f)",
        len(suggestions), month, total_fixed, remaining,
    )
    return suggestions
