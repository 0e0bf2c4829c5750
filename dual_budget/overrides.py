"""Resolve the effective budget for a category in a given month.

A :class:`~dual_budget.models.MonthlyBudget` override for ``(month,
category)`` wins over the category's default ``monthly_budget``.
"""

from __future__ import annotations

from typing import Dict, Iterable, Optional, Tuple, Union

from .models import Category, MonthlyBudget, monthly_budget_id

__all__ = ['OverrideIndex', 'as_override_index', 'resolve_budget', 'monthly_budget_id']


class OverrideIndex(Dict[Tuple[str, str], float]):
    """Override amounts keyed by ``(month, category_id)``."""

    @classmethod
    def from_records(cls, records: Iterable[MonthlyBudget]) -> 'OverrideIndex':
        index = cls()
        # Later records for the same key win
        for record in records:
            index[(record.month, record.category_id)] = record.amount
        return index


Overrides = Union[OverrideIndex, Iterable[MonthlyBudget]]


def as_override_index(overrides: Optional[Overrides]) -> OverrideIndex:
    if overrides is None:
        return OverrideIndex()
    if isinstance(overrides, OverrideIndex):
        return overrides
    return OverrideIndex.from_records(overrides)


def resolve_budget(
    month: str,
    category_id: str,
    overrides: Optional[Overrides],
    category: Optional[Category],
) -> float:
    """Return the override amount if one exists, else the category default.

    Returns 0 when neither an override nor the category is known.
    """
    index = as_override_index(overrides)
    amount = index.get((month, category_id))
    if amount is not None:
        return float(amount)
    if category is None:
        return 0.0
    return float(category.monthly_budget)
