"""Budget aggregation: roll a month of transactions up into buckets and categories.

Everything here is pure.  Inputs are never mutated and no storage is touched;
callers load transactions, categories and overrides and pass them in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from .buckets import BucketCatalog
from .config import UNCATEGORIZED_LABEL
from .models import Category, Transaction
from .overrides import Overrides, as_override_index, resolve_budget
from .periods import month_range, validate_month

logger = logging.getLogger(__name__)

TRANSACTION_COLUMNS = ['id', 'day', 'month', 'amount', 'category_id', 'budget_type', 'project_id', 'tax_deductible']


@dataclass(frozen=True)
class CategoryBreakdown:
    category_id: Optional[str]
    category_name: str
    budgeted: float
    actual: float
    over_under: float
    percent_used: float
    transaction_count: int


@dataclass(frozen=True)
class BucketSummary:
    bucket_id: str
    bucket_name: str
    target_percentage: Optional[float]
    target_amount: float
    actual_amount: float
    over_under: float
    percent_of_income: float
    categories: Tuple[CategoryBreakdown, ...] = ()


@dataclass(frozen=True)
class BudgetSummary:
    budget_type: str
    month: str
    total_income: float
    total_expenses: float
    remaining_budget: float
    buckets: Tuple[BucketSummary, ...]
    uncategorized: CategoryBreakdown = field(
        default_factory=lambda: CategoryBreakdown(None, UNCATEGORIZED_LABEL, 0.0, 0.0, 0.0, 0.0, 0)
    )

    def bucket(self, bucket_id: str) -> Optional[BucketSummary]:
        for summary in self.buckets:
            if summary.bucket_id == bucket_id:
                return summary
        return None

    def category(self, category_id: str) -> Optional[CategoryBreakdown]:
        for summary in self.buckets:
            for row in summary.categories:
                if row.category_id == category_id:
                    return row
        return None


def transactions_frame(transactions: Iterable[Transaction]) -> pd.DataFrame:
    """Build the working DataFrame the engine aggregates over.

    ``day`` is the ``YYYY-MM-DD`` prefix of the transaction date and ``flow``
    is ``income``, ``expense`` or ``zero`` by sign of the amount.
    """
    rows = [
        {
            'id': txn.id,
            'day': txn.date[:10],
            'month': txn.date[:7],
            'amount': float(txn.amount),
            'category_id': txn.category_id,
            'budget_type': txn.budget_type,
            'project_id': txn.project_id,
            'tax_deductible': bool(txn.tax_deductible),
        }
        for txn in transactions
    ]
    frame = pd.DataFrame(rows, columns=TRANSACTION_COLUMNS)
    frame['amount'] = frame['amount'].astype(float)
    frame['flow'] = np.where(
        frame['amount'] > 0, 'income', np.where(frame['amount'] < 0, 'expense', 'zero')
    )
    return frame


def included_mask(frame: pd.DataFrame, categories: Iterable[Category]) -> pd.Series:
    """Income is always included; expenses drop out when their category is excluded."""
    excluded_ids = {c.id for c in categories if c.exclude_from_budget}
    return (frame['amount'] > 0) | ~frame['category_id'].isin(excluded_ids)


def _expense_total(amounts: pd.Series) -> float:
    return float(abs(amounts[amounts < 0].sum()))


def compute_budget_summary(
    transactions: Iterable[Transaction],
    categories: Sequence[Category],
    budget_type: str,
    month: str,
    catalog: BucketCatalog,
    overrides: Optional[Overrides] = (),
) -> BudgetSummary:
    """Summarize one month of one budget type against the bucket targets.

    Args:
        transactions: Ledger transactions; any month or budget type
        categories: Known categories, soft-deleted ones included so that
            their transactions keep their exclusion and bucket; both budget
            types may be mixed
        budget_type: ``household`` or ``business``
        month: ``YYYY-MM``
        catalog: Bucket catalog the buckets and targets come from
        overrides: Monthly budget overrides or a prebuilt ``OverrideIndex``

    Returns:
        BudgetSummary with one entry per bucket in catalog order.  Deleted
        categories get a row only in months they have transactions.  Expenses
        that cannot be placed in a bucket are totalled in ``uncategorized``.
    """
    validate_month(month)
    categories = list(categories)
    index = as_override_index(overrides)

    start, end = month_range(month)
    frame = transactions_frame(transactions)
    in_scope = frame[
        (frame['budget_type'] == budget_type)
        & (frame['day'] >= start.isoformat())
        & (frame['day'] <= end.isoformat())
    ]
    included = in_scope[included_mask(in_scope, categories)]

    total_income = float(included.loc[included['flow'] == 'income', 'amount'].sum())
    total_expenses = _expense_total(included['amount'])

    bucket_summaries: List[BucketSummary] = []
    for bucket in catalog.buckets_for(budget_type):
        bucket_categories = [
            c for c in categories
            if c.budget_type == budget_type and c.bucket_id == bucket.id and not c.exclude_from_budget
        ]
        bucket_ids = {c.id for c in bucket_categories}
        bucket_txns = included[included['category_id'].isin(bucket_ids)]

        rows = []
        for category in bucket_categories:
            category_txns = bucket_txns[bucket_txns['category_id'] == category.id]
            if category.is_deleted and category_txns.empty:
                continue
            actual = _expense_total(category_txns['amount'])
            budgeted = resolve_budget(month, category.id, index, category)
            rows.append(CategoryBreakdown(
                category_id=category.id,
                category_name=category.name,
                budgeted=budgeted,
                actual=actual,
                over_under=budgeted - actual,
                percent_used=(actual / budgeted * 100) if budgeted > 0 else 0.0,
                transaction_count=int(len(category_txns)),
            ))

        target_amount = (bucket.target_percentage or 0) / 100 * total_income
        actual_amount = _expense_total(bucket_txns['amount'])
        bucket_summaries.append(BucketSummary(
            bucket_id=bucket.id,
            bucket_name=bucket.name,
            target_percentage=bucket.target_percentage,
            target_amount=target_amount,
            actual_amount=actual_amount,
            over_under=target_amount - actual_amount,
            percent_of_income=(actual_amount / total_income * 100) if total_income > 0 else 0.0,
            categories=tuple(rows),
        ))

    # Excluded categories are known; only missing, mismatched or unbucketed ones are stray
    known = {
        c.id for c in categories
        if c.budget_type == budget_type and catalog.contains(budget_type, c.bucket_id)
    }
    stray = included[~included['category_id'].isin(known)]
    stray_spend = _expense_total(stray['amount'])
    stray_expenses = int((stray['flow'] == 'expense').sum())
    if stray_expenses:
        logger.warning(
            "%d %s expense(s) in %s have no known bucket category; reporting as %s",
            stray_expenses, budget_type, month, UNCATEGORIZED_LABEL,
        )
    uncategorized = CategoryBreakdown(
        category_id=None,
        category_name=UNCATEGORIZED_LABEL,
        budgeted=0.0,
        actual=stray_spend,
        over_under=-stray_spend,
        percent_used=0.0,
        transaction_count=stray_expenses,
    )

    return BudgetSummary(
        budget_type=budget_type,
        month=month,
        total_income=total_income,
        total_expenses=total_expenses,
        remaining_budget=total_income - total_expenses,
        buckets=tuple(bucket_summaries),
        uncategorized=uncategorized,
    )


def summarize_months(
    transactions: Iterable[Transaction],
    categories: Sequence[Category],
    budget_type: str,
    months: Iterable[str],
    catalog: BucketCatalog,
    overrides: Optional[Overrides] = (),
) -> Dict[str, BudgetSummary]:
    """Compute a summary for each month, sharing one override index."""
    transactions = list(transactions)
    index = as_override_index(overrides)
    return {
        month: compute_budget_summary(transactions, categories, budget_type, month, catalog, index)
        for month in months
    }


def budget_summary_frame(summary: BudgetSummary) -> pd.DataFrame:
    """Flatten a summary into one row per category, uncategorized last."""
    records = []
    for bucket in summary.buckets:
        for row in bucket.categories:
            records.append({
                'Bucket': bucket.bucket_name,
                'Category': row.category_name,
                'Budgeted': row.budgeted,
                'Actual': row.actual,
                'Over/Under': row.over_under,
                'Percent Used': row.percent_used,
                'Transactions': row.transaction_count,
            })
    unc = summary.uncategorized
    if unc.transaction_count:
        records.append({
            'Bucket': UNCATEGORIZED_LABEL,
            'Category': unc.category_name,
            'Budgeted': unc.budgeted,
            'Actual': unc.actual,
            'Over/Under': unc.over_under,
            'Percent Used': unc.percent_used,
            'Transactions': unc.transaction_count,
        })
    columns = ['Bucket', 'Category', 'Budgeted', 'Actual', 'Over/Under', 'Percent Used', 'Transactions']
    return pd.DataFrame(records, columns=columns)


def bucket_frame(summary: BudgetSummary) -> pd.DataFrame:
    """One row per bucket with target and actual amounts."""
    records = [
        {
            'Bucket': b.bucket_name,
            'Target %': b.target_percentage,
            'Target': b.target_amount,
            'Actual': b.actual_amount,
            'Over/Under': b.over_under,
            '% of Income': b.percent_of_income,
        }
        for b in summary.buckets
    ]
    return pd.DataFrame(records, columns=['Bucket', 'Target %', 'Target', 'Actual', 'Over/Under', '% of Income'])
