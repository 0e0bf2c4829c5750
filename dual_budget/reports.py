"""Account, project and profit & loss reports built on the ledger records."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Dict, Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from .aggregation import included_mask, transactions_frame
from .config import ARCHIVE_MONTHS_BACK, SIMILAR_PROJECTS_LIMIT, UNCATEGORIZED_LABEL
from .models import LIABILITY_ACCOUNT_TYPES, Account, Category, Project, Transaction
from .periods import month_range, validate_month


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountSummary:
    total_assets: float
    total_liabilities: float
    net_worth: float
    accounts_by_type: Dict[str, List[Account]] = field(default_factory=dict)


def account_summary(accounts: Iterable[Account], budget_type: Optional[str] = None) -> AccountSummary:
    """Total assets, liabilities and net worth.

    Credit card and loan balances are liabilities regardless of sign; any
    other account is an asset when its balance is non-negative.
    """
    selected = [a for a in accounts if budget_type is None or a.budget_type == budget_type]
    assets = 0.0
    liabilities = 0.0
    by_type: Dict[str, List[Account]] = {}
    for account in selected:
        if account.account_type in LIABILITY_ACCOUNT_TYPES:
            liabilities += abs(account.balance)
        elif account.balance >= 0:
            assets += account.balance
        else:
            liabilities += abs(account.balance)
        by_type.setdefault(account.account_type, []).append(account)
    return AccountSummary(assets, liabilities, assets - liabilities, by_type)


def credit_utilization(balance: float, credit_limit: Optional[float]) -> float:
    if not credit_limit or credit_limit <= 0:
        return 0.0
    return abs(balance) / credit_limit * 100


@dataclass(frozen=True)
class DueDate:
    account: Account
    due_date: date
    days_until_due: int


def _due_in_month(year: int, month: int, day: int) -> date:
    # Clamp to the month's last day (e.g. due day 31 in February)
    last_day = month_range(f"{year:04d}-{month:02d}")[1].day
    return date(year, month, min(day, last_day))


def upcoming_due_dates(accounts: Iterable[Account], today: date, days_ahead: int = 30) -> List[DueDate]:
    """Accounts with a payment due day falling within ``days_ahead`` days.

    The next due date is this month's due day, or next month's if that has
    already passed.
    """
    results = []
    for account in accounts:
        if not account.payment_due_day:
            continue
        due = _due_in_month(today.year, today.month, account.payment_due_day)
        if due < today:
            next_year = today.year + (1 if today.month == 12 else 0)
            next_month = 1 if today.month == 12 else today.month + 1
            due = _due_in_month(next_year, next_month, account.payment_due_day)
        days = (due - today).days
        if days <= days_ahead:
            results.append(DueDate(account, due, days))
    return sorted(results, key=lambda item: item.days_until_due)


# ---------------------------------------------------------------------------
# Spending
# ---------------------------------------------------------------------------


def _month_slice(frame: pd.DataFrame, budget_type: str, month: str) -> pd.DataFrame:
    start, end = month_range(validate_month(month))
    return frame[
        (frame['budget_type'] == budget_type)
        & (frame['day'] >= start.isoformat())
        & (frame['day'] <= end.isoformat())
    ]


def top_spending_categories(
    transactions: Iterable[Transaction],
    categories: Sequence[Category],
    budget_type: str,
    month: str,
    limit: int = 5,
) -> pd.DataFrame:
    """Largest expense categories in a month.

    Returns:
        DataFrame with ``category_id``, ``Category``, ``Amount`` and
        ``Transactions`` columns, sorted by amount descending.  Transactions
        in unknown categories are left out.
    """
    names = {c.id: c.name for c in categories}
    frame = _month_slice(transactions_frame(transactions), budget_type, month)
    expenses = frame[(frame['flow'] == 'expense') & frame['category_id'].isin(names)]
    columns = ['category_id', 'Category', 'Amount', 'Transactions']
    if expenses.empty:
        return pd.DataFrame(columns=columns)
    grouped = (
        expenses.assign(spend=expenses['amount'].abs())
        .groupby('category_id')
        .agg(Amount=('spend', 'sum'), Transactions=('id', 'count'))
        .reset_index()
    )
    grouped['Category'] = grouped['category_id'].map(names)
    grouped = grouped.sort_values('Amount', ascending=False, kind='mergesort').head(limit)
    return grouped[columns].reset_index(drop=True)


def monthly_stats(
    transactions: Iterable[Transaction],
    categories: Sequence[Category],
    budget_type: Optional[str] = None,
) -> pd.DataFrame:
    """Income, expenses, net and savings rate per month.

    Expenses in categories excluded from the budget are left out; income
    always counts.
    """
    frame = transactions_frame(transactions)
    if budget_type is not None:
        frame = frame[frame['budget_type'] == budget_type]
    frame = frame[included_mask(frame, categories)]
    columns = ['Month', 'Income', 'Expenses', 'Net', 'SavingsRate']
    if frame.empty:
        return pd.DataFrame(columns=columns)
    frame = frame.assign(
        income=frame['amount'].clip(lower=0),
        expense=(-frame['amount']).clip(lower=0),
    )
    df = frame.groupby('month').agg(Income=('income', 'sum'), Expenses=('expense', 'sum'))
    df = df.reset_index().rename(columns={'month': 'Month'}).sort_values('Month')
    df['Net'] = df['Income'] - df['Expenses']
    df['SavingsRate'] = df.apply(lambda r: (r['Net'] / r['Income'] * 100) if r['Income'] > 0 else 0.0, axis=1)
    return df[columns].reset_index(drop=True)


def archived_months(
    transactions: Iterable[Transaction],
    budget_type: str,
    today: date,
    months_back: int = ARCHIVE_MONTHS_BACK,
) -> List[str]:
    """Distinct months with transactions dated before ``today`` minus ``months_back`` months.

    Newest first.
    """
    cutoff = (pd.Timestamp(today) - pd.DateOffset(months=months_back)).date().isoformat()
    frame = transactions_frame(transactions)
    old = frame[(frame['budget_type'] == budget_type) & (frame['day'] < cutoff)]
    return sorted(set(old['month']), reverse=True)


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProjectMetrics:
    project: Project
    revenue: float
    expenses: float
    profit: float
    margin: float
    budget: float
    spent: float
    remaining: float
    percent_used: float
    is_over_budget: bool


@dataclass(frozen=True)
class ProjectTotals:
    total_revenue: float = 0.0
    total_expenses: float = 0.0
    total_profit: float = 0.0
    total_budget: float = 0.0
    total_spent: float = 0.0
    total_remaining: float = 0.0
    projects_with_budget: int = 0
    projects_over_budget: int = 0


def project_metrics(projects: Iterable[Project], transactions: Iterable[Transaction]) -> List[ProjectMetrics]:
    """Profit/loss and budget-vs-actual for each project."""
    frame = transactions_frame(transactions)
    frame = frame[frame['project_id'].notna()]
    revenue_by_project = frame[frame['flow'] == 'income'].groupby('project_id')['amount'].sum()
    expense_by_project = frame[frame['flow'] == 'expense'].groupby('project_id')['amount'].sum().abs()

    metrics = []
    for project in projects:
        revenue = float(revenue_by_project.get(project.id, 0.0))
        expenses = float(expense_by_project.get(project.id, 0.0))
        profit = revenue - expenses
        budget = float(project.budget or 0.0)
        metrics.append(ProjectMetrics(
            project=project,
            revenue=revenue,
            expenses=expenses,
            profit=profit,
            margin=(profit / revenue * 100) if revenue > 0 else 0.0,
            budget=budget,
            spent=expenses,
            remaining=budget - expenses,
            percent_used=(expenses / budget * 100) if budget > 0 else 0.0,
            is_over_budget=expenses > budget and budget > 0,
        ))
    return metrics


def project_totals(metrics: Iterable[ProjectMetrics]) -> ProjectTotals:
    totals = ProjectTotals()
    for m in metrics:
        totals = ProjectTotals(
            total_revenue=totals.total_revenue + m.revenue,
            total_expenses=totals.total_expenses + m.expenses,
            total_profit=totals.total_profit + m.profit,
            total_budget=totals.total_budget + m.budget,
            total_spent=totals.total_spent + m.spent,
            total_remaining=totals.total_remaining + m.remaining,
            projects_with_budget=totals.projects_with_budget + (1 if m.budget > 0 else 0),
            projects_over_budget=totals.projects_over_budget + (1 if m.is_over_budget else 0),
        )
    return totals


def project_category_breakdown(
    project: Project,
    transactions: Iterable[Transaction],
    categories: Sequence[Category],
) -> pd.DataFrame:
    """Profit/loss of one project by category.

    A category counts as income when its revenue exceeds its expenses, and its
    ``Percent`` is taken against the project's total revenue or expenses
    accordingly.  Unknown categories are grouped under ``Uncategorized``.
    Rows are sorted by ``Amount``, largest first.
    """
    columns = ['Category', 'Type', 'Amount', 'Percent', 'Transactions']
    names = {c.id: c.name for c in categories}
    frame = transactions_frame(transactions)
    frame = frame[frame['project_id'] == project.id]
    if frame.empty:
        return pd.DataFrame(columns=columns)

    frame = frame.assign(
        Category=frame['category_id'].map(names).fillna(UNCATEGORIZED_LABEL),
        revenue=frame['amount'].clip(lower=0),
        expenses=(-frame['amount']).clip(lower=0),
    )
    total_revenue = float(frame['revenue'].sum())
    total_expenses = float(frame['expenses'].sum())
    grouped = frame.groupby('Category', as_index=False).agg(
        revenue=('revenue', 'sum'),
        expenses=('expenses', 'sum'),
        Transactions=('id', 'count'),
    )

    is_income = grouped['revenue'] > grouped['expenses']
    grouped['Type'] = np.where(is_income, 'income', 'expense')
    grouped['Amount'] = np.where(is_income, grouped['revenue'], grouped['expenses'])
    totals = pd.Series(np.where(is_income, total_revenue, total_expenses), index=grouped.index)
    grouped['Percent'] = (grouped['Amount'] / totals.where(totals > 0) * 100).fillna(0.0)
    grouped = grouped.sort_values('Amount', ascending=False, kind='mergesort').reset_index(drop=True)
    return grouped[columns]


@dataclass(frozen=True)
class ProjectSpend:
    project: Project
    spent: float
    budget: float


def similar_projects(
    project: Project,
    projects: Iterable[Project],
    transactions: Iterable[Transaction],
    limit: int = SIMILAR_PROJECTS_LIMIT,
) -> List[ProjectSpend]:
    """Completed projects of the same type and budget type, most recently completed first."""
    candidates = [
        p for p in projects
        if p.id != project.id
        and p.project_type_id == project.project_type_id
        and p.budget_type == project.budget_type
        and p.date_completed
        and not p.is_deleted
    ]
    candidates.sort(key=lambda p: p.date_completed, reverse=True)
    candidates = candidates[:limit]

    frame = transactions_frame(transactions)
    spent_by_project = frame[frame['flow'] == 'expense'].groupby('project_id')['amount'].sum().abs()
    return [
        ProjectSpend(p, float(spent_by_project.get(p.id, 0.0)), float(p.budget or 0.0))
        for p in candidates
    ]


def similar_project_average(
    project: Project,
    projects: Iterable[Project],
    transactions: Iterable[Transaction],
    limit: int = SIMILAR_PROJECTS_LIMIT,
) -> float:
    """Average spend of up to ``limit`` similar completed projects, 0.0 when there are none."""
    similar = similar_projects(project, projects, transactions, limit)
    if not similar:
        return 0.0
    return sum(s.spent for s in similar) / len(similar)


# ---------------------------------------------------------------------------
# Profit & loss
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProfitLoss:
    budget_type: str
    month: str
    revenue: float
    expenses: float
    net_income: float
    tax_deductible_expenses: float
    expenses_by_category: pd.DataFrame = field(compare=False, repr=False, default_factory=pd.DataFrame)


def profit_loss(
    transactions: Iterable[Transaction],
    categories: Sequence[Category],
    budget_type: str,
    month: str,
) -> ProfitLoss:
    """Revenue, expenses and net income for one month.

    ``expenses_by_category`` has ``Category``, ``Amount`` and
    ``Percent of Total`` columns; unknown categories are grouped under
    ``Uncategorized``.
    """
    names = {c.id: c.name for c in categories}
    frame = _month_slice(transactions_frame(transactions), budget_type, month)
    frame = frame[included_mask(frame, categories)]

    revenue = float(frame.loc[frame['flow'] == 'income', 'amount'].sum())
    expenses_frame = frame[frame['flow'] == 'expense']
    expenses = float(expenses_frame['amount'].abs().sum())
    deductible = float(expenses_frame.loc[expenses_frame['tax_deductible'].astype(bool), 'amount'].abs().sum())

    by_category = (
        expenses_frame.assign(
            Category=expenses_frame['category_id'].map(names).fillna(UNCATEGORIZED_LABEL),
            Amount=expenses_frame['amount'].abs(),
        )
        .groupby('Category', as_index=False)['Amount'].sum()
        .sort_values('Amount', ascending=False, kind='mergesort')
        .reset_index(drop=True)
    )
    by_category['Percent of Total'] = (by_category['Amount'] / expenses * 100) if expenses > 0 else 0.0

    return ProfitLoss(
        budget_type=budget_type,
        month=month,
        revenue=revenue,
        expenses=expenses,
        net_income=revenue - expenses,
        tax_deductible_expenses=deductible,
        expenses_by_category=by_category,
    )
