from datetime import date

import pytest

from dual_budget.models import Account, Category, Project, Transaction
from dual_budget.reports import (
    account_summary,
    archived_months,
    credit_utilization,
    monthly_stats,
    profit_loss,
    project_category_breakdown,
    project_metrics,
    project_totals,
    similar_project_average,
    similar_projects,
    top_spending_categories,
    upcoming_due_dates,
)


def _account(account_id, account_type, balance, budget_type='household', **kwargs):
    return Account(
        id=account_id,
        profile_id='p1',
        name=account_id.title(),
        budget_type=budget_type,
        account_type=account_type,
        balance=balance,
        **kwargs,
    )


def _txn(txn_id, day, amount, category_id='groceries', budget_type='household', **kwargs):
    return Transaction(
        id=txn_id,
        profile_id='p1',
        date=day,
        amount=amount,
        category_id=category_id,
        budget_type=budget_type,
        account_id='acct',
        **kwargs,
    )


def _cat(cat_id, name, budget_type='household', **kwargs):
    return Category(cat_id, 'p1', name, budget_type, 'needs', **kwargs)


def _project(project_id, budget=None, **kwargs):
    values = dict(
        id=project_id,
        profile_id='p1',
        name=project_id,
        budget_type='business',
        project_type_id='type',
        status_id='status',
        date_created='2025-01-01',
        budget=budget,
    )
    values.update(kwargs)
    return Project(**values)


def test_account_summary_treats_credit_and_loans_as_liabilities():
    accounts = [
        _account('checking', 'checking', 1000.0),
        _account('savings', 'savings', 500.0),
        _account('card', 'credit_card', -300.0),
        _account('mortgage', 'loan', 2000.0),
        _account('overdrawn', 'other', -50.0),
        _account('shop', 'checking', 9999.0, budget_type='business'),
    ]

    summary = account_summary(accounts, budget_type='household')

    assert summary.total_assets == 1500.0
    assert summary.total_liabilities == 2350.0
    assert summary.net_worth == -850.0
    assert [a.id for a in summary.accounts_by_type['checking']] == ['checking']


def test_credit_utilization():
    assert credit_utilization(-300.0, 1000.0) == 30.0
    assert credit_utilization(100.0, None) == 0.0
    assert credit_utilization(100.0, 0.0) == 0.0


def test_upcoming_due_dates_rolls_to_next_month():
    accounts = [
        _account('visa', 'credit_card', -100.0, payment_due_day=25),
        _account('loan', 'loan', 900.0, payment_due_day=10),
        _account('amex', 'credit_card', -50.0, payment_due_day=31),
        _account('cash', 'checking', 10.0),
    ]

    due = upcoming_due_dates(accounts, today=date(2025, 1, 20), days_ahead=15)

    assert [(d.account.id, d.days_until_due) for d in due] == [('visa', 5), ('amex', 11)]

    later = upcoming_due_dates(accounts, today=date(2025, 1, 20), days_ahead=30)
    assert later[-1].account.id == 'loan'
    assert later[-1].due_date == date(2025, 2, 10)


def test_due_day_is_clamped_to_month_end():
    accounts = [_account('amex', 'credit_card', -50.0, payment_due_day=31)]

    due = upcoming_due_dates(accounts, today=date(2025, 2, 1))

    assert due[0].due_date == date(2025, 2, 28)


def test_project_metrics_and_totals():
    projects = [_project('gig', budget=200.0), _project('side')]
    transactions = [
        _txn('t1', '2025-01-05', 1000.0, budget_type='business', project_id='gig'),
        _txn('t2', '2025-01-06', -300.0, budget_type='business', project_id='gig'),
        _txn('t3', '2025-01-07', -40.0, budget_type='business', project_id='side'),
        _txn('t4', '2025-01-08', -999.0, budget_type='business'),
    ]

    gig, side = project_metrics(projects, transactions)

    assert gig.revenue == 1000.0
    assert gig.expenses == 300.0
    assert gig.profit == 700.0
    assert gig.margin == 70.0
    assert gig.remaining == -100.0
    assert gig.percent_used == 150.0
    assert gig.is_over_budget
    assert side.margin == 0.0
    assert not side.is_over_budget

    totals = project_totals([gig, side])
    assert totals.total_profit == 660.0
    assert totals.projects_with_budget == 1
    assert totals.projects_over_budget == 1


def test_project_category_breakdown_splits_income_and_expense_rows():
    categories = [_cat('gigs', 'Gigs', budget_type='business'), _cat('ads', 'Ads', budget_type='business')]
    transactions = [
        _txn('t1', '2025-01-05', 1000.0, category_id='gigs', budget_type='business', project_id='gig'),
        _txn('t2', '2025-01-06', -300.0, category_id='ads', budget_type='business', project_id='gig'),
        _txn('t3', '2025-01-07', -100.0, category_id='ads', budget_type='business', project_id='gig'),
        _txn('t4', '2025-01-08', -100.0, category_id='gone', budget_type='business', project_id='gig'),
        _txn('t5', '2025-01-09', -999.0, category_id='ads', budget_type='business', project_id='side'),
    ]

    table = project_category_breakdown(_project('gig'), transactions, categories)

    assert list(table['Category']) == ['Gigs', 'Ads', 'Uncategorized']
    assert list(table['Type']) == ['income', 'expense', 'expense']
    assert list(table['Amount']) == [1000.0, 400.0, 100.0]
    assert table['Percent'].tolist() == pytest.approx([100.0, 80.0, 20.0])
    assert list(table['Transactions']) == [1, 2, 1]
    assert project_category_breakdown(_project('idle'), transactions, categories).empty


def test_similar_projects_are_completed_projects_of_the_same_type():
    current = _project('now')
    projects = [
        current,
        _project('older', budget=150.0, date_completed='2025-01-10'),
        _project('newer', date_completed='2025-03-01'),
        _project('other-type', project_type_id='other', date_completed='2025-02-01'),
        _project('open'),
        _project('home', budget_type='household', date_completed='2025-02-01'),
    ]
    transactions = [
        _txn('t1', '2025-01-05', -100.0, budget_type='business', project_id='older'),
        _txn('t2', '2025-02-05', -300.0, budget_type='business', project_id='newer'),
        _txn('t3', '2025-02-06', 900.0, budget_type='business', project_id='newer'),
        _txn('t4', '2025-02-07', -50.0, budget_type='business', project_id='open'),
    ]

    similar = similar_projects(current, projects, transactions)

    assert [(s.project.id, s.spent, s.budget) for s in similar] == [('newer', 300.0, 0.0), ('older', 100.0, 150.0)]
    assert similar_project_average(current, projects, transactions) == 200.0
    assert similar_project_average(current, projects, transactions, limit=1) == 300.0
    assert similar_project_average(_project('x', project_type_id='none'), projects, transactions) == 0.0


def test_monthly_stats_skips_excluded_expenses():
    categories = [_cat('groceries', 'Groceries'), _cat('transfers', 'Transfers', exclude_from_budget=True)]
    transactions = [
        _txn('t1', '2025-01-01', 1000.0, category_id='salary'),
        _txn('t2', '2025-01-03', -400.0),
        _txn('t3', '2025-01-04', -500.0, category_id='transfers'),
        _txn('t4', '2025-02-02', -100.0),
    ]

    stats = monthly_stats(transactions, categories)

    assert list(stats['Month']) == ['2025-01', '2025-02']
    assert list(stats['Expenses']) == [400.0, 100.0]
    assert list(stats['Net']) == [600.0, -100.0]
    assert list(stats['SavingsRate']) == [60.0, 0.0]


def test_profit_loss_groups_expenses_by_category():
    categories = [_cat('ads', 'Ads', budget_type='business')]
    transactions = [
        _txn('t1', '2025-03-01', 2000.0, category_id='gigs', budget_type='business'),
        _txn('t2', '2025-03-02', -300.0, category_id='ads', budget_type='business', tax_deductible=True),
        _txn('t3', '2025-03-03', -200.0, category_id='ads', budget_type='business'),
        _txn('t4', '2025-03-04', -100.0, category_id='gone', budget_type='business'),
        _txn('t5', '2025-04-01', -700.0, category_id='ads', budget_type='business'),
    ]

    report = profit_loss(transactions, categories, 'business', '2025-03')

    assert report.revenue == 2000.0
    assert report.expenses == 600.0
    assert report.net_income == 1400.0
    assert report.tax_deductible_expenses == 300.0
    table = report.expenses_by_category
    assert list(table['Category']) == ['Ads', 'Uncategorized']
    assert table['Percent of Total'].tolist() == pytest.approx([500 / 6, 100 / 6])


def test_top_spending_categories():
    categories = [_cat('groceries', 'Groceries'), _cat('dining', 'Dining'), _cat('rent', 'Rent')]
    transactions = [
        _txn('t1', '2025-03-01', -100.0),
        _txn('t2', '2025-03-02', -50.0),
        _txn('t3', '2025-03-03', -100.0),
        _txn('t4', '2025-03-04', -300.0, category_id='dining'),
        _txn('t5', '2025-03-05', -1000.0, category_id='rent'),
        _txn('t6', '2025-03-06', -5000.0, category_id='unknown'),
    ]

    top = top_spending_categories(transactions, categories, 'household', '2025-03', limit=2)

    assert list(top['Category']) == ['Rent', 'Dining']

    everything = top_spending_categories(transactions, categories, 'household', '2025-03')
    groceries = everything[everything['category_id'] == 'groceries'].iloc[0]
    assert groceries['Amount'] == 250.0
    assert groceries['Transactions'] == 3


def test_archived_months_are_newest_first():
    transactions = [
        _txn('t1', '2025-02-10', -10.0),
        _txn('t2', '2025-02-20', -10.0),
        _txn('t3', '2024-12-01', -10.0),
        _txn('t4', '2024-11-01', -10.0, budget_type='business'),
    ]

    assert archived_months(transactions, 'household', today=date(2025, 5, 15)) == ['2025-02', '2024-12']
