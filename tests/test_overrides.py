from dual_budget.models import Category, MonthlyBudget
from dual_budget.overrides import OverrideIndex, monthly_budget_id, resolve_budget


def _category(budget=250.0):
    return Category(
        id='groceries',
        profile_id='p1',
        name='Groceries',
        budget_type='household',
        bucket_id='needs',
        monthly_budget=budget,
    )


def _override(month, amount, category_id='groceries'):
    return MonthlyBudget(
        id=monthly_budget_id('p1', month, category_id),
        profile_id='p1',
        month=month,
        budget_type='household',
        category_id=category_id,
        amount=amount,
    )


def test_override_wins_over_category_default():
    overrides = [_override('2024-05', 400.0)]

    assert resolve_budget('2024-05', 'groceries', overrides, _category()) == 400.0
    assert resolve_budget('2024-06', 'groceries', overrides, _category()) == 250.0


def test_zero_override_is_respected():
    overrides = [_override('2024-05', 0.0)]

    assert resolve_budget('2024-05', 'groceries', overrides, _category()) == 0.0


def test_unknown_category_without_override_is_zero():
    assert resolve_budget('2024-05', 'missing', (), None) == 0.0
    assert resolve_budget('2024-05', 'missing', None, None) == 0.0


def test_override_applies_even_without_category():
    overrides = OverrideIndex.from_records([_override('2024-05', 75.0, category_id='gone')])

    assert resolve_budget('2024-05', 'gone', overrides, None) == 75.0


def test_later_record_wins_in_index():
    index = OverrideIndex.from_records([_override('2024-05', 100.0), _override('2024-05', 150.0)])

    assert len(index) == 1
    assert index[('2024-05', 'groceries')] == 150.0


def test_monthly_budget_id_is_natural_key():
    assert monthly_budget_id('p1', '2024-05', 'groceries') == 'p1-2024-05-groceries'
