"""Data models used by the dual budget engine.

Every persisted entity is a frozen dataclass.  Soft-deletable entities carry
a ``state`` that is either :data:`ACTIVE` or :class:`Deleted`; the nullable
``deleted_at`` column only exists at the storage boundary.

Partial updates go through explicit ``*Patch`` dataclasses whose fields
default to :data:`UNSET`.  :func:`apply_patch` merges the set fields into a
record and leaves everything else untouched.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple, TypeVar, Union

HOUSEHOLD = 'household'
BUSINESS = 'business'
BUDGET_TYPES = (HOUSEHOLD, BUSINESS)
RULE_BUDGET_TYPES = (HOUSEHOLD, BUSINESS, 'both')

ACCOUNT_TYPES = ('checking', 'savings', 'credit_card', 'loan', 'investment', 'other')
LIABILITY_ACCOUNT_TYPES = frozenset({'credit_card', 'loan'})

INCOME_FREQUENCIES = ('weekly', 'biweekly', 'monthly', 'quarterly', 'annual', 'irregular')


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string with a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec='milliseconds').replace('+00:00', 'Z')


# ---------------------------------------------------------------------------
# Soft delete state
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Active:
    """Record is live and visible to active-only reads."""

    @property
    def deleted_at(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class Deleted:
    """Record was soft-deleted at ``at``; only for-sync reads return it."""

    at: str

    @property
    def deleted_at(self) -> Optional[str]:
        return self.at


ACTIVE = Active()
RecordState = Union[Active, Deleted]


def state_from_column(deleted_at: Optional[str]) -> RecordState:
    return Deleted(deleted_at) if deleted_at else ACTIVE


class SoftDeletable:
    """Convenience accessors shared by soft-deletable records."""

    state: RecordState

    @property
    def deleted_at(self) -> Optional[str]:
        return self.state.deleted_at

    @property
    def is_deleted(self) -> bool:
        return isinstance(self.state, Deleted)


# ---------------------------------------------------------------------------
# Entities
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Profile:
    id: str
    name: str
    description: Optional[str] = None
    password_hash: Optional[str] = None
    password_hint: Optional[str] = None
    created_at: str = ''
    updated_at: str = ''
    last_accessed_at: str = ''


@dataclass(frozen=True)
class Settings:
    """Per-profile application settings and percentage-of-income targets."""

    profile_id: str
    default_budget_view: str = HOUSEHOLD
    date_format: str = 'MM/dd/yyyy'
    currency_symbol: str = '$'
    first_run_completed: bool = False
    track_business: bool = True
    track_household: bool = True
    household_needs_percentage: float = 50.0
    household_wants_percentage: float = 30.0
    household_savings_percentage: float = 20.0
    household_monthly_income_baseline: float = 0.0
    business_operating_percentage: float = 40.0
    business_growth_percentage: float = 20.0
    business_compensation_percentage: float = 30.0
    business_tax_reserve_percentage: float = 5.0
    business_savings_percentage: float = 5.0
    business_monthly_revenue_baseline: float = 0.0


@dataclass(frozen=True)
class Account(SoftDeletable):
    id: str
    profile_id: str
    name: str
    budget_type: str
    account_type: str
    balance: float = 0.0
    interest_rate: Optional[float] = None
    credit_limit: Optional[float] = None
    payment_due_day: Optional[int] = None
    minimum_payment: Optional[float] = None
    website_url: Optional[str] = None
    notes: Optional[str] = None
    created_at: str = ''
    updated_at: str = ''
    state: RecordState = ACTIVE

    @property
    def is_liability(self) -> bool:
        """Credit and loan balances are liabilities regardless of sign."""
        return self.account_type in LIABILITY_ACCOUNT_TYPES or self.balance < 0


@dataclass(frozen=True)
class Category(SoftDeletable):
    id: str
    profile_id: str
    name: str
    budget_type: str
    bucket_id: str
    category_group: Optional[str] = None
    monthly_budget: float = 0.0
    is_fixed_expense: bool = False
    is_active: bool = True
    tax_deductible_by_default: bool = False
    is_income_category: bool = False
    exclude_from_budget: bool = False
    icon: Optional[str] = None
    created_at: str = ''
    updated_at: str = ''
    state: RecordState = ACTIVE


@dataclass(frozen=True)
class Transaction(SoftDeletable):
    """A single ledger entry.  Positive amounts are income, negative are expenses."""

    id: str
    profile_id: str
    date: str
    amount: float
    category_id: str
    budget_type: str
    account_id: str
    description: str = ''
    to_account_id: Optional[str] = None
    linked_transaction_id: Optional[str] = None
    project_id: Optional[str] = None
    income_source_id: Optional[str] = None
    tax_deductible: bool = False
    reconciled: bool = False
    notes: Optional[str] = None
    created_at: str = ''
    updated_at: str = ''
    state: RecordState = ACTIVE

    @property
    def is_income(self) -> bool:
        return self.amount > 0

    @property
    def is_expense(self) -> bool:
        return self.amount < 0

    @property
    def month(self) -> str:
        return self.date[:7]


@dataclass(frozen=True)
class IncomeSource(SoftDeletable):
    id: str
    profile_id: str
    name: str
    budget_type: str
    income_type: str
    frequency: str = 'monthly'
    category_id: Optional[str] = None
    expected_amount: float = 0.0
    next_expected_date: Optional[str] = None
    client_source: Optional[str] = None
    is_active: bool = True
    created_at: str = ''
    updated_at: str = ''
    state: RecordState = ACTIVE


@dataclass(frozen=True)
class ProjectStatus(SoftDeletable):
    id: str
    profile_id: str
    name: str
    description: Optional[str] = None
    created_at: str = ''
    updated_at: str = ''
    state: RecordState = ACTIVE


@dataclass(frozen=True)
class ProjectType(SoftDeletable):
    id: str
    profile_id: str
    name: str
    budget_type: str
    allowed_statuses: Tuple[str, ...] = ()
    created_at: str = ''
    updated_at: str = ''
    state: RecordState = ACTIVE

    def __post_init__(self) -> None:
        # Ordered set: keep first occurrence of each status id
        ordered = tuple(dict.fromkeys(self.allowed_statuses))
        object.__setattr__(self, 'allowed_statuses', ordered)

    def allows(self, status_id: str) -> bool:
        return status_id in self.allowed_statuses


@dataclass(frozen=True)
class Project(SoftDeletable):
    id: str
    profile_id: str
    name: str
    budget_type: str
    project_type_id: str
    status_id: str
    date_created: str
    income_source_id: Optional[str] = None
    budget: Optional[float] = None
    date_completed: Optional[str] = None
    commission_paid: bool = False
    notes: Optional[str] = None
    created_at: str = ''
    updated_at: str = ''
    state: RecordState = ACTIVE


@dataclass(frozen=True)
class MonthlyBudget:
    """Explicit budgeted amount for one category in one month."""

    id: str
    profile_id: str
    month: str
    budget_type: str
    category_id: str
    amount: float
    created_at: str = ''
    updated_at: str = ''


def monthly_budget_id(profile_id: str, month: str, category_id: str) -> str:
    """Natural composite identity of a monthly override."""
    return f"{profile_id}-{month}-{category_id}"


@dataclass(frozen=True)
class AutoCategorizationRule:
    id: str
    profile_id: str
    vendor_pattern: str
    category_id: str
    budget_type: str = 'both'
    case_sensitive: bool = False
    is_active: bool = True
    created_at: str = ''
    updated_at: str = ''


# ---------------------------------------------------------------------------
# Patches
# ---------------------------------------------------------------------------


class _Unset:
    """Marker for patch fields that should leave the record untouched."""

    def __repr__(self) -> str:
        return 'UNSET'

    def __bool__(self) -> bool:
        return False


UNSET: Any = _Unset()

T = TypeVar('T')
Patched = Union[T, _Unset]

_PROTECTED_FIELDS = frozenset({'id', 'profile_id', 'created_at', 'updated_at', 'state'})


class Patch:
    """Base class for typed partial updates."""

    def changes(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)  # type: ignore[arg-type]
            if getattr(self, f.name) is not UNSET
        }

    def is_empty(self) -> bool:
        return not self.changes()


@dataclass(frozen=True)
class ProfilePatch(Patch):
    name: Patched[str] = UNSET
    description: Patched[Optional[str]] = UNSET
    password_hash: Patched[Optional[str]] = UNSET
    password_hint: Patched[Optional[str]] = UNSET


@dataclass(frozen=True)
class SettingsPatch(Patch):
    default_budget_view: Patched[str] = UNSET
    date_format: Patched[str] = UNSET
    currency_symbol: Patched[str] = UNSET
    first_run_completed: Patched[bool] = UNSET
    track_business: Patched[bool] = UNSET
    track_household: Patched[bool] = UNSET
    household_needs_percentage: Patched[float] = UNSET
    household_wants_percentage: Patched[float] = UNSET
    household_savings_percentage: Patched[float] = UNSET
    household_monthly_income_baseline: Patched[float] = UNSET
    business_operating_percentage: Patched[float] = UNSET
    business_growth_percentage: Patched[float] = UNSET
    business_compensation_percentage: Patched[float] = UNSET
    business_tax_reserve_percentage: Patched[float] = UNSET
    business_savings_percentage: Patched[float] = UNSET
    business_monthly_revenue_baseline: Patched[float] = UNSET


@dataclass(frozen=True)
class AccountPatch(Patch):
    name: Patched[str] = UNSET
    budget_type: Patched[str] = UNSET
    account_type: Patched[str] = UNSET
    balance: Patched[float] = UNSET
    interest_rate: Patched[Optional[float]] = UNSET
    credit_limit: Patched[Optional[float]] = UNSET
    payment_due_day: Patched[Optional[int]] = UNSET
    minimum_payment: Patched[Optional[float]] = UNSET
    website_url: Patched[Optional[str]] = UNSET
    notes: Patched[Optional[str]] = UNSET


@dataclass(frozen=True)
class CategoryPatch(Patch):
    name: Patched[str] = UNSET
    budget_type: Patched[str] = UNSET
    bucket_id: Patched[str] = UNSET
    category_group: Patched[Optional[str]] = UNSET
    monthly_budget: Patched[float] = UNSET
    is_fixed_expense: Patched[bool] = UNSET
    is_active: Patched[bool] = UNSET
    tax_deductible_by_default: Patched[bool] = UNSET
    is_income_category: Patched[bool] = UNSET
    exclude_from_budget: Patched[bool] = UNSET
    icon: Patched[Optional[str]] = UNSET


@dataclass(frozen=True)
class TransactionPatch(Patch):
    date: Patched[str] = UNSET
    description: Patched[str] = UNSET
    amount: Patched[float] = UNSET
    category_id: Patched[str] = UNSET
    budget_type: Patched[str] = UNSET
    account_id: Patched[str] = UNSET
    to_account_id: Patched[Optional[str]] = UNSET
    linked_transaction_id: Patched[Optional[str]] = UNSET
    project_id: Patched[Optional[str]] = UNSET
    income_source_id: Patched[Optional[str]] = UNSET
    tax_deductible: Patched[bool] = UNSET
    reconciled: Patched[bool] = UNSET
    notes: Patched[Optional[str]] = UNSET


@dataclass(frozen=True)
class IncomeSourcePatch(Patch):
    name: Patched[str] = UNSET
    budget_type: Patched[str] = UNSET
    income_type: Patched[str] = UNSET
    frequency: Patched[str] = UNSET
    category_id: Patched[Optional[str]] = UNSET
    expected_amount: Patched[float] = UNSET
    next_expected_date: Patched[Optional[str]] = UNSET
    client_source: Patched[Optional[str]] = UNSET
    is_active: Patched[bool] = UNSET


@dataclass(frozen=True)
class ProjectStatusPatch(Patch):
    name: Patched[str] = UNSET
    description: Patched[Optional[str]] = UNSET


@dataclass(frozen=True)
class ProjectTypePatch(Patch):
    name: Patched[str] = UNSET
    budget_type: Patched[str] = UNSET
    allowed_statuses: Patched[Tuple[str, ...]] = UNSET


@dataclass(frozen=True)
class ProjectPatch(Patch):
    name: Patched[str] = UNSET
    budget_type: Patched[str] = UNSET
    project_type_id: Patched[str] = UNSET
    status_id: Patched[str] = UNSET
    income_source_id: Patched[Optional[str]] = UNSET
    budget: Patched[Optional[float]] = UNSET
    date_created: Patched[str] = UNSET
    date_completed: Patched[Optional[str]] = UNSET
    commission_paid: Patched[bool] = UNSET
    notes: Patched[Optional[str]] = UNSET


@dataclass(frozen=True)
class RulePatch(Patch):
    vendor_pattern: Patched[str] = UNSET
    category_id: Patched[str] = UNSET
    budget_type: Patched[str] = UNSET
    case_sensitive: Patched[bool] = UNSET
    is_active: Patched[bool] = UNSET


R = TypeVar('R')


def apply_patch(record: R, patch: Patch, *, updated_at: Optional[str] = None) -> R:
    """Return ``record`` with the fields set on ``patch`` replaced.

    Args:
        record: Any entity dataclass
        patch: Matching ``*Patch`` instance
        updated_at: Timestamp to stamp on the result, when the record has one

    Raises:
        TypeError: If the patch names a field the record does not have or
            one that callers may not change
    """
    changes = patch.changes()
    record_fields = {f.name for f in fields(record)}  # type: ignore[arg-type]
    unknown = set(changes) - record_fields
    if unknown:
        raise TypeError(f"{type(patch).__name__} fields not on {type(record).__name__}: {sorted(unknown)}")
    protected = set(changes) & _PROTECTED_FIELDS
    if protected:
        raise TypeError(f"Cannot patch protected fields: {sorted(protected)}")
    if updated_at is not None and 'updated_at' in record_fields:
        changes['updated_at'] = updated_at
    return replace(record, **changes)  # type: ignore[type-var]


# ---------------------------------------------------------------------------
# Invariants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BudgetTypeMismatch:
    transaction_id: str
    reference: str  # 'category' or 'account'
    reference_id: str
    expected: str
    actual: str


def find_budget_type_mismatches(
    transactions: Iterable[Transaction],
    categories: Iterable[Category],
    accounts: Iterable[Account],
) -> List[BudgetTypeMismatch]:
    """List transactions whose budget type disagrees with their category or account.

    Missing references are not reported here; aggregation already treats
    them as uncategorized.
    """
    category_types = {c.id: c.budget_type for c in categories}
    account_types = {a.id: a.budget_type for a in accounts}
    problems: List[BudgetTypeMismatch] = []
    for txn in transactions:
        for reference, ref_id, lookup in (
            ('category', txn.category_id, category_types),
            ('account', txn.account_id, account_types),
        ):
            expected = lookup.get(ref_id)
            if expected is not None and expected != txn.budget_type:
                problems.append(BudgetTypeMismatch(txn.id, reference, ref_id, expected, txn.budget_type))
    return problems
