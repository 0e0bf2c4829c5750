"""SQLite-backed ledger store.

One :class:`LedgerStore` owns one connection.  Writes are serialized through
a re-entrant lock and every multi-step mutation runs inside
:meth:`LedgerStore.transaction`, so either all of it commits or none of it
does.  ``sqlite3`` failures are re-raised as :mod:`dual_budget.errors`
storage errors.

Soft-deletable entity tables are exposed as repositories with two read
modes: active-only (``list_active``/``get``) and for-sync
(``list_all_for_sync``/``get_for_sync``), which also returns deleted rows.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from .config import SCHEMA_VERSION, get_db_path
from .defaults import default_project_statuses, default_project_types
from .errors import ConstraintViolation, IOFailure, NotFound, StorageError
from .models import (
    ACTIVE,
    Account,
    AutoCategorizationRule,
    Category,
    IncomeSource,
    MonthlyBudget,
    Patch,
    Profile,
    ProfilePatch,
    Project,
    ProjectStatus,
    ProjectType,
    RulePatch,
    Settings,
    SettingsPatch,
    Transaction,
    apply_patch,
    monthly_budget_id,
    state_from_column,
    utc_now,
)
from .periods import validate_month

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS profiles (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    description TEXT,
    password_hash TEXT,
    password_hint TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    last_accessed_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS settings (
    profile_id TEXT PRIMARY KEY,
    default_budget_view TEXT NOT NULL DEFAULT 'household' CHECK (default_budget_view IN ('household', 'business')),
    date_format TEXT NOT NULL DEFAULT 'MM/dd/yyyy',
    currency_symbol TEXT NOT NULL DEFAULT '$',
    first_run_completed INTEGER NOT NULL DEFAULT 0,
    track_business INTEGER NOT NULL DEFAULT 1,
    track_household INTEGER NOT NULL DEFAULT 1,
    household_needs_percentage REAL NOT NULL DEFAULT 50,
    household_wants_percentage REAL NOT NULL DEFAULT 30,
    household_savings_percentage REAL NOT NULL DEFAULT 20,
    household_monthly_income_baseline REAL NOT NULL DEFAULT 0,
    business_operating_percentage REAL NOT NULL DEFAULT 40,
    business_growth_percentage REAL NOT NULL DEFAULT 20,
    business_compensation_percentage REAL NOT NULL DEFAULT 30,
    business_tax_reserve_percentage REAL NOT NULL DEFAULT 5,
    business_savings_percentage REAL NOT NULL DEFAULT 5,
    business_monthly_revenue_baseline REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS accounts (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    name TEXT NOT NULL,
    budget_type TEXT NOT NULL CHECK (budget_type IN ('household', 'business')),
    account_type TEXT NOT NULL CHECK (account_type IN ('checking', 'savings', 'credit_card', 'loan', 'investment', 'other')),
    balance REAL NOT NULL DEFAULT 0,
    interest_rate REAL,
    credit_limit REAL,
    payment_due_day INTEGER,
    minimum_payment REAL,
    website_url TEXT,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_accounts_budget_type ON accounts(profile_id, budget_type);

CREATE TABLE IF NOT EXISTS categories (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    name TEXT NOT NULL,
    budget_type TEXT NOT NULL CHECK (budget_type IN ('household', 'business')),
    bucket_id TEXT NOT NULL,
    category_group TEXT,
    monthly_budget REAL NOT NULL DEFAULT 0,
    is_fixed_expense INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    tax_deductible_by_default INTEGER NOT NULL DEFAULT 0,
    is_income_category INTEGER NOT NULL DEFAULT 0,
    exclude_from_budget INTEGER NOT NULL DEFAULT 0,
    icon TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_categories_budget_type ON categories(profile_id, budget_type);

CREATE TABLE IF NOT EXISTS transactions (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    date TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    amount REAL NOT NULL,
    category_id TEXT NOT NULL,
    budget_type TEXT NOT NULL CHECK (budget_type IN ('household', 'business')),
    account_id TEXT NOT NULL,
    to_account_id TEXT,
    linked_transaction_id TEXT,
    project_id TEXT,
    income_source_id TEXT,
    tax_deductible INTEGER NOT NULL DEFAULT 0,
    reconciled INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(profile_id, date);
CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category_id);
CREATE INDEX IF NOT EXISTS idx_transactions_account ON transactions(account_id);

CREATE TABLE IF NOT EXISTS income_sources (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    name TEXT NOT NULL,
    budget_type TEXT NOT NULL CHECK (budget_type IN ('household', 'business')),
    income_type TEXT NOT NULL,
    frequency TEXT NOT NULL DEFAULT 'monthly',
    category_id TEXT,
    expected_amount REAL NOT NULL DEFAULT 0,
    next_expected_date TEXT,
    client_source TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS monthly_budgets (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    month TEXT NOT NULL,
    budget_type TEXT NOT NULL CHECK (budget_type IN ('household', 'business')),
    category_id TEXT NOT NULL,
    amount REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE,
    UNIQUE(profile_id, month, category_id)
);
CREATE INDEX IF NOT EXISTS idx_monthly_budgets_month ON monthly_budgets(profile_id, month);

CREATE TABLE IF NOT EXISTS project_types (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    name TEXT NOT NULL,
    budget_type TEXT NOT NULL CHECK (budget_type IN ('household', 'business')),
    allowed_statuses TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS project_statuses (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    name TEXT NOT NULL,
    budget_type TEXT NOT NULL CHECK (budget_type IN ('household', 'business')),
    project_type_id TEXT NOT NULL,
    status_id TEXT NOT NULL,
    income_source_id TEXT,
    budget REAL,
    date_created TEXT NOT NULL,
    date_completed TEXT,
    commission_paid INTEGER NOT NULL DEFAULT 0,
    notes TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    deleted_at TEXT,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_projects_type ON projects(project_type_id);
CREATE INDEX IF NOT EXISTS idx_projects_status ON projects(status_id);

CREATE TABLE IF NOT EXISTS auto_categorization_rules (
    id TEXT PRIMARY KEY,
    profile_id TEXT NOT NULL,
    vendor_pattern TEXT NOT NULL,
    budget_type TEXT NOT NULL CHECK (budget_type IN ('household', 'business', 'both')),
    category_id TEXT NOT NULL,
    case_sensitive INTEGER NOT NULL DEFAULT 0,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY (profile_id) REFERENCES profiles(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS db_metadata (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""

SOFT_DELETE_TABLES = (
    'accounts', 'categories', 'transactions', 'income_sources',
    'projects', 'project_types', 'project_statuses',
)


def new_id() -> str:
    return uuid.uuid4().hex


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    """Translate ``sqlite3`` exceptions into storage errors."""
    try:
        yield
    except StorageError:
        raise
    except sqlite3.IntegrityError as exc:
        logger.error("Integrity error during %s: %s", action, exc)
        raise ConstraintViolation(f"{action} violated a constraint: {exc}") from exc
    except sqlite3.DatabaseError as exc:
        logger.error("Database error during %s: %s", action, exc)
        raise IOFailure(f"{action} failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Column mapping
# ---------------------------------------------------------------------------

# Column kinds: text, real, int, bool, json
_BASE_COLUMNS = ('id', 'profile_id', 'created_at', 'updated_at')


@dataclass(frozen=True)
class TableSpec:
    table: str
    record_type: type
    columns: Tuple[Tuple[str, str], ...]
    order_by: str = 'name ASC'
    has_budget_type: bool = True

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(name for name, _ in self.columns)


def _to_db(value: Any, kind: str) -> Any:
    if value is None:
        return None
    if kind == 'bool':
        return 1 if value else 0
    if kind == 'json':
        return json.dumps(list(value))
    return value


def _from_db(value: Any, kind: str) -> Any:
    if kind == 'json':
        return tuple(json.loads(value or '[]'))
    if value is None:
        return None
    if kind == 'bool':
        return bool(value)
    if kind == 'real':
        return float(value)
    if kind == 'int':
        return int(value)
    return value


ACCOUNTS = TableSpec('accounts', Account, (
    ('name', 'text'), ('budget_type', 'text'), ('account_type', 'text'), ('balance', 'real'),
    ('interest_rate', 'real'), ('credit_limit', 'real'), ('payment_due_day', 'int'),
    ('minimum_payment', 'real'), ('website_url', 'text'), ('notes', 'text'),
))
CATEGORIES = TableSpec('categories', Category, (
    ('name', 'text'), ('budget_type', 'text'), ('bucket_id', 'text'), ('category_group', 'text'),
    ('monthly_budget', 'real'), ('is_fixed_expense', 'bool'), ('is_active', 'bool'),
    ('tax_deductible_by_default', 'bool'), ('is_income_category', 'bool'),
    ('exclude_from_budget', 'bool'), ('icon', 'text'),
))
TRANSACTIONS = TableSpec('transactions', Transaction, (
    ('date', 'text'), ('description', 'text'), ('amount', 'real'), ('category_id', 'text'),
    ('budget_type', 'text'), ('account_id', 'text'), ('to_account_id', 'text'),
    ('linked_transaction_id', 'text'), ('project_id', 'text'), ('income_source_id', 'text'),
    ('tax_deductible', 'bool'), ('reconciled', 'bool'), ('notes', 'text'),
), order_by='date DESC, created_at DESC')
INCOME_SOURCES = TableSpec('income_sources', IncomeSource, (
    ('name', 'text'), ('budget_type', 'text'), ('income_type', 'text'), ('frequency', 'text'),
    ('category_id', 'text'), ('expected_amount', 'real'), ('next_expected_date', 'text'),
    ('client_source', 'text'), ('is_active', 'bool'),
))
PROJECTS = TableSpec('projects', Project, (
    ('name', 'text'), ('budget_type', 'text'), ('project_type_id', 'text'), ('status_id', 'text'),
    ('income_source_id', 'text'), ('budget', 'real'), ('date_created', 'text'),
    ('date_completed', 'text'), ('commission_paid', 'bool'), ('notes', 'text'),
), order_by='date_created DESC, name ASC')
PROJECT_TYPES = TableSpec('project_types', ProjectType, (
    ('name', 'text'), ('budget_type', 'text'), ('allowed_statuses', 'json'),
))
PROJECT_STATUSES = TableSpec('project_statuses', ProjectStatus, (
    ('name', 'text'), ('description', 'text'),
), has_budget_type=False)
RULES = TableSpec('auto_categorization_rules', AutoCategorizationRule, (
    ('vendor_pattern', 'text'), ('budget_type', 'text'), ('category_id', 'text'),
    ('case_sensitive', 'bool'), ('is_active', 'bool'),
), order_by='created_at ASC')

_SETTINGS_KINDS: Dict[str, str] = {
    f.name: 'bool' if isinstance(f.default, bool) else 'real' if isinstance(f.default, float) else 'text'
    for f in fields(Settings)
    if f.name != 'profile_id'
}


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class _TableRepository:
    """Row conversion and create/update shared by every entity table."""

    def __init__(self, store: 'LedgerStore', spec: TableSpec):
        self._store = store
        self.spec = spec

    @property
    def table(self) -> str:
        return self.spec.table

    def _row_to_record(self, row: sqlite3.Row) -> Any:
        kwargs: Dict[str, Any] = {name: row[name] for name in _BASE_COLUMNS}
        for name, kind in self.spec.columns:
            kwargs[name] = _from_db(row[name], kind)
        if self._soft_delete:
            kwargs['state'] = state_from_column(row['deleted_at'])
        return self.spec.record_type(**kwargs)

    @property
    def _soft_delete(self) -> bool:
        return self.table in SOFT_DELETE_TABLES

    def _all_columns(self) -> List[str]:
        columns = list(_BASE_COLUMNS) + list(self.spec.column_names)
        if self._soft_delete:
            columns.append('deleted_at')
        return columns

    def _record_values(self, record: Any) -> List[Any]:
        values = [getattr(record, name) for name in _BASE_COLUMNS]
        values.extend(_to_db(getattr(record, name), kind) for name, kind in self.spec.columns)
        if self._soft_delete:
            values.append(record.deleted_at)
        return values

    def _insert(self, record: Any) -> None:
        columns = self._all_columns()
        placeholders = ', '.join('?' for _ in columns)
        sql = f"INSERT INTO {self.table} ({', '.join(columns)}) VALUES ({placeholders})"
        with self._store.transaction() as conn:
            conn.execute(sql, self._record_values(record))

    def _fetch_one(self, where: str, params: Sequence[Any]) -> Optional[Any]:
        rows = self._store.query(f"SELECT * FROM {self.table} WHERE {where}", params)
        return self._row_to_record(rows[0]) if rows else None

    def _fetch_many(self, where: str, params: Sequence[Any]) -> List[Any]:
        sql = f"SELECT * FROM {self.table} WHERE {where} ORDER BY {self.spec.order_by}"
        return [self._row_to_record(row) for row in self._store.query(sql, params)]

    def _write_mutable(self, record: Any, conn: sqlite3.Connection) -> int:
        columns = list(self.spec.column_names) + ['updated_at']
        values = [_to_db(getattr(record, name), kind) for name, kind in self.spec.columns]
        values.append(record.updated_at)
        if self._soft_delete:
            columns.append('deleted_at')
            values.append(record.deleted_at)
        assignments = ', '.join(f"{name} = ?" for name in columns)
        cursor = conn.execute(f"UPDATE {self.table} SET {assignments} WHERE id = ?", values + [record.id])
        return cursor.rowcount

    def create(self, record: Any) -> Any:
        """Insert a new record, stamping ``created_at == updated_at == now``.

        A blank ``id`` is replaced with a generated one.
        """
        now = utc_now()
        changes: Dict[str, Any] = {'created_at': now, 'updated_at': now}
        if not record.id:
            changes['id'] = new_id()
        if self._soft_delete:
            changes['state'] = ACTIVE
        record = replace(record, **changes)
        self._insert(record)
        logger.debug("Created %s %s", self.table, record.id)
        return record


class EntityRepository(_TableRepository):
    """Soft-deletable entity table with active and for-sync read modes."""

    def list_active(
        self,
        profile_id: str,
        budget_type: Optional[str] = None,
        include_deleted: bool = False,
    ) -> List[Any]:
        """Records of a profile, soft-deleted ones only when ``include_deleted``."""
        where = ['profile_id = ?']
        if not include_deleted:
            where.append('deleted_at IS NULL')
        params: List[Any] = [profile_id]
        if budget_type is not None:
            if not self.spec.has_budget_type:
                raise ValueError(f"{self.table} has no budget type")
            where.append('budget_type = ?')
            params.append(budget_type)
        return self._fetch_many(' AND '.join(where), params)

    def get(self, record_id: str) -> Optional[Any]:
        """Return the record if it exists and is not soft-deleted."""
        return self._fetch_one('id = ? AND deleted_at IS NULL', (record_id,))

    def update(self, record_id: str, patch: Patch) -> Any:
        with self._store.transaction() as conn:
            current = self.get(record_id)
            if current is None:
                raise NotFound(self.table, record_id)
            updated = apply_patch(current, patch, updated_at=utc_now())
            self._write_mutable(updated, conn)
        logger.debug("Updated %s %s: %s", self.table, record_id, sorted(patch.changes()))
        return updated

    def soft_delete(self, record_id: str) -> Any:
        """Mark the record deleted; it stays visible to for-sync reads."""
        now = utc_now()
        with self._store.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE {self.table} SET deleted_at = ?, updated_at = ? WHERE id = ? AND deleted_at IS NULL",
                (now, now, record_id),
            )
            if cursor.rowcount == 0:
                raise NotFound(self.table, record_id)
        logger.info("Soft-deleted %s %s", self.table, record_id)
        return self.get_for_sync(record_id)

    # -- for-sync read/write paths -----------------------------------------

    def list_all_for_sync(self, profile_id: str) -> List[Any]:
        return self._fetch_many('profile_id = ?', (profile_id,))

    def get_for_sync(self, record_id: str) -> Optional[Any]:
        return self._fetch_one('id = ?', (record_id,))

    def upsert_for_sync(self, record: Any) -> str:
        """Apply a record verbatim, keeping its own timestamps and state.

        Returns ``'inserted'`` or ``'updated'``.  Raises ``ConstraintViolation``
        when the id already belongs to another profile.
        """
        with self._store.transaction() as conn:
            existing = self.get_for_sync(record.id)
            if existing is not None and existing.profile_id != record.profile_id:
                raise ConstraintViolation(
                    f"{self.table} record '{record.id}' belongs to profile {existing.profile_id}, "
                    f"not {record.profile_id}"
                )
            if self._write_mutable(record, conn):
                outcome = 'updated'
            else:
                self._insert(record)
                outcome = 'inserted'
        logger.debug("Sync %s %s %s", outcome, self.table, record.id)
        return outcome


class TransactionRepository(EntityRepository):

    def list_active(
        self,
        profile_id: str,
        budget_type: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        account_id: Optional[str] = None,
        category_id: Optional[str] = None,
        project_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Transaction]:
        where: List[str] = ['profile_id = ?', 'deleted_at IS NULL']
        params: List[Any] = [profile_id]

        if budget_type:
            where.append('budget_type = ?')
            params.append(budget_type)
        if start_date:
            where.append('substr(date, 1, 10) >= ?')
            params.append(start_date)
        if end_date:
            where.append('substr(date, 1, 10) <= ?')
            params.append(end_date)
        if account_id:
            where.append('(account_id = ? OR to_account_id = ?)')
            params.extend([account_id, account_id])
        if category_id:
            where.append('category_id = ?')
            params.append(category_id)
        if project_id:
            where.append('project_id = ?')
            params.append(project_id)

        sql = f"SELECT * FROM {self.table} WHERE {' AND '.join(where)} ORDER BY {self.spec.order_by}"
        if limit is not None:
            sql += ' LIMIT ?'
            params.append(int(limit))
        return [self._row_to_record(row) for row in self._store.query(sql, params)]


class MonthlyBudgetRepository:
    """Per-month category overrides, keyed by ``(profile, month, category)``."""

    table = 'monthly_budgets'

    def __init__(self, store: 'LedgerStore'):
        self._store = store

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> MonthlyBudget:
        return MonthlyBudget(
            id=row['id'],
            profile_id=row['profile_id'],
            month=row['month'],
            budget_type=row['budget_type'],
            category_id=row['category_id'],
            amount=float(row['amount']),
            created_at=row['created_at'],
            updated_at=row['updated_at'],
        )

    def list(
        self,
        profile_id: str,
        month: Optional[str] = None,
        budget_type: Optional[str] = None,
    ) -> List[MonthlyBudget]:
        where = ['profile_id = ?']
        params: List[Any] = [profile_id]
        if month is not None:
            where.append('month = ?')
            params.append(validate_month(month))
        if budget_type is not None:
            where.append('budget_type = ?')
            params.append(budget_type)
        sql = f"SELECT * FROM {self.table} WHERE {' AND '.join(where)} ORDER BY month ASC, category_id ASC"
        return [self._row_to_record(row) for row in self._store.query(sql, params)]

    def get(self, profile_id: str, month: str, category_id: str) -> Optional[MonthlyBudget]:
        rows = self._store.query(
            f"SELECT * FROM {self.table} WHERE profile_id = ? AND month = ? AND category_id = ?",
            (profile_id, month, category_id),
        )
        return self._row_to_record(rows[0]) if rows else None

    def set_budget(
        self,
        profile_id: str,
        month: str,
        budget_type: str,
        category_id: str,
        amount: float,
    ) -> MonthlyBudget:
        """Create or replace the override for ``(profile, month, category)``.

        Re-submitting the same key updates ``amount`` and ``updated_at`` in
        place; ``id`` and ``created_at`` are kept.
        """
        validate_month(month)
        now = utc_now()
        with self._store.transaction() as conn:
            conn.execute(
                f"""
                INSERT INTO {self.table} (id, profile_id, month, budget_type, category_id, amount, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(profile_id, month, category_id) DO UPDATE SET
                    amount = excluded.amount,
                    updated_at = excluded.updated_at
                """,
                (monthly_budget_id(profile_id, month, category_id), profile_id, month,
                 budget_type, category_id, float(amount), now, now),
            )
            record = self.get(profile_id, month, category_id)
        logger.debug("Set %s budget for %s in %s to %.2f", budget_type, category_id, month, amount)
        return record  # type: ignore[return-value]

    def clear_budget(self, profile_id: str, month: str, category_id: str) -> bool:
        """Remove an override so the category default applies again."""
        with self._store.transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM {self.table} WHERE profile_id = ? AND month = ? AND category_id = ?",
                (profile_id, month, category_id),
            )
        return cursor.rowcount > 0

    def list_all_for_sync(self, profile_id: str) -> List[MonthlyBudget]:
        return self.list(profile_id)

    def get_for_sync(self, record_id: str) -> Optional[MonthlyBudget]:
        rows = self._store.query(f"SELECT * FROM {self.table} WHERE id = ?", (record_id,))
        return self._row_to_record(rows[0]) if rows else None

    def upsert_for_sync(self, record: MonthlyBudget) -> str:
        with self._store.transaction() as conn:
            existing = self.get(record.profile_id, record.month, record.category_id)
            conn.execute(
                f"""
                INSERT INTO {self.table} (id, profile_id, month, budget_type, category_id, amount, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(profile_id, month, category_id) DO UPDATE SET
                    budget_type = excluded.budget_type,
                    amount = excluded.amount,
                    updated_at = excluded.updated_at
                """,
                (record.id, record.profile_id, record.month, record.budget_type,
                 record.category_id, float(record.amount), record.created_at, record.updated_at),
            )
        return 'updated' if existing is not None else 'inserted'


class RuleRepository(_TableRepository):
    """Auto-categorization rules.  Deletes are hard deletes."""

    def list(self, profile_id: str, active_only: bool = False) -> List[AutoCategorizationRule]:
        where = 'profile_id = ? AND is_active = 1' if active_only else 'profile_id = ?'
        return self._fetch_many(where, (profile_id,))

    def get(self, rule_id: str) -> Optional[AutoCategorizationRule]:
        return self._fetch_one('id = ?', (rule_id,))

    def update(self, rule_id: str, patch: RulePatch) -> AutoCategorizationRule:
        with self._store.transaction() as conn:
            current = self.get(rule_id)
            if current is None:
                raise NotFound(self.table, rule_id)
            updated = apply_patch(current, patch, updated_at=utc_now())
            self._write_mutable(updated, conn)
        return updated

    def delete(self, rule_id: str) -> None:
        with self._store.transaction() as conn:
            cursor = conn.execute(f"DELETE FROM {self.table} WHERE id = ?", (rule_id,))
            if cursor.rowcount == 0:
                raise NotFound(self.table, rule_id)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class LedgerStore:
    """Durable storage for one or more budget profiles.

    Args:
        db_path: SQLite file path, or ``":memory:"``. Defaults to the
            configured ``DUAL_BUDGET_DB_PATH``.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None, initialize: bool = True):
        self.db_path = str(db_path) if db_path is not None else get_db_path()
        self._lock = threading.RLock()
        self._depth = 0
        self._conn = self._open()

        self.accounts = EntityRepository(self, ACCOUNTS)
        self.categories = EntityRepository(self, CATEGORIES)
        self.transactions = TransactionRepository(self, TRANSACTIONS)
        self.income_sources = EntityRepository(self, INCOME_SOURCES)
        self.projects = EntityRepository(self, PROJECTS)
        self.project_types = EntityRepository(self, PROJECT_TYPES)
        self.project_statuses = EntityRepository(self, PROJECT_STATUSES)
        self.monthly_budgets = MonthlyBudgetRepository(self)
        self.rules = RuleRepository(self, RULES)

        if initialize:
            self.init_db()

    def _open(self) -> sqlite3.Connection:
        with _storage_errors(f"open {self.db_path}"):
            if self.db_path != ':memory:':
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute('PRAGMA foreign_keys = ON')
        return conn

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self) -> 'LedgerStore':
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def repository(self, name: str) -> EntityRepository:
        repo = getattr(self, name, None)
        if not isinstance(repo, EntityRepository):
            raise KeyError(f"Unknown entity repository: {name}")
        return repo

    # -- connection helpers --------------------------------------------------

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements as one transaction.

        Nested calls join the outermost transaction.  Any exception rolls the
        whole transaction back and is re-raised (``sqlite3`` errors as
        storage errors).
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self._conn
                finally:
                    self._depth -= 1
                return

            with _storage_errors('begin transaction'):
                self._conn.execute('BEGIN')
            self._depth = 1
            try:
                with _storage_errors('transaction'):
                    yield self._conn
            except BaseException:
                self._conn.rollback()
                raise
            else:
                with _storage_errors('commit'):
                    self._conn.commit()
            finally:
                self._depth = 0

    def query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock, _storage_errors('query'):
            return self._conn.execute(sql, tuple(params)).fetchall()

    # -- schema ---------------------------------------------------------------

    def init_db(self) -> None:
        with self._lock, _storage_errors('initialize schema'):
            if self.db_path != ':memory:':
                self._conn.execute('PRAGMA journal_mode=WAL')
            self._conn.executescript(SCHEMA_SQL)
        self._migrate_database()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO db_metadata (key, value, updated_at) VALUES ('schema_version', ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
                (SCHEMA_VERSION, utc_now()),
            )
        logger.info("Ledger store initialized at %s", self.db_path)

    def _migrate_database(self) -> None:
        """Add columns introduced after a database file was first created."""
        with self.transaction() as conn:
            for table in SOFT_DELETE_TABLES:
                existing = {row['name'] for row in conn.execute(f"PRAGMA table_info({table})")}
                if 'deleted_at' not in existing:
                    conn.execute(f"ALTER TABLE {table} ADD COLUMN deleted_at TEXT")
                    logger.info("Added deleted_at column to %s", table)

    def schema_version(self) -> Optional[str]:
        rows = self.query("SELECT value FROM db_metadata WHERE key = 'schema_version'")
        return rows[0]['value'] if rows else None

    # -- profiles -------------------------------------------------------------

    @staticmethod
    def _row_to_profile(row: sqlite3.Row) -> Profile:
        return Profile(**{f.name: row[f.name] for f in fields(Profile)})

    def create_profile(
        self,
        name: str,
        description: Optional[str] = None,
        password_hash: Optional[str] = None,
        password_hint: Optional[str] = None,
        profile_id: Optional[str] = None,
    ) -> Profile:
        """Create a profile and its default settings in one transaction."""
        now = utc_now()
        profile = Profile(
            id=profile_id or new_id(),
            name=name,
            description=description,
            password_hash=password_hash,
            password_hint=password_hint,
            created_at=now,
            updated_at=now,
            last_accessed_at=now,
        )
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO profiles (id, name, description, password_hash, password_hint, "
                "created_at, updated_at, last_accessed_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (profile.id, profile.name, profile.description, profile.password_hash,
                 profile.password_hint, now, now, now),
            )
            self._insert_settings(conn, Settings(profile_id=profile.id), now)
        logger.info("Created profile %s (%s)", profile.name, profile.id)
        return profile

    def _insert_settings(self, conn: sqlite3.Connection, settings: Settings, now: str) -> None:
        columns = ['profile_id'] + list(_SETTINGS_KINDS) + ['created_at', 'updated_at']
        values = [settings.profile_id]
        values.extend(_to_db(getattr(settings, name), kind) for name, kind in _SETTINGS_KINDS.items())
        values.extend([now, now])
        placeholders = ', '.join('?' for _ in columns)
        conn.execute(f"INSERT INTO settings ({', '.join(columns)}) VALUES ({placeholders})", values)

    def get_profile(self, profile_id: str) -> Optional[Profile]:
        rows = self.query("SELECT * FROM profiles WHERE id = ?", (profile_id,))
        return self._row_to_profile(rows[0]) if rows else None

    def list_profiles(self) -> List[Profile]:
        rows = self.query("SELECT * FROM profiles ORDER BY last_accessed_at DESC")
        return [self._row_to_profile(row) for row in rows]

    def update_profile(self, profile_id: str, patch: ProfilePatch) -> Profile:
        with self.transaction() as conn:
            current = self.get_profile(profile_id)
            if current is None:
                raise NotFound('profiles', profile_id)
            updated = apply_patch(current, patch, updated_at=utc_now())
            conn.execute(
                "UPDATE profiles SET name = ?, description = ?, password_hash = ?, password_hint = ?, "
                "updated_at = ? WHERE id = ?",
                (updated.name, updated.description, updated.password_hash, updated.password_hint,
                 updated.updated_at, profile_id),
            )
        return updated

    def upsert_profile_for_sync(self, profile: Profile, settings: Optional[Settings] = None) -> None:
        """Apply a profile (and optionally its settings) verbatim from another device."""
        now = utc_now()
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO profiles (id, name, description, password_hash, password_hint, "
                "created_at, updated_at, last_accessed_at) VALUES (?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(id) DO UPDATE SET name = excluded.name, description = excluded.description, "
                "password_hash = excluded.password_hash, password_hint = excluded.password_hint, "
                "updated_at = excluded.updated_at",
                (profile.id, profile.name, profile.description, profile.password_hash,
                 profile.password_hint, profile.created_at or now, profile.updated_at or now,
                 profile.last_accessed_at or now),
            )
            if settings is None:
                exists = conn.execute("SELECT 1 FROM settings WHERE profile_id = ?", (profile.id,)).fetchone()
                if not exists:
                    self._insert_settings(conn, Settings(profile_id=profile.id), now)
                return
            conn.execute("DELETE FROM settings WHERE profile_id = ?", (profile.id,))
            self._insert_settings(conn, replace(settings, profile_id=profile.id), now)

    def touch_profile(self, profile_id: str) -> None:
        """Record that the profile was just opened."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE profiles SET last_accessed_at = ? WHERE id = ?", (utc_now(), profile_id)
            )
            if cursor.rowcount == 0:
                raise NotFound('profiles', profile_id)

    def delete_profile(self, profile_id: str) -> None:
        """Delete a profile and, by cascade, everything it owns."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM profiles WHERE id = ?", (profile_id,))
            if cursor.rowcount == 0:
                raise NotFound('profiles', profile_id)
        logger.info("Deleted profile %s", profile_id)

    # -- settings -------------------------------------------------------------

    def get_settings(self, profile_id: str) -> Settings:
        rows = self.query("SELECT * FROM settings WHERE profile_id = ?", (profile_id,))
        if not rows:
            raise NotFound('settings', profile_id)
        row = rows[0]
        values = {name: _from_db(row[name], kind) for name, kind in _SETTINGS_KINDS.items()}
        return Settings(profile_id=profile_id, **values)

    def update_settings(self, profile_id: str, patch: SettingsPatch) -> Settings:
        with self.transaction() as conn:
            updated = apply_patch(self.get_settings(profile_id), patch)
            changes = patch.changes()
            if changes:
                assignments = ', '.join(f"{name} = ?" for name in changes)
                values = [_to_db(getattr(updated, name), _SETTINGS_KINDS[name]) for name in changes]
                conn.execute(
                    f"UPDATE settings SET {assignments}, updated_at = ? WHERE profile_id = ?",
                    values + [utc_now(), profile_id],
                )
        return updated

    # -- seed data ------------------------------------------------------------

    def seed_defaults(self, profile_id: str) -> int:
        """Insert the default project statuses and types that are missing.

        Returns:
            Number of records inserted
        """
        inserted = 0
        with self.transaction():
            for repo, records in (
                (self.project_statuses, default_project_statuses(profile_id)),
                (self.project_types, default_project_types(profile_id)),
            ):
                for record in records:
                    if repo.get_for_sync(record.id) is None:
                        repo.create(record)
                        inserted += 1
        logger.info("Seeded %d default project records for profile %s", inserted, profile_id)
        return inserted
