"""Unit tests for dual_budget.db.

Every test runs against a fresh SQLite file under ``tmp_path`` so the
connection, WAL journal and migrations behave as they do on disk.
"""

from __future__ import annotations

import sqlite3

import pytest

from dual_budget.db import LedgerStore
from dual_budget.errors import ConstraintViolation, IOFailure, NotFound
from dual_budget.models import (
    Account,
    AccountPatch,
    AutoCategorizationRule,
    Category,
    CategoryPatch,
    Deleted,
    ProjectStatus,
    ProjectType,
    RulePatch,
    Settings,
    SettingsPatch,
    Transaction,
)


@pytest.fixture
def store(tmp_path):
    with LedgerStore(tmp_path / "ledger.db") as ledger:
        yield ledger


@pytest.fixture
def profile_id(store):
    return store.create_profile("Test Budget", profile_id="p1").id


def _account(account_id="a1", **kwargs):
    values = dict(
        id=account_id,
        profile_id="p1",
        name="Checking",
        budget_type="household",
        account_type="checking",
        balance=1200.0,
    )
    values.update(kwargs)
    return Account(**values)


def _txn(txn_id, date, amount, **kwargs):
    values = dict(
        id=txn_id,
        profile_id="p1",
        date=date,
        amount=amount,
        category_id="groceries",
        budget_type="household",
        account_id="a1",
    )
    values.update(kwargs)
    return Transaction(**values)


def test_new_profile_gets_default_settings(store, profile_id) -> None:
    settings = store.get_settings(profile_id)

    assert settings == Settings(profile_id=profile_id)
    assert settings.household_needs_percentage == 50.0
    assert settings.business_tax_reserve_percentage == 5.0
    assert store.schema_version() == "1.1.0"


def test_create_profile_is_atomic(store, monkeypatch) -> None:
    def fail(*args, **kwargs):
        raise sqlite3.OperationalError("disk full")

    monkeypatch.setattr(store, "_insert_settings", fail)

    with pytest.raises(IOFailure):
        store.create_profile("Broken", profile_id="broken")

    assert store.get_profile("broken") is None
    assert store.list_profiles() == []


def test_duplicate_profile_is_a_constraint_violation(store, profile_id) -> None:
    with pytest.raises(ConstraintViolation):
        store.create_profile("Again", profile_id=profile_id)


def test_create_stamps_timestamps_and_generates_ids(store, profile_id) -> None:
    created = store.accounts.create(_account(account_id=""))

    assert created.id
    assert created.created_at == created.updated_at
    assert created.created_at.endswith("Z")
    assert store.accounts.get(created.id) == created


def test_soft_deleted_account_only_visible_for_sync(store, profile_id) -> None:
    store.accounts.create(_account("a1"))
    store.accounts.create(_account("a2", name="Savings", account_type="savings"))

    deleted = store.accounts.soft_delete("a1")

    assert deleted.is_deleted
    assert deleted.deleted_at is not None
    assert [a.id for a in store.accounts.list_active(profile_id)] == ["a2"]
    assert store.accounts.get("a1") is None
    assert store.accounts.get_for_sync("a1").deleted_at == deleted.deleted_at
    assert {a.id for a in store.accounts.list_all_for_sync(profile_id)} == {"a1", "a2"}


def test_missing_records_raise_not_found(store, profile_id) -> None:
    store.accounts.create(_account("a1"))
    store.accounts.soft_delete("a1")

    with pytest.raises(NotFound):
        store.accounts.soft_delete("a1")
    with pytest.raises(NotFound):
        store.accounts.update("a1", AccountPatch(name="Renamed"))
    with pytest.raises(NotFound):
        store.categories.update("nope", CategoryPatch(name="x"))


def test_patch_changes_only_set_fields(store, profile_id) -> None:
    created = store.accounts.create(_account("a1", notes="old note", credit_limit=500.0))

    updated = store.accounts.update("a1", AccountPatch(balance=900.0, notes=None))

    assert updated.balance == 900.0
    assert updated.notes is None
    assert updated.credit_limit == 500.0
    assert updated.name == created.name
    assert updated.created_at == created.created_at
    assert store.accounts.get("a1") == updated


def test_list_active_filters_by_budget_type(store, profile_id) -> None:
    store.categories.create(Category("groceries", "p1", "Groceries", "household", "needs"))
    store.categories.create(Category("ads", "p1", "Ads", "business", "online_marketing"))

    household = store.categories.list_active(profile_id, budget_type="household")

    assert [c.id for c in household] == ["groceries"]
    with pytest.raises(ValueError):
        store.project_statuses.list_active(profile_id, budget_type="household")


def test_set_budget_replaces_in_place(store, profile_id) -> None:
    first = store.monthly_budgets.set_budget(profile_id, "2024-05", "household", "groceries", 400.0)
    second = store.monthly_budgets.set_budget(profile_id, "2024-05", "household", "groceries", 450.0)

    records = store.monthly_budgets.list(profile_id)
    assert len(records) == 1
    assert second.amount == 450.0
    assert second.id == first.id == "p1-2024-05-groceries"
    assert second.created_at == first.created_at

    assert store.monthly_budgets.clear_budget(profile_id, "2024-05", "groceries") is True
    assert store.monthly_budgets.clear_budget(profile_id, "2024-05", "groceries") is False
    assert store.monthly_budgets.list(profile_id, month="2024-05") == []


def test_upsert_for_sync_keeps_incoming_state(store, profile_id) -> None:
    store.accounts.create(_account("a1"))
    current = store.accounts.get_for_sync("a1")

    assert store.accounts.upsert_for_sync(current) == "updated"
    assert store.accounts.get_for_sync("a1") == current

    incoming = _account(
        "a9",
        created_at="2024-01-01T00:00:00.000Z",
        updated_at="2024-02-01T00:00:00.000Z",
        state=Deleted("2024-02-01T00:00:00.000Z"),
    )
    assert store.accounts.upsert_for_sync(incoming) == "inserted"
    assert store.accounts.get_for_sync("a9") == incoming
    assert store.accounts.get("a9") is None


def test_transaction_filters(store, profile_id) -> None:
    store.transactions.create(_txn("t1", "2024-05-01", -10.0))
    store.transactions.create(_txn("t2", "2024-05-15T09:30:00", -20.0, project_id="proj"))
    store.transactions.create(_txn("t3", "2024-05-31", -30.0, account_id="a2", to_account_id="a1"))
    store.transactions.create(_txn("t4", "2024-06-01", -40.0, category_id="dining"))
    store.transactions.create(_txn("t5", "2024-05-20", 50.0, budget_type="business", account_id="b1"))

    may = store.transactions.list_active(profile_id, budget_type="household",
                                         start_date="2024-05-01", end_date="2024-05-31")
    assert [t.id for t in may] == ["t3", "t2", "t1"]

    assert {t.id for t in store.transactions.list_active(profile_id, account_id="a1")} == {"t1", "t2", "t3", "t4"}
    assert [t.id for t in store.transactions.list_active(profile_id, category_id="dining")] == ["t4"]
    assert [t.id for t in store.transactions.list_active(profile_id, project_id="proj")] == ["t2"]
    assert len(store.transactions.list_active(profile_id, limit=2)) == 2


def test_project_type_allowed_statuses_round_trip(store, profile_id) -> None:
    store.project_statuses.create(ProjectStatus("s1", "p1", "Quoted"))
    created = store.project_types.create(
        ProjectType("pt1", "p1", "Gig", "business", allowed_statuses=("s1", "s2", "s1"))
    )

    loaded = store.project_types.get("pt1")
    assert loaded.allowed_statuses == ("s1", "s2")
    assert loaded == created
    assert loaded.allows("s2")


def test_seed_defaults_is_idempotent(store, profile_id) -> None:
    assert store.seed_defaults(profile_id) == 15
    assert store.seed_defaults(profile_id) == 0

    statuses = store.project_statuses.list_active(profile_id)
    types = store.project_types.list_active(profile_id, budget_type="business")
    assert len(statuses) == 9
    assert {t.name for t in types} == {"Performance", "Craft"}


def test_rules_are_hard_deleted(store, profile_id) -> None:
    rule = store.rules.create(AutoCategorizationRule("", "p1", "COSTCO", "groceries"))
    store.rules.update(rule.id, RulePatch(is_active=False))

    assert store.rules.list(profile_id, active_only=True) == []
    assert store.rules.get(rule.id).is_active is False

    store.rules.delete(rule.id)
    assert store.rules.get(rule.id) is None
    with pytest.raises(NotFound):
        store.rules.delete(rule.id)


def test_update_settings(store, profile_id) -> None:
    updated = store.update_settings(profile_id, SettingsPatch(household_needs_percentage=60.0, track_business=False))

    assert updated.household_needs_percentage == 60.0
    assert store.get_settings(profile_id) == updated
    assert store.get_settings(profile_id).track_business is False


def test_delete_profile_cascades(store, profile_id) -> None:
    store.accounts.create(_account("a1"))
    store.monthly_budgets.set_budget(profile_id, "2024-05", "household", "groceries", 100.0)

    store.delete_profile(profile_id)

    assert store.get_profile(profile_id) is None
    assert store.accounts.list_all_for_sync(profile_id) == []
    assert store.monthly_budgets.list(profile_id) == []
    with pytest.raises(NotFound):
        store.get_settings(profile_id)
    with pytest.raises(NotFound):
        store.delete_profile(profile_id)


def test_migration_adds_deleted_at_column(tmp_path) -> None:
    path = tmp_path / "old.db"
    conn = sqlite3.connect(path)
    conn.execute(
        "CREATE TABLE accounts (id TEXT PRIMARY KEY, profile_id TEXT NOT NULL, name TEXT NOT NULL, "
        "budget_type TEXT NOT NULL, account_type TEXT NOT NULL, balance REAL NOT NULL DEFAULT 0, "
        "interest_rate REAL, credit_limit REAL, payment_due_day INTEGER, minimum_payment REAL, "
        "website_url TEXT, notes TEXT, created_at TEXT NOT NULL, updated_at TEXT NOT NULL)"
    )
    conn.commit()
    conn.close()

    with LedgerStore(path) as ledger:
        columns = {row["name"] for row in ledger.query("PRAGMA table_info(accounts)")}
        assert "deleted_at" in columns
        ledger.create_profile("Migrated", profile_id="p1")
        ledger.accounts.create(_account("a1"))
        assert [a.id for a in ledger.accounts.list_active("p1")] == ["a1"]


def test_list_active_can_include_deleted(store, profile_id) -> None:
    store.categories.create(Category("groceries", "p1", "Groceries", "household", "needs"))
    store.categories.create(Category("old", "p1", "Old", "household", "wants"))
    store.categories.soft_delete("old")

    assert [c.id for c in store.categories.list_active(profile_id)] == ["groceries"]
    everything = store.categories.list_active(profile_id, budget_type="household", include_deleted=True)
    assert {c.id: c.is_deleted for c in everything} == {"groceries": False, "old": True}


def test_upsert_for_sync_rejects_record_from_another_profile(store, profile_id) -> None:
    original = store.accounts.create(_account("a1"))
    foreign = _account("a1", profile_id="p2", name="Hijacked", updated_at="2099-01-01T00:00:00.000Z")

    with pytest.raises(ConstraintViolation):
        store.accounts.upsert_for_sync(foreign)

    assert store.accounts.get("a1") == original
