from __future__ import annotations

import pytest

from dual_budget.cli import parse_args, run
from dual_budget.db import LedgerStore
from dual_budget.models import Category, Transaction


def _init(db_path) -> str:
    return run(["--db", str(db_path), "init", "Home", "--profile-id", "p1"])


def _add_history(db_path) -> None:
    with LedgerStore(db_path) as store:
        store.categories.create(Category("salary", "p1", "Salary", "household", "savings", is_income_category=True))
        store.categories.create(Category("c", "p1", "Coffee", "household", "wants"))
        store.categories.create(Category("d", "p1", "Dining", "household", "wants"))
        rows = [
            ("s1", "2025-01-01", 4000.0, "salary"),
            ("g1", "2025-01-15", -250.0, "d"),
            ("c1", "2024-08-05", -100.0, "c"),
            ("c2", "2024-09-05", -120.0, "c"),
            ("c3", "2024-10-05", -140.0, "c"),
            ("d1", "2024-08-06", -480.0, "d"),
            ("d2", "2024-09-06", -480.0, "d"),
            ("d3", "2024-10-06", -480.0, "d"),
        ]
        for txn_id, day, amount, category_id in rows:
            store.transactions.create(Transaction(txn_id, "p1", day, amount, category_id, "household", "a1"))


def test_init_creates_and_seeds_profile(tmp_path) -> None:
    db_path = tmp_path / "ledger.db"

    output = _init(db_path)

    assert "Created profile Home (p1)" in output
    assert "Seeded 15 default project statuses and types" in output
    with LedgerStore(db_path) as store:
        assert store.get_profile("p1").name == "Home"


def test_summary_reports_buckets(tmp_path) -> None:
    db_path = tmp_path / "ledger.db"
    _init(db_path)
    _add_history(db_path)

    output = run(["--db", str(db_path), "summary", "p1", "--month", "2025-01"])

    assert "Household budget for 2025-01" in output
    assert "Income:    $4,000.00" in output
    assert "Expenses:  $250.00" in output
    assert "Wants" in output
    assert "Dining" in output


def test_suggest_can_save_overrides(tmp_path) -> None:
    db_path = tmp_path / "ledger.db"
    _init(db_path)
    _add_history(db_path)

    output = run(["--db", str(db_path), "suggest", "p1", "--month", "2025-01", "--income", "3000", "--apply"])

    assert "Saved 2 monthly overrides" in output
    with LedgerStore(db_path) as store:
        saved = {b.category_id: b.amount for b in store.monthly_budgets.list("p1", month="2025-01")}
    assert saved == {"c": 600.0, "d": 2400.0}


def test_export_then_import_into_new_database(tmp_path) -> None:
    db_path = tmp_path / "ledger.db"
    snapshot = tmp_path / "p1.json"
    _init(db_path)
    _add_history(db_path)

    assert "Wrote snapshot" in run(["--db", str(db_path), "export", "p1", "--output", str(snapshot)])
    output = run(["--db", str(tmp_path / "copy.db"), "import", str(snapshot)])

    assert "Import complete" in output
    assert "transactions: inserted=8" in output
    with LedgerStore(tmp_path / "copy.db") as copy:
        assert len(copy.transactions.list_active("p1")) == 8


def test_sync_pulls_from_other_database(tmp_path) -> None:
    other = tmp_path / "other.db"
    _init(other)
    _add_history(other)

    output = run(["--db", str(tmp_path / "local.db"), "sync", "p1", str(other)])

    assert "categories: inserted=3" in output


def test_unknown_profile_exits(tmp_path) -> None:
    with pytest.raises(SystemExit):
        run(["--db", str(tmp_path / "ledger.db"), "summary", "nobody"])


def test_invalid_month_is_an_argument_error() -> None:
    with pytest.raises(SystemExit):
        parse_args(["summary", "p1", "--month", "2025-13"])


def test_summary_keeps_deleted_transfer_category_excluded(tmp_path) -> None:
    db_path = tmp_path / "ledger.db"
    _init(db_path)
    with LedgerStore(db_path) as store:
        store.categories.create(
            Category("xfer", "p1", "Transfers", "household", "needs", exclude_from_budget=True)
        )
        store.transactions.create(Transaction("in", "p1", "2025-01-02", 1000.0, "xfer", "household", "a1"))
        store.transactions.create(Transaction("out", "p1", "2025-01-03", -800.0, "xfer", "household", "a1"))
        store.categories.soft_delete("xfer")

    output = run(["--db", str(db_path), "summary", "p1", "--month", "2025-01"])

    assert "Expenses:  $0.00" in output
    assert "Uncategorized" not in output
