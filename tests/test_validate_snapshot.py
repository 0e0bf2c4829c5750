from __future__ import annotations

import importlib.util
import json
from pathlib import Path

from dual_budget.db import LedgerStore
from dual_budget.sync import export_snapshot

SCRIPT = Path(__file__).resolve().parents[1] / "scripts" / "validate_snapshot.py"


def _load_script():
    spec = importlib.util.spec_from_file_location("validate_snapshot", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def test_exported_snapshot_is_valid(tmp_path) -> None:
    validator = _load_script()
    with LedgerStore(tmp_path / "ledger.db") as store:
        store.create_profile("Home", profile_id="p1")
        store.seed_defaults("p1")
        path = export_snapshot(store, "p1", tmp_path / "p1.json")

    assert validator.validate_snapshot(path) == {}


def test_foreign_records_are_reported(tmp_path) -> None:
    validator = _load_script()
    path = tmp_path / "bad.json"
    record = {"id": "a1", "profile_id": "p2", "created_at": "x", "updated_at": "x"}
    path.write_text(json.dumps({"profile": {"id": "p1"}, "entities": {"accounts": [record, {"id": "a2"}]}}))

    result = validator.validate_snapshot(path)

    assert "entities.accounts[0] belongs to profile p2" in result["errors"]
    assert "entities.accounts[1] missing profile_id, created_at, updated_at" in result["errors"]
