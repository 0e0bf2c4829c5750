#!/usr/bin/env python3
"""Lightweight validator for ledger snapshot JSON files."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Dict, List

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dual_budget import config
from dual_budget.sync import SYNCED_ENTITIES

REQUIRED_FIELDS = ('id', 'profile_id', 'created_at', 'updated_at')


def validate_snapshot(path: Path) -> Dict[str, str]:
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)

    errors: List[str] = []
    profile = data.get("profile") or {}
    profile_id = profile.get("id")
    if not profile_id:
        errors.append("missing profile.id")

    entities = data.get("entities")
    if not isinstance(entities, dict):
        errors.append("entities block must be a dictionary")
        entities = {}

    for name in list(SYNCED_ENTITIES) + ["monthly_budgets"]:
        records = entities.get(name, [])
        if not isinstance(records, list):
            errors.append(f"entities.{name} must be a list")
            continue
        for index, record in enumerate(records):
            missing = [key for key in REQUIRED_FIELDS if not record.get(key)]
            if missing:
                errors.append(f"entities.{name}[{index}] missing {', '.join(missing)}")
            elif profile_id and record["profile_id"] != profile_id:
                errors.append(f"entities.{name}[{index}] belongs to profile {record['profile_id']}")

    if errors:
        return {"name": path.name, "errors": "; ".join(errors)}
    return {}


def main() -> int:
    target = Path(sys.argv[1]) if len(sys.argv) > 1 else config.SNAPSHOT_DIR
    paths = [target] if target.is_file() else sorted(target.glob("*.json"))
    if not paths:
        print(f"No snapshots found at: {target}")
        return 1

    issues = []
    for path in paths:
        result = validate_snapshot(path)
        if result:
            issues.append((path.name, result["errors"]))

    if issues:
        print("Snapshot validation failed:")
        for filename, message in issues:
            print(f"  - {filename}: {message}")
        return 1

    print("All snapshots validated successfully.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
