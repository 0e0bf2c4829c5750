"""Reconcile two ledger stores, or a store and a JSON snapshot.

Records are copied whole through the for-sync paths, soft-deleted ones
included.  By default the incoming record always wins.  With
``newer_only=True`` a record is applied only when its ``updated_at`` is
later than the local copy's (or either timestamp is missing).
"""

from __future__ import annotations

import json
import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union

import pandas as pd

from .config import SCHEMA_VERSION
from .db import LedgerStore
from .errors import NotFound, SyncInProgress
from .models import (
    Account,
    Category,
    IncomeSource,
    MonthlyBudget,
    Profile,
    Project,
    ProjectStatus,
    ProjectType,
    Settings,
    Transaction,
    state_from_column,
    utc_now,
)

logger = logging.getLogger(__name__)

# Parents before children
SYNCED_ENTITIES: Tuple[str, ...] = (
    'project_statuses',
    'project_types',
    'accounts',
    'categories',
    'income_sources',
    'projects',
    'transactions',
)

RECORD_TYPES: Dict[str, type] = {
    'project_statuses': ProjectStatus,
    'project_types': ProjectType,
    'accounts': Account,
    'categories': Category,
    'income_sources': IncomeSource,
    'projects': Project,
    'transactions': Transaction,
    'monthly_budgets': MonthlyBudget,
}

OUTCOMES = ('inserted', 'updated', 'unchanged', 'skipped')

_active_passes: set = set()
_passes_lock = threading.Lock()


@dataclass
class SyncReport:
    """Per-entity counts of what a reconciliation pass did."""

    profile_id: str
    counts: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def record(self, entity: str, outcome: str) -> None:
        bucket = self.counts.setdefault(entity, {name: 0 for name in OUTCOMES})
        bucket[outcome] += 1

    def total(self, outcome: str) -> int:
        return sum(bucket.get(outcome, 0) for bucket in self.counts.values())

    @property
    def changed(self) -> int:
        return self.total('inserted') + self.total('updated')

    def merge(self, other: 'SyncReport') -> 'SyncReport':
        merged = SyncReport(self.profile_id)
        for report in (self, other):
            for entity, bucket in report.counts.items():
                for outcome, count in bucket.items():
                    target = merged.counts.setdefault(entity, {name: 0 for name in OUTCOMES})
                    target[outcome] += count
        return merged

    def summary_lines(self) -> List[str]:
        lines = []
        for entity in list(SYNCED_ENTITIES) + ['monthly_budgets']:
            bucket = self.counts.get(entity)
            if bucket:
                parts = ', '.join(f"{name}={bucket[name]}" for name in OUTCOMES)
                lines.append(f"{entity}: {parts}")
        return lines


@contextmanager
def _sync_guard(profile_id: str) -> Iterator[None]:
    with _passes_lock:
        if profile_id in _active_passes:
            logger.warning("Sync already in progress for profile %s", profile_id)
            raise SyncInProgress(f"A sync pass is already running for profile {profile_id}")
        _active_passes.add(profile_id)
    try:
        yield
    finally:
        with _passes_lock:
            _active_passes.discard(profile_id)


def _timestamp(value: Optional[str]) -> Optional[pd.Timestamp]:
    if not value:
        return None
    ts = pd.Timestamp(value)
    return ts.tz_localize('UTC') if ts.tzinfo is None else ts


def is_newer(incoming: Optional[str], existing: Optional[str]) -> bool:
    """True when ``incoming`` should replace ``existing`` under the timestamp gate."""
    incoming_ts, existing_ts = _timestamp(incoming), _timestamp(existing)
    if incoming_ts is None or existing_ts is None:
        return True
    return incoming_ts > existing_ts


# ---------------------------------------------------------------------------
# Record (de)serialization
# ---------------------------------------------------------------------------


def record_to_dict(record: Any) -> Dict[str, Any]:
    data = asdict(record)
    if 'state' in data:
        data.pop('state')
        data['deleted_at'] = record.deleted_at
    if 'allowed_statuses' in data:
        data['allowed_statuses'] = list(data['allowed_statuses'])
    return data


def record_from_dict(record_type: type, data: Mapping[str, Any]) -> Any:
    names = {f.name for f in fields(record_type)}
    kwargs = {key: value for key, value in data.items() if key in names and key != 'state'}
    if 'state' in names:
        kwargs['state'] = state_from_column(data.get('deleted_at'))
    if 'allowed_statuses' in kwargs:
        kwargs['allowed_statuses'] = tuple(kwargs['allowed_statuses'] or ())
    return record_type(**kwargs)


# ---------------------------------------------------------------------------
# Applying records
# ---------------------------------------------------------------------------


def _apply_records(
    target: LedgerStore,
    entity: str,
    records: Iterable[Any],
    report: SyncReport,
    newer_only: bool,
) -> None:
    repo = target.monthly_budgets if entity == 'monthly_budgets' else target.repository(entity)
    for record in records:
        existing = repo.get_for_sync(record.id)
        if existing == record:
            outcome = 'unchanged'
        elif newer_only and existing is not None and not is_newer(record.updated_at, existing.updated_at):
            outcome = 'skipped'
        else:
            outcome = repo.upsert_for_sync(record)
        logger.debug("%s %s -> %s", entity, record.id, outcome)
        report.record(entity, outcome)


def _apply_profile(
    target: LedgerStore,
    profile: Profile,
    settings: Optional[Settings],
    newer_only: bool,
) -> None:
    existing = target.get_profile(profile.id)
    if existing is not None and newer_only and not is_newer(profile.updated_at, existing.updated_at):
        return
    target.upsert_profile_for_sync(profile, settings)


def _apply_payload(
    target: LedgerStore,
    profile: Profile,
    settings: Optional[Settings],
    entities: Mapping[str, List[Any]],
    newer_only: bool,
) -> SyncReport:
    report = SyncReport(profile.id)
    with _sync_guard(profile.id):
        logger.info("Sync pass for profile %s into %s (newer_only=%s)", profile.id, target.db_path, newer_only)
        with target.transaction():
            _apply_profile(target, profile, settings, newer_only)
            for entity in list(SYNCED_ENTITIES) + ['monthly_budgets']:
                _apply_records(target, entity, entities.get(entity, ()), report, newer_only)
    logger.info(
        "Sync pass for profile %s finished: %d inserted, %d updated, %d skipped",
        profile.id, report.total('inserted'), report.total('updated'), report.total('skipped'),
    )
    return report


def _collect(source: LedgerStore, profile_id: str) -> Dict[str, List[Any]]:
    entities: Dict[str, List[Any]] = {
        name: source.repository(name).list_all_for_sync(profile_id) for name in SYNCED_ENTITIES
    }
    entities['monthly_budgets'] = source.monthly_budgets.list_all_for_sync(profile_id)
    return entities


def reconcile(
    source: LedgerStore,
    target: LedgerStore,
    profile_id: str,
    *,
    newer_only: bool = False,
) -> SyncReport:
    """Copy every for-sync record of ``profile_id`` from ``source`` into ``target``.

    Raises:
        NotFound: If ``source`` has no such profile
        SyncInProgress: If a pass for the profile is already running
    """
    profile = source.get_profile(profile_id)
    if profile is None:
        raise NotFound('profiles', profile_id)
    settings = source.get_settings(profile_id)
    return _apply_payload(target, profile, settings, _collect(source, profile_id), newer_only)


def sync_both_ways(a: LedgerStore, b: LedgerStore, profile_id: str) -> SyncReport:
    """Push ``a`` into ``b`` then ``b`` into ``a``, newest record winning both ways."""
    if b.get_profile(profile_id) is None:
        first = reconcile(a, b, profile_id)
    else:
        first = reconcile(a, b, profile_id, newer_only=True)
    second = reconcile(b, a, profile_id, newer_only=True)
    return first.merge(second)


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------


def build_snapshot(store: LedgerStore, profile_id: str) -> Dict[str, Any]:
    profile = store.get_profile(profile_id)
    if profile is None:
        raise NotFound('profiles', profile_id)
    entities = _collect(store, profile_id)
    return {
        'schema_version': SCHEMA_VERSION,
        'exported_at': utc_now(),
        'profile': asdict(profile),
        'settings': asdict(store.get_settings(profile_id)),
        'entities': {name: [record_to_dict(r) for r in records] for name, records in entities.items()},
    }


def export_snapshot(store: LedgerStore, profile_id: str, path: Union[str, Path]) -> Path:
    """Write all for-sync records of a profile to a JSON file."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = build_snapshot(store, profile_id)
    with target.open('w', encoding='utf-8') as handle:
        json.dump(payload, handle, indent=2, sort_keys=True)
    logger.info("Exported profile %s snapshot to %s", profile_id, target)
    return target


def load_snapshot(path: Union[str, Path]) -> Dict[str, Any]:
    with Path(path).open('r', encoding='utf-8') as handle:
        data = json.load(handle)
    if not isinstance(data, dict) or 'profile' not in data:
        raise ValueError(f"{path} is not a ledger snapshot")
    return data


def import_snapshot(store: LedgerStore, path: Union[str, Path], *, newer_only: bool = False) -> SyncReport:
    """Apply a snapshot written by :func:`export_snapshot` through the for-sync paths."""
    data = load_snapshot(path)
    profile = record_from_dict(Profile, data['profile'])
    settings = record_from_dict(Settings, data['settings']) if data.get('settings') else None
    entities = {
        name: [record_from_dict(RECORD_TYPES[name], item) for item in items]
        for name, items in (data.get('entities') or {}).items()
        if name in RECORD_TYPES
    }
    return _apply_payload(store, profile, settings, entities, newer_only)
