"""Bucket catalog: the fixed set of top-level spending buckets per budget type.

The catalog is built once (from ``buckets.json`` by default) and passed to
the engine explicitly.  It is immutable after construction.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple, Union

from . import config
from .models import BUDGET_TYPES, HOUSEHOLD, Settings


@dataclass(frozen=True)
class Bucket:
    id: str
    name: str
    budget_type: str
    target_percentage: Optional[float] = None


class BucketCatalog:
    """Ordered, read-only mapping of budget type to its buckets."""

    def __init__(self, buckets: Iterable[Bucket]):
        grouped: Dict[str, Tuple[Bucket, ...]] = {budget_type: () for budget_type in BUDGET_TYPES}
        for bucket in buckets:
            if bucket.budget_type not in grouped:
                raise ValueError(f"Unknown budget type for bucket {bucket.id!r}: {bucket.budget_type!r}")
            if any(existing.id == bucket.id for existing in grouped[bucket.budget_type]):
                raise ValueError(f"Duplicate bucket id {bucket.id!r} for {bucket.budget_type}")
            grouped[bucket.budget_type] = grouped[bucket.budget_type] + (bucket,)
        self._buckets: Mapping[str, Tuple[Bucket, ...]] = MappingProxyType(grouped)

    def buckets_for(self, budget_type: str) -> Tuple[Bucket, ...]:
        return self._buckets.get(budget_type, ())

    def bucket_ids(self, budget_type: str) -> Tuple[str, ...]:
        return tuple(bucket.id for bucket in self.buckets_for(budget_type))

    def get(self, budget_type: str, bucket_id: str) -> Optional[Bucket]:
        for bucket in self.buckets_for(budget_type):
            if bucket.id == bucket_id:
                return bucket
        return None

    def contains(self, budget_type: str, bucket_id: str) -> bool:
        return self.get(budget_type, bucket_id) is not None

    def with_targets(self, budget_type: str, targets: Mapping[str, Optional[float]]) -> 'BucketCatalog':
        """Return a new catalog with target percentages replaced for ``budget_type``."""
        updated = []
        for bt in BUDGET_TYPES:
            for bucket in self.buckets_for(bt):
                if bt == budget_type and bucket.id in targets:
                    bucket = replace(bucket, target_percentage=targets[bucket.id])
                updated.append(bucket)
        return BucketCatalog(updated)

    def __iter__(self):
        for budget_type in BUDGET_TYPES:
            yield from self.buckets_for(budget_type)

    def __repr__(self) -> str:
        counts = ', '.join(f"{bt}={len(self.buckets_for(bt))}" for bt in BUDGET_TYPES)
        return f"BucketCatalog({counts})"


def catalog_from_dict(data: Mapping[str, Any]) -> BucketCatalog:
    buckets = []
    for budget_type in BUDGET_TYPES:
        for entry in data.get(budget_type, []):
            target = entry.get('target_percentage')
            buckets.append(Bucket(
                id=entry['id'],
                name=entry['name'],
                budget_type=budget_type,
                target_percentage=float(target) if target is not None else None,
            ))
    return BucketCatalog(buckets)


def load_bucket_catalog(path: Optional[Union[str, Path]] = None) -> BucketCatalog:
    """Load the bucket catalog from JSON.

    Args:
        path: Catalog file. Defaults to ``config.BUCKETS_FILE``.
    """
    return catalog_from_dict(config.load_json_config(path or config.BUCKETS_FILE))


def default_catalog() -> BucketCatalog:
    """Catalog shipped with the package."""
    return load_bucket_catalog(config.BUCKETS_FILE)


def catalog_for_settings(settings: Settings, catalog: BucketCatalog) -> BucketCatalog:
    """Apply a profile's household needs/wants/savings percentages to the catalog."""
    return catalog.with_targets(HOUSEHOLD, {
        'needs': settings.household_needs_percentage,
        'wants': settings.household_wants_percentage,
        'savings': settings.household_savings_percentage,
    })
