"""Top-level package for the dual (household/business) budget engine.

The primary modules are:

* ``aggregation`` - roll a month of transactions up into bucket/category summaries
* ``overrides`` - resolve per-month budget overrides against category defaults
* ``forecast`` - suggest next-month budgets from trailing spend
* ``db`` - the SQLite ledger store with active and for-sync read paths
* ``sync`` - reconcile two ledgers, or a ledger and a JSON snapshot

To use the command line interface:

```bash
dual-budget init "My Budget"
dual-budget summary <profile-id> --budget-type household --month 2025-01
```
"""

from .aggregation import BudgetSummary, compute_budget_summary
from .buckets import BucketCatalog, load_bucket_catalog
from .db import LedgerStore
from .forecast import suggest_budgets
from .overrides import OverrideIndex, resolve_budget

__all__ = [
    "BucketCatalog",
    "BudgetSummary",
    "LedgerStore",
    "OverrideIndex",
    "compute_budget_summary",
    "load_bucket_catalog",
    "resolve_budget",
    "suggest_budgets",
]
