"""Command line entry point for the dual budget engine."""

from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Iterable, List, Optional

import pandas as pd

from . import config
from .aggregation import bucket_frame, budget_summary_frame, compute_budget_summary
from .buckets import catalog_for_settings, default_catalog
from .db import LedgerStore
from .errors import DualBudgetError
from .forecast import suggest_budgets
from .models import BUDGET_TYPES, BUSINESS, HOUSEHOLD
from .periods import current_month, validate_month
from .sync import export_snapshot, import_snapshot, reconcile, sync_both_ways

logger = logging.getLogger(__name__)


def _month(value: str) -> str:
    try:
        return validate_month(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog='dual-budget',
        description="Household and business budget summaries, forecasts and ledger sync.",
    )
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Ledger database file (default: DUAL_BUDGET_DB_PATH or data/dual-budget.db).",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: DUAL_BUDGET_LOG_LEVEL or INFO).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Create a profile with default settings and project types.")
    init.add_argument("name", help="Profile name.")
    init.add_argument("--profile-id", help="Use this id instead of a generated one.")
    init.add_argument("--description")
    init.add_argument("--no-seed", action="store_true", help="Skip default project statuses and types.")

    summary = sub.add_parser("summary", help="Show the bucket/category summary for a month.")
    summary.add_argument("profile_id")
    summary.add_argument("--budget-type", choices=BUDGET_TYPES, default=HOUSEHOLD)
    summary.add_argument("--month", type=_month, help="YYYY-MM (default: current month).")

    suggest = sub.add_parser("suggest", help="Suggest category budgets from trailing spend.")
    suggest.add_argument("profile_id")
    suggest.add_argument("--budget-type", choices=BUDGET_TYPES, default=HOUSEHOLD)
    suggest.add_argument("--month", type=_month, help="Month to plan, YYYY-MM (default: current month).")
    suggest.add_argument(
        "--income",
        type=float,
        help="Expected income for the month (default: the profile's income/revenue baseline).",
    )
    suggest.add_argument(
        "--window",
        type=int,
        default=config.FORECAST_WINDOW_MONTHS,
        help=f"Trailing months to average (default: {config.FORECAST_WINDOW_MONTHS}).",
    )
    suggest.add_argument("--apply", action="store_true", help="Save suggestions as monthly overrides.")

    sync = sub.add_parser("sync", help="Reconcile a profile with another ledger database.")
    sync.add_argument("profile_id")
    sync.add_argument("other_db", type=Path, help="The other device's ledger database.")
    sync.add_argument("--both", action="store_true", help="Sync in both directions, newest record winning.")
    sync.add_argument("--newer-only", action="store_true", help="Only apply records newer than the local copy.")

    export = sub.add_parser("export", help="Write a profile snapshot to JSON.")
    export.add_argument("profile_id")
    export.add_argument("--output", type=Path, help="Snapshot file (default: SNAPSHOT_DIR/<profile>.json).")

    imp = sub.add_parser("import", help="Apply a JSON snapshot to the ledger.")
    imp.add_argument("snapshot", type=Path)
    imp.add_argument("--newer-only", action="store_true", help="Only apply records newer than the local copy.")

    return parser.parse_args(argv)


def _money(value: float) -> str:
    return f"{value:,.2f}"


def _frame_text(df: pd.DataFrame) -> str:
    if df.empty:
        return "(none)"
    return df.to_string(index=False, float_format=_money)


def _cmd_init(store: LedgerStore, args: argparse.Namespace) -> str:
    profile = store.create_profile(args.name, description=args.description, profile_id=args.profile_id)
    lines = [f"Created profile {profile.name} ({profile.id})"]
    if not args.no_seed:
        seeded = store.seed_defaults(profile.id)
        lines.append(f"Seeded {seeded} default project statuses and types")
    return "\n".join(lines)


def _require_profile(store: LedgerStore, profile_id: str) -> None:
    if store.get_profile(profile_id) is None:
        raise SystemExit(f"Profile not found: {profile_id}")


def _cmd_summary(store: LedgerStore, args: argparse.Namespace) -> str:
    _require_profile(store, args.profile_id)
    month = args.month or current_month()
    settings = store.get_settings(args.profile_id)
    catalog = catalog_for_settings(settings, default_catalog())
    transactions = store.transactions.list_active(args.profile_id, args.budget_type)
    categories = store.categories.list_active(args.profile_id, args.budget_type, include_deleted=True)
    overrides = store.monthly_budgets.list(args.profile_id, month=month)

    summary = compute_budget_summary(transactions, categories, args.budget_type, month, catalog, overrides)
    currency = settings.currency_symbol
    lines = [
        f"{args.budget_type.title()} budget for {month}",
        f"  Income:    {currency}{_money(summary.total_income)}",
        f"  Expenses:  {currency}{_money(summary.total_expenses)}",
        f"  Remaining: {currency}{_money(summary.remaining_budget)}",
        "",
        "Buckets",
        _frame_text(bucket_frame(summary)),
        "",
        "Categories",
        _frame_text(budget_summary_frame(summary)),
    ]
    return "\n".join(lines)


def _cmd_suggest(store: LedgerStore, args: argparse.Namespace) -> str:
    _require_profile(store, args.profile_id)
    month = args.month or current_month()
    settings = store.get_settings(args.profile_id)
    income = args.income
    if income is None:
        income = (
            settings.business_monthly_revenue_baseline
            if args.budget_type == BUSINESS
            else settings.household_monthly_income_baseline
        )
    categories = store.categories.list_active(args.profile_id, args.budget_type, include_deleted=True)
    history = store.transactions.list_active(args.profile_id, args.budget_type)
    overrides = store.monthly_budgets.list(args.profile_id, month=month)

    suggestions = suggest_budgets(
        history, categories, income, month, overrides,
        budget_type=args.budget_type, window_months=args.window,
    )
    if not suggestions:
        return f"No spending in the {args.window} months before {month}; keep category defaults."

    names = {c.id: c.name for c in categories}
    frame = pd.DataFrame(
        [{'Category': names.get(cid, cid), 'Suggested': amount} for cid, amount in suggestions.items()]
    )
    lines = [f"Suggested {args.budget_type} budgets for {month} (income {_money(income)})", _frame_text(frame)]

    if args.apply:
        with store.transaction():
            for category_id, amount in suggestions.items():
                store.monthly_budgets.set_budget(args.profile_id, month, args.budget_type, category_id, amount)
        lines.append(f"Saved {len(suggestions)} monthly overrides")
    return "\n".join(lines)


def _cmd_sync(store: LedgerStore, args: argparse.Namespace) -> str:
    if not args.other_db.exists():
        raise SystemExit(f"Database not found: {args.other_db}")
    with LedgerStore(args.other_db) as other:
        if args.both:
            report = sync_both_ways(other, store, args.profile_id)
        else:
            report = reconcile(other, store, args.profile_id, newer_only=args.newer_only)
    return "\n".join(["Sync complete"] + report.summary_lines())


def _cmd_export(store: LedgerStore, args: argparse.Namespace) -> str:
    output = args.output or (config.SNAPSHOT_DIR / f"{args.profile_id}.json")
    path = export_snapshot(store, args.profile_id, output)
    return f"Wrote snapshot to {path}"


def _cmd_import(store: LedgerStore, args: argparse.Namespace) -> str:
    if not args.snapshot.exists():
        raise SystemExit(f"Snapshot not found: {args.snapshot}")
    report = import_snapshot(store, args.snapshot, newer_only=args.newer_only)
    return "\n".join(["Import complete"] + report.summary_lines())


COMMANDS = {
    'init': _cmd_init,
    'summary': _cmd_summary,
    'suggest': _cmd_suggest,
    'sync': _cmd_sync,
    'export': _cmd_export,
    'import': _cmd_import,
}


def run(argv: Optional[Iterable[str]] = None) -> str:
    args = parse_args(argv)
    config.configure_logging(args.log_level)
    db_path = args.db or config.get_db_path()
    try:
        with LedgerStore(db_path) as store:
            output_text = COMMANDS[args.command](store, args)
    except DualBudgetError as exc:
        logger.error("%s failed: %s", args.command, exc)
        raise SystemExit(f"{args.command} failed: {exc}") from exc
    print(output_text)
    return output_text


def main(argv: Optional[List[str]] = None) -> None:
    run(argv)


if __name__ == "__main__":
    main()
