"""Vendor-pattern rules for automatically assigning transaction categories."""

from __future__ import annotations

import logging
import re
from typing import Dict, Iterable, List, Optional, Sequence

from .models import AutoCategorizationRule, Transaction, TransactionPatch

logger = logging.getLogger(__name__)


def rule_applies_to(rule: AutoCategorizationRule, budget_type: str) -> bool:
    return rule.budget_type in ('both', budget_type)


def rule_matches(rule: AutoCategorizationRule, description: str) -> bool:
    """Substring match of the vendor pattern against a description."""
    if not rule.vendor_pattern or not description:
        return False
    flags = 0 if rule.case_sensitive else re.IGNORECASE
    return re.search(re.escape(rule.vendor_pattern), description, flags) is not None


def match_rule(
    description: str,
    budget_type: str,
    rules: Sequence[AutoCategorizationRule],
) -> Optional[AutoCategorizationRule]:
    """Return the first active rule matching ``description``, or None.

    Example:
        >>> rule = AutoCategorizationRule('r1', 'p1', 'starbucks', 'cat-coffee')
        >>> match_rule('STARBUCKS #123', 'household', [rule]).category_id
        'cat-coffee'
    """
    for rule in rules:
        if not rule.is_active or not rule_applies_to(rule, budget_type):
            continue
        if rule_matches(rule, description):
            return rule
    return None


def categorize(
    transactions: Iterable[Transaction],
    rules: Sequence[AutoCategorizationRule],
    only_category_ids: Optional[Iterable[str]] = None,
) -> Dict[str, str]:
    """Map transaction id to the category id suggested by the rules.

    Args:
        transactions: Transactions to examine
        rules: Rules in priority order
        only_category_ids: When given, only transactions currently in one of
            these categories (e.g. an "Uncategorized" placeholder) are considered

    Returns:
        Transaction ids whose category would change, with the new category id
    """
    restrict = set(only_category_ids) if only_category_ids is not None else None
    assignments: Dict[str, str] = {}
    for txn in transactions:
        if restrict is not None and txn.category_id not in restrict:
            continue
        rule = match_rule(txn.description, txn.budget_type, rules)
        if rule is not None and rule.category_id != txn.category_id:
            assignments[txn.id] = rule.category_id
    return assignments


def apply_rules(store, profile_id: str, only_category_ids: Optional[Iterable[str]] = None) -> List[str]:
    """Recategorize a profile's active transactions in the store.

    Returns:
        Ids of the transactions that were updated
    """
    rules = store.rules.list(profile_id, active_only=True)
    if not rules:
        return []
    transactions = store.transactions.list_active(profile_id)
    assignments = categorize(transactions, rules, only_category_ids)
    with store.transaction():
        for txn_id, category_id in assignments.items():
            store.transactions.update(txn_id, TransactionPatch(category_id=category_id))
    logger.info("Auto-categorized %d transaction(s) for profile %s", len(assignments), profile_id)
    return list(assignments)
