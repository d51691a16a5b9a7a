"""
Commission Rule Resolver

Selects the rule that applies to a (commission_type, role, deal_type)
combination. A NULL role or deal_type on a rule matches anything.
"""

import logging
from collections import defaultdict

from .models import CommissionType, DealType, Role

logger = logging.getLogger(__name__)


def _priority(rule) -> int:
    priority = getattr(rule, "priority", None)
    return 100 if priority is None else priority


def rule_sort_key(rule):
    """Deterministic iteration order: priority, then name, then id."""
    return (_priority(rule), rule.name or "", str(rule.id or ""))


def rule_matches(rule, commission_type: CommissionType, role: Role | None, deal_type: DealType | None) -> bool:
    return (
        bool(rule.is_active)
        and rule.commission_type == commission_type
        and (rule.deal_type is None or rule.deal_type == deal_type)
        and (rule.role is None or rule.role == role)
    )


def resolve_rule(rules, commission_type: CommissionType, role: Role | None, deal_type: DealType | None):
    """
    Return the first active rule matching the combination, or None.

    Rules are ordered by rule_sort_key before matching so the result does
    not depend on storage order.
    """
    for rule in sorted(rules, key=rule_sort_key):
        if rule_matches(rule, commission_type, role, deal_type):
            return rule
    return None


def find_ambiguous_rules(rules) -> list[list]:
    """
    Group active rules that share (commission_type, role, deal_type) and
    the same priority. Each returned group is a configuration conflict that
    rule_sort_key only settles by name.
    """
    groups = defaultdict(list)
    for rule in rules:
        if not rule.is_active:
            continue
        groups[(rule.commission_type, rule.role, rule.deal_type, _priority(rule))].append(rule)

    conflicts = [sorted(group, key=rule_sort_key) for group in groups.values() if len(group) > 1]
    for group in conflicts:
        first = group[0]
        role = first.role.value if first.role else "*"
        deal_type = first.deal_type.value if first.deal_type else "*"
        names = ", ".join(r.name for r in group)
        logger.warning(f"Ambiguous commission rules for {first.commission_type.value}/{role}/{deal_type}: {names}")
    return conflicts
