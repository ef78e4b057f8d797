"""
Selection of the units a category-wide operation runs on.

Units are narrowed by device intent or by sub-category, then units that
configure the same ``KeyName|ValueName`` are reconciled so a specific
(sub-categorized) unit supersedes a generic one.
"""

import logging
from typing import Dict, Iterable, List, Optional

from ..core.models import PolicyUnit

logger = logging.getLogger(__name__)

ALL_INTENTS = "all"


def filter_by_intent(units: List[PolicyUnit], intent: Optional[str]) -> List[PolicyUnit]:
    """
    Keep units meant for a device intent.

    Units declaring the ``all`` intent always match. No intent means no
    filtering.
    """
    if intent is None:
        return list(units)

    wanted = intent.casefold()
    return [
        unit for unit in units
        if any(declared.casefold() in (wanted, ALL_INTENTS) for declared in unit.device_intents)
    ]


def filter_by_sub_categories(units: List[PolicyUnit],
                             sub_categories: Optional[Iterable[str]]) -> List[PolicyUnit]:
    """
    Keep units without a sub-category plus units in one of the selected ones.

    None means no filtering.
    """
    if sub_categories is None:
        return list(units)

    selected = {name.casefold() for name in sub_categories}
    return [
        unit for unit in units
        if unit.sub_category is None or unit.sub_category.casefold() in selected
    ]


def resolve_policy_conflicts(units: List[PolicyUnit]) -> List[PolicyUnit]:
    """
    Drop generic units shadowed by specific ones.

    When several units configure the same ``KeyName|ValueName`` and at
    least one of them has a sub-category, the ones without a sub-category
    are dropped. Units without a policy id are never in conflict. Order
    is preserved.
    """
    groups: Dict[str, List[PolicyUnit]] = {}
    for unit in units:
        if unit.policy_id is not None:
            groups.setdefault(unit.policy_id.casefold(), []).append(unit)

    superseded = set()
    for group in groups.values():
        if len(group) > 1 and any(unit.sub_category is not None for unit in group):
            for unit in group:
                if unit.sub_category is None:
                    superseded.add(id(unit))
                    logger.debug("'%s' is superseded by a sub-category specific measure for %s",
                                 unit.name, unit.policy_id)

    return [unit for unit in units if id(unit) not in superseded]


def select_units(units: List[PolicyUnit], intent: Optional[str] = None,
                 sub_categories: Optional[Iterable[str]] = None) -> List[PolicyUnit]:
    """
    Select the units of a category for a category-wide operation.

    Selecting by intent ignores sub-categories. Conflicts are resolved
    after filtering.

    Args:
        units: All units of the category, in catalog order
        intent: Device intent to select for
        sub_categories: Sub-categories to include alongside uncategorized units

    Returns:
        List[PolicyUnit]: Selected units in catalog order
    """
    if intent is not None:
        selected = filter_by_intent(units, intent)
    else:
        selected = filter_by_sub_categories(units, sub_categories)
    return resolve_policy_conflicts(selected)
