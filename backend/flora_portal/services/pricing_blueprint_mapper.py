"""Heuristic mapping of pricing rules onto product blueprints.

Pricing rules in the plugin rarely carry an explicit ``blueprint_id``; the
rule name or its product-type filter is the only link to a blueprint.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

FLOWER_BLUEPRINT_ID = 41
CONCENTRATE_BLUEPRINT_ID = 42
EDIBLE_BLUEPRINT_ID = 43
PREROLL_BLUEPRINT_ID = 44
VAPE_BLUEPRINT_ID = 45

# Checked in order; the first matching pattern wins.
RULE_NAME_PATTERNS: List[Tuple[int, Tuple[str, ...]]] = [
    (FLOWER_BLUEPRINT_ID, ("flower pricing", "flower tier")),
    (CONCENTRATE_BLUEPRINT_ID, ("concentrate pricing", "concentrate tier")),
    (EDIBLE_BLUEPRINT_ID, ("edible", "day drinker", "golden hour", "darkside", "riptide")),
    (PREROLL_BLUEPRINT_ID, ("pre-roll", "preroll")),
    (VAPE_BLUEPRINT_ID, ("vape pricing", "vape tier")),
]

PRODUCT_TYPE_KEYWORDS: List[Tuple[int, Tuple[str, ...]]] = [
    (FLOWER_BLUEPRINT_ID, ("flower",)),
    (CONCENTRATE_BLUEPRINT_ID, ("concentrate",)),
    (EDIBLE_BLUEPRINT_ID, ("edible",)),
    (PREROLL_BLUEPRINT_ID, ("preroll", "pre-roll")),
    (VAPE_BLUEPRINT_ID, ("vape",)),
]


def _match(text: str, table: List[Tuple[int, Tuple[str, ...]]]) -> Optional[int]:
    lowered = text.lower()
    for blueprint_id, patterns in table:
        if any(pattern in lowered for pattern in patterns):
            return blueprint_id
    return None


def _product_type(section: Any) -> Optional[str]:
    if isinstance(section, dict):
        value = section.get("product_type")
        if isinstance(value, str) and value:
            return value
    return None


def blueprint_id_for_rule(rule: Dict[str, Any]) -> Optional[int]:
    explicit = rule.get("blueprint_id")
    try:
        if explicit is not None and int(explicit) > 0:
            return int(explicit)
    except (TypeError, ValueError):
        pass

    name = rule.get("rule_name")
    if isinstance(name, str):
        matched = _match(name, RULE_NAME_PATTERNS)
        if matched is not None:
            return matched

    for section in ("filters", "conditions"):
        product_type = _product_type(rule.get(section))
        if product_type:
            matched = _match(product_type, PRODUCT_TYPE_KEYWORDS)
            if matched is not None:
                return matched

    return None


def filter_rules_by_blueprint(rules: Iterable[Dict[str, Any]], blueprint_id: int) -> List[Dict[str, Any]]:
    return [rule for rule in rules if blueprint_id_for_rule(rule) == blueprint_id]
