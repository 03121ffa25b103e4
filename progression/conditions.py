"""Choice gating predicates."""

from __future__ import annotations

import copy
from typing import Any, Callable, List, Mapping, Union

import structlog

from .calculator import level_name
from .models import ATTRIBUTES, Character

logger = structlog.get_logger(__name__)

Predicate = Callable[[Character], bool]
Condition = Union[None, Predicate, Mapping[str, Any], List[Any]]

RESOURCE_FIELDS = ("spirit_stone", "pills")


def _as_list(value) -> List[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, (list, tuple)):
        return [v for v in value if isinstance(v, str)]
    return []


def _resource(character: Character, name: str) -> int:
    if name in RESOURCE_FIELDS:
        return int(getattr(character.resources, name))
    return 0


def meets_condition(cond: Condition, character: Character) -> bool:
    """Return True when ``cond`` holds for ``character``.

    Callables see a deep copy so a misbehaving predicate cannot leak
    mutations into the live character. Any exception raised by a predicate
    counts as the condition not holding.
    """
    if cond is None:
        return True
    if callable(cond):
        try:
            return bool(cond(copy.deepcopy(character)))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Condition predicate failed", error=str(exc))
            return False
    if isinstance(cond, (list, tuple)):
        return all(meets_condition(c, character) for c in cond)
    if not isinstance(cond, Mapping):
        return False
    if not cond:
        return True
    t = cond.get("type")

    try:
        if t == "attr_at_least":
            return getattr(character, cond["attr"]) >= int(cond["value"])
        if t == "attr_below":
            return getattr(character, cond["attr"]) < int(cond["value"])
        if t == "level_at_least":
            return character.cultivation.level >= int(cond["value"])
        if t == "has_tag":
            return all(tag in character.tags for tag in _as_list(cond.get("value")))
        if t == "has_status":
            return all(s in character.statuses for s in _as_list(cond.get("value")))
        if t == "missing_tag":
            return all(tag not in character.tags for tag in _as_list(cond.get("value")))
        if t == "chose":
            return all(text in character.choices for text in _as_list(cond.get("value")))
        if t == "not_chose":
            return all(text not in character.choices for text in _as_list(cond.get("value")))
        if t == "visited":
            return all(node in character.visited_nodes for node in _as_list(cond.get("value")))
        if t == "resource_at_least":
            return _resource(character, cond.get("resource")) >= int(cond["value"])
        if t == "has_treasure":
            return all(
                tid in character.resources.treasures for tid in _as_list(cond.get("value"))
            )
        if t == "has_item":
            return character.item_count(cond.get("value")) >= int(cond.get("quantity", 1))
        if t == "reputation_at_least":
            return character.reputation >= int(cond["value"])
        if t == "health_at_least":
            return character.health >= int(cond["value"])
        if t == "character_is":
            return character.id in _as_list(cond.get("value"))
        if t == "any_of":
            return any(meets_condition(c, character) for c in cond.get("conditions", []))
        if t == "not":
            return not meets_condition(cond.get("condition"), character)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        logger.warning("Malformed condition", condition_type=t, error=str(exc))
        return False
    logger.warning("Unknown condition type", condition_type=t)
    return False


def describe_condition(cond: Condition) -> List[str]:
    """Human-readable requirement labels for display."""
    if cond is None:
        return []
    if callable(cond):
        return ["Special requirement"]
    if isinstance(cond, (list, tuple)):
        labels: List[str] = []
        for sub in cond:
            labels.extend(describe_condition(sub))
        return labels
    if not isinstance(cond, Mapping) or not cond:
        return []
    t = cond.get("type")
    value = cond.get("value")
    if t == "attr_at_least" and cond.get("attr") in ATTRIBUTES:
        return [f"{cond['attr'].capitalize()} >= {value}"]
    if t == "attr_below" and cond.get("attr") in ATTRIBUTES:
        return [f"{cond['attr'].capitalize()} < {value}"]
    if t == "level_at_least":
        return [f"Realm: {level_name(value)}"]
    if t == "has_tag":
        return [f"Requires {', '.join(_as_list(value))}"]
    if t == "missing_tag":
        return [f"Not {', '.join(_as_list(value))}"]
    if t == "resource_at_least":
        return [f"{str(cond.get('resource')).replace('_', ' ').title()} >= {value}"]
    if t == "has_treasure":
        return [f"Treasure: {', '.join(_as_list(value))}"]
    if t == "has_item":
        return [f"Item: {value} x{cond.get('quantity', 1)}"]
    if t == "reputation_at_least":
        return [f"Reputation >= {value}"]
    if t == "health_at_least":
        return [f"Health >= {value}"]
    if t == "any_of":
        parts = [" + ".join(describe_condition(c)) for c in cond.get("conditions", [])]
        return [" or ".join(p for p in parts if p)]
    return []
