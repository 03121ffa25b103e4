"""Consequence application."""

from __future__ import annotations

import math
import random
from typing import Any, Callable, List, Mapping, Optional, Union

import structlog

from .calculator import MAX_LEVEL, apply_experience, experience_gain, parse_quality
from .catalog import MATERIAL_TAG, catalog_stack, get_store_item, get_treasure
from .endings import classify_ending, death_ending
from .errors import UnknownReferenceError
from .models import (
    ATTRIBUTE_CAP,
    ATTRIBUTES,
    HEALTH_MAX,
    STAGE_MAX,
    Character,
    EffectKind,
    ItemEffect,
    ItemStack,
    clamp,
)

logger = structlog.get_logger(__name__)

Consequence = Union[None, Callable[[Character], Optional[Character]], Mapping[str, Any], List[Any]]

USED_ITEM_PREFIX = "used:"


# ---------- Primitive mutations ----------
def adjust_attribute(character: Character, attr: str, delta: int) -> int:
    if attr not in ATTRIBUTES:
        raise UnknownReferenceError(f"Unknown attribute '{attr}'.")
    value = clamp(getattr(character, attr) + int(delta), 0, ATTRIBUTE_CAP)
    setattr(character, attr, value)
    return value


def change_health(character: Character, delta: int) -> int:
    delta = int(delta)
    character.health = clamp(character.health + delta, 0, HEALTH_MAX)
    if delta < 0:
        character.last_damage_turn = character.turn
    return character.health


def change_resource(character: Character, resource: str, delta: int) -> int:
    if resource not in ("spirit_stone", "pills"):
        raise UnknownReferenceError(f"Unknown resource '{resource}'.")
    value = max(0, getattr(character.resources, resource) + int(delta))
    setattr(character.resources, resource, value)
    return value


def grant_experience(
    character: Character, base: int, *, scaled: bool = True, experience_scale: float = 1.0
) -> bool:
    gain = experience_gain(base, character.comprehension) if scaled else int(base)
    if gain > 0 and experience_scale != 1.0:
        gain = math.floor(gain * experience_scale)
    return apply_experience(character, gain)


def raise_level(character: Character, level: int) -> bool:
    target = clamp(int(level), 0, MAX_LEVEL)
    if target <= character.cultivation.level:
        return False
    character.cultivation.level = target
    character.cultivation.stage = 0
    return True


def add_stack(character: Character, stack: ItemStack) -> Optional[ItemStack]:
    """Merge ``stack`` into the inventory; non-positive quantities are ignored."""
    if stack.quantity < 1:
        logger.warning("Ignored non-positive item grant", item_id=stack.id, quantity=stack.quantity)
        return None
    existing = character.find_stack(stack.id)
    if existing is not None:
        existing.quantity += stack.quantity
        return existing
    character.inventory.append(stack)
    return stack


def remove_item(character: Character, item_id: str, quantity: int = 1) -> bool:
    stack = character.find_stack(item_id)
    if quantity < 1 or stack is None or stack.quantity < quantity:
        return False
    stack.quantity -= quantity
    if stack.quantity <= 0:
        character.inventory.remove(stack)
    return True


def grant_treasure(character: Character, treasure_id: str) -> bool:
    treasure = get_treasure(treasure_id)
    if treasure.id in character.resources.treasures:
        return False
    character.resources.treasures.append(treasure.id)
    if treasure.bonus is not None:
        apply_item_effect(character, treasure.bonus)
    if treasure.stones_on_acquire:
        change_resource(character, "spirit_stone", treasure.stones_on_acquire)
    return True


# ---------- Items ----------
def apply_item_effect(
    character: Character,
    effect: ItemEffect,
    rng: Optional[random.Random] = None,
    *,
    experience_scale: float = 1.0,
) -> None:
    kind = effect.kind
    if kind is EffectKind.ATTRIBUTE:
        target = effect.target
        if target == "random":
            target = (rng or random.Random()).choice(ATTRIBUTES)
        adjust_attribute(character, target, effect.value)
    elif kind is EffectKind.EXPERIENCE:
        grant_experience(character, effect.value, experience_scale=experience_scale)
    elif kind is EffectKind.HEALTH:
        change_health(character, effect.value)
    elif kind is EffectKind.SPECIAL:
        if effect.tag and effect.tag not in character.statuses:
            character.statuses.append(effect.tag)
    else:
        raise UnknownReferenceError(f"Unhandled effect kind '{kind}'.")


def use_item(
    character: Character,
    item_id: str,
    rng: Optional[random.Random] = None,
    *,
    experience_scale: float = 1.0,
) -> bool:
    """Consume one unit of ``item_id``. Returns False when nothing was used."""
    stack = character.find_stack(item_id)
    if stack is None:
        return False
    if stack.effect.kind is EffectKind.SPECIAL and stack.effect.tag == MATERIAL_TAG:
        return False
    rng = rng or random.Random()
    remove_item(character, item_id)
    character.record_choice(f"{USED_ITEM_PREFIX}{stack.name}")
    if stack.quality is not None:
        quality = parse_quality(stack.quality)
        if rng.random() < quality.invalid_chance:
            logger.info("Pill had no effect", item_id=item_id, quality=quality.value)
            return True
    try:
        apply_item_effect(character, stack.effect, rng, experience_scale=experience_scale)
    except UnknownReferenceError as exc:
        logger.warning("Item effect skipped", item_id=item_id, error=str(exc))
    return True


def purchase(character: Character, item_id: str) -> bool:
    item = get_store_item(item_id)
    if character.cultivation.level < item.min_level:
        return False
    if character.resources.spirit_stone < item.price:
        return False
    character.resources.spirit_stone -= item.price
    add_stack(character, catalog_stack(item.id))
    character.record_choice(f"bought:{item.name}")
    return True


# ---------- Declarative effects ----------
def _apply_mapping(
    effect: Mapping[str, Any],
    character: Character,
    rng: random.Random,
    experience_scale: float,
) -> None:
    t = effect.get("type")
    value = effect.get("value")

    if t == "attr_delta":
        adjust_attribute(character, effect.get("attr"), int(value))
    elif t == "experience":
        grant_experience(
            character,
            int(value),
            scaled=bool(effect.get("scaled", True)),
            experience_scale=experience_scale,
        )
    elif t == "raise_level":
        raise_level(character, int(value))
    elif t == "stage_delta":
        cult = character.cultivation
        cult.stage = clamp(cult.stage + int(value), 0, STAGE_MAX)
    elif t == "health_delta":
        change_health(character, int(value))
    elif t == "age_delta":
        character.age = max(0, character.age + int(value))
    elif t == "reputation_delta":
        character.reputation += int(value)
    elif t == "resource_delta":
        change_resource(character, effect.get("resource"), int(value))
    elif t == "add_tag":
        character.add_tag(str(value))
    elif t == "remove_tag":
        character.remove_tag(str(value))
    elif t == "add_status":
        if value not in character.statuses:
            character.statuses.append(str(value))
    elif t == "record_choice":
        character.record_choice(str(value))
    elif t == "add_treasure":
        grant_treasure(character, str(value))
    elif t == "add_item":
        add_stack(character, catalog_stack(str(value), int(effect.get("quantity", 1))))
    elif t == "use_item":
        use_item(character, str(value), rng, experience_scale=experience_scale)
    elif t == "end_game":
        character.ending = classify_ending(character, value, effect.get("variant"))
    elif t == "die":
        character.ending = death_ending(value or "fate")
    else:
        raise UnknownReferenceError(f"Unknown effect type '{t}'.")


def apply_effect(
    effect: Consequence,
    character: Character,
    *,
    rng: Optional[random.Random] = None,
    experience_scale: float = 1.0,
) -> Character:
    """Apply one consequence and return the (possibly replaced) character.

    Unknown references and failing callables are skipped with a warning so
    the remaining parts of a consequence still land.
    """
    if not effect:
        return character
    if callable(effect):
        try:
            result = effect(character)
        except Exception as exc:  # noqa: BLE001
            logger.warning(
                "Skipped failing consequence",
                effect=getattr(effect, "__name__", repr(effect)),
                error=repr(exc),
            )
            return character
        return result if isinstance(result, Character) else character
    if isinstance(effect, (list, tuple)):
        return apply_effects(effect, character, rng=rng, experience_scale=experience_scale)
    if not isinstance(effect, Mapping):
        logger.warning("Skipped malformed effect", effect=repr(effect))
        return character
    try:
        _apply_mapping(effect, character, rng or random.Random(), experience_scale)
    except UnknownReferenceError as exc:
        logger.warning("Skipped effect", effect_type=effect.get("type"), error=str(exc))
    except (TypeError, ValueError) as exc:
        logger.warning("Skipped malformed effect", effect_type=effect.get("type"), error=str(exc))
    return character


def apply_effects(
    effects: Consequence,
    character: Character,
    *,
    rng: Optional[random.Random] = None,
    experience_scale: float = 1.0,
) -> Character:
    if effects is None:
        return character
    if not isinstance(effects, (list, tuple)):
        return apply_effect(effects, character, rng=rng, experience_scale=experience_scale)
    for eff in effects:
        character = apply_effect(eff, character, rng=rng, experience_scale=experience_scale)
    return character
