"""Static reference data: character templates, materials, recipes, treasures, store."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple

from .calculator import PillQuality, parse_quality
from .errors import UnknownReferenceError
from .models import ATTRIBUTES, Character, EffectKind, ItemEffect, ItemStack, Resources

MATERIAL_TAG = "material"
DEFAULT_CHARACTER_ID = "xiaoyan"


@dataclass(frozen=True)
class CharacterTemplate:
    id: str
    name: str
    charm: int
    comprehension: int
    constitution: int
    family: int
    luck: int
    unlock_points: int = 0
    talents: Tuple[str, ...] = ()

    def attributes(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in ATTRIBUTES}


@dataclass(frozen=True)
class Material:
    id: str
    name: str
    kind: str  # herb, mineral, beast_part, special
    rarity: str


@dataclass(frozen=True)
class Recipe:
    id: str
    name: str
    materials: Mapping[str, int]
    base_success_rate: float
    effect: ItemEffect
    difficulty: int
    min_level: int


@dataclass(frozen=True)
class Treasure:
    id: str
    name: str
    category: str
    rarity: str
    bonus: Optional[ItemEffect] = None
    stones_on_acquire: int = 0
    stones_per_turn: int = 0


@dataclass(frozen=True)
class StoreItem:
    id: str
    name: str
    price: int
    min_level: int
    effect: ItemEffect


CHARACTER_TEMPLATES: Dict[str, CharacterTemplate] = {
    t.id: t
    for t in (
        CharacterTemplate("xiaoyan", "Xiao Yan", 7, 9, 8, 5, 8),
        CharacterTemplate("hanli", "Han Li", 5, 9, 6, 3, 10, unlock_points=100),
        CharacterTemplate("wangteng", "Wang Teng", 4, 5, 5, 10, 5, unlock_points=200),
        CharacterTemplate(
            "baixiaochun",
            "Bai Xiaochun",
            7,
            10,
            4,
            4,
            9,
            unlock_points=300,
            talents=("alchemy_double_yield",),
        ),
        CharacterTemplate("xuque", "Xu Que", 10, 7, 6, 2, 6, unlock_points=500),
        CharacterTemplate("liqiye", "Li Qiye", 10, 10, 10, 10, 10, unlock_points=1000),
    )
}

MATERIALS: Dict[str, Material] = {
    m.id: m
    for m in (
        Material("lingzhi", "Lingzhi", "herb", "common"),
        Material("dangshen", "Dangshen Root", "herb", "common"),
        Material("spirit_grass", "Spirit Grass", "herb", "uncommon"),
        Material("ginseng", "Ginseng", "herb", "uncommon"),
        Material("nine_leaf_grass", "Nine-Leaf Grass", "herb", "rare"),
        Material("clear_water", "Clear Spring Water", "mineral", "common"),
        Material("spirit_stone_powder", "Spirit Stone Powder", "mineral", "common"),
        Material("iron_ore", "Cold Iron Ore", "mineral", "uncommon"),
        Material("star_sand", "Star Sand", "mineral", "rare"),
        Material("spirit_beast_core", "Spirit Beast Core", "beast_part", "uncommon"),
        Material("tiger_bone", "Tiger Bone", "beast_part", "uncommon"),
        Material("dragon_blood", "Dragon Blood", "beast_part", "epic"),
        Material("phoenix_feather", "Phoenix Feather", "special", "epic"),
    )
}


def _attr(target: str, value: int) -> ItemEffect:
    return ItemEffect(EffectKind.ATTRIBUTE, value=value, target=target)


def _exp(value: int) -> ItemEffect:
    return ItemEffect(EffectKind.EXPERIENCE, value=value)


def _special(tag: str) -> ItemEffect:
    return ItemEffect(EffectKind.SPECIAL, tag=tag)


RECIPES: Dict[str, Recipe] = {
    r.id: r
    for r in (
        Recipe(
            "qi_gathering_pill",
            "Qi Gathering Pill",
            {"lingzhi": 2, "dangshen": 1, "clear_water": 3},
            0.7,
            _exp(50),
            1,
            1,
        ),
        Recipe(
            "body_fortifying_pill",
            "Body Fortifying Pill",
            {"dangshen": 2, "tiger_bone": 1, "clear_water": 2},
            0.65,
            _attr("constitution", 2),
            2,
            2,
        ),
        Recipe(
            "wisdom_enhancing_pill",
            "Wisdom Enhancing Pill",
            {"spirit_grass": 1, "ginseng": 1, "spirit_stone_powder": 2},
            0.6,
            _attr("comprehension", 2),
            2,
            2,
        ),
        Recipe(
            "spirit_recovery_pill",
            "Spirit Recovery Pill",
            {"lingzhi": 3, "spirit_stone_powder": 1, "clear_water": 2},
            0.75,
            ItemEffect(EffectKind.HEALTH, value=30),
            1,
            1,
        ),
        Recipe(
            "charm_boosting_pill",
            "Charm Boosting Pill",
            {"ginseng": 1, "tiger_bone": 1, "spirit_stone_powder": 1},
            0.6,
            _attr("charm", 2),
            2,
            2,
        ),
        Recipe(
            "luck_enhancing_pill",
            "Luck Enhancing Pill",
            {"spirit_grass": 2, "star_sand": 1, "clear_water": 3},
            0.55,
            _attr("luck", 2),
            3,
            3,
        ),
        Recipe(
            "foundation_stabilizing_pill",
            "Foundation Stabilizing Pill",
            {"ginseng": 2, "spirit_beast_core": 1, "spirit_stone_powder": 2},
            0.5,
            _special("foundation_stabilized"),
            3,
            3,
        ),
        Recipe(
            "golden_core_pill",
            "Golden Core Pill",
            {"nine_leaf_grass": 1, "spirit_beast_core": 2, "star_sand": 1},
            0.4,
            _exp(200),
            4,
            4,
        ),
        Recipe(
            "soul_forming_pill",
            "Soul Forming Pill",
            {"nine_leaf_grass": 2, "dragon_blood": 1, "star_sand": 2},
            0.35,
            _exp(500),
            5,
            5,
        ),
        Recipe(
            "phoenix_rebirth_pill",
            "Phoenix Rebirth Pill",
            {"phoenix_feather": 1, "dragon_blood": 2, "nine_leaf_grass": 3},
            0.25,
            ItemEffect(EffectKind.HEALTH, value=100),
            5,
            6,
        ),
    )
}

TREASURES: Dict[str, Treasure] = {
    t.id: t
    for t in (
        Treasure("charming_eye", "Charming Eye", "special", "rare", bonus=_attr("charm", 2)),
        Treasure("mirror_of_hearts", "Mirror of Hearts", "special", "legendary"),
        Treasure(
            "book_of_wisdom",
            "Book of Wisdom",
            "special",
            "legendary",
            bonus=_attr("comprehension", 2),
        ),
        Treasure(
            "fire_spirit_body",
            "Fire Spirit Body",
            "special",
            "divine",
            bonus=_attr("constitution", 3),
        ),
        Treasure("treasure_bowl", "Treasure Bowl", "resource", "legendary", stones_per_turn=10),
        Treasure("lucky_star", "Lucky Star", "special", "legendary", bonus=_attr("luck", 2)),
        Treasure("invisibility_cloak", "Invisibility Cloak", "support", "rare"),
        Treasure(
            "forbidden_index",
            "Forbidden Index",
            "special",
            "rare",
            bonus=_attr("comprehension", 1),
        ),
        Treasure("fire_ward", "Fire Ward Talisman", "defense", "common"),
        Treasure("gold_touch_scroll", "Gold Touch Scroll", "resource", "rare", stones_on_acquire=50),
        Treasure("supreme_artifact", "Supreme Artifact", "attack", "rare"),
        Treasure(
            "ancient_relic",
            "Ancient Relic",
            "attack",
            "divine",
            bonus=_attr("constitution", 2),
        ),
        Treasure("rune_codex", "Rune Codex", "special", "rare"),
        Treasure("ancient_inheritance", "Ancient Inheritance", "special", "legendary"),
        Treasure("guardian_heart", "Guardian's Heart", "special", "legendary"),
        Treasure("dao_companion_pact", "Dao Companion Pact", "special", "legendary"),
    )
}

STORE_ITEMS: Dict[str, StoreItem] = {
    s.id: s
    for s in (
        StoreItem("attribute_pill", "Attribute Pill", 60, 1, _attr("random", 1)),
        StoreItem("experience_pill_small", "Small Cultivation Pill", 30, 1, _exp(20)),
        StoreItem("experience_pill_medium", "Medium Cultivation Pill", 80, 2, _exp(50)),
        StoreItem("experience_pill_large", "Large Cultivation Pill", 150, 3, _exp(100)),
        StoreItem(
            "temporary_comprehension_pill",
            "Enlightenment Pill",
            50,
            2,
            _special("temporary_comprehension_boost"),
        ),
        StoreItem("lucky_star", "Lucky Star", 200, 2, _attr("luck", 2)),
        StoreItem("mirror_of_hearts", "Mirror of Hearts", 300, 3, _special("insight_bonus")),
        StoreItem("wisdom_book", "Book of Wisdom", 400, 3, _attr("comprehension", 3)),
    )
}


def get_template(template_id: str) -> CharacterTemplate:
    template = CHARACTER_TEMPLATES.get(template_id)
    if template is None:
        raise UnknownReferenceError(f"Unknown character template '{template_id}'.")
    return template


def get_recipe(recipe_id: str) -> Recipe:
    recipe = RECIPES.get(recipe_id)
    if recipe is None:
        raise UnknownReferenceError(f"Unknown recipe '{recipe_id}'.")
    return recipe


def get_treasure(treasure_id: str) -> Treasure:
    treasure = TREASURES.get(treasure_id)
    if treasure is None:
        raise UnknownReferenceError(f"Unknown treasure '{treasure_id}'.")
    return treasure


def get_store_item(item_id: str) -> StoreItem:
    item = STORE_ITEMS.get(item_id)
    if item is None:
        raise UnknownReferenceError(f"Unknown store item '{item_id}'.")
    return item


def starting_resources(family: int) -> Resources:
    return Resources(spirit_stone=50 + family * 10, pills=5 + family // 2, treasures=[])


def create_character(template_id: str) -> Character:
    template = get_template(template_id)
    attributes = template.attributes()
    return Character(
        id=template.id,
        name=template.name,
        resources=starting_resources(template.family),
        initial_attributes=dict(attributes),
        **attributes,
    )


def has_talent(character: Character, talent: str) -> bool:
    template = CHARACTER_TEMPLATES.get(character.id)
    return template is not None and talent in template.talents


def pill_item_id(recipe_id: str, quality: PillQuality) -> str:
    return f"{recipe_id}:{quality.value}"


def recipe_pill(recipe_id: str, quality, quantity: int) -> ItemStack:
    recipe = get_recipe(recipe_id)
    quality = parse_quality(quality)
    effect = recipe.effect
    if effect.kind is not EffectKind.SPECIAL:
        effect = ItemEffect(
            effect.kind,
            value=max(1, math.floor(effect.value * quality.effect_multiplier)),
            target=effect.target,
        )
    return ItemStack(
        id=pill_item_id(recipe_id, quality),
        name=f"{recipe.name} ({quality.value})",
        quantity=max(1, int(quantity)),
        effect=effect,
        quality=quality.value,
    )


def store_stack(item_id: str, quantity: int = 1) -> ItemStack:
    item = get_store_item(item_id)
    return ItemStack(id=item.id, name=item.name, quantity=quantity, effect=item.effect)


def material_stack(material_id: str, quantity: int = 1) -> ItemStack:
    material = MATERIALS.get(material_id)
    if material is None:
        raise UnknownReferenceError(f"Unknown material '{material_id}'.")
    return ItemStack(
        id=material.id,
        name=material.name,
        quantity=quantity,
        effect=ItemEffect(EffectKind.SPECIAL, tag=MATERIAL_TAG),
    )


def catalog_stack(item_id: str, quantity: int = 1) -> ItemStack:
    """Build a stack for any catalog item id (store item, material or ``recipe:quality`` pill)."""
    if item_id in STORE_ITEMS:
        return store_stack(item_id, quantity)
    if item_id in MATERIALS:
        return material_stack(item_id, quantity)
    if ":" in item_id:
        recipe_id, _, quality = item_id.partition(":")
        return recipe_pill(recipe_id, quality, quantity)
    raise UnknownReferenceError(f"Unknown item '{item_id}'.")


def has_materials(character: Character, recipe: Recipe) -> bool:
    return all(character.item_count(mid) >= qty for mid, qty in recipe.materials.items())


def consume_materials(character: Character, recipe: Recipe) -> bool:
    if not has_materials(character, recipe):
        return False
    for material_id, qty in recipe.materials.items():
        stack = character.find_stack(material_id)
        stack.quantity -= qty
        if stack.quantity <= 0:
            character.inventory.remove(stack)
    return True
