"""Character state for a single playthrough."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

ATTRIBUTES = ("charm", "comprehension", "constitution", "family", "luck")
ATTRIBUTE_CAP = 20
HEALTH_MAX = 100
STAGE_MAX = 3
START_NODE = "start"
START_AGE = 16


def clamp(n, lo, hi):
    return lo if n < lo else hi if n > hi else n


class EffectKind(str, Enum):
    ATTRIBUTE = "attribute"
    EXPERIENCE = "experience"
    HEALTH = "health"
    SPECIAL = "special"


@dataclass(frozen=True)
class ItemEffect:
    """What an item does when used.

    ``target`` names the attribute for ATTRIBUTE effects (``"random"`` picks
    one at use time); ``tag`` names the status for SPECIAL effects.
    """

    kind: EffectKind
    value: int = 0
    target: Optional[str] = None
    tag: Optional[str] = None

    def to_dict(self) -> Dict:
        data = {"kind": self.kind.value, "value": self.value}
        if self.target is not None:
            data["target"] = self.target
        if self.tag is not None:
            data["tag"] = self.tag
        return data

    @classmethod
    def from_dict(cls, data) -> "ItemEffect":
        if not isinstance(data, dict):
            return cls(EffectKind.SPECIAL, tag="unknown")
        try:
            kind = EffectKind(data.get("kind", EffectKind.SPECIAL.value))
        except ValueError:
            kind = EffectKind.SPECIAL
        try:
            value = int(data.get("value", 0))
        except (TypeError, ValueError, OverflowError):
            value = 0
        return cls(kind, value=value, target=data.get("target"), tag=data.get("tag"))


@dataclass
class ItemStack:
    id: str
    name: str
    quantity: int
    effect: ItemEffect
    quality: Optional[str] = None


@dataclass
class Cultivation:
    level: int = 0
    stage: int = 0
    experience: int = 0


@dataclass
class Resources:
    spirit_stone: int = 0
    pills: int = 0
    treasures: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class Ending:
    kind: str  # "success" or "death"
    variant: str
    reason: Optional[str] = None

    @property
    def is_death(self) -> bool:
        return self.kind == "death"


@dataclass
class Character:
    id: str
    name: str
    charm: int = 0
    comprehension: int = 0
    constitution: int = 0
    family: int = 0
    luck: int = 0
    age: int = START_AGE
    health: int = HEALTH_MAX
    reputation: int = 0
    cultivation: Cultivation = field(default_factory=Cultivation)
    resources: Resources = field(default_factory=Resources)
    inventory: List[ItemStack] = field(default_factory=list)
    choices: List[str] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    visited_nodes: List[str] = field(default_factory=list)
    current_node: str = START_NODE
    initial_attributes: Dict[str, int] = field(default_factory=dict)
    statuses: List[str] = field(default_factory=list)
    completed_minigames: List[str] = field(default_factory=list)
    turn: int = 0
    last_damage_turn: Optional[int] = None
    ending: Optional[Ending] = None

    def attributes(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in ATTRIBUTES}

    def attribute_deltas(self) -> Dict[str, int]:
        """Change of every attribute since character creation."""
        current = self.attributes()
        return {
            name: current[name] - int(self.initial_attributes.get(name, current[name]))
            for name in ATTRIBUTES
        }

    def has_tag(self, tag: str) -> bool:
        return tag in self.tags

    def add_tag(self, tag: str) -> bool:
        if tag in self.tags:
            return False
        self.tags.append(tag)
        return True

    def remove_tag(self, tag: str) -> bool:
        if tag not in self.tags:
            return False
        self.tags.remove(tag)
        return True

    def record_choice(self, text: str) -> None:
        self.choices.append(text)

    def find_stack(self, item_id: str) -> Optional[ItemStack]:
        for stack in self.inventory:
            if stack.id == item_id:
                return stack
        return None

    def item_count(self, item_id: str) -> int:
        stack = self.find_stack(item_id)
        return stack.quantity if stack else 0

    @property
    def is_terminal(self) -> bool:
        return self.ending is not None


def canonicalize_tags(tags) -> List[str]:
    seen = []
    for tag in tags or []:
        if isinstance(tag, str) and tag and tag not in seen:
            seen.append(tag)
    return seen


def normalize_character(character: Character) -> Character:
    # Local import: calculator depends on this module.
    from .calculator import MAX_LEVEL

    for name in ATTRIBUTES:
        setattr(character, name, clamp(int(getattr(character, name)), 0, ATTRIBUTE_CAP))
    character.health = clamp(int(character.health), 0, HEALTH_MAX)
    character.age = max(0, int(character.age))
    cult = character.cultivation
    cult.level = clamp(int(cult.level), 0, MAX_LEVEL)
    cult.stage = clamp(int(cult.stage), 0, STAGE_MAX)
    cult.experience = max(0, int(cult.experience))
    res = character.resources
    res.spirit_stone = max(0, int(res.spirit_stone))
    res.pills = max(0, int(res.pills))
    character.inventory = [stack for stack in character.inventory if stack.quantity > 0]
    character.tags = canonicalize_tags(character.tags)
    character.statuses = canonicalize_tags(character.statuses)
    return character
