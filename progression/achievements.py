"""Meta-progression: achievements, achievement points and character unlocks."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional

import structlog

from .catalog import CHARACTER_TEMPLATES, DEFAULT_CHARACTER_ID
from .errors import UnknownReferenceError
from .models import Character

logger = structlog.get_logger(__name__)

# Points granted when claiming an achievement, indexed by difficulty stars.
STAR_POINTS = (0, 10, 20, 40, 80, 160)


@dataclass(frozen=True)
class Achievement:
    id: str
    title: str
    stars: int
    predicate: Callable[[Character], bool]

    @property
    def points(self) -> int:
        return STAR_POINTS[max(0, min(self.stars, len(STAR_POINTS) - 1))]


def _tagged(*tags: str) -> Callable[[Character], bool]:
    return lambda c: any(tag in c.tags for tag in tags)


ACHIEVEMENTS: Dict[str, Achievement] = {
    a.id: a
    for a in (
        Achievement("first_step", "First Step", 1, _tagged("inner_disciple", "outer_disciple")),
        Achievement("quick_learner", "Quick Learner", 2, lambda c: c.comprehension >= 10),
        Achievement("social_butterfly", "Social Butterfly", 2, lambda c: c.charm >= 10),
        Achievement("strong_body", "Bronze Skin, Iron Bones", 2, lambda c: c.constitution >= 10),
        Achievement("lucky_star", "Lucky Star", 2, lambda c: c.luck >= 10),
        Achievement("rich_kid", "Silver Spoon", 2, lambda c: c.family >= 10),
        Achievement("foundation_laying", "Foundation Laid", 2, lambda c: c.cultivation.level >= 2),
        Achievement("core_formation", "Core Formed", 3, lambda c: c.cultivation.level >= 3),
        Achievement("nascent_soul", "Nascent Soul", 4, lambda c: c.cultivation.level >= 5),
        Achievement("immortal_ascent", "Immortal Ascent", 5, lambda c: c.cultivation.level >= 9),
        Achievement("righteous_path", "Righteous Path", 2, _tagged("righteous")),
        Achievement("power_seeker", "Power Seeker", 2, _tagged("power_seeker")),
        Achievement("truth_seeker", "Seeker of Eternity", 2, _tagged("immortality_seeker")),
        Achievement("world_traveler", "World Traveler", 2, _tagged("wanderer")),
        Achievement("hermit_follower", "Hermit's Disciple", 2, _tagged("hermit_disciple")),
        Achievement("lone_wolf", "Lone Wolf", 3, _tagged("self_taught", "rogue_cultivator")),
        Achievement(
            "wealthy_cultivator", "Wealthy Cultivator", 3, lambda c: c.resources.spirit_stone >= 500
        ),
        Achievement("collector", "Collector", 3, lambda c: len(c.resources.treasures) >= 10),
        Achievement("extremely_lucky", "Heaven's Favourite", 4, lambda c: c.luck >= 15),
        Achievement("genius", "Genius", 4, lambda c: c.comprehension >= 15),
        Achievement("heartthrob", "Heartthrob", 4, lambda c: c.charm >= 15),
        Achievement("invincible_body", "Invincible Body", 4, lambda c: c.constitution >= 15),
        Achievement("rich_second_gen", "Old Money", 4, lambda c: c.family >= 15),
        Achievement(
            "quick_cultivator",
            "Swift Cultivator",
            5,
            lambda c: c.age < 50 and c.cultivation.level >= 5,
        ),
        Achievement("long_lived", "Long Lived", 3, lambda c: c.age >= 200),
        Achievement("protector", "Protector", 3, _tagged("sect_guardian", "guardian")),
        Achievement("firm_will", "Firm Will", 2, lambda c: len(c.choices) >= 10),
    )
}


@dataclass
class MetaProgress:
    """State that outlives a single playthrough."""

    achievement_points: int = 0
    unlocked_character_ids: List[str] = field(default_factory=lambda: [DEFAULT_CHARACTER_ID])
    unlocked_achievements: List[str] = field(default_factory=list)
    claimed_achievements: List[str] = field(default_factory=list)

    def normalize(self) -> "MetaProgress":
        try:
            self.achievement_points = max(0, int(self.achievement_points))
        except (TypeError, ValueError, OverflowError):
            self.achievement_points = 0
        self.unlocked_character_ids = _unique(self.unlocked_character_ids)
        if DEFAULT_CHARACTER_ID not in self.unlocked_character_ids:
            self.unlocked_character_ids.insert(0, DEFAULT_CHARACTER_ID)
        self.unlocked_achievements = _unique(self.unlocked_achievements)
        self.claimed_achievements = [
            a for a in _unique(self.claimed_achievements) if a in self.unlocked_achievements
        ]
        return self


def _unique(values: Optional[Iterable]) -> List[str]:
    result: List[str] = []
    for value in values or []:
        if isinstance(value, str) and value and value not in result:
            result.append(value)
    return result


class AchievementTracker:
    def __init__(self, achievements: Optional[Dict[str, Achievement]] = None) -> None:
        self.achievements = dict(achievements if achievements is not None else ACHIEVEMENTS)

    def observe(self, character: Optional[Character], meta: MetaProgress) -> List[str]:
        """Record every achievement whose predicate now holds; return the new ids."""
        if character is None:
            return []
        unlocked: List[str] = []
        for achievement in self.achievements.values():
            if achievement.id in meta.unlocked_achievements:
                continue
            try:
                reached = bool(achievement.predicate(character))
            except (AttributeError, TypeError, ValueError) as exc:
                logger.warning("Achievement check failed", achievement=achievement.id, error=str(exc))
                continue
            if reached:
                meta.unlocked_achievements.append(achievement.id)
                unlocked.append(achievement.id)
        if unlocked:
            logger.info("Achievements unlocked", achievements=unlocked)
        return unlocked

    def claim(self, meta: MetaProgress, achievement_id: str) -> bool:
        achievement = self.achievements.get(achievement_id)
        if achievement is None:
            raise UnknownReferenceError(f"Unknown achievement '{achievement_id}'.")
        if achievement_id not in meta.unlocked_achievements:
            return False
        if achievement_id in meta.claimed_achievements:
            return False
        meta.claimed_achievements.append(achievement_id)
        meta.achievement_points += achievement.points
        return True

    def claim_all(self, meta: MetaProgress) -> int:
        gained = 0
        for achievement_id in list(meta.unlocked_achievements):
            if achievement_id in self.achievements and self.claim(meta, achievement_id):
                gained += self.achievements[achievement_id].points
        return gained


def is_unlocked(meta: MetaProgress, template_id: str) -> bool:
    return template_id in meta.unlocked_character_ids


def unlock_character(meta: MetaProgress, template_id: str) -> bool:
    template = CHARACTER_TEMPLATES.get(template_id)
    if template is None:
        raise UnknownReferenceError(f"Unknown character template '{template_id}'.")
    if is_unlocked(meta, template_id):
        return True
    if meta.achievement_points < template.unlock_points:
        return False
    meta.achievement_points -= template.unlock_points
    meta.unlocked_character_ids.append(template_id)
    return True
