"""Cultivation advancement and derived-value formulas.

Everything here is a pure function of its arguments. ``apply_experience`` is
the one convenience wrapper that assigns the advanced cultivation back onto a
character.
"""

from __future__ import annotations

import math
from dataclasses import replace
from enum import Enum
from typing import Union

from .models import Character, Cultivation, clamp

# Cumulative experience needed to reach each level.
EXPERIENCE_REQUIREMENTS = (0, 300, 900, 2400, 6000, 15000, 37500, 90000, 210000, 450000)
MAX_LEVEL = len(EXPERIENCE_REQUIREMENTS) - 1

LEVEL_NAMES = (
    "Mortal",
    "Qi Refining",
    "Foundation Establishment",
    "Core Formation",
    "Golden Core",
    "Nascent Soul",
    "Void Refinement",
    "Body Integration",
    "Tribulation Transcendence",
    "Mahayana",
)
STAGE_NAMES = ("Early", "Middle", "Late", "Perfected")

MAX_AGE_BY_LEVEL = (80, 110, 180, 260, 380, 500, 650, 800, 1000, 1200)
DEFAULT_MAX_AGE = 100

SUCCESS_RATE_FLOOR = 0.1
SUCCESS_RATE_CEILING = 1.0


def _as_int(value, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def requirement(level: int) -> int:
    """Cumulative experience needed to stand at ``level``."""
    level = clamp(_as_int(level), 0, MAX_LEVEL)
    return EXPERIENCE_REQUIREMENTS[level]


def max_age(level: int) -> int:
    level = _as_int(level, -1)
    if 0 <= level < len(MAX_AGE_BY_LEVEL):
        return MAX_AGE_BY_LEVEL[level]
    return DEFAULT_MAX_AGE


def level_name(level: int) -> str:
    level = clamp(_as_int(level), 0, MAX_LEVEL)
    return LEVEL_NAMES[level]


def realm_label(cultivation: Cultivation) -> str:
    stage = clamp(_as_int(cultivation.stage), 0, len(STAGE_NAMES) - 1)
    return f"{level_name(cultivation.level)} ({STAGE_NAMES[stage]})"


def check_advancement(cultivation: Cultivation) -> Cultivation:
    """Advance at most one level if the experience total allows it."""
    level = clamp(_as_int(cultivation.level), 0, MAX_LEVEL)
    if level >= MAX_LEVEL:
        return cultivation
    if cultivation.experience >= EXPERIENCE_REQUIREMENTS[level + 1]:
        return replace(cultivation, level=level + 1, stage=0)
    return cultivation


def advance(cultivation: Cultivation, delta: int) -> Cultivation:
    delta = _as_int(delta)
    if delta == 0:
        return cultivation
    experience = max(0, _as_int(cultivation.experience) + delta)
    updated = replace(cultivation, experience=experience)
    if delta < 0:
        return updated
    return check_advancement(updated)


def apply_experience(character: Character, delta: int) -> bool:
    """Add ``delta`` experience; return True when a level was gained."""
    before = character.cultivation.level
    character.cultivation = advance(character.cultivation, delta)
    return character.cultivation.level > before


def experience_percentage(target: Union[Character, Cultivation]) -> float:
    cultivation = target.cultivation if isinstance(target, Character) else target
    try:
        level = int(cultivation.level)
        experience = float(cultivation.experience)
    except (AttributeError, TypeError, ValueError, OverflowError):
        return 0.0
    if math.isnan(experience) or experience < 0 or level < 0:
        return 0.0
    if level >= MAX_LEVEL:
        return 100.0
    needed = EXPERIENCE_REQUIREMENTS[level + 1]
    return min(100.0, max(0.0, experience / needed * 100))


def experience_gain(base: int, comprehension: int) -> int:
    base = _as_int(base)
    if base <= 0:
        return base
    return base + math.floor(base * max(0, _as_int(comprehension)) / 20)


def success_rate(base_rate: float, constitution: int, comprehension: int, luck: int) -> float:
    try:
        rate = float(base_rate) + 0.02 * constitution + 0.02 * comprehension + 0.01 * luck
    except (TypeError, ValueError):
        return SUCCESS_RATE_FLOOR
    if math.isnan(rate):
        return SUCCESS_RATE_FLOOR
    return clamp(rate, SUCCESS_RATE_FLOOR, SUCCESS_RATE_CEILING)


def health_recovery(constitution: int) -> int:
    return max(0, math.floor(_as_int(constitution) * 0.5))


class PillQuality(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    PERFECT = "perfect"

    @property
    def invalid_chance(self) -> float:
        return _QUALITY_TABLE[self][0]

    @property
    def effect_multiplier(self) -> float:
        return _QUALITY_TABLE[self][1]


_QUALITY_TABLE = {
    PillQuality.LOW: (0.5, 0.5),
    PillQuality.MEDIUM: (0.2, 0.8),
    PillQuality.HIGH: (0.05, 1.0),
    PillQuality.PERFECT: (0.0, 1.5),
}


def pill_quality(score: float) -> PillQuality:
    try:
        score = float(score)
    except (TypeError, ValueError):
        return PillQuality.LOW
    if math.isnan(score):
        return PillQuality.LOW
    score = clamp(score, 0.0, 100.0)
    if score >= 90:
        return PillQuality.PERFECT
    if score >= 70:
        return PillQuality.HIGH
    if score >= 50:
        return PillQuality.MEDIUM
    return PillQuality.LOW


def parse_quality(value) -> PillQuality:
    if isinstance(value, PillQuality):
        return value
    if isinstance(value, str):
        try:
            return PillQuality(value.strip().lower())
        except ValueError:
            pass
    if isinstance(value, (int, float)):
        return pill_quality(value)
    return PillQuality.LOW
