"""Terminal-state detection and ending classification."""

from __future__ import annotations

from typing import Optional

from .calculator import max_age
from .models import Character, Ending

DEATH = "death"
SUCCESS = "success"

# Checked in order; the first tag the character carries picks the variant.
SUCCESS_VARIANTS = (
    ("ascended", "ascension"),
    ("sovereign", "supremacy"),
    ("guardian", "guardian"),
    ("reincarnated", "reincarnation"),
)
DEFAULT_SUCCESS_VARIANT = "legend"


def detect_terminal(character: Character) -> Optional[Ending]:
    if character.ending is not None:
        return character.ending
    if character.health <= 0:
        return Ending(DEATH, DEATH, "health")
    if character.age > max_age(character.cultivation.level):
        return Ending(DEATH, DEATH, "lifespan")
    return None


def classify_ending(
    character: Character, ending_id: Optional[str] = None, variant: Optional[str] = None
) -> Ending:
    if variant:
        return Ending(SUCCESS, variant, ending_id)
    for tag, name in SUCCESS_VARIANTS:
        if tag in character.tags:
            return Ending(SUCCESS, name, ending_id)
    return Ending(SUCCESS, DEFAULT_SUCCESS_VARIANT, ending_id)


def death_ending(reason: Optional[str] = None) -> Ending:
    return Ending(DEATH, DEATH, reason)
