"""Save record migration registry."""

from __future__ import annotations

import copy
from typing import Callable, Dict, List

from .errors import ProgressionError

SCHEMA_VERSION = 1


class SaveMigrationError(ProgressionError):
    """Raised when a save cannot be migrated to the latest schema."""


Migration = Callable[[Dict], Dict]

_LEGACY_INVENTORY_CATEGORIES = ("herbs", "minerals", "beastParts", "specialIngredients", "pills")
_LEGACY_QUALITIES = ("low", "medium", "high", "perfect")
_LEGACY_SETTINGS = {
    "showCondition": "show_conditions",
    "hideHighRiskOptions": "hide_high_risk_options",
    "showAttributeChanges": "show_attribute_changes",
    "showExperienceChanges": "show_experience_changes",
    "showAttributeBonusValues": "show_attribute_bonus_values",
}


def _legacy_item_id(category: str, key: str) -> str:
    if category == "pills":
        recipe_id, _, quality = key.rpartition("_")
        if recipe_id and quality in _LEGACY_QUALITIES:
            return f"{recipe_id}:{quality}"
    return key


def _migrate_inventory(inventory) -> List[Dict]:
    if isinstance(inventory, list):
        return inventory
    stacks: List[Dict] = []
    if not isinstance(inventory, dict):
        return stacks
    for category in _LEGACY_INVENTORY_CATEGORIES:
        entries = inventory.get(category)
        if not isinstance(entries, dict):
            continue
        for key, quantity in entries.items():
            if isinstance(quantity, int) and quantity > 0:
                stacks.append({"id": _legacy_item_id(category, key), "quantity": quantity})
    return stacks


def _migrate_v0_to_v1(payload: Dict) -> Dict:
    character = payload.get("currentCharacter")
    if not isinstance(character, dict):
        raise SaveMigrationError("Missing currentCharacter block for legacy save.")
    character = dict(character)
    character["inventory"] = _migrate_inventory(character.get("inventory"))
    if "currentNode" not in character and isinstance(payload.get("currentNode"), str):
        character["currentNode"] = payload["currentNode"]

    settings = payload.get("settings")
    if not isinstance(settings, dict):
        settings = {}
        for legacy_key, key in _LEGACY_SETTINGS.items():
            if legacy_key in payload:
                settings[key] = payload[legacy_key]
        game_mode = payload.get("gameMode")
        if isinstance(game_mode, dict):
            settings["quick_mode"] = game_mode.get("isQuickMode", False)
            settings["quick_mode_multiplier"] = game_mode.get("quickModeMultiplier", 0.7)
            settings["quick_mode_difficulty"] = game_mode.get("quickModeDifficulty", 0.5)

    claimed = payload.get("claimedAchievements")
    if isinstance(claimed, dict):
        claimed = [key for key, value in claimed.items() if value]
    elif not isinstance(claimed, list):
        claimed = []

    return {
        "version": 1,
        "currentCharacter": character,
        "achievementPoints": payload.get("achievementPoints", 0),
        "unlockedCharacterIds": payload.get(
            "unlockedCharacterIds", payload.get("unlockedCharacters", [])
        ),
        "unlockedAchievements": payload.get("unlockedAchievements", []),
        "claimedAchievements": claimed,
        "settings": settings,
    }


MIGRATIONS: Dict[int, Migration] = {
    0: _migrate_v0_to_v1,
}


def migrate_record(payload: Dict, target_version: int = SCHEMA_VERSION) -> Dict:
    if not isinstance(payload, dict):
        raise SaveMigrationError("Save payload was not an object.")

    version = payload.get("version", 0)
    if version is None or isinstance(version, str):
        # The browser build stored an app version string such as "1.0.2".
        version = 0
    if not isinstance(version, int):
        raise SaveMigrationError("Save version missing or invalid.")
    if version > target_version:
        raise SaveMigrationError(
            f"Save schema {version} is newer than supported {target_version}."
        )

    current = copy.deepcopy(payload)
    while version < target_version:
        migrator = MIGRATIONS.get(version)
        if migrator is None:
            raise SaveMigrationError(f"No migration available for save schema {version}.")
        current = migrator(current)
        version = current.get("version", version + 1)
        if not isinstance(version, int):
            raise SaveMigrationError("Migration produced an invalid schema version.")
    return current
