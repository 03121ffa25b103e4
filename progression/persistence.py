"""Save codes and durable storage for the full game state."""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import os
import shutil
import string
import tempfile
import urllib.parse
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from .achievements import MetaProgress
from .catalog import CHARACTER_TEMPLATES, catalog_stack, starting_resources
from .errors import CorruptSaveError, ProgressionError, UnknownReferenceError
from .models import (
    ATTRIBUTES,
    START_AGE,
    START_NODE,
    Character,
    Cultivation,
    Ending,
    ItemEffect,
    ItemStack,
    Resources,
    normalize_character,
)
from .save_migrations import SCHEMA_VERSION, SaveMigrationError, migrate_record
from .settings import Settings

logger = structlog.get_logger(__name__)

STORAGE_KEY = "xiuxian_game_state"
DEFAULT_SAVE_ROOT = Path("saves")
DEFAULT_SLOT = "default"
_CHECKSUM_BYTES = 4


class SaveError(ProgressionError):
    """Raised when durable storage cannot be read or written."""


@dataclass
class GameState:
    """Everything a save captures: the playthrough plus meta-progression."""

    character: Optional[Character] = None
    meta: MetaProgress = field(default_factory=MetaProgress)
    settings: Settings = field(default_factory=Settings)


# ---------- Character encoding ----------
def _as_int(value: Any, default: int = 0) -> int:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return default


def _str_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def _stack_to_dict(stack: ItemStack) -> Dict[str, Any]:
    data = {
        "id": stack.id,
        "name": stack.name,
        "quantity": stack.quantity,
        "effect": stack.effect.to_dict(),
    }
    if stack.quality is not None:
        data["quality"] = stack.quality
    return data


def _stack_from_dict(data: Any) -> Optional[ItemStack]:
    if not isinstance(data, dict) or not isinstance(data.get("id"), str):
        return None
    quantity = _as_int(data.get("quantity"), 0)
    if quantity < 1:
        return None
    if "effect" not in data:
        # Legacy stacks carry only id and quantity; rebuild the rest from the catalog.
        try:
            return catalog_stack(data["id"], quantity)
        except UnknownReferenceError:
            logger.warning("Dropped unknown inventory item", item_id=data["id"])
            return None
    return ItemStack(
        id=data["id"],
        name=str(data.get("name") or data["id"]),
        quantity=quantity,
        effect=ItemEffect.from_dict(data.get("effect")),
        quality=data.get("quality"),
    )


def character_to_dict(character: Character) -> Dict[str, Any]:
    data: Dict[str, Any] = {"id": character.id, "name": character.name}
    data.update(character.attributes())
    data.update(
        {
            "age": character.age,
            "health": character.health,
            "reputation": character.reputation,
            "cultivation": {
                "level": character.cultivation.level,
                "stage": character.cultivation.stage,
                "experience": character.cultivation.experience,
            },
            "resources": {
                "spiritStone": character.resources.spirit_stone,
                "pills": character.resources.pills,
                "treasures": list(character.resources.treasures),
            },
            "inventory": [_stack_to_dict(stack) for stack in character.inventory],
            "choices": list(character.choices),
            "tags": list(character.tags),
            "visitedNodes": list(character.visited_nodes),
            "currentNode": character.current_node,
            "initialAttributes": dict(character.initial_attributes),
            "statuses": list(character.statuses),
            "completedMiniGames": list(character.completed_minigames),
            "turn": character.turn,
            "lastDamageTurn": character.last_damage_turn,
            "ending": (
                {
                    "kind": character.ending.kind,
                    "variant": character.ending.variant,
                    "reason": character.ending.reason,
                }
                if character.ending
                else None
            ),
        }
    )
    return data


def character_from_dict(data: Any) -> Character:
    """Rebuild a character, defaulting any optional field that is missing."""
    if not isinstance(data, dict):
        raise CorruptSaveError("currentCharacter must be an object.")
    char_id = data.get("id")
    if not isinstance(char_id, str) or not char_id:
        raise CorruptSaveError("currentCharacter.id missing.")
    template = CHARACTER_TEMPLATES.get(char_id)
    base = template.attributes() if template else {}

    attributes = {name: _as_int(data.get(name, base.get(name, 0))) for name in ATTRIBUTES}
    family = base.get("family", attributes["family"])
    defaults = starting_resources(family)

    cult_blob = data.get("cultivation") if isinstance(data.get("cultivation"), dict) else {}
    cultivation = Cultivation(
        level=_as_int(cult_blob.get("level")),
        stage=_as_int(cult_blob.get("stage")),
        experience=_as_int(cult_blob.get("experience")),
    )

    res_blob = data.get("resources") if isinstance(data.get("resources"), dict) else {}
    resources = Resources(
        spirit_stone=_as_int(res_blob.get("spiritStone", defaults.spirit_stone), defaults.spirit_stone),
        pills=_as_int(res_blob.get("pills", defaults.pills), defaults.pills),
        treasures=_str_list(res_blob.get("treasures")),
    )

    inventory = []
    raw_inventory = data.get("inventory")
    for entry in raw_inventory if isinstance(raw_inventory, list) else []:
        stack = _stack_from_dict(entry)
        if stack is not None:
            inventory.append(stack)

    initial = data.get("initialAttributes")
    if isinstance(initial, dict) and all(name in initial for name in ATTRIBUTES):
        initial_attributes = {name: _as_int(initial[name]) for name in ATTRIBUTES}
    else:
        initial_attributes = dict(base or attributes)

    ending_blob = data.get("ending")
    ending = None
    if isinstance(ending_blob, dict) and ending_blob.get("kind") in ("success", "death"):
        ending = Ending(
            kind=ending_blob["kind"],
            variant=str(ending_blob.get("variant") or ending_blob["kind"]),
            reason=ending_blob.get("reason"),
        )

    last_damage = data.get("lastDamageTurn")
    character = Character(
        id=char_id,
        name=str(data.get("name") or (template.name if template else char_id)),
        age=_as_int(data.get("age"), START_AGE),
        health=_as_int(data.get("health"), 100),
        reputation=_as_int(data.get("reputation")),
        cultivation=cultivation,
        resources=resources,
        inventory=inventory,
        choices=_str_list(data.get("choices")),
        tags=_str_list(data.get("tags")),
        visited_nodes=_str_list(data.get("visitedNodes")),
        current_node=data.get("currentNode") if isinstance(data.get("currentNode"), str) else START_NODE,
        initial_attributes=initial_attributes,
        statuses=_str_list(data.get("statuses")),
        completed_minigames=_str_list(data.get("completedMiniGames")),
        turn=_as_int(data.get("turn")),
        last_damage_turn=_as_int(last_damage) if last_damage is not None else None,
        ending=ending,
        **attributes,
    )
    return normalize_character(character)


# ---------- Root record ----------
def build_record(state: GameState) -> Dict[str, Any]:
    if state.character is None:
        raise SaveError("There is no active character to save.")
    meta = state.meta
    return {
        "version": SCHEMA_VERSION,
        "currentCharacter": character_to_dict(state.character),
        "achievementPoints": meta.achievement_points,
        "unlockedCharacterIds": list(meta.unlocked_character_ids),
        "unlockedAchievements": list(meta.unlocked_achievements),
        "claimedAchievements": list(meta.claimed_achievements),
        "settings": state.settings.to_dict(),
    }


def _validate_record(record: Any) -> None:
    if not isinstance(record, dict):
        raise CorruptSaveError("Save record was not an object.")
    if not isinstance(record.get("currentCharacter"), dict):
        raise CorruptSaveError("Save record has no currentCharacter.")


def state_from_record(record: Any) -> GameState:
    """Migrate, validate and rebuild a full state; raises before anything is applied."""
    try:
        record = migrate_record(record, SCHEMA_VERSION)
    except (SaveMigrationError, TypeError, ValueError, OverflowError) as exc:
        raise CorruptSaveError(str(exc)) from exc
    _validate_record(record)
    try:
        character = character_from_dict(record["currentCharacter"])
        meta = MetaProgress(
            achievement_points=record.get("achievementPoints", 0),
            unlocked_character_ids=_str_list(record.get("unlockedCharacterIds")),
            unlocked_achievements=_str_list(record.get("unlockedAchievements")),
            claimed_achievements=_str_list(record.get("claimedAchievements")),
        ).normalize()
        settings = Settings.from_dict(record.get("settings"))
    except (TypeError, ValueError, OverflowError, AttributeError) as exc:
        raise CorruptSaveError(f"Save record is malformed: {exc}") from exc
    return GameState(character=character, meta=meta, settings=settings)


# ---------- Save codes ----------
def encode_save_code(record: Dict[str, Any]) -> str:
    """URL-safe, separator-free string form of ``record``."""
    body = json.dumps(record, ensure_ascii=False, separators=(",", ":"), sort_keys=True)
    blob = zlib.compress(body.encode("utf-8"), 9)
    digest = hashlib.sha1(blob).digest()[:_CHECKSUM_BYTES]
    return base64.urlsafe_b64encode(digest + blob).decode("ascii").rstrip("=")


def _b64decode(code: str, *, urlsafe: bool) -> bytes:
    padded = code + "=" * (-len(code) % 4)
    if urlsafe:
        return base64.urlsafe_b64decode(padded.encode("ascii"))
    return base64.b64decode(padded.encode("ascii"), validate=True)


def _decode_legacy(code: str) -> Dict[str, Any]:
    # The browser build exported btoa(encodeURIComponent(JSON)).
    raw = _b64decode(code, urlsafe=False).decode("ascii")
    return json.loads(urllib.parse.unquote(raw))


def decode_save_code(code: Any) -> Dict[str, Any]:
    if not isinstance(code, str):
        raise CorruptSaveError("Save code must be a string.")
    code = "".join(code.split())
    if not code:
        raise CorruptSaveError("Save code is empty.")
    try:
        raw = _b64decode(code, urlsafe=True)
    except (binascii.Error, ValueError) as exc:
        raise CorruptSaveError("Save code is not valid base64.") from exc

    digest, blob = raw[:_CHECKSUM_BYTES], raw[_CHECKSUM_BYTES:]
    if hashlib.sha1(blob).digest()[:_CHECKSUM_BYTES] == digest:
        try:
            record = json.loads(zlib.decompress(blob).decode("utf-8"))
        except (zlib.error, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise CorruptSaveError("Save code payload is unreadable.") from exc
    else:
        try:
            record = _decode_legacy(code)
        except (binascii.Error, ValueError) as exc:
            raise CorruptSaveError("Save code checksum mismatch.") from exc
    _validate_record(record)
    return record


# ---------- Durable storage ----------
class SaveStore:
    """One storage key per slot, written atomically with a rolling backup."""

    BACKUP_SUFFIX = ".bak"
    _VALID_SLOT_CHARS = set(string.ascii_lowercase + string.digits + "-_")

    def __init__(self, base_path: Path | str = DEFAULT_SAVE_ROOT) -> None:
        self.base_path = Path(base_path)

    def key_for(self, slot: str = DEFAULT_SLOT) -> str:
        slot = self._normalize_slot(slot)
        if slot == DEFAULT_SLOT:
            return STORAGE_KEY
        return f"{STORAGE_KEY}.{slot}"

    def path_for(self, slot: str = DEFAULT_SLOT) -> Path:
        return self.base_path / f"{self.key_for(slot)}.json"

    def exists(self, slot: str = DEFAULT_SLOT) -> bool:
        return self.path_for(slot).exists()

    def list_slots(self) -> List[str]:
        if not self.base_path.exists():
            return []
        slots = []
        for child in sorted(self.base_path.glob(f"{STORAGE_KEY}*.json")):
            stem = child.name[: -len(".json")]
            slots.append(DEFAULT_SLOT if stem == STORAGE_KEY else stem[len(STORAGE_KEY) + 1 :])
        return slots

    def write(self, record: Dict[str, Any], slot: str = DEFAULT_SLOT) -> Path:
        _validate_record(record)
        path = self.path_for(slot)
        # The whole record is serialised before the file is touched.
        text = json.dumps(record, ensure_ascii=False, indent=2) + "\n"
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", delete=False, dir=path.parent, prefix=path.name, suffix=".tmp", encoding="utf-8"
            ) as tmp_file:
                tmp_file.write(text)
                tmp_path = Path(tmp_file.name)
            if path.exists():
                shutil.copy2(path, path.with_suffix(path.suffix + self.BACKUP_SUFFIX))
            os.replace(str(tmp_path), str(path))
        except OSError as exc:
            if tmp_path is not None:
                try:
                    tmp_path.unlink()
                except OSError:
                    pass
            raise SaveError(f"Failed to write save slot '{slot}': {exc}") from exc
        logger.debug("Save written", slot=slot, path=str(path))
        return path

    def read(self, slot: str = DEFAULT_SLOT) -> Dict[str, Any]:
        path = self.path_for(slot)
        backup_path = path.with_suffix(path.suffix + self.BACKUP_SUFFIX)
        if not path.exists():
            if backup_path.exists():
                return self._read_file(backup_path)
            raise SaveError(f"No save found for slot '{slot}'.")
        try:
            return self._read_file(path)
        except CorruptSaveError as err:
            if not backup_path.exists():
                raise
            logger.warning("Save corrupted, using backup", slot=slot, error=str(err))
            return self._read_file(backup_path)

    def delete(self, slot: str = DEFAULT_SLOT) -> None:
        path = self.path_for(slot)
        for candidate in (path, path.with_suffix(path.suffix + self.BACKUP_SUFFIX)):
            if candidate.exists():
                candidate.unlink()

    def _read_file(self, path: Path) -> Dict[str, Any]:
        try:
            with open(path, "r", encoding="utf-8") as handle:
                record = json.load(handle)
        except FileNotFoundError as exc:
            raise SaveError("Save file missing.") from exc
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise CorruptSaveError(f"Invalid JSON: {exc}") from exc
        try:
            record = migrate_record(record, SCHEMA_VERSION)
        except SaveMigrationError as exc:
            raise CorruptSaveError(str(exc)) from exc
        _validate_record(record)
        return record

    def _normalize_slot(self, slot: str) -> str:
        slot = (slot or "").strip().lower()
        cleaned = "".join(ch for ch in slot if ch in self._VALID_SLOT_CHARS)
        if not cleaned:
            raise SaveError("Slot names must contain letters or numbers.")
        return cleaned
