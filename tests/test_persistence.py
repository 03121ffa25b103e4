import base64
import json
import string
import urllib.parse
from pathlib import Path

import pytest

from progression.achievements import MetaProgress
from progression.catalog import create_character, material_stack, recipe_pill
from progression.calculator import PillQuality
from progression.effects import add_stack
from progression.errors import CorruptSaveError
from progression.models import Ending
from progression.persistence import (
    STORAGE_KEY,
    GameState,
    SaveError,
    SaveStore,
    build_record,
    character_from_dict,
    decode_save_code,
    encode_save_code,
    state_from_record,
)
from progression.settings import Settings

URLSAFE_ALPHABET = set(string.ascii_letters + string.digits + "-_")


def build_state() -> GameState:
    character = create_character("xiaoyan")
    character.cultivation.level = 1
    character.cultivation.experience = 420
    character.health = 64
    character.turn = 7
    character.last_damage_turn = 5
    character.tags = ["outer_disciple", "righteous"]
    character.choices = ["Climbed the mountain", "Carried water"]
    character.visited_nodes = ["start", "sect_outer"]
    character.current_node = "sect_outer"
    character.completed_minigames = ["alchemy_trial"]
    character.resources.treasures = ["gold_touch_scroll"]
    add_stack(character, material_stack("lingzhi", 2))
    add_stack(character, recipe_pill("qi_gathering_pill", PillQuality.HIGH, 3))
    meta = MetaProgress(
        achievement_points=30,
        unlocked_character_ids=["xiaoyan"],
        unlocked_achievements=["first_step", "righteous_path"],
        claimed_achievements=["first_step"],
    )
    return GameState(character=character, meta=meta, settings=Settings(quick_mode=True))


def test_state_round_trips_through_save_code() -> None:
    state = build_state()
    code = encode_save_code(build_record(state))
    restored = state_from_record(decode_save_code(code))
    assert restored.character == state.character
    assert restored.meta == state.meta
    assert restored.settings == state.settings


def test_save_code_is_url_safe() -> None:
    code = encode_save_code(build_record(build_state()))
    assert code
    assert set(code) <= URLSAFE_ALPHABET


def test_save_code_tolerates_whitespace() -> None:
    record = build_record(build_state())
    code = encode_save_code(record)
    wrapped = "\n".join(code[i : i + 20] for i in range(0, len(code), 20))
    assert decode_save_code(f"  {wrapped}  ") == record


def test_ended_character_round_trips() -> None:
    state = build_state()
    state.character.ending = Ending("success", "guardian", "guardian_end")
    restored = state_from_record(decode_save_code(encode_save_code(build_record(state))))
    assert restored.character.ending == state.character.ending


@pytest.mark.parametrize("code", ["", "   ", None, 12345, "not a save code!!", "abc"])
def test_garbage_codes_are_rejected(code) -> None:
    with pytest.raises(CorruptSaveError):
        decode_save_code(code)


def test_tampered_code_is_rejected() -> None:
    code = encode_save_code(build_record(build_state()))
    middle = len(code) // 2
    flipped = "A" if code[middle] != "A" else "B"
    with pytest.raises(CorruptSaveError):
        decode_save_code(code[:middle] + flipped + code[middle + 1 :])
    with pytest.raises(CorruptSaveError):
        decode_save_code(code[: middle])


def test_legacy_browser_code_is_accepted() -> None:
    legacy = {
        "version": "1.0.2",
        "currentCharacter": {
            "id": "xiaoyan",
            "name": "Xiao Yan",
            "charm": 7,
            "comprehension": 9,
            "constitution": 8,
            "family": 5,
            "luck": 8,
            "cultivation": {"level": 1, "stage": 0, "experience": 350},
            "resources": {"spiritStone": 80, "pills": 4, "treasures": []},
            "inventory": {"herbs": {"lingzhi": 3}, "pills": {"qi_gathering_pill_high": 2}},
        },
        "currentNode": "sect_outer",
        "achievementPoints": 10,
        "unlockedCharacters": ["xiaoyan"],
        "claimedAchievements": {"first_step": True},
        "unlockedAchievements": ["first_step"],
        "showCondition": False,
    }
    code = base64.b64encode(urllib.parse.quote(json.dumps(legacy)).encode("ascii")).decode("ascii")
    state = state_from_record(decode_save_code(code))
    character = state.character
    assert character.cultivation.experience == 350
    assert character.resources.spirit_stone == 80
    assert character.current_node == "sect_outer"
    assert character.item_count("lingzhi") == 3
    assert character.item_count("qi_gathering_pill:high") == 2
    assert state.meta.claimed_achievements == ["first_step"]
    assert state.settings.show_conditions is False


def test_missing_resources_use_template_defaults() -> None:
    record = {"version": 1, "currentCharacter": {"id": "xiaoyan", "name": "Xiao Yan"}}
    character = state_from_record(record).character
    assert character.resources.spirit_stone == 100
    assert character.resources.pills == 7
    assert character.initial_attributes == character.attributes()
    assert character.constitution == 8


def test_missing_resources_for_unknown_template_use_family() -> None:
    character = character_from_dict({"id": "stranger", "family": 2})
    assert character.resources.spirit_stone == 70
    assert character.resources.pills == 6
    assert character.initial_attributes["family"] == 2


def test_out_of_range_values_are_clamped() -> None:
    character = character_from_dict(
        {"id": "xiaoyan", "health": 400, "luck": 99, "cultivation": {"level": 42, "stage": -1}}
    )
    assert character.health == 100
    assert character.luck == 20
    assert character.cultivation.level == 9
    assert character.cultivation.stage == 0


@pytest.mark.parametrize(
    "record",
    [
        {"version": 1},
        {"version": 1, "currentCharacter": "xiaoyan"},
        {"version": 1, "currentCharacter": {"name": "No Id"}},
        {"version": 99, "currentCharacter": {"id": "xiaoyan"}},
        ["not", "a", "record"],
    ],
)
def test_invalid_records_raise(record) -> None:
    with pytest.raises(CorruptSaveError):
        state_from_record(record)


def test_corrupt_field_types_fall_back_to_defaults() -> None:
    record = build_record(build_state())
    character = record["currentCharacter"]
    character["inventory"] = [
        {
            "id": "cracked_charm",
            "name": "Cracked Charm",
            "quantity": 1,
            "effect": {"kind": "experience", "value": float("inf")},
        },
        "junk",
    ]
    character["cultivation"] = {"level": float("inf"), "stage": "two"}
    record["achievementPoints"] = float("inf")
    restored = state_from_record(record)
    assert [(stack.id, stack.effect.value) for stack in restored.character.inventory] == [
        ("cracked_charm", 0)
    ]
    assert restored.character.cultivation.level == 0
    assert restored.meta.achievement_points == 0


def test_non_list_inventory_is_dropped() -> None:
    record = build_record(build_state())
    record["currentCharacter"]["inventory"] = 5
    restored = state_from_record(decode_save_code(encode_save_code(record)))
    assert restored.character.inventory == []


def test_build_record_requires_character() -> None:
    with pytest.raises(SaveError):
        build_record(GameState())


def test_store_writes_and_reads(tmp_path: Path) -> None:
    store = SaveStore(tmp_path)
    record = build_record(build_state())
    path = store.write(record)
    assert path.name == f"{STORAGE_KEY}.json"
    assert store.exists()
    assert store.read() == record


def test_store_keeps_backup_and_recovers(tmp_path: Path) -> None:
    store = SaveStore(tmp_path)
    state = build_state()
    first = build_record(state)
    store.write(first)
    state.character.turn = 8
    store.write(build_record(state))

    path = store.path_for()
    backup = path.with_suffix(path.suffix + ".bak")
    assert backup.exists()
    path.write_text("{ broken")
    assert store.read() == first


def test_store_slots(tmp_path: Path) -> None:
    store = SaveStore(tmp_path)
    assert store.key_for("Slot 1") == f"{STORAGE_KEY}.slot1"
    record = build_record(build_state())
    store.write(record)
    store.write(record, "slot1")
    assert store.list_slots() == ["default", "slot1"]
    store.delete("slot1")
    assert store.list_slots() == ["default"]


def test_store_errors(tmp_path: Path) -> None:
    store = SaveStore(tmp_path)
    with pytest.raises(SaveError):
        store.read()
    with pytest.raises(SaveError):
        store.key_for("!!!")
    store.path_for().write_text("[]")
    with pytest.raises(CorruptSaveError):
        store.read()
