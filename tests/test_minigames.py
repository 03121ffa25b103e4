import math

import pytest

from progression.catalog import create_character
from progression.errors import UnknownReferenceError
from progression.minigames import MiniGameAdapter, MiniGameResult, MiniGameRule

RULES = {
    "alchemy_trial": {
        "record": "Attempted the alchemy trial",
        "on_success": [
            {"type": "pills_from_payload", "recipe": "qi_gathering_pill"},
            {"type": "experience_from_score", "base": 20, "factor": 1},
        ],
        "on_failure": [{"type": "health_delta", "value": -10}],
        "next": {"success": "hall", "failure": "infirmary"},
    },
    "sparring": {
        "repeatable": True,
        "on_success": {"type": "attr_delta", "attr": "constitution", "value": 1},
    },
}


def build_adapter() -> MiniGameAdapter:
    return MiniGameAdapter.from_world(RULES)


def test_result_is_sanitised() -> None:
    assert MiniGameResult.create(1, "87.5").score == 87.5
    assert MiniGameResult.create(True, math.nan).score == 0.0
    assert MiniGameResult.create(True, -4).score == 0.0
    assert MiniGameResult.create(True, "lots", payload="junk").payload == {}
    cancelled = MiniGameResult.cancelled()
    assert cancelled.success is False
    assert cancelled.score == 0.0


def test_success_grants_pills_and_experience() -> None:
    character = create_character("xiaoyan")
    adapter = build_adapter()
    result = MiniGameResult.create(True, 80, {"recipeId": "qi_gathering_pill", "quality": "high"})
    assert adapter.submit(character, "alchemy_trial", result) is True
    assert character.item_count("qi_gathering_pill:high") == 3
    assert character.resources.pills == 10
    assert character.cultivation.experience == 100
    assert character.choices == ["Attempted the alchemy trial"]
    assert adapter.rule("alchemy_trial").next_node(result) == "hall"


def test_quality_falls_back_to_score() -> None:
    character = create_character("xiaoyan")
    build_adapter().submit(character, "alchemy_trial", MiniGameResult.create(True, 95))
    assert character.item_count("qi_gathering_pill:perfect") == 3


def test_duplicate_submission_is_ignored() -> None:
    character = create_character("xiaoyan")
    adapter = build_adapter()
    result = MiniGameResult.create(True, 60, {"recipeId": "qi_gathering_pill"})
    assert adapter.submit(character, "alchemy_trial", result) is True
    before = character.cultivation.experience
    assert adapter.submit(character, "alchemy_trial", result) is False
    assert character.cultivation.experience == before
    assert character.item_count("qi_gathering_pill:medium") == 3
    assert adapter.is_completed(character, "alchemy_trial")


def test_talent_doubles_pill_yield() -> None:
    character = create_character("baixiaochun")
    result = MiniGameResult.create(True, 75, {"recipeId": "qi_gathering_pill"})
    build_adapter().submit(character, "alchemy_trial", result)
    assert character.item_count("qi_gathering_pill:high") == 6


def test_cancel_counts_as_failure() -> None:
    character = create_character("xiaoyan")
    adapter = build_adapter()
    assert adapter.cancel(character, "alchemy_trial") is True
    assert character.health == 90
    assert adapter.rule("alchemy_trial").next_node(MiniGameResult.cancelled()) == "infirmary"
    assert adapter.cancel(character, "alchemy_trial") is False


def test_repeatable_rule_keys_by_turn() -> None:
    character = create_character("xiaoyan")
    adapter = build_adapter()
    win = MiniGameResult.create(True, 50)
    assert adapter.submit(character, "sparring", win) is True
    assert adapter.submit(character, "sparring", win) is False
    character.visited_nodes.append("arena")
    assert adapter.submit(character, "sparring", win) is False
    character.turn += 1
    assert adapter.submit(character, "sparring", win) is True
    assert character.constitution == 10


def test_callable_consequence_receives_result() -> None:
    seen = []
    adapter = MiniGameAdapter()
    adapter.register(
        MiniGameRule("custom", on_success=[lambda character, result: seen.append(result.score)])
    )
    adapter.submit(create_character("xiaoyan"), "custom", MiniGameResult.create(True, 42))
    assert seen == [42.0]


def test_unknown_context_raises() -> None:
    with pytest.raises(UnknownReferenceError):
        build_adapter().submit(create_character("xiaoyan"), "fishing", MiniGameResult.create(True))


def test_malformed_rule_effects_are_skipped() -> None:
    def broken(character, result):
        raise RuntimeError("scripted reward failed")

    adapter = MiniGameAdapter()
    adapter.register(
        MiniGameRule(
            "custom",
            on_success=[
                {"type": "experience_from_score", "base": "lots"},
                broken,
                {"type": "add_tag", "value": "finished"},
            ],
        )
    )
    character = create_character("xiaoyan")
    assert adapter.submit(character, "custom", MiniGameResult.create(True, 42)) is True
    assert character.cultivation.experience == 0
    assert character.tags == ["finished"]
    assert character.completed_minigames == ["custom"]
