import random

import pytest

from progression.engine import ProgressionEngine
from progression.navigator import load_world


def simulate_random_playthrough(engine: ProgressionEngine, *, seed: int, max_steps: int = 200) -> str:
    rng = random.Random(seed)
    for _ in range(max_steps):
        character = engine.character
        if character.ending is not None:
            return character.ending.variant

        node = engine.graph.node(character.current_node)
        if node.minigame and not engine.adapter.is_completed(character, node.minigame):
            if rng.random() < 0.2:
                assert engine.cancel_minigame(node.minigame)
            else:
                payload = {"recipeId": "qi_gathering_pill"}
                assert engine.submit_minigame_result(
                    node.minigame, rng.random() < 0.6, rng.uniform(0, 100), payload
                )
            continue

        selectable = [view for view in engine.available_choices() if view.selectable]
        assert selectable, f"No available choices from node '{node.id}'."
        outcome = engine.submit_choice(node.id, rng.choice(selectable).id)
        assert outcome.ok, outcome.error
    raise AssertionError(f"Playthrough exceeded {max_steps} steps without reaching an ending.")


@pytest.mark.parametrize("template_id", ["xiaoyan", "hanli", "baixiaochun", "liqiye"])
@pytest.mark.parametrize("seed", range(5))
def test_random_playthrough_reaches_ending(template_id: str, seed: int) -> None:
    engine = ProgressionEngine(load_world(), rng=random.Random(seed))
    engine.state.meta.unlocked_character_ids.append(template_id)
    assert engine.start_new_game(template_id)

    ending = simulate_random_playthrough(engine, seed=seed)
    assert ending in {"death", "ascension", "supremacy", "guardian", "reincarnation", "legend"}


@pytest.mark.parametrize("seed", range(3))
def test_save_code_survives_every_step(seed: int) -> None:
    rng = random.Random(seed)
    engine = ProgressionEngine(load_world(), rng=random.Random(seed))
    assert engine.start_new_game("xiaoyan")
    while engine.character.ending is None:
        restored = ProgressionEngine(load_world())
        assert restored.load_from_save_code(engine.generate_save_code())
        assert restored.character == engine.character

        node = engine.graph.node(engine.character.current_node)
        if node.minigame and not engine.adapter.is_completed(engine.character, node.minigame):
            engine.submit_minigame_result(node.minigame, True, rng.uniform(0, 100))
            continue
        choices = [view for view in engine.available_choices() if view.selectable]
        engine.submit_choice(node.id, rng.choice(choices).id)
