import json
import random
from pathlib import Path

import pytest

from progression.catalog import create_character
from progression.errors import TerminalStateError, UnknownReferenceError, ValidationError
from progression.models import Character
from progression.navigator import (
    Fixed,
    StoryGraph,
    as_next_node,
    available_choices,
    enter_node,
    load_world,
    resolve_next,
)

WORLD = {
    "title": "Test Valley",
    "start": "start",
    "endings": {
        "peak": {"title": "The Peak", "variant": "ascension"},
        "quiet_life": "A Quiet Life",
    },
    "nodes": {
        "start": {
            "text": "A fork in the road.",
            "choices": [
                {
                    "id": "train",
                    "text": "Train at the waterfall",
                    "condition": {"type": "attr_at_least", "attr": "constitution", "value": 6},
                    "effects": [{"type": "experience", "value": 100, "scaled": False}],
                    "target": "camp",
                },
                {
                    "id": "fork",
                    "text": "Follow your heart",
                    "target": [
                        {"condition": {"type": "has_tag", "value": "brave"}, "target": "peak"},
                        {"target": "camp"},
                    ],
                },
                {
                    "id": "cliff",
                    "text": "Leap from the cliff",
                    "effects": [{"type": "health_delta", "value": -200}],
                    "target": "camp",
                },
                {"id": "settle", "text": "Settle down", "target": "quiet_life"},
            ],
        },
        "camp": {
            "text": "A quiet camp.",
            "on_enter": [{"type": "add_status", "value": "rested"}],
            "choices": [{"id": "back", "text": "Return", "target": "start"}],
        },
    },
}


def build_graph() -> StoryGraph:
    return StoryGraph.from_dict(WORLD)


def build_character(**overrides) -> Character:
    character = create_character("xiaoyan")
    for key, value in overrides.items():
        setattr(character, key, value)
    return character


def write_world(tmp_path: Path, world: dict) -> Path:
    path = tmp_path / "world.json"
    path.write_text(json.dumps(world))
    return path


def test_graph_parses_nodes_and_endings() -> None:
    graph = build_graph()
    assert graph.title == "Test Valley"
    assert set(graph.nodes) == {"start", "camp"}
    assert graph.is_ending("peak")
    assert graph.ending_title("peak") == "The Peak"
    assert graph.ending_title("quiet_life") == "A Quiet Life"
    assert graph.ending_variant("quiet_life") is None
    assert graph.nodes["start"].choice("train").record == "Train at the waterfall"
    with pytest.raises(UnknownReferenceError):
        graph.node("nowhere")


def test_gated_choice_rejected_without_side_effects() -> None:
    character = build_character(constitution=4)
    with pytest.raises(ValidationError):
        resolve_next(build_graph(), "start", "train", character)
    assert character.cultivation.experience == 0
    assert character.choices == []
    assert character.current_node == "start"


def test_choice_applies_consequence_records_and_moves() -> None:
    character = build_character()
    transition = resolve_next(build_graph(), "start", "train", character, rng=random.Random(1))
    assert transition.origin == "start"
    assert transition.target == "camp"
    assert transition.ending is None
    assert character.current_node == "camp"
    assert character.cultivation.experience == 100
    assert character.choices == ["Train at the waterfall"]
    assert character.visited_nodes[-1] == "camp"
    assert "rested" in character.statuses


def test_conditional_target_picks_first_match() -> None:
    graph = build_graph()
    plain = build_character()
    resolve_next(graph, "start", "fork", plain)
    assert plain.current_node == "camp"

    brave = build_character(tags=["brave"])
    transition = resolve_next(graph, "start", "fork", brave)
    assert transition.target == "peak"
    assert brave.ending.kind == "success"
    assert brave.ending.variant == "ascension"


def test_ending_without_variant_uses_tags() -> None:
    character = build_character(tags=["sovereign"])
    resolve_next(build_graph(), "start", "settle", character)
    assert character.ending.variant == "supremacy"


def test_lethal_consequence_ends_in_place() -> None:
    character = build_character()
    transition = resolve_next(build_graph(), "start", "cliff", character)
    assert transition.ending is not None
    assert transition.ending.is_death
    assert transition.ending.reason == "health"
    assert character.current_node == "start"


def test_terminal_character_cannot_choose() -> None:
    character = build_character()
    resolve_next(build_graph(), "start", "cliff", character)
    with pytest.raises(TerminalStateError):
        resolve_next(build_graph(), "start", "train", character)


def test_unknown_choice_is_rejected() -> None:
    with pytest.raises(ValidationError):
        resolve_next(build_graph(), "start", "fly", build_character())


def test_unknown_destination_falls_back_to_start() -> None:
    character = build_character(current_node="camp")
    transition = enter_node(build_graph(), character, "nowhere", origin="camp")
    assert transition.target == "start"
    assert character.current_node == "start"


def test_lifespan_is_checked_on_entry() -> None:
    character = build_character(age=81)
    transition = enter_node(build_graph(), character, "camp")
    assert transition.ending is not None
    assert transition.ending.reason == "lifespan"


def test_available_choices_report_requirements() -> None:
    graph = build_graph()
    views = available_choices(graph.nodes["start"], build_character(constitution=4))
    by_id = {view.id: view for view in views}
    assert by_id["train"].selectable is False
    assert by_id["train"].requirements == ["Constitution >= 6"]
    assert by_id["settle"].selectable is True


def test_as_next_node_variants() -> None:
    assert as_next_node(None) is None
    assert as_next_node("camp") == Fixed("camp")
    computed = as_next_node(lambda character: "camp")
    assert computed.resolve(build_character()) == "camp"
    with pytest.raises(ValueError):
        as_next_node(42)


def test_load_world_validates(tmp_path: Path) -> None:
    graph = load_world(write_world(tmp_path, WORLD))
    assert graph.start == "start"

    broken = dict(WORLD, start="missing")
    with pytest.raises(ValueError, match="start node 'missing'"):
        load_world(write_world(tmp_path, broken))


def test_default_world_loads() -> None:
    graph = load_world()
    assert graph.title == "Azure Cloud Chronicle"
    assert graph.start in graph.nodes
    assert "alchemy_trial" in graph.minigames
