"""Story graph storage and single-step navigation."""

from __future__ import annotations

import json
import random
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import structlog

from .conditions import Condition, describe_condition, meets_condition
from .effects import Consequence, apply_effects
from .endings import classify_ending, detect_terminal
from .errors import TerminalStateError, UnknownReferenceError, ValidationError
from .models import Character, Ending
from .schema import normalize_nodes, validate_world

logger = structlog.get_logger(__name__)

DEFAULT_WORLD_PATH = Path(__file__).resolve().parent.parent / "world" / "world.json"


@dataclass(frozen=True)
class Fixed:
    node_id: str

    def resolve(self, character: Character) -> Optional[str]:
        return self.node_id


@dataclass(frozen=True)
class Computed:
    fn: Callable[[Character], Optional[str]]

    def resolve(self, character: Character) -> Optional[str]:
        try:
            return self.fn(character)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Next-node function failed", error=repr(exc))
            return None


NextNode = Union[Fixed, Computed]


def conditional_target(entries: List[Mapping[str, Any]]) -> Computed:
    """First entry whose condition holds wins."""
    options = [dict(entry) for entry in entries if isinstance(entry, Mapping)]

    def pick(character: Character) -> Optional[str]:
        for entry in options:
            if meets_condition(entry.get("condition"), character):
                target = entry.get("target")
                if isinstance(target, str) and target:
                    return target
        return None

    return Computed(pick)


def as_next_node(target: Any) -> Optional[NextNode]:
    if target is None:
        return None
    if isinstance(target, (Fixed, Computed)):
        return target
    if isinstance(target, str):
        return Fixed(target)
    if isinstance(target, list):
        return conditional_target(target)
    if callable(target):
        return Computed(target)
    raise ValueError(f"Unsupported next node: {target!r}")


@dataclass
class Choice:
    id: str
    text: str
    condition: Condition = None
    consequence: Consequence = None
    next_node: Optional[NextNode] = None
    record: Optional[str] = None


@dataclass
class StoryNode:
    id: str
    content: Any = None
    choices: List[Choice] = field(default_factory=list)
    on_enter: Consequence = None
    minigame: Optional[str] = None

    def choice(self, choice_id: str) -> Optional[Choice]:
        for choice in self.choices:
            if choice.id == choice_id:
                return choice
        return None


@dataclass(frozen=True)
class ChoiceView:
    id: str
    text: str
    selectable: bool
    requirements: List[str]


@dataclass
class Transition:
    character: Character
    origin: str
    target: Optional[str]
    ending: Optional[Ending] = None


def _choice_from_dict(index: int, data: Mapping[str, Any]) -> Choice:
    record = data.get("record", data.get("text"))
    return Choice(
        id=str(data.get("id") or index),
        text=data.get("text", ""),
        condition=data.get("condition"),
        consequence=data.get("effects"),
        next_node=as_next_node(data.get("target")),
        record=record if isinstance(record, str) and record else None,
    )


class StoryGraph:
    """Nodes stored by id; nodes refer to each other only through ids."""

    def __init__(
        self,
        nodes: Mapping[str, StoryNode],
        *,
        start: str = "start",
        endings: Optional[Mapping[str, Any]] = None,
        title: str = "",
        minigames: Optional[Mapping[str, Any]] = None,
    ) -> None:
        self.nodes: Dict[str, StoryNode] = dict(nodes)
        self.start = start
        self.endings: Dict[str, Any] = dict(endings or {})
        self.title = title
        self.minigames: Dict[str, Any] = dict(minigames or {})

    @classmethod
    def from_dict(cls, world: Mapping[str, Any]) -> "StoryGraph":
        raw_nodes, _ = normalize_nodes(world.get("nodes"))
        nodes = {}
        for node_id, payload in raw_nodes.items():
            choices = [
                _choice_from_dict(index, data)
                for index, data in enumerate(payload.get("choices") or [], start=1)
                if isinstance(data, Mapping)
            ]
            nodes[node_id] = StoryNode(
                id=node_id,
                content=payload.get("text"),
                choices=choices,
                on_enter=payload.get("on_enter"),
                minigame=payload.get("minigame"),
            )
        return cls(
            nodes,
            start=world.get("start", "start"),
            endings=world.get("endings") or {},
            title=world.get("title", ""),
            minigames=world.get("minigames") or {},
        )

    def node(self, node_id: str) -> StoryNode:
        node = self.nodes.get(node_id)
        if node is None:
            raise UnknownReferenceError(f"Unknown node '{node_id}'.")
        return node

    def is_ending(self, node_id: Optional[str]) -> bool:
        return node_id in self.endings

    def ending_variant(self, ending_id: str) -> Optional[str]:
        entry = self.endings.get(ending_id)
        if isinstance(entry, Mapping):
            return entry.get("variant")
        return None

    def ending_title(self, ending_id: str) -> str:
        entry = self.endings.get(ending_id)
        if isinstance(entry, Mapping):
            return entry.get("title") or ending_id
        return entry or ending_id


def _raise_world_validation(errors: List[str]) -> None:
    raise ValueError("Invalid world.json:\n- " + "\n- ".join(errors))


def load_world(path: Union[Path, str] = DEFAULT_WORLD_PATH) -> StoryGraph:
    with open(path, "r", encoding="utf-8") as handle:
        world = json.load(handle)
    if not isinstance(world, dict):
        _raise_world_validation(["World data must be a JSON object."])
    errors = validate_world(world)
    if errors:
        _raise_world_validation(errors)
    return StoryGraph.from_dict(world)


def available_choices(node: StoryNode, character: Character) -> List[ChoiceView]:
    return [
        ChoiceView(
            id=choice.id,
            text=choice.text,
            selectable=meets_condition(choice.condition, character),
            requirements=describe_condition(choice.condition),
        )
        for choice in node.choices
    ]


def enter_node(
    graph: StoryGraph,
    character: Character,
    target: Optional[str],
    *,
    origin: str = "",
    rng: Optional[random.Random] = None,
    experience_scale: float = 1.0,
) -> Transition:
    """Move ``character`` onto ``target`` and run terminal detection."""
    if graph.is_ending(target):
        character.current_node = target
        character.visited_nodes.append(target)
        character.ending = classify_ending(character, target, graph.ending_variant(target))
        return Transition(character, origin, target, character.ending)

    if target is None or target not in graph.nodes:
        logger.warning("Unknown destination, returning to start", target=target, start=graph.start)
        target = graph.start

    character.current_node = target
    character.visited_nodes.append(target)
    character = apply_effects(
        graph.nodes[target].on_enter, character, rng=rng, experience_scale=experience_scale
    )
    character.ending = detect_terminal(character)
    return Transition(character, origin, character.current_node, character.ending)


def resolve_next(
    graph: StoryGraph,
    node_id: str,
    choice_id: str,
    character: Character,
    *,
    rng: Optional[random.Random] = None,
    experience_scale: float = 1.0,
) -> Transition:
    """Commit one choice. Mutates ``character``; callers pass a working copy."""
    if character.ending is not None:
        raise TerminalStateError("The story has already ended.")
    node = graph.node(node_id)
    choice = node.choice(choice_id)
    if choice is None:
        raise ValidationError(f"Node '{node_id}' has no choice '{choice_id}'.")
    if not meets_condition(choice.condition, character):
        raise ValidationError(f"Choice '{choice_id}' is not available.")

    character = apply_effects(
        choice.consequence, character, rng=rng, experience_scale=experience_scale
    )
    if choice.record:
        character.record_choice(choice.record)

    ending = detect_terminal(character)
    if ending is not None:
        character.ending = ending
        return Transition(character, node_id, character.current_node, ending)

    target = choice.next_node.resolve(character) if choice.next_node else node_id
    return enter_node(
        graph,
        character,
        target,
        origin=node_id,
        rng=rng,
        experience_scale=experience_scale,
    )
