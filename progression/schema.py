"""World data validation for the story graph JSON format."""

from __future__ import annotations

import json
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Sequence, Tuple

from .models import ATTRIBUTES

FieldValidator = Callable[[Mapping[str, Any], str], List[str]]


def path(*parts: object) -> str:
    path_str = ""
    for part in parts:
        if isinstance(part, int):
            path_str = f"{path_str}[{part}]"
            continue
        if not isinstance(part, str):
            part = str(part)
        if part.isidentifier():
            path_str = f"{path_str}.{part}" if path_str else part
        else:
            path_str = f"{path_str}[{json.dumps(part)}]"
    return path_str


def format_validation_message(path_str: str, context: str, message: str) -> str:
    if context:
        return f"{path_str}: {context}: {message}"
    return f"{path_str}: {message}"


def is_non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def str_or_str_list(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, list) and value:
        return all(is_non_empty_str(item) for item in value)
    return False


class ValidationContext:
    """Accumulates validation errors while walking a world."""

    def __init__(self) -> None:
        self.errors: List[str] = []

    def add(self, context: str, path_str: str, message: str) -> None:
        self.errors.append(format_validation_message(path_str, context, message))

    def extend_with_path(self, messages: Iterable[str], path_str: str) -> None:
        for message in messages:
            self.errors.append(f"{path_str}: {message}")

    def ok(self) -> bool:
        return not self.errors


# ---------- Field rules ----------
def _int_field(name: str, field: str = "value") -> FieldValidator:
    def check(entry: Mapping[str, Any], context: str) -> List[str]:
        value = entry.get(field)
        if not isinstance(value, int) or isinstance(value, bool):
            return [f"{context}: '{name}' requires an integer '{field}'."]
        return []

    return check


def _str_field(name: str, field: str = "value") -> FieldValidator:
    def check(entry: Mapping[str, Any], context: str) -> List[str]:
        if not is_non_empty_str(entry.get(field)):
            return [f"{context}: '{name}' requires a non-empty string '{field}'."]
        return []

    return check


def _str_list_field(name: str) -> FieldValidator:
    def check(entry: Mapping[str, Any], context: str) -> List[str]:
        if not str_or_str_list(entry.get("value")):
            return [f"{context}: '{name}' requires a string or list of strings in 'value'."]
        return []

    return check


def _attr_field(name: str) -> FieldValidator:
    def check(entry: Mapping[str, Any], context: str) -> List[str]:
        if entry.get("attr") not in ATTRIBUTES:
            return [f"{context}: '{name}' requires 'attr' to be one of {', '.join(ATTRIBUTES)}."]
        return []

    return check


def _resource_field(name: str) -> FieldValidator:
    def check(entry: Mapping[str, Any], context: str) -> List[str]:
        if entry.get("resource") not in ("spirit_stone", "pills"):
            return [f"{context}: '{name}' requires 'resource' of spirit_stone or pills."]
        return []

    return check


def _all(*checks: FieldValidator) -> FieldValidator:
    def check(entry: Mapping[str, Any], context: str) -> List[str]:
        errors: List[str] = []
        for rule in checks:
            errors.extend(rule(entry, context))
        return errors

    return check


def _positive_quantity(name: str) -> FieldValidator:
    def check(entry: Mapping[str, Any], context: str) -> List[str]:
        if "quantity" not in entry:
            return []
        value = entry.get("quantity")
        if not isinstance(value, int) or isinstance(value, bool) or value < 1:
            return [f"{context}: '{name}' requires a positive integer 'quantity'."]
        return []

    return check


def _optional_numbers(name: str, *fields: str) -> FieldValidator:
    def check(entry: Mapping[str, Any], context: str) -> List[str]:
        errors: List[str] = []
        for field in fields:
            value = entry.get(field)
            if value is None:
                continue
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                errors.append(f"{context}: '{name}' requires '{field}' to be a number.")
        return errors

    return check


@dataclass(frozen=True)
class ConditionSpec:
    required_fields: Tuple[str, ...]
    validate: FieldValidator


@dataclass(frozen=True)
class EffectSpec:
    required_fields: Tuple[str, ...]
    validate: FieldValidator


def _missing_fields(spec, entry: Mapping[str, Any]) -> List[str]:
    return [name for name in spec.required_fields if name not in entry]


def _validate_nested(entry: Mapping[str, Any], context: str) -> List[str]:
    ctx = ValidationContext()
    if entry.get("type") == "not":
        validate_condition(entry.get("condition"), context, ("condition",), ctx)
    else:
        conditions = entry.get("conditions")
        if not isinstance(conditions, list) or not conditions:
            return [f"{context}: 'any_of' requires a non-empty 'conditions' list."]
        for idx, sub in enumerate(conditions):
            validate_condition(sub, context, ("conditions", idx), ctx)
    return ctx.errors


CONDITION_SPECS: Dict[str, ConditionSpec] = {
    "attr_at_least": ConditionSpec(
        ("attr", "value"), _all(_attr_field("attr_at_least"), _int_field("attr_at_least"))
    ),
    "attr_below": ConditionSpec(
        ("attr", "value"), _all(_attr_field("attr_below"), _int_field("attr_below"))
    ),
    "level_at_least": ConditionSpec(("value",), _int_field("level_at_least")),
    "has_tag": ConditionSpec(("value",), _str_list_field("has_tag")),
    "has_status": ConditionSpec(("value",), _str_list_field("has_status")),
    "missing_tag": ConditionSpec(("value",), _str_list_field("missing_tag")),
    "chose": ConditionSpec(("value",), _str_list_field("chose")),
    "not_chose": ConditionSpec(("value",), _str_list_field("not_chose")),
    "visited": ConditionSpec(("value",), _str_list_field("visited")),
    "resource_at_least": ConditionSpec(
        ("resource", "value"),
        _all(_resource_field("resource_at_least"), _int_field("resource_at_least")),
    ),
    "has_treasure": ConditionSpec(("value",), _str_list_field("has_treasure")),
    "has_item": ConditionSpec(
        ("value",), _all(_str_field("has_item"), _positive_quantity("has_item"))
    ),
    "reputation_at_least": ConditionSpec(("value",), _int_field("reputation_at_least")),
    "health_at_least": ConditionSpec(("value",), _int_field("health_at_least")),
    "character_is": ConditionSpec(("value",), _str_list_field("character_is")),
    "any_of": ConditionSpec(("conditions",), _validate_nested),
    "not": ConditionSpec(("condition",), _validate_nested),
}

EFFECT_SPECS: Dict[str, EffectSpec] = {
    "attr_delta": EffectSpec(
        ("attr", "value"), _all(_attr_field("attr_delta"), _int_field("attr_delta"))
    ),
    "experience": EffectSpec(("value",), _int_field("experience")),
    "raise_level": EffectSpec(("value",), _int_field("raise_level")),
    "stage_delta": EffectSpec(("value",), _int_field("stage_delta")),
    "health_delta": EffectSpec(("value",), _int_field("health_delta")),
    "age_delta": EffectSpec(("value",), _int_field("age_delta")),
    "reputation_delta": EffectSpec(("value",), _int_field("reputation_delta")),
    "resource_delta": EffectSpec(
        ("resource", "value"),
        _all(_resource_field("resource_delta"), _int_field("resource_delta")),
    ),
    "add_tag": EffectSpec(("value",), _str_field("add_tag")),
    "remove_tag": EffectSpec(("value",), _str_field("remove_tag")),
    "add_status": EffectSpec(("value",), _str_field("add_status")),
    "record_choice": EffectSpec(("value",), _str_field("record_choice")),
    "add_treasure": EffectSpec(("value",), _str_field("add_treasure")),
    "add_item": EffectSpec(
        ("value",), _all(_str_field("add_item"), _positive_quantity("add_item"))
    ),
    "use_item": EffectSpec(("value",), _str_field("use_item")),
    "end_game": EffectSpec(("value",), _str_field("end_game")),
    "die": EffectSpec((), lambda entry, context: []),
}

# Extra effect types understood only inside mini-game rules.
MINIGAME_EFFECT_SPECS: Dict[str, EffectSpec] = {
    "experience_from_score": EffectSpec(
        (), _optional_numbers("experience_from_score", "base", "factor")
    ),
    "pills_from_payload": EffectSpec((), _positive_quantity("pills_from_payload")),
}

def normalize_nodes(raw_nodes: Any, ctx: ValidationContext | None = None) -> Tuple[Dict[str, Dict[str, Any]], List[str]]:
    nodes: Dict[str, Dict[str, Any]] = {}
    errors: List[str] = []
    node_ids: List[str] = []

    def add_error(context: str, path_parts: Sequence[object], message: str) -> None:
        path_str = path(*path_parts)
        errors.append(format_validation_message(path_str, context, message))
        if ctx is not None:
            ctx.add(context, path_str, message)

    if isinstance(raw_nodes, dict):
        for node_id, payload in raw_nodes.items():
            if not is_non_empty_str(node_id):
                add_error("Nodes", ("nodes",), "node identifiers must be non-empty strings.")
                continue
            if not isinstance(payload, dict):
                add_error("Nodes", ("nodes", node_id), f"node '{node_id}' must be an object.")
                continue
            nodes[node_id] = payload
    elif isinstance(raw_nodes, list):
        for idx, entry in enumerate(raw_nodes, start=1):
            if not isinstance(entry, MutableMapping):
                add_error(f"Node entry {idx}", ("nodes", idx - 1), "must be an object.")
                continue
            node_id = entry.get("id")
            if not is_non_empty_str(node_id):
                add_error(f"Node entry {idx}", ("nodes", idx - 1, "id"), "is missing a valid 'id'.")
                continue
            node_ids.append(node_id)
            payload = dict(entry)
            payload.pop("id", None)
            nodes[node_id] = payload
    else:
        add_error(
            "World data",
            ("nodes",),
            "must be an object mapping IDs to node definitions or a list of node entries.",
        )

    duplicates = [node_id for node_id, count in Counter(node_ids).items() if count > 1]
    if duplicates:
        add_error("Nodes", ("nodes",), f"duplicate node IDs found: {', '.join(sorted(duplicates))}.")
    return nodes, errors


def validate_condition(
    condition: Any, context: str, path_parts: Sequence[object], ctx: ValidationContext
) -> None:
    if condition in (None, {}):
        return
    if isinstance(condition, list):
        if not condition:
            ctx.add(context, path(*path_parts), "condition list must not be empty.")
        for idx, sub in enumerate(condition):
            validate_condition(sub, f"{context} (entry {idx + 1})", (*path_parts, idx), ctx)
        return
    if not isinstance(condition, Mapping):
        ctx.add(context, path(*path_parts), "condition must be an object or null.")
        return
    cond_type = condition.get("type")
    spec = CONDITION_SPECS.get(cond_type)
    if spec is None:
        ctx.add(context, path(*path_parts, "type"), f"unsupported condition type '{cond_type}'.")
        return
    missing = _missing_fields(spec, condition)
    if missing:
        ctx.add(context, path(*path_parts), f"'{cond_type}' is missing required field(s): {', '.join(missing)}.")
        return
    ctx.extend_with_path(spec.validate(condition, context), path(*path_parts))


def validate_effect(
    effect: Any,
    context: str,
    endings: Mapping[str, Any],
    path_parts: Sequence[object],
    ctx: ValidationContext,
    *,
    specs: Mapping[str, EffectSpec] = EFFECT_SPECS,
) -> None:
    if not isinstance(effect, Mapping):
        ctx.add(context, path(*path_parts), "effect must be an object.")
        return
    effect_type = effect.get("type")
    spec = specs.get(effect_type)
    if spec is None:
        ctx.add(context, path(*path_parts, "type"), f"unsupported effect type '{effect_type}'.")
        return
    missing = _missing_fields(spec, effect)
    if missing:
        ctx.add(context, path(*path_parts), f"'{effect_type}' is missing required field(s): {', '.join(missing)}.")
        return
    ctx.extend_with_path(spec.validate(effect, context), path(*path_parts))
    ending_id = effect.get("value")
    if effect_type == "end_game" and is_non_empty_str(ending_id) and ending_id not in endings:
        ctx.add(context, path(*path_parts, "value"), f"ending '{ending_id}' is not defined.")


def _validate_effect_list(
    effects: Any,
    context: str,
    endings: Mapping[str, Any],
    path_parts: Sequence[object],
    ctx: ValidationContext,
    *,
    specs: Mapping[str, EffectSpec] = EFFECT_SPECS,
) -> None:
    if effects is None:
        return
    if not isinstance(effects, list):
        ctx.add(context, path(*path_parts), "effects must be a list of effect objects.")
        return
    for idx, effect in enumerate(effects):
        validate_effect(
            effect, f"{context}, effect {idx + 1}", endings, (*path_parts, idx), ctx, specs=specs
        )


def _validate_target(
    target: Any,
    context: str,
    nodes: Mapping[str, Any],
    endings: Mapping[str, Any],
    path_parts: Sequence[object],
    ctx: ValidationContext,
) -> None:
    if isinstance(target, list):
        if not target:
            ctx.add(context, path(*path_parts), "conditional target list must not be empty.")
        for idx, entry in enumerate(target):
            if not isinstance(entry, Mapping):
                ctx.add(context, path(*path_parts, idx), "conditional target must be an object.")
                continue
            validate_condition(entry.get("condition"), context, (*path_parts, idx, "condition"), ctx)
            _validate_target(entry.get("target"), context, nodes, endings, (*path_parts, idx, "target"), ctx)
        return
    if not is_non_empty_str(target):
        ctx.add(context, path(*path_parts), "requires a non-empty 'target'.")
    elif target not in nodes and target not in endings:
        ctx.add(context, path(*path_parts), f"targets unknown destination '{target}'.")


def validate_choice(
    choice: Any,
    node_id: str,
    index: int,
    nodes: Mapping[str, Any],
    endings: Mapping[str, Any],
    path_parts: Sequence[object],
    ctx: ValidationContext,
) -> None:
    context = f"Choice {index} in node '{node_id}'"
    if not isinstance(choice, Mapping):
        ctx.add(context, path(*path_parts), "must be an object.")
        return
    if not is_non_empty_str(choice.get("text")):
        ctx.add(context, path(*path_parts, "text"), "requires non-empty 'text'.")
    if "id" in choice and not is_non_empty_str(choice.get("id")):
        ctx.add(context, path(*path_parts, "id"), "'id' must be a non-empty string.")
    _validate_target(choice.get("target"), context, nodes, endings, (*path_parts, "target"), ctx)
    validate_condition(choice.get("condition"), context, (*path_parts, "condition"), ctx)
    _validate_effect_list(choice.get("effects"), context, endings, (*path_parts, "effects"), ctx)


def _validate_minigames(
    minigames: Any, nodes: Mapping[str, Any], endings: Mapping[str, Any], ctx: ValidationContext
) -> None:
    if minigames is None:
        return
    if not isinstance(minigames, Mapping):
        ctx.add("World data", path("minigames"), "'minigames' must be an object keyed by context.")
        return
    specs = {**EFFECT_SPECS, **MINIGAME_EFFECT_SPECS}
    for context_id, rule in minigames.items():
        context = f"Mini-game '{context_id}'"
        if not isinstance(rule, Mapping):
            ctx.add(context, path("minigames", context_id), "must be an object.")
            continue
        for key in ("on_success", "on_failure"):
            _validate_effect_list(
                rule.get(key), context, endings, ("minigames", context_id, key), ctx, specs=specs
            )
        targets = rule.get("next") or {}
        if not isinstance(targets, Mapping):
            ctx.add(context, path("minigames", context_id, "next"), "'next' must be an object.")
            continue
        for outcome, target in targets.items():
            if outcome not in ("success", "failure"):
                ctx.add(context, path("minigames", context_id, "next", outcome), "unknown outcome.")
                continue
            _validate_target(
                target, context, nodes, endings, ("minigames", context_id, "next", outcome), ctx
            )


def validate_world(world: Mapping[str, Any]) -> List[str]:
    ctx = ValidationContext()

    if not is_non_empty_str(world.get("title")):
        ctx.add("World data", path("title"), "must include a non-empty 'title'.")
    if "nodes" not in world:
        ctx.add("World data", path("nodes"), "must include a 'nodes' section.")

    endings = world.get("endings")
    if endings is None:
        endings = {}
    elif not isinstance(endings, Mapping):
        ctx.add("World data", path("endings"), "'endings' must be an object mapping ending IDs.")
        endings = {}

    nodes, _ = normalize_nodes(world.get("nodes"), ctx)

    start = world.get("start", "start")
    if start not in nodes:
        ctx.add("World data", path("start"), f"start node '{start}' does not exist.")

    for node_id, node in nodes.items():
        _validate_effect_list(
            node.get("on_enter"),
            f"Node '{node_id}' on_enter",
            endings,
            ("nodes", node_id, "on_enter"),
            ctx,
        )
        minigame = node.get("minigame")
        if minigame is not None and (
            not isinstance(minigame, str) or minigame not in (world.get("minigames") or {})
        ):
            ctx.add(
                f"Node '{node_id}'",
                path("nodes", node_id, "minigame"),
                f"references unknown mini-game '{minigame}'.",
            )
        choices = node.get("choices")
        if choices is None:
            continue
        if not isinstance(choices, list):
            ctx.add(f"Node '{node_id}'", path("nodes", node_id, "choices"), "choices must be a list.")
            continue
        ids = [c.get("id") for c in choices if isinstance(c, Mapping) and c.get("id")]
        dupes = sorted(cid for cid, count in Counter(ids).items() if count > 1)
        if dupes:
            ctx.add(
                f"Node '{node_id}'",
                path("nodes", node_id, "choices"),
                f"duplicate choice IDs: {', '.join(dupes)}.",
            )
        for index, choice in enumerate(choices, start=1):
            validate_choice(
                choice, node_id, index, nodes, endings, ("nodes", node_id, "choices", index - 1), ctx
            )

    _validate_minigames(world.get("minigames"), nodes, endings, ctx)
    return ctx.errors
