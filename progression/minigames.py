"""Translate mini-game outcomes into consequences.

A mini-game is a black box that reports ``(success, score, payload)`` once it
finishes. Each narrative context registers a ``MiniGameRule`` describing what
that outcome means for the character; the adapter applies it at most once per
logical completion.
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

import structlog

from .calculator import pill_quality
from .catalog import has_talent, recipe_pill
from .effects import Consequence, add_stack, apply_effect, grant_experience
from .errors import UnknownReferenceError
from .models import Character

logger = structlog.get_logger(__name__)

DOUBLE_YIELD_TALENT = "alchemy_double_yield"
SUCCESS_PILL_QUANTITY = 3
FAILURE_PILL_QUANTITY = 1


@dataclass(frozen=True)
class MiniGameResult:
    success: bool
    score: float = 0.0
    payload: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def create(cls, success, score=0.0, payload=None) -> "MiniGameResult":
        try:
            score = float(score)
        except (TypeError, ValueError):
            score = 0.0
        if math.isnan(score) or math.isinf(score) or score < 0:
            score = 0.0
        if not isinstance(payload, Mapping):
            payload = {}
        return cls(bool(success), score, dict(payload))

    @classmethod
    def cancelled(cls) -> "MiniGameResult":
        return cls(False, 0.0, {"cancelled": True})


@dataclass
class MiniGameRule:
    context: str
    on_success: Consequence = None
    on_failure: Consequence = None
    next_success: Optional[str] = None
    next_failure: Optional[str] = None
    repeatable: bool = False
    record: Optional[str] = None

    @classmethod
    def from_dict(cls, context: str, data: Mapping[str, Any]) -> "MiniGameRule":
        targets = data.get("next") or {}
        return cls(
            context=context,
            on_success=data.get("on_success"),
            on_failure=data.get("on_failure"),
            next_success=targets.get("success"),
            next_failure=targets.get("failure"),
            repeatable=bool(data.get("repeatable", False)),
            record=data.get("record"),
        )

    def next_node(self, result: MiniGameResult) -> Optional[str]:
        return self.next_success if result.success else self.next_failure


def pill_yield(character: Character, base_quantity: int) -> int:
    quantity = max(0, int(base_quantity))
    if has_talent(character, DOUBLE_YIELD_TALENT):
        quantity *= 2
    return quantity


class MiniGameAdapter:
    def __init__(self, rules: Optional[Mapping[str, MiniGameRule]] = None) -> None:
        self.rules: Dict[str, MiniGameRule] = dict(rules or {})

    @classmethod
    def from_world(cls, minigames: Mapping[str, Any]) -> "MiniGameAdapter":
        return cls(
            {
                context: MiniGameRule.from_dict(context, data)
                for context, data in (minigames or {}).items()
                if isinstance(data, Mapping)
            }
        )

    def register(self, rule: MiniGameRule) -> None:
        self.rules[rule.context] = rule

    def rule(self, context: str) -> MiniGameRule:
        rule = self.rules.get(context)
        if rule is None:
            raise UnknownReferenceError(f"No mini-game rule for context '{context}'.")
        return rule

    def completion_key(self, rule: MiniGameRule, character: Character) -> str:
        # The turn only advances on committed choices.
        if rule.repeatable:
            return f"{rule.context}#t{character.turn}"
        return rule.context

    def is_completed(self, character: Character, context: str) -> bool:
        rule = self.rule(context)
        return self.completion_key(rule, character) in character.completed_minigames

    def submit(
        self,
        character: Character,
        context: str,
        result: MiniGameResult,
        *,
        rng: Optional[random.Random] = None,
        experience_scale: float = 1.0,
    ) -> bool:
        """Apply ``result`` for ``context``; False when it was already applied."""
        rule = self.rule(context)
        key = self.completion_key(rule, character)
        if key in character.completed_minigames:
            logger.debug("Ignoring duplicate mini-game completion", context=context)
            return False

        effects = rule.on_success if result.success else rule.on_failure
        if effects is not None and not isinstance(effects, (list, tuple)):
            effects = [effects]
        for effect in effects or []:
            self._apply(effect, character, result, rng, experience_scale)

        character.completed_minigames.append(key)
        if rule.record:
            character.record_choice(rule.record)
        logger.debug("Mini-game applied", context=context, success=result.success)
        return True

    def cancel(self, character: Character, context: str, **kwargs) -> bool:
        return self.submit(character, context, MiniGameResult.cancelled(), **kwargs)

    def _apply(
        self,
        effect,
        character: Character,
        result: MiniGameResult,
        rng: Optional[random.Random],
        experience_scale: float,
    ) -> None:
        if callable(effect):
            try:
                effect(character, result)
            except Exception as exc:  # noqa: BLE001
                logger.warning(
                    "Skipped failing mini-game effect",
                    effect=getattr(effect, "__name__", repr(effect)),
                    error=repr(exc),
                )
            return
        kind = effect.get("type") if isinstance(effect, Mapping) else None
        if kind == "experience_from_score":
            try:
                gain = int(effect.get("base", 0)) + math.floor(
                    float(effect.get("factor", 1)) * result.score
                )
            except (TypeError, ValueError, OverflowError) as exc:
                logger.warning("Skipped malformed mini-game effect", effect_type=kind, error=str(exc))
                return
            grant_experience(
                character,
                gain,
                scaled=bool(effect.get("scaled", False)),
                experience_scale=experience_scale,
            )
        elif kind == "pills_from_payload":
            self._grant_pills(effect, character, result)
        else:
            apply_effect(effect, character, rng=rng, experience_scale=experience_scale)

    def _grant_pills(
        self, effect: Mapping[str, Any], character: Character, result: MiniGameResult
    ) -> None:
        payload = result.payload
        recipe_id = payload.get("recipeId") or payload.get("recipe_id") or effect.get("recipe")
        quality = payload.get("quality") or pill_quality(result.score)
        default_quantity = SUCCESS_PILL_QUANTITY if result.success else FAILURE_PILL_QUANTITY
        try:
            base_quantity = int(payload.get("quantity", effect.get("quantity", default_quantity)))
        except (TypeError, ValueError, OverflowError):
            base_quantity = default_quantity
        quantity = pill_yield(character, base_quantity)
        if quantity <= 0:
            return
        try:
            stack = recipe_pill(str(recipe_id), quality, quantity)
        except UnknownReferenceError as exc:
            logger.warning("Skipped pill reward", recipe_id=recipe_id, error=str(exc))
            return
        add_stack(character, stack)
        character.resources.pills += quantity
