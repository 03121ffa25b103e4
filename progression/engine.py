"""The progression engine: single owner of the game state and its entry points."""

from __future__ import annotations

import copy
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from . import achievements, effects
from .achievements import AchievementTracker, MetaProgress
from .calculator import check_advancement, health_recovery, pill_quality, success_rate
from .catalog import TREASURES, consume_materials, create_character, get_recipe, recipe_pill
from .endings import detect_terminal
from .errors import (
    CorruptSaveError,
    TerminalStateError,
    UnknownReferenceError,
    ValidationError,
)
from .minigames import (
    FAILURE_PILL_QUANTITY,
    SUCCESS_PILL_QUANTITY,
    MiniGameAdapter,
    MiniGameResult,
    pill_yield,
)
from .models import HEALTH_MAX, Character, Ending
from .navigator import ChoiceView, StoryGraph, available_choices, enter_node, resolve_next
from .persistence import (
    DEFAULT_SLOT,
    GameState,
    SaveError,
    SaveStore,
    build_record,
    character_to_dict,
    decode_save_code,
    encode_save_code,
    state_from_record,
)
from .settings import Settings

logger = structlog.get_logger(__name__)

# Turns without damage before constitution-based recovery kicks in.
RECOVERY_DELAY_TURNS = 2


@dataclass(frozen=True)
class ChoiceOutcome:
    ok: bool
    node_id: Optional[str] = None
    ending: Optional[Ending] = None
    error: Optional[str] = None
    unlocked: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Snapshot:
    """Read-only copy of the state handed to presentation code."""

    character: Optional[Character]
    meta: MetaProgress
    settings: Settings
    unlocked: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def ending(self) -> Optional[Ending]:
        return self.character.ending if self.character else None

    @property
    def is_death_ending(self) -> bool:
        return self.ending is not None and self.ending.is_death

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentCharacter": character_to_dict(self.character) if self.character else None,
            "achievementPoints": self.meta.achievement_points,
            "unlockedCharacterIds": list(self.meta.unlocked_character_ids),
            "unlockedAchievements": list(self.meta.unlocked_achievements),
            "settings": self.settings.to_dict(),
        }


Listener = Callable[[Snapshot], None]


class ProgressionEngine:
    def __init__(
        self,
        graph: StoryGraph,
        *,
        state: Optional[GameState] = None,
        store: Optional[SaveStore] = None,
        adapter: Optional[MiniGameAdapter] = None,
        tracker: Optional[AchievementTracker] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.graph = graph
        self.state = state or GameState()
        self.store = store
        self.adapter = adapter or MiniGameAdapter.from_world(graph.minigames)
        self.tracker = tracker or AchievementTracker()
        self.rng = rng or random.Random()
        self._listeners: List[Listener] = []

    # ---------- Observers ----------
    @property
    def character(self) -> Optional[Character]:
        return self.state.character

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def request_snapshot(self, unlocked: Tuple[str, ...] = ()) -> Snapshot:
        return Snapshot(
            character=copy.deepcopy(self.state.character),
            meta=copy.deepcopy(self.state.meta),
            settings=self.state.settings.copy(),
            unlocked=tuple(unlocked),
        )

    def _after_change(self) -> List[str]:
        unlocked = self.tracker.observe(self.state.character, self.state.meta)
        if self._listeners:
            snapshot = self.request_snapshot(tuple(unlocked))
            for listener in list(self._listeners):
                listener(snapshot)
        return unlocked

    def _experience_scale(self) -> float:
        return self.state.settings.experience_scale

    def _active(self) -> Optional[Character]:
        character = self.state.character
        if character is None or character.ending is not None:
            return None
        return character

    # ---------- Playthrough lifecycle ----------
    def start_new_game(self, template_id: str) -> bool:
        if not achievements.is_unlocked(self.state.meta, template_id):
            logger.info("Character locked", template_id=template_id)
            return False
        try:
            character = create_character(template_id)
        except UnknownReferenceError as exc:
            logger.warning("Cannot start game", error=str(exc))
            return False
        transition = enter_node(
            self.graph,
            character,
            self.graph.start,
            rng=self.rng,
            experience_scale=self._experience_scale(),
        )
        self.state.character = transition.character
        logger.info("New game started", template_id=template_id)
        self._after_change()
        return True

    def reset_progression(self, *, keep_meta: bool = False) -> None:
        self.state.character = None
        if not keep_meta:
            self.state.meta = MetaProgress()
        logger.info("Progression reset", keep_meta=keep_meta)
        self._after_change()

    def update_settings(self, **changes: Any) -> Settings:
        data = self.state.settings.to_dict()
        data.update(changes)
        self.state.settings = Settings.from_dict(data)
        self._after_change()
        return self.state.settings.copy()

    # ---------- Choices ----------
    def available_choices(self) -> List[ChoiceView]:
        character = self.state.character
        if character is None or character.ending is not None:
            return []
        node = self.graph.nodes.get(character.current_node)
        if node is None:
            return []
        views = available_choices(node, character)
        if self.state.settings.hide_high_risk_options:
            views = [view for view in views if view.selectable]
        return views

    def submit_choice(self, node_id: str, choice_id: str) -> ChoiceOutcome:
        character = self.state.character
        if character is None:
            return ChoiceOutcome(False, error="no_active_game")
        if node_id != character.current_node and character.ending is None:
            logger.warning("Stale choice rejected", node_id=node_id, current=character.current_node)
            return ChoiceOutcome(False, character.current_node, error="stale_node")

        working = copy.deepcopy(character)
        try:
            transition = resolve_next(
                self.graph,
                node_id,
                choice_id,
                working,
                rng=self.rng,
                experience_scale=self._experience_scale(),
            )
        except TerminalStateError:
            logger.warning("Choice after ending rejected", node_id=node_id, choice_id=choice_id)
            return ChoiceOutcome(False, character.current_node, character.ending, error="terminal")
        except ValidationError as exc:
            logger.warning("Choice rejected", node_id=node_id, choice_id=choice_id, reason=str(exc))
            return ChoiceOutcome(False, character.current_node, error="validation")
        except UnknownReferenceError as exc:
            logger.warning("Choice references unknown data", node_id=node_id, error=str(exc))
            return ChoiceOutcome(False, character.current_node, error="unknown_reference")

        updated = transition.character
        self._end_turn(updated)
        self.state.character = updated
        logger.debug(
            "Choice committed",
            origin=node_id,
            choice_id=choice_id,
            target=updated.current_node,
        )
        unlocked = self._after_change()
        return ChoiceOutcome(True, updated.current_node, updated.ending, unlocked=tuple(unlocked))

    def _end_turn(self, character: Character) -> None:
        if character.ending is not None:
            return
        character.turn += 1
        last_damage = character.last_damage_turn
        if last_damage is None or character.turn - last_damage > RECOVERY_DELAY_TURNS:
            if 0 < character.health < HEALTH_MAX:
                character.health = min(
                    HEALTH_MAX, character.health + health_recovery(character.constitution)
                )
        income = sum(
            TREASURES[tid].stones_per_turn for tid in character.resources.treasures if tid in TREASURES
        )
        if income:
            character.resources.spirit_stone += income
        character.cultivation = check_advancement(character.cultivation)

    # ---------- Mini-games ----------
    def submit_minigame_result(
        self,
        context: str,
        success: bool,
        score: float = 0.0,
        payload: Optional[Mapping[str, Any]] = None,
    ) -> bool:
        return self._apply_minigame(context, MiniGameResult.create(success, score, payload))

    def cancel_minigame(self, context: str) -> bool:
        return self._apply_minigame(context, MiniGameResult.cancelled())

    def _apply_minigame(self, context: str, result: MiniGameResult) -> bool:
        character = self._active()
        if character is None:
            return False
        working = copy.deepcopy(character)
        try:
            applied = self.adapter.submit(
                working, context, result, rng=self.rng, experience_scale=self._experience_scale()
            )
        except UnknownReferenceError as exc:
            logger.warning("Mini-game result ignored", context=context, error=str(exc))
            return False
        if not applied:
            return False

        target = self.adapter.rule(context).next_node(result)
        if target:
            working = enter_node(
                self.graph,
                working,
                target,
                origin=working.current_node,
                rng=self.rng,
                experience_scale=self._experience_scale(),
            ).character
        else:
            working.ending = detect_terminal(working)
        self.state.character = working
        self._after_change()
        return True

    # ---------- Items ----------
    def use_item(self, item_id: str) -> bool:
        character = self._active()
        if character is None:
            return False
        working = copy.deepcopy(character)
        if not effects.use_item(
            working, item_id, self.rng, experience_scale=self._experience_scale()
        ):
            return False
        working.ending = detect_terminal(working)
        self.state.character = working
        self._after_change()
        return True

    def purchase(self, item_id: str) -> bool:
        character = self._active()
        if character is None:
            return False
        working = copy.deepcopy(character)
        try:
            bought = effects.purchase(working, item_id)
        except UnknownReferenceError as exc:
            logger.warning("Purchase failed", item_id=item_id, error=str(exc))
            return False
        if not bought:
            return False
        self.state.character = working
        self._after_change()
        return True

    def brew(self, recipe_id: str, score: float) -> bool:
        """Brew ``recipe_id`` from carried materials. Failure still yields one low pill."""
        character = self._active()
        if character is None:
            return False
        try:
            recipe = get_recipe(recipe_id)
        except UnknownReferenceError as exc:
            logger.warning("Brew failed", recipe_id=recipe_id, error=str(exc))
            return False
        if character.cultivation.level < recipe.min_level:
            return False
        working = copy.deepcopy(character)
        if not consume_materials(working, recipe):
            return False
        rate = success_rate(
            recipe.base_success_rate, working.constitution, working.comprehension, working.luck
        )
        success = self.rng.random() < rate
        base_quantity = SUCCESS_PILL_QUANTITY if success else FAILURE_PILL_QUANTITY
        quantity = pill_yield(working, base_quantity)
        quality = pill_quality(score) if success else pill_quality(0)
        effects.add_stack(working, recipe_pill(recipe.id, quality, quantity))
        working.resources.pills += quantity
        working.record_choice(f"brewed:{recipe.name}")
        self.state.character = working
        self._after_change()
        return success

    # ---------- Meta-progression ----------
    def claim_achievement(self, achievement_id: str) -> bool:
        try:
            claimed = self.tracker.claim(self.state.meta, achievement_id)
        except UnknownReferenceError as exc:
            logger.warning("Claim failed", error=str(exc))
            return False
        if claimed:
            self._after_change()
        return claimed

    def unlock_character(self, template_id: str) -> bool:
        try:
            unlocked = achievements.unlock_character(self.state.meta, template_id)
        except UnknownReferenceError as exc:
            logger.warning("Unlock failed", error=str(exc))
            return False
        if unlocked:
            self._after_change()
        return unlocked

    # ---------- Persistence ----------
    def generate_save_code(self) -> Optional[str]:
        try:
            return encode_save_code(build_record(self.state))
        except SaveError as exc:
            logger.info("Nothing to export", error=str(exc))
            return None

    def load_from_save_code(self, code: str) -> bool:
        try:
            state = state_from_record(decode_save_code(code))
        except CorruptSaveError as exc:
            logger.warning("Save code rejected", error=str(exc))
            return False
        self._install(state)
        return True

    def save(self, slot: str = DEFAULT_SLOT) -> bool:
        if self.store is None:
            return False
        try:
            self.store.write(build_record(self.state), slot)
        except SaveError as exc:
            logger.warning("Save failed", slot=slot, error=str(exc))
            return False
        return True

    def load(self, slot: str = DEFAULT_SLOT) -> bool:
        if self.store is None:
            return False
        try:
            state = state_from_record(self.store.read(slot))
        except (SaveError, CorruptSaveError) as exc:
            logger.warning("Load failed", slot=slot, error=str(exc))
            return False
        self._install(state)
        return True

    def _install(self, state: GameState) -> None:
        character = state.character
        if character is not None and character.ending is None:
            if character.current_node not in self.graph.nodes and not self.graph.is_ending(
                character.current_node
            ):
                logger.warning(
                    "Saved node missing from world, returning to start",
                    node=character.current_node,
                )
                character.current_node = self.graph.start
        self.state = state
        self._after_change()
