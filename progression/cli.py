"""Command line front end: world validation, save-code inspection and a text playthrough."""

from __future__ import annotations

import argparse
import json
import random
import sys
from pathlib import Path
from typing import Callable, Optional, Sequence

import structlog

from .calculator import experience_percentage, realm_label
from .catalog import CHARACTER_TEMPLATES, DEFAULT_CHARACTER_ID
from .engine import ProgressionEngine
from .errors import CorruptSaveError
from .logging_config import configure_logging
from .navigator import DEFAULT_WORLD_PATH, load_world
from .persistence import DEFAULT_SAVE_ROOT, DEFAULT_SLOT, SaveStore, decode_save_code
from .schema import validate_world

logger = structlog.get_logger(__name__)

InputFunc = Callable[[str], str]
PrintFunc = Callable[..., None]

MINIGAME_PASS_SCORE = 50


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="progression", description="Cultivation progression engine.")
    parser.add_argument("--log-level", default="WARNING", help="Logging level (default: WARNING).")
    commands = parser.add_subparsers(dest="command", required=True)

    validate = commands.add_parser("validate", help="Validate world content.")
    validate.add_argument("world", nargs="?", default=str(DEFAULT_WORLD_PATH))

    decode = commands.add_parser("decode", help="Decode a save code to JSON.")
    decode.add_argument("code")

    play = commands.add_parser("play", help="Play through a world in the terminal.")
    play.add_argument("world", nargs="?", default=str(DEFAULT_WORLD_PATH))
    play.add_argument("--character", default=DEFAULT_CHARACTER_ID, choices=sorted(CHARACTER_TEMPLATES))
    play.add_argument("--saves", default=str(DEFAULT_SAVE_ROOT), help="Directory for save slots.")
    play.add_argument("--load", metavar="SLOT", help="Resume from a save slot.")
    play.add_argument("--seed", type=int, help="Seed for random outcomes.")
    return parser


def cmd_validate(world_path: str, print_func: PrintFunc = print) -> int:
    path = Path(world_path).resolve()
    try:
        with path.open("r", encoding="utf-8") as handle:
            world = json.load(handle)
    except (OSError, json.JSONDecodeError) as exc:
        print_func(f"Failed to read {path}: {exc}")
        return 1
    errors = validate_world(world) if isinstance(world, dict) else ["World data must be a JSON object."]
    if errors:
        print_func("Validation failed (path: message):")
        for err in errors:
            print_func(f" - {err}")
        return 1
    print_func(f"Validation passed for {path}.")
    return 0


def cmd_decode(code: str, print_func: PrintFunc = print) -> int:
    try:
        record = decode_save_code(code)
    except CorruptSaveError as exc:
        print_func(f"Invalid save code: {exc}")
        return 1
    print_func(json.dumps(record, indent=2, ensure_ascii=False))
    return 0


def render_status(engine: ProgressionEngine, print_func: PrintFunc) -> None:
    snapshot = engine.request_snapshot()
    character = snapshot.character
    if character is None:
        return
    attrs = ", ".join(f"{name} {value}" for name, value in character.attributes().items())
    print_func(
        f"[{character.name}] {realm_label(character.cultivation)}"
        f" ({experience_percentage(character):.0f}%) | HP {character.health}"
        f" | Age {character.age} | Stones {character.resources.spirit_stone}"
    )
    if snapshot.settings.show_attribute_bonus_values:
        print_func(f"  {attrs}")


def render_ending(engine: ProgressionEngine, print_func: PrintFunc) -> None:
    snapshot = engine.request_snapshot()
    character = snapshot.character
    title = engine.graph.ending_title(character.current_node)
    print_func(f"\n=== Ending: {title} ({character.ending.variant}) ===")
    print_func(f"Final realm: {realm_label(character.cultivation)} | Age {character.age}")
    if not snapshot.settings.show_attribute_changes:
        return
    changes = [
        f"{name} {delta:+d}" for name, delta in character.attribute_deltas().items() if delta
    ]
    if changes:
        print_func(f"Attribute changes: {', '.join(changes)}")
    else:
        print_func("Attributes unchanged since the journey began.")


def run_minigame(
    engine: ProgressionEngine, context: str, input_func: InputFunc, print_func: PrintFunc
) -> None:
    raw = input_func(f"Trial '{context}': enter a score 0-100 (blank to give up) > ").strip()
    if not raw:
        engine.cancel_minigame(context)
        print_func("You abandon the attempt.")
        return
    try:
        score = float(raw)
    except ValueError:
        score = 0.0
    success = score >= MINIGAME_PASS_SCORE
    engine.submit_minigame_result(context, success, score)
    print_func("Success!" if success else "The attempt fails.")


def play(
    engine: ProgressionEngine,
    input_func: InputFunc = input,
    print_func: PrintFunc = print,
    *,
    slot: str = DEFAULT_SLOT,
) -> int:
    while True:
        character = engine.character
        if character is None:
            print_func("No active character.")
            return 1
        if character.ending is not None:
            render_ending(engine, print_func)
            return 0

        node = engine.graph.node(character.current_node)
        print_func("")
        if node.content:
            print_func(node.content)
        render_status(engine, print_func)

        if node.minigame and not engine.adapter.is_completed(character, node.minigame):
            run_minigame(engine, node.minigame, input_func, print_func)
            continue

        views = engine.available_choices()
        show_locked = engine.request_snapshot().settings.show_conditions
        numbered = []
        for view in views:
            if view.selectable:
                numbered.append(view)
                print_func(f"  {len(numbered)}. {view.text}")
            elif show_locked:
                print_func(f"  -  {view.text} (requires {', '.join(view.requirements)})")
        print_func("Commands: number, u <item>, s (save), c (save code), q (quit)")

        selection = input_func("> ").strip()
        lowered = selection.lower()
        if lowered == "q":
            return 0
        if lowered == "s":
            print_func("Saved." if engine.save(slot) else "Save failed.")
            continue
        if lowered == "c":
            print_func(engine.generate_save_code() or "Nothing to export.")
            continue
        if lowered.startswith("u "):
            item_id = selection[2:].strip()
            print_func("Used." if engine.use_item(item_id) else f"Cannot use '{item_id}'.")
            continue
        if not selection.isdigit() or not 1 <= int(selection) <= len(numbered):
            print_func("Pick a valid number.")
            continue
        outcome = engine.submit_choice(node.id, numbered[int(selection) - 1].id)
        if not outcome.ok:
            print_func(f"That path is closed ({outcome.error}).")
        for achievement_id in outcome.unlocked:
            print_func(f"[Achievement unlocked] {achievement_id}")


def cmd_play(args: argparse.Namespace, input_func: InputFunc = input, print_func: PrintFunc = print) -> int:
    try:
        graph = load_world(args.world)
    except (OSError, ValueError) as exc:
        print_func(str(exc))
        return 1
    engine = ProgressionEngine(graph, store=SaveStore(args.saves), rng=random.Random(args.seed))
    if args.load:
        if not engine.load(args.load):
            print_func(f"Could not load slot '{args.load}'.")
            return 1
    elif not engine.start_new_game(args.character):
        print_func(f"Character '{args.character}' is not available.")
        return 1
    logger.debug("Playthrough started", world=args.world, character=args.character)
    print_func(f"=== {graph.title} ===")
    return play(engine, input_func, print_func, slot=args.load or DEFAULT_SLOT)


def main(
    argv: Optional[Sequence[str]] = None,
    input_func: InputFunc = input,
    print_func: PrintFunc = print,
) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)
    if args.command == "validate":
        return cmd_validate(args.world, print_func)
    if args.command == "decode":
        return cmd_decode(args.code, print_func)
    return cmd_play(args, input_func, print_func)


if __name__ == "__main__":
    sys.exit(main())
