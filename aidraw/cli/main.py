from __future__ import annotations

import argparse
import logging
from typing import Optional, Sequence

from .commands.draw import draw_cmd, replay_cmd
from .commands.history import history_clear_cmd, history_list_cmd
from .commands.scene import scene_clear_cmd, scene_show_cmd, scene_validate_cmd
from .commands.settings import config_set_cmd, config_show_cmd
from ..config.loaders import environ_with_home, get_ai_config


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aidraw",
        description="Stream LLM-generated shapes into a persisted diagram scene.",
        argument_default=argparse.SUPPRESS,
    )
    parser.add_argument("--version", action="version", version="aidraw 0.1.0")
    parser.add_argument("--home", type=str, help="State directory (default: $AIDRAW_HOME or ~/.aidraw).")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging.")

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    draw = subparsers.add_parser("draw", help="Ask the model to draw; merge the reply into the scene.")
    draw.add_argument("prompt", type=str)
    draw.add_argument("--scene", type=str, help="Scene snapshot path (default: <home>/scene.json).")
    draw.add_argument("--events", type=str, help="Append JSONL stream events to this file.")
    draw.add_argument("--record", type=str, help="Append the full response to this JSONL file.")
    draw.add_argument("--session", type=str, help="Chat session id (default: current session).")
    draw.add_argument(
        "--select",
        action="append",
        dest="selected_ids",
        help="Id of a scene element to describe to the model as selected (repeatable).",
    )
    draw.add_argument("--api-key", type=str)
    draw.add_argument("--base-url", type=str)
    draw.add_argument("--model", type=str)
    draw.add_argument("--quiet", action="store_true", help="Do not echo the streamed text.")
    draw.set_defaults(handler=draw_cmd)

    replay = subparsers.add_parser("replay", help="Feed a saved response through the scene pipeline (offline).")
    replay.add_argument("--input", type=str, required=True, help="Plain text, or a JSONL file written by --record.")
    replay.add_argument("--scene", type=str)
    replay.add_argument("--events", type=str)
    replay.add_argument("--chunk-size", type=int, help="Characters per simulated delta (default: 16).")
    replay.set_defaults(handler=replay_cmd)

    scene_parser = subparsers.add_parser("scene", help="Scene snapshot commands.")
    scene_sub = scene_parser.add_subparsers(dest="scene_cmd", metavar="<subcommand>")
    scene_show = scene_sub.add_parser("show", help="Print the scene elements.")
    scene_show.add_argument("--scene", type=str)
    scene_show.add_argument("--json", action="store_true", dest="as_json", help="Print the raw snapshot JSON.")
    scene_show.set_defaults(handler=scene_show_cmd)
    scene_clear = scene_sub.add_parser("clear", help="Remove every element and the persisted snapshot.")
    scene_clear.add_argument("--scene", type=str)
    scene_clear.set_defaults(handler=scene_clear_cmd)
    scene_validate = scene_sub.add_parser("validate", help="Validate a snapshot file against the bundled schema.")
    scene_validate.add_argument("--input", type=str)
    scene_validate.add_argument("--max-errors", type=int, help="Maximum number of schema errors to print.")
    scene_validate.set_defaults(handler=scene_validate_cmd)

    config_parser = subparsers.add_parser("config", help="AI endpoint settings.")
    config_sub = config_parser.add_subparsers(dest="config_cmd", metavar="<subcommand>")
    config_show = config_sub.add_parser("show", help="Print the effective settings (key redacted).")
    config_show.set_defaults(handler=config_show_cmd)
    config_set = config_sub.add_parser("set", help="Persist settings to the settings file.")
    config_set.add_argument("--api-key", type=str)
    config_set.add_argument("--base-url", type=str)
    config_set.add_argument("--model", type=str)
    config_set.set_defaults(handler=config_set_cmd)

    history_parser = subparsers.add_parser("history", help="Chat session history.")
    history_sub = history_parser.add_subparsers(dest="history_cmd", metavar="<subcommand>")
    history_list = history_sub.add_parser("list", help="List chat sessions.")
    history_list.set_defaults(handler=history_list_cmd)
    history_clear = history_sub.add_parser("clear", help="Delete all chat sessions.")
    history_clear.set_defaults(handler=history_clear_cmd)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(
        level=logging.DEBUG if getattr(args, "verbose", False) else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not hasattr(args, "handler"):
        parser.print_help()
        return 2

    args.environ = environ_with_home(getattr(args, "home", None))
    return int(args.handler(args=args, config=get_ai_config(environ=args.environ)))


__all__ = ["main"]
