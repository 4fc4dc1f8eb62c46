"""Command-line interface for clipcast.

WHY: Producers and scripts need render plans without running the API
(``plan``), and the API needs a single command that wires the persisted
post store, token store, adapters and scheduler together (``serve``).

HOW: argparse with two subcommands. ``plan`` reads transcript words (and
optionally a caption style and a multicam configuration) from JSON files,
assembles a validated render plan and prints it to stdout or writes it
with -o. ``serve`` configures clipcast.server.app and runs it under
uvicorn. Logging goes to stderr; --verbose lowers the level to DEBUG.

RULES:
- Render plan JSON goes to stdout (or -o); status and errors to stderr
- Invalid input exits with status 1 and a one-line message
- Words file: a JSON list of {text, start, end} or {"words": [...]}
- Python 3.9+ compatible: no match/case, no X | Y unions
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, List, Optional

from clipcast.config import (
    DEFAULT_FPS,
    OUTPUT_DIR,
    POSTS_PATH,
    RENDER_DIR,
    TOKENS_PATH,
    VIDEO_FORMATS,
)
from clipcast.core.ir import CaptionStyle, MulticamSettings, Word
from clipcast.core.render_plan import assemble_render_plan
from clipcast.errors import ConfigurationError


def _status(msg: str) -> None:
    """Print a status message to stderr so stdout stays pipeable."""
    print(msg, file=sys.stderr, flush=True)


def _read_json(path: str) -> Any:
    with open(path, encoding="utf-8") as f:
        return json.load(f)


def load_words(path: str) -> List[Word]:
    """Read transcript words from a JSON file."""
    data = _read_json(path)
    if isinstance(data, dict):
        data = data.get("words", [])
    if not isinstance(data, list):
        raise ConfigurationError("{} does not contain a list of words".format(path))
    return [Word.from_dict(item) for item in data]


def _cmd_plan(args: argparse.Namespace) -> int:
    try:
        words = load_words(args.words)
        style = CaptionStyle.from_dict(_read_json(args.style)) if args.style else None
        multicam = MulticamSettings.from_dict(_read_json(args.multicam)) if args.multicam else None
        plan = assemble_render_plan(
            words,
            clip_start_s=args.start,
            clip_end_s=args.end,
            fps=args.fps,
            video_format=args.format,
            caption_style=style,
            multicam=multicam,
            audio_url=args.audio_url,
        )
        text = plan.to_json()
    except (OSError, json.JSONDecodeError, ConfigurationError, KeyError, TypeError, ValueError) as exc:
        _status("Error: {}".format(exc))
        return 1

    if args.output:
        Path(args.output).write_text(text + "\n", encoding="utf-8")
        _status(
            "Wrote render plan ({} frames @ {} fps) to {}".format(
                plan.duration_in_frames, plan.fps, args.output
            )
        )
    else:
        print(text)
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    from clipcast.publish.adapters import build_adapters
    from clipcast.publish.scheduler import DirectoryRenderer, PublishScheduler
    from clipcast.publish.store import PublishStore
    from clipcast.publish.tokens import TokenStore
    from clipcast.server import app as server

    store = PublishStore(args.posts)
    tokens = TokenStore(args.tokens)
    adapters = build_adapters(tokens, output_dir=args.output_dir)
    scheduler = PublishScheduler(store, DirectoryRenderer(args.render_dir), adapters)
    server.configure(store, scheduler, tokens)

    _status("Serving clipcast API on http://{}:{}".format(args.host, args.port))
    server.run_api(host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser (separate from main() so tests can inspect it)."""
    parser = argparse.ArgumentParser(
        prog="clipcast",
        description="Assemble render plans for captioned clips and run the publishing API.",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log at DEBUG level.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    plan = sub.add_parser("plan", help="Assemble a render plan for one clip.")
    plan.add_argument("words", help="JSON file with transcript words ({text, start, end}).")
    plan.add_argument("--start", type=float, required=True, help="Clip start in source seconds.")
    plan.add_argument("--end", type=float, required=True, help="Clip end in source seconds.")
    plan.add_argument(
        "--fps", type=float, default=DEFAULT_FPS, help="Output frame rate (default: %(default)s)."
    )
    plan.add_argument(
        "--format",
        default="9:16",
        choices=sorted(VIDEO_FORMATS),
        help="Output aspect ratio (default: %(default)s).",
    )
    plan.add_argument("--style", default=None, help="JSON file with caption style settings.")
    plan.add_argument(
        "--multicam", default=None, help="JSON file with camera sources and switching timeline."
    )
    plan.add_argument("--audio-url", default=None, help="Source audio URL for the renderer.")
    plan.add_argument("--output", "-o", default=None, help="Write the plan here instead of stdout.")
    plan.set_defaults(func=_cmd_plan)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: %(default)s).")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: %(default)s).")
    serve.add_argument("--posts", default=str(POSTS_PATH), help="Post store JSON file.")
    serve.add_argument("--tokens", default=str(TOKENS_PATH), help="Token store JSON file.")
    serve.add_argument(
        "--render-dir",
        default=str(RENDER_DIR),
        help="Directory holding rendered clips (<clip_id>-<WxH>.mp4 or <clip_id>.mp4).",
    )
    serve.add_argument(
        "--output-dir",
        default=str(OUTPUT_DIR),
        help="Directory the local destination copies finished videos to.",
    )
    serve.set_defaults(func=_cmd_serve)

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the ``clipcast`` console script and ``python -m clipcast``.

    RULES:
    - argv=None means use sys.argv; explicit argv is for testing
    - Exits with the subcommand's status code
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
