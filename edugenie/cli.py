"""CLI entry point for edugenie.

Runs the study features from a terminal against the configured backends.
Backends and bindings come from the environment (.env is loaded first).

Entry point:
    edugenie-cli explain "photosynthesis" [--stream]
    edugenie-cli summarize notes.txt
    edugenie-cli flashcards "Photosynthesis" [--count 8] [--images] [-o cards.json]
    edugenie-cli quiz "Photosynthesis" [--count 5] [--images]
    edugenie-cli lecture transcript.txt [--mode text|media]
    edugenie-cli image "the water cycle"
    edugenie-cli preload
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from edugenie.coordinator import Coordinator, build_default_coordinator
from edugenie.core import EduGenieError

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────────────────────────────
# ARGUMENT PARSING
# ─────────────────────────────────────────────────────────────────────


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="edugenie-cli",
        description="AI study tools: explanations, summaries, flashcards and quizzes.",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )
    sub = parser.add_subparsers(dest="command")

    explain_p = sub.add_parser("explain", help="Explain a concept")
    explain_p.add_argument("topic", help="Concept or question")
    explain_p.add_argument("--stream", action="store_true", help="Print tokens as they arrive")

    summarize_p = sub.add_parser("summarize", help="Summarize study notes")
    summarize_p.add_argument("path", help="Notes file ('-' for stdin)")

    for name, noun, default_count in (("flashcards", "flashcards", 8), ("quiz", "quiz questions", 5)):
        gen_p = sub.add_parser(name, help=f"Generate {noun}")
        gen_p.add_argument("topic", help="Topic to study")
        gen_p.add_argument("--content", default="", help="Source material (or @file)")
        gen_p.add_argument("--count", type=int, default=default_count, help=f"Number of {noun}")
        gen_p.add_argument("--images", action="store_true", help="Illustrate each item")
        gen_p.add_argument("-o", "--output", default=None, help="Output file path (default: stdout)")

    lecture_p = sub.add_parser("lecture", help="Summarize a lecture transcript")
    lecture_p.add_argument("path", help="Transcript file ('-' for stdin)")
    lecture_p.add_argument("--mode", choices=["text", "media"], default="text")

    image_p = sub.add_parser("image", help="Generate an illustration")
    image_p.add_argument("prompt", help="What to illustrate")

    sub.add_parser("preload", help="Load the local model ahead of use")

    return parser


def _read_source(path: str) -> str:
    if path == "-":
        return sys.stdin.read()
    return Path(path).read_text(encoding="utf-8")


def _content_arg(value: str) -> str:
    """--content accepts literal text or @path."""
    if value.startswith("@"):
        return _read_source(value[1:])
    return value


# ─────────────────────────────────────────────────────────────────────
# COMMANDS
# ─────────────────────────────────────────────────────────────────────


def _print_token(token: str) -> None:
    sys.stdout.write(token)
    sys.stdout.flush()


async def _cmd_explain(coordinator: Coordinator, topic: str, stream: bool) -> int:
    if stream:
        await coordinator.explain_concept(topic, on_token=_print_token)
        sys.stdout.write("\n")
    else:
        print(await coordinator.explain_concept(topic))
    return 0


async def _cmd_generate(
    coordinator: Coordinator,
    kind: str,
    topic: str,
    content: str,
    count: int,
    include_images: bool,
    output: Optional[str],
) -> int:
    if kind == "flashcards":
        records = await coordinator.generate_flashcards(
            topic, content, count, include_images=include_images
        )
    else:
        records = await coordinator.generate_quiz(
            topic, content, count, include_images=include_images
        )

    payload = [record.model_dump(by_alias=True) for record in records]
    text = json.dumps(payload, indent=2)
    if output:
        Path(output).write_text(text + "\n", encoding="utf-8")
        print(f"Wrote {len(records)} {kind} to {output}", file=sys.stderr)
    else:
        sys.stdout.write(text + "\n")
    return 0


async def _cmd_image(coordinator: Coordinator, prompt: str) -> int:
    image = await coordinator.generate_image(prompt)
    if image is None:
        print("No image was generated.", file=sys.stderr)
        return 1
    print(image)
    return 0


async def _dispatch(args: argparse.Namespace, coordinator: Coordinator) -> int:
    if args.command == "explain":
        return await _cmd_explain(coordinator, args.topic, args.stream)
    if args.command == "summarize":
        print(await coordinator.summarize_notes(_read_source(args.path)))
        return 0
    if args.command in ("flashcards", "quiz"):
        return await _cmd_generate(
            coordinator,
            args.command,
            args.topic,
            _content_arg(args.content),
            args.count,
            args.images,
            args.output,
        )
    if args.command == "lecture":
        content = "" if args.mode == "media" else _read_source(args.path)
        print(await coordinator.summarize_lecture(content, mode=args.mode))
        return 0
    if args.command == "image":
        return await _cmd_image(coordinator, args.prompt)
    if args.command == "preload":
        await coordinator.preload_model()
        return 0
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[list[str]] = None):
    parser = _build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Logging
    level = logging.DEBUG if args.verbose else logging.WARNING
    logging.basicConfig(level=level, format="%(name)s %(message)s", stream=sys.stderr)

    load_dotenv()
    coordinator = build_default_coordinator()

    try:
        code = asyncio.run(_dispatch(args, coordinator))
    except EduGenieError as e:
        logger.debug("Command %s failed", args.command, exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    except OSError as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1

    sys.exit(code)


if __name__ == "__main__":
    main()
