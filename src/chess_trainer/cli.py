"""Command-line entry points for the trainer.

Usage:
    python -m chess_trainer.cli puzzles [--theme THEME] [--difficulty LEVEL]
        [--count N] [--no-traps] [--seed N]
    python -m chess_trainer.cli progress <user_id> [--progress-dir DIR]
    python -m chess_trainer.cli serve [--host HOST] [--port PORT]

`puzzles` and `progress` print JSON to stdout.
"""

from __future__ import annotations

import argparse
import json
import random
import sys

from chess_trainer.difficulty import DEFAULT_DIFFICULTY, DIFFICULTY_BANDS
from chess_trainer.generator import PuzzleGenerator
from chess_trainer.progress import ProgressTracker
from chess_trainer.storage import ProgressStore


def _puzzles(args: argparse.Namespace) -> object:
    generator = PuzzleGenerator(
        rng=random.Random(args.seed),
        include_traps=not args.no_traps,
    )
    puzzles = [generator.generate_puzzle(args.theme, args.difficulty) for _ in range(args.count)]
    return [p.to_dict() for p in puzzles]


def _progress(args: argparse.Namespace) -> object:
    store = ProgressStore(args.progress_dir)
    tracker = ProgressTracker(args.user_id)
    blob = store.get(args.user_id)
    if blob is not None and not tracker.import_user_progress(blob):
        print(f"warning: stored progress for {args.user_id} is unreadable", file=sys.stderr)
    return tracker.get_performance_summary()


def _serve(args: argparse.Namespace) -> None:
    import uvicorn

    uvicorn.run("chess_trainer.main:app", host=args.host, port=args.port)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Chess tactics trainer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("puzzles", help="Print built-in puzzles as JSON")
    p.add_argument("--theme", default=None, help="Puzzle theme (default: random)")
    p.add_argument(
        "--difficulty", default=DEFAULT_DIFFICULTY,
        choices=list(DIFFICULTY_BANDS),
        help=f"Difficulty level (default: {DEFAULT_DIFFICULTY})",
    )
    p.add_argument("--count", type=int, default=1, help="Number of puzzles")
    p.add_argument("--no-traps", action="store_true", help="Never decorate puzzles with traps")
    p.add_argument("--seed", type=int, default=None, help="Random seed")
    p.set_defaults(func=_puzzles)

    p = sub.add_parser("progress", help="Print a user's performance summary as JSON")
    p.add_argument("user_id")
    p.add_argument("--progress-dir", default="data/progress", help="Progress store directory")
    p.set_defaults(func=_progress)

    p = sub.add_parser("serve", help="Run the HTTP API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.set_defaults(func=_serve)
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    try:
        result = args.func(args)
    except ValueError as e:
        print(f"error: {e}", file=sys.stderr)
        sys.exit(1)
    if result is not None:
        json.dump(result, sys.stdout, indent=2)
        print()


if __name__ == "__main__":
    main()
