"""CLI: Import the Lichess puzzle dump into the trainer's SQLite puzzle store.

Lichess puzzles start one ply early: the first move in the line is the
opponent's move that sets up the tactic. It is applied here at import time,
so stored puzzles begin with the trainee to move and match the evaluator's
alternating user/opponent layout.

Usage:
    python -m chess_trainer.import_puzzles                             # download + import
    python -m chess_trainer.import_puzzles --csv-path puzzles.csv.zst  # local file
"""

import argparse
import csv
import io
import sqlite3
import time
import urllib.request
from pathlib import Path

import chess
import zstandard

from chess_trainer.difficulty import difficulty_for_puzzle_rating
from chess_trainer.puzzles import SCHEMA

LICHESS_PUZZLE_URL = "https://database.lichess.org/lichess_db_puzzle.csv.zst"
DB_PATH = "data/puzzles.db"
BATCH_SIZE = 5000

# Lichess theme tag -> trainer theme, in priority order for picking the main theme.
LICHESS_THEMES: dict[str, str] = {
    "backRankMate": "back rank mate",
    "fork": "forks",
    "pin": "pins",
    "skewer": "skewers",
    "discoveredAttack": "discovered attacks",
    "doubleCheck": "double attacks",
    "capturingDefender": "removing the defender",
    "deflection": "deflection",
    "intermezzo": "zwischenzug",
    "interference": "interference",
    "zugzwang": "zugzwang positions",
    "kingsideAttack": "attacking the king",
    "promotion": "promotion",
    "rookEndgame": "rook endgames",
    "pawnEndgame": "king and pawn",
}

INSERT_SQL = """
INSERT OR REPLACE INTO puzzles (id, fen, moves, orientation, theme, themes, difficulty, rating, popularity, game_url)
VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
"""


def create_db(db_path: str) -> sqlite3.Connection:
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.executescript(SCHEMA)
    conn.commit()
    return conn


def _decompressed_rows(binary):
    reader = zstandard.ZstdDecompressor().stream_reader(binary)
    with io.TextIOWrapper(reader, encoding="utf-8") as text:
        yield from csv.reader(text)


def stream_csv_from_zst(path: str):
    """Yield CSV rows from a local .csv.zst dump."""
    with open(path, "rb") as fh:
        yield from _decompressed_rows(fh)


def download_and_stream_csv(url: str):
    """Yield CSV rows from a .csv.zst dump while it downloads."""
    req = urllib.request.Request(url, headers={"User-Agent": "chess-trainer-importer/1.0"})
    with urllib.request.urlopen(req) as resp:
        yield from _decompressed_rows(resp)


def map_themes(tags: list[str]) -> list[str]:
    """Trainer themes for a list of Lichess tags, in LICHESS_THEMES priority order."""
    present = set(tags)
    return [theme for tag, theme in LICHESS_THEMES.items() if tag in present]


def convert_row(row: list[str]) -> tuple | None:
    """Convert a Lichess CSV row into a puzzle-table tuple. None for header/invalid rows."""
    if len(row) < 9:
        return None
    puzzle_id, fen, moves, rating, _rating_dev, popularity, _nb_plays, tags, game_url = row[:9]
    try:
        rating = int(rating)
        popularity = int(popularity)
    except ValueError:
        return None

    line = moves.split()
    if len(line) < 2:
        return None
    try:
        board = chess.Board(fen)
        setup = chess.Move.from_uci(line[0])
    except ValueError:
        return None
    if setup not in board.legal_moves:
        return None
    board.push(setup)

    themes = map_themes(tags.split())
    return (
        puzzle_id,
        board.fen(),
        " ".join(line[1:]),
        "white" if board.turn == chess.WHITE else "black",
        themes[0] if themes else "general",
        ", ".join([*themes, *tags.split()]),
        difficulty_for_puzzle_rating(rating),
        rating,
        popularity,
        game_url,
    )


def import_puzzles(conn: sqlite3.Connection, rows, verbose: bool = True, on_progress=None) -> int:
    """Convert and insert rows in batches of BATCH_SIZE. Returns the number stored.

    `on_progress(count)` fires after every full batch; invalid rows are skipped.
    """
    pending: list[tuple] = []
    stored = 0
    started = time.time()

    def flush() -> None:
        nonlocal stored
        conn.executemany(INSERT_SQL, pending)
        conn.commit()
        stored += len(pending)
        pending.clear()

    for converted in map(convert_row, rows):
        if converted is None:
            continue
        pending.append(converted)
        if len(pending) < BATCH_SIZE:
            continue
        flush()
        if on_progress is not None:
            on_progress(stored)
        if verbose and stored % 100_000 == 0:
            print(f"  {stored:,} puzzles ({stored / max(time.time() - started, 1e-9):,.0f}/sec)")

    if pending:
        flush()
    return stored


def main():
    parser = argparse.ArgumentParser(description="Import Lichess puzzles into the trainer database")
    parser.add_argument("--csv-path", help="Local .csv.zst dump to import instead of downloading")
    parser.add_argument("--db-path", default=DB_PATH, help=f"Target SQLite file (default: {DB_PATH})")
    args = parser.parse_args()

    source = args.csv_path or LICHESS_PUZZLE_URL
    print(f"Importing {source} into {args.db_path}")
    rows = stream_csv_from_zst(args.csv_path) if args.csv_path else download_and_stream_csv(source)

    conn = create_db(args.db_path)
    started = time.time()
    try:
        stored = import_puzzles(conn, rows)
    finally:
        conn.close()
    print(f"Stored {stored:,} puzzles in {time.time() - started:.1f}s")


if __name__ == "__main__":
    main()
