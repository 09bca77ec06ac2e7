"""Puzzle records and the Lichess-backed puzzle database (async SQLite, FTS5 theme search)."""

from __future__ import annotations

import copy
import enum
import random
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path

import aiosqlite

from chess_trainer.difficulty import get_band


class Difficulty(enum.Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    EXPERT = "expert"


DIFFICULTY_RATINGS: dict[str, int] = {
    "easy": 1000,
    "medium": 1500,
    "hard": 2000,
    "expert": 2500,
}

EXPECTED_TIMES: dict[str, int] = {
    "easy": 30,
    "medium": 60,
    "hard": 90,
    "expert": 90,
}


@dataclass
class TrapInfo:
    name: str
    trap_move: str
    correct_defense: str
    follow_up: str
    explanation: str


@dataclass
class AlternativePath:
    """A non-solution branch with feedback attached."""
    move: str
    response: str
    evaluation: str             # "mistake", "inaccuracy", "good", ...
    explanation: str


@dataclass
class Puzzle:
    id: str
    fen: str
    moves: list[str]
    orientation: str = "white"
    theme: str = "general"
    difficulty: str = "medium"
    rating: int = 1500
    category: str = "tactics"
    expected_time: int = 60
    objective: str = ""
    explanation: str = ""
    has_trap: bool = False
    trap_info: TrapInfo | None = None
    alternative_paths: list[AlternativePath] = field(default_factory=list)
    hint_count: int = 0

    def copy(self) -> Puzzle:
        """Independent copy for a live attempt; the template stays untouched."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> Puzzle:
        known = {f.name for f in fields(cls)}
        values = {k: v for k, v in data.items() if k in known}
        trap = values.get("trap_info")
        if isinstance(trap, dict):
            values["trap_info"] = TrapInfo(**trap)
        values["alternative_paths"] = [
            AlternativePath(**p) if isinstance(p, dict) else p
            for p in values.get("alternative_paths") or []
        ]
        values["moves"] = list(values.get("moves") or [])
        return cls(**values)


SCHEMA = """
CREATE TABLE IF NOT EXISTS puzzles (
    id          TEXT PRIMARY KEY,
    fen         TEXT NOT NULL,
    moves       TEXT NOT NULL,
    orientation TEXT NOT NULL,
    theme       TEXT NOT NULL,
    themes      TEXT NOT NULL,
    difficulty  TEXT NOT NULL,
    rating      INTEGER NOT NULL,
    popularity  INTEGER NOT NULL DEFAULT 0,
    game_url    TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_puzzles_rating ON puzzles(rating);

CREATE VIRTUAL TABLE IF NOT EXISTS puzzles_fts USING fts5(
    themes, content='puzzles', content_rowid='rowid'
);

CREATE TRIGGER IF NOT EXISTS puzzles_ai AFTER INSERT ON puzzles BEGIN
    INSERT INTO puzzles_fts(rowid, themes) VALUES (new.rowid, new.themes);
END;
CREATE TRIGGER IF NOT EXISTS puzzles_ad AFTER DELETE ON puzzles BEGIN
    INSERT INTO puzzles_fts(puzzles_fts, rowid, themes) VALUES ('delete', old.rowid, old.themes);
END;
"""

_COLUMNS = "p.id, p.fen, p.moves, p.orientation, p.theme, p.difficulty, p.rating"


def _row_to_puzzle(row: aiosqlite.Row) -> Puzzle:
    difficulty = row[5]
    return Puzzle(
        id=row[0],
        fen=row[1],
        moves=row[2].split(),
        orientation=row[3],
        theme=row[4],
        difficulty=difficulty,
        rating=row[6],
        expected_time=EXPECTED_TIMES.get(difficulty, 60),
    )


class PuzzleDB:
    """Async store of imported Lichess puzzles, already converted to trainer format."""

    def __init__(self, db_path: str = "data/puzzles.db", rng: random.Random | None = None):
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._available = False
        self._rng = rng or random.Random()

    @property
    def available(self) -> bool:
        return self._available

    async def start(self) -> None:
        """Open the database. No-op if the DB file doesn't exist."""
        if self._db_path == ":memory:":
            self._db = await aiosqlite.connect(":memory:")
            await self._db.executescript(SCHEMA)
            self._available = True
            return
        if not Path(self._db_path).exists():
            return
        self._db = await aiosqlite.connect(self._db_path)
        self._available = True

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
            self._available = False

    async def insert(self, rows: list[tuple]) -> None:
        """Insert converted rows (see import_puzzles.convert_row)."""
        if not self._db:
            raise RuntimeError("Puzzle database not started")
        await self._db.executemany(
            "INSERT OR REPLACE INTO puzzles (id, fen, moves, orientation, theme, themes, "
            "difficulty, rating, popularity, game_url) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            rows,
        )
        await self._db.commit()

    async def get_by_id(self, puzzle_id: str) -> Puzzle | None:
        if not self._available or not self._db:
            return None
        cursor = await self._db.execute(
            f"SELECT {_COLUMNS} FROM puzzles p WHERE p.id = ?", (puzzle_id,)
        )
        row = await cursor.fetchone()
        return _row_to_puzzle(row) if row else None

    def _build_query(
        self, select: str, themes: list[str] | None, difficulty: str | None
    ) -> tuple[str, list]:
        params: list = []
        conditions: list[str] = []

        if themes:
            # Quote each theme so multi-word themes are phrase matches.
            fts_expr = " AND ".join('"' + t.replace('"', "") + '"' for t in themes)
            conditions.append(
                "p.rowid IN (SELECT rowid FROM puzzles_fts WHERE themes MATCH ?)"
            )
            params.append(fts_expr)

        if difficulty is not None:
            band = get_band(difficulty)
            conditions.append("p.rating >= ? AND p.rating < ?")
            params.extend([band.puzzle_rating_min, band.puzzle_rating_max])

        where = (" WHERE " + " AND ".join(conditions)) if conditions else ""
        return f"{select} FROM puzzles p{where}", params

    async def count(self, themes: list[str] | None = None, difficulty: str | None = None) -> int:
        if not self._available or not self._db:
            return 0
        query, params = self._build_query("SELECT COUNT(*)", themes, difficulty)
        cursor = await self._db.execute(query, params)
        row = await cursor.fetchone()
        return row[0] if row else 0

    async def get_random(
        self,
        themes: list[str] | None = None,
        difficulty: str | None = None,
        limit: int = 1,
    ) -> list[Puzzle]:
        if not self._available or not self._db:
            return []
        total = await self.count(themes, difficulty)
        if total == 0:
            return []

        offsets = self._rng.sample(range(total), min(limit, total))
        results: list[Puzzle] = []
        for offset in offsets:
            query, params = self._build_query(f"SELECT {_COLUMNS}", themes, difficulty)
            cursor = await self._db.execute(query + " LIMIT 1 OFFSET ?", [*params, offset])
            row = await cursor.fetchone()
            if row:
                results.append(_row_to_puzzle(row))
        return results
