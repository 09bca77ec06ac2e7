"""Built-in puzzle source.

Serves puzzles from a small read-only catalogue, optionally decorated with
a trap. Catalogue entries are templates: every puzzle handed out is an
independent copy, so attempts can mutate their puzzle freely.
"""

from __future__ import annotations

import logging
import random
import uuid
from collections.abc import Mapping

from chess_trainer.puzzles import DIFFICULTY_RATINGS, EXPECTED_TIMES, Puzzle
from chess_trainer.traps import TrapEngine

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard", "expert")


def _catalogue() -> dict[str, dict[str, tuple[Puzzle, ...]]]:
    puzzles = (
        Puzzle(
            id="pin-easy-1",
            fen="4k3/8/8/4n3/8/3P4/8/4R1K1 w - - 0 1",
            moves=["d3d4", "e8d7", "d4e5"],
            theme="pins", difficulty="easy", rating=1000, expected_time=30,
            objective="Win the pinned knight",
            explanation="The knight on e5 is pinned to the king by the rook. "
                        "Attack it with a pawn and it cannot escape.",
        ),
        Puzzle(
            id="fork-medium-1",
            fen="r1bqkb1r/pppp1ppp/2n2n2/4p3/4P3/2N2N2/PPPP1PPP/R1BQKB1R w KQkq - 4 4",
            moves=["f3e5", "d7d6", "e5c6", "b7c6"],
            theme="forks", difficulty="medium", rating=1500, expected_time=45,
            objective="Find the knight fork",
            explanation="The knight on e5 forks the queen and rook, gaining material.",
        ),
        Puzzle(
            id="fork-easy-1",
            fen="r3k3/8/8/1N6/8/8/8/4K3 w - - 0 1",
            moves=["b5c7", "e8d7", "c7a8"],
            theme="forks", difficulty="easy", rating=1000, expected_time=30,
            objective="Fork the king and rook",
            explanation="Nc7+ attacks the king and the rook on a8 at the same time.",
        ),
        Puzzle(
            id="skewer-medium-1",
            fen="8/1q6/8/3k4/8/8/8/4KB2 w - - 0 1",
            moves=["f1g2", "d5d4", "g2b7"],
            theme="skewers", difficulty="medium", rating=1500,
            objective="Skewer the king and queen",
            explanation="Bg2+ checks along the long diagonal; once the king steps aside "
                        "the queen behind it falls.",
        ),
        Puzzle(
            id="discovered-medium-1",
            fen="3q2k1/8/8/8/8/3B4/8/3R2K1 w - - 0 1",
            moves=["d3h7", "g8h7", "d1d8"],
            theme="discovered attacks", difficulty="medium", rating=1500,
            objective="Uncover an attack on the queen",
            explanation="Bxh7+ clears the d-file with check, so the rook wins the queen next move.",
        ),
        Puzzle(
            id="backrank-easy-1",
            fen="6k1/5ppp/8/8/8/8/5PPP/R5K1 w - - 0 1",
            moves=["a1a8"],
            theme="back rank mate", difficulty="easy", rating=1000, expected_time=30,
            objective="Checkmate in one",
            explanation="The black king is boxed in by its own pawns.",
        ),
        Puzzle(
            id="backrank-hard-1",
            fen="r5k1/5ppp/8/8/8/8/5PPP/6K1 b - - 0 1",
            moves=["a8a1"],
            orientation="black",
            theme="back rank mate", difficulty="hard", rating=2000, expected_time=90,
            objective="Checkmate in one as Black",
            explanation="White never gave the king an escape square.",
        ),
        Puzzle(
            id="promotion-expert-1",
            fen="8/P7/8/8/8/8/8/k3K3 w - - 0 1",
            moves=["a7a8q"],
            theme="promotion", difficulty="expert", rating=2500, expected_time=90,
            category="endgame",
            objective="Promote the pawn",
            explanation="Nothing can stop the a-pawn.",
        ),
        Puzzle(
            id="center-easy-1",
            fen="rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1",
            moves=["e2e4", "e7e5", "f1c4"],
            theme="center control", difficulty="easy", rating=1000, expected_time=30,
            category="openings",
            objective="Claim the center and develop",
            explanation="Occupy the center with a pawn, then develop the bishop toward f7.",
        ),
    )
    catalogue: dict[str, dict[str, list[Puzzle]]] = {}
    for puzzle in puzzles:
        catalogue.setdefault(puzzle.theme, {d: [] for d in DIFFICULTIES})
        catalogue[puzzle.theme][puzzle.difficulty].append(puzzle)
    return {
        theme: {d: tuple(items) for d, items in by_difficulty.items()}
        for theme, by_difficulty in catalogue.items()
    }


BUILTIN_PUZZLES: Mapping[str, Mapping[str, tuple[Puzzle, ...]]] = _catalogue()

# Fallback templates when the catalogue has nothing at the requested difficulty.
RANDOM_TEMPLATES: tuple[dict, ...] = (
    {
        "fen": "r1bqkbnr/pppp1ppp/2n5/4p3/4P3/5N2/PPPP1PPP/RNBQKB1R w KQkq - 2 3",
        "moves": ["f1b5", "a7a6", "b5c6"],
        "objective": "Find the tactical opportunity",
    },
    {
        "fen": "r1bqkb1r/pppp1ppp/2n2n2/4p3/4P3/2N2N2/PPPP1PPP/R1BQKB1R w KQkq - 4 4",
        "moves": ["f3e5", "d7d6", "e5c6"],
        "objective": "Find the best tactical move",
    },
    {
        "fen": "r1bqkb1r/ppp2ppp/2n2n2/3pp3/4P3/2N2N2/PPPP1PPP/R1BQKB1R w KQkq d6 0 5",
        "moves": ["e4d5", "c6d4", "f3d4"],
        "objective": "Find the best capture",
    },
)


class PuzzleGenerator:
    def __init__(
        self,
        traps: TrapEngine | None = None,
        rng: random.Random | None = None,
        include_traps: bool = True,
        trap_frequency: float = 0.3,
        catalogue: Mapping[str, Mapping[str, tuple[Puzzle, ...]]] = BUILTIN_PUZZLES,
    ):
        self._rng = rng or random.Random()
        self.traps = traps or TrapEngine(rng=self._rng)
        self.include_traps = include_traps
        self.trap_frequency = min(1.0, max(0.0, trap_frequency))
        self._catalogue = catalogue

    @property
    def themes(self) -> list[str]:
        return list(self._catalogue)

    def _maybe_trap(self, puzzle: Puzzle, include_trap: bool) -> Puzzle:
        if include_trap and self.include_traps:
            return self.traps.enhance_puzzle_with_traps(puzzle)
        return puzzle

    def generate_puzzle(
        self,
        theme: str | None = None,
        difficulty: str = "medium",
        include_trap: bool | None = None,
    ) -> Puzzle:
        if not theme:
            theme = self._rng.choice(self.themes)
        if include_trap is None:
            include_trap = self.include_traps and self._rng.random() < self.trap_frequency

        candidates = self._catalogue.get(theme, {}).get(difficulty, ())
        if not candidates:
            candidates = next(
                (by_diff[difficulty] for by_diff in self._catalogue.values() if by_diff.get(difficulty)),
                (),
            )
        if not candidates:
            return self.generate_random_puzzle(theme, difficulty)

        puzzle = self._rng.choice(candidates).copy()
        return self._maybe_trap(puzzle, include_trap)

    def generate_puzzles_by_themes(
        self, themes: list[str], difficulty: str = "medium", count: int = 5
    ) -> list[Puzzle]:
        """Cycle through `themes`; every third puzzle carries a trap."""
        if not themes:
            return []
        return [
            self.generate_puzzle(themes[i % len(themes)], difficulty, include_trap=i % 3 == 0)
            for i in range(count)
        ]

    def generate_puzzles(self, difficulty: str = "medium", count: int = 1) -> list[Puzzle]:
        return [self.generate_puzzle(None, difficulty) for _ in range(count)]

    def generate_random_puzzle(self, theme: str = "general", difficulty: str = "medium") -> Puzzle:
        template = self._rng.choice(RANDOM_TEMPLATES)
        logger.debug("No catalogued %s/%s puzzle, using a template", theme, difficulty)
        puzzle = Puzzle(
            id=f"{theme}-{difficulty}-{uuid.uuid4().hex[:8]}",
            fen=template["fen"],
            moves=list(template["moves"]),
            theme=theme,
            difficulty=difficulty,
            rating=DIFFICULTY_RATINGS.get(difficulty, 1500),
            expected_time=EXPECTED_TIMES.get(difficulty, 60),
            objective=template["objective"],
            explanation=f"This is a {theme} puzzle at {difficulty} level.",
        )
        include_trap = self.include_traps and self._rng.random() < self.trap_frequency
        return self._maybe_trap(puzzle, include_trap)

    def set_trap_generation(self, enable: bool) -> bool:
        self.include_traps = enable
        return self.include_traps

    def set_trap_frequency(self, frequency: float) -> float:
        self.trap_frequency = min(1.0, max(0.0, frequency))
        return self.trap_frequency
