"""Trap catalogue and puzzle decoration.

A trap is a legal but losing move that a puzzle deliberately offers. The
catalogue is grouped by game phase; the phase of a puzzle is estimated from
the number of pieces on the board.
"""

from __future__ import annotations

import enum
import logging
import random
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Protocol

from chess_trainer.puzzles import AlternativePath, Puzzle, TrapInfo

logger = logging.getLogger(__name__)

ENDGAME_MAX_PIECES = 10
MIDDLEGAME_MAX_PIECES = 20
WEAKNESS_THEME_COUNT = 3
TRAP_IMPROVEMENT_TIP = "Look for forced moves and checks before capturing pieces."


class GamePhase(enum.Enum):
    OPENING = "opening"
    MIDDLEGAME = "middlegame"
    ENDGAME = "endgame"


@dataclass(frozen=True)
class Trap:
    name: str
    fen: str
    trap_move: str
    correct_defense: str
    follow_up: str
    explanation: str


class WeaknessSource(Protocol):
    def get_weakness_themes(self, count: int = 3) -> list[str]: ...


TRAP_CATALOGUE: Mapping[GamePhase, tuple[Trap, ...]] = MappingProxyType({
    GamePhase.OPENING: (
        Trap(
            name="Scholar's Mate",
            fen="r1bqkbnr/ppp2ppp/2np4/4p3/2B1P3/5Q2/PPPP1PPP/RNB1K1NR w KQkq - 0 4",
            trap_move="f3f7",
            correct_defense="e8f7",
            follow_up="c4f7",
            explanation="Scholar's Mate trap. The queen capture on f7 looks threatening "
                        "but loses the queen after Kxf7.",
        ),
        Trap(
            name="Légal Trap",
            fen="r1bqkb1r/pppp1ppp/2n2n2/4p3/2B1P3/5N2/PPPP1PPP/RNBQK2R w KQkq - 4 4",
            trap_move="f3e5",
            correct_defense="c6e5",
            follow_up="d1f3",
            explanation="Légal's trap. Black's knight capture appears to win material "
                        "but allows a devastating queen move.",
        ),
        Trap(
            name="Blackburne Shilling Trap",
            fen="r1bqkb1r/pppp1ppp/2n2n2/4p3/4P3/2N2N2/PPPP1PPP/R1BQKB1R w KQkq - 0 4",
            trap_move="f3e5",
            correct_defense="d8e7",
            follow_up="e5c6",
            explanation="Blackburne Shilling Trap. Taking the e5 pawn exposes the knight to capture.",
        ),
    ),
    GamePhase.MIDDLEGAME: (
        Trap(
            name="Greek Gift Sacrifice",
            fen="rnbqk2r/ppp1bppp/4pn2/3p4/2PP4/2N2N2/PP2PPPP/R1BQKB1R w KQkq - 0 6",
            trap_move="c1h6",
            correct_defense="g7h6",
            follow_up="d1b3",
            explanation="The Greek Gift sacrifice. Black should decline by playing Kf8 "
                        "rather than taking the bishop.",
        ),
        Trap(
            name="Double Bishop Sacrifice",
            fen="r1bqk2r/pppp1ppp/2n2n2/2b1p3/2B1P3/2NP1N2/PPP2PPP/R1BQK2R w KQkq - 0 6",
            trap_move="c4f7",
            correct_defense="e8f7",
            follow_up="f3e5",
            explanation="Double bishop sacrifice trap. After Kxf7, White plays Ne5+ "
                        "forking the king and queen.",
        ),
    ),
    GamePhase.ENDGAME: (
        Trap(
            name="Back Rank Mate Trap",
            fen="6k1/5ppp/8/8/8/8/5PPP/R5K1 w - - 0 1",
            trap_move="a1a8",
            correct_defense="f7f6",
            follow_up="",
            explanation="Back rank mate trap. Black must create an escape square for "
                        "the king with f6 or h6.",
        ),
        Trap(
            name="Queen vs Rook Endgame Trap",
            fen="8/8/8/4k3/8/5R2/7K/3q4 b - - 0 1",
            trap_move="d1f3",
            correct_defense="h2g2",
            follow_up="f3f2",
            explanation="Queen vs Rook endgame trap. Taking the rook leads to a stalemate position.",
        ),
    ),
})


def count_pieces(fen: str) -> int:
    """Number of pieces in the placement field of a FEN."""
    placement = fen.split(" ")[0]
    return sum(1 for ch in placement if ch.isalpha())


def game_phase(fen: str) -> GamePhase:
    pieces = count_pieces(fen)
    if pieces <= ENDGAME_MAX_PIECES:
        return GamePhase.ENDGAME
    if pieces <= MIDDLEGAME_MAX_PIECES:
        return GamePhase.MIDDLEGAME
    return GamePhase.OPENING


class TrapEngine:
    def __init__(
        self,
        catalogue: Mapping[GamePhase, tuple[Trap, ...]] = TRAP_CATALOGUE,
        rng: random.Random | None = None,
    ):
        self._catalogue = catalogue
        self._rng = rng or random.Random()

    def traps_for(self, phase: GamePhase) -> tuple[Trap, ...]:
        return self._catalogue.get(phase, ())

    def select_trap(
        self,
        phase: GamePhase,
        profile: WeaknessSource | None = None,
        exclude_moves: frozenset[str] = frozenset(),
    ) -> Trap | None:
        """Prefer traps whose explanation mentions one of the user's weakest themes.

        Traps whose move is in `exclude_moves` (the solution line) are never offered.
        """
        traps = [t for t in self.traps_for(phase) if t.trap_move not in exclude_moves]
        if not traps:
            return None
        if profile is not None:
            weak = [t.lower() for t in profile.get_weakness_themes(WEAKNESS_THEME_COUNT)]
            relevant = [
                trap for trap in traps
                if any(theme in trap.explanation.lower() for theme in weak)
            ]
            if relevant:
                return self._rng.choice(relevant)
        return self._rng.choice(traps)

    def enhance_puzzle_with_traps(self, puzzle: Puzzle, profile: WeaknessSource | None = None) -> Puzzle:
        """Return a trap-decorated copy of `puzzle`; the input is left untouched."""
        enhanced = puzzle.copy()
        phase = game_phase(puzzle.fen)
        trap = self.select_trap(phase, profile, exclude_moves=frozenset(puzzle.moves))
        if trap is None:
            logger.debug("No usable trap for %s puzzle %s", phase.value, puzzle.id)
            return enhanced

        enhanced.has_trap = True
        enhanced.trap_info = TrapInfo(
            name=trap.name,
            trap_move=trap.trap_move,
            correct_defense=trap.correct_defense,
            follow_up=trap.follow_up,
            explanation=trap.explanation,
        )
        enhanced.alternative_paths.append(AlternativePath(
            move=trap.trap_move,
            response=trap.correct_defense,
            evaluation="mistake",
            explanation=trap.explanation,
        ))
        return enhanced

    @staticmethod
    def is_trap_move(puzzle: Puzzle, move: str) -> bool:
        return bool(puzzle.has_trap and puzzle.trap_info and puzzle.trap_info.trap_move == move)

    def get_trap_feedback(self, puzzle: Puzzle, move: str, ply: int = 0) -> dict | None:
        """Feedback for a trap `move` played at solution index `ply`."""
        if not self.is_trap_move(puzzle, move):
            return None
        return {
            "title": f"You fell for the {puzzle.trap_info.name} trap!",
            "explanation": puzzle.trap_info.explanation,
            "correct_move": puzzle.moves[ply] if 0 <= ply < len(puzzle.moves) else None,
            "improvement": TRAP_IMPROVEMENT_TIP,
        }
