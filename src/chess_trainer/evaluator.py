"""Puzzle evaluation state machine.

The evaluator walks one puzzle attempt ply by ply. User moves are checked
against the scripted solution; a correct move that leaves the line open
triggers the scripted opponent reply, a wrong move is rolled back, and a
catalogued trap move stays on the board so its refutation can be shown.

Overlapping evaluate() calls are rejected, not queued: the first caller
holds a non-blocking lock and any concurrent call gets None back.
"""

from __future__ import annotations

import enum
import json
import logging
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from chess_trainer.puzzles import AlternativePath, Puzzle, TrapInfo
from chess_trainer.rules import ChessRules, MoveRecord, RulesEngine

logger = logging.getLogger(__name__)

MSG_ILLEGAL = "Illegal move"
MSG_SOLVED = "Puzzle solved correctly!"
MSG_CONTINUE = "Correct move! Continue..."
MSG_WRONG = "Not the best move. Try again."

PIECE_NAMES = {
    "p": "pawn",
    "n": "knight",
    "b": "bishop",
    "r": "rook",
    "q": "queen",
    "k": "king",
}

MAX_HINT_LEVEL = 2


class EvaluatorState(enum.Enum):
    IDLE = "idle"
    AWAITING_MOVE = "awaiting_move"
    EVALUATING = "evaluating"
    SOLVED = "solved"


@dataclass
class MoveResult:
    valid: bool
    message: str
    is_correct: bool = False
    is_trap: bool = False
    trap_info: TrapInfo | None = None
    alternative_path: AlternativePath | None = None
    position: str | None = None
    move: MoveRecord | None = None
    game_over: bool = False
    completed: bool = False
    opponent_move: MoveRecord | None = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Hint:
    type: str                   # vague, moderate, specific, info, error
    message: str
    highlight_squares: list[str] = field(default_factory=list)


@dataclass
class PuzzleRecord:
    id: str
    result: str                 # solved, failed, abandoned
    moves: list[str]
    timestamp: str


def piece_name(piece_type: str) -> str:
    return PIECE_NAMES.get(piece_type, "piece")


def square_description(square: str) -> str:
    """Rough board region of a square, e.g. 'kingside back rank'."""
    file, rank = square[0], square[1]
    if file in "abc":
        area = "queenside"
    elif file in "fgh":
        area = "kingside"
    else:
        area = "center"

    if rank in "12":
        area += " back rank"
    elif rank in "78":
        area += " front rank"
    elif rank in "45":
        area += " middle"
    return area


def split_move(notation: str) -> tuple[str, str, str | None]:
    """Split 'e7e8q' into ('e7', 'e8', 'q')."""
    return notation[:2], notation[2:4], notation[4:] or None


class PuzzleEvaluator:
    def __init__(self, rules: RulesEngine | None = None):
        self._rules = rules if rules is not None else ChessRules()
        self._lock = threading.Lock()
        self.current_puzzle: Puzzle | None = None
        self.move_history: list[str] = []
        self.puzzle_history: list[PuzzleRecord] = []
        self.solved = False

    @property
    def is_evaluating(self) -> bool:
        return self._lock.locked()

    @property
    def state(self) -> EvaluatorState:
        if self.current_puzzle is None:
            return EvaluatorState.IDLE
        if self.is_evaluating:
            return EvaluatorState.EVALUATING
        if self.solved:
            return EvaluatorState.SOLVED
        return EvaluatorState.AWAITING_MOVE

    def _line_exhausted(self) -> bool:
        return len(self.move_history) >= len(self.current_puzzle.moves)

    def initialize(self, puzzle: Puzzle) -> dict:
        """Make `puzzle` current and load its starting position."""
        if not puzzle.moves:
            raise ValueError(f"Puzzle {puzzle.id} has no solution moves")
        self._rules.load(puzzle.fen)
        self.current_puzzle = puzzle
        self.move_history = []
        self.solved = False
        puzzle.hint_count = 0
        return {
            "position": puzzle.fen,
            "orientation": puzzle.orientation,
            "side_to_move": self._rules.turn(),
        }

    def reset_puzzle(self) -> dict | None:
        if self.current_puzzle is None:
            return None
        return self.initialize(self.current_puzzle)

    def evaluate(self, from_sq: str, to_sq: str, promotion: str | None = "q") -> MoveResult | None:
        """Evaluate one user move. None when there is nothing to evaluate or a call is in flight."""
        if self.current_puzzle is None or self._line_exhausted():
            return None
        if not self._lock.acquire(blocking=False):
            logger.debug("Dropped overlapping evaluation of %s%s", from_sq, to_sq)
            return None
        try:
            return self._evaluate(from_sq, to_sq, promotion)
        finally:
            self._lock.release()

    def _evaluate(self, from_sq: str, to_sq: str, promotion: str | None) -> MoveResult:
        puzzle = self.current_puzzle
        record = self._rules.move(from_sq, to_sq, promotion)
        if record is None:
            return MoveResult(valid=False, message=MSG_ILLEGAL)

        notation = from_sq + to_sq + (record.promotion or "")
        self.move_history.append(notation)
        expected = puzzle.moves[len(self.move_history) - 1]
        is_correct = notation == expected

        trap_info = None
        if puzzle.has_trap and puzzle.trap_info and notation == puzzle.trap_info.trap_move:
            trap_info = puzzle.trap_info
        alternative = next((p for p in puzzle.alternative_paths if p.move == notation), None)

        result = MoveResult(
            valid=True,
            message="",
            is_correct=is_correct,
            is_trap=trap_info is not None,
            trap_info=trap_info,
            alternative_path=alternative,
            position=self._rules.fen(),
            move=record,
            game_over=self._rules.is_game_over(),
        )

        if is_correct and self._line_exhausted():
            self.solved = True
            result.completed = True
            result.message = MSG_SOLVED
            self._record("solved")
        elif is_correct:
            result.message = MSG_CONTINUE
            result.opponent_move = self._play_scripted_reply()
            result.position = self._rules.fen()
            result.game_over = self._rules.is_game_over()
        elif trap_info is None:
            result.message = MSG_WRONG
            self._rules.undo()
            self.move_history.pop()
            result.position = self._rules.fen()
        else:
            result.message = f"You fell for the {trap_info.name} trap!"
        return result

    def _play_scripted_reply(self) -> MoveRecord:
        scripted = self.current_puzzle.moves[len(self.move_history)]
        reply = self._rules.move(*split_move(scripted))
        if reply is None:
            logger.error("Scripted reply %s is illegal in puzzle %s", scripted, self.current_puzzle.id)
            raise ValueError(f"Scripted reply {scripted} is illegal in puzzle {self.current_puzzle.id}")
        self.move_history.append(scripted)
        return reply

    def _record(self, result: str) -> None:
        self.puzzle_history.append(PuzzleRecord(
            id=self.current_puzzle.id,
            result=result,
            moves=list(self.move_history),
            timestamp=datetime.now(timezone.utc).isoformat(),
        ))

    def close_attempt(self, result: str) -> None:
        """Record an unsolved attempt ("failed" or "abandoned") and go idle."""
        if self.current_puzzle is None:
            return
        if not self.solved:
            self._record(result)
        self.current_puzzle = None
        self.move_history = []
        self.solved = False

    def get_hint(self) -> Hint | None:
        puzzle = self.current_puzzle
        if puzzle is None:
            return None

        index = len(self.move_history)
        if index >= len(puzzle.moves):
            return Hint(type="info", message="You've completed all the moves for this puzzle!")

        from_sq, to_sq, _ = split_move(puzzle.moves[index])
        piece = self._rules.piece_at(from_sq)
        if piece is None:
            return Hint(type="error", message="Hint error: Could not find piece at expected position")

        name = piece_name(piece.type)
        hints = [
            Hint("vague", f"Look for a move with your {name}."),
            Hint("moderate", f"Consider moving a piece from the {square_description(from_sq)} area.",
                 [from_sq]),
            Hint("specific", f"Try moving your {name} from {from_sq} to {to_sq}.",
                 [from_sq, to_sq]),
        ]
        level = min(puzzle.hint_count, MAX_HINT_LEVEL)
        puzzle.hint_count += 1
        return hints[level]

    def get_puzzle_stats(self) -> dict:
        stats = {"total": len(self.puzzle_history), "solved": 0, "failed": 0, "abandoned": 0}
        for record in self.puzzle_history:
            if record.result in stats:
                stats[record.result] += 1
        return stats

    def export_puzzle_history(self) -> str:
        return json.dumps([asdict(r) for r in self.puzzle_history])

    def import_puzzle_history(self, data: str) -> bool:
        try:
            raw = json.loads(data)
            if not isinstance(raw, list):
                return False
            history = [PuzzleRecord(**entry) for entry in raw]
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning("Error importing puzzle history: %s", e)
            return False
        self.puzzle_history = history
        return True

    def get_puzzle_explanation(self) -> dict | None:
        puzzle = self.current_puzzle
        if puzzle is None:
            return None
        return {
            "objective": puzzle.objective or "Find the best move",
            "explanation": puzzle.explanation or "No explanation available",
            "theme": puzzle.theme or "General tactics",
        }
