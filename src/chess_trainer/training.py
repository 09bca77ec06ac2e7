"""Per-user training sessions.

A session ties one user's ProgressTracker to a PuzzleEvaluator. The
manager picks puzzles for the user's level, relays moves to the evaluator
and feeds each finished attempt back into the tracker, persisting progress
through an optional ProgressStore.
"""

from __future__ import annotations

import logging
import random
import re
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass

from chess_trainer.difficulty import difficulty_for_rating
from chess_trainer.evaluator import PuzzleEvaluator, split_move
from chess_trainer.progress import ProgressTracker, ProgressUpdate, PuzzleSource
from chess_trainer.puzzles import Puzzle
from chess_trainer.storage import ProgressStore, validate_user_id
from chess_trainer.traps import TrapEngine

logger = logging.getLogger(__name__)

_MOVE_RE = re.compile(r"[a-h][1-8][a-h][1-8][qrbn]?")


def parse_move(notation: str) -> tuple[str, str, str | None]:
    """Split coordinate notation ('e2e4', 'a7a8q') into from/to/promotion."""
    notation = notation.strip().lower()
    if not _MOVE_RE.fullmatch(notation):
        raise ValueError(f"Invalid move notation: {notation!r}")
    return split_move(notation)


def public_view(puzzle: Puzzle) -> dict:
    """What a solver may see of a puzzle: no solution line, no trap details."""
    return {
        "id": puzzle.id,
        "fen": puzzle.fen,
        "orientation": puzzle.orientation,
        "theme": puzzle.theme,
        "difficulty": puzzle.difficulty,
        "rating": puzzle.rating,
        "category": puzzle.category,
        "expected_time": puzzle.expected_time,
        "objective": puzzle.objective,
    }


@dataclass
class TrainingSession:
    tracker: ProgressTracker
    evaluator: PuzzleEvaluator
    started_at: float | None = None
    recorded: bool = False      # attempt already fed to the tracker
    hints_used: int = 0         # survives reset, cleared by a new puzzle

    @property
    def puzzle(self) -> Puzzle | None:
        return self.evaluator.current_puzzle


class TrainingManager:
    def __init__(
        self,
        source: PuzzleSource,
        store: ProgressStore | None = None,
        traps: TrapEngine | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
        include_traps: bool = True,
        trap_frequency: float = 0.3,
    ):
        self._source = source
        self._store = store
        self._rng = rng or random.Random()
        self._traps = traps or TrapEngine(rng=self._rng)
        self._clock = clock
        self.include_traps = include_traps
        self.trap_frequency = trap_frequency
        self._sessions: dict[str, TrainingSession] = {}

    # -- sessions -----------------------------------------------------------

    def open_session(self, user_id: str) -> TrainingSession:
        """Return the user's session, creating it from stored progress if needed."""
        validate_user_id(user_id)
        session = self._sessions.get(user_id)
        if session is not None:
            return session

        tracker = ProgressTracker(user_id, rng=self._rng)
        if self._store is not None:
            blob = self._store.get(user_id)
            if blob is not None and not tracker.import_user_progress(blob):
                logger.warning("Stored progress for %s could not be loaded, starting fresh", user_id)
        session = TrainingSession(tracker=tracker, evaluator=PuzzleEvaluator())
        self._sessions[user_id] = session
        return session

    def get_session(self, user_id: str) -> TrainingSession:
        try:
            return self._sessions[user_id]
        except KeyError:
            raise KeyError(f"No session for user {user_id!r}") from None

    def _active(self, user_id: str) -> TrainingSession:
        session = self.get_session(user_id)
        if session.puzzle is None:
            raise ValueError("No puzzle in progress")
        return session

    def save(self, user_id: str) -> None:
        if self._store is None:
            return
        session = self.get_session(user_id)
        self._store.set(user_id, session.tracker.export_user_progress())

    # -- puzzle flow --------------------------------------------------------

    def _decorate(self, session: TrainingSession, puzzle: Puzzle) -> Puzzle:
        if puzzle.has_trap or not self.include_traps:
            return puzzle
        if self._rng.random() >= self.trap_frequency:
            return puzzle
        return self._traps.enhance_puzzle_with_traps(puzzle, session.tracker.skill)

    def start_puzzle(
        self,
        user_id: str,
        theme: str | None = None,
        difficulty: str | None = None,
        puzzle: Puzzle | None = None,
    ) -> dict:
        session = self.get_session(user_id)
        tracker = session.tracker
        if puzzle is None:
            theme = theme or tracker.skill.get_recommended_themes(1)[0]
            difficulty = difficulty or difficulty_for_rating(tracker.rating)
            puzzle = self._source.generate_puzzle(theme, difficulty, include_trap=False)
        else:
            puzzle = puzzle.copy()
        puzzle = self._decorate(session, puzzle)

        if session.puzzle is not None:
            self.abandon(user_id)
        position = session.evaluator.initialize(puzzle)
        session.started_at = self._clock()
        session.recorded = False
        session.hints_used = 0
        logger.debug("User %s started puzzle %s", user_id, puzzle.id)
        return {"puzzle": public_view(puzzle), **position}

    def _record_attempt(self, user_id: str, session: TrainingSession, correct: bool) -> ProgressUpdate | None:
        if session.recorded:
            return None
        puzzle = session.puzzle
        now = self._clock()
        elapsed = now - session.started_at if session.started_at is not None else 0.0
        update = session.tracker.update_after_puzzle(puzzle, correct, elapsed, session.hints_used)
        session.recorded = True
        self.save(user_id)
        return update

    def move(self, user_id: str, notation: str) -> dict:
        session = self._active(user_id)
        from_sq, to_sq, promotion = parse_move(notation)
        puzzle = session.puzzle
        result = session.evaluator.evaluate(from_sq, to_sq, promotion or "q")
        if result is None:
            raise ValueError("Puzzle is not expecting a move")

        update = None
        trap_feedback = None
        if result.completed:
            update = self._record_attempt(user_id, session, correct=True)
        elif result.is_trap:
            ply = len(session.evaluator.move_history) - 1
            trap_feedback = self._traps.get_trap_feedback(puzzle, result.move.uci, ply)
            update = self._record_attempt(user_id, session, correct=False)
            session.evaluator.close_attempt("failed")

        return {
            "result": result.to_dict(),
            "trap_feedback": trap_feedback,
            "progress": asdict(update) if update is not None else None,
        }

    def hint(self, user_id: str) -> dict:
        session = self._active(user_id)
        given = session.puzzle.hint_count
        hint = session.evaluator.get_hint()
        session.hints_used += session.puzzle.hint_count - given
        return asdict(hint)

    def reset(self, user_id: str) -> dict:
        session = self._active(user_id)
        return session.evaluator.reset_puzzle()

    def abandon(self, user_id: str) -> dict:
        """Give up on the current puzzle; an unsolved one counts as a miss."""
        session = self._active(user_id)
        update = None
        if not session.evaluator.solved:
            update = self._record_attempt(user_id, session, correct=False)
        session.evaluator.close_attempt("abandoned")
        return {"progress": asdict(update) if update is not None else None}

    # -- views --------------------------------------------------------------

    def progress(self, user_id: str) -> dict:
        session = self.open_session(user_id)
        summary = session.tracker.get_performance_summary()
        summary["puzzle_stats"] = session.evaluator.get_puzzle_stats()
        return summary

    def lesson(self, user_id: str) -> dict:
        session = self.open_session(user_id)
        lesson = session.tracker.get_next_lesson()
        puzzles = session.tracker.get_current_lesson_puzzles(self._source)
        return {
            "lesson": asdict(lesson),
            "completed": lesson.id in session.tracker.completed_lessons,
            "puzzles": [public_view(p) for p in puzzles],
        }

    def export_progress(self, user_id: str) -> str:
        return self.open_session(user_id).tracker.export_user_progress()

    def import_progress(self, user_id: str, data: str) -> bool:
        session = self.open_session(user_id)
        if not session.tracker.import_user_progress(data):
            return False
        self.save(user_id)
        return True
