"""Tests for the puzzle evaluation state machine."""

import json
from unittest.mock import Mock

import chess
import pytest

from chess_trainer.evaluator import (
    MSG_CONTINUE,
    MSG_ILLEGAL,
    MSG_SOLVED,
    MSG_WRONG,
    EvaluatorState,
    PuzzleEvaluator,
    square_description,
    split_move,
)
from chess_trainer.puzzles import AlternativePath, Puzzle, TrapInfo
from chess_trainer.rules import ChessRules

PROMOTION_FEN = "8/P7/8/8/8/8/8/k3K3 w - - 0 1"


def _center_puzzle(**kwargs):
    return Puzzle(id="center-easy-1", fen=chess.STARTING_FEN, moves=["e2e4", "e7e5", "f1c4"],
                  theme="center control", **kwargs)


def _trapped_puzzle():
    return _center_puzzle(
        has_trap=True,
        trap_info=TrapInfo("Queen's Gambit Lure", "d2d4", "d7d5", "", "Explained."),
        alternative_paths=[AlternativePath("d2d4", "d7d5", "mistake", "Explained.")],
    )


@pytest.fixture
def evaluator():
    ev = PuzzleEvaluator()
    ev.initialize(_center_puzzle())
    return ev


class TestHelpers:
    def test_split_move(self):
        assert split_move("e2e4") == ("e2", "e4", None)
        assert split_move("a7a8q") == ("a7", "a8", "q")

    @pytest.mark.parametrize("square,description", [
        ("a1", "queenside back rank"),
        ("e2", "center back rank"),
        ("h8", "kingside front rank"),
        ("d4", "center middle"),
        ("c3", "queenside"),
    ])
    def test_square_description(self, square, description):
        assert square_description(square) == description


class TestInitialize:
    def test_returns_position(self):
        ev = PuzzleEvaluator()
        position = ev.initialize(_center_puzzle())
        assert position == {"position": chess.STARTING_FEN, "orientation": "white", "side_to_move": "w"}
        assert ev.state is EvaluatorState.AWAITING_MOVE

    def test_idle_before_initialize(self):
        ev = PuzzleEvaluator()
        assert ev.state is EvaluatorState.IDLE
        assert ev.evaluate("e2", "e4") is None
        assert ev.get_hint() is None
        assert ev.reset_puzzle() is None
        assert ev.get_puzzle_explanation() is None

    def test_empty_solution_rejected(self):
        with pytest.raises(ValueError):
            PuzzleEvaluator().initialize(Puzzle(id="x", fen=chess.STARTING_FEN, moves=[]))

    def test_bad_fen_rejected(self):
        with pytest.raises(ValueError):
            PuzzleEvaluator().initialize(Puzzle(id="x", fen="garbage", moves=["e2e4"]))

    def test_resets_hint_count(self):
        puzzle = _center_puzzle(hint_count=3)
        PuzzleEvaluator().initialize(puzzle)
        assert puzzle.hint_count == 0


class TestEvaluate:
    def test_correct_move_plays_reply(self, evaluator):
        result = evaluator.evaluate("e2", "e4")
        assert result.valid is True
        assert result.is_correct is True
        assert result.completed is False
        assert result.message == MSG_CONTINUE
        assert result.move.san == "e4"
        assert result.opponent_move.uci == "e7e5"
        assert result.position == "rnbqkbnr/pppp1ppp/8/4p3/4P3/8/PPPP1PPP/RNBQKBNR w KQkq - 0 2"
        assert evaluator.move_history == ["e2e4", "e7e5"]

    def test_full_solution(self, evaluator):
        evaluator.evaluate("e2", "e4")
        result = evaluator.evaluate("f1", "c4")
        assert result.is_correct is True
        assert result.completed is True
        assert result.message == MSG_SOLVED
        assert result.opponent_move is None
        assert evaluator.state is EvaluatorState.SOLVED
        [record] = evaluator.puzzle_history
        assert record.result == "solved"
        assert record.moves == ["e2e4", "e7e5", "f1c4"]

    def test_no_evaluation_after_solve(self, evaluator):
        evaluator.evaluate("e2", "e4")
        evaluator.evaluate("f1", "c4")
        assert evaluator.evaluate("d2", "d4") is None
        assert len(evaluator.puzzle_history) == 1

    def test_wrong_move_rolled_back(self, evaluator):
        result = evaluator.evaluate("d2", "d4")
        assert result.valid is True
        assert result.is_correct is False
        assert result.is_trap is False
        assert result.message == MSG_WRONG
        assert result.position == chess.STARTING_FEN
        assert evaluator.move_history == []
        assert evaluator.state is EvaluatorState.AWAITING_MOVE

    def test_retry_after_wrong_move(self, evaluator):
        evaluator.evaluate("d2", "d4")
        assert evaluator.evaluate("e2", "e4").is_correct is True

    def test_illegal_move(self, evaluator):
        result = evaluator.evaluate("e2", "e5")
        assert result.valid is False
        assert result.message == MSG_ILLEGAL
        assert evaluator.move_history == []

    def test_trap_move_stays_on_board(self):
        ev = PuzzleEvaluator()
        ev.initialize(_trapped_puzzle())
        result = ev.evaluate("d2", "d4")
        assert result.is_correct is False
        assert result.is_trap is True
        assert result.trap_info.name == "Queen's Gambit Lure"
        assert result.alternative_path.response == "d7d5"
        assert result.message == "You fell for the Queen's Gambit Lure trap!"
        assert result.position != chess.STARTING_FEN
        assert ev.move_history == ["d2d4"]
        assert ev.state is EvaluatorState.AWAITING_MOVE

    def test_promotion_default_queen(self):
        ev = PuzzleEvaluator()
        ev.initialize(Puzzle(id="promo", fen=PROMOTION_FEN, moves=["a7a8q"]))
        result = ev.evaluate("a7", "a8")
        assert result.completed is True

    def test_underpromotion_is_wrong(self):
        ev = PuzzleEvaluator()
        ev.initialize(Puzzle(id="promo", fen=PROMOTION_FEN, moves=["a7a8q"]))
        result = ev.evaluate("a7", "a8", "n")
        assert result.is_correct is False
        assert result.position == PROMOTION_FEN

    def test_illegal_scripted_reply(self):
        ev = PuzzleEvaluator()
        ev.initialize(Puzzle(id="broken", fen=chess.STARTING_FEN, moves=["e2e4", "e2e4", "g1f3"]))
        with pytest.raises(ValueError, match="broken"):
            ev.evaluate("e2", "e4")
        assert ev.is_evaluating is False

    def test_overlapping_call_rejected(self, evaluator):
        """A call arriving while another is in flight gets None and changes nothing."""
        with evaluator._lock:
            assert evaluator.state is EvaluatorState.EVALUATING
            assert evaluator.evaluate("e2", "e4") is None
        assert evaluator.move_history == []
        assert evaluator.evaluate("e2", "e4").is_correct is True

    def test_uses_injected_rules(self):
        rules = Mock(spec=ChessRules)
        rules.move.return_value = None
        rules.turn.return_value = "w"
        ev = PuzzleEvaluator(rules=rules)
        ev.initialize(_center_puzzle())
        assert ev.evaluate("e2", "e4").valid is False
        rules.load.assert_called_once_with(chess.STARTING_FEN)
        rules.move.assert_called_once_with("e2", "e4", "q")


class TestReset:
    def test_reset_restores_start(self, evaluator):
        evaluator.evaluate("e2", "e4")
        evaluator.get_hint()
        position = evaluator.reset_puzzle()
        assert position["position"] == chess.STARTING_FEN
        assert evaluator.move_history == []
        assert evaluator.current_puzzle.hint_count == 0

    def test_reset_after_solve(self, evaluator):
        evaluator.evaluate("e2", "e4")
        evaluator.evaluate("f1", "c4")
        evaluator.reset_puzzle()
        assert evaluator.state is EvaluatorState.AWAITING_MOVE


class TestHints:
    def test_escalating_hints(self, evaluator):
        vague = evaluator.get_hint()
        assert vague.type == "vague"
        assert vague.message == "Look for a move with your pawn."
        assert vague.highlight_squares == []

        moderate = evaluator.get_hint()
        assert moderate.type == "moderate"
        assert "center back rank" in moderate.message
        assert moderate.highlight_squares == ["e2"]

        specific = evaluator.get_hint()
        assert specific.type == "specific"
        assert specific.message == "Try moving your pawn from e2 to e4."
        assert specific.highlight_squares == ["e2", "e4"]

        assert evaluator.get_hint().type == "specific"
        assert evaluator.current_puzzle.hint_count == 4

    def test_hint_follows_progress(self, evaluator):
        evaluator.evaluate("e2", "e4")
        assert evaluator.get_hint().message == "Look for a move with your bishop."

    def test_hint_after_completion(self, evaluator):
        evaluator.evaluate("e2", "e4")
        evaluator.evaluate("f1", "c4")
        assert evaluator.get_hint().type == "info"

    def test_hint_with_missing_piece(self):
        ev = PuzzleEvaluator()
        ev.initialize(Puzzle(id="odd", fen=chess.STARTING_FEN, moves=["e3e4"]))
        assert ev.get_hint().type == "error"


class TestHistory:
    def test_close_attempt_records_failure(self, evaluator):
        evaluator.evaluate("d2", "d4")
        evaluator.close_attempt("failed")
        assert evaluator.state is EvaluatorState.IDLE
        assert evaluator.puzzle_history[-1].result == "failed"

    def test_close_after_solve_records_nothing(self, evaluator):
        evaluator.evaluate("e2", "e4")
        evaluator.evaluate("f1", "c4")
        evaluator.close_attempt("abandoned")
        assert [r.result for r in evaluator.puzzle_history] == ["solved"]

    def test_stats(self, evaluator):
        evaluator.evaluate("e2", "e4")
        evaluator.evaluate("f1", "c4")
        evaluator.initialize(_center_puzzle())
        evaluator.close_attempt("abandoned")
        assert evaluator.get_puzzle_stats() == {"total": 2, "solved": 1, "failed": 0, "abandoned": 1}

    def test_export_import(self, evaluator):
        evaluator.evaluate("e2", "e4")
        evaluator.evaluate("f1", "c4")
        data = evaluator.export_puzzle_history()
        other = PuzzleEvaluator()
        assert other.import_puzzle_history(data) is True
        assert other.puzzle_history == evaluator.puzzle_history

    @pytest.mark.parametrize("data", ["{not json", json.dumps({"id": "x"}), json.dumps([{"bogus": 1}])])
    def test_import_rejects_bad_data(self, evaluator, data):
        evaluator.close_attempt("failed")
        assert evaluator.import_puzzle_history(data) is False
        assert len(evaluator.puzzle_history) == 1


class TestExplanation:
    def test_defaults(self):
        ev = PuzzleEvaluator()
        ev.initialize(Puzzle(id="x", fen=chess.STARTING_FEN, moves=["e2e4"], theme=""))
        assert ev.get_puzzle_explanation() == {
            "objective": "Find the best move",
            "explanation": "No explanation available",
            "theme": "General tactics",
        }

    def test_from_puzzle(self, evaluator):
        assert evaluator.get_puzzle_explanation()["theme"] == "center control"
