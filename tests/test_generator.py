"""Tests for the built-in puzzle source."""

import random

import chess
import pytest

from chess_trainer.generator import BUILTIN_PUZZLES, DIFFICULTIES, RANDOM_TEMPLATES, PuzzleGenerator


def _all_builtin():
    return [p for by_difficulty in BUILTIN_PUZZLES.values() for group in by_difficulty.values() for p in group]


def _play_line(fen, moves):
    board = chess.Board(fen)
    for uci in moves:
        move = chess.Move.from_uci(uci)
        assert move in board.legal_moves, f"{uci} illegal in {board.fen()}"
        board.push(move)
    return board


class TestCatalogue:
    @pytest.mark.parametrize("puzzle", _all_builtin(), ids=lambda p: p.id)
    def test_solution_lines_are_legal(self, puzzle):
        board = chess.Board(puzzle.fen)
        assert board.is_valid()
        expected_side = "white" if board.turn == chess.WHITE else "black"
        assert puzzle.orientation == expected_side
        _play_line(puzzle.fen, puzzle.moves)

    @pytest.mark.parametrize("template", RANDOM_TEMPLATES, ids=lambda t: t["moves"][0])
    def test_templates_are_legal(self, template):
        _play_line(template["fen"], template["moves"])

    def test_mate_puzzles_end_in_mate(self):
        for puzzle in _all_builtin():
            if puzzle.theme == "back rank mate":
                assert _play_line(puzzle.fen, puzzle.moves).is_checkmate()

    def test_every_theme_lists_every_difficulty(self):
        for by_difficulty in BUILTIN_PUZZLES.values():
            assert tuple(by_difficulty) == DIFFICULTIES


class TestGeneratePuzzle:
    def test_theme_and_difficulty(self):
        gen = PuzzleGenerator(rng=random.Random(0))
        puzzle = gen.generate_puzzle("forks", "easy", include_trap=False)
        assert puzzle.id == "fork-easy-1"
        assert puzzle.has_trap is False

    def test_returns_copies(self):
        gen = PuzzleGenerator(rng=random.Random(0))
        puzzle = gen.generate_puzzle("forks", "easy", include_trap=False)
        puzzle.moves.clear()
        puzzle.hint_count = 5
        again = gen.generate_puzzle("forks", "easy", include_trap=False)
        assert again.moves == ["b5c7", "e8d7", "c7a8"]
        assert again.hint_count == 0

    def test_unknown_theme_falls_back_to_difficulty(self):
        gen = PuzzleGenerator(rng=random.Random(0))
        assert gen.generate_puzzle("zwischenzug", "expert", include_trap=False).id == "promotion-expert-1"

    def test_random_theme(self):
        gen = PuzzleGenerator(rng=random.Random(5))
        puzzle = gen.generate_puzzle(None, "easy", include_trap=False)
        assert puzzle.difficulty == "easy"

    def test_template_when_catalogue_is_empty(self):
        gen = PuzzleGenerator(rng=random.Random(0), include_traps=False, catalogue={"pins": {}})
        puzzle = gen.generate_puzzle("pins", "hard")
        assert puzzle.id.startswith("pins-hard-")
        assert puzzle.rating == 2000
        assert puzzle.expected_time == 90
        assert puzzle.explanation == "This is a pins puzzle at hard level."

    def test_forced_trap(self):
        gen = PuzzleGenerator(rng=random.Random(0))
        puzzle = gen.generate_puzzle("pins", "easy", include_trap=True)
        assert puzzle.has_trap is True
        assert puzzle.trap_info.trap_move not in puzzle.moves

    def test_traps_disabled(self):
        gen = PuzzleGenerator(rng=random.Random(0), include_traps=False)
        assert gen.generate_puzzle("pins", "easy", include_trap=True).has_trap is False

    def test_frequency_decides_by_default(self):
        always = PuzzleGenerator(rng=random.Random(0), trap_frequency=1.0)
        never = PuzzleGenerator(rng=random.Random(0), trap_frequency=0.0)
        assert always.generate_puzzle("pins", "easy").has_trap is True
        assert never.generate_puzzle("pins", "easy").has_trap is False


class TestBatches:
    def test_by_themes_cycles_and_traps_every_third(self):
        gen = PuzzleGenerator(rng=random.Random(0), trap_frequency=0.0)
        puzzles = gen.generate_puzzles_by_themes(["pins", "forks"], "easy", 4)
        assert [p.theme for p in puzzles] == ["pins", "forks", "pins", "forks"]
        assert [p.has_trap for p in puzzles] == [True, False, False, True]

    def test_by_themes_empty(self):
        assert PuzzleGenerator().generate_puzzles_by_themes([], "easy", 3) == []

    def test_generate_puzzles(self):
        gen = PuzzleGenerator(rng=random.Random(1))
        puzzles = gen.generate_puzzles("medium", 3)
        assert len(puzzles) == 3
        assert all(p.difficulty == "medium" for p in puzzles)


class TestSettings:
    def test_frequency_is_clamped(self):
        gen = PuzzleGenerator(trap_frequency=3)
        assert gen.trap_frequency == 1.0
        assert gen.set_trap_frequency(-0.5) == 0.0
        assert gen.set_trap_frequency(0.4) == 0.4

    def test_toggle_traps(self):
        gen = PuzzleGenerator()
        assert gen.set_trap_generation(False) is False
        assert gen.include_traps is False
