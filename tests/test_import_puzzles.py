"""Tests for the Lichess puzzle importer."""

import zstandard

import chess_trainer.import_puzzles as importer
from chess_trainer.import_puzzles import (
    convert_row,
    create_db,
    import_puzzles,
    map_themes,
    stream_csv_from_zst,
)
from chess_trainer.puzzles import PuzzleDB

START_FEN = "rnbqkbnr/pppppppp/8/8/8/8/PPPPPPPP/RNBQKBNR w KQkq - 0 1"

HEADER = ["PuzzleId", "FEN", "Moves", "Rating", "RatingDeviation", "Popularity",
          "NbPlays", "Themes", "GameUrl", "OpeningTags"]


def _row(puzzle_id="abc12", fen=START_FEN, moves="e2e4 e7e5 g1f3", rating="1500",
         themes="fork short"):
    return [puzzle_id, fen, moves, rating, "75", "90", "1000", themes,
            "https://lichess.org/abc", ""]


class TestMapThemes:
    def test_priority_order(self):
        assert map_themes(["pin", "fork", "short"]) == ["forks", "pins"]

    def test_unknown_tags(self):
        assert map_themes(["crushing", "long"]) == []


class TestConvertRow:
    def test_applies_setup_move(self):
        converted = convert_row(_row())
        puzzle_id, fen, moves, orientation, theme, themes, difficulty, rating, popularity, url = converted
        assert puzzle_id == "abc12"
        assert fen == "rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b KQkq - 0 1"
        assert moves == "e7e5 g1f3"
        assert orientation == "black"
        assert theme == "forks"
        assert themes == "forks, fork, short"
        assert difficulty == "medium"
        assert rating == 1500
        assert popularity == 90
        assert url == "https://lichess.org/abc"

    def test_unmapped_theme_is_general(self):
        assert convert_row(_row(themes="crushing"))[4] == "general"

    def test_difficulty_from_rating(self):
        assert convert_row(_row(rating="2300"))[6] == "expert"
        assert convert_row(_row(rating="1000"))[6] == "easy"

    def test_header_row(self):
        assert convert_row(HEADER) is None

    def test_short_row(self):
        assert convert_row(["abc", START_FEN]) is None

    def test_single_move_line(self):
        """A line with only the setup move leaves nothing to solve."""
        assert convert_row(_row(moves="e2e4")) is None

    def test_illegal_setup_move(self):
        assert convert_row(_row(moves="e2e5 e7e5")) is None

    def test_bad_fen(self):
        assert convert_row(_row(fen="garbage")) is None


class TestImport:
    def test_import_counts_valid_rows(self, tmp_path):
        conn = create_db(str(tmp_path / "puzzles.db"))
        try:
            rows = [HEADER, _row("a1"), _row("a2", moves="e2e5 e7e5"), _row("a3")]
            assert import_puzzles(conn, rows, verbose=False) == 2
            assert conn.execute("SELECT COUNT(*) FROM puzzles").fetchone()[0] == 2
        finally:
            conn.close()

    def test_progress_callback_per_batch(self, tmp_path, monkeypatch):
        monkeypatch.setattr(importer, "BATCH_SIZE", 2)
        seen = []
        conn = create_db(str(tmp_path / "puzzles.db"))
        try:
            rows = [_row(f"p{i}") for i in range(5)]
            assert import_puzzles(conn, rows, verbose=False, on_progress=seen.append) == 5
        finally:
            conn.close()
        assert seen == [2, 4]

    def test_stream_csv_from_zst(self, tmp_path):
        text = ",".join(HEADER) + "\n" + ",".join(_row()) + "\n"
        path = tmp_path / "puzzles.csv.zst"
        path.write_bytes(zstandard.ZstdCompressor().compress(text.encode("utf-8")))
        rows = list(stream_csv_from_zst(str(path)))
        assert rows[0] == HEADER
        assert rows[1][0] == "abc12"

    async def test_imported_db_is_searchable(self, tmp_path):
        db_path = str(tmp_path / "puzzles.db")
        conn = create_db(db_path)
        try:
            import_puzzles(conn, [_row("a1"), _row("a2", themes="pin middlegame")], verbose=False)
        finally:
            conn.close()

        db = PuzzleDB(db_path=db_path)
        await db.start()
        try:
            assert await db.count(themes=["pins"]) == 1
            puzzle = await db.get_by_id("a1")
            assert puzzle.moves == ["e7e5", "g1f3"]
            assert puzzle.orientation == "black"
        finally:
            await db.close()
