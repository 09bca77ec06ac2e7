"""Rating-based difficulty bands for adaptive puzzle selection."""

from dataclasses import dataclass


@dataclass(frozen=True)
class DifficultyBand:
    name: str
    max_player_rating: int | None   # exclusive upper bound on the player's rating; None = open
    puzzle_rating_min: int          # Lichess puzzle rating range served for this band
    puzzle_rating_max: int


DIFFICULTY_BANDS: dict[str, DifficultyBand] = {
    "easy":   DifficultyBand("easy",   1300, 0,    1400),
    "medium": DifficultyBand("medium", 1700, 1400, 1800),
    "hard":   DifficultyBand("hard",   2100, 1800, 2200),
    "expert": DifficultyBand("expert", None, 2200, 4000),
}

DEFAULT_DIFFICULTY = "medium"


def get_band(name: str) -> DifficultyBand:
    """Look up a difficulty band by name, falling back to the default."""
    return DIFFICULTY_BANDS.get(name, DIFFICULTY_BANDS[DEFAULT_DIFFICULTY])


def difficulty_for_rating(rating: int) -> str:
    for band in DIFFICULTY_BANDS.values():
        if band.max_player_rating is None or rating < band.max_player_rating:
            return band.name
    return DEFAULT_DIFFICULTY


def difficulty_for_puzzle_rating(puzzle_rating: int) -> str:
    """Classify a puzzle by its own rating (used when importing)."""
    for band in DIFFICULTY_BANDS.values():
        if puzzle_rating < band.puzzle_rating_max:
            return band.name
    return "expert"
