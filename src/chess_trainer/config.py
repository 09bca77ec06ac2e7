"""Centralized application configuration.

All settings are read from environment variables (or a .env.trainer file).
Nothing is required: the defaults run the trainer on the built-in puzzle
catalogue with progress stored under data/progress.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env.trainer", env_file_encoding="utf-8",
    )

    # Data paths
    puzzle_db_path: str = "data/puzzles.db"
    progress_dir: str = "data/progress"

    # Puzzle source
    include_traps: bool = True
    trap_frequency: float = Field(default=0.3, ge=0.0, le=1.0)
    default_difficulty: str = "medium"
    max_puzzles_per_request: int = Field(default=50, ge=1)

    # Seed for trap choice, focus reassessment and puzzle picks (None = nondeterministic)
    random_seed: int | None = None

    log_level: str = "INFO"
