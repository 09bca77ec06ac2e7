"""Per-user skill model: ELO-like ratings, theme statistics and practice recommendations.

Every puzzle attempt moves the overall rating by

    round(base * difficulty_factor * time_factor * hint_factor)

where base is +10 for a solve and -5 for a miss, difficulty_factor rewards
beating puzzles rated above the player, time_factor rewards fast solves and
hint_factor discounts hinted solves. Ratings carry no floor or cap.
"""

from __future__ import annotations

import math
import random
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

DEFAULT_RATING = 1200
RATING_CATEGORIES = ("overall", "tactics", "strategy", "endgame", "openings")

# (exclusive upper bound, label); the last rung has no upper bound.
LEVEL_LADDER: list[tuple[int | None, str]] = [
    (1200, "Beginner"),
    (1400, "Intermediate"),
    (1600, "Advanced"),
    (1800, "Expert"),
    (2000, "Master"),
    (None, "Grandmaster"),
]

LEVEL_RANGE = 200
FOCUS_REASSESS_CHANCE = 0.2
STRUGGLE_MIN_ATTEMPTS = 3
STRUGGLE_SUCCESS_RATE = 0.5
FALLBACK_THEMES = ("pins", "forks", "discovered attacks", "removing the defender")
DEFAULT_FOCUS = "tactical patterns"


@dataclass
class ThemeStats:
    attempts: int = 0
    correct: int = 0
    avg_time: float = 0.0
    last_attempt: str | None = None  # ISO-8601 UTC

    @property
    def success_rate(self) -> float:
        return self.correct / self.attempts if self.attempts else 0.0


@dataclass
class StruggledTheme:
    theme: str
    success_rate: float
    attempts: int


@dataclass
class SkillProfile:
    user_id: str
    ratings: dict[str, int] = field(
        default_factory=lambda: {c: DEFAULT_RATING for c in RATING_CATEGORIES}
    )
    theme_performance: dict[str, ThemeStats] = field(default_factory=dict)
    solved_puzzles: list[str] = field(default_factory=list)
    struggled_themes: list[StruggledTheme] = field(default_factory=list)
    current_focus: str | None = None
    current_level: str = "Beginner"
    last_rating_change: int = 0

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping) -> SkillProfile:
        profile = cls(user_id=data["user_id"])
        profile.ratings.update({k: int(v) for k, v in (data.get("ratings") or {}).items()})
        profile.theme_performance = {
            theme: ThemeStats(**stats) for theme, stats in (data.get("theme_performance") or {}).items()
        }
        profile.solved_puzzles = list(data.get("solved_puzzles") or [])
        profile.struggled_themes = [StruggledTheme(**s) for s in data.get("struggled_themes") or []]
        profile.current_focus = data.get("current_focus")
        profile.current_level = data.get("current_level") or profile.current_level
        profile.last_rating_change = int(data.get("last_rating_change", 0))
        return profile


# ---------------------------------------------------------------------------
# Pure policy functions
# ---------------------------------------------------------------------------


def js_round(value: float) -> int:
    """Round half toward positive infinity (17.5 -> 18, -2.5 -> -2)."""
    return math.floor(value + 0.5)


def rating_change(
    correct: bool,
    puzzle_rating: float,
    overall: float,
    expected_time: float,
    time_spent: float,
    hints_used: int,
) -> int:
    base_change = 10 if correct else -5
    difficulty_factor = 1 + (puzzle_rating - overall) / 400

    if not correct:
        time_factor = 1.0
    elif time_spent <= 0:
        time_factor = 1.5
    else:
        time_factor = max(0.5, min(1.5, expected_time / time_spent))

    hint_factor = 1.0 if hints_used <= 0 else max(0.2, 1 - hints_used * 0.2)
    return js_round(base_change * difficulty_factor * time_factor * hint_factor)


def level_for_rating(rating: float) -> str:
    for upper, label in LEVEL_LADDER:
        if upper is None or rating < upper:
            return label
    return LEVEL_LADDER[-1][1]


def next_level(rating: float) -> tuple[str, int]:
    """Name and threshold rating of the next rung above `rating`."""
    for i, (upper, _label) in enumerate(LEVEL_LADDER[:-1]):
        if rating < upper:
            return LEVEL_LADDER[i + 1][1], upper
    return "Elite Grandmaster", 2200


def should_refocus(current_focus: str | None, rng: random.Random,
                   chance: float = FOCUS_REASSESS_CHANCE) -> bool:
    """Reassess focus when none is set, otherwise with probability `chance`."""
    if not current_focus:
        return True
    return rng.random() < chance


def themes_by_attempts(theme_performance: Mapping[str, ThemeStats]) -> list[str]:
    """Themes ordered least-practised first (stable for ties)."""
    return [t for t, _ in sorted(theme_performance.items(), key=lambda kv: kv[1].attempts)]


def pick_focus(profile: SkillProfile) -> str:
    if profile.struggled_themes:
        return profile.struggled_themes[0].theme
    least = themes_by_attempts(profile.theme_performance)
    if least:
        return least[0]
    return DEFAULT_FOCUS


def _puzzle_field(puzzle, name: str, default):
    if isinstance(puzzle, Mapping):
        value = puzzle.get(name)
    else:
        value = getattr(puzzle, name, None)
    return value if value else default


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


class SkillModel:
    """Owns one user's SkillProfile and applies attempt results to it."""

    def __init__(self, user_id: str, rng: random.Random | None = None,
                 profile: SkillProfile | None = None):
        self.profile = profile or SkillProfile(user_id=user_id)
        self._rng = rng or random.Random()

    @property
    def user_id(self) -> str:
        return self.profile.user_id

    @property
    def ratings(self) -> dict[str, int]:
        return self.profile.ratings

    @property
    def theme_performance(self) -> dict[str, ThemeStats]:
        return self.profile.theme_performance

    def update_after_puzzle(self, puzzle, correct: bool, time_spent: float, hints_used: int) -> int:
        """Record one attempt and return the overall rating change."""
        profile = self.profile
        puzzle_id = _puzzle_field(puzzle, "id", None)
        if puzzle_id is not None and puzzle_id not in profile.solved_puzzles:
            profile.solved_puzzles.append(puzzle_id)

        theme = _puzzle_field(puzzle, "theme", "general")
        stats = profile.theme_performance.setdefault(theme, ThemeStats())
        stats.attempts += 1
        if correct:
            stats.correct += 1
        stats.avg_time = (stats.avg_time * (stats.attempts - 1) + time_spent) / stats.attempts
        stats.last_attempt = _now_iso()

        change = rating_change(
            correct,
            puzzle_rating=_puzzle_field(puzzle, "rating", 1500),
            overall=profile.ratings["overall"],
            expected_time=_puzzle_field(puzzle, "expected_time", 60),
            time_spent=time_spent,
            hints_used=hints_used,
        )
        profile.last_rating_change = change
        profile.ratings["overall"] += change
        category = _puzzle_field(puzzle, "category", "tactics")
        if category in profile.ratings:
            profile.ratings[category] += change

        self.update_struggled_themes()
        self.update_skill_level()
        if should_refocus(profile.current_focus, self._rng):
            self.update_focus()
        return change

    def update_struggled_themes(self) -> None:
        struggled = [
            StruggledTheme(theme=theme, success_rate=stats.success_rate, attempts=stats.attempts)
            for theme, stats in self.profile.theme_performance.items()
            if stats.attempts >= STRUGGLE_MIN_ATTEMPTS and stats.success_rate < STRUGGLE_SUCCESS_RATE
        ]
        struggled.sort(key=lambda s: s.success_rate)
        self.profile.struggled_themes = struggled

    def update_skill_level(self) -> None:
        self.profile.current_level = level_for_rating(self.profile.ratings["overall"])

    def update_focus(self) -> None:
        self.profile.current_focus = pick_focus(self.profile)

    def get_recommended_themes(self, count: int = 3) -> list[str]:
        recommendations: list[str] = []

        def _add(theme: str) -> None:
            if theme not in recommendations:
                recommendations.append(theme)

        if self.profile.current_focus:
            _add(self.profile.current_focus)
        for struggled in self.profile.struggled_themes:
            if len(recommendations) >= count:
                break
            _add(struggled.theme)
        for theme in themes_by_attempts(self.profile.theme_performance):
            if len(recommendations) >= count:
                break
            _add(theme)
        for theme in FALLBACK_THEMES:
            if len(recommendations) >= count:
                break
            _add(theme)
        return recommendations[:count]

    def get_strength_themes(self, count: int = 3) -> list[str]:
        practised = [
            (theme, stats.success_rate)
            for theme, stats in self.profile.theme_performance.items()
            if stats.attempts >= STRUGGLE_MIN_ATTEMPTS
        ]
        practised.sort(key=lambda item: item[1], reverse=True)
        return [theme for theme, _ in practised[:count]]

    def get_weakness_themes(self, count: int = 3) -> list[str]:
        return [s.theme for s in self.profile.struggled_themes[:count]]

    def get_summary(self) -> dict:
        profile = self.profile
        total_attempts = sum(s.attempts for s in profile.theme_performance.values())
        total_correct = sum(s.correct for s in profile.theme_performance.values())
        rating = profile.ratings["overall"]
        upcoming, threshold = next_level(rating)
        progress = max(0.0, (1 - (threshold - rating) / LEVEL_RANGE) * 100)

        return {
            "user_id": profile.user_id,
            "ratings": dict(profile.ratings),
            "current_level": profile.current_level,
            "next_level": upcoming,
            "next_level_progress": round(progress, 1),
            "puzzles_solved": len(profile.solved_puzzles),
            "success_rate": round(total_correct / total_attempts * 100, 1) if total_attempts else None,
            "strength_themes": self.get_strength_themes(),
            "weakness_themes": self.get_weakness_themes(),
            "recommended_focus": profile.current_focus,
            "total_themes_attempted": len(profile.theme_performance),
        }
