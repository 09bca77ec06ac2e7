"""Curriculum and milestone tracking on top of the skill model.

The learning path and milestone ladder are fixed, read-only catalogues.
Which lessons a user has completed and which milestones they have reached
live on the tracker instance, so catalogues are never mutated.
"""

from __future__ import annotations

import json
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from chess_trainer.puzzles import Puzzle
from chess_trainer.skill import SkillModel, StruggledTheme, ThemeStats

logger = logging.getLogger(__name__)

LESSON_MIN_ATTEMPTS = 5
LESSON_MIN_SUCCESS_RATE = 0.6


@dataclass(frozen=True)
class Lesson:
    id: str
    title: str
    themes: tuple[str, ...]
    difficulty: str
    required_rating: int
    puzzle_count: int = 5


@dataclass(frozen=True)
class Milestone:
    rating_threshold: int
    title: str
    description: str


LEARNING_PATH: tuple[Lesson, ...] = (
    # Beginner
    Lesson("basic-tactics-1", "Introduction to Basic Tactics",
           ("pins", "forks"), "easy", 0),
    Lesson("opening-principles-1", "Opening Principles: Control the Center",
           ("center control", "piece development"), "easy", 1000),
    Lesson("basic-tactics-2", "Discovered Attacks and Skewers",
           ("discovered attacks", "skewers"), "easy", 1050),
    # Intermediate
    Lesson("middlegame-1", "Attacking the King",
           ("attacking the king", "piece coordination"), "medium", 1300),
    Lesson("tactics-intermediate-1", "Double Attacks and Deflection",
           ("double attacks", "deflection"), "medium", 1350),
    Lesson("endgame-1", "Basic Endgame Principles",
           ("king and pawn", "rook endgames"), "medium", 1400),
    # Advanced
    Lesson("tactics-advanced-1", "Zwischenzug and Interference",
           ("zwischenzug", "interference"), "hard", 1600),
    Lesson("advanced-endgame-1", "Complex Endgame Techniques",
           ("fortress positions", "zugzwang positions"), "hard", 1700),
    Lesson("positional-mastery", "Positional Chess Mastery",
           ("prophylaxis", "piece coordination"), "expert", 1800),
)

MILESTONES: tuple[Milestone, ...] = (
    Milestone(1200, "Chess Apprentice", "You've mastered the basic tactics!"),
    Milestone(1400, "Chess Tactician", "You're skilled at finding tactical opportunities."),
    Milestone(1600, "Chess Strategist", "You understand deeper positional concepts."),
    Milestone(1800, "Chess Expert", "You can handle complex positions with ease."),
    Milestone(2000, "Chess Master", "Your chess understanding is exceptional!"),
)


class PuzzleSource(Protocol):
    def generate_puzzle(self, theme: str | None = None, difficulty: str = "medium",
                        include_trap: bool | None = None) -> Puzzle: ...

    def generate_puzzles_by_themes(self, themes: list[str], difficulty: str = "medium",
                                   count: int = 5) -> list[Puzzle]: ...


@dataclass
class AchievedMilestone:
    rating_threshold: int
    title: str
    description: str
    date_achieved: str


@dataclass
class ProgressUpdate:
    new_rating: int
    rating_change: int
    achieved_milestones: list[AchievedMilestone] = field(default_factory=list)
    lesson_completed: bool = False
    next_lesson: Lesson | None = None
    recommended_themes: list[str] = field(default_factory=list)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ProgressTracker:
    def __init__(
        self,
        user_id: str,
        rng: random.Random | None = None,
        learning_path: tuple[Lesson, ...] = LEARNING_PATH,
        milestones: tuple[Milestone, ...] = MILESTONES,
    ):
        self.user_id = user_id
        self.skill = SkillModel(user_id, rng=rng)
        self.learning_path = learning_path
        self.milestones = milestones
        self.current_lesson_index = 0
        self.completed_lessons: list[str] = []
        self.achieved: dict[int, str] = {}   # milestone threshold -> ISO date achieved

    @property
    def rating(self) -> int:
        return self.skill.ratings["overall"]

    # -- lessons ------------------------------------------------------------

    def get_next_lesson(self) -> Lesson:
        rating = self.rating
        for i, lesson in enumerate(self.learning_path):
            if lesson.id not in self.completed_lessons and rating >= lesson.required_rating:
                self.current_lesson_index = i
                return lesson

        for i in range(len(self.learning_path) - 1, -1, -1):
            if rating >= self.learning_path[i].required_rating:
                self.current_lesson_index = i
                return self.learning_path[i]

        self.current_lesson_index = 0
        return self.learning_path[0]

    def get_current_lesson(self) -> Lesson | None:
        if 0 <= self.current_lesson_index < len(self.learning_path):
            return self.learning_path[self.current_lesson_index]
        return None

    def get_current_lesson_puzzles(self, source: PuzzleSource) -> list[Puzzle]:
        lesson = self.get_current_lesson()
        if lesson is None:
            return []
        return source.generate_puzzles_by_themes(
            list(lesson.themes), lesson.difficulty, lesson.puzzle_count
        )

    def _lesson_mastered(self, lesson: Lesson) -> bool:
        for theme in lesson.themes:
            stats = self.skill.theme_performance.get(theme)
            if (stats is None or stats.attempts < LESSON_MIN_ATTEMPTS
                    or stats.success_rate < LESSON_MIN_SUCCESS_RATE):
                return False
        return True

    # -- attempts -----------------------------------------------------------

    def update_after_puzzle(self, puzzle, correct: bool, time_spent: float,
                            hints_used: int) -> ProgressUpdate:
        change = self.skill.update_after_puzzle(puzzle, correct, time_spent, hints_used)
        achieved = self.check_for_new_milestones()

        lesson_completed = False
        lesson = self.get_current_lesson()
        if lesson is not None and lesson.id not in self.completed_lessons:
            if self._lesson_mastered(lesson):
                self.completed_lessons.append(lesson.id)
                lesson_completed = True
                logger.info("User %s completed lesson %s", self.user_id, lesson.id)

        return ProgressUpdate(
            new_rating=self.rating,
            rating_change=change,
            achieved_milestones=achieved,
            lesson_completed=lesson_completed,
            next_lesson=self.get_next_lesson() if lesson_completed else None,
            recommended_themes=self.skill.get_recommended_themes(),
        )

    def check_for_new_milestones(self) -> list[AchievedMilestone]:
        """Mark every milestone now within reach. Achievement is never revoked."""
        newly: list[AchievedMilestone] = []
        rating = self.rating
        for milestone in self.milestones:
            if rating >= milestone.rating_threshold and milestone.rating_threshold not in self.achieved:
                date = _now_iso()
                self.achieved[milestone.rating_threshold] = date
                newly.append(self._achieved_view(milestone, date))
                logger.info("User %s reached milestone %s", self.user_id, milestone.title)
        return newly

    @staticmethod
    def _achieved_view(milestone: Milestone, date: str) -> AchievedMilestone:
        return AchievedMilestone(
            rating_threshold=milestone.rating_threshold,
            title=milestone.title,
            description=milestone.description,
            date_achieved=date,
        )

    def achieved_milestones(self) -> list[AchievedMilestone]:
        return [
            self._achieved_view(m, self.achieved[m.rating_threshold])
            for m in self.milestones
            if m.rating_threshold in self.achieved
        ]

    def next_milestone(self) -> Milestone | None:
        return next((m for m in self.milestones if m.rating_threshold not in self.achieved), None)

    def get_performance_summary(self) -> dict:
        summary = self.skill.get_summary()
        total = len(self.learning_path)
        summary["completed_lessons"] = len(self.completed_lessons)
        summary["total_lessons"] = total
        summary["lesson_progress"] = round(len(self.completed_lessons) / total * 100, 1) if total else 0.0
        summary["achieved_milestones"] = [m.title for m in self.achieved_milestones()]

        upcoming = self.next_milestone()
        summary["next_milestone"] = upcoming.title if upcoming else None
        if upcoming is not None:
            points_needed = upcoming.rating_threshold - self.rating
            summary["next_milestone_progress"] = round(max(0.0, 100 - points_needed / 2), 1)
        return summary

    # -- persistence --------------------------------------------------------

    def export_user_progress(self) -> str:
        profile = self.skill.profile
        return json.dumps({
            "user_id": self.user_id,
            "skill_profile": {
                "ratings": profile.ratings,
                "theme_performance": {
                    theme: vars(stats) for theme, stats in profile.theme_performance.items()
                },
                "solved_puzzles": profile.solved_puzzles,
                "struggled_themes": [vars(s) for s in profile.struggled_themes],
                "current_focus": profile.current_focus,
                "current_level": profile.current_level,
            },
            "completed_lessons": self.completed_lessons,
            "current_lesson_index": self.current_lesson_index,
            "milestones": [
                {"rating_threshold": m.rating_threshold, "title": m.title, "date_achieved": m.date_achieved}
                for m in self.achieved_milestones()
            ],
        })

    def import_user_progress(self, data: str) -> bool:
        """Merge exported progress into this tracker.

        Only applies when the encoded user id matches. Missing keys keep the
        current values; everything is parsed before anything is assigned so
        a malformed blob leaves the tracker untouched.
        """
        try:
            progress = json.loads(data)
            if not isinstance(progress, dict):
                raise ValueError("Progress data must be a JSON object")
            if progress.get("user_id") != self.user_id:
                logger.info("Ignoring progress import for foreign user %r", progress.get("user_id"))
                return False

            profile = self.skill.profile
            sp = progress.get("skill_profile") or {}
            ratings = sp.get("ratings")
            if ratings is not None:
                ratings = {**profile.ratings, **{k: int(v) for k, v in ratings.items()}}
            else:
                ratings = profile.ratings
            themes = sp.get("theme_performance")
            if themes is not None:
                themes = {theme: ThemeStats(**stats) for theme, stats in themes.items()}
            else:
                themes = profile.theme_performance
            solved = sp.get("solved_puzzles")
            solved = list(solved if solved is not None else profile.solved_puzzles)
            struggled = sp.get("struggled_themes")
            if struggled is not None:
                struggled = [StruggledTheme(**s) for s in struggled]
            else:
                struggled = profile.struggled_themes
            focus = sp["current_focus"] if "current_focus" in sp else profile.current_focus
            level = sp.get("current_level") or profile.current_level

            completed = progress.get("completed_lessons")
            completed = list(completed if completed is not None else self.completed_lessons)
            index = progress.get("current_lesson_index")
            index = int(index) if index is not None else self.current_lesson_index

            achieved = dict(self.achieved)
            thresholds = {m.rating_threshold for m in self.milestones}
            for entry in progress.get("milestones") or []:
                threshold = int(entry["rating_threshold"])
                if threshold in thresholds:
                    achieved[threshold] = entry.get("date_achieved") or _now_iso()
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            logger.warning("Error importing user progress: %s", e)
            return False

        profile.ratings = ratings
        profile.theme_performance = themes
        profile.solved_puzzles = solved
        profile.struggled_themes = struggled
        profile.current_focus = focus
        profile.current_level = level
        self.completed_lessons = completed
        self.current_lesson_index = index
        self.achieved = achieved
        return True
