"""
Difficulty resolution.

Total functions: every input, including a missing quiz or an unknown
difficulty label, resolves to a default. They run on every render and must
never raise.
"""
import math
from typing import Any

from src.assessment.domain.models import DifficultySettings, Quiz
from src.config import Difficulty, QuizConfig


def _settings_for(quiz: Quiz | None, difficulty: Any) -> DifficultySettings | None:
    if quiz is None or not quiz.difficulty_settings:
        return None
    parsed = Difficulty.parse(difficulty)
    if parsed is None:
        return None
    return quiz.difficulty_settings.get(parsed)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return not math.isnan(value) and not math.isinf(value)


def resolve_duration(quiz: Quiz | None, difficulty: Any) -> int:
    """Minutes: difficulty setting, else the quiz base duration, else 30."""
    settings = _settings_for(quiz, difficulty)
    if settings is not None and _is_number(settings.duration) and settings.duration > 0:
        return int(settings.duration)
    if quiz is not None and _is_number(quiz.duration) and quiz.duration > 0:
        return int(quiz.duration)
    return QuizConfig.DEFAULT_DURATION_MINUTES


def resolve_multiplier(quiz: Quiz | None, difficulty: Any) -> float:
    settings = _settings_for(quiz, difficulty)
    if settings is None:
        return QuizConfig.DEFAULT_MULTIPLIER
    multiplier = settings.points_multiplier
    if not _is_number(multiplier) or multiplier < 0:
        return QuizConfig.DEFAULT_MULTIPLIER
    return float(multiplier)


def is_multi_difficulty(quiz: Quiz | None) -> bool:
    if quiz is None or not quiz.available_difficulties:
        return False
    return len(quiz.available_difficulties) > 1


def recommend_default(quiz: Quiz | None) -> Difficulty:
    default = QuizConfig.DEFAULT_DIFFICULTY
    if quiz is None or not quiz.available_difficulties:
        return default
    if default in quiz.available_difficulties:
        return default
    return quiz.available_difficulties[0]


def describe_difficulty(quiz: Quiz | None, difficulty: Any) -> dict[str, Any]:
    """Display strings for the difficulty picker."""
    duration = resolve_duration(quiz, difficulty)
    multiplier = resolve_multiplier(quiz, difficulty)
    return {
        "duration": f"{duration} minutes",
        "multiplier": f"{multiplier:g}x",
        "has_custom_settings": _settings_for(quiz, difficulty) is not None,
    }
