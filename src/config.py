import os
from enum import Enum
from typing import Final


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"

    @property
    def label(self) -> str:
        return self.value.capitalize()

    @property
    def icon(self) -> str:
        return _DIFFICULTY_ICONS[self]

    @classmethod
    def parse(cls, value: "str | Difficulty | None") -> "Difficulty | None":
        """Lenient lookup: accepts enum members, any-case strings or None."""
        if value is None:
            return None
        if isinstance(value, Difficulty):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return None

    @classmethod
    def all_values(cls) -> list[str]:
        return [d.value for d in cls]


_DIFFICULTY_ICONS = {
    Difficulty.EASY: "🟢",
    Difficulty.MEDIUM: "🟡",
    Difficulty.HARD: "🔴",
}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class QuizConfig:
    # --- Infrastructure Switch ---
    USE_SUPABASE: bool = _env_flag("QUIZ_USE_SUPABASE")
    DB_PATH: str = os.getenv("QUIZ_DB_PATH", "data/quiz.db")
    SEED_FILE: str = os.getenv("QUIZ_SEED_FILE", "data/seed_quizzes_demo.json")
    SUPABASE_URL: str | None = os.getenv("SUPABASE_URL")
    SUPABASE_KEY: str | None = os.getenv("SUPABASE_KEY")

    # --- App Identity ---
    APP_TITLE = "Quiz Arena"

    # --- Timer ---
    DEFAULT_DURATION_MINUTES: Final[int] = 30
    MIN_TIMER_MINUTES: Final[int] = 1

    # --- Scoring ---
    DEFAULT_MULTIPLIER: Final[float] = 1.0
    MAX_SCORE: Final[int] = 100

    # --- Difficulty ---
    DEFAULT_DIFFICULTY: Final[Difficulty] = Difficulty.MEDIUM
    AUTO_LOAD_DELAY_SECONDS: float = float(os.getenv("QUIZ_AUTO_LOAD_DELAY", "0.8"))
    DIFFICULTY_NOTICE_SECONDS: Final[int] = 5
    # Background rerun interval that advances the countdown while idle
    POLL_INTERVAL_SECONDS: Final[int] = 1

    # --- Recovery Store ---
    LOCAL_RESPONSE_PREFIX: Final[str] = "local-"
    RESPONSES_KEY: Final[str] = "quiz_responses"

    @staticmethod
    def score_key(quiz_id: str) -> str:
        return f"quiz_score_{quiz_id}"

    @staticmethod
    def questions_key(quiz_id: str) -> str:
        return f"quiz_questions_{quiz_id}"
