import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from src.config import Difficulty


def _as_number(value: Any) -> Any:
    """Stored settings are loosely typed; anything non-numeric becomes None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return float(str(value).strip())
    except ValueError:
        return None


class DocumentModel(BaseModel):
    """Accepts both the camelCase document keys and python field names."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Quiz Configuration ---
class DifficultySettings(DocumentModel):
    duration: int | None = None  # minutes
    points_multiplier: float | None = None

    @field_validator("duration", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> Any:
        number = _as_number(value)
        return None if number is None else int(number)

    @field_validator("points_multiplier", mode="before")
    @classmethod
    def _coerce_multiplier(cls, value: Any) -> Any:
        return _as_number(value)


class Quiz(DocumentModel):
    id: str
    title: str = ""
    description: str = ""
    duration: int | None = None  # base duration, minutes
    is_auto_check: bool = True
    access_code: str = ""
    requires_access_code: bool = False
    available_difficulties: list[Difficulty] = Field(default_factory=list)
    difficulty_settings: dict[Difficulty, DifficultySettings] = Field(
        default_factory=dict
    )

    @field_validator("duration", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> Any:
        number = _as_number(value)
        return None if number is None else int(number)

    @field_validator("available_difficulties", mode="before")
    @classmethod
    def _drop_unknown_difficulties(cls, value: Any) -> Any:
        if not value:
            return []
        parsed = [Difficulty.parse(v) for v in value]
        return [d for d in parsed if d is not None]

    @field_validator("difficulty_settings", mode="before")
    @classmethod
    def _drop_unknown_settings(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return {}
        cleaned = {}
        for key, settings in value.items():
            difficulty = Difficulty.parse(key)
            if difficulty is not None and settings is not None:
                cleaned[difficulty] = settings
        return cleaned


# --- Questions ---
class Option(DocumentModel):
    id: str
    text: str
    is_correct: bool = False


class Question(DocumentModel):
    id: str
    text: str = ""
    options: list[Option] = Field(default_factory=list)
    correct_index: int = 0
    points: int = 1
    type: str = "single"
    image_url: str | None = None


# --- Attempt ---
class Answer(DocumentModel):
    question_id: str
    selected_option_index: int | None = None

    @property
    def is_answered(self) -> bool:
        return self.selected_option_index is not None


class SubmissionReceipt(BaseModel):
    """What the gateway hands back: score None means ungraded, not zero."""

    response_id: str
    score: int | None = None


class ScoreRecord(DocumentModel):
    response_id: str
    quiz_id: str
    score: int | None = None
    selected_difficulty: Difficulty
    tab_switch_count: int = 0
    started_at: datetime
    submitted_at: datetime
    is_local: bool = False


class QuizResult(BaseModel):
    score: int
    correct_count: int
    total_count: int


class SessionState(BaseModel):
    """
    Encapsulates the mutable state of one quiz-taking session.
    Owned by a single QuizSession; never shared.
    """

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    quiz: Quiz | None = None
    selected_difficulty: Difficulty = Difficulty.MEDIUM
    loaded_difficulty: Difficulty | None = None
    questions: list[Question] = Field(default_factory=list)
    answers: list[Answer] = Field(default_factory=list)
    current_question_index: int = 0
    time_remaining_seconds: int = 0
    tab_switch_count: int = 0
    started_at: datetime | None = None
    submitted_at: datetime | None = None

    # Score slots. last_calculated_score is the anchor: it is only ever
    # upgraded (provisional -> authoritative), never cleared mid-attempt.
    score: int | None = None
    last_calculated_score: int | None = None
    score_is_authoritative: bool = False
    correct_count: int = 0
    response_id: str | None = None
    is_local_only: bool = False

    error: str | None = None
    notice: str | None = None
    notice_expires_at: float | None = None

    @property
    def questions_ready(self) -> bool:
        return bool(self.questions) and self.loaded_difficulty == self.selected_difficulty

    def reset_answers(self) -> None:
        self.answers = [Answer(question_id=q.id) for q in self.questions]
        self.current_question_index = 0

    def record_provisional_score(self, value: int) -> bool:
        """Returns False when an authoritative score is already in place."""
        if self.score_is_authoritative:
            return False
        self.last_calculated_score = value
        self.score = value
        return True

    def record_authoritative_score(self, value: int) -> None:
        self.last_calculated_score = value
        self.score = value
        self.score_is_authoritative = True

    def restore_display_score(self) -> bool:
        if self.score is None and self.last_calculated_score is not None:
            self.score = self.last_calculated_score
            return True
        return False
