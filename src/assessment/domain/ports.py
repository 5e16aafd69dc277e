from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from src.assessment.domain.models import Answer, Quiz, ScoreRecord, SubmissionReceipt
from src.config import Difficulty

# Raw question documents as the store holds them (heterogeneous legacy shapes).
RawQuestion = dict[str, Any]


class IQuizRepository(ABC):
    @abstractmethod
    def get_quiz_by_code(self, code: str) -> Quiz | None:
        pass

    @abstractmethod
    def get_quiz_by_id(self, quiz_id: str) -> Quiz | None:
        pass

    @abstractmethod
    def save_quiz(self, quiz: Quiz) -> None:
        pass


class IQuestionSource(ABC):
    """
    Raw question storage. `difficulty=None` addresses the legacy,
    undifferentiated question set.
    Returns [] for "no data"; transport failures propagate.
    """

    @abstractmethod
    def fetch_records(
        self, quiz_id: str, difficulty: Difficulty | None
    ) -> list[RawQuestion]:
        pass

    @abstractmethod
    def save_records(
        self, quiz_id: str, difficulty: Difficulty | None, records: list[RawQuestion]
    ) -> None:
        """Replaces the whole set for that difficulty."""
        pass


class ISubmissionGateway(ABC):
    @abstractmethod
    def submit(
        self,
        quiz_id: str,
        answers: list[Answer],
        started_at: datetime,
        tab_switch_count: int,
        difficulty: Difficulty,
    ) -> SubmissionReceipt | None:
        """None (or an exception) signals failure."""
        pass

    @abstractmethod
    def get_attempts(self, user_id: str) -> list[ScoreRecord]:
        pass


class IRecoveryStore(ABC):
    """Keyed backup store, read only when the primary path fails."""

    @abstractmethod
    def get(self, key: str, default: Any = None) -> Any:
        pass

    @abstractmethod
    def set(self, key: str, value: Any) -> None:
        pass

    def append(self, key: str, item: Any) -> None:
        items = list(self.get(key) or [])
        items.append(item)
        self.set(key, items)
