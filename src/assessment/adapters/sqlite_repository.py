import json
import sqlite3

from src.assessment.adapters.db_manager import DatabaseManager
from src.assessment.domain.models import Quiz
from src.assessment.domain.ports import IQuestionSource, IQuizRepository, RawQuestion
from src.config import Difficulty
from src.shared.telemetry import Telemetry, measure_time


def _difficulty_key(difficulty: Difficulty | None) -> str:
    return difficulty.value if difficulty is not None else ""


class SQLiteQuizRepository(IQuizRepository, IQuestionSource):
    """Quizzes and their raw question sets, one set per difficulty plus the legacy set."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self.telemetry = Telemetry("SQLiteRepository")
        self.db_manager = db_manager

    def _get_connection(self) -> sqlite3.Connection:
        return self.db_manager.get_connection()

    def is_empty(self) -> bool:
        """Helper for the Seeder."""
        cursor = self._get_connection().execute("SELECT count(*) FROM quizzes")
        result = cursor.fetchone()
        return (result[0] if result else 0) == 0

    # --- Quizzes ---
    @measure_time("db_get_quiz_by_code")
    def get_quiz_by_code(self, code: str) -> Quiz | None:
        code = (code or "").strip()
        if not code:
            return None
        cursor = self._get_connection().execute(
            "SELECT json_data FROM quizzes WHERE lower(trim(access_code)) = lower(?)", (code,)
        )
        row = cursor.fetchone()
        if not row:
            return None

        quiz = Quiz.model_validate_json(row[0])
        # Protected quizzes only open on the exact (case-sensitive) code.
        if quiz.requires_access_code and quiz.access_code.strip() != code:
            return None
        return quiz

    @measure_time("db_get_quiz_by_id")
    def get_quiz_by_id(self, quiz_id: str) -> Quiz | None:
        cursor = self._get_connection().execute(
            "SELECT json_data FROM quizzes WHERE id = ?", (quiz_id,)
        )
        row = cursor.fetchone()
        return Quiz.model_validate_json(row[0]) if row else None

    def save_quiz(self, quiz: Quiz) -> None:
        conn = self._get_connection()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO quizzes (id, access_code, json_data) VALUES (?, ?, ?)",
                (quiz.id, quiz.access_code, quiz.model_dump_json(by_alias=True)),
            )
            conn.commit()
        except sqlite3.Error as e:
            self.telemetry.log_error("save_quiz failed", e, quiz_id=quiz.id)
            raise

    # --- Questions ---
    @measure_time("db_fetch_question_records")
    def fetch_records(
        self, quiz_id: str, difficulty: Difficulty | None
    ) -> list[RawQuestion]:
        cursor = self._get_connection().execute(
            "SELECT json_data FROM questions WHERE quiz_id = ? AND difficulty = ? "
            "ORDER BY position",
            (quiz_id, _difficulty_key(difficulty)),
        )
        records = []
        for (raw,) in cursor.fetchall():
            try:
                records.append(json.loads(raw))
            except json.JSONDecodeError as e:
                # One corrupt row must not sink the whole set.
                self.telemetry.log_error("Corrupt question row skipped", e, quiz_id=quiz_id)
        return records

    def save_records(
        self, quiz_id: str, difficulty: Difficulty | None, records: list[RawQuestion]
    ) -> None:
        conn = self._get_connection()
        key = _difficulty_key(difficulty)
        try:
            conn.execute(
                "DELETE FROM questions WHERE quiz_id = ? AND difficulty = ?", (quiz_id, key)
            )
            conn.executemany(
                "INSERT INTO questions (quiz_id, difficulty, position, json_data) "
                "VALUES (?, ?, ?, ?)",
                [
                    (quiz_id, key, position, json.dumps(record))
                    for position, record in enumerate(records)
                ],
            )
            conn.commit()
            self.telemetry.log_info(
                "Saved question set", quiz_id=quiz_id, difficulty=key or "legacy", count=len(records)
            )
        except sqlite3.Error as e:
            conn.rollback()
            self.telemetry.log_error("save_records failed", e, quiz_id=quiz_id)
            raise
