import sqlite3
import uuid
from datetime import datetime

from src.assessment.adapters.db_manager import DatabaseManager
from src.assessment.application.question_bank import QuestionBank
from src.assessment.domain import difficulty_policy
from src.assessment.domain.errors import SubmissionFailedError
from src.assessment.domain.models import Answer, ScoreRecord, SubmissionReceipt
from src.assessment.domain.ports import IQuizRepository, ISubmissionGateway
from src.assessment.domain.scoring import ScoreCalculator
from src.config import Difficulty
from src.shared.telemetry import Telemetry, measure_time


class SQLiteSubmissionGateway(ISubmissionGateway):
    """
    Persists finished attempts and grades them against the stored answer key.
    Grading reuses ScoreCalculator, so it agrees with the session's
    provisional score for the same inputs.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        quiz_repo: IQuizRepository,
        question_bank: QuestionBank,
        user_id: str = "anonymous",
    ) -> None:
        self.telemetry = Telemetry("SQLiteGateway")
        self.db_manager = db_manager
        self.quiz_repo = quiz_repo
        self.question_bank = question_bank
        self.calculator = ScoreCalculator()
        self.user_id = user_id

    @measure_time("gateway_submit")
    def submit(
        self,
        quiz_id: str,
        answers: list[Answer],
        started_at: datetime,
        tab_switch_count: int,
        difficulty: Difficulty,
    ) -> SubmissionReceipt | None:
        quiz = self.quiz_repo.get_quiz_by_id(quiz_id)
        if quiz is None:
            raise SubmissionFailedError(f"Cannot submit response: quiz {quiz_id} not found")

        questions = self.question_bank.load_questions(quiz_id, difficulty)
        if not questions:
            raise SubmissionFailedError("Cannot submit response: quiz has no questions")

        score: int | None = None
        answer_key = {q.id: q.correct_index for q in questions}
        if quiz.is_auto_check:
            multiplier = difficulty_policy.resolve_multiplier(quiz, difficulty)
            score = self.calculator.compute(questions, answers, multiplier)

        response_id = uuid.uuid4().hex
        conn = self.db_manager.get_connection()
        try:
            conn.execute(
                "INSERT INTO responses (id, quiz_id, user_id, score, tab_switch_count, "
                "started_at, submitted_at, difficulty) VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    response_id,
                    quiz_id,
                    self.user_id,
                    score,
                    tab_switch_count,
                    started_at.isoformat(),
                    datetime.now().isoformat(),
                    difficulty.value,
                ),
            )
            rows = []
            for answer in answers:
                if not answer.is_answered:
                    continue
                is_correct = None
                if quiz.is_auto_check:
                    is_correct = answer_key.get(answer.question_id) == answer.selected_option_index
                rows.append(
                    (response_id, answer.question_id, answer.selected_option_index, is_correct)
                )
            conn.executemany(
                "INSERT OR REPLACE INTO response_answers "
                "(response_id, question_id, selected_index, is_correct) VALUES (?, ?, ?, ?)",
                rows,
            )
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise SubmissionFailedError(f"Could not store response: {e}") from e

        self.telemetry.log_info(
            "Response stored", response_id=response_id, quiz_id=quiz_id, score=score
        )
        return SubmissionReceipt(response_id=response_id, score=score)

    @measure_time("gateway_get_attempts")
    def get_attempts(self, user_id: str) -> list[ScoreRecord]:
        cursor = self.db_manager.get_connection().execute(
            "SELECT id, quiz_id, score, difficulty, tab_switch_count, started_at, submitted_at "
            "FROM responses WHERE user_id = ? ORDER BY submitted_at DESC, rowid DESC",
            (user_id,),
        )
        records = []
        for row in cursor.fetchall():
            response_id, quiz_id, score, difficulty, tabs, started, submitted = row
            records.append(
                ScoreRecord(
                    response_id=response_id,
                    quiz_id=quiz_id,
                    score=score,
                    selected_difficulty=Difficulty.parse(difficulty) or Difficulty.MEDIUM,
                    tab_switch_count=tabs or 0,
                    started_at=datetime.fromisoformat(started),
                    submitted_at=datetime.fromisoformat(submitted),
                )
            )
        return records
