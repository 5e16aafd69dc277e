import uuid
from datetime import datetime
from typing import Any, cast

from src.assessment.application.question_bank import QuestionBank
from src.assessment.domain import difficulty_policy
from src.assessment.domain.errors import SubmissionFailedError
from src.assessment.domain.models import Answer, Quiz, ScoreRecord, SubmissionReceipt
from src.assessment.domain.ports import (
    IQuestionSource,
    IQuizRepository,
    ISubmissionGateway,
    RawQuestion,
)
from src.assessment.domain.scoring import ScoreCalculator
from src.config import Difficulty
from src.shared.telemetry import Telemetry, measure_time
from supabase import Client, create_client


def _difficulty_key(difficulty: Difficulty | None) -> str:
    return difficulty.value if difficulty is not None else ""


def create_supabase_client(url: str, key: str) -> Client:
    return create_client(url, key)


class SupabaseQuizRepository(IQuizRepository, IQuestionSource):
    """
    Remote document store. Tables mirror the SQLite schema:
    quizzes(id, access_code, json_data), questions(quiz_id, difficulty, position, json_data).
    """

    def __init__(self, client: Client) -> None:
        self.telemetry = Telemetry("SupabaseRepository")
        self.client = client

    def is_empty(self) -> bool:
        try:
            response = self.client.table("quizzes").select("id").limit(1).execute()
            return not response.data
        except Exception as e:
            self.telemetry.log_error("is_empty check failed", e)
            return True

    @measure_time("sb_get_quiz_by_code")
    def get_quiz_by_code(self, code: str) -> Quiz | None:
        code = (code or "").strip()
        if not code:
            return None
        response = (
            self.client.table("quizzes")
            .select("json_data")
            .ilike("access_code", code)
            .limit(1)
            .execute()
        )
        data = cast(list[dict[str, Any]], response.data)
        if not data:
            return None
        quiz = Quiz.model_validate(data[0]["json_data"])
        if quiz.requires_access_code and quiz.access_code.strip() != code:
            return None
        return quiz

    @measure_time("sb_get_quiz_by_id")
    def get_quiz_by_id(self, quiz_id: str) -> Quiz | None:
        response = (
            self.client.table("quizzes").select("json_data").eq("id", quiz_id).execute()
        )
        data = cast(list[dict[str, Any]], response.data)
        return Quiz.model_validate(data[0]["json_data"]) if data else None

    def save_quiz(self, quiz: Quiz) -> None:
        self.client.table("quizzes").upsert(
            {
                "id": quiz.id,
                "access_code": quiz.access_code,
                "json_data": quiz.model_dump(mode="json", by_alias=True),
            }
        ).execute()

    @measure_time("sb_fetch_question_records")
    def fetch_records(
        self, quiz_id: str, difficulty: Difficulty | None
    ) -> list[RawQuestion]:
        response = (
            self.client.table("questions")
            .select("json_data")
            .eq("quiz_id", quiz_id)
            .eq("difficulty", _difficulty_key(difficulty))
            .order("position")
            .execute()
        )
        data = cast(list[dict[str, Any]], response.data)
        return [row["json_data"] for row in data if isinstance(row.get("json_data"), dict)]

    def save_records(
        self, quiz_id: str, difficulty: Difficulty | None, records: list[RawQuestion]
    ) -> None:
        key = _difficulty_key(difficulty)
        self.client.table("questions").delete().eq("quiz_id", quiz_id).eq(
            "difficulty", key
        ).execute()

        rows = [
            {"quiz_id": quiz_id, "difficulty": key, "position": i, "json_data": record}
            for i, record in enumerate(records)
        ]
        # Chunks of 100 keep payloads small
        chunk_size = 100
        for i in range(0, len(rows), chunk_size):
            self.client.table("questions").insert(rows[i : i + chunk_size]).execute()
        self.telemetry.log_info(
            "Saved question set", quiz_id=quiz_id, difficulty=key or "legacy", count=len(rows)
        )


class SupabaseSubmissionGateway(ISubmissionGateway):
    def __init__(
        self,
        client: Client,
        quiz_repo: IQuizRepository,
        question_bank: QuestionBank,
        user_id: str = "anonymous",
    ) -> None:
        self.telemetry = Telemetry("SupabaseGateway")
        self.client = client
        self.quiz_repo = quiz_repo
        self.question_bank = question_bank
        self.calculator = ScoreCalculator()
        self.user_id = user_id

    @measure_time("sb_submit")
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
        if quiz.is_auto_check:
            multiplier = difficulty_policy.resolve_multiplier(quiz, difficulty)
            score = self.calculator.compute(questions, answers, multiplier)

        response_id = uuid.uuid4().hex
        answer_key = {q.id: q.correct_index for q in questions}
        try:
            self.client.table("responses").insert(
                {
                    "id": response_id,
                    "quiz_id": quiz_id,
                    "user_id": self.user_id,
                    "score": score,
                    "tab_switch_count": tab_switch_count,
                    "difficulty": difficulty.value,
                    "started_at": started_at.isoformat(),
                    "submitted_at": datetime.now().isoformat(),
                }
            ).execute()

            rows = [
                {
                    "response_id": response_id,
                    "question_id": a.question_id,
                    "selected_index": a.selected_option_index,
                    "is_correct": (
                        answer_key.get(a.question_id) == a.selected_option_index
                        if quiz.is_auto_check
                        else None
                    ),
                }
                for a in answers
                if a.is_answered
            ]
            if rows:
                self.client.table("response_answers").insert(rows).execute()
        except Exception as e:
            self.telemetry.log_error("submit failed", e, quiz_id=quiz_id)
            raise SubmissionFailedError(f"Could not store response: {e}") from e

        return SubmissionReceipt(response_id=response_id, score=score)

    @measure_time("sb_get_attempts")
    def get_attempts(self, user_id: str) -> list[ScoreRecord]:
        try:
            response = (
                self.client.table("responses")
                .select("*")
                .eq("user_id", user_id)
                .order("submitted_at", desc=True)
                .execute()
            )
        except Exception as e:
            self.telemetry.log_error("get_attempts failed", e, user_id=user_id)
            return []

        data = cast(list[dict[str, Any]], response.data)
        return [
            ScoreRecord(
                response_id=str(row["id"]),
                quiz_id=str(row["quiz_id"]),
                score=row.get("score"),
                selected_difficulty=Difficulty.parse(row.get("difficulty")) or Difficulty.MEDIUM,
                tab_switch_count=int(row.get("tab_switch_count") or 0),
                started_at=datetime.fromisoformat(str(row["started_at"])),
                submitted_at=datetime.fromisoformat(str(row["submitted_at"])),
            )
            for row in data
        ]
