import json
import os

from pydantic import ValidationError

from src.assessment.domain.models import Quiz
from src.assessment.domain.ports import IQuestionSource, IQuizRepository
from src.config import Difficulty
from src.shared.telemetry import Telemetry

# --- Seeding Strategy ---
# The Seeder asks the repository whether it is empty through an optional
# `is_empty()` (duck-typed); IQuizRepository does not require it.
# Seed file shape:
#   [{"quiz": {...}, "questions": {"easy": [...], "hard": [...], "legacy": [...]}}]
LEGACY_KEY = "legacy"


class DataSeeder:
    """
    Responsible for populating the database with demo quizzes.
    """

    def __init__(self, quiz_repo: IQuizRepository, question_source: IQuestionSource) -> None:
        self.quiz_repo = quiz_repo
        self.question_source = question_source
        self.telemetry = Telemetry("DataSeeder")

    def seed_if_empty(self, seed_file: str = "data/seed_quizzes_demo.json") -> int:
        """Returns the number of quizzes seeded."""
        if hasattr(self.quiz_repo, "is_empty") and not self.quiz_repo.is_empty():
            return 0

        self.telemetry.log_info("DB appears empty. Attempting to seed...", seed_file=seed_file)
        if not os.path.exists(seed_file):
            self.telemetry.log_warning("Seed file NOT found", seed_file=seed_file)
            return 0

        try:
            with open(seed_file, encoding="utf-8") as f:
                entries = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            self.telemetry.log_error("Seed file unreadable", e, seed_file=seed_file)
            return 0

        seeded = 0
        for entry in entries:
            try:
                quiz = Quiz.model_validate(entry["quiz"])
            except (KeyError, ValidationError) as e:
                self.telemetry.log_error("Skipping invalid seed quiz", e)
                continue

            self.quiz_repo.save_quiz(quiz)
            for key, records in (entry.get("questions") or {}).items():
                difficulty = None if key == LEGACY_KEY else Difficulty.parse(key)
                if difficulty is None and key != LEGACY_KEY:
                    self.telemetry.log_warning("Unknown difficulty in seed", key=key)
                    continue
                self.question_source.save_records(quiz.id, difficulty, records)
            seeded += 1

        self.telemetry.log_info(f"Seeded {seeded} quizzes.")
        return seeded
