from typing import Any

from pydantic import ValidationError

from src.assessment.domain.models import Option, Question
from src.assessment.domain.ports import IQuestionSource, RawQuestion
from src.config import Difficulty
from src.shared.telemetry import Telemetry, measure_time


def _numeric_keys(record: RawQuestion) -> list[str]:
    keys = []
    for key in record:
        try:
            int(str(key))
        except ValueError:
            continue
        keys.append(key)
    return sorted(keys, key=lambda k: int(str(k)))


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class QuestionBank:
    """
    Loads the questions for a (quiz, difficulty) pair and normalizes every
    stored shape into canonical `Question` objects:

    1. difficulty-specific set, else the legacy undifferentiated set;
    2. options given as a list of dicts, a list of strings, or as
       numeric-keyed fields on the record itself;
    3. missing ids are derived from quiz, question set and position, so a
       record gets the same id on every load.

    A record that cannot be repaired is skipped, not fatal. An empty result
    means "difficulty not playable".
    """

    def __init__(self, source: IQuestionSource) -> None:
        self.source = source
        self.telemetry = Telemetry("QuestionBank")

    @measure_time("load_questions")
    def load_questions(self, quiz_id: str, difficulty: Difficulty | str) -> list[Question]:
        parsed = Difficulty.parse(difficulty)
        label = parsed.value if parsed is not None else str(difficulty)
        records: list[RawQuestion] = []
        if parsed is not None:
            records = self.source.fetch_records(quiz_id, parsed)
        set_key = label

        if not records:
            self.telemetry.log_info(
                "No difficulty-specific questions, trying legacy set",
                quiz_id=quiz_id,
                difficulty=label,
            )
            records = self.source.fetch_records(quiz_id, None)
            set_key = "legacy"

        questions = []
        for position, record in enumerate(records):
            question = self.normalize(record, position, f"{quiz_id}_{set_key}")
            if question is not None:
                questions.append(question)

        self.telemetry.log_info(
            "Questions loaded",
            quiz_id=quiz_id,
            difficulty=label,
            raw=len(records),
            usable=len(questions),
        )
        return questions

    def normalize(
        self, record: RawQuestion, position: int, id_prefix: str
    ) -> Question | None:
        if not isinstance(record, dict):
            self.telemetry.log_warning(
                "Skipping non-document question record", position=position
            )
            return None

        raw_correct = record.get("correctIndex", record.get("correct_index"))
        options = self._build_options(record, raw_correct)
        correct_index = _as_int(raw_correct, -1)
        if correct_index < 0:
            flagged = [i for i, o in enumerate(options) if o.is_correct]
            correct_index = flagged[0] if flagged else 0

        question_id = str(record.get("id") or "").strip()
        if not question_id:
            question_id = f"{id_prefix}_q{position}"
            self.telemetry.log_warning(
                "Question has no id, synthesized one", question_id=question_id
            )

        try:
            return Question(
                id=question_id,
                text=str(record.get("text") or ""),
                options=options,
                correct_index=correct_index,
                points=_as_int(record.get("points"), 1) or 1,
                type=str(record.get("type") or "single"),
                image_url=record.get("imageUrl") or record.get("image_url"),
            )
        except ValidationError as e:
            self.telemetry.log_error(
                "Question record could not be repaired", e, position=position
            )
            return None

    def _build_options(self, record: RawQuestion, raw_correct: Any) -> list[Option]:
        raw_options = record.get("options") or []
        correct_index = _as_int(raw_correct, -1)

        if raw_options:
            options = []
            for index, raw in enumerate(raw_options):
                if isinstance(raw, dict):
                    options.append(
                        Option(
                            id=str(raw.get("id", index)),
                            text=str(raw.get("text", "")),
                            is_correct=bool(raw.get("isCorrect", raw.get("is_correct")))
                            or index == correct_index,
                        )
                    )
                else:
                    options.append(
                        Option(id=str(index), text=str(raw), is_correct=index == correct_index)
                    )
            return options

        # Legacy storage: options as "0", "1", ... fields on the record.
        keys = _numeric_keys(record)
        if keys:
            self.telemetry.log_info(
                "Recovered options from numbered fields",
                question_id=record.get("id"),
                count=len(keys),
            )
        return [
            Option(
                id=str(key),
                text=str(record[key]),
                is_correct=int(str(key)) == correct_index,
            )
            for key in keys
        ]
