import math

from src.assessment.domain.models import Answer, Question, QuizResult, SessionState
from src.config import QuizConfig
from src.shared.telemetry import Telemetry, measure_time


def round_half_up(value: float) -> int:
    # Halves round up (62.5 -> 63), unlike round().
    return int(math.floor(value + 0.5))


class ScoreCalculator:
    """
    Pure Domain Logic.
    Percentage score from answers joined to questions by id, scaled by the
    difficulty multiplier and capped at MAX_SCORE. The submission gateways use
    the same calculator so provisional and authoritative scores agree.
    """

    def __init__(self) -> None:
        self.telemetry = Telemetry("ScoreCalculator")

    @staticmethod
    def count_correct(questions: list[Question], answers: list[Answer]) -> int:
        by_id = {q.id: q for q in questions}
        correct = 0
        for answer in answers:
            if not answer.is_answered:
                continue
            question = by_id.get(answer.question_id)
            if question is not None and answer.selected_option_index == question.correct_index:
                correct += 1
        return correct

    @staticmethod
    def apply_multiplier(correct_count: int, total: int, multiplier: float) -> int:
        denominator = max(1, total)
        raw = (correct_count / denominator) * 100
        return max(0, min(QuizConfig.MAX_SCORE, round_half_up(raw * multiplier)))

    @measure_time("compute_score")
    def compute(
        self, questions: list[Question], answers: list[Answer], multiplier: float
    ) -> int:
        answered = sum(1 for a in answers if a.is_answered)
        if answered == 0:
            return 0

        correct = self.count_correct(questions, answers)
        score = self.apply_multiplier(correct, len(questions), multiplier)
        self.telemetry.log_info(
            "Score computed",
            correct=correct,
            answered=answered,
            total=len(questions),
            multiplier=multiplier,
            score=score,
        )
        return score


def estimate_correct_from_score(score: int, total: int) -> int:
    """Inverse of the percentage: how many correct answers a score represents."""
    if total <= 0:
        return 0
    return max(0, min(total, round_half_up(score / 100 * total)))


def finalize_result(
    state: SessionState, questions: list[Question], multiplier: float
) -> QuizResult:
    """
    Settles the displayed score and correct-answer count for a finished attempt.

    Precedence: displayed score, then the anchor, then a recomputation from
    the direct correct count, then 0. The correct count shown is the larger of
    the direct count and the count implied by an authoritative score.
    """
    total = len(questions)
    direct_correct = ScoreCalculator.count_correct(questions, state.answers)

    state.restore_display_score()
    if state.score is None:
        if state.answers and any(a.is_answered for a in state.answers):
            recomputed = ScoreCalculator.apply_multiplier(direct_correct, total, multiplier)
        else:
            recomputed = 0
        state.record_provisional_score(recomputed)
        state.restore_display_score()

    score = state.score if state.score is not None else 0

    correct = direct_correct
    if state.score_is_authoritative and total > 0:
        implied = estimate_correct_from_score(score, total)
        correct = max(direct_correct, implied)

    state.correct_count = correct
    return QuizResult(score=score, correct_count=correct, total_count=total)
