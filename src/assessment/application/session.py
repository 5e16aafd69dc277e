import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from src.assessment.application.question_bank import QuestionBank
from src.assessment.domain import difficulty_policy
from src.assessment.domain.errors import (
    DataUnavailableError,
    QuizError,
    QuizNotFoundError,
    SubmissionBlockedError,
    SubmissionFailedError,
)
from src.assessment.domain.models import (
    Answer,
    Question,
    Quiz,
    QuizResult,
    SessionState,
)
from src.assessment.domain.ports import IQuizRepository, IRecoveryStore, ISubmissionGateway
from src.assessment.domain.scoring import ScoreCalculator, finalize_result
from src.assessment.domain.timer import QuizTimer
from src.config import Difficulty, QuizConfig
from src.fsm import QuizAction, QuizState, QuizStateMachine
from src.shared.telemetry import Telemetry, measure_time


@dataclass
class SessionEvents:
    """Hooks for the presentation layer. Every hook is optional."""

    on_difficulty_changed: Callable[[Difficulty], None] | None = None
    on_time_up: Callable[[], None] | None = None
    on_questions_loaded: Callable[[bool], None] | None = None
    on_score_finalized: Callable[[int, int, int], None] | None = None
    on_tab_switch_detected: Callable[[int], None] | None = None

    def emit(self, name: str, *args: Any) -> None:
        hook = getattr(self, name, None)
        if hook is not None:
            hook(*args)


def repair_answers(questions: list[Question], answers: list[Answer]) -> list[Answer]:
    """One answer per question, in question order, keeping selections whose id still matches."""
    by_id = {a.question_id: a for a in answers if a.question_id}
    return [
        by_id.get(q.id) or Answer(question_id=q.id)
        for q in questions
    ]


def answers_drifted(questions: list[Question], answers: list[Answer]) -> bool:
    if len(questions) != len(answers):
        return True
    return {q.id for q in questions} != {a.question_id for a in answers}


class QuizSession:
    """
    Orchestrates one learner's pass through a quiz:

        LOADING -> DIFFICULTY_SELECTING <-> QUESTIONS_LOADING
                -> IN_PROGRESS -> SUBMITTING -> COMPLETED (-> RETRY)

    Single-threaded and rerun-driven: the UI forwards input to the action
    methods and calls `poll()` on every rerun to run deferred auto-loads and
    advance the timer. Results that come back after `teardown()` or after a
    newer attempt began are dropped.
    """

    def __init__(
        self,
        quiz_repo: IQuizRepository,
        question_bank: QuestionBank,
        gateway: ISubmissionGateway,
        recovery_store: IRecoveryStore,
        events: SessionEvents | None = None,
        calculator: ScoreCalculator | None = None,
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.quiz_repo = quiz_repo
        self.question_bank = question_bank
        self.gateway = gateway
        self.recovery_store = recovery_store
        self.events = events or SessionEvents()
        self.calculator = calculator or ScoreCalculator()
        self.telemetry = Telemetry("QuizSession")

        self._clock = clock
        self._now = now
        self.fsm = QuizStateMachine()
        self.state = SessionState()
        self.timer = QuizTimer(on_expire=self._handle_time_up, clock=clock)
        self.result: QuizResult | None = None

        self._loading: set[Difficulty] = set()
        self._pending_auto_load: tuple[Difficulty, float] | None = None
        self._generation = 0

    # --- Properties ---
    @property
    def current_state(self) -> QuizState:
        return self.fsm.current_state

    @property
    def quiz(self) -> Quiz | None:
        return self.state.quiz

    @property
    def closed(self) -> bool:
        return self.fsm.current_state == QuizState.CLOSED

    @property
    def current_question(self) -> Question | None:
        qs = self.state.questions
        idx = self.state.current_question_index
        if qs and 0 <= idx < len(qs):
            return qs[idx]
        return None

    @property
    def multiplier(self) -> float:
        return difficulty_policy.resolve_multiplier(
            self.state.quiz, self.state.selected_difficulty
        )

    @property
    def duration_minutes(self) -> int:
        return difficulty_policy.resolve_duration(
            self.state.quiz, self.state.selected_difficulty
        )

    @property
    def pending_auto_load(self) -> Difficulty | None:
        return self._pending_auto_load[0] if self._pending_auto_load else None

    def difficulty_info(self, difficulty: Difficulty | None = None) -> dict[str, Any]:
        return difficulty_policy.describe_difficulty(
            self.state.quiz, difficulty or self.state.selected_difficulty
        )

    # --- Guards ---
    def _token(self) -> int:
        return self._generation

    def _is_current(self, token: int) -> bool:
        return not self.closed and token == self._generation

    def _sync_remaining(self) -> None:
        self.state.time_remaining_seconds = self.timer.remaining_seconds

    # --- Loading ---
    def open(self, access_code: str) -> Quiz:
        """Resolves an access code and enters difficulty selection."""
        Telemetry.start_trace()
        self.telemetry.log_info("Action: Open Quiz", code=access_code)
        try:
            quiz = self.quiz_repo.get_quiz_by_code(access_code)
        except Exception as e:
            self.telemetry.log_error("Quiz lookup failed", e, code=access_code)
            self.state.error = "Failed to load quiz. Please try again."
            raise QuizError(self.state.error) from e

        if quiz is None:
            self.state.error = f"No quiz found for access code {access_code}"
            raise QuizNotFoundError(self.state.error)
        self.enter_quiz(quiz)
        return quiz

    def enter_quiz(self, quiz: Quiz) -> None:
        if not self.fsm.transition(QuizAction.QUIZ_LOADED):
            return
        self.state.quiz = quiz
        self.state.error = None
        self.state.selected_difficulty = difficulty_policy.recommend_default(quiz)
        self.timer.reset(self.duration_minutes)
        self._sync_remaining()
        self.schedule_auto_load()

    def schedule_auto_load(self) -> None:
        """Defers a load of the selected difficulty by AUTO_LOAD_DELAY_SECONDS."""
        difficulty = self.state.selected_difficulty
        if self.state.questions_ready or difficulty in self._loading:
            return
        due = self._clock() + QuizConfig.AUTO_LOAD_DELAY_SECONDS
        self._pending_auto_load = (difficulty, due)
        self.telemetry.log_info("Auto-load scheduled", difficulty=difficulty.value)

    @measure_time("session_load_questions")
    def load_questions(self, difficulty: Difficulty) -> bool:
        quiz = self.state.quiz
        if quiz is None:
            self.telemetry.log_warning("Cannot load questions: quiz is missing")
            return False

        if difficulty in self._loading:
            self.telemetry.log_info("Load already in flight", difficulty=difficulty.value)
            return False

        if not self.fsm.transition(QuizAction.LOAD_QUESTIONS):
            return False

        token = self._token()
        self._loading.add(difficulty)
        try:
            questions = self.question_bank.load_questions(quiz.id, difficulty)
        except Exception as e:
            self.telemetry.log_error(
                "Question load failed", e, quiz_id=quiz.id, difficulty=difficulty.value
            )
            if not self._is_current(token):
                return False
            self.state.error = (
                f"Failed to load questions for {difficulty.value} difficulty level"
            )
            self.fsm.transition(QuizAction.LOAD_EMPTY)
            self.events.emit("on_questions_loaded", False)
            return False
        finally:
            self._loading.discard(difficulty)

        if not self._is_current(token):
            self.telemetry.log_info("Dropping stale question load", difficulty=difficulty.value)
            return False

        if difficulty != self.state.selected_difficulty:
            # The learner switched while this load was running.
            self.fsm.transition(QuizAction.LOAD_EMPTY)
            self.schedule_auto_load()
            return False

        if not questions:
            self.state.questions = []
            self.state.answers = []
            self.state.loaded_difficulty = None
            self.state.error = DataUnavailableError(difficulty.value).message
            self.fsm.transition(QuizAction.LOAD_EMPTY)
            self.events.emit("on_questions_loaded", False)
            return False

        self.state.questions = questions
        self.state.loaded_difficulty = difficulty
        self.state.reset_answers()
        self.state.error = None
        self.fsm.transition(QuizAction.LOAD_SUCCESS)
        self.events.emit("on_questions_loaded", True)
        return True

    def select_difficulty(self, difficulty: Difficulty | str) -> bool:
        Telemetry.start_trace()
        parsed = Difficulty.parse(difficulty)
        if parsed is None:
            self.telemetry.log_warning("Unknown difficulty", difficulty=str(difficulty))
            return False

        if self.current_state not in (
            QuizState.DIFFICULTY_SELECTING,
            QuizState.QUESTIONS_LOADING,
        ):
            self.telemetry.log_warning(
                "Difficulty can only change before the quiz starts",
                state=self.current_state.name,
            )
            return False

        if parsed == self.state.selected_difficulty and self.state.questions_ready:
            return True

        self.telemetry.log_info("Action: Select Difficulty", difficulty=parsed.value)
        self.state.selected_difficulty = parsed
        self._pending_auto_load = None

        duration = self.duration_minutes
        self.timer.reset(duration)
        self._sync_remaining()
        self.state.notice = f"Time adjusted to {duration} minutes for {parsed.value} difficulty"
        self.state.notice_expires_at = self._clock() + QuizConfig.DIFFICULTY_NOTICE_SECONDS
        self.events.emit("on_difficulty_changed", parsed)

        if self.current_state == QuizState.QUESTIONS_LOADING:
            # The running load sees the new selection and reschedules.
            return False
        return self.load_questions(parsed)

    def poll(self, now: float | None = None) -> None:
        """Runs due deferred work: auto-load, timer ticks, notice expiry."""
        if self.closed:
            return
        now = self._clock() if now is None else now

        if self._pending_auto_load and now >= self._pending_auto_load[1]:
            difficulty = self._pending_auto_load[0]
            self._pending_auto_load = None
            if (
                self.current_state == QuizState.DIFFICULTY_SELECTING
                and difficulty == self.state.selected_difficulty
                and not self.state.questions_ready
            ):
                self.telemetry.log_info("Auto-loading questions", difficulty=difficulty.value)
                self.load_questions(difficulty)

        if self.current_state == QuizState.IN_PROGRESS:
            self.timer.sync(now)
            self._sync_remaining()

        if self.state.notice_expires_at is not None and now >= self.state.notice_expires_at:
            self.state.notice = None
            self.state.notice_expires_at = None

    # --- Taking the quiz ---
    def start(self) -> bool:
        Telemetry.start_trace()
        if self.current_state != QuizState.DIFFICULTY_SELECTING:
            self.telemetry.log_warning("Cannot start from state", state=self.current_state.name)
            return False

        self._pending_auto_load = None
        if not self.state.questions_ready:
            if not self.load_questions(self.state.selected_difficulty):
                return False

        if not self.state.questions:
            self.state.error = DataUnavailableError(self.state.selected_difficulty.value).message
            return False

        self.state.reset_answers()
        self.state.tab_switch_count = 0
        self.state.started_at = self._now()
        self.timer.start(self.duration_minutes)
        self._sync_remaining()
        self.fsm.transition(QuizAction.START)
        self.telemetry.log_info(
            "Quiz started",
            difficulty=self.state.selected_difficulty.value,
            minutes=self.duration_minutes,
            questions=len(self.state.questions),
        )
        return True

    def select_option(self, question_index: int, option_index: int) -> bool:
        if self.current_state != QuizState.IN_PROGRESS:
            return False
        if not 0 <= question_index < len(self.state.questions):
            return False
        question = self.state.questions[question_index]
        if question.options and not 0 <= option_index < len(question.options):
            return False

        if answers_drifted(self.state.questions, self.state.answers):
            self.state.answers = repair_answers(self.state.questions, self.state.answers)

        for answer in self.state.answers:
            if answer.question_id == question.id:
                answer.selected_option_index = option_index
                return True
        return False

    def next_question(self) -> None:
        if self.state.current_question_index < len(self.state.questions) - 1:
            self.state.current_question_index += 1

    def previous_question(self) -> None:
        if self.state.current_question_index > 0:
            self.state.current_question_index -= 1

    def record_visibility_change(self, hidden: bool) -> None:
        if hidden and self.current_state == QuizState.IN_PROGRESS:
            self.state.tab_switch_count += 1
            self.telemetry.log_info("Tab switch", count=self.state.tab_switch_count)
            self.events.emit("on_tab_switch_detected", self.state.tab_switch_count)

    def _handle_time_up(self) -> None:
        self.telemetry.log_info("⏰ Time is up")
        self.events.emit("on_time_up")
        if self.current_state != QuizState.IN_PROGRESS:
            return
        try:
            self.submit()
        except SubmissionBlockedError as e:
            self.telemetry.log_error("Auto-submit on time-up blocked", e)

    # --- Submission ---
    def _check_submittable(self) -> tuple[Quiz, datetime]:
        quiz, started_at = self.state.quiz, self.state.started_at
        if quiz is None or started_at is None:
            self.state.error = "Cannot submit quiz due to missing data"
        elif not self.state.questions:
            self.state.error = "Cannot submit: this quiz has no questions"
        else:
            return quiz, started_at
        raise SubmissionBlockedError(self.state.error)

    def _backup(self, quiz_id: str, key: str, value: Any) -> None:
        try:
            self.recovery_store.set(key, value)
        except Exception as e:
            self.telemetry.log_error("Recovery store write failed", e, quiz_id=quiz_id, key=key)

    def _validated_answers(self) -> list[Answer]:
        ids = {q.id for q in self.state.questions}
        valid = [a for a in self.state.answers if a.question_id and a.question_id in ids]
        return valid or list(self.state.answers)

    @measure_time("submit_attempt")
    def submit(self) -> QuizResult | None:
        Telemetry.start_trace()
        if self.current_state != QuizState.IN_PROGRESS:
            self.telemetry.log_warning("Submit ignored", state=self.current_state.name)
            return None

        quiz, started_at = self._check_submittable()

        self.fsm.transition(QuizAction.SUBMIT)
        self.timer.pause()
        self._sync_remaining()
        token = self._token()

        if answers_drifted(self.state.questions, self.state.answers):
            self.telemetry.log_warning(
                "Answer/question drift, repairing",
                answers=len(self.state.answers),
                questions=len(self.state.questions),
            )
            self.state.answers = repair_answers(self.state.questions, self.state.answers)

        difficulty = self.state.selected_difficulty
        multiplier = self.multiplier
        provisional = self.calculator.compute(
            self.state.questions, self.state.answers, multiplier
        )
        self.state.record_provisional_score(provisional)
        self._backup(quiz.id, QuizConfig.score_key(quiz.id), provisional)
        self._backup(
            quiz.id,
            QuizConfig.questions_key(quiz.id),
            [q.model_dump(mode="json", by_alias=True) for q in self.state.questions],
        )

        try:
            receipt = self.gateway.submit(
                quiz.id,
                self._validated_answers(),
                started_at,
                self.state.tab_switch_count,
                difficulty,
            )
            if receipt is None:
                raise SubmissionFailedError("Gateway returned no response")
        except Exception as e:
            self.telemetry.log_error("Submission failed, completing locally", e, quiz_id=quiz.id)
            if not self._is_current(token):
                return None
            self._complete_locally(quiz, provisional)
            Telemetry.count_submission("local")
        else:
            if not self._is_current(token):
                return None
            self.state.response_id = receipt.response_id
            if receipt.score is not None:
                if receipt.score != provisional:
                    self.telemetry.log_warning(
                        "Score drift",
                        provisional=provisional,
                        authoritative=receipt.score,
                        delta=receipt.score - provisional,
                    )
                self.state.record_authoritative_score(receipt.score)
                Telemetry.count_submission("graded")
                self._backup(quiz.id, QuizConfig.score_key(quiz.id), receipt.score)
            else:
                Telemetry.count_submission("ungraded")
                self.telemetry.log_info(
                    "Attempt stored ungraded, keeping provisional score",
                    response_id=receipt.response_id,
                )

        return self._finalize(quiz, multiplier)

    def _complete_locally(self, quiz: Quiz, provisional: int) -> None:
        response_id = (
            f"{QuizConfig.LOCAL_RESPONSE_PREFIX}{int(time.time() * 1000)}-{uuid.uuid4().hex[:7]}"
        )
        self.state.response_id = response_id
        self.state.is_local_only = True
        started_at = self.state.started_at
        entry = {
            "id": response_id,
            "quizId": quiz.id,
            "quizTitle": quiz.title,
            "accessCode": quiz.access_code,
            "startTime": started_at.isoformat() if started_at else None,
            "endTime": self._now().isoformat(),
            "score": provisional,
            "answers": [a.model_dump(mode="json", by_alias=True) for a in self.state.answers],
            "tabSwitchCount": self.state.tab_switch_count,
            "selectedDifficulty": self.state.selected_difficulty.value,
        }
        try:
            self.recovery_store.append(QuizConfig.RESPONSES_KEY, entry)
            self.telemetry.log_info("Attempt saved locally", response_id=response_id)
        except Exception as e:
            self.telemetry.log_error("Local journal write failed", e, response_id=response_id)

    def _recover_stored_score(self, quiz: Quiz) -> None:
        if self.state.score is not None or self.state.last_calculated_score is not None:
            return
        try:
            stored = self.recovery_store.get(QuizConfig.score_key(quiz.id))
        except Exception as e:
            self.telemetry.log_error("Recovery store read failed", e, quiz_id=quiz.id)
            return
        if isinstance(stored, int) and not isinstance(stored, bool):
            self.telemetry.log_info("Score restored from recovery store", score=stored)
            self.state.record_provisional_score(stored)

    def _finalize(self, quiz: Quiz, multiplier: float) -> QuizResult:
        self._recover_stored_score(quiz)
        result = finalize_result(self.state, self.state.questions, multiplier)
        self.state.submitted_at = self._now()
        self.result = result
        self.fsm.transition(QuizAction.FINALIZE)
        self.telemetry.log_info(
            "Attempt completed",
            score=result.score,
            correct=result.correct_count,
            total=result.total_count,
            response_id=self.state.response_id,
            local=self.state.is_local_only,
        )
        self.events.emit(
            "on_score_finalized", result.score, result.correct_count, result.total_count
        )
        return result

    # --- After completion ---
    def retry(self) -> bool:
        Telemetry.start_trace()
        if not self.fsm.can(QuizAction.RETRY):
            self.telemetry.log_warning("Retry ignored", state=self.current_state.name)
            return False

        previous = self.state.score if self.state.score is not None else self.state.last_calculated_score
        self._generation += 1
        self.state = SessionState(
            session_id=self.state.session_id,
            quiz=self.state.quiz,
            selected_difficulty=self.state.selected_difficulty,
            loaded_difficulty=self.state.loaded_difficulty,
            questions=self.state.questions,
            last_calculated_score=previous,
        )
        self.state.restore_display_score()
        self.state.reset_answers()
        self.state.started_at = self._now()
        self.result = None
        self.timer.start(self.duration_minutes)
        self._sync_remaining()
        self.fsm.transition(QuizAction.RETRY)
        self.telemetry.log_info("Retry started", previous_score=previous)
        return True

    def teardown(self) -> None:
        """Stops the timer and drops anything that resolves afterwards."""
        self.timer.cancel()
        self._pending_auto_load = None
        self._generation += 1
        self.fsm.transition(QuizAction.TEARDOWN)
        self.telemetry.log_info("Session closed", session_id=self.state.session_id)
