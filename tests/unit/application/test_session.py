from datetime import datetime
from unittest.mock import Mock

import pytest

from src.assessment.application.session import (
    QuizSession,
    SessionEvents,
    answers_drifted,
    repair_answers,
)
from src.assessment.domain.errors import (
    QuizError,
    QuizNotFoundError,
    SubmissionBlockedError,
)
from src.assessment.domain.models import SubmissionReceipt
from src.assessment.presentation.state_provider import (
    BrowserRecoveryStore,
    StreamlitStateProvider,
)
from src.config import Difficulty, QuizConfig
from src.fsm import QuizState
from tests.drivers.quiz_driver import answer, make_question


@pytest.fixture
def question_sets():
    return {
        Difficulty.EASY: [make_question(f"e{i}", 1) for i in range(4)],
        Difficulty.MEDIUM: [make_question(f"m{i}", 1) for i in range(4)],
        Difficulty.HARD: [make_question(f"h{i}", 1) for i in range(4)],
    }


@pytest.fixture
def bank(question_sets):
    bank = Mock()
    bank.load_questions.side_effect = lambda quiz_id, d: list(question_sets.get(d, []))
    return bank


@pytest.fixture
def quiz_repo(tiered_quiz):
    repo = Mock()
    repo.get_quiz_by_code.return_value = tiered_quiz
    return repo


@pytest.fixture
def gateway():
    gateway = Mock()
    gateway.submit.return_value = SubmissionReceipt(response_id="resp-1")
    return gateway


@pytest.fixture
def recovery():
    return BrowserRecoveryStore(StreamlitStateProvider())


@pytest.fixture
def events():
    return SessionEvents(
        on_difficulty_changed=Mock(),
        on_time_up=Mock(),
        on_questions_loaded=Mock(),
        on_score_finalized=Mock(),
        on_tab_switch_detected=Mock(),
    )


@pytest.fixture
def session(quiz_repo, bank, gateway, recovery, events, clock, fixed_now):
    return QuizSession(
        quiz_repo=quiz_repo,
        question_bank=bank,
        gateway=gateway,
        recovery_store=recovery,
        events=events,
        clock=clock,
        now=fixed_now,
    )


@pytest.fixture
def ready_session(session, clock):
    """Quiz opened and the default (medium) set auto-loaded."""
    session.open("ABC123")
    clock.advance(1)
    session.poll()
    assert session.state.questions_ready
    return session


@pytest.fixture
def running_session(ready_session):
    assert ready_session.start()
    return ready_session


def answer_medium(session, correct: int):
    for index in range(len(session.state.questions)):
        session.select_option(index, 1 if index < correct else 0)


class TestAnswerRepair:
    def test_repair_preserves_matching_selections(self):
        questions = [make_question("a"), make_question("b"), make_question("c")]
        answers = [answer("c", 2), answer("gone", 1)]

        repaired = repair_answers(questions, answers)

        assert [a.question_id for a in repaired] == ["a", "b", "c"]
        assert [a.selected_option_index for a in repaired] == [None, None, 2]

    def test_drift_detection(self):
        questions = [make_question("a"), make_question("b")]

        assert not answers_drifted(questions, [answer("b", None), answer("a", 1)])
        assert answers_drifted(questions, [answer("a", 1)])
        assert answers_drifted(questions, [answer("a", 1), answer("x", 1)])


class TestOpen:
    def test_open_enters_difficulty_selection(self, session, tiered_quiz, bank):
        quiz = session.open("ABC123")

        assert quiz == tiered_quiz
        assert session.current_state == QuizState.DIFFICULTY_SELECTING
        assert session.state.selected_difficulty == Difficulty.MEDIUM
        assert session.state.time_remaining_seconds == 1800
        assert session.pending_auto_load == Difficulty.MEDIUM
        bank.load_questions.assert_not_called()

    def test_unknown_code(self, session, quiz_repo):
        quiz_repo.get_quiz_by_code.return_value = None

        with pytest.raises(QuizNotFoundError) as exc:
            session.open("NOPE")

        assert exc.value.message == "No quiz found for access code NOPE"
        assert session.current_state == QuizState.LOADING

    def test_lookup_failure(self, session, quiz_repo):
        quiz_repo.get_quiz_by_code.side_effect = RuntimeError("store offline")

        with pytest.raises(QuizError) as exc:
            session.open("ABC123")

        assert session.state.error == "Failed to load quiz. Please try again."
        assert exc.value.message == session.state.error


class TestAutoLoad:
    def test_waits_for_the_delay(self, session, bank, clock, events):
        session.open("ABC123")

        clock.advance(0.5)
        session.poll()
        bank.load_questions.assert_not_called()

        clock.advance(0.5)
        session.poll()
        bank.load_questions.assert_called_once_with("quiz-1", Difficulty.MEDIUM)
        assert [q.id for q in session.state.questions] == ["m0", "m1", "m2", "m3"]
        events.on_questions_loaded.assert_called_once_with(True)

    def test_explicit_choice_cancels_the_pending_load(self, session, bank, clock):
        session.open("ABC123")
        session.select_difficulty(Difficulty.HARD)

        clock.advance(2)
        session.poll()

        bank.load_questions.assert_called_once_with("quiz-1", Difficulty.HARD)
        assert session.state.loaded_difficulty == Difficulty.HARD

    def test_switch_during_load_reloads_new_choice(self, session, bank, clock, question_sets):
        def load(quiz_id, difficulty):
            if difficulty == Difficulty.MEDIUM:
                session.select_difficulty(Difficulty.HARD)
            return list(question_sets[difficulty])

        bank.load_questions.side_effect = load
        session.open("ABC123")
        clock.advance(1)
        session.poll()

        # The medium result was discarded and hard is queued.
        assert session.state.questions == []
        assert session.pending_auto_load == Difficulty.HARD

        clock.advance(1)
        session.poll()
        assert session.state.questions[0].id == "h0"
        assert session.state.questions_ready

    def test_same_difficulty_load_is_not_reentered(self, session, bank, clock, question_sets):
        inner_results = []

        def load(quiz_id, difficulty):
            inner_results.append(session.load_questions(difficulty))
            return list(question_sets[difficulty])

        bank.load_questions.side_effect = load
        session.open("ABC123")
        clock.advance(1)
        session.poll()

        assert inner_results == [False]
        assert bank.load_questions.call_count == 1
        assert session.state.questions_ready


class TestSelectDifficulty:
    def test_switch_resets_timer_and_reloads(self, ready_session, events):
        assert ready_session.select_difficulty("hard")

        state = ready_session.state
        assert state.selected_difficulty == Difficulty.HARD
        assert state.time_remaining_seconds == 1200
        assert state.notice == "Time adjusted to 20 minutes for hard difficulty"
        assert [q.id for q in state.questions] == ["h0", "h1", "h2", "h3"]
        assert len(state.answers) == 4
        assert not any(a.is_answered for a in state.answers)
        events.on_difficulty_changed.assert_called_once_with(Difficulty.HARD)

    def test_notice_expires(self, ready_session, clock):
        ready_session.select_difficulty(Difficulty.EASY)

        clock.advance(QuizConfig.DIFFICULTY_NOTICE_SECONDS)
        ready_session.poll()

        assert ready_session.state.notice is None

    def test_unknown_difficulty_is_ignored(self, ready_session):
        assert ready_session.select_difficulty("expert") is False
        assert ready_session.state.selected_difficulty == Difficulty.MEDIUM

    def test_cannot_change_after_start(self, running_session):
        assert running_session.select_difficulty(Difficulty.EASY) is False
        assert running_session.state.selected_difficulty == Difficulty.MEDIUM

    def test_empty_difficulty_surfaces_error(self, ready_session, question_sets, events):
        question_sets[Difficulty.EASY] = []

        assert ready_session.select_difficulty(Difficulty.EASY) is False

        assert ready_session.state.error == "No questions found for easy difficulty level"
        assert ready_session.state.questions == []
        assert ready_session.current_state == QuizState.DIFFICULTY_SELECTING
        events.on_questions_loaded.assert_called_with(False)

    def test_start_refused_without_questions(self, ready_session, question_sets):
        question_sets[Difficulty.EASY] = []
        ready_session.select_difficulty(Difficulty.EASY)

        assert ready_session.start() is False
        assert ready_session.current_state == QuizState.DIFFICULTY_SELECTING

    def test_load_failure_is_recoverable(self, ready_session, bank):
        bank.load_questions.side_effect = ConnectionError("offline")

        assert ready_session.select_difficulty(Difficulty.HARD) is False

        assert ready_session.state.error == "Failed to load questions for hard difficulty level"
        assert ready_session.current_state == QuizState.DIFFICULTY_SELECTING

    def test_difficulty_info(self, ready_session):
        info = ready_session.difficulty_info(Difficulty.HARD)

        assert info["duration"] == "20 minutes"
        assert info["multiplier"] == "2x"


class TestStart:
    def test_start_runs_the_timer(self, running_session):
        state = running_session.state

        assert running_session.current_state == QuizState.IN_PROGRESS
        assert state.started_at == datetime(2026, 3, 1, 12, 0, 0)
        assert state.time_remaining_seconds == 1800
        assert running_session.timer.running
        assert [a.question_id for a in state.answers] == ["m0", "m1", "m2", "m3"]

    def test_start_before_auto_load_loads_first(self, session, bank):
        session.open("ABC123")

        assert session.start()
        assert session.current_state == QuizState.IN_PROGRESS
        assert session.pending_auto_load is None
        bank.load_questions.assert_called_once()

    def test_easy_timer(self, ready_session):
        ready_session.select_difficulty(Difficulty.EASY)
        ready_session.start()

        assert ready_session.state.time_remaining_seconds == 2700

    def test_poll_counts_down(self, running_session, clock):
        clock.advance(10)
        running_session.poll()

        assert running_session.state.time_remaining_seconds == 1790


class TestAnswering:
    def test_select_option_by_question_id(self, running_session):
        assert running_session.select_option(2, 3)

        selected = {a.question_id: a.selected_option_index for a in running_session.state.answers}
        assert selected["m2"] == 3

    def test_out_of_range_is_rejected(self, running_session):
        assert running_session.select_option(9, 0) is False
        assert running_session.select_option(0, 9) is False

    def test_navigation_is_bounded(self, running_session):
        running_session.previous_question()
        assert running_session.state.current_question_index == 0

        for _ in range(10):
            running_session.next_question()
        assert running_session.state.current_question_index == 3
        assert running_session.current_question.id == "m3"

    def test_tab_switches_counted_while_running(self, running_session, events):
        running_session.record_visibility_change(hidden=True)
        running_session.record_visibility_change(hidden=False)
        running_session.record_visibility_change(hidden=True)

        assert running_session.state.tab_switch_count == 2
        events.on_tab_switch_detected.assert_called_with(2)

    def test_tab_switch_ignored_before_start(self, ready_session):
        ready_session.record_visibility_change(hidden=True)

        assert ready_session.state.tab_switch_count == 0


class TestSubmit:
    def test_ungraded_receipt_keeps_provisional_score(self, running_session, events):
        answer_medium(running_session, correct=2)

        result = running_session.submit()

        # 2/4 correct at 1.5x
        assert result.score == 75
        assert result.correct_count == 2
        assert result.total_count == 4
        assert running_session.current_state == QuizState.COMPLETED
        assert running_session.state.response_id == "resp-1"
        events.on_score_finalized.assert_called_once_with(75, 2, 4)

    def test_authoritative_score_wins(self, running_session, gateway, recovery):
        gateway.submit.return_value = SubmissionReceipt(response_id="resp-9", score=90)
        answer_medium(running_session, correct=2)

        result = running_session.submit()

        assert result.score == 90
        assert running_session.state.score_is_authoritative
        assert running_session.state.last_calculated_score == 90
        assert recovery.get(QuizConfig.score_key("quiz-1")) == 90

    def test_provisional_score_backed_up_before_gateway(self, running_session, gateway, recovery):
        seen = {}

        def submit(*args):
            seen["score"] = recovery.get(QuizConfig.score_key("quiz-1"))
            seen["questions"] = recovery.get(QuizConfig.questions_key("quiz-1"))
            return SubmissionReceipt(response_id="resp-1")

        gateway.submit.side_effect = submit
        answer_medium(running_session, correct=4)
        running_session.submit()

        assert seen["score"] == 100
        assert [q["id"] for q in seen["questions"]] == ["m0", "m1", "m2", "m3"]

    def test_gateway_failure_completes_locally(self, running_session, gateway, recovery):
        gateway.submit.side_effect = ConnectionError("offline")
        answer_medium(running_session, correct=2)

        result = running_session.submit()

        state = running_session.state
        assert running_session.current_state == QuizState.COMPLETED
        assert state.response_id.startswith("local-")
        assert state.is_local_only
        assert result.score == 75

        journal = recovery.get(QuizConfig.RESPONSES_KEY)
        assert len(journal) == 1
        assert journal[0]["id"] == state.response_id
        assert journal[0]["quizId"] == "quiz-1"
        assert journal[0]["score"] == 75
        assert journal[0]["selectedDifficulty"] == "medium"

    def test_gateway_returning_nothing_completes_locally(self, running_session, gateway):
        gateway.submit.return_value = None

        result = running_session.submit()

        assert running_session.state.response_id.startswith("local-")
        assert result.score == 0

    def test_drifted_answers_are_repaired(self, running_session, gateway):
        running_session.select_option(1, 1)
        running_session.state.answers = [running_session.state.answers[1]]

        running_session.submit()

        sent = gateway.submit.call_args.args[1]
        assert [a.question_id for a in running_session.state.answers] == ["m0", "m1", "m2", "m3"]
        assert [a.question_id for a in sent] == ["m0", "m1", "m2", "m3"]
        assert sent[1].selected_option_index == 1

    def test_gateway_receives_attempt_metadata(self, running_session, gateway):
        running_session.record_visibility_change(hidden=True)

        running_session.submit()

        quiz_id, _, started_at, tabs, difficulty = gateway.submit.call_args.args
        assert quiz_id == "quiz-1"
        assert started_at == datetime(2026, 3, 1, 12, 0, 0)
        assert tabs == 1
        assert difficulty == Difficulty.MEDIUM

    def test_blocked_without_questions(self, running_session, gateway):
        running_session.state.questions = []

        with pytest.raises(SubmissionBlockedError) as exc:
            running_session.submit()

        assert exc.value.message == "Cannot submit: this quiz has no questions"
        assert running_session.current_state == QuizState.IN_PROGRESS
        gateway.submit.assert_not_called()

    def test_blocked_without_start_time(self, running_session):
        running_session.state.started_at = None

        with pytest.raises(SubmissionBlockedError) as exc:
            running_session.submit()

        assert exc.value.message == "Cannot submit quiz due to missing data"

    def test_submit_outside_attempt_is_ignored(self, ready_session, gateway):
        assert ready_session.submit() is None
        gateway.submit.assert_not_called()

    def test_displayed_score_never_lost(self, running_session, gateway):
        gateway.submit.side_effect = RuntimeError("boom")
        answer_medium(running_session, correct=1)

        running_session.submit()

        state = running_session.state
        assert state.last_calculated_score is not None
        assert state.score == state.last_calculated_score


class TestTimeUp:
    def test_expiry_auto_submits(self, running_session, clock, gateway, events):
        answer_medium(running_session, correct=4)

        clock.advance(1800)
        running_session.poll()

        events.on_time_up.assert_called_once()
        gateway.submit.assert_called_once()
        assert running_session.current_state == QuizState.COMPLETED
        assert running_session.result.score == 100

    def test_partial_countdown_does_not_submit(self, running_session, clock, gateway):
        clock.advance(1799)
        running_session.poll()

        gateway.submit.assert_not_called()
        assert running_session.state.time_remaining_seconds == 1


class TestRetry:
    def test_retry_starts_a_fresh_attempt(self, running_session, fixed_now):
        answer_medium(running_session, correct=4)
        running_session.submit()
        session_id = running_session.state.session_id

        assert running_session.retry()

        state = running_session.state
        assert running_session.current_state == QuizState.IN_PROGRESS
        assert state.session_id == session_id
        assert state.score == 100
        assert state.last_calculated_score == 100
        assert not state.score_is_authoritative
        assert not any(a.is_answered for a in state.answers)
        assert state.time_remaining_seconds == 1800
        assert running_session.result is None

    def test_retry_only_after_completion(self, running_session):
        assert running_session.retry() is False
        assert running_session.current_state == QuizState.IN_PROGRESS


class TestTeardown:
    def test_teardown_closes_and_stops_timer(self, running_session, clock, gateway):
        running_session.teardown()

        clock.advance(5000)
        running_session.poll()

        assert running_session.closed
        assert running_session.timer.cancelled
        gateway.submit.assert_not_called()

    def test_load_resolving_after_teardown_is_dropped(self, session, bank, clock, question_sets):
        def load(quiz_id, difficulty):
            session.teardown()
            return list(question_sets[difficulty])

        bank.load_questions.side_effect = load
        session.open("ABC123")
        clock.advance(1)
        session.poll()

        assert session.closed
        assert session.state.questions == []

    def test_submission_resolving_after_teardown_is_dropped(self, running_session, gateway, events):
        def submit(*args):
            running_session.teardown()
            return SubmissionReceipt(response_id="late", score=50)

        gateway.submit.side_effect = submit

        assert running_session.submit() is None
        assert running_session.state.response_id is None
        assert running_session.result is None
        events.on_score_finalized.assert_not_called()
