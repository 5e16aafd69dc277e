from enum import Enum, auto
import logging

logger = logging.getLogger(__name__)


class QuizState(Enum):
    LOADING = auto()  # Fetching the quiz by access code
    DIFFICULTY_SELECTING = auto()  # Quiz known, learner picks a difficulty
    QUESTIONS_LOADING = auto()  # Fetching questions for the chosen difficulty
    IN_PROGRESS = auto()  # Timer running, learner answering
    SUBMITTING = auto()  # Attempt sent to the gateway, timer paused
    COMPLETED = auto()  # Score finalized and displayed
    CLOSED = auto()  # Session torn down


class QuizAction(Enum):
    QUIZ_LOADED = auto()
    LOAD_QUESTIONS = auto()
    LOAD_SUCCESS = auto()
    LOAD_EMPTY = auto()
    START = auto()
    SUBMIT = auto()
    FINALIZE = auto()
    RETRY = auto()
    TEARDOWN = auto()


class QuizStateMachine:
    """
    Pure FSM Logic.
    It only cares about State Transitions, not UI, storage or scoring.
    """

    def __init__(self, initial_state: QuizState = QuizState.LOADING) -> None:
        self._state = initial_state

    @property
    def current_state(self) -> QuizState:
        return self._state

    def can(self, action: QuizAction) -> bool:
        return self._next(action) is not None

    def _next(self, action: QuizAction) -> QuizState | None:
        match (self._state, action):
            # Nothing follows a teardown
            case (QuizState.CLOSED, _):
                return None
            case (_, QuizAction.TEARDOWN):
                return QuizState.CLOSED

            # LOADING -> DIFFICULTY_SELECTING
            case (QuizState.LOADING, QuizAction.QUIZ_LOADED):
                return QuizState.DIFFICULTY_SELECTING

            # Difficulty may change any number of times before the start
            case (QuizState.DIFFICULTY_SELECTING, QuizAction.LOAD_QUESTIONS):
                return QuizState.QUESTIONS_LOADING
            case (QuizState.QUESTIONS_LOADING, QuizAction.LOAD_SUCCESS):
                return QuizState.DIFFICULTY_SELECTING
            case (QuizState.QUESTIONS_LOADING, QuizAction.LOAD_EMPTY):
                return QuizState.DIFFICULTY_SELECTING

            # Start once the chosen difficulty is loaded
            case (QuizState.DIFFICULTY_SELECTING, QuizAction.START):
                return QuizState.IN_PROGRESS

            # IN_PROGRESS -> SUBMITTING -> COMPLETED
            case (QuizState.IN_PROGRESS, QuizAction.SUBMIT):
                return QuizState.SUBMITTING
            case (QuizState.SUBMITTING, QuizAction.FINALIZE):
                return QuizState.COMPLETED

            # Fresh attempt on the same quiz
            case (QuizState.COMPLETED, QuizAction.RETRY):
                return QuizState.IN_PROGRESS

            case _:
                return None

    def transition(self, action: QuizAction) -> bool:
        """
        Applies the transition table.
        Invalid transitions are logged and refused; returns whether it moved.
        """
        previous = self._state
        target = self._next(action)

        if target is None:
            logger.error(f"⛔ INVALID TRANSITION: {previous.name} + {action.name}")
            return False

        self._state = target
        logger.info(f"🔄 FSM: {previous.name} --[{action.name}]--> {target.name}")
        return True
