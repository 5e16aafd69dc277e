from datetime import datetime

import pytest
import streamlit as st

from src.assessment.adapters.db_manager import DatabaseManager
from src.assessment.adapters.sqlite_repository import SQLiteQuizRepository
from src.assessment.domain.models import Quiz
from src.config import Difficulty
from tests.drivers.quiz_driver import FakeClock, raw_question


class MockSessionState(dict):
    """
    Mock for st.session_state that behaves like both a dict and an object.
    """

    def __getattr__(self, name):
        try:
            return self[name]
        except KeyError as err:
            raise AttributeError(
                f"'MockSessionState' object has no attribute '{name}'"
            ) from err

    def __setattr__(self, name, value):
        self[name] = value

    def __delattr__(self, name):
        try:
            del self[name]
        except KeyError as err:
            raise AttributeError(
                f"'MockSessionState' object has no attribute '{name}'"
            ) from err


@pytest.fixture(autouse=True)
def mock_streamlit_session():
    """Every test gets a fresh, dict-backed st.session_state."""
    original_session_state = getattr(st, "session_state", None)
    st.session_state = MockSessionState()

    yield st.session_state

    st.session_state.clear()
    if original_session_state is not None:
        st.session_state = original_session_state


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fixed_now():
    return lambda: datetime(2026, 3, 1, 12, 0, 0)


@pytest.fixture
def tiered_quiz():
    return Quiz(
        id="quiz-1",
        title="Tiered Quiz",
        duration=30,
        is_auto_check=True,
        access_code="ABC123",
        available_difficulties=[Difficulty.EASY, Difficulty.MEDIUM, Difficulty.HARD],
        difficulty_settings={
            Difficulty.EASY: {"duration": 45, "points_multiplier": 1.0},
            Difficulty.MEDIUM: {"duration": 30, "points_multiplier": 1.5},
            Difficulty.HARD: {"duration": 20, "points_multiplier": 2.0},
        },
    )


@pytest.fixture
def db_manager():
    manager = DatabaseManager(db_path=":memory:")
    yield manager
    manager.close()


@pytest.fixture
def in_memory_repo(db_manager):
    """Returns a clean, empty in-memory repository."""
    return SQLiteQuizRepository(db_manager=db_manager)


@pytest.fixture
def populated_repo(in_memory_repo, tiered_quiz):
    """Repo holding the tiered quiz with 4 easy, 5 hard and 2 legacy questions."""
    in_memory_repo.save_quiz(tiered_quiz)
    in_memory_repo.save_records(
        tiered_quiz.id, Difficulty.EASY, [raw_question(f"e{i}", 1) for i in range(4)]
    )
    in_memory_repo.save_records(
        tiered_quiz.id, Difficulty.HARD, [raw_question(f"h{i}", 2) for i in range(5)]
    )
    in_memory_repo.save_records(
        tiered_quiz.id, None, [raw_question(f"l{i}", 0) for i in range(2)]
    )
    return in_memory_repo
