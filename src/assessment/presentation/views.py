import streamlit as st

from src.assessment.application.session import QuizSession
from src.assessment.domain.errors import SubmissionBlockedError
from src.config import Difficulty, QuizConfig
from src.fsm import QuizState


def apply_styles() -> None:
    st.markdown(
        """
        <style>
            .block-container { padding-top: 2rem !important; }
            .question-text { font-size: 1.2rem; font-weight: 600; margin-bottom: 1rem; }
        </style>
        """,
        unsafe_allow_html=True,
    )


def format_clock(seconds: int) -> str:
    minutes, secs = divmod(max(0, seconds), 60)
    return f"{minutes:02d}:{secs:02d}"


def sync_session(session: QuizSession) -> bool:
    """Polls the session; True when the page shown no longer matches its state."""
    before = (session.current_state, session.state.questions_ready, session.state.notice)
    session.poll()
    return before != (session.current_state, session.state.questions_ready, session.state.notice)


@st.fragment(run_every=QuizConfig.POLL_INTERVAL_SECONDS)
def render_live_clock(session: QuizSession) -> None:
    if sync_session(session):
        st.rerun()
    if session.current_state == QuizState.IN_PROGRESS:
        st.metric("Time left", format_clock(session.state.time_remaining_seconds))


def render_join() -> str | None:
    st.title("🎓 Join a Quiz")
    code = st.text_input("Access code")
    if st.button("Join", type="primary") and code.strip():
        return code.strip()
    return None


def render_difficulty_picker(session: QuizSession) -> None:
    quiz = session.quiz
    if quiz is None:
        return
    st.title(quiz.title or "Quiz")
    if quiz.description:
        st.caption(quiz.description)

    if session.state.notice:
        st.info(session.state.notice, icon="⏱️")
    if session.state.error:
        st.warning(session.state.error)

    choices = quiz.available_difficulties or [session.state.selected_difficulty]
    cols = st.columns(len(choices))
    for col, difficulty in zip(cols, choices):
        info = session.difficulty_info(difficulty)
        selected = difficulty == session.state.selected_difficulty
        with col:
            label = f"{difficulty.icon} {difficulty.label}"
            if st.button(label, type="primary" if selected else "secondary", use_container_width=True):
                session.select_difficulty(difficulty)
                st.rerun()
            st.caption(f"{info['duration']} · {info['multiplier']} points")

    render_live_clock(session)
    ready = session.state.questions_ready
    if not ready:
        st.caption("Loading questions...")
    if st.button("🚀 Start Quiz", type="primary", disabled=not ready):
        session.start()
        st.rerun()


def render_question(session: QuizSession) -> None:
    question = session.current_question
    if question is None:
        st.error("Cannot display question: question list is empty.")
        return

    state = session.state
    idx = state.current_question_index
    total = len(state.questions)

    col1, col2 = st.columns(2)
    col1.metric("Question", f"{idx + 1} / {total}")
    with col2:
        render_live_clock(session)
    st.progress((idx + 1) / total)

    st.markdown(f'<div class="question-text">{question.text}</div>', unsafe_allow_html=True)
    if question.image_url:
        st.image(question.image_url)

    selected = next(
        (a.selected_option_index for a in state.answers if a.question_id == question.id),
        None,
    )
    labels = [o.text for o in question.options]
    choice = st.radio(
        "Your answer",
        options=list(range(len(labels))),
        format_func=lambda i: labels[i],
        index=selected,
        key=f"answer_{question.id}",
    )
    if choice is not None and choice != selected:
        session.select_option(idx, choice)

    nav_prev, nav_next, nav_submit = st.columns(3)
    if nav_prev.button("⬅️ Previous", disabled=idx == 0):
        session.previous_question()
        st.rerun()
    if nav_next.button("Next ➡️", disabled=idx >= total - 1):
        session.next_question()
        st.rerun()
    if nav_submit.button("✅ Submit", type="primary"):
        try:
            session.submit()
        except SubmissionBlockedError as e:
            st.error(e.message)
            return
        st.rerun()


def render_result(session: QuizSession) -> None:
    result = session.result
    state = session.state
    if result is None:
        return

    st.title("🏁 Results")
    col1, col2, col3 = st.columns(3)
    col1.metric("Score", f"{result.score}%")
    col2.metric("Correct", f"{result.correct_count} / {result.total_count}")
    col3.metric("Difficulty", Difficulty(state.selected_difficulty).label)

    if state.response_id:
        st.caption(f"Response ID: {state.response_id}")
    if state.is_local_only:
        st.warning("Saved on this device only. We could not reach the server.")
    if state.tab_switch_count:
        st.caption(f"Tab switches recorded: {state.tab_switch_count}")

    if st.button("🔄 Try again", type="primary"):
        session.retry()
        st.rerun()
