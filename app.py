import logging
import os

import streamlit as st

# --- OTel & Observability Imports ---
from opentelemetry import trace
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.grpc._log_exporter import OTLPLogExporter
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor

# --- Prometheus Import ---
from prometheus_client import start_http_server

# --- Application Imports ---
from src.assessment.adapters.db_manager import DatabaseManager
from src.assessment.adapters.recovery_store import SQLiteRecoveryStore
from src.assessment.adapters.seeder import DataSeeder
from src.assessment.adapters.sqlite_gateway import SQLiteSubmissionGateway
from src.assessment.adapters.sqlite_repository import SQLiteQuizRepository
from src.assessment.adapters.supabase_repository import (
    SupabaseQuizRepository,
    SupabaseSubmissionGateway,
    create_supabase_client,
)
from src.assessment.application.question_bank import QuestionBank
from src.assessment.application.session import QuizSession
from src.assessment.domain.errors import QuizError
from src.assessment.domain.ports import IRecoveryStore
from src.assessment.presentation import views
from src.assessment.presentation.state_provider import (
    BrowserRecoveryStore,
    StreamlitStateProvider,
)
from src.config import QuizConfig
from src.fsm import QuizState

logger = logging.getLogger("quiz.app")


# --- 1. Observability ---
def configure_observability() -> None:
    """
    Sends traces and logs over OTLP and exposes Prometheus metrics,
    when the OTEL endpoint is configured.
    """
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    headers = os.getenv("OTEL_EXPORTER_OTLP_HEADERS")

    if not endpoint or not headers:
        logger.warning("OTEL env vars not set. Telemetry stays local.")
        return

    resource = Resource.create({"service.name": "quiz-arena"})

    trace_provider = TracerProvider(resource=resource)
    trace_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, headers=headers))
    )
    trace.set_tracer_provider(trace_provider)

    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(
        BatchLogRecordProcessor(OTLPLogExporter(endpoint=endpoint, headers=headers))
    )
    set_logger_provider(logger_provider)
    logging.getLogger().addHandler(
        LoggingHandler(level=logging.INFO, logger_provider=logger_provider)
    )

    try:
        start_http_server(8000)
        logger.info("Prometheus metrics server started on port 8000")
    except OSError:
        logger.warning("Prometheus port 8000 already in use (likely a rerun). Skipping.")


if "observability_configured" not in st.session_state:
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s"
    )
    configure_observability()
    st.session_state.observability_configured = True


# --- 2. Composition Root ---
@st.cache_resource
def get_infrastructure():
    if QuizConfig.USE_SUPABASE and QuizConfig.SUPABASE_URL and QuizConfig.SUPABASE_KEY:
        client = create_supabase_client(QuizConfig.SUPABASE_URL, QuizConfig.SUPABASE_KEY)
        repo = SupabaseQuizRepository(client)
        bank = QuestionBank(repo)
        gateway = SupabaseSubmissionGateway(client, repo, bank)
        # Remote failures fall back to a durable local store.
        recovery: IRecoveryStore | None = SQLiteRecoveryStore(DatabaseManager(QuizConfig.DB_PATH))
        return repo, bank, gateway, recovery

    db_manager = DatabaseManager(QuizConfig.DB_PATH)
    repo = SQLiteQuizRepository(db_manager)
    DataSeeder(repo, repo).seed_if_empty(QuizConfig.SEED_FILE)
    bank = QuestionBank(repo)
    gateway = SQLiteSubmissionGateway(db_manager, repo, bank)
    return repo, bank, gateway, None


def get_session(state: StreamlitStateProvider) -> QuizSession:
    session = state.get("quiz_session")
    if session is None or session.closed:
        repo, bank, gateway, recovery = get_infrastructure()
        session = QuizSession(
            quiz_repo=repo,
            question_bank=bank,
            gateway=gateway,
            recovery_store=recovery or BrowserRecoveryStore(state),
        )
        state.set("quiz_session", session)
    return session


def main() -> None:
    st.set_page_config(page_title=QuizConfig.APP_TITLE, layout="centered")
    views.apply_styles()

    state = StreamlitStateProvider()
    session = get_session(state)
    session.poll()

    if st.sidebar.button("Leave quiz"):
        session.teardown()
        st.rerun()

    # --- 3. Router (FSM) ---
    current = session.current_state

    if current == QuizState.LOADING:
        code = views.render_join()
        if session.state.error:
            st.error(session.state.error)
        if code:
            try:
                session.open(code)
            except QuizError as e:
                logger.info("Join failed: %s", e.message)
            st.rerun()

    elif current in (QuizState.DIFFICULTY_SELECTING, QuizState.QUESTIONS_LOADING):
        views.render_difficulty_picker(session)

    elif current == QuizState.IN_PROGRESS:
        views.render_question(session)

    elif current == QuizState.SUBMITTING:
        with st.spinner("Submitting..."):
            pass

    elif current == QuizState.COMPLETED:
        views.render_result(session)


if __name__ == "__main__":
    main()
