import os
import sqlite3
from typing import Any

from src.shared.telemetry import Telemetry, measure_time


class DatabaseManager:
    """
    Responsible for:
    1. Managing the SQLite connection lifecycle.
    2. Initializing the database schema (DDL).
    3. Handling migrations.
    4. Ensuring pickle-safety for Streamlit Session State.
    """

    def __init__(self, db_path: str = "data/quiz.db") -> None:
        self.db_path = db_path
        self.telemetry = Telemetry("DatabaseManager")
        self._shared_connection: sqlite3.Connection | None = None

        self._ensure_db_exists()

        # In-memory databases live only as long as their connection.
        if self.db_path == ":memory:":
            self._shared_connection = sqlite3.connect(
                ":memory:", check_same_thread=False
            )

        self._init_schema()
        self._migrate_schema()

    # --- SERIALIZATION LOGIC (Pickle Safety) ---
    def __getstate__(self) -> dict[str, Any]:
        state = self.__dict__.copy()
        state.pop("_shared_connection", None)
        return state

    def __setstate__(self, state: dict[str, Any]) -> None:
        # The connection is re-created lazily by get_connection().
        self.__dict__.update(state)
        self._shared_connection = None

    @property
    def is_shared(self) -> bool:
        return self._shared_connection is not None

    def get_connection(self) -> sqlite3.Connection:
        """Returns a usable database connection, reconnecting if necessary."""
        if self._shared_connection:
            try:
                self._shared_connection.execute("SELECT 1")
                return self._shared_connection
            except sqlite3.ProgrammingError:
                # Connection was closed externally
                self._shared_connection = None

        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        if self.db_path != ":memory:":
            conn.execute("PRAGMA journal_mode=WAL")

        self._shared_connection = conn
        return conn

    def close(self) -> None:
        if self._shared_connection:
            self._shared_connection.close()
            self._shared_connection = None

    def _ensure_db_exists(self) -> None:
        if self.db_path == ":memory:":
            return
        dir_name = os.path.dirname(self.db_path)
        if dir_name:
            os.makedirs(dir_name, exist_ok=True)

    @measure_time("db_init_schema")
    def _init_schema(self) -> None:
        conn = self.get_connection()
        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS quizzes
                (
                    id          TEXT PRIMARY KEY,
                    access_code TEXT,
                    json_data   TEXT
                )
                """
            )

            # difficulty = '' holds the legacy, undifferentiated set
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS questions
                (
                    quiz_id    TEXT,
                    difficulty TEXT    DEFAULT '',
                    position   INTEGER,
                    json_data  TEXT,
                    PRIMARY KEY (quiz_id, difficulty, position)
                )
                """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS responses
                (
                    id               TEXT PRIMARY KEY,
                    quiz_id          TEXT,
                    user_id          TEXT,
                    score            INTEGER,
                    tab_switch_count INTEGER DEFAULT 0,
                    started_at       DATETIME,
                    submitted_at     DATETIME DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS response_answers
                (
                    response_id    TEXT,
                    question_id    TEXT,
                    selected_index INTEGER,
                    is_correct     BOOLEAN,
                    PRIMARY KEY (response_id, question_id)
                )
                """
            )

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS recovery_store
                (
                    key        TEXT PRIMARY KEY,
                    json_value TEXT
                )
                """
            )
            conn.commit()
        except sqlite3.Error as e:
            self.telemetry.log_error("Schema Init Failed", e)

    def _migrate_schema(self) -> None:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            cursor.execute("PRAGMA table_info(responses)")
            columns = [info[1] for info in cursor.fetchall()]

            # Migration: responses stored before difficulty tiers existed
            if "difficulty" not in columns:
                self.telemetry.log_info("Migrating: Adding difficulty to responses")
                cursor.execute(
                    "ALTER TABLE responses ADD COLUMN difficulty TEXT DEFAULT 'medium'"
                )

            conn.commit()
        except sqlite3.Error as e:
            self.telemetry.log_error("Schema migration failed", e)
