import json
import sqlite3
from typing import Any

from src.assessment.adapters.db_manager import DatabaseManager
from src.assessment.domain.ports import IRecoveryStore
from src.shared.telemetry import Telemetry


class SQLiteRecoveryStore(IRecoveryStore):
    """Durable key/value backup: values are stored as JSON text."""

    def __init__(self, db_manager: DatabaseManager) -> None:
        self.telemetry = Telemetry("SQLiteRecoveryStore")
        self.db_manager = db_manager

    def get(self, key: str, default: Any = None) -> Any:
        cursor = self.db_manager.get_connection().execute(
            "SELECT json_value FROM recovery_store WHERE key = ?", (key,)
        )
        row = cursor.fetchone()
        if not row:
            return default
        try:
            return json.loads(row[0])
        except json.JSONDecodeError as e:
            self.telemetry.log_error("Corrupt recovery entry", e, key=key)
            return default

    def set(self, key: str, value: Any) -> None:
        conn = self.db_manager.get_connection()
        try:
            conn.execute(
                "INSERT OR REPLACE INTO recovery_store (key, json_value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )
            conn.commit()
        except sqlite3.Error as e:
            self.telemetry.log_error("Recovery write failed", e, key=key)
            raise
