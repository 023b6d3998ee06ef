import json
import sqlite3
from typing import Any
from src.data.db_context import get_db_path

class KVStore:
    """Gerencia persistência de metadados simples (Chave-Valor, valores em JSON)"""

    def __init__(self, db_path: str = None):
        self.db_path = db_path or get_db_path()
        self._init_table()

    def _init_table(self):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS sys_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT
                )
            """)

    def get(self, key: str, default: Any = None) -> Any:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT value FROM sys_meta WHERE key = ?", (key,))
            row = cursor.fetchone()
        if not row:
            return default
        try:
            return json.loads(row[0])
        except (TypeError, ValueError):
            # Valor corrompido: trata como ausente
            return default

    def set(self, key: str, value: Any):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                "INSERT OR REPLACE INTO sys_meta (key, value) VALUES (?, ?)",
                (key, json.dumps(value)),
            )

    def delete(self, key: str):
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM sys_meta WHERE key = ?", (key,))
