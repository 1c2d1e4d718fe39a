"""PostgreSQL storage implementation."""

import json
import logging
import os
from contextlib import contextmanager

import psycopg2
from psycopg2.extras import RealDictCursor

from core.interfaces import Storage
from server.file_storage import DEFAULT_CONFIG_FILE, read_config_file

logger = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS skill_profiles (
        user_id VARCHAR(255) PRIMARY KEY,
        state JSONB NOT NULL,
        created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_skill_profiles_updated ON skill_profiles(updated_at)",
    """
    CREATE TABLE IF NOT EXISTS api_stats (
        provider_name VARCHAR(100) PRIMARY KEY,
        stats JSONB NOT NULL,
        updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
    )
    """,
)


class PostgresStorage(Storage):
    """Profiles and API stats as JSONB documents, one row per key."""

    def __init__(self, config_file: str = None, db_url: str = None):
        self.config_file = config_file or os.path.expanduser(DEFAULT_CONFIG_FILE)
        self.db_url = db_url or os.environ.get('DATABASE_URL', 'postgresql://localhost:5432/gauntlet')
        self._conn = None
        self._initialized = False

    @property
    def conn(self):
        """Connect on first use; the schema is created once per process."""
        if self._conn is None or self._conn.closed:
            self._conn = psycopg2.connect(self.db_url)
            if not self._initialized:
                with self._write(self._conn, f"creating schema at {self.db_url}") as cur:
                    for statement in SCHEMA:
                        cur.execute(statement)
                self._initialized = True
        return self._conn

    @contextmanager
    def _write(self, conn, what: str):
        """Cursor whose work is committed on success and rolled back on error."""
        try:
            with conn.cursor() as cur:
                yield cur
            conn.commit()
        except Exception as e:
            logger.error(f"Error {what}: {e}")
            conn.rollback()
            raise

    def _fetch_document(self, table: str, key_column: str, column: str, key: str) -> dict | None:
        with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
            cur.execute(f"SELECT {column} FROM {table} WHERE {key_column} = %s", (key,))
            row = cur.fetchone()
        return row[column] if row else None

    def _upsert_document(self, table: str, key_column: str, column: str, key: str, document: dict) -> None:
        with self._write(self.conn, f"saving {table} row {key}") as cur:
            cur.execute(f"""
                INSERT INTO {table} ({key_column}, {column}, updated_at)
                VALUES (%s, %s, CURRENT_TIMESTAMP)
                ON CONFLICT ({key_column})
                DO UPDATE SET {column} = EXCLUDED.{column}, updated_at = CURRENT_TIMESTAMP
            """, (key, json.dumps(document)))

    def close(self):
        if self._conn and not self._conn.closed:
            self._conn.close()

    def load_config(self) -> dict:
        return read_config_file(self.config_file)

    def load_state(self, user_id: str = "default") -> dict | None:
        return self._fetch_document('skill_profiles', 'user_id', 'state', user_id)

    def save_state(self, state: dict, user_id: str = "default") -> None:
        self._upsert_document('skill_profiles', 'user_id', 'state', user_id, state)

    def list_users(self) -> list[str]:
        with self.conn.cursor() as cur:
            cur.execute("SELECT user_id FROM skill_profiles ORDER BY user_id")
            return [row[0] for row in cur.fetchall()]

    def user_exists(self, user_id: str) -> bool:
        return self.load_state(user_id) is not None

    def load_api_stats(self, provider_name: str) -> dict | None:
        return self._fetch_document('api_stats', 'provider_name', 'stats', provider_name)

    def save_api_stats(self, provider_name: str, stats: dict) -> None:
        self._upsert_document('api_stats', 'provider_name', 'stats', provider_name, stats)
