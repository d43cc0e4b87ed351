"""
Shared SQLite plumbing for the user store and the request ledger.

Every operation opens its own short-lived connection and runs in a worker
thread, throttled by a semaphore so the event loop never blocks on disk I/O.
"""

import asyncio
import logging
import sqlite3
from contextlib import closing
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from story_relay.exceptions import RepositoryError

log = logging.getLogger(__name__)

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY NOT NULL,
        first_name TEXT NOT NULL DEFAULT '',
        last_name TEXT NOT NULL DEFAULT '',
        username TEXT NOT NULL DEFAULT '',
        language_code TEXT,
        is_telegram_premium INTEGER NOT NULL DEFAULT 0,
        premium_expires_at TEXT,
        role TEXT NOT NULL DEFAULT 'user',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        last_active_at TEXT
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS downloads (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        input TEXT NOT NULL,
        status TEXT NOT NULL,
        created_at TEXT NOT NULL
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_downloads_user_created"
    " ON downloads(user_id, created_at);",
)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    """Serializes an aware datetime as a fixed-width UTC ISO string."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SQLiteStore:
    """Base class owning the database path, schema and thread offloading."""

    def __init__(
        self,
        db_path: Path | str,
        pool_size: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.db_path = Path(db_path)
        self._clock = clock
        self._connection_semaphore = asyncio.Semaphore(pool_size)
        self._initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Opens a new connection with WAL-friendly PRAGMA settings."""
        try:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            return conn
        except sqlite3.Error as e:
            raise RepositoryError(f"Failed to open database '{self.db_path}': {e}") from e

    def _initialize_db(self) -> None:
        """Creates tables and indexes if they don't exist."""
        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with closing(self._get_connection()) as conn, conn:
                for statement in SCHEMA:
                    conn.execute(statement)
        except sqlite3.Error as e:
            raise RepositoryError(
                f"Failed to initialize database at '{self.db_path}': {e}"
            ) from e

    def _execute_sync(
        self, query: str, params: tuple[Any, ...] = (), fetch: str | None = None
    ) -> Any:
        """Runs one statement in its own transaction, optionally fetching rows."""
        try:
            with closing(self._get_connection()) as conn, conn:
                cursor = conn.execute(query, params)
                if fetch == "one":
                    return cursor.fetchone()
                if fetch == "all":
                    return cursor.fetchall()
                return cursor.lastrowid
        except sqlite3.Error as e:
            log.debug(f"Query failed: {query.split()[0]} ({e})")
            raise RepositoryError(f"Database operation failed: {e}") from e

    async def _run_in_executor(self, func, *args):
        """Runs a synchronous database function within the connection semaphore."""
        async with self._connection_semaphore:
            return await asyncio.to_thread(func, *args)

    async def execute(
        self, query: str, params: tuple[Any, ...] = (), fetch: str | None = None
    ) -> Any:
        return await self._run_in_executor(self._execute_sync, query, params, fetch)
