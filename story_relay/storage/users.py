"""
SQLite-backed user repository.
"""

import logging
import sqlite3
from typing import Optional

from story_relay.models.domain import User

from .database import SQLiteStore, from_db_time, to_db_time

log = logging.getLogger(__name__)

_USER_COLUMNS = (
    "id, first_name, last_name, username, language_code, is_telegram_premium,"
    " premium_expires_at, role, created_at, updated_at, last_active_at"
)


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        username=row["username"],
        language_code=row["language_code"] or None,
        is_telegram_premium=bool(row["is_telegram_premium"]),
        premium_expires_at=from_db_time(row["premium_expires_at"]),
        role=row["role"],
        created_at=from_db_time(row["created_at"]),
        updated_at=from_db_time(row["updated_at"]),
        last_active_at=from_db_time(row["last_active_at"]),
    )


class UserStore(SQLiteStore):
    """Persists bot users. Users are created or updated, never deleted."""

    async def get_by_id(self, user_id: int) -> Optional[User]:
        row = await self.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?",  # noqa: S608
            (user_id,),
            fetch="one",
        )
        return _row_to_user(row) if row else None

    async def upsert(self, user: User) -> User:
        """
        Inserts a user or refreshes the Telegram profile fields of an existing one.

        Language, role, premium expiry and activity are owned by the bot and are
        left untouched on conflict.
        """
        now = to_db_time(self._clock())
        await self.execute(
            """
            INSERT INTO users (id, first_name, last_name, username, language_code,
                               is_telegram_premium, premium_expires_at, role,
                               created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                first_name = excluded.first_name,
                last_name = excluded.last_name,
                username = excluded.username,
                is_telegram_premium = excluded.is_telegram_premium,
                updated_at = excluded.updated_at
            """,
            (
                user.id,
                user.first_name,
                user.last_name,
                user.username,
                user.language_code,
                int(user.is_telegram_premium),
                to_db_time(user.premium_expires_at),
                user.role,
                now,
                now,
            ),
        )
        stored = await self.get_by_id(user.id)
        return stored if stored is not None else user

    async def update_activity(self, user_id: int) -> None:
        await self.execute(
            "UPDATE users SET last_active_at = ? WHERE id = ?",
            (to_db_time(self._clock()), user_id),
        )

    async def update_language(self, user_id: int, language_code: str) -> None:
        await self.execute(
            "UPDATE users SET language_code = ? WHERE id = ?",
            (language_code, user_id),
        )

    async def set_premium(self, user_id: int, expires_at, role: str | None = None) -> None:
        """Grants bot premium until `expires_at`, optionally changing the role."""
        if role is None:
            await self.execute(
                "UPDATE users SET premium_expires_at = ? WHERE id = ?",
                (to_db_time(expires_at), user_id),
            )
        else:
            await self.execute(
                "UPDATE users SET premium_expires_at = ?, role = ? WHERE id = ?",
                (to_db_time(expires_at), role, user_id),
            )
