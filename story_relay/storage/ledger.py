"""
The request ledger: one append-only row per completed relay request.

The admission controller counts today's successful rows to enforce the daily
quota, so rows are keyed per request, never per item.
"""

import logging
from datetime import datetime, time, tzinfo
from datetime import timezone as dt_timezone
from typing import Optional

from story_relay.models.domain import RequestRecord

from .database import SQLiteStore, from_db_time, to_db_time

log = logging.getLogger(__name__)

STATUS_SUCCESS = "success"


def start_of_day(now: datetime, tz: tzinfo) -> datetime:
    """Midnight of `now`'s calendar day in `tz`, as an aware datetime."""
    local_now = now.astimezone(tz)
    return datetime.combine(local_now.date(), time.min, tzinfo=tz)


class RequestLedger(SQLiteStore):
    """Stores request records and answers quota queries."""

    def __init__(self, *args, day_tz: tzinfo = dt_timezone.utc, **kwargs):
        super().__init__(*args, **kwargs)
        self.day_tz = day_tz

    async def create(self, record: RequestRecord) -> RequestRecord:
        created_at = record.created_at or self._clock()
        row_id = await self.execute(
            "INSERT INTO downloads (user_id, input, status, created_at)"
            " VALUES (?, ?, ?, ?)",
            (record.user_id, record.input, record.status, to_db_time(created_at)),
        )
        record.id = row_id
        record.created_at = created_at
        log.debug(f"Ledger: recorded '{record.status}' request #{row_id} for {record.user_id}")
        return record

    async def count_today_successes(
        self, user_id: int, now: Optional[datetime] = None
    ) -> int:
        """Counts successful requests since midnight in the ledger's timezone."""
        day_start = start_of_day(now or self._clock(), self.day_tz)
        row = await self.execute(
            "SELECT COUNT(*) FROM downloads"
            " WHERE user_id = ? AND status = ? AND created_at >= ?",
            (user_id, STATUS_SUCCESS, to_db_time(day_start)),
            fetch="one",
        )
        return int(row[0])

    async def list_for_user(self, user_id: int, limit: int = 20) -> list[RequestRecord]:
        rows = await self.execute(
            "SELECT id, user_id, input, status, created_at FROM downloads"
            " WHERE user_id = ? ORDER BY id DESC LIMIT ?",
            (user_id, limit),
            fetch="all",
        )
        return [
            RequestRecord(
                id=row["id"],
                user_id=row["user_id"],
                input=row["input"],
                status=row["status"],
                created_at=from_db_time(row["created_at"]),
            )
            for row in rows
        ]
