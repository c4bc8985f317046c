"""Per-user follow-up scheduling state (``followup_state``).

Rows are created lazily by the first write. Status changes made at fire and
reply time are compare-and-set on the expected current status, so two
workers racing on the same row cannot both advance it.
"""

from datetime import datetime
from typing import Any, Protocol

import psycopg
from psycopg.rows import dict_row

from .models import FollowUpState, FollowUpStatus, Recipient

_STATE_COLUMNS = """
    user_id, status, scheduled_for, last_summary_created_at,
    last_user_message_at, last_bot_message_at, case_label, concern_id,
    conversation_ref
"""


class FollowUpStore(Protocol):
    async def get_state(self, user_id: str, *, for_update: bool = False) -> FollowUpState | None: ...

    async def mark_scheduled(
        self,
        user_id: str,
        *,
        scheduled_for: datetime,
        summary_created_at: datetime,
        case_label: str | None,
        concern_id: str | None,
        conversation_ref: str | None,
    ) -> FollowUpState: ...

    async def mark_canceled(self, user_id: str) -> None: ...

    async def transition(
        self,
        user_id: str,
        expected: FollowUpStatus,
        new_status: FollowUpStatus,
        *,
        bot_message_at: datetime | None = None,
    ) -> bool: ...

    async def record_user_message(self, user_id: str, at: datetime) -> None: ...

    async def record_bot_message(self, user_id: str, at: datetime) -> None: ...

    async def get_recipient(self, user_id: str) -> Recipient | None: ...


class PgFollowUpStore:
    def __init__(self, conn: psycopg.AsyncConnection[Any]) -> None:
        self._conn = conn

    async def get_state(self, user_id: str, *, for_update: bool = False) -> FollowUpState | None:
        lock = " FOR UPDATE" if for_update else ""
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"SELECT {_STATE_COLUMNS} FROM followup_state WHERE user_id = %s{lock}",
                (user_id,),
            )
            row = await cur.fetchone()
        return FollowUpState.from_row(row) if row else None

    async def mark_scheduled(
        self,
        user_id: str,
        *,
        scheduled_for: datetime,
        summary_created_at: datetime,
        case_label: str | None,
        concern_id: str | None,
        conversation_ref: str | None,
    ) -> FollowUpState:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                f"""
                INSERT INTO followup_state (
                    user_id, status, scheduled_for, last_summary_created_at,
                    case_label, concern_id, conversation_ref, updated_at
                )
                VALUES (%s, 'scheduled', %s, %s, %s, %s, %s, NOW())
                ON CONFLICT (user_id) DO UPDATE SET
                    status = 'scheduled',
                    scheduled_for = EXCLUDED.scheduled_for,
                    last_summary_created_at = EXCLUDED.last_summary_created_at,
                    case_label = EXCLUDED.case_label,
                    concern_id = EXCLUDED.concern_id,
                    conversation_ref = EXCLUDED.conversation_ref,
                    updated_at = NOW()
                RETURNING {_STATE_COLUMNS}
                """,
                (user_id, scheduled_for, summary_created_at, case_label, concern_id, conversation_ref),
            )
            row = await cur.fetchone()
        return FollowUpState.from_row(row)

    async def mark_canceled(self, user_id: str) -> None:
        """Unconditional: creates the row when the user was never scheduled."""
        await self._conn.execute(
            """
            INSERT INTO followup_state (user_id, status, updated_at)
            VALUES (%s, 'canceled', NOW())
            ON CONFLICT (user_id) DO UPDATE SET
                status = 'canceled',
                scheduled_for = NULL,
                updated_at = NOW()
            """,
            (user_id,),
        )

    async def transition(
        self,
        user_id: str,
        expected: FollowUpStatus,
        new_status: FollowUpStatus,
        *,
        bot_message_at: datetime | None = None,
    ) -> bool:
        """Compare-and-set ``expected -> new_status``. False when the row moved on."""
        async with self._conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE followup_state
                SET status = %s,
                    last_bot_message_at = COALESCE(%s, last_bot_message_at),
                    updated_at = NOW()
                WHERE user_id = %s AND status = %s
                """,
                (new_status, bot_message_at, user_id, expected),
            )
            return cur.rowcount > 0

    async def _record_activity(self, column: str, user_id: str, at: datetime) -> None:
        # Events can arrive out of order: never move a timestamp backwards.
        await self._conn.execute(
            f"""
            INSERT INTO followup_state (user_id, {column}, updated_at)
            VALUES (%s, %s, NOW())
            ON CONFLICT (user_id) DO UPDATE SET
                {column} = GREATEST(followup_state.{column}, EXCLUDED.{column}),
                updated_at = NOW()
            """,
            (user_id, at),
        )

    async def record_user_message(self, user_id: str, at: datetime) -> None:
        await self._record_activity("last_user_message_at", user_id, at)

    async def record_bot_message(self, user_id: str, at: datetime) -> None:
        await self._record_activity("last_bot_message_at", user_id, at)

    async def get_recipient(self, user_id: str) -> Recipient | None:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                "SELECT id, name, COALESCE(language, 'en') AS language FROM users WHERE id = %s",
                (user_id,),
            )
            row = await cur.fetchone()
        if not row:
            return None
        return Recipient(user_id=str(row["id"]), name=row["name"], language=row["language"])
