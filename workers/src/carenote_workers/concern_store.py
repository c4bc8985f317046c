"""Persistence for concerns, their snapshots and the legacy aggregate."""

from contextlib import AbstractAsyncContextManager
from typing import Any, Protocol

import psycopg
from psycopg.rows import dict_row

from .models import Concern, ConcernSnapshot, ConcernStatus, SnapshotReason

AGGREGATE_CATEGORY = "health_summary"

_CONCERN_COLUMNS = "id, user_id, title, status, summary_content, created_at, updated_at"


class ConcernStore(Protocol):
    def transaction(self) -> AbstractAsyncContextManager[Any]: ...

    async def lock_user(self, user_id: str) -> None: ...

    async def list_concerns(
        self, user_id: str, statuses: tuple[str, ...] | None = None
    ) -> list[Concern]: ...

    async def get_concern(self, concern_id: str, *, for_update: bool = False) -> Concern | None: ...

    async def insert_concern(self, user_id: str, title: str) -> Concern: ...

    async def update_summary(self, concern_id: str, content: str) -> Concern: ...

    async def update_title(self, concern_id: str, title: str) -> Concern: ...

    async def update_status(self, concern_id: str, status: ConcernStatus) -> Concern: ...

    async def delete_concern(self, concern_id: str) -> bool: ...

    async def insert_snapshot(
        self, concern: Concern, content: str, reason: SnapshotReason
    ) -> ConcernSnapshot: ...

    async def list_snapshots(self, concern_id: str) -> list[ConcernSnapshot]: ...

    async def write_aggregate(self, user_id: str, content: str) -> None: ...


class PgConcernStore:
    """ConcernStore over a single psycopg async connection.

    Transactions are the caller's: ``transaction()`` opens a savepoint when
    one is already active on the connection.
    """

    def __init__(self, conn: psycopg.AsyncConnection[Any]) -> None:
        self._conn = conn

    def transaction(self) -> AbstractAsyncContextManager[Any]:
        return self._conn.transaction()

    async def lock_user(self, user_id: str) -> None:
        """Serialize concern-set mutations for one user until the transaction ends."""
        await self._conn.execute(
            "SELECT pg_advisory_xact_lock(hashtext(%s)::bigint)",
            (f"concerns:{user_id}",),
        )

    async def _fetch_concern(self, query: str, params: tuple[Any, ...]) -> Concern | None:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(query, params)
            row = await cur.fetchone()
        return Concern.from_row(row) if row else None

    async def _fetch_required(self, query: str, params: tuple[Any, ...], concern_id: str) -> Concern:
        concern = await self._fetch_concern(query, params)
        if concern is None:
            raise LookupError(f"Concern {concern_id} does not exist")
        return concern

    async def list_concerns(
        self, user_id: str, statuses: tuple[str, ...] | None = None
    ) -> list[Concern]:
        """Concerns for a user, most recently updated first."""
        if statuses is None:
            query = f"""
                SELECT {_CONCERN_COLUMNS}
                FROM health_concerns
                WHERE user_id = %s
                ORDER BY updated_at DESC, id
            """
            params: tuple[Any, ...] = (user_id,)
        else:
            query = f"""
                SELECT {_CONCERN_COLUMNS}
                FROM health_concerns
                WHERE user_id = %s AND status = ANY(%s)
                ORDER BY updated_at DESC, id
            """
            params = (user_id, list(statuses))

        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(query, params)
            rows = await cur.fetchall()
        return [Concern.from_row(r) for r in rows]

    async def get_concern(self, concern_id: str, *, for_update: bool = False) -> Concern | None:
        lock = " FOR UPDATE" if for_update else ""
        return await self._fetch_concern(
            f"SELECT {_CONCERN_COLUMNS} FROM health_concerns WHERE id = %s{lock}",
            (concern_id,),
        )

    async def insert_concern(self, user_id: str, title: str) -> Concern:
        return await self._fetch_required(
            f"""
            INSERT INTO health_concerns (user_id, title, status, created_at, updated_at)
            VALUES (%s, %s, 'active', NOW(), NOW())
            RETURNING {_CONCERN_COLUMNS}
            """,
            (user_id, title),
            "<new>",
        )

    async def update_summary(self, concern_id: str, content: str) -> Concern:
        return await self._fetch_required(
            f"""
            UPDATE health_concerns
            SET summary_content = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING {_CONCERN_COLUMNS}
            """,
            (content, concern_id),
            concern_id,
        )

    async def update_title(self, concern_id: str, title: str) -> Concern:
        return await self._fetch_required(
            f"""
            UPDATE health_concerns
            SET title = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING {_CONCERN_COLUMNS}
            """,
            (title, concern_id),
            concern_id,
        )

    async def update_status(self, concern_id: str, status: ConcernStatus) -> Concern:
        return await self._fetch_required(
            f"""
            UPDATE health_concerns
            SET status = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING {_CONCERN_COLUMNS}
            """,
            (status, concern_id),
            concern_id,
        )

    async def delete_concern(self, concern_id: str) -> bool:
        async with self._conn.cursor() as cur:
            await cur.execute("DELETE FROM health_concerns WHERE id = %s", (concern_id,))
            return cur.rowcount > 0

    async def insert_snapshot(
        self, concern: Concern, content: str, reason: SnapshotReason
    ) -> ConcernSnapshot:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                INSERT INTO concern_snapshots (concern_id, user_id, content, reason, created_at)
                VALUES (%s, %s, %s, %s, NOW())
                RETURNING id, concern_id, content, reason, created_at
                """,
                (concern.id, concern.user_id, content, reason),
            )
            row = await cur.fetchone()
        return ConcernSnapshot.from_row(row)

    async def list_snapshots(self, concern_id: str) -> list[ConcernSnapshot]:
        async with self._conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                SELECT id, concern_id, content, reason, created_at
                FROM concern_snapshots
                WHERE concern_id = %s
                ORDER BY created_at DESC, id DESC
                """,
                (concern_id,),
            )
            rows = await cur.fetchall()
        return [ConcernSnapshot.from_row(r) for r in rows]

    async def write_aggregate(self, user_id: str, content: str) -> None:
        await self._conn.execute(
            """
            INSERT INTO memories (user_id, category, content, importance_score, created_at, access_count)
            VALUES (%s, %s, %s, 1.0, NOW(), 0)
            ON CONFLICT (user_id, category) DO UPDATE SET
                content = EXCLUDED.content,
                created_at = NOW(),
                access_count = memories.access_count + 1
            """,
            (user_id, AGGREGATE_CATEGORY, content),
        )
