"""Delayed job queue over ``background_jobs``.

Keyed jobs are unique while pending (partial unique index on ``job_key``),
so enqueueing an existing key replaces the pending job's payload and due
time instead of adding a second job.
"""

import logging
from datetime import timedelta
from typing import Any, Protocol

import psycopg
from psycopg.types.json import Json

logger = logging.getLogger(__name__)

NOTIFY_CHANNEL = "carenote_jobs"


def checkin_job_key(user_id: str) -> str:
    """One follow-up slot per user."""
    return f"followup-checkin:{user_id}"


class JobQueue(Protocol):
    async def enqueue(
        self,
        job_key: str | None,
        job_type: str,
        payload: dict[str, Any],
        *,
        user_id: str | None = None,
        delay: timedelta = timedelta(0),
    ) -> int: ...

    async def cancel(self, job_key: str) -> bool: ...


class PgJobQueue:
    def __init__(self, conn: psycopg.AsyncConnection[Any], *, max_retries: int = 3) -> None:
        self._conn = conn
        self.max_retries = max_retries

    async def enqueue(
        self,
        job_key: str | None,
        job_type: str,
        payload: dict[str, Any],
        *,
        user_id: str | None = None,
        delay: timedelta = timedelta(0),
    ) -> int:
        async with self._conn.cursor() as cur:
            await cur.execute(
                """
                INSERT INTO background_jobs (
                    user_id, job_type, job_key, payload, max_retries, scheduled_for
                )
                VALUES (%s, %s, %s, %s, %s, NOW() + make_interval(secs => %s))
                ON CONFLICT (job_key) WHERE status = 'pending' AND job_key IS NOT NULL
                DO UPDATE SET
                    job_type = EXCLUDED.job_type,
                    payload = EXCLUDED.payload,
                    scheduled_for = EXCLUDED.scheduled_for,
                    attempt = 0,
                    error_message = NULL
                RETURNING id
                """,
                (
                    user_id,
                    job_type,
                    job_key,
                    Json(payload),
                    self.max_retries,
                    delay.total_seconds(),
                ),
            )
            row = await cur.fetchone()
            # Delivered on commit; wakes idle workers before their next poll.
            await cur.execute("SELECT pg_notify(%s, %s)", (NOTIFY_CHANNEL, job_type))

        job_id = int(row[0])
        logger.debug("Enqueued job %d (type=%s, key=%s, delay=%s)", job_id, job_type, job_key, delay)
        return job_id

    async def cancel(self, job_key: str) -> bool:
        """Cancel the pending job for ``job_key``. Missing jobs are not an error.

        Runs in a savepoint so a failure here leaves the caller's transaction usable.
        """
        async with self._conn.transaction(), self._conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE background_jobs
                SET status = 'canceled', completed_at = NOW()
                WHERE job_key = %s AND status = 'pending'
                """,
                (job_key,),
            )
            canceled = cur.rowcount > 0
        if canceled:
            logger.debug("Canceled pending job for key=%s", job_key)
        return canceled
