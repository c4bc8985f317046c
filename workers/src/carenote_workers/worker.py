import asyncio
import logging
import signal
import time
from typing import Any

import psycopg
from psycopg.rows import dict_row

from .config import Config
from .context import Runtime
from .errors import classify_error, is_retryable
from .job_queue import NOTIFY_CHANNEL
from .metrics import (
    record_handler_invocation,
    record_job_completed,
    record_job_dead,
    record_job_failed,
)
from .registry import get_handler
from .schema_capabilities import detect_capabilities

logger = logging.getLogger(__name__)


class Worker:
    def __init__(self, config: Config, runtime: Runtime) -> None:
        self.config = config
        self.runtime = runtime
        self._shutdown = asyncio.Event()

    async def run(self) -> None:
        """Main entry point: run listen + poll loops until shutdown."""
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._request_shutdown)

        logger.info(
            "Worker starting (poll_interval=%.1fs, batch_size=%d)",
            self.config.poll_interval_seconds,
            self.config.batch_size,
        )
        if self.config.listen_database_url != self.config.database_url:
            logger.info("Worker LISTEN uses dedicated database URL")

        # Optional relations are resolved once, before processing jobs
        async with await psycopg.AsyncConnection.connect(
            self.config.database_url, autocommit=True
        ) as conn:
            self.runtime.capabilities = await detect_capabilities(conn)
        report = self.runtime.capabilities.report()
        if report["missing_relations"]:
            logger.warning("Schema degraded, missing relations: %s", report["missing_relations"])

        # Run LISTEN and poll concurrently
        async with asyncio.TaskGroup() as tg:
            tg.create_task(self._listen_loop())
            tg.create_task(self._poll_loop())

    def _request_shutdown(self) -> None:
        logger.info("Shutdown requested")
        self._shutdown.set()

    async def _listen_loop(self) -> None:
        """LISTEN on the jobs channel for instant wake-up on new jobs."""
        while not self._shutdown.is_set():
            try:
                async with await psycopg.AsyncConnection.connect(
                    self.config.listen_database_url, autocommit=True
                ) as conn:
                    await conn.execute(f"LISTEN {NOTIFY_CHANNEL}")
                    logger.info("Listening on %s channel", NOTIFY_CHANNEL)

                    # Timeouts keep the connection; only connection loss reconnects.
                    while not self._shutdown.is_set():
                        gen = conn.notifies(
                            timeout=self.config.poll_interval_seconds
                        )
                        async for notify in gen:
                            logger.debug("NOTIFY received: %s", notify.payload)
                            await self._process_batch()
                            if self._shutdown.is_set():
                                break
            except psycopg.OperationalError:
                if self._shutdown.is_set():
                    break
                logger.warning("LISTEN connection lost, reconnecting in 5s")
                await asyncio.sleep(5)

        logger.info("Listen loop stopped")

    async def _poll_loop(self) -> None:
        """Fallback polling loop: picks up delayed jobs as they come due."""
        while not self._shutdown.is_set():
            try:
                await asyncio.wait_for(
                    self._shutdown.wait(),
                    timeout=self.config.poll_interval_seconds,
                )
                break  # shutdown was set
            except TimeoutError:
                pass

            await self._process_batch()

        logger.info("Poll loop stopped")

    async def _process_batch(self) -> None:
        """Claim and process a batch of due jobs."""
        try:
            async with await psycopg.AsyncConnection.connect(
                self.config.database_url
            ) as conn:
                jobs = await self._claim_jobs(conn)
                await conn.commit()  # Commit claims immediately so they survive crashes

                for job in jobs:
                    await self._process_job(conn, job)
        except Exception:
            logger.exception("Error in process_batch")

    async def _claim_jobs(
        self, conn: psycopg.AsyncConnection[Any]
    ) -> list[dict[str, Any]]:
        """Claim pending jobs using SELECT FOR UPDATE SKIP LOCKED."""
        async with conn.cursor(row_factory=dict_row) as cur:
            await cur.execute(
                """
                UPDATE background_jobs
                SET status = 'processing', started_at = NOW(), attempt = attempt + 1
                WHERE id IN (
                    SELECT id FROM background_jobs
                    WHERE status = 'pending' AND scheduled_for <= NOW()
                    ORDER BY scheduled_for, priority DESC, id
                    LIMIT %s
                    FOR UPDATE SKIP LOCKED
                )
                RETURNING id, user_id, job_type, payload, attempt, max_retries
                """,
                (self.config.batch_size,),
            )
            return await cur.fetchall()

    async def _process_job(
        self, conn: psycopg.AsyncConnection[Any], job: dict[str, Any]
    ) -> None:
        """Process a single job. Each job runs in its own transaction."""
        job_id = job["id"]
        job_type = job["job_type"]
        log_extra = {
            "carenote_job_id": job_id,
            "carenote_job_type": job_type,
            "carenote_user_id": str(job["user_id"]) if job.get("user_id") else None,
        }

        handler = get_handler(job_type)
        if handler is None:
            logger.warning("No handler for job_type=%s (job_id=%d)", job_type, job_id)
            await self._fail_job(conn, job_id, f"No handler for job_type={job_type}")
            return

        t0 = time.monotonic()
        try:
            # Handler + job completion in one transaction: no crash window
            async with conn.transaction():
                await handler(conn, job["payload"], self.runtime)
                await conn.execute(
                    """
                    UPDATE background_jobs
                    SET status = 'completed', completed_at = NOW()
                    WHERE id = %s
                    """,
                    (job_id,),
                )
            duration_ms = (time.monotonic() - t0) * 1000
            record_handler_invocation(handler.__name__, duration_ms, success=True)
            record_job_completed()
            logger.info(
                "Job %d completed (type=%s)", job_id, job_type,
                extra={**log_extra, "carenote_duration_ms": round(duration_ms, 1)},
            )

        except Exception as exc:
            # conn.transaction() context manager already rolled back
            duration_ms = (time.monotonic() - t0) * 1000
            record_handler_invocation(handler.__name__, duration_ms, success=False)
            logger.exception(
                "Job %d failed (type=%s, error_class=%s)",
                job_id, job_type, classify_error(exc),
                extra=log_extra,
            )

            error = f"{type(exc).__name__}: {exc}"
            if not is_retryable(exc):
                await self._dead_job(conn, job_id, error)
            elif job["attempt"] >= job["max_retries"]:
                await self._dead_job(conn, job_id, error)
            else:
                record_job_failed()
                await self._retry_job(conn, job_id, job["attempt"], error)

    async def _fail_job(
        self, conn: psycopg.AsyncConnection[Any], job_id: int, error: str
    ) -> None:
        async with conn.cursor() as cur:
            await cur.execute(
                """
                UPDATE background_jobs
                SET status = 'dead', error_message = %s, completed_at = NOW()
                WHERE id = %s
                """,
                (error, job_id),
            )
        await conn.commit()

    async def _dead_job(
        self, conn: psycopg.AsyncConnection[Any], job_id: int, error: str
    ) -> None:
        record_job_dead()
        logger.error("Job %d is dead: %s", job_id, error)
        await self._fail_job(conn, job_id, error)

    async def _retry_job(
        self,
        conn: psycopg.AsyncConnection[Any],
        job_id: int,
        attempt: int,
        error: str,
    ) -> None:
        backoff_seconds = 2**attempt
        logger.info("Job %d retrying in %ds (attempt=%d)", job_id, backoff_seconds, attempt)
        async with conn.cursor() as cur:
            # A keyed job replaced while it ran must not come back as a second pending job.
            await cur.execute(
                """
                UPDATE background_jobs AS j
                SET status = 'pending',
                    error_message = %s,
                    scheduled_for = NOW() + make_interval(secs => %s)
                WHERE j.id = %s
                  AND NOT EXISTS (
                      SELECT 1 FROM background_jobs AS other
                      WHERE other.job_key = j.job_key
                        AND other.status = 'pending'
                        AND other.id <> j.id
                  )
                """,
                (error, float(backoff_seconds), job_id),
            )
            if cur.rowcount == 0:
                logger.info("Job %d superseded by a newer pending job, not retrying", job_id)
                await cur.execute(
                    """
                    UPDATE background_jobs
                    SET status = 'canceled', error_message = %s, completed_at = NOW()
                    WHERE id = %s
                    """,
                    (error, job_id),
                )
        await conn.commit()
