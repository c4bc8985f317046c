"""Unit tests for job execution outcomes: completion, retry, supersede and dead-letter."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from carenote_workers.config import Config
from carenote_workers.context import Runtime
from carenote_workers.errors import ConcernNotFoundError, MessageDeliveryError
from carenote_workers.metrics import get_metrics
from carenote_workers.worker import Worker


class _FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False  # don't suppress exceptions


class _FakeCursor:
    def __init__(self):
        self.execute = AsyncMock()
        self.rowcount = 1

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


@pytest.fixture
def mock_conn():
    conn = AsyncMock()
    conn.transaction = MagicMock(return_value=_FakeTransaction())
    conn.execute = AsyncMock()
    conn.commit = AsyncMock()
    fake_cursor = _FakeCursor()
    conn.cursor = MagicMock(return_value=fake_cursor)
    conn._fake_cursor = fake_cursor
    return conn


@pytest.fixture
def worker(messenger):
    config = Config(database_url="postgresql://test")
    return Worker(config, Runtime(config=config, messenger=messenger))


def _job(attempt=1, max_retries=3):
    return {
        "id": 11,
        "user_id": "user-1",
        "job_type": "followup.checkin",
        "payload": {"user_id": "user-1", "conversation_ref": "42"},
        "attempt": attempt,
        "max_retries": max_retries,
    }


def _handler_raising(exc):
    async def failing_handler(conn, payload, runtime):
        raise exc

    return failing_handler


def _sql(call) -> str:
    return " ".join(call.args[0].split())


class TestProcessJob:
    async def test_success_marks_completed_in_job_transaction(self, worker, mock_conn):
        seen = []

        async def ok_handler(conn, payload, runtime):
            seen.append((payload, runtime))

        with patch("carenote_workers.worker.get_handler", return_value=ok_handler):
            await worker._process_job(mock_conn, _job())

        assert seen == [(_job()["payload"], worker.runtime)]
        mock_conn.transaction.assert_called_once()
        call = mock_conn.execute.await_args
        assert "SET status = 'completed'" in _sql(call)
        assert call.args[1] == (11,)
        assert get_metrics()["handlers"]["ok_handler"]["successes"] >= 1

    async def test_transient_failure_is_retried_with_backoff(self, worker, mock_conn):
        handler = _handler_raising(MessageDeliveryError("503"))

        with patch("carenote_workers.worker.get_handler", return_value=handler):
            await worker._process_job(mock_conn, _job(attempt=2))

        [call] = mock_conn._fake_cursor.execute.await_args_list
        assert "SET status = 'pending'" in _sql(call)
        assert "NOT EXISTS" in _sql(call)
        assert call.args[1] == ("MessageDeliveryError: 503", 4.0, 11)
        mock_conn.commit.assert_awaited()

    async def test_retry_superseded_by_newer_pending_job_is_canceled(self, worker, mock_conn):
        mock_conn._fake_cursor.rowcount = 0
        handler = _handler_raising(MessageDeliveryError("503"))

        with patch("carenote_workers.worker.get_handler", return_value=handler):
            await worker._process_job(mock_conn, _job())

        retry, cancel = mock_conn._fake_cursor.execute.await_args_list
        assert "SET status = 'canceled'" in _sql(cancel)
        assert cancel.args[1] == ("MessageDeliveryError: 503", 11)

    async def test_resolution_failure_is_dead_immediately(self, worker, mock_conn):
        handler = _handler_raising(ConcernNotFoundError("migraine"))
        dead_before = get_metrics()["jobs_dead"]

        with patch("carenote_workers.worker.get_handler", return_value=handler):
            await worker._process_job(mock_conn, _job(attempt=1))

        [call] = mock_conn._fake_cursor.execute.await_args_list
        assert "SET status = 'dead'" in _sql(call)
        assert call.args[1][0].startswith("ConcernNotFoundError:")
        assert get_metrics()["jobs_dead"] == dead_before + 1

    async def test_last_attempt_goes_dead(self, worker, mock_conn):
        handler = _handler_raising(MessageDeliveryError("503"))

        with patch("carenote_workers.worker.get_handler", return_value=handler):
            await worker._process_job(mock_conn, _job(attempt=3, max_retries=3))

        [call] = mock_conn._fake_cursor.execute.await_args_list
        assert "SET status = 'dead'" in _sql(call)

    async def test_unknown_job_type_goes_dead(self, worker, mock_conn):
        with patch("carenote_workers.worker.get_handler", return_value=None):
            await worker._process_job(mock_conn, _job())

        [call] = mock_conn._fake_cursor.execute.await_args_list
        assert call.args[1] == ("No handler for job_type=followup.checkin", 11)
        mock_conn.transaction.assert_not_called()
