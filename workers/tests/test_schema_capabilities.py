from unittest.mock import AsyncMock, MagicMock

from carenote_workers.schema_capabilities import (
    SchemaCapabilities,
    detect_capabilities,
    relation_exists,
)


class _FakeCursor:
    def __init__(self, row):
        self.execute = AsyncMock()
        self.fetchone = AsyncMock(return_value=row)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


def _conn(row):
    conn = AsyncMock()
    cursor = _FakeCursor(row)
    conn.cursor = MagicMock(return_value=cursor)
    conn._fake_cursor = cursor
    return conn


async def test_relation_exists_uses_to_regclass():
    conn = _conn((True,))

    assert await relation_exists(conn, "memories") is True
    call = conn._fake_cursor.execute.await_args
    assert "to_regclass(%s)" in call.args[0]
    assert call.args[1] == ("public.memories",)


async def test_detect_missing_aggregate_table():
    capabilities = await detect_capabilities(_conn((False,)))

    assert capabilities.aggregate_table is False
    report = capabilities.report()
    assert report["status"] == "degraded"
    assert report["missing_relations"] == ["memories"]
    assert report["relations"]["memories"]["available"] is False


def test_default_is_healthy():
    assert SchemaCapabilities().report()["status"] == "healthy"
