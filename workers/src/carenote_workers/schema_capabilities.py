"""Schema capability checks resolved once at worker startup.

Workers can run against databases that are behind code migrations (for
example during staged rollouts). Optional relations are probed up front and
the result is passed to services as flags, so no call site has to catch
undefined-table errors.
"""

from dataclasses import dataclass
from typing import Any

import psycopg

_OPTIONAL_RELATIONS: dict[str, dict[str, str]] = {
    "memories": {
        "migration": "0005_memories.sql",
        "fallback_behavior": "Skip legacy aggregate writes; concern rows stay authoritative.",
    },
}


@dataclass(frozen=True)
class SchemaCapabilities:
    aggregate_table: bool = True

    @property
    def missing_relations(self) -> list[str]:
        return [] if self.aggregate_table else ["memories"]

    def report(self) -> dict[str, Any]:
        """Machine-readable summary for startup logs and /health."""
        missing = self.missing_relations
        return {
            "status": "degraded" if missing else "healthy",
            "missing_relations": missing,
            "relations": {
                name: {"available": name not in missing, **spec}
                for name, spec in _OPTIONAL_RELATIONS.items()
            },
        }


async def relation_exists(
    conn: psycopg.AsyncConnection[Any],
    relation_name: str,
) -> bool:
    """Return True when relation exists in the current DB schema."""
    # to_regclass avoids transaction-aborting undefined_table errors.
    async with conn.cursor() as cur:
        await cur.execute(
            "SELECT to_regclass(%s) IS NOT NULL",
            (f"public.{relation_name}",),
        )
        row = await cur.fetchone()
    return bool(row and row[0])


async def detect_capabilities(conn: psycopg.AsyncConnection[Any]) -> SchemaCapabilities:
    return SchemaCapabilities(aggregate_table=await relation_exists(conn, "memories"))
