"""
PostgresEntityCollection: voter documents stored as JSONB.

Uses one table:
- voters: id UUID, data JSONB (all voter attributes), created_at, updated_at
"""

from collections.abc import AsyncIterator
from typing import Any
from uuid import UUID

import asyncpg

from fieldengine.core.exceptions import BulkWriteError
from fieldengine.core.logging_config import get_logger
from fieldengine.repos.entity_collection import BatchResult, EntityCollection, UpdateOp

logger = get_logger(__name__)

_SELECT_COLUMNS = "SELECT id, data, created_at, updated_at FROM voters"

# matched/modified mirror an unordered document-store bulk write: a row
# whose data would not change is matched but not rewritten.
_UPDATE_ONE = """
    WITH target AS (
        SELECT id, data FROM voters WHERE id = $1 FOR UPDATE
    ), updated AS (
        UPDATE voters v
        SET data = (t.data - $2::text[]) || $3::jsonb,
            updated_at = now()
        FROM target t
        WHERE v.id = t.id
          AND ((t.data - $2::text[]) || $3::jsonb) IS DISTINCT FROM t.data
        RETURNING v.id
    )
    SELECT (SELECT count(*) FROM target) AS matched,
           (SELECT count(*) FROM updated) AS modified
"""


def _row_to_document(row: asyncpg.Record) -> dict[str, Any]:
    """Convert a database row to a voter document."""
    data = row["data"] or {}
    return {
        "id": str(row["id"]),
        **data,
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _parse_id(entity_id: str) -> UUID | None:
    try:
        return UUID(str(entity_id))
    except ValueError:
        return None


class PostgresEntityCollection(EntityCollection):
    """Voter collection backed by the ``voters`` table."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def find_sample(self, limit: int) -> list[dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"{_SELECT_COLUMNS} ORDER BY id LIMIT $1", limit)
        return [_row_to_document(row) for row in rows]

    async def find_where_field_exists(self, name: str, limit: int) -> list[dict[str, Any]]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                f"{_SELECT_COLUMNS} WHERE data ? $1 ORDER BY id LIMIT $2",
                name,
                limit,
            )
        return [_row_to_document(row) for row in rows]

    async def count_where_field_exists(self, name: str) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT count(*) FROM voters WHERE data ? $1", name)

    async def count_all(self) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT count(*) FROM voters")

    async def stream_all(
        self,
        batch_size: int = 500,
        where_field_exists: str | None = None,
        where_field_missing: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        conditions: list[str] = []
        params: list[Any] = []

        if where_field_exists is not None:
            params.append(where_field_exists)
            conditions.append(f"data ? ${len(params)}")

        if where_field_missing is not None:
            params.append(where_field_missing)
            conditions.append(f"NOT (data ? ${len(params)})")

        # Keyset pages: no connection is held between pages, so batch writes
        # made by the caller mid-scan never wait on the stream's connection.
        last_id: UUID | None = None
        while True:
            page_conditions = list(conditions)
            page_params = list(params)
            if last_id is not None:
                page_params.append(last_id)
                page_conditions.append(f"id > ${len(page_params)}")
            page_params.append(batch_size)

            query = _SELECT_COLUMNS
            if page_conditions:
                query += " WHERE " + " AND ".join(page_conditions)
            query += f" ORDER BY id LIMIT ${len(page_params)}"

            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *page_params)

            for row in rows:
                yield _row_to_document(row)

            if len(rows) < batch_size:
                break
            last_id = rows[-1]["id"]

    async def bulk_write(self, ops: list[UpdateOp]) -> BatchResult:
        result = BatchResult()
        if not ops:
            return result

        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    for op in ops:
                        entity_uuid = _parse_id(op.entity_id)
                        if entity_uuid is None:
                            result.failed_ids.append(op.entity_id)
                            continue
                        try:
                            # Savepoint per document so one bad row does not
                            # roll back the batch
                            async with conn.transaction():
                                row = await conn.fetchrow(
                                    _UPDATE_ONE, entity_uuid, list(op.unset), op.set
                                )
                        except (asyncpg.PostgresError, asyncpg.exceptions.DataError) as exc:
                            logger.warning(f"Update failed for voter {op.entity_id}: {exc}")
                            result.failed_ids.append(op.entity_id)
                            continue
                        result.matched += row["matched"]
                        result.modified += row["modified"]
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
            raise BulkWriteError(
                f"Bulk write of {len(ops)} voters failed: {exc}",
                entity_ids=[op.entity_id for op in ops],
            ) from exc

        return result

    async def get(self, entity_id: str) -> dict[str, Any] | None:
        entity_uuid = _parse_id(entity_id)
        if entity_uuid is None:
            return None
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"{_SELECT_COLUMNS} WHERE id = $1", entity_uuid)
        return _row_to_document(row) if row else None

