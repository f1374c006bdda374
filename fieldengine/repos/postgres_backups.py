"""PostgresFieldBackupStore: normalization backups in ``voter_field_backup_runs`` / ``voter_field_backups``."""

from collections.abc import AsyncIterator
from typing import Any

import asyncpg

from fieldengine.models.fields import BackupRun, FieldType
from fieldengine.repos.field_backups import FieldBackupStore

_RUN_COLUMNS = "r.id, r.field_name, r.operation, r.target_type, r.previous_type, r.created_at"

_SELECT_RUNS = f"""
    SELECT {_RUN_COLUMNS}, count(b.entity_id) AS entry_count
    FROM voter_field_backup_runs r
    LEFT JOIN voter_field_backups b ON b.run_id = r.id
"""


def _row_to_run(row: asyncpg.Record) -> BackupRun:
    return BackupRun(
        id=row["id"],
        field_name=row["field_name"],
        operation=row["operation"],
        target_type=FieldType(row["target_type"]) if row["target_type"] else None,
        previous_type=FieldType(row["previous_type"]) if row["previous_type"] else None,
        entry_count=row["entry_count"] or 0,
        created_at=row["created_at"],
    )


class PostgresFieldBackupStore(FieldBackupStore):
    """Backup runs and per-voter prior values."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def create_run(self, run: BackupRun) -> BackupRun:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO voter_field_backup_runs (id, field_name, operation, target_type, previous_type)
                VALUES ($1, $2, $3, $4, $5)
                RETURNING id, field_name, operation, target_type, previous_type, created_at,
                          0 AS entry_count
                """,
                run.id,
                run.field_name,
                run.operation,
                run.target_type.value if run.target_type else None,
                run.previous_type.value if run.previous_type else None,
            )
        return _row_to_run(row)

    async def add_entries(self, run_id: str, entries: list[tuple[str, Any]]) -> None:
        if not entries:
            return
        async with self.pool.acquire() as conn:
            await conn.executemany(
                """
                INSERT INTO voter_field_backups (run_id, entity_id, prior_value)
                VALUES ($1, $2, $3)
                ON CONFLICT (run_id, entity_id) DO NOTHING
                """,
                [(run_id, entity_id, prior_value) for entity_id, prior_value in entries],
            )

    async def get_run(self, run_id: str) -> BackupRun | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(f"{_SELECT_RUNS} WHERE r.id = $1 GROUP BY r.id", run_id)
        return _row_to_run(row) if row else None

    async def list_runs(self) -> list[BackupRun]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"{_SELECT_RUNS} GROUP BY r.id ORDER BY r.created_at DESC")
        return [_row_to_run(row) for row in rows]

    async def stream_entries(
        self, run_id: str, batch_size: int = 500
    ) -> AsyncIterator[tuple[str, Any]]:
        last_id: str | None = None
        while True:
            async with self.pool.acquire() as conn:
                if last_id is None:
                    rows = await conn.fetch(
                        """
                        SELECT entity_id, prior_value FROM voter_field_backups
                        WHERE run_id = $1 ORDER BY entity_id LIMIT $2
                        """,
                        run_id,
                        batch_size,
                    )
                else:
                    rows = await conn.fetch(
                        """
                        SELECT entity_id, prior_value FROM voter_field_backups
                        WHERE run_id = $1 AND entity_id > $2 ORDER BY entity_id LIMIT $3
                        """,
                        run_id,
                        last_id,
                        batch_size,
                    )

            for row in rows:
                yield row["entity_id"], row["prior_value"]

            if len(rows) < batch_size:
                break
            last_id = rows[-1]["entity_id"]
