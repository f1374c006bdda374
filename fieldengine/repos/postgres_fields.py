"""PostgresFieldStore: field metadata in the ``voter_fields`` table."""

from typing import Any

import asyncpg

from fieldengine.core.exceptions import DuplicateField
from fieldengine.models.fields import FieldMeta, FieldType
from fieldengine.repos.field_store import FieldStore

_COLUMNS = "name, type, required, default_value, label, description, visible, created_at, updated_at"

# FieldMeta attribute -> column
_UPDATABLE_COLUMNS = {
    "type": "type",
    "required": "required",
    "default": "default_value",
    "label": "label",
    "description": "description",
    "visible": "visible",
}


def _row_to_field(row: asyncpg.Record) -> FieldMeta:
    """Convert a database row to a FieldMeta model."""
    return FieldMeta(
        name=row["name"],
        type=FieldType(row["type"]),
        required=row["required"],
        default=row["default_value"],
        label=row["label"],
        description=row["description"],
        visible=row["visible"] if row["visible"] is not None else True,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _to_column_value(attribute: str, value: Any) -> Any:
    if attribute == "type" and isinstance(value, FieldType):
        return value.value
    return value


class PostgresFieldStore(FieldStore):
    """All field metadata database operations."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def get(self, name: str) -> FieldMeta | None:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_COLUMNS} FROM voter_fields WHERE name = $1", name
            )
        return _row_to_field(row) if row else None

    async def list(self) -> list[FieldMeta]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(f"SELECT {_COLUMNS} FROM voter_fields ORDER BY name")
        return [_row_to_field(row) for row in rows]

    async def insert(self, meta: FieldMeta) -> FieldMeta:
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    INSERT INTO voter_fields (name, type, required, default_value, label, description, visible)
                    VALUES ($1, $2, $3, $4, $5, $6, $7)
                    RETURNING {_COLUMNS}
                    """,
                    meta.name,
                    meta.type.value,
                    meta.required,
                    meta.default,
                    meta.label,
                    meta.description,
                    meta.visible,
                )
            except asyncpg.UniqueViolationError as exc:
                raise DuplicateField(meta.name) from exc
        return _row_to_field(row)

    async def update(self, name: str, changes: dict[str, Any]) -> FieldMeta | None:
        assignments: list[str] = []
        params: list[Any] = []

        for attribute, value in changes.items():
            column = _UPDATABLE_COLUMNS.get(attribute)
            if column is None:
                continue
            params.append(_to_column_value(attribute, value))
            assignments.append(f"{column} = ${len(params)}")

        if not assignments:
            return await self.get(name)

        params.append(name)
        query = f"""
            UPDATE voter_fields
            SET {", ".join(assignments)}, updated_at = now()
            WHERE name = ${len(params)}
            RETURNING {_COLUMNS}
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)
        return _row_to_field(row) if row else None

    async def rename(self, old_name: str, new_name: str) -> FieldMeta | None:
        async with self.pool.acquire() as conn:
            try:
                row = await conn.fetchrow(
                    f"""
                    UPDATE voter_fields
                    SET name = $2, updated_at = now()
                    WHERE name = $1
                    RETURNING {_COLUMNS}
                    """,
                    old_name,
                    new_name,
                )
            except asyncpg.UniqueViolationError as exc:
                raise DuplicateField(new_name) from exc
        return _row_to_field(row) if row else None

    async def delete(self, name: str) -> bool:
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM voter_fields WHERE name = $1", name)
        return result.split()[-1] != "0"
