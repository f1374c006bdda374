"""Unit tests for the asyncpg-backed repositories, using mocked connections."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import UUID

import asyncpg
import pytest

from fieldengine.core.exceptions import BulkWriteError, DuplicateField
from fieldengine.models.fields import BackupRun, FieldMeta, FieldType
from fieldengine.repos.entity_collection import UpdateOp
from fieldengine.repos.postgres_backups import PostgresFieldBackupStore
from fieldengine.repos.postgres_entities import PostgresEntityCollection
from fieldengine.repos.postgres_fields import PostgresFieldStore

VOTER_ID = "6f1c1f0e-5d43-4a8e-9a53-1d1f0c7f2a11"
NOW = datetime(2024, 6, 1, tzinfo=UTC)


def make_pool():
    """Pool whose acquire() yields one mocked connection."""
    conn = MagicMock()
    conn.fetch = AsyncMock()
    conn.fetchrow = AsyncMock()
    conn.fetchval = AsyncMock()
    conn.execute = AsyncMock()
    conn.executemany = AsyncMock()

    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    return pool, conn


def field_row(**overrides):
    row = {
        "name": "caste",
        "type": "String",
        "required": False,
        "default_value": None,
        "label": "Caste",
        "description": None,
        "visible": True,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


# ============================================
# FIELD STORE
# ============================================


@pytest.mark.asyncio
async def test_field_store_get():
    pool, conn = make_pool()
    conn.fetchrow.return_value = field_row(visible=None)

    meta = await PostgresFieldStore(pool).get("caste")

    assert meta.name == "caste"
    assert meta.type == FieldType.STRING
    assert meta.visible is True
    assert conn.fetchrow.await_args.args[1] == "caste"


@pytest.mark.asyncio
async def test_field_store_get_missing():
    pool, conn = make_pool()
    conn.fetchrow.return_value = None
    assert await PostgresFieldStore(pool).get("ghost") is None


@pytest.mark.asyncio
async def test_field_store_insert_duplicate():
    """Test that a unique violation surfaces as DuplicateField."""
    pool, conn = make_pool()
    conn.fetchrow.side_effect = asyncpg.exceptions.UniqueViolationError("duplicate key")

    with pytest.raises(DuplicateField):
        await PostgresFieldStore(pool).insert(FieldMeta(name="caste", type=FieldType.STRING))


@pytest.mark.asyncio
async def test_field_store_update_builds_partial_set():
    """Test that only supplied attributes are written."""
    pool, conn = make_pool()
    conn.fetchrow.return_value = field_row(type="Number", default_value=0)

    meta = await PostgresFieldStore(pool).update(
        "caste", {"type": FieldType.NUMBER, "default": 0, "is_reserved": True}
    )

    query, *params = conn.fetchrow.await_args.args
    assert "type = $1" in query
    assert "default_value = $2" in query
    assert "WHERE name = $3" in query
    assert "is_reserved" not in query
    assert params == ["Number", 0, "caste"]
    assert meta.type == FieldType.NUMBER


@pytest.mark.asyncio
async def test_field_store_rename_duplicate():
    pool, conn = make_pool()
    conn.fetchrow.side_effect = asyncpg.exceptions.UniqueViolationError("duplicate key")

    with pytest.raises(DuplicateField):
        await PostgresFieldStore(pool).rename("mobile", "phone")


@pytest.mark.asyncio
async def test_field_store_delete():
    pool, conn = make_pool()
    store = PostgresFieldStore(pool)

    conn.execute.return_value = "DELETE 1"
    assert await store.delete("caste") is True

    conn.execute.return_value = "DELETE 0"
    assert await store.delete("caste") is False


# ============================================
# ENTITY COLLECTION
# ============================================


@pytest.mark.asyncio
async def test_entity_get_returns_document():
    pool, conn = make_pool()
    conn.fetchrow.return_value = {
        "id": UUID(VOTER_ID),
        "data": {"caste": "OBC"},
        "created_at": NOW,
        "updated_at": NOW,
    }

    document = await PostgresEntityCollection(pool).get(VOTER_ID)

    assert document == {"id": VOTER_ID, "caste": "OBC", "created_at": NOW, "updated_at": NOW}


@pytest.mark.asyncio
async def test_entity_get_invalid_id():
    pool, conn = make_pool()
    assert await PostgresEntityCollection(pool).get("not-a-uuid") is None
    conn.fetchrow.assert_not_awaited()


@pytest.mark.asyncio
async def test_entity_stream_filters():
    """Test that stream filters become JSONB key predicates."""
    pool, conn = make_pool()
    conn.fetch.return_value = [
        {"id": UUID(VOTER_ID), "data": {"mobile": "1"}, "created_at": NOW, "updated_at": NOW}
    ]

    documents = [
        doc
        async for doc in PostgresEntityCollection(pool).stream_all(
            batch_size=50, where_field_exists="mobile", where_field_missing="phone"
        )
    ]

    assert documents[0]["mobile"] == "1"
    query, *params = conn.fetch.call_args.args
    assert "WHERE data ? $1 AND NOT (data ? $2) ORDER BY id LIMIT $3" in query
    assert params == ["mobile", "phone", 50]


@pytest.mark.asyncio
async def test_entity_stream_pages_by_id_and_releases_connection():
    """Test that each page is fetched on its own short-lived connection."""
    pool, conn = make_pool()
    first_id = UUID("00000000-0000-0000-0000-000000000001")
    second_id = UUID("00000000-0000-0000-0000-000000000002")
    third_id = UUID("00000000-0000-0000-0000-000000000003")

    def row(entity_id):
        return {"id": entity_id, "data": {}, "created_at": NOW, "updated_at": NOW}

    conn.fetch.side_effect = [[row(first_id), row(second_id)], [row(third_id)]]
    released_between_pages = []

    stream = PostgresEntityCollection(pool).stream_all(batch_size=2, where_field_exists="caste")
    ids = []
    async for document in stream:
        ids.append(document["id"])
        released_between_pages.append(pool.acquire.return_value.__aexit__.await_count)

    assert ids == [str(first_id), str(second_id), str(third_id)]
    assert pool.acquire.call_count == 2
    # the first page's connection is released before any document is yielded
    assert released_between_pages[0] == 1

    first_query, *first_params = conn.fetch.await_args_list[0].args
    second_query, *second_params = conn.fetch.await_args_list[1].args
    assert "id >" not in first_query
    assert first_params == ["caste", 2]
    assert "WHERE data ? $1 AND id > $2 ORDER BY id LIMIT $3" in second_query
    assert second_params == ["caste", second_id, 2]


@pytest.mark.asyncio
async def test_entity_bulk_write_counts_and_failures():
    """Test per-document failures do not abort the batch."""
    pool, conn = make_pool()
    other_id = "0b7c8f4e-1a2b-4c3d-8e9f-0a1b2c3d4e5f"
    conn.fetchrow.side_effect = [
        {"matched": 1, "modified": 1},
        asyncpg.exceptions.DataError("invalid input"),
    ]

    result = await PostgresEntityCollection(pool).bulk_write(
        [
            UpdateOp(entity_id=VOTER_ID, set={"caste": "SC"}, unset=["old"]),
            UpdateOp(entity_id=other_id, set={"caste": "SC"}),
            UpdateOp(entity_id="bad-id", set={"caste": "SC"}),
        ]
    )

    assert result.matched == 1
    assert result.modified == 1
    assert result.failed_ids == [other_id, "bad-id"]
    first_call = conn.fetchrow.await_args_list[0].args
    assert first_call[1:] == (UUID(VOTER_ID), ["old"], {"caste": "SC"})


@pytest.mark.asyncio
async def test_entity_bulk_write_connection_failure():
    pool, _ = make_pool()
    pool.acquire.side_effect = OSError("connection refused")

    with pytest.raises(BulkWriteError) as exc_info:
        await PostgresEntityCollection(pool).bulk_write([UpdateOp(entity_id=VOTER_ID)])
    assert exc_info.value.entity_ids == [VOTER_ID]


@pytest.mark.asyncio
async def test_entity_bulk_write_empty():
    pool, _ = make_pool()
    result = await PostgresEntityCollection(pool).bulk_write([])
    assert result.matched == 0
    pool.acquire.assert_not_called()


# ============================================
# BACKUP STORE
# ============================================


def backup_run_row(**overrides):
    row = {
        "id": "typefix_20261019101500_booth_3fa9c1",
        "field_name": "booth",
        "operation": "NormalizeFieldType",
        "target_type": "Number",
        "previous_type": "String",
        "created_at": NOW,
        "entry_count": 2,
    }
    row.update(overrides)
    return row


@pytest.mark.asyncio
async def test_backup_create_run():
    pool, conn = make_pool()
    conn.fetchrow.return_value = backup_run_row(entry_count=0, previous_type=None)

    run = await PostgresFieldBackupStore(pool).create_run(
        BackupRun(
            id="typefix_20261019101500_booth_3fa9c1",
            field_name="booth",
            operation="NormalizeFieldType",
            target_type=FieldType.NUMBER,
        )
    )

    assert run.previous_type is None
    assert run.target_type == FieldType.NUMBER
    args = conn.fetchrow.await_args.args
    assert "INSERT INTO voter_field_backup_runs" in args[0]
    assert args[1:] == (
        "typefix_20261019101500_booth_3fa9c1",
        "booth",
        "NormalizeFieldType",
        "Number",
        None,
    )


@pytest.mark.asyncio
async def test_backup_add_entries_keeps_first_value():
    pool, conn = make_pool()
    store = PostgresFieldBackupStore(pool)

    await store.add_entries("run-1", [(VOTER_ID, "12"), ("other", {"value": "3", "visible": True})])
    await store.add_entries("run-1", [])

    conn.executemany.assert_awaited_once()
    query, records = conn.executemany.await_args.args
    assert "ON CONFLICT (run_id, entity_id) DO NOTHING" in query
    assert records == [("run-1", VOTER_ID, "12"), ("run-1", "other", {"value": "3", "visible": True})]


@pytest.mark.asyncio
async def test_backup_list_and_get_runs():
    pool, conn = make_pool()
    conn.fetch.return_value = [backup_run_row()]
    conn.fetchrow.return_value = None
    store = PostgresFieldBackupStore(pool)

    runs = await store.list_runs()

    assert runs[0].entry_count == 2
    assert runs[0].previous_type == FieldType.STRING
    assert "ORDER BY r.created_at DESC" in conn.fetch.await_args.args[0]
    assert await store.get_run("missing") is None


@pytest.mark.asyncio
async def test_backup_stream_entries_pages_by_entity_id():
    pool, conn = make_pool()
    conn.fetch.side_effect = [
        [{"entity_id": "a", "prior_value": "1"}, {"entity_id": "b", "prior_value": None}],
        [],
    ]

    entries = [entry async for entry in PostgresFieldBackupStore(pool).stream_entries("run-1", batch_size=2)]

    assert entries == [("a", "1"), ("b", None)]
    second_query, *second_params = conn.fetch.await_args_list[1].args
    assert "entity_id > $2" in second_query
    assert second_params == ["run-1", "b", 2]
