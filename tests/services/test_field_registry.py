"""Tests for the field registry service."""

import pytest

from fieldengine.core.exceptions import (
    CriticalFieldProtected,
    DuplicateField,
    FieldNotFound,
    InvalidFieldName,
    ReservedField,
)
from fieldengine.core.validation import ReservedFieldPolicy
from fieldengine.models.fields import FieldDefinition, FieldMeta, FieldType
from fieldengine.repos.entity_collection import MemoryEntityCollection
from fieldengine.services.field_registry import FieldRegistry, RegistryRenameOutcome


# ============================================
# DEFINE / LIST
# ============================================


@pytest.mark.asyncio
async def test_define_field(registry, field_store):
    """Test defining a field creates a registry entry."""
    meta = await registry.define(
        FieldDefinition(name="  religion ", type=FieldType.STRING, label="Religion")
    )

    assert meta.name == "religion"
    assert meta.type == FieldType.STRING
    assert meta.visible is True
    assert meta.is_reserved is False
    assert meta.created_at is not None
    assert "religion" in field_store.records


@pytest.mark.asyncio
async def test_define_duplicate_field(registry):
    """Test that defining an existing name fails."""
    await registry.define(FieldDefinition(name="religion", type=FieldType.STRING))
    with pytest.raises(DuplicateField):
        await registry.define(FieldDefinition(name="religion", type=FieldType.NUMBER))


@pytest.mark.asyncio
async def test_define_invalid_name(registry, field_store):
    """Test that invalid names fail without side effects."""
    with pytest.raises(InvalidFieldName):
        await registry.define(FieldDefinition(name="bad name", type=FieldType.STRING))
    assert field_store.records == {}


@pytest.mark.asyncio
async def test_define_reserved_name(field_store, entities):
    """Test that a configured reserved name cannot be defined."""
    registry = FieldRegistry(field_store, entities, ReservedFieldPolicy({"status"}))
    with pytest.raises(ReservedField):
        await registry.define(FieldDefinition(name="status", type=FieldType.STRING))


@pytest.mark.asyncio
async def test_list_sorted(registry):
    """Test that entries are listed by name."""
    for name in ["ward", "age", "religion"]:
        await registry.define(FieldDefinition(name=name, type=FieldType.STRING))

    names = [meta.name for meta in await registry.list()]
    assert names == ["age", "religion", "ward"]


# ============================================
# RENAME
# ============================================


@pytest.mark.asyncio
async def test_rename_moves_entry(registry, field_store):
    """Test renaming to an unused name moves the entry."""
    await registry.define(FieldDefinition(name="mobile", type=FieldType.STRING, label="Mobile"))

    outcome = await registry.rename("mobile", "phone")

    assert outcome == RegistryRenameOutcome.MOVED
    assert "mobile" not in field_store.records
    assert field_store.records["phone"].label == "Mobile"


@pytest.mark.asyncio
async def test_rename_into_existing_entry(registry, field_store):
    """Test renaming onto an existing entry absorbs the source."""
    await registry.define(FieldDefinition(name="mobile", type=FieldType.STRING))
    await registry.define(FieldDefinition(name="phone", type=FieldType.NUMBER, label="Phone"))

    outcome = await registry.rename("mobile", "phone")

    assert outcome == RegistryRenameOutcome.ABSORBED
    assert list(field_store.records) == ["phone"]
    assert field_store.records["phone"].type == FieldType.NUMBER
    assert field_store.records["phone"].label == "Phone"


@pytest.mark.asyncio
async def test_rename_untracked(registry):
    outcome = await registry.rename("mobile", "phone")
    assert outcome == RegistryRenameOutcome.ABSENT


@pytest.mark.asyncio
async def test_rename_guards(registry):
    """Test rename validation and critical field protection."""
    with pytest.raises(CriticalFieldProtected):
        await registry.rename("id", "newId")
    with pytest.raises(CriticalFieldProtected):
        await registry.rename("caste", "voterId")
    with pytest.raises(InvalidFieldName):
        await registry.rename("caste", "1caste")
    with pytest.raises(InvalidFieldName):
        await registry.rename("caste", "caste")


# ============================================
# VISIBILITY / INFERENCE
# ============================================


@pytest.mark.asyncio
async def test_set_visibility_existing(registry):
    await registry.define(FieldDefinition(name="religion", type=FieldType.STRING))
    meta = await registry.set_visibility("religion", False)
    assert meta.visible is False


@pytest.mark.asyncio
async def test_set_visibility_registers_observed_field(registry, field_store):
    """Test that an untracked field seen on voters gets an inferred entry."""
    meta = await registry.set_visibility("mobile", False)

    assert meta.name == "mobile"
    assert meta.type == FieldType.STRING
    assert meta.visible is False
    assert meta.required is False
    assert "mobile" in field_store.records


@pytest.mark.asyncio
async def test_set_visibility_unknown_field(registry):
    with pytest.raises(FieldNotFound) as exc_info:
        await registry.set_visibility("ghost", True)
    assert "not found in schema or voter documents" in exc_info.value.message


@pytest.mark.asyncio
async def test_set_visibility_critical(registry):
    with pytest.raises(CriticalFieldProtected):
        await registry.set_visibility("name", False)


@pytest.mark.asyncio
async def test_infer_field_type_ignores_trailing_null(field_store):
    """Test that 99 numbers and one null infer Number."""
    documents = [{"booth": index} for index in range(99)] + [{"booth": None}]
    registry = FieldRegistry(
        field_store, MemoryEntityCollection(documents), inference_sample_size=100
    )
    assert await registry.infer_field_type("booth") == FieldType.NUMBER


@pytest.mark.asyncio
async def test_infer_field_type_missing(registry):
    assert await registry.infer_field_type("ghost") is None


# ============================================
# UPDATE / REMOVE
# ============================================


@pytest.mark.asyncio
async def test_update_partial(registry):
    """Test that only supplied attributes change."""
    await registry.define(
        FieldDefinition(name="religion", type=FieldType.STRING, label="Religion", required=True)
    )
    meta = await registry.update("religion", {"label": "Faith"})
    assert meta.label == "Faith"
    assert meta.required is True


@pytest.mark.asyncio
async def test_update_missing(registry):
    with pytest.raises(FieldNotFound):
        await registry.update("ghost", {"label": "x"})


@pytest.mark.asyncio
async def test_remove_is_idempotent(registry):
    await registry.define(FieldDefinition(name="religion", type=FieldType.STRING))
    assert await registry.remove("religion") is True
    assert await registry.remove("religion") is False


@pytest.mark.asyncio
async def test_is_reserved_flag(field_store, entities):
    """Test that listed entries report the reserved policy."""
    registry = FieldRegistry(field_store, entities, ReservedFieldPolicy({"status"}))
    await field_store.insert(FieldMeta(name="status", type=FieldType.STRING))
    meta = await registry.get("status")
    assert meta.is_reserved is True
