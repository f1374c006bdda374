"""Tests for the field inspection service."""

import pytest

from fieldengine.models.fields import FieldDefinition, FieldMeta, FieldType
from fieldengine.repos.entity_collection import MemoryEntityCollection
from fieldengine.repos.field_store import MemoryFieldStore
from fieldengine.services.field_inspection import FieldInspector
from fieldengine.services.field_registry import FieldRegistry


@pytest.mark.asyncio
async def test_inspect_observed_fields(inspector):
    """Test the sampled report over flat and legacy attributes."""
    report = await inspector.inspect_observed_fields()

    assert report.total_entities == 3
    assert report.samples_analyzed == 3
    assert list(report.fields) == ["caste", "mobile", "name", "voterID"]

    caste = report.fields["caste"]
    assert caste.type == FieldType.STRING
    assert caste.visible is False
    assert [sample.value for sample in caste.samples] == ["OBC", "SC"]

    mobile = report.fields["mobile"]
    assert mobile.visible is True
    assert all(sample.type == FieldType.STRING for sample in mobile.samples)


@pytest.mark.asyncio
async def test_inspect_skips_system_fields():
    entities = MemoryEntityCollection(
        [{"id": "v1", "_id": "x", "__v": 0, "createdAt": "2024-01-01", "ward": 4}]
    )
    inspector = FieldInspector(entities, FieldRegistry(MemoryFieldStore(), entities))

    report = await inspector.inspect_observed_fields()
    assert list(report.fields) == ["ward"]
    assert report.fields["ward"].type == FieldType.NUMBER


@pytest.mark.asyncio
async def test_inspect_visibility_from_registry():
    """Test that registry visibility applies when no legacy flag is seen."""
    entities = MemoryEntityCollection([{"id": "v1", "ward": 4, "booth": 2}])
    store = MemoryFieldStore()
    await store.insert(FieldMeta(name="ward", type=FieldType.NUMBER, visible=False))
    inspector = FieldInspector(entities, FieldRegistry(store, entities))

    report = await inspector.inspect_observed_fields()
    assert report.fields["ward"].visible is False
    assert report.fields["booth"].visible is True


@pytest.mark.asyncio
async def test_inspect_legacy_flag_wins_over_registry():
    entities = MemoryEntityCollection([{"id": "v1", "ward": {"value": 4, "visible": True}}])
    store = MemoryFieldStore()
    await store.insert(FieldMeta(name="ward", type=FieldType.NUMBER, visible=False))
    inspector = FieldInspector(entities, FieldRegistry(store, entities))

    report = await inspector.inspect_observed_fields()
    assert report.fields["ward"].visible is True


@pytest.mark.asyncio
async def test_inspect_type_is_first_specific_and_samples_are_unique():
    """Test that null samples do not fix the type and duplicates are dropped."""
    documents = [{"id": f"v{index}", "age": value} for index, value in enumerate([None, 30, 30, 41, 52, 63])]
    entities = MemoryEntityCollection(documents)
    inspector = FieldInspector(
        entities, FieldRegistry(MemoryFieldStore(), entities), max_sample_values=3
    )

    report = await inspector.inspect_observed_fields()
    age = report.fields["age"]
    assert age.type == FieldType.NUMBER
    assert [sample.value for sample in age.samples] == [None, 30, 41]
    assert age.samples[0].type == FieldType.NULL


@pytest.mark.asyncio
async def test_inspect_sample_size_limits_documents():
    entities = MemoryEntityCollection([{"id": f"v{index}", "ward": index} for index in range(10)])
    inspector = FieldInspector(entities, FieldRegistry(MemoryFieldStore(), entities))

    report = await inspector.inspect_observed_fields(sample_size=4)
    assert report.samples_analyzed == 4
    assert report.total_entities == 10


@pytest.mark.asyncio
async def test_inspect_defaults_read_100_voters_and_keep_5_samples():
    entities = MemoryEntityCollection([{"id": f"v{index:03d}", "ward": index} for index in range(120)])
    inspector = FieldInspector(entities, FieldRegistry(MemoryFieldStore(), entities))

    report = await inspector.inspect_observed_fields()

    assert report.samples_analyzed == 100
    assert [sample.value for sample in report.fields["ward"].samples] == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_inspect_empty_collection():
    entities = MemoryEntityCollection()
    inspector = FieldInspector(entities, FieldRegistry(MemoryFieldStore(), entities))

    report = await inspector.inspect_observed_fields()
    assert report.fields == {}
    assert report.total_entities == 0


@pytest.mark.asyncio
async def test_list_fields(inspector, registry):
    await registry.define(FieldDefinition(name="ward", type=FieldType.NUMBER))
    await registry.define(FieldDefinition(name="age", type=FieldType.NUMBER))

    fields = await inspector.list_fields()
    assert [field.name for field in fields] == ["age", "ward"]
