"""
Pytest configuration and fixtures for field schema engine tests.

This module provides:
- In-memory voter collection and field registry storage
- Wired registry, mutation engine, inspector and voter service
- FastAPI async test client over the in-memory backends
"""

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("STORAGE_BACKEND", "memory")

from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from fieldengine.repos.entity_collection import MemoryEntityCollection
from fieldengine.repos.field_store import MemoryFieldStore
from fieldengine.services.bulk_mutations import FieldMutationEngine
from fieldengine.services.field_inspection import FieldInspector
from fieldengine.services.field_registry import FieldRegistry
from fieldengine.services.voters import VoterService

VOTER_A = "00000000-0000-0000-0000-00000000000a"
VOTER_B = "00000000-0000-0000-0000-00000000000b"
VOTER_C = "00000000-0000-0000-0000-00000000000c"


@pytest.fixture
def voter_documents() -> list[dict[str, Any]]:
    """Three voters mixing flat, legacy-wrapped and missing attributes."""
    return [
        {"id": VOTER_A, "name": "Asha", "voterID": "V-001", "caste": "OBC", "mobile": "9800000001"},
        {
            "id": VOTER_B,
            "name": "Bala",
            "voterID": "V-002",
            "caste": {"value": "SC", "visible": False},
            "mobile": {"value": "9800000002", "visible": True},
        },
        {"id": VOTER_C, "name": "Chitra", "voterID": "V-003"},
    ]


@pytest.fixture
def entities(voter_documents) -> MemoryEntityCollection:
    return MemoryEntityCollection(voter_documents)


@pytest.fixture
def field_store() -> MemoryFieldStore:
    return MemoryFieldStore()


@pytest.fixture
def registry(field_store, entities) -> FieldRegistry:
    return FieldRegistry(field_store, entities)


@pytest.fixture
def engine(entities, registry) -> FieldMutationEngine:
    return FieldMutationEngine(entities, registry, batch_size=2, rename_batch_size=2)


@pytest.fixture
def inspector(entities, registry) -> FieldInspector:
    return FieldInspector(entities, registry)


@pytest.fixture
def voter_service(entities) -> VoterService:
    return VoterService(entities)


@pytest.fixture
async def async_client(entities, field_store):
    """FastAPI async test client wired to the in-memory backends."""
    from fieldengine.main import app, attach_services

    attach_services(app, entities, field_store)
    app.state.pool = None

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client
