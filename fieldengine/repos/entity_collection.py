"""
Entity collection interface.

The mutation engine and field registry only talk to voter storage through
this interface, so neither embeds storage-specific query syntax.
Implement with Postgres for production, or in-memory for tests.
"""

import copy
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

_MISSING = object()


@dataclass
class UpdateOp:
    """Set and unset attributes on one voter document."""

    entity_id: str
    set: dict[str, Any] = field(default_factory=dict)
    unset: list[str] = field(default_factory=list)


@dataclass
class BatchResult:
    """Outcome of one unordered bulk write."""

    matched: int = 0
    modified: int = 0
    failed_ids: list[str] = field(default_factory=list)

    def merge(self, other: "BatchResult") -> "BatchResult":
        self.matched += other.matched
        self.modified += other.modified
        self.failed_ids.extend(other.failed_ids)
        return self


class EntityCollection:
    """
    Abstract voter document store.

    Documents are plain dicts with an ``id`` key plus the voter's
    attributes.
    """

    async def find_sample(self, limit: int) -> list[dict[str, Any]]:
        """Return up to ``limit`` documents."""
        raise NotImplementedError

    async def find_where_field_exists(self, name: str, limit: int) -> list[dict[str, Any]]:
        """Return up to ``limit`` documents carrying ``name``."""
        raise NotImplementedError

    async def count_where_field_exists(self, name: str) -> int:
        raise NotImplementedError

    async def count_all(self) -> int:
        raise NotImplementedError

    def stream_all(
        self,
        batch_size: int = 500,
        where_field_exists: str | None = None,
        where_field_missing: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        """
        Stream documents in id order, one page of ``batch_size`` at a time.

        Optional filters restrict the stream to documents that carry, or
        lack, a given attribute.
        """
        raise NotImplementedError

    async def bulk_write(self, ops: list[UpdateOp]) -> BatchResult:
        """
        Apply a batch of unordered updates.

        A failing document is reported in ``failed_ids`` and does not abort
        the rest of the batch. Raises BulkWriteError only when the batch as
        a whole cannot be committed.
        """
        raise NotImplementedError

    async def get(self, entity_id: str) -> dict[str, Any] | None:
        raise NotImplementedError


def apply_update(document: dict[str, Any], op: UpdateOp) -> bool:
    """Apply an UpdateOp to a document in place. Returns True if it changed."""
    changed = False
    for key in op.unset:
        if key in document:
            del document[key]
            changed = True
    for key, value in op.set.items():
        current = document.get(key, _MISSING)
        if current is _MISSING or type(current) is not type(value) or current != value:
            document[key] = copy.deepcopy(value)
            changed = True
    return changed


class MemoryEntityCollection(EntityCollection):
    """In-memory voter collection for tests and local demos."""

    def __init__(self, documents: list[dict[str, Any]] | None = None) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        for document in documents or []:
            doc = copy.deepcopy(document)
            doc.setdefault("id", str(uuid4()))
            self.documents[str(doc["id"])] = doc

    async def find_sample(self, limit: int) -> list[dict[str, Any]]:
        return [copy.deepcopy(doc) for doc in list(self.documents.values())[:limit]]

    async def find_where_field_exists(self, name: str, limit: int) -> list[dict[str, Any]]:
        found = [doc for doc in self.documents.values() if name in doc]
        return [copy.deepcopy(doc) for doc in found[:limit]]

    async def count_where_field_exists(self, name: str) -> int:
        return sum(1 for doc in self.documents.values() if name in doc)

    async def count_all(self) -> int:
        return len(self.documents)

    async def stream_all(
        self,
        batch_size: int = 500,
        where_field_exists: str | None = None,
        where_field_missing: str | None = None,
    ) -> AsyncIterator[dict[str, Any]]:
        for entity_id in sorted(self.documents):
            doc = self.documents.get(entity_id)
            if doc is None:
                continue
            if where_field_exists is not None and where_field_exists not in doc:
                continue
            if where_field_missing is not None and where_field_missing in doc:
                continue
            yield copy.deepcopy(doc)

    async def bulk_write(self, ops: list[UpdateOp]) -> BatchResult:
        result = BatchResult()
        for op in ops:
            doc = self.documents.get(op.entity_id)
            if doc is None:
                continue
            result.matched += 1
            if apply_update(doc, op):
                result.modified += 1
        return result

    async def get(self, entity_id: str) -> dict[str, Any] | None:
        doc = self.documents.get(entity_id)
        return copy.deepcopy(doc) if doc is not None else None
