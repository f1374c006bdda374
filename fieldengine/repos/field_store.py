"""Field registry storage interface and in-memory implementation."""

from datetime import UTC, datetime
from typing import Any

from fieldengine.core.exceptions import DuplicateField
from fieldengine.models.fields import FieldMeta


class FieldStore:
    """
    Abstract storage for field metadata records.

    One record per field name. Implement with Postgres for production, or
    in-memory for tests.
    """

    async def get(self, name: str) -> FieldMeta | None:
        raise NotImplementedError

    async def list(self) -> list[FieldMeta]:
        """Return all records sorted by name."""
        raise NotImplementedError

    async def insert(self, meta: FieldMeta) -> FieldMeta:
        """Insert a record and return it as stored. Raises DuplicateField if the name is taken."""
        raise NotImplementedError

    async def update(self, name: str, changes: dict[str, Any]) -> FieldMeta | None:
        """Apply attribute changes. Returns None if the record does not exist."""
        raise NotImplementedError

    async def rename(self, old_name: str, new_name: str) -> FieldMeta | None:
        """
        Change a record's name in place.

        Returns None if ``old_name`` is absent; raises DuplicateField if
        ``new_name`` is already taken.
        """
        raise NotImplementedError

    async def delete(self, name: str) -> bool:
        """Delete a record. Returns True if one was removed."""
        raise NotImplementedError


class MemoryFieldStore(FieldStore):
    """In-memory field store for testing."""

    def __init__(self) -> None:
        self.records: dict[str, FieldMeta] = {}

    async def get(self, name: str) -> FieldMeta | None:
        record = self.records.get(name)
        return record.model_copy(deep=True) if record else None

    async def list(self) -> list[FieldMeta]:
        return [self.records[name].model_copy(deep=True) for name in sorted(self.records)]

    async def insert(self, meta: FieldMeta) -> FieldMeta:
        if meta.name in self.records:
            raise DuplicateField(meta.name)
        now = datetime.now(UTC)
        record = meta.model_copy(deep=True, update={"created_at": now, "updated_at": now})
        self.records[record.name] = record
        return record.model_copy(deep=True)

    async def update(self, name: str, changes: dict[str, Any]) -> FieldMeta | None:
        record = self.records.get(name)
        if record is None:
            return None
        updated = record.model_copy(
            deep=True, update={**changes, "updated_at": datetime.now(UTC)}
        )
        self.records[name] = updated
        return updated.model_copy(deep=True)

    async def rename(self, old_name: str, new_name: str) -> FieldMeta | None:
        if old_name in self.records and new_name in self.records:
            raise DuplicateField(new_name)
        record = self.records.pop(old_name, None)
        if record is None:
            return None
        renamed = record.model_copy(
            update={"name": new_name, "updated_at": datetime.now(UTC)}
        )
        self.records[new_name] = renamed
        return renamed.model_copy(deep=True)

    async def delete(self, name: str) -> bool:
        return self.records.pop(name, None) is not None
