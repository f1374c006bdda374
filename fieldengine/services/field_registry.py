"""
Field registry service.

CRUD over voter field metadata, independent of the voter documents
themselves. A field may exist only as data on voters (no registry entry)
or only in the registry (not yet materialized on any voter).
"""

from enum import Enum
from typing import Any

from fieldengine.core.exceptions import DuplicateField, FieldNotFound, InvalidFieldName
from fieldengine.core.logging_config import get_logger
from fieldengine.core.validation import (
    FieldNameValidator,
    ReservedFieldPolicy,
    ensure_not_critical,
)
from fieldengine.models.fields import FieldDefinition, FieldMeta, FieldType
from fieldengine.repos.entity_collection import EntityCollection
from fieldengine.repos.field_store import FieldStore
from fieldengine.services.value_codec import infer_type, merge_inferred_type, unwrap

logger = get_logger(__name__)


class RegistryRenameOutcome(str, Enum):
    MOVED = "moved"  # entry renamed in place
    ABSORBED = "absorbed"  # target already had an entry, source entry deleted
    ABSENT = "absent"  # no entry for the source name


class FieldRegistry:
    """Authoritative store of voter field metadata."""

    def __init__(
        self,
        store: FieldStore,
        entities: EntityCollection,
        reserved_policy: ReservedFieldPolicy | None = None,
        inference_sample_size: int = 100,
    ):
        self.store = store
        self.entities = entities
        self.reserved_policy = reserved_policy or ReservedFieldPolicy()
        self.inference_sample_size = inference_sample_size

    def _present(self, meta: FieldMeta) -> FieldMeta:
        return meta.model_copy(update={"is_reserved": self.reserved_policy.is_reserved(meta.name)})

    async def get(self, name: str) -> FieldMeta | None:
        meta = await self.store.get(name)
        return self._present(meta) if meta else None

    async def list(self) -> list[FieldMeta]:
        return [self._present(meta) for meta in await self.store.list()]

    async def define(self, definition: FieldDefinition) -> FieldMeta:
        """
        Create a registry entry.

        Raises:
            InvalidFieldName: name does not match the identifier pattern
            ReservedField: name is reserved by policy
            DuplicateField: an entry with this name already exists
        """
        name = FieldNameValidator.require_valid(definition.name)
        self.reserved_policy.ensure_definable(name)

        if await self.store.get(name) is not None:
            raise DuplicateField(name)

        meta = await self.store.insert(
            FieldMeta(
                name=name,
                type=definition.type,
                required=definition.required,
                default=definition.default,
                label=definition.label,
                description=definition.description,
                visible=definition.visible,
            )
        )
        logger.info(f"Defined field {name} ({meta.type.value})")
        return self._present(meta)

    async def rename(self, old_name: str, new_name: str) -> RegistryRenameOutcome:
        """
        Rename an entry, merging into the target entry if one exists.

        Never raises on an existing target: the source entry is absorbed.
        """
        ensure_not_critical(old_name, "renamed")
        new_name = FieldNameValidator.require_valid(new_name)
        ensure_not_critical(new_name, "renamed")
        if new_name == old_name:
            raise InvalidFieldName(new_name, "New field name must differ from the current name")

        source = await self.store.get(old_name)
        if source is None:
            return RegistryRenameOutcome.ABSENT

        if await self.store.get(new_name) is not None:
            await self.store.delete(old_name)
            logger.info(f"Merging: deleted field metadata {old_name} since {new_name} already exists")
            return RegistryRenameOutcome.ABSORBED

        try:
            await self.store.rename(old_name, new_name)
        except DuplicateField:
            # Target entry was created concurrently
            await self.store.delete(old_name)
            logger.info(f"Merging: deleted field metadata {old_name} after concurrent create of {new_name}")
            return RegistryRenameOutcome.ABSORBED

        return RegistryRenameOutcome.MOVED

    async def infer_field_type(self, name: str) -> FieldType | None:
        """
        Infer a field's type from voters carrying it.

        Returns None if no voter carries the field.
        """
        samples = await self.entities.find_where_field_exists(name, self.inference_sample_size)
        if not samples:
            return None

        inferred: FieldType | None = None
        for document in samples:
            inferred = merge_inferred_type(inferred, infer_type(unwrap(document[name]).actual_value))
        return inferred

    async def set_visibility(self, name: str, visible: bool) -> FieldMeta:
        """
        Set the presentation visibility of a field.

        Untracked fields observed on voters get an entry with an inferred type.
        """
        ensure_not_critical(name, "hidden or shown")

        meta = await self.store.update(name, {"visible": visible})
        if meta is not None:
            return self._present(meta)

        inferred = await self.infer_field_type(name)
        if inferred is None:
            raise FieldNotFound(name, f'Field "{name}" not found in schema or voter documents')

        try:
            meta = await self.store.insert(
                FieldMeta(name=name, type=inferred, required=False, visible=visible)
            )
        except DuplicateField:
            meta = await self.store.update(name, {"visible": visible})
        logger.info(f"Registered observed field {name} as {inferred.value}")
        return self._present(meta)

    async def update(self, name: str, changes: dict[str, Any]) -> FieldMeta:
        """Apply a partial metadata update. Raises FieldNotFound if untracked."""
        meta = await self.store.update(name, changes)
        if meta is None:
            raise FieldNotFound(name)
        return self._present(meta)

    async def remove(self, name: str) -> bool:
        """Delete an entry if present. Idempotent; returns whether one existed."""
        return await self.store.delete(name)
