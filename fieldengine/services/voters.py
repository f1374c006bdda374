"""Voter document read and update through the value codec."""

from typing import Any

from fieldengine.core.exceptions import BulkWriteError, EntityNotFound
from fieldengine.core.logging_config import get_logger
from fieldengine.core.validation import SYSTEM_FIELDS
from fieldengine.repos.entity_collection import EntityCollection, UpdateOp
from fieldengine.services.value_codec import encode_flat, normalize_document

logger = get_logger(__name__)


class VoterService:
    """Single-voter access with every attribute presented flat."""

    def __init__(self, entities: EntityCollection):
        self.entities = entities

    async def get_voter(self, voter_id: str) -> dict[str, Any]:
        """Return the voter with legacy-wrapped attributes unwrapped."""
        document = await self.entities.get(voter_id)
        if document is None:
            raise EntityNotFound(voter_id)
        return normalize_document(document)

    async def update_voter(self, voter_id: str, attributes: dict[str, Any]) -> dict[str, Any]:
        """
        Set attributes on one voter.

        Identity and timestamp attributes are ignored. Values are written
        flat, so an attribute still stored in the legacy wrapper is
        converted when it is edited.
        """
        changes = {
            key: encode_flat(value)
            for key, value in attributes.items()
            if key not in SYSTEM_FIELDS
        }

        if await self.entities.get(voter_id) is None:
            raise EntityNotFound(voter_id)

        if changes:
            result = await self.entities.bulk_write([UpdateOp(entity_id=voter_id, set=changes)])
            if result.failed_ids:
                raise BulkWriteError(f"Failed to update voter {voter_id}", entity_ids=[voter_id])
            logger.info(f"Updated {len(changes)} attributes on voter {voter_id}")

        return await self.get_voter(voter_id)
