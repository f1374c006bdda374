"""
Field inspection service.

Read-only views over the field schema: the registry listing and a sampled
report of the attributes actually present on voter documents.
"""

from fieldengine.core.logging_config import get_logger
from fieldengine.core.validation import SYSTEM_FIELDS
from fieldengine.models.fields import FieldMeta, FieldSample, InspectionReport, ObservedField
from fieldengine.repos.entity_collection import EntityCollection
from fieldengine.services.field_registry import FieldRegistry
from fieldengine.services.value_codec import (
    display_sample,
    infer_type,
    merge_inferred_type,
    unwrap,
)

logger = get_logger(__name__)


class FieldInspector:
    """Reports on registered and observed voter fields."""

    def __init__(
        self,
        entities: EntityCollection,
        registry: FieldRegistry,
        sample_size: int = 100,
        max_sample_values: int = 5,
        display_length: int = 50,
    ):
        self.entities = entities
        self.registry = registry
        self.sample_size = sample_size
        self.max_sample_values = max_sample_values
        self.display_length = display_length

    async def list_fields(self) -> list[FieldMeta]:
        """Registry entries sorted by name."""
        return await self.registry.list()

    async def inspect_observed_fields(self, sample_size: int | None = None) -> InspectionReport:
        """
        Sample voter documents and describe every attribute found on them.

        Each field reports an inferred type, its visibility and a few unique
        display samples. Visibility comes from the first legacy ``visible``
        flag seen on a sampled voter, then from the registry, then defaults
        to visible.
        """
        limit = sample_size if sample_size and sample_size > 0 else self.sample_size
        total = await self.entities.count_all()
        documents = await self.entities.find_sample(limit)

        report = InspectionReport(total_entities=total, samples_analyzed=len(documents))
        if not documents:
            return report

        observed: dict[str, ObservedField] = {}
        for document in documents:
            for key, stored in document.items():
                if key in SYSTEM_FIELDS:
                    continue

                entry = observed.setdefault(key, ObservedField())
                actual, legacy_visible, _ = unwrap(stored)
                if entry.visible is None and legacy_visible is not None:
                    entry.visible = legacy_visible

                value_type = infer_type(actual)
                entry.type = merge_inferred_type(entry.type, value_type)

                if len(entry.samples) < self.max_sample_values:
                    shown = display_sample(actual, self.display_length)
                    if all(str(sample.value) != str(shown) for sample in entry.samples):
                        entry.samples.append(FieldSample(value=shown, type=value_type))

        registry_visibility = {meta.name: meta.visible for meta in await self.registry.list()}
        for key in sorted(observed):
            entry = observed[key]
            if entry.visible is None:
                entry.visible = registry_visibility.get(key, True)
            report.fields[key] = entry

        logger.debug(f"Inspected {len(documents)} voters, found {len(report.fields)} fields")
        return report
