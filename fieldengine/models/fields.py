"""Field schema models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field, model_validator


class FieldType(str, Enum):
    """Logical type of a voter field."""

    STRING = "String"
    NUMBER = "Number"
    BOOLEAN = "Boolean"
    DATE = "Date"
    ARRAY = "Array"
    OBJECT = "Object"
    NULL = "Null"
    UNKNOWN = "Unknown"


class FieldMeta(BaseModel):
    """Registry record for a known voter field."""

    name: str
    type: FieldType
    required: bool = False
    default: Any = None
    label: str | None = None
    description: str | None = None
    visible: bool = True
    is_reserved: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


class FieldDefinition(BaseModel):
    """Field definition request."""

    name: str
    type: FieldType
    required: bool = False
    default: Any = None
    label: str | None = None
    description: str | None = None
    visible: bool = True


NON_NULLABLE_META_ATTRIBUTES = ("type", "required", "visible")


class FieldMetaUpdate(BaseModel):
    """Partial field metadata update. Only attributes that were set are applied."""

    type: FieldType | None = None
    required: bool | None = None
    default: Any = None
    label: str | None = None
    description: str | None = None
    visible: bool | None = None

    @model_validator(mode="after")
    def reject_null_for_required_attributes(self) -> "FieldMetaUpdate":
        """type, required and visible may be omitted but never cleared."""
        for key in NON_NULLABLE_META_ATTRIBUTES:
            if key in self.model_fields_set and getattr(self, key) is None:
                raise ValueError(f"{key} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        """Return the attributes explicitly supplied by the caller."""
        return {key: getattr(self, key) for key in self.model_fields_set}


class BulkCounters(BaseModel):
    """Aggregate counters every bulk mutation reports."""

    entities_checked: int = 0
    entities_matched: int = 0
    entities_modified: int = 0
    failed_ids: list[str] = Field(default_factory=list)
    failed_batches: int = 0
    batches: int = 0
    completed: bool = True
    message: str = ""

    @computed_field
    @property
    def partial_failure(self) -> bool:
        return bool(self.failed_ids) or self.failed_batches > 0


class AddFieldResult(BulkCounters):
    field_name: str
    default: Any = None
    total_entities: int = 0


class DefineFieldResult(BaseModel):
    field: FieldMeta
    backfill: AddFieldResult


class RenameResult(BulkCounters):
    old_field_name: str
    new_field_name: str
    renamed_count: int = 0
    merged_count: int = 0
    target_preserved_count: int = 0
    source_adopted_count: int = 0
    merged: bool = False
    registry_outcome: str = "absent"
    total_entities: int = 0
    entities_with_field: int = 0
    entities_without_field: int = 0


class FlattenResult(BulkCounters):
    flattened_value_count: int = 0


class DeleteResult(BulkCounters):
    field_name: str
    entities_affected: int = 0
    was_in_registry: bool = False


class VisibilityResult(BaseModel):
    field: FieldMeta
    per_entity: bool = False
    entities: BulkCounters | None = None
    message: str = ""


class NormalizeResult(BulkCounters):
    field_name: str
    target_type: FieldType
    dry_run: bool = True
    analyzed: int = 0
    needs_fix: int = 0
    fixed: int = 0
    backup_id: str | None = None


class FieldSample(BaseModel):
    value: Any = None
    type: FieldType


class ObservedField(BaseModel):
    type: FieldType = FieldType.UNKNOWN
    visible: bool | None = None
    samples: list[FieldSample] = Field(default_factory=list)


class InspectionReport(BaseModel):
    fields: dict[str, ObservedField] = Field(default_factory=dict)
    total_entities: int = 0
    samples_analyzed: int = 0


@dataclass
class MutationProgress:
    """Progress snapshot handed to callers after every committed batch."""

    operation: str
    field_name: str
    batch_index: int
    entities_checked: int
    entities_modified: int


class BackupRun(BaseModel):
    """Prior values saved before a type normalization rewrote them."""

    id: str
    field_name: str
    operation: str
    target_type: FieldType | None = None
    previous_type: FieldType | None = None
    entry_count: int = 0
    created_at: datetime | None = None


class RestoreResult(BulkCounters):
    backup_id: str
    field_name: str
    dry_run: bool = False
    entries: int = 0
    restored: int = 0
    registry_type_restored: bool = False
