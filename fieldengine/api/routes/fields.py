"""Voter field schema API routes."""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field

from fieldengine.api.deps import get_field_engine, get_field_inspector
from fieldengine.core.responses import success_response
from fieldengine.models.fields import FieldDefinition, FieldMetaUpdate, FieldType
from fieldengine.services.bulk_mutations import FieldMutationEngine
from fieldengine.services.field_inspection import FieldInspector

router = APIRouter(prefix="/voters/fields", tags=["Voter Fields"])


class RenameFieldRequest(BaseModel):
    """Request to rename a field."""

    new_field_name: str


class VisibilityRequest(BaseModel):
    """Request to change field visibility."""

    visible: bool
    per_entity: bool = False


class NormalizeRequest(BaseModel):
    """Request to normalize a field's value types."""

    target_type: FieldType
    dry_run: bool = True


class RestoreRequest(BaseModel):
    """Request to restore a normalization backup."""

    dry_run: bool = False


@router.get("", response_model=dict)
async def list_fields(
    inspector: Annotated[FieldInspector, Depends(get_field_inspector)],
) -> dict[str, Any]:
    """List all registered voter fields, sorted by name."""
    fields = await inspector.list_fields()
    return success_response(data=[field.model_dump() for field in fields])


# Must be registered before /{field_name} routes
@router.get("/existing", response_model=dict)
async def inspect_existing_fields(
    inspector: Annotated[FieldInspector, Depends(get_field_inspector)],
    sample_size: Annotated[int | None, Query(ge=1, le=1000)] = None,
) -> dict[str, Any]:
    """
    Describe the attributes present on a sample of voter documents.

    **Response:**
    - fields: per-field inferred type, visibility and sample values
    - total_entities: number of voters in the collection
    - samples_analyzed: number of voters sampled
    """
    report = await inspector.inspect_observed_fields(sample_size)
    return success_response(data=report.model_dump())


@router.get("/backups", response_model=dict)
async def list_backups(
    engine: Annotated[FieldMutationEngine, Depends(get_field_engine)],
) -> dict[str, Any]:
    """List normalization backups, newest first."""
    runs = await engine.list_backups()
    return success_response(data=[run.model_dump() for run in runs])


@router.post("/backups/{backup_id}/restore", response_model=dict)
async def restore_backup(
    backup_id: str,
    request: RestoreRequest,
    engine: Annotated[FieldMutationEngine, Depends(get_field_engine)],
) -> dict[str, Any]:
    """
    Put back the values a normalization run rewrote.

    The backup is kept, so a restore can be repeated.
    """
    result = await engine.restore_backup(backup_id, dry_run=request.dry_run)
    return success_response(data=result.model_dump(), message=result.message)


@router.post("", response_model=dict, status_code=status.HTTP_201_CREATED)
async def define_field(
    definition: FieldDefinition,
    engine: Annotated[FieldMutationEngine, Depends(get_field_engine)],
) -> dict[str, Any]:
    """
    Register a new voter field and backfill its default.

    Every voter missing the field gets the default value (null when none
    is given). Existing values are never overwritten.
    """
    result = await engine.define_field(definition)
    return success_response(data=result.model_dump(), message=result.backfill.message)


@router.post("/convert-all", response_model=dict)
async def convert_all_fields(
    engine: Annotated[FieldMutationEngine, Depends(get_field_engine)],
) -> dict[str, Any]:
    """Rewrite every legacy ``{value, visible}`` attribute to its raw value."""
    result = await engine.flatten_all()
    return success_response(data=result.model_dump(), message=result.message)


@router.post("/{field_name}/rename", response_model=dict)
async def rename_field(
    field_name: str,
    request: RenameFieldRequest,
    engine: Annotated[FieldMutationEngine, Depends(get_field_engine)],
) -> dict[str, Any]:
    """
    Rename a field on every voter.

    If the new name already exists the two fields are merged: a meaningful
    value under the new name is kept, otherwise the old value is adopted.
    """
    result = await engine.rename_field(field_name, request.new_field_name)
    return success_response(data=result.model_dump(), message=result.message)


@router.put("/{field_name}/visibility", response_model=dict)
async def update_field_visibility(
    field_name: str,
    request: VisibilityRequest,
    engine: Annotated[FieldMutationEngine, Depends(get_field_engine)],
) -> dict[str, Any]:
    """Show or hide a field."""
    result = await engine.toggle_visibility(
        field_name, request.visible, per_entity=request.per_entity
    )
    return success_response(data=result.model_dump(), message=result.message)


@router.post("/{field_name}/normalize", response_model=dict)
async def normalize_field(
    field_name: str,
    request: NormalizeRequest,
    engine: Annotated[FieldMutationEngine, Depends(get_field_engine)],
) -> dict[str, Any]:
    """Convert a field's values to String or Number. Dry run by default."""
    result = await engine.normalize_field_type(
        field_name, request.target_type, dry_run=request.dry_run
    )
    return success_response(data=result.model_dump(), message=result.message)


@router.put("/{field_name}", response_model=dict)
async def update_field(
    field_name: str,
    update: FieldMetaUpdate,
    engine: Annotated[FieldMutationEngine, Depends(get_field_engine)],
) -> dict[str, Any]:
    """Update field metadata. A new default is backfilled onto voters missing the field."""
    meta, backfill = await engine.update_field_meta(field_name, update)
    return success_response(
        data={
            "field": meta.model_dump(),
            "backfill": backfill.model_dump() if backfill else None,
        },
        message=f'Field "{meta.name}" updated successfully',
    )


@router.delete("/{field_name}", response_model=dict)
async def delete_field(
    field_name: str,
    engine: Annotated[FieldMutationEngine, Depends(get_field_engine)],
) -> dict[str, Any]:
    """Delete a field from the registry and from every voter."""
    result = await engine.delete_field(field_name)
    return success_response(data=result.model_dump(), message=result.message)
