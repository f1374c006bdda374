"""
Exceptions raised by the field schema engine.

All engine errors inherit from FieldEngineError and carry the HTTP status
the API layer answers with. Registry-level errors are raised before any
voter document is written.
"""

from typing import Any

from fastapi import status


class FieldEngineError(Exception):
    """
    Base exception for all field schema errors.

    Attributes:
        message: Human-readable error message
        details: Additional error details returned to the caller
    """

    status_code: int = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        return self.message


class InvalidFieldName(FieldEngineError):
    """Field name does not match the allowed identifier pattern."""

    def __init__(self, name: str, reason: str | None = None):
        super().__init__(
            reason
            or "Field name must start with a letter or underscore and contain only letters, numbers, and underscores",
            details={"field_name": name},
        )


class DuplicateField(FieldEngineError):
    """A registry entry with this name already exists (DefineField only)."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, name: str):
        super().__init__(f'Field "{name}" already exists', details={"field_name": name})


class ReservedField(FieldEngineError):
    """Name is reserved by the configured reserved-name policy."""

    def __init__(self, name: str):
        super().__init__(
            f'Field "{name}" is reserved and cannot be defined',
            details={"field_name": name},
        )


class CriticalFieldProtected(FieldEngineError):
    """Critical system fields can never be renamed, deleted or hidden."""

    def __init__(self, name: str, action: str):
        super().__init__(
            f'Field "{name}" is a critical system field and cannot be {action}',
            details={"field_name": name, "action": action},
        )


class FieldNotFound(FieldEngineError):
    """Field exists neither in the registry nor on any voter."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, name: str, message: str | None = None):
        super().__init__(message or f'Field "{name}" not found', details={"field_name": name})


class EntityNotFound(FieldEngineError):
    """Voter document lookup miss."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, entity_id: str):
        super().__init__("Voter not found", details={"voter_id": entity_id})


class BulkWriteError(FieldEngineError):
    """A whole batch could not be committed to the entity collection.

    Raised by EntityCollection implementations and caught per batch by the
    mutation engine, which folds the batch into the failure counters.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, entity_ids: list[str] | None = None):
        super().__init__(message, details={"entity_ids": entity_ids or []})
        self.entity_ids = entity_ids or []


class UnsupportedConversion(FieldEngineError):
    """Type normalization target is not supported."""

    def __init__(self, name: str, target_type: str):
        super().__init__(
            f'Field "{name}" cannot be normalized to {target_type}; supported targets are String and Number',
            details={"field_name": name, "target_type": target_type},
        )


class BackupNotFound(FieldEngineError):
    """No normalization backup exists with this id."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, backup_id: str):
        super().__init__(f'Backup "{backup_id}" not found', details={"backup_id": backup_id})
