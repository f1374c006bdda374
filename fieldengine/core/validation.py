"""Field name validation and protection policies."""

import re

from fieldengine.core.exceptions import (
    CriticalFieldProtected,
    InvalidFieldName,
    ReservedField,
)


class FieldNameValidator:
    """Validate custom voter field names."""

    PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
    MAX_LENGTH = 64

    @classmethod
    def validate(cls, name: str | None) -> tuple[bool, str | None]:
        """
        Validate a field name.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if not name or not name.strip():
            return False, "Field name is required"

        if len(name) > cls.MAX_LENGTH:
            return False, f"Field name must not exceed {cls.MAX_LENGTH} characters"

        if not cls.PATTERN.match(name):
            return (
                False,
                "Field name must start with a letter or underscore and contain only letters, numbers, and underscores",
            )

        return True, None

    @classmethod
    def require_valid(cls, name: str | None) -> str:
        """Return the trimmed name or raise InvalidFieldName."""
        trimmed = (name or "").strip()
        is_valid, error = cls.validate(trimmed)
        if not is_valid:
            raise InvalidFieldName(trimmed, error)
        return trimmed


# Identity and timestamp attributes of a voter document. Compared
# case-insensitively.
CRITICAL_FIELDS = frozenset(
    {
        "_id",
        "id",
        "name",
        "voterID",
        "voterId",
        "createdAt",
        "updatedAt",
        "created_at",
        "updated_at",
    }
)

_CRITICAL_LOWER = frozenset(field.lower() for field in CRITICAL_FIELDS)

# Attributes that belong to the storage layer and are never treated as
# custom fields.
SYSTEM_FIELDS = frozenset({"_id", "__v", "id", "createdAt", "updatedAt", "created_at", "updated_at"})


def is_critical_field(name: str) -> bool:
    """Check whether a name refers to a critical system field."""
    return name.strip().lower() in _CRITICAL_LOWER


def ensure_not_critical(name: str, action: str) -> None:
    """Raise CriticalFieldProtected if the field is critical."""
    if is_critical_field(name):
        raise CriticalFieldProtected(name, action)


class ReservedFieldPolicy:
    """
    Pluggable reserved-name policy for DefineField.

    The default deployment reserves nothing; operators can list names
    through RESERVED_FIELD_NAMES.
    """

    def __init__(self, reserved_names: set[str] | frozenset[str] | None = None):
        self.reserved_names = frozenset(reserved_names or ())

    def is_reserved(self, name: str) -> bool:
        return name in self.reserved_names or is_critical_field(name)

    def ensure_definable(self, name: str) -> None:
        """Raise ReservedField if the policy forbids defining this name."""
        if name in self.reserved_names:
            raise ReservedField(name)
