"""
Value codec for stored voter attributes.

Earlier versions of the voter screens wrote custom attributes as
``{"value": <raw>, "visible": <bool>}``. Current code writes the raw value
directly. ``decode`` is the one place that tells the two encodings apart;
everything else works on the decoded logical value.
"""

import json
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, NamedTuple

from fieldengine.core.validation import SYSTEM_FIELDS
from fieldengine.models.fields import FieldType

LEGACY_VALUE_KEY = "value"
LEGACY_VISIBLE_KEY = "visible"


class Unwrapped(NamedTuple):
    actual_value: Any
    legacy_visible: bool | None
    was_legacy_format: bool


@dataclass(frozen=True)
class FlatValue:
    """Attribute stored as its raw value."""

    value: Any

    @property
    def actual_value(self) -> Any:
        return self.value

    @property
    def legacy_visible(self) -> bool | None:
        return None

    @property
    def was_legacy_format(self) -> bool:
        return False


@dataclass(frozen=True)
class LegacyWrappedValue:
    """Attribute stored as ``{"value": ..., "visible": ...}``."""

    value: Any
    visible: bool | None = None

    @property
    def actual_value(self) -> Any:
        return self.value

    @property
    def legacy_visible(self) -> bool | None:
        return self.visible

    @property
    def was_legacy_format(self) -> bool:
        return True


DecodedValue = FlatValue | LegacyWrappedValue


def is_legacy_wrapped(stored: Any) -> bool:
    """Check whether a stored value uses the legacy wrapper."""
    return isinstance(stored, dict) and LEGACY_VALUE_KEY in stored


def decode(stored: Any) -> DecodedValue:
    """Decode a stored attribute into its tagged logical form."""
    if is_legacy_wrapped(stored):
        visible = stored.get(LEGACY_VISIBLE_KEY)
        return LegacyWrappedValue(
            value=stored[LEGACY_VALUE_KEY],
            visible=visible if isinstance(visible, bool) else None,
        )
    return FlatValue(stored)


def unwrap(stored: Any) -> Unwrapped:
    """Return ``(actual_value, legacy_visible, was_legacy_format)`` for a stored value."""
    decoded = decode(stored)
    return Unwrapped(decoded.actual_value, decoded.legacy_visible, decoded.was_legacy_format)


def wrap(value: Any, visible: bool | None) -> dict[str, Any]:
    """Encode a value in the legacy wrapped form."""
    return {LEGACY_VALUE_KEY: value, LEGACY_VISIBLE_KEY: visible}


def encode_flat(value: Any) -> Any:
    """
    Canonical on-disk form for values written by the engine.

    Wrappers nested inside wrappers are peeled until a raw value remains.
    """
    decoded = decode(value)
    while decoded.was_legacy_format:
        decoded = decode(decoded.actual_value)
    return decoded.actual_value


# Month-first and unpadded dashed dates written by older import sheets
_DASHED_DATE_FORMATS = ("%Y-%m-%d", "%m-%d-%Y")


def _looks_like_date(value: str) -> bool:
    if "-" not in value:
        return False
    text = value.strip()
    try:
        datetime.fromisoformat(text)
        return True
    except ValueError:
        pass
    for date_format in _DASHED_DATE_FORMATS:
        try:
            datetime.strptime(text, date_format)
            return True
        except ValueError:
            continue
    return False


def infer_type(value: Any) -> FieldType:
    """Infer the logical type of an unwrapped value."""
    if value is None:
        return FieldType.NULL
    if isinstance(value, (datetime, date)):
        return FieldType.DATE
    # bool is a subclass of int
    if isinstance(value, bool):
        return FieldType.BOOLEAN
    if isinstance(value, (int, float)):
        return FieldType.NUMBER
    if isinstance(value, str):
        return FieldType.DATE if _looks_like_date(value) else FieldType.STRING
    if isinstance(value, (list, tuple)):
        return FieldType.ARRAY
    return FieldType.OBJECT


def is_specific_type(field_type: FieldType | None) -> bool:
    """Null and Unknown carry no type information and may be overridden."""
    return field_type not in (None, FieldType.NULL, FieldType.UNKNOWN)


def merge_inferred_type(current: FieldType | None, observed: FieldType) -> FieldType:
    """
    Combine a running inference with a new observation.

    The first specific type wins; a later null sample never downgrades it.
    """
    if is_specific_type(current):
        return current  # type: ignore[return-value]
    if is_specific_type(observed):
        return observed
    if current is None or current == FieldType.UNKNOWN:
        return observed
    return current


def has_meaningful_value(value: Any) -> bool:
    """False for None and blank strings, True otherwise."""
    if value is None:
        return False
    if isinstance(value, str):
        return len(value.strip()) > 0
    return True


def normalize_document(document: dict[str, Any]) -> dict[str, Any]:
    """Return a read view of a voter document with every attribute flattened."""
    normalized = {}
    for key, stored in document.items():
        if key in SYSTEM_FIELDS:
            normalized[key] = stored
        else:
            normalized[key] = encode_flat(stored)
    return normalized


def display_sample(value: Any, max_length: int = 50) -> Any:
    """Render a value for field inspection output."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (dict, list, tuple)):
        rendered = json.dumps(value, default=str)
        if len(rendered) > max_length:
            rendered = rendered[:max_length] + "..."
        return rendered
    if isinstance(value, str) and len(value) > max_length:
        return value[:max_length] + "..."
    return value
