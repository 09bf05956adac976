"""Field mapping from Salesforce payloads to mirror documents.

Defines:
- map_record(): explicit allow-list mapping with per-type coercion.
- missing_required_fields(): advisory check for required source fields.
- build_field_list(): SOQL select list for bulk sync queries.

Mapping never raises on field content: an unreadable value is dropped and
the document simply gets sparser.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from src.sfmirror.core.errors import MappingError
from src.sfmirror.entities.registry import EntityConfig, FieldMapping, FieldType

# Sentinel for values the coercion step drops
_DROP = object()

# Source fields read outside the field mappings (record id + audit timestamps)
SYSTEM_FIELDS = ("Id", "CreatedDate", "LastModifiedDate")


def _coerce_number(value: Any) -> Any:
    if isinstance(value, bool):
        return _DROP
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return _DROP
        try:
            number = float(text)
        except ValueError:
            return _DROP
        return int(number) if number.is_integer() and "." not in text else number
    return _DROP


def _coerce_boolean(value: Any) -> Any:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False
    return _DROP


def _coerce_string(value: Any) -> Any:
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return _DROP
    return str(value)


def _coerce(mapping: FieldMapping, value: Any) -> Any:
    if mapping.type == FieldType.NUMBER:
        return _coerce_number(value)
    if mapping.type == FieldType.BOOLEAN:
        return _coerce_boolean(value)
    if mapping.type == FieldType.STRING:
        return _coerce_string(value)
    # date / datetime / any: source format kept verbatim
    return value


def map_record(config: EntityConfig, payload: Mapping[str, Any]) -> dict[str, Any]:
    """Map a Salesforce field set onto destination field names.

    Only fields listed in ``config.fields`` reach the output. Absent or null
    source fields are omitted, as are values the declared type cannot accept.

    Args:
        config: Entity configuration holding the field mappings.
        payload: Salesforce record or change-event body.

    Returns:
        Dict of destination field name to coerced value.

    Raises:
        MappingError: If ``payload`` is not a mapping at all.
    """
    if not isinstance(payload, Mapping):
        raise MappingError(
            f"{config.api_name} payload must be an object, got {type(payload).__name__}"
        )

    document: dict[str, Any] = {}
    for mapping in config.fields:
        value = payload.get(mapping.source)
        if value is None:
            continue
        coerced = _coerce(mapping, value)
        if coerced is _DROP:
            continue
        document[mapping.dest] = coerced
    return document


def missing_required_fields(config: EntityConfig, payload: Mapping[str, Any]) -> list[str]:
    """Return source names of required fields absent from ``payload``."""
    return [
        m.source
        for m in config.fields
        if m.required and payload.get(m.source) is None
    ]


def build_field_list(config: EntityConfig) -> str:
    """Build the comma-separated SOQL field list for an entity.

    Includes the record id and audit timestamps followed by every mapped
    source field, without duplicates.
    """
    names: list[str] = list(SYSTEM_FIELDS)
    for mapping in config.fields:
        if mapping.source not in names:
            names.append(mapping.source)
    return ", ".join(names)
