"""Write-back of field values onto Salesforce records.

Fields may be keyed by Salesforce field name or by mirror column name;
column names are translated through the entity's field mappings before the
PATCH. Only configured, enabled object types can be written.
"""

from __future__ import annotations

from typing import Any

import structlog

from src.sfmirror.core.errors import MappingError
from src.sfmirror.entities.registry import EntityRegistry
from src.sfmirror.salesforce.client import SalesforceClient

logger = structlog.get_logger(__name__)


def to_salesforce_fields(columns: dict[str, str], fields: dict[str, Any]) -> dict[str, Any]:
    """Rename mirror column keys to Salesforce field names.

    Args:
        columns: Mirror column name -> Salesforce field name.
        fields: Values keyed by either naming.

    Raises:
        MappingError: Two keys resolve to the same Salesforce field.
    """
    translated: dict[str, Any] = {}
    for key, value in fields.items():
        name = columns.get(key, key)
        if name in translated:
            raise MappingError(f"Field given twice: {name}")
        translated[name] = value
    return translated


async def push_record_update(
    client: SalesforceClient,
    registry: EntityRegistry,
    api_name: str,
    record_id: str,
    fields: dict[str, Any],
) -> dict[str, Any]:
    """Validate and PATCH one record. Returns the fields actually sent.

    Raises:
        ConfigError: Object type unknown or disabled.
        MappingError: No fields, or conflicting field keys.
        CredentialError: No usable credentials.
        UpstreamError: Salesforce rejected the update or was unreachable.
    """
    config = registry.by_api_name(api_name)
    if not record_id:
        raise MappingError("Missing record id")
    if not fields:
        raise MappingError("No fields to update")

    payload = to_salesforce_fields({m.dest: m.source for m in config.fields}, fields)
    await client.update_record(config.api_name, record_id, payload)
    logger.info("salesforce.write_back", object_type=config.api_name, record_id=record_id)
    return payload
