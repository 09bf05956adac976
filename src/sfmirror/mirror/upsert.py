"""Upsert engine -- applies one mapped change to the mirror store.

Sequence per call:
1. Resolve the entity configuration by destination table (ConfigError if
   unknown or disabled).
2. Map the payload (MappingError before any store access).
3. Build the change-tracking block and hand the record to the repository,
   which looks up by ``sf_id`` and merges or inserts.

Ordering policy is last-write-wins: a later-applied change overwrites an
earlier one regardless of replay id.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from src.sfmirror.entities.mapper import map_record, missing_required_fields
from src.sfmirror.entities.registry import EntityRegistry
from src.sfmirror.mirror.repository import MirrorRepository
from src.sfmirror.mirror.schemas import UpsertResult

logger = structlog.get_logger(__name__)


class ChangeType(str, Enum):
    """Change kinds recorded in ``cdc_change_type``."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    UNDELETE = "UNDELETE"
    SYNC = "SYNC"


class UpsertEngine:
    """Maps and applies changes to mirror rows.

    Args:
        repository: Mirror store access.
        registry: Entity registry used to resolve destination tables.
    """

    def __init__(self, repository: MirrorRepository, registry: EntityRegistry) -> None:
        self._repository = repository
        self._registry = registry

    async def upsert(
        self,
        table_name: str,
        sf_id: str,
        change_type: str,
        replay_id: str | None,
        data: Mapping[str, Any],
    ) -> UpsertResult:
        """Apply one change to the mirror row for ``sf_id``.

        Args:
            table_name: Destination mirror table.
            sf_id: Salesforce record id.
            change_type: CREATE, UPDATE, DELETE, UNDELETE or SYNC.
            replay_id: Stream replay id, if the change came from CDC.
            data: Salesforce field set for the record.

        Returns:
            UpsertResult with ``created`` or ``updated`` and the row id.

        Raises:
            ConfigError: Unknown or disabled table.
            MappingError: ``data`` is not a mapping.
        """
        config = self._registry.by_table(table_name)
        mapped = map_record(config, data)

        missing = missing_required_fields(config, data)
        if missing:
            logger.warning(
                "mirror.required_fields_missing",
                object_type=config.api_name,
                sf_id=sf_id,
                fields=missing,
            )

        change = change_type.value if isinstance(change_type, ChangeType) else str(change_type)
        record: dict[str, Any] = {
            **mapped,
            "cdc_change_type": change,
            "cdc_replay_id": replay_id,
            "is_deleted": change == ChangeType.DELETE.value,
            "synced_at": datetime.now(timezone.utc),
        }
        # Audit dates only overwrite when the change carries them
        for source, column in (
            ("CreatedDate", "sf_created_date"),
            ("LastModifiedDate", "sf_last_modified_date"),
        ):
            value = data.get(source)
            if value is not None:
                record[column] = value if isinstance(value, str) else str(value)

        result = await self._repository.upsert(table_name, sf_id, record)
        logger.debug(
            "mirror.record_applied",
            table=table_name,
            sf_id=sf_id,
            change_type=change,
            action=result.action.value,
        )
        return result
