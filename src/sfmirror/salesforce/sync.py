"""Bulk sync orchestrator -- pull-based backfill of mirror tables.

For each entity type: SELECT every mapped field (never ``SELECT *``),
follow ``nextRecordsUrl`` until the result set or the row limit is
exhausted, and upsert each row with change type SYNC. A row that fails
is logged and skipped; an entity type that fails as a whole reports
``success=False`` without stopping the others.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from src.sfmirror.core.errors import ConnectorError
from src.sfmirror.core.monitoring import bulk_sync_records_total
from src.sfmirror.entities.mapper import build_field_list
from src.sfmirror.entities.registry import EntityConfig, EntityRegistry
from src.sfmirror.mirror.upsert import ChangeType, UpsertEngine
from src.sfmirror.salesforce.client import SalesforceClient

logger = structlog.get_logger(__name__)


@dataclass
class SyncResult:
    success: bool
    synced: int = 0
    error: str | None = None


def build_sync_query(config: EntityConfig, limit: int | None = None) -> str:
    """SOQL statement selecting every mapped field of ``config``."""
    soql = f"SELECT {build_field_list(config)} FROM {config.api_name}"
    if limit:
        soql += f" LIMIT {int(limit)}"
    return soql


class BulkSyncOrchestrator:
    """Runs full-table syncs through the upsert engine.

    Args:
        client: Salesforce REST client.
        engine: Upsert engine applying SYNC changes.
        registry: Entity registry resolving api names.
    """

    def __init__(
        self,
        client: SalesforceClient,
        engine: UpsertEngine,
        registry: EntityRegistry,
    ) -> None:
        self._client = client
        self._engine = engine
        self._registry = registry

    async def sync_one(self, api_name: str, limit: int | None = None) -> SyncResult:
        """Sync one entity type.

        Args:
            api_name: Salesforce object api name, e.g. "Account".
            limit: Maximum rows to pull; None pulls everything.

        Returns:
            SyncResult with the count of rows applied.
        """
        try:
            config = self._registry.by_api_name(api_name)
        except ConnectorError as exc:
            return SyncResult(success=False, error=str(exc))

        logger.info("bulk_sync.started", object_type=api_name, limit=limit)
        synced = 0
        seen = 0
        try:
            page = await self._client.query(build_sync_query(config, limit))
            while True:
                for record in page.records:
                    if limit is not None and seen >= limit:
                        break
                    seen += 1
                    if await self._apply(config, record):
                        synced += 1

                if page.done or not page.next_records_url:
                    break
                if limit is not None and seen >= limit:
                    break
                page = await self._client.query_more(page.next_records_url)
        except ConnectorError as exc:
            logger.error(
                "bulk_sync.failed",
                object_type=api_name,
                synced=synced,
                error=str(exc),
            )
            return SyncResult(success=False, synced=0, error=str(exc))

        logger.info("bulk_sync.completed", object_type=api_name, synced=synced, seen=seen)
        return SyncResult(success=True, synced=synced)

    async def _apply(self, config: EntityConfig, record: dict) -> bool:
        sf_id = record.get("Id")
        if not sf_id:
            logger.warning("bulk_sync.record_without_id", object_type=config.api_name)
            bulk_sync_records_total.labels(object_type=config.api_name, outcome="skipped").inc()
            return False
        try:
            await self._engine.upsert(
                config.table_name,
                sf_id,
                ChangeType.SYNC.value,
                None,
                record,
            )
        except Exception as exc:
            logger.error(
                "bulk_sync.record_failed",
                object_type=config.api_name,
                sf_id=sf_id,
                error=str(exc),
            )
            bulk_sync_records_total.labels(object_type=config.api_name, outcome="failure").inc()
            return False
        bulk_sync_records_total.labels(object_type=config.api_name, outcome="success").inc()
        return True

    async def sync_all(self, limit: int | None = None) -> dict[str, SyncResult]:
        """Sync every enabled entity type, one after another."""
        results: dict[str, SyncResult] = {}
        for config in self._registry.enabled():
            logger.info("bulk_sync.syncing", label=config.label)
            results[config.api_name] = await self.sync_one(config.api_name, limit=limit)
        return results
