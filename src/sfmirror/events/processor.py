"""CDC processor -- applies queued change events to the mirror store.

Per event:
1. Header check (objectType, changeType, recordId must be present).
2. Resolve the entity configuration by api name; unknown or disabled
   objects are failures and never reach the upsert engine.
3. Upsert through the engine.
4. Append one event log row carrying the outcome.

Failures in steps 1-3 are captured into the outcome and the event log.
A failure writing the event log itself propagates, so the consumer retries
the whole work item. Upserts are idempotent under replay, and log rows are
keyed by work item id and event position, so a retry does not duplicate the
rows already written.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from src.sfmirror.core.errors import ConnectorError
from src.sfmirror.core.monitoring import cdc_events_processed_total
from src.sfmirror.entities.registry import EntityRegistry
from src.sfmirror.events.schemas import ChangeEvent, WorkItem, WorkKind
from src.sfmirror.mirror.repository import MirrorRepository
from src.sfmirror.mirror.schemas import EventLogEntry, UpsertResult
from src.sfmirror.mirror.upsert import UpsertEngine

logger = structlog.get_logger(__name__)


@dataclass
class EventOutcome:
    """Result of processing one change event."""

    success: bool
    result: UpsertResult | None = None
    error: str | None = None


@dataclass
class BatchResult:
    """Tally of a processed batch."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    outcomes: list[EventOutcome] = field(default_factory=list)


class CdcProcessor:
    """Runs change events through mapping, upsert and audit logging.

    Args:
        engine: Upsert engine applying changes to mirror rows.
        repository: Mirror repository, used for event log writes.
        registry: Entity registry resolving api names.
    """

    def __init__(
        self,
        engine: UpsertEngine,
        repository: MirrorRepository,
        registry: EntityRegistry,
    ) -> None:
        self._engine = engine
        self._repository = repository
        self._registry = registry

    async def _apply(self, event: ChangeEvent) -> EventOutcome:
        missing = event.missing_header_fields()
        if missing:
            return EventOutcome(
                success=False,
                error=f"Missing required event fields: {', '.join(missing)}",
            )

        try:
            config = self._registry.by_api_name(event.object_type)
            result = await self._engine.upsert(
                config.table_name,
                event.record_id,
                event.change_type.upper(),
                event.replay_id,
                event.data,
            )
        except ConnectorError as exc:
            return EventOutcome(success=False, error=str(exc))
        except Exception as exc:
            logger.exception(
                "cdc.event_apply_error",
                object_type=event.object_type,
                record_id=event.record_id,
            )
            return EventOutcome(success=False, error=str(exc) or type(exc).__name__)

        return EventOutcome(success=True, result=result)

    async def process_event(
        self,
        event: ChangeEvent,
        work_id: str | None = None,
        event_index: int | None = None,
    ) -> EventOutcome:
        """Apply one change event and record it in the event log.

        Args:
            event: Normalized change event.
            work_id: Id of the work item carrying the event, if queued.
            event_index: Position of the event within that work item.

        Returns:
            EventOutcome; failures are captured, not raised.
        """
        outcome = await self._apply(event)

        await self._repository.append_event_log(
            EventLogEntry(
                object_type=event.object_type,
                change_type=event.change_type,
                record_id=event.record_id,
                replay_id=event.replay_id,
                work_id=work_id,
                event_index=event_index,
                success=outcome.success,
                error=outcome.error,
            )
        )

        cdc_events_processed_total.labels(
            object_type=event.object_type or "unknown",
            change_type=(event.change_type or "unknown").upper(),
            outcome="success" if outcome.success else "failure",
        ).inc()

        if outcome.success:
            logger.info(
                "cdc.event_processed",
                object_type=event.object_type,
                change_type=event.change_type,
                record_id=event.record_id,
                action=outcome.result.action.value,
            )
        else:
            logger.warning(
                "cdc.event_failed",
                object_type=event.object_type,
                change_type=event.change_type,
                record_id=event.record_id,
                error=outcome.error,
            )
        return outcome

    async def process_batch(
        self, events: list[ChangeEvent], work_id: str | None = None
    ) -> BatchResult:
        """Apply events in array order; one failure never aborts the rest.

        Args:
            events: Normalized change events.
            work_id: Id of the work item carrying the batch, if queued.

        Returns:
            BatchResult with processed, succeeded and failed counts.
        """
        batch = BatchResult()
        for index, event in enumerate(events):
            outcome = await self.process_event(event, work_id=work_id, event_index=index)
            batch.processed += 1
            if outcome.success:
                batch.succeeded += 1
            else:
                batch.failed += 1
            batch.outcomes.append(outcome)

        logger.info(
            "cdc.batch_processed",
            processed=batch.processed,
            succeeded=batch.succeeded,
            failed=batch.failed,
        )
        return batch

    async def handle(self, item: WorkItem) -> None:
        """Consumer handler: dispatch a work item by kind."""
        if item.kind == WorkKind.SINGLE:
            for index, event in enumerate(item.events):
                await self.process_event(event, work_id=item.work_id, event_index=index)
        else:
            await self.process_batch(item.events, work_id=item.work_id)
