"""CDC work queue and processing.

Provides Redis Streams transport for change-event work items, consumer
group processing with exponential-backoff retry, dead letter queue
handling, and the processor that applies events to the mirror store.

Exports:
    ChangeEvent: Normalized Salesforce change notification.
    WorkItem: Queued unit of work (single event or ordered batch).
    WorkKind: ``single`` or ``batch``.
    normalize_event / extract_events: webhook body parsing helpers.
    CdcEventBus: Publish/subscribe to the connector's Redis Streams.
    WorkItemConsumer: Consumer with retry logic and consumer group management.
    DeadLetterQueue: DLQ handler for failed work item review and replay.
    CdcProcessor: Applies change events and writes the event log.
"""

from __future__ import annotations

from src.sfmirror.events.schemas import (
    ChangeEvent,
    WorkItem,
    WorkKind,
    extract_events,
    normalize_event,
)

__all__ = [
    "CdcEventBus",
    "CdcProcessor",
    "ChangeEvent",
    "DeadLetterQueue",
    "WorkItem",
    "WorkItemConsumer",
    "WorkKind",
    "extract_events",
    "normalize_event",
]


def __getattr__(name: str):  # noqa: N807
    """Lazy-load bus, consumer, DLQ and processor to avoid circular imports."""
    if name == "CdcEventBus":
        from src.sfmirror.events.bus import CdcEventBus

        return CdcEventBus
    if name == "WorkItemConsumer":
        from src.sfmirror.events.consumer import WorkItemConsumer

        return WorkItemConsumer
    if name == "DeadLetterQueue":
        from src.sfmirror.events.dlq import DeadLetterQueue

        return DeadLetterQueue
    if name == "CdcProcessor":
        from src.sfmirror.events.processor import CdcProcessor

        return CdcProcessor
    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
