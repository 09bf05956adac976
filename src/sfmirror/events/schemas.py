"""Change event and work item schemas for the CDC work queue.

Provides:
- ChangeEvent: one normalized Salesforce change notification.
- normalize_event(): accepts the flattened webhook shape and the native
  ``ChangeEventHeader`` shape (flattened fields win when both are present).
- extract_events(): splits a webhook body into its list of raw events.
- WorkItem: unit of work carried over Redis Streams. Serializes to a flat
  string dict for XADD and deserializes back losslessly.

Stream key pattern: sfmirror:events:{stream_name}
"""

from __future__ import annotations

import json
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ChangeEvent(BaseModel):
    """Normalized change notification.

    Every header field is optional here; the processor decides what a
    missing field means.

    Attributes:
        object_type: Salesforce api name (e.g. "Contact").
        change_type: CREATE, UPDATE, DELETE or UNDELETE.
        record_id: Salesforce record id.
        replay_id: Stream replay id, as a string.
        changed_fields: Field names the source reported as changed.
        data: Field set applied to the mirror row.
    """

    object_type: str | None = None
    change_type: str | None = None
    record_id: str | None = None
    replay_id: str | None = None
    changed_fields: list[str] | None = None
    data: Any = Field(default_factory=dict)

    def missing_header_fields(self) -> list[str]:
        """Names of the header fields needed to apply this event that are absent."""
        missing = []
        if not self.object_type:
            missing.append("objectType")
        if not self.change_type:
            missing.append("changeType")
        if not self.record_id:
            missing.append("recordId")
        return missing


def _str_or_none(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


def normalize_event(raw: Any) -> ChangeEvent:
    """Build a ChangeEvent from either supported webhook event shape.

    Args:
        raw: One decoded event. Non-object events yield an empty
            ChangeEvent that carries ``raw`` as its data.

    Returns:
        Normalized ChangeEvent.
    """
    if not isinstance(raw, Mapping):
        return ChangeEvent(data=raw)

    header = raw.get("ChangeEventHeader")
    if not isinstance(header, Mapping):
        header = {}

    record_ids = header.get("recordIds")
    header_record_id = record_ids[0] if isinstance(record_ids, list) and record_ids else None

    changed_fields = raw.get("changedFields") or header.get("changedFields")
    data = raw.get("data")

    return ChangeEvent(
        object_type=_str_or_none(raw.get("objectType") or header.get("entityName")),
        change_type=_str_or_none(raw.get("changeType") or header.get("changeType")),
        record_id=_str_or_none(raw.get("recordId") or header_record_id),
        replay_id=_str_or_none(raw.get("replayId") or header.get("replayId")),
        changed_fields=list(changed_fields) if isinstance(changed_fields, list) else None,
        data=data if data is not None else dict(raw),
    )


def extract_events(body: Mapping[str, Any]) -> list[Any]:
    """Return the raw events in a webhook body.

    A body with an ``events`` array is a batch; any other body is one event.
    """
    events = body.get("events")
    if isinstance(events, list):
        return events
    return [body]


class WorkKind(str, Enum):
    """Shape of a queued work item."""

    SINGLE = "single"
    BATCH = "batch"


class WorkItem(BaseModel):
    """Queued unit of CDC processing.

    Attributes:
        work_id: Unique identifier (auto-generated UUID4).
        kind: ``single`` for one event, ``batch`` for an ordered list.
        events: Normalized events in arrival order.
        enqueued_at: UTC time the dispatcher queued the item.
    """

    work_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    kind: WorkKind
    events: list[ChangeEvent]
    enqueued_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def single(cls, event: ChangeEvent) -> WorkItem:
        return cls(kind=WorkKind.SINGLE, events=[event])

    @classmethod
    def batch(cls, events: list[ChangeEvent]) -> WorkItem:
        return cls(kind=WorkKind.BATCH, events=events)

    def to_stream_dict(self) -> dict[str, str]:
        """Serialize to a flat dict of strings for Redis Streams.

        Events are JSON-encoded as one field; datetimes use ISO format.

        Returns:
            Dictionary with string keys and string values suitable for XADD.
        """
        return {
            "work_id": self.work_id,
            "kind": self.kind.value,
            "events": json.dumps([e.model_dump(mode="json") for e in self.events]),
            "enqueued_at": self.enqueued_at.isoformat(),
        }

    @classmethod
    def from_stream_dict(cls, raw: dict[str, str]) -> WorkItem:
        """Deserialize from a Redis Streams flat dict back to WorkItem.

        Reverses the encoding performed by ``to_stream_dict()``. Bookkeeping
        fields added by the consumer or DLQ (``_retry_count``, ``_dlq_*``)
        are ignored.

        Args:
            raw: Dictionary of string key-value pairs from XREADGROUP.

        Returns:
            Reconstructed WorkItem instance.
        """
        return cls(
            work_id=raw["work_id"],
            kind=WorkKind(raw["kind"]),
            events=[ChangeEvent(**e) for e in json.loads(raw["events"])],
            enqueued_at=datetime.fromisoformat(raw["enqueued_at"]),
        )
