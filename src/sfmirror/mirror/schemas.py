"""Pydantic schemas for mirror store results and audit entries."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


class UpsertAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


class UpsertResult(BaseModel):
    """Outcome of applying one change to the mirror store."""

    action: UpsertAction
    id: str


class MirrorStats(BaseModel):
    """Row counts for one mirror table."""

    total: int = 0
    active: int = 0
    deleted: int = 0


class EventLogEntry(BaseModel):
    """One CDC event log row, as written or read back."""

    object_type: str | None = None
    change_type: str | None = None
    record_id: str | None = None
    replay_id: str | None = None
    work_id: str | None = None
    event_index: int | None = None
    success: bool
    error: str | None = None
    processed_at: datetime | None = None
