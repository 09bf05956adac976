"""Mirror store repository -- async access to mirror tables and the event log.

Uses the session_factory callable pattern: every method opens its own
session from an async generator, so callers never hold a session across
awaits on other services.

The upsert runs lookup and write in one session. A concurrent insert for the
same ``sf_id`` trips the unique index; the losing insert is rolled back and
re-applied as an update, so one row per ``sf_id`` holds either way.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import Table, case, func, insert, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.sfmirror.core.errors import ConfigError
from src.sfmirror.mirror.models import MIRROR_TABLES, CdcEventLogModel
from src.sfmirror.mirror.schemas import (
    EventLogEntry,
    MirrorStats,
    UpsertAction,
    UpsertResult,
)

logger = structlog.get_logger(__name__)


def _table(table_name: str) -> Table:
    table = MIRROR_TABLES.get(table_name)
    if table is None:
        raise ConfigError(f"Unknown table: {table_name}")
    return table


class MirrorRepository:
    """Async CRUD for mirror rows and CDC event log entries.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Mirror Rows ─────────────────────────────────────────────────────────

    @staticmethod
    async def _find_id(session: AsyncSession, table: Table, sf_id: str) -> uuid.UUID | None:
        result = await session.execute(
            select(table.c.id).where(table.c.sf_id == sf_id).limit(1)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self, table_name: str, sf_id: str, record: dict[str, Any]
    ) -> UpsertResult:
        """Insert or merge a mirror row keyed by ``sf_id``.

        Args:
            table_name: Destination mirror table.
            sf_id: Salesforce record id (natural key).
            record: Column values to write. Columns not present are left as-is
                on update.

        Returns:
            UpsertResult with the action taken and the row's internal id.
        """
        table = _table(table_name)
        async for session in self._session_factory():
            existing_id = await self._find_id(session, table, sf_id)
            if existing_id is not None:
                await session.execute(
                    update(table).where(table.c.id == existing_id).values(**record)
                )
                await session.commit()
                return UpsertResult(action=UpsertAction.UPDATED, id=str(existing_id))

            new_id = uuid.uuid4()
            try:
                await session.execute(
                    insert(table).values(id=new_id, sf_id=sf_id, **record)
                )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                existing_id = await self._find_id(session, table, sf_id)
                if existing_id is None:
                    raise
                logger.info(
                    "mirror.insert_race_resolved",
                    table=table_name,
                    sf_id=sf_id,
                )
                await session.execute(
                    update(table).where(table.c.id == existing_id).values(**record)
                )
                await session.commit()
                return UpsertResult(action=UpsertAction.UPDATED, id=str(existing_id))

            return UpsertResult(action=UpsertAction.CREATED, id=str(new_id))

    async def get_by_sf_id(self, table_name: str, sf_id: str) -> dict[str, Any] | None:
        """Fetch a mirror row as a column dict, or None."""
        table = _table(table_name)
        async for session in self._session_factory():
            result = await session.execute(select(table).where(table.c.sf_id == sf_id))
            row = result.mappings().first()
            return dict(row) if row is not None else None

    async def stats(self, table_name: str) -> MirrorStats:
        """Total, active and soft-deleted row counts for one mirror table."""
        table = _table(table_name)
        async for session in self._session_factory():
            result = await session.execute(
                select(
                    func.count(),
                    func.coalesce(func.sum(case((table.c.is_deleted, 1), else_=0)), 0),
                ).select_from(table)
            )
            total, deleted = result.one()
            return MirrorStats(
                total=int(total),
                active=int(total) - int(deleted),
                deleted=int(deleted),
            )

    # ── Event Log ───────────────────────────────────────────────────────────

    async def append_event_log(self, entry: EventLogEntry) -> bool:
        """Append one CDC event log row.

        Returns:
            False when a row for the same ``(work_id, event_index)`` already
            exists and nothing was written, True otherwise.
        """
        async for session in self._session_factory():
            session.add(
                CdcEventLogModel(
                    object_type=entry.object_type,
                    change_type=entry.change_type,
                    record_id=entry.record_id,
                    replay_id=entry.replay_id,
                    work_id=entry.work_id,
                    event_index=entry.event_index,
                    success=entry.success,
                    error=entry.error,
                    processed_at=entry.processed_at or datetime.now(timezone.utc),
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                if entry.work_id is None:
                    raise
                await session.rollback()
                logger.info(
                    "mirror.event_log_duplicate",
                    work_id=entry.work_id,
                    event_index=entry.event_index,
                )
                return False
            return True

    async def list_event_log(self, limit: int = 100) -> list[EventLogEntry]:
        """Most recent event log rows, newest first."""
        async for session in self._session_factory():
            result = await session.execute(
                select(CdcEventLogModel)
                .order_by(CdcEventLogModel.processed_at.desc())
                .limit(limit)
            )
            return [
                EventLogEntry(
                    object_type=m.object_type,
                    change_type=m.change_type,
                    record_id=m.record_id,
                    replay_id=m.replay_id,
                    work_id=m.work_id,
                    event_index=m.event_index,
                    success=m.success,
                    error=m.error,
                    processed_at=m.processed_at,
                )
                for m in result.scalars().all()
            ]
