"""Mirror store tables.

Mirror tables are generated from the entity registry: one table per entity
type, one column per field mapping (typed by FieldType, indexed when the
mapping says so), plus the fixed change-tracking block. Rows are keyed by
``sf_id``; the unique index backs the lookup-before-write upsert.

The CDC event log and the OAuth token singleton are plain declarative models.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.types import TypeEngine

from src.sfmirror.core.database import MirrorBase, mirror_metadata
from src.sfmirror.entities.registry import ENTITY_CONFIGS, EntityConfig, FieldType

_COLUMN_TYPES: dict[FieldType, type[TypeEngine]] = {
    FieldType.STRING: Text,
    FieldType.NUMBER: Float,
    FieldType.BOOLEAN: Boolean,
    # Dates stay in Salesforce's own string format
    FieldType.DATE: String,
    FieldType.DATETIME: String,
    FieldType.ANY: JSON,
}


def build_mirror_table(config: EntityConfig, metadata: MetaData) -> Table:
    """Build the SQLAlchemy Table for one entity configuration."""
    columns: list[Column] = [
        Column("id", Uuid, primary_key=True, default=uuid.uuid4),
        Column("sf_id", String(32), nullable=False, unique=True, index=True),
    ]
    for mapping in config.fields:
        columns.append(
            Column(
                mapping.dest,
                _COLUMN_TYPES[mapping.type](),
                nullable=True,
                index=mapping.indexed,
            )
        )
    columns.extend([
        Column("cdc_change_type", String(20), nullable=True),
        Column("cdc_replay_id", String(64), nullable=True),
        Column("is_deleted", Boolean, nullable=False, default=False, index=True),
        Column("synced_at", DateTime(timezone=True), nullable=False),
        Column("sf_created_date", String(40), nullable=True),
        Column("sf_last_modified_date", String(40), nullable=True),
    ])
    return Table(config.table_name, metadata, *columns)


# Every configured entity gets a table, enabled or not
MIRROR_TABLES: dict[str, Table] = {
    config.table_name: build_mirror_table(config, mirror_metadata)
    for config in ENTITY_CONFIGS.values()
}


class CdcEventLogModel(MirrorBase):
    """Append-only audit row per processed change event.

    Rows written for a queued work item carry its ``work_id`` and the event's
    position in it; the pair is unique, so a retried work item does not log
    an event twice.
    """

    __tablename__ = "cdc_event_log"
    __table_args__ = (
        UniqueConstraint("work_id", "event_index", name="uq_cdc_event_log_work_event"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    object_type: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    change_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    record_id: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    replay_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    work_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    event_index: Mapped[int | None] = mapped_column(Integer, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        index=True,
    )


class SalesforceTokenModel(MirrorBase):
    """OAuth token singleton. At most one row exists at a time."""

    __tablename__ = "sf_auth_tokens"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    instance_url: Mapped[str] = mapped_column(String(255), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
