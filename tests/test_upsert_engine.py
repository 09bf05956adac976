"""Tests for the upsert engine and mirror repository over SQLite.

Covers:
- created/updated actions and idempotent re-application
- at most one row per sf_id, including the insert-race fallback
- soft delete and resurrection by UNDELETE / SYNC
- ConfigError and MappingError before any store mutation
- stats and event log round trip
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from sqlalchemy import Text

from src.sfmirror.core.errors import ConfigError, MappingError
from src.sfmirror.mirror.models import CdcEventLogModel
from src.sfmirror.mirror.repository import MirrorRepository
from src.sfmirror.mirror.schemas import EventLogEntry, UpsertAction

CONTACT_ID = "003000000000001"


class TestUpsertActions:
    """created vs updated and idempotence."""

    @pytest.mark.asyncio
    async def test_first_apply_creates_second_updates(self, upsert_engine, repository, count_rows):
        data = {"LastName": "Doe", "Name": "Jane Doe"}

        first = await upsert_engine.upsert("sf_contacts", CONTACT_ID, "CREATE", "1", data)
        second = await upsert_engine.upsert("sf_contacts", CONTACT_ID, "CREATE", "1", data)

        assert first.action == UpsertAction.CREATED
        assert second.action == UpsertAction.UPDATED
        assert first.id == second.id
        assert await count_rows("sf_contacts", CONTACT_ID) == 1

    @pytest.mark.asyncio
    async def test_contact_update_scenario(self, upsert_engine, repository):
        """UPDATE for a new Contact produces one row with mapped fields."""
        result = await upsert_engine.upsert(
            "sf_contacts",
            CONTACT_ID,
            "UPDATE",
            "42",
            {"LastName": "Doe", "Email": "d@x.com", "Secret__c": "hidden"},
        )

        row = await repository.get_by_sf_id("sf_contacts", CONTACT_ID)
        assert result.action == UpsertAction.CREATED
        assert row["last_name"] == "Doe"
        assert row["email"] == "d@x.com"
        assert row["cdc_change_type"] == "UPDATE"
        assert row["cdc_replay_id"] == "42"
        assert row["is_deleted"] is False
        assert row["synced_at"] is not None
        assert "secret__c" not in row

    @pytest.mark.asyncio
    async def test_update_merges_and_last_write_wins(self, upsert_engine, repository):
        await upsert_engine.upsert(
            "sf_contacts", CONTACT_ID, "CREATE", "1",
            {"LastName": "Doe", "Email": "old@x.com", "Title": "CTO"},
        )
        await upsert_engine.upsert(
            "sf_contacts", CONTACT_ID, "UPDATE", "2", {"Email": "new@x.com"},
        )

        row = await repository.get_by_sf_id("sf_contacts", CONTACT_ID)
        assert row["email"] == "new@x.com"
        assert row["title"] == "CTO"
        assert row["last_name"] == "Doe"

    @pytest.mark.asyncio
    async def test_audit_dates_recorded_verbatim(self, upsert_engine, repository):
        await upsert_engine.upsert(
            "sf_accounts", "001A", "SYNC", None,
            {
                "Name": "Acme",
                "CreatedDate": "2024-01-01T00:00:00.000+0000",
                "LastModifiedDate": "2024-02-01T00:00:00.000+0000",
            },
        )
        await upsert_engine.upsert("sf_accounts", "001A", "UPDATE", "9", {"Phone": "555"})

        row = await repository.get_by_sf_id("sf_accounts", "001A")
        assert row["sf_created_date"] == "2024-01-01T00:00:00.000+0000"
        assert row["sf_last_modified_date"] == "2024-02-01T00:00:00.000+0000"
        assert row["cdc_replay_id"] == "9"


class TestSoftDelete:
    """DELETE flags the row; UNDELETE and SYNC resurrect it."""

    @pytest.mark.asyncio
    async def test_delete_then_undelete(self, upsert_engine, repository, count_rows):
        await upsert_engine.upsert("sf_leads", "00Q1", "CREATE", "1", {"LastName": "Roe"})
        await upsert_engine.upsert("sf_leads", "00Q1", "DELETE", "2", {})

        deleted = await repository.get_by_sf_id("sf_leads", "00Q1")
        assert deleted["is_deleted"] is True
        assert deleted["last_name"] == "Roe"
        assert deleted["cdc_change_type"] == "DELETE"

        await upsert_engine.upsert("sf_leads", "00Q1", "UNDELETE", "3", {})
        restored = await repository.get_by_sf_id("sf_leads", "00Q1")
        assert restored["is_deleted"] is False
        assert await count_rows("sf_leads", "00Q1") == 1

    @pytest.mark.asyncio
    async def test_sync_resurrects_deleted_row(self, upsert_engine, repository):
        await upsert_engine.upsert("sf_leads", "00Q2", "DELETE", "2", {"LastName": "Roe"})
        await upsert_engine.upsert("sf_leads", "00Q2", "SYNC", None, {"LastName": "Roe"})

        row = await repository.get_by_sf_id("sf_leads", "00Q2")
        assert row["is_deleted"] is False
        assert row["cdc_change_type"] == "SYNC"

    @pytest.mark.asyncio
    async def test_stats_count_active_and_deleted(self, upsert_engine, repository):
        await upsert_engine.upsert("sf_accounts", "001A", "CREATE", None, {"Name": "A"})
        await upsert_engine.upsert("sf_accounts", "001B", "CREATE", None, {"Name": "B"})
        await upsert_engine.upsert("sf_accounts", "001C", "DELETE", None, {"Name": "C"})

        stats = await repository.stats("sf_accounts")
        assert (stats.total, stats.active, stats.deleted) == (3, 2, 1)

    @pytest.mark.asyncio
    async def test_stats_on_empty_table(self, repository):
        stats = await repository.stats("sf_opportunities")
        assert (stats.total, stats.active, stats.deleted) == (0, 0, 0)


class TestRejections:
    """Errors raised before any mutation."""

    @pytest.mark.asyncio
    async def test_unknown_table(self, upsert_engine):
        with pytest.raises(ConfigError, match="Unknown table"):
            await upsert_engine.upsert("sf_widgets", "a0X1", "CREATE", None, {})

    @pytest.mark.asyncio
    async def test_disabled_table(self, upsert_engine, repository):
        with pytest.raises(ConfigError, match="Table disabled: sf_tasks"):
            await upsert_engine.upsert("sf_tasks", "00T1", "CREATE", None, {"Subject": "Call"})
        assert (await repository.stats("sf_tasks")).total == 0

    @pytest.mark.asyncio
    async def test_non_mapping_data(self, upsert_engine, repository, count_rows):
        with pytest.raises(MappingError):
            await upsert_engine.upsert("sf_contacts", CONTACT_ID, "CREATE", None, ["Doe"])
        assert await count_rows("sf_contacts", CONTACT_ID) == 0


class TestInsertRace:
    """A lost insert race is re-applied as an update."""

    @pytest.mark.asyncio
    async def test_integrity_error_falls_back_to_update(self, upsert_engine, repository, count_rows):
        first = await upsert_engine.upsert(
            "sf_contacts", CONTACT_ID, "CREATE", "1", {"LastName": "Doe"},
        )

        real_find = MirrorRepository._find_id
        calls = {"n": 0}

        async def stale_then_real(session, table, sf_id):
            calls["n"] += 1
            if calls["n"] == 1:
                return None  # lookup misses the concurrent writer's row
            return await real_find(session, table, sf_id)

        with patch.object(MirrorRepository, "_find_id", side_effect=stale_then_real):
            second = await upsert_engine.upsert(
                "sf_contacts", CONTACT_ID, "UPDATE", "2", {"LastName": "Doe-Smith"},
            )

        assert second.action == UpsertAction.UPDATED
        assert second.id == first.id
        assert await count_rows("sf_contacts", CONTACT_ID) == 1
        row = await repository.get_by_sf_id("sf_contacts", CONTACT_ID)
        assert row["last_name"] == "Doe-Smith"


class TestEventLog:
    """Event log append and read-back."""

    @pytest.mark.asyncio
    async def test_append_and_list(self, repository):
        await repository.append_event_log(
            EventLogEntry(object_type="Contact", change_type="UPDATE", record_id="003", success=True)
        )
        await repository.append_event_log(
            EventLogEntry(object_type="Widget__c", success=False, error="Object type not configured")
        )

        entries = await repository.list_event_log()
        assert len(entries) == 2
        assert {e.success for e in entries} == {True, False}
        assert all(e.processed_at is not None for e in entries)

    @pytest.mark.asyncio
    async def test_oversized_header_values_are_kept_whole(self, repository):
        change_type = "GAP_" + "UPDATE" * 10
        record_id = "003" + "X" * 60
        await repository.append_event_log(
            EventLogEntry(
                object_type="Very_Long_Custom_Object_Name__c" * 4,
                change_type=change_type,
                record_id=record_id,
                replay_id="9" * 100,
                success=False,
                error="Object type not configured",
            )
        )

        [entry] = await repository.list_event_log()
        assert entry.change_type == change_type
        assert entry.record_id == record_id
        assert len(entry.replay_id) == 100

    def test_header_columns_are_unbounded_text(self):
        columns = CdcEventLogModel.__table__.c
        for name in ("object_type", "change_type", "record_id", "replay_id", "work_id"):
            assert isinstance(columns[name].type, Text), name

    @pytest.mark.asyncio
    async def test_duplicate_work_position_is_skipped(self, repository):
        entry = EventLogEntry(
            object_type="Contact", record_id="003", work_id="w-1", event_index=0, success=True,
        )

        assert await repository.append_event_log(entry) is True
        assert await repository.append_event_log(entry) is False
        assert len(await repository.list_event_log()) == 1
