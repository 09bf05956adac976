"""Tests for the bulk sync orchestrator over SQLite and a mocked Salesforce."""

from __future__ import annotations

import httpx
import pytest

from src.sfmirror.config import Settings
from src.sfmirror.entities.registry import ENTITY_CONFIGS, EntityType
from src.sfmirror.salesforce.auth import CredentialProvider
from src.sfmirror.salesforce.client import SalesforceClient
from src.sfmirror.salesforce.sync import BulkSyncOrchestrator, build_sync_query
from tests.conftest import InMemoryTokenStore

NEXT_URL = "/services/data/v59.0/query/01gNEXT-2000"


def _account(n: int) -> dict:
    return {
        "attributes": {"type": "Account"},
        "Id": f"001{n:012d}",
        "Name": f"Account {n}",
        "CreatedDate": "2024-01-01T00:00:00.000+0000",
        "LastModifiedDate": "2024-01-02T00:00:00.000+0000",
    }


class FakeSalesforce:
    """MockTransport handler serving canned query pages per object."""

    def __init__(
        self,
        pages: dict[str, list[list[dict]]] | None = None,
        fail: set[str] | None = None,
        reset: set[str] | None = None,
    ):
        self.pages = pages or {}
        self.fail = fail or set()
        self.reset = reset or set()
        self.queries: list[str] = []
        self._cursor: dict[str, int] = {}

    def _page(self, api_name: str, index: int) -> httpx.Response:
        pages = self.pages.get(api_name, [[]])
        done = index >= len(pages) - 1
        body = {
            "totalSize": sum(len(p) for p in pages),
            "done": done,
            "records": pages[index],
        }
        if not done:
            body["nextRecordsUrl"] = f"{NEXT_URL}?object={api_name}&page={index + 1}"
        return httpx.Response(200, json=body)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/query"):
            soql = request.url.params["q"]
            self.queries.append(soql)
            api_name = soql.split(" FROM ")[1].split(" ")[0]
            if api_name in self.reset:
                raise httpx.ConnectError("reset", request=request)
            if api_name in self.fail:
                return httpx.Response(500, json=[{"message": "UNKNOWN_EXCEPTION"}])
            return self._page(api_name, 0)
        api_name = request.url.params["object"]
        return self._page(api_name, int(request.url.params["page"]))


def _orchestrator(fake: FakeSalesforce, upsert_engine, registry) -> BulkSyncOrchestrator:
    provider = CredentialProvider(
        InMemoryTokenStore(),
        Settings(
            SALESFORCE_INSTANCE_URL="https://acme.my.salesforce.com",
            SALESFORCE_ACCESS_TOKEN="tok",
        ),
    )
    client = SalesforceClient(provider, transport=httpx.MockTransport(fake))
    return BulkSyncOrchestrator(client, upsert_engine, registry)


class TestBuildSyncQuery:
    """SOQL generation."""

    def test_selects_every_mapped_field(self):
        soql = build_sync_query(ENTITY_CONFIGS[EntityType.ACCOUNT], limit=2)
        assert soql.startswith("SELECT Id, CreatedDate, LastModifiedDate, Name")
        assert " FROM Account LIMIT 2" in soql
        assert "*" not in soql

    def test_no_limit_clause_without_limit(self):
        assert "LIMIT" not in build_sync_query(ENTITY_CONFIGS[EntityType.LEAD])


class TestSyncOne:
    """Single entity type sync."""

    @pytest.mark.asyncio
    async def test_limit_two_writes_two_sync_rows(self, upsert_engine, registry, repository):
        fake = FakeSalesforce({"Account": [[_account(1), _account(2)]]})
        orchestrator = _orchestrator(fake, upsert_engine, registry)

        result = await orchestrator.sync_one("Account", limit=2)

        assert result.success is True
        assert result.synced == 2
        assert fake.queries[0].endswith("LIMIT 2")
        for n in (1, 2):
            row = await repository.get_by_sf_id("sf_accounts", f"001{n:012d}")
            assert row["cdc_change_type"] == "SYNC"
            assert row["cdc_replay_id"] is None
            assert row["sf_created_date"] == "2024-01-01T00:00:00.000+0000"

    @pytest.mark.asyncio
    async def test_follows_pagination(self, upsert_engine, registry, repository):
        fake = FakeSalesforce({"Account": [[_account(1), _account(2)], [_account(3)]]})
        orchestrator = _orchestrator(fake, upsert_engine, registry)

        result = await orchestrator.sync_one("Account")

        assert result.synced == 3
        assert (await repository.stats("sf_accounts")).total == 3

    @pytest.mark.asyncio
    async def test_limit_applies_across_pages(self, upsert_engine, registry, repository):
        fake = FakeSalesforce({
            "Account": [[_account(1), _account(2)], [_account(3), _account(4)], [_account(5)]],
        })
        orchestrator = _orchestrator(fake, upsert_engine, registry)

        result = await orchestrator.sync_one("Account", limit=3)

        assert result.synced == 3
        assert (await repository.stats("sf_accounts")).total == 3

    @pytest.mark.asyncio
    async def test_record_without_id_is_skipped(self, upsert_engine, registry, repository):
        no_id = {"Name": "Ghost"}
        fake = FakeSalesforce({"Account": [[_account(1), no_id]]})
        orchestrator = _orchestrator(fake, upsert_engine, registry)

        result = await orchestrator.sync_one("Account")

        assert result.success is True
        assert result.synced == 1

    @pytest.mark.asyncio
    async def test_unknown_type(self, upsert_engine, registry):
        fake = FakeSalesforce()
        result = await _orchestrator(fake, upsert_engine, registry).sync_one("Widget__c")

        assert result.success is False
        assert result.error == "Object type not configured: Widget__c"
        assert fake.queries == []

    @pytest.mark.asyncio
    async def test_disabled_type(self, upsert_engine, registry):
        result = await _orchestrator(FakeSalesforce(), upsert_engine, registry).sync_one("Task")
        assert result.success is False
        assert "disabled" in result.error

    @pytest.mark.asyncio
    async def test_upstream_failure(self, upsert_engine, registry):
        fake = FakeSalesforce(fail={"Account"})
        result = await _orchestrator(fake, upsert_engine, registry).sync_one("Account")

        assert result.success is False
        assert result.synced == 0
        assert result.error == "UNKNOWN_EXCEPTION"


class TestSyncAll:
    """All enabled types, in order."""

    @pytest.mark.asyncio
    async def test_one_failure_does_not_stop_others(self, upsert_engine, registry, repository):
        fake = FakeSalesforce(
            {
                "Account": [[_account(1)]],
                "Lead": [[{"Id": "00Q1", "LastName": "Roe", "Company": "Roe Inc"}]],
            },
            fail={"Contact"},
        )
        results = await _orchestrator(fake, upsert_engine, registry).sync_all()

        assert list(results) == ["Account", "Contact", "Lead", "Opportunity"]
        assert results["Account"].synced == 1
        assert results["Contact"].success is False
        assert results["Lead"].synced == 1
        assert results["Opportunity"].success is True
        assert results["Opportunity"].synced == 0
        assert (await repository.get_by_sf_id("sf_leads", "00Q1"))["last_name"] == "Roe"

    @pytest.mark.asyncio
    async def test_network_failure_on_first_type_does_not_stop_others(self, upsert_engine, registry, repository):
        fake = FakeSalesforce(
            {"Contact": [[{"Id": "003A", "LastName": "Doe"}]]},
            reset={"Account"},
        )
        results = await _orchestrator(fake, upsert_engine, registry).sync_all()

        assert list(results) == ["Account", "Contact", "Lead", "Opportunity"]
        assert results["Account"].success is False
        assert results["Account"].synced == 0
        assert "reset" in results["Account"].error
        assert results["Contact"].synced == 1
        assert all(results[name].success for name in ("Contact", "Lead", "Opportunity"))
