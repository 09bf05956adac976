#!/usr/bin/env python3
"""Run a bulk sync from Salesforce into the mirror tables.

Usage:
    python scripts/bulk_sync.py                      # every enabled object
    python scripts/bulk_sync.py --object Contact --limit 100

Exit code 0 if every requested object synced, 1 otherwise.
"""

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.sfmirror
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.sfmirror.api.middleware.logging import configure_structlog
from src.sfmirror.config import get_settings
from src.sfmirror.core.database import close_db, get_session, init_db
from src.sfmirror.entities.registry import get_registry
from src.sfmirror.mirror.repository import MirrorRepository
from src.sfmirror.mirror.upsert import UpsertEngine
from src.sfmirror.salesforce.auth import CredentialProvider, SqlTokenStore
from src.sfmirror.salesforce.client import SalesforceClient
from src.sfmirror.salesforce.sync import BulkSyncOrchestrator, SyncResult


def build_orchestrator() -> BulkSyncOrchestrator:
    """Wire the orchestrator the same way the app lifespan does."""
    settings = get_settings()
    registry = get_registry()
    engine = UpsertEngine(MirrorRepository(session_factory=get_session), registry)
    client = SalesforceClient(
        CredentialProvider(SqlTokenStore(get_session), settings),
        api_version=settings.SALESFORCE_API_VERSION,
        timeout=settings.SALESFORCE_HTTP_TIMEOUT,
    )
    return BulkSyncOrchestrator(client, engine, registry)


async def run(object_name: str | None, limit: int | None) -> dict[str, SyncResult]:
    await init_db()
    try:
        orchestrator = build_orchestrator()
        if object_name:
            return {object_name: await orchestrator.sync_one(object_name, limit=limit)}
        return await orchestrator.sync_all(limit=limit)
    finally:
        await close_db()


def print_results(results: dict[str, SyncResult]) -> None:
    """Print a formatted table of sync results."""
    separator = "-" * 70
    print()
    print(separator)
    print(f"{'OBJECT':<20} {'STATUS':<10} {'SYNCED':<10} {'DETAIL'}")
    print(separator)
    for name, result in results.items():
        status = "OK" if result.success else "FAIL"
        print(f"{name:<20} {status:<10} {result.synced:<10} {result.error or ''}")
    print(separator)
    print()


def main() -> None:
    parser = argparse.ArgumentParser(description="Bulk sync Salesforce objects into the mirror")
    parser.add_argument("--object", dest="object_name", help="Api name, e.g. Contact")
    parser.add_argument("--limit", type=int, default=None, help="Maximum rows per object")
    args = parser.parse_args()

    configure_structlog()
    results = asyncio.run(run(args.object_name, args.limit))
    print_results(results)
    sys.exit(0 if all(r.success for r in results.values()) else 1)


if __name__ == "__main__":
    main()
