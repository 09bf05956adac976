#!/usr/bin/env python3
"""Write field values back onto one Salesforce record.

Usage:
    python scripts/update_record.py Opportunity 006XXXXXXXXXXXX \
        --fields '{"StageName": "Closed Won"}'
    python scripts/update_record.py Contact 003XXXXXXXXXXXX \
        --fields '{"email": "new@example.com"}'

Field keys may be Salesforce field names or mirror column names. The
mirror row is not touched; the resulting CDC event updates it.
"""

import argparse
import asyncio
import json
import os
import sys

# Ensure project root is on sys.path so we can import src.sfmirror
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from src.sfmirror.api.middleware.logging import configure_structlog
from src.sfmirror.config import get_settings
from src.sfmirror.core.database import close_db, get_session, init_db
from src.sfmirror.core.errors import ConnectorError
from src.sfmirror.entities.registry import get_registry
from src.sfmirror.salesforce.auth import CredentialProvider, SqlTokenStore
from src.sfmirror.salesforce.client import SalesforceClient
from src.sfmirror.salesforce.writeback import push_record_update


async def run(object_name: str, record_id: str, fields: dict) -> dict:
    settings = get_settings()
    await init_db()
    try:
        client = SalesforceClient(
            CredentialProvider(SqlTokenStore(get_session), settings),
            api_version=settings.SALESFORCE_API_VERSION,
            timeout=settings.SALESFORCE_HTTP_TIMEOUT,
        )
        return await push_record_update(client, get_registry(), object_name, record_id, fields)
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Update one Salesforce record")
    parser.add_argument("object_name", help="Api name, e.g. Opportunity")
    parser.add_argument("record_id", help="Salesforce record id")
    parser.add_argument("--fields", required=True, help="JSON object of field values")
    args = parser.parse_args()

    try:
        fields = json.loads(args.fields)
    except json.JSONDecodeError as exc:
        parser.error(f"--fields is not valid JSON: {exc}")
    if not isinstance(fields, dict):
        parser.error("--fields must be a JSON object")

    configure_structlog()
    try:
        sent = asyncio.run(run(args.object_name, args.record_id, fields))
    except ConnectorError as exc:
        print(f"FAILED: {exc}")
        sys.exit(1)
    print(f"Updated {args.object_name} {args.record_id}: {', '.join(sorted(sent))}")


if __name__ == "__main__":
    main()
