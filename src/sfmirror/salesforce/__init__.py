"""Salesforce integration -- credentials, REST client and bulk sync.

Provides:
- CredentialProvider / TokenStore / SqlTokenStore: OAuth token lifecycle
  with static-credential fallback.
- SalesforceClient: SOQL query with pagination and record PATCH.
- BulkSyncOrchestrator: pull-based backfill of mirror tables.
"""

from src.sfmirror.salesforce.auth import (
    CredentialProvider,
    Credentials,
    SqlTokenStore,
    StoredToken,
    TokenStore,
)
from src.sfmirror.salesforce.client import QueryPage, SalesforceClient
from src.sfmirror.salesforce.sync import BulkSyncOrchestrator, SyncResult

__all__ = [
    "BulkSyncOrchestrator",
    "CredentialProvider",
    "Credentials",
    "QueryPage",
    "SalesforceClient",
    "SqlTokenStore",
    "StoredToken",
    "SyncResult",
    "TokenStore",
]
