"""Async HTTP client for the Salesforce REST API.

Covers the two outbound operations the connector needs: SOQL query (with
``nextRecordsUrl`` pagination) and record PATCH. Every call fetches
credentials from the CredentialProvider. Calls are not retried; a non-2xx
response raises UpstreamError carrying Salesforce's first error message, and
transport failures or undecodable bodies raise UpstreamError as well.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from pydantic import BaseModel, Field

from src.sfmirror.core.errors import UpstreamError
from src.sfmirror.core.monitoring import track_salesforce_call
from src.sfmirror.salesforce.auth import CredentialProvider, Credentials

logger = structlog.get_logger(__name__)


class QueryPage(BaseModel):
    """One page of SOQL query results."""

    records: list[dict[str, Any]] = Field(default_factory=list)
    total_size: int = 0
    done: bool = True
    next_records_url: str | None = None


def _error_message(response: httpx.Response, fallback: str) -> str:
    """First Salesforce error message in the body, else ``fallback``."""
    try:
        body = response.json()
    except ValueError:
        return fallback
    if isinstance(body, list) and body and isinstance(body[0], dict):
        return body[0].get("message") or fallback
    if isinstance(body, dict):
        return body.get("message") or body.get("error_description") or fallback
    return fallback


class SalesforceClient:
    """Async client for Salesforce query and update calls.

    Args:
        credentials: Provider of bearer token and instance URL.
        api_version: REST API version, e.g. "v59.0".
        timeout: Per-request timeout in seconds.
        transport: Optional httpx transport, for tests.
    """

    def __init__(
        self,
        credentials: CredentialProvider,
        api_version: str = "v59.0",
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._credentials = credentials
        self._api_version = api_version
        self._timeout = timeout
        self._transport = transport

    def _client(self, creds: Credentials) -> httpx.AsyncClient:
        """Create a new httpx client bound to one credential set."""
        return httpx.AsyncClient(
            base_url=creds.instance_url,
            headers={
                "Authorization": f"Bearer {creds.access_token}",
                "Accept": "application/json",
            },
            timeout=self._timeout,
            transport=self._transport,
        )

    @property
    def _data_path(self) -> str:
        return f"/services/data/{self._api_version}"

    @staticmethod
    def _page(data: dict[str, Any]) -> QueryPage:
        return QueryPage(
            records=data.get("records") or [],
            total_size=data.get("totalSize", 0),
            done=data.get("done", True),
            next_records_url=data.get("nextRecordsUrl"),
        )

    async def _send(self, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Issue one authenticated request.

        Transport failures surface as UpstreamError without a status code.
        """
        creds = await self._credentials.get_credentials()
        try:
            async with track_salesforce_call(operation):
                async with self._client(creds) as client:
                    return await client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.error("salesforce.request_error", operation=operation, error=str(exc))
            raise UpstreamError(f"Request failed: {exc}") from exc

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError(
                "Invalid JSON in Salesforce response", status_code=response.status_code
            ) from exc
        if not isinstance(data, dict):
            raise UpstreamError(
                "Unexpected Salesforce response shape", status_code=response.status_code
            )
        return data

    async def query(self, soql: str) -> QueryPage:
        """Run a SOQL query and return its first page.

        Raises:
            CredentialError: No usable credentials.
            UpstreamError: Salesforce rejected the query or was unreachable.
        """
        response = await self._send(
            "query", "GET", f"{self._data_path}/query", params={"q": soql}
        )
        if not response.is_success:
            raise UpstreamError(
                _error_message(response, f"Query failed: {response.status_code}"),
                status_code=response.status_code,
            )
        page = self._page(self._json(response))
        logger.debug(
            "salesforce.query_page",
            records=len(page.records),
            total_size=page.total_size,
            done=page.done,
        )
        return page

    async def query_more(self, next_records_url: str) -> QueryPage:
        """Fetch the next page of a query via its ``nextRecordsUrl``."""
        response = await self._send("query_more", "GET", next_records_url)
        if not response.is_success:
            raise UpstreamError(
                _error_message(response, f"Query failed: {response.status_code}"),
                status_code=response.status_code,
            )
        return self._page(self._json(response))

    async def update_record(
        self, object_type: str, record_id: str, fields: dict[str, Any]
    ) -> None:
        """PATCH fields onto one Salesforce record.

        Salesforce answers 204 No Content on success.

        Raises:
            CredentialError: No usable credentials.
            UpstreamError: Salesforce rejected the update or was unreachable.
        """
        response = await self._send(
            "update",
            "PATCH",
            f"{self._data_path}/sobjects/{object_type}/{record_id}",
            json=fields,
        )

        if not response.is_success:
            raise UpstreamError(
                _error_message(response, f"Failed: {response.status_code}"),
                status_code=response.status_code,
            )
        logger.info(
            "salesforce.record_updated",
            object_type=object_type,
            record_id=record_id,
            fields=sorted(fields),
        )
