"""Salesforce OAuth credential management.

Credential resolution order:
1. Stored OAuth token, if it is not within the expiry buffer (no network).
2. Refresh-token grant against ``{instance_url}/services/oauth2/token``;
   on success the stored singleton is replaced and returned.
3. Static SALESFORCE_INSTANCE_URL + SALESFORCE_ACCESS_TOKEN.

Neither source available -> CredentialError. The authorization-code grant
(``exchange_code``) is the only path that sets a refresh token.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta, timezone
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.sfmirror.config import Settings
from src.sfmirror.core.errors import CredentialError
from src.sfmirror.core.monitoring import track_salesforce_call
from src.sfmirror.mirror.models import SalesforceTokenModel

logger = structlog.get_logger(__name__)

DEFAULT_EXPIRES_IN = 7200
TOKEN_PATH = "/services/oauth2/token"


class StoredToken(BaseModel):
    """OAuth token state as persisted in ``sf_auth_tokens``."""

    access_token: str
    refresh_token: str | None = None
    instance_url: str
    expires_at: datetime
    created_at: datetime | None = None


class Credentials(BaseModel):
    """Bearer token and base URL for outbound Salesforce calls."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    instance_url: str


def _aware(value: datetime) -> datetime:
    """SQLite drops tzinfo; stored times are always UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


# ── Token Store ─────────────────────────────────────────────────────────────


class TokenStore(ABC):
    """Persistence for the single OAuth token record."""

    @abstractmethod
    async def get(self) -> StoredToken | None:
        """Return the stored token, or None."""

    @abstractmethod
    async def replace(self, token: StoredToken) -> None:
        """Atomically replace any stored token with ``token``."""


class SqlTokenStore(TokenStore):
    """TokenStore backed by the ``sf_auth_tokens`` table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get(self) -> StoredToken | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(SalesforceTokenModel)
                .order_by(SalesforceTokenModel.created_at.desc())
                .limit(1)
            )
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return StoredToken(
                access_token=model.access_token,
                refresh_token=model.refresh_token,
                instance_url=model.instance_url,
                expires_at=_aware(model.expires_at),
                created_at=_aware(model.created_at) if model.created_at else None,
            )

    async def replace(self, token: StoredToken) -> None:
        async for session in self._session_factory():
            await session.execute(delete(SalesforceTokenModel))
            session.add(
                SalesforceTokenModel(
                    access_token=token.access_token,
                    refresh_token=token.refresh_token,
                    instance_url=token.instance_url,
                    expires_at=token.expires_at,
                    created_at=token.created_at or datetime.now(timezone.utc),
                )
            )
            await session.commit()


# ── Credential Provider ─────────────────────────────────────────────────────


class CredentialProvider:
    """Supplies valid Salesforce credentials, refreshing OAuth tokens.

    Args:
        store: Token persistence.
        settings: Application settings (client credentials, fallbacks).
        transport: Optional httpx transport, for tests.
    """

    def __init__(
        self,
        store: TokenStore,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        """Create a new httpx client for one token request."""
        return httpx.AsyncClient(
            timeout=self._settings.SALESFORCE_HTTP_TIMEOUT,
            transport=self._transport,
        )

    @property
    def _expiry_buffer(self) -> timedelta:
        return timedelta(seconds=self._settings.TOKEN_EXPIRY_BUFFER_SECONDS)

    async def get_credentials(self) -> Credentials:
        """Return usable credentials for outbound calls.

        Raises:
            CredentialError: No stored, refreshable or static credential.
        """
        now = datetime.now(timezone.utc)
        stored = await self._store.get()

        if stored is not None and stored.expires_at > now + self._expiry_buffer:
            return Credentials(
                access_token=stored.access_token,
                instance_url=stored.instance_url,
            )

        if stored is not None and stored.refresh_token:
            refreshed = await self._refresh(stored)
            if refreshed is not None:
                await self._store.replace(refreshed)
                return Credentials(
                    access_token=refreshed.access_token,
                    instance_url=refreshed.instance_url,
                )

        if self._settings.SALESFORCE_ACCESS_TOKEN and self._settings.SALESFORCE_INSTANCE_URL:
            return Credentials(
                access_token=self._settings.SALESFORCE_ACCESS_TOKEN,
                instance_url=self._settings.SALESFORCE_INSTANCE_URL.rstrip("/"),
            )

        raise CredentialError(
            "Salesforce credentials not configured. Complete the OAuth flow "
            "or set SALESFORCE_INSTANCE_URL and SALESFORCE_ACCESS_TOKEN."
        )

    async def _refresh(self, stored: StoredToken) -> StoredToken | None:
        """Run the refresh-token grant. Returns None on any failure."""
        client_id = self._settings.SALESFORCE_CLIENT_ID
        client_secret = self._settings.SALESFORCE_CLIENT_SECRET
        if not client_id or not client_secret:
            logger.warning("salesforce.refresh_skipped", reason="client credentials not configured")
            return None

        url = f"{stored.instance_url.rstrip('/')}{TOKEN_PATH}"
        try:
            async with track_salesforce_call("token_refresh"):
                async with self._client() as client:
                    response = await client.post(
                        url,
                        data={
                            "grant_type": "refresh_token",
                            "client_id": client_id,
                            "client_secret": client_secret,
                            "refresh_token": stored.refresh_token,
                        },
                    )
        except httpx.HTTPError as exc:
            logger.error("salesforce.refresh_error", error=str(exc))
            return None

        if not response.is_success:
            logger.error(
                "salesforce.refresh_failed",
                status_code=response.status_code,
                body=response.text[:500],
            )
            return None

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.error(
                "salesforce.refresh_failed",
                reason="non-JSON token response",
                body=response.text[:500],
            )
            return None

        access_token = data.get("access_token")
        if not access_token:
            logger.error("salesforce.refresh_failed", reason="no access_token in response")
            return None

        now = datetime.now(timezone.utc)
        logger.info("salesforce.token_refreshed", instance_url=stored.instance_url)
        return StoredToken(
            access_token=access_token,
            refresh_token=stored.refresh_token,
            instance_url=stored.instance_url,
            expires_at=now + timedelta(seconds=_expires_in(data)),
            created_at=now,
        )

    async def exchange_code(self, code: str, redirect_uri: str) -> StoredToken:
        """Exchange an authorization code and store the resulting token.

        Args:
            code: Authorization code from the OAuth callback.
            redirect_uri: Redirect URI registered on the Connected App.

        Returns:
            The newly stored token.

        Raises:
            CredentialError: Client credentials missing, or the token
                endpoint rejected the exchange.
        """
        client_id = self._settings.SALESFORCE_CLIENT_ID
        client_secret = self._settings.SALESFORCE_CLIENT_SECRET
        if not client_id or not client_secret:
            raise CredentialError("OAuth client credentials not configured")

        url = f"{self._settings.SALESFORCE_LOGIN_URL.rstrip('/')}{TOKEN_PATH}"
        try:
            async with track_salesforce_call("token_exchange"):
                async with self._client() as client:
                    response = await client.post(
                        url,
                        data={
                            "grant_type": "authorization_code",
                            "client_id": client_id,
                            "client_secret": client_secret,
                            "redirect_uri": redirect_uri,
                            "code": code,
                        },
                    )
        except httpx.HTTPError as exc:
            raise CredentialError(f"OAuth failed: {exc}") from exc

        if not response.is_success:
            raise CredentialError(f"OAuth failed: {response.text}")

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            raise CredentialError("OAuth failed: token response is not a JSON object")
        if not data.get("access_token") or not data.get("instance_url"):
            raise CredentialError("OAuth failed: token response missing access_token or instance_url")

        now = datetime.now(timezone.utc)
        token = StoredToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            instance_url=data["instance_url"].rstrip("/"),
            expires_at=now + timedelta(seconds=_expires_in(data)),
            created_at=now,
        )
        await self._store.replace(token)
        logger.info("salesforce.oauth_connected", instance_url=token.instance_url)
        return token


def _expires_in(data: dict[str, Any]) -> int:
    try:
        value = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
    except (TypeError, ValueError):
        return DEFAULT_EXPIRES_IN
    return value if value > 0 else DEFAULT_EXPIRES_IN
