"""Salesforce OAuth callback.

Salesforce redirects here after the user authorizes the Connected App.
The authorization code is exchanged for tokens, which replace the stored
token singleton. The response is a small HTML page for the browser.
"""

from __future__ import annotations

import html

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse

from src.sfmirror.api.deps import get_credential_provider
from src.sfmirror.config import get_settings
from src.sfmirror.core.errors import CredentialError

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/oauth/salesforce", tags=["oauth"])

_PAGE = """<!DOCTYPE html>
<html>
<head><title>{title}</title></head>
<body style="font-family: sans-serif; max-width: 40em; margin: 4em auto;">
<h1>{title}</h1>
<p>{message}</p>
</body>
</html>
"""


def _page(title: str, message: str, status_code: int) -> HTMLResponse:
    return HTMLResponse(
        content=_PAGE.format(title=html.escape(title), message=html.escape(message)),
        status_code=status_code,
    )


@router.get("/callback", name="salesforce_oauth_callback")
async def oauth_callback(
    request: Request,
    code: str | None = None,
    error: str | None = None,
    error_description: str | None = None,
):
    """Complete the authorization-code flow and report the result."""
    if error:
        logger.warning("oauth.authorization_denied", error=error, description=error_description)
        return _page(
            "Salesforce connection failed",
            error_description or error,
            400,
        )
    if not code:
        return _page("Salesforce connection failed", "Missing authorization code.", 400)

    provider = get_credential_provider(request)
    redirect_uri = get_settings().SALESFORCE_OAUTH_REDIRECT_URI or str(
        request.url_for("salesforce_oauth_callback")
    )

    try:
        token = await provider.exchange_code(code, redirect_uri)
    except CredentialError as exc:
        logger.error("oauth.exchange_failed", error=str(exc))
        return _page("Salesforce connection failed", str(exc), 502)

    return _page(
        "Salesforce connected",
        f"Connected to {token.instance_url}. You can close this window.",
        200,
    )
