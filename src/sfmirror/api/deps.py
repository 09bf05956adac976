"""FastAPI dependency helpers for connector services.

Services are created in the app lifespan and stored on ``app.state``.
Each accessor raises HTTPException(503) when its service is not
initialized, so routes fail cleanly before startup completes.
"""

from __future__ import annotations

from typing import Any

from fastapi import HTTPException, Request, status

from src.sfmirror.core.security import WebhookSignatureVerifier
from src.sfmirror.entities.registry import EntityRegistry
from src.sfmirror.events.bus import CdcEventBus
from src.sfmirror.mirror.repository import MirrorRepository
from src.sfmirror.salesforce.auth import CredentialProvider


def _get_service(request: Request, name: str) -> Any:
    """Retrieve a service from app.state, 503 if not available."""
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Service '{name}' is not initialized",
        )
    return service


def get_event_bus(request: Request) -> CdcEventBus:
    return _get_service(request, "event_bus")


def get_signature_verifier(request: Request) -> WebhookSignatureVerifier:
    return _get_service(request, "signature_verifier")


def get_repository(request: Request) -> MirrorRepository:
    return _get_service(request, "mirror_repository")


def get_registry(request: Request) -> EntityRegistry:
    return _get_service(request, "registry")


def get_credential_provider(request: Request) -> CredentialProvider:
    return _get_service(request, "credential_provider")
