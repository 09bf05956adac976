"""Salesforce CDC webhook endpoints.

- POST /webhooks/salesforce/cdc: verify, parse and queue change events.
  Processing happens in the background consumer; the caller only learns
  how many events were queued.
- GET /webhooks/salesforce/cdc/status: per-object mirror row counts.
- GET /webhooks/salesforce/cdc/events: most recent event log rows.
- GET /webhooks/salesforce/records/{api_name}/{sf_id}: one mirror row.
- GET /webhooks/salesforce/config: enabled object configuration.
"""

from __future__ import annotations

import json

import structlog
from fastapi import APIRouter, Query, Request, status
from fastapi.responses import JSONResponse

from src.sfmirror.api.deps import (
    get_event_bus,
    get_registry,
    get_repository,
    get_signature_verifier,
)
from src.sfmirror.config import get_settings
from src.sfmirror.core.errors import AuthError, ConfigError
from src.sfmirror.core.monitoring import cdc_work_items_enqueued_total
from src.sfmirror.core.security import SIGNATURE_HEADER, TIMESTAMP_HEADER
from src.sfmirror.events.schemas import WorkItem, extract_events, normalize_event

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks/salesforce", tags=["webhooks"])


def _error(status_code: int, error: str, reason: str | None = None) -> JSONResponse:
    content = {"error": error}
    if reason is not None:
        content["reason"] = reason
    return JSONResponse(status_code=status_code, content=content)


@router.post("/cdc")
async def receive_cdc_events(request: Request):
    """Receive a single change event or a batch (``{"events": [...]}``).

    Returns:
        ``{success, queued}`` once the work item is on the stream, or
        ``{success, processed: 0}`` for an empty batch.
    """
    raw_body = await request.body()

    verifier = get_signature_verifier(request)
    bus = get_event_bus(request)
    try:
        verifier.require(
            raw_body,
            request.headers.get(SIGNATURE_HEADER),
            request.headers.get(TIMESTAMP_HEADER),
        )
    except AuthError as exc:
        return _error(status.HTTP_401_UNAUTHORIZED, "Unauthorized", exc.reason)

    try:
        body = json.loads(raw_body)
    except ValueError:
        logger.warning("webhook.malformed_body", size=len(raw_body))
        return _error(status.HTTP_400_BAD_REQUEST, "Bad Request", "Malformed JSON body")
    if not isinstance(body, dict):
        return _error(status.HTTP_400_BAD_REQUEST, "Bad Request", "Body must be a JSON object")

    try:
        raw_events = extract_events(body)
        if not raw_events:
            return {"success": True, "processed": 0}

        events = [normalize_event(raw) for raw in raw_events]
        item = WorkItem.batch(events) if len(events) > 1 else WorkItem.single(events[0])

        await bus.publish(get_settings().CDC_STREAM_NAME, item)
    except Exception as exc:
        logger.exception("webhook.enqueue_failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or type(exc).__name__)

    cdc_work_items_enqueued_total.labels(kind=item.kind.value).inc()
    logger.info(
        "webhook.cdc_queued",
        work_id=item.work_id,
        kind=item.kind.value,
        events=len(events),
    )
    return {"success": True, "queued": len(events)}


@router.get("/cdc/status")
async def cdc_status(request: Request):
    """Total, active and deleted row counts per enabled object."""
    registry = get_registry(request)
    repository = get_repository(request)
    try:
        stats = {}
        for config in registry.enabled():
            counts = await repository.stats(config.table_name)
            stats[config.api_name] = counts.model_dump()
    except Exception as exc:
        logger.exception("webhook.status_failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or type(exc).__name__)
    return stats


@router.get("/cdc/events")
async def cdc_events(request: Request, limit: int = Query(100, ge=1, le=1000)):
    """Most recent event log rows, newest first."""
    repository = get_repository(request)
    try:
        entries = await repository.list_event_log(limit=limit)
    except Exception as exc:
        logger.exception("webhook.event_log_failed")
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or type(exc).__name__)
    return [entry.model_dump(mode="json") for entry in entries]


@router.get("/records/{api_name}/{sf_id}")
async def mirror_record(request: Request, api_name: str, sf_id: str):
    """One mirror row by Salesforce object and record id, soft-deleted included."""
    registry = get_registry(request)
    repository = get_repository(request)
    try:
        config = registry.by_api_name(api_name)
    except ConfigError as exc:
        return _error(status.HTTP_404_NOT_FOUND, "Not Found", str(exc))

    row = await repository.get_by_sf_id(config.table_name, sf_id)
    if row is None:
        return _error(status.HTTP_404_NOT_FOUND, "Not Found", f"No {config.api_name} record {sf_id}")
    return row


@router.get("/config")
async def connector_config(request: Request):
    """Enabled objects with their destination table and field count."""
    registry = get_registry(request)
    return [
        {
            "apiName": config.api_name,
            "tableName": config.table_name,
            "label": config.label,
            "fieldCount": len(config.fields),
        }
        for config in registry.enabled()
    ]
