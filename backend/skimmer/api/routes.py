"""
HTTP Routes — Webhook Intake + Operations API

  POST   /webhook/file-registered      upload service → skimmer (202, async)
  GET    /api/v1/search                federated search across backends
  POST   /api/v1/search/advanced       filtered, faceted, paged search
  GET    /api/v1/costs                 remote-model spending report
  GET    /api/v1/queue                 retry queue + breaker status
  DELETE /api/v1/files/{id}/index      queue removal from every backend

Webhook authentication:
  The upload service sends the shared secret in X-Webhook-Secret. It is
  compared in constant time. With no secret configured, requests are only
  accepted outside production.

Processing is detached from the request with BackgroundTasks: the caller
gets 202 immediately and the outcome is reported through the completion
callback, never through this response.
"""

from __future__ import annotations

import hmac
import logging
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Header, HTTPException, Query, Request, status

from skimmer.core.config import Settings
from skimmer.schemas.files import AdvancedSearchRequest, FileRegistrationEvent, WebhookAccepted
from skimmer.services.processing import ContentSkimmer

logger = logging.getLogger(__name__)

webhook_router = APIRouter(prefix="/webhook", tags=["Webhooks"])
api_router     = APIRouter(tags=["Operations"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

def get_skimmer(request: Request) -> ContentSkimmer:
    return request.app.state.skimmer


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def verify_webhook_secret(
    x_webhook_secret: str | None = Header(None),
    app_settings:     Settings = Depends(get_app_settings),
) -> None:
    expected = app_settings.webhook_secret
    if not expected:
        if app_settings.is_production:
            logger.error("Webhook rejected: WEBHOOK_SECRET is not configured")
            raise HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Webhook secret not configured")
        return
    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret, expected):
        logger.warning("Webhook rejected: invalid secret")
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid webhook secret")


async def _process_detached(skimmer: ContentSkimmer, event: FileRegistrationEvent) -> None:
    try:
        await skimmer.process_file(event)
    except Exception:
        # Already reported through the failure callback; this is the top of the task.
        logger.exception("Background processing failed | file=%s", event.file_id)


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------

@webhook_router.post(
    "/file-registered",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=WebhookAccepted,
    response_model_by_alias=True,
    dependencies=[Depends(verify_webhook_secret)],
    summary="Start processing a newly registered file",
)
async def file_registered(
    event:            FileRegistrationEvent,
    background_tasks: BackgroundTasks,
    skimmer:          ContentSkimmer = Depends(get_skimmer),
) -> WebhookAccepted:
    logger.info("File registered | file=%s user=%s mime=%s", event.file_id, event.user_id, event.mime_type)
    background_tasks.add_task(_process_detached, skimmer, event)
    return WebhookAccepted(file_id=event.file_id)


# ---------------------------------------------------------------------------
# Operations API
# ---------------------------------------------------------------------------

@api_router.get("/search", summary="Search analysed files")
async def search(
    q:       str = Query(..., min_length=1),
    user_id: str = Query(..., alias="userId"),
    engine:  str = Query("all"),
    limit:   int = Query(20, ge=1, le=100),
    skimmer: ContentSkimmer = Depends(get_skimmer),
) -> dict[str, Any]:
    hits = await skimmer.search_content(q, user_id, engine=engine, limit=limit)
    return {
        "query":   q,
        "engine":  engine,
        "total":   len(hits),
        "results": [
            {"id": h.id, "score": h.score, "engine": h.engine, "document": h.document}
            for h in hits
        ],
    }


@api_router.post("/search/advanced", summary="Filtered, faceted, paged search")
async def advanced_search(
    body:    AdvancedSearchRequest,
    user_id: str = Query(..., alias="userId"),
    skimmer: ContentSkimmer = Depends(get_skimmer),
) -> dict[str, Any]:
    found = await skimmer.advanced_search(body, user_id)
    return {
        "query":   body.query,
        "filters": found.filters,
        "engine":  found.engine,
        "total":   len(found.hits),
        "offset":  body.offset,
        "limit":   body.limit,
        "facets":  found.facets,
        "results": [
            {"id": h.id, "score": h.score, "engine": h.engine, "document": h.document}
            for h in found.hits
        ],
    }


@api_router.get("/costs", summary="Remote-model spending report")
async def costs(skimmer: ContentSkimmer = Depends(get_skimmer)) -> dict[str, Any]:
    return skimmer.get_cost_report()


@api_router.get("/queue", summary="Retry queue and circuit breaker status")
async def queue(skimmer: ContentSkimmer = Depends(get_skimmer)) -> dict[str, Any]:
    return skimmer.get_queue_status()


@api_router.delete(
    "/files/{file_id}/index",
    status_code=status.HTTP_202_ACCEPTED,
    summary="Remove a file from every search backend",
)
async def remove_from_index(
    file_id: str,
    skimmer: ContentSkimmer = Depends(get_skimmer),
) -> dict[str, Any]:
    return {"fileId": file_id, "operations": skimmer.remove_from_index(file_id)}
