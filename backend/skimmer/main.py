"""
FastAPI Application — Entry Point

Content Skimmer service

Architecture:
  - The upload service calls POST /webhook/file-registered for every new
    file; processing runs detached from the request (202 Accepted).
  - Outcomes are pushed back to the metadata store via its completion
    webhook; this API never returns analysis results synchronously.
  - Operations endpoints live under /api/v1/.

Process-wide state (created once in lifespan, shared by all requests):
  - httpx.AsyncClient       one connection pool for every outbound call
  - ContentSkimmer          breakers, retry queue, event bus, result cache

Middleware stack:
  1. Request ID + structured logging — X-Request-ID on every response
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from skimmer.api.routes import api_router, webhook_router
from skimmer.core.config import Settings, settings
from skimmer.core.exceptions import (
    SearchEngineNotFoundError,
    SkimmerError,
    UnsupportedContentTypeError,
)
from skimmer.observability.tracing import enable_langsmith
from skimmer.schemas.files import ErrorResponse
from skimmer.search.meilisearch_store import MeilisearchBackend
from skimmer.services.processing import ContentSkimmer, build_content_skimmer

logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.DEBUG if settings.debug else settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)

_ERROR_STATUS: dict[type[SkimmerError], int] = {
    SearchEngineNotFoundError:   status.HTTP_404_NOT_FOUND,
    UnsupportedContentTypeError: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
}


# ---------------------------------------------------------------------------
# Application factory
# ---------------------------------------------------------------------------

def create_app(
    app_settings: Settings | None = None,
    skimmer:      ContentSkimmer | None = None,
) -> FastAPI:
    """
    ``skimmer`` may be injected (tests); otherwise it is built from settings
    at startup together with the shared HTTP client.
    """
    cfg = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Starting Content Skimmer | env=%s search_backends=%s model=%s",
            cfg.app_env, cfg.enabled_search_backends, cfg.llm_model,
        )
        http_client: httpx.AsyncClient | None = None
        if skimmer is None:
            http_client = httpx.AsyncClient(timeout=cfg.http_timeout_seconds)
            app.state.skimmer = build_content_skimmer(cfg, http_client)
            await _prepare_search_indexes(app.state.skimmer)
        else:
            app.state.skimmer = skimmer

        yield

        logger.info("Shutting down Content Skimmer")
        await app.state.skimmer.aclose()
        if http_client is not None:
            await http_client.aclose()

    app = FastAPI(
        title="Content Skimmer",
        description="Event-driven file analysis and search indexing service.",
        version="1.0.0",
        docs_url="/api/docs" if not cfg.is_production else None,
        redoc_url=None,
        openapi_url="/api/openapi.json" if not cfg.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = cfg

    # ----------------------------------------------------------------
    # Request ID + structured logging middleware
    # ----------------------------------------------------------------

    @app.middleware("http")
    async def request_id_and_logging(request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "HTTP %s %s %d %.1fms",
            request.method, request.url.path, response.status_code, duration_ms,
        )
        return response

    # ----------------------------------------------------------------
    # Exception handlers: uniform structured error responses
    # ----------------------------------------------------------------

    @app.exception_handler(SkimmerError)
    async def skimmer_exception_handler(request: Request, exc: SkimmerError):
        code = _ERROR_STATUS.get(type(exc), status.HTTP_500_INTERNAL_SERVER_ERROR)
        body = ErrorResponse(
            error_code=type(exc).__name__,
            message=str(exc),
            request_id=request.headers.get("X-Request-ID"),
        )
        return JSONResponse(status_code=code, content=body.model_dump(mode="json"))

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        """Catch-all for unhandled exceptions — never expose stack traces."""
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
        logger.exception(
            "Unhandled exception | path=%s request_id=%s", request.url.path, request_id,
        )
        body = ErrorResponse(
            error_code="INTERNAL_ERROR",
            message="An unexpected error occurred.",
            request_id=request_id,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=body.model_dump(mode="json"),
            headers={"X-Request-ID": request_id},
        )

    # ----------------------------------------------------------------
    # Routers
    # ----------------------------------------------------------------

    app.include_router(webhook_router)
    app.include_router(api_router, prefix="/api/v1")

    enable_langsmith(cfg)

    # ----------------------------------------------------------------
    # Health & metrics (no auth, used by load balancer / monitoring)
    # ----------------------------------------------------------------

    @app.get("/", tags=["Operations"], include_in_schema=False)
    async def root() -> dict:
        return {"service": "content-skimmer", "status": "ok"}

    @app.get(
        "/health",
        tags=["Operations"],
        summary="Health check",
        description="Circuit breaker and retry queue checks; 503 when unhealthy.",
    )
    async def health(request: Request) -> JSONResponse:
        report = await request.app.state.skimmer.health()
        code = (
            status.HTTP_503_SERVICE_UNAVAILABLE if report["status"] == "unhealthy"
            else status.HTTP_200_OK
        )
        return JSONResponse(status_code=code, content=report)

    @app.get("/metrics", tags=["Operations"], summary="Processing metrics (last 5 minutes)")
    async def metrics(request: Request) -> dict:
        return request.app.state.skimmer.metrics.get_processing_metrics()

    return app


async def _prepare_search_indexes(skimmer: ContentSkimmer) -> None:
    """Best-effort: an unreachable backend must not block startup."""
    for backend in skimmer.search_backends:
        if isinstance(backend, MeilisearchBackend):
            try:
                await backend.ensure_index()
            except httpx.HTTPError as exc:
                logger.warning("Meilisearch index setup failed | error=%s", exc)


# ---------------------------------------------------------------------------
# Application instance (imported by uvicorn)
# ---------------------------------------------------------------------------

app = create_app()


# ---------------------------------------------------------------------------
# Local development entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "skimmer.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.app_env == "development",
        log_level="debug" if settings.debug else "info",
        access_log=True,
    )
