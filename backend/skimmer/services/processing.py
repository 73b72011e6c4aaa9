"""
Processing Orchestrator — ContentSkimmer
════════════════════════════════════════

Full pipeline for one FileRegistrationEvent:

  Step 1  Build ProcessingContext (job id generated per invocation)
  Step 2  Best-effort status PATCH → "analyzing"
  Step 3  Compatibility check       → UnsupportedContentTypeError, before any download
  Step 4  Acquire bytes             (signed URL resolved when absent)
  Step 5  Analyse                   (ordered provider failover)
  Step 6  Assemble callback result
  Step 7  "completed" callback + best-effort status PATCH → "analyzed"
  Step 8  Emit analysis_completed   → search synchronization
  Step 9  On any error in 3–7: "failed" callback, emit analysis_failed, re-raise

Steps run strictly in sequence; there is no intra-invocation parallelism.
Steps 3–7 can be bounded by processing_timeout_seconds.

Delivery semantics:
  At-least-once. A re-delivered event is processed again under a new job
  id; search indexing is an upsert, so the second run converges on the
  same indexed document.

Failure classes:
  ┌──────────────────────────────────┬──────────────────────────────────────┐
  │ Unsupported type / acquisition / │ failed callback + analysis_failed,   │
  │ all providers failed / timeout   │ original error re-raised             │
  │ Status PATCH failure             │ logged, pipeline continues           │
  │ Completed-callback failure       │ logged, pipeline continues           │
  │ Failed-callback failure          │ logged CRITICAL, original re-raised  │
  │ Event handler failure            │ logged by the bus, never propagates  │
  └──────────────────────────────────┴──────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx

from skimmer.analysis.base import AnalysisResult
from skimmer.analysis.cost_policy import CostOptimizer, resolve_cost_profile
from skimmer.analysis.openai_provider import OpenAIAnalysisProvider
from skimmer.analysis.orchestrator import AnalysisOrchestrator
from skimmer.core.config import Settings
from skimmer.core.exceptions import (
    CallbackDeliveryError,
    ProcessingTimeoutError,
    UnsupportedContentTypeError,
)
from skimmer.events.bus import ANALYSIS_COMPLETED, ANALYSIS_FAILED, Event, EventBus
from skimmer.events.retry_queue import RetryQueue
from skimmer.observability.metrics import (
    DEGRADED,
    HEALTHY,
    HealthChecker,
    MetricsCollector,
)
from skimmer.observability.tracing import traced
from skimmer.resilience.circuit_breaker import CircuitBreakerConfig, CircuitBreakerRegistry
from skimmer.schemas.files import AdvancedSearchRequest, FileRegistrationEvent, FileStatus
from skimmer.search.base import SearchBackend, SearchHit
from skimmer.search.factory import create_search_backends
from skimmer.search.sync import AdvancedSearchResult, SearchSynchronizer
from skimmer.services.metadata_store import MetadataStoreClient
from skimmer.storage.content_store import ContentStoreClient

logger = logging.getLogger(__name__)

# Queue depth above which the retry queue reports itself degraded.
RETRY_QUEUE_DEGRADED_DEPTH = 100


# ---------------------------------------------------------------------------
# Per-invocation context
# ---------------------------------------------------------------------------

class ProcessingStage(str, Enum):
    STARTED    = "started"
    ACQUIRING  = "acquiring"
    ANALYZING  = "analyzing"
    PERSISTING = "persisting"
    COMPLETED  = "completed"
    FAILED     = "failed"


@dataclass
class ProcessingContext:
    file_id:     str
    user_id:     str
    start_time:  float
    retry_count: int = 0
    job_id:      str = ""
    stage:       ProcessingStage = ProcessingStage.STARTED

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.start_time) * 1000


# ---------------------------------------------------------------------------
# ContentSkimmer
# ---------------------------------------------------------------------------

class ContentSkimmer:
    """
    Application-root service. One instance per process, shared by all
    concurrent invocations; per-invocation state lives in ProcessingContext.
    """

    def __init__(
        self,
        analysis:           AnalysisOrchestrator,
        content_store:      ContentStoreClient,
        metadata_store:     MetadataStoreClient,
        search_sync:        SearchSynchronizer,
        events:             EventBus,
        retry_queue:        RetryQueue,
        breakers:           CircuitBreakerRegistry,
        metrics:            MetricsCollector | None = None,
        processing_timeout: float | None = None,
        health_timeout:     float = 5.0,
    ) -> None:
        self._analysis      = analysis
        self._content_store = content_store
        self._metadata      = metadata_store
        self._search_sync   = search_sync
        self._events        = events
        self._retry_queue   = retry_queue
        self._breakers      = breakers
        self._metrics       = metrics or MetricsCollector()
        self._timeout       = processing_timeout

        self._events.on(ANALYSIS_COMPLETED, self._on_analysis_completed)
        self._events.on(ANALYSIS_FAILED, self._on_analysis_failed)

        self._health = HealthChecker(timeout=health_timeout)
        self._health.register("circuit_breakers", self._check_circuit_breakers)
        self._health.register("retry_queue", self._check_retry_queue)

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def search_backends(self) -> list[SearchBackend]:
        return self._search_sync.backends

    # -----------------------------------------------------------------------
    # Pipeline
    # -----------------------------------------------------------------------

    @traced("skimmer.process_file")
    async def process_file(self, event: FileRegistrationEvent) -> AnalysisResult:
        # Step 1
        context = ProcessingContext(
            file_id=event.file_id,
            user_id=event.user_id,
            start_time=time.monotonic(),
            job_id=f"job-{uuid.uuid4().hex[:12]}-{event.file_id}",
        )
        self._metrics.increment("file.processing.started", tags={"mime_type": event.mime_type})
        logger.info(
            "Processing started | file=%s user=%s job=%s mime=%s size=%d",
            event.file_id, event.user_id, context.job_id, event.mime_type, event.file_size,
        )

        # Step 2
        await self._record_status(event.file_id, FileStatus.ANALYZING)

        try:
            if self._timeout:
                try:
                    result = await asyncio.wait_for(self._run_pipeline(event, context), self._timeout)
                except asyncio.TimeoutError as exc:
                    raise ProcessingTimeoutError(
                        f"Processing of file {event.file_id} exceeded {self._timeout}s "
                        f"(stage={context.stage.value})"
                    ) from exc
            else:
                result = await self._run_pipeline(event, context)
        except Exception as exc:
            await self._handle_failure(event, context, exc)
            raise

        # Step 8
        context.stage = ProcessingStage.COMPLETED
        self._metrics.increment("file.processing.completed")
        self._metrics.timing("file.processing.duration", context.elapsed_ms)
        logger.info(
            "Processing completed | file=%s job=%s elapsed_ms=%.0f",
            event.file_id, context.job_id, context.elapsed_ms,
        )
        await self._events.emit(
            ANALYSIS_COMPLETED, {"result": result, "context": context, "event": event},
        )
        return result

    async def _run_pipeline(
        self, event: FileRegistrationEvent, context: ProcessingContext,
    ) -> AnalysisResult:
        # Step 3
        if not self._analysis.has_compatible_provider(event.mime_type):
            raise UnsupportedContentTypeError(event.mime_type)

        # Step 4
        context.stage = ProcessingStage.ACQUIRING
        content = await self._content_store.fetch_content(event)
        self._metrics.increment("file.content.downloaded")
        self._metrics.histogram("file.content.bytes", len(content))

        # Step 5
        context.stage = ProcessingStage.ANALYZING
        result = await self._analysis.analyze_file(content, event.mime_type)
        self._metrics.increment("ai.analysis.completed")

        # Step 6
        context.stage = ProcessingStage.PERSISTING
        summary = self.build_callback_result(event, result, context)

        # Step 7
        try:
            await self._metadata.send_processing_callback(
                event.file_id, context.job_id, "completed", result=summary,
            )
        except CallbackDeliveryError as exc:
            logger.error(
                "Completed callback not delivered | file=%s job=%s error=%s",
                event.file_id, context.job_id, exc,
            )
        await self._record_status(event.file_id, FileStatus.ANALYZED, analysis=result.to_payload())
        return result

    async def _handle_failure(
        self, event: FileRegistrationEvent, context: ProcessingContext, exc: Exception,
    ) -> None:
        context.stage = ProcessingStage.FAILED
        self._metrics.increment("file.processing.failed", tags={"error": type(exc).__name__})
        logger.error(
            "Processing failed | file=%s job=%s elapsed_ms=%.0f error=%s",
            event.file_id, context.job_id, context.elapsed_ms, exc,
        )
        try:
            await self._metadata.send_processing_callback(
                event.file_id, context.job_id, "failed", error=str(exc),
            )
        except Exception as cb_exc:
            logger.critical(
                "Failure callback not delivered; file state is unknown to the metadata store "
                "| file=%s job=%s error=%s original_error=%s",
                event.file_id, context.job_id, cb_exc, exc,
            )
        await self._events.emit(
            ANALYSIS_FAILED, {"error": exc, "context": context, "event": event},
        )

    async def _record_status(
        self,
        file_id:  str,
        status:   FileStatus,
        error:    str | None = None,
        analysis: dict[str, Any] | None = None,
    ) -> None:
        try:
            await self._metadata.update_file_status(file_id, status, error=error, analysis=analysis)
        except Exception as exc:
            logger.warning(
                "Status update failed | file=%s status=%s error=%s", file_id, status.value, exc,
            )

    @staticmethod
    def build_callback_result(
        event:   FileRegistrationEvent,
        result:  AnalysisResult,
        context: ProcessingContext,
    ) -> dict[str, Any]:
        extraction = result.enrichment.get("extracted_metadata", {})
        return {
            "summary":       result.summary,
            "contentType":   determine_content_type(event.mime_type, result.topics),
            "metadata": {
                "wordCount":        extraction.get("word_count", 0),
                "language":         result.language,
                "sentiment":        result.sentiment,
                "entities":         len(result.entities),
                "topics":           len(result.topics),
                "processingTimeMs": round(context.elapsed_ms, 1),
                "strategy":         result.enrichment.get("cost_optimization", {}).get("strategy"),
            },
        }

    # -----------------------------------------------------------------------
    # Event handlers
    # -----------------------------------------------------------------------

    async def _on_analysis_completed(self, event: Event) -> None:
        payload = event.payload
        await self._search_sync.index_result(payload["result"], payload["event"])

    async def _on_analysis_failed(self, event: Event) -> None:
        payload = event.payload
        await self._record_status(
            payload["event"].file_id, FileStatus.ANALYSIS_FAILED, error=str(payload["error"]),
        )

    # -----------------------------------------------------------------------
    # Operations surface
    # -----------------------------------------------------------------------

    async def search_content(
        self,
        query:   str,
        user_id: str,
        engine:  str = "all",
        limit:   int = 20,
    ) -> list[SearchHit]:
        return await self._search_sync.search(query, user_id, engine=engine, limit=limit)

    async def advanced_search(
        self,
        request: AdvancedSearchRequest,
        user_id: str,
    ) -> AdvancedSearchResult:
        return await self._search_sync.advanced_search(request, user_id)

    def remove_from_index(self, file_id: str) -> list[str]:
        return self._search_sync.remove(file_id)

    def get_queue_status(self) -> dict[str, Any]:
        return {
            "retryQueue":     self._retry_queue.get_queue_status(),
            "searchEngines":  len(self._search_sync.backends),
            "circuitBreakers": self._breakers.all_status(),
        }

    def get_cost_report(self) -> dict[str, Any]:
        return self._analysis.get_cost_report()

    async def health(self) -> dict[str, Any]:
        return await self._health.run()

    async def _check_circuit_breakers(self) -> dict[str, Any]:
        open_breakers = self._breakers.open_breakers()
        return {
            "status": DEGRADED if open_breakers else HEALTHY,
            "open":   open_breakers,
        }

    async def _check_retry_queue(self) -> dict[str, Any]:
        pending = self._retry_queue.get_queue_status()["pending"]
        self._metrics.gauge("retry_queue.pending", pending)
        return {
            "status":  DEGRADED if pending > RETRY_QUEUE_DEGRADED_DEPTH else HEALTHY,
            "pending": pending,
        }

    async def aclose(self) -> None:
        await self._retry_queue.aclose()
        await self._search_sync.aclose()


def determine_content_type(mime_type: str, topics: list[str]) -> str:
    if "pdf" in mime_type:
        return "document"
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("text/"):
        return "text"
    if "openxmlformats" in mime_type or "msword" in mime_type:
        return "document"
    if "business" in topics:
        return "business-document"
    return "document"


# ---------------------------------------------------------------------------
# Application root
# ---------------------------------------------------------------------------

def build_content_skimmer(
    settings:    Settings,
    http_client: httpx.AsyncClient,
) -> ContentSkimmer:
    """Wire every process-wide collaborator from settings."""
    breakers = CircuitBreakerRegistry(CircuitBreakerConfig(
        failure_threshold=settings.breaker_failure_threshold,
        recovery_timeout=settings.breaker_recovery_timeout_seconds,
        monitoring_window=settings.breaker_monitoring_window_seconds,
    ))
    metrics     = MetricsCollector()
    retry_queue = RetryQueue(rescan_delay=settings.retry_rescan_delay_seconds)

    metadata_store = MetadataStoreClient(
        http_client=http_client,
        base_url=settings.data_service_url,
        breakers=breakers,
        api_key=settings.data_service_api_key,
        webhook_secret=settings.webhook_secret,
        callback_path=settings.webhook_callback_path,
    )
    content_store = ContentStoreClient(
        http_client=http_client,
        base_url=settings.content_store_url,
        breakers=breakers,
        api_key=settings.content_store_api_key,
    )

    optimizer = CostOptimizer(
        profile=resolve_cost_profile(settings.cost_profile, settings.app_env),
        model=settings.llm_model,
        remote_enabled=bool(settings.openai_api_key),
        min_content_length=settings.min_content_length,
    )
    provider = OpenAIAnalysisProvider(
        optimizer=optimizer,
        api_key=settings.openai_api_key,
        model=settings.llm_model,
        temperature=settings.llm_temperature,
        timeout=settings.llm_timeout_seconds,
    )

    search_sync = SearchSynchronizer(
        backends=create_search_backends(settings, http_client),
        retry_queue=retry_queue,
        metadata_store=metadata_store,
        metrics=metrics,
        max_retries=settings.retry_max_retries,
    )

    return ContentSkimmer(
        analysis=AnalysisOrchestrator([provider]),
        content_store=content_store,
        metadata_store=metadata_store,
        search_sync=search_sync,
        events=EventBus(),
        retry_queue=retry_queue,
        breakers=breakers,
        metrics=metrics,
        processing_timeout=settings.processing_timeout_seconds,
        health_timeout=settings.health_check_timeout_seconds,
    )
