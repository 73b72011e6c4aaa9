"""
Search Synchronization — Fan-Out Indexing and Federated Query

Indexing (runs as an analysis_completed handler):

  AnalysisResult + FileRegistrationEvent + metadata-store record
      │  build SearchDocument (id = file id)
      ▼
  for each backend:
      retry_queue.add_operation("search_index_{file_id}_{backend}", upsert)

  Each backend is an independent retry-queue entry, so a slow or failing
  backend never delays the others. Re-indexing the same file replaces the
  pending entry and, once it runs, the stored document.

Query:

  engine="all"   → every backend concurrently; a failing backend contributes
                   nothing; hits merged in backend order, deduped by id
  engine=<name>  → the first backend whose name contains <name>

Advanced query (filters, facets, offset, sort):

  engine="all"   → Meilisearch when configured (it pages and sorts natively),
                   otherwise the first backend
  engine=<name>  → that backend; paging is sliced where it has no native support
  facets         → top FACET_LIMIT values per field, counted over the returned page
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Sequence

from skimmer.analysis.base import AnalysisResult
from skimmer.core.exceptions import SearchEngineNotFoundError
from skimmer.events.retry_queue import RetryQueue
from skimmer.observability.metrics import MetricsCollector
from skimmer.observability.tracing import traced
from skimmer.schemas.files import AdvancedSearchRequest, FileRegistrationEvent, SearchDocument
from skimmer.search.base import SearchBackend, SearchHit
from skimmer.services.metadata_store import MetadataStoreClient

logger = logging.getLogger(__name__)

FACET_LIMIT = 10


def index_operation_id(file_id: str, backend: SearchBackend) -> str:
    return f"search_index_{file_id}_{backend.name}"


@dataclass
class AdvancedSearchResult:
    hits:    list[SearchHit]
    filters: dict[str, Any]
    engine:  str
    facets:  dict[str, list[tuple[str, int]]] = field(default_factory=dict)


def extract_facets(
    hits:   Sequence[SearchHit],
    facets: Sequence[str],
    limit:  int = FACET_LIMIT,
) -> dict[str, list[tuple[str, int]]]:
    """Most common values per facet field; list-valued fields count each element."""
    result: dict[str, list[tuple[str, int]]] = {}
    for facet in facets:
        counts: Counter[str] = Counter()
        for hit in hits:
            value = hit.document.get(facet)
            if not value:
                continue
            values = value if isinstance(value, (list, tuple)) else [value]
            counts.update(str(v) for v in values)
        result[facet] = counts.most_common(limit)
    return result


def build_search_document(
    result:   AnalysisResult,
    event:    FileRegistrationEvent,
    metadata: dict[str, Any] | None = None,
) -> SearchDocument:
    """Registration event fields win unless the metadata store has a real record."""
    meta = metadata or {}
    if meta.get("fallback"):
        meta = {}
    filename = meta.get("filename") or event.filename
    return SearchDocument(
        id=event.file_id,
        title=meta.get("title") or filename,
        summary=result.summary,
        entities=list(result.entities),
        topics=list(result.topics),
        user_id=event.user_id,
        filename=filename,
        mime_type=event.mime_type,
        uploaded_at=event.uploaded_at.isoformat(),
        last_analyzed=datetime.now(timezone.utc).isoformat(),
    )


class SearchSynchronizer:
    def __init__(
        self,
        backends:       Sequence[SearchBackend],
        retry_queue:    RetryQueue,
        metadata_store: MetadataStoreClient,
        metrics:        MetricsCollector | None = None,
        max_retries:    int = 3,
    ) -> None:
        self._backends    = list(backends)
        self._queue       = retry_queue
        self._metadata    = metadata_store
        self._metrics     = metrics or MetricsCollector()
        self._max_retries = max_retries

    @property
    def backends(self) -> list[SearchBackend]:
        return list(self._backends)

    # ------------------------------------------------------------------
    # Indexing
    # ------------------------------------------------------------------

    @traced("search.index_result")
    async def index_result(
        self,
        result: AnalysisResult,
        event:  FileRegistrationEvent,
    ) -> list[str]:
        """Queue one upsert per backend. Returns the retry-queue ids."""
        metadata = await self._metadata.get_file_metadata(event.file_id)
        document = build_search_document(result, event, metadata)

        op_ids = []
        for backend in self._backends:
            op_id = index_operation_id(event.file_id, backend)
            self._queue.add_operation(
                op_id, self._upsert_operation(backend, document), max_retries=self._max_retries,
            )
            self._metrics.increment("search.index.queued", tags={"engine": backend.name})
            op_ids.append(op_id)

        logger.info(
            "Search indexing queued | file=%s backends=%s", event.file_id,
            [b.name for b in self._backends],
        )
        return op_ids

    def remove(self, file_id: str) -> list[str]:
        """Queue deletion of ``file_id`` from every backend."""
        op_ids = []
        for backend in self._backends:
            op_id = f"search_delete_{file_id}_{backend.name}"
            self._queue.add_operation(
                op_id, self._delete_operation(backend, file_id), max_retries=self._max_retries,
            )
            op_ids.append(op_id)
        return op_ids

    def _upsert_operation(
        self, backend: SearchBackend, document: SearchDocument,
    ) -> Callable[[], Awaitable[None]]:
        async def _run() -> None:
            try:
                await backend.upsert(document)
            except Exception:
                self._metrics.increment("search.index.failed", tags={"engine": backend.name})
                raise
            self._metrics.increment("search.index.updated", tags={"engine": backend.name})
            logger.debug("Search index updated | file=%s engine=%s", document.id, backend.name)
        return _run

    @staticmethod
    def _delete_operation(backend: SearchBackend, file_id: str) -> Callable[[], Awaitable[None]]:
        async def _run() -> None:
            await backend.delete(file_id)
        return _run

    # ------------------------------------------------------------------
    # Query
    # ------------------------------------------------------------------

    async def search(
        self,
        query:   str,
        user_id: str,
        engine:  str = "all",
        limit:   int = 20,
    ) -> list[SearchHit]:
        filters = {"userId": user_id}

        if engine == "all":
            per_backend = await asyncio.gather(
                *(self._safe_query(b, query, filters, limit) for b in self._backends)
            )
            merged: dict[str, SearchHit] = {}
            for hits in per_backend:
                for hit in hits:
                    merged.setdefault(hit.id, hit)
            return list(merged.values())[:limit]

        wanted = engine.lower()
        backend = next((b for b in self._backends if wanted in b.name.lower()), None)
        if backend is None:
            raise SearchEngineNotFoundError(engine)
        hits = await backend.query(query, filters, limit)
        return hits[:limit]

    @staticmethod
    async def _safe_query(
        backend: SearchBackend, query: str, filters: dict[str, Any], limit: int,
    ) -> list[SearchHit]:
        try:
            return await backend.query(query, filters, limit)
        except Exception as exc:
            logger.warning("Search backend failed | engine=%s error=%s", backend.name, exc)
            return []

    async def advanced_search(
        self,
        request: AdvancedSearchRequest,
        user_id: str,
    ) -> AdvancedSearchResult:
        filters = {**request.filters, "userId": user_id}
        backend = self._advanced_backend(request.engine)
        sort = [request.sort_by] if request.sort_by != "relevance" else None

        hits = await backend.query_page(
            request.query, filters, limit=request.limit, offset=request.offset, sort=sort,
        )
        facets = extract_facets(hits, request.facets) if request.facets else {}
        self._metrics.increment("search.advanced.requests", tags={"engine": backend.name})
        logger.info(
            "Advanced search | engine=%s results=%d offset=%d facets=%s",
            backend.name, len(hits), request.offset, request.facets,
        )
        return AdvancedSearchResult(hits=hits, filters=filters, engine=backend.name, facets=facets)

    def _advanced_backend(self, engine: str) -> SearchBackend:
        wanted = engine.lower()
        if wanted == "all":
            preferred = next((b for b in self._backends if b.name == "meilisearch"), None)
            backend = preferred or next(iter(self._backends), None)
        else:
            backend = next((b for b in self._backends if wanted in b.name.lower()), None)
        if backend is None:
            raise SearchEngineNotFoundError(engine)
        return backend

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        for backend in self._backends:
            try:
                await backend.aclose()
            except Exception as exc:
                logger.warning("Search backend close failed | engine=%s error=%s", backend.name, exc)
