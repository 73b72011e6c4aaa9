"""
Root conftest.py — Shared fixtures for ALL tests (unit + integration)

Fixture hierarchy:
  helpers          : FakeClock, InMemorySearchBackend
  function-scoped  : clock, breakers, make_event, mock_metadata_store,
                     mock_content_store, search_backends, make_skimmer

Environment strategy:
  - No test touches a real network: HTTP collaborators are exercised through
    httpx.MockTransport, everything else through AsyncMock.
  - The remote model is disabled (no OPENAI_API_KEY), so analysis runs the
    rule-based pass unless a test injects a chat model factory.

How to run:
  pytest                          # all tests
  pytest -m unit                  # unit tests only
  pytest -m integration           # FastAPI app end to end
"""

from __future__ import annotations

import os
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# ─────────────────────────────────────────────────────────────────────────────
# Patch settings BEFORE any skimmer imports so modules read test config
# ─────────────────────────────────────────────────────────────────────────────

os.environ.setdefault("APP_ENV",            "development")
os.environ.setdefault("OPENAI_API_KEY",     "")
os.environ.setdefault("WEBHOOK_SECRET",     "test-webhook-secret")
os.environ.setdefault("DATA_SERVICE_URL",   "http://data.test")
os.environ.setdefault("CONTENT_STORE_URL",  "http://content.test")
os.environ.setdefault("MEILISEARCH_URL",    "http://meili.test")
os.environ.setdefault("SEARCH_BACKENDS",    "meilisearch")

from skimmer.analysis.cost_policy import CostOptimizer, resolve_cost_profile  # noqa: E402
from skimmer.analysis.openai_provider import OpenAIAnalysisProvider           # noqa: E402
from skimmer.analysis.orchestrator import AnalysisOrchestrator                # noqa: E402
from skimmer.events.bus import EventBus                                       # noqa: E402
from skimmer.events.retry_queue import RetryQueue                             # noqa: E402
from skimmer.resilience.circuit_breaker import (                              # noqa: E402
    CircuitBreakerConfig,
    CircuitBreakerRegistry,
)
from skimmer.schemas.files import FileRegistrationEvent, SearchDocument       # noqa: E402
from skimmer.search.base import SearchBackend, SearchHit                      # noqa: E402
from skimmer.search.sync import SearchSynchronizer                            # noqa: E402
from skimmer.services.metadata_store import MetadataStoreClient               # noqa: E402
from skimmer.services.processing import ContentSkimmer                        # noqa: E402
from skimmer.storage.content_store import ContentStoreClient                  # noqa: E402


SAMPLE_TEXT = (
    "Quarterly revenue grew 12% thanks to strong market performance. "
    "Dr. Jane Smith presented the budget to Acme Corp. on 2024-03-15. "
    "The team will improve workflow efficiency with new cloud software."
)


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

class FakeClock:
    """Manually advanced clock usable wherever a ``clock`` callable is accepted."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class InMemorySearchBackend(SearchBackend):
    """Dict-backed backend with replace-on-upsert semantics and scripted failures."""

    def __init__(self, name: str = "memory", fail_times: int = 0) -> None:
        self.name        = name
        self.documents:  dict[str, dict[str, Any]] = {}
        self.fail_times  = fail_times
        self.upsert_calls = 0
        self.closed       = False

    async def upsert(self, document: SearchDocument) -> None:
        self.upsert_calls += 1
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError(f"{self.name} unavailable")
        self.documents[document.id] = document.to_index_body()

    async def delete(self, document_id: str) -> None:
        self.documents.pop(document_id, None)

    async def query(self, text: str, filters: dict | None = None, limit: int = 20) -> list[SearchHit]:
        hits = []
        for doc in self.documents.values():
            if filters and not all(_matches(doc.get(k), v) for k, v in filters.items()):
                continue
            haystack = " ".join([doc["title"], doc["summary"], *doc["entities"], *doc["topics"]]).lower()
            if text.lower() in haystack:
                hits.append(SearchHit(id=doc["id"], score=1.0, document=dict(doc), engine=self.name))
        return hits[:limit]

    async def aclose(self) -> None:
        self.closed = True


def _matches(field_value: Any, wanted: Any) -> bool:
    """Equality, or "any of" when `wanted` is a list; list-valued fields match on overlap."""
    wanted_values = wanted if isinstance(wanted, list) else [wanted]
    have = field_value if isinstance(field_value, list) else [field_value]
    return any(v in have for v in wanted_values)


# ─────────────────────────────────────────────────────────────────────────────
# Core fixtures
# ─────────────────────────────────────────────────────────────────────────────

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def breakers(clock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(
        CircuitBreakerConfig(failure_threshold=5, recovery_timeout=60.0),
        clock=clock,
    )


@pytest.fixture
def make_event():
    """Factory fixture: FileRegistrationEvent with overridable fields."""
    def _build(**overrides: Any) -> FileRegistrationEvent:
        fields: dict[str, Any] = {
            "fileId":     "file-123",
            "userId":     "user-42",
            "filename":   "report.txt",
            "storageKey": "users/user-42/report.txt",
            "mimeType":   "text/plain",
            "fileSize":   len(SAMPLE_TEXT),
            "uploadedAt": datetime(2024, 3, 15, 9, 30, tzinfo=timezone.utc).isoformat(),
            "signedUrl":  "http://content.test/download/file-123?sig=abc",
        }
        fields.update(overrides)
        return FileRegistrationEvent.model_validate(fields)
    return _build


@pytest.fixture
def mock_metadata_store():
    """MetadataStoreClient double: every call succeeds."""
    store = MagicMock(spec=MetadataStoreClient)
    store.update_file_status       = AsyncMock(return_value=True)
    store.get_file_metadata        = AsyncMock(return_value={"fileId": "file-123", "filename": "report.txt"})
    store.send_processing_callback = AsyncMock(return_value=None)
    return store


@pytest.fixture
def mock_content_store():
    store = MagicMock(spec=ContentStoreClient)
    store.fetch_content = AsyncMock(return_value=SAMPLE_TEXT.encode("utf-8"))
    return store


@pytest.fixture
def search_backends() -> list[InMemorySearchBackend]:
    return [InMemorySearchBackend("meilisearch"), InMemorySearchBackend("pinecone")]


@pytest.fixture
def make_skimmer(mock_metadata_store, mock_content_store, search_backends, breakers):
    """
    Factory: ContentSkimmer wired with the real analysis stack (rule-based
    only), a real event bus and retry queue, and mocked I/O collaborators.
    """
    def _build(**overrides: Any) -> ContentSkimmer:
        retry_queue = overrides.pop("retry_queue", None) or RetryQueue(rescan_delay=0.01)
        optimizer = CostOptimizer(
            profile=resolve_cost_profile("development"),
            remote_enabled=False,
        )
        analysis = overrides.pop("analysis", None) or AnalysisOrchestrator(
            [OpenAIAnalysisProvider(optimizer=optimizer)]
        )
        search_sync = SearchSynchronizer(
            backends=search_backends,
            retry_queue=retry_queue,
            metadata_store=mock_metadata_store,
        )
        kwargs: dict[str, Any] = {
            "analysis":       analysis,
            "content_store":  mock_content_store,
            "metadata_store": mock_metadata_store,
            "search_sync":    search_sync,
            "events":         EventBus(),
            "retry_queue":    retry_queue,
            "breakers":       breakers,
        }
        kwargs.update(overrides)
        return ContentSkimmer(**kwargs)
    return _build
