"""
Search Backend — Abstract Base

Every concrete search backend (Meilisearch, Pinecone) implements this
interface. The synchronizer only speaks this protocol, so backends are
swappable and can be added without changing pipeline code.

Upsert contract (enforced by ALL implementations):
  - Documents are keyed by SearchDocument.id (the file id).
  - upsert() REPLACES any existing document with the same id; fields are
    never merged with a previous version.
  - query() results are scoped to the caller's user id by metadata filter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from skimmer.schemas.files import SearchDocument


@dataclass
class SearchHit:
    """One result returned from a backend query."""
    id:       str
    score:    float
    document: dict[str, Any] = field(default_factory=dict)
    engine:   str = ""


class SearchBackend(ABC):
    name: str = "search"

    @abstractmethod
    async def upsert(self, document: SearchDocument) -> None:
        """Insert or replace a single document."""

    async def bulk_upsert(self, documents: list[SearchDocument]) -> int:
        """Insert or replace many documents. Returns the number written."""
        for doc in documents:
            await self.upsert(doc)
        return len(documents)

    @abstractmethod
    async def delete(self, document_id: str) -> None:
        """Delete a document by id. Deleting a missing id is not an error."""

    @abstractmethod
    async def query(
        self,
        text:    str,
        filters: dict[str, Any] | None = None,
        limit:   int = 20,
    ) -> list[SearchHit]:
        """Search; ``filters`` is an equality map over document fields."""

    async def query_page(
        self,
        text:    str,
        filters: dict[str, Any] | None = None,
        limit:   int = 20,
        offset:  int = 0,
        sort:    list[str] | None = None,
    ) -> list[SearchHit]:
        """
        Paged query. Backends without native paging fetch ``offset + limit``
        hits and slice; ``sort`` is ignored where the backend ranks by
        similarity only.
        """
        hits = await self.query(text, filters, offset + limit)
        return hits[offset:offset + limit]

    async def aclose(self) -> None:
        """Release backend resources."""
