"""
Pinecone Backend — Semantic Search over File Summaries

One vector per file, id = file id. The embedded text is the document's
title, summary, entities and topics; the full SearchDocument body is stored
as vector metadata so query results can be rendered without a second
lookup.

Upsert semantics:
  Pinecone upsert overwrites both the vector and the metadata for an
  existing id, which is exactly the replace-not-merge contract.

User scoping:
  Every query filter is ANDed with the caller's equality filters
  (typically {"userId": ...}); there is no unscoped query path in the
  pipeline.

The Pinecone SDK is synchronous; calls are pushed to a worker thread so the
event loop is never blocked on network I/O.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from langchain_openai import OpenAIEmbeddings
from pinecone import Pinecone

from skimmer.schemas.files import SearchDocument
from skimmer.search.base import SearchBackend, SearchHit

logger = logging.getLogger(__name__)


def build_metadata_filter(filters: dict[str, Any] | None) -> dict[str, Any] | None:
    if not filters:
        return None
    clauses = [
        {key: {"$in": [str(v) for v in value]}}
        if isinstance(value, (list, tuple, set))
        else {key: {"$eq": str(value)}}
        for key, value in filters.items()
    ]
    return clauses[0] if len(clauses) == 1 else {"$and": clauses}


def embedding_text(document: SearchDocument) -> str:
    parts = [document.title, document.summary]
    if document.entities:
        parts.append("Entities: " + ", ".join(document.entities))
    if document.topics:
        parts.append("Topics: " + ", ".join(document.topics))
    return "\n".join(p for p in parts if p)


class PineconeSearchBackend(SearchBackend):
    name = "pinecone"

    def __init__(
        self,
        index:      Any,
        embeddings: OpenAIEmbeddings,
        namespace:  str = "files",
        top_k_cap:  int = 100,
    ) -> None:
        self._index      = index
        self._embeddings = embeddings
        self._namespace  = namespace
        self._top_k_cap  = top_k_cap

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def upsert(self, document: SearchDocument) -> None:
        await self.bulk_upsert([document])

    async def bulk_upsert(self, documents: list[SearchDocument], batch_size: int = 100) -> int:
        """Batches stay under Pinecone's 2 MB request limit."""
        total = 0
        for i in range(0, len(documents), batch_size):
            batch   = documents[i : i + batch_size]
            vectors = await self._embeddings.aembed_documents([embedding_text(d) for d in batch])
            records = [
                {"id": doc.id, "values": values, "metadata": doc.to_index_body()}
                for doc, values in zip(batch, vectors)
            ]
            await asyncio.to_thread(self._index.upsert, vectors=records, namespace=self._namespace)
            total += len(batch)
            logger.debug(
                "Pinecone upsert | namespace=%s batch=%d total=%d",
                self._namespace, len(batch), total,
            )
        return total

    async def delete(self, document_id: str) -> None:
        await asyncio.to_thread(self._index.delete, ids=[document_id], namespace=self._namespace)
        logger.info("Pinecone delete | namespace=%s id=%s", self._namespace, document_id)

    async def query(
        self,
        text:    str,
        filters: dict[str, Any] | None = None,
        limit:   int = 20,
    ) -> list[SearchHit]:
        vector = await self._embeddings.aembed_query(text)
        resp = await asyncio.to_thread(
            self._index.query,
            vector=vector,
            top_k=min(limit, self._top_k_cap),
            namespace=self._namespace,
            filter=build_metadata_filter(filters),
            include_metadata=True,
            include_values=False,
        )
        hits = [
            SearchHit(
                id=match["id"],
                score=float(match.get("score", 0.0)),
                document=dict(match.get("metadata") or {}),
                engine=self.name,
            )
            for match in resp.get("matches", [])
        ]
        logger.debug("Pinecone query | namespace=%s results=%d", self._namespace, len(hits))
        return hits

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_settings(cls, settings: Any) -> "PineconeSearchBackend":
        pc = Pinecone(api_key=settings.pinecone_api_key)
        embeddings = OpenAIEmbeddings(
            model=settings.embedding_model,
            api_key=settings.openai_api_key,
            dimensions=settings.embedding_dimensions,
        )
        return cls(
            index=pc.Index(settings.pinecone_index_name),
            embeddings=embeddings,
            namespace=settings.pinecone_namespace,
        )

