"""
Meilisearch Backend — Full-Text Search over REST

Endpoints used (Meilisearch v1):
  POST   /indexes/{uid}/documents?primaryKey=id   add-or-replace (upsert)
  DELETE /indexes/{uid}/documents/{id}
  POST   /indexes/{uid}/search                    {q, filter, limit, offset, sort}
  PATCH  /indexes/{uid}/settings                  filterable + sortable attributes

Writes are asynchronous on the Meilisearch side: a 202 means the task was
enqueued, which is what "upserted" means for this backend.

Filters are rendered in Meilisearch's filter syntax:
  {"userId": "u1", "topics": ["a", "b"]}  →  userId = "u1" AND topics IN ["a", "b"]
"""

from __future__ import annotations

import json
import logging
from typing import Any

import httpx

from skimmer.schemas.files import SearchDocument
from skimmer.search.base import SearchBackend, SearchHit

logger = logging.getLogger(__name__)

FILTERABLE_ATTRIBUTES = ["userId", "mimeType", "topics", "entities"]
SORTABLE_ATTRIBUTES   = ["uploadedAt", "lastAnalyzed", "title"]


def build_filter(filters: dict[str, Any] | None) -> str | None:
    if not filters:
        return None
    clauses = []
    for key, value in filters.items():
        if isinstance(value, (list, tuple, set)):
            rendered = ", ".join(json.dumps(str(v)) for v in value)
            clauses.append(f"{key} IN [{rendered}]")
        else:
            clauses.append(f"{key} = {json.dumps(str(value))}")
    return " AND ".join(clauses)


class MeilisearchBackend(SearchBackend):
    name = "meilisearch"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url:    str,
        index:       str = "content",
        api_key:     str = "",
    ) -> None:
        self._http    = http_client
        self._index   = index
        self._base    = f"{base_url.rstrip('/')}/indexes/{index}"
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    async def ensure_index(self) -> None:
        """Declare filterable and sortable attributes. Idempotent; called at startup."""
        resp = await self._http.patch(
            f"{self._base}/settings",
            json={
                "filterableAttributes": FILTERABLE_ATTRIBUTES,
                "sortableAttributes":   SORTABLE_ATTRIBUTES,
            },
            headers=self._headers,
        )
        resp.raise_for_status()
        logger.info("Meilisearch index settings applied | index=%s", self._index)

    async def upsert(self, document: SearchDocument) -> None:
        await self.bulk_upsert([document])

    async def bulk_upsert(self, documents: list[SearchDocument]) -> int:
        if not documents:
            return 0
        resp = await self._http.post(
            f"{self._base}/documents",
            params={"primaryKey": "id"},
            json=[doc.to_index_body() for doc in documents],
            headers=self._headers,
        )
        resp.raise_for_status()
        logger.debug(
            "Meilisearch upsert | index=%s count=%d task=%s",
            self._index, len(documents), resp.json().get("taskUid"),
        )
        return len(documents)

    async def delete(self, document_id: str) -> None:
        resp = await self._http.delete(
            f"{self._base}/documents/{document_id}", headers=self._headers,
        )
        if resp.status_code == 404:
            return
        resp.raise_for_status()
        logger.info("Meilisearch delete | index=%s id=%s", self._index, document_id)

    async def query(
        self,
        text:    str,
        filters: dict[str, Any] | None = None,
        limit:   int = 20,
    ) -> list[SearchHit]:
        return await self.query_page(text, filters, limit)

    async def query_page(
        self,
        text:    str,
        filters: dict[str, Any] | None = None,
        limit:   int = 20,
        offset:  int = 0,
        sort:    list[str] | None = None,
    ) -> list[SearchHit]:
        body: dict[str, Any] = {"q": text, "limit": limit, "showRankingScore": True}
        if offset:
            body["offset"] = offset
        if sort:
            body["sort"] = sort
        rendered = build_filter(filters)
        if rendered:
            body["filter"] = rendered

        resp = await self._http.post(f"{self._base}/search", json=body, headers=self._headers)
        resp.raise_for_status()
        hits = resp.json().get("hits", [])
        return [
            SearchHit(
                id=str(hit["id"]),
                score=float(hit.get("_rankingScore", 0.0)),
                document={k: v for k, v in hit.items() if not k.startswith("_")},
                engine=self.name,
            )
            for hit in hits
        ]
