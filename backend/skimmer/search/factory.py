"""
Search Backend Factory

Builds every backend listed in SEARCH_BACKENDS (comma separated). The rest
of the app only calls create_search_backends() and never touches the
concrete classes directly.
"""

from __future__ import annotations

import httpx

from skimmer.core.config import Settings
from skimmer.search.base import SearchBackend


def create_search_backends(settings: Settings, http_client: httpx.AsyncClient) -> list[SearchBackend]:
    backends: list[SearchBackend] = []

    for name in settings.enabled_search_backends:
        if name == "meilisearch":
            from skimmer.search.meilisearch_store import MeilisearchBackend
            backends.append(MeilisearchBackend(
                http_client=http_client,
                base_url=settings.meilisearch_url,
                index=settings.meilisearch_index,
                api_key=settings.meilisearch_api_key,
            ))
        elif name == "pinecone":
            from skimmer.search.pinecone_store import PineconeSearchBackend
            backends.append(PineconeSearchBackend.from_settings(settings))
        else:
            raise ValueError(
                f"Unknown search backend: '{name}'. "
                f"Valid options: 'meilisearch', 'pinecone'"
            )

    return backends
