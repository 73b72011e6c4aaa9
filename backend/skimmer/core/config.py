"""
Application configuration via environment variables (12-factor).
Pydantic BaseSettings validates and coerces all values at startup.
"""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # ------------------------------------------------------------------
    # Metadata store (data service): status, results, callbacks
    # ------------------------------------------------------------------
    data_service_url:     str = "http://localhost:8787"
    data_service_api_key: str = ""

    webhook_secret:        str = ""    # shared secret for both inbound and outbound webhooks
    webhook_callback_path: str = "/webhook/skimmer-complete"

    # ------------------------------------------------------------------
    # Content store: signed download URLs
    # ------------------------------------------------------------------
    content_store_url:     str = "http://localhost:8788"
    content_store_api_key: str = ""

    http_timeout_seconds: float = 30.0

    # ------------------------------------------------------------------
    # Analysis: remote model
    # ------------------------------------------------------------------
    openai_api_key:  str = ""          # empty = rule-based analysis only
    llm_model:       str = "gpt-4o-mini"
    llm_temperature: float = 0.3
    llm_timeout_seconds: float = 60.0

    # Cost profile: development | production | high_volume
    # Empty = derived from app_env.
    cost_profile:        str = ""
    min_content_length:  int = 200     # below this the remote model is never called

    # ------------------------------------------------------------------
    # Search backends
    # ------------------------------------------------------------------
    search_backends: str = "meilisearch"   # comma separated: meilisearch,pinecone

    # Meilisearch
    meilisearch_url:     str = "http://localhost:7700"
    meilisearch_api_key: str = ""
    meilisearch_index:   str = "content"

    # Pinecone
    pinecone_api_key:    str = ""
    pinecone_index_name: str = "content-skimmer"
    pinecone_namespace:  str = "files"

    # Embeddings (Pinecone backend)
    embedding_model:      str = "text-embedding-3-small"
    embedding_dimensions: int = 1536

    # ------------------------------------------------------------------
    # Resilience
    # ------------------------------------------------------------------
    breaker_failure_threshold:         int = 5
    breaker_recovery_timeout_seconds:  float = 60.0
    breaker_monitoring_window_seconds: float = 300.0

    retry_max_retries:          int = 3
    retry_rescan_delay_seconds: float = 5.0

    # Upper bound for acquire → analyse → persist. None = unbounded.
    processing_timeout_seconds: float | None = None

    health_check_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Observability
    # ------------------------------------------------------------------
    langsmith_api_key: str = ""
    langsmith_project: str = "content-skimmer"

    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Application
    # ------------------------------------------------------------------
    app_env: str = "development"   # development | staging | production
    debug: bool = False

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"

    @property
    def enabled_search_backends(self) -> list[str]:
        return [b.strip().lower() for b in self.search_backends.split(",") if b.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
