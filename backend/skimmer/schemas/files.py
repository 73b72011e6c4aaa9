"""
File Processing — Pydantic Wire Schemas

Covers every JSON body that crosses a process boundary:
  - FileRegistrationEvent   inbound webhook from the upload service
  - ProcessingCallback      outbound completion webhook to the metadata store
  - SearchDocument          document pushed to every search backend
  - AdvancedSearchRequest   body of the filtered / faceted search endpoint
  - ErrorResponse           uniform 4xx/5xx body of the HTTP surface

Wire format is camelCase (the upload service and metadata store are
JavaScript services); Python attributes stay snake_case. All models accept
either spelling on input and dump camelCase with ``by_alias=True``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Metadata-store file status
# ---------------------------------------------------------------------------

class FileStatus(str, Enum):
    """
    Status column owned by the metadata store.
    Transitions: analyzing → analyzed | analysis_failed
    """
    ANALYZING       = "analyzing"
    ANALYZED        = "analyzed"
    ANALYSIS_FAILED = "analysis_failed"


# ---------------------------------------------------------------------------
# Inbound: file registered
# ---------------------------------------------------------------------------

class FileRegistrationEvent(_CamelModel):
    """Immutable input to one processing invocation."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    file_id:     str      = Field(..., min_length=1)
    user_id:     str      = Field(..., min_length=1)
    filename:    str
    storage_key: str      = Field(
        ...,
        validation_alias=AliasChoices("storageKey", "storage_key", "r2Key"),
        serialization_alias="storageKey",
        description="Object key in the content store",
    )
    mime_type:   str
    file_size:   int      = Field(..., ge=0, description="Size in bytes")
    uploaded_at: datetime
    signed_url:  str | None = Field(None, description="Pre-signed download URL, if already issued")


# ---------------------------------------------------------------------------
# Outbound: completion callback
# ---------------------------------------------------------------------------

class ProcessingCallback(_CamelModel):
    file_id:   str
    job_id:    str
    status:    Literal["completed", "failed"]
    result:    dict[str, Any] | None = None
    error:     str | None = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


# ---------------------------------------------------------------------------
# Outbound: search index document
# ---------------------------------------------------------------------------

class SearchDocument(_CamelModel):
    """
    One document per file, keyed by file id. Backends replace it wholesale
    on every upsert.
    """
    id:            str
    title:         str
    summary:       str
    entities:      list[str] = Field(default_factory=list)
    topics:        list[str] = Field(default_factory=list)
    user_id:       str
    filename:      str
    mime_type:     str
    uploaded_at:   str
    last_analyzed: str

    def to_index_body(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


# ---------------------------------------------------------------------------
# Advanced search
# ---------------------------------------------------------------------------

class AdvancedSearchRequest(_CamelModel):
    """
    Filtered, faceted, paged search. ``filters`` is an equality map over
    document fields (a list value means "any of"); the caller's user id is
    always added on top and cannot be overridden.
    """
    query:   str            = Field(..., min_length=1)
    filters: dict[str, Any] = Field(default_factory=dict)
    facets:  list[str]      = Field(default_factory=list)
    engine:  str            = "all"
    limit:   int            = Field(20, ge=1, le=100)
    offset:  int            = Field(0, ge=0)
    sort_by: str            = Field("relevance", description="relevance, or a sortable field such as uploadedAt:desc")


# ---------------------------------------------------------------------------
# HTTP responses
# ---------------------------------------------------------------------------

class WebhookAccepted(_CamelModel):
    message: str = "File processing started"
    file_id: str


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str        = Field(..., description="Stable machine-readable code")
    message:    str        = Field(..., description="Human-readable summary")
    request_id: str | None = Field(None, description="Trace ID for log correlation")
