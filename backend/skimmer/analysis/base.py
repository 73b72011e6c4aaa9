"""
Analysis Provider — Abstract Base

Every analysis backend implements this interface. The orchestrator only
speaks this protocol, so providers are swappable and can be chained in
priority order without touching pipeline code.

Contract:
  - is_supported() is a pure predicate on the MIME type.
  - extract_text() turns raw bytes into text, raising on unusable input.
  - analyze_content() returns a fully populated AnalysisResult; it raises
    only when no result at all can be produced.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any


class AnalysisStatus(str, Enum):
    PENDING   = "pending"
    COMPLETED = "completed"
    FAILED    = "failed"


@dataclass
class AnalysisResult:
    summary:         str
    entities:        list[str]       = field(default_factory=list)
    topics:          list[str]       = field(default_factory=list)
    enrichment:      dict[str, Any]  = field(default_factory=dict)
    analysis_status: AnalysisStatus  = AnalysisStatus.COMPLETED
    language:        str | None      = None
    sentiment:       str | None      = None
    error:           str | None      = None

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict for persistence in the metadata store."""
        payload = asdict(self)
        payload["analysis_status"] = self.analysis_status.value
        return payload


class AnalysisProvider(ABC):
    """Provider interface; ``name`` identifies the provider in logs and reports."""

    name: str = "provider"

    @abstractmethod
    def is_supported(self, mime_type: str) -> bool:
        """True if this provider can analyse ``mime_type``."""

    @abstractmethod
    async def extract_text(self, content: bytes, mime_type: str) -> str:
        """Convert raw file bytes to analysable text."""

    @abstractmethod
    async def analyze_content(
        self,
        text:      str,
        mime_type: str,
        priority:  str = "medium",
    ) -> AnalysisResult:
        """Produce an AnalysisResult for extracted text."""

    def get_cost_report(self) -> dict[str, Any] | None:
        """Spending summary, for providers that incur cost."""
        return None
