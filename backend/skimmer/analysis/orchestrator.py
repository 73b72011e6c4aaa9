"""
Analysis Orchestrator — Ordered Provider Failover

Providers are tried in configuration order:

  for provider in providers:
      unsupported MIME type  → skipped
      extract_text()         ┐
      analyze_content()      ┘ any exception → remembered, next provider

  no provider succeeded → AllProvidersFailedError(last_error)

The orchestrator holds no per-request state and is safe to share across
concurrent invocations.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

from skimmer.analysis.base import AnalysisProvider, AnalysisResult
from skimmer.core.exceptions import AllProvidersFailedError
from skimmer.observability.tracing import traced

logger = logging.getLogger(__name__)


class AnalysisOrchestrator:
    def __init__(self, providers: Sequence[AnalysisProvider]) -> None:
        self._providers = list(providers)

    @property
    def providers(self) -> list[AnalysisProvider]:
        return list(self._providers)

    def has_compatible_provider(self, mime_type: str) -> bool:
        return any(p.is_supported(mime_type) for p in self._providers)

    @traced("analysis.analyze_file")
    async def analyze_file(
        self,
        content:   bytes,
        mime_type: str,
        priority:  str = "medium",
    ) -> AnalysisResult:
        last_error: Exception | None = None

        for provider in self._providers:
            if not provider.is_supported(mime_type):
                logger.debug(
                    "Provider skipped | provider=%s mime=%s", provider.name, mime_type,
                )
                continue
            try:
                text   = await provider.extract_text(content, mime_type)
                result = await provider.analyze_content(text, mime_type, priority=priority)
                logger.info(
                    "Analysis completed | provider=%s mime=%s entities=%d topics=%d",
                    provider.name, mime_type, len(result.entities), len(result.topics),
                )
                return result
            except Exception as exc:
                logger.warning(
                    "Provider failed | provider=%s mime=%s error=%s",
                    provider.name, mime_type, exc,
                )
                last_error = exc

        raise AllProvidersFailedError(last_error)

    def get_cost_report(self) -> dict[str, Any]:
        reports = {}
        for provider in self._providers:
            report = provider.get_cost_report()
            if report is not None:
                reports[provider.name] = report
        return reports
