"""
OpenAI Analysis Provider — Rule-Based Pass + Optional Remote Model

Pipeline per file:

  1. Result cache       hit → return cached result (strategy "cached")
  2. Cost policy        ProcessingDecision: basic | ai-light | ai-full
  3. Enrichment         rule-based pass — ALWAYS runs, failure fails the provider
  4. Remote model       only when the decision says so; failure is logged and
                        the rule-based result is promoted
  5. Assemble + cache

Remote model call (LangChain ChatOpenAI):
  ai-light → concise 2–3 sentence summary, max_tokens 150
  ai-full  → JSON {summary, keyInsights, actionItems, criticalInfo}, max_tokens 1000
  temperature from settings (0.3 by default)

The only way this provider raises is a text-extraction or enrichment
failure: the remote model is strictly best-effort.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

from skimmer.analysis.base import AnalysisProvider, AnalysisResult, AnalysisStatus
from skimmer.analysis.cost_policy import CostOptimizer, ProcessingDecision, ProcessingStrategy
from skimmer.analysis.enrichment import ContentEnrichment, perform_full_enrichment
from skimmer.analysis.text_extraction import TextExtractionService

logger = logging.getLogger(__name__)

_LIGHT_PROMPT = (
    "You are an expert content analyzer. Provide a concise 2-3 sentence summary of "
    "the content. Focus on key facts and main points only."
)
_FULL_PROMPT = (
    "You are an expert content analyzer. Analyze the provided content and return a "
    "JSON object with:\n"
    "  - summary: A comprehensive 3-4 sentence summary\n"
    "  - keyInsights: Array of main insights or findings\n"
    "  - actionItems: Array of any action items mentioned\n"
    "  - criticalInfo: Any time-sensitive or critical information\n"
    "Focus on business value and actionable insights. Return only the JSON object."
)
_MAX_TOKENS = {
    ProcessingStrategy.AI_LIGHT: 150,
    ProcessingStrategy.AI_FULL:  1000,
}

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$")

ChatModelFactory = Callable[[int], BaseChatModel]


class OpenAIAnalysisProvider(AnalysisProvider):
    name = "openai"

    def __init__(
        self,
        optimizer:          CostOptimizer,
        extractor:          TextExtractionService | None = None,
        api_key:            str = "",
        model:              str = "gpt-4o-mini",
        temperature:        float = 0.3,
        timeout:            float = 60.0,
        chat_model_factory: ChatModelFactory | None = None,
    ) -> None:
        self._optimizer   = optimizer
        self._extractor   = extractor or TextExtractionService()
        self._api_key     = api_key
        self._model       = model
        self._temperature = temperature
        self._timeout     = timeout
        self._chat_model_factory = chat_model_factory or self._build_chat_model

    # ------------------------------------------------------------------
    # AnalysisProvider
    # ------------------------------------------------------------------

    def is_supported(self, mime_type: str) -> bool:
        return self._extractor.is_supported(mime_type)

    async def extract_text(self, content: bytes, mime_type: str) -> str:
        result = await self._extractor.extract(content, mime_type)
        return result.text

    async def analyze_content(
        self,
        text:      str,
        mime_type: str,
        priority:  str = "medium",
    ) -> AnalysisResult:
        cached = self._optimizer.get_cached(text, mime_type)
        if cached is not None:
            logger.info("Analysis cache hit | mime=%s chars=%d", mime_type, len(text))
            cached.enrichment.setdefault("cost_optimization", {})["strategy"] = ProcessingStrategy.CACHED.value
            return cached

        decision   = self._optimizer.decide(text, len(text.encode("utf-8")), mime_type, priority)
        enrichment = perform_full_enrichment(text, mime_type)
        logger.info(
            "Analysis decision | mime=%s strategy=%s est_cost=%.5f reason=%s",
            mime_type, decision.strategy.value, decision.estimated_cost, decision.reasoning,
        )

        remote: dict[str, Any] | None = None
        remote_error: str | None = None
        if decision.use_remote_model:
            try:
                remote = await self._call_remote_model(
                    self._optimizer.optimize_content(text, decision.strategy),
                    decision.strategy,
                )
                self._optimizer.record_usage(decision.estimated_cost)
            except Exception as exc:
                remote_error = str(exc)
                logger.warning(
                    "Remote model failed, using rule-based result | model=%s error=%s",
                    self._model, exc,
                )

        result = self._assemble(text, mime_type, enrichment, decision, remote, remote_error)
        # A degraded result must not shadow the model once it recovers.
        if remote_error is None:
            self._optimizer.cache_result(text, mime_type, result)
        return result

    def get_cost_report(self) -> dict[str, Any]:
        return self._optimizer.get_spending_report()

    # ------------------------------------------------------------------
    # Remote model
    # ------------------------------------------------------------------

    def _build_chat_model(self, max_tokens: int) -> BaseChatModel:
        return ChatOpenAI(
            model=self._model,
            api_key=self._api_key,
            temperature=self._temperature,
            max_tokens=max_tokens,
            timeout=self._timeout,
            max_retries=1,
        )

    async def _call_remote_model(
        self,
        content:  str,
        strategy: ProcessingStrategy,
    ) -> dict[str, Any]:
        llm = self._chat_model_factory(_MAX_TOKENS.get(strategy, 150))
        prompt = _LIGHT_PROMPT if strategy is ProcessingStrategy.AI_LIGHT else _FULL_PROMPT
        response = await llm.ainvoke([SystemMessage(content=prompt), HumanMessage(content=content)])
        text = response.content if isinstance(response.content, str) else str(response.content)

        if strategy is ProcessingStrategy.AI_LIGHT:
            return {"summary": text.strip() or "Analysis completed"}

        try:
            parsed = json.loads(_FENCE_RE.sub("", text.strip()))
        except json.JSONDecodeError:
            return {"summary": text.strip() or "Analysis completed", "analysis": {"parse_error": True}}
        if not isinstance(parsed, dict):
            return {"summary": text.strip(), "analysis": {"parse_error": True}}
        return parsed

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def _assemble(
        self,
        text:         str,
        mime_type:    str,
        enrichment:   ContentEnrichment,
        decision:     ProcessingDecision,
        remote:       dict[str, Any] | None,
        remote_error: str | None,
    ) -> AnalysisResult:
        summary = (remote or {}).get("summary") or fallback_summary(text)
        details = {
            "readability":        enrichment.readability_score,
            "content_type":       enrichment.content_type,
            "extracted_metadata": enrichment.metadata,
            "keywords":           enrichment.keywords,
            "categories":         enrichment.categories,
            "dates":              enrichment.dates,
            "amounts":            enrichment.amounts,
            "contacts":           {"emails": enrichment.emails, "phones": enrichment.phones},
            "entity_breakdown": {
                "people":        enrichment.people,
                "organizations": enrichment.organizations,
                "locations":     enrichment.locations,
            },
            "topic_analysis": {
                "primary":   enrichment.primary_topics,
                "secondary": enrichment.secondary_topics,
            },
            "cost_optimization": {
                "strategy":       decision.strategy.value,
                "estimated_cost": decision.estimated_cost,
                "reasoning":      decision.reasoning,
                "remote_used":    remote is not None,
            },
        }
        if remote_error is not None:
            details["cost_optimization"]["remote_error"] = remote_error
        if remote:
            extras = {k: v for k, v in remote.items() if k != "summary"}
            if extras:
                details["remote_analysis"] = extras

        return AnalysisResult(
            summary=summary,
            entities=enrichment.entities,
            topics=enrichment.topics,
            enrichment=details,
            analysis_status=AnalysisStatus.COMPLETED,
            language=enrichment.language,
            sentiment=enrichment.sentiment,
        )


def fallback_summary(text: str) -> str:
    """First three substantial sentences, capped at 300 characters."""
    sentences = [s.strip() for s in re.split(r"[.!?]+", text) if len(s.strip()) > 10]
    summary = ". ".join(sentences[:3])
    if len(summary) > 300:
        return summary[:297] + "..."
    return summary or "Content analysis completed using basic extraction methods."
