"""
Error taxonomy for the processing pipeline.

  SkimmerError
  ├── UnsupportedContentTypeError   no provider accepts the MIME type (fatal, pre-download)
  ├── AcquisitionError              signed URL / download failed (fatal for this invocation)
  ├── AnalysisError
  │   ├── TextExtractionError       bytes could not be turned into text
  │   └── AllProvidersFailedError   every compatible provider raised
  ├── CallbackDeliveryError         completion webhook could not be delivered
  ├── CircuitOpenError              breaker rejected the call and no fallback exists
  ├── ProcessingTimeoutError        pipeline exceeded its deadline
  └── SearchEngineNotFoundError     named search backend is not configured

Exceptions are raised where the fault is detected. Only the orchestrator,
the circuit breaker, the retry queue and the event bus catch them.
"""

from __future__ import annotations


class SkimmerError(Exception):
    """Base class for every error raised by the content skimmer."""


class UnsupportedContentTypeError(SkimmerError):
    def __init__(self, mime_type: str) -> None:
        super().__init__(f"No AI provider available for content type: {mime_type}")
        self.mime_type = mime_type


class AcquisitionError(SkimmerError):
    pass


class AnalysisError(SkimmerError):
    pass


class TextExtractionError(AnalysisError):
    pass


class AllProvidersFailedError(AnalysisError):
    def __init__(self, last_error: BaseException | None) -> None:
        detail = str(last_error) if last_error else "no compatible provider"
        super().__init__(f"All AI providers failed. Last error: {detail}")
        self.last_error = last_error


class CallbackDeliveryError(SkimmerError):
    pass


class CircuitOpenError(SkimmerError):
    def __init__(self, breaker_name: str) -> None:
        super().__init__(f"Circuit breaker '{breaker_name}' is OPEN")
        self.breaker_name = breaker_name


class ProcessingTimeoutError(SkimmerError):
    pass


class SearchEngineNotFoundError(SkimmerError):
    def __init__(self, engine: str) -> None:
        super().__init__(f"Search engine not found: {engine}")
        self.engine = engine
