"""
Observability Tracing — Pipeline Spans

  @traced("skimmer.process_file")
      Times an async pipeline step and logs one span line when it ends:

        trace | span=skimmer.process_file file=f1 mime=text/plain elapsed_ms=412.0 ok
        trace | span=search.index_result file=f1 mime=application/pdf elapsed_ms=3.1 error=...

      file / mime are read from the FileRegistrationEvent passed to the
      step, so every span of one file can be grepped by its id.

  enable_langsmith(settings)
      Remote-model calls go through ChatOpenAI, which LangChain traces to
      LangSmith once LANGCHAIN_TRACING_V2 / LANGCHAIN_API_KEY are set. This
      sets them from LANGSMITH_API_KEY at startup unless the environment
      already does.
"""

from __future__ import annotations

import functools
import logging
import os
import time
from typing import Any, Callable, Coroutine, TypeVar

from skimmer.core.config import Settings
from skimmer.schemas.files import FileRegistrationEvent

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Coroutine[Any, Any, Any]])


def enable_langsmith(settings: Settings) -> bool:
    """Returns True when LangSmith tracing is active after the call."""
    if os.environ.get("LANGCHAIN_TRACING_V2") == "true":
        return True
    if not settings.langsmith_api_key:
        logger.debug("LangSmith tracing disabled")
        return False

    os.environ["LANGCHAIN_TRACING_V2"] = "true"
    os.environ["LANGCHAIN_API_KEY"]    = settings.langsmith_api_key
    os.environ["LANGCHAIN_PROJECT"]    = settings.langsmith_project
    logger.info("LangSmith tracing enabled | project=%s", settings.langsmith_project)
    return True


def _file_fields(args: tuple[Any, ...], kwargs: dict[str, Any]) -> tuple[str, str]:
    for value in (*args, *kwargs.values()):
        if isinstance(value, FileRegistrationEvent):
            return value.file_id, value.mime_type
    return "-", "-"


def traced(name: str | None = None) -> Callable[[F], F]:
    def decorator(func: F) -> F:
        span_name = name or func.__qualname__

        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            file_id, mime_type = _file_fields(args, kwargs)
            t0 = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                logger.error(
                    "trace | span=%s file=%s mime=%s elapsed_ms=%.1f error=%s",
                    span_name, file_id, mime_type, (time.perf_counter() - t0) * 1000, exc,
                )
                raise
            logger.debug(
                "trace | span=%s file=%s mime=%s elapsed_ms=%.1f ok",
                span_name, file_id, mime_type, (time.perf_counter() - t0) * 1000,
            )
            return result

        return wrapper  # type: ignore[return-value]
    return decorator
