"""
Metadata Store Client — Result Persistence Gateway

All writes of processing outcomes go through this client. Each call is
guarded by its own named circuit breaker so that a slow write path cannot
starve the read path, and vice versa:

  ┌───────────────────────────┬──────────────────────┬─────────────────────────────┐
  │ Operation                 │ Breaker              │ On failure / open circuit   │
  ├───────────────────────────┼──────────────────────┼─────────────────────────────┤
  │ PATCH /files/{id}         │ metadata-store-write │ logged, returns False       │
  │ GET   /files/{id}         │ metadata-store-read  │ fallback metadata           │
  │ POST  <callback path>     │ webhook-delivery     │ CallbackDeliveryError       │
  └───────────────────────────┴──────────────────────┴─────────────────────────────┘

The callback is the authoritative completion signal; it carries the shared
webhook secret in the X-Webhook-Secret header. The callback body is the
same for every redelivery of a job, keyed by job id.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from skimmer.core.exceptions import CallbackDeliveryError
from skimmer.resilience.circuit_breaker import CircuitBreakerRegistry
from skimmer.schemas.files import FileStatus, ProcessingCallback

logger = logging.getLogger(__name__)

WRITE_BREAKER    = "metadata-store-write"
READ_BREAKER     = "metadata-store-read"
WEBHOOK_BREAKER  = "webhook-delivery"


def fallback_metadata(file_id: str) -> dict[str, Any]:
    """Degraded metadata returned while the read path is unavailable."""
    return {"fileId": file_id, "filename": "unknown-file", "fallback": True}


class MetadataStoreClient:
    def __init__(
        self,
        http_client:    httpx.AsyncClient,
        base_url:       str,
        breakers:       CircuitBreakerRegistry,
        api_key:        str = "",
        webhook_secret: str = "",
        callback_path:  str = "/webhook/skimmer-complete",
    ) -> None:
        self._http           = http_client
        self._base_url       = base_url.rstrip("/")
        self._breakers       = breakers
        self._webhook_secret = webhook_secret
        self._callback_path  = callback_path
        self._headers        = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    # ------------------------------------------------------------------
    # Status / results
    # ------------------------------------------------------------------

    async def update_file_status(
        self,
        file_id:  str,
        status:   FileStatus,
        error:    str | None = None,
        analysis: dict[str, Any] | None = None,
    ) -> bool:
        """
        PATCH the file record with a new status (and, optionally, the analysis
        payload). Returns False when the write was skipped; never raises for
        dependency failures.
        """
        body: dict[str, Any] = {"status": status.value}
        if error is not None:
            body["error"] = error
        if analysis is not None:
            body["analysis"] = analysis

        async def _patch() -> bool:
            resp = await self._http.patch(
                f"{self._base_url}/files/{file_id}", json=body, headers=self._headers,
            )
            resp.raise_for_status()
            return True

        def _skipped() -> bool:
            logger.warning(
                "Metadata write skipped | file=%s status=%s", file_id, status.value,
            )
            return False

        return await self._breakers.get(WRITE_BREAKER).execute(_patch, fallback=_skipped)

    async def get_file_metadata(self, file_id: str) -> dict[str, Any]:
        async def _get() -> dict[str, Any]:
            resp = await self._http.get(
                f"{self._base_url}/files/{file_id}", headers=self._headers,
            )
            resp.raise_for_status()
            return resp.json()

        return await self._breakers.get(READ_BREAKER).execute(
            _get, fallback=lambda: fallback_metadata(file_id),
        )

    # ------------------------------------------------------------------
    # Completion callback
    # ------------------------------------------------------------------

    async def send_processing_callback(
        self,
        file_id: str,
        job_id:  str,
        status:  str,
        result:  dict[str, Any] | None = None,
        error:   str | None = None,
    ) -> None:
        payload = ProcessingCallback(
            file_id=file_id, job_id=job_id, status=status, result=result, error=error,
        )
        headers = {**self._headers, "X-Webhook-Secret": self._webhook_secret}

        async def _post() -> None:
            resp = await self._http.post(
                f"{self._base_url}{self._callback_path}",
                json=payload.model_dump(by_alias=True, mode="json"),
                headers=headers,
            )
            resp.raise_for_status()

        try:
            await self._breakers.get(WEBHOOK_BREAKER).execute(_post)
        except Exception as exc:
            raise CallbackDeliveryError(
                f"Failed to deliver {status} callback for file {file_id} (job {job_id}): {exc}"
            ) from exc
        logger.info("Callback delivered | file=%s job=%s status=%s", file_id, job_id, status)
