"""
Content Store Client — Signed-URL Download

The content store never streams bytes through its API. Downloading a file is
a two-step exchange:

  1. POST {content_store}/files/{file_id}/signed-url
        → {"signedUrl": "...", "expiresAt": "..."}
  2. GET  {signedUrl}
        → raw bytes

When the registration event already carries a signed URL, step 1 is
skipped.

Both calls go through the "content-store" circuit breaker without a
fallback: there is no meaningful degraded response for missing bytes, so
any failure surfaces as AcquisitionError and fails the invocation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from skimmer.core.exceptions import AcquisitionError
from skimmer.resilience.circuit_breaker import CircuitBreakerRegistry
from skimmer.schemas.files import FileRegistrationEvent

logger = logging.getLogger(__name__)

BREAKER_NAME = "content-store"


@dataclass
class SignedUrl:
    signed_url: str
    expires_at: str | None = None


class ContentStoreClient:
    def __init__(
        self,
        http_client: httpx.AsyncClient,
        base_url:    str,
        breakers:    CircuitBreakerRegistry,
        api_key:     str = "",
    ) -> None:
        self._http     = http_client
        self._base_url = base_url.rstrip("/")
        self._breakers = breakers
        self._headers  = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    async def get_signed_url(self, file_id: str) -> SignedUrl:
        resp = await self._http.post(
            f"{self._base_url}/files/{file_id}/signed-url",
            headers=self._headers,
        )
        resp.raise_for_status()
        body = resp.json()
        if not body.get("signedUrl"):
            raise AcquisitionError(f"Content store returned no signed URL for file {file_id}")
        return SignedUrl(signed_url=body["signedUrl"], expires_at=body.get("expiresAt"))

    async def download(self, url: str) -> bytes:
        resp = await self._http.get(url)
        resp.raise_for_status()
        return resp.content

    async def fetch_content(self, event: FileRegistrationEvent) -> bytes:
        """Resolve a download URL for ``event`` and return the file's bytes."""
        breaker = self._breakers.get(BREAKER_NAME)
        try:
            content = await breaker.execute(lambda: self._fetch(event))
        except AcquisitionError:
            raise
        except Exception as exc:
            raise AcquisitionError(
                f"Failed to acquire content for file {event.file_id}: {exc}"
            ) from exc

        if len(content) != event.file_size:
            logger.debug(
                "Downloaded size differs from registration | file=%s expected=%d actual=%d",
                event.file_id, event.file_size, len(content),
            )
        logger.info("Content downloaded | file=%s bytes=%d", event.file_id, len(content))
        return content

    async def _fetch(self, event: FileRegistrationEvent) -> bytes:
        url = event.signed_url
        if not url:
            url = (await self.get_signed_url(event.file_id)).signed_url
        return await self.download(url)
