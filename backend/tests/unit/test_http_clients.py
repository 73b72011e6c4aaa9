"""
Unit Tests — MetadataStoreClient / ContentStoreClient
═════════════════════════════════════════════════════

Both clients are exercised against httpx.MockTransport, so request shape
(method, path, headers, JSON body) is asserted exactly as it would leave
the process.

Coverage targets:
  Metadata store:
    ✅ Status PATCH carries status, error and analysis
    ✅ Write failure → False, never raises
    ✅ Read failures open the breaker; later reads return fallback metadata
       without touching the network
    ✅ Callback body is camelCase and carries X-Webhook-Secret
    ✅ Callback failure → CallbackDeliveryError

  Content store:
    ✅ Pre-signed URL downloaded directly
    ✅ Missing signed URL → one is requested first
    ✅ Empty signed URL response / HTTP errors → AcquisitionError
"""

from __future__ import annotations

import json

import httpx
import pytest

from skimmer.core.exceptions import AcquisitionError, CallbackDeliveryError
from skimmer.resilience.circuit_breaker import CircuitState
from skimmer.schemas.files import FileStatus
from skimmer.services.metadata_store import READ_BREAKER, WRITE_BREAKER, MetadataStoreClient
from skimmer.storage.content_store import BREAKER_NAME, ContentStoreClient


class Recorder:
    """MockTransport handler that records requests and replies from a script."""

    def __init__(self, respond) -> None:
        self.requests: list[httpx.Request] = []
        self._respond = respond

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self._respond(request)


def _client(recorder: Recorder) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(recorder))


def _metadata_store(recorder: Recorder, breakers) -> MetadataStoreClient:
    return MetadataStoreClient(
        _client(recorder),
        "http://data.test/",
        breakers,
        api_key="svc-key",
        webhook_secret="s3cret",
    )


@pytest.mark.unit
class TestMetadataStoreWrites:

    async def test_status_patch_body(self, breakers):
        recorder = Recorder(lambda r: httpx.Response(200, json={"ok": True}))
        store = _metadata_store(recorder, breakers)

        ok = await store.update_file_status(
            "f1", FileStatus.ANALYZED, analysis={"summary": "done"},
        )

        assert ok is True
        [request] = recorder.requests
        assert request.method == "PATCH"
        assert str(request.url) == "http://data.test/files/f1"
        assert request.headers["Authorization"] == "Bearer svc-key"
        assert json.loads(request.content) == {"status": "analyzed", "analysis": {"summary": "done"}}

    async def test_failed_status_carries_error(self, breakers):
        recorder = Recorder(lambda r: httpx.Response(204))
        store = _metadata_store(recorder, breakers)

        await store.update_file_status("f1", FileStatus.ANALYSIS_FAILED, error="boom")

        assert json.loads(recorder.requests[0].content) == {"status": "analysis_failed", "error": "boom"}

    async def test_write_failure_returns_false(self, breakers):
        recorder = Recorder(lambda r: httpx.Response(500))
        store = _metadata_store(recorder, breakers)

        assert await store.update_file_status("f1", FileStatus.ANALYZING) is False
        assert breakers.get(WRITE_BREAKER).get_status()["failures"] == 1

    async def test_write_breaker_opens_and_stops_network_calls(self, breakers):
        recorder = Recorder(lambda r: httpx.Response(503))
        store = _metadata_store(recorder, breakers)

        results = [await store.update_file_status("f1", FileStatus.ANALYZING) for _ in range(7)]

        assert results == [False] * 7
        assert len(recorder.requests) == 5
        assert breakers.get(WRITE_BREAKER).state is CircuitState.OPEN


@pytest.mark.unit
class TestMetadataStoreReads:

    async def test_get_metadata(self, breakers):
        recorder = Recorder(lambda r: httpx.Response(200, json={"fileId": "f1", "title": "Q1"}))
        store = _metadata_store(recorder, breakers)

        assert await store.get_file_metadata("f1") == {"fileId": "f1", "title": "Q1"}
        assert recorder.requests[0].method == "GET"

    async def test_open_breaker_serves_fallback_without_network(self, breakers):
        recorder = Recorder(lambda r: httpx.Response(500))
        store = _metadata_store(recorder, breakers)

        for _ in range(6):
            await store.get_file_metadata("f1")
        assert breakers.get(READ_BREAKER).state is CircuitState.OPEN
        calls_before = len(recorder.requests)

        seventh = await store.get_file_metadata("f1")

        assert seventh == {"fileId": "f1", "filename": "unknown-file", "fallback": True}
        assert len(recorder.requests) == calls_before == 5

    async def test_read_recovers_after_timeout(self, breakers, clock):
        state = {"healthy": False}

        def _respond(request):
            if state["healthy"]:
                return httpx.Response(200, json={"fileId": "f1"})
            return httpx.Response(500)

        store = _metadata_store(Recorder(_respond), breakers)
        for _ in range(5):
            await store.get_file_metadata("f1")

        state["healthy"] = True
        clock.advance(60)

        assert await store.get_file_metadata("f1") == {"fileId": "f1"}
        assert breakers.get(READ_BREAKER).state is CircuitState.CLOSED


@pytest.mark.unit
class TestProcessingCallback:

    async def test_callback_shape(self, breakers):
        recorder = Recorder(lambda r: httpx.Response(200))
        store = _metadata_store(recorder, breakers)

        await store.send_processing_callback(
            "f1", "job-abc-f1", "completed", result={"summary": "ok"},
        )

        [request] = recorder.requests
        assert str(request.url) == "http://data.test/webhook/skimmer-complete"
        assert request.headers["X-Webhook-Secret"] == "s3cret"
        body = json.loads(request.content)
        assert body["fileId"] == "f1"
        assert body["jobId"] == "job-abc-f1"
        assert body["status"] == "completed"
        assert body["result"] == {"summary": "ok"}
        assert body["error"] is None
        assert "timestamp" in body

    async def test_callback_failure_raises(self, breakers):
        store = _metadata_store(Recorder(lambda r: httpx.Response(502)), breakers)

        with pytest.raises(CallbackDeliveryError, match="failed callback for file f1"):
            await store.send_processing_callback("f1", "job-1", "failed", error="boom")


@pytest.mark.unit
class TestContentStore:

    async def test_presigned_url_downloaded_directly(self, breakers, make_event):
        recorder = Recorder(lambda r: httpx.Response(200, content=b"file bytes"))
        store = ContentStoreClient(_client(recorder), "http://content.test", breakers)

        content = await store.fetch_content(make_event())

        assert content == b"file bytes"
        [request] = recorder.requests
        assert request.method == "GET"
        assert str(request.url) == "http://content.test/download/file-123?sig=abc"

    async def test_signed_url_requested_when_missing(self, breakers, make_event):
        def _respond(request):
            if request.method == "POST":
                return httpx.Response(200, json={"signedUrl": "http://cdn.test/obj", "expiresAt": "soon"})
            return httpx.Response(200, content=b"payload")

        recorder = Recorder(_respond)
        store = ContentStoreClient(_client(recorder), "http://content.test", breakers, api_key="k")

        content = await store.fetch_content(make_event(signedUrl=None))

        assert content == b"payload"
        assert [(r.method, str(r.url)) for r in recorder.requests] == [
            ("POST", "http://content.test/files/file-123/signed-url"),
            ("GET", "http://cdn.test/obj"),
        ]
        assert recorder.requests[0].headers["Authorization"] == "Bearer k"

    async def test_missing_signed_url_in_response(self, breakers, make_event):
        store = ContentStoreClient(
            _client(Recorder(lambda r: httpx.Response(200, json={}))), "http://content.test", breakers,
        )
        with pytest.raises(AcquisitionError, match="no signed URL"):
            await store.fetch_content(make_event(signedUrl=None))

    async def test_download_error_wrapped(self, breakers, make_event):
        store = ContentStoreClient(
            _client(Recorder(lambda r: httpx.Response(404))), "http://content.test", breakers,
        )
        with pytest.raises(AcquisitionError, match="Failed to acquire content for file file-123"):
            await store.fetch_content(make_event())
        assert breakers.get(BREAKER_NAME).get_status()["failures"] == 1
