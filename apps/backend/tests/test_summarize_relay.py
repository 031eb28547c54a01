"""
Tests for POST /api/summarize and the StreamRelay behind it.
"""
import asyncio
import json
import httpx
import pytest
from fastapi.testclient import TestClient

from app.summarize import TIMEOUT_MESSAGE, StreamRelay, error_frame, get_stream_relay
from main import app
from monitor.sse import Error, SseDecoder
from monitor.summary_client import StreamingSummaryClient
from core.models import GenerationPayload, Job

AI_URL = "http://ai.test"

RESULTS = [
    {"url": "https://example.org/empty", "title": "Empty", "content": "   "},
    {"url": "https://example.org/a", "title": "Page A", "content": "Alpha body"},
    {"url": "https://example.org/b", "title": "Page B", "content": "Beta body"},
]


def summarize_body(**overrides):
    body = {"jobId": "job-1", "results": RESULTS, "stream": True}
    body.update(overrides)
    return body


class Upstream:
    """Records requests to the AI backend and answers with a handler."""

    def __init__(self, handler):
        self.handler = handler
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.handler(request)


@pytest.fixture
def upstream():
    holder = {}

    def install(handler):
        recorder = Upstream(handler)
        app.dependency_overrides[get_stream_relay] = lambda: StreamRelay(
            AI_URL, transport=httpx.MockTransport(recorder)
        )
        holder["recorder"] = recorder
        return recorder

    yield install
    app.dependency_overrides.pop(get_stream_relay, None)


@pytest.fixture
def client():
    return TestClient(app)


def stream_of(*chunks, error=None):
    async def body():
        for chunk in chunks:
            yield chunk
        if error is not None:
            raise error
    return body()


def decode(body: bytes):
    decoder = SseDecoder()
    return decoder.feed(body) + decoder.flush()


def test_stream_is_forwarded_verbatim(client, upstream):
    chunks = [
        b'data: {"chunk": "Hel',
        b'lo"}\n\ndata: {"chunk": " there"}\n\n',
        b'data: {"done": true, "fullSummary": "Hello there"}\n\n',
    ]
    recorder = upstream(lambda request: httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content=stream_of(*chunks)
    ))

    response = client.post("/api/summarize", json=summarize_body())

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.content == b"".join(chunks)
    assert len(recorder.requests) == 1


def test_generation_payload_shape(client, upstream):
    recorder = upstream(lambda request: httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content=stream_of(b'data: {"done": true}\n\n')
    ))

    client.post("/api/summarize", json=summarize_body())

    request = recorder.requests[0]
    assert request.url.path == "/summarize/stream"
    payload = json.loads(request.content)
    assert payload == {
        "content": "Alpha body\n\n---\n\nBeta body",
        "url": "https://example.org/a",
        "title": "Page A",
        "jobId": "job-1",
    }


def test_upstream_failure_before_bytes_yields_one_error_frame(client, upstream):
    """Scenario D: the caller sees a terminal error frame, not a bare status."""
    def refuse(request):
        raise httpx.ConnectError("connection refused")

    upstream(refuse)
    response = client.post("/api/summarize", json=summarize_body())

    assert response.status_code == 200
    events = decode(response.content)
    assert len(events) == 1
    assert isinstance(events[0], Error)
    assert events[0].message.startswith("Failed to start streaming summary")
    assert response.content.count(b"data:") == 1


def test_midstream_failure_appends_error_frame(client, upstream):
    first = b'data: {"chunk": "Hel'
    upstream(lambda request: httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        content=stream_of(first, error=httpx.ReadError("upstream reset")),
    ))

    response = client.post("/api/summarize", json=summarize_body())

    assert response.content == first + b"\n" + error_frame("Stream error")
    assert decode(response.content) == [Error("Stream error")]


def test_upstream_error_status_becomes_error_frame(client, upstream):
    upstream(lambda request: httpx.Response(500, json={"error": "Model crashed"}))

    response = client.post("/api/summarize", json=summarize_body())

    assert response.status_code == 200
    assert decode(response.content) == [Error("Model crashed")]


def test_upstream_rate_limit_becomes_quota_frame(client, upstream):
    upstream(lambda request: httpx.Response(429, json={"error": "Quota exceeded"}))

    response = client.post("/api/summarize", json=summarize_body())

    assert decode(response.content) == [Error("Quota exceeded", quota_exceeded=True)]
    frame = json.loads(response.content.decode().strip()[len("data: "):])
    assert frame == {"error": "Quota exceeded", "done": True, "quotaExceeded": True}


def test_missing_job_id(client, upstream):
    recorder = upstream(lambda request: httpx.Response(200))

    response = client.post("/api/summarize", json=summarize_body(jobId=""))

    assert response.status_code == 400
    assert response.json() == {"error": "Job ID is required"}
    assert recorder.requests == []


def test_empty_results(client, upstream):
    upstream(lambda request: httpx.Response(200))

    response = client.post("/api/summarize", json=summarize_body(results=[]))

    assert response.status_code == 400
    assert response.json() == {"error": "Results array is required and must not be empty"}


def test_results_without_content(client, upstream):
    recorder = upstream(lambda request: httpx.Response(200))

    response = client.post(
        "/api/summarize",
        json=summarize_body(results=[{"url": "https://example.org", "title": "x", "content": ""}]),
    )

    assert response.status_code == 400
    assert response.json() == {"error": "No content found in results to summarize"}
    assert recorder.requests == []


def test_single_document_summary(client, upstream):
    recorder = upstream(lambda request: httpx.Response(
        200, json={"summary": "Two pages about letters.", "timestamp": 1714557600000}
    ))

    response = client.post("/api/summarize", json=summarize_body(stream=False))

    assert response.status_code == 200
    assert response.json() == {"summary": "Two pages about letters.", "timestamp": 1714557600000}
    assert recorder.requests[0].url.path == "/summarize"


def test_single_document_upstream_error(client, upstream):
    upstream(lambda request: httpx.Response(503, json={"error": "AI backend unavailable"}))

    response = client.post("/api/summarize", json=summarize_body(stream=False))

    assert response.status_code == 503
    assert response.json() == {"error": "AI backend unavailable"}


def test_single_document_upstream_quota(client, upstream):
    upstream(lambda request: httpx.Response(429, json={"error": "Slow down"}))

    response = client.post("/api/summarize", json=summarize_body(stream=False))

    assert response.status_code == 429
    assert response.json() == {"error": "Slow down", "quotaExceeded": True}


def test_single_document_unreachable_upstream(client, upstream):
    def refuse(request):
        raise httpx.ReadError("connection reset")

    upstream(refuse)
    response = client.post("/api/summarize", json=summarize_body(stream=False))

    assert response.status_code == 502
    assert response.json()["error"] == "Failed to generate summary"


@pytest.mark.asyncio
async def test_client_renders_relay_failure(upstream):
    """Scenario D end to end: explicit failure, empty accumulator."""
    def refuse(request):
        raise httpx.ConnectError("connection refused")

    upstream(refuse)
    job = Job.model_validate({"id": "job-1", "status": "completed", "results": RESULTS})

    async with StreamingSummaryClient("http://testserver", transport=httpx.ASGITransport(app=app)) as summaries:
        session = await summaries.generate(job)

    assert session.text == ""
    assert session.completed is False
    assert session.error.startswith("Failed to start streaming summary")
    assert session.incomplete is False


@pytest.mark.asyncio
async def test_client_reads_relayed_stream(upstream):
    upstream(lambda request: httpx.Response(
        200,
        headers={"content-type": "text/event-stream"},
        content=stream_of(
            b'data: {"chunk": "Hello "}\n\n',
            b'data: {"chunk": "world"}\n\n',
            b'data: {"done": true, "fullSummary": "Hello world!"}\n\n',
        ),
    ))
    job = Job.model_validate({"id": "job-1", "status": "completed", "results": RESULTS})

    async with StreamingSummaryClient("http://testserver", transport=httpx.ASGITransport(app=app)) as summaries:
        session = await summaries.generate(job)

    assert session.text == "Hello world!"
    assert session.completed is True


def test_result_without_url_is_rejected_with_error_body(client, upstream):
    recorder = upstream(lambda request: httpx.Response(200))

    response = client.post(
        "/api/summarize",
        json=summarize_body(results=[{"title": "No URL", "content": "Body"}]),
    )

    assert response.status_code == 400
    data = response.json()
    assert data["error"] == "Invalid request body"
    assert any("url" in detail for detail in data["details"])
    assert recorder.requests == []


def test_numeric_job_id_is_rejected_with_error_body(client, upstream):
    upstream(lambda request: httpx.Response(200))

    response = client.post("/api/summarize", json=summarize_body(jobId=42))

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid request body"


def test_non_json_body_is_rejected_with_error_body(client, upstream):
    upstream(lambda request: httpx.Response(200))

    response = client.post(
        "/api/summarize",
        content=b"{not json",
        headers={"content-type": "application/json"},
    )

    assert response.status_code == 400
    assert "error" in response.json()
    assert "detail" not in response.json()


PAYLOAD = GenerationPayload(content="Alpha body", url="https://example.org/a", title="Page A", jobId="job-1")


@pytest.mark.asyncio
async def test_slow_stream_is_cut_at_overall_deadline():
    async def trickle():
        for _ in range(20):
            await asyncio.sleep(0.05)
            yield b'data: {"chunk": "x"}\n\n'

    relay = StreamRelay(
        AI_URL,
        timeout=0.2,
        transport=httpx.MockTransport(lambda request: httpx.Response(
            200, headers={"content-type": "text/event-stream"}, content=trickle()
        )),
    )

    loop = asyncio.get_running_loop()
    started = loop.time()
    body = b"".join([chunk async for chunk in relay.relay(PAYLOAD)])
    elapsed = loop.time() - started

    assert elapsed < 0.9
    assert body.endswith(b"\n" + error_frame(TIMEOUT_MESSAGE))
    events = decode(body)
    assert events[-1] == Error(TIMEOUT_MESSAGE)
    assert 0 < len(events) - 1 < 20


@pytest.mark.asyncio
async def test_stalled_stream_before_first_byte_times_out():
    async def stalled():
        await asyncio.sleep(5)
        yield b'data: {"chunk": "late"}\n\n'

    relay = StreamRelay(
        AI_URL,
        timeout=0.1,
        transport=httpx.MockTransport(lambda request: httpx.Response(
            200, headers={"content-type": "text/event-stream"}, content=stalled()
        )),
    )

    body = b"".join([chunk async for chunk in relay.relay(PAYLOAD)])

    assert body == error_frame(TIMEOUT_MESSAGE)


@pytest.mark.asyncio
async def test_single_document_request_is_bounded():
    async def slow(request):
        await asyncio.sleep(5)
        return httpx.Response(200, json={"summary": "late"})

    relay = StreamRelay(AI_URL, timeout=0.1, transport=httpx.MockTransport(slow))

    status_code, body = await relay.summarize(PAYLOAD)

    assert status_code == 504
    assert body == {"error": TIMEOUT_MESSAGE}
