"""
Summarize relay: forwards generation requests to the AI backend.

Streaming requests are piped through as an event stream; the caller sees
upstream failures as a terminal error frame, never as a bare status.
"""
import asyncio
import json
import time
import logging
from typing import AsyncIterator, Dict, Any, Optional, Tuple
import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from app.config import get_ai_backend_url, get_summary_timeout
from app.rate_limit import limiter, RATE_LIMIT_SUMMARIZE
from core.models import GenerationPayload, SummarizeRequest, build_generation_payload
from core.net import HTTPClient, read_json

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["summarize"])

SUMMARIZE_PATH = "/summarize"
STREAM_PATH = "/summarize/stream"
TIMEOUT_MESSAGE = "Summary generation timed out"

EVENT_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


def error_frame(message: str, quota_exceeded: bool = False) -> bytes:
    """Terminal frame understood by the summary client."""
    payload: Dict[str, Any] = {"error": message, "done": True}
    if quota_exceeded:
        payload["quotaExceeded"] = True
    return f"data: {json.dumps(payload)}\n\n".encode("utf-8")


class StreamRelay:
    """
    Boundary between callers and the text-generation engine.

    The stream is pulled by the consumer, one upstream chunk at a time, and the
    upstream response is scoped by `async with`, so it is closed exactly once
    whether the stream finishes, fails midway, or the caller disconnects.
    """

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout or get_summary_timeout()
        self.http = HTTPClient(base_url, timeout=self.timeout, transport=transport)

    async def relay(self, payload: GenerationPayload) -> AsyncIterator[bytes]:
        job_id = payload.jobId
        sent_bytes = 0
        loop = asyncio.get_running_loop()
        # httpx timeouts bound each read; the whole generation shares one deadline
        deadline = loop.time() + self.timeout
        logger.info(f"[relay] Starting streaming summarization for job {job_id}")

        try:
            async with self.http.client() as client:
                async with client.stream("POST", STREAM_PATH, json=payload.model_dump()) as upstream:
                    if not upstream.is_success:
                        await upstream.aread()
                        message = read_json(upstream).get("error") or "Failed to start streaming summary"
                        logger.error(f"[relay] AI backend refused stream for job {job_id}: HTTP {upstream.status_code} {message}")
                        yield error_frame(message, quota_exceeded=upstream.status_code == 429)
                        return

                    chunks = upstream.aiter_bytes()
                    while True:
                        remaining = deadline - loop.time()
                        if remaining <= 0:
                            raise asyncio.TimeoutError()
                        try:
                            chunk = await asyncio.wait_for(chunks.__anext__(), timeout=remaining)
                        except StopAsyncIteration:
                            break
                        if not chunk:
                            continue
                        sent_bytes += len(chunk)
                        yield chunk
        except asyncio.TimeoutError:
            logger.error(f"[relay] Summary for job {job_id} exceeded {self.timeout}s after {sent_bytes} bytes")
            yield (b"\n" if sent_bytes else b"") + error_frame(TIMEOUT_MESSAGE)
            return
        except httpx.HTTPError as e:
            if sent_bytes:
                logger.error(f"[relay] Stream proxy error for job {job_id} after {sent_bytes} bytes: {e}")
                # Leading newline terminates any half-sent line so the frame parses on its own
                yield b"\n" + error_frame("Stream error")
            else:
                logger.error(f"[relay] Could not reach AI backend for job {job_id}: {e}")
                yield error_frame(f"Failed to start streaming summary: {str(e) or type(e).__name__}")
            return

        logger.info(f"[relay] Stream for job {job_id} finished ({sent_bytes} bytes)")

    async def summarize(self, payload: GenerationPayload) -> Tuple[int, Dict[str, Any]]:
        """
        Non-streaming fallback.

        Returns:
            (status_code, body) with body {summary, timestamp} on success
        """
        job_id = payload.jobId
        logger.info(f"[relay] Sending summarization request for job {job_id} to AI backend")

        try:
            response = await asyncio.wait_for(
                self.http.post_json(SUMMARIZE_PATH, payload.model_dump()),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"[relay] Summarize request for job {job_id} exceeded {self.timeout}s")
            return 504, {"error": TIMEOUT_MESSAGE}
        except httpx.HTTPError as e:
            logger.error(f"[relay] Summarize request for job {job_id} failed: {e}")
            return 502, {"error": "Failed to generate summary", "details": str(e) or type(e).__name__}

        data = read_json(response)
        if not response.is_success:
            logger.error(f"[relay] AI backend error for job {job_id}: HTTP {response.status_code} {data}")
            body: Dict[str, Any] = {"error": data.get("error") or "Failed to generate summary"}
            if response.status_code == 429:
                body["quotaExceeded"] = True
            return response.status_code, body

        logger.info(f"[relay] Summary generated successfully for job {job_id}")
        return 200, {
            "summary": data.get("summary"),
            "timestamp": data.get("timestamp") or int(time.time() * 1000),
        }


def get_stream_relay() -> StreamRelay:
    return StreamRelay(get_ai_backend_url())


@router.post("/summarize")
@limiter.limit(RATE_LIMIT_SUMMARIZE)
async def summarize(
    request: Request,
    body: SummarizeRequest,
    relay: StreamRelay = Depends(get_stream_relay),
):
    """
    Summarize a job's scraped results.

    With stream=true the response is text/event-stream frames forwarded from
    the AI backend; otherwise {summary, timestamp}.
    """
    if not body.jobId:
        return JSONResponse(status_code=400, content={"error": "Job ID is required"})

    if not body.results:
        return JSONResponse(
            status_code=400,
            content={"error": "Results array is required and must not be empty"},
        )

    payload = build_generation_payload(body.jobId, body.results)
    if payload is None:
        return JSONResponse(
            status_code=400,
            content={"error": "No content found in results to summarize"},
        )

    if body.stream:
        return StreamingResponse(
            relay.relay(payload),
            media_type="text/event-stream",
            headers=EVENT_STREAM_HEADERS,
        )

    status_code, content = await relay.summarize(payload)
    return JSONResponse(status_code=status_code, content=content)
