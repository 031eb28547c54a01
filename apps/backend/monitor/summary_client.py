"""
Client for the summarize relay.

Consumes either the event stream or the single-document fallback and folds
both into one SummarySession. Only one generation runs at a time: calling
generate() again cancels the previous one and starts from an empty session.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Set

import httpx

from core.models import Job
from core.net import read_json
from .archive import SummaryArchive
from .errors import MonitorError, QuotaExceededError, StreamTerminalError
from .sse import Chunk, Done, Error, SseDecoder, StreamEvent

logger = logging.getLogger(__name__)

SUMMARIZE_PATH = "/api/summarize"
DEFAULT_TIMEOUT_SECONDS = 60.0


@dataclass
class SummarySession:
    """State of one generation request."""
    job_id: str
    text: str = ""
    is_streaming: bool = False
    completed: bool = False
    error: Optional[str] = None
    error_kind: Optional[str] = None
    incomplete: bool = False  # partial text kept after a failure
    quota_exceeded: bool = False
    chunks: int = 0

    def fail(self, error: MonitorError, incomplete: bool = False):
        self.error = str(error)
        self.error_kind = type(error).__name__
        self.incomplete = incomplete
        self.quota_exceeded = isinstance(error, QuotaExceededError)


class StreamingSummaryClient:
    def __init__(
        self,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        archive: Optional[SummaryArchive] = None,
        on_update: Optional[Callable[[SummarySession], None]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.archive = archive
        self.on_update = on_update
        self.session: Optional[SummarySession] = None

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            transport=transport,
            timeout=httpx.Timeout(timeout),
        )
        self._task: Optional[asyncio.Task] = None
        self._archive_tasks: Set[asyncio.Task] = set()

    async def __aenter__(self) -> "StreamingSummaryClient":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    @property
    def is_streaming(self) -> bool:
        return bool(self.session and self.session.is_streaming)

    async def generate(self, job: Job, stream: bool = True) -> SummarySession:
        """
        Request a summary of the job's results.

        Remote failures are recorded on the returned session, never raised.

        Raises:
            ValueError: the job has no results to summarize
        """
        if not job.results:
            raise ValueError(f"Job {job.id} has no results to summarize")

        self._cancel_current()

        # Fresh session before any await, so no old text can interleave
        session = SummarySession(job_id=job.id, is_streaming=True)
        self.session = session
        self._notify(session)

        logger.info(f"[summary] Generating {'streaming ' if stream else ''}summary for job {job.id}")
        task = asyncio.create_task(self._run(session, job, stream))
        self._task = task
        await asyncio.wait({task})
        return session

    def clear(self):
        self._cancel_current()
        self.session = None

    async def aclose(self):
        task = self._cancel_current()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        if self._archive_tasks:
            await asyncio.gather(*self._archive_tasks, return_exceptions=True)
        await self._client.aclose()

    def _cancel_current(self) -> Optional[asyncio.Task]:
        task, self._task = self._task, None
        if task is not None and not task.done():
            logger.info("[summary] Cancelling previous generation")
            task.cancel()
            return task
        return None

    async def _run(self, session: SummarySession, job: Job, stream: bool):
        body = {
            "jobId": job.id,
            "results": [r.model_dump(exclude_none=True) for r in job.results],
            "stream": stream,
        }
        cancelled = False
        try:
            async with self._client.stream("POST", SUMMARIZE_PATH, json=body) as response:
                if not response.is_success:
                    await response.aread()
                    self._fail_from_response(session, response)
                elif "text/event-stream" in response.headers.get("content-type", ""):
                    await self._consume_stream(session, response)
                else:
                    await response.aread()
                    self._apply_document(session, response)
        except httpx.HTTPError as e:
            logger.warning(f"[summary] Connection lost for job {job.id}: {e}")
            session.fail(
                StreamTerminalError(f"Connection lost before the summary finished: {e}"),
                incomplete=bool(session.text),
            )
        except asyncio.CancelledError:
            cancelled = True
            raise
        finally:
            session.is_streaming = False
            if not cancelled:
                self._notify(session)

        # Listeners already have the final text; archiving must not delay them
        if session.completed:
            logger.info(f"[summary] Summary for job {job.id} complete ({len(session.text)} chars)")
            self._schedule_archive(session, job)

    async def _consume_stream(self, session: SummarySession, response: httpx.Response):
        decoder = SseDecoder()
        async for data in response.aiter_bytes():
            for event in decoder.feed(data):
                if self._apply_event(session, event):
                    return

        for event in decoder.flush():
            if self._apply_event(session, event):
                return

        logger.warning(f"[summary] Stream for job {session.job_id} closed without a terminal event")
        session.fail(
            StreamTerminalError("Stream ended before the summary was complete"),
            incomplete=True,
        )

    def _apply_event(self, session: SummarySession, event: StreamEvent) -> bool:
        """Apply one event; returns True once the session is terminal."""
        if isinstance(event, Chunk):
            session.text += event.text
            session.chunks += 1
            self._notify(session)
            return False

        if isinstance(event, Done):
            if event.full_text is not None:
                session.text = event.full_text
            session.completed = True
            return True

        if isinstance(event, Error):
            if event.quota_exceeded:
                session.fail(QuotaExceededError(event.message), incomplete=bool(session.text))
            else:
                session.fail(StreamTerminalError(event.message), incomplete=bool(session.text))
            logger.warning(f"[summary] Generation for job {session.job_id} failed: {event.message}")
            return True

        return False

    def _fail_from_response(self, session: SummarySession, response: httpx.Response):
        payload = read_json(response)
        message = payload.get("error") or f"Failed to generate summary ({response.status_code})"
        if response.status_code == 429 or payload.get("quotaExceeded"):
            session.fail(QuotaExceededError(message))
        else:
            session.fail(StreamTerminalError(message))
        logger.warning(f"[summary] Relay refused job {session.job_id}: HTTP {response.status_code} {message}")

    def _apply_document(self, session: SummarySession, response: httpx.Response):
        payload = read_json(response)
        summary = payload.get("summary")
        if isinstance(summary, str):
            session.text = summary
            session.completed = True
        else:
            session.fail(StreamTerminalError("Response did not contain a summary"))

    def _schedule_archive(self, session: SummarySession, job: Job):
        if self.archive is None:
            return
        task = asyncio.create_task(self._archive_session(session.text, job))
        self._archive_tasks.add(task)
        task.add_done_callback(self._archive_tasks.discard)

    async def _archive_session(self, summary: str, job: Job):
        try:
            await self.archive.save(summary, job)
        except Exception as e:
            logger.warning(f"[summary] Archiving summary for job {job.id} failed: {e}")

    def _notify(self, session: SummarySession):
        if self.on_update is None or session is not self.session:
            return
        try:
            self.on_update(session)
        except Exception as e:
            logger.error(f"[summary] Update listener failed: {e}", exc_info=True)
