"""
Polling state machine for one scrape job.

States:
    IDLE      - nothing tracked, or polling stopped by the caller
    POLLING   - ticker running, snapshot refreshed every poll_interval
    TERMINAL  - completed/failed/not-found observed; no further automatic requests

Every request is an asyncio task owned by the tracker. start(), stop(),
clear() and aclose() share one teardown path that cancels the ticker and
all in-flight requests, so a stale response can never overwrite newer state.
Responses carry a sequence number and anything older than the last applied
response is discarded.
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, FrozenSet, List, Optional, Set

import httpx
from pydantic import ValidationError

from core.models import Job, JobResponse, JobStatus
from core.net import read_json
from .errors import JobNotFoundError, TerminalJobError, TransientFetchError
from .job_store import JobIdStore, MemoryJobIdStore
from .result_delta import ResultDeltaTracker

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 3.0
STATUS_PATH = "/api/scrape/status"


class TrackerState(str, Enum):
    IDLE = "idle"
    POLLING = "polling"
    TERMINAL = "terminal"


class JobStatusTracker:
    """
    Tracks one job id at a time and exposes its latest snapshot.

    Usage:
        async with JobStatusTracker(relay_url, store=store) as tracker:
            await tracker.start(job_id)
    """

    def __init__(
        self,
        base_url: str,
        store: Optional[JobIdStore] = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        delta: Optional[ResultDeltaTracker] = None,
        on_update: Optional[Callable[["JobStatusTracker"], None]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.delta = delta or ResultDeltaTracker()
        self.on_update = on_update

        # No custom timeout: a slow poll surfaces as an ordinary transient error
        self._client = httpx.AsyncClient(base_url=self.base_url, transport=transport)
        self._store = store or MemoryJobIdStore()
        self._writer = self._store.claim()

        self.job_id: Optional[str] = None
        self.job: Optional[Job] = None
        self.error: Optional[str] = None
        self.state = TrackerState.IDLE

        self._ticker: Optional[asyncio.Task] = None
        self._inflight: Set[asyncio.Task] = set()
        self._next_seq = 0
        self._applied_seq = 0
        # Bumped by every teardown; a start() whose session moved on must not arm a ticker
        self._session = 0
        self._closed = False

    async def __aenter__(self) -> "JobStatusTracker":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    @property
    def status(self) -> str:
        return self.job.status.value if self.job else "unknown"

    @property
    def progress(self) -> float:
        return self.job.progress if self.job else 0

    @property
    def is_loading(self) -> bool:
        return bool(self._inflight)

    @property
    def is_polling(self) -> bool:
        return (
            self.state is TrackerState.POLLING
            and self._ticker is not None
            and not self._ticker.done()
        )

    @property
    def new_result_indices(self) -> FrozenSet[int]:
        return self.delta.new_indices

    @property
    def failure(self) -> Optional[TerminalJobError]:
        """The job's own failure, once the backend reports it."""
        if self.job and self.job.status is JobStatus.FAILED:
            return TerminalJobError(self.job.id, self.job.error)
        return None

    async def start(self, job_id: str) -> Optional[Job]:
        """
        Begin tracking job_id, replacing whatever was tracked before.

        Returns the first snapshot, or None if the first fetch failed.
        """
        self._ensure_open()
        self._teardown()

        if job_id != self.job_id:
            self.job = None
            self.error = None
            self.delta.reset()

        self.job_id = job_id
        self.state = TrackerState.POLLING
        self._writer.set(job_id)
        session = self._session
        logger.info(f"[tracker] Tracking job {job_id}")

        latest = await self._fetch_now(job_id)

        # Superseded by another start()/stop()/clear(), or already terminal
        if session != self._session or self.state is not TrackerState.POLLING:
            return latest

        self._ticker = asyncio.create_task(self._tick_loop(job_id, session))
        self._notify()
        return latest

    async def resume(self) -> Optional[Job]:
        """
        Resume tracking the persisted job id, if any.

        The id is only a hint: the refetch decides whether it is still alive.
        """
        saved = self._store.get()
        if not saved:
            return None
        logger.info(f"[tracker] Resuming persisted job {saved}")
        return await self.start(saved)

    async def refetch(self) -> Optional[Job]:
        """Fetch once on demand; never restarts automatic polling."""
        self._ensure_open()
        if not self.job_id:
            return None
        return await self._fetch_now(self.job_id)

    def stop(self):
        """Stop automatic polling but keep the snapshot and persisted id."""
        if self._closed:
            return
        self._teardown()
        if self.state is TrackerState.POLLING:
            self.state = TrackerState.IDLE
        self._notify()

    def clear(self):
        """Forget the tracked job entirely. A closed tracker no longer owns the store."""
        if self._closed:
            return
        self._teardown()
        self.job_id = None
        self.job = None
        self.error = None
        self.state = TrackerState.IDLE
        self.delta.reset()
        self._writer.clear()
        self._notify()

    async def aclose(self):
        """Tear down timers and requests and release the store writer."""
        if self._closed:
            return
        self._closed = True
        pending = self._teardown()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.delta.reset()
        self._writer.release()
        await self._client.aclose()

    def _ensure_open(self):
        if self._closed:
            raise RuntimeError("JobStatusTracker is closed")

    def _teardown(self) -> List[asyncio.Task]:
        """Cancel the ticker and every in-flight request except the caller's own."""
        self._session += 1
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        cancelled = []

        if self._ticker is not None and self._ticker is not current:
            self._ticker.cancel()
            cancelled.append(self._ticker)
        self._ticker = None

        for task in list(self._inflight):
            if task is current:
                continue
            task.cancel()
            cancelled.append(task)
            self._inflight.discard(task)

        return cancelled

    async def _tick_loop(self, job_id: str, session: int):
        while True:
            await asyncio.sleep(self.poll_interval)
            if session != self._session or self.state is not TrackerState.POLLING:
                return
            # Ticks do not wait on each other; ordering is settled by sequence numbers
            self._spawn_fetch(job_id)

    def _spawn_fetch(self, job_id: str) -> asyncio.Task:
        self._next_seq += 1
        task = asyncio.create_task(self._run_fetch(job_id, self._next_seq))
        self._inflight.add(task)
        return task

    async def _fetch_now(self, job_id: str) -> Optional[Job]:
        task = self._spawn_fetch(job_id)
        # wait() instead of await: a teardown cancelling this request must not
        # propagate CancelledError into the caller
        await asyncio.wait({task})
        if task.cancelled():
            return None
        return task.result()

    async def _run_fetch(self, job_id: str, seq: int) -> Optional[Job]:
        try:
            return await self._request(job_id, seq)
        finally:
            self._inflight.discard(asyncio.current_task())
            self._notify()

    async def _request(self, job_id: str, seq: int) -> Optional[Job]:
        try:
            response = await self._client.get(
                STATUS_PATH,
                params={"id": job_id},
                headers={"Cache-Control": "no-store"},
            )
        except httpx.HTTPError as e:
            self._apply_error(job_id, seq, TransientFetchError(str(e) or type(e).__name__))
            return None

        if response.status_code == 404:
            payload = read_json(response)
            self._apply_not_found(job_id, seq, JobNotFoundError(job_id, payload.get("error") or None))
            return None

        if not response.is_success:
            payload = read_json(response)
            message = payload.get("error") or f"Failed to fetch status ({response.status_code})"
            self._apply_error(job_id, seq, TransientFetchError(message, response.status_code))
            return None

        try:
            data = JobResponse.model_validate(response.json())
        except (ValidationError, ValueError) as e:
            self._apply_error(job_id, seq, TransientFetchError(f"Invalid status payload: {e}"))
            return None

        return self._apply_snapshot(job_id, seq, data.job)

    def _is_stale(self, job_id: str, seq: int) -> bool:
        if job_id != self.job_id:
            return True
        if seq < self._applied_seq:
            logger.debug(f"[tracker] Discarding response #{seq}; #{self._applied_seq} already applied")
            return True
        return False

    def _apply_snapshot(self, job_id: str, seq: int, job: Job) -> Optional[Job]:
        if self._is_stale(job_id, seq):
            return None

        self._applied_seq = seq
        self.job = job
        self.error = None
        self.delta.observe(len(job.results))

        if job.is_terminal:
            if job.status is JobStatus.FAILED:
                logger.warning(f"[tracker] Job {job_id} failed: {self.failure}")
            else:
                logger.info(f"[tracker] Job {job_id} completed with {len(job.results)} result(s)")
            self._enter_terminal()
        return job

    def _apply_error(self, job_id: str, seq: int, error: TransientFetchError):
        if self._is_stale(job_id, seq):
            return
        self._applied_seq = seq
        self.error = str(error)
        logger.warning(f"[tracker] Poll for job {job_id} failed: {error}")

    def _apply_not_found(self, job_id: str, seq: int, error: JobNotFoundError):
        if self._is_stale(job_id, seq):
            return
        self._applied_seq = seq
        self.error = str(error)
        logger.warning(f"[tracker] {error}; stopping")
        self._enter_terminal()

    def _enter_terminal(self):
        self.state = TrackerState.TERMINAL
        self._teardown()
        self._writer.clear()

    def _notify(self):
        if self.on_update is None:
            return
        try:
            self.on_update(self)
        except Exception as e:
            logger.error(f"[tracker] Update listener failed: {e}", exc_info=True)
