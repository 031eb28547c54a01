"""
Stores finished summaries next to the stored snapshot of the page they describe.
"""
import logging
from typing import Optional
import httpx

from core.models import Job
from core.net import HTTPClient, read_json

logger = logging.getLogger(__name__)

LOOKUP_PATH = "/memory/lookup"


def primary_url(job: Job) -> Optional[str]:
    """URL of the first result with content, falling back to the first result."""
    for result in job.results:
        if result.has_content():
            return result.url
    if job.results:
        return job.results[0].url
    return None


class SummaryArchive:
    """Resolves the snapshot for a job's primary URL and attaches the summary to it."""

    def __init__(
        self,
        base_url: str,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.http = HTTPClient(base_url, timeout=timeout, transport=transport)

    async def save(self, summary: str, job: Job) -> bool:
        """
        Attach summary to the snapshot of the job's primary URL.

        Returns:
            True if the snapshot store accepted the summary
        """
        url = primary_url(job)
        if not url:
            logger.info(f"[archive] Job {job.id} has no result URL; nothing to archive")
            return False

        lookup = await self.http.get(LOOKUP_PATH, params={"url": url})
        if not lookup.is_success:
            logger.warning(f"[archive] Snapshot lookup for {url} failed: HTTP {lookup.status_code}")
            return False

        data = read_json(lookup)
        snapshot = data.get("snapshot") or {}
        snapshot_id = snapshot.get("id") if isinstance(snapshot, dict) else None
        if not data.get("found") or not snapshot_id:
            logger.info(f"[archive] No stored snapshot for {url}")
            return False

        response = await self.http.post_json(
            f"/memory/snapshot/{snapshot_id}/summary",
            {"summary": summary, "jobId": job.id},
        )
        if not response.is_success:
            logger.warning(f"[archive] Snapshot {snapshot_id} rejected summary: HTTP {response.status_code}")
            return False

        logger.info(f"[archive] Summary for job {job.id} stored on snapshot {snapshot_id}")
        return True
