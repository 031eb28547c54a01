"""
Shared wire models for scrape jobs and summarization requests.

Field names follow the scrape engine's JSON (snake_case for jobs,
camelCase for the summarize endpoint) so payloads round-trip untouched.
"""
from enum import Enum
from typing import List, Optional, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    """Lifecycle states reported by the scrape engine"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ScrapedResult(BaseModel):
    """One captured page inside a job."""
    model_config = ConfigDict(extra="ignore")

    url: str
    title: str = ""
    status: int = 0
    size: int = 0
    scraped: str = ""
    error: Optional[str] = None
    content: Optional[str] = None

    @field_validator("title", "scraped", mode="before")
    @classmethod
    def _null_as_empty_text(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("status", "size", mode="before")
    @classmethod
    def _null_as_zero(cls, v: Any) -> Any:
        return 0 if v is None else v

    def has_content(self) -> bool:
        return bool(self.content and self.content.strip())


class JobRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    urls: List[str] = Field(default_factory=list)
    site_url: Optional[str] = None

    @field_validator("urls", mode="before")
    @classmethod
    def _null_as_empty_list(cls, v: Any) -> Any:
        return [] if v is None else v


class Job(BaseModel):
    """
    Complete job snapshot as returned by the status endpoint.

    A snapshot is always replaced wholesale, never merged.
    """
    model_config = ConfigDict(extra="ignore")

    id: str
    status: JobStatus
    progress: float = 0
    request: JobRequest = Field(default_factory=JobRequest)
    results: List[ScrapedResult] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: str = ""
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @field_validator("results", mode="before")
    @classmethod
    def _null_results(cls, v: Any) -> Any:
        """Pending jobs may report results: null."""
        return [] if v is None else v

    @field_validator("request", mode="before")
    @classmethod
    def _null_request(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("progress", mode="before")
    @classmethod
    def _null_progress(cls, v: Any) -> Any:
        return 0 if v is None else v

    @field_validator("created_at", mode="before")
    @classmethod
    def _null_created_at(cls, v: Any) -> Any:
        return "" if v is None else v

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class JobResponse(BaseModel):
    model_config = ConfigDict(extra="ignore")

    job: Job
    metrics: Optional[Any] = None


class SummarizeRequest(BaseModel):
    """Body accepted by POST /api/summarize."""
    jobId: str = ""
    results: List[ScrapedResult] = Field(default_factory=list)
    stream: bool = False


class GenerationPayload(BaseModel):
    """Body forwarded to the text-generation engine."""
    content: str
    url: str = ""
    title: str = ""
    jobId: str


def build_generation_payload(job_id: str, results: List[ScrapedResult]) -> Optional[GenerationPayload]:
    """
    Combine result contents into a single generation request.

    Returns None when no result carries non-blank content.
    """
    with_content = [r for r in results if r.has_content()]
    if not with_content:
        return None

    combined = "\n\n---\n\n".join(r.content.strip() for r in with_content)
    primary = with_content[0]
    return GenerationPayload(
        content=combined,
        url=primary.url or "",
        title=primary.title or "",
        jobId=job_id,
    )
