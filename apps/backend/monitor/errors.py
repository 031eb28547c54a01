"""
Error taxonomy for job monitoring and summary streaming.

Trackers record these as messages in their own state; polling and
generation never raise them to the caller.
"""
from typing import Optional


class MonitorError(Exception):
    """Base class for monitoring failures."""


class TransientFetchError(MonitorError):
    """Network or server error on a single poll. Polling continues."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TerminalJobError(MonitorError):
    """The backend reported the job as failed."""

    def __init__(self, job_id: str, message: Optional[str] = None):
        super().__init__(message or f"Job {job_id} failed")
        self.job_id = job_id


class JobNotFoundError(MonitorError):
    """Status endpoint answered 404; treated as terminal, never retried."""

    def __init__(self, job_id: str, message: Optional[str] = None):
        super().__init__(message or f"Job not found: {job_id}")
        self.job_id = job_id


class StreamParseError(MonitorError):
    """Malformed frame. Recovered locally, never surfaced."""


class StreamTerminalError(MonitorError):
    """Explicit error frame, or the stream closed without a terminal marker."""


class QuotaExceededError(MonitorError):
    """The generation path refused the request for quota reasons."""
