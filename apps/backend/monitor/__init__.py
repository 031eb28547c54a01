"""
Client-side monitoring for scrape jobs and streamed summaries.

Holds the state machines a front end needs: job status polling with
"new result" highlighting, and consumption of the summarize relay.
"""

from .job_store import FileJobIdStore, JobIdStore, MemoryJobIdStore
from .result_delta import ResultDeltaTracker, new_result_indices
from .status_tracker import JobStatusTracker, TrackerState
from .summary_client import StreamingSummaryClient, SummarySession

__version__ = "0.1.0"

__all__ = [
    "FileJobIdStore",
    "JobIdStore",
    "MemoryJobIdStore",
    "ResultDeltaTracker",
    "new_result_indices",
    "JobStatusTracker",
    "TrackerState",
    "StreamingSummaryClient",
    "SummarySession",
]
