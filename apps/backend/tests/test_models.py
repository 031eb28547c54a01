from core.models import Job, JobStatus, ScrapedResult, build_generation_payload
from monitor.archive import primary_url


def test_terminal_statuses():
    assert JobStatus.COMPLETED.is_terminal
    assert JobStatus.FAILED.is_terminal
    assert not JobStatus.PENDING.is_terminal
    assert not JobStatus.RUNNING.is_terminal


def test_job_ignores_unknown_fields():
    job = Job.model_validate({"id": "job-1", "status": "running", "priority": "high"})
    assert job.progress == 0
    assert job.results == []
    assert not job.is_terminal


def test_generation_payload_joins_content():
    results = [
        ScrapedResult(url="https://example.org/blank", title="Blank", content="\n "),
        ScrapedResult(url="https://example.org/a", title="A", content="  first  "),
        ScrapedResult(url="https://example.org/b", content="second"),
    ]

    payload = build_generation_payload("job-1", results)

    assert payload.content == "first\n\n---\n\nsecond"
    assert payload.url == "https://example.org/a"
    assert payload.title == "A"
    assert payload.jobId == "job-1"


def test_generation_payload_without_content():
    results = [ScrapedResult(url="https://example.org", error="timeout")]
    assert build_generation_payload("job-1", results) is None


def test_primary_url_prefers_content():
    job = Job.model_validate({
        "id": "job-1",
        "status": "completed",
        "results": [
            {"url": "https://example.org/empty"},
            {"url": "https://example.org/full", "content": "text"},
        ],
    })
    assert primary_url(job) == "https://example.org/full"

    job.results[1].content = None
    assert primary_url(job) == "https://example.org/empty"
