#!/usr/bin/env python3
"""
Watch a scrape job until it finishes, then optionally stream its summary.

Without --job-id the last started job is resumed from the state file.
"""
import sys
import asyncio
import argparse
import logging
from pathlib import Path

# Add parent directory to path to import app modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv

from app.config import get_arachne_api_url, get_poll_interval, get_relay_url, get_state_file, get_summary_timeout
from monitor import FileJobIdStore, JobStatusTracker, StreamingSummaryClient, TrackerState
from monitor.archive import SummaryArchive


class ProgressPrinter:
    """Prints progress changes and newly appeared results."""

    def __init__(self, done: asyncio.Event):
        self.done = done
        self.last_progress = None
        self.last_error = None
        self.printed = 0

    def __call__(self, tracker: JobStatusTracker):
        job = tracker.job
        if job is not None:
            if job.progress != self.last_progress:
                self.last_progress = job.progress
                print(f"[{job.status.value}] {job.progress:.0f}% ({len(job.results)} results)")
            for index in sorted(tracker.new_result_indices):
                if index < self.printed:
                    continue
                result = job.results[index]
                print(f"  + {result.url} {result.title!r} HTTP {result.status}")
                self.printed = index + 1

        if tracker.error and tracker.error != self.last_error:
            print(f"  ! {tracker.error}")
        self.last_error = tracker.error

        if tracker.state is not TrackerState.POLLING:
            self.done.set()


async def watch(args) -> int:
    store = FileJobIdStore(get_state_file())
    done = asyncio.Event()
    printer = ProgressPrinter(done)

    async with JobStatusTracker(
        args.relay_url,
        store=store,
        poll_interval=args.interval,
        on_update=printer,
    ) as tracker:
        if args.job_id:
            await tracker.start(args.job_id)
        elif await tracker.resume() is None and tracker.job_id is None:
            print("No job id given and none saved in the state file")
            return 1

        await done.wait()
        job = tracker.job

        if tracker.failure is not None:
            print(f"Job failed: {tracker.failure}")
            return 1
        if job is None or not job.is_terminal:
            print(f"Stopped without a result: {tracker.error or tracker.status}")
            return 1

    print(f"Job {job.id} completed with {len(job.results)} result(s)")
    if not args.summarize:
        return 0
    if not job.results:
        print("Nothing to summarize")
        return 0

    return await summarize(args, job)


async def summarize(args, job) -> int:
    def on_update(session):
        if session.is_streaming and session.text:
            sys.stdout.write("\r" + session.text[-120:].replace("\n", " "))
            sys.stdout.flush()

    archive = SummaryArchive(get_arachne_api_url())
    async with StreamingSummaryClient(
        args.relay_url,
        timeout=get_summary_timeout(),
        archive=archive,
        on_update=on_update if not args.no_stream else None,
    ) as client:
        session = await client.generate(job, stream=not args.no_stream)

    print()
    if session.error:
        print(f"Summary failed: {session.error}")
        if session.incomplete:
            print("Partial summary:")
            print(session.text)
        return 1

    print("=" * 60)
    print(session.text)
    print("=" * 60)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Watch a scrape job and summarize its results")
    parser.add_argument("--job-id", help="Job to watch (default: last started job)")
    parser.add_argument("--relay-url", default=get_relay_url(), help="Relay API base URL")
    parser.add_argument("--interval", type=float, default=get_poll_interval(), help="Seconds between polls")
    parser.add_argument("--summarize", action="store_true", help="Generate a summary once the job completes")
    parser.add_argument("--no-stream", action="store_true", help="Request the summary as a single document")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

    try:
        sys.exit(asyncio.run(watch(args)))
    except KeyboardInterrupt:
        print("\nInterrupted")
        sys.exit(130)


if __name__ == "__main__":
    load_dotenv()
    main()
