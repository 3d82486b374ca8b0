#!/usr/bin/env python3
"""
Batch Engine CLI

Command-line interface for submitting and inspecting batch jobs.

Usage:
    batch-engine run img-1 img-2 img-3 --concurrency 5
    batch-engine run --file items.txt --simulate --failure-rate 0.1
    batch-engine status <job_id>
    batch-engine active
    batch-engine cancel <job_id>
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError
from tqdm import tqdm

from config.settings import settings
from config.logging_config import get_logger, set_console_level

from .job_store import JobStore, SQLiteJobStore
from .models import ACTIVE_STATUSES, BatchJob, JobStatus
from .processor import BatchProcessor
from .progress import JobProgressReporter
from .rate_limiter import RATE_LIMIT_TIERS, create_rate_limiter
from .schemas import BatchStartResponse
from .work_units import HttpWorkUnit, SimulatedWorkUnit, WorkUnit

logger = get_logger(__name__)

POLL_INTERVAL_SECONDS = 0.5


def print_header():
    """Print header"""
    print("""
+======================================================================+
|                                                                      |
|             Batch Engine                                             |
|                                                                      |
+======================================================================+
""")


def print_job(job: BatchJob):
    """Print job details"""
    percentage = 0
    if job.total_items:
        percentage = job.processed_items / job.total_items * 100

    print(f"  [{job.status.value.upper()}] {job.id} ({job.job_type})")
    print(f"     Progress: {job.processed_items}/{job.total_items} ({percentage:.1f}%)")
    print(f"     Successful: {job.successful_items} | Failed: {job.failed_items}")
    for error in job.errors[:3]:
        print(f"     Error: {error.item_id} (attempt {error.attempt_number}): {error.error_message}")
    print()


def load_item_ids(items: List[str], file_path: Optional[str] = None) -> List[str]:
    """Collect item ids from the command line and an optional file (one id per line)."""
    item_ids = list(items)
    if file_path:
        lines = Path(file_path).read_text(encoding="utf-8").splitlines()
        item_ids.extend(line.strip() for line in lines if line.strip())
    return item_ids


def build_work_unit(args) -> WorkUnit:
    if args.simulate:
        return SimulatedWorkUnit(failure_rate=args.failure_rate)
    if not settings.work_unit_url:
        raise ValueError("WORK_UNIT_URL is not configured (or pass --simulate)")
    return HttpWorkUnit(
        settings.work_unit_url,
        api_key=settings.work_unit_api_key,
        timeout=settings.work_unit_timeout_seconds,
    )


async def _run_batch(args, store: JobStore) -> int:
    item_ids = load_item_ids(args.items, args.file)

    work_unit = build_work_unit(args)
    rate_limiter = create_rate_limiter(args.tier, overrides=settings.get_tier_config(args.tier))
    processor = BatchProcessor.from_settings(work_unit, store=store, rate_limiter=rate_limiter)

    try:
        try:
            job_id = await processor.start_batch(
                item_ids,
                concurrency=args.concurrency,
                rate_limit_per_minute=args.rate_limit,
            )
        except ValidationError as e:
            print(f"  [X] Invalid batch: {e}")
            return 2

        response = BatchStartResponse(
            job_id=job_id,
            total_items=len(item_ids),
            estimated_duration_ms=processor.estimate_duration_ms(len(item_ids), args.concurrency),
        )
        print(f"[+] Job {response.job_id} submitted: {response.total_items} item(s), "
              f"est. {response.estimated_duration_ms / 1000:.0f}s")

        progress = None
        with tqdm(total=len(item_ids), desc="Processing", unit="item") as bar:
            try:
                while True:
                    progress = processor.get_job_progress(job_id)
                    bar.update(progress.processed - bar.n)
                    bar.set_postfix(ok=progress.successful, failed=progress.failed)
                    if progress.status.is_terminal and not processor.is_running(job_id):
                        break
                    await asyncio.sleep(POLL_INTERVAL_SECONDS)
            except (KeyboardInterrupt, asyncio.CancelledError):
                print("\n[!] Cancelling job...")
                await processor.shutdown()
                progress = processor.get_job_progress(job_id)

        print(f"\n[i] Job {job_id}: {progress.status.value}")
        print(f"   Successful: {progress.successful}/{progress.total}")
        print(f"   Failed: {progress.failed}")

        return 0 if progress.status == JobStatus.COMPLETED else 1

    finally:
        await processor.shutdown()
        rate_limiter.stop()
        await work_unit.aclose()


def cmd_run(args, store: JobStore) -> int:
    """Submit a batch and follow it to completion"""
    try:
        return asyncio.run(_run_batch(args, store))
    except (ValueError, OSError) as e:
        print(f"  [X] {e}")
        return 2


def cmd_status(args, store: JobStore) -> int:
    """Show job progress"""
    progress = JobProgressReporter(store).get_job_progress(args.job_id)
    if progress is None:
        print(f"  [X] Job not found: {args.job_id}")
        return 1

    print(f"\n[i] Job {progress.job_id}")
    print("=" * 50)
    print(f"  Status: {progress.status.value}")
    print(f"  Progress: {progress.processed}/{progress.total} ({progress.percentage}%)")
    print(f"  Successful: {progress.successful}")
    print(f"  Failed: {progress.failed}")
    if progress.estimated_time_remaining_ms is not None:
        print(f"  Est. remaining: {progress.estimated_time_remaining_ms / 1000:.1f}s")

    if progress.errors:
        print(f"\n[!] Errors ({len(progress.errors)}):")
        for error in progress.errors:
            print(f"  {error.item_id} (attempt {error.attempt_number}): {error.error_message}")
    return 0


def cmd_active(args, store: JobStore) -> int:
    """List pending and processing jobs"""
    print("\n[i] Active Jobs")
    print("=" * 50)

    jobs = store.list_jobs(statuses=ACTIVE_STATUSES, limit=None)
    if not jobs:
        print("  No active jobs")
        return 0

    for job in jobs:
        job.errors = store.list_errors(job.id, settings.batch_error_list_limit)
        print_job(job)
    return 0


def cmd_cancel(args, store: JobStore) -> int:
    """Cancel jobs"""
    exit_code = 0
    for job_id in args.job_ids:
        job = store.get_job(job_id)
        if job is not None and not job.status.is_terminal:
            store.update_job_status(job_id, JobStatus.CANCELLED)
            logger.info(f"Job cancelled from CLI: {job_id}")
            print(f"  [OK] Cancelled: {job_id}")
        else:
            print(f"  [X] Could not cancel: {job_id}")
            exit_code = 1
    return exit_code


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="batch-engine",
        description="Rate-limited batch job runner",
    )
    parser.add_argument("--db", default=None, help="Job database path")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Submit a batch and follow its progress")
    run_parser.add_argument("items", nargs="*", help="Item ids")
    run_parser.add_argument("-f", "--file", help="File with one item id per line")
    run_parser.add_argument("-c", "--concurrency", type=int,
                            default=settings.batch_default_concurrency,
                            help="Items processed together per chunk")
    run_parser.add_argument("-t", "--tier", default=settings.rate_limit_tier,
                            choices=sorted(RATE_LIMIT_TIERS),
                            help="Rate limit tier")
    run_parser.add_argument("-r", "--rate-limit", type=int, default=None,
                            help="Requests per minute recorded with the job")
    run_parser.add_argument("--simulate", action="store_true",
                            help="Use the simulated work unit instead of WORK_UNIT_URL")
    run_parser.add_argument("--failure-rate", type=float, default=0.05,
                            help="Failure probability for --simulate")

    # Status command
    status_parser = subparsers.add_parser("status", help="Show job progress")
    status_parser.add_argument("job_id", help="Job id")

    # Active command
    subparsers.add_parser("active", help="List pending and processing jobs")

    # Cancel command
    cancel_parser = subparsers.add_parser("cancel", help="Cancel jobs")
    cancel_parser.add_argument("job_ids", nargs="+", help="Job ids to cancel")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 0

    print_header()

    if args.verbose:
        set_console_level("DEBUG")

    store = SQLiteJobStore(args.db or settings.batch_db_path)

    commands = {
        "run": cmd_run,
        "status": cmd_status,
        "active": cmd_active,
        "cancel": cmd_cancel,
    }

    try:
        return commands[args.command](args, store)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
