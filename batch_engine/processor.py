#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Batch Processor - chunked concurrent processing of work items

Owns the job lifecycle: pending -> processing -> completed | failed | cancelled.
Items are dispatched in ordered chunks of `concurrency`; every item takes a
rate limiter token per attempt, failed attempts are logged to the job store
and retried with exponential backoff, and counters are written once per chunk.
"""

import asyncio
import math
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

from config.constants import (
    BATCH_JOB_TYPE,
    BATCH_DEFAULT_CONCURRENCY,
    BATCH_MAX_ATTEMPTS,
    BATCH_BACKOFF_BASE_SECONDS,
    BATCH_ERROR_LIST_LIMIT,
    BATCH_ESTIMATED_MS_PER_CHUNK,
)
from config.logging_config import get_logger

from .clock import Clock, system_clock
from .job_store import JobStore
from .models import (
    ACTIVE_STATUSES,
    BatchJob,
    ItemResult,
    ItemStatus,
    JobCounters,
    JobProgress,
    JobStatus,
)
from .progress import JobProgressReporter
from .rate_limiter import TokenBucketRateLimiter
from .schemas import BatchRequest
from .work_units import WorkUnit

logger = get_logger(__name__)


@dataclass
class JobContext:
    """In-process state for one running job"""
    job_id: str
    concurrency: int
    cancel_requested: bool = False
    counters: JobCounters = field(default_factory=JobCounters)


class BatchProcessor:
    """
    Processes batches of items for one rate limiter tier.

    Features:
    - Chunked fan-out/fan-in with bounded concurrency
    - Token bucket rate limiting (shared, injected)
    - Per-item retry with exponential backoff
    - Per-chunk progress writes
    - Cooperative cancellation

    Usage:
        processor = BatchProcessor(
            store=SQLiteJobStore("data/batch_jobs.db"),
            rate_limiter=create_rate_limiter("paid"),
            work_unit=HttpWorkUnit(url),
        )
        job_id = await processor.start_batch(image_ids, concurrency=5)
        progress = processor.get_job_progress(job_id)
    """

    def __init__(
        self,
        store: JobStore,
        rate_limiter: TokenBucketRateLimiter,
        work_unit: WorkUnit,
        clock: Optional[Clock] = None,
        max_attempts: int = BATCH_MAX_ATTEMPTS,
        backoff_base_seconds: float = BATCH_BACKOFF_BASE_SECONDS,
        item_timeout: Optional[float] = None,
        job_type: str = BATCH_JOB_TYPE,
        error_list_limit: int = BATCH_ERROR_LIST_LIMIT,
    ):
        """
        Initialize batch processor.

        Args:
            store: Job store receiving job rows and error records
            rate_limiter: Limiter shared by every job of this tier
            work_unit: Operation performed once per item attempt
            clock: Time source for backoff delays and durations
            max_attempts: Attempts per item before it is marked failed
            backoff_base_seconds: Retry delay is base ** attempt seconds
            item_timeout: Seconds allowed per work unit call (None = no limit)
            job_type: Value stored in the job_type column
            error_list_limit: Error records attached per job in listings
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        self.store = store
        self.rate_limiter = rate_limiter
        self.work_unit = work_unit
        self.clock = clock or system_clock
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.item_timeout = item_timeout
        self.job_type = job_type
        self.error_list_limit = error_list_limit

        self.reporter = JobProgressReporter(store, clock=self.clock, error_limit=error_list_limit)

        self._contexts: Dict[str, JobContext] = {}
        self._tasks: Dict[str, asyncio.Task] = {}

        logger.info(
            f"BatchProcessor initialized: "
            f"tier={rate_limiter.config.tier}, "
            f"max_attempts={max_attempts}, "
            f"item_timeout={item_timeout or 'none'}"
        )

    @classmethod
    def from_settings(
        cls,
        work_unit: WorkUnit,
        store: Optional[JobStore] = None,
        rate_limiter: Optional[TokenBucketRateLimiter] = None,
        app_settings=None,
        clock: Optional[Clock] = None,
    ) -> "BatchProcessor":
        """Build a processor from config.settings (or the given Settings)."""
        from config.settings import settings as default_settings
        from .job_store import SQLiteJobStore
        from .rate_limiter import create_rate_limiter

        app_settings = app_settings or default_settings

        if store is None:
            store = SQLiteJobStore(app_settings.batch_db_path, clock=clock)
        if rate_limiter is None:
            rate_limiter = create_rate_limiter(
                app_settings.rate_limit_tier,
                overrides=app_settings.get_tier_config(),
            )

        return cls(
            store=store,
            rate_limiter=rate_limiter,
            work_unit=work_unit,
            clock=clock,
            max_attempts=app_settings.batch_max_attempts,
            backoff_base_seconds=app_settings.batch_backoff_base_seconds,
            item_timeout=app_settings.item_timeout,
            error_list_limit=app_settings.batch_error_list_limit,
        )

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def start_batch(
        self,
        item_ids: List[str],
        concurrency: int = BATCH_DEFAULT_CONCURRENCY,
        rate_limit_per_minute: Optional[int] = None,
    ) -> str:
        """
        Start a new batch processing job.

        The job row is created in pending status and processing runs in a
        background task owned by this processor; the id is returned at once.

        Args:
            item_ids: Items to process, in order
            concurrency: Items per chunk
            rate_limit_per_minute: Optional rate limit hint stored in metadata

        Returns:
            Job id

        Raises:
            pydantic.ValidationError: On empty item list or out-of-range values
        """
        request = BatchRequest(
            item_ids=item_ids,
            concurrency=concurrency,
            rate_limit_per_minute=rate_limit_per_minute,
        )

        metadata = {
            "item_ids": request.item_ids,
            "concurrency": request.concurrency,
            "rate_limit_per_minute": (
                request.rate_limit_per_minute or self.rate_limiter.get_available_tokens()
            ),
        }
        job_id = self.store.create_job(len(request.item_ids), metadata, job_type=self.job_type)

        context = JobContext(job_id=job_id, concurrency=request.concurrency)
        self._contexts[job_id] = context

        task = asyncio.get_running_loop().create_task(
            self._run_supervised(context, request.item_ids),
            name=f"batch-job-{job_id}",
        )
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._forget(jid))

        logger.info(
            f"Batch job started: {job_id} "
            f"({len(request.item_ids)} items, concurrency={request.concurrency})"
        )
        return job_id

    async def _run_supervised(self, context: JobContext, item_ids: List[str]):
        """Top level of a job task: nothing raised here reaches the caller or the loop."""
        job_id = context.job_id
        try:
            await self.process_batch(job_id, item_ids, context.concurrency)
        except asyncio.CancelledError:
            logger.warning(f"Batch job task interrupted: {job_id}")
            if not context.cancel_requested:
                self._mark_failed(job_id)
            raise
        except Exception:
            logger.exception(f"Batch processing failed: {job_id}")
            self._mark_failed(job_id)

    def _mark_failed(self, job_id: str):
        try:
            self.store.update_job_status(job_id, JobStatus.FAILED)
        except Exception:
            logger.exception(f"Could not record failed status for job {job_id}")

    def _forget(self, job_id: str):
        self._tasks.pop(job_id, None)
        self._contexts.pop(job_id, None)

    # ------------------------------------------------------------------
    # Processing
    # ------------------------------------------------------------------

    async def process_batch(self, job_id: str, item_ids: List[str], concurrency: int):
        """
        Process a job's items chunk by chunk.

        Cancellation is checked before each chunk; a chunk already dispatched
        runs to completion and its counters are still written.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")

        context = self._contexts.get(job_id)
        if context is None:
            context = JobContext(job_id=job_id, concurrency=concurrency)
            self._contexts[job_id] = context

        if not self.store.update_job_status(job_id, JobStatus.PROCESSING):
            logger.info(f"Batch job {job_id} finished before processing started")
            return

        chunks = [item_ids[i:i + concurrency] for i in range(0, len(item_ids), concurrency)]
        counters = context.counters

        for index, chunk in enumerate(chunks, 1):
            if not context.cancel_requested and self._cancelled_in_store(job_id):
                # Cancelled through another processor sharing the store
                context.cancel_requested = True

            if context.cancel_requested:
                self.store.update_job_status(job_id, JobStatus.CANCELLED)
                logger.info(
                    f"Batch job cancelled: {job_id} "
                    f"(stopped before chunk {index}/{len(chunks)})"
                )
                return

            results = await self._process_chunk(chunk, context)

            counters.add(results)
            self.store.update_job_progress(
                job_id, counters.processed, counters.successful, counters.failed
            )
            logger.debug(
                f"Job {job_id}: chunk {index}/{len(chunks)} done "
                f"({counters.processed}/{len(item_ids)} processed)"
            )

        if context.cancel_requested:
            self.store.update_job_status(job_id, JobStatus.CANCELLED)
            logger.info(f"Batch job cancelled during final chunk: {job_id}")
            return

        # Item failures are isolated; the job only fails if nothing succeeded
        if counters.failed > 0 and counters.successful == 0:
            final_status = JobStatus.FAILED
        else:
            final_status = JobStatus.COMPLETED
        if not self.store.update_job_status(job_id, final_status):
            logger.info(f"Batch job {job_id} was finished elsewhere, keeping stored status")
            return

        logger.info(
            f"Batch job {final_status.value}: {job_id} "
            f"(total={len(item_ids)}, successful={counters.successful}, failed={counters.failed})"
        )

    def _cancelled_in_store(self, job_id: str) -> bool:
        job = self.store.get_job(job_id)
        return job is not None and job.status == JobStatus.CANCELLED

    async def _process_chunk(self, chunk: List[str], context: JobContext) -> List[ItemResult]:
        """Run one chunk concurrently and wait for every item to settle."""
        outcomes = await asyncio.gather(
            *(self.process_item(item_id, context) for item_id in chunk),
            return_exceptions=True,
        )

        # Work unit errors never get here; anything raised is an orchestration error
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

        return list(outcomes)

    async def process_item(self, item_id: str, context: JobContext) -> ItemResult:
        """
        Process a single item with retry logic.

        Each attempt waits for a rate limiter token, then re-checks
        cancellation before calling the work unit.
        """
        start_time = self.clock.monotonic()
        attempt = 1

        def elapsed_ms() -> float:
            return (self.clock.monotonic() - start_time) * 1000

        while True:
            await self.rate_limiter.wait_for_token()

            if context.cancel_requested:
                return ItemResult(
                    item_id=item_id,
                    status=ItemStatus.SKIPPED,
                    processing_time_ms=elapsed_ms(),
                    attempts=attempt - 1,
                )

            try:
                payload = await self._invoke_work_unit(item_id)

            except asyncio.TimeoutError as e:
                if self.item_timeout:
                    error_message = f"Timed out after {self.item_timeout}s"
                else:
                    error_message = str(e) or type(e).__name__

            except Exception as e:
                error_message = str(e) or type(e).__name__

            else:
                logger.debug(f"Item processed: {item_id} (attempt {attempt})")
                return ItemResult(
                    item_id=item_id,
                    status=ItemStatus.SUCCESS,
                    payload=payload,
                    processing_time_ms=elapsed_ms(),
                    attempts=attempt,
                )

            logger.warning(
                f"Item {item_id} failed (attempt {attempt}/{self.max_attempts}): {error_message}"
            )
            self.store.append_error(context.job_id, item_id, error_message, attempt)

            if attempt >= self.max_attempts:
                return ItemResult(
                    item_id=item_id,
                    status=ItemStatus.FAILED,
                    error=error_message,
                    processing_time_ms=elapsed_ms(),
                    attempts=attempt,
                )

            delay = self.backoff_base_seconds ** attempt
            logger.info(f"Retrying item {item_id} in {delay:g}s (attempt {attempt + 1})")
            await self.clock.sleep(delay)
            attempt += 1

    async def _invoke_work_unit(self, item_id: str) -> Any:
        if self.item_timeout:
            return await asyncio.wait_for(self.work_unit.process(item_id), timeout=self.item_timeout)
        return await self.work_unit.process(item_id)

    # ------------------------------------------------------------------
    # Control & queries
    # ------------------------------------------------------------------

    async def cancel_job(self, job_id: str) -> bool:
        """
        Cancel a pending or processing job.

        Work already executing is not interrupted; the next chunk never starts
        and items still waiting for a token are skipped.

        Returns:
            False if the job does not exist or is already finished
        """
        job = self.store.get_job(job_id)
        if job is None or job.status.is_terminal:
            logger.warning(f"Cannot cancel job - not found or already finished: {job_id}")
            return False

        context = self._contexts.get(job_id)
        if context is not None:
            context.cancel_requested = True

        self.store.update_job_status(job_id, JobStatus.CANCELLED)
        logger.info(f"Job cancelled: {job_id}")
        return True

    def get_job_progress(self, job_id: str) -> Optional[JobProgress]:
        """Get job progress and status (None if unknown)."""
        return self.reporter.get_job_progress(job_id)

    def list_active_jobs(self) -> List[BatchJob]:
        """Pending and processing jobs, most recent first, with their latest errors."""
        jobs = self.store.list_jobs(statuses=ACTIVE_STATUSES, limit=None)
        for job in jobs:
            job.errors = self.store.list_errors(job.id, self.error_list_limit)
        return jobs

    def get_batch_stats(self) -> Dict[str, int]:
        """Aggregate counters over active jobs."""
        jobs = self.store.list_jobs(statuses=ACTIVE_STATUSES, limit=None)
        return {
            "active_jobs": len(jobs),
            "total_processing": sum(j.processed_items for j in jobs),
            "total_successful": sum(j.successful_items for j in jobs),
            "total_failed": sum(j.failed_items for j in jobs),
        }

    @staticmethod
    def estimate_duration_ms(item_count: int, concurrency: int) -> int:
        """Rough duration estimate for a batch, before any item has run."""
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        return math.ceil(item_count / concurrency) * BATCH_ESTIMATED_MS_PER_CHUNK

    def is_running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return task is not None and not task.done()

    async def wait_for_job(self, job_id: str, timeout: Optional[float] = None) -> bool:
        """
        Wait for a job's background task to finish.

        Returns:
            True if the task is done (or not running in this process)
        """
        task = self._tasks.get(job_id)
        if task is None:
            return True
        done, _ = await asyncio.wait({task}, timeout=timeout)
        return task in done

    async def shutdown(self, timeout: Optional[float] = None):
        """
        Cancel every running job and wait for the tasks to wind down.

        Tasks still running after `timeout` seconds are cancelled outright.
        The rate limiter is not stopped; it belongs to whoever created it.
        """
        tasks = list(self._tasks.items())
        if not tasks:
            return

        logger.info(f"Shutting down batch processor ({len(tasks)} running job(s))")
        for job_id, _ in tasks:
            await self.cancel_job(job_id)

        pending = {task for _, task in tasks}
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
